from dataclasses import dataclass
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    # --- Scheduling ---
    processing_interval_s: float = float(os.getenv("PROCESSING_INTERVAL_S", "5.0"))
    force_flush_timeout_s: float = float(os.getenv("FORCE_FLUSH_TIMEOUT_S", "30.0"))

    # --- Accumulation ---
    min_flush_length: int = int(os.getenv("MIN_FLUSH_LENGTH", "8"))
    restart_length_ratio: float = float(os.getenv("RESTART_LENGTH_RATIO", "0.6"))  # new partial shorter than this share of pending text
    restart_token_window: int = 3       # leading words compared for restart detection

    # --- Duplicate suppression ---
    duplicate_similarity_threshold: float = float(os.getenv("DUPLICATE_SIMILARITY", "0.85"))
    duplicate_cache_size: int = int(os.getenv("DUPLICATE_CACHE_SIZE", "50"))
    duplicate_ttl_s: float = float(os.getenv("DUPLICATE_TTL_S", "0"))  # 0 = entries only leave by eviction
    minimum_expansion_ratio: float = 1.1
    max_length_difference_ratio: float = 0.1

    # --- Early boundary detection ---
    early_boundary_enabled: bool = _env_bool("EARLY_BOUNDARY", "false")
    boundary_min_length: int = 10
    sentence_min_length: int = 15      # terminal punctuation rules
    long_text_length: int = 100
    comma_split_min_length: int = 30

    # --- Boundary timing (stability / max segment duration) ---
    boundary_timer_enabled: bool = _env_bool("BOUNDARY_TIMER", "false")
    stability_timeout_s: float = float(os.getenv("STABILITY_TIMEOUT_S", "1.5"))
    min_stability_timeout_s: float = 0.3
    max_stability_timeout_s: float = 4.0
    max_segment_duration_s: float = float(os.getenv("MAX_SEGMENT_DURATION_S", "8.0"))

    # --- Processing ---
    target_language: str = os.getenv("TARGET_LANGUAGE", "es")
    correction_timeout_s: float = float(os.getenv("CORRECTION_TIMEOUT_S", "10.0"))
    translation_timeout_s: float = float(os.getenv("TRANSLATION_TIMEOUT_S", "15.0"))
    requeue_failed_text: bool = _env_bool("REQUEUE_FAILED_TEXT", "false")
    max_recognizer_retries: int = 3

    # --- Correction service ---
    correction_backend: str = os.getenv("CORRECTION_BACKEND", "ollama")  # ollama | languagetool | none
    correction_model: str = os.getenv("CORRECTION_MODEL", "gemma3:4b")
    languagetool_url: str = os.getenv("LANGUAGETOOL_URL", "https://api.languagetool.org")
    source_language: str = os.getenv("SOURCE_LANGUAGE", "en-US")

    # --- Translation service ---
    translation_backend: str = os.getenv("TRANSLATION_BACKEND", "ollama")  # ollama | google
    ollama_url: str = os.getenv("OLLAMA_URL", "http://localhost:11434")
    translate_model: str = os.getenv("TRANSLATE_MODEL", "translategemma:12b")
    translate_temperature: float = 0.0
    translate_top_p: float = 1.0
    google_api_key: str | None = os.getenv("GOOGLE_TRANSLATE_API_KEY", None)

    # --- Broadcast ---
    broadcast_url: str | None = os.getenv("BROADCAST_URL", None)
    broadcast_timeout_s: float = float(os.getenv("BROADCAST_TIMEOUT_S", "5.0"))
    session_id: str | None = os.getenv("SESSION_ID", None)
    vtt_path: str | None = os.getenv("VTT_PATH", "live.vtt")
    vtt_history: int = 2
    transcript_dir: str | None = os.getenv("TRANSCRIPT_DIR", None)

    # --- Output ---
    log_preview_chars: int = 50

    # --- Hotkeys ---
    hotkey_toggle: str = os.getenv("HOTKEY_TOGGLE", "f8")
    hotkey_stop: str = os.getenv("HOTKEY_STOP", "f10")

# Global instance, used by the command line entry point
cfg = Config()


def preview(text: str, limit: int = 50) -> str:
    """Shorten text for log lines."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
