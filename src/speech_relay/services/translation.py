import requests

from speech_relay.config import Config
from speech_relay.errors import ServiceUnavailableError, TranslationError

GOOGLE_TRANSLATE_URL = "https://translation.googleapis.com/language/translate/v2"

LANGUAGE_NAMES = {
    "ar": "Arabic", "de": "German", "en": "English", "es": "Spanish", "fr": "French",
    "hi": "Hindi", "it": "Italian", "ja": "Japanese", "ko": "Korean", "nl": "Dutch",
    "pl": "Polish", "pt": "Portuguese", "ru": "Russian", "tr": "Turkish", "uk": "Ukrainian",
    "zh": "Chinese",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code.split("-")[0].lower(), code)


class OllamaTranslationService:
    name = "ollama"

    def __init__(self, config: Config):
        self.config = config

    def translate(self, text: str, target_language: str) -> str:
        source = language_name(self.config.source_language)
        target = language_name(target_language)
        prompt = (
            f"<start_of_turn>user\nTranslate the following text from {source} to {target}. "
            f"Output ONLY the translation, nothing else.\n\n{text}<end_of_turn>\n<start_of_turn>model\n"
        )

        data = {
            "model": self.config.translate_model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.config.translate_temperature,
                "top_p": self.config.translate_top_p,
            },
        }

        try:
            response = requests.post(
                f"{self.config.ollama_url}/api/generate",
                json=data,
                timeout=self.config.translation_timeout_s,
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            raise TranslationError(f"Ollama translation failed: {e}", target_language=target_language) from e

        translated = result.get("response", "").strip()
        if not translated:
            raise TranslationError("Ollama returned an empty translation", target_language=target_language)
        return translated

    def check_available(self):
        try:
            response = requests.get(f"{self.config.ollama_url}/api/tags", timeout=5)
            response.raise_for_status()
            models = [m.get("name", "") for m in response.json().get("models", [])]
        except (requests.RequestException, ValueError) as e:
            raise ServiceUnavailableError(f"Ollama is not reachable: {e}", url=self.config.ollama_url) from e

        model = self.config.translate_model
        if model not in models and f"{model}:latest" not in models:
            raise ServiceUnavailableError(f"Model {model} is not pulled in Ollama", model=model)


class GoogleTranslationService:
    """Cloud Translation v2 REST API, authenticated with an API key."""

    name = "google"

    def __init__(self, config: Config):
        self.config = config

    def translate(self, text: str, target_language: str) -> str:
        payload = {
            "q": text,
            "target": target_language,
            "source": self.config.source_language.split("-")[0],
            "format": "text",
        }
        try:
            response = requests.post(
                GOOGLE_TRANSLATE_URL,
                params={"key": self.config.google_api_key},
                json=payload,
                timeout=self.config.translation_timeout_s,
            )
            response.raise_for_status()
            translations = response.json()["data"]["translations"]
        except (requests.RequestException, ValueError, KeyError) as e:
            raise TranslationError(f"Google translation failed: {e}", target_language=target_language) from e

        if not translations or not translations[0].get("translatedText", "").strip():
            raise TranslationError("Google returned an empty translation", target_language=target_language)
        return translations[0]["translatedText"].strip()

    def check_available(self):
        if not self.config.google_api_key:
            raise ServiceUnavailableError("GOOGLE_TRANSLATE_API_KEY is not set")
        try:
            response = requests.get(
                f"{GOOGLE_TRANSLATE_URL}/languages",
                params={"key": self.config.google_api_key},
                timeout=5,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise ServiceUnavailableError(f"Google Translation API is not reachable: {e}") from e


def build_translation_service(config: Config):
    backend = config.translation_backend.lower()
    if backend == "ollama":
        return OllamaTranslationService(config)
    if backend == "google":
        return GoogleTranslationService(config)
    raise ValueError(f"Unknown translation backend: {config.translation_backend}")
