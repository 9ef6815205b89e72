import requests

from speech_relay.config import Config
from speech_relay.errors import CorrectionError, ServiceUnavailableError


class NullCorrectionService:
    """Pass-through used when correction is disabled."""

    name = "none"

    def correct(self, text: str) -> str:
        return text

    def check_available(self):
        return None


class OllamaCorrectionService:
    """Punctuation and casing fix-up through a local Ollama model."""

    name = "ollama"

    def __init__(self, config: Config):
        self.config = config

    def correct(self, text: str) -> str:
        prompt = (
            "<start_of_turn>user\n"
            "The following text is a live speech transcript. Fix punctuation, capitalization "
            "and obvious recognition errors. Do not rephrase or translate it. "
            "Output ONLY the corrected text, nothing else.\n\n"
            f"{text}<end_of_turn>\n<start_of_turn>model\n"
        )

        data = {
            "model": self.config.correction_model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": 0.0,
            },
        }

        try:
            response = requests.post(
                f"{self.config.ollama_url}/api/generate",
                json=data,
                timeout=self.config.correction_timeout_s,
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            raise CorrectionError(f"Ollama correction failed: {e}", model=self.config.correction_model) from e
        return result.get("response", "").strip()

    def check_available(self):
        try:
            response = requests.get(f"{self.config.ollama_url}/api/tags", timeout=5)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ServiceUnavailableError(f"Ollama is not reachable: {e}", url=self.config.ollama_url) from e


class LanguageToolCorrectionService:
    """
    Grammar correction through the LanguageTool HTTP API.

    Each match carries an offset, a length and a list of suggestions; the
    first suggestion is applied. Matches are applied from the end of the
    text backwards so earlier offsets stay valid.
    """

    name = "languagetool"

    def __init__(self, config: Config):
        self.config = config

    def correct(self, text: str) -> str:
        try:
            response = requests.post(
                f"{self.config.languagetool_url}/v2/check",
                data={"text": text, "language": self.config.source_language},
                timeout=self.config.correction_timeout_s,
            )
            response.raise_for_status()
            matches = response.json().get("matches", [])
        except (requests.RequestException, ValueError) as e:
            raise CorrectionError(f"LanguageTool check failed: {e}") from e
        return apply_matches(text, matches)

    def check_available(self):
        try:
            response = requests.get(f"{self.config.languagetool_url}/v2/languages", timeout=5)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ServiceUnavailableError(
                f"LanguageTool is not reachable: {e}", url=self.config.languagetool_url
            ) from e


def apply_matches(text: str, matches: list) -> str:
    corrected = text
    for match in sorted(matches, key=lambda m: m.get("offset", 0), reverse=True):
        replacements = match.get("replacements") or []
        if not replacements:
            continue
        offset = match.get("offset", 0)
        length = match.get("length", 0)
        if offset < 0 or offset + length > len(corrected):
            continue
        corrected = corrected[:offset] + replacements[0].get("value", "") + corrected[offset + length:]
    return corrected


def build_correction_service(config: Config):
    backend = config.correction_backend.lower()
    if backend == "ollama":
        return OllamaCorrectionService(config)
    if backend == "languagetool":
        return LanguageToolCorrectionService(config)
    if backend in ("none", "off", ""):
        return NullCorrectionService()
    raise ValueError(f"Unknown correction backend: {config.correction_backend}")
