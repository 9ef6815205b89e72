import threading
from typing import Dict, List, Optional

from speech_relay.errors import ServiceUnavailableError, TranslationError
from speech_relay.models import BroadcastResult
from speech_relay.recognizer import SpeechRecognizer


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeCorrection:
    def __init__(self, fixes: Optional[Dict[str, str]] = None, error: Optional[Exception] = None):
        self.fixes = fixes or {}
        self.error = error
        self.calls: List[str] = []

    def correct(self, text: str) -> str:
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.fixes.get(text, text)

    def check_available(self):
        return None


class BlockingCorrection(FakeCorrection):
    """Never answers until released."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def correct(self, text: str) -> str:
        self.calls.append(text)
        self.release.wait(5.0)
        return text.upper()


class FakeTranslation:
    def __init__(self, translations: Optional[Dict[str, str]] = None, available: bool = True):
        self.translations = translations or {}
        self.available = available
        self.fail_next = 0
        self.calls: List[str] = []

    def translate(self, text: str, target_language: str) -> str:
        self.calls.append(text)
        if self.fail_next:
            self.fail_next -= 1
            raise TranslationError("translation backend down", target_language=target_language)
        return self.translations.get(text, f"[{target_language}] {text}")

    def check_available(self):
        if not self.available:
            raise ServiceUnavailableError("translation backend down")


class RecordingChannel:
    name = "recording"

    def __init__(self, successful: bool = True):
        self.successful = successful
        self.sent = []

    def send(self, translated_text, target_language, unit=None):
        self.sent.append((translated_text, target_language, unit))
        return BroadcastResult(
            successful=self.successful,
            translated_text=translated_text,
            target_language=target_language,
            channel=self.name,
            error=None if self.successful else "audience relay offline",
        )


class FakeRecognizer(SpeechRecognizer):
    def __init__(self):
        self.on_result = None
        self.on_no_match = None
        self.on_error = None
        self.start_count = 0
        self.paused = False
        self.stopped = False

    def start(self, on_result, on_no_match, on_error):
        self.on_result = on_result
        self.on_no_match = on_no_match
        self.on_error = on_error
        self.start_count += 1
        self.stopped = False

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def stop(self):
        self.stopped = True
