from typing import Callable, Optional
import time

import requests

from speech_relay.config import Config
from speech_relay.errors import BroadcastError
from speech_relay.models import BroadcastResult, ProcessedUnit


class HttpBroadcastChannel:
    """
    Posts translation events to the relay backend, which fans them out to
    the audience over its own websocket connections.
    """

    name = "http"

    def __init__(self, config: Config, session_id: Optional[str] = None, clock: Callable[[], float] = time.monotonic):
        if not config.broadcast_url:
            raise ValueError("BROADCAST_URL is not set")
        self.config = config
        self.url = config.broadcast_url
        self.session_id = session_id or config.session_id
        self.clock = clock

    def build_payload(self, translated_text: str, target_language: str, unit: Optional[ProcessedUnit] = None) -> dict:
        payload = {
            "sessionId": self.session_id,
            "translatedText": translated_text,
            "targetLanguage": target_language,
        }
        if unit is not None:
            payload["originalText"] = unit.corrected_text
            if unit.replaced_text:
                payload["replacesText"] = unit.replaced_text
        return payload

    def send(self, translated_text: str, target_language: str, unit: Optional[ProcessedUnit] = None) -> BroadcastResult:
        started = self.clock()
        try:
            self._post(self.build_payload(translated_text, target_language, unit))
        except BroadcastError as e:
            print(f"[Broadcast] Send failed: {e}")
            return BroadcastResult(
                successful=False,
                translated_text=translated_text,
                target_language=target_language,
                latency=self.clock() - started,
                channel=self.name,
                error=str(e),
            )
        return BroadcastResult(
            successful=True,
            translated_text=translated_text,
            target_language=target_language,
            latency=self.clock() - started,
            channel=self.name,
        )

    def _post(self, payload: dict):
        try:
            response = requests.post(self.url, json=payload, timeout=self.config.broadcast_timeout_s)
            response.raise_for_status()
        except requests.RequestException as e:
            raise BroadcastError(f"POST {self.url} failed: {e}", url=self.url) from e
