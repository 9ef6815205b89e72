from typing import List, Optional

from speech_relay.models import BroadcastResult, ProcessedUnit


class FanoutBroadcastChannel:
    """Sends to every channel. Succeeds if at least one channel does."""

    name = "fanout"

    def __init__(self, channels: List):
        self.channels = list(channels)

    def send(self, translated_text: str, target_language: str, unit: Optional[ProcessedUnit] = None) -> BroadcastResult:
        results = []
        for channel in self.channels:
            try:
                results.append(channel.send(translated_text, target_language, unit=unit))
            except Exception as e:
                print(f"[Broadcast] {getattr(channel, 'name', channel)} raised: {e}")
                results.append(BroadcastResult(
                    False, translated_text, target_language,
                    channel=getattr(channel, "name", ""), error=str(e),
                ))

        failed = [r for r in results if not r.successful]
        errors = "; ".join(f"{r.channel}: {r.error}" for r in failed)
        return BroadcastResult(
            successful=any(r.successful for r in results),
            translated_text=translated_text,
            target_language=target_language,
            latency=max((r.latency for r in results), default=0.0),
            channel=self.name,
            error=errors or None,
        )
