from collections import deque
from pathlib import Path
from typing import Deque, Optional, Tuple

from speech_relay.config import Config
from speech_relay.models import BroadcastResult, ProcessedUnit

VTT_HEADER = "WEBVTT\n\n00:00:00.000 --> 99:59:59.999\n"


class VttBroadcastChannel:
    """
    Keeps a live WebVTT file with the latest broadcast segments.

    OBS "Text (from file)" and VLC both re-read the file, so the whole
    content is rewritten with one long cue on every send.
    """

    name = "vtt"

    def __init__(self, config: Config, path: Optional[str] = None):
        self.config = config
        self.path = Path(path or config.vtt_path)
        self.history: Deque[Tuple[str, str]] = deque(maxlen=max(1, config.vtt_history))

    def render(self) -> str:
        blocks = []
        for original, translated in self.history:
            blocks.append(f"{original}\n{translated}" if original else translated)
        return VTT_HEADER + "\n\n".join(blocks)

    def send(self, translated_text: str, target_language: str, unit: Optional[ProcessedUnit] = None) -> BroadcastResult:
        original = unit.corrected_text if unit is not None else ""
        if unit is not None and unit.replaced_text and self.history:
            # An expansion supersedes the segment it grew from
            self.history.pop()
        self.history.append((original, translated_text))

        try:
            self._write(self.render())
        except OSError as e:
            print(f"[VTT] Write error: {e}")
            return BroadcastResult(False, translated_text, target_language, channel=self.name, error=str(e))
        return BroadcastResult(True, translated_text, target_language, channel=self.name)

    def clear(self):
        self.history.clear()
        try:
            self._write(VTT_HEADER)
        except OSError as e:
            print(f"[VTT] Write error: {e}")

    def _write(self, content: str):
        # OBS polls this file; replace it in one step
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(self.path)
