from dataclasses import dataclass
from typing import List, Optional
import threading
from pathlib import Path
from datetime import datetime
import os

from speech_relay.config import Config
from speech_relay.models import BroadcastResult, ProcessedUnit


@dataclass
class TranscriptItem:
    original_text: str
    translated_text: str
    target_language: str
    created_at: datetime


@dataclass
class MarkdownSession:
    session_id: str
    started_at: datetime
    original_path: Path
    translation_path: Path


class TranscriptStore:
    """
    Per-session markdown logs of what was said and what the audience got.
    Used as a broadcast channel, so each send appends one line to both files.
    """

    name = "transcript"

    def __init__(self, config: Config):
        self.config = config
        self.items: List[TranscriptItem] = []
        self.lock = threading.Lock()
        self.session: Optional[MarkdownSession] = None

    def _get_documents_dir(self) -> Path:
        if self.config.transcript_dir:
            return Path(self.config.transcript_dir)
        try:
            import winreg
            with winreg.OpenKey(
                winreg.HKEY_CURRENT_USER,
                r"Software\Microsoft\Windows\CurrentVersion\Explorer\User Shell Folders",
            ) as key:
                docs, _ = winreg.QueryValueEx(key, "Personal")
                return Path(os.path.expandvars(docs)) / "Speech_relay"
        except (ImportError, OSError):
            pass
        return Path.home() / "Documents" / "Speech_relay"

    def _make_unique_session_paths(self, base_dir: Path, started_at: datetime) -> tuple[Path, Path]:
        stamp = started_at.strftime("%Y-%m-%d_%H-%M")
        idx = 0
        while True:
            suffix = "" if idx == 0 else f"_{idx:02d}"
            original = base_dir / f"{stamp}{suffix}_original.md"
            translation = base_dir / f"{stamp}{suffix}_translation.md"
            if not original.exists() and not translation.exists():
                return original, translation
            idx += 1

    def start_session(self):
        with self.lock:
            base_dir = self._get_documents_dir()
            base_dir.mkdir(parents=True, exist_ok=True)

            started_at = datetime.now()
            original_path, translation_path = self._make_unique_session_paths(base_dir, started_at)
            self.session = MarkdownSession(
                session_id=started_at.strftime("%Y%m%d%H%M%S%f"),
                started_at=started_at,
                original_path=original_path,
                translation_path=translation_path,
            )

            started_label = started_at.strftime("%Y-%m-%d %H:%M")
            original_path.write_text(f"# Original Transcript\n\nStarted: {started_label}\n\n", encoding="utf-8")
            translation_path.write_text(f"# Translation\n\nStarted: {started_label}\n\n", encoding="utf-8")
            print(f"[STORE] Session started: {original_path}")
            print(f"[STORE] Session started: {translation_path}")

    def stop_session(self):
        with self.lock:
            self.session = None

    def send(self, translated_text: str, target_language: str, unit: Optional[ProcessedUnit] = None) -> BroadcastResult:
        original = unit.corrected_text if unit is not None else ""
        item = TranscriptItem(original, translated_text, target_language, datetime.now())
        with self.lock:
            self.items.append(item)
            if self.session is None:
                return BroadcastResult(True, translated_text, target_language, channel=self.name)
            try:
                self._append(self.session, item)
            except OSError as e:
                print(f"[STORE] Append failed: {e}")
                return BroadcastResult(False, translated_text, target_language, channel=self.name, error=str(e))
        return BroadcastResult(True, translated_text, target_language, channel=self.name)

    def _append(self, session: MarkdownSession, item: TranscriptItem):
        ts = item.created_at.strftime("%H:%M:%S")
        if item.original_text.strip():
            with session.original_path.open("a", encoding="utf-8") as f:
                f.write(f"- [{ts}] {item.original_text.strip()}\n")
        with session.translation_path.open("a", encoding="utf-8") as f:
            f.write(f"- [{ts}] ({item.target_language}) {item.translated_text.strip()}\n")

    def get_latest(self, n=5) -> List[TranscriptItem]:
        with self.lock:
            return self.items[-n:]
