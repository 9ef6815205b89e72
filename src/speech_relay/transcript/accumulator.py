import time
from typing import Callable, Dict, Optional

from speech_relay.config import Config, preview
from speech_relay.models import TriggerReason
from speech_relay.transcript.boundary import BoundaryDetector

SENTENCE_ENDERS = (".", "!", "?")


def combine_texts(accumulated: str, new_text: str) -> str:
    """Join two fragments, inserting a period when the first lacks terminal punctuation."""
    if not accumulated:
        return new_text
    if not new_text:
        return accumulated
    connector = " " if accumulated.endswith(SENTENCE_ENDERS) else ". "
    return accumulated + connector + new_text


class TranscriptAccumulator:
    """
    Turns the recognizer's stream of partial results into flushable text.

    The recognizer sends the most complete partial of the current utterance
    on every callback, so `pending` is replaced rather than appended to.
    When the recognizer silently restarts, the new partial is unrelated to
    the old one; the old pending text is moved into `carry_over` so it is
    not lost. A flush returns carry-over and pending text together.
    """

    def __init__(self, config: Optional[Config] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or Config()
        self.clock = clock
        self.detector = BoundaryDetector(self.config)

        self.pending: str = ""
        self.carry_over: str = ""
        self.last_update: str = ""
        self.last_flushed: str = ""
        self.boundary_time: float = self.clock()
        self.boundary_confirmed: bool = False
        self.restart_count: int = 0
        self.flush_count: int = 0

    # --- Input ---

    def update(self, raw_text: str, is_final_hint: bool = False) -> bool:
        """
        Feed one recognizer result. Returns True when pending text changed.
        Exact repeats and empty input are ignored.
        """
        text = raw_text.strip()
        if not text or text == self.last_update:
            return False
        self.last_update = text

        text = self._strip_flushed_prefix(text)
        if not text:
            return False

        if not self.has_pending:
            # staleness is measured from the first buffered words
            self.boundary_time = self.clock()

        if self._is_likely_restart(text):
            self.restart_count += 1
            print(f"[Accumulator] Recognizer restart detected, keeping: \"{preview(self.pending, self.config.log_preview_chars)}\"")
            self._commit_pending()
        self.pending = text

        if is_final_hint:
            self._commit_pending()
        return True

    def commit_partial(self):
        """Keep the last-seen partial as a best-effort result (final hint or no-match)."""
        if self.pending:
            print(f"[Accumulator] Committing partial: \"{preview(self.pending, self.config.log_preview_chars)}\"")
        self._commit_pending()

    def requeue(self, text: str):
        """Put text back ahead of any carry-over, e.g. after a failed translation."""
        text = text.strip()
        if not text:
            return
        self.carry_over = combine_texts(text, self.carry_over)
        if self.last_flushed == text:
            self.last_flushed = ""

    def _strip_flushed_prefix(self, text: str) -> str:
        # A partial that continues an already flushed utterance only adds its tail
        flushed = self.last_flushed
        if not flushed or len(text) < len(flushed):
            return text
        if not text.lower().startswith(flushed.lower()):
            return text
        tail = text[len(flushed):]
        if tail and tail[0].isalnum() and flushed[-1].isalnum():
            # mid-word match, e.g. "cat" vs "category"
            return text
        return tail.lstrip(" .,;:!?")

    def _is_likely_restart(self, text: str) -> bool:
        if not self.pending:
            return False
        if len(text) >= len(self.pending) * self.config.restart_length_ratio:
            return False
        window = self.config.restart_token_window
        new_words = text.lower().split()[:window]
        old_words = self.pending.lower().split()[:window]
        return not any(word in old_words for word in new_words)

    def _commit_pending(self):
        pending = self.pending.strip()
        self.pending = ""
        if not pending:
            return
        if pending == self.last_flushed.strip():
            print("[Accumulator] Skipping carry-over, text was just flushed")
            return
        self.carry_over = combine_texts(self.carry_over, pending)

    # --- Output ---

    def candidate_text(self) -> str:
        return combine_texts(self.carry_over.strip(), self.pending.strip())

    def flush(self, reason: TriggerReason = TriggerReason.TIMER) -> Optional[str]:
        candidate = self.candidate_text()
        if not candidate:
            return None

        if len(candidate) < self.config.min_flush_length and not reason.bypasses_min_length:
            return None

        if candidate == self.last_flushed:
            self._reset_stores()
            return None

        self._reset_stores()
        self.last_flushed = candidate
        self.flush_count += 1
        print(f"[Accumulator] Flushed ({reason.value}): \"{preview(candidate, self.config.log_preview_chars)}\"")
        return candidate

    def flush_boundary(self) -> Optional[str]:
        """Flush only if a boundary was confirmed by timing or the text shows one."""
        candidate = self.candidate_text()
        if not candidate:
            return None
        if self.boundary_confirmed or self.has_early_boundary(candidate):
            return self.flush(TriggerReason.BOUNDARY)
        return None

    def _reset_stores(self):
        self.pending = ""
        self.carry_over = ""
        self.boundary_confirmed = False
        self.boundary_time = self.clock()

    # --- Boundaries ---

    def should_force_flush(self) -> bool:
        if not self.has_pending:
            return False
        return self.clock() - self.boundary_time >= self.config.force_flush_timeout_s

    def confirm_boundary(self):
        self.boundary_confirmed = True
        self.boundary_time = self.clock()

    def has_early_boundary(self, text: str) -> bool:
        return self.detector.has_early_boundary(text)

    # --- State ---

    @property
    def has_pending(self) -> bool:
        return bool(self.candidate_text())

    def reset(self):
        """Clear everything, including flush tracking. Used between sessions."""
        self._reset_stores()
        self.last_update = ""
        self.last_flushed = ""
        self.restart_count = 0
        self.flush_count = 0

    def get_analytics(self) -> Dict:
        return {
            "pending_length": len(self.pending),
            "carry_over_length": len(self.carry_over),
            "total_length": len(self.candidate_text()),
            "last_flushed_length": len(self.last_flushed),
            "seconds_since_boundary": round(self.clock() - self.boundary_time, 2),
            "restart_count": self.restart_count,
            "flush_count": self.flush_count,
            "has_pending": self.has_pending,
        }
