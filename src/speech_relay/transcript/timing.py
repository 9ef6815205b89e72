import time
from typing import Callable, Optional

from speech_relay.config import Config


class BoundaryTimer:
    """
    Timing strategy that confirms a sentence boundary when the recognizer
    goes quiet (stability timeout) or a segment runs too long (max
    segment duration).

    The stability timeout adapts to speech rate: rapid partial resets
    shorten it, sparse resets lengthen it. It is always clamped to the
    configured bounds. This class only computes deadlines; the controller
    owns the actual timers.
    """

    FAST_RESET_INTERVAL_S = 0.5
    SLOW_RESET_INTERVAL_S = 2.0

    def __init__(self, config: Optional[Config] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or Config()
        self.clock = clock
        self.segment_start: Optional[float] = None
        self.last_reset: Optional[float] = None
        self.reset_count: int = 0
        self.average_interval: float = 0.0

    @property
    def segment_active(self) -> bool:
        return self.segment_start is not None

    def start_segment(self):
        self.segment_start = self.clock()
        self.last_reset = None
        self.reset_count = 0
        self.average_interval = 0.0

    def stop(self):
        self.segment_start = None
        self.last_reset = None

    def segment_duration(self) -> float:
        if self.segment_start is None:
            return 0.0
        return self.clock() - self.segment_start

    def max_duration_remaining(self) -> float:
        return max(0.0, self.config.max_segment_duration_s - self.segment_duration())

    def is_approaching_max_duration(self) -> bool:
        return self.segment_duration() > self.config.max_segment_duration_s * 0.8

    def reset(self) -> float:
        """Register a new partial. Returns the stability timeout to arm."""
        if self.segment_start is None:
            self.start_segment()

        now = self.clock()
        if self.last_reset is not None:
            interval = now - self.last_reset
            self.reset_count += 1
            if self.average_interval == 0.0:
                self.average_interval = interval
            else:
                self.average_interval = (self.average_interval + interval) / 2.0
        self.last_reset = now
        return self.stability_timeout()

    def stability_timeout(self) -> float:
        timeout = self.config.stability_timeout_s

        if self.reset_count > 5 and self.average_interval < self.FAST_RESET_INTERVAL_S:
            timeout *= 0.7
        if self.is_approaching_max_duration():
            timeout *= 0.6
        if self.reset_count > 2 and self.average_interval > self.SLOW_RESET_INTERVAL_S:
            timeout *= 1.3

        return min(max(timeout, self.config.min_stability_timeout_s), self.config.max_stability_timeout_s)

    def speech_pattern(self) -> str:
        if self.reset_count == 0:
            return "silent"
        per_second = self.reset_count / max(1.0, self.segment_duration())
        if per_second > 3.0:
            return "very-fast"
        if per_second > 2.0:
            return "fast"
        if per_second > 1.0:
            return "normal"
        if per_second > 0.5:
            return "slow"
        return "very-slow"
