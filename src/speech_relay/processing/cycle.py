from typing import Callable, Optional
import time

from speech_relay.config import Config, preview
from speech_relay.errors import StageError
from speech_relay.models import (
    BroadcastResult,
    CycleOutcome,
    CycleStatus,
    ProcessedUnit,
    ProcessingTrigger,
    TriggerReason,
)
from speech_relay.processing.pipeline import TextProcessingPipeline
from speech_relay.transcript.accumulator import TranscriptAccumulator


class ProcessingCycleRunner:
    """
    One pull -> process -> broadcast cycle per trigger.

    The broadcaster may return None when it only queued the send; the
    result then arrives later through the broadcast worker's callback.
    """

    def __init__(
        self,
        accumulator: TranscriptAccumulator,
        pipeline: TextProcessingPipeline,
        broadcaster,
        config: Optional[Config] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or Config()
        self.clock = clock
        self.accumulator = accumulator
        self.pipeline = pipeline
        self.broadcaster = broadcaster

    def run(self, trigger: ProcessingTrigger) -> CycleOutcome:
        started = self.clock()

        text = self._pull(trigger.reason)
        if not text:
            return CycleOutcome(CycleStatus.SKIPPED, trigger, reason="no text available")

        try:
            unit = self.pipeline.process_text(text, trigger.reason)
        except StageError as e:
            print(f"[Cycle] {trigger.reason.value} cycle failed at {e.stage.value}: {e}")
            if self.config.requeue_failed_text:
                self.accumulator.requeue(text)
                print(f"[Cycle] Requeued: \"{preview(text, self.config.log_preview_chars)}\"")
            return CycleOutcome(
                CycleStatus.FAILED,
                trigger,
                text=text,
                failed_stage=e.stage,
                error=e,
                reason=str(e),
                latency=self.clock() - started,
            )

        if unit is None:
            return CycleOutcome(
                CycleStatus.SKIPPED,
                trigger,
                text=text,
                reason="duplicate",
                latency=self.clock() - started,
            )

        broadcast = self._broadcast(unit)
        return CycleOutcome(
            CycleStatus.COMPLETED,
            trigger,
            text=text,
            unit=unit,
            broadcast=broadcast,
            latency=self.clock() - started,
        )

    def _pull(self, reason: TriggerReason) -> Optional[str]:
        if reason is TriggerReason.BOUNDARY:
            return self.accumulator.flush_boundary()
        return self.accumulator.flush(reason)

    def _broadcast(self, unit: ProcessedUnit) -> Optional[BroadcastResult]:
        # Processing already succeeded; a failed send is only recorded
        try:
            return self.broadcaster.send(unit.translated_text, unit.target_language, unit=unit)
        except Exception as e:
            print(f"[Cycle] Broadcast raised: {e}")
            return BroadcastResult(
                successful=False,
                translated_text=unit.translated_text,
                target_language=unit.target_language,
                channel=getattr(self.broadcaster, "name", ""),
                error=str(e),
            )

