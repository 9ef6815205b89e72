from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional
import time


class TriggerReason(str, Enum):
    TIMER = "timer"
    FORCE_FLUSH = "forceFlush"
    STOP = "stop"
    MANUAL = "manual"
    BOUNDARY = "boundary"

    @property
    def skips_duplicate_analysis(self) -> bool:
        # The last flush of a session always reaches the audience
        return self is TriggerReason.STOP

    @property
    def bypasses_min_length(self) -> bool:
        return self in (TriggerReason.STOP, TriggerReason.FORCE_FLUSH)


class ProcessingType(str, Enum):
    NEW_CONTENT = "new_content"
    EXPANSION = "expansion"
    DUPLICATE = "duplicate"


class ProcessingStage(str, Enum):
    DUPLICATE_ANALYSIS = "duplicate_analysis"
    CORRECTION = "correction"
    TRANSLATION = "translation"
    BROADCAST = "broadcast"


class PipelineState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPING = "stopping"
    ERROR = "error"

    @property
    def can_initialize(self) -> bool:
        return self in (PipelineState.IDLE, PipelineState.ERROR)

    @property
    def can_start(self) -> bool:
        return self in (PipelineState.READY, PipelineState.IDLE)

    @property
    def can_pause(self) -> bool:
        return self is PipelineState.ACTIVE

    @property
    def can_resume(self) -> bool:
        return self is PipelineState.PAUSED

    @property
    def can_stop(self) -> bool:
        return self in (PipelineState.ACTIVE, PipelineState.PAUSED)


class CycleStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class RawTranscriptEvent:
    text: str
    is_final_hint: bool = False         # advisory only
    arrival_time: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class ProcessingTrigger:
    reason: TriggerReason
    timestamp: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class DuplicateRecord:
    text: str            # text as submitted; the cache key is its normalized form
    timestamp: float
    confirmed: bool = False


@dataclass(frozen=True)
class DuplicateAnalysis:
    should_process: bool
    processing_type: ProcessingType
    text_to_remove: Optional[str] = None
    similarity: float = 0.0
    reason: str = ""


@dataclass(frozen=True)
class StageLatencies:
    duplicate_analysis: float = 0.0
    correction: float = 0.0
    translation: float = 0.0


@dataclass(frozen=True)
class ProcessedUnit:
    original_text: str
    corrected_text: str
    translated_text: str
    target_language: str
    trigger_reason: TriggerReason
    stage_latencies: StageLatencies
    total_latency: float
    processing_type: ProcessingType = ProcessingType.NEW_CONTENT
    replaced_text: Optional[str] = None    # cached text this unit supersedes
    correction_applied: bool = False

    @property
    def is_replacement(self) -> bool:
        return self.processing_type is ProcessingType.EXPANSION


@dataclass(frozen=True)
class BroadcastResult:
    successful: bool
    translated_text: str
    target_language: str
    latency: float = 0.0
    channel: str = ""
    error: Optional[str] = None


@dataclass(frozen=True)
class CycleOutcome:
    status: CycleStatus
    trigger: ProcessingTrigger
    text: Optional[str] = None
    unit: Optional[ProcessedUnit] = None
    broadcast: Optional[BroadcastResult] = None   # None while the send is queued
    failed_stage: Optional[ProcessingStage] = None
    error: Optional[BaseException] = None
    reason: str = ""
    latency: float = 0.0


# --- Pipeline events ---

@dataclass(frozen=True)
class PipelineEvent:
    timestamp: float = field(default_factory=time.monotonic, kw_only=True)


@dataclass(frozen=True)
class StateChanged(PipelineEvent):
    previous: PipelineState
    current: PipelineState


@dataclass(frozen=True)
class CycleSkipped(PipelineEvent):
    trigger_reason: TriggerReason
    reason: str


@dataclass(frozen=True)
class CycleCompleted(PipelineEvent):
    unit: ProcessedUnit
    latency: float


@dataclass(frozen=True)
class CycleFailed(PipelineEvent):
    trigger_reason: TriggerReason
    text: str
    failed_stage: Optional[ProcessingStage]
    error: BaseException


@dataclass(frozen=True)
class BroadcastFailed(PipelineEvent):
    result: BroadcastResult


@dataclass(frozen=True)
class PipelineErrorEvent(PipelineEvent):
    component: str
    error: BaseException
    recoverable: bool


@dataclass
class PipelineStatistics:
    total_cycles: int = 0
    completed_cycles: int = 0
    failed_cycles: int = 0
    skipped_cycles: int = 0
    duplicates_skipped: int = 0
    broadcasts_succeeded: int = 0
    broadcasts_failed: int = 0
    total_cycle_latency: float = 0.0
    paused_duration: float = 0.0
    started_at: Optional[float] = None
    trigger_counts: Dict[TriggerReason, int] = field(default_factory=dict)
    stage_failures: Dict[ProcessingStage, int] = field(default_factory=dict)

    @property
    def average_cycle_latency(self) -> float:
        if self.completed_cycles == 0:
            return 0.0
        return self.total_cycle_latency / self.completed_cycles

    def session_duration(self, now: float) -> float:
        if self.started_at is None:
            return 0.0
        return max(0.0, now - self.started_at - self.paused_duration)

    def record_cycle(self, outcome: CycleOutcome):
        reason = outcome.trigger.reason
        self.total_cycles += 1
        self.trigger_counts[reason] = self.trigger_counts.get(reason, 0) + 1
        if outcome.status is CycleStatus.COMPLETED:
            self.completed_cycles += 1
            self.total_cycle_latency += outcome.latency
        elif outcome.status is CycleStatus.FAILED:
            self.failed_cycles += 1
            if outcome.failed_stage is not None:
                stage = outcome.failed_stage
                self.stage_failures[stage] = self.stage_failures.get(stage, 0) + 1
        else:
            self.skipped_cycles += 1
            if outcome.text:
                # text was pulled but rejected by the duplicate guard
                self.duplicates_skipped += 1
        if outcome.broadcast is not None:
            self.record_broadcast(outcome.broadcast)

    def record_broadcast(self, result: BroadcastResult):
        if result.successful:
            self.broadcasts_succeeded += 1
        else:
            self.broadcasts_failed += 1
            self.stage_failures[ProcessingStage.BROADCAST] = (
                self.stage_failures.get(ProcessingStage.BROADCAST, 0) + 1
            )

    def snapshot(self) -> Dict:
        return {
            "total_cycles": self.total_cycles,
            "completed_cycles": self.completed_cycles,
            "failed_cycles": self.failed_cycles,
            "skipped_cycles": self.skipped_cycles,
            "duplicates_skipped": self.duplicates_skipped,
            "broadcasts_succeeded": self.broadcasts_succeeded,
            "broadcasts_failed": self.broadcasts_failed,
            "average_cycle_latency_s": round(self.average_cycle_latency, 3),
            "trigger_counts": {k.value: v for k, v in self.trigger_counts.items()},
            "stage_failures": {k.value: v for k, v in self.stage_failures.items()},
        }
