import threading
import queue
import time
from concurrent.futures import Future
from typing import Callable, List, Optional

from speech_relay.broadcast.worker import BroadcastWorker
from speech_relay.config import Config
from speech_relay.errors import (
    InitializationError,
    PipelineStateError,
    RecognizerError,
    RecognizerUnavailableError,
    RelayError,
)
from speech_relay.models import (
    BroadcastFailed,
    BroadcastResult,
    CycleCompleted,
    CycleFailed,
    CycleOutcome,
    CycleSkipped,
    CycleStatus,
    PipelineErrorEvent,
    PipelineEvent,
    PipelineState,
    PipelineStatistics,
    ProcessingTrigger,
    RawTranscriptEvent,
    StateChanged,
    TriggerReason,
)
from speech_relay.processing.cycle import ProcessingCycleRunner
from speech_relay.processing.pipeline import TextProcessingPipeline
from speech_relay.recognizer import SpeechRecognizer
from speech_relay.ticker import PeriodicTimer
from speech_relay.transcript.accumulator import TranscriptAccumulator
from speech_relay.transcript.timing import BoundaryTimer

Listener = Callable[[PipelineEvent], None]


class PipelineController:
    """
    Session state machine.

    All session state (accumulator, duplicate guard, pipeline state,
    statistics) is owned by one actor thread. Recognizer callbacks, timer
    ticks, boundary timers, broadcast results and control commands are all
    messages on its inbox; nothing else touches that state. Public control
    methods post a command and block until the actor has run it.
    """

    def __init__(
        self,
        recognizer: SpeechRecognizer,
        pipeline: TextProcessingPipeline,
        broadcaster,
        config: Optional[Config] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or Config()
        self.clock = clock
        self.recognizer = recognizer
        self.pipeline = pipeline
        self.accumulator = TranscriptAccumulator(self.config, clock)
        self.boundary_timer = BoundaryTimer(self.config, clock)
        self.broadcast_worker = BroadcastWorker(broadcaster, on_result=self._on_broadcast_result)
        self.runner = ProcessingCycleRunner(self.accumulator, pipeline, self.broadcast_worker, self.config, clock)

        self.state = PipelineState.IDLE
        self.statistics = PipelineStatistics()
        self.target_language: Optional[str] = None
        self.listeners: List[Listener] = []

        self.inbox: queue.Queue = queue.Queue()
        self.thread: Optional[threading.Thread] = None
        self.ticker: Optional[PeriodicTimer] = None
        self.tick_pending = threading.Event()

        self.stability_timer: Optional[threading.Timer] = None
        self.segment_timer: Optional[threading.Timer] = None
        self.boundary_generation = 0
        self.stability_generation = 0

        self.paused_at: Optional[float] = None
        self.recognizer_failures = 0

    # --- Public API (any thread) ---

    def add_listener(self, listener: Listener):
        self.listeners.append(listener)

    def remove_listener(self, listener: Listener):
        if listener in self.listeners:
            self.listeners.remove(listener)

    def initialize_pipeline(self, target_language: Optional[str] = None):
        return self._call(self._do_initialize, target_language or self.config.target_language)

    def start_pipeline(self):
        return self._call(self._do_start)

    def pause_pipeline(self, reason: str = "user"):
        return self._call(self._do_pause, reason)

    def resume_pipeline(self):
        return self._call(self._do_resume)

    def stop_pipeline(self) -> Optional[CycleOutcome]:
        """Drain residual text through one last cycle, then go idle."""
        try:
            return self._call(self._do_stop)
        finally:
            if self.state is PipelineState.IDLE:
                self._shutdown_actor()

    def process_now(self) -> CycleOutcome:
        """Run a manual cycle over whatever is buffered."""
        return self._call(self._do_manual)

    def tick(self) -> Optional[CycleOutcome]:
        """Run one scheduler tick synchronously, as the periodic timer would."""
        return self._call(self._on_tick)

    def get_statistics(self) -> dict:
        return self._call(self._do_statistics)

    def wait_until_processed(self, timeout: Optional[float] = None):
        """Return once every message posted so far has been handled."""
        self._call(lambda: None, timeout=timeout)

    # Recognizer callbacks

    def submit_transcript(self, text: str, is_final_hint: bool = False):
        self._post("transcript", RawTranscriptEvent(text, is_final_hint, self.clock()))

    def notify_no_match(self):
        self._post("no_match", None)

    def notify_recognizer_error(self, error: Exception):
        self._post("recognizer_error", error)

    # --- Actor plumbing ---

    def _post(self, kind: str, payload=None):
        self.inbox.put((kind, payload))

    def _call(self, fn, *args, timeout: Optional[float] = None):
        if threading.current_thread() is self.thread:
            return fn(*args)
        self._ensure_actor()
        future: Future = Future()
        self._post("command", (fn, args, future))
        return future.result(timeout=timeout)

    def _ensure_actor(self):
        if self.thread and self.thread.is_alive():
            return
        self.thread = threading.Thread(target=self._run, name="pipeline-controller", daemon=True)
        self.thread.start()

    def _shutdown_actor(self):
        if not self.thread:
            return
        self._post("shutdown", None)
        if self.thread is not threading.current_thread():
            self.thread.join(timeout=5.0)
        self.thread = None

    def _run(self):
        while True:
            try:
                kind, payload = self.inbox.get(timeout=0.5)
            except queue.Empty:
                continue

            if kind == "shutdown":
                break
            try:
                self._dispatch(kind, payload)
            except Exception as e:
                print(f"[Controller] Error handling {kind}: {e}")
                self._emit(PipelineErrorEvent(component="controller", error=e, recoverable=True))

    def _dispatch(self, kind: str, payload):
        if kind == "command":
            fn, args, future = payload
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)
        elif kind == "transcript":
            self._on_transcript(payload)
        elif kind == "no_match":
            self._on_no_match()
        elif kind == "recognizer_error":
            self._on_recognizer_error(payload)
        elif kind == "tick":
            self._on_tick()
        elif kind == "boundary":
            self._on_boundary(*payload)
        elif kind == "broadcast_result":
            self._record_broadcast(payload)
        else:
            print(f"[Controller] Unknown message: {kind}")

    # --- Commands (actor thread) ---

    def _do_initialize(self, target_language: str):
        if not self.state.can_initialize:
            raise PipelineStateError(f"Cannot initialize from {self.state.value}", state=self.state.value)

        self._set_state(PipelineState.INITIALIZING)
        try:
            self.pipeline.initialize(target_language)
        except RelayError as e:
            self._set_state(PipelineState.ERROR)
            self._emit(PipelineErrorEvent(component="pipeline", error=e, recoverable=False))
            if isinstance(e, InitializationError):
                raise
            raise InitializationError(str(e), target_language=target_language) from e

        # Fresh session: nothing carries over from a previous speaker
        self.target_language = target_language
        self.accumulator.reset()
        self.pipeline.guard.clear()
        self.boundary_timer.stop()
        self.statistics = PipelineStatistics()
        self._set_state(PipelineState.READY)

    def _do_start(self):
        if not self.state.can_start:
            raise PipelineStateError(f"Cannot start from {self.state.value}", state=self.state.value)
        if self.state is PipelineState.IDLE:
            self._do_initialize(self.target_language or self.config.target_language)

        self.recognizer_failures = 0
        self.statistics.started_at = self.clock()
        self.broadcast_worker.start()
        try:
            self._start_recognizer()
        except RecognizerError as e:
            self._fail("recognizer", e)
            raise
        self._start_ticker()
        self._set_state(PipelineState.ACTIVE)

    def _do_pause(self, reason: str):
        if not self.state.can_pause:
            raise PipelineStateError(f"Cannot pause from {self.state.value}", state=self.state.value)
        self._stop_ticker()
        self._cancel_boundary_timers()
        self.recognizer.pause()
        self.paused_at = self.clock()
        print(f"[Controller] Paused ({reason}), buffered: {len(self.accumulator.candidate_text())} chars")
        self._set_state(PipelineState.PAUSED)

    def _do_resume(self):
        if not self.state.can_resume:
            raise PipelineStateError(f"Cannot resume from {self.state.value}", state=self.state.value)
        if self.paused_at is not None:
            self.statistics.paused_duration += self.clock() - self.paused_at
            self.paused_at = None
        self.recognizer.resume()
        self._start_ticker()
        self._set_state(PipelineState.ACTIVE)

    def _do_stop(self) -> Optional[CycleOutcome]:
        if self.state is PipelineState.ERROR:
            self._teardown()
            self._set_state(PipelineState.IDLE)
            return None
        if not self.state.can_stop:
            raise PipelineStateError(f"Cannot stop from {self.state.value}", state=self.state.value)

        if self.paused_at is not None:
            self.statistics.paused_duration += self.clock() - self.paused_at
            self.paused_at = None
        self._set_state(PipelineState.STOPPING)
        self._stop_ticker()
        self._cancel_boundary_timers()
        self.recognizer.stop()
        self._drain_inbox(("transcript", "no_match"))

        outcome = self._run_cycle(TriggerReason.STOP)

        self.broadcast_worker.stop()
        self._drain_inbox(("broadcast_result",))
        self._set_state(PipelineState.IDLE)
        print(f"[Controller] Stopped. {self.statistics.snapshot()}")
        return outcome

    def _do_manual(self) -> CycleOutcome:
        if self.state is not PipelineState.ACTIVE:
            raise PipelineStateError(f"Cannot process from {self.state.value}", state=self.state.value)
        return self._run_cycle(TriggerReason.MANUAL)

    def _do_statistics(self) -> dict:
        snapshot = self.statistics.snapshot()
        snapshot["state"] = self.state.value
        snapshot["session_duration_s"] = round(self.statistics.session_duration(self.clock()), 2)
        snapshot["duplicate_guard"] = self.pipeline.guard.get_statistics()
        snapshot["accumulator"] = self.accumulator.get_analytics()
        snapshot["speech_pattern"] = self.boundary_timer.speech_pattern()
        return snapshot

    # --- Events (actor thread) ---

    def _on_transcript(self, event: RawTranscriptEvent):
        if self.state not in (PipelineState.ACTIVE, PipelineState.STOPPING):
            return
        self.recognizer_failures = 0
        if not self.accumulator.update(event.text, event.is_final_hint):
            return
        if self.state is not PipelineState.ACTIVE:
            return

        if self.config.boundary_timer_enabled:
            self._arm_boundary_timers()
        if self.config.early_boundary_enabled and self.accumulator.has_early_boundary(self.accumulator.candidate_text()):
            self._run_cycle(TriggerReason.BOUNDARY)

    def _on_no_match(self):
        if self.state in (PipelineState.ACTIVE, PipelineState.STOPPING):
            self.accumulator.commit_partial()

    def _on_recognizer_error(self, error: Exception):
        if self.state is not PipelineState.ACTIVE:
            return
        if isinstance(error, RecognizerUnavailableError):
            self._fail("recognizer", error)
            return

        self.recognizer_failures += 1
        if self.recognizer_failures > self.config.max_recognizer_retries:
            self._fail("recognizer", error)
            return
        print(f"[Controller] Recognizer error ({self.recognizer_failures}/{self.config.max_recognizer_retries}), restarting: {error}")
        self._emit(PipelineErrorEvent(component="recognizer", error=error, recoverable=True))
        self.accumulator.commit_partial()
        self.recognizer.stop()
        try:
            self._start_recognizer()
        except RecognizerError as e:
            self._fail("recognizer", e)

    def _on_tick(self) -> Optional[CycleOutcome]:
        self.tick_pending.clear()
        if self.state is not PipelineState.ACTIVE:
            return None
        if self.accumulator.should_force_flush():
            return self._run_cycle(TriggerReason.FORCE_FLUSH)
        return self._run_cycle(TriggerReason.TIMER)

    def _on_boundary(self, generation: int, cause: str):
        current = self.stability_generation if cause == "stability" else self.boundary_generation
        if generation != current or self.state is not PipelineState.ACTIVE:
            return
        print(f"[Controller] Boundary confirmed ({cause}, {self.boundary_timer.speech_pattern()} speech)")
        self.accumulator.confirm_boundary()
        self._cancel_boundary_timers()
        self._run_cycle(TriggerReason.BOUNDARY)

    def _record_broadcast(self, result: BroadcastResult):
        self.statistics.record_broadcast(result)
        if not result.successful:
            print(f"[Controller] Broadcast failed: {result.error}")
            self._emit(BroadcastFailed(result=result))

    # --- Cycles ---

    def _run_cycle(self, reason: TriggerReason) -> CycleOutcome:
        trigger = ProcessingTrigger(reason, self.clock())
        try:
            outcome = self.runner.run(trigger)
        except Exception as e:
            print(f"[Controller] {reason.value} cycle error: {e}")
            outcome = CycleOutcome(CycleStatus.FAILED, trigger, error=e, reason=str(e))
            self._emit(PipelineErrorEvent(component="cycle", error=e, recoverable=True))

        self.statistics.record_cycle(outcome)
        if outcome.text and self.boundary_timer.segment_active:
            self._cancel_boundary_timers()

        if outcome.status is CycleStatus.COMPLETED:
            self._emit(CycleCompleted(unit=outcome.unit, latency=outcome.latency))
            if outcome.broadcast is not None and not outcome.broadcast.successful:
                self._emit(BroadcastFailed(result=outcome.broadcast))
        elif outcome.status is CycleStatus.FAILED:
            self._emit(CycleFailed(
                trigger_reason=reason,
                text=outcome.text or "",
                failed_stage=outcome.failed_stage,
                error=outcome.error,
            ))
        else:
            self._emit(CycleSkipped(trigger_reason=reason, reason=outcome.reason))
        return outcome

    def _fail(self, component: str, error: Exception):
        """Unrecoverable failure: drain what is buffered, then enter error."""
        print(f"[Controller] Unrecoverable {component} error: {error}")
        self._emit(PipelineErrorEvent(component=component, error=error, recoverable=False))
        self._stop_ticker()
        self._cancel_boundary_timers()
        self.recognizer.stop()
        if self.accumulator.has_pending and self.pipeline.target_language:
            self._run_cycle(TriggerReason.STOP)
        self._set_state(PipelineState.ERROR)

    def _teardown(self):
        self._stop_ticker()
        self._cancel_boundary_timers()
        self.recognizer.stop()
        self.broadcast_worker.stop()
        self._drain_inbox(("broadcast_result",))

    def _drain_inbox(self, kinds):
        """Handle queued messages of the given kinds now; keep the rest in order."""
        deferred = []
        while True:
            try:
                kind, payload = self.inbox.get_nowait()
            except queue.Empty:
                break
            if kind in kinds:
                self._dispatch(kind, payload)
            else:
                deferred.append((kind, payload))
        for item in deferred:
            self.inbox.put(item)

    # --- Timers ---

    def _start_ticker(self):
        self._stop_ticker()
        self.tick_pending.clear()
        self.ticker = PeriodicTimer(self.config.processing_interval_s, self._schedule_tick, name="pipeline-ticker")
        self.ticker.start()

    def _stop_ticker(self):
        if self.ticker:
            self.ticker.stop()
            self.ticker = None

    def _schedule_tick(self):
        # One tick in flight at most; a slow cycle must not pile up ticks
        if self.tick_pending.is_set():
            return
        self.tick_pending.set()
        self._post("tick", None)

    def _arm_boundary_timers(self):
        timeout = self.boundary_timer.reset()
        generation = self.boundary_generation
        self.stability_generation += 1
        if self.stability_timer:
            self.stability_timer.cancel()
        self.stability_timer = threading.Timer(
            timeout, self._post, args=("boundary", (self.stability_generation, "stability"))
        )
        self.stability_timer.daemon = True
        self.stability_timer.start()

        if self.segment_timer is None:
            remaining = self.boundary_timer.max_duration_remaining()
            self.segment_timer = threading.Timer(remaining, self._post, args=("boundary", (generation, "max-duration")))
            self.segment_timer.daemon = True
            self.segment_timer.start()

    def _cancel_boundary_timers(self):
        # Stale timer messages already in the inbox are ignored by generation
        self.boundary_generation += 1
        self.stability_generation += 1
        for timer in (self.stability_timer, self.segment_timer):
            if timer:
                timer.cancel()
        self.stability_timer = None
        self.segment_timer = None
        self.boundary_timer.stop()

    def _start_recognizer(self):
        self.recognizer.start(
            on_result=self.submit_transcript,
            on_no_match=self.notify_no_match,
            on_error=self.notify_recognizer_error,
        )

    # --- State ---

    def _set_state(self, state: PipelineState):
        if state is self.state:
            return
        previous = self.state
        self.state = state
        print(f"[Controller] {previous.value} -> {state.value}")
        self._emit(StateChanged(previous=previous, current=state))

    def _on_broadcast_result(self, result: BroadcastResult):
        self._post("broadcast_result", result)

    def _emit(self, event: PipelineEvent):
        for listener in list(self.listeners):
            try:
                listener(event)
            except Exception as e:
                print(f"[Controller] Listener error: {e}")
