import threading
import time
import unittest

from speech_relay.config import Config
from speech_relay.controller import PipelineController
from speech_relay.errors import InitializationError, PipelineStateError, RecognizerError, RecognizerUnavailableError
from speech_relay.models import (
    CycleCompleted,
    CycleFailed,
    CycleSkipped,
    CycleStatus,
    PipelineErrorEvent,
    PipelineState,
    StateChanged,
    TriggerReason,
)
from speech_relay.processing.pipeline import TextProcessingPipeline

from tests.helpers import BlockingCorrection, FakeCorrection, FakeRecognizer, FakeTranslation, RecordingChannel


class TestPipelineController(unittest.TestCase):
    def setUp(self):
        # Long interval so only explicit ticks run cycles
        self.config = Config(processing_interval_s=3600.0)
        self.build()

    def build(self, correction=None, **overrides):
        if overrides:
            self.config = Config(processing_interval_s=3600.0, **overrides)
        self.recognizer = FakeRecognizer()
        self.translation = FakeTranslation({"Hello world.": "Hola mundo."})
        self.correction = correction or FakeCorrection({"Hello world": "Hello world."})
        self.pipeline = TextProcessingPipeline(self.correction, self.translation, config=self.config)
        self.channel = RecordingChannel()
        self.controller = PipelineController(self.recognizer, self.pipeline, self.channel, config=self.config)
        self.events = []
        self.controller.add_listener(self.events.append)

    def tearDown(self):
        if self.controller.state in (PipelineState.ACTIVE, PipelineState.PAUSED, PipelineState.ERROR):
            self.controller.stop_pipeline()
        self.controller._shutdown_actor()
        self.pipeline.shutdown()

    def start(self):
        self.controller.initialize_pipeline("es")
        self.controller.start_pipeline()

    def speak(self, text, is_final_hint=False):
        self.recognizer.on_result(text, is_final_hint)
        self.controller.wait_until_processed(timeout=5.0)

    def wait_for_event(self, predicate, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if any(predicate(e) for e in list(self.events)):
                return True
            time.sleep(0.01)
        return False

    def sent_texts(self):
        self.controller.broadcast_worker.wait_idle()
        return [translated for translated, _, _ in self.channel.sent]

    def test_lifecycle_states(self):
        self.start()
        self.assertEqual(self.controller.state, PipelineState.ACTIVE)
        self.assertEqual(self.recognizer.start_count, 1)

        states = [e.current for e in self.events if isinstance(e, StateChanged)]
        self.assertEqual(states, [PipelineState.INITIALIZING, PipelineState.READY, PipelineState.ACTIVE])

    def test_timer_tick_processes_buffered_text(self):
        self.start()
        self.speak("Hello world")
        outcome = self.controller.tick()

        self.assertEqual(outcome.status, CycleStatus.COMPLETED)
        self.assertEqual(outcome.trigger.reason, TriggerReason.TIMER)
        self.assertEqual(outcome.unit.translated_text, "Hola mundo.")
        self.assertEqual(self.sent_texts(), ["Hola mundo."])
        self.assertTrue(any(isinstance(e, CycleCompleted) for e in self.events))

    def test_repeated_text_is_not_rebroadcast(self):
        self.start()
        self.speak("Hello world")
        self.controller.tick()
        self.speak("hello, world")
        outcome = self.controller.tick()

        self.assertEqual(outcome.status, CycleStatus.SKIPPED)
        self.assertEqual(self.sent_texts(), ["Hola mundo."])
        self.assertEqual(self.controller.get_statistics()["duplicates_skipped"], 1)

    def test_empty_tick_is_skipped(self):
        self.start()
        outcome = self.controller.tick()
        self.assertEqual(outcome.status, CycleStatus.SKIPPED)
        self.assertTrue(any(isinstance(e, CycleSkipped) for e in self.events))

    def test_pause_and_resume_keep_pending_text(self):
        self.start()
        self.speak("The meeting will start soon")
        self.controller.pause_pipeline("test")

        self.assertEqual(self.controller.state, PipelineState.PAUSED)
        self.assertTrue(self.recognizer.paused)
        self.assertEqual(self.controller.accumulator.candidate_text(), "The meeting will start soon")

        # Late results and ticks while paused change nothing
        self.speak("Something else entirely")
        self.assertIsNone(self.controller.tick())
        self.assertEqual(self.controller.accumulator.candidate_text(), "The meeting will start soon")

        self.controller.resume_pipeline()
        self.assertFalse(self.recognizer.paused)
        outcome = self.controller.tick()
        self.assertEqual(outcome.unit.original_text, "The meeting will start soon")
        self.assertEqual(len(self.sent_texts()), 1)

    def test_stop_drains_residual_text(self):
        self.start()
        self.speak("Bye")
        outcome = self.controller.stop_pipeline()

        self.assertEqual(outcome.status, CycleStatus.COMPLETED)
        self.assertEqual(outcome.trigger.reason, TriggerReason.STOP)
        self.assertEqual(outcome.unit.original_text, "Bye")
        self.assertEqual([t for t, _, _ in self.channel.sent], ["[es] Bye"])
        self.assertEqual(self.controller.state, PipelineState.IDLE)
        self.assertTrue(self.recognizer.stopped)

    def test_stop_with_nothing_buffered(self):
        self.start()
        outcome = self.controller.stop_pipeline()
        self.assertEqual(outcome.status, CycleStatus.SKIPPED)
        self.assertEqual(self.controller.state, PipelineState.IDLE)

    def test_restart_after_stop_reinitializes(self):
        self.start()
        self.controller.stop_pipeline()
        self.controller.start_pipeline()
        self.assertEqual(self.controller.state, PipelineState.ACTIVE)
        self.assertEqual(self.controller.target_language, "es")

    def test_manual_cycle(self):
        self.start()
        self.speak("Please translate this now")
        outcome = self.controller.process_now()
        self.assertEqual(outcome.trigger.reason, TriggerReason.MANUAL)
        self.assertEqual(outcome.status, CycleStatus.COMPLETED)

    def test_illegal_transitions_raise(self):
        with self.assertRaises(PipelineStateError):
            self.controller.pause_pipeline()
        self.controller.initialize_pipeline("es")
        with self.assertRaises(PipelineStateError):
            self.controller.resume_pipeline()
        with self.assertRaises(PipelineStateError):
            self.controller.stop_pipeline()
        with self.assertRaises(PipelineStateError):
            self.controller.initialize_pipeline("es")

    def test_initialization_failure_enters_error(self):
        with self.assertRaises(InitializationError):
            self.controller.initialize_pipeline("not a language")
        self.assertEqual(self.controller.state, PipelineState.ERROR)
        errors = [e for e in self.events if isinstance(e, PipelineErrorEvent)]
        self.assertFalse(errors[0].recoverable)

        self.controller.initialize_pipeline("es")
        self.assertEqual(self.controller.state, PipelineState.READY)

    def test_translation_failure_is_recoverable(self):
        self.start()
        self.translation.fail_next = 1
        self.speak("This sentence fails")
        outcome = self.controller.tick()

        self.assertEqual(outcome.status, CycleStatus.FAILED)
        self.assertEqual(self.controller.state, PipelineState.ACTIVE)
        failed = [e for e in self.events if isinstance(e, CycleFailed)]
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0].text, "This sentence fails")

    def test_broadcast_failure_is_counted_separately(self):
        self.channel.successful = False
        self.start()
        self.speak("Nobody is listening")
        outcome = self.controller.tick()
        self.sent_texts()
        stats = self.controller.get_statistics()

        self.assertEqual(outcome.status, CycleStatus.COMPLETED)
        self.assertEqual(stats["completed_cycles"], 1)
        self.assertEqual(stats["broadcasts_failed"], 1)
        self.assertEqual(self.controller.state, PipelineState.ACTIVE)

    def test_force_flush_on_tick(self):
        self.start()
        self.speak("Ok")
        self.controller.accumulator.boundary_time -= 60
        outcome = self.controller.tick()
        self.assertEqual(outcome.trigger.reason, TriggerReason.FORCE_FLUSH)
        self.assertEqual(outcome.unit.original_text, "Ok")

    def test_no_match_keeps_last_partial(self):
        self.start()
        self.speak("First thought here")
        self.recognizer.on_no_match()
        self.speak("Second")
        outcome = self.controller.tick()
        self.assertEqual(outcome.unit.original_text, "First thought here. Second")

    def test_transient_recognizer_error_restarts_recognizer(self):
        self.start()
        self.recognizer.on_error(RecognizerError("network hiccup"))
        self.controller.wait_until_processed(timeout=5.0)

        self.assertEqual(self.controller.state, PipelineState.ACTIVE)
        self.assertEqual(self.recognizer.start_count, 2)
        errors = [e for e in self.events if isinstance(e, PipelineErrorEvent)]
        self.assertTrue(errors[0].recoverable)

    def test_unavailable_recognizer_drains_and_enters_error(self):
        self.start()
        self.speak("Words before the failure")
        self.recognizer.on_error(RecognizerUnavailableError("microphone permission denied"))
        self.controller.wait_until_processed(timeout=5.0)

        self.assertEqual(self.controller.state, PipelineState.ERROR)
        self.assertEqual(self.sent_texts(), ["[es] Words before the failure"])

        self.controller.stop_pipeline()
        self.assertEqual(self.controller.state, PipelineState.IDLE)

    def test_early_boundary_triggers_cycle(self):
        self.build(early_boundary_enabled=True)
        self.start()
        self.speak("I finished the report. However we need more data")

        self.assertEqual(self.sent_texts(), ["[es] I finished the report. However we need more data"])
        self.assertEqual(self.controller.get_statistics()["trigger_counts"], {"boundary": 1})

    def test_stability_timeout_confirms_boundary(self):
        self.build(boundary_timer_enabled=True, stability_timeout_s=0.05, min_stability_timeout_s=0.01)
        self.start()
        self.speak("Hello world")
        self.assertTrue(self.wait_for_event(lambda e: isinstance(e, CycleCompleted)))
        self.assertEqual(self.controller.accumulator.candidate_text(), "")
        self.assertEqual(self.sent_texts(), ["Hola mundo."])

        # The same words again go through duplicate suppression
        self.speak("hello, world")
        self.assertTrue(self.wait_for_event(
            lambda e: isinstance(e, CycleSkipped) and e.trigger_reason is TriggerReason.BOUNDARY
        ))
        stats = self.controller.get_statistics()
        self.assertEqual(stats["duplicates_skipped"], 1)
        self.assertEqual(stats["trigger_counts"], {"boundary": 2})
        self.assertEqual(self.sent_texts(), ["Hola mundo."])

    def test_max_segment_duration_confirms_boundary(self):
        self.build(boundary_timer_enabled=True, max_segment_duration_s=0.05)
        self.start()
        self.speak("The speaker keeps talking without pause")
        self.assertTrue(self.wait_for_event(lambda e: isinstance(e, CycleCompleted)))

        completed = [e for e in self.events if isinstance(e, CycleCompleted)]
        self.assertEqual(completed[0].unit.trigger_reason, TriggerReason.BOUNDARY)
        self.assertEqual(completed[0].unit.original_text, "The speaker keeps talking without pause")

    def test_ticks_coalesce_while_cycle_runs(self):
        self.build(correction=BlockingCorrection())
        self.start()
        self.speak("A slow sentence to correct")

        ticker = threading.Thread(target=self.controller.tick)
        ticker.start()
        deadline = time.monotonic() + 5.0
        while not self.correction.calls and time.monotonic() < deadline:
            time.sleep(0.01)
        self.assertEqual(self.correction.calls, ["A slow sentence to correct"])

        # The actor is busy in the cycle; scheduled ticks must not pile up
        for _ in range(3):
            self.controller._schedule_tick()
        queued = [kind for kind, _ in list(self.controller.inbox.queue)]
        self.assertEqual(queued.count("tick"), 1)

        self.correction.release.set()
        ticker.join(5.0)
        self.controller.wait_until_processed(timeout=5.0)
        stats = self.controller.get_statistics()
        self.assertEqual(stats["total_cycles"], 2)
        self.assertEqual(stats["trigger_counts"], {"timer": 2})
        self.assertFalse(self.controller.tick_pending.is_set())

    def test_statistics_snapshot(self):
        self.start()
        self.speak("Hello world")
        self.controller.tick()
        stats = self.controller.get_statistics()
        self.assertEqual(stats["state"], "active")
        self.assertEqual(stats["total_cycles"], 1)
        self.assertEqual(stats["trigger_counts"], {"timer": 1})
        self.assertEqual(stats["duplicate_guard"]["cache_size"], 1)
        self.assertEqual(stats["speech_pattern"], "silent")


if __name__ == "__main__":
    unittest.main()
