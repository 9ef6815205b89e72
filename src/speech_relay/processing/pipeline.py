from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Optional, Tuple
import re
import time

from speech_relay.config import Config, preview
from speech_relay.errors import (
    InitializationError,
    PipelineStateError,
    ServiceUnavailableError,
    TranslationError,
)
from speech_relay.models import ProcessedUnit, ProcessingType, StageLatencies, TriggerReason
from speech_relay.processing.duplicate_guard import DuplicateGuard

_LANGUAGE_CODE = re.compile(r"^[a-z]{2,3}(?:-[A-Za-z0-9]{2,8})*$")


def is_valid_language_code(code: Optional[str]) -> bool:
    return bool(code) and bool(_LANGUAGE_CODE.match(code))


class TextProcessingPipeline:
    """
    Runs one piece of text through duplicate analysis, correction and
    translation.

    Correction and translation calls run on a small executor so each can
    be abandoned after its timeout. A correction failure falls back to the
    uncorrected text; a translation failure propagates and leaves the text
    unmarked in the duplicate guard.
    """

    def __init__(
        self,
        correction,
        translation,
        guard: Optional[DuplicateGuard] = None,
        config: Optional[Config] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or Config()
        self.clock = clock
        self.correction = correction
        self.translation = translation
        self.guard = guard or DuplicateGuard(self.config, clock)
        self.target_language: Optional[str] = None
        self.executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="relay-stage")

    def initialize(self, target_language: str):
        if not is_valid_language_code(target_language):
            raise InitializationError(f"Invalid target language: {target_language!r}", target_language=target_language)

        try:
            self.translation.check_available()
        except ServiceUnavailableError as e:
            raise InitializationError(f"Translation service unavailable: {e}", **e.context) from e

        try:
            self.correction.check_available()
        except ServiceUnavailableError as e:
            # Correction is optional; cycles pass text through uncorrected
            print(f"[Pipeline] Correction service unavailable, continuing without it: {e}")

        self.target_language = target_language
        print(f"[Pipeline] Ready, target language: {target_language}")

    def process_text(self, text: str, trigger_reason: TriggerReason) -> Optional[ProcessedUnit]:
        if self.target_language is None:
            raise PipelineStateError("Pipeline is not initialized")

        started = self.clock()

        # 1. Duplicate analysis
        analysis = None
        if not trigger_reason.skips_duplicate_analysis:
            analysis = self.guard.analyze(text)
            if not analysis.should_process:
                return None
        duplicate_latency = self.clock() - started

        try:
            # 2. Correction
            corrected, correction_latency = self._correct(text)

            # 3. Translation
            translation_started = self.clock()
            translated = self._translate(corrected)
            translation_latency = self.clock() - translation_started

            # 4. Mark processed only now that translation succeeded
            replaced = analysis.text_to_remove if analysis else None
            if replaced:
                self.guard.remove_from_cache(replaced)
            self.guard.mark_processed(text)
        except BaseException:
            # Untranslated text must not stay reserved in the guard
            self._rollback(text, analysis)
            raise

        total = self.clock() - started
        unit = ProcessedUnit(
            original_text=text,
            corrected_text=corrected,
            translated_text=translated,
            target_language=self.target_language,
            trigger_reason=trigger_reason,
            stage_latencies=StageLatencies(
                duplicate_analysis=duplicate_latency,
                correction=correction_latency,
                translation=translation_latency,
            ),
            total_latency=total,
            processing_type=analysis.processing_type if analysis else ProcessingType.NEW_CONTENT,
            replaced_text=replaced,
            correction_applied=corrected != text,
        )
        print(f"[Pipeline] {preview(corrected, self.config.log_preview_chars)} -> "
              f"{preview(translated, self.config.log_preview_chars)} ({total:.2f}s)")
        return unit

    def _correct(self, text: str) -> Tuple[str, float]:
        started = self.clock()
        try:
            corrected = self._run_with_timeout(self.correction.correct, self.config.correction_timeout_s, text)
        except FutureTimeout:
            print(f"[Pipeline] Correction timed out after {self.config.correction_timeout_s}s, using original text")
            corrected = text
        except Exception as e:
            print(f"[Pipeline] Correction failed, using original text: {e}")
            corrected = text
        if not corrected or not corrected.strip():
            corrected = text
        return corrected.strip(), self.clock() - started

    def _translate(self, text: str) -> str:
        try:
            return self._run_with_timeout(
                self.translation.translate, self.config.translation_timeout_s, text, self.target_language
            )
        except FutureTimeout as e:
            raise TranslationError(
                f"Translation timed out after {self.config.translation_timeout_s}s",
                target_language=self.target_language,
            ) from e
        except TranslationError:
            raise
        except Exception as e:
            raise TranslationError(f"Translation failed: {e}", target_language=self.target_language) from e

    def _run_with_timeout(self, fn, timeout: float, *args):
        future = self.executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            raise

    def _rollback(self, text: str, analysis):
        if analysis is not None:
            self.guard.remove_from_cache(text)

    def shutdown(self):
        self.executor.shutdown(wait=False, cancel_futures=True)

