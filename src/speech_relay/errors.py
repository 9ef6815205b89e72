from typing import Any, Optional

from speech_relay.models import ProcessingStage


class RelayError(Exception):
    """Base class for speech relay errors.

    `context` carries arbitrary key-value details for log lines.
    """

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class PipelineStateError(RelayError):
    """A control command was issued in a state that does not allow it."""


class InitializationError(RelayError):
    """Pipeline could not be initialized. Requires explicit reinitialization."""


class ServiceUnavailableError(RelayError):
    """A remote collaborator is unreachable or unhealthy."""


class StageError(RelayError):
    stage: ProcessingStage = ProcessingStage.TRANSLATION

    def __init__(self, message: str, stage: Optional[ProcessingStage] = None, **context: Any):
        super().__init__(message, **context)
        if stage is not None:
            self.stage = stage


class CorrectionError(StageError):
    stage = ProcessingStage.CORRECTION


class TranslationError(StageError):
    stage = ProcessingStage.TRANSLATION


class BroadcastError(StageError):
    stage = ProcessingStage.BROADCAST


class RecognizerError(RelayError):
    """Transient speech recognizer failure."""


class RecognizerUnavailableError(RecognizerError):
    """Recognizer permission denied or platform recognizer unavailable."""
