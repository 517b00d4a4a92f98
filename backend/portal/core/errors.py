"""Exception hierarchy for the assessment engine.

Source errors never leave the question source provider: they are turned into a
fallback there. Persistence errors are logged by the adapter and never reach
the caller. The remaining errors are raised by controller operations and are
mapped to HTTP payloads by the app's exception handlers.
"""

from __future__ import annotations


class AssessmentError(Exception):
    """Base class for every error raised by the assessment engine."""

    error_code = "assessment_error"

    def __init__(self, message: str, original_exception: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.original_exception = original_exception


class SourceError(AssessmentError):
    error_code = "source_error"


class SourceTimeoutError(SourceError):
    error_code = "source_timeout"


class SourceValidationError(SourceError):
    error_code = "source_validation"


class SourceTransportError(SourceError):
    error_code = "source_transport"


class PersistenceError(AssessmentError):
    error_code = "persistence_failed"


class InvalidTransitionError(AssessmentError):
    error_code = "invalid_transition"

    def __init__(self, stage: object, event: object):
        super().__init__(f"event {getattr(event, 'value', event)!s} is not allowed in stage {getattr(stage, 'value', stage)!s}")
        self.stage = stage
        self.event = event


class SessionSetupError(AssessmentError):
    error_code = "invalid_setup"


class AnswerRejectedError(AssessmentError):
    error_code = "answer_rejected"
