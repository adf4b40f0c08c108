"""Engine exceptions with stable error codes.

Fatal errors propagate to the caller and abort the operation. Degraded
failures (telemetry, propagation, collaborators) are logged where they happen
and never reach this hierarchy.
"""

from typing import Any

LOAD_USER_MESSAGE = "Assessment unavailable"
RECORD_USER_MESSAGE = "Answer not saved, please retry"
FINALIZE_USER_MESSAGE = "Unable to finish assessment"
RECOMMEND_USER_MESSAGE = "Recommendations unavailable"


class EngineError(Exception):
    """Base error with standardized code, message and details."""

    code = "ENGINE_ERROR"
    user_message = "Something went wrong"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | list[Any] | None = None,
        user_message: str | None = None,
    ):
        """Initialize engine error.

        ``user_message`` overrides the class default for errors raised by more
        than one operation (the recorder and the finalizer share attempt errors).
        """
        super().__init__(message)
        self.message = message
        self.details = details
        if user_message is not None:
            self.user_message = user_message

    def to_dict(self) -> dict[str, Any]:
        """Error envelope for callers that serialize errors."""
        return {
            "error_code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
        }


# Loader


class NoAssessmentConfigured(EngineError):
    code = "NO_ASSESSMENT_CONFIGURED"
    user_message = LOAD_USER_MESSAGE


class AssessmentMisconfigured(EngineError):
    code = "ASSESSMENT_MISCONFIGURED"
    user_message = LOAD_USER_MESSAGE


class QuestionMissingFromBank(EngineError):
    """A section link references a question id absent from the bank."""

    code = "QUESTION_MISSING_FROM_BANK"
    user_message = LOAD_USER_MESSAGE


class AssessmentLoadError(EngineError):
    """A relational read or the attempt insert failed while loading."""

    code = "ASSESSMENT_LOAD_FAILED"
    user_message = LOAD_USER_MESSAGE


# Recorder / finalizer


class AttemptNotFound(EngineError):
    code = "ATTEMPT_NOT_FOUND"
    user_message = RECORD_USER_MESSAGE


class AttemptAlreadyCompleted(EngineError):
    """The attempt reached its terminal state; it cannot take answers or be finalized again."""

    code = "ATTEMPT_ALREADY_COMPLETED"
    user_message = FINALIZE_USER_MESSAGE


class ResponseNotSaved(EngineError):
    code = "RESPONSE_NOT_SAVED"
    user_message = RECORD_USER_MESSAGE


class EmptyAttempt(EngineError):
    code = "EMPTY_ATTEMPT"
    user_message = FINALIZE_USER_MESSAGE


# Recommendations


class RecommendationError(EngineError):
    code = "RECOMMENDATION_FAILED"
    user_message = RECOMMEND_USER_MESSAGE
