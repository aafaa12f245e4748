"""
LUIS Exception Hierarchy

Structured error classification for the transport, reconciliation and
training stages. Every stage failure reaching the caller is a ``StageError``
chained to the error that caused it.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple


class ErrorSeverity(Enum):
    """Severity levels for LUIS errors"""
    TRANSIENT = "transient"          # Temporary issue, a re-run may succeed
    QUOTA = "quota"                  # Rate limit exceeded even after retrying
    VALIDATION = "validation"        # The service rejected the submitted data
    CONFIGURATION = "configuration"  # Invalid key, app id or culture
    FATAL = "fatal"                  # Anything else


class LuisError(Exception):
    """
    Base class for LUIS errors

    Attributes:
        message: Human-readable error message
        severity: ErrorSeverity level
        is_retryable: Whether re-running the operation may succeed
        original_error: Original exception if wrapped
    """

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.FATAL,
        is_retryable: bool = False,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.is_retryable = is_retryable
        self.original_error = original_error

    def __str__(self):
        return f"{self.severity.value.upper()}: {self.message}"


class TransportError(LuisError):
    """
    The service answered with an unexpected status code

    The raw response body is kept for diagnostics.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Any = None,
        method: Optional[str] = None,
        path: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.FATAL,
        is_retryable: bool = False,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message, severity, is_retryable, original_error)
        self.status = status
        self.body = body
        self.method = method
        self.path = path


class ThrottleExhausted(TransportError):
    """The request kept being throttled after every retry"""

    def __init__(self, method: str, path: str, attempts: int, body: Any = None):
        super().__init__(
            f"{method} {path} still throttled after {attempts} attempt(s)",
            status=429,
            body=body,
            method=method,
            path=path,
            severity=ErrorSeverity.QUOTA,
            is_retryable=True
        )
        self.attempts = attempts


class ValidationError(LuisError):
    """
    The service flagged some of the submitted items as erroneous

    Attributes:
        failures: (item text, service error) pairs
    """

    def __init__(self, failures: List[Tuple[str, str]]):
        details = "\n".join(f"{text}: {error}" for text, error in failures)
        super().__init__(
            f"{len(failures)} item(s) were rejected by the service:\n{details}",
            severity=ErrorSeverity.VALIDATION
        )
        self.failures = failures


class EntityRangeError(LuisError, IndexError):
    """An entity annotation references tokens outside its sentence"""

    def __init__(self, message: str):
        super().__init__(message, severity=ErrorSeverity.VALIDATION)


class CultureMismatch(LuisError):
    """The local model culture differs from the remote application culture"""

    def __init__(self, model_culture: str, app_culture: str):
        super().__init__(
            f"The model culture ({model_culture}) doesn't match "
            f"the target application culture ({app_culture})",
            severity=ErrorSeverity.CONFIGURATION
        )
        self.model_culture = model_culture
        self.app_culture = app_culture


@dataclass
class ModelFailure:
    """A trained model that ended in the Failed state"""
    model_id: str
    failure_reason: Optional[str]


class TrainingFailed(LuisError):
    """At least one model failed to train"""

    def __init__(self, failures: List[ModelFailure]):
        reasons = "\n".join(f"{failure.model_id}: {failure.failure_reason}" for failure in failures)
        super().__init__(
            f"{len(failures)} model(s) have failed with the following reasons:\n{reasons}",
            severity=ErrorSeverity.FATAL
        )
        self.failures = failures


class StageError(LuisError):
    """
    Failure of one workflow stage

    Attributes:
        reason: Message of the underlying error
        cause: Underlying error, also available as ``__cause__``
    """

    def __init__(self, message: str, cause: Exception):
        severity = cause.severity if isinstance(cause, LuisError) else ErrorSeverity.FATAL
        is_retryable = cause.is_retryable if isinstance(cause, LuisError) else False
        super().__init__(message, severity, is_retryable, original_error=cause)
        self.cause = cause
        self.reason = cause.message if isinstance(cause, LuisError) else str(cause)

    def __str__(self):
        return f"{self.message}: {self.reason}"


def error_for_status(
    status: int,
    body: Any,
    method: str,
    path: str
) -> TransportError:
    """
    Classify an unexpected response into a TransportError

    Args:
        status: HTTP status code received
        body: Parsed (or raw) response body
        method: HTTP method of the request
        path: Request path relative to the application

    Returns:
        TransportError with the matching severity
    """
    message = f"{method} {path} failed with status {status}: {body}"

    if status == 429:
        severity, retryable = ErrorSeverity.QUOTA, True
    elif status in (401, 403):
        severity, retryable = ErrorSeverity.CONFIGURATION, False
    elif status >= 500:
        severity, retryable = ErrorSeverity.TRANSIENT, True
    elif status == 400:
        severity, retryable = ErrorSeverity.VALIDATION, False
    else:
        severity, retryable = ErrorSeverity.FATAL, False

    return TransportError(
        message,
        status=status,
        body=body,
        method=method,
        path=path,
        severity=severity,
        is_retryable=retryable
    )
