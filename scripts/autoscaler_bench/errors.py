"""Error kinds raised while benchmarking an autoscaler.

Every failure the orchestrator can report derives from BenchmarkError, so the
entry script can tell known failures (logged without a traceback) from
unexpected ones. Retry decisions for inventory queries are made with a plain
lookup table rather than by inspecting client-specific exception types.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import BenchmarkPhase


class ErrorClass(Enum):
    """Whether a failed inventory query is worth retrying."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


# AWS error codes and HTTP statuses that signal rate limiting
ERROR_CODE_CLASSES: dict[str, ErrorClass] = {
    "Throttling": ErrorClass.TRANSIENT,
    "ThrottlingException": ErrorClass.TRANSIENT,
    "RequestLimitExceeded": ErrorClass.TRANSIENT,
    "RequestThrottled": ErrorClass.TRANSIENT,
    "TooManyRequestsException": ErrorClass.TRANSIENT,
    "429": ErrorClass.TRANSIENT,
}


def classify_error_code(code: str | int | None) -> ErrorClass:
    """Map an API error code to its retry class.

    Returns:
        ErrorClass.TRANSIENT for known rate-limit codes, otherwise PERMANENT.
    """
    if code is None:
        return ErrorClass.PERMANENT
    return ERROR_CODE_CLASSES.get(str(code), ErrorClass.PERMANENT)


class BenchmarkError(Exception):
    """Base class for known benchmark failures that should be reported gracefully."""

    def __init__(self, message: str, phase: BenchmarkPhase | None = None) -> None:
        """Initialise the error with a message and the phase it occurred in.

        Args:
            message: The user-friendly error message.
            phase: The benchmark phase that failed, when known.
        """
        super().__init__(message)
        self.message = message
        self.phase = phase

    def __str__(self) -> str:
        if self.phase is None:
            return self.message
        return f"{self.phase.label} failed: {self.message}"


class TransientAPIError(BenchmarkError):
    """A rate-limited inventory query that may succeed if retried."""

    def __init__(
        self, message: str, code: str | int | None = None, phase: BenchmarkPhase | None = None
    ) -> None:
        """Initialise with the API error code that was classified as transient."""
        super().__init__(message, phase)
        self.code = code


class QueryError(BenchmarkError):
    """An inventory query failed and must not be retried."""


class ConvergenceTimeout(BenchmarkError):
    """An inventory did not satisfy its predicate before the phase deadline."""

    def __init__(
        self, message: str, timeout: float, phase: BenchmarkPhase | None = None
    ) -> None:
        """Initialise with the timeout, in seconds, that was exceeded."""
        super().__init__(message, phase)
        self.timeout = timeout


class UserAbort(BenchmarkError):
    """The operator declined to keep waiting after a timeout."""


class CancellationError(BenchmarkError):
    """Polling stopped because the run was cancelled."""


class ConfigurationError(BenchmarkError, ValueError):
    """Invalid configuration detected before any phase started."""


class WorkloadError(BenchmarkError):
    """A change to the benchmark workload was rejected by the cluster."""
