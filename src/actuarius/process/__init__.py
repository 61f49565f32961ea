"""External process execution with timeouts and failure classification."""

from .runner import (
    FakeProcessRunner,
    ProcessError,
    ProcessFailedError,
    ProcessResult,
    ProcessRunner,
    ProcessTimeoutError,
    ProcessUnavailableError,
)

__all__ = [
    "FakeProcessRunner",
    "ProcessError",
    "ProcessFailedError",
    "ProcessResult",
    "ProcessRunner",
    "ProcessTimeoutError",
    "ProcessUnavailableError",
]
