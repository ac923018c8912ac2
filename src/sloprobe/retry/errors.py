"""Exceptions raised by backends and by retry result unwrapping."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import ExecutionResult


class BackendError(Exception):
    """Failure reported by a backend, optionally carrying a numeric error code."""

    def __init__(self, message: str, *, number: int | None = None, is_timeout: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.number = number
        self.is_timeout = is_timeout

    def __str__(self) -> str:
        if self.number is not None:
            return f"{self.message} (error {self.number})"
        return self.message


class RetryError(Exception):
    """Terminal, non-successful outcome of an orchestrated run."""

    def __init__(self, message: str, result: ExecutionResult[Any]) -> None:
        super().__init__(message)
        self.result = result

    @property
    def attempts(self) -> int:
        return self.result.attempt_count


class PermanentFailureError(RetryError):
    pass


class RetryExhaustedError(RetryError):
    pass


class RetryCancelledError(RetryError):
    pass

