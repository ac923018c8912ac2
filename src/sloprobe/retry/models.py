"""Retry domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import PermanentFailureError, RetryCancelledError, RetryExhaustedError

T = TypeVar("T")


class FaultKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class BackoffKind(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILED_TRANSIENT = "failed_transient"
    FAILED_PERMANENT = "failed_permanent"


class TerminalState(str, Enum):
    SUCCEEDED = "succeeded"
    PERMANENTLY_FAILED = "permanently_failed"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ErrorDetail:
    """One link of an error cause chain."""

    message: str
    code: int | None = None
    is_timeout: bool = False
    error_type: str = ""

    def summary(self) -> str:
        parts = [self.error_type or "Error"]
        if self.code is not None:
            parts.append(f"[{self.code}]")
        if self.is_timeout:
            parts.append("(timeout)")
        text = " ".join(parts)
        if self.message:
            return f"{text}: {self.message}"
        return text


ErrorChain = tuple[ErrorDetail, ...]


class RetryPolicy(BaseModel):
    """Immutable retry configuration shared read-only across executions.

    Delays are expressed in seconds. ``jitter`` is a caller-side multiplier;
    the scheduler itself never randomizes.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=1)
    backoff_kind: BackoffKind = BackoffKind.EXPONENTIAL
    base_delay: float = Field(default=1.0, gt=0)
    max_delay: float = 20.0
    transient_codes: frozenset[int] = Field(default_factory=frozenset)
    jitter: float = Field(default=0.0, ge=0, le=1)

    @model_validator(mode="after")
    def _validate_delay_bounds(self) -> RetryPolicy:
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        return self


@dataclass(frozen=True)
class AttemptRecord:
    attempt_number: int
    started_at: datetime
    duration_ms: float
    outcome: AttemptOutcome
    error_detail: ErrorChain = ()
    delay_after: float = 0.0

    @property
    def error_summary(self) -> str:
        return " <- ".join(item.summary() for item in self.error_detail)


@dataclass(frozen=True)
class RetryNotice:
    """Pending retry announced to observers before the inter-attempt wait."""

    attempt_number: int
    delay: float
    error_detail: ErrorChain

    @property
    def next_attempt(self) -> int:
        return self.attempt_number + 1


@dataclass
class ExecutionResult(Generic[T]):
    state: TerminalState
    attempts: list[AttemptRecord] = field(default_factory=list)
    value: T | None = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is TerminalState.SUCCEEDED

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def delays(self) -> list[float]:
        return [item.delay_after for item in self.attempts if item.delay_after > 0]

    @property
    def total_delay(self) -> float:
        return sum(self.delays)

    @property
    def last_attempt(self) -> AttemptRecord | None:
        if not self.attempts:
            return None
        return self.attempts[-1]

    def unwrap(self) -> T:
        """Return the success value or raise the error matching the terminal state."""
        count = self.attempt_count
        if self.state is TerminalState.SUCCEEDED:
            return self.value  # type: ignore[return-value]
        if self.state is TerminalState.CANCELLED:
            raise RetryCancelledError(f"Cancelled after {count} attempt(s)", self) from self.error
        if self.state is TerminalState.ATTEMPTS_EXHAUSTED:
            raise RetryExhaustedError(
                f"Gave up after {count} attempt(s): {self.error}", self
            ) from self.error
        raise PermanentFailureError(
            f"Permanent failure on attempt {count}: {self.error}", self
        ) from self.error
