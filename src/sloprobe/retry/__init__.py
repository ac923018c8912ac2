"""Transient-fault classification and retry orchestration."""

from .backoff import apply_jitter, next_delay
from .classifier import Classifier, classify, code_classifier, describe_error
from .errors import (
    BackendError,
    PermanentFailureError,
    RetryCancelledError,
    RetryError,
    RetryExhaustedError,
)
from .models import (
    AttemptOutcome,
    AttemptRecord,
    BackoffKind,
    ErrorDetail,
    ExecutionResult,
    FaultKind,
    RetryNotice,
    RetryPolicy,
    TerminalState,
)
from .orchestrator import RetryOrchestrator, event_wait, run_with_retry

__all__ = [
    "apply_jitter",
    "AttemptOutcome",
    "AttemptRecord",
    "BackendError",
    "BackoffKind",
    "classify",
    "Classifier",
    "code_classifier",
    "describe_error",
    "ErrorDetail",
    "event_wait",
    "ExecutionResult",
    "FaultKind",
    "next_delay",
    "PermanentFailureError",
    "RetryCancelledError",
    "RetryError",
    "RetryExhaustedError",
    "RetryNotice",
    "RetryOrchestrator",
    "RetryPolicy",
    "run_with_retry",
    "TerminalState",
]
