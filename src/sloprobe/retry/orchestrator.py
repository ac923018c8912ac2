"""Retry orchestration for short unary operations against a flaky backend.

Every :meth:`RetryOrchestrator.execute` call walks the same state machine::

    Idle -> Attempting -> Succeeded
                       -> PermanentlyFailed
                       -> AttemptsExhausted
                       -> Retrying -> Attempting ...
    Retrying -> Cancelled   (cancel event set during the wait)

The orchestrator holds no per-call state, so one instance may serve many
threads at once. An operation already in flight cannot be interrupted: a
cancellation requested while it runs is honoured before the next attempt.
"""

from __future__ import annotations

import logging as py_logging
import random
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TypeVar

from .backoff import apply_jitter, next_delay
from .classifier import Classifier, code_classifier, describe_error
from .models import (
    AttemptOutcome,
    AttemptRecord,
    ErrorChain,
    ExecutionResult,
    FaultKind,
    RetryNotice,
    RetryPolicy,
    TerminalState,
)

T = TypeVar("T")

AttemptObserver = Callable[[AttemptRecord], None]
RetryObserver = Callable[[RetryNotice], None]
Waiter = Callable[[float, "threading.Event | None"], bool]

logger = py_logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def event_wait(delay: float, cancel: threading.Event | None) -> bool:
    """Block for ``delay`` seconds; return True when cancelled meanwhile."""
    if cancel is None:
        time.sleep(delay)
        return False
    return cancel.wait(delay)


class RetryOrchestrator:
    def __init__(
        self,
        classifier: Classifier | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
        wait: Waiter = event_wait,
        jitter_rng: random.Random | None = None,
    ) -> None:
        self.classifier = classifier
        self.clock = clock
        self.now = now
        self.wait = wait
        self.jitter_rng = jitter_rng

    def _classify(self, chain: ErrorChain, policy: RetryPolicy) -> FaultKind:
        classifier = self.classifier or code_classifier(policy.transient_codes)
        try:
            kind = classifier(chain)
        except Exception:
            logger.exception("Fault classifier raised; treating error as unknown")
            return FaultKind.UNKNOWN
        if not isinstance(kind, FaultKind):
            logger.warning("Fault classifier returned %r; treating error as unknown", kind)
            return FaultKind.UNKNOWN
        return kind

    def _delay_for(self, attempt_number: int, policy: RetryPolicy) -> float:
        delay = next_delay(attempt_number, policy)
        if policy.jitter > 0:
            delay = apply_jitter(delay, policy.jitter, self.jitter_rng)
        return delay

    @staticmethod
    def _notify(observer: Callable[..., None] | None, payload: object, kind: str) -> None:
        if observer is None:
            return
        try:
            observer(payload)
        except Exception:
            logger.warning("%s observer failed; continuing", kind, exc_info=True)

    def execute(
        self,
        operation: Callable[[], T],
        policy: RetryPolicy,
        *,
        on_attempt: AttemptObserver | None = None,
        on_retry: RetryObserver | None = None,
        cancel: threading.Event | None = None,
    ) -> ExecutionResult[T]:
        attempts: list[AttemptRecord] = []
        last_error: BaseException | None = None
        attempt_number = 0

        while True:
            if cancel is not None and cancel.is_set():
                logger.info("Run cancelled before attempt %s", attempt_number + 1)
                return ExecutionResult(TerminalState.CANCELLED, attempts, error=last_error)

            attempt_number += 1
            started_at = self.now()
            started = self.clock()
            try:
                value = operation()
            except Exception as exc:
                duration_ms = (self.clock() - started) * 1000.0
                last_error = exc
                chain = describe_error(exc)
                kind = self._classify(chain, policy)
            else:
                duration_ms = (self.clock() - started) * 1000.0
                record = AttemptRecord(
                    attempt_number=attempt_number,
                    started_at=started_at,
                    duration_ms=duration_ms,
                    outcome=AttemptOutcome.SUCCESS,
                )
                attempts.append(record)
                self._notify(on_attempt, record, "Attempt")
                logger.debug("Attempt %s succeeded in %.1fms", attempt_number, duration_ms)
                return ExecutionResult(TerminalState.SUCCEEDED, attempts, value=value)

            if kind is not FaultKind.TRANSIENT:
                record = AttemptRecord(
                    attempt_number=attempt_number,
                    started_at=started_at,
                    duration_ms=duration_ms,
                    outcome=AttemptOutcome.FAILED_PERMANENT,
                    error_detail=chain,
                )
                attempts.append(record)
                self._notify(on_attempt, record, "Attempt")
                logger.warning(
                    "Attempt %s failed permanently (%s): %s",
                    attempt_number,
                    kind.value,
                    record.error_summary,
                )
                return ExecutionResult(TerminalState.PERMANENTLY_FAILED, attempts, error=last_error)

            exhausted = attempt_number >= policy.max_attempts
            delay = 0.0 if exhausted else self._delay_for(attempt_number, policy)
            record = AttemptRecord(
                attempt_number=attempt_number,
                started_at=started_at,
                duration_ms=duration_ms,
                outcome=AttemptOutcome.FAILED_TRANSIENT,
                error_detail=chain,
                delay_after=delay,
            )
            attempts.append(record)
            self._notify(on_attempt, record, "Attempt")

            if exhausted:
                logger.warning(
                    "Attempt %s/%s failed transiently; retries exhausted: %s",
                    attempt_number,
                    policy.max_attempts,
                    record.error_summary,
                )
                return ExecutionResult(TerminalState.ATTEMPTS_EXHAUSTED, attempts, error=last_error)

            logger.info(
                "Attempt %s/%s failed transiently; retrying in %.2fs: %s",
                attempt_number,
                policy.max_attempts,
                delay,
                record.error_summary,
            )
            self._notify(on_retry, RetryNotice(attempt_number, delay, chain), "Retry")
            if self.wait(delay, cancel):
                logger.info("Run cancelled while waiting to retry attempt %s", attempt_number + 1)
                return ExecutionResult(TerminalState.CANCELLED, attempts, error=last_error)


def run_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    classifier: Classifier | None = None,
) -> T:
    """Run ``operation`` under ``policy`` and return its value or raise a ``RetryError``."""

    def _sleep(delay: float, cancel: threading.Event | None) -> bool:
        sleep(delay)
        return False

    orchestrator = RetryOrchestrator(classifier, wait=_sleep)
    return orchestrator.execute(operation, policy).unwrap()
