"""Attempt events and observers for logging and run statistics."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from typing_extensions import TypedDict

from sloprobe.retry.models import AttemptOutcome, AttemptRecord, RetryNotice

logger = py_logging.getLogger(__name__)


class AttemptEventPayload(TypedDict):
    attempt_number: int
    outcome: str
    duration_ms: float
    error_summary: str | None


@dataclass(frozen=True)
class AttemptEvent:
    attempt_number: int
    outcome: AttemptOutcome
    duration_ms: float
    error_summary: str | None = None

    def to_payload(self) -> AttemptEventPayload:
        return AttemptEventPayload(
            attempt_number=self.attempt_number,
            outcome=self.outcome.value,
            duration_ms=round(self.duration_ms, 3),
            error_summary=self.error_summary,
        )


def attempt_event(record: AttemptRecord) -> AttemptEvent:
    return AttemptEvent(
        attempt_number=record.attempt_number,
        outcome=record.outcome,
        duration_ms=record.duration_ms,
        error_summary=record.error_summary or None,
    )


class AttemptLogger:
    """Writes one log line per attempt and per scheduled retry."""

    def __init__(self, log: py_logging.Logger | None = None, *, label: str = "") -> None:
        self.log = log or logger
        self.label = label

    def _prefix(self) -> str:
        return f"[{self.label}] " if self.label else ""

    def on_attempt(self, record: AttemptRecord) -> None:
        event = attempt_event(record)
        if event.outcome is AttemptOutcome.SUCCESS:
            self.log.debug(
                "%sattempt=%s outcome=%s duration_ms=%.1f",
                self._prefix(),
                event.attempt_number,
                event.outcome.value,
                event.duration_ms,
            )
            return
        self.log.info(
            "%sattempt=%s outcome=%s duration_ms=%.1f error=%s",
            self._prefix(),
            event.attempt_number,
            event.outcome.value,
            event.duration_ms,
            event.error_summary,
        )

    def on_retry(self, notice: RetryNotice) -> None:
        self.log.info("%sRetrying... attempt=%s delay=%.2fs", self._prefix(), notice.next_attempt, notice.delay)
        for detail in notice.error_detail:
            self.log.info("%s  %s", self._prefix(), detail.summary())


class AttemptStats:
    """Aggregates attempt events; safe to share between threads.

    Counters are kept for every attempt. Individual events are retained only
    with ``keep_events=True``, so a probe polling forever stays bounded.
    """

    def __init__(self, *, keep_events: bool = False) -> None:
        self._lock = threading.Lock()
        self.keep_events = keep_events
        self.events: list[AttemptEvent] = []
        self._outcomes = dict.fromkeys(AttemptOutcome, 0)
        self.retries = 0
        self.total_delay = 0.0

    def on_attempt(self, record: AttemptRecord) -> None:
        with self._lock:
            self._outcomes[record.outcome] += 1
            if self.keep_events:
                self.events.append(attempt_event(record))

    def on_retry(self, notice: RetryNotice) -> None:
        with self._lock:
            self.retries += 1
            self.total_delay += notice.delay

    def count(self, outcome: AttemptOutcome) -> int:
        with self._lock:
            return self._outcomes[outcome]

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            outcomes = dict(self._outcomes)
            retries = self.retries
            total_delay = self.total_delay
        return {
            "attempts": sum(outcomes.values()),
            "successes": outcomes[AttemptOutcome.SUCCESS],
            "transient_failures": outcomes[AttemptOutcome.FAILED_TRANSIENT],
            "permanent_failures": outcomes[AttemptOutcome.FAILED_PERMANENT],
            "retries": retries,
            "total_delay_seconds": round(total_delay, 3),
        }


def fan_out(*observers: Callable[..., None] | None) -> Callable[[object], None]:
    """Combine observers into one; each is called in order.

    A failing observer is logged and does not keep the later ones from running.
    """
    active = [item for item in observers if item is not None]

    def _dispatch(payload: object) -> None:
        for observer in active:
            try:
                observer(payload)
            except Exception:
                logger.warning("Observer %r failed", observer, exc_info=True)

    return _dispatch
