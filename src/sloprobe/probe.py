"""Polling loop that reads the service objective through the retry orchestrator."""

from __future__ import annotations

import logging as py_logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from sloprobe.backend import SLO_QUERY, Backend, query_slo
from sloprobe.errors import failure_from_result
from sloprobe.events import AttemptLogger, AttemptStats, fan_out
from sloprobe.logging import status_logger
from sloprobe.retry.models import ExecutionResult, RetryNotice, RetryPolicy, TerminalState
from sloprobe.retry.orchestrator import RetryOrchestrator

logger = py_logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"


@dataclass
class ProbeStatus:
    database: str = NOT_AVAILABLE
    service_objective: str = NOT_AVAILABLE
    last_state: TerminalState | None = None

    def line(self) -> str:
        return f"DB: {self.database} - SLO: {self.service_objective}"


@dataclass
class ProbeSummary:
    polls: int = 0
    successes: int = 0
    retries: int = 0
    max_attempts_seen: int = 0
    failures: dict[TerminalState, int] = field(default_factory=dict)
    objectives_seen: list[str] = field(default_factory=list)
    cancelled: bool = False

    def record(self, result: ExecutionResult[str]) -> None:
        self.polls += 1
        self.max_attempts_seen = max(self.max_attempts_seen, result.attempt_count)
        self.retries += len(result.delays)
        if result.succeeded:
            self.successes += 1
            value = result.value or ""
            if not self.objectives_seen or self.objectives_seen[-1] != value:
                self.objectives_seen.append(value)
            return
        self.failures[result.state] = self.failures.get(result.state, 0) + 1

    @property
    def outcome(self) -> TerminalState:
        if self.cancelled:
            return TerminalState.CANCELLED
        if self.polls > 0 and self.successes == 0:
            return TerminalState.ATTEMPTS_EXHAUSTED
        return TerminalState.SUCCEEDED

    def to_dict(self) -> dict[str, object]:
        return {
            "polls": self.polls,
            "successes": self.successes,
            "retries": self.retries,
            "max_attempts_seen": self.max_attempts_seen,
            "failures": {state.value: count for state, count in sorted(self.failures.items())},
            "objectives_seen": list(self.objectives_seen),
            "cancelled": self.cancelled,
        }


class SloProbe:
    def __init__(
        self,
        backend: Backend,
        policy: RetryPolicy,
        *,
        database: str = NOT_AVAILABLE,
        orchestrator: RetryOrchestrator | None = None,
        stats: AttemptStats | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.policy = policy
        self.database = database
        self.orchestrator = orchestrator or RetryOrchestrator()
        self.stats = stats or AttemptStats()
        self.status = ProbeStatus(database=database)
        self.clock = clock
        self._attempt_log = AttemptLogger(logger)
        self._status_log = status_logger()

    def _on_retry(self, notice: RetryNotice) -> None:
        self.status.database = NOT_AVAILABLE
        self.status.service_objective = NOT_AVAILABLE

    def poll_once(self, cancel: threading.Event | None = None) -> ExecutionResult[str]:
        result = self.orchestrator.execute(
            lambda: query_slo(self.backend),
            self.policy,
            on_attempt=fan_out(self._attempt_log.on_attempt, self.stats.on_attempt),
            on_retry=fan_out(self._on_retry, self._attempt_log.on_retry, self.stats.on_retry),
            cancel=cancel,
        )
        self.status.last_state = result.state
        if result.succeeded:
            self.status.database = self.database
            self.status.service_objective = result.value or NOT_AVAILABLE
        return result

    def run(
        self,
        *,
        iterations: int = 0,
        poll_interval: float = 0.05,
        report_interval: float = 1.0,
        cancel: threading.Event | None = None,
    ) -> ProbeSummary:
        """Poll until ``iterations`` polls ran (0 means forever) or ``cancel`` is set.

        A permanent failure stops the loop with ``SloProbeError``; exhausted
        retries are counted and polling continues.
        """
        stop = cancel or threading.Event()
        summary = ProbeSummary()
        logger.info("Starting loop against %s: %s", self.database, SLO_QUERY)
        next_report = self.clock()

        while not stop.is_set() and (iterations == 0 or summary.polls < iterations):
            result = self.poll_once(stop)
            if result.state is TerminalState.CANCELLED:
                summary.cancelled = True
                break
            summary.record(result)

            if self.clock() >= next_report:
                self._status_log.info(self.status.line())
                next_report = self.clock() + report_interval

            if result.state is TerminalState.PERMANENTLY_FAILED:
                raise failure_from_result(result, target=self.database)
            if result.state is TerminalState.ATTEMPTS_EXHAUSTED:
                logger.warning(
                    "Gave up after %s attempts; continuing to poll", result.attempt_count
                )

            if poll_interval > 0 and stop.wait(poll_interval):
                break

        if stop.is_set():
            summary.cancelled = True
        self._status_log.info(self.status.line())
        return summary
