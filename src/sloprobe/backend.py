"""Probe backends and the unit of work executed on every poll."""

from __future__ import annotations

import logging as py_logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from sloprobe.retry.errors import BackendError

logger = py_logging.getLogger(__name__)

DATABASE_UNAVAILABLE = 40613
SERVICE_BUSY = 40197
LOGIN_FAILED = 18456
TIMEOUT_EXPIRED = -2

SLO_QUERY = "select databasepropertyex(db_name(), 'ServiceObjective') as SLO"


class Connection(Protocol):
    def query_service_objective(self) -> str: ...

    def close(self) -> None: ...


class Backend(Protocol):
    def connect(self) -> Connection: ...


def query_slo(backend: Backend) -> str:
    """Open a connection, read the service objective and always close again."""
    connection = backend.connect()
    try:
        return connection.query_service_objective()
    finally:
        connection.close()


@dataclass(frozen=True)
class TierChange:
    target: str
    starts_at: float
    duration: float

    @property
    def ends_at(self) -> float:
        return self.starts_at + self.duration

    def active(self, elapsed: float) -> bool:
        return self.starts_at <= elapsed < self.ends_at


class SimulatedConnection:
    def __init__(self, simulator: TierChangeSimulator) -> None:
        self._simulator = simulator
        self.closed = False

    def query_service_objective(self) -> str:
        if self.closed:
            raise BackendError("Invalid operation. The connection is closed.")
        return self._simulator.read_service_objective()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._simulator._release()

    def __enter__(self) -> SimulatedConnection:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class TierChangeSimulator:
    """In-process database whose service objective changes on a schedule.

    While a scheduled change is in progress new connections fail with
    ``DATABASE_UNAVAILABLE`` and queries on already-open connections fail with
    ``SERVICE_BUSY``. When the window closes the new objective is served.
    Times are seconds relative to construction, measured with ``clock``.
    """

    def __init__(
        self,
        service_objective: str = "S0",
        *,
        server: str = "localhost",
        database: str = "probe",
        clock: Callable[[], float] = time.monotonic,
        timeout_every: int = 0,
        reject_logins: bool = False,
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._origin = clock()
        self._service_objective = service_objective
        self._changes: list[TierChange] = []
        self.server = server
        self.database = database
        self.timeout_every = timeout_every
        self.reject_logins = reject_logins
        self.connect_calls = 0
        self.open_connections = 0

    def elapsed(self) -> float:
        return self._clock() - self._origin

    def schedule_change(self, target: str, *, at: float, duration: float) -> TierChange:
        if duration <= 0:
            raise ValueError(f"Tier change duration must be positive, got {duration}")
        change = TierChange(target=target, starts_at=at, duration=duration)
        with self._lock:
            self._changes.append(change)
            self._changes.sort(key=lambda item: item.starts_at)
        logger.debug("Scheduled tier change to %s at +%.1fs for %.1fs", target, at, duration)
        return change

    def _advance(self) -> TierChange | None:
        elapsed = self.elapsed()
        while self._changes and self._changes[0].ends_at <= elapsed:
            finished = self._changes.pop(0)
            logger.debug(
                "Tier change completed: %s -> %s", self._service_objective, finished.target
            )
            self._service_objective = finished.target
        if self._changes and self._changes[0].active(elapsed):
            return self._changes[0]
        return None

    @property
    def service_objective(self) -> str:
        with self._lock:
            self._advance()
            return self._service_objective

    @property
    def changing(self) -> bool:
        with self._lock:
            return self._advance() is not None

    def connect(self) -> SimulatedConnection:
        with self._lock:
            self.connect_calls += 1
            if self.reject_logins:
                raise BackendError("Login failed for user 'probe'.", number=LOGIN_FAILED)
            if self.timeout_every and self.connect_calls % self.timeout_every == 0:
                raise BackendError(
                    "Connection Timeout Expired. The timeout period elapsed during login.",
                    number=TIMEOUT_EXPIRED,
                    is_timeout=True,
                )
            change = self._advance()
            if change is not None:
                raise BackendError(
                    f"Database '{self.database}' on server '{self.server}' is not currently"
                    " available. Please retry the connection later.",
                    number=DATABASE_UNAVAILABLE,
                )
            self.open_connections += 1
        return SimulatedConnection(self)

    def read_service_objective(self) -> str:
        with self._lock:
            change = self._advance()
            if change is not None:
                raise BackendError(
                    "The service has encountered an error processing your request."
                    " Please try again.",
                    number=SERVICE_BUSY,
                )
            return self._service_objective

    def _release(self) -> None:
        with self._lock:
            self.open_connections -= 1
