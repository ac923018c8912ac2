from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timezone

import pytest

from sloprobe.retry import (
    AttemptOutcome,
    AttemptRecord,
    BackendError,
    BackoffKind,
    FaultKind,
    PermanentFailureError,
    RetryCancelledError,
    RetryExhaustedError,
    RetryNotice,
    RetryOrchestrator,
    RetryPolicy,
    TerminalState,
)

UNAVAILABLE = 40613
LOGIN_FAILED = 18456

SCENARIO_POLICY = RetryPolicy(
    max_attempts=5,
    backoff_kind=BackoffKind.EXPONENTIAL,
    base_delay=1.0,
    max_delay=20.0,
    transient_codes={UNAVAILABLE},
)


class _Recorder:
    def __init__(self) -> None:
        self.waits: list[float] = []

    def wait(self, delay: float, cancel: threading.Event | None) -> bool:
        self.waits.append(delay)
        return False


def _failing_until(success_on: int, error: Callable[[], Exception]) -> Callable[[], str]:
    calls = {"count": 0}

    def operation() -> str:
        calls["count"] += 1
        if calls["count"] < success_on:
            raise error()
        return f"ok-{calls['count']}"

    return operation


def _unavailable() -> BackendError:
    return BackendError("Database is not currently available", number=UNAVAILABLE)


def test_succeeds_on_fourth_attempt_with_exponential_delays() -> None:
    recorder = _Recorder()
    orchestrator = RetryOrchestrator(wait=recorder.wait)

    result = orchestrator.execute(_failing_until(4, _unavailable), SCENARIO_POLICY)

    assert result.state is TerminalState.SUCCEEDED
    assert result.value == "ok-4"
    assert recorder.waits == [1.0, 2.0, 4.0]
    assert result.delays == [1.0, 2.0, 4.0]
    assert [item.attempt_number for item in result.attempts] == [1, 2, 3, 4]
    assert [item.outcome for item in result.attempts] == [
        AttemptOutcome.FAILED_TRANSIENT,
        AttemptOutcome.FAILED_TRANSIENT,
        AttemptOutcome.FAILED_TRANSIENT,
        AttemptOutcome.SUCCESS,
    ]
    assert result.attempts[-1].error_detail == ()


def test_login_failure_is_permanent_without_delay() -> None:
    recorder = _Recorder()
    orchestrator = RetryOrchestrator(wait=recorder.wait)

    def operation() -> str:
        raise BackendError("Login failed for user 'probe'.", number=LOGIN_FAILED)

    result = orchestrator.execute(operation, SCENARIO_POLICY)

    assert result.state is TerminalState.PERMANENTLY_FAILED
    assert result.attempt_count == 1
    assert result.attempts[0].outcome is AttemptOutcome.FAILED_PERMANENT
    assert result.attempts[0].error_detail[0].code == LOGIN_FAILED
    assert recorder.waits == []
    assert result.total_delay == 0
    assert isinstance(result.error, BackendError)


def test_always_failing_transient_operation_exhausts_attempts() -> None:
    recorder = _Recorder()
    orchestrator = RetryOrchestrator(wait=recorder.wait)

    result = orchestrator.execute(_failing_until(100, _unavailable), SCENARIO_POLICY)

    assert result.state is TerminalState.ATTEMPTS_EXHAUSTED
    assert result.attempt_count == 5
    assert recorder.waits == [1.0, 2.0, 4.0, 8.0]
    assert result.attempts[-1].delay_after == 0.0
    assert all(item.outcome is AttemptOutcome.FAILED_TRANSIENT for item in result.attempts)


def test_single_attempt_policy_never_waits() -> None:
    recorder = _Recorder()
    orchestrator = RetryOrchestrator(wait=recorder.wait)
    policy = SCENARIO_POLICY.model_copy(update={"max_attempts": 1})

    result = orchestrator.execute(_failing_until(2, _unavailable), policy)

    assert result.state is TerminalState.ATTEMPTS_EXHAUSTED
    assert result.attempt_count == 1
    assert recorder.waits == []


def test_unknown_classification_is_treated_as_permanent() -> None:
    orchestrator = RetryOrchestrator(lambda chain: FaultKind.UNKNOWN, wait=_Recorder().wait)

    result = orchestrator.execute(_failing_until(3, _unavailable), SCENARIO_POLICY)

    assert result.state is TerminalState.PERMANENTLY_FAILED
    assert result.attempt_count == 1


def test_classifier_exception_is_treated_as_permanent() -> None:
    def broken(chain: object) -> FaultKind:
        raise KeyError("bug")

    orchestrator = RetryOrchestrator(broken, wait=_Recorder().wait)
    result = orchestrator.execute(_failing_until(3, _unavailable), SCENARIO_POLICY)

    assert result.state is TerminalState.PERMANENTLY_FAILED


def test_attempt_observer_sees_every_attempt_in_order() -> None:
    seen: list[AttemptRecord] = []
    notices: list[RetryNotice] = []
    orchestrator = RetryOrchestrator(wait=_Recorder().wait)

    orchestrator.execute(
        _failing_until(3, _unavailable),
        SCENARIO_POLICY,
        on_attempt=seen.append,
        on_retry=notices.append,
    )

    assert [item.attempt_number for item in seen] == [1, 2, 3]
    assert [(item.attempt_number, item.next_attempt, item.delay) for item in notices] == [
        (1, 2, 1.0),
        (2, 3, 2.0),
    ]
    assert notices[0].error_detail[0].code == UNAVAILABLE


def test_observer_failures_do_not_abort_the_run() -> None:
    def explode(payload: object) -> None:
        raise RuntimeError("dashboard offline")

    orchestrator = RetryOrchestrator(wait=_Recorder().wait)
    result = orchestrator.execute(
        _failing_until(2, _unavailable),
        SCENARIO_POLICY,
        on_attempt=explode,
        on_retry=explode,
    )

    assert result.state is TerminalState.SUCCEEDED
    assert result.attempt_count == 2


def test_cancellation_during_delay_stops_further_attempts() -> None:
    cancel = threading.Event()
    calls = {"count": 0}

    def operation() -> str:
        calls["count"] += 1
        raise _unavailable()

    def wait(delay: float, event: threading.Event | None) -> bool:
        assert event is cancel
        cancel.set()
        return True

    result = RetryOrchestrator(wait=wait).execute(operation, SCENARIO_POLICY, cancel=cancel)

    assert result.state is TerminalState.CANCELLED
    assert calls["count"] == 1
    assert result.attempt_count == 1
    with pytest.raises(RetryCancelledError):
        result.unwrap()


def test_cancellation_before_first_attempt_runs_nothing() -> None:
    cancel = threading.Event()
    cancel.set()
    calls = {"count": 0}

    def operation() -> str:
        calls["count"] += 1
        return "ok"

    result = RetryOrchestrator().execute(operation, SCENARIO_POLICY, cancel=cancel)

    assert result.state is TerminalState.CANCELLED
    assert calls["count"] == 0
    assert result.attempts == []


def test_cancellation_while_operation_runs_is_honoured_before_next_attempt() -> None:
    cancel = threading.Event()
    calls = {"count": 0}

    def operation() -> str:
        calls["count"] += 1
        cancel.set()
        raise _unavailable()

    result = RetryOrchestrator().execute(operation, SCENARIO_POLICY, cancel=cancel)

    assert result.state is TerminalState.CANCELLED
    assert calls["count"] == 1


def test_real_event_wait_returns_promptly_when_cancelled() -> None:
    cancel = threading.Event()
    policy = RetryPolicy(max_attempts=3, base_delay=30.0, max_delay=30.0, transient_codes={UNAVAILABLE})

    def operation() -> str:
        threading.Timer(0.05, cancel.set).start()
        raise _unavailable()

    result = RetryOrchestrator().execute(operation, policy, cancel=cancel)

    assert result.state is TerminalState.CANCELLED


def test_keyboard_interrupt_propagates() -> None:
    def operation() -> str:
        raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        RetryOrchestrator(wait=_Recorder().wait).execute(operation, SCENARIO_POLICY)


def test_attempt_records_carry_timing_from_injected_clocks() -> None:
    ticks = iter([10.0, 10.25, 20.0, 20.5])
    stamp = datetime(2024, 5, 1, tzinfo=timezone.utc)
    orchestrator = RetryOrchestrator(
        clock=lambda: next(ticks),
        now=lambda: stamp,
        wait=_Recorder().wait,
    )

    result = orchestrator.execute(_failing_until(2, _unavailable), SCENARIO_POLICY)

    assert [item.duration_ms for item in result.attempts] == [250.0, 500.0]
    assert all(item.started_at == stamp for item in result.attempts)


def test_jitter_is_applied_to_scheduled_delays() -> None:
    recorder = _Recorder()
    policy = SCENARIO_POLICY.model_copy(update={"jitter": 0.5})

    class _High:
        def uniform(self, a: float, b: float) -> float:
            return b

    orchestrator = RetryOrchestrator(wait=recorder.wait, jitter_rng=_High())  # type: ignore[arg-type]
    orchestrator.execute(_failing_until(3, _unavailable), policy)

    assert recorder.waits == [1.5, 3.0]


def test_unwrap_raises_matching_errors() -> None:
    orchestrator = RetryOrchestrator(wait=_Recorder().wait)

    exhausted = orchestrator.execute(_failing_until(100, _unavailable), SCENARIO_POLICY)
    with pytest.raises(RetryExhaustedError) as exhausted_info:
        exhausted.unwrap()
    assert exhausted_info.value.result is exhausted

    def login() -> str:
        raise BackendError("Login failed", number=LOGIN_FAILED)

    with pytest.raises(PermanentFailureError):
        orchestrator.execute(login, SCENARIO_POLICY).unwrap()

    assert orchestrator.execute(lambda: 42, SCENARIO_POLICY).unwrap() == 42


def test_concurrent_executions_are_independent() -> None:
    orchestrator = RetryOrchestrator(wait=lambda delay, cancel: False)
    results: dict[int, object] = {}

    def worker(index: int) -> None:
        result = orchestrator.execute(_failing_until(index + 1, _unavailable), SCENARIO_POLICY)
        results[index] = result

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(1, 5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for index in range(1, 5):
        result = results[index]
        assert result.state is TerminalState.SUCCEEDED  # type: ignore[attr-defined]
        assert result.attempt_count == index + 1  # type: ignore[attr-defined]
