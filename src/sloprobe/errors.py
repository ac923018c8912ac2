"""Probe exit codes and how retry outcomes map onto them."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from sloprobe.retry.models import ExecutionResult, TerminalState


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    BACKEND_ERROR = 5
    RETRY_EXHAUSTED = 6
    CANCELLED = 7
    VALIDATION_ERROR = 8


EXIT_CODES: dict[TerminalState, ExitCode] = {
    TerminalState.SUCCEEDED: ExitCode.SUCCESS,
    TerminalState.PERMANENTLY_FAILED: ExitCode.BACKEND_ERROR,
    TerminalState.ATTEMPTS_EXHAUSTED: ExitCode.RETRY_EXHAUSTED,
    TerminalState.CANCELLED: ExitCode.CANCELLED,
}

_HINTS = {
    TerminalState.PERMANENTLY_FAILED: "Check credentials and the transient code list.",
    TerminalState.ATTEMPTS_EXHAUSTED: "Raise --max-attempts or --max-delay to ride out longer outages.",
    TerminalState.CANCELLED: "Polling was interrupted before an attempt succeeded.",
}


@dataclass
class SloProbeError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


def exit_code_for(state: TerminalState) -> ExitCode:
    return EXIT_CODES[state]


def failure_from_result(result: ExecutionResult[object], *, target: str) -> SloProbeError:
    """Describe a failed poll of ``target`` with the innermost-first cause chain."""
    if result.succeeded:
        raise ValueError("Cannot build a failure from a successful result")
    last = result.last_attempt
    detail = last.error_summary if last and last.error_summary else str(result.error or "no attempt ran")
    return SloProbeError(
        f"{result.state.value.replace('_', ' ').capitalize()} while polling {target}: {detail}",
        code=exit_code_for(result.state),
        hint=_HINTS.get(result.state, ""),
    )


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
