"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import json
import logging as py_logging
import math
import signal
import sys
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

from .backend import TierChangeSimulator
from .config import ProbeConfig, load_config, parse_codes, save_config
from .connection import parse_connection_string
from .errors import ExitCode, SloProbeError, exit_code_for, user_facing_error
from .events import AttemptStats
from .logging import configure_logging, default_log_path
from .probe import ProbeSummary, SloProbe

_VALID_STRATEGIES = ("none", "fixed", "exponential")
_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_DEFAULT_CONNECTION_STRING = "Server=localhost;Database=probe"


def _positive_int(flag: str) -> Callable[[str], int]:
    def _parse(value: str) -> int:
        try:
            number = int(value)
        except ValueError as exc:
            raise argparse.ArgumentTypeError(f"{flag} must be an integer") from exc
        if number < 1:
            raise argparse.ArgumentTypeError(f"{flag} must be at least 1")
        return number

    return _parse


def _non_negative_int(flag: str) -> Callable[[str], int]:
    def _parse(value: str) -> int:
        try:
            number = int(value)
        except ValueError as exc:
            raise argparse.ArgumentTypeError(f"{flag} must be an integer") from exc
        if number < 0:
            raise argparse.ArgumentTypeError(f"{flag} must not be negative")
        return number

    return _parse


def _seconds(flag: str, *, allow_zero: bool = False) -> Callable[[str], float]:
    def _parse(value: str) -> float:
        try:
            number = float(value)
        except ValueError as exc:
            raise argparse.ArgumentTypeError(f"{flag} must be a number of seconds") from exc
        if not math.isfinite(number):
            raise argparse.ArgumentTypeError(f"{flag} must be a finite number of seconds")
        if number < 0 or (number == 0 and not allow_zero):
            qualifier = "non-negative" if allow_zero else "positive"
            raise argparse.ArgumentTypeError(f"{flag} must be {qualifier}")
        return number

    return _parse


def _jitter_type(value: str) -> float:
    try:
        number = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("--jitter must be a number") from exc
    if not math.isfinite(number) or number < 0 or number > 1:
        raise argparse.ArgumentTypeError("--jitter must be between 0 and 1")
    return number


def _codes_type(value: str) -> list[int]:
    codes = parse_codes(value)
    if not codes:
        raise argparse.ArgumentTypeError("--transient-codes must be a comma separated list of integers")
    return codes


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sloprobe",
        description="Poll a database's service objective while its tier changes.",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to a TOML config file.")
    parser.add_argument("--connection-string", default=None)
    parser.add_argument("--strategy", choices=_VALID_STRATEGIES, default=None)
    parser.add_argument("--max-attempts", type=_positive_int("--max-attempts"), default=None)
    parser.add_argument("--base-delay", type=_seconds("--base-delay"), default=None)
    parser.add_argument("--max-delay", type=_seconds("--max-delay"), default=None)
    parser.add_argument("--jitter", type=_jitter_type, default=None)
    parser.add_argument("--transient-codes", type=_codes_type, default=None)
    parser.add_argument(
        "--iterations",
        type=_non_negative_int("--iterations"),
        default=None,
        help="Number of polls to run; 0 polls until interrupted.",
    )
    parser.add_argument("--poll-interval", type=_seconds("--poll-interval", allow_zero=True), default=None)
    parser.add_argument("--report-interval", type=_seconds("--report-interval"), default=None)
    parser.add_argument(
        "--simulate-change",
        metavar="TARGET",
        default=None,
        help="Schedule a tier change of the simulated database to TARGET.",
    )
    parser.add_argument("--initial-slo", default="S0")
    parser.add_argument("--change-at", type=_seconds("--change-at", allow_zero=True), default=1.0)
    parser.add_argument("--change-duration", type=_seconds("--change-duration"), default=3.0)
    parser.add_argument(
        "--timeout-every",
        type=_non_negative_int("--timeout-every"),
        default=0,
        help="Make every Nth simulated connection time out.",
    )
    parser.add_argument("--events-file", type=Path, default=None, help="Write attempt events as JSON.")
    parser.add_argument("--init-config", type=Path, default=None, help="Write a starter config and exit.")
    parser.add_argument("--log-level", type=_log_level_type, default="INFO")
    parser.add_argument("--log-file", type=Path, default=None)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def resolve_config(namespace: argparse.Namespace) -> ProbeConfig:
    cfg = load_config(namespace.config)
    overrides = {
        "connection_string": namespace.connection_string,
        "strategy": namespace.strategy,
        "max_attempts": namespace.max_attempts,
        "base_delay": namespace.base_delay,
        "max_delay": namespace.max_delay,
        "jitter": namespace.jitter,
        "transient_codes": namespace.transient_codes,
        "iterations": namespace.iterations,
        "poll_interval": namespace.poll_interval,
        "report_interval": namespace.report_interval,
    }
    merged = cfg.model_dump()
    merged.update({key: value for key, value in overrides.items() if value is not None})
    if namespace.base_delay is not None and namespace.max_delay is None:
        merged["max_delay"] = max(merged["max_delay"], namespace.base_delay)
    if namespace.max_delay is not None and namespace.base_delay is None:
        merged["base_delay"] = min(merged["base_delay"], namespace.max_delay)
    try:
        return ProbeConfig(**merged)
    except ValidationError as exc:
        raise SloProbeError(
            "Invalid probe settings.",
            code=ExitCode.VALIDATION_ERROR,
            hint=str(exc.errors()[0].get("msg", exc)),
        ) from exc


def _write_events(path: Path, stats: AttemptStats) -> None:
    payload = {
        "summary": stats.snapshot(),
        "events": [event.to_payload() for event in stats.events],
    }
    path.expanduser().parent.mkdir(parents=True, exist_ok=True)
    path.expanduser().write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


@contextmanager
def interrupt_sets(cancel: threading.Event) -> Iterator[None]:
    """While active, Ctrl+C sets ``cancel`` so the probe can stop and report.

    A second Ctrl+C raises ``KeyboardInterrupt`` as usual.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: object) -> None:
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def run_probe(namespace: argparse.Namespace, cancel: threading.Event | None = None) -> ProbeSummary:
    logger = py_logging.getLogger("sloprobe.cli")
    cfg = resolve_config(namespace)
    info = parse_connection_string(cfg.connection_string or _DEFAULT_CONNECTION_STRING)
    policy = cfg.to_policy()
    logger.info(
        "Retry strategy=%s attempts=%s base=%.2fs max=%.2fs codes=%s",
        cfg.strategy,
        policy.max_attempts,
        policy.base_delay,
        policy.max_delay,
        sorted(policy.transient_codes),
    )
    logger.info("Connection timeout: %s", info.connect_timeout)

    backend = TierChangeSimulator(
        namespace.initial_slo,
        server=info.server,
        database=info.database,
        timeout_every=namespace.timeout_every,
    )
    if namespace.simulate_change:
        backend.schedule_change(
            namespace.simulate_change,
            at=namespace.change_at,
            duration=namespace.change_duration,
        )

    stats = AttemptStats(keep_events=namespace.events_file is not None)
    probe = SloProbe(backend, policy, database=info.display_name, stats=stats)
    logger.info("Starting loop. (CTRL+C to end)")
    try:
        return probe.run(
            iterations=cfg.iterations,
            poll_interval=cfg.poll_interval,
            report_interval=cfg.report_interval,
            cancel=cancel,
        )
    finally:
        if namespace.events_file is not None:
            _write_events(namespace.events_file, stats)


def main(argv: Sequence[str] | None = None) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level, log_file=log_path)
    load_dotenv(find_dotenv(usecwd=True))

    try:
        if namespace.init_config is not None:
            written = save_config(ProbeConfig(), namespace.init_config)
            print(f"Wrote starter config to {written}")
            return int(ExitCode.SUCCESS)

        cancel = threading.Event()
        with interrupt_sets(cancel):
            summary = run_probe(namespace, cancel)
        if summary.cancelled:
            logger.info("Interrupted; stopped after %s polls", summary.polls)
        print(json.dumps(summary.to_dict(), indent=2))
        return int(exit_code_for(summary.outcome))
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping probe")
        return int(ExitCode.CANCELLED)
    except SloProbeError as exc:
        logger.error(
            "Handled SloProbeError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        try:
            hint = f"Inspect logs: {log_path}"
            print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        except Exception:
            pass
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
