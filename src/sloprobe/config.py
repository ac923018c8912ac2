"""Probe config loading/saving."""

from __future__ import annotations

import os
import sys
from contextlib import suppress
from pathlib import Path
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from sloprobe.retry.models import BackoffKind, RetryPolicy

DEFAULT_CONFIG_PATH = Path("~/.config/sloprobe/config.toml").expanduser()
CONNECTION_STRING_ENV = "SLOPROBE_CONNECTION_STRING"
LEGACY_CONNECTION_STRING_ENV = "AZURE_CONNECTION_STRING"

Strategy = Literal["none", "fixed", "exponential"]
DEFAULT_STRATEGY: Strategy = "exponential"
DEFAULT_TRANSIENT_CODES = (
    0,
    35,
    64,
    233,
    4060,
    10053,
    10054,
    10060,
    10928,
    10929,
    40197,
    40501,
    40613,
    40615,
    49918,
    49919,
    49920,
)
# Timeouts are flagged on the error itself; -2 is listed for drivers that only report the number.
DEFAULT_TIMEOUT_CODES = (-2,)

_VALID_STRATEGIES = {"none", "fixed", "exponential"}


class ProbeConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    connection_string: str = ""
    strategy: Strategy = DEFAULT_STRATEGY
    max_attempts: int = Field(default=5, ge=1, le=100)
    base_delay: float = Field(default=1.0, gt=0)
    max_delay: float = Field(default=20.0, gt=0)
    jitter: float = Field(default=0.0, ge=0, le=1)
    transient_codes: list[int] = Field(
        default_factory=lambda: sorted({*DEFAULT_TRANSIENT_CODES, *DEFAULT_TIMEOUT_CODES})
    )
    poll_interval: float = Field(default=0.05, ge=0)
    report_interval: float = Field(default=1.0, gt=0)
    iterations: int = Field(default=0, ge=0)

    @field_validator("strategy")
    @classmethod
    def _validate_strategy(cls, value: str) -> str:
        if value not in _VALID_STRATEGIES:
            raise ValueError(f"Invalid strategy: {value}")
        return value

    @field_validator("transient_codes")
    @classmethod
    def _dedupe_codes(cls, value: list[int]) -> list[int]:
        return sorted(set(value))

    @model_validator(mode="after")
    def _validate_delays(self) -> ProbeConfig:
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self

    def to_policy(self) -> RetryPolicy:
        if self.strategy == "none":
            return RetryPolicy(
                max_attempts=1,
                backoff_kind=BackoffKind.FIXED,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                transient_codes=frozenset(self.transient_codes),
            )
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_kind=BackoffKind(self.strategy),
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            transient_codes=frozenset(self.transient_codes),
            jitter=self.jitter,
        )


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def parse_codes(value: object) -> list[int] | None:
    if isinstance(value, str):
        items: list[object] = [item.strip() for item in value.split(",") if item.strip()]
    elif isinstance(value, list):
        items = list(value)
    else:
        return None
    codes: list[int] = []
    for item in items:
        if isinstance(item, bool):
            return None
        if isinstance(item, int):
            codes.append(item)
            continue
        if isinstance(item, str):
            try:
                codes.append(int(item))
            except ValueError:
                return None
            continue
        return None
    return codes


def _number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def apply_env_overrides(cfg: ProbeConfig) -> ProbeConfig:
    for name in (CONNECTION_STRING_ENV, LEGACY_CONNECTION_STRING_ENV):
        value = os.getenv(name, "").strip()
        if value:
            cfg.connection_string = value
            break
    return cfg


def _sanitize(raw: dict[str, object]) -> ProbeConfig:
    cfg = ProbeConfig()

    connection_string = raw.get("connection_string", cfg.connection_string)
    if isinstance(connection_string, str):
        cfg.connection_string = connection_string

    strategy = raw.get("strategy", cfg.strategy)
    if isinstance(strategy, str) and strategy in _VALID_STRATEGIES:
        cfg.strategy = cast(Strategy, strategy)

    max_attempts = raw.get("max_attempts", cfg.max_attempts)
    if isinstance(max_attempts, int) and not isinstance(max_attempts, bool) and 1 <= max_attempts <= 100:
        cfg.max_attempts = max_attempts

    base_delay = _number(raw.get("base_delay"))
    max_delay = _number(raw.get("max_delay"))
    if base_delay is not None and base_delay > 0:
        resolved_max = max_delay if max_delay is not None and max_delay >= base_delay else None
        if resolved_max is None and base_delay > cfg.max_delay:
            resolved_max = base_delay
        cfg = cfg.model_copy(
            update={"base_delay": base_delay, "max_delay": resolved_max or cfg.max_delay}
        )
    elif max_delay is not None and max_delay >= cfg.base_delay:
        cfg.max_delay = max_delay

    jitter = _number(raw.get("jitter"))
    if jitter is not None and 0 <= jitter <= 1:
        cfg.jitter = jitter

    codes = parse_codes(raw.get("transient_codes"))
    if codes:
        cfg.transient_codes = codes

    poll_interval = _number(raw.get("poll_interval"))
    if poll_interval is not None and poll_interval >= 0:
        cfg.poll_interval = poll_interval

    report_interval = _number(raw.get("report_interval"))
    if report_interval is not None and report_interval > 0:
        cfg.report_interval = report_interval

    iterations = raw.get("iterations", cfg.iterations)
    if isinstance(iterations, int) and not isinstance(iterations, bool) and iterations >= 0:
        cfg.iterations = iterations

    return cfg


def load_config(path: str | Path | None = None) -> ProbeConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return apply_env_overrides(ProbeConfig())
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return apply_env_overrides(ProbeConfig())
    return apply_env_overrides(_sanitize(raw))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    if isinstance(value, list):
        return "[" + ", ".join(_toml_scalar(item) for item in value) + "]"
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def save_config(config: ProbeConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        f"connection_string = {_toml_scalar(config.connection_string)}",
        f"strategy = {_toml_scalar(config.strategy)}",
        f"max_attempts = {_toml_scalar(config.max_attempts)}",
        f"base_delay = {_toml_scalar(config.base_delay)}",
        f"max_delay = {_toml_scalar(config.max_delay)}",
        f"jitter = {_toml_scalar(config.jitter)}",
        f"transient_codes = {_toml_scalar(list(config.transient_codes))}",
        f"poll_interval = {_toml_scalar(config.poll_interval)}",
        f"report_interval = {_toml_scalar(config.report_interval)}",
        f"iterations = {_toml_scalar(config.iterations)}",
    ]
    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
