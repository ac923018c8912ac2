from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from sloprobe.config import (
    DEFAULT_TRANSIENT_CODES,
    ProbeConfig,
    load_config,
    parse_codes,
    save_config,
)
from sloprobe.retry import BackoffKind


def test_load_defaults_when_config_missing(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "config.toml")

    assert cfg.strategy == "exponential"
    assert cfg.max_attempts == 5
    assert cfg.base_delay == 1.0
    assert cfg.max_delay == 20.0
    assert cfg.iterations == 0
    assert 40613 in cfg.transient_codes
    assert 18456 not in cfg.transient_codes
    assert set(DEFAULT_TRANSIENT_CODES) <= set(cfg.transient_codes)


def test_config_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    original = ProbeConfig(
        connection_string="Server=tcp:db.example.net,1433;Database=orders",
        strategy="fixed",
        max_attempts=7,
        base_delay=0.5,
        max_delay=4.0,
        jitter=0.2,
        transient_codes=[40613, 40615, 18456],
        poll_interval=0.1,
        report_interval=2.0,
        iterations=30,
    )

    save_config(original, path)
    loaded = load_config(path)

    assert loaded == original


def test_save_config_restricts_permissions(tmp_path: Path) -> None:
    path = save_config(ProbeConfig(), tmp_path / "nested" / "config.toml")

    assert path.exists()
    assert path.stat().st_mode & 0o777 == 0o600


def test_invalid_values_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text(
        "\n".join(
            [
                'strategy = "polly"',
                "max_attempts = 0",
                "base_delay = -1",
                'jitter = "lots"',
                'transient_codes = ["x"]',
                "iterations = true",
            ]
        ),
        encoding="utf-8",
    )

    cfg = load_config(path)

    assert cfg == ProbeConfig()


def test_base_delay_above_default_cap_raises_cap(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("base_delay = 30\n", encoding="utf-8")

    cfg = load_config(path)

    assert cfg.base_delay == 30.0
    assert cfg.max_delay == 30.0


def test_max_delay_below_base_delay_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("base_delay = 2\nmax_delay = 1\n", encoding="utf-8")

    cfg = load_config(path)

    assert cfg.base_delay == 2.0
    assert cfg.max_delay == 20.0


def test_malformed_toml_returns_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.toml"
    path.write_text("strategy = [", encoding="utf-8")

    assert load_config(path) == ProbeConfig()


def test_environment_overrides_connection_string(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "config.toml"
    path.write_text('connection_string = "Server=file;Database=a"\n', encoding="utf-8")
    monkeypatch.setenv("AZURE_CONNECTION_STRING", "Server=legacy;Database=b")

    assert load_config(path).connection_string == "Server=legacy;Database=b"

    monkeypatch.setenv("SLOPROBE_CONNECTION_STRING", "Server=env;Database=c")

    assert load_config(path).connection_string == "Server=env;Database=c"


def test_transient_codes_are_deduplicated_and_sorted() -> None:
    cfg = ProbeConfig(transient_codes=[40615, 40613, 40615])

    assert cfg.transient_codes == [40613, 40615]


def test_model_rejects_inverted_delays() -> None:
    with pytest.raises(ValidationError):
        ProbeConfig(base_delay=10, max_delay=1)


def test_parse_codes_accepts_strings_and_lists() -> None:
    assert parse_codes("40613, 40615,,-2") == [40613, 40615, -2]
    assert parse_codes([1, "2"]) == [1, 2]
    assert parse_codes("a,b") is None
    assert parse_codes([True]) is None
    assert parse_codes(12) is None


def test_to_policy_maps_strategies() -> None:
    exponential = ProbeConfig(jitter=0.1).to_policy()
    assert exponential.backoff_kind is BackoffKind.EXPONENTIAL
    assert exponential.max_attempts == 5
    assert exponential.jitter == 0.1
    assert 40613 in exponential.transient_codes

    fixed = ProbeConfig(strategy="fixed").to_policy()
    assert fixed.backoff_kind is BackoffKind.FIXED

    none = ProbeConfig(strategy="none", max_attempts=9).to_policy()
    assert none.max_attempts == 1
