"""Connection string parsing for the probe target."""

from __future__ import annotations

from dataclasses import dataclass, field

from sloprobe.errors import ExitCode, SloProbeError

DEFAULT_CONNECT_TIMEOUT = 15

_SERVER_KEYS = ("server", "data source", "address", "addr", "network address")
_DATABASE_KEYS = ("database", "initial catalog")
_TIMEOUT_KEYS = ("connect timeout", "connection timeout", "timeout")


@dataclass(frozen=True)
class ConnectionInfo:
    server: str
    database: str
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    options: dict[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return f"{self.server}@{self.database}"


def _split_pairs(text: str) -> list[str]:
    pairs: list[str] = []
    current: list[str] = []
    quote = ""
    for char in text:
        if quote:
            if char == quote:
                quote = ""
            else:
                current.append(char)
            continue
        if char in ("'", '"'):
            quote = char
            continue
        if char == ";":
            pairs.append("".join(current))
            current = []
            continue
        current.append(char)
    if quote:
        raise SloProbeError(
            "Unterminated quote in connection string.",
            code=ExitCode.CONFIG_ERROR,
            hint="Close the quoted value or remove the quote.",
        )
    pairs.append("".join(current))
    return [item for item in pairs if item.strip()]


def _first(options: dict[str, str], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = options.get(key, "").strip()
        if value:
            return value
    return ""


def parse_connection_string(text: str) -> ConnectionInfo:
    if not text or not text.strip():
        raise SloProbeError(
            "Connection string is empty.",
            code=ExitCode.CONFIG_ERROR,
            hint="Set SLOPROBE_CONNECTION_STRING or pass --connection-string.",
        )

    options: dict[str, str] = {}
    for pair in _split_pairs(text):
        key, sep, value = pair.partition("=")
        if not sep:
            raise SloProbeError(
                f"Malformed connection string segment: {pair.strip()!r}",
                code=ExitCode.CONFIG_ERROR,
                hint="Use key=value pairs separated by ';'.",
            )
        options[" ".join(key.lower().split())] = value.strip()

    server = _first(options, _SERVER_KEYS)
    if server.lower().startswith("tcp:"):
        server = server[4:]
    database = _first(options, _DATABASE_KEYS) or "master"

    raw_timeout = _first(options, _TIMEOUT_KEYS)
    connect_timeout = DEFAULT_CONNECT_TIMEOUT
    if raw_timeout:
        try:
            connect_timeout = int(raw_timeout)
        except ValueError as exc:
            raise SloProbeError(
                f"Invalid connect timeout: {raw_timeout}",
                code=ExitCode.CONFIG_ERROR,
                hint="Connect Timeout must be a whole number of seconds.",
            ) from exc

    if not server:
        raise SloProbeError(
            "Connection string has no server.",
            code=ExitCode.CONFIG_ERROR,
            hint="Add Server=<host> to the connection string.",
        )
    return ConnectionInfo(
        server=server,
        database=database,
        connect_timeout=connect_timeout,
        options=options,
    )
