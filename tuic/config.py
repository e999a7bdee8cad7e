"""Server configuration: command-line parsing and JSON config loading."""

from __future__ import annotations

import ipaddress
import json
import logging
import re
import sys
import uuid as _uuid
from dataclasses import dataclass, field, fields, MISSING
from datetime import timedelta
from importlib import metadata
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from tuic.protocol import SocketAddress
from tuic.utils import CongestionControl, parse_congestion_control

__all__ = [
    "ConfigError",
    "ShowVersion",
    "ShowHelp",
    "Config",
    "parse_duration",
    "config_from_dict",
    "load_config",
    "parse",
]

HELP_MESSAGE = """
Usage tuic-server [arguments]

Arguments:
    -c, --config <path>     Path to the config file (required)
    -v, --version           Print the version
    -h, --help              Print this help message
"""

TRACE = 5
_LOG_LEVELS = {
    "off": logging.CRITICAL + 10,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}


class ConfigError(Exception):
    """Raised when the command line or the config file is invalid."""


class ShowVersion(ConfigError):
    """The version was requested; ``message`` holds it."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ShowHelp(ConfigError):
    """Help was requested; ``message`` holds the usage text."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class Config:
    """Server settings as read from the config file."""

    server: SocketAddress
    users: Dict[_uuid.UUID, bytes]
    certificate: Path
    private_key: Path
    congestion_control: CongestionControl = CongestionControl.CUBIC
    alpn: List[bytes] = field(default_factory=list)
    udp_relay_ipv6: bool = True
    zero_rtt_handshake: bool = False
    dual_stack: Optional[bool] = None
    auth_timeout: timedelta = timedelta(seconds=3)
    task_negotiation_timeout: timedelta = timedelta(seconds=3)
    max_idle_time: timedelta = timedelta(seconds=10)
    max_external_packet_size: int = 1500
    send_window: int = 8 * 1024 * 1024 * 2
    receive_window: int = 8 * 1024 * 1024
    gc_interval: timedelta = timedelta(seconds=3)
    gc_lifetime: timedelta = timedelta(seconds=15)
    log_level: int = logging.WARNING


# Durations

_NS_PER_US = 1_000
_NS_PER_MS = 1_000_000
_NS_PER_S = 1_000_000_000

_DURATION_UNITS = {
    **dict.fromkeys(("nanos", "nsec", "ns"), 1),
    **dict.fromkeys(("micros", "usec", "us", "\u00b5s"), _NS_PER_US),
    **dict.fromkeys(("millis", "msec", "ms"), _NS_PER_MS),
    **dict.fromkeys(("seconds", "second", "secs", "sec", "s"), _NS_PER_S),
    **dict.fromkeys(("minutes", "minute", "min", "mins", "m"), 60 * _NS_PER_S),
    **dict.fromkeys(("hours", "hour", "hr", "hrs", "h"), 3600 * _NS_PER_S),
    **dict.fromkeys(("days", "day", "d"), 86400 * _NS_PER_S),
    **dict.fromkeys(("weeks", "week", "w"), 7 * 86400 * _NS_PER_S),
    **dict.fromkeys(("months", "month", "M"), 2_630_016 * _NS_PER_S),
    **dict.fromkeys(("years", "year", "y"), 31_557_600 * _NS_PER_S),
}

_DURATION_ITEM = re.compile(r"(\d+)([^\W\d_]*)\s*")


def parse_duration(text: str) -> timedelta:
    """Parse a human-readable duration such as ``"3s"`` or ``"1h 30m"``.

    Sub-microsecond parts are truncated.
    """
    if not isinstance(text, str):
        raise TypeError("duration must be a string")
    stripped = text.strip()
    if not stripped:
        raise ValueError("value was empty")
    total_ns = 0
    pos = 0
    while pos < len(stripped):
        match = _DURATION_ITEM.match(stripped, pos)
        if match is None:
            raise ValueError(f"invalid character at {pos}")
        number, unit = match.groups()
        if not unit:
            raise ValueError("time unit needed, for example 3sec or 5min")
        try:
            scale = _DURATION_UNITS[unit]
        except KeyError:
            raise ValueError(f"unknown time unit {unit!r}") from None
        total_ns += int(number) * scale
        pos = match.end()
    return timedelta(microseconds=total_ns // _NS_PER_US)


# Field converters

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1


def _string(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {json.dumps(value)}")
    return value


def _boolean(value: Any) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"expected a boolean, got {json.dumps(value)}")
    return value


def _optional_boolean(value: Any) -> Optional[bool]:
    return None if value is None else _boolean(value)


def _unsigned(maximum: int) -> Callable[[Any], int]:
    def convert(value: Any) -> int:
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(f"expected an integer, got {json.dumps(value)}")
        if not 0 <= value <= maximum:
            raise ValueError(f"integer {value} out of range 0..={maximum}")
        return value

    return convert


def _socket_address(value: Any) -> SocketAddress:
    text = _string(value)
    match = re.fullmatch(r"\[([^\]]+)\]:(\d+)", text) or re.fullmatch(r"([0-9.]+):(\d+)", text)
    if match is None:
        raise ValueError("invalid socket address syntax")
    host, port_text = match.groups()
    port = int(port_text)
    if port > 0xFFFF:
        raise ValueError("invalid socket address syntax")
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        raise ValueError("invalid socket address syntax") from None
    if (ip.version == 6) != text.startswith("["):
        raise ValueError("invalid socket address syntax")
    return SocketAddress(ip, port)


def _users(value: Any) -> Dict[_uuid.UUID, bytes]:
    if not isinstance(value, dict):
        raise TypeError("expected a map of UUIDs to passwords")
    users: Dict[_uuid.UUID, bytes] = {}
    for key, password in value.items():
        try:
            user = _uuid.UUID(key)
        except ValueError:
            raise ValueError(f"invalid UUID {key!r}") from None
        users[user] = _string(password).encode("utf-8")
    if not users:
        raise ValueError("users cannot be empty")
    return users


def _path(value: Any) -> Path:
    return Path(_string(value))


def _alpn(value: Any) -> List[bytes]:
    if not isinstance(value, list):
        raise TypeError("expected a list of strings")
    return [_string(item).encode("utf-8") for item in value]


def _duration(value: Any) -> timedelta:
    return parse_duration(_string(value))


def _congestion_control(value: Any) -> CongestionControl:
    return parse_congestion_control(_string(value))


def _log_level(value: Any) -> int:
    text = _string(value)
    try:
        return _LOG_LEVELS[text.lower()]
    except KeyError:
        names = ", ".join(f"`{name}`" for name in _LOG_LEVELS)
        raise ValueError(f"unknown variant `{text}`, expected one of {names}") from None


_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "server": _socket_address,
    "users": _users,
    "certificate": _path,
    "private_key": _path,
    "congestion_control": _congestion_control,
    "alpn": _alpn,
    "udp_relay_ipv6": _boolean,
    "zero_rtt_handshake": _boolean,
    "dual_stack": _optional_boolean,
    "auth_timeout": _duration,
    "task_negotiation_timeout": _duration,
    "max_idle_time": _duration,
    "max_external_packet_size": _unsigned(_U64_MAX),
    "send_window": _unsigned(_U64_MAX),
    "receive_window": _unsigned(_U32_MAX),
    "gc_interval": _duration,
    "gc_lifetime": _duration,
    "log_level": _log_level,
}

_REQUIRED = tuple(
    f.name for f in fields(Config) if f.default is MISSING and f.default_factory is MISSING
)


def config_from_dict(data: Mapping[str, Any]) -> Config:
    """Build a :class:`Config` from decoded JSON, rejecting unknown fields."""
    if not isinstance(data, Mapping):
        raise ConfigError("invalid type: expected a JSON object")
    for name in data:
        if name not in _CONVERTERS:
            raise ConfigError(f"unknown field `{name}`")
    for name in _REQUIRED:
        if name not in data:
            raise ConfigError(f"missing field `{name}`")
    values = {}
    for name, value in data.items():
        try:
            values[name] = _CONVERTERS[name](value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid value for `{name}`: {exc}") from exc
    return Config(**values)


def load_config(path) -> Config:
    """Read and validate a JSON config file."""
    try:
        with open(path, encoding="utf-8") as file:
            data = json.load(file)
    except OSError as exc:
        raise ConfigError(str(exc)) from exc
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return config_from_dict(data)


def _package_version() -> str:
    try:
        return metadata.version("tuic")
    except metadata.PackageNotFoundError:
        return "unknown"


def parse(argv: Optional[Sequence[str]] = None) -> Config:
    """Parse command-line arguments (without the program name) and load the config.

    Raises :class:`ShowVersion` or :class:`ShowHelp` when those were asked for.
    """
    args = list(sys.argv[1:] if argv is None else argv)
    path: Optional[str] = None
    options_done = False
    i = 0

    while i < len(args):
        arg = args[i]
        i += 1

        if not options_done and arg == "--":
            options_done = True
            continue

        if not options_done and arg.startswith("--"):
            name, has_value, inline = arg[2:].partition("=")
            option = f"--{name}"
            if name == "config":
                if path is not None:
                    raise ConfigError(f"invalid option '{option}'")
                if has_value:
                    path = inline
                elif i < len(args):
                    path = args[i]
                    i += 1
                else:
                    raise ConfigError(f"missing argument for option '{option}'")
            elif name == "version":
                raise ShowVersion(_package_version())
            elif name == "help":
                raise ShowHelp(HELP_MESSAGE)
            else:
                raise ConfigError(f"invalid option '{option}'")
            continue

        if not options_done and arg.startswith("-") and len(arg) > 1:
            letter, rest = arg[1], arg[2:]
            option = f"-{letter}"
            if letter == "c":
                if path is not None:
                    raise ConfigError(f"invalid option '{option}'")
                if rest:
                    path = rest[1:] if rest.startswith("=") else rest
                elif i < len(args):
                    path = args[i]
                    i += 1
                else:
                    raise ConfigError(f"missing argument for option '{option}'")
            elif letter == "v":
                raise ShowVersion(_package_version())
            elif letter == "h":
                raise ShowHelp(HELP_MESSAGE)
            else:
                raise ConfigError(f"invalid option '{option}'")
            continue

        raise ConfigError(f'unexpected argument "{arg}"')

    if path is None:
        raise ConfigError("no config file specified")
    return load_config(path)