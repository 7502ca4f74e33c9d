"""Gateway configuration: loading, defaults and derived values."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from fractions import Fraction
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "GQLGATEWAY_LOG_LEVEL"
SERVICE_LIST_ENV = "GQLGATEWAY_SERVICE_LIST"

_NANOSECOND = 1
_UNITS = {
    "ns": _NANOSECOND,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_MAX_NANOSECONDS = 2**63 - 1
_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")

_LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}
_LOG_LEVEL_PATTERN = re.compile(r"([A-Za-z]+)([+-]\d+)?")


class ConfigError(Exception):
    """The configuration could not be read or is invalid."""


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "300ms", "1.5h" or "2h45m".

    Valid units are "ns", "us" (or "µs"), "ms", "s", "m" and "h".
    Raises ValueError for anything else.
    """
    rest = text
    sign = 1
    if rest[:1] in ("+", "-"):
        sign = -1 if rest[0] == "-" else 1
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f"invalid duration {json.dumps(text)}")

    total = Fraction(0)
    pos = 0
    while pos < len(rest):
        match = _COMPONENT.match(rest, pos)
        whole, frac, unit = match.group(1), match.group(2) or "", match.group(3)
        if not whole and not frac:
            raise ValueError(f"invalid duration {json.dumps(text)}")
        if not unit:
            raise ValueError(f"missing unit in duration {json.dumps(text)}")
        if unit not in _UNITS:
            raise ValueError(f"unknown unit {json.dumps(unit)} in duration {json.dumps(text)}")
        value = Fraction(int(whole or "0"))
        if frac:
            value += Fraction(int(frac), 10 ** len(frac))
        total += value * _UNITS[unit]
        limit = _MAX_NANOSECONDS + (1 if sign < 0 else 0)
        if total > limit:
            raise ValueError(f"invalid duration {json.dumps(text)}")
        pos = match.end()

    return timedelta(microseconds=round(sign * total / 1000))


def _parse_log_level(text: str) -> int:
    match = _LOG_LEVEL_PATTERN.fullmatch(text)
    if match is None or match.group(1).upper() not in _LOG_LEVELS:
        raise ValueError(f"unknown log level {text!r}")
    return _LOG_LEVELS[match.group(1).upper()] + int(match.group(2) or 0)


@dataclass
class TimeoutConfig:
    """Read, write and idle timeouts of an HTTP server."""

    read_timeout: str = ""
    write_timeout: str = ""
    idle_timeout: str = ""
    read_timeout_duration: timedelta = timedelta(0)
    write_timeout_duration: timedelta = timedelta(0)
    idle_timeout_duration: timedelta = timedelta(0)

    def _apply(self, data: Any) -> None:
        if data is None:
            return
        if not isinstance(data, dict):
            raise TypeError(f"timeouts must be an object, not {data!r}")
        names = {"read": "read_timeout", "write": "write_timeout", "idle": "idle_timeout"}
        for key, value in data.items():
            attr = names.get(key.lower())
            if attr is None or value is None:
                continue
            setattr(self, attr, _expect(value, str, key))


@dataclass
class PluginConfig:
    """The configuration of one named plugin."""

    name: str = ""
    config: Any = None

    @classmethod
    def from_json(cls, data: Any) -> PluginConfig:
        """Build from a decoded JSON object."""
        if not isinstance(data, dict):
            raise TypeError(f"plugin configuration must be an object, not {data!r}")
        plugin = cls()
        for key, value in data.items():
            lowered = key.lower()
            if lowered == "name" and value is not None:
                plugin.name = _expect(value, str, key)
            elif lowered == "config":
                plugin.config = value
        return plugin


def _expect(value: Any, kind: type, key: str) -> Any:
    if kind is int and isinstance(value, bool) or not isinstance(value, kind):
        raise TypeError(f"value {value!r} for {key!r} is not of type {kind.__name__}")
    return value


@dataclass
class Config:
    """The gateway configuration."""

    id_field_name: str = ""
    gateway_listen_address: str = ""
    disable_introspection: bool = False
    metrics_listen_address: str = ""
    private_listen_address: str = ""
    gateway_port: int = 0
    metrics_port: int = 0
    private_port: int = 0
    default_timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    gateway_timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    private_timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    services: list[str] = field(default_factory=list)
    log_level: int = logging.INFO
    poll_interval: str = ""
    poll_interval_duration: timedelta = timedelta(0)
    max_requests_per_query: int = 0
    max_service_response_size: int = 0
    http_client_timeout: str = ""
    http_client_timeout_duration: timedelta = timedelta(0)
    max_file_upload_size: int = 0
    telemetry: dict[str, Any] = field(default_factory=dict)
    plugins: list[PluginConfig] = field(default_factory=list)
    extensions: Optional[dict[str, Any]] = None
    config_files: list[str] = field(default_factory=list)
    linked_files: list[str] = field(default_factory=list)

    def _addr_or_port(self, addr: str, port: int) -> str:
        return addr if addr else f":{port}"

    def gateway_address(self) -> str:
        """Return the host:port the gateway listens on."""
        return self._addr_or_port(self.gateway_listen_address, self.gateway_port)

    def private_address(self) -> str:
        """Return the host:port of the private listener."""
        return self._addr_or_port(self.private_listen_address, self.private_port)

    def private_http_address(self, path: str) -> str:
        """Return the URL of ``path`` on the private listener."""
        if not self.private_listen_address:
            return f"http://localhost:{self.private_port}/{path}"
        return f"http://{self.private_listen_address}/{path}"

    def metric_address(self) -> str:
        """Return the host:port of the metrics listener."""
        return self._addr_or_port(self.metrics_listen_address, self.metrics_port)

    def load(self) -> None:
        """Load or reload every config file, then derive the computed values."""
        self.extensions = None
        plugins: list[PluginConfig] = []
        for path in self.config_files:
            self.plugins = []
            data = _read_config_file(path)
            try:
                self._apply(data)
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"error decoding config file {json.dumps(path)}: {exc}") from exc
            plugins.extend(self.plugins)
        self.plugins = plugins

        env_level = os.environ.get(LOG_LEVEL_ENV, "")
        if env_level:
            try:
                self.log_level = _parse_log_level(env_level)
            except ValueError:
                logger.warning("invalid loglevel: %s", env_level)

        self.poll_interval_duration = _parse_setting(self.poll_interval, "poll interval")
        self.http_client_timeout_duration = _parse_setting(
            self.http_client_timeout, "http client timeout"
        )
        defaults = self.default_timeouts
        defaults.read_timeout_duration = _parse_setting(defaults.read_timeout, "default read timeout")
        defaults.write_timeout_duration = _parse_setting(
            defaults.write_timeout, "default write timeout"
        )
        defaults.idle_timeout_duration = _parse_setting(defaults.idle_timeout, "default idle timeout")
        _load_timeouts(self.gateway_timeouts, "gateway", defaults)
        _load_timeouts(self.private_timeouts, "private", defaults)

        self.services = self._build_service_list()

    def _build_service_list(self) -> list[str]:
        services = dict.fromkeys(self.services)
        services.update(dict.fromkeys(os.environ.get(SERVICE_LIST_ENV, "").split()))
        if not services:
            files = " ".join(self.config_files)
            raise ConfigError(f"no services found in {SERVICE_LIST_ENV} or [{files}]")
        return list(services)

    def _apply(self, data: Any) -> None:
        if data is None:
            return
        if not isinstance(data, dict):
            raise TypeError(f"configuration must be an object, not {data!r}")
        handlers = self._handlers()
        for key, value in data.items():
            handler = handlers.get(key.lower())
            if handler is not None:
                handler(key, value)

    def _handlers(self) -> dict[str, Callable[[str, Any], None]]:
        def scalar(attr: str, kind: type) -> Callable[[str, Any], None]:
            def apply(key: str, value: Any) -> None:
                if value is not None:
                    setattr(self, attr, _expect(value, kind, key))

            return apply

        def services(key: str, value: Any) -> None:
            if value is None:
                self.services = []
                return
            _expect(value, list, key)
            self.services = [_expect(item, str, key) for item in value]

        def log_level(key: str, value: Any) -> None:
            if value is not None:
                self.log_level = _parse_log_level(_expect(value, str, key))

        def plugins(key: str, value: Any) -> None:
            if value is None:
                self.plugins = []
                return
            _expect(value, list, key)
            self.plugins = [PluginConfig.from_json(item) for item in value]

        def extensions(key: str, value: Any) -> None:
            if value is None:
                self.extensions = None
                return
            _expect(value, dict, key)
            if self.extensions is None:
                self.extensions = {}
            self.extensions.update(value)

        def telemetry(key: str, value: Any) -> None:
            if value is not None:
                self.telemetry = dict(_expect(value, dict, key))

        return {
            "id-field-name": scalar("id_field_name", str),
            "gateway-address": scalar("gateway_listen_address", str),
            "disable-introspection": scalar("disable_introspection", bool),
            "metrics-address": scalar("metrics_listen_address", str),
            "private-address": scalar("private_listen_address", str),
            "gateway-port": scalar("gateway_port", int),
            "metrics-port": scalar("metrics_port", int),
            "private-port": scalar("private_port", int),
            "default-timeouts": lambda key, value: self.default_timeouts._apply(value),
            "gateway-timeouts": lambda key, value: self.gateway_timeouts._apply(value),
            "private-timeouts": lambda key, value: self.private_timeouts._apply(value),
            "services": services,
            "loglevel": log_level,
            "poll-interval": scalar("poll_interval", str),
            "max-requests-per-query": scalar("max_requests_per_query", int),
            "max-service-response-size": scalar("max_service_response_size", int),
            "http-client-timeout": scalar("http_client_timeout", str),
            "max-file-upload-size": scalar("max_file_upload_size", int),
            "telemetry": telemetry,
            "plugins": plugins,
            "extensions": extensions,
        }


def _read_config_file(path: str) -> Any:
    try:
        with open(path, encoding="utf-8") as handle:
            text = handle.read()
    except OSError as exc:
        raise ConfigError(f"unable to open config file {json.dumps(path)}: {exc}") from exc
    try:
        data, _ = json.JSONDecoder().raw_decode(text.lstrip())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"error decoding config file {json.dumps(path)}: {exc}") from exc
    return data


def _parse_setting(text: str, what: str) -> timedelta:
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise ConfigError(f"invalid {what}: {exc}") from exc


def _load_timeouts(config: TimeoutConfig, name: str, defaults: TimeoutConfig) -> None:
    for kind in ("read", "write", "idle"):
        text = getattr(config, f"{kind}_timeout")
        if text:
            setattr(config, f"{kind}_timeout_duration", _parse_setting(text, f"{name} {kind} timeout"))
        if not getattr(config, f"{kind}_timeout_duration"):
            setattr(
                config,
                f"{kind}_timeout_duration",
                getattr(defaults, f"{kind}_timeout_duration"),
            )


def _linked_file(path: str) -> str:
    return os.path.realpath(path) if os.path.exists(path) else ""


def load_config(config_files: list[str]) -> Config:
    """Build the configuration from defaults and the given files."""
    files = list(config_files)
    config = Config(
        default_timeouts=TimeoutConfig(read_timeout="5s", write_timeout="10s", idle_timeout="120s"),
        gateway_port=8082,
        private_port=8083,
        metrics_port=9009,
        log_level=logging.DEBUG,
        poll_interval="10s",
        max_requests_per_query=50,
        max_service_response_size=1024 * 1024,
        http_client_timeout="5s",
        config_files=files,
        linked_files=[_linked_file(path) for path in files],
    )
    config.load()
    return config