"""
Settings for the agent and the collector.

Values come from environment variables (a ``.env`` file is loaded first)
and can be overridden from the command line.
"""
import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_ADDRESS = "127.0.0.1:8080"
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_REPORT_INTERVAL = 10.0
DEFAULT_CLIENT_TIMEOUT = 5.0
DEFAULT_MAX_IDLE_CONNECTIONS = 30
DEFAULT_SHUTDOWN_TIMEOUT = 5.0
DEFAULT_LOG_LEVEL = "INFO"

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(ValueError):
    """Raised when settings are missing or invalid."""


def _get_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'") from None


def _get_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'") from None


def _check_log_level(level: str) -> None:
    if level.upper() not in LOG_LEVELS:
        raise ConfigurationError(f"Unknown log level '{level}', expected one of {', '.join(LOG_LEVELS)}")


def split_address(address: str) -> Tuple[str, int]:
    """Split ``host:port`` (optionally with an http scheme) into host and port."""
    address = address.strip()
    if "://" in address:
        address = address.split("://", 1)[1]
    address = address.rstrip("/")

    host, sep, port = address.rpartition(":")
    if not sep or not port:
        raise ConfigurationError(f"Address must be host:port, got '{address}'")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigurationError(f"Invalid port in address '{address}'") from None
    if not 0 <= port_number <= 65535:
        raise ConfigurationError(f"Port out of range in address '{address}'")
    return host or "0.0.0.0", port_number


class _OverridableSettings:
    def with_overrides(self, **values):
        """Return a copy with every non-None value applied, validated."""
        known = {f.name for f in fields(self)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        updated = replace(self, **{k: v for k, v in values.items() if v is not None})
        updated.validate()
        return updated


@dataclass(frozen=True)
class AgentSettings(_OverridableSettings):
    """Agent configuration."""
    address: str = DEFAULT_ADDRESS
    poll_interval: float = DEFAULT_POLL_INTERVAL
    report_interval: float = DEFAULT_REPORT_INTERVAL
    client_timeout: float = DEFAULT_CLIENT_TIMEOUT
    max_idle_connections: int = DEFAULT_MAX_IDLE_CONNECTIONS
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AgentSettings":
        """Load agent settings from the environment.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            Validated AgentSettings
        """
        environ = os.environ if environ is None else environ
        settings = cls(
            address=environ.get("ADDRESS") or DEFAULT_ADDRESS,
            poll_interval=_get_float(environ, "POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
            report_interval=_get_float(environ, "REPORT_INTERVAL", DEFAULT_REPORT_INTERVAL),
            client_timeout=_get_float(environ, "CLIENT_TIMEOUT", DEFAULT_CLIENT_TIMEOUT),
            max_idle_connections=_get_int(environ, "MAX_IDLE_CONNECTIONS", DEFAULT_MAX_IDLE_CONNECTIONS),
            shutdown_timeout=_get_float(environ, "SHUTDOWN_TIMEOUT", DEFAULT_SHUTDOWN_TIMEOUT),
            log_level=environ.get("LOG_LEVEL") or DEFAULT_LOG_LEVEL,
            log_file=environ.get("LOG_FILE") or None,
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        split_address(self.address)
        for name in ("poll_interval", "report_interval", "client_timeout", "shutdown_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.report_interval < self.poll_interval:
            raise ConfigurationError(
                f"report_interval ({self.report_interval}) must not be shorter "
                f"than poll_interval ({self.poll_interval})"
            )
        if self.max_idle_connections < 1:
            raise ConfigurationError(f"max_idle_connections must be at least 1, got {self.max_idle_connections}")
        _check_log_level(self.log_level)


@dataclass(frozen=True)
class CollectorSettings(_OverridableSettings):
    """Collector configuration."""
    address: str = DEFAULT_ADDRESS
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CollectorSettings":
        environ = os.environ if environ is None else environ
        settings = cls(
            address=environ.get("ADDRESS") or DEFAULT_ADDRESS,
            log_level=environ.get("LOG_LEVEL") or DEFAULT_LOG_LEVEL,
            log_file=environ.get("LOG_FILE") or None,
        )
        settings.validate()
        return settings

    @property
    def host(self) -> str:
        return split_address(self.address)[0]

    @property
    def port(self) -> int:
        return split_address(self.address)[1]

    def validate(self) -> None:
        split_address(self.address)
        _check_log_level(self.log_level)
