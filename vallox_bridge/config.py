"""Configuration loader for vallox-bridge."""

from __future__ import annotations

from configparser import ConfigParser, NoOptionError
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar

from . import constants
from .errors import ConfigurationError

T = TypeVar("T")


@dataclass(slots=True)
class DeviceConfig:
    uri: str = constants.DEFAULT_DEVICE_URI
    poll_interval_seconds: float = 0.0  # Must be set explicitly; load_config rejects <= 0
    max_pages: int = constants.DEFAULT_MAX_PAGES
    reconnect_initial_seconds: float = 1.0
    reconnect_max_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0


@dataclass(slots=True)
class StorageConfig:
    url: str = constants.DEFAULT_STORAGE_URL
    create_schema: bool = False
    echo: bool = False


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = constants.DEFAULT_LOG_PATH
    log_network: bool = False


@dataclass(slots=True)
class ServiceConfig:
    shutdown_timeout_seconds: float = 10.0
    health_enabled: bool = False
    health_host: str = "127.0.0.1"
    health_port: int = 0


@dataclass(slots=True)
class BridgeConfig:
    device: DeviceConfig
    storage: StorageConfig
    logging: LoggingConfig
    service: ServiceConfig
    raw: ConfigParser
    path: Path


def _option(getter: Callable[..., T], section: str, option: str, fallback: T) -> T:
    try:
        return getter(section, option, fallback=fallback)
    except ValueError as exc:
        raise ConfigurationError(f"[{section}] {option}: {exc}") from exc


def load_config(path: Optional[Path] = None) -> BridgeConfig:
    """Load configuration from disk, applying defaults where necessary.

    ``[device] poll_interval_seconds`` has no default and must be positive.
    """

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "device": {
                "uri": constants.DEFAULT_DEVICE_URI,
                "max_pages": str(constants.DEFAULT_MAX_PAGES),
                "reconnect_initial_seconds": "1.0",
                "reconnect_max_seconds": "30.0",
                "connect_timeout_seconds": "10.0",
            },
            "storage": {
                "url": constants.DEFAULT_STORAGE_URL,
                "create_schema": "false",
                "echo": "false",
            },
            "logging": {
                "level": "INFO",
                "path": str(constants.DEFAULT_LOG_PATH),
                "log_network": "false",
            },
            "service": {
                "shutdown_timeout_seconds": "10.0",
                "health_enabled": "false",
                "health_host": "127.0.0.1",
                "health_port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    try:
        poll_interval = parser.getfloat("device", "poll_interval_seconds")
    except ValueError as exc:
        raise ConfigurationError(
            f"[device] poll_interval_seconds must be a number: {exc}"
        ) from exc
    except NoOptionError as exc:
        raise ConfigurationError(
            f"[device] poll_interval_seconds is required in {config_path}"
        ) from exc
    if poll_interval <= 0:
        raise ConfigurationError(
            f"[device] poll_interval_seconds must be positive, got {poll_interval}"
        )

    reconnect_initial = max(
        0.1, _option(parser.getfloat, "device", "reconnect_initial_seconds", 1.0)
    )
    device = DeviceConfig(
        uri=parser.get("device", "uri"),
        poll_interval_seconds=poll_interval,
        max_pages=max(
            1,
            _option(parser.getint, "device", "max_pages", constants.DEFAULT_MAX_PAGES),
        ),
        reconnect_initial_seconds=reconnect_initial,
        reconnect_max_seconds=max(
            reconnect_initial,
            _option(parser.getfloat, "device", "reconnect_max_seconds", 30.0),
        ),
        connect_timeout_seconds=_option(
            parser.getfloat, "device", "connect_timeout_seconds", 10.0
        ),
    )

    storage = StorageConfig(
        url=parser.get("storage", "url"),
        create_schema=_option(parser.getboolean, "storage", "create_schema", False),
        echo=_option(parser.getboolean, "storage", "echo", False),
    )

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=_option(parser.getboolean, "logging", "log_network", False),
    )

    service = ServiceConfig(
        shutdown_timeout_seconds=max(
            0.1,
            _option(parser.getfloat, "service", "shutdown_timeout_seconds", 10.0),
        ),
        health_enabled=_option(parser.getboolean, "service", "health_enabled", False),
        health_host=parser.get("service", "health_host", fallback="127.0.0.1"),
        health_port=_option(parser.getint, "service", "health_port", 0),
    )

    return BridgeConfig(
        device=device,
        storage=storage,
        logging=logging_config,
        service=service,
        raw=parser,
        path=config_path,
    )
