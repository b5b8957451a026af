"""Configuration loader for muip-relay."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants


@dataclass(slots=True)
class DispatchConfig:
    url: str = constants.DEFAULT_DISPATCH_URL
    admin_key: str = ""
    key_type: str = constants.DEFAULT_KEY_TYPE
    timeout_seconds: float = constants.DEFAULT_REQUEST_TIMEOUT_SECONDS


@dataclass(slots=True)
class ServerConfig:
    host: str = constants.DEFAULT_SERVER_HOST
    port: int = constants.DEFAULT_SERVER_PORT
    cors_origin: str = "*"


@dataclass(slots=True)
class RateLimitConfig:
    window_ms: int = constants.DEFAULT_RATE_WINDOW_MS
    max_requests: int = constants.DEFAULT_RATE_MAX_REQUESTS
    block_ms: int = constants.DEFAULT_RATE_BLOCK_MS
    max_entries: int = constants.DEFAULT_RATE_MAX_ENTRIES
    idle_ms: int = constants.DEFAULT_RATE_IDLE_MS
    cleanup_interval: int = constants.DEFAULT_RATE_CLEANUP_INTERVAL


@dataclass(slots=True)
class ConsoleConfig:
    websocket_enabled: bool = True
    stdin_enabled: bool = False


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class RelayConfig:
    dispatch: DispatchConfig
    server: ServerConfig
    rate_limit: RateLimitConfig
    console: ConsoleConfig
    logging: LoggingConfig
    raw: ConfigParser
    path: Path


def load_config(path: Optional[Path] = None) -> RelayConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "dispatch": {
                "url": constants.DEFAULT_DISPATCH_URL,
                "admin_key": "",
                "key_type": constants.DEFAULT_KEY_TYPE,
                "timeout_seconds": str(constants.DEFAULT_REQUEST_TIMEOUT_SECONDS),
            },
            "server": {
                "host": constants.DEFAULT_SERVER_HOST,
                "port": str(constants.DEFAULT_SERVER_PORT),
                "cors_origin": "*",
            },
            "rate_limit": {
                "window_ms": str(constants.DEFAULT_RATE_WINDOW_MS),
                "max_requests": str(constants.DEFAULT_RATE_MAX_REQUESTS),
                "block_ms": str(constants.DEFAULT_RATE_BLOCK_MS),
                "max_entries": str(constants.DEFAULT_RATE_MAX_ENTRIES),
                "idle_ms": str(constants.DEFAULT_RATE_IDLE_MS),
                "cleanup_interval": str(constants.DEFAULT_RATE_CLEANUP_INTERVAL),
            },
            "console": {
                "websocket_enabled": "true",
                "stdin_enabled": "false",
            },
            "logging": {
                "level": "INFO",
                "log_network": "false",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path, encoding="utf-8")

    try:
        timeout_value = parser.getfloat(
            "dispatch",
            "timeout_seconds",
            fallback=constants.DEFAULT_REQUEST_TIMEOUT_SECONDS,
        )
    except ValueError:
        timeout_value = constants.DEFAULT_REQUEST_TIMEOUT_SECONDS
    if timeout_value <= 0:
        timeout_value = constants.DEFAULT_REQUEST_TIMEOUT_SECONDS

    dispatch = DispatchConfig(
        url=parser.get("dispatch", "url").strip(),
        admin_key=parser.get("dispatch", "admin_key", fallback=""),
        key_type=parser.get("dispatch", "key_type").strip()
        or constants.DEFAULT_KEY_TYPE,
        timeout_seconds=timeout_value,
    )

    server = ServerConfig(
        host=parser.get("server", "host"),
        port=max(
            0,
            parser.getint(
                "server", "port", fallback=constants.DEFAULT_SERVER_PORT
            ),
        ),
        cors_origin=parser.get("server", "cors_origin", fallback="*"),
    )

    rate_limit = RateLimitConfig(
        window_ms=max(
            1,
            parser.getint(
                "rate_limit", "window_ms", fallback=constants.DEFAULT_RATE_WINDOW_MS
            ),
        ),
        max_requests=max(
            1,
            parser.getint(
                "rate_limit",
                "max_requests",
                fallback=constants.DEFAULT_RATE_MAX_REQUESTS,
            ),
        ),
        block_ms=max(
            1,
            parser.getint(
                "rate_limit", "block_ms", fallback=constants.DEFAULT_RATE_BLOCK_MS
            ),
        ),
        max_entries=max(
            1,
            parser.getint(
                "rate_limit",
                "max_entries",
                fallback=constants.DEFAULT_RATE_MAX_ENTRIES,
            ),
        ),
        idle_ms=max(
            1,
            parser.getint(
                "rate_limit", "idle_ms", fallback=constants.DEFAULT_RATE_IDLE_MS
            ),
        ),
        cleanup_interval=max(
            1,
            parser.getint(
                "rate_limit",
                "cleanup_interval",
                fallback=constants.DEFAULT_RATE_CLEANUP_INTERVAL,
            ),
        ),
    )

    console = ConsoleConfig(
        websocket_enabled=parser.getboolean(
            "console", "websocket_enabled", fallback=True
        ),
        stdin_enabled=parser.getboolean("console", "stdin_enabled", fallback=False),
    )

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    return RelayConfig(
        dispatch=dispatch,
        server=server,
        rate_limit=rate_limit,
        console=console,
        logging=logging_config,
        raw=parser,
        path=config_path,
    )


def save_config(config: RelayConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
