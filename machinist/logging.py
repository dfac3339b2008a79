"""Logging configuration for machinist.

Structured logging via loguru. The library stays silent until the controller
process hosting the actuator calls ``setup_logging``. Every actuator record
is bound to the machine it concerns, and sinks render that binding as a
``[namespace/cluster/machine]`` prefix.

Example:
    from machinist.logging import LogConfig, setup_logging, teardown_logging

    handler_ids = setup_logging(LogConfig(level="DEBUG", file="machinist.log"))
    try:
        await actuator.create(cluster, machine)
    finally:
        teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, Literal, get_args

from loguru import logger

from machinist.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from loguru import Record

logger.disable("machinist")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

_CONSOLE_HEAD = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
)
_FILE_HEAD = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "


def _target(record: Record) -> str:
    extra = record["extra"]
    parts = [extra[k] for k in ("namespace", "cluster", "machine") if extra.get(k)]
    if parts:
        return "[" + "/".join(parts) + "] "
    if component := extra.get("component"):
        return f"[{component}] "
    return ""


def _console_format(record: Record) -> str:
    # Braces in the target are escaped so loguru doesn't treat them as fields.
    target = _target(record).replace("{", "{{").replace("}", "}}")
    return _CONSOLE_HEAD + f"<cyan>{target}</cyan><level>{{message}}</level>\n{{exception}}"


def _file_format(record: Record) -> str:
    target = _target(record).replace("{", "{{").replace("}", "}}")
    return _FILE_HEAD + "{name}:{function}:{line} - " + target + "{message}\n{exception}"


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration for the actuator process.

    Attributes:
        level: Minimum console log level (DEBUG, INFO, WARNING, ERROR).
        file: Path to log file. If provided, every record is written to it.
        console: Whether to log to stderr. Defaults to True.
        serialize: Write the file sink as JSON lines for log shippers.
        rotation: File rotation policy (e.g., "50 MB", "1 day"). Defaults to "50 MB".
        retention: Number of old log files to keep. Defaults to 10.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    serialize: bool = False
    rotation: str = "50 MB"
    retention: int = 10

    def __post_init__(self) -> None:
        if self.level not in get_args(LogLevel.__value__):
            raise ConfigurationError(f"Unknown log level: {self.level}")

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> LogConfig:
        """Build from a ``[logging]`` TOML table."""
        known = {f.name for f in fields(cls)}
        if unknown := sorted(set(raw) - known):
            raise ConfigurationError(f"Unknown logging settings: {', '.join(unknown)}")
        return cls(**raw)


def setup_logging(config: LogConfig) -> list[int]:
    """Enable machinist logging and return handler IDs for cleanup."""
    logger.enable("machinist")
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(logger.add(
            sys.stderr,
            level=config.level,
            format=_console_format,
            colorize=True,
            filter="machinist",
        ))

    if config.file:
        handler_ids.append(logger.add(
            config.file,
            level="DEBUG",
            format=_file_format,
            serialize=config.serialize,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            diagnose=False,  # tracebacks may carry bootstrap tokens
            enqueue=True,
            filter="machinist",
        ))

    logger.bind(component="logging").debug("Logging enabled with {count} sink(s)", count=len(handler_ids))
    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("machinist")
