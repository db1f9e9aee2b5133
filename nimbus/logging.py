"""loguru setup for nimbus.

The library stays silent until ``setup_logging`` is called; the CLI does
that from ``--log-level``. Every record carries a ``component`` extra
(controller, action, bootstrap, ssh, ...) set via ``logger.bind``.

Example:
    from nimbus.logging import LogConfig, setup_logging, teardown_logging

    sinks = setup_logging(LogConfig(level="DEBUG", file="~/.nimbus/logs/hadoop.log"))
    try:
        await controller.launch_cluster(spec)
    finally:
        teardown_logging(sinks)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

from loguru import logger

if TYPE_CHECKING:
    from loguru import Record

logger.disable("nimbus")

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_CONSOLE = "<dim>{time:HH:mm:ss}</dim> <level>{level: <8}</level> <cyan>{extra[component]: <10}</cyan> {message}"
_FILE = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <8} [{extra[component]}] {name}:{line} {message}"


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where nimbus logs go.

    Attributes:
        level: Console threshold. The file sink always records DEBUG.
        file: Optional log file; parent directories are created.
        console: Log to stderr.
        rotation: loguru rotation policy for the file sink.
        retention: Rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "20 MB"
    retention: int = 5


def _only_nimbus(record: Record) -> bool:
    name = record["name"] or ""
    record["extra"].setdefault("component", name.rsplit(".", 1)[-1])
    return name.startswith("nimbus")


def setup_logging(config: LogConfig) -> list[int]:
    """Add the sinks described by ``config`` and return their ids."""
    logger.enable("nimbus")
    sinks: list[int] = []

    if config.console:
        sinks.append(logger.add(sys.stderr, level=config.level, format=_CONSOLE, filter=_only_nimbus))

    if config.file:
        path = Path(config.file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        sinks.append(logger.add(
            path,
            level="DEBUG",
            format=_FILE,
            filter=_only_nimbus,
            rotation=config.rotation,
            retention=config.retention,
            diagnose=False,  # locals may hold private keys
            enqueue=True,
        ))

    return sinks


def teardown_logging(sinks: list[int]) -> None:
    for sink in sinks:
        logger.remove(sink)
    logger.disable("nimbus")
