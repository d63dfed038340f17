"""
provisioner.core.logging_setup - structlog Configuration
========================================================

Components log through `structlog.get_logger()` and bind their own context:

    logger = structlog.get_logger()
    self._logger = logger.bind(component="download_cache")
    self._logger.info("download_succeeded", item=name, attempt=2)

`configure_logging` routes structlog (and plain stdlib `logging` records,
which the status store uses) through one set of stdlib handlers:

    structlog event ─┐
                     ├─→ ProcessorFormatter ─┬─→ console (ConsoleRenderer)
    logging record ──┘                       └─→ session file (JSONRenderer)

Each session gets its own file, `provisioner-YYYY-MM-DD-HHMMSS.log`, in the
configured log directory.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from provisioner.core.constants import TIMESTAMP_FORMAT

_SHARED_PROCESSORS: list = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt=TIMESTAMP_FORMAT, utc=False),
]


def session_log_path(log_dir: Path, now: Optional[datetime] = None) -> Path:
    stamp = (now or datetime.now()).strftime("%Y-%m-%d-%H%M%S")
    return Path(log_dir) / f"provisioner-{stamp}.log"


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    silent: bool = False,
) -> Optional[Path]:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR).
        log_dir: Directory for the session log file. None disables file
            logging; an unwritable directory only disables it with a warning.
        silent: Do not attach a console handler.

    Returns:
        Path of the session log file, or None if file logging is off.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=_SHARED_PROCESSORS + [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)

    if not silent:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.dev.ConsoleRenderer(colors=False),
                foreign_pre_chain=_SHARED_PROCESSORS,
            )
        )
        root.addHandler(console)

    log_path: Optional[Path] = None
    if log_dir is not None:
        candidate = session_log_path(log_dir)
        try:
            candidate.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(candidate)
        except OSError as exc:
            structlog.get_logger().warning(
                "log_file_unavailable", path=str(candidate), error=str(exc)
            )
        else:
            file_handler.setFormatter(
                structlog.stdlib.ProcessorFormatter(
                    processor=structlog.processors.JSONRenderer(sort_keys=True),
                    foreign_pre_chain=_SHARED_PROCESSORS,
                )
            )
            root.addHandler(file_handler)
            log_path = candidate

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))
    return log_path
