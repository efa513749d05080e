"""
Storyforge Logging Configuration

Every record carries a `panel` field: the short id of the panel it concerns,
or "-" for records that are not about one panel. Pipeline code logs through
`panel_logger(logger, panel.id)` so queue and video activity can be followed
per panel in the console and in the log file.
"""

import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Dict, Optional


class LogLevel(Enum):
    """Log level enumeration."""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


ROOT_LOGGER_NAME = "storyforge"
NO_PANEL = "-"
PANEL_ID_LENGTH = 8

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | panel=%(panel)s | %(message)s"
VERBOSE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | panel=%(panel)s | %(message)s"

_loggers: Dict[str, logging.Logger] = {}
_initialized = False


class PanelFieldFilter(logging.Filter):
    """Fill in `panel` on records logged without a panel context."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "panel"):
            record.panel = NO_PANEL
        return True


class PanelLoggerAdapter(logging.LoggerAdapter):
    """Logger bound to one panel id."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("panel", self.extra["panel"])
        kwargs["extra"] = extra
        return msg, kwargs


def short_panel_id(panel_id: Optional[str]) -> str:
    return panel_id[:PANEL_ID_LENGTH] if panel_id else NO_PANEL


def panel_logger(logger: logging.Logger, panel_id: Optional[str]) -> PanelLoggerAdapter:
    return PanelLoggerAdapter(logger, {"panel": short_panel_id(panel_id)})


def _make_handler(handler: logging.Handler, level: LogLevel, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level.value)
    handler.setFormatter(formatter)
    handler.addFilter(PanelFieldFilter())
    return handler


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    log_file: Optional[Path] = None,
    verbose: bool = False,
    console_output: bool = True
) -> None:
    """
    Configure the `storyforge` logger tree.

    Args:
        level: Minimum log level to capture
        log_file: Optional path to log file
        verbose: Include line numbers in the format
        console_output: Write to stdout
    """
    global _initialized

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level.value)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(VERBOSE_FORMAT if verbose else DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    if console_output:
        root_logger.addHandler(_make_handler(logging.StreamHandler(sys.stdout), level, formatter))

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        root_logger.addHandler(_make_handler(logging.FileHandler(log_path, encoding="utf-8"), level, formatter))

    _initialized = True
    root_logger.debug(f"Logging initialized - Level: {level.name}, Verbose: {verbose}")


def get_logger(name: str) -> logging.Logger:
    """Logger under the `storyforge.` namespace."""
    if not _initialized:
        setup_logging()

    full_name = name if name.startswith(ROOT_LOGGER_NAME) else f"{ROOT_LOGGER_NAME}.{name}"
    if full_name not in _loggers:
        _loggers[full_name] = logging.getLogger(full_name)
    return _loggers[full_name]
