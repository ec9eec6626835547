"""
Logging configuration for Tributary.

Connector runs own stdout for protocol messages, so log output goes either
to stderr (rich console) or back through the protocol as LOG messages.
"""

import logging
import sys
import traceback
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from tributary.protocol import LogLevel, LogMessage, MessageWriter


class FileFormatter(logging.Formatter):
    """Formatter for file logs - clean and parseable."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        result = super().format(record)
        if record.exc_info and not record.exc_text:
            result += "\n" + "".join(traceback.format_exception(*record.exc_info))
        return result


# Map string level names to logging constants
LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Python levels -> protocol LOG levels
PROTOCOL_LEVELS = [
    (logging.CRITICAL, LogLevel.FATAL),
    (logging.ERROR, LogLevel.ERROR),
    (logging.WARNING, LogLevel.WARN),
    (logging.INFO, LogLevel.INFO),
    (logging.DEBUG, LogLevel.DEBUG),
]


def _parse_level(level: str | int) -> int:
    """
    Parse logging level from string or int.

    Args:
        level: Logging level as string (DEBUG, INFO, etc.) or int

    Returns:
        Logging level constant (INFO if the name is not recognised)
    """
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        return LEVEL_MAP.get(level.upper(), logging.INFO)
    return logging.INFO


def protocol_level(levelno: int) -> LogLevel:
    for threshold, level in PROTOCOL_LEVELS:
        if levelno >= threshold:
            return level
    return LogLevel.TRACE


class ProtocolLogHandler(logging.Handler):
    """Emits log records as LOG protocol messages."""

    def __init__(self, writer: MessageWriter, level: int = logging.NOTSET):
        super().__init__(level)
        self.writer = writer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stack_trace = None
            if record.exc_info:
                stack_trace = "".join(traceback.format_exception(*record.exc_info))
            self.writer.write(
                LogMessage(level=protocol_level(record.levelno), message=record.getMessage(), stack_trace=stack_trace)
            )
        except Exception:
            self.handleError(record)


def setup_logging(
    level: str | int = logging.INFO,
    log_file: str | Path | None = None,
    format_string: str | None = None,
    file_mode: str = "a",
    console_enabled: bool = True,
    use_rich: bool = True,
    protocol_writer: MessageWriter | None = None,
) -> logging.Logger:
    """
    Setup logging configuration for Tributary.

    Args:
        level: Logging level as string (DEBUG, INFO, etc.) or int (default: INFO)
        log_file: Optional file path to write logs to (default: None)
        format_string: Optional format string for the plain stderr handler
        file_mode: File mode for file handler - 'a' for append, 'w' for overwrite
        console_enabled: Whether to log to stderr (ignored when protocol_writer is set)
        use_rich: Whether to use RichHandler for stderr output
        protocol_writer: When given, log records are written as LOG messages
            through it instead of to stderr

    Returns:
        The "tributary" logger
    """
    logger = logging.getLogger("tributary")

    # Only clear handlers from this specific logger, not root or child loggers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    level_int = _parse_level(level)
    logger.setLevel(level_int)

    if protocol_writer is not None:
        logger.addHandler(ProtocolLogHandler(protocol_writer, level=level_int))
    elif console_enabled:
        if use_rich:
            handler: logging.Handler = RichHandler(
                level=level_int,
                console=Console(stderr=True),
                show_time=True,
                show_path=False,
                markup=False,
                rich_tracebacks=True,
                log_time_format="[%X]",
            )
        else:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(level_int)
            handler.setFormatter(
                logging.Formatter(format_string or "%(levelname)s: %(asctime)s - %(name)s - %(message)s")
            )
        logger.addHandler(handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode=file_mode)
        # File captures everything the logger lets through
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(FileFormatter())
        logger.addHandler(file_handler)

    # Protocol output must not be duplicated by root handlers
    logger.propagate = protocol_writer is None
    return logger


def setup_logging_from_config(
    config: dict[str, Any],
    protocol_writer: MessageWriter | None = None,
) -> logging.Logger:
    """
    Setup logging from a connector configuration.

    Reads the optional ``logging`` section (``level``, ``file``,
    ``file_mode``, ``console_type``); ``debug: true`` at the top level
    forces DEBUG.

    Args:
        config: Connector configuration dictionary
        protocol_writer: Writer for LOG messages during connector commands

    Returns:
        The "tributary" logger
    """
    logging_config = config.get("logging") or {}
    level = logging_config.get("level", logging.INFO)
    if config.get("debug"):
        level = logging.DEBUG

    return setup_logging(
        level=level,
        log_file=logging_config.get("file"),
        file_mode=logging_config.get("file_mode", "a"),
        use_rich=logging_config.get("console_type", "rich") == "rich",
        protocol_writer=protocol_writer,
    )


def get_logger(name: str = "tributary") -> logging.Logger:
    """
    Get a logger instance under the "tributary" tree.

    Args:
        name: Logger name (default: "tributary")

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
