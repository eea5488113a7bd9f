"""
Logging for the Niimbot bridge.

Two channels are configured here:
- the application log on the root logger, with an extra VERBOSE level (9)
  below DEBUG for byte-level serial tracing
- the packet log, a separate "packet" logger that never propagates and
  writes one line per raw serial write or read to an optional file

Usage:
    from niimbot_bridge.core.logging import get_logger, setup_logging

    setup_logging(verbosity_level=2, packet_log_file="packets.log")

    logger = get_logger()
    logger.verbose("55 55 c1 01 01 c1 aa aa")
"""

import logging
from pathlib import Path
from typing import Any

VERBOSE = 9
logging.addLevelName(VERBOSE, "VERBOSE")

PACKET_LOGGER_ID = "packet"

DATE_FMT = "%Y-%m-%d %H:%M:%S"
LOG_FMT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
PACKET_LOG_FMT = "%(asctime)s - %(source)s: %(message)s"

SENT = "Sent"
RECEIVED = "Recv"


class VerboseLogger(logging.Logger):
    def verbose(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
        """
        Log a message at the VERBOSE level.

        Used for raw serial chunks, discarded bytes and decoded packets, which
        would drown out everything else at DEBUG.

        Args:
            self: The logger instance (injected via method binding).
            message: The log message.
            *args: Arguments for message formatting.
            **kwargs: Additional keyword arguments passed to log().
        """
        if self.isEnabledFor(VERBOSE):
            self._log(VERBOSE, message, args, **kwargs)


def level_for(verbosity_level: int = 0, quiet: bool = False) -> int:
    """
    Map the CLI's -v count and -q flag to a log level.

    quiet wins over any verbosity: ERROR. Otherwise 0 is INFO, 1 is DEBUG and
    2 or more is VERBOSE.
    """
    if quiet:
        return logging.ERROR
    if verbosity_level >= 2:
        return VERBOSE
    if verbosity_level == 1:
        return logging.DEBUG
    return logging.INFO


def setup_logging(
    verbosity_level: int = 0,
    quiet: bool = False,
    packet_log_file: str | None = None,
) -> None:
    """
    Configure the application log and the packet log.

    Args:
        verbosity_level: Verbosity counter from CLI (Click's count=True).
        quiet: Only report errors.
        packet_log_file: File receiving every raw packet sent to and received
            from the printer. Without it the packet log is discarded.
    """
    logging.setLoggerClass(VerboseLogger)
    logging.basicConfig(level=level_for(verbosity_level, quiet), format=LOG_FMT, datefmt=DATE_FMT)

    setup_file_logger(packet_log_file, PACKET_LOGGER_ID)


def setup_file_logger(log_file: str | None, logger_id: str) -> None:
    """
    Attach a file (or a null sink) to a dedicated, non-propagating logger.

    A logger that already writes to a file is left alone, so calling this
    again for the same logger is harmless.

    Args:
        log_file: Target file; its parent directories are created. None
            installs a NullHandler.
        logger_id: Name of the logger to configure.
    """
    file_logger = logging.getLogger(logger_id)

    if any(isinstance(h, logging.FileHandler) for h in file_logger.handlers):
        return

    handler: logging.Handler
    if log_file:
        log_path = Path(log_file).expanduser()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(str(log_path), encoding="utf-8", mode="a")
        except OSError as e:
            logging.getLogger(__name__).error(
                f"Cannot open log file '{log_file}' for the '{logger_id}' log: {e}"
            )
            return
        handler.setFormatter(logging.Formatter(PACKET_LOG_FMT, datefmt=DATE_FMT))
        handler.setLevel(logging.INFO)
    else:
        handler = logging.NullHandler()

    file_logger.addHandler(handler)
    file_logger.setLevel(logging.INFO)
    # The packet log only goes to its own file
    file_logger.propagate = False


def get_logger(name: str | None = None) -> VerboseLogger:
    """
    Return a logger that has the verbose() method.

    Module-level loggers are created at import time, usually before
    setup_logging() installed VerboseLogger as the logger class, so their
    class is swapped here.

    Args:
        name: Logger name. Defaults to the calling module's name.

    Returns:
        The VerboseLogger.
    """
    if name is None:
        import inspect

        caller = inspect.stack()[1]
        module = inspect.getmodule(caller[0])
        name = module.__name__ if module else "__main__"

    logger = logging.getLogger(name)
    if not isinstance(logger, VerboseLogger):
        logger.__class__ = VerboseLogger

    return logger  # type: ignore


def get_packet_logger() -> logging.Logger:
    return logging.getLogger(PACKET_LOGGER_ID)


def bytes_to_hex(data: bytes | bytearray) -> str:
    """Format bytes as space separated hex pairs, e.g. ``55 55 c1``."""
    return " ".join(f"{b:02x}" for b in data)


def log_packet(data: bytes | bytearray, direction: str) -> None:
    """Write one raw serial transfer to the packet log."""
    get_packet_logger().info(bytes_to_hex(data), extra={"source": direction})


def log_packet_sent(data: bytes | bytearray) -> None:
    log_packet(data, SENT)


def log_packet_recv(data: bytes | bytearray) -> None:
    log_packet(data, RECEIVED)
