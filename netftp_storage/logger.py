"""
Logging setup for applications embedding the storage backend.

Two streams are configured:

* the regular backend log (connects, retries, deletes, commits) on the root
  logger;
* the FTP protocol trace, one record per command sent and reply line
  received on a control connection, on ``TRACE_LOGGER_NAME``. Passwords are
  masked before they reach it. The trace is off unless
  ``LogConfig.protocol_trace`` is set, and never mixes into the backend log:
  it goes to ``LogConfig.trace_file``, or to stderr when no file is given.
"""

import logging
import sys
from pathlib import Path

from .config import LogConfig

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(threadName)s - %(message)s"
TRACE_FORMAT = "%(asctime)s %(message)s"
TRACE_LOGGER_NAME = "netftp_storage.trace"


def _file_handler(file: str) -> logging.Handler:
    log_path = Path(file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(log_path, mode="a", encoding="utf-8")


def _install(logger: logging.Logger, handlers: list[logging.Handler], fmt: str, level: int):
    logger.handlers.clear()
    formatter = logging.Formatter(fmt)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)


def setup_logging(config: LogConfig) -> None:
    """
    Configure the backend log and the protocol trace.

    Repeated calls replace the handlers installed by the previous call.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = []
    if config.file:
        handlers.append(_file_handler(config.file))
    if config.console:
        handlers.append(logging.StreamHandler(sys.stderr))
    _install(logging.getLogger(), handlers, LOG_FORMAT, level)

    trace_logger = logging.getLogger(TRACE_LOGGER_NAME)
    trace_logger.propagate = False
    if config.protocol_trace:
        if config.trace_file:
            trace_handler = _file_handler(config.trace_file)
        else:
            trace_handler = logging.StreamHandler(sys.stderr)
        _install(trace_logger, [trace_handler], TRACE_FORMAT, logging.DEBUG)
    else:
        _install(trace_logger, [], TRACE_FORMAT, logging.WARNING)
