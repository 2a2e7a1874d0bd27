"""Logging for the session engine and its command-line front end.

Every module logs through ``get_logger(__name__)``, so all records land under
the ``ollama_session`` logger. Nothing is configured on import: embedding
applications keep their own logging setup, and the CLI calls
:func:`setup_logger` once with the values from
:meth:`~ollama_session.config.Config.resolve_log_file`.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Union

__all__ = ["setup_logger", "get_logger", "PACKAGE_LOGGER", "DEFAULT_LOG_FILE"]

PACKAGE_LOGGER = "ollama_session"
DEFAULT_LOG_FILE = Path("~/.ollama-session/logs/session.log").expanduser()
CONSOLE_FORMAT = "[%(levelname).1s] %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024  # 5MB
LOG_BACKUP_COUNT = 3

# HTTP and markdown internals; only their warnings reach the session log.
QUIET_LOGGERS = ("urllib3", "requests", "markdown_it")

LogTarget = Union[str, Path, bool, None]


def setup_logger(
    name: str = PACKAGE_LOGGER,
    verbose: bool = False,
    log_file: LogTarget = None,
) -> logging.Logger:
    """Attach console and file handlers to the session engine's logger.

    With ``verbose`` the DEBUG records for request cycles and tool results
    are shown. Otherwise only warnings and failed queries show up.

    ``log_file`` takes what ``Config.resolve_log_file()`` returns:
    ``None`` or ``True`` writes to ``~/.ollama-session/logs/session.log``,
    ``False`` (the ``log-file: off`` setting) disables the file, and any other
    value is used as a path. The file rotates at 5MB, keeping three backups.
    """
    logger = logging.getLogger(name)
    level = logging.DEBUG if verbose else logging.WARNING

    # A second call replaces the handlers from the first.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level)
    logger.propagate = False

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console_handler)

    log_path = _resolve_log_path(log_file)
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    for quiet in QUIET_LOGGERS:
        logging.getLogger(quiet).setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass ``__name__`` so it sits under ``ollama_session``."""
    return logging.getLogger(name)


def _resolve_log_path(log_file: LogTarget) -> Path | None:
    if log_file is False:
        return None
    if log_file is None or log_file is True:
        return DEFAULT_LOG_FILE
    return Path(log_file).expanduser()
