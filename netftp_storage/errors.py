"""
Error taxonomy for the FTP storage backend.

Every error raised across the storage boundary is a StorageError carrying an
ErrorKind tag. Reply classification returns the tag so callers branch on the
kind rather than on the ftplib exception type.
"""

from __future__ import annotations

import ftplib
import logging
from enum import Enum
from functools import wraps

logger = logging.getLogger(__name__)

# FTP reply for "requested action not taken; file unavailable"
NOT_FOUND_STATUS = "550"


class ErrorKind(Enum):
    TRANSIENT_CONNECTION = "transient_connection"
    CONNECTION = "connection"
    NOT_FOUND = "not_found"
    REMOTE_COMMAND = "remote_command"
    LOCAL_IO = "local_io"


class StorageError(Exception):
    """Base class for all errors raised by the storage backend."""

    kind: ErrorKind


class InvalidLocationError(ValueError):
    """The location string does not follow <scheme>://<settings>/<host>/<path>."""


class TransientConnectionError(StorageError, ConnectionError):
    """Connection kept being refused until the retry budget ran out."""

    kind = ErrorKind.TRANSIENT_CONNECTION


class StorageConnectionError(StorageError, ConnectionError):
    """A session could not be established (DNS, TLS, login, network)."""

    kind = ErrorKind.CONNECTION


class NotFoundError(StorageError, FileNotFoundError):
    """The server answered a command with the 'no such file' status."""

    kind = ErrorKind.NOT_FOUND


class RemoteCommandError(StorageError):
    """The server rejected a command. Keeps the original status and message."""

    kind = ErrorKind.REMOTE_COMMAND

    def __init__(self, status: str, message: str):
        super().__init__(f"{status} {message}".strip())
        self.status = status
        self.message = message


class LocalIOError(StorageError, OSError):
    """Failure in the local stream wrapper around a data connection."""

    kind = ErrorKind.LOCAL_IO


def split_reply(error: ftplib.Error) -> tuple[str, str]:
    """Split an ftplib reply error into (status, message)."""
    text = str(error).strip()
    status = text[:3]
    if len(status) == 3 and status.isdigit():
        return status, text[3:].lstrip(" -")
    return "", text


def classify_reply(error: ftplib.Error) -> ErrorKind:
    """Return the error kind for a rejected FTP command."""
    status, _ = split_reply(error)
    if status == NOT_FOUND_STATUS:
        return ErrorKind.NOT_FOUND
    return ErrorKind.REMOTE_COMMAND


def translate_ftp_error(error: ftplib.Error) -> StorageError:
    """Translate an ftplib reply error into the storage error taxonomy."""
    kind = classify_reply(error)
    status, message = split_reply(error)
    if kind is ErrorKind.NOT_FOUND:
        translated: StorageError = NotFoundError(str(error).strip())
    else:
        translated = RemoteCommandError(status, message)
    logger.debug("Translated FTP reply %r to %s", str(error), type(translated).__name__)
    return translated


def user_message(error: BaseException) -> str:
    """Human readable message for an error surfaced to the user."""
    kind = getattr(error, "kind", None)
    if kind is ErrorKind.NOT_FOUND:
        return "The file does not exist."
    if kind is ErrorKind.TRANSIENT_CONNECTION:
        return "Could not reach the server."
    if kind is ErrorKind.REMOTE_COMMAND:
        return f"The server rejected the request: {error}"
    return str(error) or type(error).__name__


def translate_errors(fn):
    """Re-signal ftplib and socket failures as StorageErrors, once, at the boundary."""
    name = fn.__name__

    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except StorageError:
            raise
        except ftplib.Error as e:
            logger.debug("%s failed: %s", name, e)
            raise translate_ftp_error(e) from e
        except (OSError, EOFError) as e:
            logger.error("%s lost the connection: %s", name, e)
            raise StorageConnectionError(f"Connection lost during {name}: {e}") from e

    return wrapper
