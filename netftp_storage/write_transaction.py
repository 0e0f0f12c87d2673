"""
Write transactions: one logical write with an open/commit/abort lifecycle.

UntransactedWrite streams straight onto the target, so readers can see a
partially written file. TransactedWrite writes to a temporary sibling and
renames it over the target on commit. Aborting a transacted write leaves the
temporary file on the server; the connection may already be broken by then.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING

from .errors import StorageError, translate_errors
from .ftp_client import FtpConnection, FtpDataStream
from .settings import Location, display_path, parse_location

if TYPE_CHECKING:
    from .storage import NetFtpFileStorage

logger = logging.getLogger(__name__)

TEMP_SUFFIX_LENGTH = 6
TEMP_EXTENSION = ".tmp"


class TransactionState(Enum):
    IDLE = "idle"
    OPEN = "open"
    COMMITTED = "committed"
    ABORTED = "aborted"


class WriteTransaction(ABC):
    """
    Base class for the two write strategies.

    open_file() may be called once; commit() is only valid after it. Closing
    an open transaction without committing aborts it. Use as a context
    manager to make sure the stream is released.
    """

    def __init__(self, location: Location, storage: NetFtpFileStorage):
        self.location = location
        self.storage = storage
        self.state = TransactionState.IDLE
        self._stream: FtpDataStream | None = None

    def __enter__(self) -> WriteTransaction:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open_file(self) -> FtpDataStream:
        if self.state is not TransactionState.IDLE:
            raise RuntimeError(f"Cannot open a write transaction in state {self.state.value}")
        try:
            self._stream = self._open()
        except BaseException:
            self.state = TransactionState.ABORTED
            self._release()
            raise
        self.state = TransactionState.OPEN
        return self._stream

    def commit(self) -> None:
        if self.state is not TransactionState.OPEN:
            raise RuntimeError(f"Cannot commit a write transaction in state {self.state.value}")
        try:
            self._commit()
        except BaseException:
            self.state = TransactionState.ABORTED
            self._release()
            raise
        self.state = TransactionState.COMMITTED

    def close(self) -> None:
        """Abort if still open; otherwise nothing to do."""
        if self.state is not TransactionState.OPEN:
            return
        self.state = TransactionState.ABORTED
        logger.warning("Write to %s aborted", display_path(self.location.path))
        try:
            self._close_stream()
        finally:
            self._release()

    def _close_stream(self) -> None:
        try:
            self._stream.close()
        except (StorageError, OSError, EOFError) as e:
            logger.warning(
                "Closing aborted write stream for %s failed: %s",
                display_path(self.location.path),
                e,
            )

    @abstractmethod
    def _open(self) -> FtpDataStream:
        """Open the stream the caller writes into."""

    @abstractmethod
    def _commit(self) -> None:
        """Make the written bytes the content of the target."""

    def _release(self) -> None:
        """Free resources held after the stream is done."""


class UntransactedWrite(WriteTransaction):
    """Writes go straight to the target path; abort keeps what was written."""

    def _open(self) -> FtpDataStream:
        return self.storage.open_write(self.location)

    @translate_errors
    def _commit(self) -> None:
        self._stream.close()


class TransactedWrite(WriteTransaction):
    """Writes to a temporary sibling and renames it over the target on commit."""

    def __init__(self, location: Location, storage: NetFtpFileStorage):
        super().__init__(location, storage)
        suffix = uuid.uuid4().hex[:TEMP_SUFFIX_LENGTH]
        self.temp_location = location.with_path(f"{location.path}.{suffix}{TEMP_EXTENSION}")
        self._connection: FtpConnection | None = None

    @translate_errors
    def _open(self) -> FtpDataStream:
        temp_path = parse_location(self.temp_location.path).remote_path
        self._connection = self.storage.connect(self.location)
        logger.debug("Writing %s via %s", display_path(self.location.path), temp_path)
        return self._connection.open_write(temp_path)

    @translate_errors
    def _commit(self) -> None:
        target = parse_location(self.location.path).remote_path
        temp_path = parse_location(self.temp_location.path).remote_path

        self._stream.close()
        if self._connection.file_exists(target):
            self._connection.delete_file(target)
        self._connection.rename(temp_path, target)
        self._release()
        logger.info("Committed write to %s", display_path(self.location.path))

    def _release(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None
