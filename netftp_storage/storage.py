"""
FTP implementation of the generic file storage contract.

Every call opens its own connection through the ResilientConnector and closes
it before returning. The stream openers are the exception: the returned
stream owns the connection and closes it when the stream is closed. Nothing
is cached between calls.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from datetime import datetime

from .config import ConnectionConfig
from .connector import ResilientConnector
from .errors import InvalidLocationError, translate_errors
from .ftp_client import FtpConnection, FtpDataStream
from .settings import (
    CredSaveMode,
    Location,
    display_path,
    file_name,
    join_path,
    location_from_remote_path,
    parent_path,
    parse_location,
)
from .write_transaction import TransactedWrite, UntransactedWrite, WriteTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileDescription:
    """Snapshot of one remote file or directory."""

    path: str
    display_name: str
    is_directory: bool
    last_modified: datetime | None = None
    size_in_bytes: int = 0
    can_read: bool = True
    can_write: bool = True


def remote_path(location: Location) -> str:
    return parse_location(location.path).remote_path


class NetFtpFileStorage:
    """File storage backed by an FTP or FTPS server."""

    supported_protocols = ("ftp", "ftps")

    def __init__(
        self,
        config: ConnectionConfig | None = None,
        connector: ResilientConnector | None = None,
    ):
        self.config = config or ConnectionConfig()
        self.connector = connector or ResilientConnector(self.config)

    def connect(self, location: Location) -> FtpConnection:
        return self.connector.connect(location)

    # -- queries -----------------------------------------------------------

    @translate_errors
    def list_contents(self, location: Location) -> list[FileDescription]:
        path = remote_path(location)
        with self.connect(location) as connection:
            entries = connection.list(path)

        files = []
        for entry in entries:
            if not (entry.is_dir or entry.is_file):
                logger.debug("Skipping %s entry %s", entry.kind, entry.full_path)
                continue
            files.append(
                FileDescription(
                    path=location_from_remote_path(location.path, entry.full_path),
                    display_name=entry.name,
                    is_directory=entry.is_dir,
                    last_modified=entry.modified,
                    size_in_bytes=entry.size if entry.is_file else 0,
                )
            )
        return files

    @translate_errors
    def get_file_description(self, location: Location) -> FileDescription:
        path = remote_path(location)
        with self.connect(location) as connection:
            return FileDescription(
                path=location.path,
                display_name=posixpath.basename(path),
                is_directory=False,
                last_modified=connection.get_modified_time(path),
                size_in_bytes=connection.get_size(path),
            )

    @translate_errors
    def file_exists(self, location: Location) -> bool:
        with self.connect(location) as connection:
            return connection.file_exists(remote_path(location))

    def check_for_file_change_fast(self, location: Location, previous_version: str | None) -> bool:
        return False

    def get_current_file_version_fast(self, location: Location) -> str | None:
        return None

    # -- streams -----------------------------------------------------------

    @translate_errors
    def open_file_for_read(self, location: Location) -> FtpDataStream:
        path = remote_path(location)
        connection = self.connect(location)
        try:
            return connection.open_read(path, owns_connection=True)
        except BaseException:
            connection.close()
            raise

    @translate_errors
    def open_write(self, location: Location) -> FtpDataStream:
        path = remote_path(location)
        connection = self.connect(location)
        try:
            return connection.open_write(path, owns_connection=True)
        except BaseException:
            connection.close()
            raise

    def open_write_transaction(
        self, location: Location, use_file_transaction: bool
    ) -> WriteTransaction:
        parse_location(location.path)
        if use_file_transaction:
            return TransactedWrite(location, self)
        return UntransactedWrite(location, self)

    # -- modifications -----------------------------------------------------

    @translate_errors
    def delete(self, location: Location) -> None:
        path = remote_path(location)
        with self.connect(location) as connection:
            if connection.directory_exists(path):
                connection.delete_directory(path, recursive=True)
            else:
                connection.delete_file(path)
        logger.info("Deleted %s", display_path(location.path))

    @translate_errors
    def create_directory(self, parent: Location, name: str) -> None:
        target = self.get_file_path(parent, name)
        with self.connect(parent) as connection:
            connection.create_directory(remote_path(target))

    @translate_errors
    def rename(self, source: Location, destination: Location) -> None:
        """
        Rename source to destination on the same server.

        Atomicity is whatever the server's RNFR/RNTO provides.
        """
        src, dst = parse_location(source.path), parse_location(destination.path)
        if (src.host, src.port) != (dst.host, dst.port):
            raise InvalidLocationError(
                f"Cannot rename across servers: {display_path(source.path)} -> "
                f"{display_path(destination.path)}"
            )
        with self.connect(source) as connection:
            connection.rename(src.remote_path, dst.remote_path)

    # -- pure helpers --------------------------------------------------------

    def get_parent_path(self, location: Location) -> Location:
        return location.with_path(parent_path(location.path))

    def get_file_path(self, folder: Location, filename: str) -> Location:
        return folder.with_path(join_path(folder.path, filename))

    def create_file_path(self, parent: str, new_filename: str) -> str:
        return join_path(parent, new_filename)

    def get_filename_without_path_and_ext(self, location: Location) -> str:
        return posixpath.splitext(file_name(location.path))[0]

    def get_display_name(self, location: Location) -> str:
        return display_path(location.path)

    def ioc_to_path(self, location: Location) -> str:
        return location.path

    def is_permanent_location(self, location: Location) -> bool:
        return True

    def is_read_only(self, location: Location) -> bool:
        return False

    def requires_credentials(self, location: Location) -> bool:
        return location.cred_save_mode is not CredSaveMode.SAVE_CRED

    def requires_setup(self, location: Location) -> bool:
        return False

    # -- setup hooks ---------------------------------------------------------

    def prepare_file_usage(self, location: Location) -> None:
        """Nothing to prepare: FTP locations are usable as soon as they exist."""

    def start_select_file(self, is_for_save: bool, protocol_id: str) -> None:
        raise NotImplementedError("FTP storage has no interactive file picker")
