"""
Single-use FTP sessions on top of ftplib.

FtpConnection wraps one logged-in ftplib.FTP (or FTP_TLS) object and exposes
the primitives the storage backend needs: listing, metadata queries, delete,
mkdir, rename and binary read/write streams. It does not reconnect, retry or
translate errors; ftplib exceptions propagate to the caller.
"""

from __future__ import annotations

import ftplib
import io
import logging
import posixpath
import re
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone

from .config import ConnectionConfig
from .errors import (
    ErrorKind,
    LocalIOError,
    StorageConnectionError,
    classify_reply,
    translate_ftp_error,
)
from .logger import TRACE_LOGGER_NAME
from .settings import EncryptionMode

logger = logging.getLogger(__name__)
trace_logger = logging.getLogger(TRACE_LOGGER_NAME)


@dataclass(frozen=True)
class TrustDecision:
    """
    How server certificates are treated for one logical connection.

    The control connection is validated according to verify_certificates.
    Data connections are wrapped with the same context and resume the
    control connection's TLS session, so they carry the trust that was
    already established.
    """

    verify_certificates: bool = True

    def control_context(self) -> ssl.SSLContext:
        if self.verify_certificates:
            return ssl.create_default_context()
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context


class _ProtocolTrace:
    """Mixin that writes every control-connection line to the trace logger."""

    def putline(self, line):
        if line[:5].upper() == "PASS ":
            shown = "PASS ****"
        else:
            shown = line
        trace_logger.debug("%s > %s", self.host, shown)
        super().putline(line)

    def getline(self):
        line = super().getline()
        trace_logger.debug("%s < %s", self.host, line)
        return line


class TracedFTP(_ProtocolTrace, ftplib.FTP):
    """Plain ftplib.FTP with the protocol trace."""


class TlsFTP(_ProtocolTrace, ftplib.FTP_TLS):
    """
    FTP_TLS with implicit TLS support and session reuse on data channels.

    With implicit=True the control socket is wrapped as soon as it is
    connected (port 990 style servers); otherwise AUTH TLS is negotiated by
    login() as usual.
    """

    def __init__(self, trust: TrustDecision, implicit: bool = False, **kwargs):
        self._sock = None
        self.implicit = implicit
        self.trust = trust
        super().__init__(context=trust.control_context(), **kwargs)

    @property
    def sock(self):
        return self._sock

    @sock.setter
    def sock(self, value):
        if value is not None and self.implicit and not isinstance(value, ssl.SSLSocket):
            value = self.context.wrap_socket(value, server_hostname=self.host)
        self._sock = value

    def ntransfercmd(self, cmd, rest=None):
        conn, size = ftplib.FTP.ntransfercmd(self, cmd, rest)
        if self._prot_p:
            # a session can only be resumed on the context that created it
            conn = self.context.wrap_socket(
                conn, server_hostname=self.host, session=self.sock.session
            )
        return conn, size


@dataclass(frozen=True)
class RemoteEntry:
    """One entry of a remote directory listing."""

    name: str
    full_path: str
    kind: str  # "file", "dir", "link" or "other"
    modified: datetime | None = None
    size: int = 0

    @property
    def is_dir(self) -> bool:
        return self.kind == "dir"

    @property
    def is_file(self) -> bool:
        return self.kind == "file"


def parse_ftp_time(time_str: str) -> datetime | None:
    """Parse an MLSD/MDTM timestamp (YYYYMMDDHHMMSS[.sss], UTC)."""
    if not time_str:
        return None
    try:
        if "." in time_str:
            time_str = time_str.split(".")[0]
        return datetime.strptime(time_str, "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        logger.warning("Failed to parse FTP time: %s", time_str)
        return None


_MONTHS = {
    name: number
    for number, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"),
        start=1,
    )
}

# size, then "Mon DD HH:MM" or "Mon DD YYYY", then the name; owner/group
# columns before the size vary between servers
_UNIX_LIST_RE = re.compile(
    r"^\S+\s+.*?(?P<size>\d+)\s+"
    r"(?P<month>" + "|".join(_MONTHS) + r")\s+"
    r"(?P<day>\d{1,2})\s+"
    r"(?P<time>\d{1,2}:\d{2}|\d{4})\s+"
    r"(?P<name>.+)$",
    re.IGNORECASE,
)


def _parse_unix_list_time(month_str: str, day_str: str, time_or_year: str) -> datetime | None:
    try:
        month = _MONTHS[month_str.lower()]
        day = int(day_str)
        if ":" in time_or_year:
            hour, minute = map(int, time_or_year.split(":"))
            year = datetime.now().year
        else:
            year = int(time_or_year)
            hour, minute = 0, 0
        return datetime(year, month, day, hour, minute)
    except (ValueError, KeyError):
        return None


def _parse_windows_list_time(date_str: str, time_str: str) -> datetime | None:
    try:
        month, day, year = map(int, date_str.split("-"))
        if year < 100:
            year += 2000 if year < 70 else 1900
        time_str = time_str.upper()
        is_pm = "PM" in time_str
        hour, minute = map(int, time_str.replace("AM", "").replace("PM", "").split(":"))
        if is_pm and hour != 12:
            hour += 12
        elif not is_pm and hour == 12:
            hour = 0
        return datetime(year, month, day, hour, minute)
    except (ValueError, IndexError):
        return None


def parse_list_line(line: str, directory: str) -> RemoteEntry | None:
    """
    Parse one line of LIST output (Unix or Windows/IIS style).

    LIST timestamps carry no zone, so they are returned as naive datetimes.
    Returns None for lines that cannot be parsed.
    """
    line = line.strip()
    parts = line.split()
    if len(parts) < 4:
        return None

    # drwxr-xr-x  2 user group 4096 Dec 10 12:34 name  (group is optional)
    if len(parts[0]) >= 10 and parts[0][0] in "dl-":
        match = _UNIX_LIST_RE.match(line)
        if match is None:
            logger.warning("Failed to parse Unix LIST line: %s", line)
            return None
        kind = {"d": "dir", "l": "link", "-": "file"}[parts[0][0]]
        name = match.group("name")
        if kind == "link":
            name = name.split(" -> ", 1)[0]
        return RemoteEntry(
            name=name,
            full_path=posixpath.join(directory, name),
            kind=kind,
            modified=_parse_unix_list_time(
                match.group("month"), match.group("day"), match.group("time")
            ),
            size=int(match.group("size")) if kind == "file" else 0,
        )

    # 12-10-20  12:34PM  <DIR>  name  /  12-10-20  12:34PM  1234 name
    if "-" in parts[0] and len(parts[0]) <= 10:
        tokens = line.split(None, 3)
        if len(tokens) < 4:
            return None
        is_dir = tokens[2] == "<DIR>"
        try:
            size = 0 if is_dir else int(tokens[2])
        except ValueError:
            logger.warning("Failed to parse Windows LIST line: %s", line)
            return None
        name = tokens[3]
        return RemoteEntry(
            name=name,
            full_path=posixpath.join(directory, name),
            kind="dir" if is_dir else "file",
            modified=_parse_windows_list_time(tokens[0], tokens[1]),
            size=size,
        )

    logger.warning("Unknown LIST format: %s", line)
    return None


def _mlsd_kind(facts: dict[str, str]) -> str:
    kind = facts.get("type", "").lower()
    if kind == "file":
        return "file"
    if kind == "dir":
        return "dir"
    if kind in ("cdir", "pdir"):
        return "other"
    if kind.startswith("os.unix=slink") or kind.startswith("os.unix=symlink"):
        return "link"
    return "other"


def create_ftp(
    encryption_mode: EncryptionMode, trust: TrustDecision, config: ConnectionConfig
) -> ftplib.FTP:
    """Create an unconnected ftplib session object for the given encryption mode."""
    if encryption_mode == EncryptionMode.NONE:
        return TracedFTP(timeout=config.timeout_seconds, encoding=config.encoding)
    return TlsFTP(
        trust,
        implicit=encryption_mode == EncryptionMode.IMPLICIT,
        timeout=config.timeout_seconds,
        encoding=config.encoding,
    )


class FtpDataStream(io.RawIOBase):
    """
    Binary stream over an FTP data connection.

    Closing the stream finishes the transfer (reads the server's completion
    reply) and, when owns_connection is set, closes the control connection
    too. Callers that get a stream from the storage backend therefore only
    have to close the stream.
    """

    def __init__(
        self,
        connection: FtpConnection,
        data_socket,
        mode: str,
        owns_connection: bool = False,
    ):
        super().__init__()
        self._connection = connection
        self._socket = data_socket
        self._mode = mode
        self._owns_connection = owns_connection
        self._eof = False

    def readable(self) -> bool:
        return self._mode == "r"

    def writable(self) -> bool:
        return self._mode == "w"

    def readinto(self, buffer) -> int:
        self._check_closed()
        if not self.readable():
            raise io.UnsupportedOperation("stream is not readable")
        if self._eof:
            return 0
        try:
            count = self._socket.recv_into(buffer)
        except OSError as e:
            raise LocalIOError(f"Data connection failed while reading: {e}") from e
        if count == 0:
            self._eof = True
        return count

    def write(self, data) -> int:
        self._check_closed()
        if not self.writable():
            raise io.UnsupportedOperation("stream is not writable")
        try:
            self._socket.sendall(data)
        except OSError as e:
            raise LocalIOError(f"Data connection failed while writing: {e}") from e
        return len(data)

    def _check_closed(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on closed stream")

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._finish_transfer()
        finally:
            super().close()
            if self._owns_connection:
                self._connection.close()

    def _finish_transfer(self) -> None:
        complete = self._mode == "w" or self._eof
        try:
            if complete and isinstance(self._socket, ssl.SSLSocket):
                self._socket.unwrap()
        except OSError as e:
            logger.debug("TLS shutdown of data connection failed: %s", e)
        finally:
            self._socket.close()

        try:
            self._connection.ftp.voidresp()
        except ftplib.Error as e:
            if complete:
                raise translate_ftp_error(e) from e
            # server reports the transfer we abandoned early
            logger.debug("Read transfer closed before end of file: %s", e)
        except (OSError, EOFError) as e:
            if complete:
                raise StorageConnectionError(
                    f"Connection to {self._connection.host} lost while finishing transfer: {e}"
                ) from e
            logger.debug("Connection lost after abandoning read transfer: %s", e)


class FtpConnection:
    """
    A live, single-use FTP session.

    Owned by exactly one operation and closed when that operation ends;
    use it as a context manager.
    """

    def __init__(self, ftp: ftplib.FTP, host: str):
        self.ftp = ftp
        self.host = host
        self.features: set[str] = set()
        self._closed = False

    def __enter__(self) -> FtpConnection:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Close the session. Falls back to a hard close if QUIT fails."""
        if self._closed:
            return
        self._closed = True
        try:
            self.ftp.quit()
            logger.debug("FTP connection to %s closed gracefully", self.host)
        except (ftplib.Error, OSError, EOFError) as e:
            logger.debug("FTP quit failed, forcing close: %s", e)
            self.ftp.close()

    def detect_features(self) -> None:
        """Record FEAT capabilities (MLSD, MLST, MDTM, SIZE, REST)."""
        try:
            response = self.ftp.sendcmd("FEAT")
        except ftplib.error_perm:
            # server has no FEAT
            self.features = set()
            return
        self.features = {
            line.strip().split(" ", 1)[0].upper()
            for line in response.splitlines()[1:-1]
            if line.strip()
        }
        logger.debug("Server features on %s: %s", self.host, sorted(self.features))

    def list(self, path: str) -> list[RemoteEntry]:
        """List a directory with modification time and size."""
        # MLST in FEAT implies MLSD
        if self.features & {"MLSD", "MLST"}:
            entries = []
            for name, facts in self.ftp.mlsd(path, facts=["type", "size", "modify"]):
                if name in (".", ".."):
                    continue
                kind = _mlsd_kind(facts)
                entries.append(
                    RemoteEntry(
                        name=name,
                        full_path=posixpath.join(path, name),
                        kind=kind,
                        modified=parse_ftp_time(facts.get("modify", "")),
                        size=int(facts.get("size", 0) or 0) if kind == "file" else 0,
                    )
                )
        else:
            lines: list[str] = []
            self.ftp.retrlines(f"LIST {path}", lines.append)
            entries = [
                entry
                for entry in (parse_list_line(line, path) for line in lines)
                if entry is not None and entry.name not in (".", "..")
            ]
        logger.debug("Listed %d entries in %s", len(entries), path)
        return entries

    def get_size(self, path: str) -> int:
        self.ftp.voidcmd("TYPE I")
        size = self.ftp.size(path)
        return size if size is not None else -1

    def get_modified_time(self, path: str) -> datetime | None:
        response = self.ftp.sendcmd(f"MDTM {path}")
        return parse_ftp_time(response[4:].strip())

    def file_exists(self, path: str) -> bool:
        if "SIZE" not in self.features:
            return self._file_listed(path)
        try:
            self.get_size(path)
        except ftplib.error_perm as e:
            if classify_reply(e) is ErrorKind.NOT_FOUND:
                return False
            raise
        return True

    def _file_listed(self, path: str) -> bool:
        """Look for path in its parent's listing, for servers without SIZE."""
        parent, name = posixpath.split(path.rstrip("/"))
        try:
            entries = self.list(parent or "/")
        except ftplib.error_perm as e:
            if classify_reply(e) is ErrorKind.NOT_FOUND:
                return False
            raise
        return any(entry.name == name and not entry.is_dir for entry in entries)

    def directory_exists(self, path: str) -> bool:
        current = self.ftp.pwd()
        try:
            self.ftp.cwd(path)
        except ftplib.error_perm as e:
            if classify_reply(e) is ErrorKind.NOT_FOUND:
                return False
            raise
        self.ftp.cwd(current)
        return True

    def delete_file(self, path: str) -> None:
        self.ftp.delete(path)
        logger.debug("Deleted file: %s", path)

    def delete_directory(self, path: str, recursive: bool = False) -> None:
        if recursive:
            for entry in self.list(path):
                if entry.is_dir:
                    self.delete_directory(entry.full_path, recursive=True)
                elif entry.kind == "other":
                    logger.debug("Skipping %s while deleting %s", entry.name, path)
                else:
                    self.delete_file(entry.full_path)
        self.ftp.rmd(path)
        logger.debug("Deleted directory: %s", path)

    def create_directory(self, path: str) -> None:
        self.ftp.mkd(path)
        logger.debug("Created directory: %s", path)

    def rename(self, old_path: str, new_path: str) -> None:
        self.ftp.rename(old_path, new_path)
        logger.debug("Renamed: %s -> %s", old_path, new_path)

    def open_read(self, path: str, offset: int = 0, owns_connection: bool = False) -> FtpDataStream:
        """Open a binary read stream on path, starting at offset."""
        self.ftp.voidcmd("TYPE I")
        data_socket = self.ftp.transfercmd(f"RETR {path}", rest=offset or None)
        logger.debug("Opened read stream: %s (offset=%d)", path, offset)
        return FtpDataStream(self, data_socket, "r", owns_connection=owns_connection)

    def open_write(self, path: str, owns_connection: bool = False) -> FtpDataStream:
        """Open a binary write stream that replaces the content of path."""
        self.ftp.voidcmd("TYPE I")
        data_socket = self.ftp.transfercmd(f"STOR {path}")
        logger.debug("Opened write stream: %s", path)
        return FtpDataStream(self, data_socket, "w", owns_connection=owns_connection)
