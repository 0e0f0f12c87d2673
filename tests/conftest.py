"""
Shared pytest fixtures for netftp-storage tests.
"""

import ftplib
import io
import posixpath
import threading
import time
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from netftp_storage.config import ConnectionConfig
from netftp_storage.ftp_client import FtpConnection, RemoteEntry
from netftp_storage.settings import Location
from netftp_storage.storage import NetFtpFileStorage

# =============================================================================
# In-memory remote used by storage and transaction tests
# =============================================================================


class FakeRemote:
    """A tiny in-memory FTP server state: files, directories and mtimes."""

    def __init__(self):
        self.files: dict[str, bytearray] = {}
        self.dirs: set[str] = {"/"}
        self.mtime = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        self.renames: list[tuple[str, str]] = []
        self.deleted: list[str] = []

    def add_file(self, path: str, content: bytes) -> None:
        self.add_dir(posixpath.dirname(path))
        self.files[path] = bytearray(content)

    def add_dir(self, path: str) -> None:
        while path not in self.dirs:
            self.dirs.add(path)
            path = posixpath.dirname(path)


def _not_found(path: str) -> ftplib.error_perm:
    return ftplib.error_perm(f"550 {path}: No such file or directory.")


class FakeWriteStream(io.RawIOBase):
    """Writes land on the remote file immediately, like a live STOR."""

    def __init__(self, connection: "FakeConnection", path: str, owns_connection: bool):
        super().__init__()
        self._connection = connection
        self._path = path
        self._owns_connection = owns_connection
        connection.remote.files[path] = bytearray()

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        self._connection.remote.files[self._path].extend(data)
        return len(data)

    def close(self) -> None:
        if self.closed:
            return
        super().close()
        if self._owns_connection:
            self._connection.close()


class FakeReadStream(io.BytesIO):
    def __init__(self, connection: "FakeConnection", content: bytes, owns_connection: bool):
        super().__init__(content)
        self._connection = connection
        self._owns_connection = owns_connection

    def close(self) -> None:
        super().close()
        if self._owns_connection:
            self._connection.close()


class FakeConnection:
    """Duck-typed FtpConnection over a FakeRemote."""

    def __init__(self, remote: FakeRemote, host: str = "example.com"):
        self.remote = remote
        self.host = host
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        self.closed = True

    def list(self, path: str) -> list[RemoteEntry]:
        if path not in self.remote.dirs:
            raise _not_found(path)
        entries = []
        for d in sorted(self.remote.dirs):
            if d != path and posixpath.dirname(d) == path:
                entries.append(RemoteEntry(posixpath.basename(d), d, "dir", self.remote.mtime))
        for f, content in sorted(self.remote.files.items()):
            if posixpath.dirname(f) == path:
                entries.append(
                    RemoteEntry(posixpath.basename(f), f, "file", self.remote.mtime, len(content))
                )
        return entries

    def get_size(self, path: str) -> int:
        if path not in self.remote.files:
            raise _not_found(path)
        return len(self.remote.files[path])

    def get_modified_time(self, path: str):
        if path not in self.remote.files:
            raise _not_found(path)
        return self.remote.mtime

    def file_exists(self, path: str) -> bool:
        return path in self.remote.files

    def directory_exists(self, path: str) -> bool:
        return path in self.remote.dirs

    def delete_file(self, path: str) -> None:
        if path not in self.remote.files:
            raise _not_found(path)
        del self.remote.files[path]
        self.remote.deleted.append(path)

    def delete_directory(self, path: str, recursive: bool = False) -> None:
        prefix = path.rstrip("/") + "/"
        for f in [f for f in self.remote.files if f.startswith(prefix)]:
            del self.remote.files[f]
        self.remote.dirs = {d for d in self.remote.dirs if d != path and not d.startswith(prefix)}
        self.remote.deleted.append(path)

    def create_directory(self, path: str) -> None:
        if posixpath.dirname(path) not in self.remote.dirs:
            raise _not_found(path)
        self.remote.dirs.add(path)

    def rename(self, old_path: str, new_path: str) -> None:
        if old_path not in self.remote.files:
            raise _not_found(old_path)
        self.remote.files[new_path] = self.remote.files.pop(old_path)
        self.remote.renames.append((old_path, new_path))

    def open_read(self, path: str, offset: int = 0, owns_connection: bool = False):
        if path not in self.remote.files:
            raise _not_found(path)
        return FakeReadStream(self, bytes(self.remote.files[path][offset:]), owns_connection)

    def open_write(self, path: str, owns_connection: bool = False):
        if posixpath.dirname(path) not in self.remote.dirs:
            raise _not_found(path)
        return FakeWriteStream(self, path, owns_connection)


class FakeConnector:
    """Hands out FakeConnections and remembers them."""

    def __init__(self, remote: FakeRemote):
        self.remote = remote
        self.connections: list[FakeConnection] = []
        self.locations: list[Location] = []

    def connect(self, location: Location) -> FakeConnection:
        connection = FakeConnection(self.remote)
        self.connections.append(connection)
        self.locations.append(location)
        return connection


@pytest.fixture
def fake_remote() -> FakeRemote:
    remote = FakeRemote()
    remote.add_file("/docs/notes.kdbx", b"old database")
    remote.add_dir("/docs/archive")
    return remote


@pytest.fixture
def fake_connector(fake_remote: FakeRemote) -> FakeConnector:
    return FakeConnector(fake_remote)


@pytest.fixture
def storage(fake_connector: FakeConnector) -> NetFtpFileStorage:
    """NetFtpFileStorage wired to the in-memory remote."""
    return NetFtpFileStorage(ConnectionConfig(), connector=fake_connector)


# =============================================================================
# ftplib mocks
# =============================================================================


@pytest.fixture
def mock_ftp() -> Generator[MagicMock, None, None]:
    """
    Creates a mocked ftplib.FTP instance.

    Returns:
        Mocked FTP object with common methods stubbed.
    """
    mock = MagicMock(spec=ftplib.FTP)
    mock.encoding = "utf-8"

    mock.sendcmd.return_value = "200 OK"
    mock.voidcmd.return_value = "200 OK"
    mock.voidresp.return_value = "226 Transfer complete"
    mock.login.return_value = "230 Login successful"
    mock.cwd.return_value = "250 OK"
    mock.pwd.return_value = "/"
    mock.quit.return_value = "221 Goodbye"

    yield mock


@pytest.fixture
def connection(mock_ftp: MagicMock) -> FtpConnection:
    """FtpConnection over a mocked ftplib.FTP that advertises MLSD."""
    conn = FtpConnection(mock_ftp, "test.ftp.local")
    conn.features = {"MLSD", "MLST", "MDTM", "SIZE", "REST"}
    return conn


@pytest.fixture
def conn_config() -> ConnectionConfig:
    """ConnectionConfig with a short retry budget."""
    return ConnectionConfig(
        timeout_seconds=10,
        retry_budget_seconds=5,
        retry_interval_seconds=1,
    )


# =============================================================================
# pyftpdlib server for integration tests
# =============================================================================


@pytest.fixture(scope="module")
def ftp_root(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """
    Create a temporary directory tree for the FTP server root.

    Structure:
        /
        +-- docs/
        |   +-- notes.kdbx            (contains "old database")
        |   +-- archive/
        +-- readme.txt                (contains "Hello World")
    """
    root_dir = tmp_path_factory.mktemp("ftp_root")
    docs = root_dir / "docs"
    docs.mkdir()
    (docs / "notes.kdbx").write_bytes(b"old database")
    (docs / "archive").mkdir()
    (root_dir / "readme.txt").write_text("Hello World", encoding="utf-8")
    return root_dir


USERNAME = "keeper"
PASSWORD = "s3cret"


def _serve(handler: type, root: Path) -> Generator[dict[str, Any], None, None]:
    """
    Run a pyftpdlib server for handler on 127.0.0.1 in a background thread.

    Every server gets its own IOLoop so several can run side by side.
    """
    from pyftpdlib.authorizers import DummyAuthorizer
    from pyftpdlib.ioloop import IOLoop
    from pyftpdlib.servers import FTPServer

    authorizer = DummyAuthorizer()
    authorizer.add_user(USERNAME, PASSWORD, str(root), perm="elradfmwMT")
    handler.authorizer = authorizer

    server = FTPServer(("127.0.0.1", 0), handler, ioloop=IOLoop())
    port = server.socket.getsockname()[1]

    server_thread = threading.Thread(target=server.serve_forever, kwargs={"timeout": 0.1})
    server_thread.daemon = True
    server_thread.start()
    time.sleep(0.1)

    yield {
        "host": "127.0.0.1",
        "port": port,
        "root": root,
        "username": USERNAME,
        "password": PASSWORD,
    }

    server.close_all()


@pytest.fixture(scope="module")
def ftp_server(ftp_root: Path) -> Generator[dict[str, Any], None, None]:
    """Plain FTP server serving ftp_root."""
    from pyftpdlib.handlers import FTPHandler

    class Handler(FTPHandler):
        passive_ports = range(60100, 60200)

    yield from _serve(Handler, ftp_root)


@pytest.fixture(scope="module")
def server_certificate(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Self-signed certificate and key for 127.0.0.1 in one PEM file."""
    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import rsa
    from cryptography.x509.oid import NameOID

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "127.0.0.1")])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .sign(key, hashes.SHA256())
    )

    pem_path = tmp_path_factory.mktemp("tls") / "server.pem"
    pem_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
        + certificate.public_bytes(serialization.Encoding.PEM)
    )
    return pem_path


@pytest.fixture(scope="module")
def ftps_explicit_server(
    ftp_root: Path, server_certificate: Path
) -> Generator[dict[str, Any], None, None]:
    """FTPS server that requires AUTH TLS and protected data channels."""
    from pyftpdlib.handlers import TLS_FTPHandler

    class Handler(TLS_FTPHandler):
        certfile = str(server_certificate)
        tls_control_required = True
        tls_data_required = True
        passive_ports = range(60200, 60300)

    yield from _serve(Handler, ftp_root)


@pytest.fixture(scope="module")
def ftps_implicit_server(
    ftp_root: Path, server_certificate: Path
) -> Generator[dict[str, Any], None, None]:
    """FTPS server that starts TLS as soon as a client connects."""
    from pyftpdlib.handlers import FTPHandler, TLS_FTPHandler

    class Handler(TLS_FTPHandler):
        certfile = str(server_certificate)
        tls_data_required = True
        passive_ports = range(60300, 60400)

        def handle(self):
            self.secure_connection(self.ssl_context)

        def handle_ssl_established(self):
            # the 220 greeting is sent inside the TLS session
            FTPHandler.handle(self)

    yield from _serve(Handler, ftp_root)
