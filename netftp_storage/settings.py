"""
Location strings and the connection settings encoded inside them.

A location addresses a remote file or directory and carries its own
transport options, so a location alone is enough to reach the server:

    <scheme>://<settings>/<host>[:<port>]/<remote path>

``settings`` is a plain integer. Today it only holds the encryption mode
ordinal; new options have to be packed into the same integer.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, replace
from enum import Enum, IntEnum

from .errors import InvalidLocationError

SCHEME_SEPARATOR = "://"


class EncryptionMode(IntEnum):
    NONE = 0
    EXPLICIT = 1
    IMPLICIT = 2


class CredSaveMode(Enum):
    NO_SAVE = "no_save"
    USER_NAME_ONLY = "user_name_only"
    SAVE_CRED = "save_cred"


@dataclass(frozen=True)
class ConnectionSettings:
    encryption_mode: EncryptionMode = EncryptionMode.NONE

    def encode(self) -> str:
        return str(int(self.encryption_mode))

    @classmethod
    def decode(cls, segment: str) -> ConnectionSettings:
        """Decode a settings segment. Malformed segments raise, never default."""
        if not _is_canonical_int(segment):
            raise InvalidLocationError(f"Invalid connection settings segment: {segment!r}")
        try:
            mode = EncryptionMode(int(segment))
        except ValueError:
            raise InvalidLocationError(f"Unknown encryption mode: {segment}") from None
        return cls(encryption_mode=mode)

    @classmethod
    def from_location_path(cls, path: str) -> ConnectionSettings:
        return parse_location(path).settings


@dataclass(frozen=True)
class Location:
    """An opaque location plus the credentials used to reach it."""

    path: str
    username: str = ""
    password: str = ""
    cred_save_mode: CredSaveMode = CredSaveMode.NO_SAVE

    def with_path(self, path: str) -> Location:
        return replace(self, path=path)

    def __repr__(self) -> str:
        # keep passwords out of logs and tracebacks
        return f"Location(path={self.path!r}, username={self.username!r})"


@dataclass(frozen=True)
class ParsedLocation:
    scheme: str
    settings: ConnectionSettings
    host: str
    port: int | None
    remote_path: str

    @property
    def prefix(self) -> str:
        """Everything before the remote path: scheme, settings and host."""
        host = self.host if self.port is None else f"{self.host}:{self.port}"
        return f"{self.scheme}{SCHEME_SEPARATOR}{self.settings.encode()}/{host}"

    def to_path(self) -> str:
        return self.prefix + self.remote_path


def _split_prefix(path: str) -> tuple[str, str, str]:
    """Return (scheme, settings segment, remainder after the settings '/')."""
    scheme, sep, rest = path.partition(SCHEME_SEPARATOR)
    if not sep or not scheme:
        raise InvalidLocationError(f"Location has no scheme separator: {path!r}")
    settings, sep, rest = rest.partition("/")
    if not sep:
        raise InvalidLocationError(f"Location has no connection settings segment: {path!r}")
    return scheme, settings, rest


def _is_canonical_int(text: str) -> bool:
    return text.isascii() and text.isdigit() and str(int(text)) == text


def _parse_host(segment: str, path: str) -> tuple[str, int | None]:
    host, port_text = segment, None
    if segment.startswith("["):
        # IPv6 literal, optionally followed by :port
        end = segment.find("]")
        if end == -1:
            raise InvalidLocationError(f"Unterminated IPv6 host in location {path!r}")
        host, tail = segment[: end + 1], segment[end + 1 :]
        if tail:
            if not tail.startswith(":"):
                raise InvalidLocationError(f"Invalid host segment in location {path!r}")
            port_text = tail[1:]
    elif ":" in segment:
        host, _, port_text = segment.partition(":")

    if not host or host == "[]":
        raise InvalidLocationError(f"Location has no host: {path!r}")
    if port_text is None:
        return host, None
    if not _is_canonical_int(port_text) or not 0 < int(port_text) < 65536:
        raise InvalidLocationError(f"Invalid port {port_text!r} in location {path!r}")
    return host, int(port_text)


def parse_location(path: str) -> ParsedLocation:
    """
    Parse a location string.

    Splits strictly on ``://``, then on the first ``/`` (settings) and on the
    next ``/`` (host). A location that ends right after the host addresses
    the server root.

    Raises:
        InvalidLocationError: If any of the segments is missing or malformed.
    """
    scheme, settings_segment, rest = _split_prefix(path)
    settings = ConnectionSettings.decode(settings_segment)
    host_segment, sep, remote = rest.partition("/")
    host, port = _parse_host(host_segment, path)
    remote_path = "/" + remote if sep else "/"
    return ParsedLocation(
        scheme=scheme,
        settings=settings,
        host=host,
        port=port,
        remote_path=remote_path,
    )


def format_location(
    scheme: str,
    settings: ConnectionSettings,
    host: str,
    remote_path: str = "/",
    port: int | None = None,
) -> str:
    if not remote_path.startswith("/"):
        remote_path = "/" + remote_path
    return ParsedLocation(scheme, settings, host, port, remote_path).to_path()


def location_from_remote_path(base_path: str, remote_path: str) -> str:
    """Build a location for a server path, reusing the prefix of base_path verbatim."""
    scheme, settings, rest = _split_prefix(base_path)
    host_segment = rest.partition("/")[0]
    if not remote_path.startswith("/"):
        remote_path = "/" + remote_path
    return f"{scheme}{SCHEME_SEPARATOR}{settings}/{host_segment}{remote_path}"


def display_path(path: str) -> str:
    """The location without its settings segment, e.g. ``ftp://host/dir/file``."""
    scheme, _, rest = _split_prefix(path)
    return f"{scheme}{SCHEME_SEPARATOR}{rest}"


def join_path(parent: str, name: str) -> str:
    if not parent.endswith("/"):
        parent += "/"
    return parent + name


def parent_path(path: str) -> str:
    """
    Location of the containing directory.

    Never climbs above the server root: the parent of the root is the root.
    """
    parsed = parse_location(path)
    remote = parsed.remote_path.rstrip("/")
    if not remote:
        return path
    parent = remote.rsplit("/", 1)[0] or "/"
    return location_from_remote_path(path, parent)


def file_name(path: str) -> str:
    return posixpath.basename(parse_location(path).remote_path.rstrip("/"))
