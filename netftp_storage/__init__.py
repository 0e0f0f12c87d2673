__version__ = "0.1.0"

# Public API exports
from .config import ConnectionConfig, LogConfig, StorageConfig, load_config
from .connector import ResilientConnector, SessionParams
from .errors import (
    ErrorKind,
    InvalidLocationError,
    LocalIOError,
    NotFoundError,
    RemoteCommandError,
    StorageConnectionError,
    StorageError,
    TransientConnectionError,
    user_message,
)
from .ftp_client import FtpConnection, FtpDataStream, RemoteEntry, TrustDecision
from .logger import setup_logging
from .settings import (
    ConnectionSettings,
    CredSaveMode,
    EncryptionMode,
    Location,
    ParsedLocation,
    format_location,
    location_from_remote_path,
    parse_location,
)
from .storage import FileDescription, NetFtpFileStorage
from .write_transaction import (
    TransactedWrite,
    TransactionState,
    UntransactedWrite,
    WriteTransaction,
)

__all__ = [
    "__version__",
    # Configuration
    "ConnectionConfig",
    "LogConfig",
    "StorageConfig",
    "load_config",
    "setup_logging",
    # Locations
    "ConnectionSettings",
    "CredSaveMode",
    "EncryptionMode",
    "Location",
    "ParsedLocation",
    "format_location",
    "location_from_remote_path",
    "parse_location",
    # Connections
    "ResilientConnector",
    "SessionParams",
    "FtpConnection",
    "FtpDataStream",
    "RemoteEntry",
    "TrustDecision",
    # Storage
    "NetFtpFileStorage",
    "FileDescription",
    "WriteTransaction",
    "UntransactedWrite",
    "TransactedWrite",
    "TransactionState",
    # Errors
    "ErrorKind",
    "StorageError",
    "InvalidLocationError",
    "TransientConnectionError",
    "StorageConnectionError",
    "NotFoundError",
    "RemoteCommandError",
    "LocalIOError",
    "user_message",
]
