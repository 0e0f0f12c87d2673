"""
Connection establishment with a bounded retry on refused connections.

Only ConnectionRefusedError (nothing listening at host:port yet) is retried.
DNS failures, timeouts, TLS failures and rejected logins fail immediately.
"""

from __future__ import annotations

import ftplib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .config import ConnectionConfig
from .errors import StorageConnectionError, TransientConnectionError
from .ftp_client import FtpConnection, TrustDecision, create_ftp
from .settings import EncryptionMode, Location, parse_location

logger = logging.getLogger(__name__)

DEFAULT_PORT = 21
DEFAULT_IMPLICIT_TLS_PORT = 990


@dataclass(frozen=True)
class SessionParams:
    """Everything needed to open one session; copied into every attempt."""

    host: str
    port: int
    username: str
    password: str
    encryption_mode: EncryptionMode
    trust: TrustDecision

    @property
    def encrypted(self) -> bool:
        return self.encryption_mode is not EncryptionMode.NONE

    def __repr__(self) -> str:
        return (
            f"SessionParams(host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, encryption_mode={self.encryption_mode.name})"
        )

    @classmethod
    def from_location(cls, location: Location, config: ConnectionConfig) -> SessionParams:
        parsed = parse_location(location.path)
        mode = parsed.settings.encryption_mode
        port = parsed.port
        if port is None:
            port = DEFAULT_IMPLICIT_TLS_PORT if mode is EncryptionMode.IMPLICIT else DEFAULT_PORT
        return cls(
            host=parsed.host,
            port=port,
            username=location.username,
            password=location.password,
            encryption_mode=mode,
            trust=TrustDecision(verify_certificates=config.verify_certificates),
        )


FtpFactory = Callable[[SessionParams], ftplib.FTP]


class ResilientConnector:
    """
    Opens logged-in FtpConnections for locations.

    Args:
        config: Connection settings (timeouts and the retry budget).
        ftp_factory: Builds an unconnected ftplib object for a SessionParams.
        clock: Monotonic clock used to measure the retry budget.
        sleep: Function used to wait between attempts.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        ftp_factory: FtpFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self._ftp_factory = ftp_factory or self._default_factory
        self._clock = clock
        self._sleep = sleep

    def _default_factory(self, params: SessionParams) -> ftplib.FTP:
        return create_ftp(params.encryption_mode, params.trust, self.config)

    def connect(self, location: Location) -> FtpConnection:
        """
        Connect and log in to the server addressed by location.

        Raises:
            InvalidLocationError: If the location string is malformed.
            TransientConnectionError: If the server kept refusing connections
                for the whole retry budget.
            StorageConnectionError: For any other connection or login failure.
        """
        params = SessionParams.from_location(location, self.config)
        budget = self.config.retry_budget_seconds
        interval = self.config.retry_interval_seconds
        start = self._clock()
        attempt = 0

        while True:
            attempt += 1
            attempt_start = self._clock()
            try:
                return self._connect_once(params)
            except ConnectionRefusedError as e:
                now = self._clock()
                if now - start > budget:
                    logger.error(
                        "Connection to %s:%d refused, giving up after %d attempts",
                        params.host,
                        params.port,
                        attempt,
                    )
                    raise TransientConnectionError(
                        f"Could not reach {params.host}:{params.port}: {e}"
                    ) from e
                logger.warning(
                    "Connection to %s:%d refused (attempt %d), retrying",
                    params.host,
                    params.port,
                    attempt,
                )
                remaining = interval - (now - attempt_start)
                if remaining > 0:
                    self._sleep(remaining)

    def _connect_once(self, params: SessionParams) -> FtpConnection:
        ftp = self._ftp_factory(params)
        logger.debug("Connecting to FTP server %s:%d", params.host, params.port)
        try:
            ftp.connect(host=params.host, port=params.port, timeout=self.config.timeout_seconds)

            if params.username or params.password:
                logger.debug("Logging in as user: %s", params.username)
                ftp.login(user=params.username, passwd=params.password)
            else:
                logger.debug("Logging in anonymously")
                ftp.login()

            if params.encrypted:
                ftp.prot_p()
            ftp.set_pasv(self.config.passive_mode)

            connection = FtpConnection(ftp, params.host)
            connection.detect_features()
        except ConnectionRefusedError:
            ftp.close()
            raise
        except ftplib.Error as e:
            ftp.close()
            logger.error("FTP login to %s failed: %s", params.host, e)
            raise StorageConnectionError(f"FTP login failed: {e}") from e
        except (OSError, EOFError) as e:
            # socket.gaierror, TimeoutError and ssl.SSLError are all OSErrors
            ftp.close()
            logger.error("Connection to %s:%d failed: %s", params.host, params.port, e)
            raise StorageConnectionError(f"Connection failed: {e}") from e

        logger.info(
            "Connected to FTP server %s:%d (%s)",
            params.host,
            params.port,
            params.encryption_mode.name.lower(),
        )
        return connection
