"""Connection lifecycle: connect, liveness probing, reconnect with backoff."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, TypeVar

from filebridge.errors import ConnectError, ReconnectRetryError, RemoteError, is_retryable
from filebridge.protocols import (
    ConnectionInfo,
    Protocol,
    TransferClient,
    create_client,
)
from filebridge.retry import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[ConnectionInfo], TransferClient]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def protocol_order(port: int) -> list[Protocol]:
    """Protocols to try for ``connect_auto``, most likely first."""
    if port in (22, 2222):
        return [Protocol.SFTP, Protocol.FTP]
    return [Protocol.FTP, Protocol.SFTP]


class ConnectionManager:
    """Owns the single active session and its connection parameters.

    Every remote operation runs under :attr:`lock`, so only one protocol
    exchange is in flight against the server at a time.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        client_factory: ClientFactory = create_client,
    ) -> None:
        self.retry_policy = retry_policy or RetryPolicy()
        self._client_factory = client_factory
        self._client: TransferClient | None = None
        self._info: ConnectionInfo | None = None
        self._state = ConnectionState.DISCONNECTED
        self.lock = threading.RLock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def info(self) -> ConnectionInfo | None:
        return self._info

    @property
    def client(self) -> TransferClient | None:
        return self._client

    def connect(self, info: ConnectionInfo) -> str:
        """Replace any existing session with a new one. Failures are not retried."""
        with self.lock:
            self._teardown()
            self._info = None
            self._state = ConnectionState.CONNECTING
            logger.info(
                "Connecting to %s:%s via %s", info.host, info.effective_port, info.protocol.value
            )
            try:
                client = self._client_factory(info)
                client.connect()
            except Exception:
                self._state = ConnectionState.DISCONNECTED
                raise
            self._client = client
            self._info = info
            self._state = ConnectionState.CONNECTED
            return f"{info.protocol.value.upper()} connected successfully"

    def connect_auto(
        self, host: str, port: int, username: str, password: str, **options: Any
    ) -> str:
        """Try each protocol in port-derived order, returning on the first success."""
        failures: list[str] = []
        for protocol in protocol_order(port):
            info = ConnectionInfo(
                protocol=protocol,
                host=host,
                port=port,
                username=username,
                password=password,
                **options,
            )
            try:
                message = self.connect(info)
            except RemoteError as e:
                logger.info("Auto-connect: %s failed for %s:%s: %s", protocol.value, host, port, e)
                failures.append(f"{protocol.value.upper()}: {e}")
                continue
            return f"{message} (auto-detected)"
        tried = ", ".join(p.value.upper() for p in protocol_order(port))
        raise ConnectError(
            f"Failed to connect using any protocol (tried {tried}): " + "; ".join(failures)
        )

    def ensure_connected(self) -> TransferClient:
        """Return a live client, reconnecting with backoff if the session dropped."""
        with self.lock:
            if self._client is not None:
                try:
                    self._client.noop()
                    return self._client
                except RemoteError as e:
                    logger.warning("Liveness probe failed: %s", e)
                    self._teardown()
            if self._info is None:
                self._state = ConnectionState.DISCONNECTED
                raise ConnectError("Not connected and no connection info available")

            info = self._info
            self._state = ConnectionState.RECONNECTING
            logger.info("Reconnecting to %s:%s", info.host, info.effective_port)

            def attempt() -> TransferClient:
                client = self._client_factory(info)
                client.connect()
                return client

            try:
                client = self.retry_policy.run(attempt)
            except RemoteError as e:
                self._state = ConnectionState.DISCONNECTED
                raise ConnectError(f"Auto-reconnect failed: {e}") from e
            self._client = client
            self._state = ConnectionState.CONNECTED
            logger.info("Reconnected to %s:%s", info.host, info.effective_port)
            return client

    def disconnect(self) -> None:
        """Best-effort shutdown; never raises."""
        with self.lock:
            self._teardown()
            self._info = None
            self._state = ConnectionState.DISCONNECTED
            logger.info("Disconnected")

    def call(self, action: str, func: Callable[[TransferClient], T]) -> T:
        """Run ``func`` against a live client, retrying once after a reconnect.

        If re-establishing the connection fails, the first error is raised.
        If the retry fails, :class:`ReconnectRetryError` carries both errors.
        """
        with self.lock:
            client = self.ensure_connected()
            try:
                return func(client)
            except RemoteError as first:
                if not is_retryable(first):
                    raise
                logger.warning("Failed to %s: %s; retrying after reconnect", action, first)
                try:
                    client = self.ensure_connected()
                except RemoteError as reconnect_error:
                    logger.error("Reconnect before retry failed: %s", reconnect_error)
                    raise first
                try:
                    return func(client)
                except RemoteError as retry_error:
                    raise ReconnectRetryError(
                        f"Failed to {action} after reconnect: {retry_error}",
                        original=first,
                        retry_error=retry_error,
                    ) from first

    def _teardown(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.disconnect()
        except Exception as e:
            logger.debug("Ignoring error while closing session: %s", e)
