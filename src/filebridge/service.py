"""Command layer exposed to user interfaces.

Every method returns a :class:`CommandResult` instead of raising, so a UI can
show ``error`` directly. Remote paths are normalized before use and every
remote call goes through :meth:`ConnectionManager.call`.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Generic, TypeVar

from filebridge import local_files
from filebridge.connection import ConnectionManager, ConnectionState
from filebridge.engine import RecursiveTransferEngine
from filebridge.errors import RemoteError
from filebridge.paths import normalize_remote_path
from filebridge.progress import EventBus
from filebridge.protocols import (
    ConnectionInfo,
    FileItem,
    HostKeyPolicy,
    Protocol,
    TransferClient,
)
from filebridge.search import search_local, search_remote
from filebridge.settings import (
    DEFAULT_CONFIG_DIR,
    Settings,
    load_settings,
    resolve_startup_local_folder,
    save_settings,
    update_last_local_folder,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_USERNAME = "anonymous"
DEFAULT_PASSWORD = "anonymous@"


@dataclass
class CommandResult(Generic[T]):
    success: bool
    data: T | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> CommandResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> CommandResult:
        return cls(success=False, error=error)


class FileService:
    """Remote and local file commands sharing one connection."""

    def __init__(
        self,
        settings: Settings | None = None,
        config_dir: Path = DEFAULT_CONFIG_DIR,
        manager: ConnectionManager | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._config_dir = config_dir
        self.settings = settings if settings is not None else load_settings(config_dir)
        self.manager = manager or ConnectionManager(self.settings.connection.retry_policy())
        self.events = events or EventBus()

    @property
    def connected(self) -> bool:
        return self.manager.state == ConnectionState.CONNECTED

    # --- connection ---

    def connect(
        self,
        host: str,
        port: int,
        username: str | None = None,
        password: str | None = None,
        protocol: str | None = None,
    ) -> CommandResult[str]:
        try:
            proto = Protocol((protocol or "ftp").lower())
        except ValueError:
            return CommandResult.fail(f"Unsupported protocol: {protocol}")
        info = ConnectionInfo(
            protocol=proto,
            host=host,
            port=port,
            username=username or DEFAULT_USERNAME,
            password=password or DEFAULT_PASSWORD,
            **self._connection_options(),
        )
        try:
            return CommandResult.ok(self.manager.connect(info))
        except RemoteError as e:
            logger.error("Connect to %s:%s failed: %s", host, port, e)
            return CommandResult.fail(str(e))

    def connect_auto(
        self,
        host: str,
        port: int,
        username: str | None = None,
        password: str | None = None,
    ) -> CommandResult[str]:
        try:
            message = self.manager.connect_auto(
                host,
                port,
                username or DEFAULT_USERNAME,
                password or DEFAULT_PASSWORD,
                **self._connection_options(),
            )
        except RemoteError as e:
            logger.error("Auto-connect to %s:%s failed: %s", host, port, e)
            return CommandResult.fail(str(e))
        return CommandResult.ok(message)

    def disconnect(self) -> None:
        self.manager.disconnect()

    def _connection_options(self) -> dict[str, Any]:
        defaults = self.settings.connection
        try:
            policy = HostKeyPolicy(defaults.host_key_policy)
        except ValueError:
            logger.warning("Unknown host key policy %r; using auto_add", defaults.host_key_policy)
            policy = HostKeyPolicy.AUTO_ADD
        return {
            "timeout": defaults.timeout,
            "passive_mode": defaults.passive_mode,
            "host_key_policy": policy,
        }

    # --- listing and search ---

    def list_files(self, path: str, is_remote: bool) -> CommandResult[list[FileItem]]:
        if is_remote:
            remote = normalize_remote_path(path)
            return self._remote("list directory", lambda c: c.list_dir(remote))
        if not Path(path).exists():
            return CommandResult.fail("Path does not exist")
        return self._local("read local directory", lambda: local_files.list_local_dir(path))

    def search_files(
        self, path: str, query: str, is_remote: bool, recursive: bool = True
    ) -> CommandResult[list[FileItem]]:
        if is_remote:
            remote = normalize_remote_path(path)
            return self._remote(
                "search", lambda c: search_remote(c, remote, query, recursive)
            )
        return self._local("search", lambda: search_local(path, query, recursive))

    # --- transfers ---

    def upload(self, local_path: str, remote_path: str) -> CommandResult[None]:
        remote = normalize_remote_path(remote_path)
        return self._remote("upload", lambda c: self._engine(c).upload(local_path, remote))

    def download(self, remote_path: str, local_path: str) -> CommandResult[None]:
        remote = normalize_remote_path(remote_path)
        return self._remote("download", lambda c: self._engine(c).download(remote, local_path))

    def move(
        self, source_path: str, dest_path: str, is_remote_source: bool
    ) -> CommandResult[None]:
        """Transfer ``source_path`` to the other side, then delete the source."""
        if is_remote_source:
            transferred = self.download(source_path, dest_path)
            if not transferred.success:
                return CommandResult.fail(
                    f"Failed to download file during move: {transferred.error}"
                )
            removed = self.delete(source_path, is_remote=True)
            if not removed.success:
                return CommandResult.fail(
                    f"File downloaded but failed to delete remote: {removed.error}"
                )
            return CommandResult.ok()

        transferred = self.upload(source_path, dest_path)
        if not transferred.success:
            return CommandResult.fail(f"Failed to upload file during move: {transferred.error}")
        removed = self.delete(source_path, is_remote=False)
        if not removed.success:
            return CommandResult.fail(
                f"File uploaded but failed to delete local: {removed.error}"
            )
        return CommandResult.ok()

    # --- manipulation ---

    def delete(self, path: str, is_remote: bool) -> CommandResult[None]:
        if is_remote:
            remote = normalize_remote_path(path)
            return self._remote("delete", lambda c: self._engine(c).delete(remote))
        return self._local("delete local item", lambda: local_files.delete_local(path))

    def rename(self, old_path: str, new_path: str, is_remote: bool) -> CommandResult:
        if is_remote:
            old = normalize_remote_path(old_path)
            new = normalize_remote_path(new_path)
            return self._remote("rename", lambda c: c.rename(old, new))
        return self._local(
            "rename local item", lambda: local_files.rename_local(old_path, new_path)
        )

    def mkdir(self, path: str, is_remote: bool) -> CommandResult:
        if is_remote:
            remote = normalize_remote_path(path)
            return self._remote("create directory", lambda c: c.mkdir(remote))
        return self._local(
            "create local directory", lambda: local_files.mkdir_local(path)
        )

    def create_file(self, path: str, is_remote: bool) -> CommandResult:
        if is_remote:
            remote = normalize_remote_path(path)
            return self._remote("create file", lambda c: c.upload(io.BytesIO(b""), remote))
        return self._local(
            "create local file", lambda: local_files.create_local_file(path)
        )

    # --- file contents ---

    def read_text_file(self, path: str, is_remote: bool) -> CommandResult[str]:
        if is_remote:
            remote = normalize_remote_path(path)
            return self._remote(
                "read file",
                lambda c: _read_remote(c, remote).decode("utf-8", errors="replace"),
            )
        return self._local("read local file", lambda: local_files.read_local_text(path))

    def write_text_file(self, path: str, content: str, is_remote: bool) -> CommandResult[None]:
        if is_remote:
            remote = normalize_remote_path(path)
            data = content.encode("utf-8")
            return self._remote("write file", lambda c: c.upload(io.BytesIO(data), remote))
        return self._local(
            "write local file", lambda: local_files.write_local_text(path, content)
        )

    def read_binary_file(self, path: str, is_remote: bool) -> CommandResult[bytes]:
        if is_remote:
            remote = normalize_remote_path(path)
            return self._remote("read file", lambda c: _read_remote(c, remote))
        return self._local("read local file", lambda: local_files.read_local_bytes(path))

    # --- last local path ---

    def initial_local_path(self) -> str:
        documents = Path.home() / "Documents"
        fallback = documents if documents.is_dir() else Path.home()
        return resolve_startup_local_folder(self.settings, fallback=str(fallback))

    def save_last_local_path(self, path: str) -> None:
        if update_last_local_folder(self.settings, path):
            try:
                save_settings(self.settings, self._config_dir)
            except OSError as e:
                logger.warning("Could not save last local path: %s", e)

    # --- helpers ---

    def _engine(self, client: TransferClient) -> RecursiveTransferEngine:
        return RecursiveTransferEngine(
            client,
            self.events.emit,
            progress_interval=self.settings.transfer.progress_interval_ms / 1000,
        )

    def _remote(self, action: str, func: Callable[[TransferClient], T]) -> CommandResult[T]:
        try:
            return CommandResult.ok(self.manager.call(action, func))
        except RemoteError as e:
            logger.error("Failed to %s: %s", action, e)
            return CommandResult.fail(str(e))

    def _local(self, action: str, func: Callable[[], T]) -> CommandResult[T]:
        try:
            return CommandResult.ok(func())
        except OSError as e:
            logger.error("Failed to %s: %s", action, e)
            return CommandResult.fail(f"Failed to {action}: {e}")


def _read_remote(client: TransferClient, path: str) -> bytes:
    with client.open_read(path) as stream:
        return stream.read()
