"""Protocol abstraction for remote file servers."""

from __future__ import annotations

import ftplib
import logging
import os
import socket
import stat
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, BinaryIO, Iterator

from filebridge.errors import AuthError, ConnectError, ProtocolError
from filebridge.paths import join_remote, remote_basename

if TYPE_CHECKING:
    import paramiko

logger = logging.getLogger(__name__)

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(size: int) -> str:
    """Human readable byte count (``0 B``, ``512 B``, ``1.50 KB``, ``12.3 MB``)."""
    if size < 1024:
        return f"{size} B"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    if value >= 10:
        return f"{value:.1f} {_SIZE_UNITS[unit]}"
    return f"{value:.2f} {_SIZE_UNITS[unit]}"


class Protocol(Enum):
    FTP = "ftp"
    SFTP = "sftp"


class HostKeyPolicy(Enum):
    """SSH host key verification policy."""

    AUTO_ADD = "auto_add"
    STRICT = "strict"


@dataclass(frozen=True)
class FileItem:
    """A file or directory entry, remote or local."""

    name: str
    full_path: str
    size: int = 0
    is_directory: bool = False
    modified: datetime | None = None
    permissions: str = ""
    is_symlink: bool = False

    @property
    def display_size(self) -> str:
        if self.is_directory:
            return "<DIR>"
        return format_bytes(self.size)

    @property
    def display_modified(self) -> str:
        if self.modified is None:
            return ""
        return self.modified.strftime("%Y-%m-%d %H:%M")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "full_path": self.full_path,
            "size": self.size,
            "is_directory": self.is_directory,
            "modified": self.modified.isoformat() if self.modified else None,
            "permissions": self.permissions,
            "is_symlink": self.is_symlink,
            "readable_size": "" if self.is_directory else format_bytes(self.size),
            "readable_modified": self.display_modified,
        }


@dataclass(frozen=True)
class ConnectionInfo:
    """Connection parameters for a remote server."""

    protocol: Protocol = Protocol.FTP
    host: str = ""
    port: int = 0  # 0 means use protocol default
    username: str = "anonymous"
    password: str = "anonymous@"
    key_path: str = ""
    timeout: int = 30
    passive_mode: bool = True  # FTP only
    host_key_policy: HostKeyPolicy = HostKeyPolicy.AUTO_ADD

    @property
    def effective_port(self) -> int:
        if self.port > 0:
            return self.port
        return 22 if self.protocol == Protocol.SFTP else 21


class TransferClient(ABC):
    """Common capability set shared by every protocol client.

    All paths are absolute and already normalized. Every method raises a
    :class:`~filebridge.errors.RemoteError` subclass on failure.
    """

    protocol: Protocol

    def __init__(self, info: ConnectionInfo) -> None:
        self._info = info
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @abstractmethod
    def connect(self) -> None:
        """Open the transport and authenticate."""

    @abstractmethod
    def disconnect(self) -> None:
        """Close the transport. Never raises."""

    @abstractmethod
    def noop(self) -> None:
        """Lightweight round-trip used as a liveness probe."""

    @abstractmethod
    def list_dir(self, path: str) -> list[FileItem]:
        """List the immediate children of a directory."""

    @abstractmethod
    def open_read(self, path: str) -> Any:
        """Context manager yielding a readable binary stream for a remote file."""

    @abstractmethod
    def upload(self, source: BinaryIO, remote_path: str) -> None:
        """Create or overwrite a remote file from ``source`` (read until empty)."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete a remote file."""

    @abstractmethod
    def rmdir(self, path: str) -> None:
        """Remove an empty remote directory."""

    @abstractmethod
    def mkdir(self, path: str) -> None:
        """Create a remote directory."""

    @abstractmethod
    def rename(self, old_path: str, new_path: str) -> None:
        """Rename a remote file or directory."""

    @abstractmethod
    def stat(self, path: str) -> FileItem:
        """Get file info for a remote path."""


class FTPClient(TransferClient):
    """FTP protocol client using ftplib.

    One persistent control connection; every transfer or listing opens its
    own data connection.
    """

    protocol = Protocol.FTP

    def __init__(self, info: ConnectionInfo) -> None:
        super().__init__(info)
        self._ftp: ftplib.FTP | None = None

    def connect(self) -> None:
        self._connected = False
        self._ftp = ftplib.FTP()
        try:
            self._ftp.connect(self._info.host, self._info.effective_port, self._info.timeout)
        except (OSError, EOFError, ftplib.Error) as e:
            self._ftp = None
            raise ConnectError(f"FTP connection failed: {e}") from e
        try:
            self._ftp.login(self._info.username, self._info.password)
        except ftplib.error_perm as e:
            self._drop()
            raise AuthError(f"FTP login failed: {e}") from e
        except (OSError, EOFError, ftplib.Error) as e:
            self._drop()
            raise ConnectError(f"FTP connection failed: {e}") from e
        self._ftp.set_pasv(self._info.passive_mode)
        self._connected = True
        logger.info("FTP session open to %s:%s", self._info.host, self._info.effective_port)

    def disconnect(self) -> None:
        if self._ftp:
            try:
                self._ftp.quit()
            except Exception:
                self._drop()
        self._ftp = None
        self._connected = False

    def _drop(self) -> None:
        if self._ftp:
            try:
                self._ftp.close()
            except Exception:
                pass
        self._ftp = None
        self._connected = False

    def _ensure_connected(self) -> ftplib.FTP:
        if not self._ftp or not self._connected:
            raise ConnectError("Not connected")
        return self._ftp

    @contextmanager
    def _errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except ftplib.Error as e:
            raise ProtocolError(f"{action}: {e}") from e
        except (OSError, EOFError) as e:
            self._connected = False
            raise ConnectError(f"{action}: {e}") from e

    def noop(self) -> None:
        ftp = self._ensure_connected()
        with self._errors("NOOP failed"):
            ftp.voidcmd("NOOP")

    def list_dir(self, path: str) -> list[FileItem]:
        ftp = self._ensure_connected()
        lines: list[str] = []
        with self._errors(f"Failed to list directory via MLSD '{path}'"):
            ftp.retrlines(f"MLSD {path}", lines.append)
        files: list[FileItem] = []
        for line in lines:
            item = parse_mlsd_line(line, path)
            if item is not None:
                files.append(item)
        return files

    @contextmanager
    def open_read(self, path: str) -> Iterator[BinaryIO]:
        ftp = self._ensure_connected()
        with self._errors(f"Failed to open '{path}'"):
            ftp.voidcmd("TYPE I")
            conn = ftp.transfercmd(f"RETR {path}")
        stream = conn.makefile("rb")
        try:
            with self._errors(f"Failed to read '{path}'"):
                yield stream
        except BaseException:
            # The control channel still owes a RETR reply; start over instead.
            logger.debug("Read of %s aborted; dropping FTP session", path)
            stream.close()
            conn.close()
            self._drop()
            raise
        stream.close()
        conn.close()
        with self._errors(f"Failed to finish reading '{path}'"):
            ftp.voidresp()

    def upload(self, source: BinaryIO, remote_path: str) -> None:
        ftp = self._ensure_connected()
        with self._errors(f"Failed to upload '{remote_path}'"):
            ftp.storbinary(f"STOR {remote_path}", source, 8192)

    def delete(self, path: str) -> None:
        ftp = self._ensure_connected()
        with self._errors(f"Failed to delete file '{path}'"):
            ftp.delete(path)

    def rmdir(self, path: str) -> None:
        ftp = self._ensure_connected()
        with self._errors(f"Failed to remove directory '{path}'"):
            ftp.rmd(path)

    def mkdir(self, path: str) -> None:
        ftp = self._ensure_connected()
        with self._errors(f"Failed to create directory '{path}'"):
            ftp.mkd(path)

    def rename(self, old_path: str, new_path: str) -> None:
        ftp = self._ensure_connected()
        with self._errors(f"Failed to rename '{old_path}'"):
            ftp.rename(old_path, new_path)

    def stat(self, path: str) -> FileItem:
        ftp = self._ensure_connected()
        with self._errors(f"Failed to stat '{path}'"):
            ftp.voidcmd("TYPE I")
            size = ftp.size(path) or 0
            try:
                mdtm = ftp.sendcmd(f"MDTM {path}")
            except ftplib.Error:
                mdtm = ""
        modified = None
        try:
            if mdtm.startswith("213 "):
                modified = datetime.strptime(mdtm[4:18], "%Y%m%d%H%M%S")
        except ValueError:
            pass
        if modified is None:
            logger.debug("MDTM unavailable for %s", path)
        return FileItem(name=remote_basename(path), full_path=path, size=size, modified=modified)


def parse_mlsd_line(line: str, parent: str) -> FileItem | None:
    """Parse one MLSD line (``type=file;size=10;modify=...; name``).

    Returns None for ``.``/``..`` entries and lines without facts.
    """
    facts_str, sep, name = line.partition("; ")
    if not sep:
        facts_str, sep, name = line.rpartition(";")
    name = name.strip()
    if not sep or not name or name in (".", ".."):
        return None
    facts: dict[str, str] = {}
    for fact in facts_str.split(";"):
        if "=" in fact:
            k, v = fact.split("=", 1)
            facts[k.strip().lower()] = v.strip()
    if not facts:
        return None
    kind = facts.get("type", "").lower()
    if kind in ("cdir", "pdir"):
        return None
    is_dir = kind == "dir"
    is_link = kind.startswith("os.unix=slink")
    size = 0
    if not is_dir:
        try:
            size = int(facts.get("size", "0"))
        except ValueError:
            size = 0
    modified = None
    if "modify" in facts:
        try:
            modified = datetime.strptime(facts["modify"][:14], "%Y%m%d%H%M%S")
        except ValueError:
            pass
    return FileItem(
        name=name,
        full_path=join_remote(parent, name),
        size=size,
        is_directory=is_dir,
        modified=modified,
        permissions=facts.get("perm", ""),
        is_symlink=is_link,
    )


class SFTPClient(TransferClient):
    """SFTP protocol client using paramiko.

    Keeps one SSH transport and SFTP channel open for the session and
    multiplexes every operation over it.
    """

    protocol = Protocol.SFTP

    def __init__(self, info: ConnectionInfo) -> None:
        super().__init__(info)
        self._ssh_client: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None

    def connect(self) -> None:
        import paramiko

        self._connected = False
        self._ssh_client = None
        self._sftp = None

        try:
            self._ssh_client = paramiko.SSHClient()
            if self._info.host_key_policy == HostKeyPolicy.STRICT:
                self._ssh_client.set_missing_host_key_policy(paramiko.RejectPolicy())
                logger.debug("SFTP host key policy: strict (RejectPolicy)")
            else:
                self._ssh_client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
                logger.debug("SFTP host key policy: auto-add (AutoAddPolicy)")

            try:
                self._ssh_client.load_system_host_keys()
            except Exception:
                logger.debug("System host keys could not be loaded; continuing")

            connect_kwargs: dict[str, object] = {
                "hostname": self._info.host,
                "port": self._info.effective_port,
                "username": self._info.username,
                "timeout": self._info.timeout,
                "allow_agent": True,
                "look_for_keys": True,
            }
            auth_methods: list[str] = ["ssh-agent", "default-key-files"]
            if self._info.key_path:
                key_path = os.path.expanduser(self._info.key_path)
                if not os.path.exists(key_path):
                    raise AuthError(
                        f"SFTP connection failed: key file not found: {self._info.key_path}"
                    )
                connect_kwargs["key_filename"] = key_path
                connect_kwargs["allow_agent"] = False
                connect_kwargs["look_for_keys"] = False
                auth_methods = [f"key-file:{self._info.key_path}"]
            elif self._info.password:
                connect_kwargs["password"] = self._info.password
                auth_methods.append("password")

            logger.debug("SFTP authentication methods to try: %s", ", ".join(auth_methods))
            self._ssh_client.connect(**connect_kwargs)

            self._sftp = self._ssh_client.open_sftp()
            if self._sftp is None:
                raise ConnectError("Failed to create SFTP session after SSH authentication")
            self._connected = True
            logger.info("SFTP session open to %s:%s", self._info.host, self._info.effective_port)

        except (AuthError, ConnectError):
            self._drop()
            raise
        except paramiko.BadHostKeyException as e:
            self._drop()
            logger.error("Host key verification failed for %s: %s", self._info.host, e)
            raise ConnectError(
                f"SFTP connection failed: host key verification failed for {self._info.host}"
            ) from e
        except paramiko.PasswordRequiredException as e:
            self._drop()
            raise AuthError(
                "SFTP connection failed: the private key requires a passphrase"
            ) from e
        except paramiko.AuthenticationException as e:
            self._drop()
            logger.error(
                "SFTP authentication failed for %s. Methods attempted: %s",
                self._info.host,
                auth_methods,
            )
            raise AuthError(f"SFTP authentication failed: {e}") from e
        except paramiko.ssh_exception.NoValidConnectionsError as e:
            self._drop()
            raise ConnectError(
                f"SFTP connection failed: could not connect to "
                f"{self._info.host}:{self._info.effective_port}: {e}"
            ) from e
        except paramiko.SSHException as e:
            self._drop()
            raise ConnectError(f"SFTP connection failed: SSH negotiation failed: {e}") from e
        except Exception as e:
            self._drop()
            raise ConnectError(f"SFTP connection failed: {e}") from e

    def disconnect(self) -> None:
        self._drop()

    def _drop(self) -> None:
        if self._sftp:
            try:
                self._sftp.close()
            except Exception:
                pass
        if self._ssh_client:
            try:
                self._ssh_client.close()
            except Exception:
                pass
        self._sftp = None
        self._ssh_client = None
        self._connected = False

    def _ensure_connected(self) -> paramiko.SFTPClient:
        if not self._ssh_client or not self._sftp or not self._connected:
            raise ConnectError("Not connected")
        return self._sftp

    @contextmanager
    def _errors(self, action: str) -> Iterator[None]:
        import paramiko

        try:
            yield
        except (paramiko.SSHException, EOFError, socket.timeout, ConnectionError) as e:
            self._connected = False
            raise ConnectError(f"{action}: {e}") from e
        except OSError as e:
            raise ProtocolError(f"{action}: {e}") from e

    def noop(self) -> None:
        sftp = self._ensure_connected()
        transport = self._ssh_client.get_transport() if self._ssh_client else None
        if transport is None or not transport.is_active():
            self._connected = False
            raise ConnectError("SSH transport is no longer active")
        with self._errors("SFTP keepalive failed"):
            sftp.normalize(".")

    def list_dir(self, path: str) -> list[FileItem]:
        sftp = self._ensure_connected()
        with self._errors(f"Failed to access path '{path}'"):
            target = sftp.stat(path)
        if target.st_mode is None or not stat.S_ISDIR(target.st_mode):
            raise ProtocolError(f"Path '{path}' is not a directory")
        with self._errors(f"Failed to list directory '{path}'"):
            attrs = sftp.listdir_attr(path)
        files: list[FileItem] = []
        for attr in attrs:
            if attr.filename in (".", ".."):
                continue
            full_path = join_remote(path, attr.filename)
            is_dir = bool(attr.st_mode is not None and stat.S_ISDIR(attr.st_mode))
            is_link = bool(attr.st_mode is not None and stat.S_ISLNK(attr.st_mode))
            if is_link:
                try:
                    target_attr = sftp.stat(full_path)
                    if target_attr.st_mode is not None and stat.S_ISDIR(target_attr.st_mode):
                        is_dir = True
                except OSError:
                    logger.debug("Broken or unreadable symlink: %s", full_path)
            modified = datetime.fromtimestamp(attr.st_mtime) if attr.st_mtime else None
            perms = stat.filemode(attr.st_mode) if attr.st_mode else ""
            files.append(
                FileItem(
                    name=attr.filename,
                    full_path=full_path,
                    size=0 if is_dir else attr.st_size or 0,
                    is_directory=is_dir,
                    modified=modified,
                    permissions=perms,
                    is_symlink=is_link,
                )
            )
        return files

    @contextmanager
    def open_read(self, path: str) -> Iterator[BinaryIO]:
        sftp = self._ensure_connected()
        with self._errors(f"Failed to open remote file '{path}'"):
            remote = sftp.open(path, "rb")
            remote.prefetch()
        try:
            with self._errors(f"Failed to read remote file '{path}'"):
                yield remote
        finally:
            try:
                remote.close()
            except Exception:
                logger.debug("Error closing remote file %s", path)

    def upload(self, source: BinaryIO, remote_path: str) -> None:
        sftp = self._ensure_connected()
        with self._errors(f"Failed to upload '{remote_path}'"):
            sftp.putfo(source, remote_path)

    def delete(self, path: str) -> None:
        sftp = self._ensure_connected()
        with self._errors(f"Failed to delete file '{path}'"):
            sftp.remove(path)

    def rmdir(self, path: str) -> None:
        sftp = self._ensure_connected()
        with self._errors(f"Failed to remove directory '{path}'"):
            sftp.rmdir(path)

    def mkdir(self, path: str) -> None:
        sftp = self._ensure_connected()
        with self._errors(f"Failed to create directory '{path}'"):
            sftp.mkdir(path, 0o755)

    def rename(self, old_path: str, new_path: str) -> None:
        sftp = self._ensure_connected()
        with self._errors(f"Failed to rename '{old_path}'"):
            sftp.rename(old_path, new_path)

    def stat(self, path: str) -> FileItem:
        sftp = self._ensure_connected()
        with self._errors(f"Failed to stat '{path}'"):
            attr = sftp.stat(path)
        is_dir = stat.S_ISDIR(attr.st_mode) if attr.st_mode else False
        modified = datetime.fromtimestamp(attr.st_mtime) if attr.st_mtime else None
        perms = stat.filemode(attr.st_mode) if attr.st_mode else ""
        return FileItem(
            name=remote_basename(path),
            full_path=path,
            size=0 if is_dir else attr.st_size or 0,
            is_directory=is_dir,
            modified=modified,
            permissions=perms,
        )


def create_client(info: ConnectionInfo) -> TransferClient:
    """Factory function to create the appropriate protocol client."""
    clients: dict[Protocol, type[TransferClient]] = {
        Protocol.FTP: FTPClient,
        Protocol.SFTP: SFTPClient,
    }
    client_class = clients.get(info.protocol)
    if client_class is None:
        raise ValueError(f"Protocol {info.protocol} is not supported")
    return client_class(info)
