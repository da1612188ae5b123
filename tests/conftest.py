"""Shared fixtures: an in-memory remote server and client."""

from __future__ import annotations

import io
from contextlib import contextmanager
from typing import Iterator

import pytest

from filebridge.errors import ConnectError, ProtocolError
from filebridge.paths import join_remote, remote_basename
from filebridge.protocols import ConnectionInfo, FileItem, Protocol, TransferClient


def _parent(path: str) -> str:
    parent = path.rstrip("/").rsplit("/", 1)[0]
    return parent or "/"


class MemoryServer:
    """Remote tree shared by every client created through :meth:`factory`."""

    def __init__(self) -> None:
        self.dirs: set[str] = {"/"}
        self.files: dict[str, bytes] = {}
        self.links: dict[str, str] = {}
        self.clients: list[MemoryClient] = []
        self.connect_errors: list[Exception] = []
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[tuple[str, str], list] = {}

    def add_dir(self, path: str) -> None:
        while path not in self.dirs:
            self.dirs.add(path)
            path = _parent(path)

    def add_file(self, path: str, data: bytes = b"") -> None:
        self.add_dir(_parent(path))
        self.files[path] = data

    def add_link(self, path: str, target: str) -> None:
        self.add_dir(_parent(path))
        self.links[path] = target

    def resolve(self, path: str) -> str:
        return self.links.get(path, path)

    def fail(self, method: str, path: str, error: Exception, times: int | None = None) -> None:
        """Make ``method`` on ``path`` raise ``error``, ``times`` times or forever."""
        self._failures[(method, path)] = [error, times]

    def drop_all(self) -> None:
        for client in self.clients:
            client.alive = False

    def factory(self, info: ConnectionInfo) -> MemoryClient:
        client = MemoryClient(info, self)
        self.clients.append(client)
        return client

    def check(self, method: str, path: str) -> None:
        self.calls.append((method, path))
        entry = self._failures.get((method, path))
        if entry is None:
            return
        error, times = entry
        if times is not None:
            if times <= 0:
                return
            entry[1] = times - 1
        raise error


class MemoryClient(TransferClient):
    protocol = Protocol.FTP

    def __init__(self, info: ConnectionInfo, server: MemoryServer) -> None:
        super().__init__(info)
        self.protocol = info.protocol
        self.server = server
        self.alive = True

    def connect(self) -> None:
        if self.server.connect_errors:
            raise self.server.connect_errors.pop(0)
        self._connected = True

    def disconnect(self) -> None:
        self._connected = False

    def _live(self) -> MemoryServer:
        if not self._connected or not self.alive:
            raise ConnectError("Not connected")
        return self.server

    def noop(self) -> None:
        self._live()

    def list_dir(self, path: str) -> list[FileItem]:
        server = self._live()
        server.check("list_dir", path)
        target = server.resolve(path)
        if target not in server.dirs:
            raise ProtocolError(f"Path '{path}' is not a directory")
        items = [
            FileItem(
                name=remote_basename(d),
                full_path=join_remote(path, remote_basename(d)),
                is_directory=True,
            )
            for d in sorted(server.dirs)
            if d != "/" and _parent(d) == target
        ]
        items += [
            FileItem(
                name=remote_basename(f),
                full_path=join_remote(path, remote_basename(f)),
                size=len(data),
            )
            for f, data in sorted(server.files.items())
            if _parent(f) == target
        ]
        items += [
            FileItem(
                name=remote_basename(link),
                full_path=join_remote(path, remote_basename(link)),
                is_directory=dest in server.dirs,
                is_symlink=True,
            )
            for link, dest in sorted(server.links.items())
            if _parent(link) == target
        ]
        return items

    @contextmanager
    def open_read(self, path: str) -> Iterator[io.BytesIO]:
        server = self._live()
        server.check("open_read", path)
        target = server.resolve(path)
        if target not in server.files:
            raise ProtocolError(f"No such file '{path}'")
        yield io.BytesIO(server.files[target])

    def upload(self, source, remote_path: str) -> None:
        server = self._live()
        server.check("upload", remote_path)
        if _parent(remote_path) not in server.dirs:
            raise ProtocolError(f"No such directory for '{remote_path}'")
        chunks = []
        while True:
            chunk = source.read(8192)
            if not chunk:
                break
            chunks.append(chunk)
        server.files[remote_path] = b"".join(chunks)

    def delete(self, path: str) -> None:
        server = self._live()
        server.check("delete", path)
        if path in server.links:
            del server.links[path]
            return
        if path not in server.files:
            raise ProtocolError(f"No such file '{path}'")
        del server.files[path]

    def rmdir(self, path: str) -> None:
        server = self._live()
        server.check("rmdir", path)
        children = [
            p
            for p in (*server.dirs, *server.files, *server.links)
            if p != "/" and _parent(p) == path
        ]
        if path not in server.dirs or children:
            raise ProtocolError(f"Cannot remove directory '{path}'")
        server.dirs.remove(path)

    def mkdir(self, path: str) -> None:
        server = self._live()
        server.check("mkdir", path)
        if path in server.dirs or _parent(path) not in server.dirs:
            raise ProtocolError(f"Cannot create directory '{path}'")
        server.dirs.add(path)

    def rename(self, old_path: str, new_path: str) -> None:
        server = self._live()
        server.check("rename", old_path)
        if old_path in server.files:
            server.files[new_path] = server.files.pop(old_path)
            return
        if old_path not in server.dirs:
            raise ProtocolError(f"No such path '{old_path}'")
        prefix = old_path.rstrip("/") + "/"
        server.dirs = {
            join_remote(new_path, d[len(prefix):]) if d.startswith(prefix) else d
            for d in server.dirs
            if d != old_path
        } | {new_path}
        server.files = {
            (join_remote(new_path, f[len(prefix):]) if f.startswith(prefix) else f): data
            for f, data in server.files.items()
        }

    def stat(self, path: str) -> FileItem:
        server = self._live()
        server.check("stat", path)
        if path in server.files:
            return FileItem(
                name=remote_basename(path), full_path=path, size=len(server.files[path])
            )
        if path in server.dirs:
            return FileItem(name=remote_basename(path), full_path=path, is_directory=True)
        raise ProtocolError(f"No such path '{path}'")


@pytest.fixture
def server() -> MemoryServer:
    return MemoryServer()


@pytest.fixture
def client(server: MemoryServer) -> MemoryClient:
    c = server.factory(ConnectionInfo(host="memory"))
    c.connect()
    return c


@pytest.fixture
def events() -> list[tuple[str, object]]:
    return []
