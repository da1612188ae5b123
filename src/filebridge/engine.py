"""Recursive upload, download and delete built from single-item client calls."""

from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Any, Callable

from filebridge.errors import LocalIOError, PartialFailure, ProtocolError, RemoteError
from filebridge.paths import join_remote, remote_basename
from filebridge.progress import (
    DELETE_PROGRESS,
    TRANSFER_PROGRESS,
    DeleteProgress,
    ProgressReader,
    ProgressReporter,
    ProgressWriter,
)
from filebridge.protocols import TransferClient

logger = logging.getLogger(__name__)

Emit = Callable[[str, Any], None]

BLOCK_SIZE = 8192


def _discard(_name: str, _payload: Any) -> None:
    pass


class RecursiveTransferEngine:
    """Depth-first tree operations against one client.

    Each public operation records the leaf operations it completed. When a
    later step fails, the error is re-raised as :class:`PartialFailure` so the
    caller knows what already happened; nothing is rolled back.
    """

    def __init__(
        self,
        client: TransferClient,
        emit: Emit = _discard,
        progress_interval: float = 0.05,
    ) -> None:
        self._client = client
        self._emit = emit
        self._interval = progress_interval
        self.completed: list[str] = []
        self._delete_total = 0
        self._delete_root = ""
        self._deleted_items = 0

    def upload(self, local_root: str | Path, remote_root: str) -> None:
        self.completed = []
        self._guard("Upload", remote_root, lambda: self._upload(Path(local_root), remote_root))

    def download(self, remote_root: str, local_root: str | Path) -> None:
        self.completed = []
        self._guard(
            "Download", remote_root, lambda: self._download(remote_root, Path(local_root))
        )

    def delete(self, path: str) -> None:
        self.completed = []
        self._delete_total = self.count_items(path)
        self._delete_root = remote_basename(path)
        self._deleted_items = 0
        logger.debug("Deleting %s (%d items)", path, self._delete_total)
        self._guard("Delete", path, lambda: self._delete(path))

    def count_items(self, path: str) -> int:
        """Count ``path`` itself plus every descendant; 1 if it cannot be listed.

        Symbolic links count as one item and are never followed.
        """
        try:
            entries = self._client.list_dir(path)
        except RemoteError:
            return 1
        count = 1
        for entry in entries:
            if entry.is_directory and not entry.is_symlink:
                count += self.count_items(entry.full_path)
            else:
                count += 1
        return count

    def _guard(self, label: str, root: str, operation: Callable[[], None]) -> None:
        try:
            operation()
        except RemoteError as e:
            if not self.completed:
                raise
            raise PartialFailure(
                f"{label} of {root} stopped after {len(self.completed)} item(s): {e}",
                completed=self.completed,
                cause=e,
            ) from e

    def _upload(self, local_path: Path, remote_path: str) -> None:
        if local_path.is_dir():
            try:
                self._client.mkdir(remote_path)
            except ProtocolError as e:
                logger.debug("mkdir %s: %s (assuming it exists)", remote_path, e)
            try:
                entries = list(os.scandir(local_path))
            except OSError as e:
                raise LocalIOError(f"Failed to read local directory '{local_path}': {e}") from e
            for entry in entries:
                self._upload(Path(entry.path), join_remote(remote_path, entry.name))
            return

        try:
            data = local_path.read_bytes()
        except OSError as e:
            raise LocalIOError(f"Failed to read local file '{local_path}': {e}") from e
        reporter = self._reporter(local_path.name, len(data))
        self._client.upload(ProgressReader(io.BytesIO(data), reporter), remote_path)
        reporter.finish()
        self.completed.append(remote_path)

    def _download(self, remote_path: str, local_path: Path) -> None:
        try:
            entries = self._client.list_dir(remote_path)
        except RemoteError as e:
            logger.debug("Listing %s failed (%s); treating it as a file", remote_path, e)
            try:
                size = self._client.stat(remote_path).size
            except RemoteError:
                size = 0
            self._download_file(remote_path, local_path, size)
            return

        try:
            local_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalIOError(f"Failed to create local directory '{local_path}': {e}") from e
        for entry in entries:
            child_local = local_path / entry.name
            if entry.is_directory and entry.is_symlink:
                logger.debug("Skipping symlinked directory %s", entry.full_path)
            elif entry.is_directory:
                self._download(entry.full_path, child_local)
            else:
                self._download_file(entry.full_path, child_local, entry.size)

    def _download_file(self, remote_path: str, local_path: Path, size: int) -> None:
        reporter = self._reporter(remote_basename(remote_path), size)
        with self._client.open_read(remote_path) as source:
            try:
                local_file = open(local_path, "wb")
            except OSError as e:
                raise LocalIOError(f"Failed to create local file '{local_path}': {e}") from e
            with local_file:
                writer = ProgressWriter(local_file, reporter)
                while True:
                    chunk = source.read(BLOCK_SIZE)
                    if not chunk:
                        break
                    try:
                        writer.write(chunk)
                    except OSError as e:
                        raise LocalIOError(
                            f"Failed to write local file '{local_path}': {e}"
                        ) from e
        reporter.finish()
        self.completed.append(remote_path)

    def _delete(self, path: str) -> None:
        try:
            entries = self._client.list_dir(path)
        except RemoteError:
            self._client.delete(path)
            self._deleted(path)
            return

        for entry in entries:
            if entry.is_directory and not entry.is_symlink:
                self._delete(entry.full_path)
            else:
                self._client.delete(entry.full_path)
                self._deleted(entry.full_path)
        self._client.rmdir(path)
        self._deleted(path)

    def _deleted(self, path: str) -> None:
        self._deleted_items += 1
        self.completed.append(path)
        self._emit(
            DELETE_PROGRESS,
            DeleteProgress(
                item_name=self._delete_root,
                percent=self._deleted_items * 100.0 / self._delete_total,
                current_item=remote_basename(path),
                total_items=self._delete_total,
                deleted_items=self._deleted_items,
            ),
        )

    def _reporter(self, name: str, total: int) -> ProgressReporter:
        return ProgressReporter(
            name,
            total,
            lambda event: self._emit(TRANSFER_PROGRESS, event),
            interval=self._interval,
        )
