"""Background queue that runs transfers off the caller's thread."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from filebridge.progress import TRANSFER_PROGRESS, TransferProgress

if TYPE_CHECKING:
    from filebridge.service import CommandResult, FileService

logger = logging.getLogger(__name__)


class TransferKind(Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    MOVE = "move"


class TransferStatus(Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TransferItem:
    """One queued operation and its latest known progress."""

    id: int = 0
    kind: TransferKind = TransferKind.DOWNLOAD
    source: str = ""
    destination: str = ""
    is_remote: bool = True
    total_bytes: int = 0
    transferred_bytes: int = 0
    status: TransferStatus = TransferStatus.QUEUED
    error: str = ""
    done: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def progress_pct(self) -> int:
        if self.status == TransferStatus.COMPLETED:
            return 100
        if self.total_bytes <= 0:
            return 0
        return min(100, int(self.transferred_bytes * 100 / self.total_bytes))

    @property
    def display_status(self) -> str:
        if self.status == TransferStatus.IN_PROGRESS:
            return f"{self.progress_pct}%"
        return self.status.value


class TransferQueue:
    """Runs service operations one at a time on a daemon worker thread.

    Operations share one connection, so they are executed in FIFO order.
    """

    def __init__(self, service: FileService) -> None:
        self._service = service
        self._transfers: list[TransferItem] = []
        self._pending: queue.Queue[TransferItem] = queue.Queue()
        self._next_id = 1
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._active: TransferItem | None = None
        service.events.subscribe(TRANSFER_PROGRESS, self._on_progress)

    @property
    def transfers(self) -> list[TransferItem]:
        with self._lock:
            return list(self._transfers)

    def add_upload(self, local_path: str, remote_path: str) -> TransferItem:
        return self._enqueue(TransferKind.UPLOAD, local_path, remote_path)

    def add_download(self, remote_path: str, local_path: str) -> TransferItem:
        return self._enqueue(TransferKind.DOWNLOAD, remote_path, local_path)

    def add_delete(self, path: str, is_remote: bool = True) -> TransferItem:
        return self._enqueue(TransferKind.DELETE, path, "", is_remote)

    def add_move(self, source: str, destination: str, is_remote_source: bool) -> TransferItem:
        return self._enqueue(TransferKind.MOVE, source, destination, is_remote_source)

    def wait(self, item: TransferItem, timeout: float | None = None) -> bool:
        """Block until ``item`` finishes. Returns False on timeout."""
        return item.done.wait(timeout)

    def _enqueue(
        self, kind: TransferKind, source: str, destination: str, is_remote: bool = True
    ) -> TransferItem:
        with self._lock:
            item = TransferItem(
                id=self._next_id,
                kind=kind,
                source=source,
                destination=destination,
                is_remote=is_remote,
            )
            self._next_id += 1
            self._transfers.append(item)
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._run, daemon=True)
                self._worker.start()
        self._pending.put(item)
        return item

    def _run(self) -> None:
        while True:
            item = self._pending.get()
            try:
                self._execute(item)
            finally:
                self._pending.task_done()

    def _execute(self, item: TransferItem) -> None:
        item.status = TransferStatus.IN_PROGRESS
        self._active = item
        try:
            result = self._dispatch(item)
        except Exception as e:
            logger.exception("Transfer %d crashed", item.id)
            item.status = TransferStatus.FAILED
            item.error = str(e)
        else:
            if result.success:
                item.status = TransferStatus.COMPLETED
            else:
                item.status = TransferStatus.FAILED
                item.error = result.error or ""
        finally:
            self._active = None
            item.done.set()

    def _dispatch(self, item: TransferItem) -> CommandResult:
        if item.kind == TransferKind.UPLOAD:
            return self._service.upload(item.source, item.destination)
        if item.kind == TransferKind.DOWNLOAD:
            return self._service.download(item.source, item.destination)
        if item.kind == TransferKind.DELETE:
            return self._service.delete(item.source, item.is_remote)
        return self._service.move(item.source, item.destination, item.is_remote)

    def _on_progress(self, event: TransferProgress) -> None:
        item = self._active
        if item is None:
            return
        item.transferred_bytes = event.transferred_bytes
        item.total_bytes = event.total_bytes
