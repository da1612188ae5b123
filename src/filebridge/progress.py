"""Progress events for transfers and deletes."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable

from filebridge.protocols import format_bytes

logger = logging.getLogger(__name__)

TRANSFER_PROGRESS = "transfer-progress"
DELETE_PROGRESS = "delete-progress"

Listener = Callable[[Any], None]


@dataclass(frozen=True)
class TransferProgress:
    item_name: str
    percent: float
    transferred_bytes: int
    total_bytes: int
    speed: str


@dataclass(frozen=True)
class DeleteProgress:
    item_name: str
    percent: float
    current_item: str
    total_items: int
    deleted_items: int


class EventBus:
    """Named event channels with any number of listeners.

    Listener failures are logged and never reach the operation that emitted
    the event.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._lock = threading.Lock()

    def subscribe(self, name: str, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.setdefault(name, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(name, [])
                if listener in listeners:
                    listeners.remove(listener)

        return unsubscribe

    def emit(self, name: str, payload: Any) -> None:
        with self._lock:
            listeners = list(self._listeners.get(name, []))
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception("Progress listener failed for %s", name)


class ProgressReporter:
    """Accumulates byte counts for one transfer and emits throttled events.

    An event goes out on the first chunk, whenever ``interval`` seconds have
    passed since the previous one, and once more from :meth:`finish`.
    """

    def __init__(
        self,
        item_name: str,
        total_bytes: int,
        emit: Callable[[TransferProgress], None],
        clock: Callable[[], float] = time.monotonic,
        interval: float = 0.05,
    ) -> None:
        self.item_name = item_name
        self.total_bytes = max(0, total_bytes)
        self.transferred_bytes = 0
        self._emit = emit
        self._clock = clock
        self._interval = interval
        self._start = clock()
        self._last_emit: float | None = None
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def percent(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return min(100.0, self.transferred_bytes * 100.0 / self.total_bytes)

    def update(self, nbytes: int) -> None:
        if nbytes <= 0 or self._finished:
            return
        self.transferred_bytes += nbytes
        now = self._clock()
        if self._last_emit is not None and now - self._last_emit < self._interval:
            return
        elapsed = now - self._start
        speed = self.transferred_bytes / elapsed if elapsed > 0 else 0.0
        self._last_emit = now
        self._emit(
            TransferProgress(
                item_name=self.item_name,
                percent=self.percent,
                transferred_bytes=self.transferred_bytes,
                total_bytes=self.total_bytes,
                speed=f"{format_bytes(int(speed))}/s",
            )
        )

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        final = self.total_bytes if self.total_bytes > 0 else self.transferred_bytes
        self._emit(
            TransferProgress(
                item_name=self.item_name,
                percent=100.0,
                transferred_bytes=max(final, self.transferred_bytes),
                total_bytes=self.total_bytes,
                speed="Done",
            )
        )


class ProgressReader:
    """Readable stream wrapper; an empty read marks the transfer complete."""

    def __init__(self, stream: BinaryIO, reporter: ProgressReporter) -> None:
        self._stream = stream
        self.reporter = reporter

    def read(self, size: int = -1) -> bytes:
        data = self._stream.read(size)
        if data:
            self.reporter.update(len(data))
        else:
            self.reporter.finish()
        return data


class ProgressWriter:
    """Writable stream wrapper; call :meth:`ProgressReporter.finish` when done."""

    def __init__(self, stream: BinaryIO, reporter: ProgressReporter) -> None:
        self._stream = stream
        self.reporter = reporter

    def write(self, data: bytes) -> int:
        written = self._stream.write(data)
        self.reporter.update(len(data))
        return written if written is not None else len(data)
