"""feed() — push values from a background producer into a cell.

Network fetches, file tails and pollers live outside the engine. feed()
runs one in a managed daemon thread and writes each value it produces
through the normal Store.write() path, so every arrival is an ordinary
batch: the store lock serializes it with the main thread's work.
"""

from __future__ import annotations

import logging
from threading import Thread
from typing import Any, Callable, Iterable

from cellx.cell import Cell

logger = logging.getLogger("cellx.feed")


class FeedHandle:
    """Disposable handle for a producer thread."""

    __slots__ = ("_disposed", "_lock", "_thread")

    def __init__(self, lock) -> None:
        self._disposed = False
        self._lock = lock
        self._thread: Thread | None = None

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def dispose(self) -> None:
        """Stop writing. Once this returns no further value lands in the cell.

        A write already in flight on the feed thread finishes first; the
        producer itself is abandoned, not interrupted.
        """
        with self._lock:
            self._disposed = True

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


def feed(cell: Cell, producer: Callable[[], Iterable[Any]]) -> FeedHandle:
    """Run producer() in a daemon thread, writing each value into cell.

    Producer exceptions (including ComputationFailure from the writes) are
    logged on the ``cellx.feed`` logger and end the feed.

    Usage:
        def poll():
            while True:
                yield fetch_status()
                time.sleep(2)

        handle = feed(store.cell("status"), poll)
        ...
        handle.dispose()
    """
    handle = FeedHandle(cell.store._lock)

    def _run() -> None:
        try:
            for value in producer():
                with handle._lock:
                    if handle.disposed:
                        break
                    cell.set(value)
        except Exception:
            logger.exception("feed into %r failed", cell)

    thread = Thread(target=_run, daemon=True, name=f"cellx-feed-{cell.name or cell.id}")
    handle._thread = thread
    thread.start()
    return handle
