"""Recording scopes — how derived cells learn what they read.

Uses contextvars to track which derived cell is currently computing, so
every Store.read() inside a compute function registers the cell it read
(with its version) on the computing cell's provisional input set.

A contextvar is per thread and per asyncio task, so nested derivations and
concurrent readers never see each other's scopes.
"""

from __future__ import annotations

import contextvars
from contextlib import contextmanager


class RecordingScope:
    """Provisional input set of one computation in flight."""

    __slots__ = ("store", "cell_id", "reads", "parent")

    def __init__(self, store, cell_id: int, parent: RecordingScope | None) -> None:
        self.store = store
        self.cell_id = cell_id
        self.reads: dict[int, int] = {}  # input id -> version seen, in read order
        self.parent = parent


# The innermost computation in flight. Parents form the stack.
current_scope: contextvars.ContextVar[RecordingScope | None] = contextvars.ContextVar(
    "cellx_current_scope", default=None
)


@contextmanager
def recording(store, cell_id: int):
    """Push a recording scope for cell_id; pop it on exit."""
    scope = RecordingScope(store, cell_id, current_scope.get())
    token = current_scope.set(scope)
    try:
        yield scope
    finally:
        current_scope.reset(token)


def record_read(store, cell_id: int, version: int | None) -> None:
    """Register a read on the innermost scope, if it belongs to store."""
    scope = current_scope.get()
    if scope is not None and scope.store is store and version is not None:
        scope.reads[cell_id] = version


def computing_in(store) -> int | None:
    """Id of the cell store is computing on this thread/task, if any."""
    scope = current_scope.get()
    while scope is not None:
        if scope.store is store:
            return scope.cell_id
        scope = scope.parent
    return None


def cycle_through(store, cell_id: int) -> list[int]:
    """Computation chain from the first entry of cell_id back to cell_id."""
    scope = current_scope.get()
    chain = [s for s in _scopes(scope) if s.store is store]
    ids = [s.cell_id for s in reversed(chain)]
    if cell_id in ids:
        ids = ids[ids.index(cell_id):]
    return ids + [cell_id]


def _scopes(scope: RecordingScope | None):
    while scope is not None:
        yield scope
        scope = scope.parent
