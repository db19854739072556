"""Data anchor — plain Python tables that hold one store's cell state.

Cell handles are thin (store + id). Everything mutable about a cell lives
here, keyed by id, so the behavior modules (computed, scheduler,
subscription) share one source of truth per store.
"""

import itertools

# Sentinel for "never computed".
UNSET = object()

# ID generation: itertools.count is thread-safe (C-level GIL atomic).
# Shared across stores so ids are unique in log lines.
_id_counter = itertools.count(1)


def new_id() -> int:
    return next(_id_counter)


class Anchor:
    """Per-store cell tables."""

    def __init__(self) -> None:
        # All cells
        self.handles: dict[int, object] = {}  # id -> Cell
        self.values: dict[int, object] = {}  # last good value (UNSET before first success)
        self.versions: dict[int, int] = {}
        self.equality: dict[int, object] = {}  # id -> (a, b) -> bool

        # Derived cells
        self.fns: dict[int, object] = {}  # id -> compute callable
        self.dirty: set[int] = set()
        self.computing: set[int] = set()
        self.errors: dict[int, object] = {}  # id -> ComputationFailure (poisoned cells)

    def __contains__(self, cell_id: int) -> bool:
        return cell_id in self.handles

    def add(self, handle, value, equality, fn=None) -> None:
        cell_id = handle.id
        self.handles[cell_id] = handle
        self.values[cell_id] = value
        self.versions[cell_id] = 0
        self.equality[cell_id] = equality
        if fn is not None:
            self.fns[cell_id] = fn
            self.dirty.add(cell_id)

    def drop(self, cell_id: int) -> None:
        for table in (self.handles, self.values, self.versions, self.equality, self.fns, self.errors):
            table.pop(cell_id, None)
        self.dirty.discard(cell_id)
        self.computing.discard(cell_id)

    def clear(self) -> None:
        for table in (self.handles, self.values, self.versions, self.equality, self.fns, self.errors):
            table.clear()
        self.dirty.clear()
        self.computing.clear()
