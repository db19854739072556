"""Actions, transactions and reducers — batched state mutations.

Wrapping writes in an action or `with transaction(store)` defers all
recomputation and notification until the outermost scope exits. This
prevents glitchy intermediate states where some observers have seen a
write but others haven't yet.

A scope is also the store's exclusive mutator lock: another thread's
writes wait until it closes.
"""

from __future__ import annotations

import functools
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, Generic, ParamSpec, TypeVar

if TYPE_CHECKING:
    from cellx.cell import Cell
    from cellx.store import Store

P = ParamSpec("P")
R = TypeVar("R")
S = TypeVar("S")
A = TypeVar("A")

logger = logging.getLogger("cellx.action")


@contextmanager
def transaction(store: Store):
    """Context manager for batching writes.

    Usage:
        with transaction(store):
            store.write(first, "Ada")
            store.write(last, "Lovelace")
            # observers fire here, after both are written
    """
    with store._lock:
        store._scheduler.begin()
        try:
            yield store
        finally:
            store._scheduler.end()


def action(store: Store) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator factory: batch all writes to store inside fn.

    Observers only fire after fn returns, not during.

    Usage:
        @action(store)
        def swap():
            a, b = store.read(left), store.read(right)
            store.write(left, b)
            store.write(right, a)
            # observers see both writes at once, not one at a time
    """

    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with transaction(store):
                return fn(*args, **kwargs)

        return wrapper

    return decorator


class Reducer(Generic[S, A]):
    """A source cell whose only write path is reduce(current, action).

    Usage:
        def counter(state, action):
            return state + 1 if action == "inc" else state - 1

        clicks = store.reducer(store.cell("clicks"), counter)
        clicks.dispatch("inc")
    """

    __slots__ = ("_store", "_cell", "_reduce")

    def __init__(self, store: Store, cell: Cell[S], reduce: Callable[[S, A], S]) -> None:
        self._store = store
        self._cell = cell
        self._reduce = reduce

    @property
    def cell(self) -> Cell[S]:
        return self._cell

    @property
    def state(self) -> S:
        return self._store.read(self._cell)

    def dispatch(self, action: A) -> S:
        """Apply action and return the new state."""
        logger.debug("dispatch %r to %r", action, self._cell)
        with transaction(self._store):
            state = self._reduce(self._store.read(self._cell), action)
            self._store.write(self._cell, state)
        return state

    def __repr__(self) -> str:
        return f"Reducer({self._cell!r}, {getattr(self._reduce, '__name__', self._reduce)!r})"
