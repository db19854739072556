"""Subscriptions — observers notified after a batch settles.

An observer remembers the (version, value) of its cell as of the last
settled state it saw. After each propagation pass the registry compares
that snapshot with the cell's current state and calls the observer only
if the version moved and the observer's equality says the values differ.

Selector subscriptions share one derived cell per selector function, so
many observers of the same slice of state cost one computation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Hashable

from cellx._anchor import UNSET
from cellx.errors import ComputationFailure, Poisoned

if TYPE_CHECKING:
    from cellx._anchor import Anchor
    from cellx.cell import Cell, Equality
    from cellx.store import Store

logger = logging.getLogger("cellx.subscription")


def _selector_key(selector: Callable) -> Hashable:
    try:
        hash(selector)
    except TypeError:
        return ("id", id(selector))  # the selector cell keeps the object alive
    return selector


class Observer:
    __slots__ = ("cell_id", "callback", "equality", "seen_version", "seen_value", "disposed")

    def __init__(self, cell_id: int, callback: Callable[[Any], None], equality: Equality) -> None:
        self.cell_id = cell_id
        self.callback = callback
        self.equality = equality
        self.seen_version = 0
        self.seen_value: Any = UNSET
        self.disposed = False


class Subscription:
    """Disposable handle returned by Store.subscribe()."""

    __slots__ = ("_registry", "_observer", "_cell")

    def __init__(self, registry: SubscriptionRegistry, observer: Observer, cell: Cell) -> None:
        self._registry = registry
        self._observer = observer
        self._cell = cell

    @property
    def cell(self) -> Cell:
        """The observed cell (the shared selector cell for selector subscriptions)."""
        return self._cell

    @property
    def disposed(self) -> bool:
        return self._observer.disposed

    @property
    def value(self) -> Any:
        return self._cell.get()

    def dispose(self) -> None:
        """Stop notifications. Safe to call twice and from inside a callback."""
        self._registry.discard(self._observer)

    def __repr__(self) -> str:
        state = "disposed" if self._observer.disposed else "active"
        return f"Subscription({self._cell!r}, {state})"


class SubscriptionRegistry:
    """Observers and selector cells of one store."""

    def __init__(self, store: Store, anchor: Anchor) -> None:
        self._store = store
        self._anchor = anchor
        self._observers: dict[int, list[Observer]] = {}
        self._selectors: dict[Hashable, Cell] = {}
        self._selector_of: dict[int, Hashable] = {}  # selector cell id -> selector key
        self._selector_refs: dict[int, int] = {}

    def observer_count(self, cell_id: int) -> int:
        return len(self._observers.get(cell_id, ()))

    def selector_cell(self, selector: Callable[[Store], Any]) -> Cell:
        """The derived cell shared by every subscription to selector.

        Hashable selectors share by equality (so bound methods of one object
        share); unhashable callables share by identity.
        """
        key = _selector_key(selector)
        cell = self._selectors.get(key)
        if cell is None:
            store = self._store

            def select():
                return selector(store)

            select.__name__ = f"select:{getattr(selector, '__name__', '?')}"
            cell = store.derive(select)
            self._selectors[key] = cell
            self._selector_of[cell.id] = key
        return cell

    def add(
        self,
        cell: Cell,
        callback: Callable[[Any], None],
        equality: Equality | None = None,
        *,
        fire_immediately: bool = False,
    ) -> Subscription:
        anchor = self._anchor
        cell_id = cell.id
        observer = Observer(cell_id, callback, equality or anchor.equality[cell_id])

        # Establish the baseline: forces a first computation so the cell
        # has edges and takes part in later passes.
        poisoned = False
        try:
            value = self._store.read(cell)
        except (Poisoned, ComputationFailure):
            poisoned = True
            value = None
        observer.seen_version = anchor.versions[cell_id]
        observer.seen_value = anchor.values[cell_id]

        self._observers.setdefault(cell_id, []).append(observer)
        if cell_id in self._selector_of:
            self._selector_refs[cell_id] = self._selector_refs.get(cell_id, 0) + 1
        subscription = Subscription(self, observer, cell)

        if fire_immediately and not poisoned:
            try:
                callback(value)
            except Exception:
                subscription.dispose()
                raise
        return subscription

    def discard(self, observer: Observer) -> None:
        if observer.disposed:
            return
        observer.disposed = True
        cell_id = observer.cell_id
        observers = self._observers.get(cell_id)
        if observers is not None:
            observers.remove(observer)
            if not observers:
                del self._observers[cell_id]

        if cell_id in self._selector_refs:
            self._selector_refs[cell_id] -= 1
            if self._selector_refs[cell_id] == 0:
                # Last subscriber gone: the shared selector cell goes too.
                self._anchor.handles[cell_id].dispose()

    def drop_cell(self, cell_id: int) -> None:
        """Called when a cell is disposed: its observers die with it."""
        for observer in self._observers.pop(cell_id, ()):
            observer.disposed = True
        self._selector_refs.pop(cell_id, None)
        key = self._selector_of.pop(cell_id, None)
        if key is not None:
            del self._selectors[key]

    def clear(self) -> None:
        for observers in self._observers.values():
            for observer in observers:
                observer.disposed = True
        self._observers.clear()
        self._selectors.clear()
        self._selector_of.clear()
        self._selector_refs.clear()

    def notify(self, candidates: list[int], errors: list[Exception]) -> None:
        """Call observers of candidates whose value changed since they last looked.

        Observers of one cell run in subscription order. Poisoned and
        still-dirty cells are skipped: dirty ones come back in the next pass.
        Callback exceptions are logged and appended to errors so the
        remaining observers still run.
        """
        anchor = self._anchor
        for cell_id in candidates:
            if cell_id not in self._observers:
                continue
            if cell_id in anchor.errors or cell_id in anchor.dirty:
                continue
            version = anchor.versions[cell_id]
            value = anchor.values[cell_id]
            for observer in list(self._observers.get(cell_id, ())):
                if observer.disposed or observer.seen_version == version:
                    continue
                previous = observer.seen_value
                observer.seen_version = version
                observer.seen_value = value
                try:
                    if previous is not UNSET and observer.equality(previous, value):
                        continue
                    observer.callback(value)
                except Exception as exc:
                    logger.exception("observer of %r failed", anchor.handles.get(cell_id))
                    errors.append(exc)
