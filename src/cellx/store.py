"""Store — the public face of the engine.

A Store owns its cells, dependency graph, scheduler and observers. Stores
are independent: nothing is shared between two of them except the id
counter, so tests and applications can create as many as they like.

Every public operation runs under the store's reentrant lock. One thread
mutates and propagates at a time; readers on other threads wait rather
than race to recompute the same derived cell.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Iterable, Mapping, TypeVar

from cellx.action import Reducer, action as _action, transaction as _transaction
from cellx._anchor import UNSET, Anchor, new_id
from cellx._tracking import computing_in, record_read
from cellx.cell import Cell, CellInfo, CellKind, Equality, default_equal
from cellx.computed import Evaluator
from cellx.errors import InvalidMutation, UnknownCell
from cellx.graph import DependencyGraph
from cellx.scheduler import Phase, Scheduler
from cellx.subscription import Subscription, SubscriptionRegistry

T = TypeVar("T")
R = TypeVar("R")


class Store:
    """Reactive store: source cells, derived cells, observers and batches.

    Args:
        initial: name -> value for the named source cells to create.
        equality: default equality for new cells (identity, then ``==``).
        name: label used in reprs and log lines.
        max_passes: how many propagation passes observer writes may chain
            before the store gives up with PropagationLimitExceeded.
    """

    def __init__(
        self,
        initial: Mapping[str, Any] | None = None,
        *,
        equality: Equality = default_equal,
        name: str | None = None,
        max_passes: int = 100,
    ) -> None:
        self.name = name or f"store-{new_id()}"
        self._equality = equality
        self._lock = threading.RLock()
        self._anchor = Anchor()
        self._graph = DependencyGraph()
        self._evaluator = Evaluator(self, self._anchor, self._graph)
        self._registry = SubscriptionRegistry(self, self._anchor)
        self._scheduler = Scheduler(
            self._anchor,
            self._graph,
            self._evaluator,
            self._registry,
            max_passes=max_passes,
            name=self.name,
        )
        self._names: dict[str, Cell] = {}
        self._bindings: list[Subscription] = []
        self._disposed = False
        for key, value in (initial or {}).items():
            self.source(value, name=key)

    # --- Cells ---

    def source(self, value: T, *, name: str | None = None, equality: Equality | None = None) -> Cell[T]:
        """Create a writable cell."""
        return self._add(CellKind.SOURCE, value, name, equality)

    def derive(
        self,
        fn: Callable[[], T],
        equality: Equality | None = None,
        *,
        name: str | None = None,
    ) -> Cell[T]:
        """Create a derived cell. fn runs on first read, not here.

        Usage:
            count = store.cell("count")
            doubled = store.derive(lambda: store.read(count) * 2)
        """
        return self._add(CellKind.DERIVED, UNSET, name, equality, fn)

    def cell(self, name: str) -> Cell:
        """Handle of the named cell."""
        with self._lock:
            try:
                return self._names[name]
            except KeyError:
                raise UnknownCell(f"{self.name} has no cell named {name!r}") from None

    @property
    def names(self) -> list[str]:
        with self._lock:
            return list(self._names)

    def dispose_cell(self, cell: Cell) -> None:
        """Remove a cell with its edges and observers.

        Cells that read it are marked dirty; their next refresh fails with
        UnknownCell unless their compute function stopped reading it.
        """
        with self._lock:
            cell_id = self._own(cell)
            if cell_id in self._anchor.computing:
                raise InvalidMutation(f"cannot dispose {cell!r} while it is computing")
            dependents = self._graph.remove(cell_id)
            self._anchor.dirty.update(dependents | self._graph.descendants(dependents))
            self._registry.drop_cell(cell_id)
            self._scheduler.forget(cell_id)
            self._anchor.drop(cell_id)
            if cell.name is not None and self._names.get(cell.name) is cell:
                del self._names[cell.name]

    # --- Reads and writes ---

    def read(self, cell: Cell[T]) -> T:
        """Current value. Refreshes a dirty derived cell first.

        Inside a compute function the read is recorded as a dependency.
        """
        with self._lock:
            cell_id = self._own(cell)
            try:
                self._evaluator.refresh(cell_id)
            finally:
                record_read(self, cell_id, self._anchor.versions.get(cell_id))
            return self._anchor.values[cell_id]

    def write(self, cell: Cell[T], value: T) -> None:
        """Write a source cell. Outside a batch this is a batch of one."""
        with self._lock:
            cell_id = self._own(cell)
            if cell.kind is CellKind.DERIVED:
                raise InvalidMutation(f"{cell!r} is derived; only source cells can be written")
            computing = computing_in(self)
            if computing is not None:
                raise InvalidMutation(
                    f"cannot write {cell!r} while computing {self._anchor.handles[computing]!r}"
                )
            self._scheduler.write(cell_id, value)

    def get(self, name: str) -> Any:
        return self.read(self.cell(name))

    def set(self, name: str, value: Any) -> None:
        self.write(self.cell(name), value)

    def update(self, values: Mapping[str, Any]) -> None:
        """Write several named cells in one batch."""
        with self.transaction():
            for key, value in values.items():
                self.set(key, value)

    # --- Batching ---

    def transaction(self):
        """Context manager: writes inside propagate once, on exit."""
        return _transaction(self)

    def batch(self, fn: Callable[..., R], *args: Any, **kwargs: Any) -> R:
        """Run fn inside a batch and return its result.

        The batch closes (and propagates, if outermost) even if fn raises.
        """
        with self.transaction():
            return fn(*args, **kwargs)

    def action(self, fn: Callable[..., R]) -> Callable[..., R]:
        """Decorator: every call of fn is one batch."""
        return _action(self)(fn)

    def reducer(self, cell: Cell[T] | str, reduce: Callable[[T, Any], T]) -> Reducer:
        """Bind reduce to a source cell; dispatch() is its write path."""
        if isinstance(cell, str):
            cell = self.cell(cell)
        with self._lock:
            self._own(cell)
            if cell.kind is CellKind.DERIVED:
                raise InvalidMutation(f"{cell!r} is derived; reducers need a source cell")
        return Reducer(self, cell, reduce)

    # --- Observers ---

    def subscribe(
        self,
        target: Cell | str | Callable[[Store], Any],
        on_change: Callable[[Any], None],
        equality: Equality | None = None,
        *,
        fire_immediately: bool = False,
    ) -> Subscription:
        """Call on_change(value) after each batch that changes target.

        target is a cell, a cell name, or a selector ``(store) -> value``.
        Subscriptions to the same selector function share one derived cell.
        """
        with self._lock:
            if isinstance(target, Cell):
                self._own(target)
                cell = target
            elif isinstance(target, str):
                cell = self.cell(target)
            elif callable(target):
                cell = self._registry.selector_cell(target)
            else:
                raise TypeError(f"cannot subscribe to {target!r}")
            return self._registry.add(cell, on_change, equality, fire_immediately=fire_immediately)

    # --- Introspection ---

    def dependencies(self, cell: Cell) -> frozenset[Cell]:
        """Cells read by the last successful computation of cell."""
        with self._lock:
            cell_id = self._own(cell)
            handles = self._anchor.handles
            return frozenset(handles[i] for i in self._graph.inputs(cell_id) if i in handles)

    def dependents(self, cell: Cell) -> frozenset[Cell]:
        with self._lock:
            cell_id = self._own(cell)
            handles = self._anchor.handles
            return frozenset(handles[i] for i in self._graph.dependents(cell_id) if i in handles)

    def inspect(self, cell: Cell) -> CellInfo:
        """Snapshot of cell's bookkeeping. Does not refresh it."""
        with self._lock:
            cell_id = self._own(cell)
            anchor = self._anchor
            value = anchor.values[cell_id]
            return CellInfo(
                id=cell_id,
                name=cell.name,
                kind=cell.kind,
                version=anchor.versions[cell_id],
                value=None if value is UNSET else value,
                dirty=cell_id in anchor.dirty,
                poisoned=cell_id in anchor.errors,
                error=anchor.errors.get(cell_id),
                depth=self._graph.depth(cell_id),
                observers=self._registry.observer_count(cell_id),
            )

    @property
    def phase(self) -> Phase:
        return self._scheduler.phase

    @property
    def pending_count(self) -> int:
        return self._scheduler.pending_count

    # --- Lifecycle ---

    def reconcile(self, schema: Mapping[str, Any], setup_fn: Callable[[Store], Iterable[Subscription] | None]) -> None:
        """Schema evolution: add new named cells, re-register bindings.

        Existing values are untouched. New names get their defaults. The
        subscriptions returned by the previous setup_fn are disposed and
        setup_fn(store) registers new ones.
        """
        with self._lock:
            self._add_missing(schema)
            self._dispose_bindings()
            self._bindings = list(setup_fn(self) or [])

    def dispose(self) -> None:
        """Drop every cell and observer. Handles stop working (UnknownCell)."""
        with self._lock:
            self._dispose_bindings()
            self._registry.clear()
            self._graph.clear()
            self._anchor.clear()
            self._names.clear()
            self._disposed = True

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()

    def __contains__(self, item: object) -> bool:
        with self._lock:
            if isinstance(item, str):
                return item in self._names
            return isinstance(item, Cell) and item.store is self and item.id in self._anchor

    def __repr__(self) -> str:
        return f"Store({self.name!r}, cells={len(self._anchor.handles)}, {self._scheduler.phase.value})"

    # --- Internals ---

    def _add(self, kind: CellKind, value, name: str | None, equality: Equality | None, fn=None) -> Cell:
        with self._lock:
            if self._disposed:
                raise InvalidMutation(f"{self.name} is disposed")
            if name is not None and name in self._names:
                raise ValueError(f"{self.name} already has a cell named {name!r}")
            label = name
            if label is None and fn is not None and not getattr(fn, "__name__", "<").startswith("<"):
                label = fn.__name__  # repr label only, not registered
            cell = Cell(self, new_id(), kind, label)
            self._anchor.add(cell, value, equality or self._equality, fn)
            if name is not None:
                self._names[name] = cell
            return cell

    def _add_missing(self, schema: Mapping[str, Any]) -> list[str]:
        added = []
        for key, default in schema.items():
            if key not in self._names:
                self.source(default, name=key)
                added.append(key)
        return added

    def _dispose_bindings(self) -> None:
        for subscription in self._bindings:
            subscription.dispose()
        self._bindings.clear()

    def _own(self, cell: object) -> int:
        if not isinstance(cell, Cell) or cell.store is not self or cell.id not in self._anchor:
            raise UnknownCell(f"{cell!r} does not belong to {self.name}")
        return cell.id


def create_store(initial: Mapping[str, Any] | None = None, **options: Any) -> Store:
    """Create a Store with one source cell per entry of initial.

    Usage:
        store = create_store({"count": 0})
        count = store.cell("count")
        doubled = store.derive(lambda: store.read(count) * 2)
        store.subscribe(doubled, print)
        store.write(count, 2)  # prints 4
    """
    return Store(initial, **options)
