"""Cells — handles for source and derived state.

A Cell is a thin handle: the store it belongs to plus an id. All state
lives in the store's Anchor, so a handle is cheap to pass around, hashes by
identity, and stops working (UnknownCell) once the cell is disposed.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

if TYPE_CHECKING:
    from cellx.store import Store

T = TypeVar("T")

Equality = Callable[[Any, Any], bool]


def default_equal(a: Any, b: Any) -> bool:
    """Identity first, then ``==``."""
    return a is b or a == b


def identical(a: Any, b: Any) -> bool:
    """Identity only. Use for cells holding values that are mutated in place."""
    return a is b


class CellKind(enum.Enum):
    SOURCE = "source"
    DERIVED = "derived"


class Cell(Generic[T]):
    """Handle to one cell of a Store."""

    __slots__ = ("_store", "_id", "_kind", "_name")

    def __init__(self, store: Store, cell_id: int, kind: CellKind, name: str | None = None) -> None:
        self._store = store
        self._id = cell_id
        self._kind = kind
        self._name = name

    @property
    def store(self) -> Store:
        return self._store

    @property
    def id(self) -> int:
        return self._id

    @property
    def kind(self) -> CellKind:
        return self._kind

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def version(self) -> int:
        return self._store.inspect(self).version

    def get(self) -> T:
        """Read through the owning store. Tracked inside derivations."""
        return self._store.read(self)

    def set(self, value: T) -> None:
        self._store.write(self, value)

    def dispose(self) -> None:
        self._store.dispose_cell(self)

    def __repr__(self) -> str:
        label = self._name or f"#{self._id}"
        return f"Cell({label}, {self._kind.value})"


@dataclass(frozen=True)
class CellInfo:
    """Point-in-time view of a cell, for debugging and tests.

    ``value`` is the last good value; it is None for a derived cell that
    never computed successfully.
    """

    id: int
    name: str | None
    kind: CellKind
    version: int
    value: Any
    dirty: bool
    poisoned: bool
    error: Exception | None
    depth: int
    observers: int
