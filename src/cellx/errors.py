"""Cellx error hierarchy.

All engine errors inherit from CellError for easy catching.

InvalidMutation, UnknownCell and CyclicDependency are programming errors:
they reach the caller unchanged and never poison a cell. ComputationFailure
and Poisoned describe user compute functions that raised.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cellx.cell import Cell


class CellError(Exception):
    """Base error for all cellx operations."""


class InvalidMutation(CellError):
    """Write to a derived cell, or a write issued while computing one."""


class UnknownCell(CellError, LookupError):
    """Handle or name not owned by this store (or already disposed)."""


class CyclicDependency(CellError):
    """A derived cell read itself, directly or through other derived cells."""

    def __init__(self, cycle: list[Cell]) -> None:
        self.cycle = cycle
        path = " -> ".join(_label(c) for c in cycle)
        super().__init__(f"cyclic dependency: {path}")


class ComputationFailure(CellError):
    """A compute function raised. The original exception is ``cause``."""

    def __init__(self, cell: Cell, cause: BaseException) -> None:
        self.cell = cell
        self.cause = cause
        super().__init__(f"computing {_label(cell)} failed: {cause!r}")


class Poisoned(CellError):
    """Read of a cell whose last computation failed.

    ``failure`` is the root ComputationFailure, which may belong to an
    upstream cell when this one was poisoned by reading it.
    """

    def __init__(self, cell: Cell, failure: ComputationFailure) -> None:
        self.cell = cell
        self.failure = failure
        super().__init__(f"{_label(cell)} is poisoned by {_label(failure.cell)}: {failure.cause!r}")

    @property
    def cause(self) -> BaseException:
        return self.failure.cause


class PropagationLimitExceeded(CellError):
    """Observer callbacks kept writing; the store never settled."""


def _label(cell) -> str:
    name = getattr(cell, "name", None)
    return name if name else f"#{getattr(cell, 'id', '?')}"
