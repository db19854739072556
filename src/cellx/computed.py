"""Derived cells — lazy recomputation with version snapshots.

A derived cell's cached value is valid while every input it read still has
the version recorded at that read. Writes only mark dependents dirty; a
dirty cell checks its inputs (refreshing derived inputs first) and
recomputes only if one of them actually moved.

Recomputation runs the compute function inside a recording scope, then
installs the new value and the new edge set together. A failure installs
neither: the cell is poisoned instead, keeping its last good value.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from cellx._anchor import UNSET
from cellx._tracking import cycle_through, recording
from cellx.errors import CellError, ComputationFailure, CyclicDependency, Poisoned

if TYPE_CHECKING:
    from cellx._anchor import Anchor
    from cellx.graph import DependencyGraph

logger = logging.getLogger("cellx.computed")


class Evaluator:
    """Refreshes derived cells of one store."""

    def __init__(self, store, anchor: Anchor, graph: DependencyGraph) -> None:
        self._store = store
        self._anchor = anchor
        self._graph = graph
        self._failures: list[ComputationFailure] | None = None

    @contextmanager
    def collecting(self):
        """Collect the ComputationFailures raised while the block runs."""
        previous = self._failures
        failures: list[ComputationFailure] = []
        self._failures = failures
        try:
            yield failures
        finally:
            self._failures = previous

    def refresh(self, cell_id: int) -> None:
        """Bring cell_id up to date. Raises Poisoned/ComputationFailure if it failed."""
        anchor = self._anchor
        if cell_id not in anchor.fns:
            return
        if cell_id in anchor.computing:
            cycle = cycle_through(self._store, cell_id)
            raise CyclicDependency([anchor.handles[i] for i in cycle])

        if cell_id in anchor.dirty:
            if self._stale(cell_id):
                self._recompute(cell_id)
                return
            anchor.dirty.discard(cell_id)

        failure = anchor.errors.get(cell_id)
        if failure is not None:
            raise Poisoned(anchor.handles[cell_id], failure)

    def _stale(self, cell_id: int) -> bool:
        anchor = self._anchor
        snapshot = self._graph.snapshot(cell_id)
        if snapshot is None:
            return True
        for input_id, seen in list(snapshot.items()):
            if input_id not in anchor:
                return True
            try:
                self.refresh(input_id)
            except (Poisoned, ComputationFailure):
                pass  # poisoning advances the version; compared below
            if anchor.versions[input_id] != seen:
                return True
        return False

    def _recompute(self, cell_id: int) -> None:
        anchor = self._anchor
        handle = anchor.handles[cell_id]
        anchor.computing.add(cell_id)
        try:
            with recording(self._store, cell_id) as scope:
                value = anchor.fns[cell_id]()
        except Poisoned as exc:
            self._poison(cell_id, exc.failure, scope.reads)
            raise Poisoned(handle, exc.failure) from exc
        except ComputationFailure as exc:
            # An input failed for the first time while we were reading it.
            self._poison(cell_id, exc, scope.reads)
            raise Poisoned(handle, exc) from exc
        except CellError:
            raise
        except Exception as exc:
            raise self._fail(cell_id, exc, scope.reads) from exc
        finally:
            anchor.computing.discard(cell_id)

        # A user equality can raise too; that fails the cell like its fn would.
        old = anchor.values[cell_id]
        recovered = cell_id in anchor.errors
        try:
            changed = recovered or old is UNSET or not anchor.equality[cell_id](old, value)
        except Exception as exc:
            raise self._fail(cell_id, exc, scope.reads) from exc
        self._install(cell_id, value, scope.reads, changed, recovered)

    def _fail(self, cell_id: int, exc: Exception, reads: dict[int, int]) -> ComputationFailure:
        failure = ComputationFailure(self._anchor.handles[cell_id], exc)
        self._poison(cell_id, failure, reads)
        if self._failures is not None:
            self._failures.append(failure)
        return failure

    def _install(self, cell_id: int, value, reads: dict[int, int], changed: bool, recovered: bool) -> None:
        anchor = self._anchor
        self._graph.replace(cell_id, reads)
        anchor.errors.pop(cell_id, None)
        anchor.dirty.discard(cell_id)
        if changed:
            anchor.values[cell_id] = value
            anchor.versions[cell_id] += 1
        if recovered:
            logger.info("%r recovered", anchor.handles[cell_id])

    def _poison(self, cell_id: int, failure: ComputationFailure, reads: dict[int, int]) -> None:
        anchor = self._anchor
        self._graph.record_failure(cell_id, reads)
        anchor.errors[cell_id] = failure
        anchor.dirty.discard(cell_id)
        # Readers compare versions; entering or re-entering the poisoned
        # state has to look like a change to them.
        anchor.versions[cell_id] += 1

        handle = anchor.handles[cell_id]
        if failure.cell is handle:
            logger.warning("%r poisoned: %r", handle, failure.cause)
        else:
            logger.debug("%r poisoned by %r", handle, failure.cell)
