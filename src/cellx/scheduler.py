"""Scheduler — batching and propagation passes.

State machine per store: IDLE -> BATCHING -> PROPAGATING -> IDLE.

Writes inside a batch update the cell, mark every transitive dependent
dirty and queue the cell. Nothing recomputes and nobody is notified until
the outermost batch closes; then one pass refreshes the dirty closure in
depth order and hands the result to the subscription registry.

Observer callbacks may write. Those writes queue up and run as further
passes before the store returns to IDLE, so callers always get back a
settled store.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

from cellx.errors import CellError, ComputationFailure, Poisoned, PropagationLimitExceeded

if TYPE_CHECKING:
    from cellx._anchor import Anchor
    from cellx.computed import Evaluator
    from cellx.graph import DependencyGraph
    from cellx.subscription import SubscriptionRegistry

logger = logging.getLogger("cellx.scheduler")


class Phase(enum.Enum):
    IDLE = "idle"
    BATCHING = "batching"
    PROPAGATING = "propagating"


class Scheduler:
    """Reference-counted batches and the propagation loop for one store."""

    def __init__(
        self,
        anchor: Anchor,
        graph: DependencyGraph,
        evaluator: Evaluator,
        registry: SubscriptionRegistry,
        *,
        max_passes: int = 100,
        name: str = "",
    ) -> None:
        self._anchor = anchor
        self._graph = graph
        self._evaluator = evaluator
        self._registry = registry
        self._max_passes = max_passes
        self._name = name
        self._depth = 0
        self._phase = Phase.IDLE
        # Written cells awaiting propagation, in write order.
        self._pending: dict[int, None] = {}

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def pending_count(self) -> int:
        """Number of written cells waiting for the batch to close. Useful for testing."""
        return len(self._pending)

    def begin(self) -> None:
        """Enter a batching scope. Nested batches are supported."""
        if self._depth == 0:
            self._phase = Phase.BATCHING
        self._depth += 1

    def end(self) -> None:
        """Exit a batching scope. The outermost exit propagates.

        Errors collected during propagation are raised here, after every
        observer has been notified: the first one is raised, the rest logged.
        """
        if self._depth == 0:
            raise RuntimeError("end() without a matching begin()")
        if self._depth > 1:
            self._depth -= 1
            return

        errors: list[Exception] = []
        try:
            self._settle(errors)
        finally:
            self._depth = 0
            self._phase = Phase.IDLE

        if errors:
            for extra in errors[1:]:
                logger.error("%s: additional propagation error: %r", self._name, extra)
            raise errors[0]

    def write(self, cell_id: int, value) -> bool:
        """Write a source cell as its own batch (or inside the open one).

        Returns False when the value is equal to the current one: the
        version stays put and nothing is queued.
        """
        self.begin()
        try:
            return self._apply(cell_id, value)
        finally:
            self.end()

    def forget(self, cell_id: int) -> None:
        """Drop a disposed cell from the pending set."""
        self._pending.pop(cell_id, None)

    def _apply(self, cell_id: int, value) -> bool:
        anchor = self._anchor
        if anchor.equality[cell_id](anchor.values[cell_id], value):
            return False
        anchor.values[cell_id] = value
        anchor.versions[cell_id] += 1
        anchor.dirty.update(self._graph.descendants([cell_id]))
        self._pending[cell_id] = None
        return True

    def _settle(self, errors: list[Exception]) -> None:
        passes = 0
        while self._pending:
            passes += 1
            if passes > self._max_passes:
                self._pending.clear()
                errors.append(PropagationLimitExceeded(
                    f"{self._name}: still changing after {self._max_passes} passes"
                ))
                return
            self._phase = Phase.PROPAGATING
            written = list(self._pending)
            self._pending.clear()
            candidates = self._propagate(written, errors)
            self._registry.notify(candidates, errors)

    def _propagate(self, written: list[int], errors: list[Exception]) -> list[int]:
        """Refresh every derived cell downstream of written, ancestors first."""
        closure = self._graph.order(self._graph.descendants(written))
        with self._evaluator.collecting() as failures:
            for cell_id in closure:
                if cell_id not in self._anchor:
                    continue
                try:
                    self._evaluator.refresh(cell_id)
                except (Poisoned, ComputationFailure):
                    continue  # root failures are collected; poisoned cells are skipped
                except CellError as exc:
                    errors.append(exc)
        errors.extend(failures)

        logger.debug(
            "%s: pass over %d written, %d derived, %d failed",
            self._name, len(written), len(closure), len(failures),
        )
        return written + closure
