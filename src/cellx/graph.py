"""Dependency graph — who read whom, at which version.

Forward edges map a derived cell to the cells its last successful
computation read, each with the version it saw. A poisoned cell also keeps
a retry record: the reads of its failed attempt, so it can be retried when
one of them changes without pretending those reads were edges.

The reverse index (input -> dependents) covers both, and is what dirty
marking and propagation walk.
"""

from __future__ import annotations

from typing import Iterable, Mapping


class DependencyGraph:
    """Edges, retry records, reverse index and depth for one store."""

    def __init__(self) -> None:
        self._inputs: dict[int, dict[int, int]] = {}
        self._retry: dict[int, dict[int, int]] = {}
        self._dependents: dict[int, set[int]] = {}
        self._depth: dict[int, int] = {}

    # --- Queries ---

    def inputs(self, cell_id: int) -> Mapping[int, int]:
        """Edges of the last successful computation: input id -> version."""
        return self._inputs.get(cell_id, {})

    def snapshot(self, cell_id: int) -> Mapping[int, int] | None:
        """Reads to validate before reusing cell_id's cached result.

        The retry record while poisoned, else the edges. None if the cell
        has never been computed.
        """
        if cell_id in self._retry:
            return self._retry[cell_id]
        return self._inputs.get(cell_id)

    def dependents(self, cell_id: int) -> set[int]:
        return set(self._dependents.get(cell_id, ()))

    def depth(self, cell_id: int) -> int:
        return self._depth.get(cell_id, 0)

    def descendants(self, cell_ids: Iterable[int]) -> set[int]:
        """Every cell reachable through the reverse index, sources excluded."""
        seen: set[int] = set()
        stack = list(cell_ids)
        while stack:
            for dependent in self._dependents.get(stack.pop(), ()):
                if dependent not in seen:
                    seen.add(dependent)
                    stack.append(dependent)
        return seen

    def order(self, cell_ids: Iterable[int]) -> list[int]:
        """Ancestors before descendants: sort by depth, ties by creation."""
        return sorted(cell_ids, key=lambda cell_id: (self.depth(cell_id), cell_id))

    # --- Mutations ---

    def replace(self, cell_id: int, reads: Mapping[int, int]) -> None:
        """Install the reads of a successful computation as cell_id's edges.

        Drops the retry record. Reverse entries for inputs no longer read
        are removed in the same step.
        """
        before = self._linked(cell_id)
        self._inputs[cell_id] = dict(reads)
        self._retry.pop(cell_id, None)
        self._relink(cell_id, before)
        self._depth[cell_id] = 1 + max((self.depth(i) for i in reads), default=0)

    def record_failure(self, cell_id: int, reads: Mapping[int, int]) -> None:
        """Keep the reads of a failed computation; edges stay as they were."""
        before = self._linked(cell_id)
        self._retry[cell_id] = dict(reads)
        self._relink(cell_id, before)

    def remove(self, cell_id: int) -> set[int]:
        """Forget cell_id entirely. Returns the cells that depended on it."""
        before = self._linked(cell_id)
        self._inputs.pop(cell_id, None)
        self._retry.pop(cell_id, None)
        self._relink(cell_id, before)
        self._depth.pop(cell_id, None)
        return self._dependents.pop(cell_id, set())

    def clear(self) -> None:
        self._inputs.clear()
        self._retry.clear()
        self._dependents.clear()
        self._depth.clear()

    def _linked(self, cell_id: int) -> set[int]:
        return set(self._inputs.get(cell_id, ())) | set(self._retry.get(cell_id, ()))

    def _relink(self, cell_id: int, before: set[int]) -> None:
        after = self._linked(cell_id)
        for input_id in before - after:
            dependents = self._dependents.get(input_id)
            if dependents is not None:
                dependents.discard(cell_id)
                if not dependents:
                    del self._dependents[input_id]
        for input_id in after - before:
            self._dependents.setdefault(input_id, set()).add(cell_id)
