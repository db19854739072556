"""cellx: fine-grained reactive store with glitch-free batched updates."""

from importlib.metadata import version as _version

__version__ = _version("cellx")

from cellx.cell import Cell, CellInfo, CellKind, default_equal, identical
from cellx.errors import (
    CellError,
    ComputationFailure,
    CyclicDependency,
    InvalidMutation,
    Poisoned,
    PropagationLimitExceeded,
    UnknownCell,
)
from cellx.scheduler import Phase
from cellx.subscription import Subscription
from cellx.action import Reducer, action, transaction
from cellx.store import Store, create_store
from cellx.feed import feed, FeedHandle
# hot_reload and textual are NOT auto-imported; opt-in only

__all__ = [
    "Cell",
    "CellInfo",
    "CellKind",
    "default_equal",
    "identical",
    "CellError",
    "ComputationFailure",
    "CyclicDependency",
    "InvalidMutation",
    "Poisoned",
    "PropagationLimitExceeded",
    "UnknownCell",
    "Phase",
    "Subscription",
    "Reducer",
    "action",
    "transaction",
    "Store",
    "create_store",
    "feed",
    "FeedHandle",
]
