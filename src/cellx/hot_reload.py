"""Hot-reload-aware store. Opt-in — import only if you need hot-reload support."""

import logging

from cellx.store import Store

logger = logging.getLogger("cellx.hot_reload")


class HotReloadStore(Store):
    """Store that survives module reloads via safe reconciliation.

    Same API as Store. Adds:
    - Exception safety: reconcile catches and logs binding setup failures
    - Logging: reconcile events are clearly logged
    - Degraded operation: if reconcile fails, store continues with values intact
    """

    def reconcile(self, schema, setup_fn):
        """Safe reconciliation — catches exceptions, logs, never crashes."""
        with self._lock:
            new_names = self._add_missing(schema)

            old_count = len(self._bindings)
            self._dispose_bindings()

            try:
                self._bindings = list(setup_fn(self) or [])
                logger.info(
                    "Reconciled %s: %d new cells, %d->%d bindings",
                    self.name, len(new_names), old_count, len(self._bindings),
                )
            except Exception:
                logger.exception("Failed to register bindings during reconcile of %s", self.name)
                # Store continues with values intact and no bindings (degraded)
                self._bindings = []
