"""Textual integration for cellx. Opt-in — requires textual.

Guard + NoMatches + thread-marshal are enforced here, not at callsites.
Textual coupling stays in this module; the core engine stays agnostic.
_paused_apps has a single owner (this module): an app id is present exactly
while it is inside a pause() block.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

# Module-owned pause state, keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend guarded effects during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def subscribe(app, store, target, effect, equality=None, *, fire_immediately=False):
    """Store.subscribe() that safely bridges to Textual widgets.

    Skips the effect while the app is paused or not running, and catches
    NoMatches from widget queries. Notifications that arrive on another
    thread (a feed, a worker) are queued onto the app with call_later and
    run after that thread's write has released the store lock. They are
    never waited on: call_from_thread would block the writer while it holds
    the lock, and any store read on the app thread would deadlock.
    """
    _main = threading.get_ident()

    def _guarded(value):
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_later(_deferred, value)
        else:
            _safe(value)

    def _deferred(value):
        # The app may have paused or stopped while this sat in the queue.
        if is_safe(app):
            _safe(value)

    def _safe(value):
        try:
            effect(value)
        except NoMatches:
            pass

    return store.subscribe(target, _guarded, equality, fire_immediately=fire_immediately)
