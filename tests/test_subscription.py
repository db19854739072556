"""Tests for subscriptions and selector sharing."""

import pytest

from cellx import Subscription, UnknownCell, create_store


class TestSubscribe:
    def test_notifies_with_new_value(self):
        store = create_store({"a": "hello"})
        log = []
        sub = store.subscribe(store.cell("a"), log.append)
        assert isinstance(sub, Subscription)
        store.set("a", "world")
        assert log == ["world"]

    def test_no_initial_call(self):
        store = create_store({"a": 1})
        log = []
        store.subscribe("a", log.append)
        assert log == []

    def test_fire_immediately(self):
        store = create_store({"a": 1})
        log = []
        store.subscribe("a", log.append, fire_immediately=True)
        assert log == [1]

    def test_observer_equality_suppresses(self):
        store = create_store({"t": 1.0})
        log = []
        store.subscribe("t", log.append, lambda old, new: abs(old - new) < 1)
        store.set("t", 1.5)
        assert log == []
        store.set("t", 3.0)
        assert log == [3.0]
        store.set("t", 3.4)  # compared with 3.0, the last value seen
        assert log == [3.0]

    def test_derived_with_unchanged_value_is_silent(self):
        store = create_store({"n": 1})
        parity = store.derive(lambda: store.get("n") % 2)
        log = []
        store.subscribe(parity, log.append)
        store.set("n", 3)
        assert log == []
        store.set("n", 4)
        assert log == [0]

    def test_subscription_order_within_cell(self):
        store = create_store({"a": 0})
        log = []
        for tag in ("first", "second", "third"):
            store.subscribe("a", lambda v, tag=tag: log.append(tag))
        store.set("a", 1)
        assert log == ["first", "second", "third"]

    def test_dispose_stops(self):
        store = create_store({"a": 0})
        log = []
        sub = store.subscribe("a", log.append)
        store.set("a", 1)
        sub.dispose()
        sub.dispose()  # idempotent
        store.set("a", 2)
        assert log == [1]
        assert sub.disposed
        assert store.inspect(store.cell("a")).observers == 0

    def test_dispose_during_pass(self):
        store = create_store({"a": 0})
        log = []
        handles = {}

        def first(value):
            log.append(("first", value))
            handles["second"].dispose()

        handles["first"] = store.subscribe("a", first)
        handles["second"] = store.subscribe("a", lambda v: log.append(("second", v)))
        store.set("a", 1)
        assert log == [("first", 1)]

    def test_value_and_cell(self):
        store = create_store({"a": 7})
        sub = store.subscribe("a", lambda v: None)
        assert sub.cell is store.cell("a")
        assert sub.value == 7
        assert "active" in repr(sub)

    def test_foreign_cell(self):
        store = create_store({"a": 0})
        other = create_store({"a": 0})
        with pytest.raises(UnknownCell):
            store.subscribe(other.cell("a"), lambda v: None)

    def test_bad_target(self):
        store = create_store()
        with pytest.raises(TypeError):
            store.subscribe(42, lambda v: None)


class TestCallbackErrors:
    def test_other_observers_still_run(self, caplog):
        store = create_store({"a": 0})
        log = []

        def broken(value):
            raise ValueError("boom")

        store.subscribe("a", broken)
        store.subscribe("a", log.append)
        with pytest.raises(ValueError, match="boom"):
            store.set("a", 1)
        assert log == [1]
        assert "observer of" in caplog.text
        assert store.get("a") == 1


class TestPoisonedSubscriptions:
    def test_subscribe_to_failing_cell_then_recover(self):
        store = create_store({"n": -1})
        n = store.cell("n")

        def fragile():
            if n.get() < 0:
                raise ValueError("negative")
            return n.get()

        x = store.derive(fragile)
        log = []
        store.subscribe(x, log.append, fire_immediately=True)  # does not raise
        assert log == []
        store.set("n", 4)
        assert log == [4]


class TestSelectors:
    def test_shared_computation(self):
        store = create_store({"x": 0, "y": 0})
        calls = 0

        def total(s):
            nonlocal calls
            calls += 1
            return s.get("x") + s.get("y")

        log1, log2 = [], []
        sub1 = store.subscribe(total, log1.append)
        sub2 = store.subscribe(total, log2.append)
        assert sub1.cell is sub2.cell
        assert calls == 1

        store.update({"x": 1, "y": 2})
        assert calls == 2
        assert log1 == [3]
        assert log2 == [3]

    def test_split_state_avoids_over_notification(self):
        store = create_store({"user": {"name": "ada", "theme": "dark"}})
        names, themes = [], []
        store.subscribe(lambda s: s.get("user")["name"], names.append)
        store.subscribe(lambda s: s.get("user")["theme"], themes.append)
        store.set("user", {"name": "ada", "theme": "light"})
        assert names == []
        assert themes == ["light"]

    def test_selector_cell_released_with_last_subscription(self):
        store = create_store({"x": 1})

        def doubled(s):
            return s.get("x") * 2

        sub1 = store.subscribe(doubled, lambda v: None)
        sub2 = store.subscribe(doubled, lambda v: None)
        cell = sub1.cell
        sub1.dispose()
        assert cell in store
        sub2.dispose()
        assert cell not in store

        sub3 = store.subscribe(doubled, lambda v: None)
        assert sub3.cell is not cell
        assert sub3.value == 2

    def test_unhashable_selector_shares_by_identity(self):
        class Pick:
            def __init__(self, key):
                self.key = key

            def __eq__(self, other):
                return isinstance(other, Pick) and other.key == self.key

            def __call__(self, s):
                return s.get(self.key)

        store = create_store({"x": 1})
        pick = Pick("x")
        log = []
        sub1 = store.subscribe(pick, log.append)
        sub2 = store.subscribe(pick, lambda v: None)
        sub3 = store.subscribe(Pick("x"), lambda v: None)
        assert sub1.cell is sub2.cell
        assert sub3.cell is not sub1.cell

        store.set("x", 2)
        assert log == [2]
        sub1.dispose()
        sub2.dispose()
        assert sub1.cell not in store
