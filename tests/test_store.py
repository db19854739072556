"""Tests for Store."""

import threading

import pytest

from cellx import (
    Cell,
    CellKind,
    InvalidMutation,
    Store,
    UnknownCell,
    create_store,
    identical,
)


class TestStore:
    def test_creation_from_mapping(self):
        s = create_store({"x": 10, "y": "hello"})
        assert isinstance(s, Store)
        assert s.get("x") == 10
        assert s.get("y") == "hello"
        assert s.names == ["x", "y"]

    def test_cell_handles_are_stable(self):
        s = create_store({"x": 1})
        x = s.cell("x")
        assert isinstance(x, Cell)
        assert s.cell("x") is x
        assert x.kind is CellKind.SOURCE
        assert x.name == "x"
        assert x.store is s

    def test_get_nonexistent(self):
        s = create_store({"x": 1})
        with pytest.raises(UnknownCell):
            s.get("nope")
        with pytest.raises(LookupError):
            s.cell("nope")

    def test_set(self):
        s = create_store({"x": 0})
        s.set("x", 42)
        assert s.get("x") == 42

    def test_write_derived_rejected(self):
        s = create_store({"x": 1})
        d = s.derive(lambda: s.get("x") + 1)
        with pytest.raises(InvalidMutation):
            s.write(d, 5)
        with pytest.raises(InvalidMutation):
            d.set(5)

    def test_version_advances_on_change_only(self):
        s = create_store({"x": 0})
        x = s.cell("x")
        assert x.version == 0
        x.set(1)
        assert x.version == 1
        x.set(1)
        assert x.version == 1

    def test_identity_equality(self):
        items = [1, 2]
        s = Store(equality=identical)
        cell = s.source(items)
        log = []
        s.subscribe(cell, log.append)
        cell.set([1, 2])  # equal but not the same list
        assert len(log) == 1

    def test_update_batches(self):
        s = create_store({"x": 0, "y": 0})
        log = []
        s.subscribe(lambda store: (store.get("x"), store.get("y")), log.append)
        s.update({"x": 1, "y": 2})
        assert log == [(1, 2)]  # single batch

    def test_duplicate_name(self):
        s = create_store({"x": 0})
        with pytest.raises(ValueError):
            s.source(1, name="x")

    def test_named_derived(self):
        s = create_store({"x": 2})
        sq = s.derive(lambda: s.get("x") ** 2, name="square")
        assert s.cell("square") is sq
        assert s.get("square") == 4

    def test_label_from_function_name(self):
        s = create_store({"x": 2})

        def total():
            return s.get("x")

        d = s.derive(total)
        assert d.name == "total"
        assert "total" not in s
        assert "total" in repr(d)

    def test_inspect(self):
        s = create_store({"x": 2})
        d = s.derive(lambda: s.get("x") + 1)
        info = s.inspect(d)
        assert info.kind is CellKind.DERIVED
        assert info.dirty
        assert info.value is None
        d.get()
        info = s.inspect(d)
        assert not info.dirty
        assert info.value == 3
        assert info.version == 1
        assert not info.poisoned
        assert info.error is None

    def test_dependencies_and_dependents(self):
        s = create_store({"x": 1, "y": 2})
        x, y = s.cell("x"), s.cell("y")
        d = s.derive(lambda: x.get() + y.get())
        d.get()
        assert s.dependencies(d) == {x, y}
        assert s.dependents(x) == {d}
        assert s.dependencies(x) == frozenset()


class TestIsolation:
    def test_stores_are_independent(self):
        a = create_store({"x": 0})
        b = create_store({"x": 0})
        log = []
        b.subscribe("x", log.append)
        a.set("x", 5)
        assert log == []
        assert b.get("x") == 0

    def test_foreign_handle(self):
        a = create_store({"x": 0})
        b = create_store({"x": 0})
        with pytest.raises(UnknownCell):
            a.read(b.cell("x"))
        with pytest.raises(UnknownCell):
            a.write(b.cell("x"), 1)
        with pytest.raises(UnknownCell):
            a.read("x")

    def test_cross_store_read_is_not_tracked(self):
        a = create_store({"x": 1})
        b = create_store({"y": 10})
        d = a.derive(lambda: a.get("x") + b.get("y"))
        assert d.get() == 11
        assert a.dependencies(d) == {a.cell("x")}


class TestDisposeCell:
    def test_disposed_handle_is_unknown(self):
        s = create_store({"x": 1})
        x = s.cell("x")
        x.dispose()
        assert "x" not in s
        assert x not in s
        with pytest.raises(UnknownCell):
            x.get()

    def test_dependents_fail_loudly(self):
        s = create_store({"x": 1})
        x = s.cell("x")
        d = s.derive(lambda: x.get() + 1)
        assert d.get() == 2
        s.dispose_cell(x)
        with pytest.raises(UnknownCell):
            d.get()
        assert not s.inspect(d).poisoned

    def test_observers_dropped(self):
        s = create_store({"x": 1})
        sub = s.subscribe("x", lambda v: None)
        s.dispose_cell(s.cell("x"))
        assert sub.disposed


class TestLifecycle:
    def test_reconcile_adds_keys(self):
        s = create_store({"x": 1})
        s.reconcile({"x": 1, "z": 99}, lambda store: [])
        assert s.get("z") == 99
        assert s.get("x") == 1  # preserved

    def test_reconcile_preserves_values(self):
        s = create_store({"x": 1})
        s.set("x", 42)
        s.reconcile({"x": 1}, lambda store: [])
        assert s.get("x") == 42

    def test_reconcile_disposes_old_bindings(self):
        s = create_store({"x": 0})
        log = []

        def setup(store):
            return [store.subscribe("x", log.append)]

        s.reconcile({"x": 0}, setup)
        s.set("x", 1)
        assert log == [1]

        # Reconcile again; old subscription should be disposed
        log2 = []

        def setup2(store):
            return [store.subscribe("x", log2.append)]

        s.reconcile({"x": 0}, setup2)
        s.set("x", 2)
        assert log2 == [2]
        assert log == [1]  # old subscription didn't fire

    def test_dispose(self):
        s = create_store({"x": 0})
        x = s.cell("x")
        log = []
        s.reconcile({"x": 0}, lambda store: [store.subscribe("x", log.append)])
        s.set("x", 1)
        assert log == [1]

        s.dispose()
        with pytest.raises(UnknownCell):
            x.set(2)
        with pytest.raises(InvalidMutation):
            s.source(0)
        assert log == [1]

    def test_context_manager(self):
        with create_store({"x": 0}) as s:
            x = s.cell("x")
            x.set(1)
        with pytest.raises(UnknownCell):
            x.get()

    def test_repr(self):
        s = create_store({"x": 0}, name="settings")
        assert repr(s) == "Store('settings', cells=1, idle)"


class TestThreads:
    def test_concurrent_dispatch_is_serialized(self):
        s = create_store({"count": 0})
        counter = s.reducer("count", lambda state, step: state + step)
        total = s.derive(lambda: s.get("count") * 2)
        log = []
        s.subscribe(total, log.append)

        def worker():
            for _ in range(200):
                counter.dispatch(1)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert s.get("count") == 800
        assert total.get() == 1600
        assert log[-1] == 1600
        assert log == sorted(log)
