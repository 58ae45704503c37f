"""Tests for Store.batch, transaction() and action."""

from dataclasses import dataclass

import pytest

from slicedstore import SliceNotRegisteredError, Store, define_slice


@dataclass
class Wallet:
    balance: int = 1000
    bet: int = 1


class Recorder:
    """Counts every notification the store sends."""

    def __init__(self, store, *handles):
        self.events = []
        store.on_change.add(lambda state: self.events.append(("store",)))
        for handle in handles:
            handle.on_change.add(lambda s, name=handle.name: self.events.append(("slice", name)))

    def field(self, handle, key):
        handle.on(key, lambda v, prev: self.events.append(("field", handle.name, key, v, prev)))


@pytest.fixture
def setup():
    store = Store()
    wallet = store.register(define_slice("wallet", Wallet()))
    spins = store.register(define_slice("spins", {"remaining": 0}))
    return store, wallet, spins


class TestBatch:
    def test_coalesces_notifications(self, setup):
        store, wallet, spins = setup
        rec = Recorder(store, wallet, spins)
        rec.field(wallet, "bet")

        def body():
            wallet.set("bet", 2)
            wallet.set("bet", 3)
            wallet.set("balance", 900)
            spins.set("remaining", 5)
            # state is visible immediately inside the batch
            assert wallet.get("bet") == 3
            assert rec.events == []

        store.batch(body)

        assert rec.events == [
            ("field", "wallet", "bet", 3, 1),
            ("slice", "wallet"),
            ("slice", "spins"),
            ("store",),
        ]

    def test_returns_result(self, setup):
        store, wallet, _ = setup
        assert store.batch(lambda x: x * 2, 21) == 42

    def test_nothing_fires_without_changes(self, setup):
        store, wallet, spins = setup
        rec = Recorder(store, wallet, spins)
        store.batch(lambda: wallet.set("bet", 1))
        store.batch(lambda: None)
        assert rec.events == []

    def test_nested_batches_flatten(self, setup):
        store, wallet, spins = setup
        rec = Recorder(store, wallet)

        def inner():
            wallet.set("bet", 3)
            spins.set("remaining", 1)

        def outer():
            wallet.set("bet", 2)
            store.batch(inner)
            store.batch(lambda: store.batch(lambda: wallet.set("balance", 1)))
            assert rec.events == []

        store.batch(outer)
        assert rec.events == [("slice", "wallet"), ("store",)]

    def test_listener_writes_during_flush_notify_directly(self, setup):
        store, wallet, spins = setup
        log = []
        wallet.on("bet", lambda v, prev: spins.set("remaining", v))
        spins.on("remaining", lambda v, prev: log.append(v))
        store.batch(lambda: wallet.set("bet", 4))
        assert log == [4]


class TestRollback:
    def test_example_rollback(self, setup):
        store, wallet, spins = setup
        rec = Recorder(store, wallet, spins)
        rec.field(wallet, "bet")

        def body():
            wallet.set("bet", 99)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            store.batch(body)

        assert wallet.get("bet") == 1
        assert rec.events == []

    def test_restores_every_touched_slice(self, setup):
        store, wallet, spins = setup
        wallet.set("balance", 500)
        before = store.snapshot()
        error = ValueError("original")

        def body():
            wallet.update({"balance": 0, "bet": 50})
            spins.set("remaining", 10)
            wallet.set("bet", 60)
            raise error

        with pytest.raises(ValueError) as info:
            store.batch(body)

        assert info.value is error
        assert store.snapshot() == before

    def test_nested_error_rolls_back_outer(self, setup):
        store, wallet, _ = setup

        def inner():
            wallet.set("balance", 1)
            raise KeyError("inner")

        def outer():
            wallet.set("bet", 2)
            store.batch(inner)

        with pytest.raises(KeyError):
            store.batch(outer)
        assert wallet.get_all() == Wallet()

    def test_batch_usable_after_rollback(self, setup):
        store, wallet, spins = setup
        rec = Recorder(store, wallet)

        def failing():
            wallet.set("bet", 5)
            raise RuntimeError("late")

        with pytest.raises(RuntimeError):
            store.batch(failing)
        store.batch(lambda: wallet.set("bet", 6))
        assert wallet.get("bet") == 6
        assert rec.events == [("slice", "wallet"), ("store",)]

    def test_computed_unchanged_after_rollback(self, setup):
        store, wallet, _ = setup
        total = wallet.computed(lambda s: s.balance * s.bet)
        log = []
        total.add(log.append)

        def body():
            wallet.set("bet", 10)
            raise RuntimeError

        with pytest.raises(RuntimeError):
            store.batch(body)
        assert total.value == 1000
        assert log == []


class TestTransaction:
    def test_context_manager(self, setup):
        store, wallet, spins = setup
        rec = Recorder(store, wallet, spins)
        with store.transaction():
            wallet.set("bet", 2)
            spins.set("remaining", 3)
            assert rec.events == []
        assert rec.events == [("slice", "wallet"), ("slice", "spins"), ("store",)]

    def test_context_manager_rollback(self, setup):
        store, wallet, _ = setup
        with pytest.raises(RuntimeError):
            with store.transaction():
                wallet.set("bet", 2)
                raise RuntimeError
        assert wallet.get("bet") == 1

    def test_nested_transaction_inside_batch(self, setup):
        store, wallet, _ = setup
        rec = Recorder(store, wallet)

        def body():
            with store.transaction():
                wallet.set("bet", 2)
            assert rec.events == []

        store.batch(body)
        assert rec.events == [("slice", "wallet"), ("store",)]


class TestAction:
    def test_decorated_function_is_batched(self, setup):
        store, wallet, _ = setup
        rec = Recorder(store, wallet)

        @store.action
        def place_bet(amount):
            wallet.update({"bet": amount})
            wallet.set("balance", wallet.get("balance") - amount)
            return wallet.get("balance")

        assert place_bet(10) == 990
        assert place_bet.__name__ == "place_bet"
        assert rec.events == [("slice", "wallet"), ("store",)]


class TestRegistryChangesInsideBatch:
    def test_unregister_drops_pending_notifications(self, setup):
        store, wallet, spins = setup
        rec = Recorder(store, wallet, spins)
        rec.field(spins, "remaining")

        def body():
            wallet.set("bet", 2)
            spins.set("remaining", 5)
            store.unregister("spins")

        store.batch(body)
        assert rec.events == [("slice", "wallet"), ("store",)]
        assert not store.has("spins")

    def test_unregister_of_only_dirty_slice_sends_nothing(self, setup):
        store, wallet, spins = setup
        rec = Recorder(store, wallet, spins)

        def body():
            spins.set("remaining", 5)
            store.unregister("spins")

        store.batch(body)
        assert rec.events == []

    def test_unregister_then_rollback_leaves_new_slice_alone(self, setup):
        store, wallet, spins = setup

        def body():
            spins.set("remaining", 5)
            wallet.set("bet", 2)
            store.unregister("spins")
            fresh = store.register(define_slice("spins", {"remaining": 100}))
            fresh.set("remaining", 101)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            store.batch(body)

        assert store.slice("spins").get("remaining") == 100
        assert wallet.get("bet") == 1
        with pytest.raises(SliceNotRegisteredError):
            spins.get("remaining")

    def test_hard_reset_drops_pending_notifications(self, setup):
        store, wallet, spins = setup
        rec = Recorder(store, wallet, spins)
        log = []

        def body():
            wallet.set("bet", 5)
            spins.set("remaining", 2)
            store.reset()
            wallet.on("bet", lambda v, prev: log.append(("bet", v, prev)))
            wallet.on("balance", lambda v, prev: log.append(("balance", v, prev)))
            store.on_change.add(lambda state: log.append(("store",)))
            wallet.set("balance", 7)

        store.batch(body)
        assert rec.events == []
        assert log == [("balance", 7, 1000), ("store",)]
        assert wallet.get_all() == Wallet(balance=7)
        assert spins.get("remaining") == 0

    def test_hard_reset_then_rollback_restores_pre_batch_state(self, setup):
        store, wallet, spins = setup
        wallet.set("bet", 7)
        spins.set("remaining", 3)
        rec = Recorder(store, wallet, spins)
        total = wallet.computed(lambda s: s.balance * s.bet)

        def body():
            wallet.set("bet", 9)
            store.reset()
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            store.batch(body)

        assert wallet.get("bet") == 7
        assert spins.get("remaining") == 3
        assert total.is_disposed
        assert not wallet.on_change.has_listeners
        assert not store.on_change.has_listeners
        wallet.set("bet", 8)
        assert rec.events == []
