"""Tests for the in-memory price history store."""

from __future__ import annotations

from decimal import Decimal

from fluid_dex_monitor.monitor.history import PriceHistoryStore

POOL = "0x1DD125C32e4B5086c63CC13B3cA02C4A2a61Fa9b"


class TestPriceHistoryStore:
    def test_get_unknown_pool(self) -> None:
        assert PriceHistoryStore().get(POOL) is None

    def test_set_then_get(self) -> None:
        store = PriceHistoryStore()
        store.set(POOL, Decimal("1.05"))
        assert store.get(POOL) == Decimal("1.05")
        assert POOL in store
        assert len(store) == 1

    def test_keys_are_case_insensitive(self) -> None:
        store = PriceHistoryStore()
        store.set(POOL.lower(), Decimal("1"))
        store.set(POOL, Decimal("2"))
        assert store.get(POOL.lower()) == Decimal("2")
        assert len(store) == 1

    def test_swap_returns_previous(self) -> None:
        store = PriceHistoryStore()
        assert store.swap(POOL, Decimal("1")) is None
        assert store.swap(POOL, Decimal("1.1")) == Decimal("1")
        assert store.get(POOL) == Decimal("1.1")
