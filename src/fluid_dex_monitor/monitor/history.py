"""In-memory last-price store keyed by pool address."""

from __future__ import annotations

from collections.abc import Iterator
from decimal import Decimal


class PriceHistoryStore:
    """Last observed price per pool.

    Keys are compared case-insensitively. Entries live for the lifetime of
    the process; there is no removal and nothing is persisted.
    """

    def __init__(self) -> None:
        self._prices: dict[str, Decimal] = {}

    @staticmethod
    def _key(pool_address: str) -> str:
        return pool_address.lower()

    def get(self, pool_address: str) -> Decimal | None:
        return self._prices.get(self._key(pool_address))

    def set(self, pool_address: str, price: Decimal) -> None:
        self._prices[self._key(pool_address)] = price

    def swap(self, pool_address: str, price: Decimal) -> Decimal | None:
        """Store `price` and return the value it replaced.

        Runs without an await point, so it is atomic with respect to
        other coroutines touching the same key.
        """
        key = self._key(pool_address)
        previous = self._prices.get(key)
        self._prices[key] = price
        return previous

    def __contains__(self, pool_address: object) -> bool:
        return isinstance(pool_address, str) and self._key(pool_address) in self._prices

    def __len__(self) -> int:
        return len(self._prices)

    def __iter__(self) -> Iterator[str]:
        return iter(self._prices)
