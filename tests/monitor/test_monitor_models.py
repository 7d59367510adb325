"""Tests for monitor data models."""

from __future__ import annotations

from decimal import Decimal

import pytest

from fluid_dex_monitor.chain.events import DecodedLog
from fluid_dex_monitor.monitor.models import (
    ChangeDirection,
    OperationEvent,
    Pool,
    PoolEvent,
    PoolEventKind,
    PriceCheck,
    PriceEvolution,
    ReserveSnapshot,
    TriggerContext,
)


def make_log(event_name: str | None, args: dict, *, address: str = "0x" + "1" * 40) -> DecodedLog:
    return DecodedLog(
        address=address,
        event_name=event_name,
        args=args,
        block_number=200,
        transaction_hash="0x" + "ef" * 32,
        log_index=7,
    )


class TestPool:
    def test_tracked_side(self, susde_usdt_pool: Pool, gho_susde_pool: Pool) -> None:
        assert susde_usdt_pool.tracked_token == susde_usdt_pool.token0
        assert susde_usdt_pool.other_symbol == "USDT"
        assert gho_susde_pool.tracked_token == gho_susde_pool.token1
        assert gho_susde_pool.other_symbol == "GHO"

    def test_matches_is_case_insensitive(self, susde_usdt_pool: Pool) -> None:
        assert susde_usdt_pool.matches(susde_usdt_pool.address.lower())
        assert susde_usdt_pool.matches(susde_usdt_pool.address.upper().replace("0X", "0x"))


class TestReserveSnapshot:
    def test_from_tuple(self) -> None:
        snapshot = ReserveSnapshot.from_call_result((1, 2, 3, 4))
        assert snapshot.token0_imaginary == 3
        assert snapshot.token1_imaginary == 4

    def test_from_wrapped_tuple(self) -> None:
        snapshot = ReserveSnapshot.from_call_result(((1, 2, 3, 4),))
        assert snapshot.token0_real == 1
        assert snapshot.token1_real == 2

    def test_from_mapping(self) -> None:
        snapshot = ReserveSnapshot.from_call_result(
            {
                "token0RealReserves": 10,
                "token1RealReserves": 20,
                "token0ImaginaryReserves": 30,
                "token1ImaginaryReserves": 40,
            }
        )
        assert snapshot.imaginary_for(tracked_is_token0=False) == (40, 30)

    def test_wrong_shape(self) -> None:
        with pytest.raises(ValueError):
            ReserveSnapshot.from_call_result((1, 2, 3))


class TestPoolEvent:
    @pytest.mark.parametrize(
        ("name", "kind"),
        [
            ("Swap", PoolEventKind.SWAP),
            ("Deposit", PoolEventKind.DEPOSIT),
            ("Withdraw", PoolEventKind.WITHDRAW),
            ("LogOperate", PoolEventKind.OPERATION),
            (None, PoolEventKind.OTHER),
            ("Other", PoolEventKind.OTHER),
            ("Sync", PoolEventKind.OTHER),
        ],
    )
    def test_kind_from_event_name(self, name: str | None, kind: PoolEventKind) -> None:
        assert PoolEventKind.from_event_name(name) is kind

    def test_from_log(self, susde_usdt_pool: Pool) -> None:
        event = PoolEvent.from_log(susde_usdt_pool, make_log("Swap", {"amountIn": 5}))
        assert event.kind is PoolEventKind.SWAP
        assert event.pool is susde_usdt_pool
        assert event.block_number == 200
        assert event.log_index == 7

    def test_token_amounts_scaled(self, susde_usdt_pool: Pool) -> None:
        log = make_log("Deposit", {"token0Amount": 12_500 * 10**18, "token1Amount": 5 * 10**17})
        event = PoolEvent.from_log(susde_usdt_pool, log)
        assert event.token_amounts() == (Decimal("12500"), Decimal("0.5"))


class TestOperationEvent:
    def test_from_event_scales_signed_amounts(self, susde_usdt_pool: Pool) -> None:
        log = make_log(
            "LogOperate",
            {
                "user": susde_usdt_pool.address,
                "token": susde_usdt_pool.token0,
                "supplyAmount": -3 * 10**18,
                "borrowAmount": 25 * 10**16,
            },
        )
        operation = OperationEvent.from_event(PoolEvent.from_log(susde_usdt_pool, log))

        assert operation.supply_amount == Decimal("-3")
        assert operation.borrow_amount == Decimal("0.25")
        assert operation.block_number == 200

    def test_from_event_rejects_other_kinds(self, susde_usdt_pool: Pool) -> None:
        event = PoolEvent.from_log(susde_usdt_pool, make_log("Swap", {}))
        with pytest.raises(ValueError):
            OperationEvent.from_event(event)

    def test_materiality_is_exclusive(self) -> None:
        operation = OperationEvent(
            user="0x" + "1" * 40,
            token="0x" + "2" * 40,
            supply_amount=Decimal("0.01"),
            borrow_amount=Decimal("-0.01"),
            block_number=1,
            transaction_hash="0x",
        )
        assert not operation.is_material(Decimal("0.01"))
        assert operation.is_material(Decimal("0.009"))


class TestPriceCheck:
    def _check(self, pool: Pool, change: str, context: TriggerContext, **kwargs) -> PriceCheck:
        defaults = {
            "price": Decimal("1.0"),
            "previous_price": Decimal("1.0"),
            "is_significant": False,
            "is_first_observation": False,
        }
        defaults.update(kwargs)
        return PriceCheck(pool=pool, change_percent=Decimal(change), context=context, **defaults)

    def test_direction(self, susde_usdt_pool: Pool) -> None:
        assert self._check(susde_usdt_pool, "0.5", TriggerContext.IMMEDIATE).direction is ChangeDirection.UP
        assert self._check(susde_usdt_pool, "-0.5", TriggerContext.IMMEDIATE).direction is ChangeDirection.DOWN
        assert self._check(susde_usdt_pool, "0", TriggerContext.IMMEDIATE).direction is ChangeDirection.FLAT

    def test_periodic_checks_are_always_reported(self, susde_usdt_pool: Pool) -> None:
        assert self._check(susde_usdt_pool, "0", TriggerContext.PERIODIC).is_reported
        assert not self._check(susde_usdt_pool, "0", TriggerContext.POOL_EVENT).is_reported

    def test_to_dict(self, susde_usdt_pool: Pool) -> None:
        data = self._check(susde_usdt_pool, "0.25", TriggerContext.NEXT_BLOCK).to_dict()
        assert data["pair"] == "sUSDe/USDT"
        assert data["context"] == "next-block"
        assert data["change_percent"] == "0.25"


class TestPriceEvolution:
    def test_block_diff(self, susde_usdt_pool: Pool) -> None:
        evolution = PriceEvolution(
            pool=susde_usdt_pool,
            immediate_price=Decimal("2"),
            next_block_price=Decimal("2.01"),
            block_number=5,
            final_change_percent=Decimal("0.5"),
        )
        assert evolution.block_diff == Decimal("0.01")
        assert evolution.block_diff_percent == Decimal("0.5")
