"""Tests for the change classifier."""

from __future__ import annotations

import logging
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from fluid_dex_monitor.monitor.classifier import ChangeClassifier
from fluid_dex_monitor.monitor.history import PriceHistoryStore
from fluid_dex_monitor.monitor.models import Pool, TriggerContext

EVENT_CONTEXTS = [c for c in TriggerContext if c is not TriggerContext.PERIODIC]


@pytest.fixture
def history() -> PriceHistoryStore:
    return PriceHistoryStore()


@pytest.fixture
def classifier(history: PriceHistoryStore, mock_reader: AsyncMock) -> ChangeClassifier:
    return ChangeClassifier(history, mock_reader)


class TestClassify:
    def test_first_observation(
        self, classifier: ChangeClassifier, history: PriceHistoryStore, susde_usdt_pool: Pool
    ) -> None:
        check = classifier.classify(susde_usdt_pool, Decimal("1.05"), TriggerContext.IMMEDIATE)

        assert check.is_first_observation
        assert check.change_percent == 0
        assert not check.is_significant
        assert check.previous_price is None
        assert history.get(susde_usdt_pool.address) == Decimal("1.05")

    def test_change_percent_and_history_update(
        self, classifier: ChangeClassifier, history: PriceHistoryStore, susde_usdt_pool: Pool
    ) -> None:
        classifier.classify(susde_usdt_pool, Decimal("2"), TriggerContext.INITIAL)
        check = classifier.classify(susde_usdt_pool, Decimal("1.99"), TriggerContext.PERIODIC)

        assert check.change_percent == Decimal("-0.5")
        assert check.previous_price == Decimal("2")
        assert not check.is_first_observation
        assert history.get(susde_usdt_pool.address) == Decimal("1.99")

    @pytest.mark.parametrize(
        ("new_price", "significant"),
        [
            (Decimal("1.000001"), False),  # exactly 0.0001%
            (Decimal("1.0000011"), True),  # 0.00011%
            (Decimal("0.999999"), False),
            (Decimal("0.9999989"), True),
        ],
    )
    def test_periodic_threshold_is_exclusive(
        self,
        classifier: ChangeClassifier,
        susde_usdt_pool: Pool,
        new_price: Decimal,
        significant: bool,
    ) -> None:
        classifier.classify(susde_usdt_pool, Decimal("1"), TriggerContext.INITIAL)
        check = classifier.classify(susde_usdt_pool, new_price, TriggerContext.PERIODIC)
        assert check.is_significant is significant

    @pytest.mark.parametrize("context", EVENT_CONTEXTS)
    @pytest.mark.parametrize(
        ("new_price", "significant"),
        [
            (Decimal("1.00001"), False),  # exactly 0.001%
            (Decimal("1.000011"), True),  # 0.0011%
        ],
    )
    def test_event_threshold_is_exclusive(
        self,
        classifier: ChangeClassifier,
        susde_usdt_pool: Pool,
        context: TriggerContext,
        new_price: Decimal,
        significant: bool,
    ) -> None:
        classifier.classify(susde_usdt_pool, Decimal("1"), TriggerContext.INITIAL)
        check = classifier.classify(susde_usdt_pool, new_price, context)
        assert check.is_significant is significant

    def test_history_updated_when_not_significant(
        self, classifier: ChangeClassifier, history: PriceHistoryStore, susde_usdt_pool: Pool
    ) -> None:
        classifier.classify(susde_usdt_pool, Decimal("1"), TriggerContext.INITIAL)
        check = classifier.classify(susde_usdt_pool, Decimal("1.000001"), TriggerContext.POOL_EVENT)

        assert not check.is_significant
        assert history.get(susde_usdt_pool.address) == Decimal("1.000001")

    def test_pools_are_tracked_independently(
        self, classifier: ChangeClassifier, susde_usdt_pool: Pool, gho_susde_pool: Pool
    ) -> None:
        classifier.classify(susde_usdt_pool, Decimal("1"), TriggerContext.INITIAL)
        check = classifier.classify(gho_susde_pool, Decimal("2"), TriggerContext.INITIAL)
        assert check.is_first_observation

    def test_custom_thresholds(self, history: PriceHistoryStore, mock_reader: AsyncMock) -> None:
        classifier = ChangeClassifier(
            history,
            mock_reader,
            periodic_threshold_percent=Decimal("1"),
            event_threshold_percent=Decimal("5"),
        )
        assert classifier.threshold_for(TriggerContext.PERIODIC) == Decimal("1")
        assert classifier.threshold_for(TriggerContext.DEPOSIT) == Decimal("5")


class TestCheck:
    @pytest.mark.asyncio
    async def test_unavailable_price_leaves_history(
        self,
        classifier: ChangeClassifier,
        history: PriceHistoryStore,
        mock_reader: AsyncMock,
        susde_usdt_pool: Pool,
    ) -> None:
        history.set(susde_usdt_pool.address, Decimal("1.05"))
        mock_reader.get_price.return_value = None

        assert await classifier.check(susde_usdt_pool, TriggerContext.PERIODIC) is None
        assert history.get(susde_usdt_pool.address) == Decimal("1.05")

    @pytest.mark.asyncio
    async def test_reads_and_classifies(
        self, classifier: ChangeClassifier, mock_reader: AsyncMock, susde_usdt_pool: Pool
    ) -> None:
        mock_reader.get_price.side_effect = [Decimal("1.0"), Decimal("1.1")]

        first = await classifier.check(susde_usdt_pool, TriggerContext.INITIAL)
        second = await classifier.check(susde_usdt_pool, TriggerContext.IMMEDIATE)

        assert first is not None and first.is_first_observation
        assert second is not None
        assert second.change_percent == Decimal("10")
        assert second.is_significant
        mock_reader.get_price.assert_awaited_with(susde_usdt_pool)

    @pytest.mark.asyncio
    async def test_below_threshold_event_change_not_reported(
        self,
        classifier: ChangeClassifier,
        mock_reader: AsyncMock,
        susde_usdt_pool: Pool,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        mock_reader.get_price.side_effect = [Decimal("1"), Decimal("1.000001")]
        await classifier.check(susde_usdt_pool, TriggerContext.INITIAL)

        with caplog.at_level(logging.INFO, logger="fluid_dex_monitor.monitor.classifier"):
            caplog.clear()
            await classifier.check(susde_usdt_pool, TriggerContext.POOL_EVENT)

        assert not [r for r in caplog.records if r.levelno >= logging.INFO]

    @pytest.mark.asyncio
    async def test_periodic_stable_line_is_reported(
        self,
        classifier: ChangeClassifier,
        mock_reader: AsyncMock,
        susde_usdt_pool: Pool,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        mock_reader.get_price.side_effect = [Decimal("1"), Decimal("1")]
        await classifier.check(susde_usdt_pool, TriggerContext.INITIAL)

        with caplog.at_level(logging.INFO, logger="fluid_dex_monitor.monitor.classifier"):
            caplog.clear()
            await classifier.check(susde_usdt_pool, TriggerContext.PERIODIC)

        assert "stable, no material change" in caplog.text
