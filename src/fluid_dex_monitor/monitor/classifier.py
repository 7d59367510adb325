"""Price change classification against per-pool history."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from fluid_dex_monitor.monitor.models import PriceCheck, TriggerContext
from fluid_dex_monitor.reporting.formatter import format_check

if TYPE_CHECKING:
    from fluid_dex_monitor.monitor.history import PriceHistoryStore
    from fluid_dex_monitor.monitor.models import Pool
    from fluid_dex_monitor.monitor.reserves import ReserveReader

logger = logging.getLogger(__name__)

DEFAULT_PERIODIC_THRESHOLD_PERCENT = Decimal("0.0001")
DEFAULT_EVENT_THRESHOLD_PERCENT = Decimal("0.001")


class ChangeClassifier:
    """Decides whether a new price is a material change for its context.

    Periodic checks use a tighter threshold than event-driven ones. The
    history store is updated on every classification, whatever the
    outcome; only the reporting decision depends on the threshold.

    Example:
        ```python
        classifier = ChangeClassifier(history, reader)
        check = await classifier.check(pool, TriggerContext.PERIODIC)
        if check and check.is_significant:
            ...
        ```
    """

    def __init__(
        self,
        history: PriceHistoryStore,
        reader: ReserveReader,
        *,
        periodic_threshold_percent: Decimal = DEFAULT_PERIODIC_THRESHOLD_PERCENT,
        event_threshold_percent: Decimal = DEFAULT_EVENT_THRESHOLD_PERCENT,
    ) -> None:
        self._history = history
        self._reader = reader
        self._periodic_threshold = periodic_threshold_percent
        self._event_threshold = event_threshold_percent

    def threshold_for(self, context: TriggerContext) -> Decimal:
        if context is TriggerContext.PERIODIC:
            return self._periodic_threshold
        return self._event_threshold

    def classify(self, pool: Pool, new_price: Decimal, context: TriggerContext) -> PriceCheck:
        """Classify `new_price` against the pool's last price and store it."""
        previous = self._history.swap(pool.address, new_price)

        if previous is None:
            return PriceCheck(
                pool=pool,
                price=new_price,
                previous_price=None,
                change_percent=Decimal(0),
                is_significant=False,
                is_first_observation=True,
                context=context,
            )

        change_percent = (new_price - previous) / previous * 100
        return PriceCheck(
            pool=pool,
            price=new_price,
            previous_price=previous,
            change_percent=change_percent,
            is_significant=abs(change_percent) > self.threshold_for(context),
            is_first_observation=False,
            context=context,
        )

    async def check(self, pool: Pool, context: TriggerContext) -> PriceCheck | None:
        """Read the current price, classify it and log the outcome.

        Returns None (history untouched) when the price is unavailable.
        """
        observation = await self._reader.observe(pool, context)
        price = observation.price
        if price is None:
            logger.warning("[%s] %s: price unavailable", context.value, pool.pair)
            return None

        result = self.classify(pool, price, context)
        if result.is_reported:
            logger.info("%s", format_check(result))
        else:
            logger.debug("%s", format_check(result))
        return result
