"""Append-only price history file.

Each recorder invocation reads every tracked pool plus the reference
price and appends exactly one delimited row. Missing values are written
as the N/A sentinel so every row keeps the same width.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import TYPE_CHECKING

from fluid_dex_monitor.config import DEFAULT_PRICE_COLUMNS
from fluid_dex_monitor.monitor.models import RecordTrigger
from fluid_dex_monitor.reporting.formatter import UNAVAILABLE, format_price

if TYPE_CHECKING:
    from fluid_dex_monitor.monitor.models import Pool
    from fluid_dex_monitor.monitor.reserves import ReserveReader

logger = logging.getLogger(__name__)

DELIMITER = ","
DEFAULT_REFERENCE_COLUMN = "susde_official_price"
ALL_POOLS_LABEL = "both"


def sanitize_field(text: str) -> str:
    """Make free text safe for a single delimited field."""
    return (
        text.replace(DELIMITER, ";")
        .replace("\r\n", " ")
        .replace("\n", " ")
        .replace("\r", " ")
    )


def format_iso_millis(timestamp_ms: int) -> str:
    """ISO-8601 UTC datetime with millisecond precision and a Z suffix."""
    dt = datetime.fromtimestamp(timestamp_ms // 1000, tz=UTC)
    return f"{dt:%Y-%m-%dT%H:%M:%S}.{timestamp_ms % 1000:03d}Z"


def _parse_price(value: str) -> Decimal | None:
    if value == UNAVAILABLE:
        return None
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise ValueError(f"Invalid price field: {value!r}") from e


def header_fields(price_columns: Sequence[str], reference_column: str) -> list[str]:
    return [
        "timestamp",
        "datetime",
        *price_columns,
        reference_column,
        "event_type",
        "pool_affected",
        "notes",
    ]


@dataclass(frozen=True)
class CsvRecord:
    """One row of the price history file.

    Attributes:
        timestamp_ms: Unix epoch milliseconds.
        prices: (column, price) per tracked pair in header order.
        reference_price: Vault totalAssets / totalSupply, if available.
        event_type: Trigger that produced the row.
        pool_affected: Pair label of the affected pool, or "both".
        notes: Free-text note.
    """

    timestamp_ms: int
    prices: tuple[tuple[str, Decimal | None], ...]
    reference_price: Decimal | None
    event_type: str
    pool_affected: str
    notes: str

    @property
    def datetime_iso(self) -> str:
        return format_iso_millis(self.timestamp_ms)

    def price_for(self, column: str) -> Decimal | None:
        for name, price in self.prices:
            if name == column:
                return price
        raise KeyError(column)

    def to_row(self) -> str:
        """Serialize to one delimited line (no trailing newline)."""
        fields = [
            str(self.timestamp_ms),
            self.datetime_iso,
            *(format_price(price) for _, price in self.prices),
            format_price(self.reference_price),
            sanitize_field(self.event_type),
            sanitize_field(self.pool_affected),
            sanitize_field(self.notes),
        ]
        return DELIMITER.join(fields)

    @classmethod
    def from_row(cls, line: str, price_columns: Sequence[str]) -> CsvRecord:
        """Parse a line written by `to_row`.

        Raises:
            ValueError: If the line does not have the expected shape.
        """
        fields = line.rstrip("\r\n").split(DELIMITER)
        expected = len(price_columns) + 6
        if len(fields) < expected:
            raise ValueError(f"Expected at least {expected} fields, got {len(fields)}")

        n = len(price_columns)
        prices = tuple(
            (column, _parse_price(value))
            for column, value in zip(price_columns, fields[2 : 2 + n], strict=True)
        )
        return cls(
            timestamp_ms=int(fields[0]),
            prices=prices,
            reference_price=_parse_price(fields[2 + n]),
            event_type=fields[3 + n],
            pool_affected=fields[4 + n],
            notes=DELIMITER.join(fields[5 + n :]),
        )


@dataclass
class RecorderStats:
    rows_written: int = 0
    write_failures: int = 0
    last_written_at: datetime | None = None
    last_error: str | None = None


class ObservationRecorder:
    """Appends price snapshots across all tracked pools to the history file.

    `record()` never raises: unreadable prices become N/A and a failed
    append is logged and counted, with None returned.

    Example:
        ```python
        recorder = ObservationRecorder(Path("prices.csv"), reader)
        recorder.set_pools(pools)
        await recorder.record(RecordTrigger.STARTUP, "both", "Monitor started - initial prices")
        ```
    """

    def __init__(
        self,
        path: Path,
        reader: ReserveReader,
        *,
        price_columns: Sequence[tuple[str, str]] = DEFAULT_PRICE_COLUMNS,
        reference_column: str = DEFAULT_REFERENCE_COLUMN,
    ) -> None:
        self._path = Path(path)
        self._reader = reader
        self._price_columns = tuple(price_columns)
        self._reference_column = reference_column
        self._pools: tuple[Pool, ...] = ()
        self._write_lock = asyncio.Lock()
        self._stats = RecorderStats()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def stats(self) -> RecorderStats:
        return self._stats

    @property
    def column_names(self) -> list[str]:
        return [column for column, _ in self._price_columns]

    @property
    def header(self) -> str:
        return DELIMITER.join(header_fields(self.column_names, self._reference_column))

    def set_pools(self, pools: Sequence[Pool]) -> None:
        self._pools = tuple(pools)
        labels = {label for _, label in self._price_columns}
        for pool in self._pools:
            if pool.pair not in labels:
                logger.debug("Pool %s has no history column; its price is not recorded", pool.pair)

    async def _read_prices(self) -> tuple[tuple[str, Decimal | None], ...]:
        by_label: dict[str, Decimal | None] = {}
        for pool in self._pools:
            by_label[pool.pair] = await self._reader.get_price(pool)
        return tuple((column, by_label.get(label)) for column, label in self._price_columns)

    def _write_line(self, line: str) -> None:
        needs_header = not self._path.exists() or self._path.stat().st_size == 0
        payload = f"{self.header}\n{line}\n" if needs_header else f"{line}\n"
        if needs_header:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8", newline="") as f:
            f.write(payload)

    async def record(
        self,
        trigger: RecordTrigger | str,
        pool_label: str,
        note: str,
    ) -> CsvRecord | None:
        """Snapshot all tracked prices and append one row.

        Args:
            trigger: The row's event_type.
            pool_label: Pair label of the affected pool, or "both".
            note: Free-text note; delimiters are sanitized.

        Returns:
            The written record, or None if the append failed.
        """
        event_type = trigger.value if isinstance(trigger, RecordTrigger) else str(trigger)
        try:
            prices = await self._read_prices()
            reference = await self._reader.get_reference_price()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Reader methods already map failures to None; this guards the row itself.
            logger.warning("Price snapshot for %s row incomplete: %s", event_type, e)
            prices = tuple((column, None) for column, _ in self._price_columns)
            reference = None

        record = CsvRecord(
            timestamp_ms=int(datetime.now(UTC).timestamp() * 1000),
            prices=prices,
            reference_price=reference,
            event_type=event_type,
            pool_affected=pool_label,
            notes=note,
        )

        try:
            async with self._write_lock:
                await asyncio.to_thread(self._write_line, record.to_row())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.write_failures += 1
            self._stats.last_error = str(e)
            logger.error("Failed to append %s row to %s: %s", event_type, self._path, e)
            return None

        self._stats.rows_written += 1
        self._stats.last_written_at = datetime.now(UTC)
        logger.info("Recorded %s row (%s) to %s", event_type, pool_label, self._path)
        return record
