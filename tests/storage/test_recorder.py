"""Tests for the price history recorder."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from fluid_dex_monitor.monitor.models import Pool, RecordTrigger
from fluid_dex_monitor.storage.recorder import (
    CsvRecord,
    ObservationRecorder,
    format_iso_millis,
    sanitize_field,
)

HEADER = (
    "timestamp,datetime,susde_usdt_price,gho_susde_price,susde_official_price,"
    "event_type,pool_affected,notes"
)
COLUMNS = ["susde_usdt_price", "gho_susde_price"]


@pytest.fixture
def prices_reader(mock_reader: AsyncMock, susde_usdt_pool: Pool, gho_susde_pool: Pool) -> AsyncMock:
    prices = {susde_usdt_pool.address: Decimal("0.98"), gho_susde_pool.address: Decimal("1.05")}
    mock_reader.get_price.side_effect = lambda pool: prices[pool.address]
    return mock_reader


@pytest.fixture
def recorder(
    tmp_path: Path, prices_reader: AsyncMock, susde_usdt_pool: Pool, gho_susde_pool: Pool
) -> ObservationRecorder:
    recorder = ObservationRecorder(tmp_path / "prices.csv", prices_reader)
    recorder.set_pools([gho_susde_pool, susde_usdt_pool])
    return recorder


def read_lines(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8").splitlines()


class TestHelpers:
    def test_sanitize_field(self) -> None:
        assert sanitize_field("a,b\nc\r\nd") == "a;b c d"

    def test_format_iso_millis(self) -> None:
        assert format_iso_millis(1_700_000_000_123) == "2023-11-14T22:13:20.123Z"
        assert format_iso_millis(1_700_000_000_005) == "2023-11-14T22:13:20.005Z"


class TestCsvRecord:
    def test_row_and_parse_back(self) -> None:
        record = CsvRecord(
            timestamp_ms=1_700_000_000_123,
            prices=(("susde_usdt_price", Decimal("0.98")), ("gho_susde_price", None)),
            reference_price=Decimal("1.15"),
            event_type="swap-immediate",
            pool_affected="sUSDe/USDT",
            notes="Swap detected: 1,000 supply\nnext line",
        )

        row = record.to_row()
        assert row == (
            "1700000000123,2023-11-14T22:13:20.123Z,0.980000,N/A,1.150000,"
            "swap-immediate,sUSDe/USDT,Swap detected: 1;000 supply next line"
        )

        parsed = CsvRecord.from_row(row, COLUMNS)
        assert parsed.price_for("susde_usdt_price") == Decimal("0.980000")
        assert parsed.price_for("gho_susde_price") is None
        assert parsed.reference_price == Decimal("1.15")
        assert parsed.notes == "Swap detected: 1;000 supply next line"

    def test_short_row_rejected(self) -> None:
        with pytest.raises(ValueError):
            CsvRecord.from_row("1,2,3", COLUMNS)

    def test_unknown_column(self) -> None:
        record = CsvRecord(0, (), None, "startup", "both", "")
        with pytest.raises(KeyError):
            record.price_for("missing")


class TestObservationRecorder:
    @pytest.mark.asyncio
    async def test_first_row_writes_header(self, recorder: ObservationRecorder) -> None:
        record = await recorder.record(RecordTrigger.STARTUP, "both", "Monitor started - initial prices")

        assert record is not None
        lines = read_lines(recorder.path)
        assert lines[0] == HEADER
        assert len(lines) == 2
        fields = lines[1].split(",")
        assert fields[2:] == [
            "0.980000",
            "1.050000",
            "1.150000",
            "startup",
            "both",
            "Monitor started - initial prices",
        ]
        assert recorder.stats.rows_written == 1

    @pytest.mark.asyncio
    async def test_header_written_once(self, recorder: ObservationRecorder) -> None:
        await recorder.record(RecordTrigger.STARTUP, "both", "start")
        await recorder.record(RecordTrigger.PERIODIC, "both", "Scheduled periodic check")

        lines = read_lines(recorder.path)
        assert lines.count(HEADER) == 1
        assert len(lines) == 3
        assert lines[2].split(",")[5] == "periodic"

    @pytest.mark.asyncio
    async def test_header_written_to_empty_existing_file(
        self, recorder: ObservationRecorder
    ) -> None:
        recorder.path.write_text("", encoding="utf-8")
        await recorder.record(RecordTrigger.PERIODIC, "both", "x")
        assert read_lines(recorder.path)[0] == HEADER

    @pytest.mark.asyncio
    async def test_unavailable_prices_become_sentinel(
        self, recorder: ObservationRecorder, prices_reader: AsyncMock
    ) -> None:
        prices_reader.get_price.side_effect = None
        prices_reader.get_price.return_value = None
        prices_reader.get_reference_price.return_value = None

        record = await recorder.record(RecordTrigger.PERIODIC, "both", "n")

        assert record is not None
        fields = read_lines(recorder.path)[1].split(",")
        assert fields[2:5] == ["N/A", "N/A", "N/A"]

    @pytest.mark.asyncio
    async def test_reader_exception_still_writes_row(
        self, recorder: ObservationRecorder, prices_reader: AsyncMock
    ) -> None:
        prices_reader.get_price.side_effect = RuntimeError("boom")

        assert await recorder.record(RecordTrigger.PERIODIC, "both", "n") is not None
        assert read_lines(recorder.path)[1].split(",")[2:5] == ["N/A", "N/A", "N/A"]

    @pytest.mark.asyncio
    async def test_unmapped_pool_is_not_recorded(
        self, tmp_path: Path, prices_reader: AsyncMock, susde_usdt_pool: Pool
    ) -> None:
        recorder = ObservationRecorder(
            tmp_path / "one.csv",
            prices_reader,
            price_columns=[("gho_susde_price", "GHO/sUSDe")],
        )
        recorder.set_pools([susde_usdt_pool])

        record = await recorder.record(RecordTrigger.PERIODIC, "both", "n")

        assert record is not None
        assert record.prices == (("gho_susde_price", None),)

    @pytest.mark.asyncio
    async def test_append_failure_returns_none(
        self, tmp_path: Path, prices_reader: AsyncMock, susde_usdt_pool: Pool
    ) -> None:
        target = tmp_path / "is-a-directory"
        target.mkdir()
        (target / "child").write_text("x", encoding="utf-8")
        recorder = ObservationRecorder(target, prices_reader)
        recorder.set_pools([susde_usdt_pool])

        assert await recorder.record(RecordTrigger.PERIODIC, "both", "n") is None
        assert recorder.stats.write_failures == 1
        assert recorder.stats.rows_written == 0
        assert recorder.stats.last_error

    @pytest.mark.asyncio
    async def test_trigger_may_be_plain_string(self, recorder: ObservationRecorder) -> None:
        record = await recorder.record("manual", "sUSDe/USDT", "note")
        assert record is not None
        assert record.event_type == "manual"
