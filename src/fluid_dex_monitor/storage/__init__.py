"""Storage layer - Append-only price history."""

from fluid_dex_monitor.storage.recorder import CsvRecord, ObservationRecorder, RecorderStats

__all__ = [
    "CsvRecord",
    "ObservationRecorder",
    "RecorderStats",
]
