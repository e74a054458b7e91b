"""JSONL persistence of swing level snapshots shared by the replay and live services."""

import json
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, TextIO

from swing_levels.core.types import Bar, Signal


class LevelWriter:
    """Simple JSONL writer for deterministic swing level records."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._file: TextIO | None = None

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self.path.open("a", encoding="utf-8")

    def write(self, record: dict[str, Any]) -> None:
        if self._file is None:
            raise RuntimeError("level writer is not open")
        line = json.dumps(record, ensure_ascii=True, separators=(",", ":"))
        self._file.write(line + "\n")
        self._file.flush()

    def close(self) -> None:
        if self._file is None:
            return
        self._file.close()
        self._file = None


def build_level_record(
    signal: Signal,
    as_of_bar: int,
    start: Bar,
    end: Bar | None,
    symbol: str | None = None,
) -> dict[str, Any]:
    """Flatten a signal and the bars bounding it into a ``swing_level`` record."""

    record: dict[str, Any] = {"type": "swing_level"}
    if symbol:
        record["symbol"] = symbol
    record.update(signal.to_dict())
    record["start_time_ms"] = start.open_time_ms
    record["end_time_ms"] = end.open_time_ms if end is not None else None
    record["as_of_bar"] = as_of_bar
    return record


def level_records(
    signals: Iterable[Signal],
    get_bar: Callable[[int], Bar],
    as_of_bar: int,
    symbol: str | None = None,
) -> list[dict[str, Any]]:
    """Build records for a level snapshot, resolving bar times through ``get_bar``."""

    return [
        build_level_record(
            signal,
            as_of_bar=as_of_bar,
            start=get_bar(signal.start_bar),
            end=None if signal.is_open else get_bar(signal.end_bar),
            symbol=symbol,
        )
        for signal in signals
    ]
