"""Offline replay of recorded bar_close events."""

import json
import logging
from pathlib import Path

import pytest

from swing_levels.core.config import get_settings
from swing_levels.core.errors import EngineInvariantError
from swing_levels.core.types import EngineConfig, SwingKind, Timeframe
from swing_levels.services.replay.main import main, replay_bars

_T0 = 1_704_067_200_000
_MINUTE = 60_000


def _event_line(i: int, high: float, low: float) -> str:
    return json.dumps(
        {
            "type": "bar_close",
            "exchange": "binance_futures",
            "symbol": "ETHUSDT",
            "interval": "1m",
            "open_time_ms": _T0 + i * _MINUTE,
            "close_time_ms": _T0 + (i + 1) * _MINUTE - 1,
            "o": str(low),
            "h": str(high),
            "l": str(low),
            "c": str(high),
            "v": "2.5",
            "event_time_ms": _T0 + (i + 1) * _MINUTE,
        }
    )


_HIGHS = [1.0, 2.0, 5.0, 2.0, 1.0, 1.5, 1.2]


def test_replay_skips_malformed_lines() -> None:
    """Invalid JSON, foreign types, inverted bars and out-of-order bars are skipped."""

    lines = [_event_line(i, h, h - 0.5) for i, h in enumerate(_HIGHS)]
    lines.insert(3, "{not json")
    lines.insert(4, json.dumps({"type": "feature_snapshot"}))
    lines.insert(5, json.dumps({"type": "bar_close", "open_time_ms": 1, "close_time_ms": 2, "o": 1, "h": 1, "l": 2, "c": 1}))
    lines.append(_event_line(1, 3.0, 2.0))
    lines.append("")

    series, engine = replay_bars(lines, EngineConfig(swing_period=2), logging.getLogger("test"))

    assert len(series) == len(_HIGHS)
    highs = [(s.start_bar, s.price_level) for s in engine.active_signals(SwingKind.HIGH)]
    assert highs == [(2, 5.0)]


def test_replay_treats_repeated_open_time_as_update() -> None:
    """A second line for the same open time updates that bar instead of adding one."""

    lines = [_event_line(i, h, h - 0.5) for i, h in enumerate(_HIGHS)]
    lines.append(_event_line(len(_HIGHS) - 1, 1.4, 0.9))

    series, engine = replay_bars(lines, EngineConfig(swing_period=2), logging.getLogger("test"))

    assert len(series) == len(_HIGHS)
    assert series.get_bar(len(_HIGHS) - 1).h == 1.4
    assert engine.last_bar == len(_HIGHS) - 1


def test_main_writes_level_records(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """The replay entrypoint writes one swing_level record per tracked level."""

    bars_path = tmp_path / "bars.jsonl"
    levels_path = tmp_path / "out" / "levels.jsonl"
    bars_path.write_text("\n".join(_event_line(i, h, h - 0.5) for i, h in enumerate(_HIGHS)) + "\n")

    monkeypatch.setenv("REPLAY_BARS_PATH", str(bars_path))
    monkeypatch.setenv("LEVELS_PATH", str(levels_path))
    monkeypatch.setenv("SWING_PERIOD", "2")
    get_settings.cache_clear()
    try:
        assert main() == 0
    finally:
        get_settings.cache_clear()

    records = [json.loads(line) for line in levels_path.read_text().splitlines()]
    assert records
    assert all(record["type"] == "swing_level" for record in records)
    peak = [r for r in records if r["kind"] == "high" and r["price_level"] == 5.0]
    assert peak == [
        {
            "type": "swing_level",
            "kind": "high",
            "start_bar": 2,
            "end_bar": 0,
            "price_level": 5.0,
            "start_time_ms": _T0 + 2 * _MINUTE,
            "end_time_ms": None,
            "as_of_bar": len(_HIGHS) - 1,
        }
    ]


def test_main_fails_on_missing_input(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing bar file is reported with a non-zero exit code."""

    monkeypatch.setenv("REPLAY_BARS_PATH", str(tmp_path / "missing.jsonl"))
    monkeypatch.setenv("LEVELS_PATH", str(tmp_path / "levels.jsonl"))
    get_settings.cache_clear()
    try:
        assert main() == 1
    finally:
        get_settings.cache_clear()


def test_main_skips_bar_with_open_outside_range(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A period-opening bar whose open lies outside its range is skipped, not fatal."""

    lines = [_event_line(i, h, h - 0.5) for i, h in enumerate(_HIGHS)]
    broken = json.loads(_event_line(5, 2.0, 1.0))
    broken["o"] = "10"
    lines[5] = json.dumps(broken)

    bars_path = tmp_path / "bars.jsonl"
    bars_path.write_text("\n".join(lines) + "\n")
    monkeypatch.setenv("REPLAY_BARS_PATH", str(bars_path))
    monkeypatch.setenv("LEVELS_PATH", str(tmp_path / "levels.jsonl"))
    monkeypatch.setenv("TIMEFRAME", "m5")
    get_settings.cache_clear()
    try:
        assert main() == 0
    finally:
        get_settings.cache_clear()

    series, engine = replay_bars(lines, EngineConfig(swing_period=2, timeframe=Timeframe.M5), logging.getLogger("test"))
    assert len(series) == len(_HIGHS) - 1
    assert engine.aggregated


def test_main_reports_engine_fault_with_exit_code(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """An internal-consistency fault is logged and turned into a non-zero exit code."""

    bars_path = tmp_path / "bars.jsonl"
    bars_path.write_text(_event_line(0, 2.0, 1.0) + "\n")

    def failing_replay(*_args: object, **_kwargs: object) -> None:
        raise EngineInvariantError("period starting at bar 0 is inconsistent")

    monkeypatch.setattr("swing_levels.services.replay.main.replay_bars", failing_replay)
    monkeypatch.setenv("REPLAY_BARS_PATH", str(bars_path))
    monkeypatch.setenv("LEVELS_PATH", str(tmp_path / "levels.jsonl"))
    get_settings.cache_clear()
    try:
        assert main() == 1
    finally:
        get_settings.cache_clear()
