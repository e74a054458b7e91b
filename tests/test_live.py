"""Live kline handling: forming-bar updates, stale messages and snapshot writes."""

import json
import logging
from pathlib import Path

from swing_levels.core.types import EngineConfig, SwingKind
from swing_levels.core.writer import LevelWriter
from swing_levels.services.live.main import LiveLevels, _build_kline_bar, _handle_message

_T0 = 1_704_067_200_000
_MINUTE = 60_000


def _kline(i: int, high: float, low: float, closed: bool, symbol: str = "ETHUSDT") -> dict:
    return {
        "e": "kline",
        "E": _T0 + i * _MINUTE + 30_000,
        "s": symbol,
        "k": {
            "t": _T0 + i * _MINUTE,
            "T": _T0 + (i + 1) * _MINUTE - 1,
            "s": symbol,
            "i": "1m",
            "o": str(low),
            "h": str(high),
            "l": str(low),
            "c": str(high),
            "v": "12.5",
            "x": closed,
        },
    }


def test_build_kline_bar_reports_closed_flag() -> None:
    """Both forming and closed klines are parsed; the closed flag is kept."""

    parsed = _build_kline_bar(_kline(0, 2.0, 1.0, closed=False), "ETHUSDT")
    assert parsed is not None
    bar, closed = parsed
    assert not closed
    assert (bar.h, bar.l, bar.v) == (2.0, 1.0, 12.5)

    parsed = _build_kline_bar({"data": _kline(1, 2.0, 1.0, closed=True)}, "ETHUSDT")
    assert parsed is not None and parsed[1]


def test_build_kline_bar_rejects_foreign_and_broken_payloads() -> None:
    """Other symbols, other event types, inverted bars and closes outside the range are ignored."""

    assert _build_kline_bar(_kline(0, 2.0, 1.0, closed=True, symbol="BTCUSDT"), "ETHUSDT") is None
    assert _build_kline_bar({"e": "aggTrade"}, "ETHUSDT") is None
    assert _build_kline_bar(_kline(0, 1.0, 2.0, closed=True), "ETHUSDT") is None

    outside = _kline(0, 2.0, 1.0, closed=True)
    outside["k"]["c"] = "3.5"
    assert _build_kline_bar(outside, "ETHUSDT") is None


def test_forming_updates_converge_to_single_bar() -> None:
    """Several updates for one open time leave one bar holding the last values."""

    live = LiveLevels("ETHUSDT", EngineConfig(swing_period=2))
    for high in (1.1, 1.4, 1.2):
        bar, _ = _build_kline_bar(_kline(0, high, 1.0, closed=False), "ETHUSDT")
        live.push(bar)

    assert len(live.series) == 1
    assert live.series.get_bar(0).h == 1.2
    assert live.engine.last_bar == 0


def test_stale_update_is_ignored() -> None:
    """An update older than the current bar does not touch the series."""

    live = LiveLevels("ETHUSDT", EngineConfig(swing_period=2))
    for i in range(3):
        bar, _ = _build_kline_bar(_kline(i, 2.0, 1.0, closed=True), "ETHUSDT")
        live.push(bar)

    stale, _ = _build_kline_bar(_kline(1, 9.0, 1.0, closed=False), "ETHUSDT")
    assert live.push(stale) == []
    assert live.series.get_bar(1).h == 2.0
    assert live.engine.last_bar == 2


def test_closed_kline_writes_snapshot(tmp_path: Path) -> None:
    """Each closed kline appends the current level snapshot to the writer."""

    live = LiveLevels("ETHUSDT", EngineConfig(swing_period=2))
    writer = LevelWriter(str(tmp_path / "levels.jsonl"))
    writer.open()
    logger = logging.getLogger("test")
    try:
        highs = [1.0, 2.0, 5.0, 2.0, 1.0]
        for i, high in enumerate(highs):
            _handle_message(json.dumps(_kline(i, high, high - 0.5, closed=True)), live, writer, logger)
        _handle_message(json.dumps(_kline(5, 1.3, 0.8, closed=False)), live, writer, logger)
        assert writer.path.read_text() == ""

        _handle_message(json.dumps(_kline(5, 1.5, 0.8, closed=True)), live, writer, logger)
        _handle_message("not json", live, writer, logger)
    finally:
        writer.close()

    records = [json.loads(line) for line in writer.path.read_text().splitlines()]
    assert [(r["kind"], r["start_bar"], r["price_level"]) for r in records] == [("high", 2, 5.0)]
    assert records[0]["symbol"] == "ETHUSDT"
    assert records[0]["as_of_bar"] == 5
    assert [s.kind for s in live.engine.active_signals()] == [SwingKind.HIGH]
