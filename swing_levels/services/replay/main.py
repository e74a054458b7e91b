"""Offline replay that runs the swing engine over a recorded bar_close JSONL file."""

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from swing_levels.core.config import get_settings
from swing_levels.core.errors import EngineInvariantError
from swing_levels.core.logging import configure_logging
from swing_levels.core.types import Bar, EngineConfig
from swing_levels.core.writer import LevelWriter, level_records
from swing_levels.engine.candles import CandleSeries
from swing_levels.engine.swing_engine import SwingEngine


def _parse_bar_event(payload: dict[str, Any]) -> Bar | None:
    if payload.get("type", "bar_close") != "bar_close":
        return None

    try:
        return Bar(
            open_time_ms=int(payload["open_time_ms"]),
            close_time_ms=int(payload["close_time_ms"]),
            o=float(payload["o"]),
            h=float(payload["h"]),
            l=float(payload["l"]),
            c=float(payload["c"]),
            v=float(payload.get("v") or 0.0),
        )
    except (KeyError, TypeError, ValueError):
        return None


def replay_bars(
    lines: Iterable[str],
    config: EngineConfig,
    logger: logging.Logger,
    session_offset_minutes: int = 0,
) -> tuple[CandleSeries, SwingEngine]:
    """Feed every parseable bar line through a fresh engine and return its final state."""

    series = CandleSeries(session_offset_minutes=session_offset_minutes)
    engine = SwingEngine(series, config)
    skipped = 0

    for line_no, raw_line in enumerate(lines, start=1):
        line = raw_line.strip()
        if not line:
            continue

        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("replay_invalid_json", extra={"line": line_no})
            skipped += 1
            continue
        if not isinstance(payload, dict):
            skipped += 1
            continue

        bar = _parse_bar_event(payload)
        if bar is None:
            logger.warning("replay_invalid_bar", extra={"line": line_no})
            skipped += 1
            continue

        previous = series.last()
        if previous is not None and bar.open_time_ms == previous.open_time_ms:
            engine.step(series.update_last(bar))
            continue
        if previous is not None and bar.open_time_ms < previous.open_time_ms:
            logger.warning(
                "replay_out_of_order_bar",
                extra={"line": line_no, "open_time_ms": bar.open_time_ms},
            )
            skipped += 1
            continue

        engine.step(series.append(bar))

    logger.info(
        "replay_completed",
        extra={
            "bars": len(series),
            "skipped": skipped,
            "signals": len(engine.tracker),
            "aggregated": engine.aggregated,
        },
    )
    return series, engine


def main() -> int:
    """Replay the configured bar file and write the resulting swing levels."""

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    logger = logging.getLogger(__name__)

    bars_path = Path(settings.REPLAY_BARS_PATH)
    config = settings.engine_config()
    logger.info(
        "replay_startup",
        extra={
            "bars_path": str(bars_path),
            "levels_path": settings.LEVELS_PATH,
            "swing_period": config.swing_period,
            "lookback_period": config.lookback_period,
            "timeframe": config.timeframe.value,
            "tie_policy": config.tie_policy.value,
        },
    )

    try:
        with bars_path.open("r", encoding="utf-8") as file_obj:
            series, engine = replay_bars(
                file_obj,
                config,
                logger,
                session_offset_minutes=settings.SESSION_START_OFFSET_MINUTES,
            )
    except OSError as exc:
        logger.error("replay_bars_read_failed", extra={"path": str(bars_path), "error": str(exc)})
        return 1
    except EngineInvariantError as exc:
        logger.error("replay_engine_failed", extra={"path": str(bars_path), "error": str(exc)})
        return 1

    if len(series) == 0:
        logger.warning("replay_no_bars", extra={"path": str(bars_path)})
        return 0

    signals = (
        engine.visible_signals(0, engine.last_bar)
        if config.hide_closed
        else engine.active_signals()
    )
    records = level_records(signals, series.get_bar, as_of_bar=engine.last_bar)

    writer = LevelWriter(settings.LEVELS_PATH)
    try:
        writer.open()
        for record in records:
            writer.write(record)
    except OSError as exc:
        logger.error(
            "replay_levels_write_failed",
            extra={"path": settings.LEVELS_PATH, "error": str(exc)},
        )
        return 1
    finally:
        writer.close()

    logger.info("replay_levels_written", extra={"count": len(records), "path": settings.LEVELS_PATH})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
