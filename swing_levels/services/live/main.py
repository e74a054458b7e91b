"""Binance Futures kline consumer that tracks swing levels on live, still-forming bars."""

import asyncio
import inspect
import json
import logging
import signal
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from swing_levels.core.config import Settings, get_settings
from swing_levels.core.errors import EngineInvariantError
from swing_levels.core.logging import configure_logging
from swing_levels.core.types import Bar, EngineConfig, Signal
from swing_levels.core.writer import LevelWriter, level_records
from swing_levels.engine.candles import CandleSeries
from swing_levels.engine.swing_engine import SwingEngine

_RECONNECT_INITIAL_BACKOFF_S = 1.0
_RECONNECT_MAX_BACKOFF_S = 30.0
_WS_PING_INTERVAL_S = 30
_WS_RECV_TIMEOUT_S = 1.0


class LiveLevels:
    """Pushes kline updates into a candle series and steps the engine on every update."""

    def __init__(self, symbol: str, config: EngineConfig, session_offset_minutes: int = 0) -> None:
        self.symbol = symbol
        self.series = CandleSeries(session_offset_minutes=session_offset_minutes)
        self.engine = SwingEngine(self.series, config)

    def push(self, bar: Bar) -> list[Signal]:
        """Apply one kline update; returns the signals it created.

        An update for the current open time re-steps the same index, a later
        open time appends a new bar, an earlier one is stale and ignored.
        """

        previous = self.series.last()
        if previous is not None and bar.open_time_ms < previous.open_time_ms:
            return []
        if previous is not None and bar.open_time_ms == previous.open_time_ms:
            return self.engine.step(self.series.update_last(bar))
        return self.engine.step(self.series.append(bar))

    def snapshot(self) -> list[dict[str, Any]]:
        last_bar = self.engine.last_bar
        if last_bar < 0:
            return []
        return level_records(
            self.engine.visible_signals(0, last_bar),
            self.series.get_bar,
            as_of_bar=last_bar,
            symbol=self.symbol,
        )


def _subscribe_streams(symbol: str, interval: str) -> list[str]:
    return [f"{symbol.lower()}@kline_{interval}"]


def _websocket_connect_kwargs() -> dict[str, Any]:
    kwargs: dict[str, Any] = {"ping_interval": _WS_PING_INTERVAL_S}
    if "proxy" in inspect.signature(websockets.connect).parameters:
        kwargs["proxy"] = None
    return kwargs


def _build_kline_bar(payload: dict[str, Any], symbol: str) -> tuple[Bar, bool] | None:
    """Return the kline bar and whether Binance marked it closed."""

    if "data" in payload and isinstance(payload["data"], dict):
        payload = payload["data"]

    if payload.get("e") != "kline":
        return None

    kline = payload.get("k")
    if not isinstance(kline, dict):
        return None
    if str(payload.get("s") or kline.get("s", "")).upper() != symbol:
        return None

    try:
        bar = Bar(
            open_time_ms=int(kline["t"]),
            close_time_ms=int(kline["T"]),
            o=float(kline["o"]),
            h=float(kline["h"]),
            l=float(kline["l"]),
            c=float(kline["c"]),
            v=float(kline["v"]),
        )
    except (KeyError, TypeError, ValueError):
        return None
    return bar, bool(kline.get("x"))


def _request_shutdown(
    shutdown_event: asyncio.Event, logger: logging.Logger, signal_name: str
) -> None:
    if shutdown_event.is_set():
        return
    logger.info("live_shutdown_signal", extra={"signal": signal_name})
    shutdown_event.set()


def _install_signal_handlers(shutdown_event: asyncio.Event, logger: logging.Logger) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(
                sig,
                _request_shutdown,
                shutdown_event,
                logger,
                sig.name,
            )
        except NotImplementedError:
            signal_name = sig.name
            signal.signal(
                sig,
                lambda *_, signal_name=signal_name: _request_shutdown(
                    shutdown_event, logger, signal_name
                ),
            )


def _handle_message(
    raw_message: str | bytes,
    live: LiveLevels,
    writer: LevelWriter,
    logger: logging.Logger,
) -> None:
    try:
        payload = json.loads(raw_message)
    except json.JSONDecodeError:
        logger.warning("live_invalid_json_message")
        return
    if not isinstance(payload, dict):
        return

    if payload.get("result") is None and payload.get("id") == 1:
        logger.info("live_subscribe_ack")
        return

    parsed = _build_kline_bar(payload, live.symbol)
    if parsed is None:
        return
    bar, closed = parsed

    for created in live.push(bar):
        logger.info("live_swing_level_detected", extra={"symbol": live.symbol, **created.to_dict()})

    if not closed:
        return

    records = live.snapshot()
    try:
        for record in records:
            writer.write(record)
    except OSError as exc:
        logger.error(
            "live_levels_write_failed",
            extra={"error": str(exc), "path": str(writer.path)},
        )
        return

    logger.info(
        "live_levels_written",
        extra={
            "symbol": live.symbol,
            "bar": live.engine.last_bar,
            "close_time_ms": bar.close_time_ms,
            "count": len(records),
        },
    )


async def _consume_stream(
    settings: Settings,
    logger: logging.Logger,
    shutdown_event: asyncio.Event,
    live: LiveLevels,
    writer: LevelWriter,
) -> None:
    streams = _subscribe_streams(live.symbol, settings.live_interval())

    async with websockets.connect(
        settings.BINANCE_FUTURES_WS_URL,
        **_websocket_connect_kwargs(),
    ) as ws:
        logger.info(
            "live_connected",
            extra={"url": settings.BINANCE_FUTURES_WS_URL, "stream_count": len(streams)},
        )
        await ws.send(
            json.dumps(
                {"method": "SUBSCRIBE", "params": streams, "id": 1},
                ensure_ascii=True,
                separators=(",", ":"),
            )
        )
        logger.info("live_subscribed", extra={"streams": streams})

        while not shutdown_event.is_set():
            try:
                raw_message = await asyncio.wait_for(ws.recv(), timeout=_WS_RECV_TIMEOUT_S)
            except asyncio.TimeoutError:
                continue
            except ConnectionClosed:
                raise

            _handle_message(raw_message, live, writer, logger)


async def _run() -> int:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    logger = logging.getLogger(__name__)
    shutdown_event = asyncio.Event()

    symbol = settings.live_symbol()
    interval = settings.live_interval()
    if not symbol:
        logger.error("live_invalid_symbol")
        return 1
    if not interval:
        logger.error("live_invalid_interval")
        return 1

    writer = LevelWriter(settings.LEVELS_PATH)
    try:
        writer.open()
    except OSError as exc:
        logger.error(
            "live_levels_path_error",
            extra={"path": settings.LEVELS_PATH, "error": str(exc)},
        )
        return 1

    config = settings.engine_config()
    live = LiveLevels(symbol, config, session_offset_minutes=settings.SESSION_START_OFFSET_MINUTES)

    _install_signal_handlers(shutdown_event, logger)
    logger.info(
        "live_startup",
        extra={
            "symbol": symbol,
            "interval": interval,
            "swing_period": config.swing_period,
            "lookback_period": config.lookback_period,
            "timeframe": config.timeframe.value,
            "levels_path": settings.LEVELS_PATH,
            "url": settings.BINANCE_FUTURES_WS_URL,
        },
    )

    backoff_s = _RECONNECT_INITIAL_BACKOFF_S
    try:
        while not shutdown_event.is_set():
            try:
                await _consume_stream(
                    settings=settings,
                    logger=logger,
                    shutdown_event=shutdown_event,
                    live=live,
                    writer=writer,
                )
                backoff_s = _RECONNECT_INITIAL_BACKOFF_S
            except asyncio.CancelledError:
                raise
            except (WebSocketException, OSError, asyncio.TimeoutError) as exc:
                if shutdown_event.is_set():
                    break
                logger.warning(
                    "live_connection_lost",
                    extra={"error": str(exc), "reconnect_in_s": backoff_s},
                )
                try:
                    await asyncio.wait_for(shutdown_event.wait(), timeout=backoff_s)
                except asyncio.TimeoutError:
                    pass
                backoff_s = min(backoff_s * 2, _RECONNECT_MAX_BACKOFF_S)
    except EngineInvariantError as exc:
        logger.error("live_engine_failed", extra={"symbol": symbol, "error": str(exc)})
        return 1
    finally:
        writer.close()

    logger.info("live_shutdown", extra={"bars": len(live.series), "signals": len(live.engine.tracker)})
    return 0


def main() -> int:
    """Run the live swing level tracker until interrupted."""

    try:
        return asyncio.run(_run())
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
