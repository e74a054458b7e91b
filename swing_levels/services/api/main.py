"""FastAPI service exposing health metadata and on-demand swing level evaluation."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from swing_levels.core.config import get_settings
from swing_levels.core.errors import ConfigurationError, EngineInvariantError
from swing_levels.core.logging import configure_logging
from swing_levels.core.types import Bar, EngineConfig, SwingKind, TiePolicy, Timeframe
from swing_levels.engine.candles import CandleSeries
from swing_levels.engine.swing_engine import SwingEngine

settings = get_settings()
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


class BarIn(BaseModel):
    """One OHLCV bar in request order."""

    open_time_ms: int
    close_time_ms: int
    o: float
    h: float
    l: float
    c: float
    v: float = 0.0


class LevelsRequest(BaseModel):
    """Bars to evaluate plus optional overrides of the configured engine parameters."""

    bars: list[BarIn] = Field(min_length=1)
    swing_period: int | None = Field(default=None, gt=0)
    lookback_period: int | None = Field(default=None, gt=0)
    timeframe: Timeframe | None = None
    tie_policy: TiePolicy | None = None
    hide_closed: bool | None = None
    kind: SwingKind | None = None
    first_bar: int | None = Field(default=None, ge=0)
    last_bar: int | None = Field(default=None, ge=0)


class LevelOut(BaseModel):
    """A tracked swing level; ``end_bar`` is 0 while the level is unbroken."""

    kind: SwingKind
    start_bar: int
    end_bar: int
    price_level: float


class LevelsResponse(BaseModel):
    bars: int
    aggregated: bool
    levels: list[LevelOut]


def _engine_config(request: LevelsRequest) -> EngineConfig:
    base = settings.engine_config()
    return EngineConfig(
        swing_period=request.swing_period if request.swing_period is not None else base.swing_period,
        lookback_period=(
            request.lookback_period if request.lookback_period is not None else base.lookback_period
        ),
        timeframe=request.timeframe if request.timeframe is not None else base.timeframe,
        tie_policy=request.tie_policy if request.tie_policy is not None else base.tie_policy,
        hide_closed=request.hide_closed if request.hide_closed is not None else base.hide_closed,
    )


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Log startup metadata for operational visibility."""

    logger.info(
        "api_startup",
        extra={"service": "api", "env": settings.ENV, "version": settings.VERSION},
    )
    yield


app = FastAPI(title=settings.APP_NAME, version=settings.VERSION, lifespan=lifespan)


@app.get("/health")
def health() -> dict[str, str]:
    """Return process liveness status."""

    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return application metadata from shared settings."""

    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "env": settings.ENV,
    }


@app.get("/config")
def config() -> dict[str, object]:
    """Return the engine configuration requests are evaluated with by default."""

    engine_config = settings.engine_config()
    return {
        "swing_period": engine_config.swing_period,
        "lookback_period": engine_config.lookback_period,
        "timeframe": engine_config.timeframe.value,
        "tie_policy": engine_config.tie_policy.value,
        "hide_closed": engine_config.hide_closed,
    }


@app.post("/levels", response_model=LevelsResponse)
def levels(request: LevelsRequest) -> LevelsResponse:
    """Run the engine over the posted bars and return the levels still tracked at the end."""

    try:
        engine_config = _engine_config(request)
        bars = [Bar(**bar.model_dump()) for bar in request.bars]
        series = CandleSeries(bars, session_offset_minutes=settings.SESSION_START_OFFSET_MINUTES)
    except (ConfigurationError, ValueError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    engine = SwingEngine(series, engine_config)
    try:
        for bar_index in range(len(series)):
            engine.step(bar_index)
    except EngineInvariantError as exc:
        logger.warning("api_levels_inconsistent_bars", extra={"error": str(exc)})
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    first_bar = request.first_bar if request.first_bar is not None else 0
    last_bar = request.last_bar if request.last_bar is not None else engine.last_bar
    signals = engine.visible_signals(first_bar, last_bar, kind=request.kind)

    logger.info(
        "api_levels_evaluated",
        extra={"bars": len(series), "levels": len(signals), "timeframe": engine_config.timeframe.value},
    )
    return LevelsResponse(
        bars=len(series),
        aggregated=engine.aggregated,
        levels=[LevelOut(**signal.to_dict()) for signal in signals],
    )
