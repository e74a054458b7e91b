"""Environment-driven settings shared by all services to keep runtime behavior deterministic."""

from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from swing_levels.core.types import EngineConfig, TiePolicy, Timeframe


class Settings(BaseSettings):
    """Simple application settings loaded from environment variables or a local .env file."""

    APP_NAME: str = "Swing Levels"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    VERSION: str = "0.1.0"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    SWING_PERIOD: int = Field(default=2, gt=0)
    LOOKBACK_PERIOD: int = Field(default=100, gt=0)
    TIMEFRAME: Timeframe = Timeframe.CHART
    TIE_POLICY: TiePolicy = TiePolicy.INDEPENDENT
    HIDE_CLOSED_LEVELS: bool = False
    SESSION_START_OFFSET_MINUTES: int = Field(default=0, ge=-1440, le=1440)
    REPLAY_BARS_PATH: str = "/app/data/bars.jsonl"
    LEVELS_PATH: str = "/app/data/swing_levels.jsonl"
    LIVE_SYMBOL: str = "ETHUSDT"
    LIVE_INTERVAL: str = "1m"
    BINANCE_FUTURES_WS_URL: str = "wss://fstream.binance.com/ws"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("TIMEFRAME", "TIE_POLICY", mode="before")
    @classmethod
    def _normalize_choice(cls, value: Any) -> Any:
        """Accept enum names in any case, e.g. ``M15`` or ``High_Priority``."""

        if isinstance(value, str):
            return value.strip().lower()
        return value

    def live_symbol(self) -> str:
        """Return the normalized symbol for the live feed."""

        return self.LIVE_SYMBOL.strip().upper()

    def live_interval(self) -> str:
        """Return the normalized kline interval for the live feed."""

        return self.LIVE_INTERVAL.strip().lower()

    def engine_config(self) -> EngineConfig:
        """Build the immutable engine configuration from these settings."""

        return EngineConfig(
            swing_period=self.SWING_PERIOD,
            lookback_period=self.LOOKBACK_PERIOD,
            timeframe=self.TIMEFRAME,
            tie_policy=self.TIE_POLICY,
            hide_closed=self.HIDE_CLOSED_LEVELS,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""

    return Settings()
