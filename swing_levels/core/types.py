"""Shared lightweight types to keep engine interfaces explicit and typed."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from swing_levels.core.errors import ConfigurationError


class SwingKind(str, Enum):
    """Side of a detected swing level."""

    HIGH = "high"
    LOW = "low"


class TiePolicy(str, Enum):
    """How a bar that is both a swing high and a swing low is reported."""

    INDEPENDENT = "independent"
    HIGH_PRIORITY = "high_priority"


class Timeframe(str, Enum):
    """Aggregation timeframe; CHART keeps the source bars as they are."""

    CHART = "chart"
    M1 = "m1"
    M5 = "m5"
    M15 = "m15"
    M30 = "m30"
    H1 = "h1"
    H4 = "h4"
    DAILY = "daily"

    @property
    def minutes(self) -> int:
        return _TIMEFRAME_MINUTES[self]

    @property
    def seconds(self) -> int:
        return 60 * _TIMEFRAME_MINUTES[self]

    @property
    def is_session(self) -> bool:
        return self is Timeframe.DAILY


_TIMEFRAME_MINUTES = {
    Timeframe.CHART: 0,
    Timeframe.M1: 1,
    Timeframe.M5: 5,
    Timeframe.M15: 15,
    Timeframe.M30: 30,
    Timeframe.H1: 60,
    Timeframe.H4: 240,
    Timeframe.DAILY: 1440,
}

_RECALC_FIELDS = ("swing_period", "lookback_period", "timeframe", "tie_policy")


@dataclass(frozen=True, slots=True)
class Bar:
    """Immutable OHLCV observation supplied by the candle source."""

    open_time_ms: int
    close_time_ms: int
    o: float
    h: float
    l: float
    c: float
    v: float

    def __post_init__(self) -> None:
        if self.h < self.l:
            raise ValueError(f"bar high {self.h} is below its low {self.l}")
        if not (self.l <= self.o <= self.h and self.l <= self.c <= self.h):
            raise ValueError(
                f"bar open {self.o} or close {self.c} lies outside [{self.l}, {self.h}]"
            )


@dataclass(slots=True)
class Signal:
    """A swing level under observation until breached or aged out.

    ``end_bar`` stays 0 while the level is open; it is final once a later bar is processed.
    """

    start_bar: int
    price_level: float
    kind: SwingKind
    end_bar: int = 0

    @property
    def is_open(self) -> bool:
        return self.end_bar == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "start_bar": self.start_bar,
            "end_bar": self.end_bar,
            "price_level": self.price_level,
        }


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Validated engine parameters; any change except ``hide_closed`` forces a recalculation."""

    swing_period: int = 2
    lookback_period: int = 100
    timeframe: Timeframe = Timeframe.CHART
    tie_policy: TiePolicy = TiePolicy.INDEPENDENT
    hide_closed: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.swing_period, bool) or not isinstance(self.swing_period, int):
            raise ConfigurationError("swing_period must be an integer")
        if self.swing_period <= 0:
            raise ConfigurationError(f"swing_period must be positive, got {self.swing_period}")
        if isinstance(self.lookback_period, bool) or not isinstance(self.lookback_period, int):
            raise ConfigurationError("lookback_period must be an integer")
        if self.lookback_period <= 0:
            raise ConfigurationError(f"lookback_period must be positive, got {self.lookback_period}")
        try:
            object.__setattr__(self, "timeframe", Timeframe(self.timeframe))
            object.__setattr__(self, "tie_policy", TiePolicy(self.tie_policy))
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

    def requires_recalculation(self, other: "EngineConfig") -> bool:
        """Return True when switching to ``other`` invalidates derived state."""

        return any(getattr(self, name) != getattr(other, name) for name in _RECALC_FIELDS)
