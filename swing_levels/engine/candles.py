"""In-memory candle source feeding the swing engine by bar index."""

import math
from typing import Protocol

from swing_levels.core.time_utils import session_day
from swing_levels.core.types import Bar


class CandleSource(Protocol):
    """Random-access, time-ordered bar history addressed by index."""

    def __len__(self) -> int: ...

    def get_bar(self, index: int) -> Bar: ...

    def is_new_session(self, index: int) -> bool: ...


class CandleSeries:
    """List-backed candle source; the last bar may be replaced while it is still forming."""

    def __init__(self, bars: list[Bar] | None = None, session_offset_minutes: int = 0) -> None:
        self.session_offset_minutes = session_offset_minutes
        self._bars: list[Bar] = []
        for bar in bars or ():
            self.append(bar)

    def __len__(self) -> int:
        return len(self._bars)

    def last(self) -> Bar | None:
        return self._bars[-1] if self._bars else None

    def append(self, bar: Bar) -> int:
        """Add a new bar and return its index."""

        previous = self.last()
        if previous is not None and bar.open_time_ms <= previous.open_time_ms:
            raise ValueError(
                f"bar open time {bar.open_time_ms} does not advance past {previous.open_time_ms}"
            )
        self._bars.append(bar)
        return len(self._bars) - 1

    def update_last(self, bar: Bar) -> int:
        """Replace the in-progress last bar with a newer version of itself."""

        previous = self.last()
        if previous is None:
            raise IndexError("no bar to update")
        if bar.open_time_ms != previous.open_time_ms:
            raise ValueError("updated bar must keep the open time of the bar it replaces")
        self._bars[-1] = bar
        return len(self._bars) - 1

    def get_bar(self, index: int) -> Bar:
        if index < 0:
            raise IndexError(f"bar index {index} is before the start of history")
        return self._bars[index]

    def is_new_session(self, index: int) -> bool:
        if index == 0:
            return True
        current = self.get_bar(index)
        previous = self.get_bar(index - 1)
        return session_day(current.open_time_ms, self.session_offset_minutes) != session_day(
            previous.open_time_ms, self.session_offset_minutes
        )


def bar_duration_seconds(bar: Bar) -> int:
    """Duration of a bar, tolerating both inclusive and exclusive close timestamps."""

    return max(0, math.ceil((bar.close_time_ms - bar.open_time_ms) / 1000.0))
