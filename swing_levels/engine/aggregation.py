"""Incremental folding of source bars into coarser synthetic timeframe periods."""

import logging
import math
from collections import deque

from swing_levels.core.errors import BarSequenceError, EngineInvariantError
from swing_levels.core.time_utils import period_begin_ms
from swing_levels.core.types import Bar, Timeframe
from swing_levels.engine.candles import CandleSource

logger = logging.getLogger(__name__)


class AggregatedPeriod:
    """A synthetic bar built from consecutive source bars.

    The most recently folded source bar is kept pending: its volume and range
    only become part of the confirmed totals once a different bar index is
    folded in (or the period is closed). Re-folding the same index replaces the
    pending bar, so a still-forming source bar is never counted twice.
    """

    __slots__ = (
        "start_bar",
        "end_bar",
        "end_time_ms",
        "o",
        "c",
        "committed_volume",
        "closed",
        "_confirmed_h",
        "_confirmed_h_bar",
        "_confirmed_l",
        "_confirmed_l_bar",
        "_pending",
    )

    def __init__(self, bar_index: int, bar: Bar) -> None:
        self.start_bar = bar_index
        self.end_bar = bar_index
        self.end_time_ms = bar.close_time_ms
        self.o = bar.o
        self.c = bar.c
        self.committed_volume = 0.0
        self.closed = False
        self._confirmed_h = -math.inf
        self._confirmed_h_bar = bar_index
        self._confirmed_l = math.inf
        self._confirmed_l_bar = bar_index
        self._pending: Bar | None = None
        self.fold(bar_index, bar)

    @property
    def h(self) -> float:
        if self._pending is not None and self._pending.h > self._confirmed_h:
            return self._pending.h
        return self._confirmed_h

    @property
    def l(self) -> float:
        if self._pending is not None and self._pending.l < self._confirmed_l:
            return self._pending.l
        return self._confirmed_l

    @property
    def high_bar(self) -> int:
        if self._pending is not None and self._pending.h > self._confirmed_h:
            return self.end_bar
        return self._confirmed_h_bar

    @property
    def low_bar(self) -> int:
        if self._pending is not None and self._pending.l < self._confirmed_l:
            return self.end_bar
        return self._confirmed_l_bar

    @property
    def buffered_volume(self) -> float:
        return self._pending.v if self._pending is not None else 0.0

    @property
    def volume(self) -> float:
        return self.committed_volume + self.buffered_volume

    def fold(self, bar_index: int, bar: Bar) -> None:
        """Fold a source bar in; repeating the pending index replaces its values."""

        if self.closed:
            raise EngineInvariantError(f"period starting at bar {self.start_bar} is already closed")
        if bar_index < self.end_bar:
            raise BarSequenceError(f"bar {bar_index} precedes period end bar {self.end_bar}")

        if bar_index != self.end_bar:
            self._commit_pending()
        if bar_index == self.start_bar:
            self.o = bar.o

        self._pending = bar
        self.end_bar = bar_index
        self.end_time_ms = bar.close_time_ms
        self.c = bar.c
        self._check_invariants()

    def close(self) -> None:
        """Confirm the pending bar and freeze the period."""

        self._commit_pending()
        self.closed = True

    def _commit_pending(self) -> None:
        pending = self._pending
        if pending is None:
            return
        self.committed_volume += pending.v
        if pending.h > self._confirmed_h:
            self._confirmed_h = pending.h
            self._confirmed_h_bar = self.end_bar
        if pending.l < self._confirmed_l:
            self._confirmed_l = pending.l
            self._confirmed_l_bar = self.end_bar
        self._pending = None

    def _check_invariants(self) -> None:
        high = self.h
        low = self.l
        if high < max(self.o, self.c) or low > min(self.o, self.c) or high < low:
            raise EngineInvariantError(
                f"period starting at bar {self.start_bar} is inconsistent: "
                f"o={self.o} h={high} l={low} c={self.c}"
            )

    def __repr__(self) -> str:
        return (
            f"AggregatedPeriod(start_bar={self.start_bar}, end_bar={self.end_bar}, "
            f"o={self.o}, h={self.h}, l={self.l}, c={self.c}, volume={self.volume})"
        )


class PeriodAggregator:
    """Builds coarser periods from a gapless stream of source bar indices.

    Indexing is newest-first: ``aggregator[0]`` is the open period,
    ``aggregator[1]`` the most recently closed one.
    """

    def __init__(
        self,
        timeframe: Timeframe,
        source: CandleSource,
        max_periods: int | None = None,
    ) -> None:
        if timeframe is Timeframe.CHART:
            raise ValueError("chart timeframe does not aggregate")
        self.timeframe = timeframe
        self._source = source
        self._periods: deque[AggregatedPeriod] = deque(maxlen=max_periods)
        self._last_bar = -1
        self.is_new_period = False

    def __len__(self) -> int:
        return len(self._periods)

    def __getitem__(self, offset: int) -> AggregatedPeriod:
        return self._periods[len(self._periods) - 1 - offset]

    def periods(self) -> tuple[AggregatedPeriod, ...]:
        """Return retained periods oldest-first."""

        return tuple(self._periods)

    def ingest(self, bar_index: int) -> bool:
        """Fold ``bar_index`` into the current period; return True if it opened a new one."""

        if bar_index < max(self._last_bar, 0) or bar_index > self._last_bar + 1:
            raise BarSequenceError(
                f"expected bar {max(self._last_bar, 0)} or {self._last_bar + 1}, got {bar_index}"
            )

        self.is_new_period = False
        bar = self._source.get_bar(bar_index)

        if not self._periods:
            self._open_period(bar_index, bar)
        elif self._periods[-1].start_bar == bar_index:
            # the bar that opened the current period is being re-ingested
            self._periods[-1].fold(bar_index, bar)
        elif self._crosses_boundary(bar_index, bar):
            self._periods[-1].close()
            self._open_period(bar_index, bar)
        else:
            self._periods[-1].fold(bar_index, bar)

        self._last_bar = bar_index
        return self.is_new_period

    def _crosses_boundary(self, bar_index: int, bar: Bar) -> bool:
        if self.timeframe.is_session:
            return self._source.is_new_session(bar_index)
        begin_ms = period_begin_ms(bar.open_time_ms, self.timeframe.minutes)
        return begin_ms >= self._periods[-1].end_time_ms

    def _open_period(self, bar_index: int, bar: Bar) -> None:
        self._periods.append(AggregatedPeriod(bar_index, bar))
        self.is_new_period = True
        logger.debug(
            "aggregated_period_opened",
            extra={"timeframe": self.timeframe.value, "start_bar": bar_index},
        )
