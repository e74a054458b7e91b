"""Streaming swing level engine driven one source bar index at a time.

The caller owns the iteration loop: it appends bars to a candle source and
calls ``SwingEngine.step`` with each index in order. Repeating the latest index
(an in-progress bar whose values changed) is allowed and converges to the same
state as a single call with the final values.
"""

import logging

from swing_levels.core.errors import BarSequenceError
from swing_levels.core.types import EngineConfig, Signal, SwingKind, Timeframe
from swing_levels.engine.aggregation import AggregatedPeriod, PeriodAggregator
from swing_levels.engine.candles import CandleSource, bar_duration_seconds
from swing_levels.engine.detection import classify_swing
from swing_levels.engine.tracker import LevelTracker

logger = logging.getLogger(__name__)

# retained beyond the 2W+1 scan window plus the open period
_PERIOD_MARGIN = 2


class SwingEngine:
    """Owns the per-instance engine state: aggregation, detection and level tracking."""

    def __init__(self, source: CandleSource, config: EngineConfig | None = None) -> None:
        self._source = source
        self.config = config if config is not None else EngineConfig()
        self._reset()

    @property
    def last_bar(self) -> int:
        return self._last_bar

    @property
    def aggregated(self) -> bool:
        return self._aggregator is not None

    @property
    def tracker(self) -> LevelTracker:
        return self._tracker

    def periods(self) -> tuple[AggregatedPeriod, ...]:
        """Return retained aggregated periods oldest-first; empty on the raw path."""

        if self._aggregator is None:
            return ()
        return self._aggregator.periods()

    def step(self, bar_index: int) -> list[Signal]:
        """Process ``bar_index`` and return the signals it created.

        Indices must start at 0 and advance by one; the latest index may be
        repeated while that bar is still forming.
        """

        if bar_index < max(self._last_bar, 0) or bar_index > self._last_bar + 1:
            raise BarSequenceError(
                f"expected bar {max(self._last_bar, 0)} or {self._last_bar + 1}, got {bar_index}"
            )
        if self._last_bar < 0:
            self._resolve_mode()

        bar = self._source.get_bar(bar_index)
        created: list[Signal] = []
        if self._aggregator is not None:
            if self._aggregator.ingest(bar_index):
                created = self._scan_periods()
        elif bar_index != self._last_bar:
            created = self._scan_bars(bar_index)

        for signal in created:
            self._tracker.add(signal)
            logger.debug("swing_signal_created", extra={"bar": bar_index, **signal.to_dict()})

        breached, evicted = self._tracker.update(bar_index, bar)
        for signal in breached:
            logger.debug("swing_signal_breached", extra={"bar": bar_index, **signal.to_dict()})
        if evicted:
            logger.debug("swing_signals_evicted", extra={"bar": bar_index, "count": evicted})

        self._last_bar = bar_index
        return created

    def reconfigure(self, config: EngineConfig) -> None:
        """Apply a new configuration, rebuilding derived state when detection inputs changed."""

        previous = self.config
        self.config = config
        if previous.requires_recalculation(config):
            self.recalculate()

    def recalculate(self) -> None:
        """Discard all derived state and replay every bar processed so far."""

        last_bar = self._last_bar
        self._reset()
        for bar_index in range(last_bar + 1):
            self.step(bar_index)
        logger.info(
            "swing_engine_recalculated",
            extra={
                "bars": last_bar + 1,
                "signals": len(self._tracker),
                "swing_period": self.config.swing_period,
                "lookback_period": self.config.lookback_period,
                "timeframe": self.config.timeframe.value,
            },
        )

    def active_signals(self, kind: SwingKind | None = None) -> tuple[Signal, ...]:
        """Return the tracked open and recently closed levels ordered by start bar."""

        return self._tracker.signals(kind)

    def visible_signals(
        self, first_bar: int, last_bar: int, kind: SwingKind | None = None
    ) -> tuple[Signal, ...]:
        """Return levels intersecting a bar range, honoring the hide-closed display flag."""

        return self._tracker.visible(first_bar, last_bar, kind=kind, hide_closed=self.config.hide_closed)

    def _reset(self) -> None:
        self._tracker = LevelTracker(self.config.lookback_period)
        self._aggregator: PeriodAggregator | None = None
        self._last_bar = -1

    def _resolve_mode(self) -> None:
        timeframe = self.config.timeframe
        if timeframe is Timeframe.CHART:
            return

        source_seconds = bar_duration_seconds(self._source.get_bar(0))
        if source_seconds > timeframe.seconds:
            logger.warning(
                "swing_engine_timeframe_not_coarser",
                extra={"timeframe": timeframe.value, "source_seconds": source_seconds},
            )
            return

        if source_seconds > 0:
            scan_bars = (self.config.swing_period + 1) * (timeframe.seconds // source_seconds)
            if self.config.lookback_period <= scan_bars:
                logger.warning(
                    "swing_engine_lookback_shorter_than_scan",
                    extra={"lookback_period": self.config.lookback_period, "scan_bars": scan_bars},
                )

        self._aggregator = PeriodAggregator(
            timeframe,
            self._source,
            max_periods=2 * self.config.swing_period + 1 + _PERIOD_MARGIN,
        )

    def _scan_bars(self, bar_index: int) -> list[Signal]:
        swing_period = self.config.swing_period
        if bar_index <= 2 * swing_period:
            return []

        center = bar_index - 1 - swing_period
        window = [self._source.get_bar(i) for i in range(center - swing_period, center + swing_period + 1)]
        scan = classify_swing(window, swing_period, self.config.tie_policy)

        center_bar = window[swing_period]
        created: list[Signal] = []
        if scan.is_high:
            created.append(Signal(start_bar=center, price_level=center_bar.h, kind=SwingKind.HIGH))
        if scan.is_low:
            created.append(Signal(start_bar=center, price_level=center_bar.l, kind=SwingKind.LOW))
        return created

    def _scan_periods(self) -> list[Signal]:
        aggregator = self._aggregator
        swing_period = self.config.swing_period
        # offset 0 is the period just opened; scan the closed ones behind it
        if aggregator is None or len(aggregator) <= 2 * swing_period + 1:
            return []

        window = [aggregator[offset] for offset in range(2 * swing_period + 1, 0, -1)]
        scan = classify_swing(window, swing_period, self.config.tie_policy)

        center = window[swing_period]
        created: list[Signal] = []
        if scan.is_high:
            created.append(Signal(start_bar=center.high_bar, price_level=center.h, kind=SwingKind.HIGH))
        if scan.is_low:
            created.append(Signal(start_bar=center.low_bar, price_level=center.l, kind=SwingKind.LOW))
        return created
