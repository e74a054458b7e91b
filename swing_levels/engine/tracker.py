"""Lifecycle of detected swing levels: breach closing and age-based eviction."""

import bisect
import logging
from collections.abc import Iterable

from swing_levels.core.types import Bar, Signal, SwingKind

logger = logging.getLogger(__name__)


class LevelTracker:
    """Owns the open and recently closed swing levels, one list per kind, ordered by start bar."""

    def __init__(self, lookback_period: int) -> None:
        if lookback_period <= 0:
            raise ValueError("lookback_period must be positive")
        self.lookback_period = lookback_period
        self._signals: dict[SwingKind, list[Signal]] = {SwingKind.HIGH: [], SwingKind.LOW: []}

    def __len__(self) -> int:
        return sum(len(signals) for signals in self._signals.values())

    def add(self, signal: Signal) -> None:
        bisect.insort_right(self._signals[signal.kind], signal, key=lambda item: item.start_bar)

    def update(self, bar_index: int, bar: Bar) -> tuple[list[Signal], int]:
        """Close breached levels at ``bar_index`` and evict aged ones.

        Returns the signals closed by this bar and the number evicted. A
        repeated ``bar_index`` re-tests the breaches an earlier pass on that
        bar made, so a revised forming bar can leave a level open again.
        """

        if bar_index > 0:
            for signals in self._signals.values():
                for signal in signals:
                    if signal.end_bar == bar_index:
                        signal.end_bar = 0

        breached: list[Signal] = []
        for signal in self._signals[SwingKind.HIGH]:
            if signal.is_open and bar.h >= signal.price_level:
                signal.end_bar = bar_index
                breached.append(signal)
        for signal in self._signals[SwingKind.LOW]:
            if signal.is_open and bar.l <= signal.price_level:
                signal.end_bar = bar_index
                breached.append(signal)

        evicted = 0
        for kind, signals in self._signals.items():
            kept = [signal for signal in signals if bar_index - signal.start_bar <= self.lookback_period]
            evicted += len(signals) - len(kept)
            self._signals[kind] = kept

        return breached, evicted

    def signals(self, kind: SwingKind | None = None) -> tuple[Signal, ...]:
        """Return a snapshot ordered by start bar; highs precede lows on equal starts."""

        if kind is not None:
            return tuple(self._signals[kind])
        merged = self._signals[SwingKind.HIGH] + self._signals[SwingKind.LOW]
        return tuple(sorted(merged, key=lambda item: item.start_bar))

    def visible(
        self,
        first_bar: int,
        last_bar: int,
        kind: SwingKind | None = None,
        hide_closed: bool = False,
    ) -> tuple[Signal, ...]:
        """Return levels that intersect the ``[first_bar, last_bar]`` bar range.

        An open level is visible once it has started; a closed one while its
        end lies inside or after the range.
        """

        return tuple(_filter_visible(self.signals(kind), first_bar, last_bar, hide_closed))


def _filter_visible(
    signals: Iterable[Signal], first_bar: int, last_bar: int, hide_closed: bool
) -> Iterable[Signal]:
    for signal in signals:
        if signal.is_open:
            if signal.start_bar <= last_bar:
                yield signal
        elif not hide_closed and signal.end_bar >= first_bar:
            yield signal
