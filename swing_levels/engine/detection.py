"""Symmetric-window swing high/low classification.

A center bar is a swing high when no bar within ``swing_period`` positions on
either side has a strictly higher high; equal highs do not disqualify it. Swing
lows mirror this with lows. The comparison is therefore inclusive (``>=`` for
highs, ``<=`` for lows), so a flat plateau marks every bar on it as a swing.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from swing_levels.core.types import TiePolicy


class PriceRange(Protocol):
    """Anything exposing a high and a low: source bars and aggregated periods."""

    @property
    def h(self) -> float: ...

    @property
    def l(self) -> float: ...


@dataclass(frozen=True, slots=True)
class SwingScan:
    """Outcome of classifying one center position."""

    is_high: bool
    is_low: bool

    @property
    def is_swing(self) -> bool:
        return self.is_high or self.is_low


def classify_swing(
    window: Sequence[PriceRange],
    swing_period: int,
    tie_policy: TiePolicy = TiePolicy.INDEPENDENT,
) -> SwingScan:
    """Classify the middle element of a ``2 * swing_period + 1`` window.

    With ``TiePolicy.HIGH_PRIORITY`` a bar that qualifies on both sides is
    reported as a swing high only; ``TiePolicy.INDEPENDENT`` reports both.
    """

    if swing_period <= 0:
        raise ValueError("swing_period must be positive")
    if len(window) != 2 * swing_period + 1:
        raise ValueError(f"window must hold {2 * swing_period + 1} bars, got {len(window)}")

    center = swing_period
    center_bar = window[center]
    is_high = True
    is_low = True

    for i in range(1, swing_period + 1):
        prev_bar = window[center - i]
        next_bar = window[center + i]

        if center_bar.h < prev_bar.h or center_bar.h < next_bar.h:
            is_high = False
        if center_bar.l > prev_bar.l or center_bar.l > next_bar.l:
            is_low = False

        if not is_high and not is_low:
            break

    if tie_policy is TiePolicy.HIGH_PRIORITY and is_high:
        is_low = False

    return SwingScan(is_high=is_high, is_low=is_low)
