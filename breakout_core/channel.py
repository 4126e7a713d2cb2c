"""
Donchian channel signal engine.

Two rolling windows (highs -> max, lows -> min), independently sized, produce
upper/lower/mid bands and a classification on every tick.

Tie policy: a price exactly on a band counts as the boundary event
(BREAKOUT at upper, BREAKDOWN at lower). BREAKOUT is tested first, so a
degenerate channel with upper == lower == price classifies as BREAKOUT.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from breakout_core.tick import Tick
from breakout_core.window import ExtremumKind, RollingWindow


class ChannelSignal(Enum):
    WARMING = "warming"
    BREAKOUT = "breakout"
    BREAKDOWN = "breakdown"
    INSIDE = "inside"


@dataclass(frozen=True)
class ChannelState:
    """Band values after the latest tick. Superseded on every update."""

    upper: float
    lower: float
    mid: float
    high_period: int
    low_period: int
    warm: bool


@dataclass(frozen=True)
class ChannelReading:
    """Channel state, its classification, and the price it was classified against."""

    state: ChannelState
    signal: ChannelSignal
    price: float


def classify(price: float, state: ChannelState) -> ChannelSignal:
    """Classify price against the bands; boundary ties resolve to the event."""
    if not state.warm:
        return ChannelSignal.WARMING
    if price >= state.upper:
        return ChannelSignal.BREAKOUT
    if price <= state.lower:
        return ChannelSignal.BREAKDOWN
    return ChannelSignal.INSIDE


class ChannelSignalEngine:
    """
    Rolling Donchian channel over a single instrument's tick stream.

    Not safe for concurrent use; one engine per instrument worker.
    """

    def __init__(self, high_period: int, low_period: int) -> None:
        self._highs = RollingWindow(high_period, ExtremumKind.MAX)
        self._lows = RollingWindow(low_period, ExtremumKind.MIN)
        self.high_period = high_period
        self.low_period = low_period
        self._state = ChannelState(
            upper=0.0,
            lower=0.0,
            mid=0.0,
            high_period=high_period,
            low_period=low_period,
            warm=False,
        )

    @property
    def state(self) -> ChannelState:
        return self._state

    def update(self, tick: Tick) -> ChannelReading:
        """Push the tick's high and low, recompute the bands and classify the tick price."""
        if any(math.isnan(v) for v in (tick.price, tick.high, tick.low)):
            raise ValueError(f"tick has NaN values: {tick!r}")
        self._highs.push(tick.high)
        self._lows.push(tick.low)
        upper = self._highs.extremum()
        lower = self._lows.extremum()
        self._state = ChannelState(
            upper=upper,
            lower=lower,
            mid=(upper + lower) / 2,
            high_period=self.high_period,
            low_period=self.low_period,
            warm=self._highs.is_full() and self._lows.is_full(),
        )
        return ChannelReading(state=self._state, signal=classify(tick.price, self._state), price=tick.price)
