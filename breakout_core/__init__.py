"""
breakout-core: streaming Donchian channel to exchange execution.

Rolling windows feed a channel signal engine; a per-instrument decision engine
turns signals into at most one in-flight order; an authenticated REST client
places, polls and cancels those orders.
"""

__version__ = "0.1.0"

from breakout_core.channel import ChannelReading, ChannelSignal, ChannelSignalEngine, ChannelState
from breakout_core.decision import DecisionEngine
from breakout_core.order import Order, OrderStatus
from breakout_core.position import Position, PositionSide
from breakout_core.signal import Action, Side
from breakout_core.tick import Tick
from breakout_core.tracker import OrderTracker
from breakout_core.window import ExtremumKind, RollingWindow

__all__ = [
    "Action",
    "ChannelReading",
    "ChannelSignal",
    "ChannelSignalEngine",
    "ChannelState",
    "DecisionEngine",
    "ExtremumKind",
    "Order",
    "OrderStatus",
    "OrderTracker",
    "Position",
    "PositionSide",
    "RollingWindow",
    "Side",
    "Tick",
]
