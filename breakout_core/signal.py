"""
Trading intent vocabulary: order side and decision actions.

No execution here, just direction.
"""

from enum import Enum


class Side(Enum):
    BUY = "BUY"
    SELL = "SELL"


class Action(Enum):
    """What the decision engine wants done for an instrument on this tick."""

    HOLD = "hold"
    ENTER_LONG = "enter_long"
    EXIT_LONG = "exit_long"
    ENTER_SHORT = "enter_short"
    EXIT_SHORT = "exit_short"

    @property
    def side(self) -> Side:
        """Order side that carries out the action. HOLD has none."""
        if self in (Action.ENTER_LONG, Action.EXIT_SHORT):
            return Side.BUY
        if self in (Action.ENTER_SHORT, Action.EXIT_LONG):
            return Side.SELL
        raise ValueError("HOLD has no order side")
