"""
Position: the decision engine's view of one instrument.

`side` may be speculative while an order is in flight; `confirmed_side` is the
last side backed by a fill and is what the position reverts to on a reject or
cancel.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class PositionSide(Enum):
    FLAT = "flat"
    LONG = "long"
    SHORT = "short"


@dataclass
class Position:
    """Mutable; updated only by the DecisionEngine that owns it."""

    instrument: str
    side: PositionSide = PositionSide.FLAT
    confirmed_side: PositionSide = PositionSide.FLAT
    open_order_id: str | None = None

    @property
    def pending(self) -> bool:
        return self.open_order_id is not None

    def begin(self, target: PositionSide, client_order_id: str) -> None:
        """Move speculatively to target while client_order_id is outstanding."""
        self.side = target
        self.open_order_id = client_order_id

    def confirm(self) -> None:
        self.confirmed_side = self.side
        self.open_order_id = None

    def revert(self) -> None:
        self.side = self.confirmed_side
        self.open_order_id = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument": self.instrument,
            "side": self.side.value,
            "confirmed_side": self.confirmed_side.value,
            "open_order_id": self.open_order_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Position:
        return cls(
            instrument=data["instrument"],
            side=PositionSide(data["side"]),
            confirmed_side=PositionSide(data["confirmed_side"]),
            open_order_id=data.get("open_order_id"),
        )
