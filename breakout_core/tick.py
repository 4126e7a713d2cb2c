"""
Tick: one timestamped price observation from the market feed.

Immutable. Produced by the feed, consumed once by an instrument worker.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class Tick:
    """Price observation. high/low default to price when the feed has no range."""

    timestamp: datetime
    price: float
    high: float | None = None
    low: float | None = None
    product_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.timestamp, datetime):
            if isinstance(self.timestamp, (int, float)):
                ts = datetime.fromtimestamp(self.timestamp, tz=timezone.utc)
            else:
                ts = datetime.fromisoformat(str(self.timestamp))
            object.__setattr__(self, "timestamp", ts)
        object.__setattr__(self, "price", float(self.price))
        object.__setattr__(self, "high", self.price if self.high is None else float(self.high))
        object.__setattr__(self, "low", self.price if self.low is None else float(self.low))
