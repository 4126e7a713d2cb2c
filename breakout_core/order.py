"""
Order: one trading intent sent (or about to be sent) to the exchange.

Immutable. Status changes produce a new instance via `Order.with_status`; the
tracker holds the current version.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from breakout_core.signal import Action, Side


class OrderStatus(Enum):
    PENDING = "pending"
    OPEN = "open"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.REJECTED})


def new_client_order_id() -> str:
    """Locally generated id for one trading intent; stable across retries."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Order:
    """An order as tracked locally. exchange_order_id is set once acknowledged."""

    client_order_id: str
    product_id: str
    side: Side
    size: float
    price: float
    action: Action
    status: OrderStatus = OrderStatus.PENDING
    exchange_order_id: str | None = None
    message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def lookup_id(self) -> str:
        """Id to query status with. Unacknowledged orders are looked up by client id."""
        if self.exchange_order_id:
            return self.exchange_order_id
        return f"client:{self.client_order_id}"

    def with_status(
        self,
        status: OrderStatus,
        *,
        exchange_order_id: str | None = None,
        message: str | None = None,
        at: datetime | None = None,
    ) -> Order:
        return dataclasses.replace(
            self,
            status=status,
            exchange_order_id=exchange_order_id or self.exchange_order_id,
            message=message if message is not None else self.message,
            updated_at=at or datetime.now(timezone.utc),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_order_id": self.client_order_id,
            "product_id": self.product_id,
            "side": self.side.value,
            "size": self.size,
            "price": self.price,
            "action": self.action.value,
            "status": self.status.value,
            "exchange_order_id": self.exchange_order_id,
            "message": self.message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Order:
        created = data.get("created_at")
        updated = data.get("updated_at")
        return cls(
            client_order_id=data["client_order_id"],
            product_id=data["product_id"],
            side=Side(data["side"]),
            size=float(data["size"]),
            price=float(data["price"]),
            action=Action(data["action"]),
            status=OrderStatus(data["status"]),
            exchange_order_id=data.get("exchange_order_id"),
            message=data.get("message"),
            created_at=datetime.fromisoformat(created) if created else None,
            updated_at=datetime.fromisoformat(updated) if updated else None,
        )
