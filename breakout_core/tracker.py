"""
OrderTracker: in-memory record of orders placed by this process.

Pure bookkeeping, no network or signal logic. Guarantees at most one
non-terminal order per instrument; terminal orders never change.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from breakout_core.order import Order, OrderStatus


class OrderTracker:
    """
    Orders keyed by client_order_id, plus the active (non-terminal) order per
    instrument. Instruments are identified by the order's product_id.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._active: dict[str, str] = {}
        self._poll_attempts: dict[str, int] = {}

    def record(self, order: Order) -> None:
        """Track a new order. Raises ValueError if the instrument already has an active order."""
        if order.client_order_id in self._orders:
            raise ValueError(f"order {order.client_order_id} already recorded")
        active = self.active_order_for(order.product_id)
        if active is not None and not order.is_terminal:
            raise ValueError(
                f"{order.product_id} already has active order {active.client_order_id} ({active.status.value})"
            )
        self._orders[order.client_order_id] = order
        if not order.is_terminal:
            self._active[order.product_id] = order.client_order_id

    def update_status(
        self,
        client_order_id: str,
        status: OrderStatus,
        *,
        exchange_order_id: str | None = None,
        message: str | None = None,
        at: datetime | None = None,
    ) -> Order:
        """
        Apply a status update and return the stored order.
        Updates to an order already in a terminal state are ignored.
        """
        current = self._orders[client_order_id]
        if current.is_terminal:
            return current
        updated = current.with_status(status, exchange_order_id=exchange_order_id, message=message, at=at)
        self._orders[client_order_id] = updated
        if updated.is_terminal and self._active.get(updated.product_id) == client_order_id:
            del self._active[updated.product_id]
            self._poll_attempts.pop(client_order_id, None)
        return updated

    def active_order_for(self, instrument: str) -> Order | None:
        cid = self._active.get(instrument)
        return self._orders[cid] if cid is not None else None

    def get(self, client_order_id: str) -> Order | None:
        return self._orders.get(client_order_id)

    def orders(self) -> list[Order]:
        """All tracked orders in insertion order."""
        return list(self._orders.values())

    # --- retry bookkeeping ---

    def note_poll(self, client_order_id: str) -> int:
        """Count one status poll for an active order; returns the running total."""
        self._poll_attempts[client_order_id] = self._poll_attempts.get(client_order_id, 0) + 1
        return self._poll_attempts[client_order_id]

    def poll_attempts(self, client_order_id: str) -> int:
        return self._poll_attempts.get(client_order_id, 0)

    # --- persistence hooks ---

    def snapshot(self) -> dict[str, Any]:
        return {
            "orders": [o.to_dict() for o in self._orders.values()],
            "poll_attempts": dict(self._poll_attempts),
        }

    def restore(self, data: dict[str, Any]) -> None:
        """Replace tracker contents with a snapshot produced by `snapshot()`."""
        self._orders.clear()
        self._active.clear()
        self._poll_attempts = dict(data.get("poll_attempts", {}))
        for raw in data.get("orders", []):
            self.record(Order.from_dict(raw))
