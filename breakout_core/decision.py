"""
Decision engine: per-instrument state machine from channel readings to orders.

    FLAT  + BREAKOUT                   -> ENTER_LONG   (LONG, pending)
    FLAT  + BREAKDOWN                  -> ENTER_SHORT  (SHORT, pending)
    LONG  + BREAKDOWN or mid-cross-down -> EXIT_LONG   (FLAT, pending)
    SHORT + BREAKOUT or mid-cross-up    -> EXIT_SHORT  (FLAT, pending)
    anything else                      -> HOLD

No action is emitted while the tracker holds a non-terminal order for the
instrument. Pending sides are confirmed by FILLED and reverted by REJECTED or
CANCELLED.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from breakout_core.channel import ChannelReading, ChannelSignal
from breakout_core.log import EventLogger, StdlibEventLogger
from breakout_core.order import Order, OrderStatus, new_client_order_id
from breakout_core.position import Position, PositionSide
from breakout_core.signal import Action
from breakout_core.tracker import OrderTracker

_TARGETS = {
    Action.ENTER_LONG: PositionSide.LONG,
    Action.ENTER_SHORT: PositionSide.SHORT,
    Action.EXIT_LONG: PositionSide.FLAT,
    Action.EXIT_SHORT: PositionSide.FLAT,
}


class DecisionEngine:
    """
    Owns the Position for one instrument. Reads the OrderTracker for the
    in-flight guard and records the orders it emits there.
    """

    def __init__(
        self,
        instrument: str,
        tracker: OrderTracker,
        *,
        size: float,
        logger: EventLogger | None = None,
        id_factory: Callable[[], str] = new_client_order_id,
    ) -> None:
        if size <= 0:
            raise ValueError(f"order size must be positive, got {size}")
        self.instrument = instrument
        self.tracker = tracker
        self.size = size
        self.position = Position(instrument=instrument)
        self._logger = logger or StdlibEventLogger()
        self._id_factory = id_factory
        self._last_price: float | None = None
        self._last_mid: float | None = None

    def next_action(self, reading: ChannelReading) -> Action:
        """Pure transition table. Ignores the in-flight guard."""
        signal = reading.signal
        if signal == ChannelSignal.WARMING:
            return Action.HOLD
        side = self.position.side
        if side == PositionSide.FLAT:
            if signal == ChannelSignal.BREAKOUT:
                return Action.ENTER_LONG
            if signal == ChannelSignal.BREAKDOWN:
                return Action.ENTER_SHORT
        elif side == PositionSide.LONG:
            if signal == ChannelSignal.BREAKDOWN or self._crossed_mid_down(reading):
                return Action.EXIT_LONG
        elif side == PositionSide.SHORT:
            if signal == ChannelSignal.BREAKOUT or self._crossed_mid_up(reading):
                return Action.EXIT_SHORT
        return Action.HOLD

    def _crossed_mid_down(self, reading: ChannelReading) -> bool:
        if self._last_price is None or self._last_mid is None:
            return False
        return self._last_price >= self._last_mid and reading.price < reading.state.mid

    def _crossed_mid_up(self, reading: ChannelReading) -> bool:
        if self._last_price is None or self._last_mid is None:
            return False
        return self._last_price <= self._last_mid and reading.price > reading.state.mid

    def decide(self, reading: ChannelReading, timestamp: datetime | None = None) -> Order | None:
        """
        Evaluate one reading. Returns the new order (recorded as PENDING) or None.
        At most one order per call, and none while an order is active.
        """
        try:
            action = self.next_action(reading)
            active = self.tracker.active_order_for(self.instrument)
            if action == Action.HOLD:
                return None
            if active is not None:
                self._logger.info(
                    "decision.suppressed",
                    instrument=self.instrument,
                    action=action.value,
                    active_order=active.client_order_id,
                    active_status=active.status.value,
                )
                return None
            ts = timestamp or datetime.now(timezone.utc)
            order = Order(
                client_order_id=self._id_factory(),
                product_id=self.instrument,
                side=action.side,
                size=self.size,
                price=reading.price,
                action=action,
                created_at=ts,
                updated_at=ts,
            )
            self.tracker.record(order)
            previous = self.position.side
            self.position.begin(_TARGETS[action], order.client_order_id)
            self._logger.info(
                "position.pending",
                instrument=self.instrument,
                action=action.value,
                previous=previous.value,
                target=self.position.side.value,
                client_order_id=order.client_order_id,
                price=reading.price,
                upper=reading.state.upper,
                lower=reading.state.lower,
            )
            return order
        finally:
            if reading.state.warm:
                self._last_price = reading.price
                self._last_mid = reading.state.mid

    def apply(self, order: Order) -> None:
        """Fold an order status update into the position."""
        if order.client_order_id != self.position.open_order_id:
            return
        if order.status == OrderStatus.FILLED:
            self.position.confirm()
            self._logger.info(
                "position.confirmed",
                instrument=self.instrument,
                side=self.position.side.value,
                client_order_id=order.client_order_id,
                exchange_order_id=order.exchange_order_id,
            )
        elif order.status in (OrderStatus.REJECTED, OrderStatus.CANCELLED):
            speculative = self.position.side
            self.position.revert()
            self._logger.info(
                "position.reverted",
                instrument=self.instrument,
                status=order.status.value,
                abandoned=speculative.value,
                side=self.position.side.value,
                client_order_id=order.client_order_id,
                reason=order.message,
            )

    # --- persistence hooks ---

    def snapshot(self) -> dict[str, Any]:
        return {
            "position": self.position.to_dict(),
            "last_price": self._last_price,
            "last_mid": self._last_mid,
        }

    def restore(self, data: dict[str, Any]) -> None:
        self.position = Position.from_dict(data["position"])
        self._last_price = data.get("last_price")
        self._last_mid = data.get("last_mid")
