"""
Order router: runs exchange requests on a bounded worker pool.

Each job turns a client call into an ExecutionReport; nothing raises back into
the caller. Placement outcomes map as:

    accepted                         -> OPEN
    declined / OrderRejected         -> REJECTED
    SigningError                     -> REJECTED (nothing was sent), flagged
    TransportError / ProtocolError   -> UNKNOWN (reconcile before acting again)

A status lookup answered with 404 is reported UNKNOWN with `not_found` set.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone

from breakout_core.errors import OrderNotFound, OrderRejected, ProtocolError, SigningError, TransportError
from breakout_core.execution.client import ExchangeClient
from breakout_core.execution.types import ExecutionReport, RequestKind
from breakout_core.order import Order, OrderStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RejectedOrderLog:
    """One entry for an order the exchange (or the client) declined."""

    reason: str
    timestamp: datetime
    order: Order


class OrderRouter:
    """
    Dispatch place/poll/cancel jobs for orders. The client (and its HTTP
    session) is shared by every instrument; `timeout` is the deadline passed
    to each client call.
    """

    def __init__(
        self,
        client: ExchangeClient,
        executor: Executor | None = None,
        *,
        max_workers: int = 4,
        timeout: float | None = None,
    ) -> None:
        self.client = client
        self.timeout = timeout
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="exchange")
        self._rejected_log: list[RejectedOrderLog] = []
        self._lock = threading.Lock()

    def place(self, order: Order) -> Future[ExecutionReport]:
        return self._executor.submit(self._place, order)

    def poll(self, order: Order) -> Future[ExecutionReport]:
        return self._executor.submit(self._poll, order)

    def cancel(self, order: Order) -> Future[ExecutionReport]:
        return self._executor.submit(self._cancel, order)

    def shutdown(self, wait: bool = True, cancel_futures: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=cancel_futures)

    def get_rejected_log(self) -> list[RejectedOrderLog]:
        """Orders declined so far, for debugging and reporting."""
        with self._lock:
            return list(self._rejected_log)

    def _reject(self, order: Order, reason: str, *, signing_failure: bool = False) -> ExecutionReport:
        with self._lock:
            self._rejected_log.append(RejectedOrderLog(reason=reason, timestamp=datetime.now(timezone.utc), order=order))
        logger.info("Order rejected: client_order_id=%s reason=%s", order.client_order_id, reason)
        return ExecutionReport(
            kind=RequestKind.PLACE,
            client_order_id=order.client_order_id,
            status=OrderStatus.REJECTED,
            message=reason,
            signing_failure=signing_failure,
        )

    def _place(self, order: Order) -> ExecutionReport:
        logger.info(
            "Submitting order: product=%s, side=%s, size=%s, price=%s, client_order_id=%s",
            order.product_id,
            order.side.value,
            order.size,
            order.price,
            order.client_order_id,
        )
        try:
            result = self.client.place_order(
                order.product_id,
                order.side,
                order.size,
                order.price,
                client_order_id=order.client_order_id,
                timeout=self.timeout,
            )
        except SigningError as e:
            return self._reject(order, f"signing failed: {e}", signing_failure=True)
        except OrderRejected as e:
            return self._reject(order, str(e))
        except (TransportError, ProtocolError) as e:
            return ExecutionReport(
                kind=RequestKind.PLACE,
                client_order_id=order.client_order_id,
                status=OrderStatus.UNKNOWN,
                message=f"{type(e).__name__}: {e}",
            )
        except Exception as e:  # noqa: BLE001
            logger.exception("Order submission failed unexpectedly: %s", e)
            return ExecutionReport(
                kind=RequestKind.PLACE,
                client_order_id=order.client_order_id,
                status=OrderStatus.UNKNOWN,
                message=f"unexpected error: {e!s}",
            )
        if not result.accepted:
            report = self._reject(order, "declined by exchange")
            return ExecutionReport(
                kind=RequestKind.PLACE,
                client_order_id=order.client_order_id,
                status=OrderStatus.REJECTED,
                exchange_order_id=result.order_id,
                message=report.message,
                attempts=result.attempts,
            )
        return ExecutionReport(
            kind=RequestKind.PLACE,
            client_order_id=order.client_order_id,
            status=OrderStatus.OPEN,
            exchange_order_id=result.order_id,
            attempts=result.attempts,
        )

    def _poll(self, order: Order, kind: RequestKind = RequestKind.POLL) -> ExecutionReport:
        try:
            status = self.client.check_order_status(order.lookup_id, timeout=self.timeout)
        except OrderNotFound as e:
            return ExecutionReport(
                kind=kind,
                client_order_id=order.client_order_id,
                status=OrderStatus.UNKNOWN,
                message=str(e),
                not_found=True,
            )
        except Exception as e:  # noqa: BLE001
            logger.exception("Status check failed unexpectedly: %s", e)
            status = OrderStatus.UNKNOWN
        return ExecutionReport(kind=kind, client_order_id=order.client_order_id, status=status)

    def _cancel(self, order: Order) -> ExecutionReport:
        """Request cancellation, then report whatever status the exchange shows afterwards."""
        if not order.exchange_order_id:
            return self._poll(order, RequestKind.CANCEL)
        try:
            result = self.client.cancel_order([order.exchange_order_id], timeout=self.timeout)
            message = "cancel accepted" if result.accepted else "cancel declined"
        except Exception as e:  # noqa: BLE001
            message = f"cancel failed: {type(e).__name__}: {e}"
            logger.warning("Cancel failed for %s: %s", order.client_order_id, message)
        report = self._poll(order, RequestKind.CANCEL)
        return ExecutionReport(
            kind=RequestKind.CANCEL,
            client_order_id=order.client_order_id,
            status=report.status,
            message=message,
            not_found=report.not_found,
        )
