"""
Exchange REST client: place, cancel and status requests over HTTPS.

Every attempt is signed with a timestamp taken at signing time, so retries
after a TransportError carry a fresh timestamp and signature while keeping the
same client_order_id in the body. Retries are bounded by attempt count and by
the caller's deadline.

Sandbox-first: placing orders against a non-sandbox endpoint is refused unless
BREAKOUT_LIVE_TRADING_ENABLED=true.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, stop_after_delay, wait_exponential
from tenacity.wait import wait_base

from breakout_core.config import LIVE_TRADING_ENV, ExchangeConfig, live_trading_enabled
from breakout_core.errors import ExecutionError, OrderNotFound, OrderRejected, ProtocolError, TransportError
from breakout_core.execution.signing import auth_headers
from breakout_core.log import EventLogger, StdlibEventLogger
from breakout_core.order import OrderStatus, new_client_order_id
from breakout_core.signal import Side

ORDER_PATH = "/orders"
CANCEL_ORDER_PATH = ORDER_PATH + "/batch_cancel"
STATUS_PATH = ORDER_PATH + "/historical/{order_id}"

# Exchange status strings -> local status. Anything else is UNKNOWN.
EXCHANGE_STATUSES = {
    "PENDING": OrderStatus.PENDING,
    "QUEUED": OrderStatus.PENDING,
    "RECEIVED": OrderStatus.OPEN,
    "OPEN": OrderStatus.OPEN,
    "ACTIVE": OrderStatus.OPEN,
    "CANCEL_QUEUED": OrderStatus.OPEN,
    "FILLED": OrderStatus.FILLED,
    "CANCELLED": OrderStatus.CANCELLED,
    "CANCELED": OrderStatus.CANCELLED,
    "EXPIRED": OrderStatus.CANCELLED,
    "REJECTED": OrderStatus.REJECTED,
    "FAILED": OrderStatus.REJECTED,
}


@dataclass(frozen=True)
class PlaceResult:
    accepted: bool
    order_id: str | None
    client_order_id: str
    attempts: int = 1


@dataclass(frozen=True)
class CancelResult:
    accepted: bool
    order_id: str | None
    attempts: int = 1


def _format_number(value: float) -> str:
    return format(Decimal(str(value)), "f")


class ExchangeClient:
    """
    Signs and sends order requests. The requests.Session is injected and may be
    shared by every instrument worker.
    """

    def __init__(
        self,
        config: ExchangeConfig,
        session: requests.Session | None = None,
        *,
        logger: EventLogger | None = None,
        clock: Callable[[], float] = time.time,
        wait: wait_base | None = None,
    ) -> None:
        self.config = config
        self._session = session or requests.Session()
        self._logger = logger or StdlibEventLogger(logging.getLogger(__name__))
        self._clock = clock
        self._wait = wait if wait is not None else wait_exponential(multiplier=0.5, min=0.5, max=8)
        if not config.sandbox and not live_trading_enabled():
            self._logger.error("client.live_disabled", url=config.url, hint=f"set {LIVE_TRADING_ENV}=true")

    def _timestamp(self) -> str:
        return f"{self._clock():.3f}"

    def _retrying(self, deadline: float, started: float) -> Retrying:
        def wait(retry_state) -> float:
            # never sleep past the deadline
            left = deadline - (time.monotonic() - started)
            return max(0.0, min(self._wait(retry_state), left))

        return Retrying(
            stop=stop_after_attempt(self.config.retry_attempts) | stop_after_delay(deadline),
            wait=wait,
            retry=retry_if_exception_type(TransportError),
            reraise=True,
        )

    def _request(self, method: str, path: str, body: str, timeout: float) -> Any:
        """One signed attempt. Returns decoded JSON or raises an ExecutionError."""
        timestamp = self._timestamp()
        headers = auth_headers(
            key=self.config.access_key,
            secret=self.config.access_secret,
            passphrase=self.config.access_passphrase,
            timestamp=timestamp,
            method=method,
            path=path,
            body=body,
        )
        try:
            resp = self._session.request(
                method,
                self.config.url + path,
                data=body or None,
                headers=headers,
                timeout=timeout,
            )
        except requests.Timeout as e:
            raise TransportError(f"{method} {path} timed out after {timeout:.2f}s") from e
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if resp.status_code >= 500 or resp.status_code == 429:
            raise TransportError(f"{method} {path} returned HTTP {resp.status_code}")
        if resp.status_code == 404:
            raise OrderNotFound(f"{method} {path} returned HTTP 404: {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise ProtocolError(f"{method} {path} returned a non-JSON body (HTTP {resp.status_code})") from e
        if resp.status_code >= 400:
            message = data.get("message") if isinstance(data, dict) else None
            raise OrderRejected(f"{method} {path} returned HTTP {resp.status_code}: {message or data}")
        return data

    def _send(self, method: str, path: str, body: str, timeout: float | None) -> tuple[Any, int]:
        """Send with retries on TransportError, re-signing each attempt. Returns (json, attempts)."""
        deadline = timeout if timeout is not None else self.config.request_timeout * self.config.retry_attempts
        started = time.monotonic()
        for attempt in self._retrying(deadline, started):
            with attempt:
                remaining = deadline - (time.monotonic() - started)
                if remaining <= 0:
                    raise TransportError(f"{method} {path} deadline of {deadline:.2f}s expired")
                n = attempt.retry_state.attempt_number
                if n > 1:
                    self._logger.info("client.retry", method=method, path=path, attempt=n)
                data = self._request(method, path, body, min(self.config.request_timeout, remaining))
        return data, attempt.retry_state.attempt_number

    def place_order(
        self,
        product_id: str,
        side: Side | str,
        size: float,
        price: float,
        *,
        client_order_id: str | None = None,
        timeout: float | None = None,
    ) -> PlaceResult:
        """
        Place a limit order. Raises SigningError, TransportError (after retries),
        ProtocolError or OrderRejected. On TransportError/ProtocolError the order
        may or may not exist on the exchange and must be reconciled.
        """
        client_order_id = client_order_id or new_client_order_id()
        if not self.config.sandbox and not live_trading_enabled():
            raise OrderRejected(f"live trading disabled; set {LIVE_TRADING_ENV}=true to allow real orders")
        side_value = side.value if isinstance(side, Side) else str(side).upper()
        body = json.dumps(
            {
                "client_order_id": client_order_id,
                "product_id": product_id,
                "side": side_value,
                "size": _format_number(size),
                "price": _format_number(price),
            }
        )
        try:
            data, attempts = self._send("POST", ORDER_PATH, body, timeout)
        except ExecutionError as e:
            self._logger.error(
                "client.place_failed",
                product_id=product_id,
                client_order_id=client_order_id,
                error=type(e).__name__,
                detail=str(e),
            )
            raise
        if not isinstance(data, dict) or not isinstance(data.get("success"), bool):
            raise ProtocolError(f"unexpected order response: {data!r}")
        order_id = data.get("order_id")
        if data["success"] and not order_id:
            raise ProtocolError(f"accepted order response without order_id: {data!r}")
        self._logger.info(
            "client.placed",
            product_id=product_id,
            client_order_id=client_order_id,
            order_id=order_id,
            success=data["success"],
            attempts=attempts,
        )
        return PlaceResult(accepted=data["success"], order_id=order_id, client_order_id=client_order_id, attempts=attempts)

    def check_order_status(self, order_id: str, *, timeout: float | None = None) -> OrderStatus:
        """
        Exchange-reported status, or OrderStatus.UNKNOWN when the exchange could
        not be asked or answered in an unexpected shape. Raises OrderNotFound
        only when the exchange answers that it has no such order.
        """
        path = STATUS_PATH.format(order_id=order_id)
        try:
            data, _ = self._send("GET", path, "", timeout)
        except OrderNotFound:
            self._logger.info("client.status_not_found", order_id=order_id)
            raise
        except ExecutionError as e:
            self._logger.error("client.status_failed", order_id=order_id, error=type(e).__name__, detail=str(e))
            return OrderStatus.UNKNOWN
        if not isinstance(data, dict) or not isinstance(data.get("status"), str):
            self._logger.error("client.status_failed", order_id=order_id, error="ProtocolError", detail=repr(data))
            return OrderStatus.UNKNOWN
        status = EXCHANGE_STATUSES.get(data["status"].upper(), OrderStatus.UNKNOWN)
        self._logger.info("client.status", order_id=order_id, exchange_status=data["status"], status=status.value)
        return status

    def cancel_order(self, order_ids: Sequence[str] | str, *, timeout: float | None = None) -> CancelResult:
        """Request cancellation of one or more orders. Same failure taxonomy as place_order."""
        ids = [order_ids] if isinstance(order_ids, str) else list(order_ids)
        body = json.dumps({"order_ids": ids})
        try:
            data, attempts = self._send("POST", CANCEL_ORDER_PATH, body, timeout)
        except ExecutionError as e:
            self._logger.error("client.cancel_failed", order_ids=",".join(ids), error=type(e).__name__, detail=str(e))
            raise
        if not isinstance(data, dict) or not isinstance(data.get("success"), bool):
            raise ProtocolError(f"unexpected cancel response: {data!r}")
        self._logger.info("client.cancelled", order_id=data.get("order_id"), success=data["success"], attempts=attempts)
        return CancelResult(accepted=data["success"], order_id=data.get("order_id"), attempts=attempts)
