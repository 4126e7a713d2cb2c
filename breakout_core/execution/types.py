"""
Execution-layer types: the outcome of one exchange request, as seen by a worker.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from breakout_core.order import OrderStatus


class RequestKind(Enum):
    PLACE = "place"
    POLL = "poll"
    CANCEL = "cancel"


@dataclass(frozen=True)
class ExecutionReport:
    """
    Result of a place/poll/cancel job for one order. Immutable.

    For POLL and CANCEL, status UNKNOWN means "could not ask", not an
    exchange-side state; workers keep the last known status in that case.
    `not_found` marks a status lookup the exchange answered with "no such
    order"; the worker decides when that becomes terminal.
    """

    kind: RequestKind
    client_order_id: str
    status: OrderStatus
    exchange_order_id: str | None = None
    message: str | None = None
    signing_failure: bool = False
    not_found: bool = False
    attempts: int = 0

    @property
    def status_known(self) -> bool:
        return self.kind == RequestKind.PLACE or self.status != OrderStatus.UNKNOWN
