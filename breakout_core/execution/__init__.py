"""
Execution layer: request signing, exchange REST client, order router.

ExchangeClient talks to the exchange; OrderRouter runs its calls on a worker
pool and reports outcomes as order status.
"""

from breakout_core.execution.client import CancelResult, ExchangeClient, PlaceResult
from breakout_core.execution.router import OrderRouter, RejectedOrderLog
from breakout_core.execution.signing import auth_headers, sign
from breakout_core.execution.types import ExecutionReport, RequestKind

__all__ = [
    "CancelResult",
    "ExchangeClient",
    "ExecutionReport",
    "OrderRouter",
    "PlaceResult",
    "RejectedOrderLog",
    "RequestKind",
    "auth_headers",
    "sign",
]
