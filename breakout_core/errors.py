"""
Error taxonomy for the pipeline.

Construction and configuration errors are fatal to setup. Execution errors are
raised by the exchange client and converted to order status by the router;
they never escape the per-instrument consumer loop.
"""


class BreakoutError(Exception):
    """Base class for all errors raised by breakout_core."""


class ConstructionError(BreakoutError, ValueError):
    """Invalid construction parameters (e.g. non-positive window capacity)."""


class ConfigurationError(BreakoutError):
    """Missing or invalid settings, or a signing budget exhausted at runtime."""


class ExecutionError(BreakoutError):
    """Base class for failures talking to the exchange."""


class SigningError(ExecutionError):
    """Secret could not be decoded or the request could not be signed. Nothing was sent."""


class TransportError(ExecutionError):
    """Network failure, timeout or server error. Exchange-side state is unknown."""


class ProtocolError(ExecutionError):
    """Response body did not match the expected schema. Exchange-side state is unknown."""


class OrderRejected(ExecutionError):
    """The request was explicitly declined. Terminal for that order."""


class OrderNotFound(OrderRejected):
    """The exchange answered 404: it has no record of the order."""
