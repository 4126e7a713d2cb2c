"""
Settings loaded from environment variables.

All variables are prefixed BREAKOUT_. Credentials are required; everything
else has a default. Live (non-sandbox) order placement additionally requires
BREAKOUT_LIVE_TRADING_ENABLED=true at submit time.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from breakout_core.errors import ConfigurationError

# Environment variable that must be set to "true" to allow live (non-sandbox) order submission.
LIVE_TRADING_ENV = "BREAKOUT_LIVE_TRADING_ENABLED"

SANDBOX_URL = "https://api-public.sandbox.exchange.coinbase.com"


def live_trading_enabled(env: Mapping[str, str] | None = None) -> bool:
    env = os.environ if env is None else env
    return env.get(LIVE_TRADING_ENV, "").lower() == "true"


@dataclass(frozen=True)
class ExchangeConfig:
    access_key: str
    access_secret: str
    access_passphrase: str
    url: str = SANDBOX_URL
    sandbox: bool = True
    request_timeout: float = 10.0
    retry_attempts: int = 3
    max_workers: int = 4

    def __repr__(self) -> str:
        return (
            f"ExchangeConfig(url={self.url!r}, sandbox={self.sandbox}, access_key={self.access_key[:4]}***, "
            f"request_timeout={self.request_timeout}, retry_attempts={self.retry_attempts})"
        )


@dataclass(frozen=True)
class StrategyConfig:
    product_ids: tuple[str, ...] = ("BTC-USD",)
    high_period: int = 50
    low_period: int = 40
    order_size: float = 0.001
    poll_interval: float = 5.0
    order_ttl: float | None = 300.0
    max_signing_failures: int = 3
    not_found_polls: int = 3


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "info"


@dataclass(frozen=True)
class Settings:
    exchange: ExchangeConfig
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _require(env: Mapping[str, str], name: str) -> str:
    value = env.get(name, "").strip()
    if not value:
        raise ConfigurationError(f"{name} is required")
    return value


def _number(env: Mapping[str, str], name: str, default: float, cast=float):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name}={raw!r} is not a valid {cast.__name__}") from e


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from BREAKOUT_* variables (defaults to os.environ)."""
    env = os.environ if env is None else env
    url = env.get("BREAKOUT_EXCHANGE_URL", SANDBOX_URL).rstrip("/")
    exchange = ExchangeConfig(
        access_key=_require(env, "BREAKOUT_ACCESS_KEY"),
        access_secret=_require(env, "BREAKOUT_ACCESS_SECRET"),
        access_passphrase=_require(env, "BREAKOUT_ACCESS_PASSPHRASE"),
        url=url,
        sandbox=env.get("BREAKOUT_SANDBOX", "true" if "sandbox" in url else "false").lower() == "true",
        request_timeout=_number(env, "BREAKOUT_REQUEST_TIMEOUT", 10.0),
        retry_attempts=_number(env, "BREAKOUT_RETRY_ATTEMPTS", 3, int),
        max_workers=_number(env, "BREAKOUT_MAX_WORKERS", 4, int),
    )
    products = tuple(p.strip() for p in env.get("BREAKOUT_PRODUCT_IDS", "BTC-USD").split(",") if p.strip())
    ttl = _number(env, "BREAKOUT_ORDER_TTL", 300.0)
    strategy = StrategyConfig(
        product_ids=products,
        high_period=_number(env, "BREAKOUT_HIGH_PERIOD", 50, int),
        low_period=_number(env, "BREAKOUT_LOW_PERIOD", 40, int),
        order_size=_number(env, "BREAKOUT_ORDER_SIZE", 0.001),
        poll_interval=_number(env, "BREAKOUT_POLL_INTERVAL", 5.0),
        order_ttl=ttl if ttl > 0 else None,
        max_signing_failures=_number(env, "BREAKOUT_MAX_SIGNING_FAILURES", 3, int),
        not_found_polls=_number(env, "BREAKOUT_NOT_FOUND_POLLS", 3, int),
    )
    if not strategy.product_ids:
        raise ConfigurationError("BREAKOUT_PRODUCT_IDS must name at least one product")
    if exchange.retry_attempts < 1:
        raise ConfigurationError("BREAKOUT_RETRY_ATTEMPTS must be >= 1")
    if strategy.not_found_polls < 1:
        raise ConfigurationError("BREAKOUT_NOT_FOUND_POLLS must be >= 1")
    return Settings(
        exchange=exchange,
        strategy=strategy,
        logging=LoggingConfig(level=env.get("BREAKOUT_LOG_LEVEL", "info")),
    )
