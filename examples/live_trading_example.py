"""
Sandbox trading example: replay OHLC bars through the breakout pipeline.

Demonstrates:
- Settings from BREAKOUT_* environment variables (sandbox endpoint by default).
- One consumer thread per product, sharing a single signed exchange client.
- Ctrl-C stops the consumers, drains outstanding requests and prints final state.

Usage:
    export BREAKOUT_ACCESS_KEY=... BREAKOUT_ACCESS_SECRET=... BREAKOUT_ACCESS_PASSPHRASE=...
    python examples/live_trading_example.py [bars.csv]

Without a CSV, a synthetic random walk is replayed for every configured product.
"""

from __future__ import annotations

import random
import signal
import sys
from collections.abc import Iterator

import pandas as pd

from breakout_core.config import load_settings
from breakout_core.errors import ConfigurationError
from breakout_core.feed import load_csv, ticks_from_dataframe
from breakout_core.log import configure_logging
from breakout_core.pipeline import TradingPipeline
from breakout_core.tick import Tick


def _random_walk(product_id: str, bars: int = 500, start: float = 100.0) -> Iterator[Tick]:
    rng = random.Random(product_id)
    closes = [start]
    for _ in range(bars - 1):
        closes.append(max(0.01, closes[-1] * (1 + rng.gauss(0, 0.002))))
    df = pd.DataFrame(
        {
            "close": closes,
            "high": [c * 1.001 for c in closes],
            "low": [c * 0.999 for c in closes],
        },
        index=pd.date_range("2024-01-01", periods=bars, freq="min", tz="UTC"),
    )
    return ticks_from_dataframe(df, product_id)


def main() -> int:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 2
    configure_logging(settings.logging.level)

    pipeline = TradingPipeline.from_settings(settings)
    if len(sys.argv) > 1:
        feeds = {p: load_csv(sys.argv[1], p) for p in pipeline.instruments}
    else:
        feeds = {p: _random_walk(p) for p in pipeline.instruments}

    signal.signal(signal.SIGINT, lambda *_: pipeline.stop())
    print(f"=== Replaying {', '.join(pipeline.instruments)} against {settings.exchange.url} ===\n")
    pipeline.start(feeds)
    pipeline.join()

    for product_id in pipeline.instruments:
        worker = pipeline.worker(product_id)
        position = worker.decision.position
        print(f"{product_id}: position={position.side.value} confirmed={position.confirmed_side.value}")
        for order in worker.tracker.orders():
            print(f"  Order: {order.action.value} {order.side.value} {order.size} @ {order.price} -> {order.status.value}")

    print("\n--- Rejected log (if any) ---")
    for entry in pipeline.router.get_rejected_log():
        print(f"  Rejected: reason={entry.reason}, order={entry.order.client_order_id}")

    for product_id, error in pipeline.errors.items():
        print(f"{product_id} halted: {error}")
    return 1 if pipeline.errors else 0


if __name__ == "__main__":
    sys.exit(main())
