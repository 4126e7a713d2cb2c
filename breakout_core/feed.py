"""
Offline tick sources built from OHLC(V) data.

Turns a CSV file or DataFrame into the same lazy, in-order tick iterator a
live feed hands to a worker. The close is the tick price; high/low feed the
channel windows.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pandas as pd

from breakout_core.tick import Tick

PRICE_COLUMNS = ("high", "low", "close")

_ALIASES = {
    "h": "high",
    "l": "low",
    "c": "close",
    "price": "close",
    "last": "close",
    "time": "datetime",
    "timestamp": "datetime",
    "date": "datetime",
}


def _normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Lowercase column names and map common aliases onto high/low/close/datetime."""
    out = df.copy()
    out.columns = [str(c).lower().strip() for c in out.columns]
    return out.rename(columns={k: v for k, v in _ALIASES.items() if k in out.columns and v not in out.columns})


def normalize_ohlc(df: pd.DataFrame, *, datetime_column: str | None = None) -> pd.DataFrame:
    """
    Return a copy with a sorted DatetimeIndex and at least a close column.
    Missing high/low columns are filled from close.
    """
    out = _normalize_columns(df)
    column = (datetime_column or "datetime").lower()
    if column in out.columns:
        out[column] = pd.to_datetime(out[column], utc=True)
        out = out.set_index(column)
    else:
        out.index = pd.to_datetime(out.index, utc=True)
    out = out.sort_index()
    out.index.name = "datetime"
    if "close" not in out.columns:
        raise ValueError(f"no close/price column in {list(df.columns)}")
    for col in ("high", "low"):
        if col not in out.columns:
            out[col] = out["close"]
    return out[list(PRICE_COLUMNS)].dropna()


def ticks_from_dataframe(df: pd.DataFrame, product_id: str | None = None) -> Iterator[Tick]:
    """Yield one Tick per row, oldest first."""
    data = normalize_ohlc(df)
    product_id = product_id or df.attrs.get("symbol")
    for ts, high, low, close in data.itertuples(name=None):
        yield Tick(timestamp=ts.to_pydatetime(), price=close, high=high, low=low, product_id=product_id)


def load_csv(path: str | Path, product_id: str | None = None, *, datetime_column: str | None = None) -> Iterator[Tick]:
    """Read an OHLC(V) CSV and yield its rows as ticks."""
    df = pd.read_csv(path)
    if datetime_column is not None:
        df = df.rename(columns={datetime_column: "datetime"})
    return ticks_from_dataframe(df, product_id)
