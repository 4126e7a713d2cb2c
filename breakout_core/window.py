"""
RollingWindow: fixed-capacity FIFO of observations with O(1) extremum.

The buffer is a bounded deque. Extremum candidates live in a second deque kept
monotonic (non-increasing for max, non-decreasing for min), so the current
extremum is always its head and every push costs O(1) amortized.
"""

from __future__ import annotations

import math
import operator
from collections import deque
from enum import Enum

from breakout_core.errors import ConstructionError


class ExtremumKind(Enum):
    MIN = "min"
    MAX = "max"


class RollingWindow:
    """
    Last `capacity` pushed values and their min or max.

    Pushing beyond capacity evicts the oldest value. The window is owned by a
    single channel engine and is not safe for concurrent mutation.
    """

    def __init__(self, capacity: int, kind: ExtremumKind = ExtremumKind.MAX) -> None:
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ConstructionError(f"window capacity must be a positive integer, got {capacity!r}")
        self.capacity = capacity
        self.kind = ExtremumKind(kind)
        self._buffer: deque[float] = deque(maxlen=capacity)
        # (sequence number, value); head is the current extremum
        self._candidates: deque[tuple[int, float]] = deque()
        self._seq = 0
        # a candidate at the tail is dominated by the new value when this holds
        self._dominated = operator.le if self.kind == ExtremumKind.MAX else operator.ge

    def push(self, value: float) -> None:
        """Append value, evicting the oldest one when the window is full."""
        value = float(value)
        if math.isnan(value):
            raise ValueError("cannot push NaN into a rolling window")
        self._buffer.append(value)
        while self._candidates and self._dominated(self._candidates[-1][1], value):
            self._candidates.pop()
        self._candidates.append((self._seq, value))
        oldest_live = self._seq - self.capacity + 1
        if self._candidates[0][0] < oldest_live:
            self._candidates.popleft()
        self._seq += 1

    def extremum(self) -> float:
        """Current min or max of the buffer."""
        if not self._candidates:
            raise ValueError("extremum of an empty window")
        return self._candidates[0][1]

    def is_full(self) -> bool:
        return len(self._buffer) == self.capacity

    def values(self) -> list[float]:
        """Buffer contents, oldest first."""
        return list(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def __repr__(self) -> str:
        return f"RollingWindow(capacity={self.capacity}, kind={self.kind.value}, size={len(self)})"
