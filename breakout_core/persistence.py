"""
Persistence hooks for order and position state.

Workers call a StateStore, if one is attached, whenever their state changes
and when they drain. No durable store ships with the core.
"""

from __future__ import annotations

from typing import Any, Protocol


class StateStore(Protocol):
    def save(self, instrument: str, state: dict[str, Any]) -> None:
        """Persist the latest JSON-serializable state for an instrument."""
        ...

    def load(self, instrument: str) -> dict[str, Any] | None:
        """Return the last saved state for an instrument, or None."""
        ...
