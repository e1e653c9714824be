"""
Idle detection.

The application's data fetch path owns an InFlightCounter and wraps every
foreground request in ``track()``. The warming scheduler only reads it.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class InFlightCounter:
    """Count of foreground data requests currently in flight."""

    def __init__(self) -> None:
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def is_idle(self) -> bool:
        return self._count == 0

    @asynccontextmanager
    async def track(self) -> AsyncIterator[None]:
        """Mark one request in flight for the duration of the block."""
        self._count += 1
        try:
            yield
        finally:
            self._count -= 1
