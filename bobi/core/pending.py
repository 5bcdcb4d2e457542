"""Correlation of outstanding external requests.

Each request gets an id and a future. A request resolves at most once:
whichever of fulfilment or timeout happens first wins and the other
becomes a no-op.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

logger = logging.getLogger(__name__)


class PendingRequests:
    """Request-id → future map with timeout-bounded waits."""

    def __init__(self) -> None:
        self._futures: dict[str, asyncio.Future] = {}
        self._counter = itertools.count(1)

    def create(self, prefix: str = "req") -> str:
        """Register a new request and return its id."""
        request_id = f"{prefix}_{next(self._counter)}"
        self._futures[request_id] = asyncio.get_running_loop().create_future()
        return request_id

    async def wait(self, request_id: str, timeout_s: float) -> Any | None:
        """Wait for a request to be fulfilled, then forget it.

        Returns:
            The fulfilled value, or None on timeout or unknown id.
        """
        future = self._futures.get(request_id)
        if future is None:
            return None
        try:
            return await asyncio.wait_for(future, timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Request %s timed out after %.1fs", request_id, timeout_s)
            return None
        finally:
            self._futures.pop(request_id, None)

    def fulfill(self, request_id: str, value: Any) -> bool:
        """Resolve a request.

        Returns:
            False if the request is unknown, already resolved or timed out.
        """
        future = self._futures.get(request_id)
        if future is None or future.done():
            logger.debug("Ignoring fulfilment for unknown request %s", request_id)
            return False
        future.set_result(value)
        return True

    def is_pending(self, request_id: str) -> bool:
        future = self._futures.get(request_id)
        return future is not None and not future.done()

    def __len__(self) -> int:
        return len(self._futures)
