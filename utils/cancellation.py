"""
Cooperative cancellation token for in-flight extraction requests.
"""

import asyncio
from typing import Optional


class CancellationToken:
    """
    One-shot cancellation signal.

    The owner calls cancel(); the worker either checks `cancelled` or awaits
    wait() alongside its own work.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> bool:
        """
        Signal cancellation.

        Returns:
            False if the token was already cancelled
        """
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()
