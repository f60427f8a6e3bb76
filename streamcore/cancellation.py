"""
Cooperative cancellation shared by one turn.

Adapters check `token.cancelled` before every raw protocol unit and stop
silently once it is set; `stream_chat` also races each pending read against
`wait()`, so a silent connection is abandoned as soon as the token fires.
Timeouts are built on top: `cancel_after()` schedules a cancellation on the
running loop.
"""
from __future__ import annotations

import asyncio
from typing import Optional


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Set the signal. Only the first reason is kept."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def cancel_after(self, seconds: float) -> None:
        """Cancel from a timer on the running event loop."""
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(seconds, self.cancel, f"timed out after {seconds}s")

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        state = f"cancelled reason={self._reason!r}" if self.cancelled else "active"
        return f"<CancellationToken {state}>"
