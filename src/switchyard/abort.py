"""Caller-driven cancellation signal."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class AbortSignal:
    """One-shot cancellation flag shared between a caller and a stream.

    Once aborted it stays aborted. Listeners run synchronously inside
    `abort`, in registration order.

    Example:
        signal = AbortSignal()
        signal.abort_after(30.0)  # caller-side timeout
        result = await ai(..., abort_signal=signal)
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._listeners: list[Callable[[Any], None]] = []
        self.reason: Any = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: Any = None) -> None:
        """Abort, notifying listeners once. Later calls are no-ops."""
        if self._event.is_set():
            return
        self.reason = reason if reason is not None else "aborted"
        self._event.set()
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener(self.reason)
            except Exception as exc:
                logger.warning("Abort listener failed: %s", exc)

    def add_listener(self, listener: Callable[[Any], None]) -> Callable[[], None]:
        """Register *listener* and return a function that removes it.

        When the signal is already aborted the listener runs immediately.
        """
        if self.aborted:
            listener(self.reason)
            return lambda: None
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def wait(self) -> Any:
        """Wait until aborted and return the reason."""
        await self._event.wait()
        return self.reason

    def abort_after(self, delay_s: float) -> asyncio.TimerHandle:
        """Schedule an abort with a `TimeoutError` reason after *delay_s*."""
        loop = asyncio.get_running_loop()
        return loop.call_later(
            delay_s, self.abort, TimeoutError(f"Timed out after {delay_s:g}s")
        )
