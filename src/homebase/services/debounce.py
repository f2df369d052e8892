"""Per-entity write debouncing for editor keystrokes."""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

FlushCallback = Callable[[str, str], Awaitable[bool]]


class WriteDebouncer:
    """Coalesces rapid body edits into one write per entity.

    Every ``signal`` stores the latest body for the entity and restarts its
    quiet-period timer. When the timer fires, only the latest body is handed
    to the flush callback. A hard cap from the first unflushed edit makes
    sure continuous typing is still saved periodically.
    """

    _MAX_DELAY = 10.0  # seconds

    def __init__(self, flush_callback: FlushCallback, delay: float = 0.5) -> None:
        self._flush_callback = flush_callback
        self._delay = delay
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._pending: Dict[str, str] = {}
        self._first_signal: Dict[str, float] = {}
        self._in_flight: Set["asyncio.Task[None]"] = set()

    @property
    def delay(self) -> float:
        return self._delay

    def pending(self, key: Optional[str] = None) -> bool:
        """Whether an edit is waiting (for ``key``, or for any entity)."""
        if key is None:
            return bool(self._pending)
        return key in self._pending

    def pending_value(self, key: str) -> Optional[str]:
        return self._pending.get(key)

    def signal(self, key: str, value: str) -> None:
        """Record the latest value for ``key`` and restart its timer."""
        loop = asyncio.get_running_loop()
        now = loop.time()
        self._pending[key] = value
        first = self._first_signal.setdefault(key, now)

        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

        remaining = self._MAX_DELAY - (now - first)
        delay = max(0.0, min(self._delay, remaining))
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def cancel(self, key: Optional[str] = None) -> None:
        """Drop pending edits without writing them."""
        keys = [key] if key is not None else list(self._pending)
        for k in keys:
            timer = self._timers.pop(k, None)
            if timer is not None:
                timer.cancel()
            self._pending.pop(k, None)
            self._first_signal.pop(k, None)

    def _take(self, key: str) -> Optional[str]:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._first_signal.pop(key, None)
        return self._pending.pop(key, None)

    def _fire(self, key: str) -> None:
        """Called by the event loop timer. Starts the actual flush."""
        value = self._take(key)
        if value is None:
            return
        task = asyncio.ensure_future(self._run(key, value))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run(self, key: str, value: str) -> None:
        try:
            ok = await self._flush_callback(key, value)
            if not ok:
                logger.warning(f"Debounced write for {key} did not complete")
        except Exception as e:
            logger.error(f"Debounced write for {key} failed: {e}")

    async def flush(self, key: Optional[str] = None) -> None:
        """Cancel timers and write pending edits now, waiting for completion."""
        keys = [key] if key is not None else list(self._pending)
        for k in keys:
            value = self._take(k)
            if value is not None:
                await self._run(k, value)
        await self.drain()

    async def drain(self) -> None:
        """Wait for every timer-started write that is still running."""
        while True:
            running = [t for t in self._in_flight if not t.done()]
            if not running:
                return
            await asyncio.gather(*running)

    async def shutdown(self) -> None:
        """Flush everything still pending."""
        if self._pending:
            logger.info(f"Flushing {len(self._pending)} pending edits on shutdown")
        await self.flush()
