"""
Interval polling with visibility awareness and request coalescing.

A poller owns one background task that calls its fetch coroutine every
`interval` seconds while the view is visible. Becoming visible again triggers
an immediate refresh. A refresh requested while another is in flight waits
for that one instead of issuing a second request.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncPoller(Generic[T]):
    """
    Periodic fetcher.

    Timer-driven refresh failures are logged and kept in `last_error`; the
    last good result stays in place. Explicit `refresh()` calls raise.

    Usage:
        poller = SyncPoller(fetch_orders, interval=30, on_result=render)
        poller.start()
        poller.set_visible(False)  # tab hidden, ticks are skipped
        poller.set_visible(True)   # refreshes immediately
        poller.stop()
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        interval: float,
        on_result: Callable[[T], None] | None = None,
        name: str = "sync",
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval}")
        self._fetch = fetch
        self.interval = interval
        self._on_result = on_result
        self.name = name

        self.visible = True
        self.last_result: T | None = None
        self.last_error: Exception | None = None
        self.last_updated: datetime | None = None
        self.fetch_count = 0

        self._task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Future[T] | None = None
        self._wakeups: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the timer task. Must be called from a running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"{self.name}-poller"
        )
        logger.debug("Started %s poller (every %.1fs)", self.name, self.interval)

    def stop(self) -> None:
        """Cancel the timer task and any pending visibility refresh."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
        for task in self._wakeups:
            task.cancel()
        self._wakeups.clear()
        logger.debug("Stopped %s poller", self.name)

    def set_visible(self, visible: bool) -> None:
        """Record view visibility. Hidden -> visible refreshes immediately."""
        became_visible = visible and not self.visible
        self.visible = visible
        if became_visible and self.running:
            task = asyncio.get_running_loop().create_task(self._tick())
            self._wakeups.add(task)
            task.add_done_callback(self._wakeups.discard)

    async def refresh(self) -> T:
        """
        Fetch now, or join the fetch already in flight.

        Raises:
            Exception: Whatever the fetch coroutine raised.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._fetch_once())
        return await asyncio.shield(self._inflight)

    async def _fetch_once(self) -> T:
        self.fetch_count += 1
        try:
            result = await self._fetch()
        except Exception as e:
            self.last_error = e
            raise

        self.last_result = result
        self.last_error = None
        self.last_updated = datetime.now(UTC)
        if self._on_result is not None:
            self._on_result(result)
        return result

    async def _tick(self) -> None:
        try:
            await self.refresh()
        except Exception as e:
            logger.warning("%s refresh failed: %s", self.name, e)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not self.visible:
                continue
            await self._tick()
