"""Polling scheduler: refreshes the store on fixed intervals."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from shop_floor.utils.constants import POLL_AGGREGATES, POLL_WORK_ORDERS

logger = logging.getLogger(__name__)


class PollingScheduler:
    """Runs one repeating asyncio task per refresh target.

    Each target fires immediately on ``start()`` and then every interval.
    A tick that lands while the previous refresh is still in flight is
    skipped. Failures are logged and recorded, never raised. After
    ``stop()`` the timers are gone and late results are discarded.
    """

    def __init__(self, store, work_order_interval: float = 30,
                 aggregate_interval: float = 300,
                 on_refreshed: Optional[Callable[[str], None]] = None):
        self.store = store
        self.on_refreshed = on_refreshed
        self._targets: dict[str, dict] = {
            POLL_WORK_ORDERS: {
                "refresh": store.refresh_list,
                "interval": work_order_interval,
            },
            POLL_AGGREGATES: {
                "refresh": store.refresh_aggregates,
                "interval": aggregate_interval,
            },
        }
        self._loops: dict[str, asyncio.Task] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._enabled = False
        self._last_results: dict[str, str] = {}
        self._last_success: dict[str, datetime] = {}
        self._skipped: dict[str, int] = {name: 0 for name in self._targets}

    def add_target(self, name: str, refresh: Callable[[], Awaitable[None]],
                   interval: float):
        """Register an extra refresh target; takes effect on next start()."""
        self._targets[name] = {"refresh": refresh, "interval": interval}
        self._skipped.setdefault(name, 0)

    def start(self):
        """Start all polling loops. Must be called inside a running loop."""
        if self._enabled:
            return
        self._enabled = True
        for name in self._targets:
            self._loops[name] = asyncio.create_task(self._run_loop(name))

    def stop(self):
        """Cancel the timers. In-flight refreshes finish but are ignored."""
        self._enabled = False
        for task in self._loops.values():
            task.cancel()
        self._loops.clear()

    def run_now(self, name: str):
        """Manually trigger a target outside its schedule."""
        if name in self._targets and self._enabled:
            self._fire(name)

    def is_running(self, name: str) -> bool:
        """Check if a target's refresh is currently in flight."""
        return name in self._inflight

    def get_last_result(self, name: str) -> str:
        return self._last_results.get(name, "Not run yet")

    def get_last_success(self, name: str) -> Optional[datetime]:
        return self._last_success.get(name)

    def skipped_count(self, name: str) -> int:
        return self._skipped.get(name, 0)

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def _run_loop(self, name: str):
        interval = max(float(self._targets[name]["interval"]), 0.0)
        while self._enabled:
            self._fire(name)
            await asyncio.sleep(interval)

    def _fire(self, name: str):
        if name in self._inflight:
            self._skipped[name] += 1
            logger.debug(f"Skipping {name} poll; previous refresh still running")
            return
        task = asyncio.create_task(self._refresh(name))
        self._inflight[name] = task
        task.add_done_callback(lambda t, n=name: self._on_done(n, t))

    def _on_done(self, name: str, task: asyncio.Task):
        if self._inflight.get(name) is task:
            del self._inflight[name]

    async def _refresh(self, name: str):
        try:
            await self._targets[name]["refresh"]()
        except Exception as e:
            if self._enabled:
                self._last_results[name] = f"Error: {e}"
                logger.warning(f"Background refresh of {name} failed: {e}")
            return
        if not self._enabled:
            return
        self._last_results[name] = "OK"
        self._last_success[name] = datetime.now(timezone.utc)
        if self.on_refreshed is not None:
            self.on_refreshed(name)
