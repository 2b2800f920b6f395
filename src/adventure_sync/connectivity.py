"""Connectivity monitor: online/offline status and the reconnect trigger.

The host reports transitions through set_online(). Optionally the monitor
probes the backend itself on an interval. Either way, every offline -> online
transition fires the registered reconnect callbacks, which is how the sync
engine learns it should start a pass.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Tracks whether the backend is reachable.

    The status starts out online. A monitor with no probe URL stays online
    until the host reports otherwise, so callers attempt their writes and
    fail per item when the backend is really unreachable.
    """

    def __init__(
        self,
        probe_url: str | None = None,
        *,
        check_interval: float = 30.0,
        probe_timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._probe_url = probe_url
        self._check_interval = check_interval
        self._probe_timeout = probe_timeout
        self._client = client
        self._online = True
        self._callbacks: list[Callable[[], Any]] = []
        self._pending: set[asyncio.Task[None]] = set()
        self._task: asyncio.Task[None] | None = None

    def current_status(self) -> bool:
        """Latest known status. Never blocks."""
        return self._online

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_reconnect(self, callback: Callable[[], Any]) -> None:
        """Register a callback fired on every offline -> online transition."""
        self._callbacks.append(callback)

    def set_online(self, online: bool) -> None:
        """Record a connectivity event from the host."""
        was_online = self._online
        self._online = online
        if was_online == online:
            return
        if online:
            logger.info("Connection restored")
            self._notify_reconnect()
        else:
            logger.info("Connection lost")

    def _notify_reconnect(self) -> None:
        for callback in list(self._callbacks):
            try:
                result = callback()
                # Futures and tasks are already scheduled.
                if inspect.isawaitable(result) and not asyncio.isfuture(result):
                    self._schedule(result)
            except Exception as e:
                logger.error(f"Reconnect callback {callback!r} failed: {e}")

    def _schedule(self, awaitable: Awaitable[Any]) -> None:
        """Run an async callback's result on the current loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("No running event loop; async reconnect callback skipped")
            return
        task = loop.create_task(self._await_callback(awaitable))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _await_callback(awaitable: Awaitable[Any]) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.error(f"Async reconnect callback failed: {e}")

    async def probe(self) -> bool:
        """Check the backend once and update the status."""
        if not self._probe_url:
            return self._online

        try:
            if self._client is not None:
                await self._client.get(self._probe_url, timeout=self._probe_timeout)
            else:
                async with httpx.AsyncClient(timeout=self._probe_timeout) as client:
                    await client.get(self._probe_url)
        except (httpx.NetworkError, httpx.TimeoutException) as e:
            logger.debug(f"Probe of {self._probe_url} failed: {e}")
            self.set_online(False)
            return False
        except httpx.HTTPError as e:
            # Not a reachability answer either way; keep the last status.
            logger.warning(f"Probe of {self._probe_url} inconclusive: {e}")
            return self._online

        self.set_online(True)
        return True

    async def _monitor_loop(self) -> None:
        while True:
            await self.probe()
            await asyncio.sleep(self._check_interval)

    def start(self) -> None:
        """Start probing in the background. Needs a running event loop."""
        if self.is_running or not self._probe_url:
            return
        self._task = asyncio.get_running_loop().create_task(self._monitor_loop())
        logger.info(
            f"Connectivity monitor started (probe={self._probe_url}, "
            f"interval={self._check_interval:.0f}s)"
        )

    async def stop(self) -> None:
        """Stop the background probe."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Connectivity monitor stopped")
