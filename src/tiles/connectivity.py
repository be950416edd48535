"""Online/offline state shared by the downloader and the tile facade.

``Connectivity`` is a push-style state object: whoever observes the network
(the host application, or ``ConnectivityMonitor`` polling a tile server)
calls ``set_online``. Consumers either read ``online`` or await
``wait_online()``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from infrastructure.http.client import probe_tile_server
from shared.constants import CONNECTIVITY_POLL_INTERVAL, CONNECTIVITY_PROBE_TIMEOUT

if TYPE_CHECKING:
    from collections.abc import Callable

    import aiohttp

logger = logging.getLogger(__name__)


class Connectivity:
    def __init__(self, online: bool = True) -> None:
        self._online = asyncio.Event()
        if online:
            self._online.set()
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def online(self) -> bool:
        return self._online.is_set()

    def set_online(self, online: bool) -> None:
        """Update the state; listeners are notified only on change."""
        if online == self.online:
            return
        if online:
            self._online.set()
        else:
            self._online.clear()
        logger.info('Connectivity changed: %s', 'online' if online else 'offline')
        for listener in list(self._listeners):
            with contextlib.suppress(Exception):
                listener(online)

    async def wait_online(self) -> None:
        await self._online.wait()

    def subscribe(self, listener: Callable[[bool], None]) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe


class ConnectivityMonitor:
    """Periodically probes a tile URL and feeds the result into ``Connectivity``.

    Usage:
        monitor = ConnectivityMonitor(state, session, probe_url)
        monitor.start()
        ...
        await monitor.stop()
    """

    def __init__(
        self,
        state: Connectivity,
        client: aiohttp.ClientSession,
        probe_url: str,
        *,
        interval: float = CONNECTIVITY_POLL_INTERVAL,
        timeout: float = CONNECTIVITY_PROBE_TIMEOUT,
    ) -> None:
        self.state = state
        self.client = client
        self.probe_url = probe_url
        self.interval = interval
        self.timeout = timeout
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check(self) -> bool:
        """Probe once and update the state."""
        online = await probe_tile_server(self.client, self.probe_url, self.timeout)
        self.state.set_online(online)
        return online

    async def _run(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
