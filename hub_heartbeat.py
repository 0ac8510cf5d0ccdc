#!/usr/bin/env python3
"""
Keep-alive frames for an open hub session
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import aiohttp

from hub_errors import TransportClosed

# Set up logging
logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    """
    Sends an empty frame every `interval` seconds.

    A failed send means the socket is already broken: `on_failure` is awaited
    once and the monitor stops.
    """

    def __init__(self, send: Callable[[str], Awaitable[None]],
                 on_failure: Callable[[], Awaitable[None]], interval: float):
        self._send = send
        self._on_failure = on_failure
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self.beats = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        self.stop()
        self._task = asyncio.create_task(self._run())

    def stop(self):
        task, self._task = self._task, None
        # Stopping from inside the heartbeat (failure path) must not cancel itself
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._send('')
            except (ConnectionError, aiohttp.ClientError, TransportClosed) as e:
                logger.warning(f"Heartbeat failed, closing session: {e!r}")
                await self._on_failure()
                return
            self.beats += 1
