"""Evaluation triggers for the position monitor.

IntervalTicker drives periodic work (sweep, wallet sync, status log).
VenueEventAdapter turns PumpPortal trade notifications into monitor events.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TYPE_CHECKING

if TYPE_CHECKING:
    from pump_sniper.core.pumpportal_client import PumpPortalClient


class IntervalTicker:
    """Runs callback, sleeps interval, repeats. The interval is re-read every
    tick so a settings change takes effect without a restart.
    """

    def __init__(
        self,
        interval: float | Callable[[], float],
        callback: Callable[[], Awaitable[None]],
        name: str,
    ) -> None:
        self._interval = interval if callable(interval) else (lambda: interval)
        self.callback = callback
        self.name = name
        self.logger = logging.getLogger("pump_sniper.ticker")
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval(self) -> float:
        return max(float(self._interval()), 0.1)

    async def tick(self) -> None:
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error("Ticker %s callback failed: %s", self.name, e, exc_info=True)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"ticker:{self.name}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)


class VenueEventAdapter:
    """Subscribes tracked tokens to PumpPortal trades and forwards each trade
    as a monitor event for that token.
    """

    def __init__(self, client: "PumpPortalClient") -> None:
        self.client = client
        self.logger = logging.getLogger("pump_sniper.triggers")
        self._tasks: set[asyncio.Task] = set()

    async def attach(self, token_id: str, notify: Callable[[str], None]) -> Callable[[], None]:
        """Start forwarding trades for token_id. Returns the teardown callback."""

        def on_trade(mint: str, _data: dict) -> None:
            notify(mint)

        await self.client.subscribe_trades(token_id, on_trade)

        def teardown() -> None:
            task = asyncio.get_running_loop().create_task(self.client.unsubscribe_trades(token_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return teardown
