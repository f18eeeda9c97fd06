"""Periodic cycle driver with at most one in-flight cycle."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Callable, Optional

from scalper.infrastructure.logging.logging import get_logger

Cycle = Callable[[], Awaitable[None]]


class CycleScheduler:
    """Ticks every `interval` seconds. A tick that lands while the previous
    cycle is still running is skipped, never queued.

    Cycle exceptions are logged as `cycle_error` and do not stop the ticking.
    """

    def __init__(self, name: str, interval: float, cycle: Cycle) -> None:
        self.name = name
        self.interval = float(interval)
        self.cycle = cycle

        self.cycles_started = 0
        self.ticks_skipped = 0
        self._in_flight = asyncio.Event()
        self._current: Optional[asyncio.Task] = None
        self._ticker: Optional[asyncio.Task] = None
        self._stopping = False
        self.log = get_logger("scheduler", loop=name)

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight.is_set()

    def start(self) -> None:
        if self.running:
            self.log.warning("scheduler_already_running")
            return
        self._stopping = False
        self._ticker = asyncio.create_task(self._tick_loop(), name=f"{self.name}-ticker")
        self.log.info("scheduler_started", interval_seconds=self.interval)

    async def _tick_loop(self) -> None:
        while not self._stopping:
            self.tick()
            await asyncio.sleep(self.interval)

    def tick(self) -> bool:
        """Start a cycle unless one is in flight. Returns whether a cycle started."""
        if self._stopping:
            return False
        if self._in_flight.is_set():
            self.ticks_skipped += 1
            self.log.info("cycle_in_flight_skip", skipped=self.ticks_skipped)
            return False
        self._in_flight.set()
        self.cycles_started += 1
        self._current = asyncio.create_task(self._run_cycle(), name=f"{self.name}-cycle-{self.cycles_started}")
        return True

    async def _run_cycle(self) -> None:
        try:
            await self.cycle()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.log.error("cycle_error", error=str(e), error_type=type(e).__name__, cycle=self.cycles_started)
        finally:
            self._in_flight.clear()

    async def stop(self) -> None:
        """Halt scheduling, then wait for the in-flight cycle to finish."""
        self._stopping = True
        if self._ticker is not None:
            self._ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._ticker
            self._ticker = None
        if self._current is not None and not self._current.done():
            self.log.info("waiting_for_in_flight_cycle")
            await self._current
        self.log.info("scheduler_stopped", cycles=self.cycles_started, skipped=self.ticks_skipped)
