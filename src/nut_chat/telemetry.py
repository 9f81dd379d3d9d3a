"""Periodic capture of simulation telemetry from the live preview.

Every ``interval`` seconds the collector asks for the active preview surface,
drains whatever behavioural events it buffered since the previous drain and
hands a non-empty batch to the conversation sink. The preview can disappear
at any moment, so every failure inside a tick is logged and dropped.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Protocol

from .simulation import SimulationData, decode_simulation_data

logger = logging.getLogger(__name__)


class SimulationSurface(Protocol):
    """Handle on a running preview. ``drain`` is destructive."""

    async def drain(self) -> Any:
        ...


SurfaceProvider = Callable[[], Optional[SimulationSurface]]
SimulationSink = Callable[[SimulationData], Any]


class SimulationTelemetryCollector:
    """Cancellable periodic drain of the active preview surface.

    A tick that comes due while the previous one is still draining or
    forwarding is skipped and counted in :attr:`skipped_ticks`, so batches
    reach the sink once each and in drain order.
    """

    def __init__(
        self,
        surface_provider: SurfaceProvider,
        sink: SimulationSink,
        *,
        interval: float = 1.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = float(interval)
        self._surface_provider = surface_provider
        self._sink = sink
        self._task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None
        self._tick_done: Optional[asyncio.Future] = None
        self._in_flight = False
        self.skipped_ticks = 0
        self.forwarded_batches = 0

    # --------- lifecycle ----------
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin ticking on the running event loop. No-op if already started."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Cancel the timer and wait for any tick already in progress."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        current, self._current = self._current, None
        if current is not None and not current.done():
            await current
        await self._wait_for_tick()

    async def __aenter__(self) -> "SimulationTelemetryCollector":
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # --------- ticks ----------
    async def tick(self) -> bool:
        """Run one drain/forward cycle. Returns True if a batch was forwarded."""
        if self._in_flight:
            self.skipped_ticks += 1
            return False
        self._in_flight = True
        done = asyncio.get_running_loop().create_future()
        self._tick_done = done
        try:
            return await self._drain_and_forward()
        finally:
            self._in_flight = False
            done.set_result(None)

    async def flush(self) -> bool:
        """Wait out a tick in progress, then drain once more."""
        current = self._current
        if current is not None and not current.done():
            await asyncio.wait({current})
        await self._wait_for_tick()
        return await self.tick()

    async def _wait_for_tick(self) -> None:
        done = self._tick_done
        if done is not None and not done.done():
            await asyncio.shield(done)

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval)
                if self._in_flight:
                    self.skipped_ticks += 1
                    continue
                self._current = asyncio.create_task(self.tick())
        except asyncio.CancelledError:
            logger.debug("Simulation telemetry collector stopped")
            return

    async def _drain_and_forward(self) -> bool:
        try:
            surface = self._surface_provider()
            if surface is None:
                return False
            batch = decode_simulation_data(await surface.drain())
        except Exception:
            logger.debug("Simulation drain failed", exc_info=True)
            return False

        if not batch:
            return False

        try:
            result = self._sink(batch)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.debug("Simulation sink rejected %d packets", len(batch), exc_info=True)
            return False

        self.forwarded_batches += 1
        return True
