from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class RunState(Enum):
    idle = "idle"
    running = "running"
    halted = "halted"


class RunScheduler:
    """Repeatedly calls `step` on the running event loop, waiting `delay` seconds between calls.

    Only one step is ever pending. `step` returns whether the machine can go on, and `is_halted` tells
    a halt apart from a plain stop so that the halted state sticks until `reset`.
    """

    def __init__(self, step: Callable[[], bool], is_halted: Callable[[], bool], delay: float = 0.3) -> None:
        self._step = step
        self._is_halted = is_halted
        self.delay = delay
        self.state = RunState.idle
        self._handle: asyncio.TimerHandle | None = None
        self._stopped: asyncio.Future[RunState] | None = None

    @property
    def running(self) -> bool:
        return self.state is RunState.running

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def start(self) -> bool:
        if self.state is not RunState.idle or self._is_halted():
            return False
        loop = asyncio.get_running_loop()
        self.state = RunState.running
        self._stopped = loop.create_future()
        self._schedule(loop)
        logger.debug("Run started with a %.3fs delay", self.delay)
        return True

    def pause(self) -> None:
        self.cancel()
        if self.state is RunState.running:
            self._stop(RunState.idle)
            logger.debug("Run paused")

    def reset(self) -> None:
        self.cancel()
        self._stop(RunState.idle)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def wait(self) -> RunState:
        """Wait until the current run is paused or stops on its own."""
        if self._stopped is None:
            return self.state
        return await asyncio.shield(self._stopped)

    def _schedule(self, loop: asyncio.AbstractEventLoop) -> None:
        self._handle = loop.call_later(self.delay, self._tick)

    def _tick(self) -> None:
        self._handle = None
        if self.state is not RunState.running:
            return
        cont = self._step()
        if self.state is not RunState.running:
            return
        if cont:
            self._schedule(asyncio.get_running_loop())
        else:
            self._stop(RunState.halted if self._is_halted() else RunState.idle)

    def _stop(self, state: RunState) -> None:
        self.state = state
        if self._stopped is not None and not self._stopped.done():
            self._stopped.set_result(state)
        self._stopped = None
