"""Trailing-edge debouncing of filesystem change events."""

import asyncio
from typing import AsyncIterator, Optional

from ..watch import ChangeEvent
from ..utils.logging import get_logger


class DebounceEngine:
    """Turns bursts of change events into single resync triggers.

    All producers push into one queue. A timer task waits for the first
    event, then keeps waiting until ``quiet_window`` seconds pass without
    another one, and only then marks a trigger as pending. Triggers that
    fire while the consumer is busy collapse into one pending trigger, so
    a change made during a pass always gets a later pass.

    There is a single consumer, reading ``triggers()``. After ``dispose()``
    returns no trigger is delivered, not even one already pending.
    """

    def __init__(self, quiet_window: float = 1.0, name: str = "debounce"):
        if quiet_window <= 0:
            raise ValueError("quiet_window must be positive")

        self.quiet_window = quiet_window
        self.name = name
        self.logger = get_logger(self.__class__.__name__).bind(engine=name)

        self._events: "asyncio.Queue[ChangeEvent]" = asyncio.Queue()
        self._pending = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._disposed = False

        # Statistics
        self.events_received = 0
        self.triggers_emitted = 0

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def start(self) -> None:
        """Start the timer task on the running loop."""
        if self._disposed:
            raise RuntimeError("DebounceEngine has been disposed")
        if self.is_running:
            return

        self._loop = asyncio.get_running_loop()
        self._timer_task = asyncio.create_task(self._run_timer(), name=f"{self.name}-timer")

    def push(self, event: ChangeEvent) -> None:
        """Feed an event from the event loop thread."""
        if self._disposed:
            return
        self.events_received += 1
        self._events.put_nowait(event)

    def push_threadsafe(self, event: ChangeEvent) -> None:
        """Feed an event from a change-source thread."""
        loop = self._loop
        if self._disposed or loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self.push, event)
        except RuntimeError:
            # Loop shut down between the check and the call
            pass

    async def _run_timer(self) -> None:
        while True:
            await self._events.get()

            # Every further event restarts the quiet window
            while True:
                try:
                    await asyncio.wait_for(self._events.get(), timeout=self.quiet_window)
                except asyncio.TimeoutError:
                    break

            if self._disposed:
                return

            self.triggers_emitted += 1
            self._pending.set()
            self.logger.debug("Change trigger emitted", triggers_emitted=self.triggers_emitted)

    async def triggers(self) -> AsyncIterator[None]:
        """Yield once per debounced trigger until disposed."""
        while not self._disposed:
            await self._pending.wait()
            if self._disposed:
                return
            self._pending.clear()
            yield

    async def dispose(self) -> None:
        """Stop the timer and end ``triggers()``. Idempotent."""
        if self._disposed:
            return
        self._disposed = True

        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass

        # Wake the consumer so its iterator can finish
        self._pending.set()
        self.logger.debug(
            "Debounce engine disposed",
            events_received=self.events_received,
            triggers_emitted=self.triggers_emitted
        )
