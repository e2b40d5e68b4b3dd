"""Restartable call duration timer."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .const import CALL_TIMER_INTERVAL

_LOGGER = logging.getLogger(__name__)

TickHandler = Callable[[int], None]


def format_duration(seconds: int) -> str:
    """Render seconds as MM:SS, minutes unbounded."""
    minutes, secs = divmod(max(int(seconds), 0), 60)
    return f"{minutes:02d}:{secs:02d}"


class CallTimer:
    """Count whole seconds while a call is connected."""

    def __init__(
        self,
        on_tick: TickHandler | None = None,
        interval: float = CALL_TIMER_INTERVAL,
    ) -> None:
        """Initialize the timer."""
        self._on_tick = on_tick
        self._interval = interval
        self._elapsed = 0
        self._task: asyncio.Task | None = None

    @property
    def elapsed_seconds(self) -> int:
        """Seconds counted so far."""
        return self._elapsed

    @property
    def running(self) -> bool:
        """True while a tick loop is scheduled."""
        return self._task is not None

    def formatted(self) -> str:
        """Return the elapsed time as MM:SS."""
        return format_duration(self._elapsed)

    def start(self) -> None:
        """Start or rearm ticking, keeping the elapsed count."""
        if self._task is not None:
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._tick_loop())

    def stop(self) -> None:
        """Stop ticking and keep the elapsed count."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def reset(self) -> None:
        """Stop ticking and zero the elapsed count."""
        self.stop()
        self._elapsed = 0

    def tick(self) -> None:
        """Apply one second of elapsed time."""
        self._elapsed += 1
        if self._on_tick is None:
            return
        try:
            self._on_tick(self._elapsed)
        except Exception:
            _LOGGER.exception("Call timer tick handler failed")

    async def _tick_loop(self) -> None:
        """Tick once per interval until cancelled."""
        task = asyncio.current_task()
        try:
            while True:
                await asyncio.sleep(self._interval)
                # A cancelled or superseded loop never applies a tick
                if self._task is not task:
                    return
                self.tick()
        except asyncio.CancelledError:
            pass
