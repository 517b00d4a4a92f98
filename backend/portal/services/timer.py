from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

log = logging.getLogger(__name__)


def format_remaining(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


class CountdownTimer:
    """One-second countdown driven by an asyncio task.

    `tick()` is the unit of work; the background task only calls it once per
    `interval`. The timer never stops by itself at zero: the owner cancels or
    re-arms it from `on_expire`. A failing callback cancels the timer.
    """

    def __init__(
        self,
        on_expire: Callable[[], None],
        on_tick: Callable[[int], None] | None = None,
        *,
        interval: float = 1.0,
        autorun: bool = True,
    ):
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._interval = float(interval)
        self._autorun = autorun
        self._remaining = 0
        self._armed = False
        self._task: asyncio.Task | None = None

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._armed

    def formatted(self) -> str:
        return format_remaining(self._remaining)

    def arm(self, seconds: int) -> None:
        if seconds <= 0:
            raise ValueError("countdown must be positive")
        self.cancel()
        self._remaining = int(seconds)
        self._armed = True
        if self._autorun:
            self._task = asyncio.get_running_loop().create_task(self._run())

    def reset(self, seconds: int) -> None:
        """Restart the countdown without replacing the background task."""

        if not self._armed:
            self.arm(seconds)
            return
        if seconds <= 0:
            raise ValueError("countdown must be positive")
        self._remaining = int(seconds)

    def cancel(self) -> None:
        self._armed = False
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    def tick(self) -> None:
        if not self._armed:
            return
        self._remaining = max(0, self._remaining - 1)
        try:
            if self._on_tick is not None:
                self._on_tick(self._remaining)
            if self._armed and self._remaining == 0:
                self._on_expire()
        except Exception:
            log.exception("timer callback failed; cancelling countdown")
            self.cancel()

    async def _run(self) -> None:
        me = asyncio.current_task()
        # A re-arm from inside a callback starts a new task; this one then retires.
        while self._armed and self._task is me:
            await asyncio.sleep(self._interval)
            if self._task is not me:
                return
            self.tick()


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
