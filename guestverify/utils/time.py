"""
Clock / scheduler capability.

Every timer in the engine (OTP countdowns, persistence debounce, notification
auto-dismiss, background-check polling) goes through one of these objects so
that tests can drive time explicitly instead of waiting on the wall clock.
"""
import asyncio
import heapq
import itertools
import time
from typing import Any, Callable, List, Optional, Tuple


def now_ms() -> int:
    return int(time.time() * 1000)


class LoopScheduler:
    """Wall-clock scheduler backed by the running asyncio loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def now(self) -> float:
        return time.time()

    def now_ms(self) -> int:
        return int(self.now() * 1000)

    def running(self) -> bool:
        """Whether call_later can schedule right now."""
        if self._loop is not None:
            return not self._loop.is_closed()
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, float(delay)), callback, *args)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(max(0.0, float(delay)))


class ManualHandle:
    def __init__(self, due: float, callback: Callable[..., Any], args: Tuple[Any, ...]):
        self.due = due
        self._callback = callback
        self._args = args
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def _run(self) -> None:
        self._callback(*self._args)


class ManualScheduler:
    """
    Deterministic scheduler: time only moves when advance() is called.
    Callbacks fire in due-time order; ties fire in scheduling order.
    """

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, ManualHandle]] = []

    def now(self) -> float:
        return self._now

    def now_ms(self) -> int:
        return int(self._now * 1000)

    def running(self) -> bool:
        return True

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> ManualHandle:
        handle = ManualHandle(self._now + max(0.0, float(delay)), callback, args)
        heapq.heappush(self._queue, (handle.due, next(self._seq), handle))
        return handle

    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled())

    def advance(self, seconds: float) -> None:
        target = self._now + max(0.0, float(seconds))
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            if handle.cancelled():
                continue
            self._now = due
            handle._run()
        self._now = target

    async def sleep(self, delay: float) -> None:
        fut = asyncio.get_running_loop().create_future()

        def _wake():
            if not fut.done():
                fut.set_result(None)

        self.call_later(delay, _wake)
        await fut


class Debouncer:
    """
    Keyed trailing-edge debounce: only the last call per key within `delay` runs.
    With no loop to schedule on, the callback runs at once.
    """

    def __init__(self, scheduler, delay: float):
        self.scheduler = scheduler
        self.delay = float(delay)
        self._handles = {}

    def call(self, key: Any, callback: Callable[[], Any]) -> None:
        self.cancel(key)
        if not self.scheduler.running():
            callback()
            return

        def _fire():
            self._handles.pop(key, None)
            callback()

        self._handles[key] = self.scheduler.call_later(self.delay, _fire)

    def cancel(self, key: Any) -> None:
        handle = self._handles.pop(key, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for key in list(self._handles):
            self.cancel(key)

    def pending(self) -> int:
        return len(self._handles)
