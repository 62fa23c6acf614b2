"""Synchronous signals and a simulated clock for driving periodic work."""

from __future__ import annotations

import heapq
import itertools
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable

__all__ = ["Signal", "Timer", "Scheduler"]


class Signal:
    """A list of callables invoked, in connection order, on every emit."""

    def __init__(self) -> None:
        self._slots: list[Callable[..., Any]] = []

    def connect(self, slot: Callable[..., Any]) -> None:
        """Call ``slot`` with the emitted arguments from now on."""
        self._slots.append(slot)

    def disconnect(self, slot: Callable[..., Any]) -> None:
        """Stop calling ``slot``; raise ValueError if it was never connected."""
        try:
            self._slots.remove(slot)
        except ValueError:
            raise ValueError("slot is not connected to this signal") from None

    def emit(self, *args: Any) -> None:
        """Call every connected slot with ``args``."""
        for slot in list(self._slots):
            slot(*args)


class Timer:
    """A repeating timer driven by a :class:`Scheduler`."""

    def __init__(
        self, scheduler: Scheduler, interval: float, callback: Callable[[], Any]
    ) -> None:
        if interval <= 0:
            raise ValueError("timer interval must be positive")
        self.interval = float(interval)
        self._scheduler = scheduler
        self._callback = callback
        self._generation = 0
        self._active = False

    def start(self) -> None:
        """Start the timer, or restart it if it is already running."""
        self._generation += 1
        self._active = True
        self._scheduler._schedule(self.interval, partial(self._fire, self._generation))

    def stop(self) -> None:
        """Stop the timer; pending ticks are dropped."""
        self._generation += 1
        self._active = False

    def is_active(self) -> bool:
        return self._active

    def _fire(self, generation: int) -> None:
        if not self._active or generation != self._generation:
            return
        self._scheduler._schedule(self.interval, partial(self._fire, generation))
        self._callback()


class Scheduler:
    """A simulated clock that runs timers and one-shot callbacks as time advances."""

    def __init__(self, start: datetime | None = None) -> None:
        self._origin = start if start is not None else datetime.now()
        self._elapsed = 0.0
        self._queue: list[tuple[float, int, Callable[[], Any]]] = []
        self._sequence = itertools.count()

    def now(self) -> datetime:
        """The current simulated time."""
        return self._origin + timedelta(seconds=self._elapsed)

    def timer(self, interval: float, callback: Callable[[], Any]) -> Timer:
        """Create a stopped repeating timer with ``interval`` seconds."""
        return Timer(self, interval, callback)

    def single_shot(self, delay: float, callback: Callable[[], Any]) -> None:
        """Run ``callback`` once, ``delay`` seconds from now."""
        if delay < 0:
            raise ValueError("delay must not be negative")
        self._schedule(delay, callback)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, running everything that falls due, in order."""
        if seconds < 0:
            raise ValueError("cannot move the clock backwards")
        target = self._elapsed + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, action = heapq.heappop(self._queue)
            self._elapsed = due
            action()
        self._elapsed = target

    def _schedule(self, delay: float, action: Callable[[], Any]) -> None:
        heapq.heappush(self._queue, (self._elapsed + delay, next(self._sequence), action))