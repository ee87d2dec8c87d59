"""Discrete-event scheduler driving the channel and the sender timers.

Time is virtual: ``now`` only advances when :meth:`EventLoop.run` pops the
next event off the heap, so a 1000-unit timeout costs nothing to wait for.
"""
from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable


@dataclass(eq=False, slots=True)
class Timer:
    when: float
    fn: Callable[..., Any]
    args: tuple = ()
    cancelled: bool = False
    fired: bool = False

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self) -> None:
        self.cancelled = True


@dataclass(slots=True)
class EventLoop:
    now: float = 0.0
    _queue: list = field(default_factory=list)
    _ids: Any = field(default_factory=itertools.count)

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> Timer:
        if delay != delay:  # NaN
            raise ValueError("delay must be a number")
        timer = Timer(when=self.now + max(0.0, delay), fn=fn, args=args)
        heapq.heappush(self._queue, (timer.when, next(self._ids), timer))
        return timer

    def call_soon(self, fn: Callable[..., Any], *args: Any) -> Timer:
        return self.call_later(0.0, fn, *args)

    @property
    def pending(self) -> int:
        return sum(1 for _, _, t in self._queue if t.active)

    def run(self, until: float | None = None) -> int:
        """Run callbacks in time order; returns how many ran."""
        ran = 0
        while self._queue:
            when, _, timer = self._queue[0]
            if until is not None and when > until:
                break
            heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self.now = when
            timer.fired = True
            timer.fn(*timer.args)
            ran += 1
        if until is not None and until > self.now:
            self.now = until
        return ran
