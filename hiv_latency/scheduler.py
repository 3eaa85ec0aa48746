"""Cadence accumulators: several recurring rules off one fixed tick.

Each rule owns an accumulator. Every tick adds tick_ms; the rule fires
floor(accumulator / period) times and the accumulator keeps the remainder:

    acc += tick_ms
    fired = floor(acc / period)
    acc -= fired * period

Because the remainder is carried, a 2000 ms rule on a 320 ms tick fires
at 2240, 4160, 6080, ... ms and never drifts: after t ms it has fired
exactly floor(t / period) times.
"""

from __future__ import annotations

import math
from typing import Dict, Iterator


class Cadence:
    """Remainder-preserving accumulator for one recurring rule."""

    def __init__(self, name: str, period_ms: float):
        if period_ms <= 0:
            raise ValueError(f"Cadence '{name}' period must be > 0, got {period_ms}")
        self.name = name
        self.period_ms = float(period_ms)
        self.accumulator = 0.0
        self.total_fired = 0

    def advance(self, dt_ms: float) -> int:
        """Add dt_ms and return how many times the rule fires this tick."""
        if dt_ms < 0:
            raise ValueError(f"Cadence '{self.name}' cannot advance by {dt_ms} ms")
        self.accumulator += dt_ms
        fired = math.floor(self.accumulator / self.period_ms)
        if fired:
            self.accumulator -= fired * self.period_ms
            self.total_fired += fired
        return fired

    def reset(self) -> None:
        self.accumulator = 0.0
        self.total_fired = 0

    def __repr__(self) -> str:
        return (f"Cadence({self.name!r}, period_ms={self.period_ms}, "
                f"acc={self.accumulator:.1f}, fired={self.total_fired})")


class Scheduler:
    """Fixed-tick driver for a set of independent cadences."""

    def __init__(self, tick_ms: float):
        if tick_ms <= 0:
            raise ValueError(f"tick_ms must be > 0, got {tick_ms}")
        self.tick_ms = float(tick_ms)
        self._cadences: Dict[str, Cadence] = {}

    def add(self, name: str, period_ms: float) -> Cadence:
        if name in self._cadences:
            raise KeyError(f"Cadence '{name}' already registered")
        cadence = Cadence(name, period_ms)
        self._cadences[name] = cadence
        return cadence

    def __getitem__(self, name: str) -> Cadence:
        return self._cadences[name]

    def __contains__(self, name: str) -> bool:
        return name in self._cadences

    def __iter__(self) -> Iterator[Cadence]:
        return iter(self._cadences.values())

    def advance_all(self) -> Dict[str, int]:
        """Advance every cadence by one tick. Returns {name: fired}."""
        return {name: c.advance(self.tick_ms) for name, c in self._cadences.items()}

    def reset(self) -> None:
        for cadence in self._cadences.values():
            cadence.reset()
