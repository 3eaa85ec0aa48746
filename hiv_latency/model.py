"""Headless runner: drive a World for a fixed duration and record series.

Timed interventions are given as (time_ms, command, *args) tuples, e.g.

    events = [
        (60_000, 'set_therapy', True),
        (120_000, 'introduce_pathogen'),
        (150_000, 'boost', 100),
    ]

Each event is applied between ticks, before the first tick that starts at
or after its time. Events with equal times keep their listed order.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from hiv_latency.config import SimulationConfig
from hiv_latency.snapshots import SnapshotRecorder
from hiv_latency.types import ParticleType
from hiv_latency.world import World

ALLOWED_COMMANDS = frozenset({
    'set_therapy',
    'toggle_therapy',
    'flush',
    'boost',
    'introduce_pathogen',
})

Event = Tuple[Any, ...]


@dataclass
class SimResult:
    """Per-tick timeseries plus summary from run_simulation()."""
    n_ticks: int = 0
    tick_ms: float = 0.0
    elapsed_ms: Optional[np.ndarray] = None
    healthy: Optional[np.ndarray] = None
    latent: Optional[np.ndarray] = None
    active: Optional[np.ndarray] = None
    dead: Optional[np.ndarray] = None
    hiv: Optional[np.ndarray] = None
    pathogen: Optional[np.ndarray] = None
    therapy: Optional[np.ndarray] = None
    events_applied: List[Event] = field(default_factory=list)

    # Summary
    n_cells: int = 0
    peak_hiv: int = 0
    peak_hiv_ms: float = 0.0
    final_counts: Dict[str, int] = field(default_factory=dict)


def _apply_event(world: World, event: Event) -> None:
    command, args = event[1], event[2:]
    if command not in ALLOWED_COMMANDS:
        raise ValueError(
            f"Unknown command '{command}'; expected one of {sorted(ALLOWED_COMMANDS)}"
        )
    getattr(world, command)(*args)


def run_simulation(
    config: Optional[SimulationConfig] = None,
    duration_ms: float = 120_000.0,
    events: Optional[Sequence[Event]] = None,
    recorder: Optional[SnapshotRecorder] = None,
    motion_jitter: bool = True,
    world: Optional[World] = None,
) -> SimResult:
    """Run a World for ceil(duration_ms / tick_ms) ticks.

    Args:
        config: Configuration; ignored if world is given.
        duration_ms: Simulated time to cover.
        events: Timed interventions, (time_ms, command, *args).
        recorder: Optional snapshot recorder, offered every tick.
        motion_jitter: Random velocity jitter on/off.
        world: Existing World to continue (it is started if paused).

    Returns:
        SimResult with one row per tick.

    Raises:
        ValueError: On unknown commands or negative duration.
    """
    if duration_ms < 0:
        raise ValueError(f"duration_ms must be >= 0, got {duration_ms}")
    if world is None:
        world = World(config, motion_jitter=motion_jitter)

    n_ticks = int(math.ceil(duration_ms / world.tick_ms))
    pending = sorted(events or [], key=lambda e: e[0])
    for e in pending:
        if e[1] not in ALLOWED_COMMANDS:
            raise ValueError(
                f"Unknown command '{e[1]}'; expected one of {sorted(ALLOWED_COMMANDS)}"
            )

    elapsed = np.zeros(n_ticks, dtype=np.float64)
    series = {k: np.zeros(n_ticks, dtype=np.int32)
              for k in ('healthy', 'latent', 'active', 'dead', 'hiv', 'pathogen')}
    therapy = np.zeros(n_ticks, dtype=bool)
    applied: List[Event] = []

    world.start()
    next_event = 0
    for t in range(n_ticks):
        while next_event < len(pending) and pending[next_event][0] <= world.elapsed_ms:
            _apply_event(world, pending[next_event])
            applied.append(pending[next_event])
            next_event += 1

        world.tick()

        counts = world.counts()
        elapsed[t] = world.elapsed_ms
        series['healthy'][t] = counts['HEALTHY']
        series['latent'][t] = counts['LATENT']
        series['active'][t] = counts['ACTIVE']
        series['dead'][t] = counts['DEAD']
        series['hiv'][t] = world.particle_count(ParticleType.HIV)
        series['pathogen'][t] = world.particle_count(ParticleType.PATHOGEN)
        therapy[t] = world.therapy_on

        if recorder is not None:
            recorder.capture(world)
    world.pause()

    result = SimResult(
        n_ticks=n_ticks,
        tick_ms=world.tick_ms,
        elapsed_ms=elapsed,
        therapy=therapy,
        events_applied=applied,
        n_cells=world.n_cells,
        final_counts=world.counts(),
        **series,
    )
    if n_ticks:
        peak = int(np.argmax(series['hiv']))
        result.peak_hiv = int(series['hiv'][peak])
        result.peak_hiv_ms = float(elapsed[peak])
    return result
