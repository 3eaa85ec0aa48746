"""The World: single owner of all simulation state.

Holds the fixed cell population, the dynamic particle population, the
therapy and running flags, elapsed time and the cadence scheduler.
Presentation code reads snapshots and issues commands; nothing else
mutates state.

Per-tick order (tick()):
  1. elapsed += tick_ms; every cadence advances (infection, clearance)
  2. motion: particles present at tick start drift one step
  3. infection (therapy OFF only; firings due under therapy are dropped)
  4. shedding (per-cell timers)
  5. aging / death (+ burst, subject to the therapy gate)
  6. clearance (policy per therapy state, HIV only)
  7. particles spawned in 4–5 join the population; they first move next tick

Commands apply immediately and completely between ticks. tick() is a
no-op unless the World is running, so a paused World can never change.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Union

import numpy as np

from hiv_latency import cells as cellsm
from hiv_latency.config import SimulationConfig, default_config, validate_config
from hiv_latency.layout import place_cells
from hiv_latency.motion import move_particles
from hiv_latency.particles import (
    concat,
    count_particles,
    flush,
    spawn_near,
    spawn_uniform,
)
from hiv_latency.rng import create_rng_hierarchy
from hiv_latency.rules import (
    clearance_step,
    death_step,
    infection_step,
    pathogen_burst_size,
    shedding_step,
)
from hiv_latency.scheduler import Scheduler
from hiv_latency.types import (
    CellState,
    ParticleType,
    WorldSnapshot,
    as_particle_type,
)

logger = logging.getLogger(__name__)


def format_elapsed(ms: float) -> str:
    """m:ss clock string."""
    s = max(0, int(ms // 1000))
    return f"{s // 60}:{s % 60:02d}"


class World:
    """Tick-driven HIV latency simulation.

    Args:
        config: Simulation configuration; validated here. Defaults to
            default_config().
        motion_jitter: If False, particles drift without random velocity
            perturbation (deterministic motion).
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        motion_jitter: bool = True,
    ):
        if config is None:
            config = default_config()
        else:
            validate_config(config)
        self.config = config
        self.motion_jitter = motion_jitter
        self.width = float(config.world.width)
        self.height = float(config.world.height)
        self.tick_ms = float(config.simulation.tick_ms)

        self.scheduler = Scheduler(self.tick_ms)
        self.scheduler.add('infection', config.infection.period_ms)
        self.scheduler.add('clearance', config.clearance.period_ms)

        self._initialize()

    # ── lifecycle ────────────────────────────────────────────────────

    def _initialize(self) -> None:
        cfg = self.config
        w = cfg.world
        self.rngs = create_rng_hierarchy(cfg.simulation.seed)
        self.cells = place_cells(
            w.n_cells, self.width, self.height, self.rngs['layout'],
            grid_threshold=w.grid_threshold,
            grid_jitter=w.grid_jitter,
            min_spacing=w.min_spacing,
            max_attempts=w.placement_attempts,
            margin=w.margin,
        )
        self.particles = spawn_uniform(
            w.initial_particles, self.width, self.height, self.rngs['seeding'],
            ptype=ParticleType.HIV,
            speed=cfg.motion.initial_speed,
            margin=w.spawn_margin,
        )
        self.n_cells = int(self.cells.shape[0])
        self.elapsed_ms = 0.0
        self.tick_count = 0
        self.therapy_on = False
        self.running = False
        self.scheduler.reset()
        self.last_events: Dict[str, int] = {}

    def reset(self) -> None:
        """Reinitialize population, particles, timers and toggles.

        Reseeds every RNG stream from the configured seed, so a reset
        World is identical to a freshly constructed one.
        """
        self._initialize()
        logger.info("reset: %d cells, %d particles",
                    self.n_cells, self.particle_count())

    def start(self) -> None:
        if not self.running:
            self.running = True
            logger.info("start at %s", format_elapsed(self.elapsed_ms))

    def pause(self) -> None:
        if self.running:
            self.running = False
            logger.info("pause at %s", format_elapsed(self.elapsed_ms))

    def toggle_running(self) -> bool:
        if self.running:
            self.pause()
        else:
            self.start()
        return self.running

    # ── commands ─────────────────────────────────────────────────────

    def set_therapy(self, on: bool) -> int:
        """Set the therapy flag. On the OFF→ON edge every ACTIVE cell
        becomes LATENT immediately.

        Returns:
            Number of cells moved to LATENT (0 unless this was an ON edge).
        """
        on = bool(on)
        if on == self.therapy_on:
            return 0
        self.therapy_on = on
        moved = 0
        if on:
            moved = cellsm.suppress_active(
                self.cells, timer_on_suppress=self.config.shedding.timer_on_suppress)
        logger.info("therapy %s (%d active → latent)", "ON" if on else "OFF", moved)
        return moved

    def toggle_therapy(self) -> bool:
        self.set_therapy(not self.therapy_on)
        return self.therapy_on

    def flush(self, ptype: Optional[Union[int, str]] = ParticleType.HIV) -> int:
        """Remove all particles of one species (None = every species).

        ptype may be a ParticleType, its value or its name ("HIV").

        Returns:
            Number of particles removed.

        Raises:
            ValueError: If ptype names no particle species.
        """
        if ptype is not None:
            ptype = as_particle_type(ptype)
        before = self.particle_count()
        self.particles = flush(self.particles, ptype)
        removed = before - self.particle_count()
        logger.info("flush: removed %d %s particles", removed,
                    "all" if ptype is None else ptype.name)
        return removed

    def boost(
        self,
        n: Optional[int] = None,
        ptype: Union[int, str] = ParticleType.HIV,
    ) -> int:
        """Add n particles at uniform random positions.

        Raises:
            ValueError: If n is negative or ptype names no particle species.
        """
        ptype = as_particle_type(ptype)
        if n is None:
            n = self.config.boost.default_quantity
        if n < 0:
            raise ValueError(f"boost quantity must be >= 0, got {n}")
        added = spawn_uniform(
            int(n), self.width, self.height, self.rngs['interventions'],
            ptype=ptype,
            speed=self.config.motion.initial_speed,
            margin=self.config.world.spawn_margin,
        )
        self.particles = concat(self.particles, added)
        logger.info("boost: +%d %s", n, ptype.name)
        return int(n)

    def introduce_pathogen(self) -> Dict[str, int]:
        """Reactivate the latent reservoir and spawn a pathogen burst.

        Particles spawn around randomly chosen living cells (any non-DEAD
        cell; every cell if all are dead).

        Returns:
            {'reactivated': ..., 'spawned': ...}
        """
        pcfg = self.config.pathogen
        counts = self.counts()
        n_infected = counts['ACTIVE'] + counts['LATENT']

        reactivated = 0
        if pcfg.reactivate_latent:
            reactivated = cellsm.reactivate_latent(self.cells)

        n = pathogen_burst_size(n_infected, pcfg)
        centers = np.flatnonzero(self.cells['state'] != CellState.DEAD)
        if centers.size == 0:
            centers = np.arange(self.n_cells)
        spawned = spawn_near(
            n, self.cells['x'][centers], self.cells['y'][centers],
            self.rngs['interventions'],
            ptype=ParticleType[pcfg.particle_type],
            speed=self.config.motion.initial_speed,
            spread=pcfg.spread,
        )
        self.particles = concat(self.particles, spawned)
        logger.info("pathogen: reactivated %d latent, +%d %s",
                    reactivated, spawned.shape[0], pcfg.particle_type)
        return {'reactivated': reactivated, 'spawned': int(spawned.shape[0])}

    # ── tick ─────────────────────────────────────────────────────────

    def tick(self) -> bool:
        """Run one full update if running.

        Returns:
            True if a tick was performed, False if the World is paused.
        """
        if not self.running:
            return False
        self._tick()
        return True

    def step(self, n: int = 1, force: bool = False) -> int:
        """Run up to n ticks. force=True ticks even while paused.

        Returns:
            Number of ticks performed.
        """
        done = 0
        for _ in range(n):
            if force:
                self._tick()
            elif not self.tick():
                break
            done += 1
        return done

    def _tick(self) -> None:
        cfg = self.config
        dt = self.tick_ms
        speed = cfg.motion.initial_speed

        self.elapsed_ms += dt
        self.tick_count += 1
        fired = self.scheduler.advance_all()

        # Motion: only particles that existed at tick start
        motion_rng = self.rngs['motion'] if self.motion_jitter else None
        self.particles = move_particles(
            self.particles, self.width, self.height, cfg.motion, motion_rng)

        infected = np.zeros(0, dtype=np.intp)
        if not self.therapy_on and fired['infection']:
            n_hiv = count_particles(self.particles, ParticleType.HIV)
            infected = infection_step(
                self.cells, n_hiv, fired['infection'], cfg.infection,
                self.rngs['infection'])

        shed = shedding_step(self.cells, dt, cfg.shedding,
                             self.rngs['shedding'], speed=speed)
        dead, burst = death_step(self.cells, dt, self.therapy_on, cfg.death,
                                 self.rngs['death'], speed=speed)

        removed = 0
        if fired['clearance']:
            self.particles, removed = clearance_step(
                self.particles, fired['clearance'], self.therapy_on, cfg.clearance)

        self.particles = concat(self.particles, shed, burst)

        self.last_events = {
            'infected': int(infected.size),
            'shed': int(shed.shape[0]),
            'died': int(dead.size),
            'burst': int(burst.shape[0]),
            'cleared': removed,
        }
        if any(self.last_events.values()):
            logger.debug("tick %d (%s): %s", self.tick_count,
                         format_elapsed(self.elapsed_ms), self.last_events)

    # ── queries ──────────────────────────────────────────────────────

    def counts(self) -> Dict[str, int]:
        """Cells per state, keyed by state name."""
        return {s.name: n for s, n in cellsm.state_counts(self.cells).items()}

    def particle_count(self, ptype: Optional[int] = None) -> int:
        return count_particles(self.particles, ptype)

    def particle_counts(self) -> Dict[str, int]:
        return {t.name: count_particles(self.particles, t) for t in ParticleType}

    def cell_positions(self) -> np.ndarray:
        """(n_cells, 2) array of cell positions (copy)."""
        return np.column_stack([self.cells['x'], self.cells['y']]).astype(np.float64)

    def particle_positions(self, ptype: Optional[int] = None) -> np.ndarray:
        """(n, 2) array of particle positions (copy), optionally one species."""
        p = self.particles
        if ptype is not None:
            p = p[p['ptype'] == ptype]
        return np.column_stack([p['x'], p['y']])

    @property
    def elapsed_label(self) -> str:
        return format_elapsed(self.elapsed_ms)

    def snapshot(self) -> WorldSnapshot:
        """Copy of the state a renderer needs."""
        return WorldSnapshot(
            tick=self.tick_count,
            elapsed_ms=self.elapsed_ms,
            therapy_on=self.therapy_on,
            running=self.running,
            width=self.width,
            height=self.height,
            cell_counts=self.counts(),
            particle_counts=self.particle_counts(),
            cell_x=self.cells['x'].copy(),
            cell_y=self.cells['y'].copy(),
            cell_radius=self.cells['radius'].copy(),
            cell_state=self.cells['state'].copy(),
            particle_x=self.particles['x'].copy(),
            particle_y=self.particles['y'].copy(),
            particle_type=self.particles['ptype'].copy(),
        )

    def check_invariants(self) -> None:
        """Full-recount cross-check of population bookkeeping.

        Raises:
            RuntimeError: If any invariant is violated.
        """
        if self.cells.shape[0] != self.n_cells:
            raise RuntimeError(
                f"cell array holds {self.cells.shape[0]} cells, expected {self.n_cells}"
            )
        states = self.cells['state']
        if not np.all((states >= 0) & (states < len(CellState))):
            raise RuntimeError("unknown cell state")
        counts = self.counts()
        if sum(counts.values()) != self.n_cells:
            raise RuntimeError(f"cell count drifted: {counts} vs {self.n_cells}")
        healthy_or_dead = (states == CellState.HEALTHY) | (states == CellState.DEAD)
        if not np.all(self.cells['age_ms'][healthy_or_dead] == 0.0):
            raise RuntimeError("age timer running outside ACTIVE/LATENT")
