"""Event rules: infection, shedding, death, clearance, intervention sizing.

Each rule reads the cell array and/or particle counts and returns what it
changed; spawned particles are handed back to the caller rather than
appended here, so the World can hold them out of the motion step until
the following tick.

Infection pressure couples to free HIV load:
    batch = min(n_healthy, base_batch + floor(n_hiv / particles_per_extra))

Clearance is a pluggable policy: a callable
    (therapy_on, n_hiv, ClearanceSection) → particles to remove per firing
registered by name in CLEARANCE_POLICIES.
"""

from __future__ import annotations

from typing import Callable, Dict, Tuple

import numpy as np

from hiv_latency.cells import indices_in, infect, kill
from hiv_latency.config import (
    ClearanceSection,
    DeathSection,
    InfectionSection,
    PathogenSection,
    SheddingSection,
)
from hiv_latency.particles import remove_particles, spawn_around
from hiv_latency.types import CellState, ParticleType, allocate_particles

ClearancePolicy = Callable[[bool, int, ClearanceSection], int]


# ═══════════════════════════════════════════════════════════════════════
# INFECTION
# ═══════════════════════════════════════════════════════════════════════

def infection_batch_size(n_healthy: int, n_hiv: int, cfg: InfectionSection) -> int:
    """Healthy cells to infect in one firing, capped by available targets."""
    if n_healthy <= 0:
        return 0
    wanted = cfg.base_batch + n_hiv // cfg.particles_per_extra
    return int(min(n_healthy, wanted))


def infection_step(
    cells: np.ndarray,
    n_hiv: int,
    firings: int,
    cfg: InfectionSection,
    rng: np.random.Generator,
) -> np.ndarray:
    """Infect distinct HEALTHY cells, uniformly without replacement.

    Each firing re-reads the healthy set, so several firings in one tick
    never pick the same cell twice.

    Returns:
        Indices of newly ACTIVE cells (possibly empty).
    """
    infected = []
    for _ in range(firings):
        healthy = indices_in(cells, CellState.HEALTHY)
        k = infection_batch_size(healthy.size, n_hiv, cfg)
        if k == 0:
            break
        chosen = rng.choice(healthy, size=k, replace=False)
        infect(cells, chosen)
        infected.append(chosen)
    if not infected:
        return np.zeros(0, dtype=np.intp)
    return np.concatenate(infected)


# ═══════════════════════════════════════════════════════════════════════
# SHEDDING (TRICKLE)
# ═══════════════════════════════════════════════════════════════════════

def shedding_step(
    cells: np.ndarray,
    dt_ms: float,
    cfg: SheddingSection,
    rng: np.random.Generator,
    speed: float = 1.2,
) -> np.ndarray:
    """Advance per-cell shedding timers and emit halos around producers.

    Eligible cells are ACTIVE, plus LATENT when cfg.latent_sheds. A
    non-eligible LATENT cell keeps its timer frozen.

    Returns:
        Newly spawned HIV particles (not yet in the World).
    """
    state = cells['state']
    eligible = state == CellState.ACTIVE
    if cfg.latent_sheds:
        eligible |= state == CellState.LATENT
    idx = np.flatnonzero(eligible)
    if idx.size == 0:
        return allocate_particles(0)

    timers = cells['shed_ms'][idx] + dt_ms
    releases = np.floor(timers / cfg.period_ms).astype(np.intp)
    cells['shed_ms'][idx] = timers - releases * cfg.period_ms

    per_cell = releases * cfg.quantity
    if per_cell.sum() == 0:
        return allocate_particles(0)
    xs = np.repeat(cells['x'][idx].astype(np.float64), per_cell)
    ys = np.repeat(cells['y'][idx].astype(np.float64), per_cell)
    return spawn_around(xs, ys, rng, ptype=ParticleType.HIV,
                        speed=speed, spread=cfg.spread)


# ═══════════════════════════════════════════════════════════════════════
# AGING / DEATH
# ═══════════════════════════════════════════════════════════════════════

def death_step(
    cells: np.ndarray,
    dt_ms: float,
    therapy_on: bool,
    cfg: DeathSection,
    rng: np.random.Generator,
    speed: float = 1.2,
) -> Tuple[np.ndarray, np.ndarray]:
    """Age ACTIVE cells; past min_dwell each rolls prob_per_tick to die.

    A death spawns burst_quantity HIV particles at the cell unless
    burst_requires_therapy_off is set and therapy is ON. Unless
    dies_under_therapy is set, no cell dies while therapy is ON (ageing
    continues).

    Returns:
        (indices of newly DEAD cells, burst particles)
    """
    active = indices_in(cells, CellState.ACTIVE)
    if active.size == 0:
        return np.zeros(0, dtype=np.intp), allocate_particles(0)

    cells['age_ms'][active] += dt_ms
    if therapy_on and not cfg.dies_under_therapy:
        return np.zeros(0, dtype=np.intp), allocate_particles(0)

    eligible = active[cells['age_ms'][active] >= cfg.min_dwell_ms]
    if eligible.size == 0:
        return np.zeros(0, dtype=np.intp), allocate_particles(0)

    rolls = rng.random(eligible.size)
    dead = eligible[rolls < cfg.prob_per_tick]
    if dead.size == 0:
        return dead, allocate_particles(0)

    # Positions survive the transition, so read them after kill()
    kill(cells, dead)
    if cfg.burst_requires_therapy_off and therapy_on:
        return dead, allocate_particles(0)

    xs = np.repeat(cells['x'][dead].astype(np.float64), cfg.burst_quantity)
    ys = np.repeat(cells['y'][dead].astype(np.float64), cfg.burst_quantity)
    burst = spawn_around(xs, ys, rng, ptype=ParticleType.HIV,
                         speed=speed, spread=cfg.spread)
    return dead, burst


# ═══════════════════════════════════════════════════════════════════════
# CLEARANCE POLICIES
# ═══════════════════════════════════════════════════════════════════════

def proportional_clearance(therapy_on: bool, n_hiv: int, cfg: ClearanceSection) -> int:
    """floor(fraction × n), at least min_removal while any HIV is left."""
    frac = cfg.fraction_on if therapy_on else cfg.fraction_off
    if frac <= 0 or n_hiv <= 0:
        return 0
    return min(n_hiv, max(cfg.min_removal, int(n_hiv * frac)))


def fixed_clearance(therapy_on: bool, n_hiv: int, cfg: ClearanceSection) -> int:
    """Constant number per firing."""
    rate = cfg.rate_on if therapy_on else cfg.rate_off
    return max(0, min(n_hiv, rate))


def no_clearance(therapy_on: bool, n_hiv: int, cfg: ClearanceSection) -> int:
    return 0


CLEARANCE_POLICIES: Dict[str, ClearancePolicy] = {
    "proportional": proportional_clearance,
    "fixed": fixed_clearance,
    "none": no_clearance,
}


def register_clearance_policy(name: str, policy: ClearancePolicy) -> None:
    """Make a custom clearance policy selectable via clearance.policy."""
    if not callable(policy):
        raise TypeError(f"clearance policy '{name}' must be callable")
    CLEARANCE_POLICIES[name] = policy


def clearance_step(
    particles: np.ndarray,
    firings: int,
    therapy_on: bool,
    cfg: ClearanceSection,
) -> Tuple[np.ndarray, int]:
    """Apply the configured policy once per firing, on HIV only.

    The policy sees the HIV count as it stands before each firing.

    Returns:
        (remaining particles, number removed)
    """
    policy = CLEARANCE_POLICIES[cfg.policy]
    removed = 0
    for _ in range(firings):
        n_hiv = int(np.count_nonzero(particles['ptype'] == ParticleType.HIV))
        n = min(n_hiv, int(policy(therapy_on, n_hiv, cfg)))
        if n <= 0:
            continue
        particles = remove_particles(particles, n, ParticleType.HIV)
        removed += n
    return particles, removed


# ═══════════════════════════════════════════════════════════════════════
# INTERVENTION SIZING
# ═══════════════════════════════════════════════════════════════════════

def pathogen_burst_size(n_infected: int, cfg: PathogenSection) -> int:
    """Particles spawned by one Introduce Pathogen command."""
    if cfg.mode == "per_infected":
        return cfg.quantity + cfg.per_infected * max(0, n_infected)
    return cfg.quantity
