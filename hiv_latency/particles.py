"""Free particle population: spawning, counting, removal.

Particles are fungible within a species: removal is by count, not by
identity. The array is rebuilt on every change (concatenate / mask), so a
caller holding an old array never sees it mutate.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from hiv_latency.types import PARTICLE_DTYPE, ParticleType, allocate_particles


def _random_velocities(n: int, speed: float, rng: np.random.Generator):
    vx = (rng.random(n) - 0.5) * speed
    vy = (rng.random(n) - 0.5) * speed
    return vx, vy


def spawn_uniform(
    n: int,
    width: float,
    height: float,
    rng: np.random.Generator,
    ptype: int = ParticleType.HIV,
    speed: float = 1.2,
    margin: float = 10.0,
) -> np.ndarray:
    """Spawn n particles uniformly inside [margin, size - margin]."""
    out = allocate_particles(max(0, n))
    if n <= 0:
        return out
    out['x'] = margin + rng.random(n) * (width - 2 * margin)
    out['y'] = margin + rng.random(n) * (height - 2 * margin)
    out['vx'], out['vy'] = _random_velocities(n, speed, rng)
    out['ptype'] = ptype
    return out


def spawn_around(
    xs: np.ndarray,
    ys: np.ndarray,
    rng: np.random.Generator,
    ptype: int = ParticleType.HIV,
    speed: float = 1.2,
    spread: float = 20.0,
) -> np.ndarray:
    """Spawn one particle per (x, y) point, offset by ±spread/2 per axis.

    Positions are not clamped here; the next motion step pulls strays
    back inside the walls.
    """
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    n = xs.size
    out = allocate_particles(n)
    if n == 0:
        return out
    out['x'] = xs + (rng.random(n) - 0.5) * spread
    out['y'] = ys + (rng.random(n) - 0.5) * spread
    out['vx'], out['vy'] = _random_velocities(n, speed, rng)
    out['ptype'] = ptype
    return out


def spawn_near(
    n: int,
    centers_x: np.ndarray,
    centers_y: np.ndarray,
    rng: np.random.Generator,
    ptype: int = ParticleType.HIV,
    speed: float = 1.2,
    spread: float = 20.0,
) -> np.ndarray:
    """Spawn n particles around randomly chosen centers.

    Each particle picks one center uniformly. With no centers, nothing
    is spawned.
    """
    centers_x = np.asarray(centers_x, dtype=np.float64)
    centers_y = np.asarray(centers_y, dtype=np.float64)
    if n <= 0 or centers_x.size == 0:
        return allocate_particles(0)

    pick = rng.integers(0, centers_x.size, size=n)
    return spawn_around(centers_x[pick], centers_y[pick], rng,
                        ptype=ptype, speed=speed, spread=spread)


def concat(*arrays: np.ndarray) -> np.ndarray:
    """Concatenate particle arrays (empty inputs are fine)."""
    parts = [a for a in arrays if a is not None and a.shape[0] > 0]
    if not parts:
        return allocate_particles(0)
    return np.concatenate(parts).astype(PARTICLE_DTYPE, copy=False)


def count_particles(particles: np.ndarray, ptype: Optional[int] = None) -> int:
    """Count all particles, or only those of one species."""
    if ptype is None:
        return int(particles.shape[0])
    return int(np.count_nonzero(particles['ptype'] == ptype))


def remove_particles(
    particles: np.ndarray,
    n: int,
    ptype: int = ParticleType.HIV,
) -> np.ndarray:
    """Drop the newest n particles of one species; others are untouched.

    Particles are appended as they spawn, so the newest are the last n of
    that species in array order.

    n larger than the species count removes all of that species.
    """
    if n <= 0:
        return particles
    of_type = np.flatnonzero(particles['ptype'] == ptype)
    if of_type.size == 0:
        return particles
    keep = np.ones(particles.shape[0], dtype=bool)
    keep[of_type[-n:]] = False
    return particles[keep]


def flush(particles: np.ndarray, ptype: Optional[int] = None) -> np.ndarray:
    """Remove every particle, or every particle of one species."""
    if ptype is None:
        return allocate_particles(0)
    return particles[particles['ptype'] != ptype]
