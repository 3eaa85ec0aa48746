"""Free-particle drift (vector field).

Each tick, for every particle:
    x += vx, y += vy
    wall hit → clamp to the inset wall, velocity component points inward
    vx, vy += Uniform(-jitter/2, +jitter/2)     (skipped when rng is None)
    |v| > max_speed → rescale to max_speed

Velocities are in world units per tick. The function is pure: it returns
a new array and never touches its input, so callers can keep the
pre-motion array for comparison.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from hiv_latency.config import MotionSection


# ═══════════════════════════════════════════════════════════════════════
# BOUNDARY REFLECTION
# ═══════════════════════════════════════════════════════════════════════

def _reflect_axis(
    pos: np.ndarray,
    vel: np.ndarray,
    lo: float,
    hi: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Clamp positions to [lo, hi] and point the velocity back inside.

    Sign is forced, not flipped, so a particle already heading inward
    keeps its direction.
    """
    pos = pos.copy()
    vel = vel.copy()

    below = pos < lo
    pos[below] = lo
    vel[below] = np.abs(vel[below])

    above = pos > hi
    pos[above] = hi
    vel[above] = -np.abs(vel[above])
    return pos, vel


def clamp_speed(
    vx: np.ndarray,
    vy: np.ndarray,
    max_speed: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Rescale velocities whose magnitude exceeds max_speed."""
    speed = np.hypot(vx, vy)
    fast = speed > max_speed
    if not np.any(fast):
        return vx, vy
    scale = np.ones_like(speed)
    scale[fast] = max_speed / speed[fast]
    return vx * scale, vy * scale


# ═══════════════════════════════════════════════════════════════════════
# MOTION STEP
# ═══════════════════════════════════════════════════════════════════════

def move_particles(
    particles: np.ndarray,
    width: float,
    height: float,
    cfg: MotionSection,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Advance all particles one tick.

    Args:
        particles: Structured array with PARTICLE_DTYPE.
        width: World width.
        height: World height.
        cfg: Motion parameters (wall inset, jitter, speed clamp).
        rng: Generator for velocity jitter. None disables jitter, which
            makes the step fully deterministic.

    Returns:
        New particle array; the input is left unchanged.
    """
    out = particles.copy()
    n = out.shape[0]
    if n == 0:
        return out

    x = out['x'] + out['vx']
    y = out['y'] + out['vy']

    inset = cfg.wall_inset
    x, vx = _reflect_axis(x, out['vx'], inset, width - inset)
    y, vy = _reflect_axis(y, out['vy'], inset, height - inset)

    if rng is not None and cfg.jitter > 0:
        vx = vx + (rng.random(n) - 0.5) * cfg.jitter
        vy = vy + (rng.random(n) - 0.5) * cfg.jitter

    vx, vy = clamp_speed(vx, vy, cfg.max_speed)

    out['x'] = x
    out['y'] = y
    out['vx'] = vx
    out['vy'] = vy
    return out
