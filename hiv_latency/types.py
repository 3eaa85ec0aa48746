"""Core data types for HIV-Latency.

This module is the SINGLE SOURCE OF TRUTH for:
  - CellState, ParticleType enumerations
  - CELL_DTYPE: NumPy structured array dtype for memory T-cells
  - PARTICLE_DTYPE: NumPy structured array dtype for free particles
  - WorldSnapshot: read-only transfer object handed to presentation code

All modules import these types from here. No other module defines cell or
particle fields.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class CellState(IntEnum):
    """Lifecycle of a memory T-cell.

    HEALTHY → ACTIVE   (infection rule)
    ACTIVE  → LATENT   (ART switched on)
    ACTIVE  → DEAD     (after minimum dwell, per-tick death roll)
    LATENT  → ACTIVE   (pathogen-triggered reactivation)
    DEAD is absorbing.
    """
    HEALTHY = 0   # Uninfected
    LATENT  = 1   # Infected, quiescent (reservoir)
    ACTIVE  = 2   # Infected, producing virus
    DEAD    = 3   # Terminal


class ParticleType(IntEnum):
    """Free particle species."""
    HIV      = 0   # Free virion; drives infection, subject to clearance
    PATHOGEN = 1   # Unrelated pathogen (e.g. influenza); visual only


def as_particle_type(value) -> ParticleType:
    """ParticleType from an enum member, its integer value or its name.

    Names are case-insensitive ("HIV", "pathogen"), so commands read from
    YAML or the command line can name a species.

    Raises:
        ValueError: If value names no particle species.
    """
    if isinstance(value, ParticleType):
        return value
    if isinstance(value, str):
        try:
            return ParticleType[value.strip().upper()]
        except KeyError:
            pass
    elif isinstance(value, (int, np.integer)) and not isinstance(value, bool):
        try:
            return ParticleType(int(value))
        except ValueError:
            pass
    raise ValueError(
        f"Unknown particle type {value!r}; expected one of "
        f"{[t.name for t in ParticleType]}"
    )


N_CELL_STATES = len(CellState)


# ═══════════════════════════════════════════════════════════════════════
# CELL_DTYPE — fixed-size population, allocated once per World
# ═══════════════════════════════════════════════════════════════════════

CELL_DTYPE = np.dtype([
    ('x',        np.float32),   # position X (world units)
    ('y',        np.float32),   # position Y (world units)
    ('radius',   np.float32),   # rendering only
    ('state',    np.int8),      # CellState enum
    ('age_ms',   np.float64),   # time in current infected state (ACTIVE only)
    ('shed_ms',  np.float64),   # time since last shedding release
])


# ═══════════════════════════════════════════════════════════════════════
# PARTICLE_DTYPE — dynamic population, grown by concatenation
# ═══════════════════════════════════════════════════════════════════════

PARTICLE_DTYPE = np.dtype([
    ('x',     np.float64),
    ('y',     np.float64),
    ('vx',    np.float64),   # world units per tick
    ('vy',    np.float64),
    ('ptype', np.int8),      # ParticleType enum
])


def allocate_cells(n: int) -> np.ndarray:
    """Allocate a zeroed cell array (every cell HEALTHY, timers at zero)."""
    return np.zeros(n, dtype=CELL_DTYPE)


def allocate_particles(n: int = 0) -> np.ndarray:
    """Allocate a zeroed particle array of length n."""
    return np.zeros(n, dtype=PARTICLE_DTYPE)


# ═══════════════════════════════════════════════════════════════════════
# TRANSFER OBJECTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class WorldSnapshot:
    """Read-only copy of World state for rendering and recording.

    Arrays are copies; mutating them never touches the World.
    """
    tick: int
    elapsed_ms: float
    therapy_on: bool
    running: bool
    width: float
    height: float
    cell_counts: Dict[str, int] = field(default_factory=dict)
    particle_counts: Dict[str, int] = field(default_factory=dict)
    cell_x: np.ndarray = field(default_factory=lambda: np.zeros(0, np.float32))
    cell_y: np.ndarray = field(default_factory=lambda: np.zeros(0, np.float32))
    cell_radius: np.ndarray = field(default_factory=lambda: np.zeros(0, np.float32))
    cell_state: np.ndarray = field(default_factory=lambda: np.zeros(0, np.int8))
    particle_x: np.ndarray = field(default_factory=lambda: np.zeros(0))
    particle_y: np.ndarray = field(default_factory=lambda: np.zeros(0))
    particle_type: np.ndarray = field(default_factory=lambda: np.zeros(0, np.int8))

    @property
    def n_cells(self) -> int:
        return int(self.cell_state.shape[0])

    @property
    def n_particles(self) -> int:
        return int(self.particle_type.shape[0])
