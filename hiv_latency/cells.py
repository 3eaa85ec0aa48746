"""Memory T-cell state machine.

Allowed transitions (anything else raises InvalidTransition):

    HEALTHY → ACTIVE    infection
    ACTIVE  → LATENT    ART switched on
    ACTIVE  → DEAD      death roll after minimum dwell
    LATENT  → ACTIVE    reactivation

Timer side effects:
    → ACTIVE (from HEALTHY)   age = 0, shed = 0
    → ACTIVE (from LATENT)    age = 0, shed kept
    → LATENT                  age = 0, shed kept or reset (timer_on_suppress)
    → DEAD                    age = 0, shed = 0
"""

from __future__ import annotations

from typing import Dict, FrozenSet

import numpy as np

from hiv_latency.types import CellState

ALLOWED_TRANSITIONS: Dict[CellState, FrozenSet[CellState]] = {
    CellState.HEALTHY: frozenset({CellState.ACTIVE}),
    CellState.ACTIVE:  frozenset({CellState.LATENT, CellState.DEAD}),
    CellState.LATENT:  frozenset({CellState.ACTIVE}),
    CellState.DEAD:    frozenset(),
}


class InvalidTransition(ValueError):
    """A cell was asked to make a transition the state machine forbids."""


def can_transition(src: int, dst: int) -> bool:
    return CellState(dst) in ALLOWED_TRANSITIONS[CellState(src)]


def transition(
    cells: np.ndarray,
    idx: np.ndarray,
    new_state: int,
    timer_on_suppress: str = "continue",
) -> None:
    """Move cells[idx] to new_state in place, applying timer side effects.

    All-or-nothing: every index is checked before anything is written.

    Raises:
        InvalidTransition: If any selected cell cannot make the move.
    """
    idx = np.asarray(idx, dtype=np.intp)
    if idx.size == 0:
        return
    new_state = CellState(new_state)

    current = cells['state'][idx]
    allowed_src = [s for s, dsts in ALLOWED_TRANSITIONS.items() if new_state in dsts]
    ok = np.isin(current, allowed_src)
    if not np.all(ok):
        bad = idx[~ok][0]
        raise InvalidTransition(
            f"cell {int(bad)}: {CellState(int(cells['state'][bad])).name} → "
            f"{new_state.name} is not allowed"
        )

    if new_state == CellState.ACTIVE:
        from_healthy = idx[current == CellState.HEALTHY]
        cells['shed_ms'][from_healthy] = 0.0
    elif new_state == CellState.LATENT:
        if timer_on_suppress == "reset":
            cells['shed_ms'][idx] = 0.0
    elif new_state == CellState.DEAD:
        cells['shed_ms'][idx] = 0.0

    cells['age_ms'][idx] = 0.0
    cells['state'][idx] = new_state


# ═══════════════════════════════════════════════════════════════════════
# BULK HELPERS
# ═══════════════════════════════════════════════════════════════════════

def indices_in(cells: np.ndarray, state: int) -> np.ndarray:
    return np.flatnonzero(cells['state'] == state)


def infect(cells: np.ndarray, idx: np.ndarray) -> None:
    transition(cells, idx, CellState.ACTIVE)


def kill(cells: np.ndarray, idx: np.ndarray) -> None:
    transition(cells, idx, CellState.DEAD)


def suppress_active(cells: np.ndarray, timer_on_suppress: str = "continue") -> int:
    """Move every ACTIVE cell to LATENT. Returns how many moved."""
    idx = indices_in(cells, CellState.ACTIVE)
    transition(cells, idx, CellState.LATENT, timer_on_suppress=timer_on_suppress)
    return int(idx.size)


def reactivate_latent(cells: np.ndarray) -> int:
    """Move every LATENT cell to ACTIVE. Returns how many moved."""
    idx = indices_in(cells, CellState.LATENT)
    transition(cells, idx, CellState.ACTIVE)
    return int(idx.size)


def state_counts(cells: np.ndarray) -> Dict[CellState, int]:
    """Full recount of cells per state."""
    counts = np.bincount(cells['state'].astype(np.intp), minlength=len(CellState))
    return {s: int(counts[s]) for s in CellState}
