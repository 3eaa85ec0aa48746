"""Initial placement of the memory T-cell population.

Two strategies:
  - Jittered grid (large populations): columns/rows chosen to match the
    world aspect ratio, one cell per grid slot, bounded random jitter.
    Exact count by construction.
  - Rejection sampling (small populations): uniform random positions with
    a minimum pairwise distance and a bounded attempt budget.

place_cells() always returns exactly n cells. If rejection sampling runs
out of attempts it warns (PlacementWarning) and fills the shortfall with
unconstrained uniform positions.
"""

from __future__ import annotations

import math
import warnings
from typing import Tuple

import numpy as np

from hiv_latency.types import CellState, allocate_cells

DEFAULT_RADIUS = 4.0   # Sparse layout cell radius
MIN_GRID_RADIUS = 3.0
GRID_RADIUS_FRAC = 0.35


class PlacementWarning(UserWarning):
    """Rejection sampling could not honour min_spacing for every cell."""


# ═══════════════════════════════════════════════════════════════════════
# JITTERED GRID
# ═══════════════════════════════════════════════════════════════════════

def grid_shape(n: int, width: float, height: float) -> Tuple[int, int]:
    """Columns and rows for n slots approximating the world aspect ratio."""
    if n <= 0:
        return 0, 0
    cols = max(1, math.ceil(math.sqrt(n * width / height)))
    rows = math.ceil(n / cols)
    return cols, rows


def grid_layout(
    n: int,
    width: float,
    height: float,
    rng: np.random.Generator,
    jitter_frac: float = 0.4,
    margin: float = 6.0,
) -> np.ndarray:
    """Place n cells on a jittered grid (row-major fill).

    Returns:
        Cell array of length n, all HEALTHY.
    """
    cells = allocate_cells(n)
    if n == 0:
        return cells

    cols, rows = grid_shape(n, width, height)
    cell_w = width / cols
    cell_h = height / rows
    radius = max(MIN_GRID_RADIUS, math.floor(min(cell_w, cell_h) * GRID_RADIUS_FRAC))

    idx = np.arange(n)
    col = idx % cols
    row = idx // cols
    jitter_x = (rng.random(n) - 0.5) * cell_w * jitter_frac
    jitter_y = (rng.random(n) - 0.5) * cell_h * jitter_frac

    cells['x'] = np.clip((col + 0.5) * cell_w + jitter_x, margin, width - margin)
    cells['y'] = np.clip((row + 0.5) * cell_h + jitter_y, margin, height - margin)
    cells['radius'] = radius
    cells['state'] = CellState.HEALTHY
    return cells


# ═══════════════════════════════════════════════════════════════════════
# REJECTION SAMPLING
# ═══════════════════════════════════════════════════════════════════════

def rejection_layout(
    n: int,
    width: float,
    height: float,
    rng: np.random.Generator,
    min_spacing: float = 12.0,
    max_attempts: int = 20000,
    margin: float = 6.0,
) -> np.ndarray:
    """Best-effort random placement with a minimum pairwise distance.

    Stops after max_attempts candidate draws, so the result may hold fewer
    than n cells when the world is too crowded for min_spacing.

    Returns:
        Cell array of length <= n, all HEALTHY.
    """
    xs = np.empty(n, dtype=np.float64)
    ys = np.empty(n, dtype=np.float64)
    placed = 0
    attempts = 0
    min_sq = min_spacing * min_spacing

    while placed < n and attempts < max_attempts:
        attempts += 1
        cx = margin + rng.random() * (width - 2 * margin)
        cy = margin + rng.random() * (height - 2 * margin)
        if placed:
            d_sq = (xs[:placed] - cx) ** 2 + (ys[:placed] - cy) ** 2
            if np.any(d_sq < min_sq):
                continue
        xs[placed] = cx
        ys[placed] = cy
        placed += 1

    cells = allocate_cells(placed)
    cells['x'] = xs[:placed]
    cells['y'] = ys[:placed]
    cells['radius'] = DEFAULT_RADIUS
    cells['state'] = CellState.HEALTHY
    return cells


def uniform_layout(
    n: int,
    width: float,
    height: float,
    rng: np.random.Generator,
    margin: float = 6.0,
) -> np.ndarray:
    """Unconstrained uniform placement (may overlap)."""
    cells = allocate_cells(n)
    cells['x'] = margin + rng.random(n) * (width - 2 * margin)
    cells['y'] = margin + rng.random(n) * (height - 2 * margin)
    cells['radius'] = DEFAULT_RADIUS
    cells['state'] = CellState.HEALTHY
    return cells


# ═══════════════════════════════════════════════════════════════════════
# DISPATCH
# ═══════════════════════════════════════════════════════════════════════

def place_cells(
    n: int,
    width: float,
    height: float,
    rng: np.random.Generator,
    grid_threshold: int = 200,
    grid_jitter: float = 0.4,
    min_spacing: float = 12.0,
    max_attempts: int = 20000,
    margin: float = 6.0,
) -> np.ndarray:
    """Create exactly n HEALTHY cells.

    n > grid_threshold → jittered grid; otherwise rejection sampling with
    an unconstrained top-up if the attempt budget runs out.
    """
    if n > grid_threshold:
        return grid_layout(n, width, height, rng,
                           jitter_frac=grid_jitter, margin=margin)

    cells = rejection_layout(n, width, height, rng, min_spacing=min_spacing,
                             max_attempts=max_attempts, margin=margin)
    shortfall = n - cells.shape[0]
    if shortfall > 0:
        warnings.warn(
            f"Placed {cells.shape[0]}/{n} cells at min_spacing={min_spacing} "
            f"within {max_attempts} attempts; placing {shortfall} without spacing.",
            PlacementWarning,
            stacklevel=2,
        )
        extra = uniform_layout(shortfall, width, height, rng, margin=margin)
        cells = np.concatenate([cells, extra])
    return cells
