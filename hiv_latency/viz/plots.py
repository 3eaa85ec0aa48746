"""Timeseries and world-frame plots for HIV-Latency.

Every function:
  - Accepts a SimResult or WorldSnapshot
  - Returns a matplotlib Figure
  - Has an optional ``save_path`` parameter (saves PNG when given)

matplotlib backend is forced to Agg (no display) on import.
"""

from __future__ import annotations

import matplotlib
matplotlib.use('Agg')

from typing import TYPE_CHECKING, Optional

import matplotlib.pyplot as plt
import numpy as np

from hiv_latency.types import CellState, ParticleType
from hiv_latency.viz.style import (
    CELL_COLORS,
    DARK_BG,
    LATENT_EDGE,
    PARTICLE_COLORS,
    THERAPY_SHADE,
    dark_figure,
    legend_style,
    save_figure,
)

if TYPE_CHECKING:
    from hiv_latency.model import SimResult
    from hiv_latency.types import WorldSnapshot


def _seconds(result: 'SimResult') -> np.ndarray:
    return result.elapsed_ms / 1000.0


def _shade_therapy(ax, result: 'SimResult') -> None:
    """Shade spans where therapy was ON."""
    if result.therapy is None or not result.therapy.any():
        return
    t = _seconds(result)
    on = result.therapy.astype(np.int8)
    edges = np.flatnonzero(np.diff(np.concatenate([[0], on, [0]])))
    for start, stop in zip(edges[::2], edges[1::2]):
        ax.axvspan(t[start], t[stop - 1], color=THERAPY_SHADE, alpha=0.15, lw=0)


def plot_cell_counts(
    result: 'SimResult',
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Cells per state over time, ART ON spans shaded."""
    fig, ax = dark_figure(figsize=(12, 6))
    t = _seconds(result)
    for state, series in (
        (CellState.HEALTHY, result.healthy),
        (CellState.ACTIVE, result.active),
        (CellState.LATENT, result.latent),
        (CellState.DEAD, result.dead),
    ):
        ax.plot(t, series, color=CELL_COLORS[state], linewidth=1.8,
                label=state.name.title())
    _shade_therapy(ax, result)

    ax.set_xlabel('Time (s)')
    ax.set_ylabel('Memory T-cells')
    ax.set_title('Cell states', fontweight='bold')
    ax.legend(loc='upper right', **legend_style())

    if save_path:
        save_figure(fig, save_path)
    return fig


def plot_viral_load(
    result: 'SimResult',
    save_path: Optional[str] = None,
) -> plt.Figure:
    """Free HIV and pathogen particle counts over time."""
    fig, ax = dark_figure(figsize=(12, 5))
    t = _seconds(result)
    ax.plot(t, result.hiv, color=PARTICLE_COLORS[ParticleType.HIV],
            linewidth=1.8, label='Free HIV')
    if result.pathogen is not None and result.pathogen.any():
        ax.plot(t, result.pathogen, color=PARTICLE_COLORS[ParticleType.PATHOGEN],
                linewidth=1.5, label='Other pathogen')
    _shade_therapy(ax, result)

    ax.set_xlabel('Time (s)')
    ax.set_ylabel('Particles')
    ax.set_title('Viral load', fontweight='bold')
    ax.legend(loc='upper left', **legend_style())

    if save_path:
        save_figure(fig, save_path)
    return fig


def plot_world(
    snapshot: 'WorldSnapshot',
    save_path: Optional[str] = None,
    particle_size: float = 2.0,
) -> plt.Figure:
    """One frame of the playfield: particles under cells."""
    aspect = snapshot.height / snapshot.width
    fig, ax = dark_figure(figsize=(10, 10 * aspect))
    ax.set_facecolor(DARK_BG)
    ax.grid(False)

    for ptype, color in PARTICLE_COLORS.items():
        mask = snapshot.particle_type == ptype
        if mask.any():
            ax.scatter(snapshot.particle_x[mask], snapshot.particle_y[mask],
                       s=particle_size, c=color, alpha=0.9, linewidths=0)

    # Marker area scales with radius², normalised to a 4-unit cell
    sizes = 12.0 * (snapshot.cell_radius / 4.0) ** 2
    for state, color in CELL_COLORS.items():
        mask = snapshot.cell_state == state
        if not mask.any():
            continue
        edge = LATENT_EDGE if state == CellState.LATENT else 'none'
        ax.scatter(snapshot.cell_x[mask], snapshot.cell_y[mask], s=sizes[mask],
                   c=color, edgecolors=edge, linewidths=0.6,
                   alpha=0.5 if state == CellState.DEAD else 0.9,
                   label=f"{state.name.title()} ({int(mask.sum())})")

    ax.set_xlim(0, snapshot.width)
    ax.set_ylim(snapshot.height, 0)   # screen coordinates: y grows downward
    ax.set_aspect('equal')
    ax.set_xticks([])
    ax.set_yticks([])
    mins, secs = divmod(int(snapshot.elapsed_ms // 1000), 60)
    art = 'ON' if snapshot.therapy_on else 'OFF'
    ax.set_title(f"{mins}:{secs:02d}  ART {art}  "
                 f"HIV {snapshot.particle_counts.get('HIV', 0)}",
                 fontweight='bold')
    ax.legend(loc='upper right', markerscale=1.5, **legend_style())

    if save_path:
        save_figure(fig, save_path)
    return fig
