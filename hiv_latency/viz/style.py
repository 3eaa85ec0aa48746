"""Dark theme styling for HIV-Latency plots.

Colors follow the interactive legend: healthy green, active red, latent
amber (with a pale outline), dead gray, HIV light gray, pathogen cyan.
"""

import matplotlib as mpl
import matplotlib.pyplot as plt
import numpy as np

from hiv_latency.types import CellState, ParticleType

DARK_BG = '#09090b'      # zinc-950
DARK_PANEL = '#18181b'   # zinc-900
TEXT_COLOR = '#f4f4f5'
GRID_COLOR = '#3f3f46'

CELL_COLORS = {
    CellState.HEALTHY: '#22c55e',
    CellState.LATENT:  '#f59e0b',
    CellState.ACTIVE:  '#ef4444',
    CellState.DEAD:    '#6b7280',
}
LATENT_EDGE = '#fde68a'

PARTICLE_COLORS = {
    ParticleType.HIV:      '#9ca3af',
    ParticleType.PATHOGEN: '#22d3ee',
}

THERAPY_SHADE = '#0284c7'   # sky-600, ART ON spans


def apply_dark_theme(fig=None, ax=None):
    """Apply dark theme to a matplotlib Figure and/or Axes."""
    if fig is not None:
        fig.patch.set_facecolor(DARK_BG)
    if ax is not None:
        ax.set_facecolor(DARK_PANEL)
        ax.tick_params(colors=TEXT_COLOR)
        ax.xaxis.label.set_color(TEXT_COLOR)
        ax.yaxis.label.set_color(TEXT_COLOR)
        ax.title.set_color(TEXT_COLOR)
        for spine in ax.spines.values():
            spine.set_color(GRID_COLOR)
        ax.grid(True, color=GRID_COLOR, alpha=0.3, linewidth=0.5)


def dark_figure(nrows=1, ncols=1, figsize=None, **kwargs):
    """Create a Figure + Axes with the dark theme already applied."""
    if figsize is None:
        figsize = (10, 6) if (nrows == 1 and ncols == 1) else (14, 5 * nrows)
    fig, axes = plt.subplots(nrows, ncols, figsize=figsize, **kwargs)
    apply_dark_theme(fig=fig)
    for a in np.atleast_1d(axes).flat:
        apply_dark_theme(ax=a)
    return fig, axes


def save_figure(fig, save_path, dpi=120):
    """Save with tight layout on the dark background, then close."""
    fig.tight_layout()
    fig.savefig(save_path, dpi=dpi, facecolor=fig.get_facecolor(),
                edgecolor='none', bbox_inches='tight')
    plt.close(fig)


def legend_style():
    """Keyword args for a legend readable on the dark panel."""
    return {
        'facecolor': DARK_PANEL,
        'edgecolor': GRID_COLOR,
        'labelcolor': TEXT_COLOR,
        'fontsize': mpl.rcParams['legend.fontsize'],
    }
