"""HIV-Latency visualization library.

Modules:
  - style: Dark theme colours and helpers
  - plots: Cell-state and viral-load timeseries, playfield frames
"""

from hiv_latency.viz.style import (  # noqa: F401
    CELL_COLORS,
    DARK_BG,
    DARK_PANEL,
    PARTICLE_COLORS,
    TEXT_COLOR,
    apply_dark_theme,
    dark_figure,
    save_figure,
)

from hiv_latency.viz.plots import (  # noqa: F401
    plot_cell_counts,
    plot_viral_load,
    plot_world,
)
