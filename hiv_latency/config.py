"""Configuration system for HIV-Latency.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → explicit overrides

Every rate, period and quantity the engine uses lives here as a named,
overridable parameter. Teaching variants differ precisely on these values
(see configs/ for presets).

Defaults reproduce the final interactive variant:
  - ART ON clears HIV; ART OFF never clears it
  - ACTIVE and LATENT cells both shed 5 virions every 10 s
  - Death bursts (+50) happen only while ART is OFF
  - Introduce Pathogen spawns 50 non-HIV particles and reactivates LATENT cells
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Top-level timing and control."""
    tick_ms: float = 320.0        # Fixed wall-clock period of one tick
    seed: int = 42


@dataclass
class WorldSection:
    """World bounds and initial population."""
    width: float = 960.0
    height: float = 600.0
    n_cells: int = 1000
    initial_particles: int = 100      # HIV virions seeded at start/reset
    grid_threshold: int = 200         # n_cells above this → jittered grid layout
    grid_jitter: float = 0.4          # Jitter span as a fraction of grid cell size
    min_spacing: float = 12.0         # Rejection layout minimum pairwise distance
    placement_attempts: int = 20000   # Rejection layout retry budget
    margin: float = 6.0               # Keep cells this far inside the walls
    spawn_margin: float = 10.0        # Uniform particle spawns stay this far inside


@dataclass
class MotionSection:
    """Free particle drift (vector field)."""
    wall_inset: float = 2.0       # Particles reflect at this distance from walls
    initial_speed: float = 1.2    # Spawn velocity components in ±initial_speed/2
    jitter: float = 0.1           # Per-tick velocity perturbation span (±jitter/2)
    max_speed: float = 1.6        # Speed clamp (world units per tick)


@dataclass
class InfectionSection:
    """Infection cadence (only while therapy is OFF).

    Batch per firing = min(n_healthy, base_batch + floor(n_hiv / particles_per_extra))
    """
    period_ms: float = 2000.0
    base_batch: int = 1
    particles_per_extra: int = 100


@dataclass
class SheddingSection:
    """Per-cell low-volume shedding ("trickle").

    timer_on_suppress: what happens to the shedding timer on ACTIVE → LATENT.
        "continue" — keep accumulating (default)
        "reset"    — restart from zero
    """
    period_ms: float = 10000.0
    quantity: int = 5
    latent_sheds: bool = True
    spread: float = 20.0          # Spawn offset span around the cell
    timer_on_suppress: str = "continue"


@dataclass
class DeathSection:
    """Death of ACTIVE cells after a minimum dwell.

    No death roll happens while ART is ON unless dies_under_therapy is
    set; reactivated cells keep ageing and wait for ART OFF.
    """
    min_dwell_ms: float = 30000.0
    prob_per_tick: float = 0.02
    burst_quantity: int = 50
    burst_requires_therapy_off: bool = True
    dies_under_therapy: bool = False
    spread: float = 20.0


@dataclass
class ClearanceSection:
    """Passive HIV clearance.

    policy: "proportional" — floor(fraction × n_hiv) per firing, at least
                             min_removal when any HIV is present
            "fixed"        — rate per firing
            "none"         — never clears
    Rates/fractions are per therapy state; 0 disables clearance in that state.
    """
    period_ms: float = 1000.0
    policy: str = "proportional"
    fraction_on: float = 0.05
    fraction_off: float = 0.0
    rate_on: int = 5
    rate_off: int = 0
    min_removal: int = 1


@dataclass
class PathogenSection:
    """Introduce-pathogen intervention.

    mode: "fixed"        — spawn `quantity` particles
          "per_infected" — spawn quantity + per_infected × (ACTIVE + LATENT)
    particle_type: "PATHOGEN" (distinct species) or "HIV".
    """
    mode: str = "fixed"
    quantity: int = 50
    per_infected: int = 0
    reactivate_latent: bool = True
    particle_type: str = "PATHOGEN"
    spread: float = 20.0


@dataclass
class BoostSection:
    """Manual HIV boost (uniform world placement)."""
    default_quantity: int = 50


@dataclass
class SimulationConfig:
    """Complete simulation configuration."""
    simulation: SimulationSection = field(default_factory=SimulationSection)
    world: WorldSection = field(default_factory=WorldSection)
    motion: MotionSection = field(default_factory=MotionSection)
    infection: InfectionSection = field(default_factory=InfectionSection)
    shedding: SheddingSection = field(default_factory=SheddingSection)
    death: DeathSection = field(default_factory=DeathSection)
    clearance: ClearanceSection = field(default_factory=ClearanceSection)
    pathogen: PathogenSection = field(default_factory=PathogenSection)
    boost: BoostSection = field(default_factory=BoostSection)


SECTION_MAP = {
    'simulation': SimulationSection,
    'world': WorldSection,
    'motion': MotionSection,
    'infection': InfectionSection,
    'shedding': SheddingSection,
    'death': DeathSection,
    'clearance': ClearanceSection,
    'pathogen': PathogenSection,
    'boost': BoostSection,
}

VALID_TIMER_POLICIES = {"continue", "reset"}
VALID_PATHOGEN_MODES = {"fixed", "per_infected"}
VALID_PARTICLE_TYPES = {"HIV", "PATHOGEN"}


# ═══════════════════════════════════════════════════════════════════════
# LOADING / MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base (in place). Returns base."""
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    for key, cls in SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return SimulationConfig(**sections)


def config_to_dict(config: SimulationConfig) -> Dict:
    """Plain nested dict of a config (YAML-serializable)."""
    return dataclasses.asdict(config)


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def _check_probability(name: str, value: float) -> None:
    if not (0.0 <= value <= 1.0):
        raise ValueError(f"{name} must be in [0, 1], got {value}")


def _check_non_negative(name: str, value: float) -> None:
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")


def _check_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be > 0, got {value}")


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - Tick and cadence periods are positive
      - Probabilities and fractions lie in [0, 1]
      - Quantities and counts are non-negative
      - Policy / mode names are known

    Soft problems (a cadence period shorter than the tick, spacing too
    large for the requested population) only warn.
    """
    # Deferred: rules imports config for its type hints
    from hiv_latency.rules import CLEARANCE_POLICIES

    sim = config.simulation
    _check_positive("simulation.tick_ms", sim.tick_ms)
    if sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")

    w = config.world
    _check_positive("world.width", w.width)
    _check_positive("world.height", w.height)
    _check_non_negative("world.n_cells", w.n_cells)
    _check_non_negative("world.initial_particles", w.initial_particles)
    _check_non_negative("world.grid_threshold", w.grid_threshold)
    _check_non_negative("world.min_spacing", w.min_spacing)
    _check_non_negative("world.placement_attempts", w.placement_attempts)
    _check_probability("world.grid_jitter", w.grid_jitter)
    if 2 * w.margin >= min(w.width, w.height):
        raise ValueError(
            f"world.margin ({w.margin}) leaves no room inside "
            f"{w.width}x{w.height} world"
        )
    if 2 * w.spawn_margin >= min(w.width, w.height):
        raise ValueError(
            f"world.spawn_margin ({w.spawn_margin}) leaves no room inside "
            f"{w.width}x{w.height} world"
        )

    m = config.motion
    _check_non_negative("motion.wall_inset", m.wall_inset)
    _check_non_negative("motion.initial_speed", m.initial_speed)
    _check_non_negative("motion.jitter", m.jitter)
    _check_positive("motion.max_speed", m.max_speed)
    if 2 * m.wall_inset >= min(w.width, w.height):
        raise ValueError(
            f"motion.wall_inset ({m.wall_inset}) leaves no room inside "
            f"{w.width}x{w.height} world"
        )

    inf = config.infection
    _check_positive("infection.period_ms", inf.period_ms)
    _check_non_negative("infection.base_batch", inf.base_batch)
    _check_positive("infection.particles_per_extra", inf.particles_per_extra)

    sh = config.shedding
    _check_positive("shedding.period_ms", sh.period_ms)
    _check_non_negative("shedding.quantity", sh.quantity)
    _check_non_negative("shedding.spread", sh.spread)
    if sh.timer_on_suppress not in VALID_TIMER_POLICIES:
        raise ValueError(
            f"shedding.timer_on_suppress must be one of {VALID_TIMER_POLICIES}, "
            f"got '{sh.timer_on_suppress}'"
        )

    d = config.death
    _check_non_negative("death.min_dwell_ms", d.min_dwell_ms)
    _check_probability("death.prob_per_tick", d.prob_per_tick)
    _check_non_negative("death.burst_quantity", d.burst_quantity)
    _check_non_negative("death.spread", d.spread)

    c = config.clearance
    _check_positive("clearance.period_ms", c.period_ms)
    if c.policy not in CLEARANCE_POLICIES:
        raise ValueError(
            f"clearance.policy must be one of {sorted(CLEARANCE_POLICIES)}, "
            f"got '{c.policy}'"
        )
    _check_probability("clearance.fraction_on", c.fraction_on)
    _check_probability("clearance.fraction_off", c.fraction_off)
    _check_non_negative("clearance.rate_on", c.rate_on)
    _check_non_negative("clearance.rate_off", c.rate_off)
    _check_non_negative("clearance.min_removal", c.min_removal)

    p = config.pathogen
    if p.mode not in VALID_PATHOGEN_MODES:
        raise ValueError(
            f"pathogen.mode must be one of {VALID_PATHOGEN_MODES}, "
            f"got '{p.mode}'"
        )
    if p.particle_type not in VALID_PARTICLE_TYPES:
        raise ValueError(
            f"pathogen.particle_type must be one of {VALID_PARTICLE_TYPES}, "
            f"got '{p.particle_type}'"
        )
    _check_non_negative("pathogen.quantity", p.quantity)
    _check_non_negative("pathogen.per_infected", p.per_infected)
    _check_non_negative("pathogen.spread", p.spread)

    _check_non_negative("boost.default_quantity", config.boost.default_quantity)

    # Soft checks
    for name, period in (
        ("infection.period_ms", inf.period_ms),
        ("shedding.period_ms", sh.period_ms),
        ("clearance.period_ms", c.period_ms),
    ):
        if period < sim.tick_ms:
            warnings.warn(
                f"{name} ({period}) is shorter than simulation.tick_ms "
                f"({sim.tick_ms}); the rule will fire several times per tick.",
                UserWarning,
                stacklevel=2,
            )

    if 0 < w.n_cells <= w.grid_threshold and w.min_spacing > 0:
        # Loose packing bound: disks of diameter min_spacing in the usable area
        usable = (w.width - 2 * w.margin) * (w.height - 2 * w.margin)
        capacity = usable / (w.min_spacing ** 2)
        if w.n_cells > capacity:
            warnings.warn(
                f"world.min_spacing ({w.min_spacing}) is too large to fit "
                f"{w.n_cells} cells; layout will fall back to unspaced placement.",
                UserWarning,
                stacklevel=2,
            )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        overrides: Optional dict of explicit overrides.

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path or scenario_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario file not found: {scenario_path}")
        with open(scenario_path) as f:
            scenario = yaml.safe_load(f) or {}
        deep_merge(config_dict, scenario)

    if overrides is not None:
        deep_merge(config_dict, overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
