"""Seeded RNG factory for reproducible simulations.

Uses NumPy's SeedSequence → PCG64 hierarchy to guarantee:
  - Statistical independence between per-concern streams
  - Bit-exact replay with the same master seed
  - Motion jitter never perturbs rule outcomes (separate stream), so
    rule tests stay reproducible with motion on or off
"""

from __future__ import annotations

from typing import Dict

import numpy as np

# Order matters: a stream's seed is fixed by its position in this tuple.
STREAM_NAMES = (
    'layout',          # Cell placement
    'seeding',         # Initial particle spawn
    'motion',          # Particle velocity jitter
    'infection',       # Which healthy cells get infected
    'shedding',        # Trickle spawn offsets
    'death',           # Death rolls + burst offsets
    'interventions',   # Boost / pathogen spawns
)


def create_rng_hierarchy(master_seed: int) -> Dict[str, np.random.Generator]:
    """Create independent RNG streams, one per concern.

    Args:
        master_seed: Master RNG seed (non-negative integer).

    Returns:
        Dictionary mapping stream names (STREAM_NAMES) to numpy Generators.

    Example:
        >>> rngs = create_rng_hierarchy(42)
        >>> rngs['infection'].random()  # reproducible
    """
    ss = np.random.SeedSequence(master_seed)
    child_seeds = ss.spawn(len(STREAM_NAMES))
    return {
        name: np.random.Generator(np.random.PCG64(seed))
        for name, seed in zip(STREAM_NAMES, child_seeds)
    }


def rng_state_snapshot(
    rngs: Dict[str, np.random.Generator],
) -> Dict[str, dict]:
    """Capture full RNG state for checkpointing.

    Args:
        rngs: RNG hierarchy.

    Returns:
        Dictionary mapping stream names to their internal state dicts.
    """
    return {name: rng.bit_generator.state for name, rng in rngs.items()}


def restore_rng_state(
    rngs: Dict[str, np.random.Generator],
    states: Dict[str, dict],
) -> None:
    """Restore RNG state from a checkpoint snapshot.

    Raises:
        KeyError: If a stream in states doesn't exist in rngs.
    """
    for name, state in states.items():
        if name not in rngs:
            raise KeyError(f"Cannot restore RNG state for unknown stream '{name}'")
        rngs[name].bit_generator.state = state
