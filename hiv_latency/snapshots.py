"""Optional per-tick recording of World snapshots.

Stores positions and states of every cell and particle at a fixed tick
interval, for replay or offline rendering.

Usage:
    recorder = SnapshotRecorder(enabled=True, interval_ticks=5)

    # In the tick loop:
    recorder.capture(world)

    # Afterwards:
    recorder.save("frames.npz")
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, List, Union

import numpy as np

from hiv_latency.types import WorldSnapshot

if TYPE_CHECKING:
    from hiv_latency.world import World


class SnapshotRecorder:
    """Records WorldSnapshots every interval_ticks ticks.

    When enabled=False, all methods are no-ops.
    """

    def __init__(
        self,
        enabled: bool = False,
        interval_ticks: int = 1,
        max_frames: int = 10000,
    ):
        if interval_ticks < 1:
            raise ValueError(f"interval_ticks must be >= 1, got {interval_ticks}")
        self.enabled = enabled
        self.interval_ticks = interval_ticks
        self.max_frames = max_frames
        self.frames: List[WorldSnapshot] = []

    def should_capture(self, tick: int) -> bool:
        if not self.enabled or len(self.frames) >= self.max_frames:
            return False
        return tick % self.interval_ticks == 0

    def capture(self, world: 'World') -> bool:
        """Capture the world if this tick is due. Returns True if captured."""
        if not self.should_capture(world.tick_count):
            return False
        self.frames.append(world.snapshot())
        return True

    def __len__(self) -> int:
        return len(self.frames)

    def save(self, path: Union[str, Path]) -> Path:
        """Write frames to a compressed .npz archive.

        Particle arrays are ragged across frames, so they are stored flat
        with per-frame offsets.
        """
        path = Path(path)
        frames = self.frames
        n_part = np.array([f.n_particles for f in frames], dtype=np.int64)
        offsets = np.concatenate([[0], np.cumsum(n_part)]).astype(np.int64)

        def _flat(attr, dtype):
            if not frames:
                return np.zeros(0, dtype=dtype)
            return np.concatenate([getattr(f, attr) for f in frames]).astype(dtype)

        np.savez_compressed(
            path,
            tick=np.array([f.tick for f in frames], dtype=np.int64),
            elapsed_ms=np.array([f.elapsed_ms for f in frames], dtype=np.float64),
            therapy_on=np.array([f.therapy_on for f in frames], dtype=bool),
            cell_x=np.array([f.cell_x for f in frames], dtype=np.float32),
            cell_y=np.array([f.cell_y for f in frames], dtype=np.float32),
            cell_state=np.array([f.cell_state for f in frames], dtype=np.int8),
            particle_offsets=offsets,
            particle_x=_flat('particle_x', np.float64),
            particle_y=_flat('particle_y', np.float64),
            particle_type=_flat('particle_type', np.int8),
        )
        return path

    def clear(self) -> None:
        self.frames.clear()
