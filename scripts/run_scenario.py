#!/usr/bin/env python3
"""Run a headless HIV-latency scenario and write plots + a JSON summary.

Loads configs/default.yaml (or --base-config), merges an optional scenario
YAML on top, applies the scenario's timed ``events`` list, and saves
cell-state and viral-load plots plus a final world frame.

Usage:
    python scripts/run_scenario.py
    python scripts/run_scenario.py configs/art_course.yaml --minutes 5
    python scripts/run_scenario.py configs/ungated_death.yaml --seed 7 \\
        --event 30000 set_therapy true --output-dir results/ungated

Scenario YAML may carry, besides config overrides:

    events:
      - [60000, set_therapy, true]
      - [150000, introduce_pathogen]
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import yaml

# ── Project imports ──────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from hiv_latency.config import load_config
from hiv_latency.model import ALLOWED_COMMANDS, SimResult, run_simulation
from hiv_latency.snapshots import SnapshotRecorder
from hiv_latency.types import as_particle_type
from hiv_latency.viz import plot_cell_counts, plot_viral_load, plot_world
from hiv_latency.world import World, format_elapsed

DEFAULT_BASE = PROJECT_ROOT / "configs" / "default.yaml"

# Position of the particle-species argument, per command
SPECIES_ARG = {"flush": 0, "boost": 1}


def _coerce(value: str) -> Any:
    """CLI argument → bool / None / int / float / str."""
    lowered = value.lower()
    if lowered in ("true", "on", "yes"):
        return True
    if lowered in ("none", "null", "all"):
        return None
    if lowered in ("false", "off", "no"):
        return False
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            pass
    return value


def parse_events(raw: Sequence[Sequence[Any]]) -> List[Tuple[Any, ...]]:
    """Normalise [time_ms, command, *args] entries to event tuples.

    Species arguments (flush's first, boost's second) are resolved to
    ParticleType here, so a misspelt species fails before the run starts.

    Raises:
        ValueError: On a malformed entry, unknown command or species.
    """
    events = []
    for entry in raw:
        if len(entry) < 2:
            raise ValueError(f"event needs [time_ms, command, ...], got {entry!r}")
        time_ms, command = float(entry[0]), str(entry[1])
        if command not in ALLOWED_COMMANDS:
            raise ValueError(
                f"Unknown command '{command}'; expected one of {sorted(ALLOWED_COMMANDS)}"
            )
        args = [_coerce(a) if isinstance(a, str) else a for a in entry[2:]]
        pos = SPECIES_ARG.get(command)
        if pos is not None and len(args) > pos and args[pos] is not None:
            args[pos] = as_particle_type(args[pos])
        events.append((time_ms, command, *args))
    return events


def read_scenario_events(scenario_path: Optional[str]) -> List[Tuple[Any, ...]]:
    if scenario_path is None:
        return []
    with open(scenario_path) as f:
        data = yaml.safe_load(f) or {}
    return parse_events(data.get("events", []))


def summarize(result: SimResult, scenario: str, seed: int) -> dict:
    return {
        "scenario": scenario,
        "seed": seed,
        "n_ticks": result.n_ticks,
        "duration": format_elapsed(result.elapsed_ms[-1] if result.n_ticks else 0.0),
        "final_counts": result.final_counts,
        "final_hiv": int(result.hiv[-1]) if result.n_ticks else 0,
        "final_pathogen": int(result.pathogen[-1]) if result.n_ticks else 0,
        "peak_hiv": result.peak_hiv,
        "peak_hiv_s": result.peak_hiv_ms / 1000.0,
        "events": [list(e) for e in result.events_applied],
    }


def main(argv: Optional[Sequence[str]] = None) -> dict:
    parser = argparse.ArgumentParser(
        description="Run a headless HIV-latency scenario.",
        epilog="Example: python scripts/run_scenario.py configs/art_course.yaml",
    )
    parser.add_argument(
        "scenario", nargs="?", default=None,
        help="Scenario YAML (config overrides and optional events list)",
    )
    parser.add_argument(
        "--base-config", type=str, default=str(DEFAULT_BASE),
        help="Base config YAML (default: configs/default.yaml)",
    )
    parser.add_argument(
        "--minutes", type=float, default=4.0,
        help="Simulated duration in minutes (default: 4)",
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Override simulation.seed",
    )
    parser.add_argument(
        "--event", nargs="+", action="append", default=[],
        help="Extra timed event, e.g. --event 60000 set_therapy true",
    )
    parser.add_argument(
        "--output-dir", type=str, default="results/scenario",
        help="Where to write plots and summary.json",
    )
    parser.add_argument(
        "--frames", type=int, default=0,
        help="Record a snapshot every N ticks to frames.npz (0 = off)",
    )
    parser.add_argument(
        "--no-plots", action="store_true",
        help="Skip figure output",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="-v for command log, -vv for per-tick rule outcomes",
    )
    args = parser.parse_args(argv)

    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(name)s %(levelname)s: %(message)s")

    overrides = {"simulation": {"seed": args.seed}} if args.seed is not None else None
    config = load_config(args.base_config, scenario_path=args.scenario,
                         overrides=overrides)
    events = read_scenario_events(args.scenario) + parse_events(args.event)

    recorder = None
    if args.frames > 0:
        recorder = SnapshotRecorder(enabled=True, interval_ticks=args.frames)

    world = World(config)
    result = run_simulation(duration_ms=args.minutes * 60_000.0, events=events,
                            recorder=recorder, world=world)
    world.check_invariants()

    out_dir = Path(args.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    name = Path(args.scenario).stem if args.scenario else "default"
    summary = summarize(result, name, config.simulation.seed)
    with open(out_dir / "summary.json", "w") as f:
        json.dump(summary, f, indent=2)

    if recorder is not None:
        recorder.save(out_dir / "frames.npz")
    if not args.no_plots:
        plot_cell_counts(result, save_path=str(out_dir / "cell_counts.png"))
        plot_viral_load(result, save_path=str(out_dir / "viral_load.png"))
        plot_world(world.snapshot(), save_path=str(out_dir / "final_frame.png"))

    counts = summary["final_counts"]
    print(f"{name}: {summary['duration']}  "
          f"H {counts['HEALTHY']}  L {counts['LATENT']}  "
          f"A {counts['ACTIVE']}  D {counts['DEAD']}  "
          f"HIV {summary['final_hiv']} (peak {summary['peak_hiv']})")
    print(f"  → {out_dir}")
    return summary


if __name__ == "__main__":
    main()
