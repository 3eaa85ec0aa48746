"""Tests for the World: tick order, commands, lifecycle, invariants.

The default World (1000 cells, 100 free HIV, 320 ms tick) is used
wherever exact numbers follow from the defaults; smaller populations are
built for scenario tests.
"""

import numpy as np
import pytest

from hiv_latency.config import default_config
from hiv_latency.types import CellState, ParticleType
from hiv_latency.world import World, format_elapsed


def make_config(**sections):
    """Default config with per-section field overrides."""
    cfg = default_config()
    for section, fields in sections.items():
        for key, value in fields.items():
            setattr(getattr(cfg, section), key, value)
    return cfg


def assert_same_array(a, b):
    assert a.dtype == b.dtype
    assert a.shape == b.shape
    for name in a.dtype.names:
        np.testing.assert_array_equal(a[name], b[name])


@pytest.fixture
def world():
    w = World()
    w.start()
    return w


# ═══════════════════════════════════════════════════════════════════════
# CONSTRUCTION
# ═══════════════════════════════════════════════════════════════════════

class TestConstruction:
    def test_default_population(self):
        w = World()
        assert w.n_cells == 1000
        assert w.counts() == {'HEALTHY': 1000, 'LATENT': 0, 'ACTIVE': 0, 'DEAD': 0}
        assert w.particle_count(ParticleType.HIV) == 100
        assert w.particle_count(ParticleType.PATHOGEN) == 0

    def test_initial_flags(self):
        w = World()
        assert not w.running
        assert not w.therapy_on
        assert w.elapsed_ms == 0.0
        assert w.tick_count == 0

    def test_invalid_config_rejected(self):
        cfg = default_config()
        cfg.death.prob_per_tick = 2.0
        with pytest.raises(ValueError, match="death.prob_per_tick"):
            World(cfg)

    def test_particles_inside_world(self):
        w = World()
        pos = w.particle_positions()
        assert np.all((pos[:, 0] >= 0) & (pos[:, 0] <= w.width))
        assert np.all((pos[:, 1] >= 0) & (pos[:, 1] <= w.height))

    def test_same_seed_same_world(self):
        a, b = World(), World()
        assert_same_array(a.cells, b.cells)
        assert_same_array(a.particles, b.particles)

    def test_small_population(self):
        w = World(make_config(world={'n_cells': 50, 'initial_particles': 0}))
        assert w.n_cells == 50
        assert w.particle_count() == 0


# ═══════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════

class TestRunning:
    def test_paused_world_does_not_tick(self):
        w = World()
        before = w.particles.copy()
        assert w.tick() is False
        assert w.step(5) == 0
        assert w.elapsed_ms == 0.0
        assert_same_array(w.particles, before)

    def test_forced_step_while_paused(self):
        w = World()
        assert w.step(3, force=True) == 3
        assert w.tick_count == 3
        assert w.elapsed_ms == pytest.approx(960.0)
        assert not w.running

    def test_start_pause(self, world):
        assert world.tick() is True
        world.pause()
        assert world.tick() is False
        assert world.tick_count == 1

    def test_toggle_running(self):
        w = World()
        assert w.toggle_running() is True
        assert w.toggle_running() is False

    def test_elapsed_label(self, world):
        world.step(200)
        assert world.elapsed_ms == pytest.approx(64000.0)
        assert world.elapsed_label == "1:04"


class TestReset:
    def test_reset_matches_fresh_world(self, world):
        world.step(40)
        world.set_therapy(True)
        world.boost(30)
        world.reset()
        fresh = World()
        assert_same_array(world.cells, fresh.cells)
        assert_same_array(world.particles, fresh.particles)
        assert world.elapsed_ms == 0.0
        assert world.tick_count == 0
        assert not world.therapy_on
        assert not world.running

    def test_reset_replays_identically(self, world):
        world.step(25)
        world.reset()
        world.step(25, force=True)
        fresh = World()
        fresh.step(25, force=True)
        assert_same_array(world.cells, fresh.cells)
        assert_same_array(world.particles, fresh.particles)

    def test_reset_clears_scheduler(self, world):
        world.step(5)
        world.reset()
        for cadence in world.scheduler:
            assert cadence.accumulator == 0.0


class TestDeterminism:
    def test_same_seed_same_trajectory(self):
        a, b = World(), World()
        a.step(60, force=True)
        b.step(60, force=True)
        assert a.counts() == b.counts()
        assert_same_array(a.particles, b.particles)

    def test_different_seed_differs(self):
        a = World()
        b = World(make_config(simulation={'seed': 7}))
        assert not np.array_equal(a.cells['x'], b.cells['x'])


# ═══════════════════════════════════════════════════════════════════════
# TICK BEHAVIOUR
# ═══════════════════════════════════════════════════════════════════════

class TestInfectionTiming:
    def test_first_infection_on_seventh_tick(self, world):
        """1000 healthy + 100 HIV: nothing for 6 ticks, then exactly 2 infected."""
        world.step(6)
        assert world.counts()['ACTIVE'] == 0
        world.step(1)
        assert world.counts()['ACTIVE'] == 2
        assert world.counts()['HEALTHY'] == 998
        assert world.last_events['infected'] == 2

    def test_no_clearance_while_off(self, world):
        world.step(10)
        assert world.particle_count(ParticleType.HIV) == 100

    def test_no_infection_under_therapy(self, world):
        world.step(30)
        world.set_therapy(True)
        healthy = world.counts()['HEALTHY']
        world.step(100)
        assert world.counts()['HEALTHY'] == healthy
        assert world.counts()['ACTIVE'] == 0

    def test_no_catch_up_after_therapy(self, world):
        """Firings dropped under therapy are not replayed when it ends."""
        world.set_therapy(True)
        world.step(40)
        world.set_therapy(False)
        world.step(1)
        assert world.counts()['HEALTHY'] >= 1000 - 2


class TestMotion:
    def test_cells_never_move(self, world):
        before = world.cell_positions()
        world.step(50)
        np.testing.assert_array_equal(world.cell_positions(), before)

    def test_particles_move(self, world):
        before = world.particle_positions()
        world.step(1)
        assert not np.allclose(world.particle_positions(), before)

    def test_particles_stay_inside(self, world):
        world.step(150)
        pos = world.particle_positions()
        inset = world.config.motion.wall_inset
        # Newly spawned halos may overhang until their first move
        moved = pos[:100]
        assert np.all(moved[:, 0] >= inset) and np.all(moved[:, 0] <= world.width - inset)
        assert np.all(moved[:, 1] >= inset) and np.all(moved[:, 1] <= world.height - inset)

    def test_spawned_particles_wait_one_tick(self):
        cfg = make_config(
            world={'n_cells': 20, 'initial_particles': 0},
            shedding={'spread': 0.0},
        )
        w = World(cfg)
        w.cells['state'][0] = CellState.ACTIVE
        w.cells['shed_ms'][0] = 9999.0
        w.step(1, force=True)
        assert w.last_events['shed'] == 5
        pos = w.particle_positions()
        np.testing.assert_allclose(pos[:, 0], float(w.cells['x'][0]))
        np.testing.assert_allclose(pos[:, 1], float(w.cells['y'][0]))

        w.step(1, force=True)
        assert not np.allclose(w.particle_positions()[:5], pos)

    def test_without_jitter_is_deterministic_drift(self):
        cfg = make_config(world={'n_cells': 20, 'initial_particles': 10})
        w = World(cfg, motion_jitter=False)
        p0 = w.particles.copy()
        w.step(1, force=True)
        np.testing.assert_allclose(w.particles['x'][:10], p0['x'] + p0['vx'])
        np.testing.assert_allclose(w.particles['vx'][:10], p0['vx'])


class TestDeath:
    def test_dead_is_absorbing(self):
        cfg = make_config(
            world={'n_cells': 150},
            death={'min_dwell_ms': 0.0, 'prob_per_tick': 1.0},
        )
        w = World(cfg)
        w.start()
        dead = np.zeros(w.n_cells, dtype=bool)
        for t in range(120):
            if t == 60:
                w.introduce_pathogen()
            w.tick()
            now = w.cells['state'] == CellState.DEAD
            assert np.all(now[dead])
            dead = now
        assert dead.sum() > 0

    def test_burst_on_death(self):
        cfg = make_config(
            world={'n_cells': 20, 'initial_particles': 0},
            death={'prob_per_tick': 1.0},
        )
        w = World(cfg)
        w.cells['state'][0] = CellState.ACTIVE
        w.cells['age_ms'][0] = 40000.0
        w.step(1, force=True)
        assert w.last_events['died'] == 1
        assert w.particle_count(ParticleType.HIV) == 50
        assert w.counts()['DEAD'] == 1

    def test_eligible_cell_caught_by_therapy_edge(self):
        """An ACTIVE cell past its dwell goes LATENT on the ART edge and
        neither dies nor bursts afterwards."""
        cfg = make_config(
            world={'n_cells': 20, 'initial_particles': 0},
            death={'prob_per_tick': 1.0, 'burst_requires_therapy_off': True},
        )
        w = World(cfg)
        w.cells['state'][0] = CellState.ACTIVE
        w.cells['age_ms'][0] = 40000.0
        assert w.set_therapy(True) == 1
        assert w.cells['state'][0] == CellState.LATENT
        for _ in range(20):
            w.step(1, force=True)
            assert w.last_events['died'] == 0
            assert w.last_events['burst'] == 0
        assert w.counts()['DEAD'] == 0
        assert w.counts()['LATENT'] == 1
        assert w.particle_count() == 0

    def test_eligible_cell_caught_by_therapy_edge_when_deaths_allowed(self):
        cfg = make_config(
            world={'n_cells': 20, 'initial_particles': 0},
            death={'prob_per_tick': 1.0, 'dies_under_therapy': True},
        )
        w = World(cfg)
        w.cells['state'][0] = CellState.ACTIVE
        w.cells['age_ms'][0] = 40000.0
        w.set_therapy(True)
        w.step(20, force=True)
        assert w.counts()['DEAD'] == 0
        assert w.particle_count() == 0

    def test_burst_gated_under_therapy(self):
        """A reactivated cell dying under therapy releases nothing."""
        cfg = make_config(
            world={'n_cells': 20, 'initial_particles': 0},
            death={'prob_per_tick': 1.0, 'dies_under_therapy': True},
        )
        w = World(cfg)
        w.set_therapy(True)
        w.cells['state'][0] = CellState.ACTIVE
        w.cells['age_ms'][0] = 40000.0
        w.step(1, force=True)
        assert w.last_events['died'] == 1
        assert w.last_events['burst'] == 0
        assert w.particle_count() == 0

    def test_burst_ungated(self):
        cfg = make_config(
            world={'n_cells': 20, 'initial_particles': 0},
            death={'prob_per_tick': 1.0, 'dies_under_therapy': True,
                   'burst_requires_therapy_off': False},
        )
        w = World(cfg)
        w.set_therapy(True)
        w.cells['state'][0] = CellState.ACTIVE
        w.cells['age_ms'][0] = 40000.0
        w.step(1, force=True)
        assert w.particle_count(ParticleType.HIV) == 50

    def test_no_death_under_therapy_by_default(self):
        """A cell reactivated under ART waits for ART OFF before it can die."""
        cfg = make_config(
            world={'n_cells': 20, 'initial_particles': 0},
            death={'prob_per_tick': 1.0},
        )
        w = World(cfg)
        w.set_therapy(True)
        w.cells['state'][0] = CellState.ACTIVE
        w.cells['age_ms'][0] = 40000.0
        w.step(3, force=True)
        assert w.counts()['DEAD'] == 0
        assert w.counts()['ACTIVE'] == 1
        assert w.cells['age_ms'][0] == pytest.approx(40960.0)

        w.set_therapy(False)
        w.step(1, force=True)
        assert w.counts()['DEAD'] == 1
        assert w.particle_count(ParticleType.HIV) == 50


# ═══════════════════════════════════════════════════════════════════════
# COMMANDS
# ═══════════════════════════════════════════════════════════════════════

class TestTherapy:
    def test_on_edge_suppresses_all_active(self, world):
        world.step(60)
        active = world.counts()['ACTIVE']
        latent = world.counts()['LATENT']
        assert active > 0
        moved = world.set_therapy(True)
        assert moved == active
        assert world.counts()['ACTIVE'] == 0
        assert world.counts()['LATENT'] == latent + active

    def test_repeated_on_is_noop(self, world):
        world.step(60)
        world.set_therapy(True)
        assert world.set_therapy(True) == 0

    def test_off_edge_keeps_latent(self, world):
        world.step(60)
        world.set_therapy(True)
        latent = world.counts()['LATENT']
        assert world.set_therapy(False) == 0
        assert world.counts()['LATENT'] == latent

    def test_toggle(self, world):
        assert world.toggle_therapy() is True
        assert world.therapy_on
        assert world.toggle_therapy() is False

    def test_clearance_under_therapy(self, world):
        world.set_therapy(True)
        world.step(3)
        assert world.particle_count() == 100
        world.step(1)   # first clearance firing at 1280 ms
        assert world.last_events['cleared'] == 5
        assert world.particle_count() == 95

    def test_clearance_spares_pathogen(self, world):
        world.boost(40, ptype=ParticleType.PATHOGEN)
        world.set_therapy(True)
        world.step(20)
        assert world.particle_count(ParticleType.PATHOGEN) == 40


class TestFlush:
    def test_flush_is_exact(self, world):
        world.step(40)
        n = world.particle_count(ParticleType.HIV)
        assert world.flush() == n
        assert world.particle_count(ParticleType.HIV) == 0

    def test_flush_keeps_pathogen(self, world):
        world.boost(10, ptype=ParticleType.PATHOGEN)
        world.flush()
        assert world.particle_count(ParticleType.PATHOGEN) == 10

    def test_flush_everything(self, world):
        world.boost(10, ptype=ParticleType.PATHOGEN)
        assert world.flush(None) == 110
        assert world.particle_count() == 0

    def test_flush_by_name(self, world):
        world.boost(10, ptype=ParticleType.PATHOGEN)
        assert world.flush("HIV") == 100
        assert world.particle_count(ParticleType.HIV) == 0
        assert world.flush("pathogen") == 10
        assert world.particle_count() == 0

    def test_flush_unknown_species(self, world):
        with pytest.raises(ValueError, match="Unknown particle type"):
            world.flush("virus")
        assert world.particle_count() == 100

    def test_shedding_resumes_after_flush(self, world):
        world.step(7)
        assert world.counts()['ACTIVE'] == 2
        world.flush()
        world.step(31)
        assert world.particle_count(ParticleType.HIV) >= 10


class TestBoost:
    def test_default_quantity(self, world):
        assert world.boost() == 50
        assert world.particle_count(ParticleType.HIV) == 150

    def test_explicit_quantity(self, world):
        world.boost(7)
        assert world.particle_count() == 107

    def test_zero(self, world):
        assert world.boost(0) == 0
        assert world.particle_count() == 100

    def test_negative_rejected(self, world):
        with pytest.raises(ValueError, match="boost"):
            world.boost(-1)
        assert world.particle_count() == 100

    def test_boost_by_name(self, world):
        world.boost(10, "PATHOGEN")
        assert world.particle_count(ParticleType.PATHOGEN) == 10
        world.boost(5, "hiv")
        assert world.particle_count(ParticleType.HIV) == 105

    def test_boost_unknown_species(self, world):
        with pytest.raises(ValueError, match="Unknown particle type"):
            world.boost(10, "virus")
        with pytest.raises(ValueError, match="Unknown particle type"):
            world.boost(10, 7)
        assert world.particle_count() == 100

    def test_boost_while_paused(self):
        w = World()
        w.boost(20)
        assert w.particle_count() == 120
        assert w.tick_count == 0

    def test_boosted_particles_inside(self, world):
        world.boost(500)
        pos = world.particle_positions()
        margin = world.config.world.spawn_margin
        assert np.all(pos[:, 0] >= margin) and np.all(pos[:, 0] <= world.width - margin)


class TestPathogen:
    def test_reactivates_latent_and_spawns(self, world):
        world.step(60)
        world.set_therapy(True)
        latent = world.counts()['LATENT']
        assert latent > 0
        out = world.introduce_pathogen()
        assert out == {'reactivated': latent, 'spawned': 50}
        assert world.counts()['LATENT'] == 0
        assert world.counts()['ACTIVE'] == latent
        assert world.particle_count(ParticleType.PATHOGEN) == 50
        assert world.therapy_on

    def test_no_latent(self, world):
        out = world.introduce_pathogen()
        assert out['reactivated'] == 0
        assert world.counts()['HEALTHY'] == 1000

    def test_without_reactivation(self):
        w = World(make_config(pathogen={'reactivate_latent': False}))
        w.step(60, force=True)
        w.set_therapy(True)
        latent = w.counts()['LATENT']
        w.introduce_pathogen()
        assert w.counts()['LATENT'] == latent

    def test_per_infected_as_hiv(self):
        cfg = make_config(pathogen={
            'mode': 'per_infected', 'quantity': 20, 'per_infected': 2,
            'particle_type': 'HIV',
        })
        w = World(cfg)
        w.cells['state'][:5] = CellState.LATENT
        out = w.introduce_pathogen()
        assert out['spawned'] == 30
        assert w.particle_count(ParticleType.HIV) == 130
        assert w.particle_count(ParticleType.PATHOGEN) == 0

    def test_spawns_near_living_cells(self):
        cfg = make_config(
            world={'n_cells': 20, 'initial_particles': 0},
            pathogen={'spread': 0.0},
        )
        w = World(cfg)
        w.cells['state'][1:] = CellState.DEAD
        w.introduce_pathogen()
        pos = w.particle_positions(ParticleType.PATHOGEN)
        np.testing.assert_allclose(pos[:, 0], float(w.cells['x'][0]))
        np.testing.assert_allclose(pos[:, 1], float(w.cells['y'][0]))


# ═══════════════════════════════════════════════════════════════════════
# QUERIES AND INVARIANTS
# ═══════════════════════════════════════════════════════════════════════

class TestInvariants:
    def test_population_constant_through_scenario(self, world):
        for t in range(400):
            if t == 100:
                world.set_therapy(True)
            elif t == 200:
                world.introduce_pathogen()
            elif t == 250:
                world.set_therapy(False)
            elif t == 300:
                world.boost(200)
            world.tick()
            assert sum(world.counts().values()) == 1000
            if t % 25 == 0:
                world.check_invariants()

    def test_check_invariants_detects_stale_age(self):
        w = World()
        w.cells['age_ms'][0] = 5.0
        with pytest.raises(RuntimeError, match="age timer"):
            w.check_invariants()

    def test_check_invariants_detects_bad_state(self):
        w = World()
        w.cells['state'][0] = 9
        with pytest.raises(RuntimeError, match="unknown cell state"):
            w.check_invariants()

    def test_check_invariants_detects_lost_cell(self):
        w = World()
        w.cells = w.cells[1:]
        with pytest.raises(RuntimeError, match="999 cells"):
            w.check_invariants()


class TestQueries:
    def test_snapshot_is_a_copy(self, world):
        world.step(10)
        snap = world.snapshot()
        snap.cell_state[:] = CellState.DEAD
        snap.particle_x[:] = -1.0
        assert world.counts()['DEAD'] == 0
        assert np.all(world.particles['x'] >= 0)

    def test_snapshot_contents(self, world):
        world.step(10)
        snap = world.snapshot()
        assert snap.tick == 10
        assert snap.running
        assert snap.n_cells == 1000
        assert snap.n_particles == world.particle_count()
        assert snap.cell_counts == world.counts()
        assert snap.particle_counts == {'HIV': 100, 'PATHOGEN': 0}

    def test_particle_positions_by_type(self, world):
        world.boost(12, ptype=ParticleType.PATHOGEN)
        assert world.particle_positions(ParticleType.PATHOGEN).shape == (12, 2)
        assert world.particle_positions().shape == (112, 2)

    def test_cell_positions_shape(self, world):
        assert world.cell_positions().shape == (1000, 2)


@pytest.mark.parametrize("ms,label", [
    (0, "0:00"), (999, "0:00"), (61000, "1:01"), (125500, "2:05"), (-5, "0:00"),
])
def test_format_elapsed(ms, label):
    assert format_elapsed(ms) == label
