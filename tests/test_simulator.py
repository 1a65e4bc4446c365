from __future__ import annotations

import dataclasses
import json
import pathlib

import pytest
import yaml

import run_simulation
from CellBehavior.config import PopulationConfig, SimulationConfig, TreatmentConfig
from CellBehavior.enums import CellState, CellVariant
from CellBehavior.environment import PatchLocation
from CellBehavior.io import load_simulation_config
from CellBehavior.simulator import PatchSimulator

EXAMPLE_CONFIG = pathlib.Path(__file__).resolve().parents[1] / "configs" / "example.yaml"


def _config(ticks=20, seed=11, radius=4, **kwargs):
    populations = (
        PopulationConfig(
            name="tissue", variant="tissue", init=4,
            processes={"metabolism": "medium", "signaling": "simple"},
        ),
        PopulationConfig(
            name="cancer", variant="cancer", init=2,
            processes={"metabolism": "complex", "signaling": "medium"},
        ),
        PopulationConfig(
            name="cd8", variant="cart_cd8", init=2,
            processes={"metabolism": "cart", "inflammation": "cd8"},
        ),
    )
    return SimulationConfig(
        random_seed=seed,
        ticks=ticks,
        populations=populations,
        grid_radius=radius,
        snapshot_interval=10,
        lattice={"GLUCOSE": 0.005, "OXYGEN": 100.0},
        **kwargs,
    )


def test_seeding_places_every_population():
    sim = PatchSimulator(_config())
    agents = sim.seed()
    assert len(agents) == 8
    assert len({a.id for a in agents}) == 8
    assert [a.pop for a in agents] == [1, 1, 1, 1, 2, 2, 3, 3]
    assert sum(a.variant is CellVariant.CART_CD8 for a in agents) == 2
    for agent in agents:
        assert agent.state is CellState.UNDEFINED
        assert 0.5 * 2250 <= agent.volume <= 1.5 * 2250
        assert agent.critical_volume == agent.volume
        assert agent.location.radius <= 2
    assert sim.counts() == {"UNDEFINED": 8}


def test_seeding_fails_when_grid_is_full():
    sim = PatchSimulator(_config(radius=1))
    with pytest.raises(RuntimeError, match="No free location"):
        sim.seed()


def test_run_collects_snapshots():
    sim = PatchSimulator(_config(ticks=20))
    snapshots = sim.run()
    assert [s["tick"] for s in snapshots] == [0, 10, 20]
    first = snapshots[0]["cells"]
    assert len(first) == 8
    code, pop, state, location, volume, cycles = first[0]
    assert code == CellVariant.TISSUE.code
    assert pop == 1
    assert state == "UNDEFINED"
    assert len(location) == 2
    assert volume > 0
    assert cycles == []
    for snapshot in snapshots:
        for row in snapshot["cells"]:
            assert row[2] in CellState.__members__


def test_same_seed_same_history():
    first = PatchSimulator(_config(ticks=15)).run()
    second = PatchSimulator(_config(ticks=15)).run()
    assert first == second


def _seeded_snapshot(seed):
    sim = PatchSimulator(_config(seed=seed))
    sim.seed()
    return sim.snapshot()


def test_different_seed_different_layout():
    assert _seeded_snapshot(1) != _seeded_snapshot(2)


def test_dead_agents_leave_the_grid():
    sim = PatchSimulator(_config(ticks=1))
    sim.seed()
    victim = sim.grid.agents()[0]
    victim.set_state(CellState.APOPTOTIC)
    victim.module.ticker = victim.module.duration + 1
    sim.step()
    assert sim.grid.get_agent(victim.id) is None
    assert victim.is_stopped
    assert sim.scheduler.pending() >= 7


def _treatment_events(sim):
    return [event for event in sim.ctx.events if event[1] == "treatment"]


def test_treatment_arrives_at_its_tick():
    sim = PatchSimulator(_config(treatments=(TreatmentConfig(population="cd8", dose=3, time_delay=5),)))
    last_seeded = max(a.id for a in sim.seed())

    for _ in range(5):
        sim.step()
    assert _treatment_events(sim) == []
    assert not [a for a in sim.grid.agents() if a.id > last_seeded and a.pop == 3]

    sim.step()
    assert _treatment_events(sim) == [(5, "treatment", {"pop": 3, "dose": 3, "placed": 3})]
    dosed = [a for a in sim.grid.agents() if a.id > last_seeded and a.pop == 3]
    assert len(dosed) == 3
    assert all(a.variant is CellVariant.CART_CD8 for a in dosed)
    assert all(a.stop_handle is not None and not a.stop_handle.stopped for a in dosed)


def test_treatment_stops_when_grid_is_full():
    sim = PatchSimulator(_config(radius=2, treatments=(TreatmentConfig(population="cd8", dose=100),)))
    sim.seed()
    sim.step()
    [(tick, _, payload)] = _treatment_events(sim)
    assert tick == 0
    assert 0 < payload["placed"] < 100
    assert len(sim.grid) <= 9 * PatchLocation.CAPACITY


def test_replenish_restores_sources_only():
    sim = PatchSimulator(_config())
    sim.seed()
    loc = PatchLocation(0, 0)
    sim.lattices["GLUCOSE"].set_value(loc, 0.0)
    sim.lattices["OXYGEN"].update_value(loc, 0.5)
    sim.lattices["TGFA"].set_value(loc, 3.0)
    sim.replenish()
    assert sim.lattices["GLUCOSE"].get_average_value(loc) == 0.005
    assert sim.lattices["OXYGEN"].get_average_value(loc) == 100.0
    assert sim.lattices["TGFA"].get_average_value(loc) == 3.0


def test_example_run_keeps_live_tissue():
    cfg = dataclasses.replace(load_simulation_config(EXAMPLE_CONFIG), ticks=120)
    sim = PatchSimulator(cfg)
    sim.run()
    assert any(
        a.variant in (CellVariant.TISSUE, CellVariant.CANCER) and not a.state.is_terminal
        for a in sim.grid.agents()
    )


def test_cli_writes_snapshots_and_cells(tmp_path):
    config = {
        "random_seed": 3,
        "ticks": 100,
        "grid_radius": 3,
        "snapshot_interval": 2,
        "out_path": "out/snapshots.json",
        "lattice": {"GLUCOSE": 0.005, "OXYGEN": 100.0},
        "populations": [
            {"name": "tissue", "variant": "tissue", "init": 3, "processes": {"metabolism": "simple"}},
            {"name": "cd4", "variant": "cart_cd4", "init": 1,
             "processes": {"metabolism": "complex", "inflammation": "cd4"}},
        ],
    }
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    cells_path = tmp_path / "cells.json"

    run_simulation.main(
        ["--config", str(config_path), "--ticks", "4", "--seed", "9", "--log-level", "WARNING",
         "--save-cells", str(cells_path)]
    )

    snapshots = json.loads((tmp_path / "out" / "snapshots.json").read_text(encoding="utf-8"))
    assert [s["tick"] for s in snapshots] == [0, 2, 4]
    rows = json.loads(cells_path.read_text(encoding="utf-8"))
    assert len(rows) == len(snapshots[-1]["cells"])
    assert {"container", "location"} <= set(rows[0])
    assert PatchLocation(*rows[0]["location"]).radius <= 3


def test_cli_arguments():
    args = run_simulation.parse_args(["--config", "x.yaml", "--ticks", "7"])
    assert args.config == "x.yaml"
    assert args.ticks == 7
    assert args.seed is None
    assert args.save_cells is None
