from __future__ import annotations

import numpy as np
import pytest

from CellBehavior.division import divide, draw_split
from CellBehavior.enums import CellState, ProcessDomain
from CellBehavior.environment import PatchLocation

from conftest import CANCER, CD8


def test_split_fraction_near_half():
    rng = np.random.default_rng(5)
    draws = [draw_split(rng) for _ in range(500)]
    assert min(draws) >= 0.45
    assert max(draws) < 0.55


def test_divide_conserves_volume_energy_and_pools(make_agent, ctx):
    parent = make_agent(CANCER, state=CellState.PROLIFERATIVE, divisions=4)
    for process in parent.processes.values():
        process.step(parent, ctx)
    parent.energy = 12.0
    volume = parent.volume
    pools = {domain: process.pools() for domain, process in parent.processes.items()}

    daughter = divide(parent, PatchLocation(1, 0), ctx, cycle=42)

    assert parent.volume + daughter.volume == pytest.approx(volume)
    assert parent.energy + daughter.energy == pytest.approx(12.0)
    assert 0.45 * volume <= parent.volume <= 0.55 * volume
    assert set(daughter.processes) == set(parent.processes)
    for domain, before in pools.items():
        after_parent = parent.processes[domain].pools()
        after_daughter = daughter.processes[domain].pools()
        for name, value in before.items():
            assert after_parent[name] + after_daughter[name] == pytest.approx(value)


def test_daughter_identity_and_placement(make_agent, ctx):
    parent = make_agent(CANCER, state=CellState.PROLIFERATIVE, divisions=4)
    parent.age = 300
    daughter = divide(parent, PatchLocation(0, 1), ctx, cycle=42)

    assert daughter.id != parent.id
    assert daughter.parent == parent.id
    assert daughter.pop == parent.pop
    assert daughter.age == 300
    assert daughter.divisions == parent.divisions == 3
    assert daughter.state is CellState.UNDEFINED
    assert parent.state is CellState.UNDEFINED
    assert parent.cycles == [42]
    assert daughter.cycles == []
    assert daughter.location == PatchLocation(0, 1)
    assert ctx.grid.get_agent(daughter.id) is daughter
    assert daughter.stop_handle is not None and not daughter.is_stopped
    kind, payload = ctx.events[-1][1:]
    assert kind == "division"
    assert payload == {"parent": parent.id, "daughter": daughter.id, "pop": CANCER, "location": [0, 1]}


def test_daughter_processes_are_independent(make_agent, ctx):
    parent = make_agent(CD8, state=CellState.PROLIFERATIVE)
    daughter = divide(parent, PatchLocation(0, 0), ctx)
    for domain in (ProcessDomain.METABOLISM, ProcessDomain.INFLAMMATION):
        assert daughter.processes[domain] is not parent.processes[domain]
        assert daughter.processes[domain].amounts is not parent.processes[domain].amounts
    assert parent.cycles == []
