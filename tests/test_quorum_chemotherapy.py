from __future__ import annotations

import math

import pytest

from CellBehavior.enums import CellState, ProcessDomain
from CellBehavior.environment import PatchLocation
from CellBehavior.processes.chemotherapy import DRUG, kill_probability
from CellBehavior.processes.quorum import QuorumSink, QuorumSource, molecules_to_um, um_to_molecules

from conftest import CANCER, SINK, SYNNOTCH


# -----------------------------------------------------------------------------
# Quorum sensing
# -----------------------------------------------------------------------------

def test_unit_conversions_invert():
    assert um_to_molecules(molecules_to_um(5000, 2250.0), 2250.0) == pytest.approx(5000)


def test_idle_source_releases_nothing(make_agent, ctx):
    agent = make_agent(SYNNOTCH)
    source = agent.processes[ProcessDomain.QUORUM]
    assert isinstance(source, QuorumSource)
    source.step(agent, ctx)
    ctx.commit()
    assert source.is_bound == 0
    assert source.exchanged == 0.0
    assert ctx.lattices["AUXIN"].get_average_value(agent.location) == 0.0


def test_engaged_source_expresses_and_releases_auxin(make_agent, ctx):
    agent = make_agent(SYNNOTCH)
    agent.synnotch.bound = 5000
    source = agent.processes[ProcessDomain.QUORUM]
    source.step(agent, ctx)
    ctx.commit()
    assert source.is_bound == 1
    assert source.amounts[0] > 0
    assert source.exchanged > 0
    assert ctx.lattices["AUXIN"].get_average_value(agent.location) >= 0.0


def test_sink_uptake_is_taken_from_lattice(make_agent, ctx):
    loc = PatchLocation(0, 0)
    ctx.lattices["AUXIN"].set_value(loc, 1.0)
    agent = make_agent(SINK, loc=(0, 0))
    sink = agent.processes[ProcessDomain.QUORUM]
    assert isinstance(sink, QuorumSink)

    sink.step(agent, ctx)
    ctx.commit()
    after = ctx.lattices["AUXIN"].get_average_value(loc)
    assert after < 1.0
    assert (1.0 - after) * loc.get_volume() == pytest.approx(sink.exchanged * agent.volume, rel=1e-6)
    assert sink.amounts[QuorumSink.AUXIN] > 0


def test_sink_activation_follows_bound_antigen(make_agent, ctx):
    agent = make_agent(SINK, overrides={"quorum": {"ACTIVATION_THRESHOLD": 1e-9}})
    sink = agent.processes[ProcessDomain.QUORUM]

    sink.step(agent, ctx)
    assert agent.activated is False

    agent.bound_antigen_count = 1000
    sink.step(agent, ctx)
    assert agent.activated is True
    assert agent.last_active_ticker == 0
    assert 0 < agent.cars <= 50000


def test_sink_split_keeps_car_density(make_agent, ctx):
    agent = make_agent(SINK)
    sink = agent.processes[ProcessDomain.QUORUM]
    car = sink.amounts[QuorumSink.CAR]
    daughter = sink.split(0.5)
    assert daughter.amounts[QuorumSink.CAR] == car
    assert sink.amounts[QuorumSink.CAR] == car


# -----------------------------------------------------------------------------
# Chemotherapy
# -----------------------------------------------------------------------------

def test_kill_probability_half_at_reference_oxygen():
    assert kill_probability(3.0) == pytest.approx(0.5)
    assert kill_probability(0.0) == 0.0


def test_drugged_proliferative_cell_is_killed(make_agent, ctx):
    loc = PatchLocation(0, 0)
    ctx.lattices["DRUG"].set_value(loc, 1.0)
    ctx.lattices["OXYGEN"].set_value(loc, 1e6)
    agent = make_agent(CANCER, state=CellState.PROLIFERATIVE)
    chemo = agent.processes[ProcessDomain.CHEMOTHERAPY]

    chemo.step(agent, ctx)
    ctx.commit()
    assert agent.state is CellState.APOPTOTIC
    assert chemo.killed
    assert any(kind == "chemotherapy" for _, kind, _ in ctx.events)
    assert ctx.lattices["DRUG"].get_average_value(loc) < 1.0


def test_quiescent_cell_accumulates_but_survives(make_agent, ctx):
    loc = PatchLocation(0, 0)
    ctx.lattices["DRUG"].set_value(loc, 1.0)
    agent = make_agent(CANCER, state=CellState.QUIESCENT)
    chemo = agent.processes[ProcessDomain.CHEMOTHERAPY]
    chemo.step(agent, ctx)
    assert agent.state is CellState.QUIESCENT
    assert chemo.amounts[DRUG] > 0

    held = chemo.amounts[DRUG]
    ctx.lattices["DRUG"].set_value(loc, 0.0)
    ctx.rollback()
    chemo.step(agent, ctx)
    assert chemo.amounts[DRUG] == pytest.approx(held * math.exp(-chemo.removal))
