from __future__ import annotations

import pytest

from CellBehavior.cell import CellContainer
from CellBehavior.enums import BindingFlag, CellState, ProcessDomain
from CellBehavior.environment import PatchGrid, PatchLocation, TickContext
from CellBehavior.modules import (
    CytotoxicityModule,
    MigrationModule,
    Module,
    ProliferationModule,
    RemovalModule,
    StimulatoryModule,
    location_is_free,
    select_best_location,
)
from CellBehavior.transitions import effector_resolve

from conftest import ANTIGEN_ONLY, CD4, CD8, TISSUE


def _fill(make_agent, loc, count=3):
    return [make_agent(TISSUE, loc=loc, state=CellState.QUIESCENT) for _ in range(count)]


def _expire(agent):
    agent.module.ticker = agent.module.duration + 1


def _mark_doubled(agent):
    agent.processes[ProcessDomain.METABOLISM].doubled = True


def test_module_without_step_cannot_be_built(make_agent):
    class Idle(Module):
        pass

    with pytest.raises(TypeError):
        Idle(make_agent(TISSUE, place=False))


# -----------------------------------------------------------------------------
# Site selection
# -----------------------------------------------------------------------------

def test_location_capacity_and_height(make_agent, ctx):
    loc = PatchLocation(0, 0)
    assert location_is_free(ctx.grid, loc, 2250.0, 8.7)
    _fill(make_agent, (0, 0), 3)
    assert not location_is_free(ctx.grid, loc, 2250.0, 8.7)
    assert location_is_free(ctx.grid, loc, 1000.0, 8.7)
    assert not location_is_free(ctx.grid, loc, 1000.0, 8.0)


def test_occupant_height_tolerance(make_agent, ctx):
    occupant = make_agent(TISSUE, loc=(0, 0))
    occupant.critical_height = 4.0
    assert not location_is_free(ctx.grid, PatchLocation(0, 0), 2250.0, 8.7)


def test_slot_limit(make_agent, ctx):
    for _ in range(4):
        make_agent(TISSUE, loc=(0, 0), volume=500.0)
    assert not location_is_free(ctx.grid, PatchLocation(0, 0), 10.0, 8.7)


def test_centre_preference(make_agent, ctx):
    agent = make_agent(TISSUE, loc=(2, 0), overrides={"migration": {"AFFINITY": 1.0}})
    for _ in range(10):
        best = select_best_location(agent, ctx, agent.volume, agent.critical_height)
        assert best.x == 1


def test_glucose_preference(make_agent, ctx):
    ctx.lattices["GLUCOSE"].set_value(PatchLocation(1, 1), 1.0)
    agent = make_agent(TISSUE, loc=(0, 0), overrides={"migration": {"AFFINITY": 0.0, "ACCURACY": 1.0}})
    assert select_best_location(agent, ctx, agent.volume, agent.critical_height) == PatchLocation(1, 1)


def test_current_location_only_when_asked(make_agent, ctx):
    agent = make_agent(TISSUE, loc=(0, 0))
    for x in (-1, 0, 1):
        for y in (-1, 0, 1):
            if (x, y) != (0, 0):
                _fill(make_agent, (x, y))
    assert select_best_location(agent, ctx, 1125.0, agent.critical_height) is None
    assert select_best_location(agent, ctx, 1125.0, agent.critical_height, include_current=True) == PatchLocation(0, 0)


# -----------------------------------------------------------------------------
# Migration
# -----------------------------------------------------------------------------

def test_migration_waits_then_moves(make_agent, ctx):
    agent = make_agent(TISSUE, loc=(0, 0), state=CellState.MIGRATORY)
    module = agent.module
    assert isinstance(module, MigrationModule)
    assert module.duration == 120

    module.step(agent, ctx)
    assert module.ticker == 1
    assert agent.location == PatchLocation(0, 0)

    _expire(agent)
    module.step(agent, ctx)
    assert agent.location != PatchLocation(0, 0)
    assert agent.location in ctx.grid.get_neighbors(PatchLocation(0, 0))
    assert ctx.grid.get_objects_at_location(agent.location) == [agent]
    assert agent.state is CellState.UNDEFINED


def test_saturated_neighbourhood_makes_migrant_quiescent(make_agent, ctx):
    agent = make_agent(TISSUE, loc=(0, 0), state=CellState.MIGRATORY)
    for loc in ctx.grid.get_neighbors(PatchLocation(0, 0)):
        _fill(make_agent, (loc.x, loc.y))
    _expire(agent)
    agent.module.step(agent, ctx)
    assert agent.state is CellState.QUIESCENT
    assert agent.location == PatchLocation(0, 0)


# -----------------------------------------------------------------------------
# Removal
# -----------------------------------------------------------------------------

def test_removal_after_death_duration(make_agent, ctx):
    agent = make_agent(TISSUE, state=CellState.APOPTOTIC)
    module = agent.module
    assert isinstance(module, RemovalModule)
    assert module.duration == 60
    for _ in range(module.duration + 1):
        module.step(agent, ctx)
    assert ctx.grid.get_agent(agent.id) is agent

    module.step(agent, ctx)
    assert ctx.grid.get_agent(agent.id) is None
    assert agent.is_stopped
    assert ctx.events[-1][1] == "removal"
    assert ctx.events[-1][2]["kind"] == "apoptosis"


def test_necrosis_uses_its_own_duration(make_agent):
    agent = make_agent(TISSUE, state=CellState.NECROTIC)
    assert agent.module.kind == "necrosis"
    assert agent.module.duration == 120
    assert agent.module.state is CellState.NECROTIC


def test_removal_promotes_one_waiting_neighbour(make_agent, ctx):
    dying = make_agent(TISSUE, loc=(0, 0), state=CellState.APOPTOTIC)
    waiting = make_agent(TISSUE, loc=(1, 0), state=CellState.QUIESCENT)
    held = make_agent(TISSUE, loc=(0, 1), state=CellState.QUIESCENT)
    held.on_hold = True
    spent = make_agent(TISSUE, loc=(1, 1), state=CellState.QUIESCENT, divisions=0)
    far = make_agent(TISSUE, loc=(3, 3), state=CellState.QUIESCENT)

    _expire(dying)
    dying.module.step(dying, ctx)
    assert waiting.state is CellState.PROLIFERATIVE
    assert held.state is CellState.QUIESCENT
    assert spent.state is CellState.QUIESCENT
    assert far.state is CellState.QUIESCENT


def test_removed_effector_releases_target(make_agent, ctx):
    target = make_agent(TISSUE, state=CellState.PROLIFERATIVE)
    effector = make_agent(CD8, overrides=ANTIGEN_ONLY)
    effector.binding.bind_target(effector, ctx)
    assert target.on_hold

    effector.set_state(CellState.APOPTOTIC)
    _expire(effector)
    effector.module.step(effector, ctx)
    assert target.bound_by is None
    assert target.state is CellState.UNDEFINED


# -----------------------------------------------------------------------------
# Proliferation
# -----------------------------------------------------------------------------

def test_crowded_location_stops_proliferation(make_agent, ctx):
    agent = make_agent(TISSUE, loc=(0, 0), state=CellState.PROLIFERATIVE)
    _fill(make_agent, (0, 0), 2)
    agent.critical_height = 5.0
    agent.module.step(agent, ctx)
    assert agent.state is CellState.QUIESCENT


def test_no_room_for_daughter(factory, lattices, rng):
    ctx = TickContext(rng=rng, grid=PatchGrid(1), lattices=lattices, factory=factory)
    agents = []
    for _ in range(3):
        container = CellContainer(
            id=ctx.next_id(), parent=None, pop=TISSUE, age=0, divisions=5, state=CellState.PROLIFERATIVE,
            volume=2250.0, height=8.7, critical_volume=2250.0, critical_height=8.7,
        )
        agent = container.convert(factory, PatchLocation(0, 0), rng)
        ctx.grid.add_object(agent, PatchLocation(0, 0))
        agents.append(agent)
    agents[0].module.step(agents[0], ctx)
    assert agents[0].state is CellState.QUIESCENT


def test_growth_and_synthesis_gate_division(make_agent, ctx):
    agent = make_agent(TISSUE, state=CellState.PROLIFERATIVE)
    module = agent.module
    assert isinstance(module, ProliferationModule)
    module.step(agent, ctx)
    assert module.ticker == 1

    agent.volume = 2 * agent.critical_volume
    module.step(agent, ctx)
    assert module.ticker == 2
    assert len(ctx.grid) == 1


def test_volume_without_doubled_mass_does_not_divide(make_agent, ctx):
    agent = make_agent(TISSUE, state=CellState.PROLIFERATIVE)
    module = agent.module
    agent.volume = 2 * agent.critical_volume
    assert not agent.processes[ProcessDomain.METABOLISM].doubled
    _expire(agent)
    ticker = module.ticker

    module.step(agent, ctx)

    assert len(ctx.grid) == 1
    assert agent.state is CellState.PROLIFERATIVE
    assert agent.divisions == 50
    assert module.ticker == ticker + 1


def test_division_places_daughter(make_agent, ctx):
    agent = make_agent(TISSUE, state=CellState.PROLIFERATIVE, divisions=3)
    module = agent.module
    module.step(agent, ctx)

    ctx.tick = 600
    agent.volume = 2 * agent.critical_volume
    _mark_doubled(agent)
    module.ticker = module.duration + 1
    module.step(agent, ctx)

    assert len(ctx.grid) == 2
    assert agent.state is CellState.UNDEFINED
    assert agent.divisions == 2
    assert agent.cycles == [600]
    daughter = next(a for a in ctx.grid.agents() if a is not agent)
    assert daughter.parent == agent.id
    assert agent.volume + daughter.volume == pytest.approx(2 * agent.critical_volume)
    assert ctx.events[-1][1] == "division"


def test_no_divisions_left_returns_to_undefined(make_agent, ctx):
    agent = make_agent(TISSUE, state=CellState.PROLIFERATIVE, divisions=0)
    agent.volume = 2 * agent.critical_volume
    _mark_doubled(agent)
    _expire(agent)
    agent.module.step(agent, ctx)
    assert agent.state is CellState.UNDEFINED
    assert len(ctx.grid) == 1


# -----------------------------------------------------------------------------
# Engagement
# -----------------------------------------------------------------------------

def _engaged(make_agent, ctx, pop=CD8):
    target = make_agent(TISSUE)
    effector = make_agent(pop, overrides=ANTIGEN_ONLY)
    effector_resolve(effector, ctx)
    return effector, target


def test_cytotoxic_lysis(make_agent, ctx):
    effector, target = _engaged(make_agent, ctx)
    assert isinstance(effector.module, CytotoxicityModule)
    inflammation = effector.processes[ProcessDomain.INFLAMMATION]
    assert inflammation.granzyme == 1.0

    effector.module.step(effector, ctx)
    assert target.state is CellState.APOPTOTIC
    assert inflammation.granzyme == 0.0
    assert ctx.events[-1][1] == "lysis"


def test_engagement_ends_after_bound_time(make_agent, ctx):
    effector, target = _engaged(make_agent, ctx)
    module = effector.module
    steps = 0
    while effector.state is CellState.CYTOTOXIC:
        module.step(effector, ctx)
        steps += 1
        assert steps <= 30
    assert 15 <= module.duration <= 25
    assert steps == module.duration + 1
    assert effector.state is CellState.UNDEFINED
    assert effector.binding_flag is BindingFlag.UNBOUND
    assert target.bound_by is None


def test_no_granzyme_no_lysis(make_agent, ctx):
    effector, target = _engaged(make_agent, ctx)
    effector.processes[ProcessDomain.INFLAMMATION].use_granzyme()
    effector.module.step(effector, ctx)
    assert target.state is CellState.UNDEFINED


def test_dying_target_is_not_lysed_twice(make_agent, ctx):
    effector, target = _engaged(make_agent, ctx)
    target.set_state(CellState.APOPTOTIC)
    effector.module.step(effector, ctx)
    assert effector.processes[ProcessDomain.INFLAMMATION].granzyme == 1.0
    assert not any(kind == "lysis" for _, kind, _ in ctx.events)


def test_lost_target_ends_engagement(make_agent, ctx):
    effector, target = _engaged(make_agent, ctx)
    ctx.grid.remove_object(target)
    target.stop()
    effector.module.step(effector, ctx)
    assert effector.state is CellState.UNDEFINED
    assert effector.bound_target_id is None


def test_stimulatory_engagement_does_not_kill(make_agent, ctx):
    effector, target = _engaged(make_agent, ctx, pop=CD4)
    assert isinstance(effector.module, StimulatoryModule)
    effector.module.step(effector, ctx)
    assert target.state is CellState.UNDEFINED
