from __future__ import annotations

import numpy as np
import pytest

from CellBehavior.enums import ProcessDomain
from CellBehavior.environment import PatchLocation
from CellBehavior.processes import make_process
from CellBehavior.processes.inflammation import (
    GRANZYME,
    HISTORY_LENGTH,
    IL2_IL2RBG,
    IL2RBG,
    InflammationCombined,
    InflammationProcess,
    shell_fraction,
)

from conftest import CD4, CD8

# About 1e4 IL-2 molecules in one location.
IL2_LEVEL = 1e4 * 1e12 / 7830.0


def _run(process, agent, ctx, ticks):
    for _ in range(ticks):
        process.step(agent, ctx)
        ctx.commit()


def test_shell_fraction_grows_with_thickness():
    thin = shell_fraction(2250.0, 0.5, 7830.0)
    thick = shell_fraction(2250.0, 1.0, 7830.0)
    assert 0 < thin < thick < 1


def test_lagged_bound_wraps_around():
    history = np.zeros(HISTORY_LENGTH)
    history[175] = 42.0

    class Holder:
        bound_history = history
        ticker = 5

    assert InflammationProcess.lagged_bound(Holder(), 10) == 42.0


def test_history_written_at_ticker(make_agent, ctx):
    agent = make_agent(CD8)
    inflammation = agent.processes[ProcessDomain.INFLAMMATION]
    inflammation.ticker = HISTORY_LENGTH - 1
    ctx.lattices["IL-2"].set_value(agent.location, IL2_LEVEL)
    inflammation.step(agent, ctx)
    assert inflammation.ticker == HISTORY_LENGTH
    assert inflammation.bound_history[HISTORY_LENGTH - 1] == pytest.approx(inflammation.amounts[0])
    assert inflammation.lagged_bound(1) == pytest.approx(inflammation.amounts[0])


def test_cytotoxic_effector_never_creates_il2(make_agent, ctx):
    agent = make_agent(CD8)
    agent.activated = True
    _run(agent.processes[ProcessDomain.INFLAMMATION], agent, ctx, 70)
    assert ctx.lattices["IL-2"].get_average_value(agent.location) == 0.0


def test_helper_secretes_il2_once_active_long_enough(make_agent, ctx):
    agent = make_agent(CD4)
    inflammation = agent.processes[ProcessDomain.INFLAMMATION]
    il2 = ctx.lattices["IL-2"]

    _run(inflammation, agent, ctx, 5)
    assert il2.get_average_value(agent.location) == 0.0

    agent.activated = True
    _run(inflammation, agent, ctx, inflammation.il2_synthesis_delay + 1)
    assert inflammation.active_ticker > inflammation.il2_synthesis_delay
    assert il2.get_average_value(agent.location) > 0.0


def test_binding_takes_il2_from_lattice(make_agent, ctx):
    agent = make_agent(CD8)
    loc = PatchLocation(0, 0)
    ctx.lattices["IL-2"].set_value(loc, IL2_LEVEL)
    inflammation = agent.processes[ProcessDomain.INFLAMMATION]
    _run(inflammation, agent, ctx, 3)
    assert inflammation.amounts[0] > 0
    assert ctx.lattices["IL-2"].get_average_value(loc) < IL2_LEVEL


def test_granzyme_synthesized_when_active(make_agent, ctx):
    agent = make_agent(CD8)
    ctx.lattices["IL-2"].set_value(agent.location, IL2_LEVEL)
    inflammation = agent.processes[ProcessDomain.INFLAMMATION]
    agent.activated = True
    _run(inflammation, agent, ctx, inflammation.granz_synthesis_delay + 5)
    assert inflammation.granzyme > 1.0

    before = inflammation.granzyme
    inflammation.use_granzyme()
    assert inflammation.granzyme == pytest.approx(before - 1.0)


def test_combined_version_does_both(make_agent, ctx):
    agent = make_agent(CD8)
    combined = make_process(ProcessDomain.INFLAMMATION, "combined", agent)
    assert isinstance(combined, InflammationCombined)
    agent.processes[ProcessDomain.INFLAMMATION] = combined
    ctx.lattices["IL-2"].set_value(agent.location, IL2_LEVEL)
    agent.activated = True
    _run(combined, agent, ctx, combined.il2_synthesis_delay + 5)
    assert combined.production > 0
    assert combined.granzyme > 1.0


def test_split_conserves_bound_and_refills_free_receptors(make_agent, ctx):
    agent = make_agent(CD8)
    ctx.lattices["IL-2"].set_value(agent.location, IL2_LEVEL)
    inflammation = agent.processes[ProcessDomain.INFLAMMATION]
    _run(inflammation, agent, ctx, 5)
    before = inflammation.pools()

    daughter = inflammation.split(0.3)
    for name, value in before.items():
        assert inflammation.pools()[name] + daughter.pools()[name] == pytest.approx(value)
    for side in (inflammation, daughter):
        a = side.amounts
        total = a[IL2RBG] + a[IL2RBG + 1] + a[IL2_IL2RBG] + a[IL2_IL2RBG + 1]
        assert total == pytest.approx(side.il2_receptors)
    assert daughter.amounts[GRANZYME] == pytest.approx(0.3 * before["granzyme"])
    assert daughter.bound_history is not inflammation.bound_history
