"""Timed behavior modules attached to an agent's current state.

A module counts ticks and performs one action once its duration has passed:
removal for dying cells, a move for migrating cells, a division for
proliferating cells, and target engagement for activated effectors. A module
keeps no reference to its agent; the agent is passed to ``step``. Changing
the agent's state discards the module without firing it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar, Optional

from CellBehavior.binding import unbind
from CellBehavior.division import divide
from CellBehavior.enums import CellState, ProcessDomain
from CellBehavior.errors import StaleReferenceError
from CellBehavior.processes.base import EPSILON

if TYPE_CHECKING:
    from CellBehavior.cell import CellAgent
    from CellBehavior.environment import PatchGrid, PatchLocation, TickContext

logger = logging.getLogger(__name__)

SCORE_TOLERANCE = 1e-12


# -----------------------------------------------------------------------------
# Site selection
# -----------------------------------------------------------------------------

def location_is_free(grid: "PatchGrid", loc: "PatchLocation", volume: float, max_height: float) -> bool:
    """Whether a newcomer of ``volume`` fits at ``loc``.

    A site fits when it has a free slot, the occupants plus the newcomer fit
    the location volume, and the resulting height is tolerated by the
    newcomer and by every occupant.
    """
    occupants = grid.get_objects_at_location(loc)
    if len(occupants) >= loc.CAPACITY:
        return False
    total = sum(a.volume for a in occupants) + volume
    if total > loc.get_volume():
        return False
    height = total / loc.get_area()
    if height > max_height:
        return False
    return all(height <= a.critical_height for a in occupants)


def select_best_location(
    agent: "CellAgent",
    ctx: "TickContext",
    volume: float,
    max_height: float,
    include_current: bool = False,
) -> "Optional[PatchLocation]":
    """Pick the best free site around the agent, or None when all are full.

    score = affinity * dist + (1 - affinity) * (accuracy * glucose / max + (1 - accuracy) * U)
    where dist rewards moving toward the centre of the grid.
    """
    grid = ctx.grid
    here = agent.location
    sites = grid.get_neighbors(here)
    if include_current:
        sites = [here, *sites]
    free = [loc for loc in sites if location_is_free(grid, loc, volume, max_height)]
    if not free:
        return None

    accuracy = agent.params.get_float("migration/ACCURACY")
    affinity = agent.params.get_float("migration/AFFINITY")
    glucose = ctx.lattice("GLUCOSE")
    values = [glucose.get_average_value(loc) for loc in free]
    top = max(values)

    scores = []
    for loc, value in zip(free, values):
        dist = ((here.radius - loc.radius) + 1) / 2.0
        resource = value / top if top > EPSILON else 0.0
        noise = ctx.rng.random()
        scores.append(affinity * dist + (1 - affinity) * (accuracy * resource + (1 - accuracy) * noise))

    best = max(scores)
    tied = [loc for loc, s in zip(free, scores) if best - s <= SCORE_TOLERANCE]
    return tied[int(ctx.rng.integers(len(tied)))]


# -----------------------------------------------------------------------------
# Modules
# -----------------------------------------------------------------------------

class Module(ABC):
    """Tick counter with a one-shot action."""

    state: ClassVar[CellState]

    def __init__(self, agent: "CellAgent") -> None:
        self.ticker = 0
        self.duration = 0

    @abstractmethod
    def step(self, agent: "CellAgent", ctx: "TickContext") -> None:
        """Advance the ticker, firing the action once the duration has passed."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(ticker={self.ticker}, duration={self.duration})"


class RemovalModule(Module):
    """Removes a dead agent and lets one quiescent neighbour fill the gap."""

    def __init__(self, agent: "CellAgent", kind: str = "apoptosis") -> None:
        super().__init__(agent)
        self.kind = kind
        self.state = CellState.APOPTOTIC if kind == "apoptosis" else CellState.NECROTIC
        self.duration = agent.params.get_int(f"{kind}/DEATH_DURATION")

    def step(self, agent, ctx):
        if self.ticker <= self.duration:
            self.ticker += 1
            return

        loc = agent.location
        agent.release(ctx)
        ctx.grid.remove_object(agent)
        agent.stop()
        ctx.record("removal", {"id": agent.id, "pop": agent.pop, "kind": self.kind, "location": loc.to_list()})
        logger.debug("Removed agent %s (%s) at %s", agent.id, self.kind, loc.to_list())

        waiting = [
            other
            for where in [loc, *ctx.grid.get_neighbors(loc)]
            for other in ctx.grid.get_objects_at_location(where)
            if other.state is CellState.QUIESCENT and not other.on_hold and other.divisions > 0
        ]
        if waiting:
            chosen = waiting[int(ctx.rng.integers(len(waiting)))]
            chosen.set_state(CellState.PROLIFERATIVE)


class MigrationModule(Module):
    state = CellState.MIGRATORY

    def __init__(self, agent: "CellAgent") -> None:
        super().__init__(agent)
        rate = agent.params.get_float("migration/MIGRATION_RATE")
        self.duration = int(round(agent.location.get_size() / rate))

    def step(self, agent, ctx):
        if self.ticker <= self.duration:
            self.ticker += 1
            return
        target = select_best_location(agent, ctx, agent.volume, agent.critical_height)
        if target is None:
            agent.set_state(CellState.QUIESCENT)
            return
        ctx.grid.move_object(agent, target)
        agent.set_state(CellState.UNDEFINED)


class ProliferationModule(Module):
    """Waits for metabolism to double the cell mass and for synthesis, then divides."""

    state = CellState.PROLIFERATIVE

    def __init__(self, agent: "CellAgent") -> None:
        super().__init__(agent)
        self.duration = agent.params.get_int("proliferation/SYNTHESIS_DURATION")
        self.start: int | None = None

    def step(self, agent, ctx):
        if self.start is None:
            self.start = ctx.tick

        loc = agent.location
        height = ctx.grid.total_volume(loc) / loc.get_area()
        if height > agent.critical_height:
            agent.set_state(CellState.QUIESCENT)
            return

        target = select_best_location(
            agent, ctx, agent.volume * 0.5, agent.critical_height, include_current=True
        )
        if target is None:
            agent.set_state(CellState.QUIESCENT)
            return

        if agent.processes[ProcessDomain.METABOLISM].doubled and self.ticker > self.duration:
            if agent.divisions == 0:
                agent.set_state(CellState.UNDEFINED)
                return
            divide(agent, target, ctx, cycle=ctx.tick - self.start)
            return
        self.ticker += 1


class EngagementModule(Module):
    """Holds a bound target for a drawn delay, then releases it."""

    def __init__(self, agent: "CellAgent") -> None:
        super().__init__(agent)
        self.bound_time = agent.params.get_int("BOUND_TIME")
        self.bound_range = agent.params.get_int("BOUND_RANGE")

    def step(self, agent, ctx):
        try:
            target = ctx.resolve_agent(agent.bound_target_id)
        except StaleReferenceError as exc:
            logger.debug("Agent %s lost target %s", agent.id, exc.agent_id)
            unbind(agent, ctx)
            agent.set_state(CellState.UNDEFINED)
            return

        if self.ticker == 0:
            self.duration = self.bound_time + int(round(self.bound_range * (2 * ctx.rng.random() - 1)))
            self.engage(agent, target, ctx)
        elif self.ticker >= self.duration:
            unbind(agent, ctx)
            agent.set_state(CellState.UNDEFINED)
            return
        self.ticker += 1

    def engage(self, agent: "CellAgent", target: "CellAgent", ctx: "TickContext") -> None:
        """Act on the target once, on the first tick of the engagement.

        Helper effectors only hold the target for the engagement window; the
        cytokine response of a stimulated cell is carried by its inflammation
        process, so nothing happens here.
        """


class CytotoxicityModule(EngagementModule):
    """Lyses the bound target with one unit of granzyme."""

    state = CellState.CYTOTOXIC

    def engage(self, agent, target, ctx):
        inflammation = agent.processes.get(ProcessDomain.INFLAMMATION)
        if inflammation is None or inflammation.granzyme < 1 or target.state.is_terminal:
            return
        target.set_state(CellState.APOPTOTIC)
        inflammation.use_granzyme()
        ctx.record(
            "lysis",
            {"effector": agent.id, "target": target.id, "pop": target.pop, "location": target.location.to_list()},
        )
        logger.debug("Agent %s lysed agent %s", agent.id, target.id)


class StimulatoryModule(EngagementModule):
    state = CellState.STIMULATORY


def make_module(agent: "CellAgent", state: CellState) -> Module | None:
    """Module for ``state``, or None for states without timed behavior."""
    if state is CellState.APOPTOTIC:
        return RemovalModule(agent, "apoptosis")
    if state is CellState.NECROTIC:
        return RemovalModule(agent, "necrosis")
    if state is CellState.MIGRATORY:
        return MigrationModule(agent)
    if state is CellState.PROLIFERATIVE:
        return ProliferationModule(agent)
    if state is CellState.CYTOTOXIC:
        return CytotoxicityModule(agent)
    if state is CellState.STIMULATORY:
        return StimulatoryModule(agent)
    return None
