"""Patch simulator: seeds the populations and advances the tick loop.

Each tick every live agent steps once, in an order shuffled by the scheduler.
An agent's lattice writes are committed after its step, so later agents in
the same tick see them and a failing step leaves the lattices untouched.
Source lattices such as glucose and oxygen are topped up before each tick.
"""

from __future__ import annotations

import functools
import logging
from collections import Counter
from typing import Optional

import numpy as np

from CellBehavior.cell import CellAgent
from CellBehavior.config import SimulationConfig, TreatmentConfig
from CellBehavior.environment import PatchGrid, PatchLocation, TickContext, TickScheduler, build_lattices
from CellBehavior.factory import CellFactory
from CellBehavior.modules import location_is_free

logger = logging.getLogger(__name__)


class PatchSimulator:
    """Agent-based patch simulation with per-tick snapshots."""

    def __init__(self, sim_config: SimulationConfig) -> None:
        self.sim_config = sim_config
        self.rng = np.random.default_rng(sim_config.random_seed)
        self.grid = PatchGrid(sim_config.grid_radius)
        self.lattices = build_lattices(sim_config.lattice)
        self.scheduler = TickScheduler()
        self.factory = CellFactory(sim_config.populations)
        self.ctx = TickContext(
            rng=self.rng,
            grid=self.grid,
            lattices=self.lattices,
            scheduler=self.scheduler,
            factory=self.factory,
        )
        self.seeded = False

    # ------------------------------------------------------------------

    def _free_location(self, volume: float, height: float) -> Optional[PatchLocation]:
        """Random free location, filling rings outward from the centre."""
        by_ring: dict[int, list[PatchLocation]] = {}
        for loc in self.grid.locations():
            by_ring.setdefault(loc.radius, []).append(loc)
        for ring in sorted(by_ring):
            locs = by_ring[ring]
            for i in self.rng.permutation(len(locs)):
                loc = locs[int(i)]
                if location_is_free(self.grid, loc, volume, height):
                    return loc
        return None

    def seed(self) -> list[CellAgent]:
        """Place the initial populations and register them with the scheduler.

        Treatments are scheduled here as one-shot actions at their delay.
        """
        agents = []
        for container in self.factory.initial_containers(self.rng):
            loc = self._free_location(container.volume, container.critical_height)
            if loc is None:
                raise RuntimeError(
                    f"No free location for a cell of volume {container.volume:.1f}; "
                    "increase grid_radius or reduce init"
                )
            agent = container.convert(self.factory, loc, self.rng)
            self.add_agent(agent, loc)
            agents.append(agent)
        for treatment in self.sim_config.treatments:
            self.scheduler.schedule_once(treatment.time_delay, functools.partial(self.treat, treatment))
        self.seeded = True
        logger.info("Seeded %d agents on a grid of radius %d", len(agents), self.grid.radius)
        return agents

    def add_agent(self, agent: CellAgent, loc: PatchLocation) -> None:
        self.grid.add_object(agent, loc)
        self.ctx.schedule(agent)

    def treat(self, treatment: TreatmentConfig, ctx: TickContext) -> int:
        """Add a dose of effector agents at free locations; returns how many were placed."""
        pop = self.factory.population_index(treatment.population)
        placed = 0
        while placed < treatment.dose:
            container = self.factory.make_container(pop, self.rng)
            loc = self._free_location(container.volume, container.critical_height)
            if loc is None:
                logger.warning(
                    "Treatment %s ran out of space after %d of %d agents",
                    treatment.population,
                    placed,
                    treatment.dose,
                )
                break
            self.add_agent(container.convert(self.factory, loc, self.rng), loc)
            placed += 1
        ctx.record("treatment", {"pop": pop, "dose": treatment.dose, "placed": placed})
        logger.info("Tick %d: treated with %d %s agents", ctx.tick, placed, treatment.population)
        return placed

    def replenish(self) -> None:
        """Restore every source lattice to its configured concentration."""
        for name in self.sim_config.sources:
            lattice = self.lattices[name]
            for loc in self.grid.locations():
                lattice.set_value(loc, lattice.initial)

    # ------------------------------------------------------------------

    def counts(self) -> dict[str, int]:
        """Live agents per state name."""
        return dict(Counter(agent.state.name for agent in self.grid.agents()))

    def snapshot(self) -> dict:
        return {
            "tick": self.scheduler.tick,
            "cells": [agent.to_json() for agent in sorted(self.grid.agents(), key=lambda a: a.id)],
        }

    def step(self) -> None:
        self.replenish()
        self.scheduler.advance(self.ctx)
        logger.debug("Tick %d: %s", self.scheduler.tick, self.counts())

    def run(self) -> list[dict]:
        """Run the configured number of ticks and collect snapshots."""
        if not self.seeded:
            self.seed()
        cfg = self.sim_config
        logger.info("Running %d ticks (seed=%d)", cfg.ticks, cfg.random_seed)
        snapshots = [self.snapshot()]
        for _ in range(cfg.ticks):
            self.step()
            if self.scheduler.tick % cfg.snapshot_interval == 0:
                snapshots.append(self.snapshot())
        logger.info(
            "Finished at tick %d with %d agents; %d snapshots, %d events",
            self.scheduler.tick,
            len(self.grid),
            len(snapshots),
            len(self.ctx.events),
        )
        return snapshots
