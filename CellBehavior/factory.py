"""Agent construction from containers and population configs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping, Sequence

import numpy as np

from CellBehavior.cell import CellAgent, CellContainer
from CellBehavior.enums import CellState, ProcessDomain
from CellBehavior.errors import ConfigurationError
from CellBehavior.processes import Process, make_process

if TYPE_CHECKING:
    from CellBehavior.config import PopulationConfig
    from CellBehavior.environment import PatchLocation

logger = logging.getLogger(__name__)


class CellFactory:
    """Allocates agent ids and builds agents for the configured populations.

    Populations are indexed from 1 in configuration order.
    """

    def __init__(self, populations: Sequence["PopulationConfig"], start_id: int = 1) -> None:
        self.populations: dict[int, "PopulationConfig"] = {
            index: pop for index, pop in enumerate(populations, start=1)
        }
        self._next_id = int(start_id)

    def next_id(self) -> int:
        new_id = self._next_id
        self._next_id += 1
        return new_id

    def reserve(self, used_id: int) -> None:
        """Make sure future ids do not collide with ``used_id``."""
        self._next_id = max(self._next_id, int(used_id) + 1)

    def population(self, pop: int) -> "PopulationConfig":
        if pop not in self.populations:
            raise ConfigurationError(f"Unknown population index: {pop}")
        return self.populations[pop]

    def population_index(self, name: str) -> int:
        for index, config in self.populations.items():
            if config.name == name:
                return index
        raise ConfigurationError(f"Unknown population: {name}")

    def make_container(self, pop: int, rng: np.random.Generator) -> CellContainer:
        """New container with sizes drawn around the population means."""
        p = self.population(pop).parameters
        mean_volume = p.get_float("CELL_VOLUME")
        mean_height = p.get_float("CELL_HEIGHT")
        cv = p.get_float("CELL_VOLUME_CV")
        volume = float(np.clip(rng.normal(mean_volume, cv * mean_volume), 0.5 * mean_volume, 1.5 * mean_volume))
        height = float(np.clip(rng.normal(mean_height, cv * mean_height), 0.5 * mean_height, 1.5 * mean_height))
        return CellContainer(
            id=self.next_id(),
            parent=None,
            pop=pop,
            age=int(rng.integers(0, p.get_int("CELL_AGE") + 1)),
            divisions=p.get_int("DIVISION_POTENTIAL"),
            state=CellState.UNDEFINED,
            volume=volume,
            height=height,
            critical_volume=volume,
            critical_height=height,
        )

    def initial_containers(self, rng: np.random.Generator) -> list[CellContainer]:
        """Seeding containers for every population, in configuration order."""
        return [
            self.make_container(pop, rng)
            for pop, config in self.populations.items()
            for _ in range(config.init)
        ]

    def make_processes(self, agent: CellAgent) -> dict[ProcessDomain, Process]:
        config = self.population(agent.pop)
        return {domain: make_process(domain, version, agent) for domain, version in config.processes.items()}

    def make_agent(
        self,
        container: CellContainer,
        location: "PatchLocation",
        rng: np.random.Generator,
        overrides: Mapping[str, Any] | None = None,
    ) -> CellAgent:
        config = self.population(container.pop)
        params = config.parameters.with_overrides(overrides)
        agent = CellAgent(container, location, params, config.variant)
        agent.processes = self.make_processes(agent)
        self.reserve(container.id)
        return agent
