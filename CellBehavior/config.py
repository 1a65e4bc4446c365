"""Simulation and population configuration.

A simulation runs ``ticks`` one-minute ticks on a square patch grid whose
locations span -grid_radius+1 .. grid_radius-1 on both axes. Each population
names a cell variant, the number of agents to seed, parameter overrides and
the model version used for each intracellular process. Source lattices are
restored to their configured concentration at the start of every tick, and
treatments add a dose of effector agents once at a fixed tick.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from CellBehavior.enums import CellVariant, ProcessDomain
from CellBehavior.environment import LATTICE_FIELDS
from CellBehavior.parameters import CellParameters


@dataclass(frozen=True)
class PopulationConfig:
    """One seeded population of agents sharing parameters and process versions."""
    name: str
    variant: CellVariant
    init: int = 0
    parameters: CellParameters = field(default_factory=CellParameters)
    processes: Mapping[ProcessDomain, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "variant", CellVariant.parse(self.variant))
        if not isinstance(self.parameters, CellParameters):
            object.__setattr__(self, "parameters", CellParameters(self.parameters))
        processes: dict[ProcessDomain, str] = {}
        for domain, version in dict(self.processes).items():
            try:
                key = domain if isinstance(domain, ProcessDomain) else ProcessDomain(str(domain).lower())
            except ValueError as exc:
                raise ValueError(f"Unknown process domain for population {self.name}: {domain!r}") from exc
            processes[key] = str(version).strip().lower()
        object.__setattr__(self, "processes", processes)

        if not self.name:
            raise ValueError("population name must be non-empty")
        if self.init < 0:
            raise ValueError("init must be non-negative")
        if ProcessDomain.METABOLISM not in self.processes:
            raise ValueError(f"population {self.name} must configure a metabolism process")


@dataclass(frozen=True)
class TreatmentConfig:
    """A dose of effector agents added once, ``time_delay`` ticks into the run."""
    population: str
    dose: int
    time_delay: int = 0

    def __post_init__(self) -> None:
        if not self.population:
            raise ValueError("treatment population must be non-empty")
        if self.dose <= 0:
            raise ValueError("treatment dose must be positive")
        if self.time_delay < 0:
            raise ValueError("treatment time_delay must be non-negative")


@dataclass(frozen=True)
class SimulationConfig:
    """Configuration parameters for a patch simulation run."""
    random_seed: int
    ticks: int
    populations: tuple[PopulationConfig, ...]
    grid_radius: int = 10
    snapshot_interval: int = 60
    out_path: str | None = None
    log_level: str = "INFO"
    lattice: Mapping[str, float] = field(default_factory=dict)
    sources: tuple[str, ...] = ("GLUCOSE", "OXYGEN")
    treatments: tuple[TreatmentConfig, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "populations", tuple(self.populations))
        object.__setattr__(self, "lattice", {str(k): float(v) for k, v in dict(self.lattice).items()})
        object.__setattr__(self, "sources", tuple(str(s) for s in self.sources))
        object.__setattr__(self, "treatments", tuple(self.treatments))
        if self.ticks <= 0:
            raise ValueError("ticks must be positive")
        if self.grid_radius <= 0:
            raise ValueError("grid_radius must be positive")
        if self.snapshot_interval <= 0:
            raise ValueError("snapshot_interval must be positive")
        if not self.populations:
            raise ValueError("at least one population is required")
        unknown = sorted(set(self.lattice) - set(LATTICE_FIELDS))
        if unknown:
            raise ValueError(f"Unknown lattice fields: {unknown}")
        names = [p.name for p in self.populations]
        if len(set(names)) != len(names):
            raise ValueError("population names must be unique")
        unknown = sorted(set(self.sources) - set(LATTICE_FIELDS))
        if unknown:
            raise ValueError(f"Unknown source lattice fields: {unknown}")
        by_name = {p.name: p for p in self.populations}
        for treatment in self.treatments:
            pop = by_name.get(treatment.population)
            if pop is None:
                raise ValueError(f"Treatment names an unknown population: {treatment.population}")
            if not pop.variant.is_effector:
                raise ValueError(f"Treatment population {pop.name} is not an immune effector")


def population_from_mapping(raw: Mapping[str, Any]) -> PopulationConfig:
    """Build a population from its YAML mapping."""
    if "name" not in raw or "variant" not in raw:
        raise ValueError("Missing required config field: populations[].name / populations[].variant")
    return PopulationConfig(
        name=str(raw["name"]),
        variant=CellVariant.parse(raw["variant"]),
        init=int(raw.get("init", 0)),
        parameters=CellParameters(raw.get("parameters") or {}),
        processes=dict(raw.get("processes") or {"metabolism": "medium"}),
    )


def treatment_from_mapping(raw: Mapping[str, Any]) -> TreatmentConfig:
    """Build a treatment from its YAML mapping."""
    if "population" not in raw or "dose" not in raw:
        raise ValueError("Missing required config field: treatments[].population / treatments[].dose")
    return TreatmentConfig(
        population=str(raw["population"]),
        dose=int(raw["dose"]),
        time_delay=int(raw.get("time_delay", 0)),
    )
