"""I/O utilities for simulation input/output.

Handles loading the YAML configuration and saving or loading snapshots and
agent containers as JSON.
"""

from __future__ import annotations

import json
import logging
import pathlib
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

import numpy as np
import yaml

from CellBehavior.cell import CellAgent, CellContainer
from CellBehavior.config import SimulationConfig, population_from_mapping, treatment_from_mapping
from CellBehavior.environment import PatchLocation

if TYPE_CHECKING:
    from CellBehavior.factory import CellFactory

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Configuration loading
# -----------------------------------------------------------------------------

def _resolve_path(value: str, base_dir: pathlib.Path) -> pathlib.Path:
    path = pathlib.Path(value)
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve()


def _require(raw: Mapping[str, Any], key: str) -> Any:
    if key not in raw:
        raise ValueError(f"Missing required config field: {key}")
    return raw[key]


def load_simulation_config(path: str | pathlib.Path) -> SimulationConfig:
    """Load and validate simulation configuration from YAML."""
    path = pathlib.Path(path)
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")

    base_dir = path.resolve().parent

    populations = _require(raw, "populations")
    if not isinstance(populations, list) or not populations:
        raise ValueError("populations must be a non-empty list")
    out_path = raw.get("out_path", "snapshots.json")
    treatments = raw.get("treatments") or []
    if not isinstance(treatments, list):
        raise ValueError("treatments must be a list")

    cfg = SimulationConfig(
        random_seed=int(_require(raw, "random_seed")),
        ticks=int(_require(raw, "ticks")),
        populations=tuple(population_from_mapping(p) for p in populations),
        grid_radius=int(raw.get("grid_radius", 10)),
        snapshot_interval=int(raw.get("snapshot_interval", 60)),
        out_path=str(_resolve_path(str(out_path), base_dir)),
        log_level=str(raw.get("log_level", "INFO")).upper(),
        lattice=dict(raw.get("lattice") or {}),
        sources=tuple(raw.get("sources", ("GLUCOSE", "OXYGEN")) or ()),
        treatments=tuple(treatment_from_mapping(t) for t in treatments),
    )
    logger.debug("Loaded config from %s with %d populations", path, len(cfg.populations))
    return cfg


# -----------------------------------------------------------------------------
# Snapshots
# -----------------------------------------------------------------------------

def save_snapshot_json(snapshots: Sequence[Mapping[str, Any]], path: str | pathlib.Path) -> None:
    """Write snapshots (one mapping per sampled tick) as JSON."""
    path_obj = pathlib.Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)
    with open(path_obj, "w", encoding="utf-8") as f:
        json.dump(list(snapshots), f, indent=1)


def load_snapshot_json(path: str | pathlib.Path) -> list[dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, list):
        raise ValueError(f"Snapshot file must contain a JSON list: {path}")
    return payload


# -----------------------------------------------------------------------------
# Containers
# -----------------------------------------------------------------------------

def save_containers_json(agents: Iterable[CellAgent], path: str | pathlib.Path) -> None:
    """Persist agents as containers plus their locations."""
    rows = [
        {"container": agent.to_container().to_dict(), "location": agent.location.to_list()}
        for agent in agents
    ]
    path_obj = pathlib.Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)
    with open(path_obj, "w", encoding="utf-8") as f:
        json.dump(rows, f, indent=1)


def load_containers_json(
    path: str | pathlib.Path,
    factory: "CellFactory",
    rng: np.random.Generator,
) -> list[CellAgent]:
    """Rebuild agents from a container file through ``CellContainer.convert``."""
    with open(path, "r", encoding="utf-8") as f:
        rows = json.load(f)
    if not isinstance(rows, list):
        raise ValueError(f"Container file must contain a JSON list: {path}")
    agents = []
    for row in rows:
        container = CellContainer.from_dict(_require(row, "container"))
        x, y = _require(row, "location")
        agents.append(container.convert(factory, PatchLocation(int(x), int(y)), rng))
    return agents
