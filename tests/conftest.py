from __future__ import annotations

import numpy as np
import pytest

from CellBehavior.cell import CellContainer
from CellBehavior.config import PopulationConfig
from CellBehavior.enums import CellState, CellVariant
from CellBehavior.environment import PatchGrid, PatchLocation, TickContext, TickScheduler, build_lattices
from CellBehavior.factory import CellFactory
from CellBehavior.parameters import CellParameters

TISSUE, CANCER, CD8, CD4, SYNNOTCH, SINK = 1, 2, 3, 4, 5, 6

POPULATIONS = (
    PopulationConfig(
        name="tissue",
        variant=CellVariant.TISSUE,
        processes={"metabolism": "medium", "signaling": "simple"},
    ),
    PopulationConfig(
        name="cancer",
        variant=CellVariant.CANCER,
        processes={"metabolism": "complex", "signaling": "medium", "chemotherapy": "simple"},
    ),
    PopulationConfig(
        name="cd8",
        variant=CellVariant.CART_CD8,
        processes={"metabolism": "cart", "inflammation": "cd8"},
    ),
    PopulationConfig(
        name="cd4",
        variant=CellVariant.CART_CD4,
        processes={"metabolism": "complex", "inflammation": "cd4"},
    ),
    PopulationConfig(
        name="synnotch",
        variant=CellVariant.CART_SYNNOTCH,
        processes={"metabolism": "complex", "quorum": "source"},
    ),
    PopulationConfig(
        name="sink",
        variant=CellVariant.CART_CD8,
        processes={"metabolism": "complex", "quorum": "sink"},
    ),
)

# Binding rates that make a CAR-antigen engagement certain and self engagement impossible.
ANTIGEN_ONLY = {
    "binding": {"CAR_ANTIGEN_BINDING_RATE": 1e12, "SELF_ANTIGEN_BINDING_RATE": 0.0},
}
ANTIGEN_AND_SELF = {
    "binding": {"CAR_ANTIGEN_BINDING_RATE": 1e12, "SELF_ANTIGEN_BINDING_RATE": 1e12},
}


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(20240611)


@pytest.fixture
def grid() -> PatchGrid:
    return PatchGrid(4)


@pytest.fixture
def lattices():
    return build_lattices({"GLUCOSE": 0.005, "OXYGEN": 100.0})


@pytest.fixture
def factory() -> CellFactory:
    return CellFactory(POPULATIONS)


@pytest.fixture
def ctx(rng, grid, lattices, factory) -> TickContext:
    return TickContext(rng=rng, grid=grid, lattices=lattices, scheduler=TickScheduler(), factory=factory)


@pytest.fixture
def make_agent(ctx):
    """Build an agent of a test population, placed and scheduled by default."""

    def _make(
        pop: int = TISSUE,
        loc: tuple[int, int] = (0, 0),
        state: CellState = CellState.UNDEFINED,
        volume: float = 2250.0,
        divisions: int = 50,
        overrides=None,
        place: bool = True,
    ):
        container = CellContainer(
            id=ctx.next_id(),
            parent=None,
            pop=pop,
            age=0,
            divisions=divisions,
            state=state,
            volume=volume,
            height=8.7,
            critical_volume=volume,
            critical_height=8.7,
        )
        location = PatchLocation(*loc)
        agent = container.convert(ctx.factory, location, ctx.rng, overrides)
        if place:
            ctx.grid.add_object(agent, location)
            ctx.schedule(agent)
        return agent

    return _make


@pytest.fixture
def params() -> CellParameters:
    return CellParameters()
