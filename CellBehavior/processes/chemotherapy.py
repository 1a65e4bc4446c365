"""Drug uptake and oxygen-dependent kill of proliferating cells."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from CellBehavior.enums import CellState, ProcessDomain
from CellBehavior.processes.base import EPSILON, Process

if TYPE_CHECKING:
    from CellBehavior.cell import CellAgent
    from CellBehavior.environment import TickContext

DRUG = 0


def kill_probability(oxygen: float) -> float:
    """Oxygen-dependent probability that a drugged proliferating cell apoptoses."""
    return oxygen ** 2 / (oxygen ** 2 + 3.0 ** 2)


class Chemotherapy(Process):
    domain = ProcessDomain.CHEMOTHERAPY
    version = "simple"
    names = ("drug",)

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        self.uptake_rate = self.params.get_float("chemotherapy/UPTAKE")
        self.removal = self.params.get_float("chemotherapy/REMOVAL")
        self.threshold = self.params.get_float("chemotherapy/THRESHOLD")
        self.killed = False

    def step(self, cell: "CellAgent", ctx: "TickContext") -> None:
        loc = cell.location
        drug = ctx.lattice("DRUG")
        total = ctx.grid.total_volume(loc)
        f = min(cell.volume / total, 1.0) if total > EPSILON else 1.0

        area = loc.get_area() * f
        surface_area = area * 2 + (cell.volume / area) * loc.get_perimeter(f)
        external = drug.get_average_value(loc) * loc.get_volume()
        gradient = external / loc.get_volume() - self.amounts[DRUG] / cell.volume
        gradient = gradient if gradient >= EPSILON else 0.0
        uptake = min(self.uptake_rate * surface_area * gradient, external)
        self.amounts[DRUG] += uptake

        if external > EPSILON:
            drug.update_value(loc, 1.0 - uptake / external)

        if cell.state is CellState.PROLIFERATIVE and self.amounts[DRUG] > self.threshold:
            oxygen = ctx.lattice("OXYGEN").get_average_value(loc)
            if ctx.rng.random() < kill_probability(oxygen):
                cell.set_state(CellState.APOPTOTIC)
                self.killed = True
                ctx.record("chemotherapy", {"id": cell.id, "pop": cell.pop, "location": loc.to_list()})

        self.amounts[DRUG] *= math.exp(-self.removal)


CHEMOTHERAPY_VERSIONS = {Chemotherapy.version: Chemotherapy}
