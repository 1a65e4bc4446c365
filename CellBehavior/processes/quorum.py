"""Auxin quorum sensing between synNotch "source" and CAR "sink" effectors.

Sources express auxin while their synNotch receptors are engaged and leak it
into the AUXIN lattice. Sinks take auxin up, which drives CAR expression, and
accumulate an activation biomarker from bound CAR antigens. Internal species
are in uM referenced to the cell volume; the lattice stores uM referenced to
the location volume.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING

import numpy as np

from CellBehavior.enums import ProcessDomain
from CellBehavior.processes.base import EPSILON, Process
from CellBehavior.solver import rk4

if TYPE_CHECKING:
    from CellBehavior.cell import CellAgent
    from CellBehavior.environment import TickContext

AVOGADRO = 6.022e23
STEP_SIZE = 1.0 / 3.0
AUX_FLOW_RATE = 2.09 / (1e6 * 3600)


def molecules_to_um(count: float, volume: float) -> float:
    return count / (volume * 1e-15 * AVOGADRO) * 1e6


def um_to_molecules(conc: float, volume: float) -> float:
    return conc * volume * 1e-15 * AVOGADRO / 1e6


class QuorumProcess(Process):
    """Shared exchange with the AUXIN lattice.

    The last entry of the integrated state accumulates the auxin exchanged
    with the location during the window; ``exchange_sign`` says whether it
    was released (+1) or taken up (-1).
    """

    domain = ProcessDomain.QUORUM
    exchange_sign = 1.0

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        self.external = 0.0
        self.exchanged = 0.0

    def step(self, cell: "CellAgent", ctx: "TickContext") -> None:
        loc = cell.location
        auxin = ctx.lattice("AUXIN")
        self.external = auxin.get_average_value(loc) * loc.get_volume() / cell.volume

        self.prepare(cell)
        y0 = np.append(self.amounts, 0.0)
        y = rk4(self.equations, 0.0, y0, 60.0, STEP_SIZE)
        self.amounts = y[:-1]
        self.exchanged = float(y[-1])
        self.finish(cell)

        conc = max(self.external + self.exchange_sign * self.exchanged, 0.0) * cell.volume / loc.get_volume()
        auxin.set_value(loc, conc if conc > EPSILON else 0.0)

    def prepare(self, cell: "CellAgent") -> None:
        pass

    def finish(self, cell: "CellAgent") -> None:
        pass

    @abstractmethod
    def equations(self, t: float, y: np.ndarray) -> np.ndarray:
        """Right-hand side of the network, dy/dt."""


class QuorumSource(QuorumProcess):
    """Auxin expression driven by engaged synNotch receptors."""

    version = "source"
    names = ("auxin_source",)

    K_AUX_EXPRESS = 4.18 / 3600
    K_AUX_DEGRADE = 20.0 / (1e3 * 3600)

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        self.synnotch = 0.0
        self.is_bound = 0

    def prepare(self, cell):
        circuit = cell.synnotch
        bound = circuit.bound if circuit is not None else 0
        self.synnotch = molecules_to_um(bound, cell.volume)
        self.is_bound = int(circuit is not None and bound >= circuit.threshold)

    def equations(self, t, y):
        outflow = AUX_FLOW_RATE * max(y[0] - self.external, 0.0)
        dydt = np.zeros_like(y)
        dydt[0] = self.is_bound * self.K_AUX_EXPRESS * self.synnotch - self.K_AUX_DEGRADE * y[0] - outflow
        dydt[-1] = outflow
        return dydt


class QuorumSink(QuorumProcess):
    """Auxin uptake driving CAR expression and an activation biomarker."""

    version = "sink"
    names = ("auxin_sink", "car", "activation")
    AUXIN, CAR, ACTIVATION = 0, 1, 2

    K_AUX_DEGRADE = 20.0 / (1e3 * 3600)
    K_CAR_EXPRESS = 0.8 / (1e3 * 3600)
    K_CAR_DEGRADE = 0.2 / (1e3 * 3600)
    K_ACTIVE_EXPRESS = 0.8 / (1e3 * 3600)
    K_ACTIVE_EXPRESS_ACCELERATED = 1.0 / (1e3 * 3600)
    K_ACTIVE_DEGRADE = 0.2 / (1e3 * 3600)

    exchange_sign = -1.0

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        self.activation_threshold = self.params.get_float("quorum/ACTIVATION_THRESHOLD")
        self.amounts[self.CAR] = molecules_to_um(self.params.get_int("CARS"), cell.volume)
        self.bound_car = 0.0

    def prepare(self, cell):
        self.bound_car = molecules_to_um(cell.bound_antigen_count, cell.volume)

    def equations(self, t, y):
        inflow = AUX_FLOW_RATE * max(self.external - y[self.AUXIN], 0.0)
        dydt = np.zeros_like(y)
        dydt[self.ACTIVATION] = (
            (self.K_ACTIVE_EXPRESS_ACCELERATED + self.K_ACTIVE_EXPRESS) * self.bound_car
            - self.K_ACTIVE_DEGRADE * y[self.ACTIVATION]
        )
        dydt[self.CAR] = self.K_CAR_EXPRESS * y[self.AUXIN] - self.K_CAR_DEGRADE * y[self.CAR]
        dydt[self.AUXIN] = inflow - self.K_AUX_DEGRADE * y[self.AUXIN]
        dydt[-1] = inflow
        return dydt

    def finish(self, cell):
        if self.amounts[self.ACTIVATION] > self.activation_threshold:
            cell.activated = True
            cell.last_active_ticker = 0
        else:
            cell.activated = False
        cell.cars = int(um_to_molecules(self.amounts[self.CAR], cell.volume))

    def pools(self) -> dict[str, float]:
        return {"auxin_sink": float(self.amounts[self.AUXIN]), "activation": float(self.amounts[self.ACTIVATION])}

    # CAR is a per-cell receptor density and is not divided.
    def _scale(self, factor: float) -> None:
        car = self.amounts[self.CAR]
        super()._scale(factor)
        self.amounts[self.CAR] = car


QUORUM_VERSIONS = {cls.version: cls for cls in (QuorumSource, QuorumSink)}
