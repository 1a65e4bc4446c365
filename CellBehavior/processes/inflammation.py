"""IL-2 receptor kinetics and effector mediator production.

The cell exchanges IL-2 with a thin shell of medium around it. Each tick the
shell receives its share of the local IL-2, the receptor network is
integrated with RK4 over 60 min, and whatever left the shell is taken from
the lattice (plus any IL-2 the cell secretes). Bound IL-2 is recorded in a
circular buffer so production can respond to the amount bound ``delay``
ticks ago.

Amounts are in molecules; the IL-2 lattice stores molecules/cm^3.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import numpy as np

from CellBehavior.enums import ProcessDomain
from CellBehavior.processes.base import Process
from CellBehavior.solver import rk4

if TYPE_CHECKING:
    from CellBehavior.cell import CellAgent
    from CellBehavior.environment import TickContext

IL2_INT_TOTAL = 0
IL2_EXT = 1
IL2R_TOTAL = 2
IL2RBG = 3
IL2RBGA = 4
IL2_IL2RBG = 5
IL2_IL2RBGA = 6
GRANZYME = 7

STEP_DIVIDER = 3.0
STEP_SIZE = 1.0 / STEP_DIVIDER
K_CONVERT = 1e-3 / STEP_DIVIDER
K_REC = 1e-5 / STEP_DIVIDER
IL2_BINDING_MIN = 3.8193e-2
IL2_BINDING_MAX = 3.155
IL2_BINDING_OFF = 0.015

HISTORY_LENGTH = 180
UM3_PER_CM3 = 1e12

IL2_PROD_RATE_ACTIVE = 293.27
IL2_PROD_RATE_FEEDBACK = 16.62
GRANZ_PER_IL2 = 0.005


def shell_fraction(volume: float, thickness: float, location_volume: float) -> float:
    """Volume of a shell of ``thickness`` around a spherical cell, relative to the location."""
    radius = math.cbrt(3.0 / (4.0 * math.pi) * volume)
    shell = volume * (((radius + thickness) ** 3) / (radius ** 3) - 1.0)
    return shell / location_volume


class InflammationProcess(Process):
    """IL-2 binding network shared by helper and cytotoxic effectors."""

    domain = ProcessDomain.INFLAMMATION
    version = "base"
    names = (
        "IL-2",
        "external_IL-2",
        "IL2R_total",
        "IL2R_two_chain_complex",
        "IL2R_three_chain_complex",
        "IL-2_IL2R_two_chain_complex",
        "IL-2_IL2R_three_chain_complex",
        "granzyme",
    )

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        p = self.params
        self.shell_thickness = p.get_float("inflammation/SHELL_THICKNESS")
        self.il2_receptors = p.get_float("inflammation/IL2_RECEPTORS")
        self.il2_synthesis_delay = p.get_int("inflammation/IL2_SYNTHESIS_DELAY")
        self.granz_synthesis_delay = p.get_int("inflammation/GRANZ_SYNTHESIS_DELAY")

        self.amounts[IL2R_TOTAL] = self.il2_receptors
        self.amounts[IL2RBG] = self.il2_receptors
        self.amounts[GRANZYME] = 1.0

        self.bound_history = np.zeros(HISTORY_LENGTH, dtype=np.float64)
        self.ticker = 0
        self.active = False
        self.active_ticker = 0
        self.fraction = 0.0
        self.external_il2 = 0.0
        self.production = 0.0
        self._k_on2 = 0.0
        self._k_on3 = 0.0
        self._k_off = IL2_BINDING_OFF / 60 / STEP_DIVIDER

    # ------------------------------------------------------------------

    def equations(self, t: float, y: np.ndarray) -> np.ndarray:
        k_on2, k_on3, k_off = self._k_on2, self._k_on3, self._k_off
        bind2 = k_on2 * y[IL2RBG] * y[IL2_EXT]
        bind3 = k_on3 * y[IL2RBGA] * y[IL2_EXT]
        bound = y[IL2_IL2RBG] + y[IL2_IL2RBGA]
        convert_free = K_CONVERT * bound * y[IL2RBG]
        convert_bound = K_CONVERT * bound * y[IL2_IL2RBG]

        dydt = np.zeros_like(y)
        dydt[IL2_EXT] = k_off * bound - bind2 - bind3
        dydt[IL2RBG] = k_off * y[IL2_IL2RBG] - bind2 - convert_free + K_REC * (bound + y[IL2RBGA])
        dydt[IL2RBGA] = k_off * y[IL2_IL2RBGA] - bind3 + convert_free - K_REC * y[IL2RBGA]
        dydt[IL2_IL2RBG] = bind2 - k_off * y[IL2_IL2RBG] - convert_bound - K_REC * y[IL2_IL2RBG]
        dydt[IL2_IL2RBGA] = bind3 - k_off * y[IL2_IL2RBGA] + convert_bound - K_REC * y[IL2_IL2RBGA]
        dydt[IL2_INT_TOTAL] = dydt[IL2_IL2RBG] + dydt[IL2_IL2RBGA]
        dydt[IL2R_TOTAL] = dydt[IL2RBG] + dydt[IL2RBGA]
        return dydt

    def lagged_bound(self, delay: int) -> float:
        """Bound IL-2 recorded ``delay`` ticks before the current tick."""
        return float(self.bound_history[(self.ticker % HISTORY_LENGTH - delay) % HISTORY_LENGTH])

    @property
    def granzyme(self) -> float:
        return float(self.amounts[GRANZYME])

    def use_granzyme(self) -> None:
        self.amounts[GRANZYME] -= 1.0

    def produce(self) -> float:
        """Secrete IL-2 or synthesize mediators; returns IL-2 produced (molecules)."""
        return 0.0

    def secrete_il2(self) -> float:
        prior = self.lagged_bound(self.il2_synthesis_delay)
        rate = IL2_PROD_RATE_FEEDBACK * prior / self.il2_receptors
        if self.active and self.active_ticker >= self.il2_synthesis_delay:
            rate += IL2_PROD_RATE_ACTIVE
        return rate

    def synthesize_granzyme(self) -> None:
        prior = self.lagged_bound(self.granz_synthesis_delay)
        if self.active and self.active_ticker > self.granz_synthesis_delay:
            self.amounts[GRANZYME] += GRANZ_PER_IL2 * prior / self.il2_receptors

    # ------------------------------------------------------------------

    def step(self, cell: "CellAgent", ctx: "TickContext") -> None:
        loc = cell.location
        loc_volume = loc.get_volume()
        il2 = ctx.lattice("IL-2")

        self.fraction = shell_fraction(cell.volume, self.shell_thickness, loc_volume)
        self.external_il2 = il2.get_average_value(loc) * loc_volume / UM3_PER_CM3

        self.active = bool(cell.activated)
        self.active_ticker = self.active_ticker + 1 if self.active else 0

        self._k_on2 = IL2_BINDING_MIN / loc_volume / 60 / STEP_DIVIDER
        self._k_on3 = IL2_BINDING_MAX / loc_volume / 60 / STEP_DIVIDER

        self.amounts[IL2_EXT] = self.external_il2 * self.fraction
        self.amounts = rk4(self.equations, 0.0, self.amounts, 60.0, STEP_SIZE)

        self.production = self.produce()

        # IL-2 that left the shell plus secreted IL-2 goes back to the lattice.
        removed = self.external_il2 * self.fraction - self.amounts[IL2_EXT]
        total = self.external_il2 - removed + self.production
        il2.set_value(loc, max(total, 0.0) * UM3_PER_CM3 / loc_volume)

        self.bound_history[self.ticker % HISTORY_LENGTH] = self.amounts[IL2_INT_TOTAL]
        self.ticker += 1

    # ------------------------------------------------------------------

    def pools(self) -> dict[str, float]:
        tracked = (IL2_INT_TOTAL, IL2RBGA, IL2_IL2RBG, IL2_IL2RBGA, GRANZYME)
        return {self.names[i]: float(self.amounts[i]) for i in tracked}

    def _copy(self) -> "InflammationProcess":
        other = super()._copy()
        other.bound_history = self.bound_history.copy()
        return other

    def _scale(self, factor: float) -> None:
        super()._scale(factor)
        # Free two-chain receptors are replenished to the full complement.
        a = self.amounts
        a[IL2RBG] = self.il2_receptors - a[IL2RBGA] - a[IL2_IL2RBG] - a[IL2_IL2RBGA]
        a[IL2R_TOTAL] = a[IL2RBG] + a[IL2RBGA]


class InflammationCD4(InflammationProcess):
    """Helper effector: IL-2 secretion with bound-IL-2 feedback."""

    version = "cd4"

    def produce(self) -> float:
        return self.secrete_il2()


class InflammationCD8(InflammationProcess):
    """Cytotoxic effector: granzyme synthesis driven by bound IL-2."""

    version = "cd8"

    def produce(self) -> float:
        self.synthesize_granzyme()
        return 0.0


class InflammationCombined(InflammationProcess):
    """Dual-function effector: secretes IL-2 and synthesizes granzyme."""

    version = "combined"

    def produce(self) -> float:
        self.synthesize_granzyme()
        return self.secrete_il2()


INFLAMMATION_VERSIONS = {
    cls.version: cls for cls in (InflammationCD4, InflammationCD8, InflammationCombined)
}
