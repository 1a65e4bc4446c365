"""Metabolism processes: energy, mass and volume from glucose and oxygen.

Four fidelity levels share one step skeleton:
    random  -> sampled uptake fractions, single glucose pool
    simple  -> constant uptake and ATP production rates
    medium  -> gradient-driven uptake scaled by volume
    complex -> pyruvate pool, surface-area uptake, lactate removal
The "cart" variant extends complex with an IL-2 and activation driven shift
of metabolic preference and glucose uptake rate.

Amounts are in fmol, volumes in um^3.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING

import numpy as np

from CellBehavior.enums import CellState, ProcessDomain
from CellBehavior.processes.base import EPSILON, Process, snap

if TYPE_CHECKING:
    from CellBehavior.cell import CellAgent
    from CellBehavior.environment import TickContext

GLUCOSE = 0
OXYGEN = 1
PYRUVATE = 1

ENERGY_FROM_GLYC = 2
ENERGY_FROM_OXPHOS = 15
OXY_PER_PYRU = 3
PYRU_PER_GLUC = 2


def _gradient(external: float, location_volume: float, internal: float, volume: float) -> float:
    grad = external / location_volume - internal / max(volume, EPSILON)
    return grad if grad >= EPSILON else 0.0


def _oxphos_from_glucose(gluc: float, oxy_uptake: float) -> tuple[float, float, float]:
    """Burn glucose with the available oxygen; returns (energy, glucose, oxygen used)."""
    oxy_in_gluc = oxy_uptake / OXY_PER_PYRU / PYRU_PER_GLUC
    if gluc > oxy_in_gluc:
        return oxy_in_gluc * ENERGY_FROM_OXPHOS * PYRU_PER_GLUC, gluc - oxy_in_gluc, oxy_uptake
    return gluc * ENERGY_FROM_OXPHOS * PYRU_PER_GLUC, 0.0, gluc * OXY_PER_PYRU * PYRU_PER_GLUC


def _glycolysis(gluc: float, required: float) -> tuple[float, float, float]:
    """Glycolyse up to ``required`` glucose; returns (energy, glucose, glucose used)."""
    used = required if gluc > required else gluc
    return used * ENERGY_FROM_GLYC, gluc - used, used


class MetabolismProcess(Process):
    """Common step: occupancy fraction, external amounts and energy demand."""

    domain = ProcessDomain.METABOLISM
    names: tuple[str, ...] = ("glucose",)

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        p = self.params
        self.basal_energy = p.get_float("metabolism/BASAL_ENERGY")
        self.proliferation_energy = p.get_float("metabolism/PROLIFERATION_ENERGY")
        self.migration_energy = p.get_float("metabolism/MIGRATION_ENERGY")
        self.cell_density = p.get_float("metabolism/CELL_DENSITY")
        self.ratio_glucose_biomass = p.get_float("metabolism/RATIO_GLUCOSE_BIOMASS")
        self.oxygen_solubility = p.get_float("metabolism/OXYGEN_SOLUBILITY_TISSUE")
        self.initial_glucose = p.get_float("metabolism/INITIAL_GLUCOSE_CONCENTRATION")

        self.volume = float(cell.volume)
        self.energy = 0.0
        self.mass = self.volume * self.cell_density
        self.critical_mass = float(cell.critical_volume) * self.cell_density

        self.f = 1.0
        self.external = np.zeros(2, dtype=np.float64)
        self.uptake = np.zeros(2, dtype=np.float64)
        self.energy_cons = 0.0
        self.energy_req = 0.0
        self.is_proliferative = False
        self.is_migratory = False
        self.doubled = False

        self.amounts[GLUCOSE] = self.initial_glucose * self.volume

    # ------------------------------------------------------------------

    def step(self, cell: "CellAgent", ctx: "TickContext") -> None:
        loc = cell.location
        total = ctx.grid.total_volume(loc)
        self.f = min(self.volume / total, 1.0) if total > EPSILON else 1.0

        glucose = ctx.lattice("GLUCOSE")
        oxygen = ctx.lattice("OXYGEN")
        self.external[GLUCOSE] = glucose.get_average_value(loc) * loc.get_volume()
        self.external[OXYGEN] = oxygen.get_average_value(loc) * loc.get_volume() * self.oxygen_solubility

        self.is_proliferative = cell.state is CellState.PROLIFERATIVE
        self.is_migratory = cell.state is CellState.MIGRATORY

        self.energy_cons = self.volume * (
            self.basal_energy
            + (self.proliferation_energy if self.is_proliferative else 0.0)
            + (self.migration_energy if self.is_migratory else 0.0)
        )
        self.energy_req = self.energy_cons - self.energy
        self.uptake[:] = 0.0

        self.step_body(cell, ctx)

        for lattice, index in ((glucose, GLUCOSE), (oxygen, OXYGEN)):
            if self.external[index] > EPSILON:
                lattice.update_value(loc, 1.0 - self.uptake[index] / self.external[index])

        self.doubled = self.mass >= 2 * self.critical_mass
        cell.volume = self.volume
        cell.energy = self.energy

    @abstractmethod
    def step_body(self, cell: "CellAgent", ctx: "TickContext") -> None:
        """Fill ``uptake`` and update energy, mass and volume for this tick."""

    # ------------------------------------------------------------------

    def should_grow(self) -> bool:
        return self.energy >= 0 and (
            (self.is_proliferative and self.mass < 2 * self.critical_mass)
            or self.mass < 0.99 * self.critical_mass
        )

    def should_autophagy(self, minimum_mass_fraction: float) -> bool:
        return (self.energy < 0 and self.mass > minimum_mass_fraction * self.critical_mass) or (
            self.energy >= 0 and self.mass > 1.01 * self.critical_mass and not self.is_proliferative
        )

    def pools(self) -> dict[str, float]:
        pools = super().pools()
        pools.update(energy=self.energy, mass=self.mass, volume=self.volume)
        return pools

    def _copy(self) -> "MetabolismProcess":
        other = super()._copy()
        other.external = self.external.copy()
        other.uptake = self.uptake.copy()
        return other

    def _scale(self, factor: float) -> None:
        super()._scale(factor)
        self.energy *= factor
        self.mass *= factor
        self.volume *= factor
        self.doubled = self.mass >= 2 * self.critical_mass


class MetabolismRandom(MetabolismProcess):
    """Uniformly sampled uptake fractions with coarse energy accounting."""

    version = "random"

    GLUC_UPTAKE = (0.005, 0.015)
    OXY_UPTAKE = (0.2, 0.5)
    GLUC_FRAC = (0.2, 0.4)

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        self.average_cell_volume = self.params.get_float("CELL_VOLUME")

    def step_body(self, cell, ctx):
        rng = ctx.rng
        gluc = float(self.amounts[GLUCOSE])

        gluc_uptake = self.external[GLUCOSE] * rng.uniform(*self.GLUC_UPTAKE)
        oxy_uptake = self.external[OXYGEN] * rng.uniform(*self.OXY_UPTAKE)
        gluc += gluc_uptake
        gluc_frac = rng.uniform(*self.GLUC_FRAC)

        energy_ox, gluc, oxy_uptake = _oxphos_from_glucose(gluc, oxy_uptake)
        energy_glyc, gluc, _ = _glycolysis(gluc, gluc_frac)

        self.energy += energy_ox + energy_glyc
        self.energy -= self.energy_cons / self.volume * self.average_cell_volume
        self.energy = snap(self.energy)

        if self.energy >= 0 and self.is_proliferative and self.mass < 2 * self.critical_mass:
            growth = gluc * rng.random()
            self.mass += growth / self.ratio_glucose_biomass
            gluc -= growth

        self.volume = self.mass / self.cell_density
        self.amounts[GLUCOSE] = snap(gluc)
        self.uptake[GLUCOSE] = gluc_uptake
        self.uptake[OXYGEN] = oxy_uptake


class MetabolismSimple(MetabolismProcess):
    """Constant-rate uptake, ATP production and volume growth."""

    version = "simple"

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        p = self.params
        self.average_cell_volume = p.get_float("CELL_VOLUME")
        self.metabolic_preference = p.get_float("metabolism/METABOLIC_PREFERENCE")
        self.glucose_uptake_rate = p.get_float("metabolism/CONSTANT_GLUCOSE_UPTAKE_RATE")
        self.atp_production_rate = p.get_float("metabolism/CONSTANT_ATP_PRODUCTION_RATE")
        self.volume_growth_rate = p.get_float("metabolism/CONSTANT_VOLUME_GROWTH_RATE")

    def step_body(self, cell, ctx):
        gluc = float(self.amounts[GLUCOSE])
        loc_volume = cell.location.get_volume()

        gluc_uptake = self.glucose_uptake_rate * _gradient(self.external[GLUCOSE], loc_volume, gluc, self.volume)
        gluc += gluc_uptake

        gluc_req_glyc = self.atp_production_rate * self.metabolic_preference / ENERGY_FROM_GLYC
        gluc_req_oxphos = (
            self.atp_production_rate * (1 - self.metabolic_preference) / ENERGY_FROM_OXPHOS / PYRU_PER_GLUC
        )
        oxy_req = gluc_req_oxphos * PYRU_PER_GLUC * OXY_PER_PYRU
        oxy_uptake = min(self.external[OXYGEN], oxy_req)
        oxy_uptake = oxy_uptake if oxy_uptake >= EPSILON else 0.0

        energy_ox, gluc, oxy_uptake = _oxphos_from_glucose(gluc, oxy_uptake)
        energy_glyc, gluc, _ = _glycolysis(gluc, gluc_req_glyc)

        self.energy += energy_ox + energy_glyc
        self.energy -= self.energy_cons / self.volume * self.average_cell_volume
        self.energy = snap(self.energy)

        growth_cost = self.cell_density * self.volume_growth_rate * self.ratio_glucose_biomass
        if (
            self.energy >= 0
            and self.is_proliferative
            and self.mass < 2 * self.critical_mass
            and gluc > growth_cost
        ):
            self.mass += self.cell_density * self.volume_growth_rate
            gluc -= growth_cost

        self.volume = self.mass / self.cell_density
        self.amounts[GLUCOSE] = snap(gluc)
        self.uptake[GLUCOSE] = gluc_uptake
        self.uptake[OXYGEN] = oxy_uptake


class MetabolismMedium(MetabolismProcess):
    """Gradient-proportional uptake with compensating glycolysis."""

    version = "medium"

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        p = self.params
        self.metabolic_preference = p.get_float("metabolism/METABOLIC_PREFERENCE")
        self.conversion_fraction = p.get_float("metabolism/CONVERSION_FRACTION")
        self.minimum_mass_fraction = p.get_float("metabolism/MINIMUM_MASS_FRACTION")
        self.autophagy_rate = p.get_float("metabolism/AUTOPHAGY_RATE")
        self.atp_production_rate = p.get_float("metabolism/ATP_PRODUCTION_RATE")

    def step_body(self, cell, ctx):
        gluc = float(self.amounts[GLUCOSE])
        pref = self.metabolic_preference
        loc_volume = cell.location.get_volume()

        atp_per_glucose = int(pref * ENERGY_FROM_GLYC + (1 - pref) * ENERGY_FROM_OXPHOS * PYRU_PER_GLUC)
        grad = _gradient(self.external[GLUCOSE], loc_volume, gluc, self.volume)
        gluc_uptake = self.atp_production_rate * self.volume * grad / atp_per_glucose
        gluc += gluc_uptake

        gluc_req_glyc = self.energy_req * pref / ENERGY_FROM_GLYC
        gluc_req_oxphos = self.energy_req * (1 - pref) / ENERGY_FROM_OXPHOS / PYRU_PER_GLUC
        oxy_req = gluc_req_oxphos * PYRU_PER_GLUC * OXY_PER_PYRU
        oxy_uptake = min(self.external[OXYGEN], oxy_req)
        oxy_uptake = oxy_uptake if oxy_uptake >= EPSILON else 0.0

        energy_ox, gluc, oxy_uptake = _oxphos_from_glucose(gluc, oxy_uptake)

        # Divert more glucose to glycolysis when oxygen was short.
        if self.energy <= 0 and gluc > 0:
            needed = -(self.energy - self.energy_cons + energy_ox) / ENERGY_FROM_GLYC
            gluc_req_glyc = max(gluc_req_glyc, needed)

        energy_glyc, gluc, _ = _glycolysis(gluc, gluc_req_glyc)

        self.energy += energy_ox + energy_glyc - self.energy_cons
        self.energy = snap(self.energy)

        if self.should_grow():
            self.mass += self.conversion_fraction * gluc / self.ratio_glucose_biomass
            gluc *= 1 - self.conversion_fraction

        if self.should_autophagy(self.minimum_mass_fraction):
            self.mass -= self.autophagy_rate
            gluc += self.autophagy_rate * self.ratio_glucose_biomass

        self.volume = self.mass / self.cell_density
        self.amounts[GLUCOSE] = snap(gluc)
        self.uptake[GLUCOSE] = gluc_uptake
        self.uptake[OXYGEN] = oxy_uptake


class MetabolismComplex(MetabolismProcess):
    """Explicit pyruvate intermediate with surface-area-scaled uptake."""

    version = "complex"
    names = ("glucose", "pyruvate")

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        p = self.params
        self.metabolic_preference = p.get_float("metabolism/METABOLIC_PREFERENCE")
        self.conversion_fraction = p.get_float("metabolism/CONVERSION_FRACTION")
        self.minimum_mass_fraction = p.get_float("metabolism/MINIMUM_MASS_FRACTION")
        self.ratio_glucose_pyruvate = p.get_float("metabolism/RATIO_GLUCOSE_PYRUVATE")
        self.lactate_rate = p.get_float("metabolism/LACTATE_RATE")
        self.autophagy_rate = p.get_float("metabolism/AUTOPHAGY_RATE")
        self.glucose_uptake_rate = p.get_float("metabolism/GLUCOSE_UPTAKE_RATE")
        self.amounts[PYRUVATE] = self.amounts[GLUCOSE] * PYRU_PER_GLUC

    def rates(self, cell: "CellAgent") -> tuple[float, float, float]:
        """Metabolic preference, glucose uptake rate and minimum mass fraction."""
        return self.metabolic_preference, self.glucose_uptake_rate, self.minimum_mass_fraction

    def step_body(self, cell, ctx):
        gluc = float(self.amounts[GLUCOSE])
        pyru = float(self.amounts[PYRUVATE])
        loc = cell.location
        pref, uptake_rate, min_mass_fraction = self.rates(cell)

        # Shared locations limit the footprint used for the surface area.
        area = loc.get_area() * self.f
        surface_area = area * 2 + (self.volume / area) * loc.get_perimeter(self.f)
        grad = _gradient(self.external[GLUCOSE], loc.get_volume(), gluc, self.volume)
        gluc_uptake = uptake_rate * surface_area * grad
        gluc += gluc_uptake

        gluc_req = pref * self.energy_req / ENERGY_FROM_GLYC
        pyru_req = (1 - pref) * self.energy_req / ENERGY_FROM_OXPHOS
        oxy_req = pyru_req * OXY_PER_PYRU
        oxy_uptake = min(self.external[OXYGEN], oxy_req)
        oxy_uptake = oxy_uptake if oxy_uptake >= EPSILON else 0.0

        # Oxidative phosphorylation consumes pyruvate.
        oxy_in_pyru = oxy_uptake / OXY_PER_PYRU
        if pyru > oxy_in_pyru:
            energy_ox = oxy_in_pyru * ENERGY_FROM_OXPHOS
            pyru -= oxy_in_pyru
        else:
            energy_ox = pyru * ENERGY_FROM_OXPHOS
            oxy_uptake = pyru * OXY_PER_PYRU
            pyru = 0.0

        if self.energy <= 0 and gluc > 0:
            needed = -(self.energy - self.energy_cons + energy_ox) / ENERGY_FROM_GLYC
            gluc_req = max(gluc_req, needed)

        # Glycolysis converts glucose to pyruvate.
        energy_glyc, gluc, used = _glycolysis(gluc, gluc_req)
        pyru += used * PYRU_PER_GLUC

        self.energy += energy_ox + energy_glyc - self.energy_cons
        self.energy = snap(self.energy)

        if self.should_grow():
            rgp = self.ratio_glucose_pyruvate
            conv = self.conversion_fraction
            self.mass += conv * (rgp * gluc + (1 - rgp) * pyru / PYRU_PER_GLUC) / self.ratio_glucose_biomass
            gluc *= 1 - conv * rgp
            pyru *= 1 - conv * (1 - rgp)

        if self.should_autophagy(min_mass_fraction):
            self.mass -= self.autophagy_rate
            gluc += self.autophagy_rate * self.ratio_glucose_biomass

        self.volume = self.mass / self.cell_density

        # Pyruvate lost to lactate.
        pyru -= self.lactate_rate * pyru

        self.amounts[GLUCOSE] = snap(gluc)
        self.amounts[PYRUVATE] = snap(pyru)
        self.uptake[GLUCOSE] = gluc_uptake
        self.uptake[OXYGEN] = oxy_uptake


class MetabolismCART(MetabolismComplex):
    """Complex metabolism shifted by lagged bound IL-2 and activation."""

    version = "cart"

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        p = self.params
        self.meta_pref_il2 = p.get_float("metabolism/META_PREF_IL2")
        self.meta_pref_active = p.get_float("metabolism/META_PREF_ACTIVE")
        self.gluc_uptake_rate_il2 = p.get_float("metabolism/GLUC_UPTAKE_RATE_IL2")
        self.gluc_uptake_rate_active = p.get_float("metabolism/GLUC_UPTAKE_RATE_ACTIVE")
        self.frac_mass_active = p.get_float("metabolism/FRAC_MASS_ACTIVE")
        self.switch_delay = p.get_int("metabolism/META_SWITCH_DELAY")

    def rates(self, cell):
        pref, uptake_rate, min_mass_fraction = super().rates(cell)
        inflammation = cell.processes.get(ProcessDomain.INFLAMMATION)
        if inflammation is None:
            return pref, uptake_rate, min_mass_fraction

        share = inflammation.lagged_bound(self.switch_delay) / inflammation.il2_receptors
        pref += self.meta_pref_il2 * share
        uptake_rate += self.gluc_uptake_rate_il2 * share

        if cell.activated and inflammation.active_ticker >= self.switch_delay:
            pref += self.meta_pref_active
            uptake_rate += self.gluc_uptake_rate_active
            min_mass_fraction += self.frac_mass_active
        return pref, uptake_rate, min_mass_fraction


METABOLISM_VERSIONS = {
    cls.version: cls
    for cls in (MetabolismRandom, MetabolismSimple, MetabolismMedium, MetabolismComplex, MetabolismCART)
}
