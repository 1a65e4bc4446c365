"""Receptor-antigen binding between immune effectors and tissue cells.

An effector searches the tissue agents at its location and the neighbouring
locations. For each candidate it makes two independent draws, one for the CAR
engaging a tumour antigen and one for the self receptor engaging a self
target. Two models give the per-draw success:
    kinetic  -> exponential waiting time with rate antigens * k, success if <= dt
    affinity -> logistic transform of a Hill-type occupancy
The first candidate with any success is claimed by the effector.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

import numpy as np

from CellBehavior.enums import BindingFlag, CellState
from CellBehavior.errors import ConfigurationError, StaleReferenceError

if TYPE_CHECKING:
    from CellBehavior.cell import CellAgent
    from CellBehavior.environment import TickContext
    from CellBehavior.parameters import CellParameters

logger = logging.getLogger(__name__)

AVOGADRO = 6.022e23
REFERENCE_CARS = 50000.0
BINDING_MODELS = ("kinetic", "affinity")


# -----------------------------------------------------------------------------
# Probability helpers
# -----------------------------------------------------------------------------

def binding_probability(antigens: float, rate_constant: float, dt: float = 1.0) -> float:
    """Probability of at least one binding event within ``dt``.

    Binding events are Poisson with mean lambda = antigens * rate_constant * dt,
    so the probability is 1 - P(0).
    """
    from scipy.stats import poisson

    lam = float(antigens) * float(rate_constant) * float(dt)
    if lam <= 0:
        return 0.0
    return float(1.0 - poisson.pmf(0, lam))


def sample_waiting_time(rate: float, rng: np.random.Generator) -> float:
    """Exponential waiting time until the next event at ``rate`` per tick."""
    if rate <= 0:
        return math.inf
    return -math.log(1.0 - rng.random()) / rate


def kinetic_rate_constant(
    k_on: float,
    location_volume: float,
    receptors: float,
    contact_fraction: float,
) -> float:
    """Per-antigen binding rate (1/min) for ``receptors`` at the contact surface.

    ``k_on`` is in 1/(M s); the location volume in um^3.
    """
    molar = location_volume * 1e-15 * AVOGADRO
    return k_on * 60.0 / molar * receptors * contact_fraction


def affinity_probability(
    antigens: float,
    affinity: float,
    alpha: float,
    beta: float,
    receptors: float,
    contact_fraction: float,
    location_volume: float,
) -> float:
    """Binding probability from a logistic-of-Hill affinity model."""
    kd = affinity * (location_volume * 1e-15 * AVOGADRO)
    engaged = antigens * contact_fraction
    denom = kd * beta + engaged
    if denom <= 0:
        return 0.0
    occupancy = engaged / denom * (receptors / REFERENCE_CARS) * alpha
    return 2.0 / (1.0 + math.exp(-occupancy)) - 1.0


# -----------------------------------------------------------------------------
# Binding engine
# -----------------------------------------------------------------------------

class BindingEngine:
    """Target search and claim for one effector population."""

    def __init__(self, params: "CellParameters") -> None:
        self.model = params.get_str("binding/MODEL").strip().lower()
        if self.model not in BINDING_MODELS:
            raise ConfigurationError(
                f"Unknown binding model {self.model!r}; expected one of {list(BINDING_MODELS)}"
            )
        self.search_ability = params.get_int("SEARCH_ABILITY")
        self.contact_fraction = params.get_float("CONTACT_FRACTION")
        self.self_receptors_start = params.get_int("SELF_RECEPTORS_START")

        self.car_rate = params.get_float("binding/CAR_ANTIGEN_BINDING_RATE")
        self.self_rate = params.get_float("binding/SELF_ANTIGEN_BINDING_RATE")
        self.car_affinity = params.get_float("binding/CAR_AFFINITY")
        self.car_alpha = params.get_float("binding/CAR_ALPHA")
        self.car_beta = params.get_float("binding/CAR_BETA")
        self.self_affinity = params.get_float("binding/SELF_RECEPTOR_AFFINITY")
        self.self_alpha = params.get_float("binding/SELF_ALPHA")
        self.self_beta = params.get_float("binding/SELF_BETA")

    def candidates(self, agent: "CellAgent", ctx: "TickContext") -> list["CellAgent"]:
        """Shuffled tissue agents in reach, limited to the search ability."""
        found = ctx.tissue_neighbors(agent.location, exclude=(agent.id,))
        if not found:
            return []
        order = ctx.rng.permutation(len(found))
        limit = min(len(found), self.search_ability)
        return [found[i] for i in order[:limit]]

    def _success(self, antigens: float, receptors: float, which: str, loc_volume: float, ctx: "TickContext") -> bool:
        if self.model == "affinity":
            if which == "car":
                p = affinity_probability(
                    antigens, self.car_affinity, self.car_alpha, self.car_beta,
                    receptors, self.contact_fraction, loc_volume,
                )
            else:
                p = affinity_probability(
                    antigens, self.self_affinity, self.self_alpha, self.self_beta,
                    receptors, self.contact_fraction, loc_volume,
                )
            return ctx.rng.random() < p
        k_on = self.car_rate if which == "car" else self.self_rate
        k = kinetic_rate_constant(k_on, loc_volume, receptors, self.contact_fraction)
        return sample_waiting_time(antigens * k, ctx.rng) <= ctx.dt

    def bind_target(self, agent: "CellAgent", ctx: "TickContext") -> "CellAgent | None":
        """Search for a target and claim the first one engaged.

        Sets ``agent.binding_flag`` and ``agent.bound_target_id``; returns the
        claimed target or None.
        """
        loc_volume = agent.location.get_volume()
        for target in self.candidates(agent, ctx):
            if target.state.is_terminal or target.is_stopped:
                continue
            if target.bound_by is not None and target.bound_by != agent.id:
                continue

            antigen = self._success(target.car_antigens, agent.cars, "car", loc_volume, ctx)
            self_bound = self._success(target.self_targets, agent.self_receptors, "self", loc_volume, ctx)

            if antigen and self_bound:
                flag = BindingFlag.BOUND_ANTIGEN_CELL_RECEPTOR
            elif antigen:
                flag = BindingFlag.BOUND_ANTIGEN
            elif self_bound:
                flag = BindingFlag.BOUND_CELL_RECEPTOR
            else:
                continue

            if antigen:
                agent.bound_antigen_count += 1
                agent.self_receptors += int(self.self_receptors_start * (0.95 + ctx.rng.random() / 10))
            if self_bound:
                agent.bound_self_count += 1

            claim(agent, target)
            agent.binding_flag = flag
            agent.bound_target_id = target.id
            return target

        agent.binding_flag = BindingFlag.UNBOUND
        agent.bound_target_id = None
        return None


def claim(agent: "CellAgent", target: "CellAgent") -> None:
    """Mark ``target`` as held by ``agent``; motile or dividing targets pause."""
    target.bound_by = agent.id
    if target.state in (CellState.PROLIFERATIVE, CellState.MIGRATORY):
        target.set_state(CellState.QUIESCENT)
        target.on_hold = True


def unbind(agent: "CellAgent", ctx: "TickContext") -> None:
    """Release the bound target, if any. Safe to call repeatedly."""
    if agent.binding_flag is BindingFlag.BOUND_ANTIGEN and agent.bound_antigen_count > 0:
        agent.bound_antigen_count -= 1

    target_id = agent.bound_target_id
    agent.binding_flag = BindingFlag.UNBOUND
    agent.bound_target_id = None
    if target_id is None:
        return

    try:
        target = ctx.resolve_agent(target_id)
    except StaleReferenceError:
        logger.debug("Agent %s released stale target %s", agent.id, target_id)
        return
    if target.bound_by == agent.id:
        target.bound_by = None
        if target.on_hold:
            target.on_hold = False
            if target.state is CellState.QUIESCENT:
                target.set_state(CellState.UNDEFINED)
