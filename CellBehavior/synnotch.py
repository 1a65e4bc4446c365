"""SynNotch receptor circuit for logic-gated CAR expression.

The effector engages one tissue cell carrying synNotch antigens. Binding and
unbinding are Poisson-sampled over a 60 min window; each binding event is
remembered, and after the activation delay the bound receptors it created are
consumed (the released transcription factor has acted). CAR expression follows
the engaged receptors through a Hill function.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING

from CellBehavior.errors import ConfigurationError, StaleReferenceError

if TYPE_CHECKING:
    import numpy as np

    from CellBehavior.cell import CellAgent
    from CellBehavior.environment import TickContext
    from CellBehavior.parameters import CellParameters

logger = logging.getLogger(__name__)

TAU = 60
AVOGADRO = 6.0221415e23


@dataclass(frozen=True)
class BindingEvent:
    tick: int
    count: int


def hill(x: float, k: float, n: float) -> float:
    """Hill activation x^n / (k^n + x^n)."""
    if not 1.0 <= n <= 10.0:
        raise ValueError(f"Hill coefficient must be in [1, 10]; got {n}")
    if x <= 0:
        return 0.0
    xn = x ** n
    return xn / (k ** n + xn)


def _poisson(lam: float, rng: "np.random.Generator") -> int:
    from scipy.stats import poisson

    if lam <= 0:
        return 0
    return int(poisson.rvs(lam, random_state=rng))


class SynNotchCircuit:
    """Combinatorial circuit: CAR production scales with engaged synNotch."""

    variant = "combinatorial"

    def __init__(self, params: "CellParameters") -> None:
        self.k_on = params.get_float("synnotch/K_SYNNOTCH_ON")
        self.k_off = params.get_float("synnotch/K_SYNNOTCH_OFF")
        self.k_car_degrade = params.get_float("synnotch/K_CAR_DEGRADE")
        self.k_car_generation = params.get_float("synnotch/K_CAR_GENERATION")
        self.synnotchs = params.get_int("synnotch/SYNNOTCHS")
        self.threshold = params.get_float("synnotch/SYNNOTCH_THRESHOLD") * self.synnotchs
        self.delay = params.get_int("synnotch/SYNNOTCH_ACTIVATION_DELAY")
        self.hill_n = params.get_float("synnotch/HILL_COEFFICIENT")
        self.hill_k = params.get_float("synnotch/HILL_CONSTANT")
        self.contact_fraction = params.get_float("CONTACT_FRACTION")
        if not 1.0 <= self.hill_n <= 10.0:
            raise ConfigurationError(f"synnotch/HILL_COEFFICIENT must be in [1, 10]; got {self.hill_n}")
        if self.delay <= 0:
            raise ConfigurationError("synnotch/SYNNOTCH_ACTIVATION_DELAY must be positive")

        self.bound = 0
        self.target_id: int | None = None
        self.history: deque[BindingEvent] = deque(maxlen=self.delay + 1)

    # ------------------------------------------------------------------

    def find_target(self, agent: "CellAgent", ctx: "TickContext") -> "CellAgent | None":
        """Pick one random tissue cell in reach; keep it if it has antigens."""
        tissue = ctx.tissue_neighbors(agent.location, exclude=(agent.id,))
        if not tissue:
            return None
        candidate = tissue[int(ctx.rng.integers(len(tissue)))]
        return candidate if candidate.synnotch_antigens > 0 else None

    def _current_target(self, agent: "CellAgent", ctx: "TickContext") -> "CellAgent | None":
        if self.target_id is not None:
            try:
                return ctx.resolve_agent(self.target_id)
            except StaleReferenceError:
                logger.debug("SynNotch target %s of agent %s is gone", self.target_id, agent.id)
                self.target_id = None
                self.bound = 0
        target = self.find_target(agent, ctx)
        self.target_id = None if target is None else target.id
        return target

    def step(self, agent: "CellAgent", ctx: "TickContext") -> None:
        target = self._current_target(agent, ctx)

        if target is not None:
            unbound = self.synnotchs - self.bound
            lam_on = (
                self.k_on / (agent.volume * AVOGADRO * 1e-15)
                * unbound * target.synnotch_antigens * self.contact_fraction * TAU
            )
            binding = min(_poisson(lam_on, ctx.rng), unbound, target.synnotch_antigens)
            unbinding = min(_poisson(self.k_off * self.bound * TAU, ctx.rng), self.bound)

            if binding > 0:
                self.history.append(BindingEvent(ctx.tick, binding))
            self.bound = min(max(self.bound + binding - unbinding, 0), self.synnotchs)
            target.synnotch_antigens = max(target.synnotch_antigens + unbinding - binding, 0)

        expired = 0
        while self.history and ctx.tick - self.history[0].tick >= self.delay:
            expired += self.history.popleft().count
        if expired:
            self.bound = max(self.bound - expired, 0)
            self.synnotchs = max(self.synnotchs - expired, 0)

        production = self.production()
        agent.cars = max(int(agent.cars + production * TAU - self.k_car_degrade * agent.cars * TAU), 0)
        self.update_activation(agent)

    def production(self) -> float:
        return self.k_car_generation * hill(self.bound, self.hill_k, self.hill_n)

    def update_activation(self, agent: "CellAgent") -> None:
        pass

    def reset(self, ctx: "TickContext") -> None:
        """Return bound receptors' antigens to the target and release it."""
        if self.target_id is not None:
            try:
                target = ctx.resolve_agent(self.target_id)
                target.synnotch_antigens += self.bound
            except StaleReferenceError:
                logger.debug("SynNotch target %s released after removal", self.target_id)
        self.target_id = None
        self.bound = 0


class SynNotchInducible(SynNotchCircuit):
    """Engaged synNotch above threshold activates the effector."""

    variant = "inducible"

    # CAR expression is constitutive here; the circuit only gates activation.
    def production(self) -> float:
        return self.k_car_generation

    def update_activation(self, agent):
        if self.bound >= self.threshold:
            agent.activated = True
            agent.last_active_ticker = 0


class SynNotchInhibitory(SynNotchCircuit):
    """Engaged synNotch represses CAR and vetoes activation."""

    variant = "inhibitory"

    def production(self) -> float:
        return self.k_car_generation * (1.0 - hill(self.bound, self.hill_k, self.hill_n))

    def update_activation(self, agent):
        if self.bound >= self.threshold:
            agent.activated = False


SYNNOTCH_VARIANTS = {
    cls.variant: cls for cls in (SynNotchCircuit, SynNotchInducible, SynNotchInhibitory)
}


def make_circuit(params: "CellParameters") -> SynNotchCircuit:
    key = params.get_str("synnotch/VARIANT").strip().lower()
    if key not in SYNNOTCH_VARIANTS:
        raise ConfigurationError(
            f"Unknown synnotch variant {key!r}; expected one of {sorted(SYNNOTCH_VARIANTS)}"
        )
    return SYNNOTCH_VARIANTS[key](params)
