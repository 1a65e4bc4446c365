"""Cell agents and the immutable containers they are built from.

A CellContainer is the snapshot used to create, divide and persist agents.
A CellAgent is the mutable agent stepped once per tick by the scheduler. All
variants share this class; variant-specific behavior comes from the
transition table and from the processes installed by the factory.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Mapping, Optional

import numpy as np

from CellBehavior.binding import BindingEngine, unbind
from CellBehavior.enums import BindingFlag, Capability, CellState, CellVariant, ProcessDomain, SignalFlag
from CellBehavior.errors import InvariantViolation
from CellBehavior.modules import make_module
from CellBehavior.synnotch import make_circuit
from CellBehavior.transitions import TRANSITIONS

if TYPE_CHECKING:
    from CellBehavior.environment import PatchLocation, StopHandle, TickContext
    from CellBehavior.factory import CellFactory
    from CellBehavior.modules import Module
    from CellBehavior.parameters import CellParameters
    from CellBehavior.processes import Process

logger = logging.getLogger(__name__)

# Processes stepped after the energy check, in this order.
LATE_DOMAINS = (
    ProcessDomain.SIGNALING,
    ProcessDomain.INFLAMMATION,
    ProcessDomain.QUORUM,
    ProcessDomain.CHEMOTHERAPY,
)


@dataclass(frozen=True)
class CellContainer:
    """Immutable snapshot of an agent."""
    id: int
    parent: Optional[int]
    pop: int
    age: int
    divisions: int
    state: CellState
    volume: float
    height: float
    critical_volume: float
    critical_height: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "state", CellState.parse(self.state))
        if self.divisions < 0:
            raise InvariantViolation(f"divisions must be non-negative; got {self.divisions}")
        if not self.volume > 0:
            raise InvariantViolation(f"volume must be positive; got {self.volume}")

    def convert(
        self,
        factory: "CellFactory",
        location: "PatchLocation",
        rng: np.random.Generator,
        overrides: Mapping[str, Any] | None = None,
    ) -> "CellAgent":
        """Build the agent for this snapshot at ``location``."""
        return factory.make_agent(self, location, rng, overrides)

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["state"] = self.state.name
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CellContainer":
        return cls(
            id=int(payload["id"]),
            parent=None if payload.get("parent") is None else int(payload["parent"]),
            pop=int(payload["pop"]),
            age=int(payload["age"]),
            divisions=int(payload["divisions"]),
            state=CellState.parse(payload["state"]),
            volume=float(payload["volume"]),
            height=float(payload["height"]),
            critical_volume=float(payload["critical_volume"]),
            critical_height=float(payload["critical_height"]),
        )


class CellAgent:
    """Mutable cell agent of any variant."""

    def __init__(
        self,
        container: CellContainer,
        location: "PatchLocation",
        params: "CellParameters",
        variant: CellVariant,
    ) -> None:
        self.id = container.id
        self.parent = container.parent
        self.pop = container.pop
        self.age = container.age
        self.params = params
        self.variant = CellVariant.parse(variant)
        self.rules = TRANSITIONS[self.variant]
        self.capabilities = self.rules.capabilities
        self.location = location

        self._divisions = 0
        self._volume = 1.0
        self.divisions = container.divisions
        self.volume = container.volume
        self.height = container.height
        self.critical_volume = container.critical_volume
        self.critical_height = container.critical_height
        self.energy = 0.0

        self.necrotic_fraction = params.get_float("NECROTIC_FRACTION")
        self.senescent_fraction = params.get_float("SENESCENT_FRACTION")
        self.energy_threshold = params.get_float("ENERGY_THRESHOLD")
        self.apoptosis_age = params.get_float("APOPTOSIS_AGE")

        self.signal_flag = SignalFlag.UNDEFINED
        self.processes: dict[ProcessDomain, "Process"] = {}
        self.module: "Module | None" = None
        self.cycles: list[int] = []
        self.stop_handle: "StopHandle | None" = None

        # Antigens presented when this cell is a target.
        self.car_antigens = params.get_int("CAR_ANTIGENS")
        self.self_targets = params.get_int("SELF_TARGETS")
        self.synnotch_antigens = params.get_int("SYNNOTCH_ANTIGENS")
        self.bound_by: int | None = None
        self.on_hold = False

        # Receptor engagement when this cell is an effector.
        self.binding_flag = BindingFlag.UNDEFINED
        self.bound_target_id: int | None = None
        self.activated = False
        self.bound_antigen_count = 0
        self.bound_self_count = 0
        self.last_active_ticker = 0
        self.binding: BindingEngine | None = None
        self.synnotch = None
        if Capability.BINDING in self.capabilities:
            self.binding_flag = BindingFlag.UNBOUND
            self.binding = BindingEngine(params)
            self.cars = params.get_int("CARS")
            self.self_receptors = params.get_int("SELF_RECEPTORS")
            self.max_antigen_binding = params.get_int("MAX_ANTIGEN_BINDING")
            self.exhausted_fraction = params.get_float("EXHAUSTED_FRACTION")
            self.anergic_fraction = params.get_float("ANERGIC_FRACTION")
            self.proliferative_fraction = params.get_float("PROLIFERATIVE_FRACTION")
        else:
            self.cars = 0
            self.self_receptors = 0
        if Capability.SYNNOTCH_CIRCUIT in self.capabilities:
            self.synnotch = make_circuit(params)

        self._state: CellState | None = None
        self.set_state(container.state)

    # ------------------------------------------------------------------
    # Validated attributes
    # ------------------------------------------------------------------

    @property
    def volume(self) -> float:
        return self._volume

    @volume.setter
    def volume(self, value: float) -> None:
        if not value > 0:
            raise InvariantViolation(f"Agent {self.id}: volume must be positive; got {value}")
        self._volume = float(value)

    @property
    def divisions(self) -> int:
        return self._divisions

    @divisions.setter
    def divisions(self, value: int) -> None:
        if value < 0:
            raise InvariantViolation(f"Agent {self.id}: divisions must be non-negative; got {value}")
        self._divisions = int(value)

    @property
    def state(self) -> CellState:
        return self._state

    def set_state(self, state: CellState | str) -> None:
        """Change state and replace the active module.

        Terminal states are absorbing: once APOPTOTIC or NECROTIC, further
        requests are ignored until the agent is removed.
        """
        state = CellState.parse(state)
        if state not in self.rules.legal_states:
            raise InvariantViolation(
                f"State {state.name} is not legal for {self.variant.value} agent {self.id}"
            )
        if self._state is not None and self._state.is_terminal:
            return
        self._state = state
        self.module = make_module(self, state)

    @property
    def is_stopped(self) -> bool:
        return self.stop_handle is not None and self.stop_handle.stopped

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def step(self, ctx: "TickContext") -> None:
        rules = self.rules
        self.age += 1

        if self.age > self.apoptosis_age and not self.state.is_terminal:
            self.set_state(CellState.APOPTOTIC)
            self.release(ctx)

        if rules.on_tick is not None:
            rules.on_tick(self, ctx)

        metabolism = self.processes.get(ProcessDomain.METABOLISM)
        if metabolism is not None:
            metabolism.step(self, ctx)
        rules.energy_check(self, ctx)

        for domain in LATE_DOMAINS:
            process = self.processes.get(domain)
            if process is not None:
                process.step(self, ctx)
        if self.synnotch is not None:
            self.synnotch.step(self, ctx)

        if self.state in rules.resolvable:
            rules.resolve(self, ctx)

        if self.module is not None:
            self.module.step(self, ctx)

    def release(self, ctx: "TickContext") -> None:
        """Drop every reference this agent holds to other agents."""
        if self.binding is not None:
            unbind(self, ctx)
        if self.synnotch is not None:
            self.synnotch.reset(ctx)

    def stop(self) -> None:
        if self.stop_handle is not None:
            self.stop_handle.stop()

    # ------------------------------------------------------------------
    # Containers and output
    # ------------------------------------------------------------------

    def make(self, new_id: int, rng: np.random.Generator) -> CellContainer:
        """Spend one division and return the daughter's container."""
        self.divisions = self.divisions - 1
        return CellContainer(
            id=new_id,
            parent=self.id,
            pop=self.pop,
            age=self.age,
            divisions=self.divisions,
            state=CellState.UNDEFINED,
            volume=self.volume,
            height=self.height,
            critical_volume=self.critical_volume,
            critical_height=self.critical_height,
        )

    def to_container(self) -> CellContainer:
        return CellContainer(
            id=self.id,
            parent=self.parent,
            pop=self.pop,
            age=self.age,
            divisions=self.divisions,
            state=self.state,
            volume=self.volume,
            height=self.height,
            critical_volume=self.critical_volume,
            critical_height=self.critical_height,
        )

    def to_json(self) -> list:
        """Inspection row: [code, pop, state, [x, y], volume, [cycles...]]."""
        return [
            self.variant.code,
            self.pop,
            self.state.name,
            self.location.to_list(),
            round(self.volume, 2),
            list(self.cycles),
        ]

    def __repr__(self) -> str:
        return (
            f"CellAgent(id={self.id}, variant={self.variant.value}, "
            f"state={self.state.name}, volume={self.volume:.1f})"
        )
