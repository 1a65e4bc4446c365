"""Per-variant state transition rules.

Every agent is the same class; what differs between tissue, cancer and the
CAR-T effectors is looked up here by variant tag:
    legal_states  -> states the agent may hold
    resolvable    -> states resolved to a new state each tick
    energy_check  -> reaction to an energy deficit after metabolism
    resolve       -> outgoing transition from a resolvable state
    on_tick       -> bookkeeping before metabolism (effector activation timers)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from CellBehavior.binding import unbind
from CellBehavior.enums import (
    CORE_STATES,
    EFFECTOR_STATES,
    BindingFlag,
    Capability,
    CellState,
    CellVariant,
    SignalFlag,
)

if TYPE_CHECKING:
    from CellBehavior.cell import CellAgent
    from CellBehavior.environment import TickContext

Rule = Callable[["CellAgent", "TickContext"], None]

TICKS_PER_DAY = 1440
ACTIVATION_MEMORY_DAYS = 7


# -----------------------------------------------------------------------------
# Tissue rules
# -----------------------------------------------------------------------------

def tissue_energy_check(agent: "CellAgent", ctx: "TickContext") -> None:
    """Deep deficit kills the cell (necrosis or apoptosis); mild deficit pauses it."""
    if agent.state.is_terminal or agent.energy >= 0:
        return
    if agent.energy < agent.energy_threshold:
        if ctx.rng.random() > agent.necrotic_fraction:
            agent.set_state(CellState.APOPTOTIC)
        else:
            agent.set_state(CellState.NECROTIC)
    elif agent.state not in (CellState.QUIESCENT, CellState.SENESCENT):
        agent.set_state(CellState.QUIESCENT)


def tissue_resolve(agent: "CellAgent", ctx: "TickContext") -> None:
    if agent.signal_flag is SignalFlag.MIGRATORY:
        agent.set_state(CellState.MIGRATORY)
    elif agent.divisions == 0:
        _senesce(agent, ctx)
    else:
        agent.set_state(CellState.PROLIFERATIVE)


def _senesce(agent: "CellAgent", ctx: "TickContext") -> None:
    if ctx.rng.random() <= agent.senescent_fraction:
        agent.set_state(CellState.SENESCENT)
    else:
        agent.set_state(CellState.APOPTOTIC)


# -----------------------------------------------------------------------------
# Immune effector rules
# -----------------------------------------------------------------------------

def effector_tick(agent: "CellAgent", ctx: "TickContext") -> None:
    """Decay the over-stimulation counter daily and forget stale activation."""
    agent.last_active_ticker += 1
    if agent.last_active_ticker % TICKS_PER_DAY == 0 and agent.bound_antigen_count > 0:
        agent.bound_antigen_count -= 1
    if agent.last_active_ticker // TICKS_PER_DAY > ACTIVATION_MEMORY_DAYS:
        agent.activated = False


def effector_energy_check(agent: "CellAgent", ctx: "TickContext") -> None:
    if agent.state.is_terminal:
        return
    if agent.energy < 0 and agent.energy < agent.energy_threshold:
        agent.set_state(CellState.APOPTOTIC)
        unbind(agent, ctx)
        agent.activated = False
    elif agent.energy < 0 and agent.state not in (
        CellState.ANERGIC,
        CellState.SENESCENT,
        CellState.EXHAUSTED,
        CellState.STARVED,
    ):
        agent.set_state(CellState.STARVED)
        unbind(agent, ctx)
    elif agent.state is CellState.STARVED and agent.energy >= 0:
        agent.set_state(CellState.UNDEFINED)


def _deactivate(agent: "CellAgent", ctx: "TickContext", state: CellState) -> None:
    agent.set_state(state)
    unbind(agent, ctx)
    agent.activated = False


def effector_resolve(agent: "CellAgent", ctx: "TickContext") -> None:
    """Bind a target and decide the effector's next state from the outcome."""
    rng = ctx.rng
    if agent.divisions == 0:
        state = CellState.SENESCENT if rng.random() <= agent.senescent_fraction else CellState.APOPTOTIC
        _deactivate(agent, ctx, state)
        return

    agent.binding.bind_target(agent, ctx)
    flag = agent.binding_flag

    if flag is BindingFlag.BOUND_ANTIGEN_CELL_RECEPTOR:
        state = CellState.APOPTOTIC if rng.random() > agent.anergic_fraction else CellState.ANERGIC
        _deactivate(agent, ctx, state)
    elif flag is BindingFlag.BOUND_ANTIGEN:
        if agent.bound_antigen_count > agent.max_antigen_binding:
            state = CellState.APOPTOTIC if rng.random() > agent.exhausted_fraction else CellState.EXHAUSTED
            _deactivate(agent, ctx, state)
        else:
            agent.last_active_ticker = 0
            agent.activated = True
            agent.set_state(agent.rules.engaged_state)
    else:
        if flag is BindingFlag.BOUND_CELL_RECEPTOR:
            unbind(agent, ctx)
        if agent.activated:
            agent.set_state(CellState.PROLIFERATIVE)
        elif rng.random() > agent.proliferative_fraction:
            agent.set_state(CellState.MIGRATORY)
        else:
            agent.set_state(CellState.PROLIFERATIVE)


# -----------------------------------------------------------------------------
# Table
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class TransitionRules:
    legal_states: frozenset
    resolvable: frozenset
    capabilities: frozenset
    energy_check: Rule
    resolve: Rule
    on_tick: Optional[Rule] = None
    engaged_state: Optional[CellState] = None


_TISSUE = TransitionRules(
    legal_states=CORE_STATES,
    resolvable=frozenset({CellState.UNDEFINED}),
    capabilities=frozenset({Capability.METABOLIZING, Capability.SIGNALING}),
    energy_check=tissue_energy_check,
    resolve=tissue_resolve,
)

_EFFECTOR_RESOLVABLE = frozenset({CellState.UNDEFINED, CellState.PAUSED, CellState.QUIESCENT})


def _effector(engaged: CellState, synnotch: bool = False) -> TransitionRules:
    capabilities = {Capability.METABOLIZING, Capability.BINDING}
    if synnotch:
        capabilities.add(Capability.SYNNOTCH_CIRCUIT)
    return TransitionRules(
        legal_states=EFFECTOR_STATES,
        resolvable=_EFFECTOR_RESOLVABLE,
        capabilities=frozenset(capabilities),
        energy_check=effector_energy_check,
        resolve=effector_resolve,
        on_tick=effector_tick,
        engaged_state=engaged,
    )


TRANSITIONS: dict[CellVariant, TransitionRules] = {
    CellVariant.TISSUE: _TISSUE,
    CellVariant.CANCER: _TISSUE,
    CellVariant.CART_CD4: _effector(CellState.STIMULATORY),
    CellVariant.CART_CD8: _effector(CellState.CYTOTOXIC),
    CellVariant.CART_SYNNOTCH: _effector(CellState.CYTOTOXIC, synnotch=True),
}
