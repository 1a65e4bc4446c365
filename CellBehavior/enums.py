"""Enumerations shared by agents, processes and modules.

States follow the patch-model naming: a core set used by every variant and an
extended set only reachable by immune-effector agents.
"""

from __future__ import annotations

from enum import Enum

from CellBehavior.errors import InvariantViolation


class CellState(Enum):
    """Physiological state of a cell agent."""
    UNDEFINED = "undefined"
    PROLIFERATIVE = "proliferative"
    MIGRATORY = "migratory"
    SENESCENT = "senescent"
    APOPTOTIC = "apoptotic"
    NECROTIC = "necrotic"
    QUIESCENT = "quiescent"
    # Immune-effector states.
    CYTOTOXIC = "cytotoxic"
    STIMULATORY = "stimulatory"
    EXHAUSTED = "exhausted"
    ANERGIC = "anergic"
    STARVED = "starved"
    PAUSED = "paused"

    @property
    def is_terminal(self) -> bool:
        return self in (CellState.APOPTOTIC, CellState.NECROTIC)

    @classmethod
    def parse(cls, value: str | "CellState") -> "CellState":
        """Parse a state from its name or value (case-insensitive)."""
        if isinstance(value, CellState):
            return value
        key = str(value).strip()
        for state in cls:
            if key.upper() == state.name or key.lower() == state.value:
                return state
        raise InvariantViolation(f"Unknown cell state: {value!r}")


CORE_STATES = frozenset(
    {
        CellState.UNDEFINED,
        CellState.PROLIFERATIVE,
        CellState.MIGRATORY,
        CellState.SENESCENT,
        CellState.APOPTOTIC,
        CellState.NECROTIC,
        CellState.QUIESCENT,
    }
)

EFFECTOR_STATES = frozenset(
    {
        CellState.UNDEFINED,
        CellState.PROLIFERATIVE,
        CellState.MIGRATORY,
        CellState.SENESCENT,
        CellState.APOPTOTIC,
        CellState.QUIESCENT,
        CellState.CYTOTOXIC,
        CellState.STIMULATORY,
        CellState.EXHAUSTED,
        CellState.ANERGIC,
        CellState.STARVED,
        CellState.PAUSED,
    }
)


class BindingFlag(Enum):
    """Receptor-engagement status of an immune-effector agent."""
    UNDEFINED = "undefined"
    UNBOUND = "unbound"
    BOUND_ANTIGEN = "bound_antigen"
    BOUND_CELL_RECEPTOR = "bound_cell_receptor"
    BOUND_ANTIGEN_CELL_RECEPTOR = "bound_antigen_cell_receptor"


class SignalFlag(Enum):
    """Behavioral flag written by the signaling process."""
    UNDEFINED = "undefined"
    PROLIFERATIVE = "proliferative"
    MIGRATORY = "migratory"


class ProcessDomain(Enum):
    METABOLISM = "metabolism"
    SIGNALING = "signaling"
    INFLAMMATION = "inflammation"
    QUORUM = "quorum"
    CHEMOTHERAPY = "chemotherapy"


class CellVariant(Enum):
    """Variant tag selecting the transition table of an agent."""
    TISSUE = "tissue"
    CANCER = "cancer"
    CART_CD4 = "cart_cd4"
    CART_CD8 = "cart_cd8"
    CART_SYNNOTCH = "cart_synnotch"

    @property
    def is_effector(self) -> bool:
        return self in (CellVariant.CART_CD4, CellVariant.CART_CD8, CellVariant.CART_SYNNOTCH)

    @property
    def code(self) -> int:
        """Integer identity code used in serialized output."""
        return _VARIANT_CODES[self]

    @classmethod
    def parse(cls, value: str | "CellVariant") -> "CellVariant":
        if isinstance(value, CellVariant):
            return value
        key = str(value).strip().lower()
        for variant in cls:
            if variant.value == key:
                return variant
        raise ValueError(f"Unknown cell variant: {value!r}")


_VARIANT_CODES = {
    CellVariant.TISSUE: 0,
    CellVariant.CANCER: 1,
    CellVariant.CART_CD4: 2,
    CellVariant.CART_CD8: 3,
    CellVariant.CART_SYNNOTCH: 4,
}


class Capability(Enum):
    METABOLIZING = "metabolizing"
    SIGNALING = "signaling"
    BINDING = "binding"
    SYNNOTCH_CIRCUIT = "synnotch_circuit"
