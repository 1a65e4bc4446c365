"""Process interface shared by every intracellular sub-model.

A process owns a vector of internal amounts and is stepped once per tick with
the agent it belongs to. Processes never hold a reference to their agent;
the agent and tick context are passed in on every call.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

import numpy as np

from CellBehavior.enums import ProcessDomain

if TYPE_CHECKING:
    from CellBehavior.cell import CellAgent
    from CellBehavior.environment import TickContext
    from CellBehavior.parameters import CellParameters

EPSILON = 1e-10


def snap(value: float) -> float:
    """Snap tiny magnitudes to exactly zero."""
    return 0.0 if abs(value) < EPSILON else float(value)


def check_fraction(fraction: float) -> float:
    fraction = float(fraction)
    if not 0.0 <= fraction <= 1.0:
        raise ValueError(f"split fraction must be in [0, 1]; got {fraction}")
    return fraction


class Process(ABC):
    """Per-agent biochemical sub-model."""

    domain: ClassVar[ProcessDomain]
    version: ClassVar[str]
    names: tuple[str, ...] = ()

    def __init__(self, cell: "CellAgent") -> None:
        self.params: "CellParameters" = cell.params
        self.amounts = np.zeros(len(self.names), dtype=np.float64)

    @abstractmethod
    def step(self, cell: "CellAgent", ctx: "TickContext") -> None:
        """Advance the process by one tick."""

    def pools(self) -> dict[str, float]:
        """Extensive quantities conserved by :meth:`split`."""
        return {name: float(self.amounts[i]) for i, name in enumerate(self.names)}

    def split(self, fraction: float) -> "Process":
        """Return a new process holding ``fraction`` of every pool.

        This process keeps ``1 - fraction``; summing the pools of both sides
        gives back the pools before the split.
        """
        fraction = check_fraction(fraction)
        other = self._copy()
        other._scale(fraction)
        self._scale(1.0 - fraction)
        return other

    def _copy(self) -> "Process":
        other = copy.copy(self)
        other.amounts = self.amounts.copy()
        return other

    def _scale(self, factor: float) -> None:
        self.amounts = self.amounts * factor

    def get(self, name: str) -> float:
        return float(self.amounts[self.names.index(name)])

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.pools()})"
