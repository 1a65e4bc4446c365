"""Exception types raised by the cell behavior engine."""

from __future__ import annotations


class CellBehaviorError(Exception):
    """Base class for engine errors."""


class ConfigurationError(CellBehaviorError, ValueError):
    """A required parameter is missing or cannot be parsed.

    Raised while building agents and processes, before any tick runs.
    """


class InvariantViolation(CellBehaviorError, RuntimeError):
    """An agent was asked to hold an impossible value (negative volume,
    unknown or illegal state, negative division count)."""


class StaleReferenceError(CellBehaviorError, LookupError):
    """An agent id no longer resolves to a live agent on the grid."""

    def __init__(self, agent_id: int) -> None:
        super().__init__(f"Agent {agent_id} is no longer on the grid")
        self.agent_id = agent_id
