"""Spatial grid, molecule lattices and scheduler used by the engine.

The collaborators are kept simple: a square patch grid, one scalar value per
location and lattice field, and a tick-indexed scheduler. Lattice writes made
during an agent's step are buffered in the TickContext and committed only
once that step has finished.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Iterable

import numpy as np

from CellBehavior.errors import ConfigurationError, StaleReferenceError

if TYPE_CHECKING:
    from CellBehavior.cell import CellAgent
    from CellBehavior.factory import CellFactory

logger = logging.getLogger(__name__)

LATTICE_FIELDS = ("GLUCOSE", "OXYGEN", "TGFA", "IL-2", "VEGF", "AUXIN", "DRUG")


# -----------------------------------------------------------------------------
# Locations and grid
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class PatchLocation:
    """Square patch of tissue addressed by integer grid coordinates."""
    x: int
    y: int

    SIZE: ClassVar[float] = 30.0
    DEPTH: ClassVar[float] = 8.7
    CAPACITY: ClassVar[int] = 4

    @property
    def radius(self) -> int:
        return max(abs(self.x), abs(self.y)) + 1

    def get_size(self) -> float:
        return self.SIZE

    def get_area(self) -> float:
        return self.SIZE * self.SIZE

    def get_height(self) -> float:
        return self.DEPTH

    def get_volume(self) -> float:
        return self.get_area() * self.DEPTH

    def get_perimeter(self, fraction: float) -> float:
        """Perimeter of the share ``fraction`` of the patch footprint."""
        return fraction * 4 * self.SIZE + (0.0 if fraction == 1 else self.SIZE)

    def neighbors(self, bound: int) -> list["PatchLocation"]:
        """8-connected neighbours with |x|, |y| < bound."""
        out = []
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                if dx == 0 and dy == 0:
                    continue
                nx, ny = self.x + dx, self.y + dy
                if abs(nx) < bound and abs(ny) < bound:
                    out.append(PatchLocation(nx, ny))
        return out

    def to_list(self) -> list[int]:
        return [self.x, self.y]


class PatchGrid:
    """Agent container indexed by id and by location."""

    def __init__(self, radius: int) -> None:
        if radius <= 0:
            raise ValueError("grid radius must be positive")
        self.radius = int(radius)
        self._agents: dict[int, "CellAgent"] = {}
        self._by_location: dict[PatchLocation, list[int]] = {}

    def locations(self) -> list[PatchLocation]:
        r = self.radius
        return [PatchLocation(x, y) for x in range(-r + 1, r) for y in range(-r + 1, r)]

    def contains(self, loc: PatchLocation) -> bool:
        return abs(loc.x) < self.radius and abs(loc.y) < self.radius

    def get_neighbors(self, loc: PatchLocation) -> list[PatchLocation]:
        return loc.neighbors(self.radius)

    def get_objects_at_location(self, loc: PatchLocation) -> list["CellAgent"]:
        return [self._agents[i] for i in self._by_location.get(loc, [])]

    def get_agent(self, agent_id: int | None) -> "CellAgent | None":
        if agent_id is None:
            return None
        return self._agents.get(agent_id)

    def agents(self) -> list["CellAgent"]:
        return list(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)

    def total_volume(self, loc: PatchLocation) -> float:
        return float(sum(a.volume for a in self.get_objects_at_location(loc)))

    def add_object(self, agent: "CellAgent", loc: PatchLocation) -> None:
        if not self.contains(loc):
            raise ValueError(f"Location {loc} is outside the grid")
        if agent.id in self._agents:
            raise ValueError(f"Agent {agent.id} is already on the grid")
        self._agents[agent.id] = agent
        self._by_location.setdefault(loc, []).append(agent.id)
        agent.location = loc

    def move_object(self, agent: "CellAgent", loc: PatchLocation) -> None:
        self._detach(agent)
        self._by_location.setdefault(loc, []).append(agent.id)
        agent.location = loc

    def remove_object(self, agent: "CellAgent") -> None:
        if agent.id not in self._agents:
            return
        self._detach(agent)
        del self._agents[agent.id]

    def _detach(self, agent: "CellAgent") -> None:
        ids = self._by_location.get(agent.location, [])
        if agent.id in ids:
            ids.remove(agent.id)
        if not ids:
            self._by_location.pop(agent.location, None)


# -----------------------------------------------------------------------------
# Lattices
# -----------------------------------------------------------------------------

class PatchLattice:
    """One scalar concentration per location for a named molecule."""

    def __init__(self, name: str, initial: float = 0.0, capacity: int = PatchLocation.CAPACITY) -> None:
        self.name = name
        self.initial = float(initial)
        self.capacity = int(capacity)
        self._values: dict[PatchLocation, float] = {}

    def get_average_value(self, loc: PatchLocation) -> float:
        return self._values.get(loc, self.initial)

    def get_total_value(self, loc: PatchLocation) -> float:
        return self.get_average_value(loc) * self.capacity

    def update_value(self, loc: PatchLocation, multiplier: float) -> None:
        self._values[loc] = self.get_average_value(loc) * multiplier

    def set_value(self, loc: PatchLocation, value: float) -> None:
        self._values[loc] = float(value)

    def values(self) -> dict[PatchLocation, float]:
        return dict(self._values)


class LatticeView:
    """Write buffer over a lattice; reads see the buffered values."""

    def __init__(self, lattice: PatchLattice) -> None:
        self.lattice = lattice
        self._pending: dict[PatchLocation, float] = {}

    @property
    def name(self) -> str:
        return self.lattice.name

    @property
    def capacity(self) -> int:
        return self.lattice.capacity

    def get_average_value(self, loc: PatchLocation) -> float:
        if loc in self._pending:
            return self._pending[loc]
        return self.lattice.get_average_value(loc)

    def get_total_value(self, loc: PatchLocation) -> float:
        return self.get_average_value(loc) * self.lattice.capacity

    def update_value(self, loc: PatchLocation, multiplier: float) -> None:
        self._pending[loc] = self.get_average_value(loc) * multiplier

    def set_value(self, loc: PatchLocation, value: float) -> None:
        self._pending[loc] = float(value)

    def commit(self) -> None:
        for loc, value in self._pending.items():
            self.lattice.set_value(loc, value)
        self._pending.clear()

    def rollback(self) -> None:
        self._pending.clear()


def build_lattices(initial: dict[str, float] | None = None) -> dict[str, PatchLattice]:
    """Create the standard lattice fields with optional initial values."""
    initial = dict(initial or {})
    unknown = sorted(set(initial) - set(LATTICE_FIELDS))
    if unknown:
        raise ConfigurationError(f"Unknown lattice fields: {unknown}")
    return {name: PatchLattice(name, initial.get(name, 0.0)) for name in LATTICE_FIELDS}


# -----------------------------------------------------------------------------
# Scheduler
# -----------------------------------------------------------------------------

class StopHandle:
    """Deregistration handle returned by the scheduler."""

    def __init__(self) -> None:
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


@dataclass
class _Entry:
    action: Callable[["TickContext"], None]
    handle: StopHandle
    key: int


class TickScheduler:
    """Discrete-time scheduler with repeating steppables and one-shot actions."""

    def __init__(self) -> None:
        self.tick = 0
        self._repeating: list[_Entry] = []
        self._once: dict[int, list[_Entry]] = {}
        self._counter = 0

    def schedule_repeating(self, action: Callable[["TickContext"], None]) -> StopHandle:
        handle = StopHandle()
        self._repeating.append(_Entry(action, handle, self._next_key()))
        return handle

    def schedule_once(self, tick: int, action: Callable[["TickContext"], None]) -> StopHandle:
        if tick < self.tick:
            raise ValueError(f"Cannot schedule at past tick {tick} (now {self.tick})")
        handle = StopHandle()
        self._once.setdefault(int(tick), []).append(_Entry(action, handle, self._next_key()))
        return handle

    def _next_key(self) -> int:
        self._counter += 1
        return self._counter

    def pending(self) -> int:
        return sum(1 for e in self._repeating if not e.handle.stopped)

    def advance(self, ctx: "TickContext") -> None:
        """Run one-shot actions due now, then every live steppable once."""
        ctx.tick = self.tick
        for entry in self._once.pop(self.tick, []):
            if not entry.handle.stopped:
                entry.action(ctx)
                ctx.commit()
        self._repeating = [e for e in self._repeating if not e.handle.stopped]
        order = ctx.rng.permutation(len(self._repeating))
        entries = [self._repeating[i] for i in order]
        for entry in entries:
            if entry.handle.stopped:
                continue
            try:
                entry.action(ctx)
            except Exception:
                ctx.rollback()
                raise
            ctx.commit()
        self.tick += 1


# -----------------------------------------------------------------------------
# Tick context
# -----------------------------------------------------------------------------

@dataclass
class TickContext:
    """Everything an agent, process or module may touch during a step."""
    rng: np.random.Generator
    grid: PatchGrid
    lattices: dict[str, PatchLattice]
    scheduler: TickScheduler = field(default_factory=TickScheduler)
    factory: "CellFactory | None" = None
    tick: int = 0
    dt: float = 1.0
    events: list[tuple[int, str, Any]] = field(default_factory=list)
    _views: dict[str, LatticeView] = field(default_factory=dict, repr=False)

    def lattice(self, name: str) -> LatticeView:
        if name not in self._views:
            if name not in self.lattices:
                raise ConfigurationError(f"Unknown lattice field: {name}")
            self._views[name] = LatticeView(self.lattices[name])
        return self._views[name]

    def commit(self) -> None:
        for view in self._views.values():
            view.commit()

    def rollback(self) -> None:
        for view in self._views.values():
            view.rollback()

    def resolve_agent(self, agent_id: int | None) -> "CellAgent":
        agent = self.grid.get_agent(agent_id)
        if agent is None or agent.is_stopped:
            raise StaleReferenceError(-1 if agent_id is None else agent_id)
        return agent

    def record(self, kind: str, payload: Any) -> None:
        self.events.append((self.tick, kind, payload))

    def next_id(self) -> int:
        if self.factory is None:
            raise RuntimeError("TickContext has no cell factory to allocate ids")
        return self.factory.next_id()

    def schedule(self, agent: "CellAgent") -> None:
        """Register an agent with the scheduler."""
        agent.stop_handle = self.scheduler.schedule_repeating(agent.step)

    def tissue_neighbors(self, loc: PatchLocation, exclude: Iterable[int] = ()) -> list["CellAgent"]:
        """Non-effector agents at ``loc`` and its neighbours."""
        skip = set(exclude)
        out = []
        for where in [loc, *self.grid.get_neighbors(loc)]:
            for agent in self.grid.get_objects_at_location(where):
                if agent.id not in skip and not agent.variant.is_effector:
                    out.append(agent)
        return out
