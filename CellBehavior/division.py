"""Division protocol shared by every proliferating variant.

The parent spends one division and builds the daughter's container. Volume
and energy are split by a fraction drawn near one half:
    split = U / 10 + 0.45   (parent keeps split, daughter gets 1 - split)
Every process of the parent is split with the daughter's share, and the
returned parts replace the daughter's freshly built processes.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from CellBehavior.enums import CellState

if TYPE_CHECKING:
    from CellBehavior.cell import CellAgent
    from CellBehavior.environment import PatchLocation, TickContext

logger = logging.getLogger(__name__)


def draw_split(rng) -> float:
    return rng.random() / 10 + 0.45


def divide(
    parent: "CellAgent",
    location: "PatchLocation",
    ctx: "TickContext",
    cycle: Optional[int] = None,
) -> "CellAgent":
    """Divide ``parent`` and place the daughter at ``location``."""
    if cycle is not None:
        parent.cycles.append(int(cycle))
    parent.set_state(CellState.UNDEFINED)

    container = parent.make(ctx.next_id(), ctx.rng)
    daughter = container.convert(ctx.factory, location, ctx.rng)

    split = draw_split(ctx.rng)
    volume, energy = parent.volume, parent.energy
    parent.volume = volume * split
    parent.energy = energy * split
    daughter.volume = volume * (1 - split)
    daughter.energy = energy * (1 - split)

    for domain, process in parent.processes.items():
        daughter.processes[domain] = process.split(1 - split)

    ctx.grid.add_object(daughter, location)
    ctx.schedule(daughter)
    ctx.record(
        "division",
        {"parent": parent.id, "daughter": daughter.id, "pop": parent.pop, "location": location.to_list()},
    )
    logger.debug("Agent %s divided into %s at %s", parent.id, daughter.id, location.to_list())
    return daughter
