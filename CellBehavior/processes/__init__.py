"""Intracellular process models and the version registry used by the factory."""

from __future__ import annotations

from typing import TYPE_CHECKING

from CellBehavior.enums import ProcessDomain
from CellBehavior.errors import ConfigurationError
from CellBehavior.processes.base import EPSILON, Process
from CellBehavior.processes.chemotherapy import CHEMOTHERAPY_VERSIONS, Chemotherapy
from CellBehavior.processes.inflammation import (
    INFLAMMATION_VERSIONS,
    InflammationCD4,
    InflammationCD8,
    InflammationCombined,
    InflammationProcess,
)
from CellBehavior.processes.metabolism import (
    METABOLISM_VERSIONS,
    MetabolismCART,
    MetabolismComplex,
    MetabolismMedium,
    MetabolismProcess,
    MetabolismRandom,
    MetabolismSimple,
)
from CellBehavior.processes.quorum import QUORUM_VERSIONS, QuorumSink, QuorumSource
from CellBehavior.processes.signaling import (
    SIGNALING_VERSIONS,
    SignalingComplex,
    SignalingMedium,
    SignalingProcess,
    SignalingSimple,
)

if TYPE_CHECKING:
    from CellBehavior.cell import CellAgent

PROCESS_VERSIONS: dict[ProcessDomain, dict[str, type[Process]]] = {
    ProcessDomain.METABOLISM: METABOLISM_VERSIONS,
    ProcessDomain.SIGNALING: SIGNALING_VERSIONS,
    ProcessDomain.INFLAMMATION: INFLAMMATION_VERSIONS,
    ProcessDomain.QUORUM: QUORUM_VERSIONS,
    ProcessDomain.CHEMOTHERAPY: CHEMOTHERAPY_VERSIONS,
}


def make_process(domain: ProcessDomain | str, version: str, cell: "CellAgent") -> Process:
    """Instantiate the ``version`` model of ``domain`` for ``cell``."""
    try:
        domain = ProcessDomain(domain) if not isinstance(domain, ProcessDomain) else domain
    except ValueError as exc:
        raise ConfigurationError(f"Unknown process domain: {domain!r}") from exc
    versions = PROCESS_VERSIONS[domain]
    key = str(version).strip().lower()
    if key not in versions:
        raise ConfigurationError(
            f"Unknown {domain.value} version {version!r}; expected one of {sorted(versions)}"
        )
    return versions[key](cell)


__all__ = [
    # Core classes
    "Process",
    "MetabolismProcess",
    "MetabolismRandom",
    "MetabolismSimple",
    "MetabolismMedium",
    "MetabolismComplex",
    "MetabolismCART",
    "SignalingProcess",
    "SignalingSimple",
    "SignalingMedium",
    "SignalingComplex",
    "InflammationProcess",
    "InflammationCD4",
    "InflammationCD8",
    "InflammationCombined",
    "QuorumSource",
    "QuorumSink",
    "Chemotherapy",
    # Functions
    "make_process",
    # Constants
    "EPSILON",
    "PROCESS_VERSIONS",
]
