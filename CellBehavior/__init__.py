"""Agent-based cell behavior engine for patch tissue simulations.

Tissue, cancer and CAR-T effector agents live on a square patch grid and
exchange molecules with per-location lattices. Each agent carries
intracellular process models (metabolism, signaling, inflammation, quorum
sensing, chemotherapy), a state machine selected by its variant, and at most
one timed behavior module.

Main entry points:
- run_simulation: Command-line interface for running simulations
- CellBehavior.simulator: PatchSimulator class for programmatic use
- CellBehavior.io: I/O utilities for loading configs and saving results
- CellBehavior.cell: CellAgent and CellContainer
- CellBehavior.processes: intracellular process models
"""

from CellBehavior.binding import BindingEngine, binding_probability, sample_waiting_time, unbind
from CellBehavior.cell import CellAgent, CellContainer
from CellBehavior.config import PopulationConfig, SimulationConfig
from CellBehavior.division import divide
from CellBehavior.enums import BindingFlag, Capability, CellState, CellVariant, ProcessDomain, SignalFlag
from CellBehavior.environment import PatchGrid, PatchLattice, PatchLocation, TickContext, TickScheduler
from CellBehavior.errors import (
    CellBehaviorError,
    ConfigurationError,
    InvariantViolation,
    StaleReferenceError,
)
from CellBehavior.factory import CellFactory
from CellBehavior.io import (
    load_containers_json,
    load_simulation_config,
    load_snapshot_json,
    save_containers_json,
    save_snapshot_json,
)
from CellBehavior.parameters import CellParameters
from CellBehavior.simulator import PatchSimulator
from CellBehavior.synnotch import BindingEvent, SynNotchCircuit, hill

__all__ = [
    # Core classes
    "CellAgent",
    "CellContainer",
    "CellFactory",
    "CellParameters",
    "PatchSimulator",
    "PopulationConfig",
    "SimulationConfig",
    "PatchGrid",
    "PatchLattice",
    "PatchLocation",
    "TickContext",
    "TickScheduler",
    "BindingEngine",
    "BindingEvent",
    "SynNotchCircuit",
    # Enumerations
    "BindingFlag",
    "Capability",
    "CellState",
    "CellVariant",
    "ProcessDomain",
    "SignalFlag",
    # Errors
    "CellBehaviorError",
    "ConfigurationError",
    "InvariantViolation",
    "StaleReferenceError",
    # Functions
    "binding_probability",
    "sample_waiting_time",
    "unbind",
    "divide",
    "hill",
    "load_simulation_config",
    "load_snapshot_json",
    "save_snapshot_json",
    "load_containers_json",
    "save_containers_json",
]
