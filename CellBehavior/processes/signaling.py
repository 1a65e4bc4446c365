"""EGFR/TGFa/PLCg signaling networks setting the migratory flag.

Each tick the network is integrated with forward Euler over 60 min, starting
from the current intracellular concentrations (nM), the internal glucose
concentration and the local TGFa level. The fold change of active PLCg over
the tick is compared with the previous tick's fold change; a large jump in
fold change marks the cell MIGRATORY, otherwise PROLIFERATIVE.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING

import numpy as np

from CellBehavior.enums import ProcessDomain, SignalFlag
from CellBehavior.processes.base import EPSILON, Process
from CellBehavior.solver import euler

if TYPE_CHECKING:
    from CellBehavior.cell import CellAgent
    from CellBehavior.environment import TickContext

# Molecules to nM in a 2250 um^3 cell.
MOLEC_TO_NM = 1e9 / (6.022e23 * 2.25e-12)
TGFA_MW = 5.5
STEP_SIZE = 1.0 / 3.0
WINDOW = 60.0

PLCG = 1.0
WG = 200.0
WP = 5.0
WC = 1.0


def fold_change(pre: float, post: float) -> float:
    """Ratio of the larger to the smaller value (>= 1)."""
    low, high = sorted((pre, post))
    return high / max(low, EPSILON)


class SignalingProcess(Process):
    """Shared step and flag rule; subclasses supply the network."""

    domain = ProcessDomain.SIGNALING
    components: tuple[str, ...] = ()
    G_INT = 0
    T_EXT = 1
    P_ACTIVE = -1

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        self.migratory_threshold = self.params.get_float("signaling/MIGRATORY_THRESHOLD")
        self.tgfa_secretion = self.params.get_float("signaling/TGFA_SECRETION") * MOLEC_TO_NM / 60
        self.egfr_synthesis = self.params.get_float("signaling/EGFR_SYNTHESIS") * MOLEC_TO_NM / 60
        self.concs = np.zeros(len(self.components), dtype=np.float64)
        self.previous_fold = 1.0
        self.current_fold = 1.0

    @abstractmethod
    def equations(self, t: float, y: np.ndarray) -> np.ndarray:
        """Right-hand side of the network, dy/dt."""

    def step(self, cell: "CellAgent", ctx: "TickContext") -> None:
        tgfa = ctx.lattice("TGFA")
        metabolism = cell.processes.get(ProcessDomain.METABOLISM)
        glucose = metabolism.amounts[0] if metabolism is not None else 0.0

        self.concs[self.G_INT] = glucose / cell.volume * 1e9
        self.concs[self.T_EXT] = tgfa.get_average_value(cell.location) / TGFA_MW

        pre = float(self.concs[self.P_ACTIVE])
        self.concs = euler(self.equations, 0.0, self.concs, WINDOW, STEP_SIZE)
        post = float(self.concs[self.P_ACTIVE])

        self.current_fold = fold_change(pre, post)
        delta = max(self.current_fold / self.previous_fold, self.previous_fold / self.current_fold)
        cell.signal_flag = SignalFlag.MIGRATORY if delta > self.migratory_threshold else SignalFlag.PROLIFERATIVE
        self.previous_fold = self.current_fold

        tgfa.set_value(cell.location, max(float(self.concs[self.T_EXT]), 0.0) * TGFA_MW)

    def concentrations(self) -> dict[str, float]:
        return {name: float(self.concs[i]) for i, name in enumerate(self.components)}

    # Concentrations are intensive: both sides of a split keep the same values.
    def pools(self) -> dict[str, float]:
        return {}

    def _copy(self) -> "SignalingProcess":
        other = super()._copy()
        other.concs = self.concs.copy()
        return other

    def _scale(self, factor: float) -> None:
        pass


class SignalingSimple(SignalingProcess):
    version = "simple"
    components = (
        "glucose_internal",
        "tgfa_extracellular",
        "tgfa_egfr_cytoplasmic",
        "plcg_inactive",
        "plcg_active",
    )
    TE_CYTO, P_INACTIVE, P_ACTIVE = 2, 3, 4

    K1 = 0.003
    K2 = 0.0001
    K3 = 0.01
    K4 = 0.1
    K5 = 0.05

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        self.concs[self.P_INACTIVE] = self.K5 / (self.K4 + self.K5) * PLCG
        self.concs[self.P_ACTIVE] = self.K4 / (self.K4 + self.K5) * PLCG

    def equations(self, t, y):
        G, T, TE, PA = y[self.G_INT], y[self.T_EXT], y[self.TE_CYTO], y[self.P_ACTIVE]
        w_g = 1 + G / (WG + G)
        w_p = 1 + TE / (WP + TE)
        w_c = 1 - PA / (WC + PA)

        binding = self.K1 * T * w_g * w_c
        activation = self.K4 * (PLCG - PA) * w_p - self.K5 * PA

        dydt = np.zeros_like(y)
        dydt[self.T_EXT] = self.tgfa_secretion - binding - self.K3 * T
        dydt[self.TE_CYTO] = binding - self.K2 * TE
        dydt[self.P_INACTIVE] = -activation
        dydt[self.P_ACTIVE] = activation
        return dydt


class SignalingMedium(SignalingProcess):
    version = "medium"
    components = (
        "glucose_internal",
        "tgfa_extracellular",
        "egfr_membrane",
        "tgfa_egfr_membrane_inactive",
        "tgfa_egfr_membrane_active",
        "tgfa_egfr_cytoplasmic",
        "plcg_inactive",
        "plcg_active",
    )
    E_MEM, TE_MEM, TE_MEM_P, TE_CYTO, P_INACTIVE, P_ACTIVE = 2, 3, 4, 5, 6, 7

    MEMBRANE = 25.0
    K1 = 0.003
    K_1 = 0.0038
    K2 = 0.001
    K_2 = 0.000001
    K3 = 0.00005
    K4 = 0.00005
    K5 = 0.01
    K6 = 0.0001
    K7 = 0.01
    K8 = 0.1
    K9 = 0.05

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        self.concs[self.E_MEM] = self.MEMBRANE
        self.concs[self.P_INACTIVE] = self.K9 / (self.K8 + self.K9) * PLCG
        self.concs[self.P_ACTIVE] = self.K8 / (self.K8 + self.K9) * PLCG

    def equations(self, t, y):
        G, T, E = y[self.G_INT], y[self.T_EXT], y[self.E_MEM]
        TE, TEP, TEC, PA = y[self.TE_MEM], y[self.TE_MEM_P], y[self.TE_CYTO], y[self.P_ACTIVE]
        w_g = 1 + G / (WG + G)
        w_p = 1 + TEP / (WP + TEP)
        w_c = 1 + PA / (WC + PA)

        bind = self.K1 * T * E
        unbind = self.K_1 * TE
        phos = self.K2 * TE * w_g - self.K_2 * TEP * w_c
        activation = self.K8 * (PLCG - PA) * w_p - self.K9 * PA

        dydt = np.zeros_like(y)
        dydt[self.T_EXT] = unbind - bind - self.K7 * T + self.tgfa_secretion
        dydt[self.E_MEM] = unbind - bind - self.K6 * E + self.egfr_synthesis
        dydt[self.TE_MEM] = 2 * bind - 2 * unbind - phos - self.K3 * TE
        dydt[self.TE_MEM_P] = phos - self.K4 * TEP
        dydt[self.TE_CYTO] = self.K3 * TE + self.K4 * TEP - self.K5 * TEC
        dydt[self.P_INACTIVE] = -activation
        dydt[self.P_ACTIVE] = activation
        return dydt


class SignalingComplex(SignalingProcess):
    """13-component network with receptor recycling and transcription."""

    version = "complex"
    components = (
        "glucose_internal",
        "tgfa_extracellular",
        "egfr_membrane",
        "tgfa_egfr_membrane_inactive",
        "tgfa_egfr_membrane_active",
        "tgfa_egfr_cytoplasmic",
        "egfr_cytoplasmic",
        "tgfa_cytoplasmic",
        "egfr_rna",
        "tgfa_rna",
        "plcg_inactive",
        "plcg_active",
        "nucleotide_pool",
    )
    (E_MEM, TE_MEM, TE_MEM_P, TE_CYTO, E_CYTO, T_CYTO,
     E_RNA, T_RNA, P_INACTIVE, P_ACTIVE, POOL) = range(2, 13)

    MEMBRANE = 25.0
    CYTOPLASM = 5.0
    NUCLEOTIDES = 5.0
    WE = 2.0
    WT = 2.0

    K1 = 0.003
    K_1 = 0.0038
    K2 = 0.001
    K_2 = 0.000001
    K3 = 0.00005
    K4 = 0.00005
    K5 = 0.01
    K_5 = 0.000014
    K6 = 0.000167
    K7 = 0.000167
    K8 = 0.005
    K_8 = 0.00005
    K9 = 1.0
    K10 = 0.0001
    K11 = 0.01
    K12 = 0.1
    K13 = 0.05

    def __init__(self, cell: "CellAgent") -> None:
        super().__init__(cell)
        scale = MOLEC_TO_NM / 60 / self.NUCLEOTIDES
        # Translation rates follow the configured synthesis and secretion rates.
        self.k14 = self.egfr_synthesis / self.NUCLEOTIDES
        self.k15 = self.tgfa_secretion / self.NUCLEOTIDES
        self.k16 = 2.17 * scale
        self.k17 = 12.0 * scale
        self.k18 = 0.0012 * scale
        self.k19 = 0.0012 * scale

        self.concs[self.E_MEM] = self.MEMBRANE
        self.concs[self.T_CYTO] = self.CYTOPLASM
        self.concs[self.E_CYTO] = self.CYTOPLASM
        self.concs[self.E_RNA] = self.NUCLEOTIDES / 2
        self.concs[self.T_RNA] = self.NUCLEOTIDES / 2
        self.concs[self.P_INACTIVE] = self.K13 / (self.K12 + self.K13) * PLCG
        self.concs[self.P_ACTIVE] = self.K12 / (self.K12 + self.K13) * PLCG
        self.concs[self.POOL] = self.NUCLEOTIDES

    def equations(self, t, y):
        G, T, E = y[self.G_INT], y[self.T_EXT], y[self.E_MEM]
        TE, TEP, TEC = y[self.TE_MEM], y[self.TE_MEM_P], y[self.TE_CYTO]
        EC, TC = y[self.E_CYTO], y[self.T_CYTO]
        ER, TR = y[self.E_RNA], y[self.T_RNA]
        PA, POOL = y[self.P_ACTIVE], y[self.POOL]

        w_g = 1 + G / (WG + G)
        w_e = 1 - TEP / (self.WE + TEP)
        w_t = 1 + TEP / (self.WT + TEP)
        w_p = 1 + TEP / (WP + TEP)
        w_c = 1 + PA / (WC + PA)

        bind = self.K1 * T * E
        unbind = self.K_1 * TE
        phos = self.K2 * TE * w_g - self.K_2 * TEP * w_c
        dissociation = self.K5 * TEC - self.K_5 * EC * TC
        activation = self.K12 * (PLCG - PA) * w_p - self.K13 * PA
        e_transcription = self.k16 * POOL * w_e
        t_transcription = self.k17 * POOL * w_t

        dydt = np.zeros_like(y)
        dydt[self.T_EXT] = unbind - bind + self.K9 * TC - self.K11 * T
        dydt[self.E_MEM] = unbind - bind + self.K8 * EC - self.K_8 * E - self.K10 * E
        dydt[self.TE_MEM] = 2 * bind - 2 * unbind - phos - self.K3 * TE
        dydt[self.TE_MEM_P] = phos - self.K4 * TEP
        dydt[self.TE_CYTO] = self.K3 * TE + self.K4 * TEP - 2 * dissociation
        dydt[self.E_CYTO] = dissociation + self.k14 * ER - self.K6 * EC - self.K8 * EC + self.K_8 * E
        dydt[self.T_CYTO] = dissociation + self.k15 * TR - self.K7 * TC - self.K9 * TC
        dydt[self.E_RNA] = e_transcription - self.k18 * ER
        dydt[self.T_RNA] = t_transcription - self.k19 * TR
        dydt[self.P_INACTIVE] = -activation
        dydt[self.P_ACTIVE] = activation
        dydt[self.POOL] = -e_transcription - t_transcription + self.k18 * ER + self.k19 * TR
        return dydt


SIGNALING_VERSIONS = {cls.version: cls for cls in (SignalingSimple, SignalingMedium, SignalingComplex)}
