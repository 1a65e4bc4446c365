"""Per-population cell parameters.

Parameters are addressed with slash-namespaced keys ("metabolism/BASAL_ENERGY").
Population configs override entries of the default table below; nested YAML
mappings are flattened to slash keys before lookup.

Units: volumes in um^3, heights in um, times in ticks (1 tick = 1 min), amounts
in fmol unless stated otherwise.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Iterator

from CellBehavior.errors import ConfigurationError


DEFAULT_PARAMETERS: dict[str, Any] = {
    # ----- Cell -----
    "CELL_VOLUME": 2250.0,
    "CELL_VOLUME_CV": 0.05,
    "CELL_HEIGHT": 8.7,
    "CELL_AGE": 0,
    "APOPTOSIS_AGE": 120960,
    "DIVISION_POTENTIAL": 50,
    "NECROTIC_FRACTION": 0.5,
    "SENESCENT_FRACTION": 0.5,
    "ENERGY_THRESHOLD": -50.0,
    # ----- Immune effector -----
    "EXHAUSTED_FRACTION": 0.5,
    "ANERGIC_FRACTION": 0.5,
    "PROLIFERATIVE_FRACTION": 0.5,
    "SELF_RECEPTORS": 5000,
    "SELF_RECEPTORS_START": 5000,
    "CARS": 50000,
    "SEARCH_ABILITY": 1,
    "CONTACT_FRACTION": 1e-3,
    "MAX_ANTIGEN_BINDING": 10,
    "BOUND_TIME": 20,
    "BOUND_RANGE": 5,
    # ----- Tissue antigens -----
    "CAR_ANTIGENS": 5000,
    "SELF_TARGETS": 5000,
    "SYNNOTCH_ANTIGENS": 5000,
    # ----- Binding -----
    "binding/MODEL": "kinetic",
    "binding/CAR_ANTIGEN_BINDING_RATE": 1e5,
    "binding/SELF_ANTIGEN_BINDING_RATE": 1e4,
    "binding/CAR_AFFINITY": 1e-8,
    "binding/CAR_ALPHA": 3.0,
    "binding/CAR_BETA": 0.01,
    "binding/SELF_RECEPTOR_AFFINITY": 1e-7,
    "binding/SELF_ALPHA": 3.0,
    "binding/SELF_BETA": 0.02,
    # ----- Metabolism -----
    "metabolism/BASAL_ENERGY": 0.001,
    "metabolism/PROLIFERATION_ENERGY": 0.001,
    "metabolism/MIGRATION_ENERGY": 0.00025,
    "metabolism/CELL_DENSITY": 1.3e-6,
    "metabolism/RATIO_GLUCOSE_BIOMASS": 5.5e3,
    "metabolism/OXYGEN_SOLUBILITY_TISSUE": 1.3e-6,
    "metabolism/METABOLIC_PREFERENCE": 0.3,
    "metabolism/CONVERSION_FRACTION": 0.25,
    "metabolism/MINIMUM_MASS_FRACTION": 0.5,
    "metabolism/RATIO_GLUCOSE_PYRUVATE": 0.5,
    "metabolism/LACTATE_RATE": 0.1,
    "metabolism/AUTOPHAGY_RATE": 1e-6,
    "metabolism/GLUCOSE_UPTAKE_RATE": 1.12,
    "metabolism/ATP_PRODUCTION_RATE": 8.0,
    "metabolism/INITIAL_GLUCOSE_CONCENTRATION": 0.005,
    "metabolism/CONSTANT_GLUCOSE_UPTAKE_RATE": 1000.0,
    "metabolism/CONSTANT_ATP_PRODUCTION_RATE": 3.0,
    "metabolism/CONSTANT_VOLUME_GROWTH_RATE": 4.0,
    "metabolism/META_PREF_IL2": 0.05,
    "metabolism/META_PREF_ACTIVE": 0.2,
    "metabolism/GLUC_UPTAKE_RATE_IL2": 0.1,
    "metabolism/GLUC_UPTAKE_RATE_ACTIVE": 0.3,
    "metabolism/FRAC_MASS_ACTIVE": 0.1,
    "metabolism/META_SWITCH_DELAY": 60,
    # ----- Signaling -----
    "signaling/MIGRATORY_THRESHOLD": 10.0,
    "signaling/TGFA_SECRETION": 5.0,
    "signaling/EGFR_SYNTHESIS": 5.0,
    # ----- Inflammation -----
    "inflammation/SHELL_THICKNESS": 1.0,
    "inflammation/IL2_RECEPTORS": 1500.0,
    "inflammation/IL2_SYNTHESIS_DELAY": 60,
    "inflammation/GRANZ_SYNTHESIS_DELAY": 60,
    # ----- Quorum sensing -----
    "quorum/ACTIVATION_THRESHOLD": 1e-6,
    # ----- Chemotherapy -----
    "chemotherapy/UPTAKE": 0.5,
    "chemotherapy/REMOVAL": 0.01,
    "chemotherapy/THRESHOLD": 1.0,
    # ----- SynNotch circuit -----
    "synnotch/VARIANT": "combinatorial",
    "synnotch/K_SYNNOTCH_ON": 1e6,
    "synnotch/K_SYNNOTCH_OFF": 1e-4,
    "synnotch/K_CAR_DEGRADE": 1e-4,
    "synnotch/K_CAR_GENERATION": 10.0,
    "synnotch/SYNNOTCHS": 10000,
    "synnotch/SYNNOTCH_THRESHOLD": 0.001,
    "synnotch/SYNNOTCH_ACTIVATION_DELAY": 120,
    "synnotch/HILL_COEFFICIENT": 4.4,
    "synnotch/HILL_CONSTANT": 20.0,
    # ----- Modules -----
    "proliferation/SYNTHESIS_DURATION": 580,
    "migration/MIGRATION_RATE": 0.25,
    "migration/ACCURACY": 0.8,
    "migration/AFFINITY": 0.5,
    "apoptosis/DEATH_DURATION": 60,
    "necrosis/DEATH_DURATION": 120,
}


def flatten_parameters(raw: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings into slash-separated keys."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        name = f"{prefix}/{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(flatten_parameters(value, name))
        else:
            flat[name] = value
    return flat


class CellParameters(Mapping):
    """Read-only parameter table with typed accessors."""

    def __init__(self, overrides: Mapping[str, Any] | None = None, strict: bool = True) -> None:
        values = dict(DEFAULT_PARAMETERS)
        if overrides:
            flat = flatten_parameters(overrides)
            unknown = sorted(k for k in flat if k not in DEFAULT_PARAMETERS)
            if strict and unknown:
                raise ConfigurationError(f"Unknown cell parameters: {unknown}")
            values.update(flat)
        self._values = values

    def __getitem__(self, key: str) -> Any:
        if key not in self._values:
            raise ConfigurationError(f"Missing required parameter: {key}")
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        changed = {k: v for k, v in self._values.items() if DEFAULT_PARAMETERS.get(k) != v}
        return f"CellParameters({changed})"

    def get_float(self, key: str) -> float:
        value = self[key]
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Parameter {key} must be numeric; got {value!r}") from exc

    def get_int(self, key: str) -> int:
        value = self.get_float(key)
        if not float(value).is_integer():
            raise ConfigurationError(f"Parameter {key} must be an integer; got {value!r}")
        return int(value)

    def get_str(self, key: str) -> str:
        value = self[key]
        if not isinstance(value, str):
            raise ConfigurationError(f"Parameter {key} must be a string; got {value!r}")
        return value

    def with_overrides(self, overrides: Mapping[str, Any] | None) -> "CellParameters":
        """Return a copy with the given entries replaced."""
        if not overrides:
            return self
        merged = {k: v for k, v in self._values.items() if DEFAULT_PARAMETERS.get(k) != v}
        merged.update(flatten_parameters(overrides))
        return CellParameters(merged)
