# -*- coding: utf-8 -*-

"""

Unit bookkeeping for code units.

A RAMSES run stores everything in code units defined by three base factors
(unit_l [cm], unit_d [g/cm^3], unit_t [s]). `Scale` turns those into a lookup
table of multiplicative factors, code value * factor = physical value.

Spatial parameters (centers, ranges, pixel sizes) are always handed to the
engines together with a length unit; the helpers at the bottom of this module
convert them to absolute code-unit coordinates.

"""

from __future__ import annotations

import math
from typing import Dict, Iterator, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import ConfigurationError, UnitResolutionError, UnknownUnitError

STANDARD = "standard"

BOX_CENTER_TOKENS = ("bc", "boxcenter", "box-center")

# cgs constants
CONSTANTS: Dict[str, float] = {
    "pc": 3.08567758128e18,       # [cm]
    "Au": 1.495978707e13,         # [cm]
    "ly": 9.4607304725808e17,     # [cm]
    "Msol": 1.9891e33,            # [g]
    "Mearth": 5.9722e27,          # [g]
    "mH": 1.66e-24,               # [g] as used by RAMSES
    "kB": 1.380649e-16,           # [erg/K]
    "G": 6.67430e-8,              # [cm^3 g^-1 s^-2]
    "yr": 3.15576e7,              # [s]
    "eV": 1.602176634e-12,        # [erg]
}

# hydrogen mass fraction (RAMSES cooling module)
X_FRAC = 0.76

LENGTH_UNITS = ("Mpc", "kpc", "pc", "mpc", "ly", "Au", "km", "m", "cm", "mm", "um")


def _build_factors(unit_l: float, unit_d: float, unit_t: float) -> Dict[str, float]:
    """
    Build the code -> physical factor table for the given base units.
    """
    c = CONSTANTS
    pc = c["pc"]
    unit_m = unit_d * unit_l ** 3
    unit_v = unit_l / unit_t

    f: Dict[str, float] = {}

    # lengths
    f["Mpc"] = unit_l / pc / 1e6
    f["kpc"] = unit_l / pc / 1e3
    f["pc"] = unit_l / pc
    f["mpc"] = unit_l / pc * 1e3
    f["ly"] = unit_l / c["ly"]
    f["Au"] = unit_l / c["Au"]
    f["km"] = unit_l / 1e5
    f["m"] = unit_l / 1e2
    f["cm"] = unit_l
    f["mm"] = unit_l * 10.0
    f["um"] = unit_l * 1e4

    # areas and volumes
    for name in LENGTH_UNITS:
        f[name + "2"] = f[name] ** 2
        f[name + "3"] = f[name] ** 3

    # densities
    f["g_cm3"] = unit_d
    f["kg_m3"] = unit_d * 1e3
    f["Msol_pc3"] = unit_d * pc ** 3 / c["Msol"]
    f["nH"] = X_FRAC / c["mH"] * unit_d

    # surface densities
    f["g_cm2"] = unit_d * unit_l
    f["Msol_pc2"] = unit_d * unit_l * pc ** 2 / c["Msol"]
    f["Msol_kpc2"] = f["Msol_pc2"] * 1e6
    f["NH_cm2"] = unit_d * unit_l / c["mH"]

    # masses
    f["g"] = unit_m
    f["kg"] = unit_m / 1e3
    f["Msol"] = unit_m / c["Msol"]
    f["Mearth"] = unit_m / c["Mearth"]

    # velocities
    f["cm_s"] = unit_v
    f["m_s"] = unit_v / 1e2
    f["km_s"] = unit_v / 1e5
    f["cm2_s2"] = unit_v ** 2
    f["km2_s2"] = unit_v ** 2 / 1e10

    # times
    f["s"] = unit_t
    f["yr"] = unit_t / c["yr"]
    f["Myr"] = unit_t / c["yr"] / 1e6
    f["Gyr"] = unit_t / c["yr"] / 1e9

    # energies
    f["erg"] = unit_m * unit_v ** 2
    f["J"] = f["erg"] / 1e7
    f["eV"] = f["erg"] / c["eV"]
    f["keV"] = f["eV"] / 1e3

    # pressure and temperature
    f["Ba"] = unit_d * unit_v ** 2
    f["g_cm_s2"] = f["Ba"]
    f["K_cm3"] = f["Ba"] / c["kB"]
    f["K_mu"] = c["mH"] / c["kB"] * unit_v ** 2
    f["K"] = f["K_mu"] / X_FRAC

    # angular momentum
    f["cm2_s"] = unit_l * unit_v
    f["kpc_km_s"] = f["kpc"] * f["km_s"]
    f["g_cm2_s"] = unit_m * unit_l * unit_v

    # magnetic field
    f["Gauss"] = math.sqrt(4.0 * math.pi * unit_d) * unit_v
    f["muG"] = f["Gauss"] * 1e6

    # dimensionless
    f["dimensionless"] = 1.0
    f["rad"] = 1.0
    f["deg"] = 180.0 / math.pi

    return f


class Scale:
    """
    Lookup table unit-name -> factor converting code units to physical units.

    The token "standard" (and None) always resolves to 1.0, i.e. code units.
    """

    def __init__(
        self,
        factors: Optional[Dict[str, float]] = None,
        unit_l: float = 1.0,
        unit_d: float = 1.0,
        unit_t: float = 1.0,
    ):
        self.unit_l = float(unit_l)
        self.unit_d = float(unit_d)
        self.unit_t = float(unit_t)

        if factors is None:
            factors = _build_factors(self.unit_l, self.unit_d, self.unit_t)
        self._factors: Dict[str, float] = {str(k): float(v) for k, v in factors.items()}

    @classmethod
    def from_code_units(cls, unit_l: float, unit_d: float, unit_t: float) -> "Scale":
        return cls(None, unit_l=unit_l, unit_d=unit_d, unit_t=unit_t)

    def factor(self, unit: Optional[str]) -> float:
        """
        Return the factor for `unit`.

        Raises:
            UnknownUnitError if the token is not registered.
        """
        if unit is None or unit == STANDARD:
            return 1.0
        try:
            return self._factors[unit]
        except KeyError:
            raise UnknownUnitError(unit) from None

    def length_factor(self, unit: Optional[str]) -> float:
        """
        Like `factor`, but only accepts length units.

        Raises:
            UnitResolutionError for anything that is not a registered length.
        """
        if unit is None or unit == STANDARD:
            return 1.0
        if unit not in LENGTH_UNITS or unit not in self._factors:
            raise UnitResolutionError(f"Cannot resolve '{unit}' as a length unit")
        return self._factors[unit]

    def to_code_length(self, value: float, unit: Optional[str]) -> float:
        return float(value) / self.length_factor(unit)

    def as_dict(self) -> Dict[str, float]:
        return dict(self._factors)

    def __getitem__(self, unit: str) -> float:
        return self.factor(unit)

    def __contains__(self, unit: object) -> bool:
        return unit == STANDARD or unit in self._factors

    def __iter__(self) -> Iterator[str]:
        return iter(self._factors)

    def __len__(self) -> int:
        return len(self._factors)

    def __repr__(self) -> str:
        return (
            f"Scale(unit_l={self.unit_l:.6g}, unit_d={self.unit_d:.6g}, "
            f"unit_t={self.unit_t:.6g}, {len(self._factors)} units)"
        )


CenterSpec = Union[str, Sequence[Union[str, float]], None]


def is_box_center(value) -> bool:
    return isinstance(value, str) and value.lower() in BOX_CENTER_TOKENS


def resolve_center(center: CenterSpec, unit: Optional[str], scale: Scale, boxlen: float) -> np.ndarray:
    """
    Convert a center specification to absolute code-unit coordinates.

    `center` is a 3-sequence whose components are numbers (in `unit`) or the
    box-center token, a single box-center token, or None for the origin.
    """
    if center is None:
        return np.zeros(3)

    if is_box_center(center):
        return np.full(3, 0.5 * boxlen)

    if isinstance(center, str):
        raise ConfigurationError(f"Invalid center specification: '{center}'")

    comps = list(center)
    if len(comps) == 1 and is_box_center(comps[0]):
        return np.full(3, 0.5 * boxlen)
    if len(comps) != 3:
        raise ConfigurationError(f"Center needs 3 components, got {len(comps)}")

    resolved = np.empty(3)
    for i, comp in enumerate(comps):
        if is_box_center(comp):
            resolved[i] = 0.5 * boxlen
        elif isinstance(comp, str):
            raise ConfigurationError(f"Invalid center component: '{comp}'")
        else:
            resolved[i] = scale.to_code_length(comp, unit)
    return resolved


def resolve_range(
    rng: Optional[Sequence[Optional[float]]],
    center: float,
    unit: Optional[str],
    scale: Scale,
    lower: float,
    upper: float,
) -> Tuple[float, float]:
    """
    Convert a range relative to `center` (in `unit`) to absolute code units.

    Missing bounds fall back to `lower` / `upper`.
    """
    if rng is None:
        return (lower, upper)

    rng = tuple(rng)
    if len(rng) != 2:
        raise ConfigurationError(f"Range needs 2 entries (min, max), got {len(rng)}")

    lo, hi = rng
    lo = lower if lo is None else center + scale.to_code_length(lo, unit)
    hi = upper if hi is None else center + scale.to_code_length(hi, unit)

    if lo > hi:
        raise ConfigurationError(f"Range min ({lo:.6g}) is greater than max ({hi:.6g})")

    return (lo, hi)
