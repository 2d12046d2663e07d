# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
FieldEvaluator
──────────────────────────────────────────────────────────────────────────────
Base and derived per-cell quantities.

Base fields are columns of a CellTable. Derived fields are pure functions of a
row, the adiabatic index `gamma` and a reference center; they are registered
in DERIVED_FIELDS together with the fields they depend on, which lets the
evaluator report missing prerequisites before doing any arithmetic.

All values are returned in code units. `FieldEvaluator.evaluate` applies a
unit factor from the table's Scale on top.

Coordinate-dependent fields use positions relative to the center; the
cylinder axis is the z axis of the box.

"""

from __future__ import annotations

import math
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import ConfigurationError, MissingPrerequisite, UnknownField
from .table import CellTable
from .units import CONSTANTS, STANDARD, resolve_center

DEFAULT_GAMMA = 5.0 / 3.0

Rows = Union[None, int, np.ndarray, Sequence[int]]


class DerivedField:
    """Registry entry: name, direct dependencies and the function computing it."""

    def __init__(self, name: str, requires: Tuple[str, ...], func: Callable, uses_center: bool):
        self.name = name
        self.requires = requires
        self.func = func
        self.uses_center = uses_center

    def __repr__(self) -> str:
        return f"DerivedField({self.name!r}, requires={self.requires})"


DERIVED_FIELDS: Dict[str, DerivedField] = {}


def derived(name: str, requires: Iterable[str] = (), center: bool = False):
    """Register a derived field computed by the decorated function."""

    def register(func):
        DERIVED_FIELDS[name] = DerivedField(name, tuple(requires), func, center)
        return func

    return register


def _safe_div(num, den) -> np.ndarray:
    # zero radius -> 0 instead of NaN
    num = np.asarray(num, dtype=float)
    den = np.asarray(den, dtype=float)
    out = np.zeros(np.broadcast(num, den).shape)
    np.divide(num, den, out=out, where=den != 0)
    return out


class _Evaluation:
    """
    One evaluation pass over a fixed set of rows and a fixed center.

    Intermediate results are memoized per field for the lifetime of the pass
    only, so nothing is shared between calls or threads.
    """

    def __init__(self, table: CellTable, rows, center: np.ndarray, gamma: float):
        self.table = table
        self.rows = rows
        self.center = center
        self.gamma = gamma
        self._cache: Dict[str, np.ndarray] = {}

    def base(self, name: str) -> np.ndarray:
        col = self.table.column(name)
        if self.rows is not None:
            col = col[self.rows]
        return col

    def __call__(self, name: str) -> np.ndarray:
        if name in self._cache:
            return self._cache[name]

        if self.table.has_column(name):
            value = self.base(name)
        else:
            entry = DERIVED_FIELDS.get(name)
            if entry is None:
                raise UnknownField(name, self.table.schema)
            value = entry.func(self)

        self._cache[name] = value
        return value


# ──────────────────────────────────────────────────────────────
# Geometry
# ──────────────────────────────────────────────────────────────

@derived("cellsize", requires=("level",))
def _cellsize(ev):
    return ev.table.boxlen / np.exp2(ev("level"))


@derived("volume", requires=("cellsize",))
def _volume(ev):
    return ev("cellsize") ** 3


@derived("x", requires=("cx", "cellsize"), center=True)
def _x(ev):
    return (ev("cx") - 0.5) * ev("cellsize") - ev.center[0]


@derived("y", requires=("cy", "cellsize"), center=True)
def _y(ev):
    return (ev("cy") - 0.5) * ev("cellsize") - ev.center[1]


@derived("z", requires=("cz", "cellsize"), center=True)
def _z(ev):
    return (ev("cz") - 0.5) * ev("cellsize") - ev.center[2]


@derived("r_cylinder", requires=("x", "y"), center=True)
def _r_cylinder(ev):
    return np.sqrt(ev("x") ** 2 + ev("y") ** 2)


@derived("r_sphere", requires=("x", "y", "z"), center=True)
def _r_sphere(ev):
    return np.sqrt(ev("x") ** 2 + ev("y") ** 2 + ev("z") ** 2)


@derived("phi", requires=("x", "y"), center=True)
def _phi(ev):
    return np.mod(np.arctan2(ev("y"), ev("x")), 2.0 * math.pi)


# ──────────────────────────────────────────────────────────────
# Mass and thermodynamics
# ──────────────────────────────────────────────────────────────

@derived("mass", requires=("rho", "volume"))
def _mass(ev):
    return ev("rho") * ev("volume")


@derived("cs", requires=("p", "rho"))
def _cs(ev):
    return np.sqrt(ev.gamma * ev("p") / ev("rho"))


@derived("T", requires=("p", "rho"))
def _temperature(ev):
    return ev("p") / ev("rho")


@derived("entropy_index", requires=("p", "rho"))
def _entropy_index(ev):
    return ev("p") / ev("rho") ** ev.gamma


@derived("etherm", requires=("p", "volume"))
def _etherm(ev):
    return ev("p") * ev("volume")


@derived("freefall_time", requires=("rho",))
def _freefall_time(ev):
    scale = ev.table.scale
    rho_cgs = ev("rho") * scale.unit_d
    return np.sqrt(3.0 * math.pi / (32.0 * CONSTANTS["G"] * rho_cgs)) / scale.unit_t


@derived("jeanslength", requires=("cs", "freefall_time"))
def _jeanslength(ev):
    # cs [code] * t_ff [code] is already a code length
    return ev("cs") * ev("freefall_time")


@derived("jeansnumber", requires=("jeanslength", "cellsize"))
def _jeansnumber(ev):
    return ev("jeanslength") / ev("cellsize")


# ──────────────────────────────────────────────────────────────
# Velocities
# ──────────────────────────────────────────────────────────────

@derived("v2", requires=("vx", "vy", "vz"))
def _v2(ev):
    return ev("vx") ** 2 + ev("vy") ** 2 + ev("vz") ** 2


@derived("v", requires=("v2",))
def _v(ev):
    return np.sqrt(ev("v2"))


@derived("vx2", requires=("vx",))
def _vx2(ev):
    return ev("vx") ** 2


@derived("vy2", requires=("vy",))
def _vy2(ev):
    return ev("vy") ** 2


@derived("vz2", requires=("vz",))
def _vz2(ev):
    return ev("vz") ** 2


@derived("ekin", requires=("mass", "v2"))
def _ekin(ev):
    return 0.5 * ev("mass") * ev("v2")


@derived("vr_cylinder", requires=("x", "y", "vx", "vy", "r_cylinder"), center=True)
def _vr_cylinder(ev):
    return _safe_div(ev("x") * ev("vx") + ev("y") * ev("vy"), ev("r_cylinder"))


@derived("vphi_cylinder", requires=("x", "y", "vx", "vy", "r_cylinder"), center=True)
def _vphi_cylinder(ev):
    return _safe_div(ev("x") * ev("vy") - ev("y") * ev("vx"), ev("r_cylinder"))


@derived("vr_cylinder2", requires=("vr_cylinder",), center=True)
def _vr_cylinder2(ev):
    return ev("vr_cylinder") ** 2


@derived("vphi_cylinder2", requires=("vphi_cylinder",), center=True)
def _vphi_cylinder2(ev):
    return ev("vphi_cylinder") ** 2


@derived("vr_sphere", requires=("x", "y", "z", "vx", "vy", "vz", "r_sphere"), center=True)
def _vr_sphere(ev):
    num = ev("x") * ev("vx") + ev("y") * ev("vy") + ev("z") * ev("vz")
    return _safe_div(num, ev("r_sphere"))


@derived("vtheta_sphere", requires=("x", "y", "z", "vx", "vy", "vz", "r_sphere", "r_cylinder"), center=True)
def _vtheta_sphere(ev):
    x, y, z = ev("x"), ev("y"), ev("z")
    num = z * (x * ev("vx") + y * ev("vy")) - (x ** 2 + y ** 2) * ev("vz")
    return _safe_div(num, ev("r_sphere") * ev("r_cylinder"))


@derived("vphi_sphere", requires=("vphi_cylinder",), center=True)
def _vphi_sphere(ev):
    return ev("vphi_cylinder")


# ──────────────────────────────────────────────────────────────
# Angular momentum
# ──────────────────────────────────────────────────────────────

@derived("hx", requires=("y", "z", "vy", "vz"), center=True)
def _hx(ev):
    return ev("y") * ev("vz") - ev("z") * ev("vy")


@derived("hy", requires=("x", "z", "vx", "vz"), center=True)
def _hy(ev):
    return ev("z") * ev("vx") - ev("x") * ev("vz")


@derived("hz", requires=("x", "y", "vx", "vy"), center=True)
def _hz(ev):
    return ev("x") * ev("vy") - ev("y") * ev("vx")


@derived("h", requires=("hx", "hy", "hz"), center=True)
def _h(ev):
    return np.sqrt(ev("hx") ** 2 + ev("hy") ** 2 + ev("hz") ** 2)


@derived("lx", requires=("mass", "hx"), center=True)
def _lx(ev):
    return ev("mass") * ev("hx")


@derived("ly", requires=("mass", "hy"), center=True)
def _ly(ev):
    return ev("mass") * ev("hy")


@derived("lz", requires=("mass", "hz"), center=True)
def _lz(ev):
    return ev("mass") * ev("hz")


@derived("l", requires=("mass", "h"), center=True)
def _l(ev):
    return ev("mass") * ev("h")


# ──────────────────────────────────────────────────────────────
# Mach numbers
# ──────────────────────────────────────────────────────────────

@derived("mach", requires=("v", "cs"))
def _mach(ev):
    return ev("v") / ev("cs")


@derived("machx", requires=("vx", "cs"))
def _machx(ev):
    return ev("vx") / ev("cs")


@derived("machy", requires=("vy", "cs"))
def _machy(ev):
    return ev("vy") / ev("cs")


@derived("machz", requires=("vz", "cs"))
def _machz(ev):
    return ev("vz") / ev("cs")


@derived("mach_r_cylinder", requires=("vr_cylinder", "cs"), center=True)
def _mach_r_cylinder(ev):
    return ev("vr_cylinder") / ev("cs")


@derived("mach_phi_cylinder", requires=("vphi_cylinder", "cs"), center=True)
def _mach_phi_cylinder(ev):
    return ev("vphi_cylinder") / ev("cs")


@derived("mach_r_sphere", requires=("vr_sphere", "cs"), center=True)
def _mach_r_sphere(ev):
    return ev("vr_sphere") / ev("cs")


@derived("v_alfven", requires=("bx", "by", "bz", "rho"))
def _v_alfven(ev):
    # code units: v_A = |B| / sqrt(rho)
    b = np.sqrt(ev("bx") ** 2 + ev("by") ** 2 + ev("bz") ** 2)
    return b / np.sqrt(ev("rho"))


@derived("mach_alfven", requires=("v", "v_alfven"))
def _mach_alfven(ev):
    return ev("v") / ev("v_alfven")


@derived("mach_fast", requires=("v", "cs", "v_alfven"))
def _mach_fast(ev):
    return ev("v") / np.sqrt(ev("cs") ** 2 + ev("v_alfven") ** 2)


class FieldEvaluator:
    """
    Evaluate base and derived fields of a CellTable.

    The evaluator holds no mutable state; the adiabatic index is fixed at
    construction, so one instance can be shared by any number of threads.

    Args:
        gamma: adiabatic index used by sound speed and entropy fields.
    """

    def __init__(self, gamma: float = DEFAULT_GAMMA):
        self.gamma = float(gamma)

    @classmethod
    def for_table(cls, table: CellTable) -> "FieldEvaluator":
        """Evaluator using the `gamma` recorded in the table metadata, if any."""
        return cls(gamma=float(table.info.get("gamma", DEFAULT_GAMMA)))

    # ──────────────────────────────────────────────────────────────
    # Validation
    # ──────────────────────────────────────────────────────────────

    @staticmethod
    def known_fields(table: CellTable) -> List[str]:
        return list(table.schema) + [name for name in DERIVED_FIELDS if not table.has_column(name)]

    def is_known(self, table: CellTable, name: str) -> bool:
        return table.has_column(name) or name in DERIVED_FIELDS

    def missing_columns(self, table: CellTable, name: str) -> List[str]:
        """
        Base columns that `name` needs (transitively) but `table` lacks.
        """
        if table.has_column(name):
            return []
        entry = DERIVED_FIELDS.get(name)
        if entry is None:
            return [name]

        missing: List[str] = []
        for dep in entry.requires:
            for col in self.missing_columns(table, dep):
                if col not in missing:
                    missing.append(col)
        return missing

    def check(self, table: CellTable, names: Iterable[str]) -> None:
        """
        Fail fast if any of `names` cannot be evaluated on `table`.

        Raises:
            UnknownField for names that are neither columns nor derived fields.
            MissingPrerequisite for derived fields lacking base columns.
        """
        for name in names:
            if not self.is_known(table, name):
                raise UnknownField(name, table.schema)
            missing = self.missing_columns(table, name)
            if missing:
                raise MissingPrerequisite(name, missing)

    def uses_center(self, name: str) -> bool:
        entry = DERIVED_FIELDS.get(name)
        return entry is not None and entry.uses_center

    # ──────────────────────────────────────────────────────────────
    # Evaluation
    # ──────────────────────────────────────────────────────────────

    def _run(self, table: CellTable, names: Sequence[str], center, rows: Rows) -> Dict[str, np.ndarray]:
        center = np.zeros(3) if center is None else np.asarray(center, dtype=float)
        scalar = isinstance(rows, (int, np.integer))
        if scalar:
            rows = np.array([rows])
        elif rows is not None:
            rows = np.asarray(rows)

        ev = _Evaluation(table, rows, center, self.gamma)
        out = {}
        for name in names:
            value = ev(name)
            out[name] = float(value[0]) if scalar else np.asarray(value, dtype=float)
        return out

    def get_base(self, table: CellTable, name: str, rows: Rows = None):
        """
        Direct column lookup.

        Args:
            rows: None for all rows, an integer for a single value, or an
                  index / boolean array.

        Raises:
            UnknownField if the column does not exist.
        """
        if not table.has_column(name):
            raise UnknownField(name, table.schema)
        return self._run(table, [name], None, rows)[name]

    def get_derived(self, table: CellTable, name: str, center=None, rows: Rows = None):
        """
        Compute a derived field in code units.

        Args:
            center: absolute reference point (code units) for
                    coordinate-dependent fields; defaults to the origin.

        Raises:
            UnknownField if `name` is not a derived field.
            MissingPrerequisite if a required base column is absent.
        """
        if name not in DERIVED_FIELDS:
            raise UnknownField(name, self.known_fields(table))
        self.check(table, [name])
        return self._run(table, [name], center, rows)[name]

    def get(self, table: CellTable, name: str, center=None, rows: Rows = None):
        """Base column when present, derived field otherwise."""
        self.check(table, [name])
        return self._run(table, [name], center, rows)[name]

    def get_many(self, table: CellTable, names: Sequence[str], center=None, rows: Rows = None) -> Dict[str, np.ndarray]:
        """Evaluate several fields in one pass sharing intermediate results."""
        self.check(table, names)
        return self._run(table, list(names), center, rows)

    def evaluate(
        self,
        table: CellTable,
        name: str,
        unit: Optional[str] = STANDARD,
        center=None,
        center_unit: Optional[str] = STANDARD,
        mask: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Evaluate `name` for all (or the masked) rows and convert to `unit`.

        `center` accepts the same forms as the selection engine: numbers in
        `center_unit`, or the box-center token per component.
        """
        factor = table.scale.factor(unit)
        abs_center = resolve_center(center, center_unit, table.scale, table.boxlen)

        rows = None
        if mask is not None:
            rows = np.asarray(mask, dtype=bool)
            if len(rows) != len(table):
                raise ConfigurationError(
                    f"Mask has {len(rows)} entries but the table has {len(table)} rows"
                )

        return self.get(table, name, center=abs_center, rows=rows) * factor
