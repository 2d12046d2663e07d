"""
Unit tests for FieldEvaluator.

These tests verify that the evaluator:
1. Looks up base columns for all rows, a single row or a mask
2. Computes geometric and thermodynamic derived fields
3. Evaluates cylindrical / spherical components relative to a center
4. Returns 0 (not NaN) for angular components at zero radius
5. Fails fast on unknown fields and missing prerequisite columns
6. Applies unit factors in `evaluate`

"""

import math

import numpy as np
import pytest

from prakshep.errors import ConfigurationError, MissingPrerequisite, UnknownField
from prakshep.fields import DEFAULT_GAMMA, DERIVED_FIELDS, FieldEvaluator
from prakshep.table import CellTable
from prakshep.units import CONSTANTS, Scale

# ──────────────────────────────────────────────────────────────
# Configuration
# ──────────────────────────────────────────────────────────────

CENTER = [0.5, 0.5, 0.5]


def rotating_table() -> CellTable:
    """Level-2 grid in solid-body rotation about the box center (vx = -y, vy = x)."""
    base = CellTable.uniform(2, rho=1.0, p=1.0)
    rel = base.positions() - 0.5
    return base.replace_columns({"vx": -rel[:, 1], "vy": rel[:, 0], "vz": np.zeros(len(base))})


# ──────────────────────────────────────────────────────────────
# Base fields
# ──────────────────────────────────────────────────────────────

def test_get_base_all_rows(cube8):
    ev = FieldEvaluator()
    assert np.all(ev.get_base(cube8, "rho") == 2.0)


def test_get_base_single_row(cube8):
    """An integer row index returns a plain float."""
    value = FieldEvaluator().get_base(cube8, "rho", rows=3)
    assert isinstance(value, float)
    assert value == 2.0


def test_get_base_unknown(cube8):
    with pytest.raises(UnknownField):
        FieldEvaluator().get_base(cube8, "cs")


# ──────────────────────────────────────────────────────────────
# Derived fields
# ──────────────────────────────────────────────────────────────

def test_positions_default_origin(cube8):
    x = FieldEvaluator().get_derived(cube8, "x")
    assert sorted(set(x)) == [0.25, 0.75]


def test_positions_relative_to_center(cube8):
    x = FieldEvaluator().get_derived(cube8, "x", center=CENTER)
    assert sorted(set(x)) == [-0.25, 0.25]


def test_mass_from_density(cube8):
    ev = FieldEvaluator()
    assert np.allclose(ev.get(cube8, "volume"), 0.125)
    assert np.allclose(ev.get(cube8, "mass"), 0.25)


def test_mass_column_takes_precedence(cube8):
    table = cube8.replace_columns({"mass": np.full(8, 7.0)})
    assert np.all(FieldEvaluator().get(table, "mass") == 7.0)


def test_sound_speed_uses_gamma(cube8):
    ev = FieldEvaluator(gamma=1.4)
    assert np.allclose(ev.get(cube8, "cs"), math.sqrt(1.4 * 1.0 / 2.0))
    assert np.allclose(FieldEvaluator().get(cube8, "cs"), math.sqrt(DEFAULT_GAMMA / 2.0))


def test_for_table_reads_gamma(amr_table):
    table = amr_table.replace_columns({})
    table.info["gamma"] = 1.2
    assert FieldEvaluator.for_table(table).gamma == 1.2


def test_velocity_magnitudes(cube8):
    ev = FieldEvaluator()
    assert np.allclose(ev.get(cube8, "v"), 0.3)
    assert np.allclose(ev.get(cube8, "vx2"), 0.09)
    assert np.allclose(ev.get(cube8, "ekin"), 0.5 * 0.25 * 0.09)


def test_solid_body_rotation():
    """vphi equals the cylindrical radius and vr vanishes for solid-body rotation."""
    table = rotating_table()
    ev = FieldEvaluator()
    r = ev.get(table, "r_cylinder", center=CENTER)
    assert np.allclose(ev.get(table, "vphi_cylinder", center=CENTER), r)
    assert np.allclose(ev.get(table, "vr_cylinder", center=CENTER), 0.0)
    assert np.allclose(ev.get(table, "hz", center=CENTER), r ** 2)


def test_spherical_components_consistent():
    table = rotating_table().replace_columns({"vz": np.full(64, 0.2)})
    ev = FieldEvaluator()
    values = ev.get_many(table, ["v2", "vr_sphere", "vtheta_sphere", "vphi_sphere"], center=CENTER)
    total = values["vr_sphere"] ** 2 + values["vtheta_sphere"] ** 2 + values["vphi_sphere"] ** 2
    assert np.allclose(total, values["v2"])


def test_zero_radius_components():
    """Angular components at the reference point are 0, not NaN."""
    table = CellTable([1], [1], [1], [1], {"rho": [1.0], "vx": [1.0], "vy": [2.0], "vz": [3.0]})
    ev = FieldEvaluator()
    center = [0.25, 0.25, 0.25]
    for name in ("vr_cylinder", "vphi_cylinder", "vr_sphere", "vtheta_sphere", "vphi_sphere"):
        value = ev.get(table, name, center=center)
        assert value[0] == 0.0


def test_phi_range():
    table = rotating_table()
    phi = FieldEvaluator().get(table, "phi", center=CENTER)
    assert np.all(phi >= 0.0)
    assert np.all(phi < 2.0 * math.pi)


def test_jeans_quantities():
    scale = Scale.from_code_units(unit_l=CONSTANTS["pc"], unit_d=1e-22, unit_t=3.0e13)
    table = CellTable.uniform(1, scale=scale, rho=2.0, p=1.0)
    ev = FieldEvaluator()
    length = ev.get(table, "jeanslength")
    assert np.all(np.isfinite(length)) and np.all(length > 0)
    assert np.allclose(ev.get(table, "jeansnumber"), length / 0.5)
    tff = ev.get(table, "freefall_time")
    assert np.allclose(length, ev.get(table, "cs") * tff)


def test_alfven_mach(cube8):
    table = cube8.replace_columns({"bx": np.full(8, 0.6), "by": np.zeros(8), "bz": np.zeros(8)})
    ev = FieldEvaluator()
    va = 0.6 / math.sqrt(2.0)
    assert np.allclose(ev.get(table, "mach_alfven"), 0.3 / va)


def test_catalogue_contains_core_fields():
    for name in ("x", "mass", "cs", "vr_cylinder", "vtheta_sphere", "lz", "mach", "etherm"):
        assert name in DERIVED_FIELDS


# ──────────────────────────────────────────────────────────────
# Failures and units
# ──────────────────────────────────────────────────────────────

def test_missing_prerequisite():
    """Ensure cs on a table without pressure names the missing column."""
    table = CellTable.uniform(1, rho=1.0)
    with pytest.raises(MissingPrerequisite) as excinfo:
        FieldEvaluator().get(table, "cs")
    assert excinfo.value.missing == ("p",)
    assert isinstance(excinfo.value, KeyError)


def test_missing_prerequisite_for_mass():
    table = CellTable.uniform(1, p=1.0)
    with pytest.raises(MissingPrerequisite) as excinfo:
        FieldEvaluator().check(table, ["p", "mass"])
    assert excinfo.value.missing == ("rho",)


def test_unknown_field(cube8):
    with pytest.raises(UnknownField):
        FieldEvaluator().get(cube8, "nonsense")
    with pytest.raises(UnknownField):
        FieldEvaluator().get_derived(cube8, "rho")


def test_evaluate_units():
    scale = Scale.from_code_units(unit_l=CONSTANTS["pc"] * 1e3, unit_d=1.0, unit_t=1.0)
    table = CellTable.uniform(1, scale=scale, rho=1.0)
    x = FieldEvaluator().evaluate(table, "x", unit="pc")
    assert np.allclose(sorted(set(np.round(x, 6))), [250.0, 750.0])


def test_evaluate_box_center_and_mask(cube8):
    mask = np.zeros(8, dtype=bool)
    mask[:2] = True
    x = FieldEvaluator().evaluate(cube8, "x", center="bc", mask=mask)
    assert len(x) == 2
    assert np.allclose(np.abs(x), 0.25)


def test_evaluate_mask_length(cube8):
    with pytest.raises(ConfigurationError):
        FieldEvaluator().evaluate(cube8, "rho", mask=np.ones(3, dtype=bool))
