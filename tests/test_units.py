"""
Unit tests for the Scale unit table and the center/range helpers.

Validates unit lookup, length-only resolution, box-center tokens and
conversion of relative ranges to absolute code units.

"""

import numpy as np
import pytest

from prakshep.errors import ConfigurationError, UnitResolutionError, UnknownUnitError
from prakshep.units import CONSTANTS, Scale, resolve_center, resolve_range

# ──────────────────────────────────────────────────────────────
# Configuration
# ──────────────────────────────────────────────────────────────

KPC = CONSTANTS["pc"] * 1e3


# ──────────────────────────────────────────────────────────────
# Scale
# ──────────────────────────────────────────────────────────────

def test_standard_is_code_units():
    scale = Scale.from_code_units(unit_l=KPC, unit_d=1e-24, unit_t=3e15)
    assert scale.factor("standard") == 1.0
    assert scale.factor(None) == 1.0
    assert "standard" in scale


def test_length_factors():
    scale = Scale.from_code_units(unit_l=KPC, unit_d=1.0, unit_t=1.0)
    assert np.isclose(scale.factor("kpc"), 1.0)
    assert np.isclose(scale["pc"], 1e3)
    assert np.isclose(scale.factor("Mpc"), 1e-3)
    assert np.isclose(scale.factor("kpc2"), 1.0)


def test_surface_density_factor_consistent():
    scale = Scale.from_code_units(unit_l=KPC, unit_d=1e-24, unit_t=1.0)
    expected = scale.factor("g_cm2") * CONSTANTS["pc"] ** 2 / CONSTANTS["Msol"]
    assert np.isclose(scale.factor("Msol_pc2"), expected)


def test_unknown_unit():
    """Ensure unregistered unit tokens raise UnknownUnitError (a KeyError)."""
    scale = Scale()
    with pytest.raises(UnknownUnitError):
        scale.factor("furlong")
    with pytest.raises(KeyError):
        scale["furlong"]


def test_length_factor_rejects_non_lengths():
    scale = Scale()
    with pytest.raises(UnitResolutionError):
        scale.length_factor("Msol")
    with pytest.raises(UnitResolutionError):
        scale.to_code_length(1.0, "parsec")


def test_custom_factor_table():
    scale = Scale({"kpc": 2.0})
    assert scale.factor("kpc") == 2.0
    assert scale.to_code_length(4.0, "kpc") == 2.0
    assert len(scale) == 1


# ──────────────────────────────────────────────────────────────
# Center and ranges
# ──────────────────────────────────────────────────────────────

def test_center_default_origin():
    assert np.array_equal(resolve_center(None, "standard", Scale(), 1.0), np.zeros(3))


@pytest.mark.parametrize("token", ["bc", "boxcenter", "box-center", ["bc"]])
def test_center_box_token(token):
    center = resolve_center(token, "standard", Scale(), 4.0)
    assert np.array_equal(center, [2.0, 2.0, 2.0])


def test_center_mixed_components():
    scale = Scale({"kpc": 2.0})
    center = resolve_center([1.0, "bc", 0.5], "kpc", scale, 1.0)
    assert np.allclose(center, [0.5, 0.5, 0.25])


def test_center_invalid():
    with pytest.raises(ConfigurationError):
        resolve_center("middle", "standard", Scale(), 1.0)
    with pytest.raises(ConfigurationError):
        resolve_center([0.1, 0.2], "standard", Scale(), 1.0)


def test_center_unresolvable_unit():
    with pytest.raises(UnitResolutionError):
        resolve_center([0.1, 0.2, 0.3], "Msol", Scale(), 1.0)


def test_resolve_range_relative():
    assert np.allclose(resolve_range((-0.1, 0.2), 0.5, "standard", Scale(), 0.0, 1.0), (0.4, 0.7))


def test_resolve_range_open_bounds():
    assert resolve_range(None, 0.5, "standard", Scale(), 0.0, 1.0) == (0.0, 1.0)
    assert np.allclose(resolve_range((None, 0.1), 0.5, "standard", Scale(), 0.0, 1.0), (0.0, 0.6))


def test_resolve_range_inverted():
    with pytest.raises(ConfigurationError):
        resolve_range((0.3, 0.1), 0.0, "standard", Scale(), 0.0, 1.0)
