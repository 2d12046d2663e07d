"""
Unit tests for snapshot ingestion.

The osyris dataset is replaced by light stand-in objects exposing the same
access pattern (`data.meta`, `data["mesh"]`, `.values`, `.x/.y/.z`).

These tests verify that:
1. Positions and levels are turned into integer cell coordinates
2. Hydro variables are converted to code units
3. Floors, spatial ranges, level caps and field subsets are applied
4. load_cells wires reading and conversion together

"""

import numpy as np
import pytest

import prakshep.ingest as ingest
from prakshep.errors import ConfigurationError
from prakshep.ingest import LoadDescriptor, load_cells, table_from_dataset


# ──────────────────────────────────────────────────────────────
# Configuration
# ──────────────────────────────────────────────────────────────

class FakeArray:
    def __init__(self, values):
        self.values = np.asarray(values, dtype=float)


class FakeVector:
    def __init__(self, x, y, z):
        self.x = FakeArray(x)
        self.y = FakeArray(y)
        self.z = FakeArray(z)


class FakeDataset:
    def __init__(self, mesh, meta):
        self.meta = meta
        self._groups = {"mesh": mesh}

    def __getitem__(self, key):
        return self._groups[key]


def make_dataset(unit_l=1.0, unit_d=1.0, unit_t=1.0, boxlen=1.0, extra=None):
    """Level-1 grid plus one refined octant, stored in physical (cgs) units."""
    level, pos = [], []
    for i in (1, 2):
        for j in (1, 2):
            for k in (1, 2):
                if (i, j, k) == (1, 1, 1):
                    for a in (1, 2):
                        for b in (1, 2):
                            for c in (1, 2):
                                level.append(2)
                                pos.append([(a - 0.5) / 4, (b - 0.5) / 4, (c - 0.5) / 4])
                else:
                    level.append(1)
                    pos.append([(i - 0.5) / 2, (j - 0.5) / 2, (k - 0.5) / 2])

    level = np.array(level)
    pos = np.array(pos) * boxlen * unit_l
    n = len(level)
    unit_v = unit_l / unit_t

    mesh = {
        "level": FakeArray(level),
        "dx": FakeArray(boxlen * unit_l / 2.0 ** level),
        "position": FakeVector(pos[:, 0], pos[:, 1], pos[:, 2]),
        "density": FakeArray(np.where(level == 2, 3.0, 1.0) * unit_d),
        "velocity": FakeVector(np.full(n, 2.0 * unit_v), np.zeros(n), np.zeros(n)),
        "pressure": FakeArray(np.full(n, 0.5 * unit_d * unit_v ** 2)),
        "scalar_01": FakeArray(np.linspace(0.0, 1.0, n)),
    }
    mesh.update(extra or {})
    meta = {"boxlen": boxlen, "unit_l": unit_l, "unit_d": unit_d, "unit_t": unit_t, "gamma": 1.4, "time": 0.25}
    return FakeDataset(mesh, meta)


# ──────────────────────────────────────────────────────────────
# Conversion
# ──────────────────────────────────────────────────────────────

def test_coordinates_from_positions():
    table = table_from_dataset(make_dataset())
    assert len(table) == 15
    assert table.levels() == [1, 2]
    fine = table.take(table.level == 2)
    assert set(fine.cx) == {1, 2}
    coarse = table.take(table.level == 1)
    assert set(zip(coarse.cx, coarse.cy, coarse.cz)) == {
        (i, j, k) for i in (1, 2) for j in (1, 2) for k in (1, 2) if (i, j, k) != (1, 1, 1)
    }


def test_code_units_conversion():
    """Physical values divided by the run's units give back code values."""
    data = make_dataset(unit_l=3.0e21, unit_d=2.0e-24, unit_t=4.0e14, boxlen=2.0)
    table = table_from_dataset(data)
    assert table.boxlen == 2.0
    assert np.allclose(table.column("vx"), 2.0)
    assert np.allclose(table.column("p"), 0.5)
    assert np.allclose(np.unique(table.column("rho")), [1.0, 3.0])
    assert table.scale.unit_l == 3.0e21
    assert table.info["gamma"] == 1.4
    assert table.info["time"] == 0.25
    assert np.isclose(table.positions().max(), 1.5)


def test_passive_scalars_kept():
    table = table_from_dataset(make_dataset())
    assert "scalar_01" in table.fields
    assert table.column("scalar_01").max() == 1.0


def test_magnetic_faces_averaged():
    n = 15
    extra = {
        "B_left": FakeVector(np.full(n, 1.0), np.zeros(n), np.zeros(n)),
        "B_right": FakeVector(np.full(n, 3.0), np.zeros(n), np.zeros(n)),
    }
    table = table_from_dataset(make_dataset(extra=extra))
    gauss = table.scale.factor("Gauss")
    assert np.allclose(table.column("bx"), 2.0 / gauss)
    assert "B_left_x" not in table.fields


# ──────────────────────────────────────────────────────────────
# Descriptor
# ──────────────────────────────────────────────────────────────

def test_floors():
    table = table_from_dataset(make_dataset(), LoadDescriptor(smallr=2.0, smallc=0.8))
    assert table.column("rho").min() == 2.0
    assert np.all(table.column("p") == 0.8)


def test_spatial_restriction():
    descriptor = LoadDescriptor(xrange=(-0.5, 0.0), center="bc")
    table = table_from_dataset(make_dataset(), descriptor)
    assert np.all(table.positions()[:, 0] < 0.5)
    assert len(table) == 11


def test_level_cap():
    table = table_from_dataset(make_dataset(), LoadDescriptor(lmax=1))
    assert len(table) == 8
    assert table.lmax == 1


def test_field_subset():
    table = table_from_dataset(make_dataset(), LoadDescriptor(fields=["rho", "vx", "nonexistent"]))
    assert table.fields == ("rho", "vx")


def test_invalid_descriptor():
    with pytest.raises(ConfigurationError):
        LoadDescriptor(lmax=-1)
    with pytest.raises(ConfigurationError):
        LoadDescriptor(xrange=(0.5, 0.1))
    with pytest.raises(ConfigurationError):
        LoadDescriptor(smallr=-1.0)


# ──────────────────────────────────────────────────────────────
# load_cells
# ──────────────────────────────────────────────────────────────

def test_load_cells(monkeypatch):
    calls = []

    def fake_read(output_num, path):
        calls.append((output_num, path))
        return make_dataset()

    monkeypatch.setattr(ingest, "read_data", fake_read)
    table = load_cells(3, "ramses_outputs", LoadDescriptor(fields=["rho"]))

    assert calls == [(3, "ramses_outputs")]
    assert table.info["output"] == 3
    assert table.fields == ("rho",)
