# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
Ingestion
──────────────────────────────────────────────────────────────────────────────
Build a CellTable from a RAMSES snapshot read with osyris.

osyris returns the AMR mesh as flat arrays in physical units (cell size,
position vector, level and the hydro variables). They are converted back to
code units with the run's unit_l / unit_d / unit_t, and integer cell
coordinates are recovered from position and level:

    c = rint(x * 2^level / boxlen + 0.5)

The LoadDescriptor then restricts the table: density and pressure floors,
a spatial box around a center, a maximum level and a subset of columns.

"""

from __future__ import annotations

import logging
import time
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from .errors import ConfigurationError
from .fields import DEFAULT_GAMMA
from .geometry import Box, SelectionEngine, check_range
from .table import CellTable
from .units import STANDARD, CenterSpec, Scale

logger = logging.getLogger("prakshep")

# osyris mesh keys handled explicitly
MESH_GEOMETRY = ("level", "dx", "position", "cpu")
MAGNETIC_FACES = ("B_left", "B_right")


class LoadDescriptor:
    """
    What to keep from a snapshot.

    Args:
        fields: column names to keep (e.g. ["rho", "vx", "p"]); None keeps all.
        lmax: merge cells finer than this level into their ancestors.
        xrange, yrange, zrange: spatial restriction relative to `center`.
        range_unit: length unit of the ranges and of `center`.
        center: reference point, default the origin.
        smallr: density floor (code units).
        smallc: pressure floor (code units).
    """

    def __init__(
        self,
        fields: Optional[Iterable[str]] = None,
        lmax: Optional[int] = None,
        xrange: Optional[Tuple[Optional[float], Optional[float]]] = None,
        yrange: Optional[Tuple[Optional[float], Optional[float]]] = None,
        zrange: Optional[Tuple[Optional[float], Optional[float]]] = None,
        range_unit: Optional[str] = STANDARD,
        center: CenterSpec = None,
        smallr: float = 0.0,
        smallc: float = 0.0,
    ):
        if lmax is not None and lmax < 0:
            raise ConfigurationError(f"lmax must be non-negative, got {lmax}")
        if smallr < 0 or smallc < 0:
            raise ConfigurationError("smallr and smallc must be non-negative")

        self.fields = None if fields is None else list(fields)
        self.lmax = lmax
        self.xrange = check_range(xrange, "xrange")
        self.yrange = check_range(yrange, "yrange")
        self.zrange = check_range(zrange, "zrange")
        self.range_unit = range_unit
        self.center = center
        self.smallr = float(smallr)
        self.smallc = float(smallc)

    @property
    def restricts_space(self) -> bool:
        return any(r is not None for r in (self.xrange, self.yrange, self.zrange))

    def __repr__(self) -> str:
        return (
            f"LoadDescriptor(fields={self.fields}, lmax={self.lmax}, xrange={self.xrange}, "
            f"yrange={self.yrange}, zrange={self.zrange}, center={self.center})"
        )


def _magnitude(array, unit: Optional[str] = None) -> np.ndarray:
    """
    Plain float array from an osyris Array (or anything array-like), optionally
    converted to `unit` first.
    """
    if unit is not None and hasattr(array, "to"):
        array = array.to(unit)
    values = getattr(array, "values", array)
    values = getattr(values, "magnitude", values)
    return np.asarray(values, dtype=float).reshape(-1)


def _components(vec_field, unit: Optional[str] = None) -> List[np.ndarray]:
    """x, y, z components of an osyris Vector."""
    return [_magnitude(getattr(vec_field, c), unit) for c in ("x", "y", "z")]


def _meta_float(meta, key: str, default: Optional[float] = None) -> Optional[float]:
    if key not in meta:
        return default
    value = meta[key]
    value = getattr(value, "magnitude", value)
    return float(value)


def _is_vector(value) -> bool:
    return all(hasattr(value, c) for c in ("x", "y", "z"))


def scale_from_meta(meta) -> Scale:
    """Scale built from the unit_l / unit_d / unit_t entries of osyris metadata."""
    return Scale.from_code_units(
        unit_l=_meta_float(meta, "unit_l", 1.0),
        unit_d=_meta_float(meta, "unit_d", 1.0),
        unit_t=_meta_float(meta, "unit_t", 1.0),
    )


def table_from_dataset(
    data, descriptor: Optional[LoadDescriptor] = None, output_num: Optional[int] = None
) -> CellTable:
    """
    Convert a loaded osyris dataset into a CellTable in code units.

    Args:
        data: object with a `meta` mapping and a "mesh" entry (as returned by
              osyris.RamsesDataset(...).load()).
        descriptor: optional restrictions applied after conversion.
        output_num: snapshot number recorded in the table info.
    """
    descriptor = descriptor or LoadDescriptor()

    meta = getattr(data, "meta", None) or {}
    boxlen = _meta_float(meta, "boxlen", 1.0)
    scale = scale_from_meta(meta)
    unit_v = scale.unit_l / scale.unit_t

    mesh = data["mesh"]
    keys = list(mesh.keys())

    level = _magnitude(mesh["level"]).astype(np.int64)
    npos = 2.0 ** level / boxlen
    pos = [x / scale.unit_l for x in _components(mesh["position"], "cm")]
    coords = [np.rint(x * npos + 0.5).astype(np.int64) for x in pos]

    columns: Dict[str, np.ndarray] = {}
    for key in keys:
        if key in MESH_GEOMETRY or key in MAGNETIC_FACES:
            continue
        value = mesh[key]
        if key == "density":
            columns["rho"] = _magnitude(value, "g/cm**3") / scale.unit_d
        elif key == "velocity":
            for c, comp in zip(("vx", "vy", "vz"), _components(value, "cm/s")):
                columns[c] = comp / unit_v
        elif key == "pressure":
            columns["p"] = _magnitude(value, "g/(cm*s**2)") / (scale.unit_d * unit_v ** 2)
        elif key == "B_field":
            gauss = scale.factor("Gauss")
            for c, comp in zip(("bx", "by", "bz"), _components(value)):
                columns[c] = comp / gauss
        elif _is_vector(value):
            for c, comp in zip(("x", "y", "z"), _components(value)):
                columns[f"{key}_{c}"] = comp
        else:
            columns[key] = _magnitude(value)

    if "B_field" not in keys and all(k in keys for k in MAGNETIC_FACES):
        # cell-centred field from the face values
        gauss = scale.factor("Gauss")
        left = _components(mesh["B_left"])
        right = _components(mesh["B_right"])
        for c, lo, hi in zip(("bx", "by", "bz"), left, right):
            columns[c] = 0.5 * (lo + hi) / gauss

    if "rho" in columns and descriptor.smallr > 0:
        columns["rho"] = np.maximum(columns["rho"], descriptor.smallr)
    if "p" in columns and descriptor.smallc > 0:
        columns["p"] = np.maximum(columns["p"], descriptor.smallc)

    info = {"gamma": _meta_float(meta, "gamma", DEFAULT_GAMMA)}
    if output_num is not None:
        info["output"] = int(output_num)
    for key in ("time", "aexp", "H0", "omega_m", "omega_l"):
        if key in meta:
            info[key] = _meta_float(meta, key)

    table = CellTable(
        level, coords[0], coords[1], coords[2], columns, boxlen=boxlen, scale=scale, info=info
    )
    logger.debug("Converted %d cells, levels %d..%d", len(table), table.lmin, table.lmax)
    return apply_descriptor(table, descriptor)


def apply_descriptor(table: CellTable, descriptor: LoadDescriptor) -> CellTable:
    """Spatial restriction, level cap and column subset, in that order."""
    if descriptor.restricts_space:
        box = Box(
            descriptor.xrange,
            descriptor.yrange,
            descriptor.zrange,
            center=descriptor.center,
            range_unit=descriptor.range_unit,
        )
        table = SelectionEngine().evaluate(table, box)

    if descriptor.lmax is not None and descriptor.lmax < table.lmax:
        table = table.coarsen(descriptor.lmax)

    if descriptor.fields is not None:
        missing = [f for f in descriptor.fields if not table.has_column(f)]
        if missing:
            logger.warning("Requested field(s) not in snapshot: %s", ", ".join(missing))
        table = table.select_columns(f for f in descriptor.fields if table.has_column(f))

    return table


def read_data(output_num: int, path: str):
    """
    Load a RAMSES snapshot using osyris.RamsesDataset and return the loaded dataset.
    """
    import osyris

    try:
        return osyris.RamsesDataset(output_num, path=path).load()
    except Exception as e:
        logger.error("Failed to load output %s from '%s': %s", output_num, path, e)
        logger.debug("Exception details:", exc_info=True)
        raise


def load_cells(output_num: int, path: str, descriptor: Optional[LoadDescriptor] = None) -> CellTable:
    """
    Read snapshot `output_num` from `path` into a CellTable.
    """
    t0 = time.time()
    data = read_data(output_num, path)
    table = table_from_dataset(data, descriptor, output_num=output_num)
    logger.info("Loaded output %s: %d cells in %.2fs", output_num, len(table), time.time() - t0)
    return table
