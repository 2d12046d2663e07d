# -*- coding: utf-8 -*-

"""

HDF5 persistence of CellTables.

Layout:

    /CellTable                attrs: Version, boxlen, lmin, lmax, generator_*
    /CellTable/level, cx, cy, cz
    /CellTable/Columns/<name>
    /CellTable/Scale          attrs: unit_l, unit_d, unit_t
    /CellTable/Scale/Factors  attrs: unit name -> factor
    /CellTable/Info           attrs: simulation metadata

"""

from __future__ import annotations

import logging
import shlex
import sys
import time

import numpy as np
import h5py as h5

from .errors import ConfigurationError
from .table import RESERVED_COLUMNS, CellTable
from .units import Scale

__version__ = "1.0.0"

FORMAT_VERSION = (1, 0)

logger = logging.getLogger("prakshep")


def save_cells(table: CellTable, filename: str) -> None:
    """
    Write `table` to the HDF5 file `filename` (overwritten if present).
    """
    t0 = time.time()
    with h5.File(filename, "w") as f:
        root = f.create_group("CellTable", track_order=True)
        root.attrs["Version"] = FORMAT_VERSION
        root.attrs["boxlen"] = table.boxlen
        root.attrs["lmin"] = table.lmin
        root.attrs["lmax"] = table.lmax

        root.attrs["generator_command"] = shlex.join(sys.argv)
        root.attrs["generator_timestamp"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        root.attrs["generator_version"] = __version__

        for name in RESERVED_COLUMNS:
            root.create_dataset(name, data=table.column(name), dtype="i8")

        columns = root.create_group("Columns", track_order=True)
        for name in table.fields:
            columns.create_dataset(name, data=table.column(name), dtype="f8")

        scale = root.create_group("Scale")
        scale.attrs["unit_l"] = table.scale.unit_l
        scale.attrs["unit_d"] = table.scale.unit_d
        scale.attrs["unit_t"] = table.scale.unit_t
        factors = scale.create_group("Factors")
        for unit, value in table.scale.as_dict().items():
            factors.attrs[unit] = value

        info = root.create_group("Info")
        for key, value in table.info.items():
            if value is None:
                continue
            info.attrs[key] = value

    logger.info("Saved %d cells to '%s' in %.2fs", len(table), filename, time.time() - t0)


def _plain(value):
    return value.item() if isinstance(value, np.generic) else value


def read_cells(filename: str) -> CellTable:
    """
    Read a CellTable written by `save_cells`.

    Raises:
        ConfigurationError if the file does not contain a CellTable group.
    """
    with h5.File(filename, "r") as f:
        if "CellTable" not in f:
            raise ConfigurationError(f"'{filename}' does not contain a CellTable")
        root = f["CellTable"]

        coords = {name: root[name][()] for name in RESERVED_COLUMNS}
        columns = {name: ds[()] for name, ds in root["Columns"].items()}

        scale_group = root["Scale"]
        scale = Scale(
            factors={unit: float(v) for unit, v in scale_group["Factors"].attrs.items()},
            unit_l=float(scale_group.attrs["unit_l"]),
            unit_d=float(scale_group.attrs["unit_d"]),
            unit_t=float(scale_group.attrs["unit_t"]),
        )
        info = {key: _plain(value) for key, value in root["Info"].attrs.items()}

        table = CellTable(
            coords["level"],
            coords["cx"],
            coords["cy"],
            coords["cz"],
            columns,
            boxlen=float(root.attrs["boxlen"]),
            scale=scale,
            info=info,
            lmin=int(root.attrs["lmin"]),
            lmax=int(root.attrs["lmax"]),
        )

    logger.debug("Read %d cells from '%s'", len(table), filename)
    return table
