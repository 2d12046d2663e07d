# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
CellTable
──────────────────────────────────────────────────────────────────────────────
Columnar, immutable store of AMR leaf cells.

The octree is kept flat: each row is one leaf cell described by its refinement
level and 1-based integer coordinates (cx, cy, cz) in [1, 2^level]. Position
and size are recomputed on demand:

    cell size       = boxlen / 2^level
    physical center = (coord - 0.5) * boxlen / 2^level

Every other quantity (density, velocity, pressure, ...) is a float64 column in
code units. Selection engines return new tables with the identical schema, so
tables compose freely.

"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np

from .errors import ConfigurationError, UnknownField
from .units import Scale

COORD_COLUMNS = ("cx", "cy", "cz")
RESERVED_COLUMNS = ("level",) + COORD_COLUMNS
VELOCITY_COLUMNS = ("vx", "vy", "vz")

logger = logging.getLogger("prakshep")


def setup_logging(verbose: bool) -> None:
    """
    Configure global logging.

    Args:
        verbose: If True, set DEBUG level, otherwise INFO.
    """

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )

    # Reduce noise from libraries (adjustable)
    logging.getLogger("h5py").setLevel(logging.WARNING)


def _frozen(values, dtype, name: str) -> np.ndarray:
    arr = np.array(values, dtype=dtype)
    if arr.ndim != 1:
        raise ConfigurationError(f"Column '{name}' must be one-dimensional, got shape {arr.shape}")
    arr.flags.writeable = False
    return arr


Selector = Union[np.ndarray, List[int], List[bool], slice]


class CellTable:
    """
    Immutable table of leaf cells sharing one schema.

    Args:
        level: refinement level per row.
        cx, cy, cz: 1-based integer coordinates per row.
        columns: mapping field name -> values (code units).
        boxlen: box length in code units.
        scale: unit lookup for this run (defaults to code units only).
        info: free-form simulation metadata (gamma, output number, ...).
        lmin, lmax: level range to report when the table has no rows.
    """

    def __init__(
        self,
        level,
        cx,
        cy,
        cz,
        columns: Optional[Mapping[str, Iterable[float]]] = None,
        boxlen: float = 1.0,
        scale: Optional[Scale] = None,
        info: Optional[Mapping[str, object]] = None,
        lmin: Optional[int] = None,
        lmax: Optional[int] = None,
    ):
        self.level = _frozen(level, np.int64, "level")
        self.cx = _frozen(cx, np.int64, "cx")
        self.cy = _frozen(cy, np.int64, "cy")
        self.cz = _frozen(cz, np.int64, "cz")

        nrows = len(self.level)
        for name in COORD_COLUMNS:
            if len(getattr(self, name)) != nrows:
                raise ConfigurationError(
                    f"Column '{name}' has {len(getattr(self, name))} rows, expected {nrows}"
                )

        self._columns: Dict[str, np.ndarray] = {}
        for name, values in (columns or {}).items():
            if name in RESERVED_COLUMNS:
                raise ConfigurationError(f"'{name}' is a reserved column name")
            arr = _frozen(values, np.float64, name)
            if len(arr) != nrows:
                raise ConfigurationError(f"Column '{name}' has {len(arr)} rows, expected {nrows}")
            self._columns[name] = arr

        if not boxlen > 0:
            raise ConfigurationError(f"boxlen must be positive, got {boxlen}")

        if nrows:
            if self.level.min() < 0:
                raise ConfigurationError("Refinement levels must be non-negative")
            upper = np.left_shift(np.int64(1), self.level)
            for name in COORD_COLUMNS:
                coord = getattr(self, name)
                if np.any((coord < 1) | (coord > upper)):
                    raise ConfigurationError(f"Coordinate '{name}' outside [1, 2^level]")

        self.boxlen = float(boxlen)
        self.scale = scale if scale is not None else Scale()
        self.info: Dict[str, object] = dict(info or {})

        if nrows:
            self.lmin = int(self.level.min())
            self.lmax = int(self.level.max())
        else:
            self.lmin = 0 if lmin is None else int(lmin)
            self.lmax = self.lmin if lmax is None else int(lmax)

    # ──────────────────────────────────────────────────────────────
    # Construction helpers
    # ──────────────────────────────────────────────────────────────

    @classmethod
    def uniform(
        cls,
        level: int,
        boxlen: float = 1.0,
        scale: Optional[Scale] = None,
        info: Optional[Mapping[str, object]] = None,
        **fields,
    ) -> "CellTable":
        """
        Build a fully refined uniform grid at `level`.

        Field values may be scalars (broadcast to every cell) or arrays with one
        entry per cell, ordered with cz varying fastest, then cy, then cx.
        """
        n = 2 ** int(level)
        axis = np.arange(1, n + 1)
        gx, gy, gz = np.meshgrid(axis, axis, axis, indexing="ij")
        ncell = n ** 3

        columns = {}
        for name, values in fields.items():
            arr = np.asarray(values, dtype=float)
            columns[name] = np.full(ncell, float(arr)) if arr.ndim == 0 else arr.reshape(-1)

        return cls(
            np.full(ncell, int(level)),
            gx.reshape(-1),
            gy.reshape(-1),
            gz.reshape(-1),
            columns,
            boxlen=boxlen,
            scale=scale,
            info=info,
        )

    def _derive(self, level, cx, cy, cz, columns) -> "CellTable":
        return CellTable(
            level,
            cx,
            cy,
            cz,
            columns,
            boxlen=self.boxlen,
            scale=self.scale,
            info=self.info,
            lmin=self.lmin,
            lmax=self.lmax,
        )

    # ──────────────────────────────────────────────────────────────
    # Schema access
    # ──────────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self.level)

    @property
    def nrows(self) -> int:
        return len(self.level)

    @property
    def fields(self) -> Tuple[str, ...]:
        """Names of the data columns (excluding level and coordinates)."""
        return tuple(self._columns)

    @property
    def schema(self) -> Tuple[str, ...]:
        return RESERVED_COLUMNS + self.fields

    def has_column(self, name: str) -> bool:
        return name in RESERVED_COLUMNS or name in self._columns

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has_column(name)

    def column(self, name: str) -> np.ndarray:
        """
        Return the (read-only) column `name`.

        Raises:
            UnknownField if the table has no such column.
        """
        if name in RESERVED_COLUMNS:
            return getattr(self, name)
        try:
            return self._columns[name]
        except KeyError:
            raise UnknownField(name, self.schema) from None

    __getitem__ = column

    def columns(self) -> Dict[str, np.ndarray]:
        return dict(self._columns)

    def levels(self) -> List[int]:
        return [int(lvl) for lvl in np.unique(self.level)]

    # ──────────────────────────────────────────────────────────────
    # Geometry
    # ──────────────────────────────────────────────────────────────

    def cellsize(self) -> np.ndarray:
        return self.boxlen / np.exp2(self.level)

    def coords(self) -> np.ndarray:
        return np.column_stack([self.cx, self.cy, self.cz])

    def positions(self) -> np.ndarray:
        """Cell centers as an (N, 3) array in code units."""
        return (self.coords() - 0.5) * self.cellsize()[:, None]

    # ──────────────────────────────────────────────────────────────
    # Derived tables
    # ──────────────────────────────────────────────────────────────

    def take(self, selector: Selector) -> "CellTable":
        """
        Return a new table with the selected rows (boolean mask or indices).
        """
        if isinstance(selector, slice):
            idx = selector
        else:
            idx = np.asarray(selector)
            if idx.dtype == bool and len(idx) != len(self):
                raise ConfigurationError(
                    f"Mask has {len(idx)} entries but the table has {len(self)} rows"
                )

        return self._derive(
            self.level[idx],
            self.cx[idx],
            self.cy[idx],
            self.cz[idx],
            {name: col[idx] for name, col in self._columns.items()},
        )

    def replace_columns(self, updates: Mapping[str, Iterable[float]]) -> "CellTable":
        """Return a new table where the given columns are replaced or added."""
        columns = dict(self._columns)
        columns.update(updates)
        return self._derive(self.level, self.cx, self.cy, self.cz, columns)

    def select_columns(self, names: Iterable[str]) -> "CellTable":
        """Return a new table keeping only the listed data columns."""
        columns = {name: self.column(name) for name in names if name not in RESERVED_COLUMNS}
        return self._derive(self.level, self.cx, self.cy, self.cz, columns)

    def coarsen(self, lmax: int) -> "CellTable":
        """
        Merge every cell finer than `lmax` into its ancestor at `lmax`.

        Columns are volume-weighted averages, velocities are mass-weighted when a
        density column exists, and a direct `mass` column is summed. The result
        still tiles the same volume with leaf cells.
        """
        if lmax < 0:
            raise ConfigurationError(f"lmax must be non-negative, got {lmax}")

        fine = self.level > lmax
        if not np.any(fine):
            return self

        keep = ~fine
        shift = self.level[fine] - lmax
        parents = np.column_stack(
            [((getattr(self, name)[fine] - 1) >> shift) + 1 for name in COORD_COLUMNS]
        )
        keys, inverse = np.unique(parents, axis=0, return_inverse=True)
        inverse = inverse.reshape(-1)
        nparent = len(keys)

        vol = self.cellsize()[fine] ** 3
        vol_sum = np.bincount(inverse, weights=vol, minlength=nparent)

        mass = None
        if "rho" in self._columns:
            mass = self._columns["rho"][fine] * vol
            mass_sum = np.bincount(inverse, weights=mass, minlength=nparent)

        merged: Dict[str, np.ndarray] = {}
        for name, col in self._columns.items():
            values = col[fine]
            if name == "mass":
                merged[name] = np.bincount(inverse, weights=values, minlength=nparent)
                continue

            vol_avg = np.bincount(inverse, weights=values * vol, minlength=nparent) / vol_sum
            if name in VELOCITY_COLUMNS and mass is not None:
                msum = np.bincount(inverse, weights=values * mass, minlength=nparent)
                with np.errstate(divide="ignore", invalid="ignore"):
                    merged[name] = np.where(mass_sum > 0, msum / mass_sum, vol_avg)
            else:
                merged[name] = vol_avg

        logger.debug("Coarsened %d cells into %d cells at level %d", int(fine.sum()), nparent, lmax)

        columns = {
            name: np.concatenate([col[keep], merged[name]]) for name, col in self._columns.items()
        }
        return self._derive(
            np.concatenate([self.level[keep], np.full(nparent, lmax)]),
            np.concatenate([self.cx[keep], keys[:, 0]]),
            np.concatenate([self.cy[keep], keys[:, 1]]),
            np.concatenate([self.cz[keep], keys[:, 2]]),
            columns,
        )

    def __repr__(self) -> str:
        return (
            f"CellTable(rows={len(self)}, levels={self.lmin}..{self.lmax}, "
            f"boxlen={self.boxlen:.6g}, fields={list(self._columns)})"
        )
