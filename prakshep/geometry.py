# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
SelectionEngine
──────────────────────────────────────────────────────────────────────────────
Geometric sub-selection of a CellTable.

Regions are small value objects (Box, Cylinder, Sphere, Shell) describing a
shape relative to a center. Lengths are given in `range_unit` and converted to
code units with the table's Scale when the region is applied.

Two membership modes are supported:

- point-based (default): a cell belongs to the region if its center does.
- cell-based (`cell=True`): a cell belongs to the region if its cube overlaps
  the region at all.

`inverse=True` returns the complement within the input table. A Shell is
"inside outer and not inside inner" evaluated with the same predicate, so a
shell and the inner region always partition the outer region.

"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from .errors import ConfigurationError
from .table import CellTable
from .units import STANDARD, CenterSpec, resolve_center, resolve_range

logger = logging.getLogger("prakshep")

AXES = {"x": 0, "y": 1, "z": 2}
SHELL_SHAPES = ("sphere", "cylinder")

Range = Optional[Tuple[Optional[float], Optional[float]]]


def _check_radius(value: float, name: str) -> float:
    value = float(value)
    if not value >= 0:
        raise ConfigurationError(f"{name} must be non-negative, got {value}")
    return value


def _check_direction(direction: str) -> str:
    if direction not in AXES:
        raise ConfigurationError(f"direction must be one of {sorted(AXES)}, got '{direction}'")
    return direction


def check_range(rng: Range, name: str) -> Range:
    if rng is None:
        return None
    rng = tuple(rng)
    if len(rng) != 2:
        raise ConfigurationError(f"{name} needs 2 entries (min, max), got {len(rng)}")
    lo, hi = rng
    if lo is not None and hi is not None and lo > hi:
        raise ConfigurationError(f"{name}: min ({lo}) is greater than max ({hi})")
    return rng


class Region:
    """Common attributes of every region: its kind, center and length unit."""

    kind = "region"

    def __init__(self, center: CenterSpec = None, range_unit: Optional[str] = STANDARD):
        self.center = center
        self.range_unit = range_unit

    def resolved_center(self, table: CellTable) -> np.ndarray:
        return resolve_center(self.center, self.range_unit, table.scale, table.boxlen)

    def length(self, table: CellTable, value: float) -> float:
        return table.scale.to_code_length(value, self.range_unit)


class Box(Region):
    """
    Axis-aligned box given by ranges relative to the center.

    Each range is (min, max) with inclusive bounds; None (or a None bound)
    leaves that side unrestricted.
    """

    kind = "box"

    def __init__(
        self,
        xrange: Range = None,
        yrange: Range = None,
        zrange: Range = None,
        center: CenterSpec = None,
        range_unit: Optional[str] = STANDARD,
    ):
        super().__init__(center, range_unit)
        self.xrange = check_range(xrange, "xrange")
        self.yrange = check_range(yrange, "yrange")
        self.zrange = check_range(zrange, "zrange")

    def bounds(self, table: CellTable) -> np.ndarray:
        """Absolute (3, 2) bounds in code units."""
        center = self.resolved_center(table)
        return np.array(
            [
                resolve_range(rng, center[i], self.range_unit, table.scale, -np.inf, np.inf)
                for i, rng in enumerate((self.xrange, self.yrange, self.zrange))
            ]
        )

    def __repr__(self) -> str:
        return f"Box(xrange={self.xrange}, yrange={self.yrange}, zrange={self.zrange}, center={self.center})"


class Cylinder(Region):
    """Cylinder of `radius` and total `height` along `direction`."""

    kind = "cylinder"

    def __init__(
        self,
        radius: float,
        height: float,
        direction: str = "z",
        center: CenterSpec = None,
        range_unit: Optional[str] = STANDARD,
    ):
        super().__init__(center, range_unit)
        self.radius = _check_radius(radius, "radius")
        self.height = _check_radius(height, "height")
        self.direction = _check_direction(direction)

    def __repr__(self) -> str:
        return (
            f"Cylinder(radius={self.radius}, height={self.height}, "
            f"direction='{self.direction}', center={self.center})"
        )


class Sphere(Region):
    kind = "sphere"

    def __init__(self, radius: float, center: CenterSpec = None, range_unit: Optional[str] = STANDARD):
        super().__init__(center, range_unit)
        self.radius = _check_radius(radius, "radius")

    def __repr__(self) -> str:
        return f"Sphere(radius={self.radius}, center={self.center})"


class Shell(Region):
    """
    Spherical or cylindrical shell between `inner` and `outer` radius.

    For shape="cylinder", `height` and `direction` describe both bounding
    cylinders.
    """

    kind = "shell"

    def __init__(
        self,
        inner: float,
        outer: float,
        shape: str = "sphere",
        height: Optional[float] = None,
        direction: str = "z",
        center: CenterSpec = None,
        range_unit: Optional[str] = STANDARD,
    ):
        super().__init__(center, range_unit)
        self.inner = _check_radius(inner, "inner radius")
        self.outer = _check_radius(outer, "outer radius")
        if self.inner >= self.outer:
            raise ConfigurationError(
                f"Shell inner radius ({self.inner}) must be smaller than outer radius ({self.outer})"
            )
        if shape not in SHELL_SHAPES:
            raise ConfigurationError(f"Shell shape must be one of {SHELL_SHAPES}, got '{shape}'")
        if shape == "cylinder" and height is None:
            raise ConfigurationError("A cylindrical shell needs a height")

        self.shape = shape
        self.height = None if height is None else _check_radius(height, "height")
        self.direction = _check_direction(direction)

    def bounding(self, radius: float) -> Region:
        """The sphere or cylinder of `radius` sharing this shell's geometry."""
        if self.shape == "sphere":
            return Sphere(radius, center=self.center, range_unit=self.range_unit)
        return Cylinder(radius, self.height, self.direction, center=self.center, range_unit=self.range_unit)

    def __repr__(self) -> str:
        return f"Shell(inner={self.inner}, outer={self.outer}, shape='{self.shape}', center={self.center})"


class SelectionEngine:
    """
    Apply regions to CellTables.

    Stateless; every call returns a new table or mask.
    """

    def mask(self, table: CellTable, region: Region, inverse: bool = False, cell: bool = False) -> np.ndarray:
        """
        Boolean membership mask of `region` over the rows of `table`.
        """
        if region.kind == "box":
            inside = self._box(table, region, cell)
        elif region.kind == "cylinder":
            inside = self._cylinder(table, region, cell)
        elif region.kind == "sphere":
            inside = self._sphere(table, region, cell)
        elif region.kind == "shell":
            inside = self.mask(table, region.bounding(region.outer), cell=cell) & ~self.mask(
                table, region.bounding(region.inner), cell=cell
            )
        else:
            raise ConfigurationError(f"Unsupported region kind '{region.kind}'")

        return ~inside if inverse else inside

    def evaluate(self, table: CellTable, region: Region, inverse: bool = False, cell: bool = False) -> CellTable:
        """
        Return the sub-table of cells inside (or, with `inverse`, outside) `region`.
        """
        mask = self.mask(table, region, inverse=inverse, cell=cell)
        logger.debug(
            "%s selection%s: %d of %d cells kept",
            region.kind,
            " (inverse)" if inverse else "",
            int(np.count_nonzero(mask)),
            len(table),
        )
        return table.take(mask)

    # ──────────────────────────────────────────────────────────────
    # Shape predicates
    # ──────────────────────────────────────────────────────────────

    @staticmethod
    def _half(table: CellTable, cell: bool) -> np.ndarray:
        if cell:
            return 0.5 * table.cellsize()
        return np.zeros(len(table))

    def _box(self, table: CellTable, region: Box, cell: bool) -> np.ndarray:
        bounds = region.bounds(table)
        pos = table.positions()
        half = self._half(table, cell)

        mask = np.ones(len(table), dtype=bool)
        for i in range(3):
            lo, hi = bounds[i]
            mask &= (pos[:, i] + half >= lo) & (pos[:, i] - half <= hi)
        return mask

    def _cylinder(self, table: CellTable, region: Cylinder, cell: bool) -> np.ndarray:
        center = region.resolved_center(table)
        radius = region.length(table, region.radius)
        half_height = 0.5 * region.length(table, region.height)

        axis = AXES[region.direction]
        plane = [i for i in range(3) if i != axis]

        rel = np.abs(table.positions() - center)
        half = self._half(table, cell)
        # closest point of the cell cube (just the center for point mode)
        near = np.maximum(rel - half[:, None], 0.0)

        r2 = near[:, plane[0]] ** 2 + near[:, plane[1]] ** 2
        return (r2 <= radius ** 2) & (near[:, axis] <= half_height)

    def _sphere(self, table: CellTable, region: Sphere, cell: bool) -> np.ndarray:
        center = region.resolved_center(table)
        radius = region.length(table, region.radius)

        rel = np.abs(table.positions() - center)
        near = np.maximum(rel - self._half(table, cell)[:, None], 0.0)
        return np.sum(near ** 2, axis=1) <= radius ** 2


_ENGINE = SelectionEngine()


def subregion(table: CellTable, region: Region, inverse: bool = False, cell: bool = False) -> CellTable:
    """Select the cells of `table` inside `region`."""
    return _ENGINE.evaluate(table, region, inverse=inverse, cell=cell)


def shellregion(
    table: CellTable,
    inner: float,
    outer: float,
    shape: str = "sphere",
    height: Optional[float] = None,
    direction: str = "z",
    center: CenterSpec = None,
    range_unit: Optional[str] = STANDARD,
    inverse: bool = False,
    cell: bool = False,
) -> CellTable:
    """Select the cells of `table` inside a spherical or cylindrical shell."""
    shell = Shell(inner, outer, shape=shape, height=height, direction=direction, center=center, range_unit=range_unit)
    return _ENGINE.evaluate(table, shell, inverse=inverse, cell=cell)
