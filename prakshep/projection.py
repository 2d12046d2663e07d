# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
ProjectionEngine
──────────────────────────────────────────────────────────────────────────────
Rasterize per-cell fields onto a uniform 2-D pixel grid.

The target grid has 2^level pixels per side over the whole box, so every AMR
level maps onto an integer number of pixels:

- a cell at level L >= level falls into exactly one pixel;
- a cell at level L < level covers f x f pixels (f = 2^(level - L)), each
  receiving the fraction 1/f^2 of the cell.

Pixels finer than the finest cell therefore replicate the cell value and
never interpolate. The pixel footprint of the selected cells is computed
once per call and shared read-only by the workers; every worker owns the
grids of its own fields.

Field kinds:

    mean        sum(w*frac*v) / sum(w*frac)   (mode="sum": sum(w*frac*v))
    dispersion  sqrt(<v^2> - <v>^2) of the parent velocity component
    mass        sum(frac*mass)
    sd          sum(frac*mass) / pixel area

Pixels without any weight (or coverage) are NaN.

"""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import ConfigurationError
from .fields import FieldEvaluator
from .parallel import Progress, run_partitioned
from .table import CellTable
from .units import STANDARD, CenterSpec, Scale, resolve_center, resolve_range

logger = logging.getLogger("prakshep")

# dispersion map -> field it is the dispersion of
DISPERSION_FIELDS: Dict[str, str] = {
    "sigmax": "vx",
    "sigmay": "vy",
    "sigmaz": "vz",
    "sigma": "v",
    "sigmar_cylinder": "vr_cylinder",
    "sigmaphi_cylinder": "vphi_cylinder",
    "sigmar_sphere": "vr_sphere",
    "sigmatheta_sphere": "vtheta_sphere",
    "sigmaphi_sphere": "vphi_sphere",
}

EXTENSIVE_FIELDS = ("mass", "sd")

WEIGHTINGS = ("mass", "volume", None)
MODES = ("standard", "sum")

# projection direction -> (first in-plane axis, second in-plane axis, depth axis)
PLANES: Dict[str, Tuple[int, int, int]] = {
    "z": (0, 1, 2),
    "y": (0, 2, 1),
    "x": (1, 2, 0),
}

Range = Optional[Tuple[Optional[float], Optional[float]]]


class ProjectionRequest:
    """
    Parameters of one projection.

    Args:
        fields: field name or list of names to project.
        units: unit for every field (str), one per field (list) or a mapping
               field -> unit; unlisted fields stay in code units.
        direction: line of sight, "x", "y" or "z".
        weighting: "mass", "volume" or None.
        weighting_unit: unit applied to the weights.
        mode: "standard" (weighted mean) or "sum".
        lmax, res, pxsize: resolution, at most one of them. `pxsize` is a
               (value, unit) pair. Default is the finest level in the data.
        xrange, yrange, zrange: ranges relative to `center` in `range_unit`.
        center: projection center, default the origin.
        data_center: reference point of coordinate-dependent fields, default
               the projection center.
        mask: boolean row mask aligned with the table.
        max_workers: thread cap, default all hardware threads.
    """

    def __init__(
        self,
        fields: Union[str, Sequence[str]],
        units: Union[None, str, Sequence[str], Mapping[str, str]] = None,
        direction: str = "z",
        weighting: Optional[str] = "mass",
        weighting_unit: Optional[str] = STANDARD,
        mode: str = "standard",
        lmax: Optional[int] = None,
        res: Optional[int] = None,
        pxsize: Optional[Tuple[float, Optional[str]]] = None,
        xrange: Range = None,
        yrange: Range = None,
        zrange: Range = None,
        center: CenterSpec = None,
        range_unit: Optional[str] = STANDARD,
        data_center: CenterSpec = None,
        data_center_unit: Optional[str] = None,
        mask: Optional[np.ndarray] = None,
        max_workers: Optional[int] = None,
    ):
        self.fields: List[str] = [fields] if isinstance(fields, str) else list(fields)
        if not self.fields:
            raise ConfigurationError("No fields requested")
        if len(set(self.fields)) != len(self.fields):
            raise ConfigurationError(f"Duplicate fields in request: {self.fields}")

        self.units = self._field_units(units)

        if direction not in PLANES:
            raise ConfigurationError(f"direction must be one of {sorted(PLANES)}, got '{direction}'")
        if weighting not in WEIGHTINGS:
            raise ConfigurationError(f"weighting must be one of {WEIGHTINGS}, got '{weighting}'")
        if mode not in MODES:
            raise ConfigurationError(f"mode must be one of {MODES}, got '{mode}'")

        given = [name for name, value in (("lmax", lmax), ("res", res), ("pxsize", pxsize)) if value is not None]
        if len(given) > 1:
            raise ConfigurationError(f"Specify at most one of lmax, res, pxsize (got {', '.join(given)})")
        if lmax is not None and lmax < 0:
            raise ConfigurationError(f"lmax must be non-negative, got {lmax}")
        if res is not None and not res > 0:
            raise ConfigurationError(f"res must be positive, got {res}")
        if pxsize is not None:
            if isinstance(pxsize, (int, float)):
                pxsize = (pxsize, STANDARD)
            pxsize = tuple(pxsize)
            if len(pxsize) != 2 or not pxsize[0] > 0:
                raise ConfigurationError(f"pxsize must be a positive (value, unit) pair, got {pxsize}")
        if max_workers is not None and max_workers < 1:
            raise ConfigurationError(f"max_workers must be at least 1, got {max_workers}")

        self.direction = direction
        self.weighting = weighting
        self.weighting_unit = weighting_unit
        self.mode = mode
        self.lmax = lmax
        self.res = res
        self.pxsize = pxsize
        self.xrange = xrange
        self.yrange = yrange
        self.zrange = zrange
        self.center = center
        self.range_unit = range_unit
        self.data_center = data_center
        self.data_center_unit = range_unit if data_center_unit is None else data_center_unit
        self.mask = None if mask is None else np.asarray(mask, dtype=bool)
        self.max_workers = max_workers

    def _field_units(self, units) -> Dict[str, str]:
        if units is None or isinstance(units, str):
            return {name: units or STANDARD for name in self.fields}
        if isinstance(units, Mapping):
            unknown = [name for name in units if name not in self.fields]
            if unknown:
                raise ConfigurationError(f"Units given for fields not requested: {unknown}")
            return {name: units.get(name, STANDARD) for name in self.fields}
        units = list(units)
        if len(units) != len(self.fields):
            raise ConfigurationError(f"Got {len(units)} units for {len(self.fields)} fields")
        return dict(zip(self.fields, units))

    def field_kind(self, name: str) -> str:
        if name in DISPERSION_FIELDS:
            return "dispersion"
        if name in EXTENSIVE_FIELDS:
            return name
        return "mean"

    def __repr__(self) -> str:
        return (
            f"ProjectionRequest(fields={self.fields}, direction='{self.direction}', "
            f"weighting={self.weighting!r}, mode='{self.mode}')"
        )


class ProjectionResult:
    """
    Ordered mapping field -> 2-D map plus the pixel geometry.

    Maps have shape (n_a, n_b); the first index runs along the first in-plane
    axis (x for direction z and y, y for direction x). Lengths (`pixsize`,
    `extent`, `extent_center`, `center`, `data_center`) are in code units and
    can be converted with `scale`.
    """

    def __init__(
        self,
        maps: Dict[str, np.ndarray],
        units: Dict[str, str],
        modes: Dict[str, str],
        weightings: Dict[str, Optional[str]],
        level: int,
        pixsize: float,
        extent: Tuple[float, float, float, float],
        center: np.ndarray,
        data_center: np.ndarray,
        direction: str,
        boxlen: float,
        lmin: int,
        lmax: int,
        scale: Scale,
    ):
        self.maps = maps
        self.units = units
        self.modes = modes
        self.weightings = weightings
        self.level = level
        self.res = 2 ** level
        self.pixsize = pixsize
        self.extent = tuple(float(e) for e in extent)
        self.center = center
        self.data_center = data_center
        self.direction = direction
        self.boxlen = boxlen
        self.lmin = lmin
        self.lmax = lmax
        self.scale = scale

        a_axis, b_axis, _ = PLANES[direction]
        a0, a1, b0, b1 = self.extent
        self.extent_center = (
            a0 - center[a_axis],
            a1 - center[a_axis],
            b0 - center[b_axis],
            b1 - center[b_axis],
        )
        self.ratio = (a1 - a0) / (b1 - b0)

    def __getitem__(self, name: str) -> np.ndarray:
        return self.maps[name]

    def __contains__(self, name: object) -> bool:
        return name in self.maps

    def __iter__(self) -> Iterator[str]:
        return iter(self.maps)

    def __len__(self) -> int:
        return len(self.maps)

    def keys(self):
        return self.maps.keys()

    def items(self):
        return self.maps.items()

    @property
    def shape(self) -> Tuple[int, int]:
        a0, a1, b0, b1 = self.extent
        return (int(round((a1 - a0) / self.pixsize)), int(round((b1 - b0) / self.pixsize)))

    def pixsize_in(self, unit: Optional[str]) -> float:
        return self.pixsize * self.scale.length_factor(unit)

    def extent_in(self, unit: Optional[str], relative: bool = False) -> Tuple[float, ...]:
        factor = self.scale.length_factor(unit)
        extent = self.extent_center if relative else self.extent
        return tuple(e * factor for e in extent)

    def __repr__(self) -> str:
        return (
            f"ProjectionResult(fields={list(self.maps)}, direction='{self.direction}', "
            f"level={self.level}, shape={self.shape})"
        )


class _Footprint:
    """
    Pixel coverage of the selected rows.

    Each entry links one row (`entry_row`, index into `rows`) to one pixel
    (`flat`, index into the flattened map) with coverage fraction `frac`.
    """

    def __init__(self, rows: np.ndarray, entry_row: np.ndarray, flat: np.ndarray, frac: np.ndarray, shape: Tuple[int, int]):
        self.rows = rows
        self.entry_row = entry_row
        self.flat = flat
        self.frac = frac
        self.shape = shape
        self.npix = shape[0] * shape[1]

    def accumulate(self, values: np.ndarray) -> np.ndarray:
        """Per-pixel sum of `values` (one value per entry)."""
        return np.bincount(self.flat, weights=values, minlength=self.npix)


def pixel_window(lo: float, hi: float, boxlen: float, npix: int) -> Tuple[int, int]:
    """
    Bounding pixel interval [i0, i1) of the range [lo, hi], at least one pixel wide.

    Raises:
        ConfigurationError if the range does not intersect the box.
    """
    if hi < 0.0 or lo > boxlen or (lo < hi and (hi <= 0.0 or lo >= boxlen)):
        raise ConfigurationError(
            f"Range [{lo:.6g}, {hi:.6g}] lies outside the box [0, {boxlen:.6g}]"
        )
    lo = min(max(lo, 0.0), boxlen)
    hi = min(max(hi, 0.0), boxlen)
    i0 = int(math.floor(lo / boxlen * npix))
    i1 = int(math.ceil(hi / boxlen * npix))
    i0 = min(max(i0, 0), npix - 1)
    i1 = min(max(i1, i0 + 1), npix)
    return i0, i1


def resolve_level(request: ProjectionRequest, table: CellTable) -> int:
    """Target level from lmax, res or pxsize; the finest data level by default."""
    if request.lmax is not None:
        return int(request.lmax)
    if request.res is not None:
        return max(0, int(math.ceil(math.log2(request.res) - 1e-9)))
    if request.pxsize is not None:
        value, unit = request.pxsize
        size = table.scale.to_code_length(value, unit)
        return max(0, int(math.ceil(math.log2(table.boxlen / size) - 1e-9)))
    return table.lmax


def compute_footprint(
    table: CellTable,
    level: int,
    direction: str,
    window: Tuple[int, int, int, int],
    depth: Tuple[float, float],
    mask: Optional[np.ndarray] = None,
) -> _Footprint:
    """
    Map every selected row onto the pixels of the window at `level`.

    Rows are selected by `mask` and by their center lying inside the `depth`
    interval along the line of sight.
    """
    a_axis, b_axis, d_axis = PLANES[direction]
    ia0, ia1, ib0, ib1 = window
    nb = ib1 - ib0
    shape = (ia1 - ia0, nb)

    keep = np.ones(len(table), dtype=bool) if mask is None else mask.copy()
    if len(table):
        centers = table.positions()[:, d_axis]
        keep &= (centers >= depth[0]) & (centers <= depth[1])
    rows = np.nonzero(keep)[0]

    coords = table.coords()[rows]
    levels = table.level[rows]
    ca = coords[:, a_axis] - 1
    cb = coords[:, b_axis] - 1

    entry_rows, pa_all, pb_all, frac_all = [], [], [], []
    for lvl in np.unique(levels):
        sel = np.nonzero(levels == lvl)[0]
        if lvl >= level:
            shift = int(lvl - level)
            pa = ca[sel] >> shift
            pb = cb[sel] >> shift
            er = sel
            frac = np.ones(len(sel))
        else:
            f = 1 << int(level - lvl)
            k = np.arange(f)
            pa = (ca[sel] * f)[:, None, None] + k[None, :, None]
            pb = (cb[sel] * f)[:, None, None] + k[None, None, :]
            pa, pb = np.broadcast_arrays(pa, pb)
            pa = pa.reshape(-1)
            pb = pb.reshape(-1)
            er = np.repeat(sel, f * f)
            frac = np.full(len(er), 1.0 / (f * f))

        inside = (pa >= ia0) & (pa < ia1) & (pb >= ib0) & (pb < ib1)
        entry_rows.append(er[inside])
        pa_all.append(pa[inside])
        pb_all.append(pb[inside])
        frac_all.append(frac[inside])

    if entry_rows:
        entry_row = np.concatenate(entry_rows)
        flat = (np.concatenate(pa_all) - ia0) * nb + (np.concatenate(pb_all) - ib0)
        frac = np.concatenate(frac_all)
    else:
        entry_row = np.zeros(0, dtype=np.int64)
        flat = np.zeros(0, dtype=np.int64)
        frac = np.zeros(0)

    return _Footprint(rows, entry_row, flat.astype(np.int64), frac, shape)


class ProjectionEngine:
    """
    Project CellTables along a coordinate axis.

    Args:
        evaluator: FieldEvaluator used for all field values (default: one
                   built from the table's gamma).
        max_workers: default thread cap when the request does not set one.
    """

    def __init__(self, evaluator: Optional[FieldEvaluator] = None, max_workers: Optional[int] = None):
        self.evaluator = evaluator
        self.max_workers = max_workers

    def _check_fields(self, evaluator: FieldEvaluator, table: CellTable, request: ProjectionRequest) -> None:
        needed = []
        for name in request.fields:
            kind = request.field_kind(name)
            if kind == "dispersion":
                needed.append(DISPERSION_FIELDS[name])
            elif kind == "sd":
                needed.append("mass")
            else:
                needed.append(name)
        if request.weighting is not None:
            needed.append(request.weighting)
        evaluator.check(table, needed)

    def project(self, table: CellTable, request: ProjectionRequest, progress: Progress = None) -> ProjectionResult:
        """
        Run `request` on `table`.

        Every parameter is validated before any accumulation starts; an error
        in any field aborts the whole call.
        """
        evaluator = self.evaluator or FieldEvaluator.for_table(table)
        scale = table.scale

        # Resolve resolution
        level = resolve_level(request, table)
        npix = 2 ** level
        pixsize = table.boxlen / npix

        # Resolve field list, units and geometry
        self._check_fields(evaluator, table, request)
        factors = {name: scale.factor(request.units[name]) for name in request.fields}
        weight_factor = scale.factor(request.weighting_unit)

        if request.mask is not None and len(request.mask) != len(table):
            raise ConfigurationError(
                f"Mask has {len(request.mask)} entries but the table has {len(table)} rows"
            )

        center = resolve_center(request.center, request.range_unit, scale, table.boxlen)
        if request.data_center is None:
            data_center = center.copy()
        else:
            data_center = resolve_center(request.data_center, request.data_center_unit, scale, table.boxlen)

        a_axis, b_axis, d_axis = PLANES[request.direction]
        ranges = (request.xrange, request.yrange, request.zrange)
        bounds = [
            resolve_range(ranges[i], center[i], request.range_unit, scale, 0.0, table.boxlen)
            for i in range(3)
        ]
        ia0, ia1 = pixel_window(bounds[a_axis][0], bounds[a_axis][1], table.boxlen, npix)
        ib0, ib1 = pixel_window(bounds[b_axis][0], bounds[b_axis][1], table.boxlen, npix)

        logger.info(
            "Projection along %s: level %d, %dx%d pixels, pixel size %.6g (code units)",
            request.direction, level, ia1 - ia0, ib1 - ib0, pixsize,
        )
        logger.info("Fields: %s", ", ".join(request.fields))
        if level > table.lmax:
            logger.info("Pixels finer than the finest cell (level %d): cell values are replicated", table.lmax)

        # Allocate footprint and weights
        footprint = compute_footprint(
            table, level, request.direction, (ia0, ia1, ib0, ib1), bounds[d_axis], request.mask
        )
        logger.debug("%d rows contribute %d pixel entries", len(footprint.rows), len(footprint.flat))

        if request.weighting is None:
            weights = np.ones(len(footprint.rows))
        else:
            weights = evaluator.get(table, request.weighting, rows=footprint.rows) * weight_factor
        entry_weights = weights[footprint.entry_row] * footprint.frac

        def values(name: str) -> np.ndarray:
            return evaluator.get(table, name, center=data_center, rows=footprint.rows)[footprint.entry_row]

        # Accumulate and finalize, one field per task
        def project_field(name: str) -> np.ndarray:
            kind = request.field_kind(name)
            if kind in EXTENSIVE_FIELDS:
                grid = self._extensive(footprint, values("mass"))
                if kind == "sd":
                    grid = grid / pixsize ** 2
            elif kind == "dispersion":
                grid = self._dispersion(footprint, entry_weights, values(DISPERSION_FIELDS[name]))
            elif request.mode == "sum":
                grid = self._summed(footprint, entry_weights, values(name))
            else:
                grid = self._mean(footprint, entry_weights, values(name))
            return grid.reshape(footprint.shape) * factors[name]

        workers = request.max_workers or self.max_workers
        maps = run_partitioned(project_field, request.fields, max_workers=workers, progress=progress)

        # Package
        modes, weightings = {}, {}
        for name in request.fields:
            kind = request.field_kind(name)
            if kind in EXTENSIVE_FIELDS:
                modes[name], weightings[name] = "sum", None
            elif kind == "dispersion":
                modes[name], weightings[name] = "standard", request.weighting
            else:
                modes[name], weightings[name] = request.mode, request.weighting

        return ProjectionResult(
            maps=maps,
            units=dict(request.units),
            modes=modes,
            weightings=weightings,
            level=level,
            pixsize=pixsize,
            extent=(ia0 * pixsize, ia1 * pixsize, ib0 * pixsize, ib1 * pixsize),
            center=center,
            data_center=data_center,
            direction=request.direction,
            boxlen=table.boxlen,
            lmin=table.lmin,
            lmax=table.lmax,
            scale=scale,
        )

    # ──────────────────────────────────────────────────────────────
    # Accumulators
    # ──────────────────────────────────────────────────────────────

    @staticmethod
    def _extensive(footprint: _Footprint, mass: np.ndarray) -> np.ndarray:
        total = footprint.accumulate(footprint.frac * mass)
        coverage = footprint.accumulate(footprint.frac)
        return np.where(coverage > 0, total, np.nan)

    @staticmethod
    def _summed(footprint: _Footprint, weights: np.ndarray, v: np.ndarray) -> np.ndarray:
        total = footprint.accumulate(weights * v)
        coverage = footprint.accumulate(footprint.frac)
        return np.where(coverage > 0, total, np.nan)

    @staticmethod
    def _mean(footprint: _Footprint, weights: np.ndarray, v: np.ndarray) -> np.ndarray:
        wsum = footprint.accumulate(weights)
        vsum = footprint.accumulate(weights * v)
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(wsum > 0, vsum / wsum, np.nan)

    @staticmethod
    def _dispersion(footprint: _Footprint, weights: np.ndarray, v: np.ndarray) -> np.ndarray:
        # moments around one sample value per pixel
        ref = np.zeros(footprint.npix)
        ref[footprint.flat] = v
        d = v - ref[footprint.flat]

        wsum = footprint.accumulate(weights)
        s1 = footprint.accumulate(weights * d)
        s2 = footprint.accumulate(weights * d * d)
        with np.errstate(divide="ignore", invalid="ignore"):
            mean = s1 / wsum
            var = s2 / wsum - mean ** 2
            return np.where(wsum > 0, np.sqrt(np.maximum(var, 0.0)), np.nan)


def projection(
    table: CellTable,
    fields: Union[str, Sequence[str]],
    units: Union[None, str, Sequence[str], Mapping[str, str]] = None,
    evaluator: Optional[FieldEvaluator] = None,
    progress: Progress = None,
    **kwargs,
) -> ProjectionResult:
    """
    Project `fields` of `table`; keyword arguments are those of ProjectionRequest.
    """
    request = ProjectionRequest(fields, units=units, **kwargs)
    return ProjectionEngine(evaluator).project(table, request, progress=progress)
