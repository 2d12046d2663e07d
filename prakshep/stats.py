# -*- coding: utf-8 -*-

"""

──────────────────────────────────────────────────────────────────────────────
StatsEngine
──────────────────────────────────────────────────────────────────────────────
Weighted descriptive statistics over cell fields.

Moments are central moments computed in two passes (mean first, then the
deviations), with population normalisation:

    std       = sqrt(m2)
    skewness  = m3 / m2^1.5
    kurtosis  = m4 / m2^2 - 3          (excess)

Skewness and kurtosis are NaN for a distribution without spread. The median
is the lower weighted median; when the cumulative weight reaches exactly one
half it is the average of that value and the next one.

"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import numpy as np

from .errors import ConfigurationError, DegenerateWeightError
from .fields import FieldEvaluator
from .table import CellTable
from .units import STANDARD

logger = logging.getLogger("prakshep")

STAT_WEIGHTINGS = ("mass", "volume", None)


class WStat:
    """Result of `weighted_stats`."""

    def __init__(self, mean, median, std, skewness, kurtosis, min, max):
        self.mean = float(mean)
        self.median = float(median)
        self.std = float(std)
        self.skewness = float(skewness)
        self.kurtosis = float(kurtosis)
        self.min = float(min)
        self.max = float(max)

    def as_dict(self) -> Dict[str, float]:
        return {
            "mean": self.mean,
            "median": self.median,
            "std": self.std,
            "skewness": self.skewness,
            "kurtosis": self.kurtosis,
            "min": self.min,
            "max": self.max,
        }

    def __repr__(self) -> str:
        body = ", ".join(f"{k}={v:.6g}" for k, v in self.as_dict().items())
        return f"WStat({body})"


def weighted_median(values: np.ndarray, weights: np.ndarray) -> float:
    order = np.argsort(values, kind="mergesort")
    v = values[order]
    w = weights[order]

    cw = np.cumsum(w)
    half = 0.5 * cw[-1]
    idx = int(np.searchsorted(cw, half))

    if cw[idx] == half:
        later = np.nonzero(w[idx + 1:] > 0)[0]
        if len(later):
            return 0.5 * (v[idx] + v[idx + 1 + later[0]])
    return float(v[idx])


def weighted_stats(values, weights=None, mask=None) -> WStat:
    """
    Weighted mean, median, std, skewness, kurtosis, min and max.

    Args:
        values: 1-D array of samples.
        weights: non-negative weights of the same length (default: all 1).
        mask: optional boolean array selecting the samples to use.

    Raises:
        ConfigurationError for negative weights or mismatched lengths.
        DegenerateWeightError if the selected weights sum to zero.
    """
    values = np.asarray(values, dtype=float).reshape(-1)

    if weights is None:
        weights = np.ones(len(values))
    else:
        weights = np.asarray(weights, dtype=float).reshape(-1)
        if len(weights) != len(values):
            raise ConfigurationError(f"Got {len(weights)} weights for {len(values)} values")
        if np.any(weights < 0):
            raise ConfigurationError("Weights must be non-negative")

    if mask is not None:
        mask = np.asarray(mask, dtype=bool).reshape(-1)
        if len(mask) != len(values):
            raise ConfigurationError(f"Mask has {len(mask)} entries for {len(values)} values")
        values = values[mask]
        weights = weights[mask]

    wsum = float(np.sum(weights))
    if len(values) == 0 or wsum == 0:
        raise DegenerateWeightError("Weights sum to zero; statistics are undefined")

    vmin, vmax = values.min(), values.max()
    if vmin == vmax:
        mean = float(vmin)
    else:
        mean = float(np.sum(weights * values) / wsum)

    d = values - mean
    m2 = float(np.sum(weights * d ** 2) / wsum)
    m3 = float(np.sum(weights * d ** 3) / wsum)
    m4 = float(np.sum(weights * d ** 4) / wsum)

    if m2 > 0:
        skewness = m3 / m2 ** 1.5
        kurtosis = m4 / m2 ** 2 - 3.0
    else:
        skewness = kurtosis = np.nan

    return WStat(
        mean=mean,
        median=weighted_median(values, weights),
        std=np.sqrt(m2),
        skewness=skewness,
        kurtosis=kurtosis,
        min=vmin,
        max=vmax,
    )


class StatsEngine:
    """
    Statistics of CellTable fields, using FieldEvaluator for every value.

    Args:
        evaluator: shared evaluator; by default one is built per table from
                   its recorded gamma.
    """

    def __init__(self, evaluator: Optional[FieldEvaluator] = None):
        self.evaluator = evaluator

    def _evaluator(self, table: CellTable) -> FieldEvaluator:
        return self.evaluator or FieldEvaluator.for_table(table)

    @staticmethod
    def weighted_stats(values, weights=None, mask=None) -> WStat:
        return weighted_stats(values, weights, mask)

    def _weights(self, table: CellTable, weighting: Optional[str], mask) -> Optional[np.ndarray]:
        if weighting not in STAT_WEIGHTINGS:
            raise ConfigurationError(f"weighting must be one of {STAT_WEIGHTINGS}, got '{weighting}'")
        if weighting is None:
            return None
        return self._evaluator(table).evaluate(table, weighting, mask=mask)

    def field_stats(
        self,
        table: CellTable,
        field: str,
        weighting: Optional[str] = "mass",
        unit: Optional[str] = STANDARD,
        center=None,
        center_unit: Optional[str] = STANDARD,
        mask: Optional[np.ndarray] = None,
    ) -> WStat:
        """Weighted statistics of `field` in `unit` over the (masked) rows."""
        evaluator = self._evaluator(table)
        values = evaluator.evaluate(table, field, unit=unit, center=center, center_unit=center_unit, mask=mask)
        weights = self._weights(table, weighting, mask)
        stats = weighted_stats(values, weights)
        logger.debug("%s (%s, weighting=%s): %r", field, unit, weighting, stats)
        return stats

    def msum(self, table: CellTable, unit: Optional[str] = STANDARD, mask: Optional[np.ndarray] = None) -> float:
        """Total mass in `unit`."""
        return float(np.sum(self._evaluator(table).evaluate(table, "mass", unit=unit, mask=mask)))

    def center_of_mass(
        self, table: CellTable, unit: Optional[str] = STANDARD, mask: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """Mass-weighted mean cell position, in the length `unit`."""
        evaluator = self._evaluator(table)
        mass = evaluator.evaluate(table, "mass", mask=mask)
        total = float(np.sum(mass))
        if total == 0:
            raise DegenerateWeightError("Total mass is zero; center of mass is undefined")

        factor = table.scale.length_factor(unit)
        pos = [evaluator.evaluate(table, axis, mask=mask) for axis in ("x", "y", "z")]
        return np.array([np.sum(mass * p) / total for p in pos]) * factor

    com = center_of_mass

    def bulk_velocity(
        self,
        table: CellTable,
        unit: Optional[str] = STANDARD,
        weighting: Optional[str] = "mass",
        mask: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Weighted mean velocity vector in `unit`."""
        evaluator = self._evaluator(table)
        weights = self._weights(table, weighting, mask)
        comps = [evaluator.evaluate(table, name, unit=unit, mask=mask) for name in ("vx", "vy", "vz")]
        if weights is None:
            weights = np.ones(len(comps[0]))

        total = float(np.sum(weights))
        if total == 0:
            raise DegenerateWeightError("Weights sum to zero; bulk velocity is undefined")
        return np.array([np.sum(weights * v) / total for v in comps])

    def average_mweighted(self, table: CellTable, field: str, mask: Optional[np.ndarray] = None) -> float:
        """Mass-weighted average of `field` in code units."""
        evaluator = self._evaluator(table)
        mass = evaluator.evaluate(table, "mass", mask=mask)
        values = evaluator.evaluate(table, field, mask=mask)
        total = float(np.sum(mass))
        if total == 0:
            raise DegenerateWeightError("Total mass is zero; mass-weighted average is undefined")
        return float(np.sum(mass * values) / total)
