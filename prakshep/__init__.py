# -*- coding: utf-8 -*-

"""

Prakshep: selection, projection and statistics for RAMSES AMR cells
===================================================================

──────────────────────────────────────────────────────────────────────────────
Description
──────────────────────────────────────────────────────────────────────────────
Prakshep turns RAMSES leaf cells into a flat, immutable CellTable and offers
three engines on top of it:

- SelectionEngine cuts boxes, cylinders, spheres and shells out of a table.
- ProjectionEngine rasterizes base and derived fields onto a 2-D pixel grid
  at any power-of-two resolution, one worker per group of fields.
- StatsEngine computes weighted statistics, mass sums, centres of mass and
  bulk velocities.

──────────────────────────────────────────────────────────────────────────────
WHY THIS EXISTS
──────────────────────────────────────────────────────────────────────────────
- RAMSES stores data on an Adaptive Mesh Refinement (AMR) grid whose levels
  rarely match the resolution a map or profile is needed at.
- Keeping cells as (level, integer coordinates) rows means every level lines
  up with a power-of-two pixel grid, so projections never interpolate.

"""

from .errors import (
    PrakshepError,
    ConfigurationError,
    UnknownField,
    MissingPrerequisite,
    UnknownUnitError,
    UnitResolutionError,
    DegenerateWeightError,
)

from .units import Scale, resolve_center, resolve_range
from .table import CellTable, setup_logging
from .fields import DEFAULT_GAMMA, DERIVED_FIELDS, FieldEvaluator

from .geometry import (
    Box,
    Cylinder,
    Sphere,
    Shell,
    SelectionEngine,
    subregion,
    shellregion,
)

from .projection import (
    DISPERSION_FIELDS,
    EXTENSIVE_FIELDS,
    ProjectionRequest,
    ProjectionResult,
    ProjectionEngine,
    projection,
)

from .stats import WStat, weighted_stats, StatsEngine
from .ingest import LoadDescriptor, load_cells, table_from_dataset
from .store import save_cells, read_cells
from .parallel import load_outputs

__version__ = "1.0.0"
