#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

─────────────────────────────────────────────────────────────
Example Usage of Prakshep
─────────────────────────────────────────────────────────────

This script demonstrates the selection, projection and
statistics engines on a synthetic rotating disc, or on a real
RAMSES snapshot when RAMSES_OUTPUT_ROOT points to one.

Features demonstrated:
1. Building (or loading) a CellTable
2. Cutting a cylinder around the box center
3. Projecting surface density, velocity and dispersion maps
4. Weighted statistics, total mass and bulk velocity
5. Saving the selection to HDF5

─────────────────────────────────────────────────────────────

"""

import os

import numpy as np

from prakshep import (
    CellTable,
    Cylinder,
    LoadDescriptor,
    SelectionEngine,
    StatsEngine,
    load_cells,
    projection,
    save_cells,
    setup_logging,
)

# ──────────────────────────────────────────────────────────────
# Configuration
# ──────────────────────────────────────────────────────────────

RAMSES_OUTPUT_ROOT = "ramses_outputs/sedov_3d"

SNAPSHOT = 1

LEVEL = 5

OUTPUT_FILE = None  # Set to e.g. "disc_cells.h5" to save the selection


# ──────────────────────────────────────────────────────────────
# Helper Functions
# ──────────────────────────────────────────────────────────────


def synthetic_disc(level: int) -> CellTable:
    """Uniform grid with an exponential disc in solid-body rotation about z."""
    base = CellTable.uniform(level, rho=1.0)
    rel = base.positions() - 0.5
    r = np.hypot(rel[:, 0], rel[:, 1])
    rho = 1e-3 + np.exp(-r / 0.1) * np.exp(-np.abs(rel[:, 2]) / 0.02)
    return base.replace_columns(
        {
            "rho": rho,
            "vx": -rel[:, 1],
            "vy": rel[:, 0],
            "vz": np.zeros(len(base)),
            "p": 0.01 * rho,
        }
    )


def get_table() -> CellTable:
    if os.path.isdir(RAMSES_OUTPUT_ROOT):
        descriptor = LoadDescriptor(fields=["rho", "vx", "vy", "vz", "p"], lmax=LEVEL)
        return load_cells(SNAPSHOT, RAMSES_OUTPUT_ROOT, descriptor)
    print(f"No outputs in '{RAMSES_OUTPUT_ROOT}', using a synthetic disc.")
    return synthetic_disc(LEVEL)


def print_map_summary(result):

    print(f"Maps at level {result.level} ({result.shape[0]}x{result.shape[1]} pixels):")
    for name, arr in result.items():
        print(f"  {name:8s} [{result.units[name]}]  min={np.nanmin(arr):.4g}  max={np.nanmax(arr):.4g}")


# ──────────────────────────────────────────────────────────────
# Main Example Workflow
# ──────────────────────────────────────────────────────────────

def main():

    setup_logging(verbose=False)

    print("=== Prakshep Example Usage ===\n")

    table = get_table()
    print(table)

    disc = SelectionEngine().evaluate(table, Cylinder(0.3, 0.1, direction="z", center="bc"))
    print(f"Cells in the disc cylinder: {len(disc)}\n")

    result = projection(
        disc,
        ["sd", "vphi_cylinder", "sigmaz"],
        direction="z",
        center="bc",
        xrange=(-0.3, 0.3),
        yrange=(-0.3, 0.3),
        max_workers=2,
    )
    print_map_summary(result)

    stats = StatsEngine()
    print("\nDensity statistics (mass weighted):", stats.field_stats(disc, "rho"))
    print("Total mass:", stats.msum(disc))
    print("Bulk velocity:", stats.bulk_velocity(disc))

    if OUTPUT_FILE:
        save_cells(disc, OUTPUT_FILE)
        print(f"Saved selection to '{OUTPUT_FILE}'")

    print("\nExample usage finished!")


# ──────────────────────────────────────────────────────────────
# Entry Point
# ──────────────────────────────────────────────────────────────

if __name__ == "__main__":
    main()
