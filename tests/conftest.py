"""
Shared fixtures for the prakshep test-suite.

All tables are synthetic: uniform grids built with CellTable.uniform and a
small two-level AMR table where the first octant of a level-1 grid is refined
into eight level-2 cells.

"""

import numpy as np
import pytest

from prakshep.table import CellTable


# ──────────────────────────────────────────────────────────────
# Builders
# ──────────────────────────────────────────────────────────────

def make_amr_table(rho_fine: float = 3.0, rho_coarse: float = 1.0, boxlen: float = 1.0) -> CellTable:
    """15 leaf cells: 7 at level 1 and 8 at level 2 filling the octant (1, 1, 1)."""
    level, cx, cy, cz, rho = [], [], [], [], []
    for i in (1, 2):
        for j in (1, 2):
            for k in (1, 2):
                if (i, j, k) == (1, 1, 1):
                    for a in (1, 2):
                        for b in (1, 2):
                            for c in (1, 2):
                                level.append(2)
                                cx.append(a)
                                cy.append(b)
                                cz.append(c)
                                rho.append(rho_fine)
                else:
                    level.append(1)
                    cx.append(i)
                    cy.append(j)
                    cz.append(k)
                    rho.append(rho_coarse)

    n = len(level)
    columns = {
        "rho": rho,
        "vx": np.linspace(-1.0, 1.0, n),
        "vy": np.linspace(0.5, -0.5, n),
        "vz": np.zeros(n),
        "p": np.full(n, 0.6),
    }
    return CellTable(level, cx, cy, cz, columns, boxlen=boxlen, info={"gamma": 5.0 / 3.0})


# ──────────────────────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────────────────────

@pytest.fixture
def cube8():
    """2x2x2 grid at level 1 with rho = 2."""
    return CellTable.uniform(1, rho=2.0, vx=0.3, vy=0.0, vz=0.0, p=1.0)


@pytest.fixture
def amr_table():
    return make_amr_table()


@pytest.fixture
def grid3():
    """8x8x8 grid at level 3 with a density gradient along z."""
    n = 8
    z = (np.arange(1, n + 1) - 0.5) / n
    rho = np.broadcast_to(1.0 + z, (n, n, n)).reshape(-1)
    return CellTable.uniform(3, rho=rho, vx=0.0, vy=0.0, vz=0.0, p=1.0)
