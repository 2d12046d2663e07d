"""
Unit tests for prakshep parallel helpers.

These tests verify that:
1. Work is partitioned into disjoint, order-preserving groups
2. The worker count is capped by max_workers and by the number of tasks
3. run_partitioned returns results in request order and propagates errors
4. load_outputs loads every snapshot (serial path)

"""

import pytest

import prakshep.parallel as parallel
from prakshep.parallel import partition, resolve_worker_count, run_partitioned, load_outputs

from conftest import make_amr_table


# ──────────────────────────────────────────────────────────────
# Partitioning
# ──────────────────────────────────────────────────────────────

def test_partition_round_robin():
    assert partition(["a", "b", "c", "d", "e"], 2) == [["a", "c", "e"], ["b", "d"]]


def test_partition_never_empty_groups():
    groups = partition(["a", "b"], 8)
    assert groups == [["a"], ["b"]]


def test_resolve_worker_count():
    assert resolve_worker_count(4, 2) == 2
    assert resolve_worker_count(1, 10) == 1
    assert resolve_worker_count(None, 1) == 1
    assert resolve_worker_count(None, 1000) >= 1


# ──────────────────────────────────────────────────────────────
# run_partitioned
# ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize("workers", [1, 3])
def test_run_partitioned_order(workers):
    names = ["rho", "vx", "vy", "p", "mass"]
    results = run_partitioned(lambda name: name.upper(), names, max_workers=workers)
    assert list(results) == names
    assert results["mass"] == "MASS"


def test_run_partitioned_propagates_errors():
    """A failing task aborts the whole call."""

    def worker(name):
        if name == "bad":
            raise ValueError("boom")
        return name

    with pytest.raises(ValueError):
        run_partitioned(worker, ["a", "bad", "c"], max_workers=2)


def test_run_partitioned_empty():
    assert run_partitioned(lambda name: name, []) == {}


# ──────────────────────────────────────────────────────────────
# load_outputs
# ──────────────────────────────────────────────────────────────

def test_load_outputs_serial(monkeypatch):
    seen = []

    def fake_load(output_num, path, descriptor=None):
        seen.append(output_num)
        return make_amr_table()

    monkeypatch.setattr(parallel, "load_cells", fake_load)
    tables = load_outputs([1, 2], "ramses_outputs")

    assert seen == [1, 2]
    assert sorted(tables) == [1, 2]
    assert len(tables[2]) == 15
