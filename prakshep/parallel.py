#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Parallel execution utilities for prakshep.

Two pools are used:

- a thread pool for field-partitioned projection work. Every worker owns a
  disjoint subset of the requested fields and only ever writes to its own
  grids; the cell table is shared read-only.
- a process pool for loading several snapshots at once, one snapshot per
  task.

"""

from __future__ import annotations

from functools import partial
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

import logging
import os
import threading
import time
import concurrent.futures

from .ingest import LoadDescriptor, load_cells
from .table import CellTable, setup_logging

logger = logging.getLogger("prakshep")

T = TypeVar("T")

Progress = Optional[Callable[[int, int], None]]


def available_threads() -> int:
    """Number of hardware threads, at least 1."""
    return os.cpu_count() or 1


def resolve_worker_count(max_workers: Optional[int], ntasks: int) -> int:
    """
    Number of workers actually used: min(max_workers or all threads, ntasks),
    and never less than 1.
    """
    if max_workers is not None and max_workers > 0:
        nworkers = max_workers
    else:
        nworkers = available_threads()
    return max(1, min(nworkers, ntasks))


def partition(items: Sequence[T], nparts: int) -> List[List[T]]:
    """Split `items` round-robin into `nparts` non-empty groups (order kept within groups)."""
    nparts = max(1, min(nparts, len(items)))
    return [list(items[i::nparts]) for i in range(nparts)]


def run_partitioned(
    worker: Callable[[str], T],
    names: Sequence[str],
    max_workers: Optional[int] = None,
    progress: Progress = None,
) -> Dict[str, T]:
    """
    Run `worker(name)` for every name, grouped into disjoint partitions.

    Each partition is handled by exactly one thread, sequentially. The first
    exception raised by any worker propagates to the caller.

    Args:
        worker: Function computing the result for one name.
        names: Names to process; results are returned in this order.
        max_workers: Upper bound on threads. None uses all hardware threads.
        progress: Optional callback progress(done, total) invoked after each
                  completed name.

    Returns:
        Mapping name -> worker result.
    """
    names = list(names)
    total = len(names)
    if total == 0:
        return {}

    nworkers = resolve_worker_count(max_workers, total)
    groups = partition(names, nworkers)

    lock = threading.Lock()
    done = [0]

    def run_group(group: List[str]) -> Dict[str, T]:
        out = {}
        for name in group:
            t0 = time.time()
            out[name] = worker(name)
            logger.debug("[%s] field '%s' done in %.3fs", threading.current_thread().name, name, time.time() - t0)
            if progress is not None:
                with lock:
                    done[0] += 1
                    progress(done[0], total)
        return out

    logger.info("Starting on %d worker(s) for %d field(s)", nworkers, total)
    t0 = time.time()

    results: Dict[str, T] = {}
    if nworkers == 1:
        results.update(run_group(groups[0]))
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=nworkers, thread_name_prefix="prakshep") as ex:
            futures = [ex.submit(run_group, group) for group in groups]
            for fut in futures:
                results.update(fut.result())

    logger.info("Total elapsed: %.2fs", time.time() - t0)
    return {name: results[name] for name in names}


# ──────────────────────────────────────────────────────────────
# Snapshots
# ──────────────────────────────────────────────────────────────

def load_single_output(
    output_num: int,
    path: str,
    descriptor: Optional[LoadDescriptor] = None,
    verbose: bool = False,
) -> CellTable:
    """
    Worker function executed in each process. It configures logging and loads
    a single snapshot number.
    """
    setup_logging(verbose)
    return load_cells(output_num, path, descriptor)


def load_outputs(
    output_numbers: List[int],
    path: str,
    descriptor: Optional[LoadDescriptor] = None,
    nproc: Optional[int] = None,
    verbose: bool = False,
) -> Dict[int, CellTable]:
    """
    Load several snapshots, one process per snapshot.

    Parameters:
    - output_numbers: Snapshot numbers to load.
    - path: Directory containing the RAMSES outputs.
    - descriptor: Optional LoadDescriptor applied to every snapshot.
    - nproc: Number of processes. If None or 1, snapshots are loaded serially.
             Otherwise uses up to min(nproc, number of outputs) workers.
    - verbose: Enable detailed logging in the workers.

    Returns:
    - Mapping output number -> CellTable. A failing snapshot raises.
    """
    if nproc is not None and nproc > 0:
        nworkers = min(nproc, len(output_numbers))
    else:
        nworkers = 1

    logger.info("Loading outputs %s on %d worker(s)", output_numbers, nworkers)
    t0 = time.time()

    worker = partial(load_single_output, path=path, descriptor=descriptor, verbose=verbose)

    if nworkers <= 1:
        tables = [worker(num) for num in output_numbers]
    else:
        with concurrent.futures.ProcessPoolExecutor(max_workers=nworkers) as ex:
            tables = list(ex.map(worker, output_numbers))

    logger.info("Total elapsed: %.2fs", time.time() - t0)
    return dict(zip(output_numbers, tables))
