# src/freemux/relatedness.py
"""
Pairwise IBD likelihoods between droplets.

Two droplets are compared only on the SNPs both of them cover (found with a
sorted merge-join of their SNP index arrays). At each shared SNP the
per-droplet genotype likelihoods Li, Lj are combined as

    IBD2: sum_g       Li[g] Lj[g]  p(g)
    IBD1: sum_{gi,gj} Li[gi] Lj[gj] t(gi,gj)
    IBD0: sum_{gi,gj} Li[gi] Lj[gj] p(gi) p(gj)

and log-summed over the shared SNPs. LLK2 - LLK0 is the same-individual
score used downstream for clustering.
"""

from __future__ import annotations

import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import typer

from .likelihood import ibd_lk, log_genotype_likelihoods, log_prior_table
from .store import DropletSNPStore


@dataclass(frozen=True)
class PairRecord:
    id1: int
    id2: int
    n_snps: int
    reads1: int
    reads2: int
    read_min: int
    llk0: float
    llk1: float
    llk2: float

    @property
    def ldiff(self) -> float:
        return self.llk2 - self.llk0

    @property
    def diff_per_snp(self) -> Optional[float]:
        if self.n_snps == 0:
            return None
        return self.ldiff / self.n_snps


def merge_join(ids_i: Sequence[int], ids_j: Sequence[int]) -> Tuple[List[int], List[int]]:
    """
    Positions of the shared values of two ascending index arrays.

    Returns (pos_i, pos_j) such that ids_i[pos_i[k]] == ids_j[pos_j[k]].
    """
    pos_i: List[int] = []
    pos_j: List[int] = []
    a, b = 0, 0
    na, nb = len(ids_i), len(ids_j)
    while a < na and b < nb:
        x, y = ids_i[a], ids_j[b]
        if x == y:
            pos_i.append(a)
            pos_j.append(b)
            a += 1
            b += 1
        elif x < y:
            a += 1
        else:
            b += 1
    return pos_i, pos_j


class RelatednessEngine:
    """
    Read-only pairwise comparator over a frozen store.

    Per-droplet genotype likelihoods do not depend on the partner droplet, so
    they are computed once per droplet on first use and cached.
    """

    def __init__(self, store: DropletSNPStore):
        self.store = store
        self.log_gp, self.log_t1 = log_prior_table(store.allele_frequencies)
        self._gl: Dict[int, Tuple[List[int], np.ndarray]] = {}

    def droplet_gl(self, i: int) -> Tuple[List[int], np.ndarray]:
        hit = self._gl.get(i)
        if hit is None:
            d = self.store.droplet(i)
            if d.n_snps:
                gl = np.stack([log_genotype_likelihoods(o) for o in d.obs])
            else:
                gl = np.zeros((0, 3))
            hit = (d.snp_ids.tolist(), gl)
            self._gl[i] = hit
        return hit

    def compare(self, i: int, j: int) -> PairRecord:
        ids_i, gl_i = self.droplet_gl(i)
        ids_j, gl_j = self.droplet_gl(j)
        pos_i, pos_j = merge_join(ids_i, ids_j)

        r1 = self.store.droplet(i).unique_reads
        r2 = self.store.droplet(j).unique_reads
        n = len(pos_i)
        if n == 0:
            return PairRecord(i, j, 0, r1, r2, min(r1, r2), 0.0, 0.0, 0.0)

        snps = np.asarray([ids_i[p] for p in pos_i], dtype=np.int64)
        lk0, lk1, lk2 = ibd_lk(gl_i[pos_i], gl_j[pos_j], self.log_gp[snps], self.log_t1[snps])
        return PairRecord(
            i, j, n, r1, r2, min(r1, r2),
            float(lk0.sum()), float(lk1.sum()), float(lk2.sum()),
        )


def compare_pair(store: DropletSNPStore, i: int, j: int,
                 engine: Optional[RelatednessEngine] = None) -> PairRecord:
    """
    One-off comparison of two droplets.

    Without ``engine`` the prior tables and genotype likelihoods are rebuilt on
    every call; pass a shared :class:`RelatednessEngine` when comparing many pairs.
    """
    if engine is None:
        engine = RelatednessEngine(store)
    return engine.compare(i, j)


# ------------------------------
# Pair stream
# ------------------------------

_WORKER_STATE: Dict[str, object] = {}


def _init_worker(store: DropletSNPStore, order: List[int]) -> None:
    _WORKER_STATE.update(engine=RelatednessEngine(store), order=order)


def _row_records(engine: RelatednessEngine, order: List[int], b: int) -> List[PairRecord]:
    sb = order[b]
    return [engine.compare(order[a], sb) for a in range(b)]


def _row_batch(rows: List[int]) -> List[List[PairRecord]]:
    engine = _WORKER_STATE["engine"]
    order = _WORKER_STATE["order"]
    return [_row_records(engine, order, b) for b in rows]


def iter_pair_records(
    store: DropletSNPStore,
    order: Sequence[int],
    threads: int = 1,
    deadline: Optional[float] = None,
    rows_per_task: int = 16,
    verbose: bool = True,
) -> Iterator[PairRecord]:
    """
    Yield one record for every pair of droplets in ``order``.

    Rows are emitted by ranked position b = 1..n-1, each row holding the pairs
    (order[a], order[b]) for a < b, so every prefix of the stream covers all
    pairs among a prefix of the ranking. ``deadline`` is a ``time.monotonic``
    timestamp checked between rows.
    """
    order = [int(x) for x in order]
    n = len(order)

    def _expired(b: int) -> bool:
        if deadline is not None and time.monotonic() > deadline:
            typer.secho(f"[pairs] deadline reached after {b}/{n} droplets; stopping early",
                        fg="yellow", err=True)
            return True
        return False

    if threads <= 1:
        engine = RelatednessEngine(store)
        for b in range(1, n):
            if _expired(b):
                return
            if verbose and b % 50 == 0:
                typer.echo(f"[pairs] Processing {b} droplets..")
            yield from _row_records(engine, order, b)
        return

    tasks = [list(range(k, min(k + rows_per_task, n))) for k in range(1, n, rows_per_task)]
    with ProcessPoolExecutor(max_workers=threads, initializer=_init_worker, initargs=(store, order)) as ex:
        try:
            results = ex.map(_row_batch, tasks)
            for task, rows in zip(tasks, results):
                if _expired(task[0]):
                    return
                if verbose and task[-1] // 50 > (task[0] - 1) // 50:
                    typer.echo(f"[pairs] Processing {task[-1] + 1} droplets..")
                for recs in rows:
                    yield from recs
        finally:
            # rows still queued are dropped when the consumer stops early
            ex.shutdown(wait=False, cancel_futures=True)
