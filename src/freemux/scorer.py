# src/freemux/scorer.py
"""
Per-droplet singlet vs. doublet scoring.

For each SNP covered by a droplet, the doublet genotype likelihoods
L(gi, gj) are folded against Hardy-Weinberg priors twice:

    lk0 = sum_{gi,gj} L(gi,gj) p(gi) p(gj)   (two unrelated individuals)
    lk2 = sum_g       L(g, g)  p(g)          (one individual)

and the logs are summed across SNPs. ``DBL.LLK``/``SNG.LLK`` use a 50/50
mixture; every alpha of the configured grid is evaluated as well and the
best one drives the posterior doublet probability.
"""

from __future__ import annotations

import math
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from .likelihood import log_doublet_likelihoods, log_prior_table, singlet_doublet_lk
from .store import DropletSNPStore

PRIMARY_ALPHA = 0.5


@dataclass
class DropletScore:
    droplet: int
    barcode: str
    n_snps: int
    n_reads: int
    llk0: float
    llk2: float
    llk_by_alpha: Dict[float, float] = field(default_factory=dict)
    best_alpha: float = PRIMARY_ALPHA
    best_llk: float = 0.0
    post_doublet: Optional[float] = None

    @property
    def log_bf(self) -> float:
        return self.llk0 - self.llk2

    @property
    def bf_per_snp(self) -> Optional[float]:
        if self.n_snps == 0:
            return None
        return self.log_bf / self.n_snps

    @property
    def call(self) -> str:
        if self.post_doublet is None:
            return "NA"
        return "DBL" if self.post_doublet > 0.5 else "SNG"


def _posterior(log_bf: float, doublet_prior: float) -> float:
    logit = log_bf + math.log(doublet_prior) - math.log1p(-doublet_prior)
    if logit >= 0:
        return 1.0 / (1.0 + math.exp(-logit))
    z = math.exp(logit)
    return z / (1.0 + z)


def score_droplet(
    store: DropletSNPStore,
    droplet: int,
    alpha_grid: Sequence[float] = (0.0, 0.5),
    doublet_prior: float = 0.5,
    log_gp: Optional[np.ndarray] = None,
) -> DropletScore:
    d = store.droplet(droplet)
    grid = sorted({float(a) for a in alpha_grid}) or [PRIMARY_ALPHA]
    alphas = sorted(set(grid) | {PRIMARY_ALPHA})

    if d.n_snps == 0:
        return DropletScore(
            droplet=d.index, barcode=d.barcode, n_snps=0, n_reads=0, llk0=0.0, llk2=0.0,
            llk_by_alpha={a: 0.0 for a in alphas}, best_alpha=PRIMARY_ALPHA, best_llk=0.0,
        )

    if log_gp is None:
        log_gp, _ = log_prior_table(store.allele_frequencies)
    gp = log_gp[d.snp_ids]

    llk_by_alpha: Dict[float, float] = {}
    llk2 = 0.0
    for a in alphas:
        gl9 = np.stack([log_doublet_likelihoods(o, a) for o in d.obs])
        lk0, lk2 = singlet_doublet_lk(gl9, gp)
        llk_by_alpha[a] = float(lk0.sum())
        if a == PRIMARY_ALPHA:
            llk2 = float(lk2.sum())
    if 0.0 in llk_by_alpha:
        # a zero mixing fraction is the singlet model
        llk_by_alpha[0.0] = llk2

    # ties go to the smallest mixing fraction
    best_alpha = max(grid, key=lambda a: llk_by_alpha[a])
    best_llk = llk_by_alpha[best_alpha]

    return DropletScore(
        droplet=d.index,
        barcode=d.barcode,
        n_snps=d.n_snps,
        n_reads=d.depth,
        llk0=llk_by_alpha[PRIMARY_ALPHA],
        llk2=llk2,
        llk_by_alpha=llk_by_alpha,
        best_alpha=best_alpha,
        best_llk=best_llk,
        post_doublet=_posterior(best_llk - llk2, doublet_prior),
    )


# ------------------------------
# Parallel driver
# ------------------------------

_WORKER_STATE: Dict[str, object] = {}


def _init_worker(store: DropletSNPStore, alpha_grid: Tuple[float, ...], doublet_prior: float) -> None:
    log_gp, _ = log_prior_table(store.allele_frequencies)
    _WORKER_STATE.update(store=store, alpha_grid=alpha_grid, doublet_prior=doublet_prior, log_gp=log_gp)


def _score_batch(droplets: List[int]) -> List[DropletScore]:
    st = _WORKER_STATE
    return [
        score_droplet(st["store"], i, st["alpha_grid"], st["doublet_prior"], st["log_gp"])
        for i in droplets
    ]


def score_droplets(
    store: DropletSNPStore,
    order: Sequence[int],
    alpha_grid: Sequence[float] = (0.0, 0.5),
    doublet_prior: float = 0.5,
    threads: int = 1,
    batch_size: int = 500,
    verbose: bool = True,
) -> List[DropletScore]:
    """Score every droplet in ``order``; results come back in the same order."""
    grid = tuple(float(a) for a in alpha_grid)
    order = [int(i) for i in order]

    if threads <= 1 or len(order) <= batch_size:
        log_gp, _ = log_prior_table(store.allele_frequencies)
        return [
            score_droplet(store, i, grid, doublet_prior, log_gp)
            for i in tqdm(order, desc="[score] droplets", disable=not verbose)
        ]

    batches = [order[k:k + batch_size] for k in range(0, len(order), batch_size)]
    out: List[DropletScore] = []
    with ProcessPoolExecutor(
        max_workers=threads, initializer=_init_worker, initargs=(store, grid, doublet_prior)
    ) as ex:
        for part in tqdm(ex.map(_score_batch, batches), total=len(batches),
                         desc="[score] batches", disable=not verbose):
            out.extend(part)
    return out
