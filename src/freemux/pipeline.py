from __future__ import annotations
from pathlib import Path
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Dict, List, Optional
import time
import typer

from .config import FreemuxConfig
from .relatedness import PairRecord
from .scorer import DropletScore
from .store import DropletSNPStore

# --------------------------------------------------------------------
# Logging helpers
# --------------------------------------------------------------------
_LOG_LOCK = Lock()

def _log(msg: str, verbose: bool) -> None:
    if not verbose:
        return
    with _LOG_LOCK:
        typer.echo(msg)

def _log_ok(msg: str, verbose: bool) -> None:
    if not verbose:
        return
    with _LOG_LOCK:
        typer.secho(msg, fg="green")

# --------------------------------------------------------------------
# Public entrypoint
# --------------------------------------------------------------------
def run_freemux(cfg: FreemuxConfig) -> Dict[str, object]:
    """
    Run the whole deconvolution for one pileup.

    Steps: load → rank → score → pairs → cluster

    Args:
      cfg: validated run configuration; inputs are checked before any work

    Returns:
      {"outputs": {...paths}, "n_droplets": int, "n_pairs": int,
       "n_clusters": int | None, "elapsed_sec": float}
    """
    cfg.check_inputs()
    cfg.ensure_out_dir()

    ctx = Ctx(cfg=cfg, started=time.monotonic())
    for step in STEP_ORDER:
        if step == "cluster" and not cfg.cluster:
            continue
        RUNNERS[step](ctx)

    elapsed = round(time.monotonic() - ctx.started, 3)
    _log_ok(f"[freemux] done in {elapsed}s", cfg.verbose)
    return {
        "outputs": {k: str(v) for k, v in ctx.outputs.items()},
        "n_droplets": len(ctx.ranked),
        "n_pairs": ctx.n_pairs,
        "n_clusters": ctx.n_clusters,
        "elapsed_sec": elapsed,
    }

# --------------------------------------------------------------------
# Constants / context
# --------------------------------------------------------------------
STEP_ORDER: List[str] = ["load", "rank", "score", "pairs", "cluster"]

@dataclass
class Ctx:
    cfg: FreemuxConfig
    started: float
    store: Optional[DropletSNPStore] = None
    ranked: List[int] = field(default_factory=list)
    paired: List[int] = field(default_factory=list)
    compared: List[int] = field(default_factory=list)
    scores: List[DropletScore] = field(default_factory=list)
    edges: List[tuple] = field(default_factory=list)
    n_pairs: int = 0
    n_clusters: Optional[int] = None
    outputs: Dict[str, Path] = field(default_factory=dict)

# --------------------------------------------------------------------
# Step runners
# --------------------------------------------------------------------
def _run_load(ctx: Ctx) -> None:
    from .pileup import load_pileup
    cfg = ctx.cfg
    ctx.store = load_pileup(cfg.plp, min_bq=cfg.min_bq, cap_bq=cfg.cap_bq,
                            chunk_rows=cfg.chunk_rows, verbose=cfg.verbose)

def _run_rank(ctx: Ctx) -> None:
    from .ranking import filter_droplets, rank_droplets, read_group_list, restrict_to_barcodes
    cfg = ctx.cfg; store = ctx.store
    universe = None
    if cfg.group_list:
        universe = restrict_to_barcodes(store, read_group_list(cfg.group_list))
        _log(f"[rank] group list keeps {len(universe):,} of {store.n_droplets:,} droplets", cfg.verbose)
    ctx.ranked = rank_droplets(store, universe)

    paired = filter_droplets(store, ctx.ranked, cfg.min_total, cfg.min_uniq, cfg.min_snp)
    if cfg.max_droplets is not None and len(paired) > cfg.max_droplets:
        _log(f"[rank] truncating pairwise pass to the top {cfg.max_droplets:,} droplets", cfg.verbose)
        paired = paired[: cfg.max_droplets]
    ctx.paired = paired
    _log(f"[rank] {len(ctx.ranked):,} droplets ranked, {len(paired):,} pass the read/SNP filters", cfg.verbose)

def _run_score(ctx: Ctx) -> None:
    from .report import write_dbl, write_lmix
    from .scorer import score_droplets
    cfg = ctx.cfg
    _log(f"[score] Processing doublet likelihoods for {len(ctx.ranked):,} droplets..", cfg.verbose)
    ctx.scores = score_droplets(ctx.store, ctx.ranked, cfg.alpha, cfg.doublet_prior,
                                threads=cfg.threads, verbose=cfg.verbose)
    ctx.outputs["lmix"] = write_lmix(ctx.scores, cfg.lmix_path())
    ctx.outputs["dbl"] = write_dbl(ctx.scores, cfg.dbl_path())

def _run_pairs(ctx: Ctx) -> None:
    from .cluster import edges_from_records
    from .relatedness import iter_pair_records
    from .report import PairReportWriter
    cfg = ctx.cfg
    deadline = ctx.started + cfg.max_seconds if cfg.max_seconds is not None else None
    n = len(ctx.paired)
    _log(f"[pairs] comparing {n * (n - 1) // 2:,} droplet pairs", cfg.verbose)

    edges: List[tuple] = []
    compared: set = set()
    with PairReportWriter(cfg.ldist_path(), cfg.flush_rows) as w:
        for rec in iter_pair_records(ctx.store, ctx.paired, threads=cfg.threads,
                                     deadline=deadline, verbose=cfg.verbose):
            w.write(rec)
            compared.update((rec.id1, rec.id2))
            if cfg.cluster:
                edges.extend(edges_from_records((rec,), cfg.cluster_margin))
    ctx.n_pairs = w.n_rows
    ctx.edges = edges
    # droplets the pass never reached (deadline) stay unclustered
    ctx.compared = [i for i in ctx.paired if i in compared]
    ctx.outputs["ldist"] = cfg.ldist_path()
    _log("[pairs] Finished calculating pairwise distance between the droplets..", cfg.verbose)

def _run_cluster(ctx: Ctx) -> None:
    from .cluster import cluster_droplets, cluster_sizes
    from .report import store_barcodes, write_clusters
    cfg = ctx.cfg
    _log(f"[cluster] Finding clusters from {len(ctx.edges):,} edges...", cfg.verbose)
    assignment = cluster_droplets(ctx.compared, ctx.edges, seed=cfg.seed)
    sizes = cluster_sizes(assignment)
    ctx.n_clusters = len(sizes)
    multi = sum(1 for s in sizes.values() if s > 1)
    _log(f"[cluster] {ctx.n_clusters:,} clusters ({multi:,} with more than one droplet)", cfg.verbose)
    ctx.outputs["clust"] = write_clusters(store_barcodes(ctx.store), assignment, cfg.clust_path())

RUNNERS: Dict[str, Callable[[Ctx], None]] = {
    "load": _run_load,
    "rank": _run_rank,
    "score": _run_score,
    "pairs": _run_pairs,
    "cluster": _run_cluster,
}
