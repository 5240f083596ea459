#!/usr/bin/env python3
from __future__ import annotations
from pathlib import Path
from typing import List, Optional
import typer

from .config import FreemuxConfig
from .errors import FreemuxError

app = typer.Typer(help="freemux: genotype-free deconvolution of pooled single-cell pileups",
                  add_completion=False, no_args_is_help=True)

# ----------------
# Helpers
# ----------------
def _fail(e: Exception) -> None:
    typer.secho(f"[freemux] ERROR: {e}", fg="red", err=True)
    raise typer.Exit(code=1)

def _build_config(config: Optional[Path], **overrides) -> FreemuxConfig:
    base = FreemuxConfig.load(config) if config else FreemuxConfig()
    return base.merged(**overrides)

# --------------------------------------------------------------------------------
# Commands
# --------------------------------------------------------------------------------
@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON config; CLI options override it"),
    # input / output
    plp: Optional[str] = typer.Option(None, "--plp", help="Prefix of input files generated by the pileup step"),
    out: Optional[str] = typer.Option(None, "--out", help="Output file prefix"),
    # model
    alpha: Optional[List[float]] = typer.Option(None, "--alpha", help="Grid of alpha to search for (default is 0, 0.5); repeatable"),
    doublet_prior: Optional[float] = typer.Option(None, "--doublet-prior", help="Prior of doublet"),
    # read filtering
    cap_bq: Optional[int] = typer.Option(None, "--cap-bq", help="Maximum base quality (higher BQ will be capped)"),
    min_bq: Optional[int] = typer.Option(None, "--min-bq", help="Minimum base quality to consider (lower BQ will be skipped)"),
    # droplet filtering
    group_list: Optional[str] = typer.Option(None, "--group-list", help="List of cell barcodes to consider; all other barcodes are ignored"),
    min_total: Optional[int] = typer.Option(None, "--min-total", help="Minimum number of total reads for a droplet to enter the pairwise pass"),
    min_uniq: Optional[int] = typer.Option(None, "--min-uniq", help="Minimum number of unique reads for a droplet to enter the pairwise pass"),
    min_snp: Optional[int] = typer.Option(None, "--min-snp", help="Minimum number of SNPs with coverage for a droplet to enter the pairwise pass"),
    max_droplets: Optional[int] = typer.Option(None, "--max-droplets", help="Only compare the top-K ranked droplets pairwise"),
    max_seconds: Optional[float] = typer.Option(None, "--max-seconds", help="Stop the pairwise pass after this many seconds of run time"),
    # clustering
    cluster: Optional[bool] = typer.Option(None, "--cluster/--no-cluster", help="Cluster droplets from pairwise scores"),
    cluster_margin: Optional[float] = typer.Option(None, "--cluster-margin", help="LLK2-LLK0 above which two droplets are linked"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for community detection"),
    # runtime
    threads: Optional[int] = typer.Option(None, "--threads", "-t", min=1, help="Worker processes for scoring and pairwise passes"),
    verbose: Optional[bool] = typer.Option(None, "--verbose/--quiet", help="Print progress"),
) -> None:
    """Score every droplet for doublets and compare all droplet pairs."""
    from .pipeline import run_freemux
    try:
        cfg = _build_config(
            config, plp=plp, out=out, alpha=alpha or None, doublet_prior=doublet_prior,
            cap_bq=cap_bq, min_bq=min_bq, group_list=group_list,
            min_total=min_total, min_uniq=min_uniq, min_snp=min_snp,
            max_droplets=max_droplets, max_seconds=max_seconds,
            cluster=cluster, cluster_margin=cluster_margin, seed=seed,
            threads=threads, verbose=verbose,
        )
        if cfg.verbose:
            typer.echo(f"[freemux] plp={cfg.plp}  out={cfg.out}")
            typer.echo(f"[freemux] alpha={cfg.alpha}  doublet_prior={cfg.doublet_prior}  "
                       f"BQ=[{cfg.min_bq},{cfg.cap_bq}]  threads={cfg.threads}")
        res = run_freemux(cfg)
    except FreemuxError as e:
        _fail(e)
    if cfg.verbose:
        for k, p in res["outputs"].items():
            typer.echo(f"[freemux] {k}: {p}")

@app.command("cluster")
def cluster_cmd(
    ldist: Path = typer.Option(..., "--ldist", exists=True, readable=True, help="Pairwise report (.ldist)"),
    lmix: Path = typer.Option(..., "--lmix", exists=True, readable=True, help="Per-droplet report (.lmix)"),
    out: str = typer.Option(..., "--out", help="Output prefix; writes <out>.clust"),
    margin: float = typer.Option(2.0, "--margin", help="LLK2-LLK0 above which two droplets are linked"),
    seed: int = typer.Option(0, "--seed"),
) -> None:
    """Re-cluster droplets from existing .ldist/.lmix reports."""
    from .cluster import cluster_droplets, cluster_sizes, edges_from_ldist
    from .report import read_ldist, read_lmix, write_clusters

    pairs = read_ldist(ldist)
    drops = read_lmix(lmix)
    barcodes = {int(i): str(bc) for i, bc in zip(drops["INT_ID"], drops["BARCODE"])}
    nodes = sorted(set(pairs["ID1"].astype(int)) | set(pairs["ID2"].astype(int)))
    assignment = cluster_droplets(nodes, edges_from_ldist(pairs, margin), seed=seed)
    path = write_clusters(barcodes, assignment, Path(f"{out}.clust"))
    typer.echo(f"[cluster] {len(cluster_sizes(assignment)):,} clusters → {path}")

if __name__ == "__main__":
    app()
