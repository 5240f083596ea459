# src/freemux/ranking.py
from __future__ import annotations

import gzip
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set

import typer

from .store import Droplet, DropletSNPStore


def rank_droplets(store: DropletSNPStore, droplets: Optional[Iterable[int]] = None) -> List[int]:
    """
    Droplet indices sorted by descending unique-read count.

    Ties are broken by descending droplet index, so the ranking is a total
    order and downstream consumers can truncate it from the end.
    """
    idx = range(store.n_droplets) if droplets is None else droplets
    return sorted(idx, key=lambda i: (store.droplet(i).unique_reads, i), reverse=True)


def passes_filters(d: Droplet, min_total: int = 0, min_uniq: int = 0, min_snp: int = 0) -> bool:
    return d.total_reads >= min_total and d.unique_reads >= min_uniq and d.n_snps >= min_snp


def filter_droplets(
    store: DropletSNPStore,
    order: Sequence[int],
    min_total: int = 0,
    min_uniq: int = 0,
    min_snp: int = 0,
) -> List[int]:
    """Keep droplets of ``order`` (in order) that meet every read/SNP threshold."""
    return [i for i in order if passes_filters(store.droplet(i), min_total, min_uniq, min_snp)]


def read_group_list(path: str | Path) -> List[str]:
    """One barcode per line (first tab-separated field); '.gz' files are decompressed."""
    p = Path(path)
    opener = gzip.open if p.suffix == ".gz" else open
    out: List[str] = []
    with opener(p, "rt") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            out.append(line.split("\t", 1)[0])
    return out


def restrict_to_barcodes(store: DropletSNPStore, barcodes: Iterable[str]) -> Set[int]:
    keep: Set[int] = set()
    unknown = 0
    for bc in barcodes:
        i = store.index_of(bc)
        if i is None:
            unknown += 1
        else:
            keep.add(i)
    if unknown:
        typer.secho(f"[rank] {unknown} barcode(s) from the group list are not in the pileup; ignored",
                    fg="yellow", err=True)
    return keep
