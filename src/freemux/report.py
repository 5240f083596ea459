# src/freemux/report.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .relatedness import PairRecord
from .scorer import DropletScore
from .store import DropletSNPStore

LMIX_COLS = ["INT_ID", "BARCODE", "NSNPs", "NREADs", "DBL.LLK", "SNG.LLK", "LOG.BF", "BFpSNP"]
LDIST_COLS = ["ID1", "ID2", "NSNP", "READ1", "READ2", "READMIN", "LLK0", "LLK1", "LLK2", "LDIFF", "DIFF.SNP"]
DBL_COLS = ["INT_ID", "BARCODE", "NSNPs", "BEST.ALPHA", "BEST.LLK", "SNG.LLK", "POST.DBL", "CALL"]
CLUST_COLS = ["INT_ID", "BARCODE", "CLUST"]

NA = "NA"


def _fmt(v: Optional[float], digits: int) -> str:
    if v is None:
        return NA
    return f"{v:.{digits}f}"


def _write_tsv(df: pd.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep="\t", index=False, lineterminator="\n")


# ------------------------------
# Per-droplet reports
# ------------------------------


def lmix_frame(scores: Sequence[DropletScore]) -> pd.DataFrame:
    return pd.DataFrame(
        [
            (s.droplet, s.barcode, s.n_snps, s.n_reads,
             _fmt(s.llk0, 2), _fmt(s.llk2, 2), _fmt(s.log_bf, 2), _fmt(s.bf_per_snp, 4))
            for s in scores
        ],
        columns=LMIX_COLS,
    )


def write_lmix(scores: Sequence[DropletScore], path: str | Path) -> Path:
    path = Path(path)
    _write_tsv(lmix_frame(scores), path)
    return path


def write_dbl(scores: Sequence[DropletScore], path: str | Path) -> Path:
    """Grid-search summary: best mixing fraction and posterior doublet probability."""
    path = Path(path)
    df = pd.DataFrame(
        [
            (s.droplet, s.barcode, s.n_snps,
             _fmt(s.best_alpha, 3) if s.n_snps else NA,
             _fmt(s.best_llk, 2), _fmt(s.llk2, 2), _fmt(s.post_doublet, 4), s.call)
            for s in scores
        ],
        columns=DBL_COLS,
    )
    _write_tsv(df, path)
    return path


# ------------------------------
# Pairwise report (streamed)
# ------------------------------


def _pair_row(r: PairRecord) -> tuple:
    return (
        r.id1, r.id2, r.n_snps, r.reads1, r.reads2, r.read_min,
        _fmt(r.llk0, 2), _fmt(r.llk1, 2), _fmt(r.llk2, 2), _fmt(r.ldiff, 2), _fmt(r.diff_per_snp, 4),
    )


class PairReportWriter:
    """Append-only ``.ldist`` writer; rows are buffered and flushed in blocks."""

    def __init__(self, path: str | Path, flush_rows: int = 100_000):
        self.path = Path(path)
        self.flush_rows = max(1, int(flush_rows))
        self.n_rows = 0
        self._buf: List[tuple] = []
        self._fh = None

    def __enter__(self) -> "PairReportWriter":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.path, "w", newline="")
        self._fh.write("\t".join(LDIST_COLS) + "\n")
        return self

    def write(self, rec: PairRecord) -> None:
        self._buf.append(_pair_row(rec))
        if len(self._buf) >= self.flush_rows:
            self.flush()

    def flush(self) -> None:
        if not self._buf:
            return
        pd.DataFrame(self._buf, columns=LDIST_COLS).to_csv(
            self._fh, sep="\t", index=False, header=False, lineterminator="\n"
        )
        self.n_rows += len(self._buf)
        self._buf = []

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                self.flush()
        finally:
            self._fh.close()


def write_ldist(records: Iterable[PairRecord], path: str | Path, flush_rows: int = 100_000) -> int:
    with PairReportWriter(path, flush_rows) as w:
        for r in records:
            w.write(r)
    return w.n_rows


def read_ldist(path: str | Path) -> pd.DataFrame:
    return pd.read_csv(path, sep="\t", na_values=[NA], keep_default_na=False)


def read_lmix(path: str | Path) -> pd.DataFrame:
    return pd.read_csv(path, sep="\t", na_values=[NA], keep_default_na=False,
                       dtype={"BARCODE": str})


# ------------------------------
# Cluster assignments
# ------------------------------


def write_clusters(
    barcodes: Dict[int, str],
    assignment: Dict[int, int],
    path: str | Path,
) -> Path:
    """One row per droplet in ``barcodes`` (index order); unclustered droplets get -1."""
    path = Path(path)
    df = pd.DataFrame(
        [(i, bc, assignment.get(i, -1)) for i, bc in sorted(barcodes.items())],
        columns=CLUST_COLS,
    )
    _write_tsv(df, path)
    return path


def store_barcodes(store: DropletSNPStore) -> Dict[int, str]:
    return {d.index: d.barcode for d in store.droplets}
