# src/freemux/pileup.py
"""
Readers for the three pileup files sharing one prefix:

  <prefix>.cel.gz   #DROPLET_ID  BARCODE  ...
  <prefix>.var.gz   #SNP_ID  CHROM  POS  REF  ALT  AF
  <prefix>.plp.gz   #DROPLET_ID  SNP_ID  ALLELES  BASEQS

All are gzip TSV; lines starting with '#' are headers. In the pileup file
ALLELES holds one digit per read ('0' ref, '1' alt, '2' other) and BASEQS the
matching Phred+33 base qualities.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterator, Sequence, Tuple

import pandas as pd
import typer

from .errors import LengthMismatch, PileupFormatError, where
from .store import DropletSNPStore, DropletSNPStoreBuilder

PHRED_OFFSET = 33


def _iter_rows(path: Path, ncols: int, chunk_rows: int) -> Iterator[Tuple[int, Sequence[str]]]:
    """
    Yield (line_number, fields) for every non-header line of a gzip TSV.

    Fields are kept as strings; rows with fewer than ``ncols`` fields raise.
    """
    try:
        it = pd.read_csv(
            path,
            sep="\t",
            header=None,
            usecols=range(ncols),
            dtype=str,
            compression="gzip",
            chunksize=chunk_rows,
            quoting=csv.QUOTE_NONE,
            keep_default_na=False,
            na_filter=False,
            skip_blank_lines=False,
            engine="c",
        )
        offset = 0
        for chunk in it:
            for k, row in enumerate(chunk.itertuples(index=False, name=None), start=offset + 1):
                if not isinstance(row[0], str) or not row[0] or row[0].startswith("#"):
                    continue
                if any(not isinstance(f, str) or f == "" for f in row[1:]):
                    raise PileupFormatError(f"{where(path, k)}: expected {ncols} fields, got {row}")
                yield k, row
            offset += len(chunk)
    except pd.errors.EmptyDataError:
        return
    except (pd.errors.ParserError, ValueError) as e:
        if isinstance(e, PileupFormatError):
            raise
        raise PileupFormatError(f"{where(path)}: {e}") from e


def _to_int(value: str, path: Path, line: int, name: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise PileupFormatError(f"{where(path, line)}: {name} is not an integer: {value!r}") from None


def read_cells(builder: DropletSNPStoreBuilder, path: Path, chunk_rows: int = 1_000_000) -> int:
    n = 0
    for _, (_, barcode) in _iter_rows(path, 2, chunk_rows):
        builder.add_droplet(barcode)
        n += 1
    return n


def read_snps(builder: DropletSNPStoreBuilder, path: Path, chunk_rows: int = 1_000_000) -> int:
    n = 0
    for line, (sid, chrom, pos, ref, alt, af) in _iter_rows(path, 6, chunk_rows):
        try:
            af_val = float(af)
        except ValueError:
            raise PileupFormatError(f"{where(path, line)}: AF is not a number: {af!r}") from None
        pos_val = _to_int(pos, path, line, "POS")
        sid_val = _to_int(sid, path, line, "SNP_ID")
        try:
            builder.add_snp(chrom, pos_val, ref[0], alt[0], af_val, expected_index=sid_val)
        except PileupFormatError as e:
            raise type(e)(f"{where(path, line)}: {e}") from e
        n += 1
    return n


def read_pileup(builder: DropletSNPStoreBuilder, path: Path, chunk_rows: int = 1_000_000) -> int:
    """
    Add every base of every pileup row as one observation.

    Each base gets a fresh read identity (a running hex counter), so no two
    rows are ever collapsed into one observation.
    """
    numi = 0
    for line, (drop, snp, alleles, quals) in _iter_rows(path, 4, chunk_rows):
        if len(alleles) != len(quals):
            raise LengthMismatch(
                f"{where(path, line)}: length differs between {alleles!r} and {quals!r}"
            )
        di = _to_int(drop, path, line, "DROPLET_ID")
        si = _to_int(snp, path, line, "SNP_ID")
        try:
            for a, q in zip(alleles, quals):
                builder.add_observation(si, di, format(numi, "x"), ord(a) - ord("0"), ord(q) - PHRED_OFFSET)
                numi += 1
        except PileupFormatError as e:
            raise type(e)(f"{where(path, line)}: {e}") from e
    return numi


def load_pileup(
    prefix: str | Path,
    min_bq: int = 13,
    cap_bq: int = 40,
    chunk_rows: int = 1_000_000,
    verbose: bool = True,
) -> DropletSNPStore:
    """Read <prefix>.cel.gz, .var.gz and .plp.gz into a frozen store."""
    prefix = str(prefix)
    cel, var, plp = (Path(f"{prefix}.{ext}.gz") for ext in ("cel", "var", "plp"))
    builder = DropletSNPStoreBuilder(min_bq=min_bq, cap_bq=cap_bq)

    if verbose:
        typer.echo(f"[load] Reading barcode information from {cel}..")
    n_cel = read_cells(builder, cel, chunk_rows)

    if verbose:
        typer.echo(f"[load] Reading SNP information from {var}..")
    n_var = read_snps(builder, var, chunk_rows)

    if verbose:
        typer.echo(f"[load] Reading pileup information from {plp}..")
    n_obs = read_pileup(builder, plp, chunk_rows)

    store = builder.freeze()
    if verbose:
        typer.echo(f"[load] {n_cel:,} droplets ({store.n_droplets:,} unique), "
                   f"{n_var:,} SNPs, {n_obs:,} reads")
    return store
