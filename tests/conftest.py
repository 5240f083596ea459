import gzip
import pathlib
from typing import List, Sequence, Tuple

import pytest

from freemux.store import DropletSNPStoreBuilder

HQ = "I"  # Phred 40


def build_store(barcodes: Sequence[str], afs: Sequence[float], rows: Sequence[Tuple[int, int, str, str]],
                min_bq: int = 13, cap_bq: int = 40):
    """rows: (droplet, snp, alleles, quals) exactly as in a .plp file."""
    b = DropletSNPStoreBuilder(min_bq=min_bq, cap_bq=cap_bq)
    for bc in barcodes:
        b.add_droplet(bc)
    for k, af in enumerate(afs):
        b.add_snp("chr1", 1000 + k, "A", "G", af, expected_index=k)
    n = 0
    for d, s, alleles, quals in rows:
        for a, q in zip(alleles, quals):
            b.add_observation(s, d, format(n, "x"), ord(a) - 48, ord(q) - 33)
            n += 1
    return b.freeze()


def write_pileup(prefix: pathlib.Path, barcodes: Sequence[str], snps: Sequence[Tuple[str, int, str, str, float]],
                 rows: Sequence[Tuple[int, int, str, str]]) -> str:
    with gzip.open(f"{prefix}.cel.gz", "wt") as f:
        f.write("#DROPLET_ID\tBARCODE\tNUM.READ\tNUM.UMI\tNUM.UMIwSNP\tNUM.SNP\n")
        for i, bc in enumerate(barcodes):
            f.write(f"{i}\t{bc}\t0\t0\t0\t0\n")
    with gzip.open(f"{prefix}.var.gz", "wt") as f:
        f.write("#SNP_ID\tCHROM\tPOS\tREF\tALT\tAF\n")
        for k, (chrom, pos, ref, alt, af) in enumerate(snps):
            f.write(f"{k}\t{chrom}\t{pos}\t{ref}\t{alt}\t{af}\n")
    with gzip.open(f"{prefix}.plp.gz", "wt") as f:
        f.write("#DROPLET_ID\tSNP_ID\tALLELES\tBASEQS\n")
        for d, s, alleles, quals in rows:
            f.write(f"{d}\t{s}\t{alleles}\t{quals}\n")
    return str(prefix)


def _toy_rows() -> Tuple[List[str], List[Tuple[str, int, str, str, float]], List[Tuple[int, int, str, str]]]:
    # two individuals (A: hom-ref everywhere, B: hom-alt everywhere), two droplets each,
    # one A/B doublet and one droplet without SNP coverage
    barcodes = ["AAAC-1", "AAAG-1", "CCCA-1", "CCCT-1", "GGGA-1", "TTTT-1"]
    afs = [0.5, 0.3, 0.6, 0.4, 0.5, 0.2, 0.7, 0.5]
    snps = [("chr1" if k < 5 else "chr2", 100 * (k + 1), "A", "G", af) for k, af in enumerate(afs)]
    rows = []
    for k in range(len(afs)):
        rows.append((0, k, "000", HQ * 3))
        rows.append((1, k, "00", HQ * 2))
        rows.append((2, k, "111", HQ * 3))
        rows.append((3, k, "11", HQ * 2))
        rows.append((4, k, "0001", HQ * 4))
    return barcodes, snps, rows


@pytest.fixture
def toy_prefix(tmp_path: pathlib.Path) -> str:
    barcodes, snps, rows = _toy_rows()
    return write_pileup(tmp_path / "toy", barcodes, snps, rows)
