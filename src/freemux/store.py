# src/freemux/store.py
"""
Droplet-SNP store.

Ingestion goes through :class:`DropletSNPStoreBuilder`, which accepts droplets,
SNPs and per-read observations in any interleaving that respects index
bookkeeping. ``freeze()`` turns the builder into a read-only
:class:`DropletSNPStore` where every droplet holds its SNPs as an ascending
index array plus one :class:`ObservationSet` per SNP. Nothing is computed on
the store until it is frozen.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from .errors import IndexMismatch, PileupFormatError

ALLELE_REF = 0
ALLELE_ALT = 1
ALLELE_OTHER = 2


@dataclass(frozen=True)
class SNP:
    index: int
    contig: int
    contig_name: str
    pos: int
    ref: str
    alt: str
    af: float


@dataclass(frozen=True, eq=False)
class ObservationSet:
    """Reads of one droplet at one SNP (allele codes + capped Phred qualities)."""

    alleles: np.ndarray
    quals: np.ndarray

    def __len__(self) -> int:
        return int(self.alleles.shape[0])

    @property
    def errors(self) -> np.ndarray:
        return np.power(10.0, -self.quals.astype(float) / 10.0)


@dataclass(frozen=True, eq=False)
class Droplet:
    index: int
    barcode: str
    total_reads: int = 0
    pass_reads: int = 0
    snp_ids: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    obs: List[ObservationSet] = field(default_factory=list)

    @property
    def unique_reads(self) -> int:
        # one unique read per SNP with at least one retained observation
        return int(self.snp_ids.shape[0])

    @property
    def n_snps(self) -> int:
        return int(self.snp_ids.shape[0])

    @property
    def depth(self) -> int:
        return int(sum(len(o) for o in self.obs))

    def iter_snps(self) -> Iterator[Tuple[int, ObservationSet]]:
        for k, o in zip(self.snp_ids, self.obs):
            yield int(k), o


class DropletSNPStore:
    """Frozen, read-only view of all droplets and SNPs of one run."""

    def __init__(self, droplets: List[Droplet], snps: List[SNP], contigs: List[str]):
        self._droplets = droplets
        self._snps = snps
        self._contigs = contigs
        self._bc_index = {d.barcode: d.index for d in droplets}
        self._af = np.array([s.af for s in snps], dtype=float)

    @property
    def n_droplets(self) -> int:
        return len(self._droplets)

    @property
    def n_snps(self) -> int:
        return len(self._snps)

    @property
    def droplets(self) -> List[Droplet]:
        return self._droplets

    @property
    def snps(self) -> List[SNP]:
        return self._snps

    @property
    def contigs(self) -> List[str]:
        return self._contigs

    @property
    def allele_frequencies(self) -> np.ndarray:
        return self._af

    def droplet(self, i: int) -> Droplet:
        return self._droplets[i]

    def snp(self, k: int) -> SNP:
        return self._snps[k]

    def index_of(self, barcode: str) -> Optional[int]:
        return self._bc_index.get(barcode)


class DropletSNPStoreBuilder:
    """
    Mutable ingestion side of the store.

    Observations below ``min_bq`` are counted in the droplet's total reads but
    not stored; qualities above ``cap_bq`` are capped. Within one
    (droplet, SNP) slot a read identity is kept once (first occurrence wins).
    """

    def __init__(self, min_bq: int = 13, cap_bq: int = 40):
        self.min_bq = int(min_bq)
        self.cap_bq = int(cap_bq)
        self._barcodes: List[str] = []
        self._bc_index: Dict[str, int] = {}
        self._total: List[int] = []
        self._cells: List[Dict[int, Dict[str, Tuple[int, int]]]] = []
        self._snps: List[SNP] = []
        self._contig_ids: Dict[str, int] = {}
        self._frozen = False

    @property
    def n_droplets(self) -> int:
        return len(self._barcodes)

    @property
    def n_snps(self) -> int:
        return len(self._snps)

    def _check_open(self) -> None:
        if self._frozen:
            raise RuntimeError("store builder is frozen")

    def add_droplet(self, barcode: str) -> int:
        self._check_open()
        idx = self._bc_index.get(barcode)
        if idx is not None:
            return idx
        idx = len(self._barcodes)
        self._barcodes.append(barcode)
        self._bc_index[barcode] = idx
        self._total.append(0)
        self._cells.append({})
        return idx

    def contig_id(self, name: str) -> int:
        rid = self._contig_ids.get(name)
        if rid is None:
            rid = len(self._contig_ids)
            self._contig_ids[name] = rid
        return rid

    def add_snp(self, contig: str, pos: int, ref: str, alt: str, af: float,
                expected_index: Optional[int] = None) -> int:
        self._check_open()
        af = float(af)
        if not 0.0 <= af <= 1.0:
            raise PileupFormatError(f"allele frequency must be within [0, 1], got {af}")
        idx = len(self._snps)
        if expected_index is not None and expected_index != idx:
            raise IndexMismatch(f"Expected SNP ID = {expected_index} but assigned {idx}")
        self._snps.append(SNP(idx, self.contig_id(contig), contig, int(pos), ref, alt, af))
        return idx

    def add_observation(self, snp: int, droplet: int, read_id: str, allele: int, qual: int) -> bool:
        self._check_open()
        if not 0 <= droplet < len(self._barcodes):
            raise IndexMismatch(f"droplet index {droplet} out of range (n={len(self._barcodes)})")
        if not 0 <= snp < len(self._snps):
            raise IndexMismatch(f"SNP index {snp} out of range (n={len(self._snps)})")
        if allele not in (ALLELE_REF, ALLELE_ALT, ALLELE_OTHER):
            raise PileupFormatError(f"allele code must be 0, 1 or 2, got {allele}")

        self._total[droplet] += 1
        if qual < self.min_bq:
            return False
        slot = self._cells[droplet].setdefault(snp, {})
        if read_id in slot:
            return False
        slot[read_id] = (int(allele), min(int(qual), self.cap_bq))
        return True

    def freeze(self) -> DropletSNPStore:
        self._check_open()
        self._frozen = True
        droplets: List[Droplet] = []
        for i, bc in enumerate(self._barcodes):
            cell = self._cells[i]
            snp_ids = np.array(sorted(cell), dtype=np.int64)
            obs: List[ObservationSet] = []
            n_pass = 0
            for k in snp_ids:
                reads = list(cell[int(k)].values())
                n_pass += len(reads)
                obs.append(ObservationSet(
                    alleles=np.array([a for a, _ in reads], dtype=np.uint8),
                    quals=np.array([q for _, q in reads], dtype=np.uint8),
                ))
            droplets.append(Droplet(i, bc, self._total[i], n_pass, snp_ids, obs))
        contigs = sorted(self._contig_ids, key=self._contig_ids.get)
        store = DropletSNPStore(droplets, self._snps, contigs)
        self._cells = []
        return store
