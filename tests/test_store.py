import numpy as np
import pytest

from freemux.errors import IndexMismatch, PileupFormatError
from freemux.store import DropletSNPStoreBuilder


def _builder(n_drops=2, n_snps=3, **kw):
    b = DropletSNPStoreBuilder(**kw)
    for i in range(n_drops):
        b.add_droplet(f"BC{i}")
    for k in range(n_snps):
        b.add_snp("chr1" if k < 2 else "chr2", 10 * (k + 1), "A", "C", 0.5)
    return b


def test_indices_are_dense_and_contigs_numbered_in_order():
    b = _builder()
    assert b.n_droplets == 2 and b.n_snps == 3
    store = b.freeze()
    assert store.contigs == ["chr1", "chr2"]
    assert [s.contig for s in store.snps] == [0, 0, 1]
    assert [d.index for d in store.droplets] == [0, 1]


def test_duplicate_barcode_keeps_first_index():
    b = _builder()
    assert b.add_droplet("BC0") == 0
    assert b.add_droplet("BC9") == 2


def test_expected_snp_index_mismatch():
    b = _builder(n_snps=2)
    with pytest.raises(IndexMismatch, match="Expected SNP ID = 5"):
        b.add_snp("chr1", 99, "A", "C", 0.1, expected_index=5)


def test_allele_frequency_out_of_range():
    b = _builder(n_snps=0)
    with pytest.raises(PileupFormatError):
        b.add_snp("chr1", 1, "A", "C", 1.5)


def test_observation_with_unknown_droplet_or_snp():
    b = _builder()
    with pytest.raises(IndexMismatch):
        b.add_observation(0, 7, "r", 0, 30)
    with pytest.raises(IndexMismatch):
        b.add_observation(3, 0, "r", 0, 30)
    with pytest.raises(PileupFormatError):
        b.add_observation(0, 0, "r", 5, 30)


def test_bookkeeping_after_freeze():
    b = _builder(min_bq=13, cap_bq=40)
    # added out of SNP order on purpose
    assert b.add_observation(2, 0, "r1", 1, 30)
    assert b.add_observation(0, 0, "r2", 0, 60)
    assert b.add_observation(0, 0, "r3", 0, 20)
    assert not b.add_observation(1, 0, "r4", 0, 5)      # below min_bq
    assert not b.add_observation(0, 0, "r2", 1, 30)     # same read id in the slot
    store = b.freeze()

    d = store.droplet(0)
    assert d.snp_ids.tolist() == [0, 2]
    assert d.total_reads == 5
    assert d.pass_reads == 3
    assert d.unique_reads == d.n_snps == 2
    assert d.depth == 3

    ids, sets = zip(*d.iter_snps())
    assert ids == (0, 2)
    assert sets[0].alleles.tolist() == [0, 0]
    assert sets[0].quals.tolist() == [40, 20]            # capped at cap_bq
    assert np.allclose(sets[1].errors, [1e-3])

    empty = store.droplet(1)
    assert empty.n_snps == 0 and empty.total_reads == 0 and empty.depth == 0


def test_builder_is_read_only_after_freeze():
    b = _builder()
    store = b.freeze()
    assert store.index_of("BC1") == 1
    assert store.index_of("nope") is None
    with pytest.raises(RuntimeError):
        b.add_droplet("BC2")
    with pytest.raises(RuntimeError):
        b.add_observation(0, 0, "r", 0, 30)
    with pytest.raises(RuntimeError):
        b.freeze()


def test_allele_frequencies_vector():
    store = _builder(n_snps=3).freeze()
    assert store.allele_frequencies.shape == (3,)
    assert store.snp(1).pos == 20
