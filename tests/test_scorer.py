import math

import pytest

from conftest import HQ, build_store
from freemux.scorer import DropletScore, score_droplet, score_droplets


def _mixed_store(n_snps=10):
    # droplet 0: 15 ref + 5 alt at every SNP (hom-ref mixed with a het individual)
    # droplet 1: 10 ref reads at every SNP
    # droplet 2: nothing
    rows = []
    for k in range(n_snps):
        rows.append((0, k, "0" * 15 + "1" * 5, HQ * 20))
        rows.append((1, k, "0" * 10, HQ * 10))
    return build_store(["D0", "D1", "D2"], [0.5] * n_snps, rows)


def test_droplet_without_snps():
    s = score_droplet(_mixed_store(), 2)
    assert s.n_snps == 0 and s.n_reads == 0
    assert s.llk0 == 0.0 and s.llk2 == 0.0
    assert s.log_bf == 0.0
    assert s.bf_per_snp is None
    assert s.post_doublet is None
    assert s.call == "NA"


def test_skewed_allele_ratio_favors_doublet():
    s = score_droplet(_mixed_store(), 0)
    assert s.n_snps == 10 and s.n_reads == 200
    assert s.llk0 > s.llk2
    assert s.bf_per_snp == pytest.approx(s.log_bf / 10)
    assert s.best_alpha == 0.5
    assert s.post_doublet > 0.99
    assert s.call == "DBL"


def test_homozygous_droplet_favors_singlet():
    s = score_droplet(_mixed_store(), 1)
    assert s.llk2 > s.llk0
    assert s.log_bf < 0
    # the zero mixing fraction is the singlet model, and wins the grid
    assert s.llk_by_alpha[0.0] == s.llk2
    assert s.best_alpha == 0.0
    assert s.post_doublet == pytest.approx(0.5)
    assert s.call == "SNG"


def test_doublet_prior_shifts_posterior():
    store = _mixed_store(n_snps=1)
    lo = score_droplet(store, 0, doublet_prior=0.01)
    hi = score_droplet(store, 0, doublet_prior=0.9)
    assert lo.llk0 == hi.llk0
    assert lo.post_doublet < hi.post_doublet


def test_alpha_grid_always_reports_half_mixture():
    s = score_droplet(_mixed_store(), 0, alpha_grid=(0.1, 0.25))
    assert set(s.llk_by_alpha) == {0.1, 0.25, 0.5}
    assert s.best_alpha in (0.1, 0.25)
    assert s.llk0 == s.llk_by_alpha[0.5]


def test_score_droplets_keeps_order():
    store = _mixed_store()
    out = score_droplets(store, [2, 0, 1], verbose=False)
    assert [s.droplet for s in out] == [2, 0, 1]
    assert all(isinstance(s, DropletScore) for s in out)
    assert out[1].llk0 == score_droplet(store, 0).llk0


def test_score_droplets_in_worker_processes():
    store = _mixed_store()
    serial = score_droplets(store, [0, 1, 2], verbose=False)
    parallel = score_droplets(store, [0, 1, 2], threads=2, batch_size=1, verbose=False)
    assert [(s.droplet, s.llk0, s.llk2) for s in parallel] == [(s.droplet, s.llk0, s.llk2) for s in serial]


def test_monomorphic_snps_give_finite_scores():
    rows = [(0, 0, "0011", HQ * 4), (0, 1, "0111", HQ * 4), (1, 0, "1", HQ), (1, 1, "0", HQ)]
    store = build_store(["D0", "D1"], [0.0, 1.0], rows)
    for i in (0, 1):
        s = score_droplet(store, i, alpha_grid=(0.0, 0.25, 0.5, 1.0))
        assert s.n_snps == 2
        assert math.isfinite(s.llk0) and math.isfinite(s.llk2)
        assert all(math.isfinite(v) for v in s.llk_by_alpha.values())
        assert 0.0 <= s.post_doublet <= 1.0
