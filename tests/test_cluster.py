import pandas as pd

from freemux.cluster import cluster_droplets, cluster_sizes, edges_from_ldist, edges_from_records
from freemux.relatedness import PairRecord


def _rec(i, j, llk0, llk2, n=3):
    return PairRecord(i, j, n, 5, 5, 5, llk0, llk0, llk2)


def test_edges_need_margin_and_shared_snps():
    recs = [_rec(0, 1, -10.0, -5.0), _rec(0, 2, -10.0, -9.0), _rec(1, 2, 0.0, 0.0, n=0)]
    assert edges_from_records(recs) == [(0, 1, 1.0)]
    assert edges_from_records(recs, margin=0.5) == [(0, 1, 1.0), (0, 2, 1.0)]


def test_edges_from_ldist_table():
    df = pd.DataFrame({"ID1": [4, 4, 3], "ID2": [3, 2, 2], "NSNP": [8, 0, 8], "LDIFF": [6.1, 9.0, -1.0]})
    assert edges_from_ldist(df, 2.0) == [(4, 3, 1.0)]


def test_two_groups_and_singletons():
    edges = [(0, 1, 1.0), (1, 5, 1.0), (0, 5, 1.0), (2, 3, 1.0)]
    assignment = cluster_droplets([5, 4, 3, 2, 1, 0, 6], edges, seed=1)
    assert assignment == {0: 0, 1: 0, 5: 0, 2: 1, 3: 1, 4: 2, 6: 3}
    assert cluster_sizes(assignment) == {0: 3, 1: 2, 2: 1, 3: 1}


def test_no_edges_gives_singletons():
    assert cluster_droplets([2, 0, 1], []) == {0: 0, 1: 1, 2: 2}
    assert cluster_droplets([], []) == {}


def test_same_seed_same_partition():
    edges = [(a, b, 1.0) for a in range(6) for b in range(a + 1, 6) if (a < 3) == (b < 3)]
    edges.append((2, 3, 1.0))
    assert cluster_droplets(range(6), edges, seed=3) == cluster_droplets(range(6), edges, seed=3)
