# src/freemux/cluster.py
"""
Group droplets into inferred individuals.

The pairwise stage only hands over a weighted edge list: an edge joins two
droplets whose same-individual score (LLK2 - LLK0) exceeds a margin. The
partition itself comes from networkx's Louvain community detection.
"""

from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, List, Tuple

import networkx as nx
import pandas as pd

from .relatedness import PairRecord

Edge = Tuple[int, int, float]


def edges_from_records(records: Iterable[PairRecord], margin: float = 2.0) -> List[Edge]:
    return [(r.id1, r.id2, 1.0) for r in records if r.n_snps > 0 and r.ldiff > margin]


def edges_from_ldist(df: pd.DataFrame, margin: float = 2.0) -> List[Edge]:
    """Same thresholding, applied to a ``.ldist`` table read back from disk."""
    keep = (df["NSNP"] > 0) & (df["LDIFF"] > margin)
    sub = df.loc[keep, ["ID1", "ID2"]]
    return [(int(a), int(b), 1.0) for a, b in sub.itertuples(index=False, name=None)]


def cluster_droplets(nodes: Iterable[int], edges: Iterable[Edge], seed: int = 0) -> Dict[int, int]:
    """
    Partition ``nodes`` into clusters; returns {droplet: cluster id}.

    Cluster ids are 0..k-1 ordered by descending size, then smallest member,
    so the numbering does not depend on the community detection order.
    Droplets without edges end up in singleton clusters.
    """
    g = nx.Graph()
    g.add_nodes_from(int(n) for n in nodes)
    for a, b, w in edges:
        if a == b:
            continue
        if g.has_edge(a, b):
            g[a][b]["weight"] += w
        else:
            g.add_edge(a, b, weight=w)

    if g.number_of_nodes() == 0:
        return {}

    if g.number_of_edges() == 0:
        comms = [{n} for n in g.nodes]
    else:
        comms = nx.community.louvain_communities(g, weight="weight", seed=seed)
    comms = sorted((sorted(c) for c in comms), key=lambda c: (-len(c), c[0]))
    return {n: k for k, members in enumerate(comms) for n in members}


def cluster_sizes(assignment: Dict[int, int]) -> Dict[int, int]:
    return dict(Counter(assignment.values()))
