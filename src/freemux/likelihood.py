#!/usr/bin/env python3
"""
freemux likelihood — per-read sequencing-error model and genotype priors

Genotypes are coded by the number of alternate alleles g in {0, 1, 2}.
For one read calling allele a with error probability e (two-allele model):

    P(a | g=0) = 1-e if a == ref else e
    P(a | g=2) = 1-e if a == alt else e
    P(a | g=1) = 0.5 * (1-e) + 0.5 * e

Reads with allele code 2 (neither ref nor alt) carry no information and are
skipped. Per-read probabilities are combined in log space; callers fold the
resulting vectors against priors with ``logsumexp`` and never exponentiate
per-SNP products of many reads.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
from scipy.special import logsumexp

from .store import ALLELE_ALT, ALLELE_REF, ObservationSet


# ------------------------------
# Quality conversion
# ------------------------------


def phred_to_error(qual) -> np.ndarray:
    return np.power(10.0, -np.asarray(qual, dtype=float) / 10.0)


def _safe_log(x) -> np.ndarray:
    with np.errstate(divide="ignore"):
        return np.log(x)


# ------------------------------
# Per-read probabilities
# ------------------------------


def read_probabilities(alleles: np.ndarray, errors: np.ndarray) -> np.ndarray:
    """
    Return an (n, 3) array of P(call | g) for every informative read.

    Rows for reads with allele code 2 are dropped.
    """
    alleles = np.asarray(alleles)
    errors = np.asarray(errors, dtype=float)
    keep = (alleles == ALLELE_REF) | (alleles == ALLELE_ALT)
    a = alleles[keep]
    e = errors[keep]
    ps = np.empty((a.shape[0], 3), dtype=float)
    ps[:, 0] = np.where(a == ALLELE_REF, 1.0 - e, e)
    ps[:, 2] = np.where(a == ALLELE_ALT, 1.0 - e, e)
    ps[:, 1] = 0.5 * (1.0 - e) + 0.5 * e
    return ps


def _obs_probabilities(obs: ObservationSet) -> np.ndarray:
    return read_probabilities(obs.alleles, obs.errors)


# ------------------------------
# Genotype likelihoods
# ------------------------------


def log_genotype_likelihoods(obs: ObservationSet) -> np.ndarray:
    """log P(reads | g) for a single individual, shape (3,)."""
    ps = _obs_probabilities(obs)
    if ps.shape[0] == 0:
        return np.zeros(3)
    return _safe_log(ps).sum(axis=0)


def log_doublet_likelihoods(obs: ObservationSet, alpha: float = 0.5) -> np.ndarray:
    """
    log P(reads | gi, gj) for a two-individual mixture, shape (9,).

    Each read is drawn from individual j with probability ``alpha`` and from
    individual i otherwise; entry ``gi*3 + gj``. With ``alpha == 0`` every
    row collapses to the single-genotype likelihood of ``gi``.
    """
    ps = _obs_probabilities(obs)
    if ps.shape[0] == 0:
        return np.zeros(9)
    mix = (1.0 - alpha) * ps[:, :, None] + alpha * ps[:, None, :]
    return _safe_log(mix).sum(axis=0).reshape(9)


def genotype_likelihoods(obs: ObservationSet) -> np.ndarray:
    return np.exp(log_genotype_likelihoods(obs))


def doublet_likelihoods(obs: ObservationSet, alpha: float = 0.5) -> np.ndarray:
    return np.exp(log_doublet_likelihoods(obs, alpha))


# ------------------------------
# Priors
# ------------------------------


def genotype_priors(af) -> np.ndarray:
    """Hardy-Weinberg genotype frequencies for alternate allele frequency ``af``.

    Accepts a scalar (shape (3,)) or an array of frequencies (shape (..., 3)).
    """
    af = np.asarray(af, dtype=float)
    q = 1.0 - af
    return np.stack([q * q, 2.0 * af * q, af * af], axis=-1)


def ibd1_transitions(af) -> np.ndarray:
    """
    Joint genotype probabilities of two individuals sharing exactly one allele IBD.

    Symmetric 3x3 table; rows and columns are genotypes of the two droplets.
    Entries sum to 1 for every ``af`` in [0, 1].
    """
    af = np.asarray(af, dtype=float)
    q = 1.0 - af
    t = np.zeros(af.shape + (3, 3))
    t[..., 0, 0] = q * q * q
    t[..., 0, 1] = t[..., 1, 0] = q * q * af
    t[..., 1, 2] = t[..., 2, 1] = q * af * af
    t[..., 1, 1] = t[..., 0, 1] + t[..., 1, 2]
    t[..., 2, 2] = af * af * af
    return t


def log_genotype_priors(af: float) -> np.ndarray:
    return _safe_log(genotype_priors(af))


def log_ibd1_transitions(af: float) -> np.ndarray:
    return _safe_log(ibd1_transitions(af))


def log_prior_table(af: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Per-SNP log genotype priors (S, 3) and log IBD1 tables (S, 3, 3)."""
    return _safe_log(genotype_priors(af)), _safe_log(ibd1_transitions(af))


# ------------------------------
# Per-SNP folds (vectorized over SNPs)
# ------------------------------


def singlet_doublet_lk(log_gl9: np.ndarray, log_gp: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fold doublet 9-vectors (m, 9) against genotype priors (m, 3).

    Returns per-SNP (log lk0, log lk2): two independent individuals vs. one.
    """
    m = np.asarray(log_gl9).reshape(-1, 3, 3)
    log_gp = np.asarray(log_gp).reshape(-1, 3)
    lk0 = logsumexp(m + log_gp[:, :, None] + log_gp[:, None, :], axis=(1, 2))
    lk2 = logsumexp(np.diagonal(m, axis1=1, axis2=2) + log_gp, axis=1)
    return lk0, lk2


def ibd_lk(log_gi: np.ndarray, log_gj: np.ndarray,
           log_gp: np.ndarray, log_t1: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-SNP (log lk0, log lk1, log lk2) for two droplets' genotype likelihoods (m, 3)."""
    log_gi = np.asarray(log_gi).reshape(-1, 3)
    log_gj = np.asarray(log_gj).reshape(-1, 3)
    log_gp = np.asarray(log_gp).reshape(-1, 3)
    log_t1 = np.asarray(log_t1).reshape(-1, 3, 3)
    pair = log_gi[:, :, None] + log_gj[:, None, :]
    lk0 = logsumexp(pair + log_gp[:, :, None] + log_gp[:, None, :], axis=(1, 2))
    lk1 = logsumexp(pair + log_t1, axis=(1, 2))
    lk2 = logsumexp(log_gi + log_gj + log_gp, axis=1)
    return lk0, lk1, lk2
