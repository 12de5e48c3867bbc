"""
Simulated datasets for pyPLGLMM.
"""

import numpy as np
import pandas as pd
from typing import Tuple


def simulate_kinship(n_genotypes: int = 30, n_markers: int = 500, seed: int = 42) -> pd.DataFrame:
    """
    Simulate a kinship matrix from random biallelic markers.

    Markers are coded 0/1/2 with allele frequencies drawn from U(0.05, 0.5)
    and the kinship is the VanRaden cross-product of the centred markers,
    K = M M' / (2 sum p (1 - p)).

    Parameters
    ----------
    n_genotypes : int, default=30
        Number of genotypes
    n_markers : int, default=500
        Number of markers
    seed : int, default=42
        Random seed

    Returns
    -------
    pd.DataFrame
        n_genotypes x n_genotypes kinship matrix indexed by genotype label

    Examples
    --------
    >>> K = simulate_kinship(20, seed=1)
    >>> K.shape
    (20, 20)
    """
    rng = np.random.default_rng(seed)

    freq = rng.uniform(0.05, 0.5, size=n_markers)
    markers = rng.binomial(2, freq, size=(n_genotypes, n_markers)).astype(float)

    centred = markers - 2 * freq
    K = centred @ centred.T / (2 * np.sum(freq * (1 - freq)))

    # keep K positive definite for small marker panels
    K += 1e-3 * np.eye(n_genotypes)

    labels = [f"G{i + 1:03d}" for i in range(n_genotypes)]
    return pd.DataFrame(K, index=labels, columns=labels)


def simulate_count_data(
    n_genotypes: int = 30,
    n_reps: int = 3,
    n_blocks: int = 4,
    sigma_block: float = 0.2,
    sigma_genetic: float = 0.3,
    intercept: float = 2.0,
    treatment_effect: float = 0.5,
    vardist: str = 'NB',
    dispersion: float = 5.0,
    seed: int = 42
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Simulate counts from a log-link GLMM with a genetic random effect.

    log mu = intercept + treatment_effect * treatment + b_block + g_genotype,
    with b ~ N(0, sigma_block I) and g ~ N(0, sigma_genetic K).

    Parameters
    ----------
    n_genotypes : int, default=30
        Number of genotypes
    n_reps : int, default=3
        Observations per genotype
    n_blocks : int, default=4
        Number of blocks
    sigma_block, sigma_genetic : float
        Variance components of the block and genetic effects
    intercept, treatment_effect : float
        Fixed effects
    vardist : str, default='NB'
        'NB' for negative binomial counts, 'P' for Poisson counts
    dispersion : float, default=5.0
        Negative binomial size parameter
    seed : int, default=42
        Random seed

    Returns
    -------
    data : pd.DataFrame
        Columns 'count', 'genotype', 'block', 'treatment' and 'log_size'
    kinship : pd.DataFrame
        Kinship matrix of the genotypes
    """
    rng = np.random.default_rng(seed)
    kinship = simulate_kinship(n_genotypes, seed=seed)
    labels = kinship.index.to_numpy()

    n_obs = n_genotypes * n_reps
    genotype = np.repeat(labels, n_reps)
    block = np.array([f"B{i % n_blocks + 1}" for i in range(n_obs)])
    treatment = rng.integers(0, 2, size=n_obs)
    log_size = np.log(rng.uniform(0.8, 1.2, size=n_obs))

    g = rng.multivariate_normal(np.zeros(n_genotypes), sigma_genetic * kinship.to_numpy())
    b = rng.normal(0, np.sqrt(sigma_block), size=n_blocks)

    geno_idx = np.repeat(np.arange(n_genotypes), n_reps)
    block_idx = np.arange(n_obs) % n_blocks
    eta = log_size + intercept + treatment_effect * treatment + b[block_idx] + g[geno_idx]
    mu = np.exp(eta)

    if vardist == 'NB':
        counts = rng.negative_binomial(dispersion, dispersion / (dispersion + mu))
    elif vardist == 'P':
        counts = rng.poisson(mu)
    else:
        raise ValueError(f"vardist must be 'NB' or 'P', got '{vardist}'")

    data = pd.DataFrame({
        'count': counts,
        'genotype': genotype,
        'block': block,
        'treatment': treatment,
        'log_size': log_size,
    })
    return data, kinship
