"""
Random-effects structure for grouped linear mixed models.

For every grouping factor with k random effects (e.g. intercept and slope)
and m levels, the model matrix Z gets m * k columns ordered level-major,
and the relative covariance factor Lambda^T gets m copies of one k x k
upper-triangular block on its diagonal. The covariance parameter vector
theta holds, per grouping factor, the k diagonal entries of that block
followed by its k(k-1)/2 off-diagonal entries in row-major order.
"""

from __future__ import annotations
import numpy as np
import pandas as pd
from typing import Callable, List, Sequence

from .matrix_methods import block_diagonal, khatri_rao_rows


def _check_structure(num_ran_ef: Sequence[int]) -> List[int]:
    sizes = [int(k) for k in num_ran_ef]
    if any(k < 1 for k in sizes):
        raise ValueError(f"Each grouping factor needs at least one random effect, got {sizes}")
    return sizes


def theta_length(num_ran_ef: Sequence[int]) -> int:
    """Number of covariance parameters for the given random-effect counts."""
    return sum(k + k * (k - 1) // 2 for k in _check_structure(num_ran_ef))


def default_start_point(num_ran_ef: Sequence[int]) -> np.ndarray:
    """Independent random effects with unit relative variances."""
    start = []
    for k in _check_structure(num_ran_ef):
        start.extend([1.0] * k)
        start.extend([0.0] * (k * (k - 1) // 2))
    return np.array(start)


def default_lower_bound(num_ran_ef: Sequence[int]) -> np.ndarray:
    """Diagonal entries of Lambda are non-negative, off-diagonals unbounded."""
    lower = []
    for k in _check_structure(num_ran_ef):
        lower.extend([0.0] * k)
        lower.extend([-np.inf] * (k * (k - 1) // 2))
    return np.array(lower)


def make_ran_ef_model_matrix(
    raw_mats: Sequence[np.ndarray],
    groups: Sequence[Sequence],
) -> np.ndarray:
    """
    Build the random-effects model matrix Z.

    Parameters
    ----------
    raw_mats : list of np.ndarray
        One (n x k_i) matrix of raw random-effect covariates per grouping
        factor (a column of ones for a random intercept)
    groups : list of array-like
        Group labels (length n) per grouping factor

    Returns
    -------
    np.ndarray
        Z of shape (n, sum_i k_i * m_i), m_i being the number of levels of
        grouping factor i; levels are taken in sorted order
    """
    if len(raw_mats) != len(groups):
        raise ValueError(
            f"Got {len(raw_mats)} random-effect matrices but {len(groups)} grouping factors"
        )
    if len(raw_mats) == 0:
        raise ValueError("At least one grouping factor is required")

    blocks = []
    n = None
    for raw, grp in zip(raw_mats, groups):
        raw = np.asarray(raw, dtype=float)
        if raw.ndim == 1:
            raw = raw[:, None]
        codes, levels = pd.factorize(pd.Series(grp), sort=True)
        if n is None:
            n = raw.shape[0]
        if raw.shape[0] != n or len(codes) != n:
            raise ValueError("All random-effect matrices and groupings must have the same number of rows")
        if np.any(codes < 0):
            raise ValueError("Grouping factors must not contain missing values")

        indicator = np.zeros((n, len(levels)))
        indicator[np.arange(n), codes] = 1.0
        blocks.append(khatri_rao_rows(indicator, raw))

    return np.hstack(blocks)


def count_levels(groups: Sequence[Sequence]) -> List[int]:
    """Number of distinct levels per grouping factor."""
    return [int(pd.Series(grp).nunique()) for grp in groups]


def ran_ef_labels(
    effect_names: Sequence[Sequence[str]],
    grouping_names: Sequence[str],
    groups: Sequence[Sequence],
) -> List[str]:
    """Labels for the columns of Z, e.g. ``'Subject[3]:Days'``."""
    labels = []
    for effects, gname, grp in zip(effect_names, grouping_names, groups):
        _, levels = pd.factorize(pd.Series(grp), sort=True)
        for level in levels:
            for eff in effects:
                labels.append(f"{gname}[{level}]:{eff}")
    return labels


def make_ran_ef_cov_fun(
    num_ran_ef: Sequence[int],
    num_grp_levels: Sequence[int],
) -> Callable[[np.ndarray], np.ndarray]:
    """
    Build the map from theta to the relative covariance factor Lambda^T.

    Parameters
    ----------
    num_ran_ef : list of int
        Number of random effects per grouping factor
    num_grp_levels : list of int
        Number of levels per grouping factor

    Returns
    -------
    callable
        ``thfun(theta) -> np.ndarray`` of shape (q, q), upper triangular,
        with ``q = sum_i num_ran_ef[i] * num_grp_levels[i]``. The expected
        theta length is available as ``thfun.theta_length``.

    Examples
    --------
    >>> thfun = make_ran_ef_cov_fun([2], [3])
    >>> thfun([1.0, 2.0, 0.5]).shape
    (6, 6)
    """
    sizes = _check_structure(num_ran_ef)
    levels = [int(m) for m in num_grp_levels]
    if len(levels) != len(sizes):
        raise ValueError("num_ran_ef and num_grp_levels must have the same length")
    if any(m < 1 for m in levels):
        raise ValueError(f"Each grouping factor needs at least one level, got {levels}")
    n_theta = theta_length(sizes)

    def thfun(theta):
        theta = np.asarray(theta, dtype=float)
        if theta.shape != (n_theta,):
            raise ValueError(f"theta must have length {n_theta}, got shape {theta.shape}")
        diag_blocks = []
        pos = 0
        for k, m in zip(sizes, levels):
            blk = np.zeros((k, k))
            blk[np.diag_indices(k)] = theta[pos:pos + k]
            pos += k
            n_off = k * (k - 1) // 2
            blk[np.triu_indices(k, 1)] = theta[pos:pos + n_off]
            pos += n_off
            diag_blocks.extend([blk] * m)
        return block_diagonal(*diag_blocks)

    thfun.theta_length = n_theta
    return thfun
