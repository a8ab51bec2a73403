"""
Example datasets for linear mixed models.
"""

import pandas as pd
import numpy as np
from typing import Optional, Sequence


def simulate_random_slope_data(
    n_groups: int = 5,
    group_size: int = 1000,
    beta: Sequence[float] = (2.0, 3.0),
    ran_ef_cov: Optional[np.ndarray] = None,
    sigma: float = 1.0,
    seed: Optional[int] = None
) -> pd.DataFrame:
    """
    Simulate grouped data with a correlated random intercept and slope.

    y = beta[0] + beta[1] * x + b0[g] + b1[g] * x + e, with
    (b0[g], b1[g]) ~ N(0, ran_ef_cov) per group and e ~ N(0, sigma^2).

    Parameters
    ----------
    n_groups : int, default=5
        Number of groups
    group_size : int, default=1000
        Observations per group
    beta : sequence of float, default=(2.0, 3.0)
        Fixed intercept and slope
    ran_ef_cov : np.ndarray, optional
        2x2 covariance of the random intercept and slope
        (default [[1, 0.5], [0.5, 1]])
    sigma : float, default=1.0
        Residual standard deviation
    seed : int, optional
        Random seed for reproducibility

    Returns
    -------
    pd.DataFrame
        Columns:
        - y: response
        - x: covariate, uniform on [0, 10)
        - group: group label (integer)

    Examples
    --------
    >>> data = simulate_random_slope_data(seed=42)
    >>> print(data.groupby('group').size())
    """
    if n_groups < 1 or group_size < 1:
        raise ValueError("n_groups and group_size must be positive")
    if ran_ef_cov is None:
        ran_ef_cov = np.array([[1.0, 0.5], [0.5, 1.0]])

    rng = np.random.default_rng(seed)
    n_obs = n_groups * group_size

    group = np.repeat(np.arange(n_groups), group_size)
    x = rng.uniform(0, 10, n_obs)

    # Per-group random intercepts and slopes
    b = rng.multivariate_normal(np.zeros(2), ran_ef_cov, size=n_groups)
    error = rng.normal(0, sigma, n_obs)

    y = beta[0] + beta[1] * x + b[group, 0] + b[group, 1] * x + error

    return pd.DataFrame({
        'y': y,
        'x': x,
        'group': group,
    })


def simulate_random_intercept_data(
    n_groups: int = 8,
    group_size: int = 10,
    intercept: float = 10.0,
    sigma_group: float = 2.0,
    sigma: float = 1.0,
    seed: Optional[int] = None
) -> pd.DataFrame:
    """
    Simulate a balanced one-way layout: y = intercept + b[g] + e.

    Returns
    -------
    pd.DataFrame
        Columns y and group
    """
    rng = np.random.default_rng(seed)
    group = np.repeat(np.arange(n_groups), group_size)
    b = rng.normal(0, sigma_group, n_groups)
    y = intercept + b[group] + rng.normal(0, sigma, n_groups * group_size)
    return pd.DataFrame({'y': y, 'group': group})


def create_toy_example() -> pd.DataFrame:
    """
    Create a small random-slope dataset for testing and demonstrations.

    Returns
    -------
    pd.DataFrame
        Small toy dataset
    """
    return simulate_random_slope_data(
        n_groups=6,
        group_size=25,
        seed=42
    )
