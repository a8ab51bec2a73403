"""
Control parameters for linear mixed model fitting.
"""

import os

# Environment flag turning on progress output by default
MONITOR_DEFAULT = os.getenv("PYMIXEDMODELS_MONITOR", "0") == "1"


class LMMControl:
    """
    Control parameters for the covariance-parameter optimization.

    Parameters
    ----------
    epsilon : float, default=1e-6
        Convergence threshold of the simplex minimizer (absolute; the
        relative threshold is 100 * epsilon)
    max_iterations : int, default=1000000
        Maximum number of simplex iterations
    monitoring : bool, optional
        Whether to print iteration progress. Defaults to the
        PYMIXEDMODELS_MONITOR environment variable.
    """

    def __init__(
        self,
        epsilon: float = 1e-6,
        max_iterations: int = 1000000,
        monitoring: bool = None
    ):
        if not epsilon > 0:
            raise ValueError(f"epsilon must be positive, got {epsilon}")
        if max_iterations < 0:
            raise ValueError(f"max_iterations must be non-negative, got {max_iterations}")
        self.epsilon = epsilon
        self.max_iterations = int(max_iterations)
        self.monitoring = MONITOR_DEFAULT if monitoring is None else monitoring

    def __repr__(self):
        return (f"LMMControl(epsilon={self.epsilon}, max_iterations={self.max_iterations}, "
                f"monitoring={self.monitoring})")
