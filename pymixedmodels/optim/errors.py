"""
Exceptions raised by the simplex minimizer.
"""

import numpy as np


class MinimizerError(Exception):
    """Base class for all minimizer failures."""
    pass


class InvalidBoundsError(MinimizerError, ValueError):
    """Bounds have the wrong length or an empty interval."""
    pass


class DegenerateSimplexError(MinimizerError, ValueError):
    """The start configuration yields coincident simplex vertices."""
    pass


class ObjectiveEvaluationError(MinimizerError, ValueError):
    """The objective returned NaN or a non-scalar for a submitted point."""

    def __init__(self, message, point=None):
        super().__init__(message)
        self.point = None if point is None else np.array(point, dtype=float)


class IterationLimitExceeded(MinimizerError, RuntimeError):
    """
    Convergence was not reached within ``max_iterations``.

    The best vertex at the time of failure is kept for inspection, it is
    not a converged solution.

    Attributes
    ----------
    x_best : np.ndarray
        Point of the best vertex when the limit was hit
    f_best : float
        Objective value at ``x_best``
    iterations : int
        Iteration count (one more than the limit)
    evaluations : int
        Number of objective evaluations performed
    """

    def __init__(self, max_iterations, x_best, f_best, iterations, evaluations):
        super().__init__(
            f"iteration limit reached ({max_iterations} iterations, "
            f"{evaluations} evaluations, best value {f_best:.6g})"
        )
        self.max_iterations = max_iterations
        self.x_best = np.array(x_best, dtype=float)
        self.f_best = f_best
        self.iterations = iterations
        self.evaluations = evaluations
