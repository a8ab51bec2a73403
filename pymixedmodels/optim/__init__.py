"""
Derivative-free minimization with box constraints.

This module provides the bounded Nelder-Mead simplex search used to
minimize profiled deviance and REML criteria:
- Every candidate point is clamped into the bounds before evaluation
- Convergence requires every simplex value to settle, not just the best
- Hitting the iteration ceiling is an error, never a partial result

Key components:
- NelderMead: Stateful minimizer (converging() / iterate() / run())
- NelderMeadOptions: Configuration for the minimizer
- NelderMeadResult: Result container with the best point and diagnostics
- minimize(): One-call convenience wrapper
"""

from .errors import (
    MinimizerError,
    InvalidBoundsError,
    DegenerateSimplexError,
    IterationLimitExceeded,
    ObjectiveEvaluationError,
)
from .nelder_mead import (
    NelderMead,
    NelderMeadOptions,
    NelderMeadResult,
    Vertex,
    compare,
    minimize,
)

__all__ = [
    'NelderMead',
    'NelderMeadOptions',
    'NelderMeadResult',
    'Vertex',
    'compare',
    'minimize',
    'MinimizerError',
    'InvalidBoundsError',
    'DegenerateSimplexError',
    'IterationLimitExceeded',
    'ObjectiveEvaluationError',
]
