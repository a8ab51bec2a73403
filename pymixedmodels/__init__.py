"""
pyMixedModels: Linear Mixed Models fitted by bounded simplex minimization

A Python implementation of linear mixed-effects models whose covariance
parameters are estimated by minimizing the profiled deviance or REML
criterion with a box-constrained Nelder-Mead simplex search.
"""

from .lmm import LMM
from .control import LMMControl
from .lmm_data import LMMData, ProfiledFit, make_deviance_function
from .optim import (
    NelderMead,
    NelderMeadOptions,
    NelderMeadResult,
    minimize,
    InvalidBoundsError,
    DegenerateSimplexError,
    IterationLimitExceeded,
    ObjectiveEvaluationError,
)
from .plotting import plot_convergence, plot_lmm

__version__ = "0.1.0"
__author__ = "Python MixedModels Implementation"

__all__ = [
    "LMM",
    "LMMControl",
    "LMMData",
    "ProfiledFit",
    "make_deviance_function",
    "NelderMead",
    "NelderMeadOptions",
    "NelderMeadResult",
    "minimize",
    "InvalidBoundsError",
    "DegenerateSimplexError",
    "IterationLimitExceeded",
    "ObjectiveEvaluationError",
    "plot_convergence",
    "plot_lmm",
]
