"""
Nelder-Mead simplex minimization with box constraints.

Derivative-free minimizer used to optimize the profiled deviance or REML
criterion over the covariance parameters of a linear mixed model. Every
candidate point generated by the search (initial vertices, reflection,
expansion, contraction and shrink points) is clamped into the box
``[lower_bound, upper_bound]`` before the objective is evaluated.

The algorithm follows the classic formulation with reflection coefficient
rho = 1, expansion chi = 2, contraction gamma = 0.5 and shrink sigma = 0.5.
Convergence is checked vertex by vertex: the run stops once every simplex
value changed by at most ``epsilon`` in absolute terms and at most
``100 * epsilon`` relative to its magnitude during the last iteration.

Reference:
Nelder, J. A. and Mead, R. (1965) "A simplex method for function
minimization", The Computer Journal 7(4), 308-313.
"""

from __future__ import annotations
import math
import warnings
import numpy as np
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .errors import (
    DegenerateSimplexError,
    InvalidBoundsError,
    IterationLimitExceeded,
    ObjectiveEvaluationError,
)

EPSILON_DEFAULT = 1e-6
MAX_ITERATIONS_DEFAULT = 1000000

# Reflection, expansion, contraction and shrink coefficients
RHO = 1.0
CHI = 2.0
GAMMA = 0.5
SIGMA = 0.5


@dataclass(frozen=True, eq=False)
class Vertex:
    """
    A simplex vertex: a point and its objective value.

    ``value`` is None until the point has been evaluated. The point is
    stored as a read-only copy, so snapshots of a simplex never alias
    arrays that are modified later.
    """
    point: np.ndarray
    value: Optional[float] = None

    def __post_init__(self):
        point = np.array(self.point, dtype=float)
        point.setflags(write=False)
        object.__setattr__(self, "point", point)

    @property
    def evaluated(self) -> bool:
        return self.value is not None


def compare(v1: Vertex, v2: Vertex) -> int:
    """Three-way comparison of two evaluated vertices by value only."""
    if v1.value == v2.value:
        return 0
    elif v1.value > v2.value:
        return 1
    return -1


@dataclass
class SimplexState:
    """Mutable run state owned by a single minimizer instance."""
    simplex: List[Vertex]
    previous: Optional[List[Vertex]] = None
    iterations: int = 0
    evaluations: int = 0


@dataclass
class NelderMeadOptions:
    """
    Configuration options for the simplex minimizer.

    Attributes
    ----------
    epsilon : float, default=1e-6
        Absolute convergence threshold; the relative threshold is 100 * epsilon
    max_iterations : int, default=1000000
        Maximum number of simplex iterations before the run fails
    verbose : bool, default=False
        If True, print iteration progress
    """
    epsilon: float = EPSILON_DEFAULT
    max_iterations: int = MAX_ITERATIONS_DEFAULT
    verbose: bool = False


@dataclass
class NelderMeadResult:
    """
    Result of a converged minimization run.

    Attributes
    ----------
    x_minimum : np.ndarray
        Best point found (an independent copy)
    f_minimum : float
        Objective value at ``x_minimum``
    iterations : int
        Number of simplex iterations performed
    evaluations : int
        Number of objective evaluations performed
    converged : bool
        Always True; failed runs raise IterationLimitExceeded instead
    log : list[dict]
        Per-iteration diagnostics
    """
    x_minimum: np.ndarray
    f_minimum: float
    iterations: int
    evaluations: int
    converged: bool = True
    log: List[Dict] = field(default_factory=list)


def _resolve_bound(bound, n: int, fill: float, name: str) -> np.ndarray:
    if bound is None:
        return np.full(n, fill)
    arr = np.atleast_1d(np.asarray(bound, dtype=float))
    if arr.shape != (n,):
        raise InvalidBoundsError(
            f"{name} bound should be of the same length as the start point "
            f"(got {arr.size}, expected {n})"
        )
    return arr.copy()


def _build_start_configuration(configuration, n: int) -> np.ndarray:
    """
    Offsets of vertices 1..n relative to vertex 0.

    A vector of steps gives row i = (steps[0], ..., steps[i], 0, ..., 0).
    A full n x n matrix is used as is.
    """
    if configuration is None:
        configuration = np.ones(n)
    configuration = np.asarray(configuration, dtype=float)

    if configuration.ndim == 1:
        if configuration.shape != (n,):
            raise ValueError(
                f"start configuration needs {n} steps, got {configuration.size}"
            )
        for i, step in enumerate(configuration):
            if step == 0.0:
                raise DegenerateSimplexError(
                    f"equal vertices {i} and {i + 1} in simplex configuration"
                )
        offsets = np.tril(np.tile(configuration, (n, 1)))
    elif configuration.ndim == 2:
        if configuration.shape != (n, n):
            raise ValueError(
                f"start configuration must be {n}x{n}, got {configuration.shape}"
            )
        offsets = configuration.copy()
        for i in range(n):
            if not np.any(offsets[i]):
                raise DegenerateSimplexError(
                    f"equal vertices 0 and {i + 1} in simplex configuration"
                )
            for j in range(i):
                if np.array_equal(offsets[i], offsets[j]):
                    raise DegenerateSimplexError(
                        f"equal vertices {j + 1} and {i + 1} in simplex configuration"
                    )
    else:
        raise ValueError("start configuration must be a vector of steps or a square matrix")

    if not np.all(np.isfinite(offsets)):
        raise ValueError("start configuration must be finite")
    return offsets


class NelderMead:
    """
    Nelder-Mead minimizer with box constraints.

    Parameters
    ----------
    f : callable
        Objective function mapping a length-n float array to a scalar.
        It is called with an independent copy of each candidate point.
    start_point : array-like
        Starting point of the search (length n >= 1)
    lower_bound, upper_bound : array-like, optional
        Per-coordinate bounds; default to -inf and +inf
    epsilon : float, default=1e-6
        Convergence threshold (must be positive)
    max_iterations : int, default=1000000
        Iteration ceiling; exceeding it raises IterationLimitExceeded
    start_configuration : array-like, optional
        Either n steps (vertex i+1 is offset by steps[0..i]) or an n x n
        matrix of offsets. Defaults to unit steps.
    verbose : bool, default=False
        If True, print iteration progress

    Raises
    ------
    InvalidBoundsError
        If a bound has the wrong length or lower_bound[i] >= upper_bound[i]
    DegenerateSimplexError
        If the start configuration produces coincident vertices

    Examples
    --------
    >>> nm = NelderMead(lambda x: (x[0] - 2)**2 + (x[1] - 5)**2, [0.0, 0.0])
    >>> while nm.converging():
    ...     nm.iterate()
    >>> nm.x_minimum, nm.f_minimum
    """

    def __init__(
        self,
        f: Callable[[np.ndarray], float],
        start_point: Sequence[float],
        lower_bound: Optional[Sequence[float]] = None,
        upper_bound: Optional[Sequence[float]] = None,
        epsilon: float = EPSILON_DEFAULT,
        max_iterations: int = MAX_ITERATIONS_DEFAULT,
        start_configuration=None,
        verbose: bool = False,
    ):
        start = np.asarray(start_point, dtype=float)
        if start.ndim != 1 or start.size == 0:
            raise ValueError("start_point must be a non-empty one-dimensional sequence")
        if not np.all(np.isfinite(start)):
            raise ValueError(f"start_point must be finite, got {start.tolist()}")
        if not epsilon > 0:
            raise ValueError(f"epsilon must be positive, got {epsilon}")
        if max_iterations < 0:
            raise ValueError(f"max_iterations must be non-negative, got {max_iterations}")

        n = start.size
        self.f = f
        self.epsilon = float(epsilon)
        self.max_iterations = int(max_iterations)
        self.relative_threshold = 100 * self.epsilon
        self.absolute_threshold = self.epsilon
        self.verbose = verbose

        self.lower_bound = _resolve_bound(lower_bound, n, -np.inf, "Lower")
        self.upper_bound = _resolve_bound(upper_bound, n, np.inf, "Upper")
        bad = np.flatnonzero(~(self.lower_bound < self.upper_bound))
        if bad.size > 0:
            raise InvalidBoundsError(
                f"Lower bounds should be smaller than upper bounds (coordinates {bad.tolist()})"
            )

        self.start_configuration = _build_start_configuration(start_configuration, n)

        if np.any(start < self.lower_bound) or np.any(start > self.upper_bound):
            warnings.warn("Start point lies outside the bounds; moving it into the feasible region")

        self.log: List[Dict] = []
        self.state = SimplexState(simplex=self._build_simplex(start))
        self.evaluate_simplex()

    @property
    def iterations(self) -> int:
        return self.state.iterations

    @property
    def evaluations(self) -> int:
        return self.state.evaluations

    @property
    def simplex(self) -> List[Vertex]:
        return list(self.state.simplex)

    @property
    def x_minimum(self) -> Optional[np.ndarray]:
        """Best point so far; None before the first iteration."""
        if self.state.iterations == 0:
            return None
        return self.state.simplex[0].point.copy()

    @property
    def f_minimum(self) -> Optional[float]:
        """Objective value at ``x_minimum``; None before the first iteration."""
        if self.state.iterations == 0:
            return None
        return self.state.simplex[0].value

    def move_into_bounds(self, point: np.ndarray) -> np.ndarray:
        """Clamp ``point`` component-wise into the bounds."""
        return np.clip(point, self.lower_bound, self.upper_bound)

    def _build_simplex(self, start_point: np.ndarray) -> List[Vertex]:
        # Offsets are applied to the clamped start point
        x0 = self.move_into_bounds(start_point)
        simplex = [Vertex(x0)]
        for offset in self.start_configuration:
            simplex.append(Vertex(self.move_into_bounds(x0 + offset)))

        # Clamping can collapse vertices onto a bound
        for i in range(1, len(simplex)):
            for j in range(i):
                if np.array_equal(simplex[i].point, simplex[j].point):
                    raise DegenerateSimplexError(
                        f"equal vertices {j} and {i} after moving the simplex into the bounds "
                        f"(both at {simplex[i].point.tolist()})"
                    )
        return simplex

    def _evaluate(self, point: np.ndarray) -> Vertex:
        raw = self.f(point.copy())
        self.state.evaluations += 1
        if np.ndim(raw) != 0:
            raise ObjectiveEvaluationError(
                f"objective must return a real scalar, got shape {np.shape(raw)}", point
            )
        try:
            value = float(raw)
        except (TypeError, ValueError) as e:
            raise ObjectiveEvaluationError(
                f"objective must return a real scalar, got {raw!r}", point
            ) from e
        if math.isnan(value):
            raise ObjectiveEvaluationError(f"objective returned NaN at {point.tolist()}", point)
        return Vertex(point, value)

    def evaluate_simplex(self):
        """Evaluate all unevaluated vertices and sort the simplex best to worst."""
        simplex = self.state.simplex
        for i, vertex in enumerate(simplex):
            if not vertex.evaluated:
                simplex[i] = self._evaluate(vertex.point)
        # list.sort is stable: ties keep their current order
        simplex.sort(key=lambda v: v.value)

    def _point_converged(self, previous: Vertex, current: Vertex) -> bool:
        diff = abs(previous.value - current.value)
        size = max(abs(previous.value), abs(current.value))
        return diff <= size * self.relative_threshold and diff <= self.absolute_threshold

    def converging(self) -> bool:
        """True while the run has not converged yet."""
        if self.state.iterations == 0 or self.state.previous is None:
            return True
        for previous, current in zip(self.state.previous, self.state.simplex):
            if not self._point_converged(previous, current):
                return True
        return False

    def _increment_iterations_counter(self):
        self.state.iterations += 1
        if self.state.iterations > self.max_iterations:
            best = self.state.simplex[0]
            raise IterationLimitExceeded(
                self.max_iterations,
                best.point,
                best.value,
                self.state.iterations,
                self.state.evaluations,
            )

    def _replace_worst_point(self, vertex: Vertex):
        """Insert ``vertex`` in sorted position, dropping the worst vertex."""
        simplex = self.state.simplex
        del simplex[-1]
        # Ties keep their order: the new vertex goes after equal values
        pos = 0
        while pos < len(simplex) and compare(simplex[pos], vertex) <= 0:
            pos += 1
        simplex.insert(pos, vertex)

    def _shrink(self):
        x_best = self.state.simplex[0].point
        self.state.simplex = [
            Vertex(self.move_into_bounds(x_best + SIGMA * (v.point - x_best)))
            for v in self.state.simplex
        ]
        self.evaluate_simplex()

    def _iterate_simplex(self) -> str:
        """Perform one simplex transformation and return its name."""
        self._increment_iterations_counter()

        simplex = self.state.simplex
        n = len(simplex) - 1
        best = simplex[0]
        second_worst = simplex[n - 1]
        worst = simplex[n]

        # Centroid of all vertices except the worst
        centroid = np.mean([v.point for v in simplex[:n]], axis=0)

        reflected = self._evaluate(
            self.move_into_bounds(centroid + RHO * (centroid - worst.point))
        )
        if compare(best, reflected) <= 0 and compare(reflected, second_worst) < 0:
            self._replace_worst_point(reflected)
            return "reflect"

        if compare(reflected, best) < 0:
            expanded = self._evaluate(
                self.move_into_bounds(centroid + CHI * (reflected.point - centroid))
            )
            if compare(expanded, reflected) < 0:
                self._replace_worst_point(expanded)
                return "expand"
            self._replace_worst_point(reflected)
            return "reflect"

        if compare(reflected, worst) < 0:
            contracted = self._evaluate(
                self.move_into_bounds(centroid + GAMMA * (reflected.point - centroid))
            )
            if compare(contracted, reflected) <= 0:
                self._replace_worst_point(contracted)
                return "contract_outside"
        else:
            contracted = self._evaluate(
                self.move_into_bounds(centroid - GAMMA * (centroid - worst.point))
            )
            if compare(contracted, worst) < 0:
                self._replace_worst_point(contracted)
                return "contract_inside"

        self._shrink()
        return "shrink"

    def iterate(self):
        """Advance the simplex by one step, keeping a snapshot for the convergence check."""
        self.state.previous = list(self.state.simplex)
        step = self._iterate_simplex()

        best = self.state.simplex[0]
        worst = self.state.simplex[-1]
        self.log.append({
            "iter": self.state.iterations,
            "step": step,
            "f_best": best.value,
            "f_worst": worst.value,
            "evaluations": self.state.evaluations,
        })

        if self.verbose:
            print(f"[NM iter {self.state.iterations:4d}] {step:16s} "
                  f"f_best={best.value:.8g} f_worst={worst.value:.8g}")

    def run(self) -> NelderMeadResult:
        """Iterate until convergence and return the result."""
        while self.converging():
            self.iterate()

        if self.verbose:
            print(f"[NM] Converged after {self.state.iterations} iterations "
                  f"({self.state.evaluations} evaluations), f_minimum={self.f_minimum:.8g}")

        return NelderMeadResult(
            x_minimum=self.x_minimum,
            f_minimum=self.f_minimum,
            iterations=self.state.iterations,
            evaluations=self.state.evaluations,
            converged=True,
            log=list(self.log),
        )


def minimize(
    f: Callable[[np.ndarray], float],
    start_point: Sequence[float],
    lower_bound: Optional[Sequence[float]] = None,
    upper_bound: Optional[Sequence[float]] = None,
    options: Optional[NelderMeadOptions] = None,
    start_configuration=None,
) -> NelderMeadResult:
    """
    Minimize ``f`` with the bounded Nelder-Mead simplex method.

    Parameters
    ----------
    f : callable
        Objective function mapping a float array to a scalar
    start_point : array-like
        Starting point of the search
    lower_bound, upper_bound : array-like, optional
        Per-coordinate bounds (default unconstrained)
    options : NelderMeadOptions, optional
        Convergence threshold, iteration ceiling and verbosity
    start_configuration : array-like, optional
        Shape of the initial simplex, see NelderMead

    Returns
    -------
    NelderMeadResult
        Best point, its value and run diagnostics

    Raises
    ------
    IterationLimitExceeded
        If the run does not converge within ``options.max_iterations``

    Examples
    --------
    >>> from pymixedmodels.optim import minimize
    >>> result = minimize(lambda x: (x[0] - 2)**2 + (x[1] - 5)**2, [0, 0])
    >>> print(f"x = {result.x_minimum}, f = {result.f_minimum:.3g}")
    """
    if options is None:
        options = NelderMeadOptions()
    minimizer = NelderMead(
        f,
        start_point,
        lower_bound=lower_bound,
        upper_bound=upper_bound,
        epsilon=options.epsilon,
        max_iterations=options.max_iterations,
        start_configuration=start_configuration,
        verbose=options.verbose,
    )
    return minimizer.run()
