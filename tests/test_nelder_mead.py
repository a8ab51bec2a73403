"""
Unit tests for the bounded Nelder-Mead minimizer.

Tests verify:
- Convergence on smooth problems, with and without bounds
- Every evaluated point lies inside the bounds
- Iteration ceiling, degenerate configurations and malformed bounds fail loudly
- Deterministic ordering of tied vertices
"""

import pytest
import numpy as np

import sys
import os
# Add parent directory to path to find pymixedmodels package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pymixedmodels.optim import (
    NelderMead,
    NelderMeadOptions,
    NelderMeadResult,
    Vertex,
    compare,
    minimize,
    MinimizerError,
    InvalidBoundsError,
    DegenerateSimplexError,
    IterationLimitExceeded,
    ObjectiveEvaluationError,
)


def quadratic_2_5(x):
    return (x[0] - 2) ** 2 + (x[1] - 5) ** 2


def rosenbrock(x):
    return 100.0 * (x[1] - x[0] ** 2) ** 2 + (1.0 - x[0]) ** 2


class RecordingObjective:
    """Wraps an objective and records every point it is called with."""

    def __init__(self, f):
        self.f = f
        self.points = []

    def __call__(self, x):
        self.points.append(np.array(x, dtype=float))
        return self.f(x)


class TestConvergence:
    """Test convergence on known problems."""

    def test_unconstrained_quadratic(self):
        """Minimum of (x0-2)^2 + (x1-5)^2 from the origin."""
        result = minimize(quadratic_2_5, [0.0, 0.0], options=NelderMeadOptions(epsilon=1e-6))

        assert isinstance(result, NelderMeadResult)
        assert result.converged
        np.testing.assert_allclose(result.x_minimum, [2.0, 5.0], atol=1e-3)
        assert result.f_minimum < 1e-6
        assert result.iterations < 1000

    def test_lower_bound_active(self):
        """With x0 >= 3 the optimum sits on the boundary."""
        result = minimize(quadratic_2_5, [0.0, 0.0], lower_bound=[3.0, -np.inf])

        assert result.x_minimum[0] == pytest.approx(3.0, abs=1e-4)
        assert result.x_minimum[1] == pytest.approx(5.0, abs=1e-2)
        assert result.f_minimum == pytest.approx(1.0, abs=1e-4)

    def test_upper_bound_never_exceeded(self):
        """(x-10)^2 with x <= 5 converges to 5 without exploring beyond it."""
        f = RecordingObjective(lambda x: (x[0] - 10.0) ** 2)
        result = minimize(f, [0.0], upper_bound=[5.0])

        assert result.x_minimum[0] == pytest.approx(5.0, abs=1e-6)
        assert result.f_minimum == pytest.approx(25.0, abs=1e-4)
        assert max(p[0] for p in f.points) <= 5.0

    def test_quadratic_from_various_starts(self):
        """Convex quadratic converges to its center from any start."""
        center = np.array([1.5, -0.5, 3.0])

        def f(x):
            return float(np.sum((x - center) ** 2))

        for start in ([0.0, 0.0, 0.0], [10.0, -10.0, 5.0], [-3.0, 7.0, 0.5]):
            result = minimize(f, start)
            np.testing.assert_allclose(result.x_minimum, center, atol=1e-3)
            assert result.f_minimum < 1e-6

    def test_rosenbrock(self):
        """Classic banana valley from (-1.2, 1)."""
        result = minimize(rosenbrock, [-1.2, 1.0])

        np.testing.assert_allclose(result.x_minimum, [1.0, 1.0], atol=1e-3)
        assert result.f_minimum < 1e-6

    def test_results_within_bounds(self):
        """Returned points always respect the bounds."""
        rng = np.random.default_rng(0)
        lower = np.array([-1.0, -1.0, -1.0])
        upper = np.array([1.0, 1.0, 1.0])

        for _ in range(5):
            center = rng.uniform(-3, 3, size=3)
            start = rng.uniform(-1, 1, size=3)

            def f(x, center=center):
                return float(np.sum((x - center) ** 2))

            recorder = RecordingObjective(f)
            result = minimize(recorder, start, lower_bound=lower, upper_bound=upper)

            assert np.all(result.x_minimum >= lower)
            assert np.all(result.x_minimum <= upper)
            assert result.f_minimum <= f(start)
            for p in recorder.points:
                assert np.all(p >= lower) and np.all(p <= upper)

    def test_repeated_runs_identical(self):
        """Two runs with the same configuration give identical results."""
        r1 = minimize(rosenbrock, [-1.2, 1.0], lower_bound=[-2, -2], upper_bound=[2, 2])
        r2 = minimize(rosenbrock, [-1.2, 1.0], lower_bound=[-2, -2], upper_bound=[2, 2])

        assert np.array_equal(r1.x_minimum, r2.x_minimum)
        assert r1.f_minimum == r2.f_minimum
        assert r1.iterations == r2.iterations
        assert r1.evaluations == r2.evaluations


def vertices(values):
    """Evaluated 2-D vertices with distinct points and the given values."""
    return [Vertex([float(i), 0.0], value) for i, value in enumerate(values)]


class TestConvergenceRule:
    """Test the per-vertex absolute and relative convergence tests."""

    def setup_method(self):
        """Minimizer with eps=1e-6 that has completed one iteration."""
        self.nm = NelderMead(lambda x: 0.0, [0.0, 0.0], epsilon=1e-6)
        self.nm.state.iterations = 1

    def converging(self, previous, current):
        self.nm.state.previous = vertices(previous)
        self.nm.state.simplex = vertices(current)
        return self.nm.converging()

    def test_all_vertices_settled(self):
        assert not self.converging([1.0, 2.0, 3.0], [1.0, 2.0, 3.0])
        assert not self.converging([1.0, 2.0, 3.0], [1.0 + 5e-7, 2.0, 3.0 - 5e-7])

    def test_only_best_settled(self):
        """A settled best vertex alone does not stop the run."""
        assert self.converging([1.0, 2.0, 3.0], [1.0, 1.5, 2.5])

    def test_only_worst_unsettled(self):
        assert self.converging([1.0, 2.0, 3.0], [1.0, 2.0, 2.9])

    def test_absolute_passes_relative_fails(self):
        """Change of 1e-9 is below eps but large relative to values near 1e-9."""
        assert self.converging([1e-9, 1e-9, 3e-9], [1e-9, 2e-9, 3e-9])

    def test_relative_passes_absolute_fails(self):
        """Change of 1 is tiny relative to 1e6 but above eps."""
        assert self.converging([1e6, 2e6, 3e6], [1e6 + 1.0, 2e6, 3e6])

    def test_before_first_iteration(self):
        nm = NelderMead(lambda x: 0.0, [0.0, 0.0])
        assert nm.converging()


class TestSimplexMechanics:
    """Test simplex construction, ordering and bookkeeping."""

    def test_initial_simplex_default_configuration(self):
        """Vertex i+1 is offset by unit steps in coordinates 0..i."""
        nm = NelderMead(lambda x: 0.0, [0.0, 0.0, 0.0])
        points = np.array([v.point for v in nm.simplex])

        # Constant objective: the stable sort keeps construction order
        np.testing.assert_array_equal(points, [
            [0.0, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [1.0, 1.0, 0.0],
            [1.0, 1.0, 1.0],
        ])
        assert nm.evaluations == 4

    def test_custom_steps(self):
        """A vector of steps scales the lower-triangular configuration."""
        nm = NelderMead(lambda x: 0.0, [1.0, 1.0], start_configuration=[0.5, -2.0])
        points = np.array([v.point for v in nm.simplex])

        np.testing.assert_array_equal(points, [[1.0, 1.0], [1.5, 1.0], [1.5, -1.0]])

    def test_matrix_configuration(self):
        """A full matrix of offsets is used as given."""
        nm = NelderMead(lambda x: 0.0, [0.0, 0.0], start_configuration=[[0.1, 0.0], [0.0, 0.2]])
        points = np.array([v.point for v in nm.simplex])

        np.testing.assert_array_equal(points, [[0.0, 0.0], [0.1, 0.0], [0.0, 0.2]])

    def test_initial_vertices_clamped(self):
        """Initial vertices are moved into the bounds."""
        with pytest.warns(UserWarning, match="outside the bounds"):
            nm = NelderMead(lambda x: 0.0, [-5.0, 0.0], lower_bound=[0.0, 0.0],
                            upper_bound=[0.5, 10.0])
        points = np.array([v.point for v in nm.simplex])

        np.testing.assert_array_equal(points, [[0.0, 0.0], [0.5, 0.0], [0.5, 1.0]])

    def test_simplex_sorted_after_each_iteration(self):
        """Values stay sorted ascending and evaluated."""
        nm = NelderMead(quadratic_2_5, [0.0, 0.0])
        values = [v.value for v in nm.simplex]
        assert values == sorted(values)

        for _ in range(30):
            if not nm.converging():
                break
            nm.iterate()
            simplex = nm.simplex
            assert all(v.evaluated for v in simplex)
            values = [v.value for v in simplex]
            assert values == sorted(values)
            assert len(simplex) == 3

    def test_constant_objective_shrinks_once(self):
        """Ties trigger a shrink that leaves the simplex unchanged."""
        calls = []

        def f(x):
            calls.append(x)
            return 0.0

        nm = NelderMead(f, [1.0, 2.0])
        assert nm.converging()
        assert nm.x_minimum is None
        assert nm.f_minimum is None

        result = nm.run()

        assert result.iterations == 1
        # 3 initial + reflection + inside contraction + 3 after the shrink
        assert result.evaluations == 8
        assert nm.evaluations == len(calls)
        assert result.log[0]["step"] == "shrink"
        np.testing.assert_array_equal(result.x_minimum, [1.0, 2.0])
        assert result.f_minimum == 0.0

    def test_manual_iteration_matches_run(self):
        """converging()/iterate() reproduce run()."""
        nm = NelderMead(quadratic_2_5, [0.0, 0.0])
        while nm.converging():
            nm.iterate()

        result = minimize(quadratic_2_5, [0.0, 0.0])

        assert np.array_equal(nm.x_minimum, result.x_minimum)
        assert nm.f_minimum == result.f_minimum
        assert nm.iterations == result.iterations

    def test_first_step_is_expansion(self):
        """From the origin the first reflection improves on the best vertex."""
        nm = NelderMead(quadratic_2_5, [0.0, 0.0])
        nm.iterate()

        assert nm.iterations == 1
        assert nm.log[0]["step"] == "expand"
        # Reflection of (0, 0) through centroid (1, 0.5) expanded to (3, 1.5)
        np.testing.assert_array_equal(nm.x_minimum, [3.0, 1.5])
        assert nm.f_minimum == pytest.approx(13.25)

    def test_outside_contraction(self):
        """f = x^2 on vertices 1 and 3.5: reflection to -1.5 is contracted to -0.25."""
        nm = NelderMead(lambda x: x[0] ** 2, [1.0], start_configuration=[2.5])
        nm.iterate()

        assert nm.log[0]["step"] == "contract_outside"
        assert [v.point[0] for v in nm.simplex] == [-0.25, 1.0]
        assert [v.value for v in nm.simplex] == [0.0625, 1.0]
        # 2 initial + reflection + contraction
        assert nm.evaluations == 4

    def test_inside_contraction(self):
        """f = x^2 on vertices 1 and -2: reflection to 4 is worse, contract to -0.5."""
        nm = NelderMead(lambda x: x[0] ** 2, [1.0], start_configuration=[-3.0])
        nm.iterate()

        assert nm.log[0]["step"] == "contract_inside"
        assert [v.point[0] for v in nm.simplex] == [-0.5, 1.0]
        assert [v.value for v in nm.simplex] == [0.25, 1.0]
        assert nm.evaluations == 4

    def test_replace_worst_inserts_after_ties(self):
        """New vertices go after equal values; existing ties keep their order."""
        nm = NelderMead(lambda x: 0.0, [0.0, 0.0, 0.0])
        nm.state.simplex = [
            Vertex([0.0, 0.0, 0.0], 1.0),
            Vertex([1.0, 0.0, 0.0], 2.0),
            Vertex([2.0, 0.0, 0.0], 2.0),
            Vertex([3.0, 0.0, 0.0], 5.0),
        ]

        nm._replace_worst_point(Vertex([9.0, 9.0, 9.0], 2.0))
        np.testing.assert_array_equal(
            [v.point for v in nm.simplex],
            [[0, 0, 0], [1, 0, 0], [2, 0, 0], [9, 9, 9]]
        )

        nm._replace_worst_point(Vertex([8.0, 8.0, 8.0], 1.5))
        np.testing.assert_array_equal(
            [v.point for v in nm.simplex],
            [[0, 0, 0], [8, 8, 8], [1, 0, 0], [2, 0, 0]]
        )
        assert [v.value for v in nm.simplex] == [1.0, 1.5, 2.0, 2.0]

    def test_replace_worst_new_best(self):
        nm = NelderMead(lambda x: 0.0, [0.0])
        nm.state.simplex = [Vertex([0.0], 1.0), Vertex([1.0], 3.0)]

        nm._replace_worst_point(Vertex([5.0], -1.0))
        assert [v.point[0] for v in nm.simplex] == [5.0, 0.0]

    def test_log_records_every_iteration(self):
        """One log entry per iteration with a known step name."""
        result = minimize(quadratic_2_5, [0.0, 0.0])
        steps = {"reflect", "expand", "contract_outside", "contract_inside", "shrink"}

        assert len(result.log) == result.iterations
        assert all(entry["step"] in steps for entry in result.log)
        assert [entry["iter"] for entry in result.log] == list(range(1, result.iterations + 1))
        assert result.log[-1]["evaluations"] == result.evaluations

    def test_x_minimum_is_a_copy(self):
        """Mutating returned points does not touch the minimizer."""
        nm = NelderMead(quadratic_2_5, [0.0, 0.0])
        result = nm.run()

        x = nm.x_minimum
        x[:] = 1000.0
        np.testing.assert_array_equal(nm.x_minimum, result.x_minimum)

    def test_objective_cannot_mutate_vertices(self):
        """The objective receives a copy of each point."""
        def f(x):
            value = quadratic_2_5(x)
            x[:] = -99.0
            return value

        result = minimize(f, [0.0, 0.0])
        np.testing.assert_allclose(result.x_minimum, [2.0, 5.0], atol=1e-3)

    def test_verbose_output(self, capsys):
        """Verbose mode prints per-iteration progress."""
        minimize(quadratic_2_5, [0.0, 0.0], options=NelderMeadOptions(verbose=True))
        out = capsys.readouterr().out

        assert "[NM iter    1]" in out
        assert "[NM] Converged" in out


class TestVertexComparison:
    """Test the value-only three-way comparator."""

    def test_compare_by_value(self):
        a = Vertex([0.0], 1.0)
        b = Vertex([5.0], 2.0)

        assert compare(a, b) == -1
        assert compare(b, a) == 1
        assert compare(a, Vertex([9.0], 1.0)) == 0

    def test_vertex_is_immutable(self):
        v = Vertex(np.array([1.0, 2.0]), 3.0)

        with pytest.raises(ValueError):
            v.point[0] = 5.0
        assert not Vertex([1.0]).evaluated
        assert v.evaluated


class TestFailures:
    """Test error handling."""

    def test_zero_max_iterations(self):
        """max_iterations=0 fails instead of returning the start point."""
        with pytest.raises(IterationLimitExceeded):
            minimize(quadratic_2_5, [0.0, 0.0], options=NelderMeadOptions(max_iterations=0))

    def test_iteration_limit_payload(self):
        """The best point so far is attached to the exception."""
        with pytest.raises(IterationLimitExceeded) as excinfo:
            minimize(quadratic_2_5, [0.0, 0.0], options=NelderMeadOptions(max_iterations=1))

        err = excinfo.value
        assert err.iterations == 2
        assert err.max_iterations == 1
        assert err.x_best.shape == (2,)
        assert err.f_best == pytest.approx(quadratic_2_5(err.x_best))
        assert err.evaluations > 3
        assert isinstance(err, MinimizerError)
        assert isinstance(err, RuntimeError)

    def test_zero_step_is_degenerate(self):
        with pytest.raises(DegenerateSimplexError, match="equal vertices 1 and 2"):
            NelderMead(quadratic_2_5, [0.0, 0.0], start_configuration=[1.0, 0.0])

    def test_degenerate_matrix_configurations(self):
        with pytest.raises(DegenerateSimplexError):
            NelderMead(quadratic_2_5, [0.0, 0.0], start_configuration=[[1.0, 0.0], [0.0, 0.0]])
        with pytest.raises(DegenerateSimplexError):
            NelderMead(quadratic_2_5, [0.0, 0.0], start_configuration=[[1.0, 1.0], [1.0, 1.0]])

    def test_vertices_collapsed_by_clamping(self):
        """A start point on a bound with an outward step gives coincident vertices."""
        def f(x):
            return (x[0] + 1) ** 2 + (x[1] - 5) ** 2

        with pytest.raises(DegenerateSimplexError, match="equal vertices 0 and 1"):
            NelderMead(f, [0.0, 0.0], upper_bound=[0.0, np.inf])
        with pytest.raises(DegenerateSimplexError):
            minimize(f, [0.0, 0.0], upper_bound=[0.0, np.inf])

        # Steps pointing into the feasible region reach the optimum at (-1, 5)
        result = minimize(f, [0.0, 0.0], upper_bound=[0.0, np.inf],
                          start_configuration=[-1.0, 1.0])
        np.testing.assert_allclose(result.x_minimum, [-1.0, 5.0], atol=1e-3)

    def test_misshaped_configuration(self):
        with pytest.raises(ValueError, match="needs 2 steps"):
            NelderMead(quadratic_2_5, [0.0, 0.0], start_configuration=[1.0, 1.0, 1.0])
        with pytest.raises(ValueError, match="must be 2x2"):
            NelderMead(quadratic_2_5, [0.0, 0.0], start_configuration=np.eye(3))

    def test_lower_not_below_upper(self):
        with pytest.raises(InvalidBoundsError, match="smaller than upper"):
            NelderMead(quadratic_2_5, [0.0, 0.0], lower_bound=[1.0, 0.0], upper_bound=[0.0, 1.0])
        with pytest.raises(InvalidBoundsError):
            NelderMead(quadratic_2_5, [0.0, 0.0], lower_bound=[1.0, 0.0], upper_bound=[1.0, 1.0])

    def test_bound_length_mismatch(self):
        with pytest.raises(InvalidBoundsError, match="same length"):
            NelderMead(quadratic_2_5, [0.0, 0.0], lower_bound=[0.0])
        with pytest.raises(InvalidBoundsError, match="same length"):
            NelderMead(quadratic_2_5, [0.0, 0.0], upper_bound=[1.0, 2.0, 3.0])

    def test_invalid_bounds_is_value_error(self):
        with pytest.raises(ValueError):
            NelderMead(quadratic_2_5, [0.0], lower_bound=[2.0], upper_bound=[1.0])

    def test_invalid_run_configuration(self):
        with pytest.raises(ValueError, match="epsilon"):
            NelderMead(quadratic_2_5, [0.0, 0.0], epsilon=0.0)
        with pytest.raises(ValueError, match="max_iterations"):
            NelderMead(quadratic_2_5, [0.0, 0.0], max_iterations=-1)
        with pytest.raises(ValueError, match="start_point"):
            NelderMead(quadratic_2_5, [])

    def test_non_finite_start_point(self):
        with pytest.raises(ValueError, match="start_point must be finite"):
            NelderMead(quadratic_2_5, [np.nan, 0.0])
        with pytest.raises(ValueError, match="start_point must be finite"):
            NelderMead(quadratic_2_5, [0.0, np.inf])

    def test_objective_exception_propagates(self):
        """Failures inside the objective abort the run unchanged."""
        calls = {"n": 0}

        def f(x):
            calls["n"] += 1
            if calls["n"] == 5:
                raise RuntimeError("boom")
            return quadratic_2_5(x)

        with pytest.raises(RuntimeError, match="boom"):
            minimize(f, [0.0, 0.0])
        assert calls["n"] == 5

    def test_nan_objective_rejected(self):
        with pytest.raises(ObjectiveEvaluationError, match="NaN"):
            NelderMead(lambda x: float("nan"), [0.0, 0.0])

    def test_non_scalar_objective_rejected(self):
        with pytest.raises(ObjectiveEvaluationError, match="real scalar"):
            NelderMead(lambda x: "not a number", [0.0, 0.0])

    def test_array_objective_rejected(self):
        """One-element arrays are not accepted as scalars."""
        with pytest.raises(ObjectiveEvaluationError, match="real scalar"):
            NelderMead(lambda x: np.array([1.0]), [0.0, 0.0])

        # numpy scalars are fine
        nm = NelderMead(lambda x: np.sum(x ** 2), [1.0, 1.0])
        assert isinstance(nm.simplex[0].value, float)
