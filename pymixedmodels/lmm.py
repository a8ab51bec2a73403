"""
Linear mixed-effects model fitting.

Covariance parameters are estimated by minimizing the profiled deviance
(ML) or the profiled REML criterion with the bounded Nelder-Mead simplex
search; fixed effects, random effects and the residual scale follow from
the penalized least squares solution at the optimum.

Reference:
Bates, D., Maechler, M., Bolker, B. and Walker, S. (2015) "Fitting Linear
Mixed-Effects Models Using lme4", Journal of Statistical Software 67(1).
"""

import warnings
import numpy as np
import pandas as pd
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .control import LMMControl
from .design import (
    count_levels,
    default_lower_bound,
    default_start_point,
    make_ran_ef_cov_fun,
    make_ran_ef_model_matrix,
    ran_ef_labels,
)
from .lmm_data import LMMData, ProfiledFit, make_deviance_function
from .matrix_methods import triangular_solve
from .optim import NelderMeadOptions, NelderMeadResult, minimize

Effect = Union[str, Tuple[str, str]]


class LMM:
    """
    Linear mixed-effects model.

    Fits y = X beta + Z b + offset + e with b ~ N(0, Sigma) on construction.

    Parameters
    ----------
    x : array-like
        Fixed-effects model matrix (n x p)
    y : array-like
        Response vector (n,)
    zt : array-like
        Transpose of the random-effects model matrix (q x n)
    thfun : callable
        Maps the covariance parameters theta to Lambda^T (q x q)
    start_point : array-like
        Initial theta for the minimization
    lower_bound, upper_bound : array-like, optional
        Bounds on theta (e.g. 0 for diagonal entries of Lambda)
    weights : array-like, optional
        Prior weights (default: all ones)
    offset : float or array-like, optional
        Known offset added to the linear predictor
    reml : bool, default=True
        Minimize the REML criterion if True, the profiled deviance otherwise
    control : LMMControl, optional
        Optimization control parameters
    fix_ef_names, ran_ef_names : list of str, optional
        Labels for the fixed and random effects (default x0, x1, ... and
        z0, z1, ...)

    Attributes
    ----------
    theta_optimal : np.ndarray
        Optimal covariance parameters
    dev_optimal : float
        Criterion value at ``theta_optimal``
    optimization_result : NelderMeadResult
        Full minimizer output
    fit : ProfiledFit
        Penalized least squares solution at ``theta_optimal``
    sigma2 : float
        Residual scale estimate
    sigma_mat : np.ndarray
        Estimated covariance matrix of b
    ran_ef_cov_mat : np.ndarray
        Conditional covariance matrix of the random-effects estimates
    fix_ef_cov_mat : np.ndarray
        Covariance matrix of the fixed-effects estimates
    fix_ef, ran_ef : dict
        Named fixed and random effects estimates
    sse : float
        Sum of squared residuals
    """

    def __init__(
        self,
        x,
        y,
        zt,
        thfun: Callable[[np.ndarray], np.ndarray],
        start_point: Sequence[float],
        lower_bound: Optional[Sequence[float]] = None,
        upper_bound: Optional[Sequence[float]] = None,
        weights=None,
        offset=None,
        reml: bool = True,
        control: Optional[LMMControl] = None,
        fix_ef_names: Optional[List[str]] = None,
        ran_ef_names: Optional[List[str]] = None,
    ):
        self.reml = reml
        self.control = control or LMMControl()
        self.lower_bound = lower_bound
        self.upper_bound = upper_bound

        # (1) Model data and profiled criterion
        self.model_data = LMMData(x, y, zt, thfun, weights=weights, offset=offset)
        self.dev_fun = make_deviance_function(self.model_data, reml)

        self.fix_ef_names = self._check_names(fix_ef_names, self.model_data.p, "x", "fix_ef_names")
        self.ran_ef_names = self._check_names(ran_ef_names, self.model_data.q, "z", "ran_ef_names")

        # (2) Optimize, (3) derive the output quantities
        self._fit_model(start_point)

    @staticmethod
    def _check_names(names, size, prefix, label):
        if names is None:
            return [f"{prefix}{i}" for i in range(size)]
        names = list(names)
        if len(names) != size:
            raise ValueError(f"{label} must have {size} entries, got {len(names)}")
        return names

    def _fit_model(self, start_point):
        """Minimize the criterion and store the fitted quantities."""
        if self.control.monitoring:
            criterion = "REML criterion" if self.reml else "profiled deviance"
            print(f"[LMM] Minimizing the {criterion} over {len(start_point)} covariance parameters")

        options = NelderMeadOptions(
            epsilon=self.control.epsilon,
            max_iterations=self.control.max_iterations,
            verbose=self.control.monitoring,
        )
        self.optimization_result: NelderMeadResult = minimize(
            self.dev_fun,
            start_point,
            lower_bound=self.lower_bound,
            upper_bound=self.upper_bound,
            options=options,
        )

        self.theta_optimal = self.optimization_result.x_minimum
        self.dev_optimal = self.optimization_result.f_minimum

        # Byproducts are recomputed at the optimum rather than taken from the
        # last point the minimizer happened to evaluate
        self.fit: ProfiledFit = self.model_data.evaluate(self.theta_optimal, reml=self.reml)
        self._store_results()

        if self.control.monitoring:
            print(f"[LMM] Converged after {self.optimization_result.iterations} iterations: "
                  f"criterion={self.dev_optimal:.6f} sigma2={self.sigma2:.6f}")

    def _store_results(self):
        fit = self.fit
        md = self.model_data

        self.sse = float(np.sum(self.residuals() ** 2))

        # The residuals conditional on b have variance sigma2 / weights
        if self.reml:
            self.sigma2 = fit.pwrss / (md.n - md.p)
        else:
            self.sigma2 = fit.pwrss / md.n

        # Sigma = sigma2 * Lambda Lambda^T
        self.sigma_mat = (fit.lambdat.T @ fit.lambdat) * self.sigma2

        # sigma2 * Lambda (L L^T)^{-1} Lambda^T, Bates et al. (2015) eq. 58
        rhs = np.eye(md.q) * self.sigma2
        v = triangular_solve(fit.l.T, triangular_solve(fit.l, rhs), uplo="upper")
        self.ran_ef_cov_mat = fit.lambdat.T @ v @ fit.lambdat

        # sigma2 * (X^T V^{-1} X)^{-1}, Bates et al. (2015) eq. 54
        self.fix_ef_cov_mat = np.linalg.inv(fit.rxtrx) * self.sigma2

        self.fix_ef: Dict[str, float] = dict(zip(self.fix_ef_names, fit.beta.tolist()))
        self.ran_ef: Dict[str, float] = dict(zip(self.ran_ef_names, fit.b.tolist()))

        if self.lower_bound is not None:
            lower = np.asarray(self.lower_bound, dtype=float)
            on_bound = np.isfinite(lower) & (self.theta_optimal == lower)
            if np.any(on_bound):
                warnings.warn(
                    f"Boundary (singular) fit: theta{np.flatnonzero(on_bound).tolist()} "
                    "at the lower bound"
                )

    @classmethod
    def from_dataframe(
        cls,
        response: str,
        fixed_effects: Sequence[Effect],
        random_effects: Sequence[Sequence[Effect]],
        grouping: Sequence[str],
        data: pd.DataFrame,
        weights=None,
        offset=None,
        reml: bool = True,
        start_point: Optional[Sequence[float]] = None,
        control: Optional[LMMControl] = None,
    ) -> "LMM":
        """
        Fit a model whose terms are columns of a DataFrame.

        Parameters
        ----------
        response : str
            Name of the response column
        fixed_effects : list
            Fixed-effect column names. ``'intercept'`` adds an intercept
            column, ``'no_intercept'`` removes it even if given. A tuple of
            two names denotes their product (interaction).
        random_effects : list of list
            One list of effects per grouping factor, specified like
            ``fixed_effects``; effects sharing a grouping factor are
            modelled as correlated
        grouping : list of str
            Grouping factor column per entry of ``random_effects``
        data : pd.DataFrame
            Data containing all columns; effect columns must be numeric
        weights, offset, reml, control
            As for LMM
        start_point : array-like, optional
            Initial theta; defaults to independent random effects with unit
            relative variance

        Returns
        -------
        LMM
            Fitted model

        Examples
        --------
        >>> data = simulate_random_slope_data(seed=1)
        >>> model = LMM.from_dataframe(
        ...     response='y', fixed_effects=['intercept', 'x'],
        ...     random_effects=[['intercept', 'x']], grouping=['group'], data=data)
        >>> model.fix_ef
        """
        if not isinstance(data, pd.DataFrame):
            raise ValueError("data must be a pandas DataFrame")
        if len(random_effects) != len(grouping):
            raise ValueError("Length of random_effects mismatches length of grouping")

        used = [response] + list(grouping)
        for effects in [fixed_effects] + list(random_effects):
            used.extend(_effect_columns(effects))
        used = list(dict.fromkeys(used))
        missing_cols = [col for col in used if col not in data.columns]
        if missing_cols:
            raise ValueError(f"Missing columns in data: {missing_cols}")

        complete = data[used].notnull().all(axis=1).to_numpy()
        if not complete.all():
            warnings.warn(f"Dropping {int((~complete).sum())} rows with missing values")
            data = data.loc[complete]
            if weights is not None:
                weights = np.asarray(weights, dtype=float)[complete]
            if offset is not None and np.ndim(offset) > 0:
                offset = np.asarray(offset, dtype=float)[complete]

        y = _numeric_column(data, response)
        x, fix_names = _effects_matrix(data, fixed_effects)

        raw_mats = []
        effect_names = []
        for effects in random_effects:
            mat, names = _effects_matrix(data, effects)
            raw_mats.append(mat)
            effect_names.append(names)
        groups = [data[g].to_numpy() for g in grouping]

        z = make_ran_ef_model_matrix(raw_mats, groups)
        num_ran_ef = [m.shape[1] for m in raw_mats]
        thfun = make_ran_ef_cov_fun(num_ran_ef, count_levels(groups))

        if start_point is None:
            start_point = default_start_point(num_ran_ef)

        model = cls(
            x, y, z.T, thfun, start_point,
            lower_bound=default_lower_bound(num_ran_ef),
            weights=weights,
            offset=offset,
            reml=reml,
            control=control,
            fix_ef_names=fix_names,
            ran_ef_names=ran_ef_labels(effect_names, grouping, groups),
        )
        model.response = response
        model.data = data
        return model

    def fitted(self) -> np.ndarray:
        """Fitted values, conditional on the estimated effects."""
        return self.fit.mu.copy()

    def residuals(self) -> np.ndarray:
        """Response minus fitted values."""
        return self.model_data.y - self.fit.mu

    def summary(self):
        """Print model summary."""
        criterion = "REML criterion" if self.reml else "Deviance"
        print("Linear Mixed Model Summary")
        print("=" * 50)
        print(f"Observations: {self.model_data.n}")
        print(f"{criterion}: {self.dev_optimal:.4f}")
        print(f"Iterations: {self.optimization_result.iterations} "
              f"({self.optimization_result.evaluations} evaluations)")
        print(f"theta: {np.array2string(self.theta_optimal, precision=4)}")

        print("\nFixed Effects:")
        se = np.sqrt(np.diag(self.fix_ef_cov_mat))
        for (name, est), s in zip(self.fix_ef.items(), se):
            print(f"  {name:15s}: {est:12.6f}  (SE {s:.6f})")

        print("\nVariance Components:")
        print(f"  Residual sigma2: {self.sigma2:.6f}")
        print(f"  Residual SD    : {np.sqrt(self.sigma2):.6f}")

    def __repr__(self):
        return (f"LMM(n={self.model_data.n}, p={self.model_data.p}, q={self.model_data.q}, "
                f"reml={self.reml}, criterion={self.dev_optimal:.4f})")


def _effect_columns(effects: Sequence[Effect]) -> List[str]:
    cols = []
    for eff in effects:
        if isinstance(eff, str):
            if eff not in ("intercept", "no_intercept"):
                cols.append(eff)
        else:
            cols.extend(eff)
    return cols


def _numeric_column(data: pd.DataFrame, col: str) -> np.ndarray:
    if not pd.api.types.is_numeric_dtype(data[col]):
        raise ValueError(
            f"Column '{col}' is not numeric; categorical variables must be encoded before fitting"
        )
    return data[col].to_numpy(dtype=float)


def _effects_matrix(data: pd.DataFrame, effects: Sequence[Effect]) -> Tuple[np.ndarray, List[str]]:
    """Model matrix columns for a list of effect specifications."""
    effects = list(effects)
    no_intercept = "no_intercept" in effects
    n = len(data)
    cols = []
    names = []
    for eff in effects:
        if isinstance(eff, str):
            if eff == "no_intercept":
                continue
            if eff == "intercept":
                if not no_intercept:
                    cols.append(np.ones(n))
                    names.append("intercept")
                continue
            cols.append(_numeric_column(data, eff))
            names.append(eff)
        else:
            eff = tuple(eff)
            if len(eff) != 2:
                raise NotImplementedError("interaction effects can only be bi-variate")
            cols.append(_numeric_column(data, eff[0]) * _numeric_column(data, eff[1]))
            names.append(f"{eff[0]}:{eff[1]}")
    if not cols:
        raise ValueError(f"No model terms left in {effects}")
    return np.column_stack(cols), names
