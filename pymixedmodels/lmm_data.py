"""
Profiled deviance and REML criterion for linear mixed models.

Model: y = X beta + Z b + offset + e, with b = Lambda u, u ~ N(0, sigma^2 I)
and e ~ N(0, sigma^2 W^{-1}). For a covariance parameter vector theta the
relative covariance factor Lambda(theta) is obtained from ``thfun`` (which
returns Lambda^T) and the penalized weighted least squares problem is
solved through the dense Cholesky factorization

    L L^T = Lambda^T Z^T W Z Lambda + I.

Both fixed effects beta and the residual scale sigma^2 are profiled out,
leaving a scalar criterion of theta alone (Bates et al. 2015, eq. 34/41):

    deviance: ldL2 - ldW + n (1 + log(2 pi pwrss / n))
    REML:     ldL2 - ldW + ldRX2 + (n - p)(1 + log(2 pi pwrss / (n - p)))

Evaluation is pure: every call returns a fresh ProfiledFit and nothing on
the LMMData object changes, so the byproducts at the optimum are obtained
by evaluating once more at the optimal theta.

Reference:
Bates, D., Maechler, M., Bolker, B. and Walker, S. (2015) "Fitting Linear
Mixed-Effects Models Using lme4", Journal of Statistical Software 67(1).
"""

from __future__ import annotations
import numpy as np
from dataclasses import dataclass
from scipy.linalg import cho_solve, cholesky, solve_triangular
from typing import Callable, Optional, Union


@dataclass
class ProfiledFit:
    """
    Criterion value and fitted byproducts for one theta.

    Attributes
    ----------
    theta : np.ndarray
        Covariance parameters the fit was computed for
    criterion : float
        Profiled deviance (reml=False) or REML criterion (reml=True)
    reml : bool
        Which criterion ``criterion`` holds
    beta : np.ndarray
        Conditional estimate of the fixed effects
    u : np.ndarray
        Spherical random effects
    b : np.ndarray
        Random effects on the original scale, b = Lambda u
    mu : np.ndarray
        Conditional mean of the response
    wrss : float
        Weighted residual sum of squares
    pwrss : float
        Penalized weighted residual sum of squares, wrss + |u|^2
    lambdat : np.ndarray
        Lambda^T for this theta
    l : np.ndarray
        Lower Cholesky factor of Lambda^T Z^T W Z Lambda + I
    rxtrx : np.ndarray
        X^T V^{-1} X, the fixed-effects block after eliminating u
    ldL2 : float
        log det(L L^T)
    ldRX2 : float
        log det(rxtrx)
    """
    theta: np.ndarray
    criterion: float
    reml: bool
    beta: np.ndarray
    u: np.ndarray
    b: np.ndarray
    mu: np.ndarray
    wrss: float
    pwrss: float
    lambdat: np.ndarray
    l: np.ndarray
    rxtrx: np.ndarray
    ldL2: float
    ldRX2: float


class LMMData:
    """
    Dense model data of a linear mixed model.

    Parameters
    ----------
    x : array-like
        Fixed-effects model matrix (n x p)
    y : array-like
        Response vector (n,)
    zt : array-like
        Transpose of the random-effects model matrix (q x n)
    thfun : callable
        Maps theta to Lambda^T (q x q). Only the numerical values may
        depend on theta, not the structure.
    weights : array-like, optional
        Positive prior weights (default: all ones)
    offset : float or array-like, optional
        Known offset added to the linear predictor (default: 0)
    """

    def __init__(
        self,
        x,
        y,
        zt,
        thfun: Callable[[np.ndarray], np.ndarray],
        weights=None,
        offset: Optional[Union[float, np.ndarray]] = None,
    ):
        y = np.asarray(y, dtype=float).ravel()
        x = np.asarray(x, dtype=float)
        if x.ndim == 1:
            x = x[:, None]
        zt = np.asarray(zt, dtype=float)
        n = y.size

        if x.ndim != 2 or x.shape[0] != n:
            raise ValueError(f"x must have {n} rows, got shape {x.shape}")
        if zt.ndim != 2 or zt.shape[1] != n:
            raise ValueError(f"zt must have {n} columns, got shape {zt.shape}")
        if n <= x.shape[1]:
            raise ValueError("Number of observations must exceed the number of fixed effects")

        if weights is None:
            weights = np.ones(n)
        weights = np.asarray(weights, dtype=float).ravel()
        if weights.shape != (n,):
            raise ValueError(f"weights must have length {n}, got {weights.size}")
        if np.any(weights <= 0) or not np.all(np.isfinite(weights)):
            raise ValueError("weights must be positive and finite")

        if offset is None:
            offset = 0.0
        offset = np.broadcast_to(np.asarray(offset, dtype=float), (n,)).copy()

        for name, arr in (("y", y), ("x", x), ("zt", zt), ("offset", offset)):
            if not np.all(np.isfinite(arr)):
                raise ValueError(f"{name} contains missing or non-finite values")

        self.x = x
        self.y = y
        self.zt = zt
        self.thfun = thfun
        self.weights = weights
        self.offset = offset
        self.n, self.p = x.shape
        self.q = zt.shape[0]

        # Weighted cross-products, fixed for the whole optimization
        sqrtw = np.sqrt(weights)
        wx = x * sqrtw[:, None]
        wy = (y - offset) * sqrtw
        wzt = zt * sqrtw[None, :]
        self.ztwz = wzt @ wzt.T
        self.ztwx = wzt @ wx
        self.ztwy = wzt @ wy
        self.xtwx = wx.T @ wx
        self.xtwy = wx.T @ wy
        self.ldW = float(np.sum(np.log(weights)))

    def lambdat(self, theta) -> np.ndarray:
        """Lambda^T for the given theta."""
        lam = np.asarray(self.thfun(np.asarray(theta, dtype=float)), dtype=float)
        if lam.shape != (self.q, self.q):
            raise ValueError(
                f"thfun must return a {self.q}x{self.q} matrix, got shape {lam.shape}"
            )
        return lam

    def evaluate(self, theta, reml: bool = True) -> ProfiledFit:
        """
        Solve the penalized least squares problem for ``theta``.

        Raises
        ------
        numpy.linalg.LinAlgError
            If X^T V^{-1} X is not positive definite (rank-deficient X)
        """
        theta = np.array(theta, dtype=float)
        lambdat = self.lambdat(theta)

        # L L^T = Lambda^T Z^T W Z Lambda + I
        l = cholesky(lambdat @ self.ztwz @ lambdat.T + np.eye(self.q), lower=True)
        cu = solve_triangular(l, lambdat @ self.ztwy, lower=True)
        rzx = solve_triangular(l, lambdat @ self.ztwx, lower=True)

        rxtrx = self.xtwx - rzx.T @ rzx
        rx = cholesky(rxtrx, lower=False)
        beta = cho_solve((rx, False), self.xtwy - rzx.T @ cu)

        u = solve_triangular(l.T, cu - rzx @ beta, lower=False)
        b = lambdat.T @ u
        mu = self.x @ beta + self.zt.T @ b + self.offset

        resid = self.y - mu
        wrss = float(np.sum(self.weights * resid**2))
        pwrss = wrss + float(u @ u)
        ldL2 = 2.0 * float(np.sum(np.log(np.diag(l))))
        ldRX2 = 2.0 * float(np.sum(np.log(np.diag(rx))))

        if reml:
            nmp = self.n - self.p
            criterion = ldL2 - self.ldW + ldRX2 + nmp * (1.0 + np.log(2.0 * np.pi * pwrss / nmp))
        else:
            criterion = ldL2 - self.ldW + self.n * (1.0 + np.log(2.0 * np.pi * pwrss / self.n))

        return ProfiledFit(
            theta=theta,
            criterion=float(criterion),
            reml=reml,
            beta=beta,
            u=u,
            b=b,
            mu=mu,
            wrss=wrss,
            pwrss=pwrss,
            lambdat=lambdat,
            l=l,
            rxtrx=rxtrx,
            ldL2=ldL2,
            ldRX2=ldRX2,
        )


def make_deviance_function(model_data: LMMData, reml: bool = True) -> Callable[[np.ndarray], float]:
    """
    Objective for the simplex minimizer: theta -> profiled criterion.

    Parameters
    ----------
    model_data : LMMData
        Model data to evaluate against
    reml : bool, default=True
        If True return the REML criterion, otherwise the profiled deviance

    Returns
    -------
    callable
        Pure function of theta returning a float

    Examples
    --------
    >>> dev_fun = make_deviance_function(model_data, reml=False)
    >>> result = minimize(dev_fun, [1.0, 0.0, 1.0], lower_bound=[0, -np.inf, 0])
    """
    def dev_fun(theta) -> float:
        return model_data.evaluate(theta, reml=reml).criterion

    dev_fun.reml = reml
    return dev_fun
