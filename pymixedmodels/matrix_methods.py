"""
Dense matrix helpers for building and solving mixed model systems.

The Khatri-Rao row product turns a level indicator matrix and a raw
random-effects matrix into the columns of the random-effects model
matrix Z: row i of ``khatri_rao_rows(A, B)`` is ``kron(A[i], B[i])``,
so the columns are ordered level-major (all effects of level 0, then
all effects of level 1, ...).
"""

from __future__ import annotations
import numpy as np
from scipy.linalg import block_diag, solve_triangular


def kron_prod_1d(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Kronecker product of two row vectors.

    Parameters
    ----------
    a : np.ndarray
        Row vector of shape (1, m) or (m,)
    b : np.ndarray
        Row vector of shape (1, k) or (k,)

    Returns
    -------
    np.ndarray
        Row vector of shape (1, m * k)

    Examples
    --------
    >>> kron_prod_1d(np.array([[0, 1, 0]]), np.array([[3, 2]]))
    array([[0, 0, 3, 2, 0, 0]])
    """
    a = np.atleast_2d(a)
    b = np.atleast_2d(b)
    if a.ndim != 2 or b.ndim != 2 or a.shape[0] != 1 or b.shape[0] != 1:
        raise ValueError("Implemented for row vectors of shape (1, n) only")
    return np.outer(a, b).reshape(1, -1)


def khatri_rao_rows(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Row-wise Kronecker (Khatri-Rao) product of two matrices.

    Parameters
    ----------
    a : np.ndarray
        Matrix of shape (n, m)
    b : np.ndarray
        Matrix of shape (n, k)

    Returns
    -------
    np.ndarray
        Matrix of shape (n, m * k) whose i-th row is kron(a[i], b[i])

    Examples
    --------
    >>> a = np.array([[1, 2], [1, 2], [1, 2]])
    >>> b = np.arange(1, 7).reshape(3, 2)
    >>> khatri_rao_rows(a, b)
    array([[ 1,  2,  2,  4],
           [ 3,  4,  6,  8],
           [ 5,  6, 10, 12]])
    """
    a = np.asarray(a)
    b = np.asarray(b)
    if a.ndim != 2 or b.ndim != 2:
        raise ValueError("Implemented for 2D matrices only")
    n = a.shape[0]
    if b.shape[0] != n:
        raise ValueError(f"Both matrices must have the same number of rows, got {n} and {b.shape[0]}")
    return (a[:, :, None] * b[:, None, :]).reshape(n, a.shape[1] * b.shape[1])


def block_diagonal(*blocks: np.ndarray) -> np.ndarray:
    """
    Assemble square 2D blocks into a block-diagonal matrix.

    Examples
    --------
    >>> block_diagonal(np.eye(2), np.array([[5.0]])).shape
    (3, 3)
    """
    for blk in blocks:
        blk = np.asarray(blk)
        if blk.ndim != 2:
            raise ValueError("Only 2D matrices allowed")
        if blk.shape[0] != blk.shape[1]:
            raise ValueError(f"Only square matrices allowed, got shape {blk.shape}")
    if not blocks:
        return np.zeros((0, 0))
    return block_diag(*blocks)


def triangular_solve(a: np.ndarray, rhs: np.ndarray, uplo: str = "lower") -> np.ndarray:
    """
    Solve A X = B for triangular A.

    Parameters
    ----------
    a : np.ndarray
        Triangular matrix (n x n)
    rhs : np.ndarray
        Right-hand side, vector (n,) or matrix (n x p)
    uplo : {'lower', 'upper'}
        Which triangle of ``a`` holds the matrix

    Examples
    --------
    >>> a = np.array([[4.0, 0, 0], [-2, 2, 0], [-4, -2, -0.5]])
    >>> triangular_solve(a, np.array([-1.0, 17, -9]))
    """
    if uplo not in ("lower", "upper"):
        raise ValueError(f"uplo should be 'lower' or 'upper', got {uplo!r}")
    return solve_triangular(a, rhs, lower=(uplo == "lower"))
