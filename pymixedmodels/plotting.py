"""
Plotting functions for minimizer runs and fitted mixed models.
"""

import numpy as np
import matplotlib.pyplot as plt
from typing import Optional, Tuple


def plot_convergence(result: 'NelderMeadResult', figsize: Tuple[int, int] = (8, 5),
                     ax: Optional[plt.Axes] = None) -> plt.Figure:
    """
    Plot best and worst simplex values per iteration.

    Parameters
    ----------
    result : NelderMeadResult
        Output of ``minimize`` or ``NelderMead.run``
    figsize : tuple, default=(8, 5)
        Figure size
    ax : plt.Axes, optional
        Axes to draw into

    Returns
    -------
    plt.Figure
        Matplotlib figure object
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.get_figure()

    iters = [entry["iter"] for entry in result.log]
    f_best = np.array([entry["f_best"] for entry in result.log])
    f_worst = np.array([entry["f_worst"] for entry in result.log])

    ax.plot(iters, f_best, 'b-', label='Best vertex')
    ax.plot(iters, f_worst, 'r--', alpha=0.7, label='Worst vertex')

    shrinks = [entry["iter"] for entry in result.log if entry["step"] == "shrink"]
    if shrinks:
        ax.plot(shrinks, f_best[np.searchsorted(iters, shrinks)], 'k.', label='Shrink')

    ax.set_xlabel('Iteration')
    ax.set_ylabel('Objective')
    ax.set_title(f'Simplex Convergence ({result.evaluations} evaluations)')
    ax.legend()
    ax.grid(True, alpha=0.3)

    return fig


def plot_lmm(model: 'LMM', which: str = 'all', figsize: Tuple[int, int] = (12, 5)) -> plt.Figure:
    """
    Diagnostic plots for a fitted LMM.

    Parameters
    ----------
    model : LMM
        Fitted model
    which : str, default='all'
        Type of plot: 'fitted', 'residuals' or 'all'
    figsize : tuple, default=(12, 5)
        Figure size

    Returns
    -------
    plt.Figure
        Matplotlib figure object
    """
    if which == 'all':
        fig, axes = plt.subplots(1, 2, figsize=figsize)
        _plot_fitted_vs_observed(model, axes[0])
        _plot_residuals(model, axes[1])
        plt.tight_layout()
        return fig
    elif which == 'fitted':
        fig, ax = plt.subplots(figsize=(figsize[0] / 2, figsize[1]))
        _plot_fitted_vs_observed(model, ax)
        return fig
    elif which == 'residuals':
        fig, ax = plt.subplots(figsize=(figsize[0] / 2, figsize[1]))
        _plot_residuals(model, ax)
        return fig
    else:
        raise ValueError(f"Unknown plot type: {which}")


def _plot_fitted_vs_observed(model: 'LMM', ax: plt.Axes):
    observed = model.model_data.y
    fitted = model.fitted()

    ax.scatter(observed, fitted, alpha=0.6, s=20)

    min_val = min(np.min(observed), np.min(fitted))
    max_val = max(np.max(observed), np.max(fitted))
    ax.plot([min_val, max_val], [min_val, max_val], 'r--', alpha=0.8)

    r_squared = np.corrcoef(observed, fitted)[0, 1]**2
    ax.text(0.05, 0.95, f'R² = {r_squared:.3f}', transform=ax.transAxes,
            bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))

    ax.set_xlabel('Observed')
    ax.set_ylabel('Fitted')
    ax.set_title('Fitted vs Observed Values')
    ax.grid(True, alpha=0.3)


def _plot_residuals(model: 'LMM', ax: plt.Axes):
    ax.scatter(model.fitted(), model.residuals(), alpha=0.6, s=20)
    ax.axhline(y=0, color='r', linestyle='--', alpha=0.8)

    ax.set_xlabel('Fitted Values')
    ax.set_ylabel('Residuals')
    ax.set_title('Residuals vs Fitted Values')
    ax.grid(True, alpha=0.3)
