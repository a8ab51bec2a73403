#!/usr/bin/env python3
"""
pyMixedModels Example: Random Intercept and Slope Model

This script fits a linear mixed model with a correlated random intercept
and slope per group. It shows how to:

1. Simulate grouped data
2. Minimize the profiled deviance and REML criterion directly
3. Fit the same model from a DataFrame
4. Inspect estimates and convergence
5. Generate diagnostic plots
"""

import numpy as np
import matplotlib.pyplot as plt
import sys
import os

# Add parent directory to path to find pymixedmodels package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pymixedmodels import (
    LMM, LMMData, make_deviance_function, minimize, plot_convergence, plot_lmm
)
from pymixedmodels.datasets import simulate_random_slope_data
from pymixedmodels.matrix_methods import block_diagonal, khatri_rao_rows


def main():
    """Fit a random slope model two ways."""

    print("=" * 80)
    print("pyMixedModels Example: Random Intercept and Slope Model")
    print("=" * 80)

    # -------------------------------------------------------------------------
    # 1. Simulate data
    # -------------------------------------------------------------------------
    print("\n1. Simulating 5 groups of 1000 observations...")

    data = simulate_random_slope_data(n_groups=5, group_size=1000, seed=2015)
    n_groups = data['group'].nunique()

    x = np.column_stack([np.ones(len(data)), data['x'].to_numpy()])
    grp_mat = np.zeros((len(data), n_groups))
    grp_mat[np.arange(len(data)), data['group'].to_numpy()] = 1.0
    z = khatri_rao_rows(grp_mat, x)
    print(f"   - X: {x.shape}, Z: {z.shape}")

    # -------------------------------------------------------------------------
    # 2. Minimize the criteria directly
    # -------------------------------------------------------------------------
    print("\n2. Minimizing the profiled deviance and REML criterion...")

    def thfun(th):
        blk = np.array([[th[0], th[1]], [0.0, th[2]]])
        return block_diagonal(*[blk] * n_groups)

    model_data = LMMData(x, data['y'].to_numpy(), z.T, thfun)
    lower = [0.0, -np.inf, 0.0]

    for reml in (False, True):
        dev_fun = make_deviance_function(model_data, reml=reml)
        result = minimize(dev_fun, [1.0, 0.0, 1.0], lower_bound=lower)
        fit = model_data.evaluate(result.x_minimum, reml=reml)
        label = "REML criterion" if reml else "Deviance"
        print(f"   - Minimum {label} = {result.f_minimum:.4f} at theta = {result.x_minimum}")
        print(f"     beta = {fit.beta}, {result.iterations} iterations")

    # -------------------------------------------------------------------------
    # 3. Fit from a DataFrame
    # -------------------------------------------------------------------------
    print("\n3. Fitting LMM from DataFrame...")

    model = LMM.from_dataframe(
        response='y',
        fixed_effects=['intercept', 'x'],
        random_effects=[['intercept', 'x']],
        grouping=['group'],
        data=data
    )
    model.summary()

    # -------------------------------------------------------------------------
    # 4. Plots
    # -------------------------------------------------------------------------
    print("\n4. Generating plots...")

    fig = plot_convergence(model.optimization_result)
    fig.savefig('random_slope_convergence.png', dpi=150, bbox_inches='tight')
    plt.close(fig)

    fig = plot_lmm(model)
    fig.savefig('random_slope_diagnostics.png', dpi=150, bbox_inches='tight')
    plt.close(fig)
    print("   - Saved random_slope_convergence.png and random_slope_diagnostics.png")


if __name__ == "__main__":
    main()
