"""
Plotting functions for PL-GLMM fits.
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from typing import Optional, Tuple, List


def _trace_frame(result: 'PLGLMMResult') -> pd.DataFrame:
    """Per-iteration maximum absolute changes in long format."""
    rows = []
    for record in result.trace:
        rows.append({'iteration': record.iteration, 'parameter': 'theta',
                     'max_change': float(np.max(record.theta_diff)) if record.theta_diff.size else 0.0})
        rows.append({'iteration': record.iteration, 'parameter': 'sigma',
                     'max_change': float(np.max(record.sigma_diff)) if record.sigma_diff.size else 0.0})
    return pd.DataFrame(rows, columns=['iteration', 'parameter', 'max_change'])


def plot_convergence(result: 'PLGLMMResult', tolerance: Optional[float] = None,
                     figsize: Tuple[int, int] = (10, 4),
                     ax: Optional[plt.Axes] = None) -> plt.Figure:
    """
    Plot the largest parameter change per iteration.

    Parameters
    ----------
    result : PLGLMMResult
        Result of ``fit_pl_glmm``
    tolerance : float, optional
        Convergence tolerance, drawn as a horizontal reference line
    figsize : tuple, default=(10, 4)
        Figure size
    ax : plt.Axes, optional
        Axes to draw on

    Returns
    -------
    plt.Figure
        Matplotlib figure object
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.get_figure()

    frame = _trace_frame(result)
    # zero changes cannot be shown on a log axis
    frame['max_change'] = frame['max_change'].clip(lower=np.finfo(float).tiny)
    sns.lineplot(data=frame, x='iteration', y='max_change', hue='parameter', marker='o', ax=ax)

    if tolerance is not None:
        ax.axhline(tolerance, color='red', linestyle='--', linewidth=1, label='tolerance')
        ax.legend()

    ax.set_yscale('log')
    ax.set_xlabel('Iteration')
    ax.set_ylabel('Max |change|')
    ax.set_title(f'Convergence ({result.status.value})')
    ax.grid(True, alpha=0.3)
    return fig


def plot_variance_components(result: 'PLGLMMResult', names: Optional[List[str]] = None,
                             figsize: Tuple[int, int] = (8, 4),
                             ax: Optional[plt.Axes] = None) -> plt.Figure:
    """Plot the variance component estimates across iterations."""
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.get_figure()

    n_comp = result.sigma.size
    if names is None:
        names = list(result.random_effects) if len(result.random_effects) == n_comp else \
            [f"sigma{i + 1}" for i in range(n_comp)]
    if len(names) != n_comp:
        raise ValueError(f"{len(names)} names given for {n_comp} variance components")

    frame = pd.DataFrame(
        [record.sigma for record in result.trace],
        columns=names,
        index=pd.Index([record.iteration for record in result.trace], name='iteration'),
    ).reset_index().melt(id_vars='iteration', var_name='component', value_name='variance')

    sns.lineplot(data=frame, x='iteration', y='variance', hue='component', marker='o', ax=ax)
    ax.axhline(0, color='black', linewidth=0.5)
    ax.set_xlabel('Iteration')
    ax.set_ylabel('Variance component')
    ax.set_title('Variance components')
    ax.grid(True, alpha=0.3)
    return fig
