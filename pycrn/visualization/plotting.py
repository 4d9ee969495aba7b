"""
Plotting utilities.

This module provides visualization tools for simulation results, including
time series plots, ensemble summaries, statistical comparisons between
deterministic and stochastic runs, phase space plots and animations of
lattice simulations.

Every function returns the matplotlib figure (or animation) it draws and
only calls ``plt.show()`` when ``show=True``.
"""

import logging
from typing import Dict, List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.animation import FuncAnimation

logger = logging.getLogger(__name__)

DEFAULT_STYLE = 'seaborn-v0_8-whitegrid'


def _species_rows(trajectory, species_subset: Optional[List[str]]):
    names = trajectory.species_names
    if species_subset:
        missing = [s for s in species_subset if s not in names]
        if missing:
            raise ValueError(f"Species not found: {', '.join(missing)}")
        return [(names.index(s), s) for s in species_subset]
    return list(enumerate(names))


def _finish(fig, show: bool, save_path: Optional[str] = None):
    fig.tight_layout()
    if save_path:
        fig.savefig(save_path, dpi=300, bbox_inches='tight')
        logger.info("Plot saved to %s", save_path)
    if show:
        plt.show()
    return fig


def plot_trajectory(trajectory, title: Optional[str] = None,
                    figsize: Tuple[float, float] = (10, 6),
                    style: str = DEFAULT_STYLE,
                    species_subset: Optional[List[str]] = None,
                    show: bool = True, save_path: Optional[str] = None):
    """
    Plot the time series of a simulation.

    Jump trajectories are drawn as steps, everything else as lines.

    Args:
        trajectory (Trajectory): Result of any engine
        title (str, optional): Plot title. If None, lists the parameter values.
        figsize (Tuple[float, float]): Figure size as (width, height)
        style (str): Matplotlib style to use
        species_subset (List[str], optional): Subset of species to plot
        show (bool): Call ``plt.show()``
        save_path (str, optional): Also write the figure to this path
    """
    plt.style.use(style)
    fig, ax = plt.subplots(1, 1, figsize=figsize)
    drawstyle = 'steps-post' if trajectory.interpolation == 'step' else 'default'

    for i, name in _species_rows(trajectory, species_subset):
        ax.plot(trajectory.t, trajectory.y[i], label=f"{name}", lw=2.5, drawstyle=drawstyle)

    # Create dynamic title with parameter values if not provided
    if title is None:
        param_str = ", ".join(f"{name}={val:g}" for name, val in trajectory.parameters.items())
        title = f"{trajectory.kind.upper()} Simulation\nParameters: {param_str}"

    ax.set_title(title, fontsize=16)
    ax.set_xlabel("Time", fontsize=14)
    ax.set_ylabel("Number of Molecules" if trajectory.kind == 'jump' else "Concentration/Population",
                  fontsize=14)
    ax.legend(fontsize=12, loc='best')
    ax.grid(True, which='both', linestyle='--', linewidth=0.5)
    return _finish(fig, show, save_path)


def plot_gillespie_trace(trajectory, title: Optional[str] = None,
                         figsize: Tuple[float, float] = (12, 7),
                         style: str = DEFAULT_STYLE,
                         species_subset: Optional[List[str]] = None,
                         labels: Optional[List[str]] = None,
                         alpha: float = 0.8, show: bool = True):
    """
    Plot the trace of a Gillespie simulation.

    Args:
        trajectory (Trajectory): Jump trajectory
        title (str, optional): Plot title
        figsize (Tuple[float, float]): Figure size
        style (str): Matplotlib style
        species_subset (List[str], optional): Subset of species to plot
        labels (List[str], optional): Legend labels replacing the species names
        alpha (float): Line transparency
        show (bool): Call ``plt.show()``
    """
    plt.style.use(style)
    fig, ax = plt.subplots(1, 1, figsize=figsize)

    for i, name in _species_rows(trajectory, species_subset):
        label = labels[i] if labels is not None else name
        ax.step(trajectory.t, trajectory.y[i], where='post', label=label, alpha=alpha)

    ax.set_xlabel("Time", fontsize=14)
    ax.set_ylabel("Number of Molecules", fontsize=14)
    ax.set_title(title or "Gillespie Simulation Trace", fontsize=16)
    ax.legend(loc="best", fontsize=12)
    ax.grid(True, which="both", linestyle="--", linewidth=0.5)
    return _finish(fig, show)


def plot_ensemble_summary(ensemble, times=None, species_subset: Optional[List[str]] = None,
                          quantiles: Tuple[float, float] = (0.05, 0.95),
                          show_trajectories: int = 0,
                          title: Optional[str] = None,
                          figsize: Tuple[float, float] = (10, 6),
                          style: str = DEFAULT_STYLE, show: bool = True):
    """
    Plot the ensemble mean of each species with a quantile band.

    Args:
        ensemble (EnsembleSolution): Completed ensemble
        times (array-like, optional): Common times; required when runs were saved at different times
        species_subset (List[str], optional): Subset of species to plot
        quantiles (Tuple[float, float]): Lower and upper band limits
        show_trajectories (int): Also draw this many individual runs, faintly
        show (bool): Call ``plt.show()``
    """
    plt.style.use(style)
    fig, ax = plt.subplots(1, 1, figsize=figsize)
    t = ensemble.common_times() if times is None else np.asarray(times, dtype=float)
    values = ensemble.values(times)
    mean = values.mean(axis=0)
    lower, upper = np.quantile(values, quantiles, axis=0)

    for i, name in _species_rows(ensemble[0], species_subset):
        line, = ax.plot(t, mean[i], lw=2.5, label=f"{name} (mean)")
        ax.fill_between(t, lower[i], upper[i], color=line.get_color(), alpha=0.2,
                        label=f"{name} ({quantiles[0]:g}-{quantiles[1]:g})")
        for k in range(min(show_trajectories, values.shape[0])):
            ax.plot(t, values[k, i], color=line.get_color(), alpha=0.15, lw=0.8)

    ax.set_title(title or f"Ensemble of {len(ensemble)} trajectories", fontsize=16)
    ax.set_xlabel("Time", fontsize=14)
    ax.set_ylabel("Value", fontsize=14)
    ax.legend(fontsize=10, loc='best')
    ax.grid(True, which='both', linestyle='--', linewidth=0.5)
    return _finish(fig, show)


def plot_phase_space(trajectory, species_x: str, species_y: str,
                     title: Optional[str] = None, figsize: Tuple[float, float] = (8, 8),
                     style: str = DEFAULT_STYLE, show: bool = True):
    """
    Create a phase space plot for two species.

    Args:
        trajectory (Trajectory): Result of any engine
        species_x (str): Name of species for x-axis
        species_y (str): Name of species for y-axis
        title (str, optional): Plot title
        figsize (Tuple[float, float]): Figure size
        style (str): Matplotlib style
        show (bool): Call ``plt.show()``
    """
    try:
        x_data = trajectory[species_x]
        y_data = trajectory[species_y]
    except KeyError as e:
        raise ValueError(f"Species not found: {e}") from None

    plt.style.use(style)
    fig, ax = plt.subplots(1, 1, figsize=figsize)
    ax.plot(x_data, y_data, 'b-', alpha=0.7, lw=1)
    ax.plot(x_data[0], y_data[0], 'go', markersize=8, label='Start')
    ax.plot(x_data[-1], y_data[-1], 'ro', markersize=8, label='End')

    if title is None:
        title = f"Phase Space: {species_x} vs {species_y}"

    ax.set_xlabel(f"{species_x}", fontsize=14)
    ax.set_ylabel(f"{species_y}", fontsize=14)
    ax.set_title(title, fontsize=16)
    ax.legend(fontsize=12)
    ax.grid(True, which='both', linestyle='--', linewidth=0.5)
    return _finish(fig, show)


def plot_statistical_comparison(ode_trajectory, stats_df: pd.DataFrame,
                                figsize: Tuple[float, float] = (12, 8), show: bool = True):
    """
    Create a statistical comparison between ODE and Gillespie results.

    Args:
        ode_trajectory (Trajectory): Result of an ODE simulation
        stats_df (pd.DataFrame): ``GillespieSimulator.get_stats()`` output
        figsize (Tuple[float, float]): Figure size
        show (bool): Call ``plt.show()``

    Returns:
        Tuple[pd.DataFrame, Figure]: The comparison table and the figure.
    """
    ode_final_values = ode_trajectory.final()

    comparison_data = []
    for i, species_name in enumerate(ode_trajectory.species_names):
        gillespie_row = stats_df[stats_df['Component'] == species_name]
        if not gillespie_row.empty:
            comparison_data.append({
                'Species': species_name,
                'ODE_Final': ode_final_values[i],
                'Gillespie_Mean': gillespie_row['Gillespie Mean'].iloc[0],
                'Gillespie_Std': np.sqrt(gillespie_row['Gillespie Variance'].iloc[0])
            })

    comparison_df = pd.DataFrame(comparison_data)

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=figsize)

    # Mean comparison
    x_pos = np.arange(len(comparison_df))
    width = 0.35

    ax1.bar(x_pos - width/2, comparison_df['ODE_Final'], width,
            label='ODE Final', alpha=0.8)
    ax1.bar(x_pos + width/2, comparison_df['Gillespie_Mean'], width,
            yerr=comparison_df['Gillespie_Std'], label='Gillespie Mean ± Std',
            alpha=0.8, capsize=5)

    ax1.set_xlabel('Species', fontsize=12)
    ax1.set_ylabel('Value', fontsize=12)
    ax1.set_title('ODE vs Gillespie Comparison', fontsize=14)
    ax1.set_xticks(x_pos)
    ax1.set_xticklabels(comparison_df['Species'])
    ax1.legend()
    ax1.grid(True, alpha=0.3)

    # Coefficient of variation
    cv = comparison_df['Gillespie_Std'] / comparison_df['Gillespie_Mean']
    ax2.bar(x_pos, cv, alpha=0.8, color='orange')
    ax2.set_xlabel('Species', fontsize=12)
    ax2.set_ylabel('Coefficient of Variation', fontsize=12)
    ax2.set_title('Gillespie Noise Level', fontsize=14)
    ax2.set_xticks(x_pos)
    ax2.set_xticklabels(comparison_df['Species'])
    ax2.grid(True, alpha=0.3)

    return comparison_df, _finish(fig, show)


def plot_parameter_sensitivity(results_dict: Dict[float, object],
                               parameter_name: str, species_name: str,
                               metric: str = 'final_value',
                               figsize: Tuple[float, float] = (10, 6), show: bool = True):
    """
    Plot parameter sensitivity analysis results.

    Args:
        results_dict (Dict[float, Trajectory]): Output of ``parameter_sweep``
        parameter_name (str): Name of the parameter being swept
        species_name (str): Name of the species to analyze
        metric (str): Metric to plot ('final_value', 'max_value', 'mean_value')
        figsize (Tuple[float, float]): Figure size
        show (bool): Call ``plt.show()``
    """
    metrics = {
        'final_value': lambda data: data[-1],
        'max_value': np.max,
        'mean_value': np.mean,
    }
    if metric not in metrics:
        raise ValueError("metric must be 'final_value', 'max_value', or 'mean_value'")

    sorted_data = sorted(
        (param_val, metrics[metric](trajectory[species_name]))
        for param_val, trajectory in results_dict.items()
    )
    param_values, metric_values = zip(*sorted_data)

    fig, ax = plt.subplots(1, 1, figsize=figsize)
    ax.plot(param_values, metric_values, 'o-', linewidth=2, markersize=6)
    ax.set_xlabel(f"{parameter_name}", fontsize=14)
    ax.set_ylabel(f"{species_name} ({metric.replace('_', ' ').title()})", fontsize=14)
    ax.set_title(f"Parameter Sensitivity: {parameter_name} vs {species_name}", fontsize=16)
    ax.grid(True, which='both', linestyle='--', linewidth=0.5)
    return _finish(fig, show)


def animate_spatial(solution, species=0, framerate: Optional[int] = None,
                    filename: Optional[str] = None, max_frames: int = 1000,
                    cmap: str = 'viridis', figsize: Tuple[float, float] = (6, 6)):
    """
    Heatmap animation of one species over a grid lattice.

    Long jump traces are subsampled to roughly ``max_frames`` frames.

    Args:
        solution (SpatialTrajectory): Lattice simulation built on a grid shape
        species (str or int): Species to show
        framerate (int, optional): Frames per second; defaults to one thirtieth of the frame count
        filename (str, optional): Write the animation here (format from the extension)
        max_frames (int): Frame budget for jump traces
        cmap (str): Colormap

    Returns:
        FuncAnimation: The animation.
    """
    n = len(solution)
    step = max(n // max_frames, 1) if solution.kind == 'jump' else 1
    frames = list(range(0, n, step))
    if framerate is None:
        framerate = max(int(round(n / 30)), 1)

    grids = [np.atleast_2d(solution.grid(species, i)) for i in frames]
    vmin = min(g.min() for g in grids)
    vmax = max(g.max() for g in grids)

    fig, ax = plt.subplots(1, 1, figsize=figsize)
    image = ax.imshow(grids[0], cmap=cmap, vmin=vmin, vmax=vmax, origin='lower')
    fig.colorbar(image, ax=ax)
    name = species if isinstance(species, str) else solution.species_names[species]
    title = ax.set_title(f"{name} at t={solution.t[frames[0]]:.3g}")

    def update(k):
        image.set_data(grids[k])
        title.set_text(f"{name} at t={solution.t[frames[k]]:.3g}")
        return [image, title]

    anim = FuncAnimation(fig, update, frames=len(frames), interval=1000 / framerate, blit=False)
    if filename:
        anim.save(filename, fps=framerate)
        logger.info("Animation with %d frames saved to %s", len(frames), filename)
    return anim
