"""
Visualization module.

Contains plotting utilities for simulation results:
- Plotting time series data
- Comparing deterministic vs stochastic results
- Ensemble summaries
- Animations of lattice simulations
"""

from .plotting import (
    animate_spatial,
    plot_ensemble_summary,
    plot_gillespie_trace,
    plot_parameter_sensitivity,
    plot_phase_space,
    plot_statistical_comparison,
    plot_trajectory,
)

__all__ = [
    "animate_spatial",
    "plot_ensemble_summary",
    "plot_gillespie_trace",
    "plot_parameter_sensitivity",
    "plot_phase_space",
    "plot_statistical_comparison",
    "plot_trajectory",
]
