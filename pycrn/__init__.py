"""
pycrn: A Python library for modeling and simulating chemical reaction networks.

This library provides tools for:
- Defining reaction networks programmatically or with a small text DSL
- Generating reaction-rate ODEs, chemical Langevin SDEs and jump processes
- Simulating systems deterministically (ODE), with the chemical Langevin
  equation (SDE) and with exact stochastic algorithms (Gillespie)
- Running ensembles and lattice (spatial) simulations
- Steady-state analysis and visualization of results

Main classes:
    Species: Represents a chemical species with an initial condition
    Parameter: Represents a model parameter with an optional default value
    ReactionNetwork: Container for a complete reaction network

Reaction types:
    MassActionReaction: Standard mass-action kinetics
    RateLawReaction: Rate used verbatim as the reaction rate
    LogisticGrowthReaction: Logistic growth dynamics

Simulators:
    ODEProblem / simulate_ode: Deterministic ODE simulation
    SDEProblem / simulate_sde: Chemical Langevin simulation
    JumpProblem / GillespieSimulator: Stochastic simulation algorithms
    EnsembleProblem: Batches of independent runs
"""

import logging

from .config import configure, configure_logging, get_settings, reset_settings, SimulationSettings
from .exceptions import (
    CRNError,
    NetworkConstructionError,
    NameCollisionError,
    UnresolvedSymbolError,
    DSLSyntaxError,
    InitialConditionError,
    SimulationError,
    NegativeRateError,
    SolverError,
    SimulationTimeout,
)
from .core.models import Species, Parameter, ReactionNetwork, merge, species, parameters, t
from .core.reactions import Reaction, MassActionReaction, RateLawReaction, LogisticGrowthReaction
from .core.functions import hill, hillr, mm, mmr
from .core.systems import ODESystem, SDESystem, JumpSystem
from .core.dsl import parse_network, reaction_network, load_network
from .simulation import (
    PresetTimeCallback,
    ContinuousCallback,
    DiscreteCallback,
    EnsembleProblem,
    EnsembleSolution,
    GillespieSimulator,
    JumpProblem,
    ODEProblem,
    SDEProblem,
    Trajectory,
    parameter_sweep,
    run_gillespie_simulation,
    simulate_jumps,
    simulate_ode,
    simulate_sde,
)
from .spatial import LatticeReactionSystem, SpatialTrajectory, TransportReaction
from .analysis import (
    BifurcationProblem,
    NonlinearProblem,
    bifurcation_problem,
    solve_steady_state,
    steady_state_equations,
)
from .visualization.plotting import (
    animate_spatial,
    plot_ensemble_summary,
    plot_gillespie_trace,
    plot_phase_space,
    plot_trajectory,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "configure",
    "configure_logging",
    "get_settings",
    "reset_settings",
    "SimulationSettings",

    # Errors
    "CRNError",
    "NetworkConstructionError",
    "NameCollisionError",
    "UnresolvedSymbolError",
    "DSLSyntaxError",
    "InitialConditionError",
    "SimulationError",
    "NegativeRateError",
    "SolverError",
    "SimulationTimeout",

    # Core classes
    "Species",
    "Parameter",
    "ReactionNetwork",
    "merge",
    "species",
    "parameters",
    "t",

    # Reaction types and rate functions
    "Reaction",
    "MassActionReaction",
    "RateLawReaction",
    "LogisticGrowthReaction",
    "hill",
    "hillr",
    "mm",
    "mmr",

    # Generated systems and DSL
    "ODESystem",
    "SDESystem",
    "JumpSystem",
    "parse_network",
    "reaction_network",
    "load_network",

    # Simulation
    "PresetTimeCallback",
    "ContinuousCallback",
    "DiscreteCallback",
    "EnsembleProblem",
    "EnsembleSolution",
    "GillespieSimulator",
    "JumpProblem",
    "ODEProblem",
    "SDEProblem",
    "Trajectory",
    "parameter_sweep",
    "run_gillespie_simulation",
    "simulate_jumps",
    "simulate_ode",
    "simulate_sde",

    # Spatial
    "LatticeReactionSystem",
    "SpatialTrajectory",
    "TransportReaction",

    # Analysis
    "BifurcationProblem",
    "NonlinearProblem",
    "bifurcation_problem",
    "solve_steady_state",
    "steady_state_equations",

    # Visualization
    "animate_spatial",
    "plot_ensemble_summary",
    "plot_gillespie_trace",
    "plot_phase_space",
    "plot_trajectory",
]
