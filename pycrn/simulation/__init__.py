"""
Contains simulation engines for reaction networks:
- ODE: Deterministic reaction-rate equations
- SDE: Chemical Langevin equation (Euler-Maruyama)
- Gillespie: Exact stochastic simulation algorithms
- Ensembles of independent runs
"""

from .callbacks import PresetTimeCallback, ContinuousCallback, DiscreteCallback, Integrator
from .ensemble import EnsembleProblem, EnsembleSolution
from .gillespie import GillespieSimulator, JumpProblem, run_gillespie_simulation, simulate_jumps
from .ode import ODEProblem, parameter_sweep, simulate_ode
from .problem import Problem
from .results import Trajectory
from .sde import SDEProblem, simulate_sde

__all__ = [
    "PresetTimeCallback",
    "ContinuousCallback",
    "DiscreteCallback",
    "Integrator",
    "EnsembleProblem",
    "EnsembleSolution",
    "GillespieSimulator",
    "JumpProblem",
    "run_gillespie_simulation",
    "simulate_jumps",
    "ODEProblem",
    "parameter_sweep",
    "simulate_ode",
    "Problem",
    "Trajectory",
    "SDEProblem",
    "simulate_sde",
]
