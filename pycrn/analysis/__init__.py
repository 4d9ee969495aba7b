"""
Steady-state analysis: conservation-reduced steady-state equations, a root
finder wrapper and the set-up for numerical continuation.
"""

from .steady_state import (
    BifurcationProblem,
    NonlinearProblem,
    bifurcation_problem,
    solve_steady_state,
    steady_state_equations,
)

__all__ = [
    "BifurcationProblem",
    "NonlinearProblem",
    "bifurcation_problem",
    "solve_steady_state",
    "steady_state_equations",
]
