"""
Steady states and bifurcation set-up.

The steady-state system of a network is its reaction-rate right-hand side
set to zero. When the network has conservation laws that system is
singular, so one equation per law is replaced by the law itself,
``c . x - total = 0``, before it is handed to a root finder.
"""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import sympy as sp
from scipy.optimize import root

from ..core.models import ReactionNetwork, t
from ..exceptions import SolverError
from ..simulation.problem import resolve_initial_state, resolve_parameters

logger = logging.getLogger(__name__)


def steady_state_equations(network: ReactionNetwork, p=None, totals: Optional[Sequence[float]] = None,
                           eliminate_conservation: bool = True) -> List[sp.Expr]:
    """
    Equations ``F(x) = 0`` whose roots are the steady states of the network.

    Args:
        network (ReactionNetwork): The model.
        p (Mapping, optional): Parameter values to substitute. Parameters stay
            symbolic when omitted.
        totals (Sequence[float], optional): Value of each conservation law;
            defaults to the value at the species' initial conditions.
        eliminate_conservation (bool): Replace one equation per conservation law.

    Returns:
        List[sp.Expr]: One expression per species in the time-free state symbols.
    """
    equations = list(network.to_ode_system().equations)
    if eliminate_conservation:
        laws = network.conservation_laws()
        if laws.shape[0]:
            if totals is None:
                totals = network.conserved_quantities(resolve_initial_state(network))
            totals = np.atleast_1d(np.asarray(totals, dtype=float))
            if totals.shape[0] != laws.shape[0]:
                raise ValueError(f"Expected {laws.shape[0]} conserved totals, got {totals.shape[0]}")
            states = [s.state_symbol for s in network.species.values()]
            for row, pivot, total in zip(laws, network.conservation_pivots(), totals):
                law = sp.Add(*[int(c) * x for c, x in zip(row, states) if c])
                equations[pivot] = law - sp.Float(total)
            logger.debug("Substituted %d conservation laws into the steady-state equations of '%s'",
                         laws.shape[0], network.name)
    if p is not None:
        values = resolve_parameters(network, p)
        subs = {param.symbol: value for param, value in zip(network.parameters.values(), values)}
        equations = [eq.xreplace(subs) for eq in equations]
    return equations


class NonlinearProblem:
    """
    Numerical steady-state problem ``F(u, p) = 0``.

    Args:
        network (ReactionNetwork): The model.
        u0 (Mapping, optional): Initial guess, also fixing the conserved totals.
        p (Mapping, optional): Parameter values.
        totals (Sequence[float], optional): Conserved totals overriding those of ``u0``.
        eliminate_conservation (bool): See :func:`steady_state_equations`.

    Attributes:
        equations (List[sp.Expr]): Symbolic residuals with parameters kept symbolic.
    """

    def __init__(self, network: ReactionNetwork, u0=None, p=None, totals=None, eliminate_conservation: bool = True):
        self.network = network
        self.u0 = resolve_initial_state(network, u0)
        self.p = resolve_parameters(network, p)
        if totals is None and eliminate_conservation:
            totals = network.conserved_quantities(self.u0)
        self.totals = None if totals is None else np.atleast_1d(np.asarray(totals, dtype=float))
        self.eliminate_conservation = eliminate_conservation
        self.equations = steady_state_equations(network, totals=self.totals,
                                                eliminate_conservation=eliminate_conservation)
        if any(eq.has(t) for eq in self.equations):
            raise ValueError(f"Rates of '{network.name}' depend explicitly on time; "
                             "steady states need an autonomous system")
        states = [s.state_symbol for s in network.species.values()]
        params = [q.symbol for q in network.parameters.values()]
        n = len(states)
        residual = sp.lambdify(states + params, self.equations, 'numpy')
        jacobian = sp.lambdify(states + params, sp.Matrix(self.equations).jacobian(states), 'numpy')
        self._residual = lambda u, q: np.asarray(residual(*u, *q), dtype=float).reshape(n)
        self._jacobian = lambda u, q: np.asarray(jacobian(*u, *q), dtype=float).reshape(n, n)

    @property
    def species_names(self) -> List[str]:
        return self.network.species_names()

    def f(self, u, p=None) -> np.ndarray:
        return self._residual(u, self.p if p is None else p)

    def jac(self, u, p=None) -> np.ndarray:
        return self._jacobian(u, self.p if p is None else p)

    def remake(self, u0=None, p=None) -> "NonlinearProblem":
        u0_map = dict(zip(self.species_names, self.u0.tolist()))
        p_map = dict(zip(self.network.parameter_names(), self.p.tolist()))
        u0_map.update(u0 or {})
        p_map.update(p or {})
        return NonlinearProblem(self.network, u0_map, p_map,
                                totals=None if u0 else self.totals,
                                eliminate_conservation=self.eliminate_conservation)

    def __repr__(self) -> str:
        return f"NonlinearProblem('{self.network.name}', equations={len(self.equations)})"


def solve_steady_state(problem, guess=None, p=None, method: str = 'hybr', tol: Optional[float] = None,
                       **options) -> np.ndarray:
    """
    Find a root of the steady-state equations with ``scipy.optimize.root``.

    Args:
        problem (NonlinearProblem or ReactionNetwork): What to solve.
        guess (array-like, optional): Starting point; defaults to ``problem.u0``.
        p (array-like, optional): Parameter vector; defaults to ``problem.p``.
        method (str): Any ``scipy.optimize.root`` method.

    Returns:
        np.ndarray: The steady state, ordered like the network's species.

    Raises:
        SolverError: The root finder did not converge.
    """
    if isinstance(problem, ReactionNetwork):
        problem = NonlinearProblem(problem)
    x0 = problem.u0 if guess is None else np.asarray(guess, dtype=float)
    params = problem.p if p is None else np.asarray(p, dtype=float)
    result = root(problem.f, x0, args=(params,), jac=problem.jac, method=method, tol=tol,
                  options=options or None)
    if not result.success:
        raise SolverError(f"Steady-state solver failed for '{problem.network.name}': {result.message}")
    logger.debug("Steady state of '%s' found in %s function evaluations",
                 problem.network.name, result.get('nfev'))
    return result.x


class BifurcationProblem:
    """
    Everything a numerical continuation package needs to follow a branch of
    steady states in one parameter.

    Attributes:
        F (Callable): Residual ``F(u, p)``.
        J (Callable): Jacobian ``J(u, p)``.
        u0 (np.ndarray): Initial guess (all ones).
        params (np.ndarray): Parameter vector with the bifurcation parameter at the start of the span.
        bif_idx (int): Index of the bifurcation parameter in ``params``.
        p_span (Tuple[float, float]): Continuation interval.
        record_from_solution (Callable): ``record_from_solution(x, p)``, the tracked species.
    """

    def __init__(self, F: Callable, J: Callable, u0: np.ndarray, params: np.ndarray, bif_idx: int,
                 p_span: Tuple[float, float], record_from_solution: Callable,
                 parameter_name: str, species_name: str):
        self.F = F
        self.J = J
        self.u0 = u0
        self.params = params
        self.bif_idx = bif_idx
        self.p_span = p_span
        self.record_from_solution = record_from_solution
        self.parameter_name = parameter_name
        self.species_name = species_name

    def with_parameter(self, value: float) -> np.ndarray:
        """Copy of ``params`` with the bifurcation parameter set to ``value``."""
        params = self.params.copy()
        params[self.bif_idx] = value
        return params

    def sweep(self, n_points: int = 50, method: str = 'hybr') -> pd.DataFrame:
        """
        Natural-parameter continuation across ``p_span``.

        Each point starts from the previous solution. Points where the root
        finder fails are kept with ``converged=False``; following folds needs a
        pseudo-arclength continuation package.
        """
        guess = self.u0.copy()
        rows = []
        for value in np.linspace(self.p_span[0], self.p_span[1], n_points):
            params = self.with_parameter(value)
            result = root(self.F, guess, args=(params,), jac=self.J, method=method)
            if result.success:
                guess = result.x
            rows.append({
                self.parameter_name: value,
                self.species_name: self.record_from_solution(result.x, params),
                'converged': bool(result.success),
            })
        return pd.DataFrame(rows)

    def __repr__(self) -> str:
        return (f"BifurcationProblem(parameter='{self.parameter_name}', species='{self.species_name}', "
                f"p_span={self.p_span})")


def bifurcation_problem(network: ReactionNetwork, p, parameter: str, p_span: Tuple[float, float],
                        species: str, eliminate_conservation: bool = False) -> BifurcationProblem:
    """
    Build a :class:`BifurcationProblem` for ``parameter`` over ``p_span``,
    recording ``species``.

    Args:
        network (ReactionNetwork): The model.
        p (Mapping): Parameter values; missing ones fall back to the defaults.
        parameter (str): Bifurcation parameter.
        p_span (Tuple[float, float]): Continuation interval.
        species (str): Species reported for each solution.
        eliminate_conservation (bool): Replace one equation per conservation law
            (needed for a non-singular Jacobian when the network has any).
    """
    bif_idx = network.parameter_index(parameter)
    plot_idx = network.species_index(species)
    problem = NonlinearProblem(network, p=p, eliminate_conservation=eliminate_conservation)
    u0 = np.ones(len(network.species))
    params = problem.p.copy()
    params[bif_idx] = p_span[0]
    return BifurcationProblem(
        F=problem.f,
        J=problem.jac,
        u0=u0,
        params=params,
        bif_idx=bif_idx,
        p_span=tuple(p_span),
        record_from_solution=lambda x, p: x[plot_idx],
        parameter_name=parameter,
        species_name=species,
    )
