"""
Equation generators.

Each system is a pure function of a :class:`~pycrn.core.models.ReactionNetwork`:

- ODESystem: reaction-rate equations, dx/dt = S v(x)
- SDESystem: chemical Langevin equation, dx = S v dt + S diag(sqrt(v)) dW
- JumpSystem: propensities on integer counts plus the reaction dependency graph

Numerical functions are generated with ``sympy.lambdify`` on demand and share
one calling convention: ``f(t, y, p)`` with ``y`` ordered like the network's
species and ``p`` like its parameters.
"""

import logging
from typing import Callable, List, Optional

import networkx as nx
import numpy as np
import sympy as sp

from .models import t

logger = logging.getLogger(__name__)


def _exprs_equal(a: List[sp.Expr], b: List[sp.Expr]) -> bool:
    if len(a) != len(b):
        return False
    return all(sp.expand(x - y) == 0 for x, y in zip(a, b))


class _GeneratedSystem:
    """Shared bookkeeping of the generated systems."""

    # Lazily lambdified callables; dropped when pickled and rebuilt on first use
    _cached_functions: tuple = ()

    def __init__(self, name: str, species_names: List[str], parameter_names: List[str],
                 state_symbols: List[sp.Symbol], parameter_symbols: List[sp.Symbol]):
        self.name = name
        self.species_names = list(species_names)
        self.parameter_names = list(parameter_names)
        self.state_symbols = list(state_symbols)
        self.parameter_symbols = list(parameter_symbols)

    def __getstate__(self):
        state = self.__dict__.copy()
        for name in self._cached_functions:
            state[name] = None
        return state

    @property
    def _arguments(self) -> list:
        return self.state_symbols + self.parameter_symbols + [t]

    def _lambdify(self, exprs) -> Callable:
        """Flat-argument numpy function of the given expressions."""
        return sp.lambdify(self._arguments, exprs, 'numpy')

    def _same_layout(self, other) -> bool:
        return (type(self) is type(other)
                and self.species_names == other.species_names
                and self.parameter_names == other.parameter_names)


class ODESystem(_GeneratedSystem):
    """
    Reaction-rate equations of a network.

    Attributes:
        equations (List[sp.Expr]): Right-hand side for each species, in the
            time-free state symbols.
        rates (List[sp.Expr]): Rate law of each reaction.
        stoichiometry (np.ndarray): Net stoichiometric matrix.
    """

    _cached_functions = ('_rhs', '_jac')

    def __init__(self, name, species_names, parameter_names, state_symbols, parameter_symbols,
                 equations: List[sp.Expr], rates: List[sp.Expr], stoichiometry: np.ndarray):
        super().__init__(name, species_names, parameter_names, state_symbols, parameter_symbols)
        self.equations = list(equations)
        self.rates = list(rates)
        self.stoichiometry = stoichiometry
        self._rhs = None
        self._jac = None

    @classmethod
    def from_network(cls, network) -> "ODESystem":
        rates = [network.to_state_symbols(r) for r in network.rate_laws()]
        S = network.generate_stoichiometric_matrix()
        equations = []
        for i in range(S.shape[0]):
            terms = [int(S[i, j]) * rates[j] for j in range(S.shape[1]) if S[i, j] != 0]
            equations.append(sp.Add(*terms) if terms else sp.Integer(0))
        logger.debug("Generated %d ODEs for '%s'", len(equations), network.name)
        return cls(
            network.name,
            network.species_names(),
            network.parameter_names(),
            [s.state_symbol for s in network.species.values()],
            [p.symbol for p in network.parameters.values()],
            equations, rates, S,
        )

    def rhs(self) -> Callable:
        """Numerical right-hand side ``f(t, y, p) -> np.ndarray``."""
        if self._rhs is None:
            func = self._lambdify(self.equations)
            n = len(self.equations)

            def ode_function(t, y, p):
                return np.asarray(func(*y, *p, t), dtype=float).reshape(n)

            self._rhs = ode_function
        return self._rhs

    def vectorized_rhs(self) -> Callable:
        """
        Right-hand side for many independent copies at once.

        ``f(t, Y, p)`` takes ``Y`` of shape (n_species, n_copies) and returns
        the derivatives in the same shape.
        """
        func = self._lambdify(self.equations)

        def batch_function(t, Y, p):
            columns = Y.shape[1]
            return np.array([np.broadcast_to(np.asarray(row, dtype=float), (columns,))
                             for row in func(*Y, *p, t)]).reshape(Y.shape)

        return batch_function

    def jacobian(self) -> Callable:
        """Numerical Jacobian ``J(t, y, p) -> np.ndarray`` of shape (n, n)."""
        if self._jac is None:
            n = len(self.equations)
            if n == 0:
                self._jac = lambda t, y, p: np.zeros((0, 0))
                return self._jac
            J = sp.Matrix(self.equations).jacobian(self.state_symbols)
            func = self._lambdify(J)

            def jacobian_function(t, y, p):
                return np.asarray(func(*y, *p, t), dtype=float).reshape(n, n)

            self._jac = jacobian_function
        return self._jac

    def depends_on_time(self) -> bool:
        return any(e.has(t) for e in self.equations)

    def __eq__(self, other):
        if not isinstance(other, ODESystem):
            return NotImplemented
        return self._same_layout(other) and _exprs_equal(self.equations, other.equations)

    __hash__ = None

    def __repr__(self) -> str:
        return f"ODESystem('{self.name}', equations={len(self.equations)})"


class SDESystem(_GeneratedSystem):
    """
    Chemical Langevin equation of a network: one Wiener process per reaction.

    Attributes:
        drift (List[sp.Expr]): Deterministic part, identical to the ODE right-hand side.
        rates (List[sp.Expr]): Rate law of each reaction (must stay non-negative).
        noise (sp.Matrix): Diffusion matrix ``S[i, j] * sqrt(rate_j)``.
        stoichiometry (np.ndarray): Net stoichiometric matrix.
    """

    _cached_functions = ('_rate_func',)

    def __init__(self, name, species_names, parameter_names, state_symbols, parameter_symbols,
                 drift: List[sp.Expr], rates: List[sp.Expr], stoichiometry: np.ndarray):
        super().__init__(name, species_names, parameter_names, state_symbols, parameter_symbols)
        self.drift = list(drift)
        self.rates = list(rates)
        self.stoichiometry = stoichiometry
        n_species, n_rxn = stoichiometry.shape
        self.noise = sp.Matrix(n_species, n_rxn,
                               lambda i, j: int(stoichiometry[i, j]) * sp.sqrt(self.rates[j]))
        self._rate_func = None

    @classmethod
    def from_network(cls, network) -> "SDESystem":
        ode = ODESystem.from_network(network)
        return cls(ode.name, ode.species_names, ode.parameter_names, ode.state_symbols,
                   ode.parameter_symbols, ode.equations, ode.rates, ode.stoichiometry)

    def rate_function(self) -> Callable:
        """Numerical reaction rates ``v(t, y, p) -> np.ndarray`` (one per reaction)."""
        if self._rate_func is None:
            func = self._lambdify(self.rates)
            n = len(self.rates)

            def rate_function(t, y, p):
                return np.asarray(func(*y, *p, t), dtype=float).reshape(n)

            self._rate_func = rate_function
        return self._rate_func

    def __eq__(self, other):
        if not isinstance(other, SDESystem):
            return NotImplemented
        return (self._same_layout(other)
                and np.array_equal(self.stoichiometry, other.stoichiometry)
                and _exprs_equal(self.drift, other.drift)
                and _exprs_equal(self.rates, other.rates))

    __hash__ = None

    def __repr__(self) -> str:
        return f"SDESystem('{self.name}', species={len(self.drift)}, noise_terms={len(self.rates)})"


class JumpSystem(_GeneratedSystem):
    """
    Discrete-state jump model of a network.

    Attributes:
        propensities (List[sp.Expr]): Propensity of each reaction on integer counts.
        stoichiometry (np.ndarray): Net change of each species per firing.
        substrates (np.ndarray): Substrate stoichiometries.
        mass_action_rates (List[Optional[sp.Expr]]): For mass-action reactions
            whose rate only involves parameters, the rate constant (with the
            combinatoric factor folded in); None otherwise.
        dependency_graph (nx.DiGraph): Edge i -> j when firing reaction i
            changes a species that propensity j depends on.
        dependents (List[np.ndarray]): The same graph as index arrays.
    """

    _cached_functions = ('_propensity_funcs', '_rate_constant_func')

    def __init__(self, name, species_names, parameter_names, state_symbols, parameter_symbols,
                 propensities: List[sp.Expr], stoichiometry: np.ndarray, substrates: np.ndarray,
                 mass_action_rates: List[Optional[sp.Expr]], reaction_names: List[str] = None):
        super().__init__(name, species_names, parameter_names, state_symbols, parameter_symbols)
        self.propensities = list(propensities)
        self.stoichiometry = stoichiometry
        self.substrates = substrates
        self.mass_action_rates = list(mass_action_rates)
        self.reaction_names = list(reaction_names) if reaction_names else [
            f"r{j + 1}" for j in range(len(self.propensities))
        ]
        self.dependency_graph = self._build_dependency_graph()
        self.dependents = [
            np.array(sorted(self.dependency_graph.successors(j)), dtype=np.int64)
            for j in range(len(self.propensities))
        ]
        self._propensity_funcs = None
        self._rate_constant_func = None

    @classmethod
    def from_network(cls, network) -> "JumpSystem":
        from .reactions import MassActionReaction

        propensities = network.propensities()
        mass_action_rates = []
        for rxn in network.reactions:
            rate = network.to_state_symbols(rxn.rate_expr)
            if isinstance(rxn, MassActionReaction) and not (rate.free_symbols & (
                    {s.state_symbol for s in network.species.values()} | {t})):
                if network.combinatoric_ratelaws:
                    for stoich in rxn.reactants.values():
                        rate = rate / sp.factorial(stoich)
                mass_action_rates.append(rate)
            else:
                mass_action_rates.append(None)
        system = cls(
            network.name,
            network.species_names(),
            network.parameter_names(),
            [s.state_symbol for s in network.species.values()],
            [p.symbol for p in network.parameters.values()],
            propensities,
            network.generate_stoichiometric_matrix(),
            network.substrate_matrix(),
            mass_action_rates,
            [rxn.name for rxn in network.reactions],
        )
        logger.debug("Generated jump system for '%s' with %d dependency edges",
                     network.name, system.dependency_graph.number_of_edges())
        return system

    def _build_dependency_graph(self) -> nx.DiGraph:
        graph = nx.DiGraph()
        n_rxn = len(self.propensities)
        graph.add_nodes_from(range(n_rxn))
        state_index = {sym: i for i, sym in enumerate(self.state_symbols)}
        reads = [
            {state_index[s] for s in prop.free_symbols if s in state_index}
            for prop in self.propensities
        ]
        for i in range(n_rxn):
            changed = set(np.flatnonzero(self.stoichiometry[:, i]).tolist())
            for j in range(n_rxn):
                if changed & reads[j]:
                    graph.add_edge(i, j)
        return graph

    def time_dependent(self) -> List[bool]:
        return [p.has(t) for p in self.propensities]

    def is_mass_action(self) -> bool:
        return all(r is not None for r in self.mass_action_rates)

    def propensity_functions(self) -> List[Callable]:
        """One numerical function ``a_j(t, x, p) -> float`` per reaction."""
        if self._propensity_funcs is None:
            funcs = []
            for expr in self.propensities:
                func = self._lambdify(expr)
                funcs.append(lambda t, x, p, _f=func: float(_f(*x, *p, t)))
            self._propensity_funcs = funcs
        return self._propensity_funcs

    def rate_constants(self, p) -> np.ndarray:
        """Numerical mass-action rate constants for the parameter vector ``p``."""
        if not self.is_mass_action():
            raise ValueError(f"Jump system '{self.name}' is not pure mass action.")
        if self._rate_constant_func is None:
            self._rate_constant_func = sp.lambdify(self.parameter_symbols, self.mass_action_rates, 'numpy')
        return np.asarray(self._rate_constant_func(*p), dtype=float).reshape(len(self.mass_action_rates))

    def __eq__(self, other):
        if not isinstance(other, JumpSystem):
            return NotImplemented
        return (self._same_layout(other)
                and np.array_equal(self.stoichiometry, other.stoichiometry)
                and _exprs_equal(self.propensities, other.propensities)
                and set(self.dependency_graph.edges) == set(other.dependency_graph.edges))

    __hash__ = None

    def __repr__(self) -> str:
        return (f"JumpSystem('{self.name}', reactions={len(self.propensities)}, "
                f"dependency_edges={self.dependency_graph.number_of_edges()})")
