"""
Core model classes

This module contains the fundamental building blocks of a reaction network:
- Species: Represents chemical species (molecules, complexes, populations)
- Parameter: Represents model parameters with optional default values
- ReactionNetwork: Container for species, parameters and reactions
"""

import copy
import logging
import math
from typing import Dict, List, Optional

import networkx as nx
import numpy as np
import sympy as sp
from sympy.core.function import AppliedUndef
from sympy.core.symbol import Symbol

from ..exceptions import NameCollisionError, UnresolvedSymbolError, NetworkConstructionError

logger = logging.getLogger(__name__)

# Define global time symbol
t = sp.Symbol('t', positive=True)
TIME_NAME = 't'


class _SymbolicArithmetic:
    """Arithmetic on model objects yields sympy expressions of their symbols."""

    def _sympy_(self):
        return self.symbol

    def __add__(self, other):
        return self.symbol + sp.sympify(other)

    def __radd__(self, other):
        return sp.sympify(other) + self.symbol

    def __sub__(self, other):
        return self.symbol - sp.sympify(other)

    def __rsub__(self, other):
        return sp.sympify(other) - self.symbol

    def __mul__(self, other):
        return self.symbol * sp.sympify(other)

    def __rmul__(self, other):
        return sp.sympify(other) * self.symbol

    def __truediv__(self, other):
        return self.symbol / sp.sympify(other)

    def __rtruediv__(self, other):
        return sp.sympify(other) / self.symbol

    def __pow__(self, other):
        return self.symbol ** sp.sympify(other)

    def __neg__(self):
        return -self.symbol


class Parameter(_SymbolicArithmetic):
    """
    A named symbolic constant with an optional default value.

    The value is only bound when a simulation is set up, so the same network
    can be simulated with many parameter sets.
    """

    def __init__(self, name: str, default_value: float = None, **kwargs):
        """
        Initialize a Parameter.

        Args:
            name (str): The parameter name
            default_value (float, optional): Default value for the parameter
            **kwargs: Additional arguments passed to sympy.Symbol
        """
        self.name = name
        self.symbol = sp.Symbol(name, **kwargs)
        self.default_value = default_value

    def get_symbol(self) -> Symbol:
        """Get the symbolic representation of the parameter."""
        return self.symbol

    def get_default_value(self) -> float:
        """Get the default value, raising an error if not set."""
        if self.default_value is None:
            raise ValueError(f"No default value for '{self.name}'")
        return self.default_value

    def has_default(self) -> bool:
        return self.default_value is not None

    def __repr__(self) -> str:
        return f"Parameter('{self.name}', default={self.default_value})"

    def __hash__(self):
        return hash(('Parameter', self.name))

    def __eq__(self, other):
        if not isinstance(other, Parameter):
            return NotImplemented
        return self.name == other.name


class Species(_SymbolicArithmetic):
    """
    Represents a species in a model, holding its symbolic representation
    and an initial condition.
    """

    def __init__(self, name: str, initial_condition: float = 0.0, **kwargs):
        """
        Initialize a Species.

        Args:
            name (str): The name of the species (e.g., 'X', 'glucose')
            initial_condition (float, optional): The starting value for simulations. Defaults to 0.0
            **kwargs: Additional keyword arguments passed to sympy.Function (e.g., positive=True)
        """
        self.name = name
        # Represent the species as a function of time, e.g., x(t), which is ideal for ODEs
        self.symbol = sp.Function(name, **kwargs)(t)
        # Time-free stand-in used when generating numerical code
        self.state_symbol = sp.Symbol(name, real=True)
        self.initial_condition = initial_condition

    def __repr__(self) -> str:
        """Provides a clear string representation of the Species object."""
        return f"Species('{self.name}', initial_condition={self.initial_condition})"

    # --- Methods for NetworkX compatibility ---

    def __hash__(self):
        """Allows the object to be used as a key in a dictionary or a node in a graph."""
        return hash(self.name)

    def __eq__(self, other):
        """Defines equality based on the unique species name."""
        if not isinstance(other, Species):
            return NotImplemented
        return self.name == other.name


def species(names: str, **kwargs) -> tuple:
    """
    Create several species at once.

    Args:
        names (str): Whitespace or comma separated names, e.g. ``"X Y Z"``.
        **kwargs: Passed to every :class:`Species`.

    Returns:
        tuple: The new species, in the order given.
    """
    return tuple(Species(n, **kwargs) for n in names.replace(',', ' ').split())


def parameters(names: str, **kwargs) -> tuple:
    """Create several parameters at once (see :func:`species`)."""
    return tuple(Parameter(n, **kwargs) for n in names.replace(',', ' ').split())


class ReactionNetwork:
    """
    A named, ordered collection of reactions with its species and parameters.

    Species and parameters that are not declared beforehand are inferred from
    the reactions: reactants and products become species, any other free
    symbol of a rate expression becomes a parameter. A ``strict`` network
    disables inference and requires every symbol to be declared first.

    A directed graph of species influence is kept alongside: an edge from A
    to B means A is a reactant of a reaction producing B.
    """

    def __init__(self, name: str, strict: bool = False, combinatoric_ratelaws: bool = False):
        """
        Initialize a ReactionNetwork.

        Args:
            name (str): Name of the network
            strict (bool): Require explicit declaration of every species and parameter.
            combinatoric_ratelaws (bool): Divide mass-action rate laws by the
                factorials of the substrate stoichiometries.
        """
        self.name = name
        self.strict = strict
        self.combinatoric_ratelaws = combinatoric_ratelaws
        self.graph = nx.DiGraph()
        self.species: Dict[str, Species] = {}
        self.parameters: Dict[str, Parameter] = {}
        self.reactions: List = []

    # --- Construction ---

    def _check_free_name(self, name: str, kind: str):
        if name == TIME_NAME:
            raise NameCollisionError(f"'{TIME_NAME}' is reserved for the time variable and cannot name a {kind}.")
        other = self.parameters if kind == 'species' else self.species
        if name in other:
            other_kind = 'parameter' if kind == 'species' else 'species'
            raise NameCollisionError(
                f"Cannot add {kind} '{name}': the name is already used by a {other_kind}."
            )

    def add_species(self, species: Species):
        """
        Add a species to the model, creating a node in the graph.

        Args:
            species (Species): The species to add

        Returns:
            ReactionNetwork: Self for method chaining
        """
        if species.name in self.species:
            raise NameCollisionError(f"Species '{species.name}' already exists in the model.")
        self._check_free_name(species.name, 'species')
        self.species[species.name] = species
        self.graph.add_node(species, label=species.name)
        return self

    def add_parameter(self, parameter: Parameter):
        """
        Add a parameter to the model.

        Args:
            parameter (Parameter): The parameter to add

        Returns:
            ReactionNetwork: Self for method chaining
        """
        if parameter.name in self.parameters:
            raise NameCollisionError(f"Parameter '{parameter.name}' already exists in the model.")
        self._check_free_name(parameter.name, 'parameter')
        self.parameters[parameter.name] = parameter
        return self

    def _resolve_species(self, sp_obj: Species, reaction_name: str) -> Species:
        if sp_obj.name in self.species:
            return self.species[sp_obj.name]
        if self.strict:
            raise UnresolvedSymbolError(
                f"Species '{sp_obj.name}' in reaction '{reaction_name}' has not been declared."
            )
        logger.debug("Inferred species '%s' from reaction '%s'", sp_obj.name, reaction_name)
        self.add_species(sp_obj)
        return sp_obj

    def _resolve_rate_symbols(self, expr: sp.Expr, reaction_name: str):
        """Register or check every symbol of a rate expression (second resolution pass)."""
        for fn in sorted(expr.atoms(AppliedUndef), key=str):
            name = fn.func.__name__
            if fn.args != (t,) and not (len(fn.args) == 1 and getattr(fn.args[0], 'name', None) == TIME_NAME):
                raise UnresolvedSymbolError(
                    f"'{fn}' in reaction '{reaction_name}' is not a species of time."
                )
            if name in self.species:
                continue
            if self.strict or name in self.parameters:
                raise UnresolvedSymbolError(
                    f"'{name}' in the rate of reaction '{reaction_name}' is not a declared species."
                )
            logger.debug("Inferred species '%s' from the rate of '%s'", name, reaction_name)
            self.add_species(Species(name))
        for sym in sorted(expr.free_symbols, key=lambda s: s.name):
            if sym.name == TIME_NAME:
                continue
            if sym.name in self.parameters:
                continue
            if sym.name in self.species:
                raise NameCollisionError(
                    f"'{sym.name}' in the rate of reaction '{reaction_name}' is a species; "
                    f"use the species object rather than a bare symbol."
                )
            if self.strict:
                raise UnresolvedSymbolError(
                    f"Symbol '{sym.name}' in the rate of reaction '{reaction_name}' is not a declared parameter."
                )
            logger.debug("Inferred parameter '%s' from the rate of '%s'", sym.name, reaction_name)
            self.add_parameter(Parameter(sym.name))

    def add_reaction(self, reaction):
        """
        Add a reaction to the model, creating edges in the graph.
        An edge from A to B means that reactant A is involved in a reaction that produces B.

        Args:
            reaction: The reaction to add (must have reactants, products, and name attributes)

        Returns:
            ReactionNetwork: Self for method chaining
        """
        # Pass 1: entities named directly by the reaction
        for sp_obj in list(reaction.reactants) + list(reaction.products):
            self._resolve_species(sp_obj, reaction.name)
        for param in reaction.declared_parameters():
            if param.name not in self.parameters:
                if self.strict:
                    raise UnresolvedSymbolError(
                        f"Parameter '{param.name}' in reaction '{reaction.name}' has not been declared."
                    )
                self.add_parameter(param)
            elif (param.default_value is not None
                  and self.parameters[param.name].default_value is None):
                # Registered objects may be shared with copies of this network
                filled = copy.copy(self.parameters[param.name])
                filled.default_value = param.default_value
                self.parameters[param.name] = filled
        # Pass 2: everything else a rate expression refers to
        self._resolve_rate_symbols(reaction.rate_law, reaction.name)

        self.reactions.append(reaction)
        # An edge (u, v) means species u influences the abundance of species v
        for reactant in reaction.reactants:
            for product in reaction.products:
                u, v = self.species[reactant.name], self.species[product.name]
                if self.graph.has_edge(u, v):
                    # Append reaction name to existing edge attribute
                    self.graph.edges[u, v]['reactions'].append(reaction.name)
                else:
                    self.graph.add_edge(u, v, reactions=[reaction.name])
        return self

    def add_reactions(self, reactions):
        for reaction in reactions:
            self.add_reaction(reaction)
        return self

    # --- Symbol handling ---

    def canonicalize(self, expr: sp.Expr) -> sp.Expr:
        """
        Rewrite an expression so that every symbol is the one registered in
        this network (matched by name), and time is the module-level ``t``.
        """
        expr = sp.sympify(expr)
        mapping = {}
        for sym in expr.free_symbols:
            if sym.name == TIME_NAME:
                if sym != t:
                    mapping[sym] = t
            elif sym.name in self.parameters and sym != self.parameters[sym.name].symbol:
                mapping[sym] = self.parameters[sym.name].symbol
        if mapping:
            expr = expr.xreplace(mapping)
        fn_mapping = {}
        for fn in expr.atoms(AppliedUndef):
            name = fn.func.__name__
            if name in self.species and fn != self.species[name].symbol:
                fn_mapping[fn] = self.species[name].symbol
        if fn_mapping:
            expr = expr.xreplace(fn_mapping)
        return expr

    def to_state_symbols(self, expr: sp.Expr) -> sp.Expr:
        """Replace every species function ``X(t)`` by its time-free state symbol."""
        mapping = {s.symbol: s.state_symbol for s in self.species.values()}
        return self.canonicalize(expr).xreplace(mapping)

    def species_names(self) -> List[str]:
        return list(self.species.keys())

    def parameter_names(self) -> List[str]:
        return list(self.parameters.keys())

    def species_index(self, name: str) -> int:
        try:
            return self.species_names().index(name)
        except ValueError:
            raise KeyError(f"Species '{name}' not found in network '{self.name}'") from None

    def parameter_index(self, name: str) -> int:
        try:
            return self.parameter_names().index(name)
        except ValueError:
            raise KeyError(f"Parameter '{name}' not found in network '{self.name}'") from None

    # --- Stoichiometry ---

    def _stoich_matrix(self, side: str) -> np.ndarray:
        names = self.species_names()
        M = np.zeros((len(names), len(self.reactions)), dtype=int)
        for j, reaction in enumerate(self.reactions):
            for sp_obj, stoich in getattr(reaction, side).items():
                M[names.index(sp_obj.name), j] += stoich
        return M

    def substrate_matrix(self) -> np.ndarray:
        """Substrate stoichiometries, shape (num_species, num_reactions)."""
        return self._stoich_matrix('reactants')

    def product_matrix(self) -> np.ndarray:
        """Product stoichiometries, shape (num_species, num_reactions)."""
        return self._stoich_matrix('products')

    def generate_stoichiometric_matrix(self) -> np.ndarray:
        """
        Generate the stoichiometric matrix S where S[i,j] is the change in
        species i due to reaction j.

        Returns:
            np.ndarray: Matrix of shape (num_species, num_reactions)
        """
        return self.product_matrix() - self.substrate_matrix()

    def rate_laws(self) -> List[sp.Expr]:
        """Deterministic rate law of each reaction, in reaction order."""
        return [
            self.canonicalize(rxn.rate_law_for(self.combinatoric_ratelaws))
            for rxn in self.reactions
        ]

    def generate_rate_vector(self) -> sp.Matrix:
        """
        Generate the symbolic rate vector where each element is the
        rate law for a reaction.

        Returns:
            sp.Matrix: Vector of rate laws
        """
        return sp.Matrix(self.rate_laws())

    def propensities(self) -> List[sp.Expr]:
        """
        Stochastic propensity of each reaction, written in the time-free
        state symbols of the species (integer counts).
        """
        count_symbols = {name: s.state_symbol for name, s in self.species.items()}
        result = []
        for rxn in self.reactions:
            expr = rxn.propensity_for(count_symbols, self.combinatoric_ratelaws)
            result.append(self.to_state_symbols(expr))
        return result

    def generate_odes(self) -> Dict[Symbol, sp.Expr]:
        """
        Generate the system of Ordinary Differential Equations (ODEs)
        by multiplying the stoichiometric matrix S by the rate vector v.

        Returns:
            Dict[Symbol, sp.Expr]: Mapping from species symbols to ODE expressions
        """
        species_symbols = [s.symbol for s in self.species.values()]
        if not self.reactions:
            return {symbol: sp.Integer(0) for symbol in species_symbols}
        S = sp.Matrix(self.generate_stoichiometric_matrix())
        v = self.generate_rate_vector()
        dxdt_vector = S * v
        return {symbol: expr for symbol, expr in zip(species_symbols, dxdt_vector)}

    def latex_odes(self, substitute_defaults: bool = False) -> str:
        """
        Render the ODE system as an aligned LaTeX block.

        Args:
            substitute_defaults (bool): Replace parameters that have default
                values by those values.
        """
        odes = self.generate_odes()
        subs = {}
        if substitute_defaults:
            subs = {p.symbol: p.default_value for p in self.parameters.values() if p.has_default()}
        equations = [sp.Eq(sp.Derivative(s, t), e.subs(subs)) for s, e in odes.items()]
        # The .replace("=", "&=", 1) aligns all equations at the equals sign
        return r"\begin{aligned}" + r" \\ ".join(
            [sp.latex(eq).replace("=", " &= ", 1) for eq in equations]
        ) + r"\end{aligned}"

    # --- Conservation laws ---

    def conservation_laws(self) -> np.ndarray:
        """
        Integer basis of the conservation laws of the network.

        Each row ``c`` satisfies ``c @ S == 0``, so ``c @ x`` is constant
        along every trajectory. The basis is in reduced row echelon form: the
        pivot species of each row appears in no other row.

        Returns:
            np.ndarray: Matrix of shape (num_laws, num_species)
        """
        n = len(self.species)
        if n == 0:
            return np.zeros((0, 0), dtype=int)
        S = self.generate_stoichiometric_matrix()
        if S.shape[1] == 0:
            return np.eye(n, dtype=int)
        basis = sp.Matrix(S.T).nullspace()
        if not basis:
            return np.zeros((0, n), dtype=int)
        rref, _ = sp.Matrix.hstack(*basis).T.rref()
        rows = []
        for i in range(rref.rows):
            row = list(rref.row(i))
            if all(x == 0 for x in row):
                continue
            denominators = [int(sp.fraction(sp.nsimplify(x))[1]) for x in row]
            scale = math.lcm(*denominators)
            ints = [int(x * scale) for x in row]
            common = math.gcd(*ints)
            rows.append([v // common for v in ints])
        return np.array(rows, dtype=int)

    def conservation_pivots(self) -> List[int]:
        """Species index eliminated by each conservation law."""
        laws = self.conservation_laws()
        return [int(np.flatnonzero(row)[0]) for row in laws]

    def conserved_quantities(self, u0) -> np.ndarray:
        """Value of each conservation law for the state vector ``u0``."""
        return self.conservation_laws() @ np.asarray(u0, dtype=float)

    # --- Equation generation ---

    def to_ode_system(self):
        """Generate the reaction-rate ODE system (see :class:`ODESystem`)."""
        from .systems import ODESystem
        return ODESystem.from_network(self)

    def to_sde_system(self):
        """Generate the chemical Langevin SDE system (see :class:`SDESystem`)."""
        from .systems import SDESystem
        return SDESystem.from_network(self)

    def to_jump_system(self):
        """Generate the discrete jump system (see :class:`JumpSystem`)."""
        from .systems import JumpSystem
        return JumpSystem.from_network(self)

    # --- Composition ---

    def copy(self, name: Optional[str] = None) -> "ReactionNetwork":
        """Shallow copy: species, parameters and reactions are shared, registries are not."""
        new = ReactionNetwork(name or self.name, strict=self.strict,
                              combinatoric_ratelaws=self.combinatoric_ratelaws)
        for s in self.species.values():
            new.add_species(s)
        for p in self.parameters.values():
            new.add_parameter(p)
        for rxn in self.reactions:
            new.add_reaction(rxn)
        return new

    def extend(self, other: "ReactionNetwork", name: Optional[str] = None) -> "ReactionNetwork":
        """
        Compose this network with another one.

        Entities with the same name and kind are shared. A name that is a
        species in one network and a parameter in the other, or a shared
        entity with two different defaults, is a collision.

        Returns:
            ReactionNetwork: A new network; neither operand is modified.
        """
        if other.combinatoric_ratelaws != self.combinatoric_ratelaws:
            raise NetworkConstructionError(
                f"Cannot extend '{self.name}' with '{other.name}': they use different rate law conventions."
            )
        for s_name, s_obj in other.species.items():
            if s_name in self.parameters:
                raise NameCollisionError(f"'{s_name}' is a parameter of '{self.name}' but a species of '{other.name}'.")
            mine = self.species.get(s_name)
            if mine is not None and mine.initial_condition != s_obj.initial_condition:
                raise NameCollisionError(
                    f"Species '{s_name}' has different initial conditions in '{self.name}' "
                    f"({mine.initial_condition}) and '{other.name}' ({s_obj.initial_condition})."
                )
        for p_name, p_obj in other.parameters.items():
            if p_name in self.species:
                raise NameCollisionError(f"'{p_name}' is a species of '{self.name}' but a parameter of '{other.name}'.")
            mine = self.parameters.get(p_name)
            if (mine is not None and mine.has_default() and p_obj.has_default()
                    and mine.default_value != p_obj.default_value):
                raise NameCollisionError(
                    f"Parameter '{p_name}' has different defaults in '{self.name}' "
                    f"({mine.default_value}) and '{other.name}' ({p_obj.default_value})."
                )

        new = self.copy(name or self.name)
        new.strict = self.strict and other.strict
        for s_obj in other.species.values():
            if s_obj.name not in new.species:
                new.add_species(s_obj)
        for p_obj in other.parameters.values():
            if p_obj.name not in new.parameters:
                new.add_parameter(p_obj)
            elif new.parameters[p_obj.name].default_value is None:
                new.parameters[p_obj.name] = p_obj
        for rxn in other.reactions:
            new.add_reaction(rxn)
        logger.debug("Extended '%s' with '%s': %r", self.name, other.name, new)
        return new

    def __repr__(self) -> str:
        return (f"ReactionNetwork(name='{self.name}', "
                f"species={len(self.species)}, "
                f"parameters={len(self.parameters)}, "
                f"reactions={len(self.reactions)})")


def merge(*networks: ReactionNetwork, name: Optional[str] = None) -> ReactionNetwork:
    """Compose several networks left to right with :meth:`ReactionNetwork.extend`."""
    if not networks:
        raise ValueError("merge() needs at least one network")
    result = networks[0].copy(name)
    for other in networks[1:]:
        result = result.extend(other, name=name or result.name)
    return result
