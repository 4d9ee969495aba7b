"""
Reaction classes.

A reaction couples a rate expression with substrate and product
stoichiometries. Mass-action reactions multiply their rate by the substrate
concentrations; rate-law reactions use their expression verbatim.
"""

from abc import ABC, abstractmethod
from numbers import Number
from typing import Dict, List, Union

import sympy as sp
from sympy.core.function import AppliedUndef

from .models import Species, Parameter
from ..exceptions import NetworkConstructionError

RateLike = Union[Parameter, Number, sp.Expr]


def as_expression(rate: RateLike) -> sp.Expr:
    """Convert a rate given as a parameter, number or expression to a sympy expression."""
    if isinstance(rate, (Parameter, Species)):
        return rate.symbol
    if isinstance(rate, bool) or isinstance(rate, str):
        raise TypeError(f"Rate must be a Parameter, a number or a sympy expression, not {type(rate).__name__}")
    if isinstance(rate, (Number, sp.Basic)):
        return sp.sympify(rate)
    raise TypeError(f"Rate must be a Parameter, a number or a sympy expression, not {type(rate).__name__}")


def _check_stoichiometry(side: Dict[Species, int], reaction_name: str, role: str) -> Dict[Species, int]:
    checked = {}
    for sp_obj, stoich in side.items():
        if not isinstance(sp_obj, Species):
            raise TypeError(f"{role.capitalize()} keys of reaction '{reaction_name}' must be Species, got {sp_obj!r}")
        if isinstance(stoich, bool) or int(stoich) != stoich or stoich <= 0:
            raise NetworkConstructionError(
                f"Stoichiometry of {role} '{sp_obj.name}' in reaction '{reaction_name}' "
                f"must be a positive integer, got {stoich!r}"
            )
        checked[sp_obj] = checked.get(sp_obj, 0) + int(stoich)
    return checked


def _falling_factorial(x: sp.Expr, n: int) -> sp.Expr:
    return sp.Mul(*[x - i for i in range(n)])


class Reaction(ABC):
    """
    Base class for reactions.

    Args:
        name (str): Label of the reaction.
        reactants (Dict[Species, int]): Substrates and their stoichiometries.
        products (Dict[Species, int]): Products and their stoichiometries.
        rate: Rate constant or rate expression.

    Subclasses decide how the rate turns into a rate law by implementing
    :meth:`_generate_rate_law`.
    """

    def __init__(self, name: str, reactants: Dict[Species, int], products: Dict[Species, int], rate: RateLike):
        self.name = name
        self.reactants = _check_stoichiometry(reactants or {}, name, 'reactant')
        self.products = _check_stoichiometry(products or {}, name, 'product')
        self.rate = rate
        self.rate_expr = as_expression(rate)
        self.rate_law = self._generate_rate_law()

    @abstractmethod
    def _generate_rate_law(self, combinatoric: bool = False) -> sp.Expr:
        """Deterministic rate law (concentration units)."""

    def rate_law_for(self, combinatoric: bool) -> sp.Expr:
        return self._generate_rate_law(combinatoric)

    @staticmethod
    def _substitute_counts(expr: sp.Expr, count_symbols: Dict[str, sp.Symbol]) -> sp.Expr:
        mapping = {
            fn: count_symbols[fn.func.__name__]
            for fn in expr.atoms(AppliedUndef)
            if fn.func.__name__ in count_symbols
        }
        return expr.xreplace(mapping)

    def propensity_for(self, count_symbols: Dict[str, sp.Symbol], combinatoric: bool) -> sp.Expr:
        """
        Propensity in terms of discrete counts.

        The default substitutes each species function by its count symbol.
        """
        return self._substitute_counts(self._generate_rate_law(combinatoric), count_symbols)

    def declared_parameters(self) -> List[Parameter]:
        """Parameter objects passed directly as the rate."""
        return [self.rate] if isinstance(self.rate, Parameter) else []

    def net_stoichiometry(self) -> Dict[Species, int]:
        net = {s: -n for s, n in self.reactants.items()}
        for s, n in self.products.items():
            net[s] = net.get(s, 0) + n
        return {s: n for s, n in net.items() if n != 0}

    @property
    def only_use_rate(self) -> bool:
        return False

    @staticmethod
    def _format_side(side: Dict[Species, int]) -> str:
        if not side:
            return '0'
        return ' + '.join(f"{n}{s.name}" if n != 1 else s.name for s, n in side.items())

    def equation(self) -> str:
        return f"{self._format_side(self.reactants)} -> {self._format_side(self.products)}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}('{self.name}': {self.equation()}, rate={self.rate_expr})"


class MassActionReaction(Reaction):
    """
    Mass-action kinetics: rate * product of substrate concentrations raised to
    their stoichiometries. The rate may itself be any expression.
    """

    def _generate_rate_law(self, combinatoric: bool = False) -> sp.Expr:
        law = self.rate_expr
        for sp_obj, stoich in self.reactants.items():
            law = law * sp_obj.symbol**stoich
            if combinatoric:
                law = law / sp.factorial(stoich)
        return law

    def propensity_for(self, count_symbols: Dict[str, sp.Symbol], combinatoric: bool) -> sp.Expr:
        # Falling factorials X(X-1)... count distinct substrate combinations
        propensity = self._substitute_counts(self.rate_expr, count_symbols)
        for sp_obj, stoich in self.reactants.items():
            propensity = propensity * _falling_factorial(count_symbols[sp_obj.name], stoich)
            if combinatoric:
                propensity = propensity / sp.factorial(stoich)
        return propensity


class RateLawReaction(Reaction):
    """
    The rate expression is the full rate law; substrates do not multiply it.
    """

    def _generate_rate_law(self, combinatoric: bool = False) -> sp.Expr:
        return self.rate_expr

    @property
    def only_use_rate(self) -> bool:
        return True


class LogisticGrowthReaction(RateLawReaction):
    """
    Logistic growth written as x -> 2x with rate law r * x * (1 - x/K).
    """

    def __init__(self, name: str, species: Species, r: RateLike, K: RateLike):
        self.species = species
        self.r = r
        self.K = K
        x = species.symbol
        rate = as_expression(r) * x * (1 - x / as_expression(K))
        super().__init__(name, {species: 1}, {species: 2}, rate)

    def declared_parameters(self) -> List[Parameter]:
        return [p for p in (self.r, self.K) if isinstance(p, Parameter)]
