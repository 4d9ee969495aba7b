"""
Tests for reaction classes.

This module tests reaction types and rate helpers:
- Reaction base class and stoichiometry validation
- MassActionReaction (rate laws and propensities)
- RateLawReaction
- LogisticGrowthReaction
- Hill and Michaelis-Menten rate functions
"""

import pytest
import sympy as sp

from pycrn.core.models import Species, Parameter
from pycrn.core.reactions import Reaction, MassActionReaction, RateLawReaction, LogisticGrowthReaction
from pycrn.core.functions import hill, hillr, mm, mmr
from pycrn.exceptions import NetworkConstructionError


class TestReactionBase:
    """Test cases for the base Reaction class."""

    def test_reaction_is_abstract(self):
        """Test that Reaction cannot be instantiated directly."""
        with pytest.raises(TypeError):
            Reaction('test', {Species('A'): 1}, {}, Parameter('k', default_value=1.0))

    @pytest.mark.parametrize("stoich", [0, -1, 1.5, True])
    def test_invalid_stoichiometry(self, stoich):
        """Stoichiometries must be positive integers."""
        with pytest.raises(NetworkConstructionError, match="positive integer"):
            MassActionReaction('bad', {Species('A'): stoich}, {}, Parameter('k'))

    def test_reactant_keys_must_be_species(self):
        with pytest.raises(TypeError):
            MassActionReaction('bad', {'A': 1}, {}, Parameter('k'))

    def test_rate_type_is_checked(self):
        """Strings are not accepted as rates."""
        with pytest.raises(TypeError):
            MassActionReaction('bad', {}, {Species('A'): 1}, "k")

    def test_numeric_rate(self):
        reaction = MassActionReaction('birth', {}, {Species('A'): 1}, 2.5)
        assert reaction.rate_law == sp.Float(2.5)
        assert reaction.declared_parameters() == []


class TestMassActionReaction:
    """Test cases for MassActionReaction."""

    def setup_method(self):
        """Set up test fixtures."""
        self.species_a = Species('A', initial_condition=100.0)
        self.species_b = Species('B', initial_condition=50.0)
        self.species_c = Species('C', initial_condition=0.0)
        self.param_k = Parameter('k', default_value=0.1)
        self.counts = {name: sp.Symbol(name, real=True) for name in ('A', 'B', 'C')}

    def test_simple_unimolecular_reaction(self):
        """Test A -> B reaction."""
        reaction = MassActionReaction(
            name='conversion',
            reactants={self.species_a: 1},
            products={self.species_b: 1},
            rate=self.param_k
        )

        assert reaction.name == 'conversion'
        assert reaction.reactants == {self.species_a: 1}
        assert reaction.products == {self.species_b: 1}
        assert reaction.declared_parameters() == [self.param_k]

        # Rate law should be k * [A]
        expected_rate_law = self.param_k.symbol * self.species_a.symbol
        assert reaction.rate_law.equals(expected_rate_law)

    def test_higher_order_reaction(self):
        """Test 2A + B -> C reaction."""
        reaction = MassActionReaction(
            name='higher_order',
            reactants={self.species_a: 2, self.species_b: 1},
            products={self.species_c: 1},
            rate=self.param_k
        )

        expected_rate_law = self.param_k.symbol * self.species_a.symbol**2 * self.species_b.symbol
        assert reaction.rate_law.equals(expected_rate_law)

        combinatoric = reaction.rate_law_for(True)
        assert sp.simplify(combinatoric - expected_rate_law / 2) == 0

    def test_propensity_uses_falling_factorial(self):
        """Propensity of 2A + B -> C counts distinct substrate combinations."""
        reaction = MassActionReaction('higher_order', {self.species_a: 2, self.species_b: 1},
                                      {self.species_c: 1}, self.param_k)
        a, b = self.counts['A'], self.counts['B']
        k = self.param_k.symbol

        plain = reaction.propensity_for(self.counts, combinatoric=False)
        assert sp.expand(plain - k * a * (a - 1) * b) == 0

        scaled = reaction.propensity_for(self.counts, combinatoric=True)
        assert sp.expand(scaled - k * a * (a - 1) * b / 2) == 0

    def test_birth_reaction(self):
        """Test 0 -> A (birth) reaction."""
        reaction = MassActionReaction('birth', reactants={}, products={self.species_a: 1}, rate=self.param_k)

        # Rate law should be just k (zero-order kinetics)
        assert reaction.rate_law.equals(self.param_k.symbol)
        assert reaction.net_stoichiometry() == {self.species_a: 1}

    def test_autocatalytic_reaction(self):
        """Test A -> 2A (autocatalytic) reaction."""
        reaction = MassActionReaction('autocatalysis', {self.species_a: 1}, {self.species_a: 2}, self.param_k)

        assert reaction.rate_law.equals(self.param_k.symbol * self.species_a.symbol)
        assert reaction.net_stoichiometry() == {self.species_a: 1}

    def test_catalyst_has_no_net_change(self):
        reaction = MassActionReaction('cat', {self.species_a: 1, self.species_b: 1},
                                      {self.species_a: 1, self.species_c: 1}, self.param_k)
        assert reaction.net_stoichiometry() == {self.species_b: -1, self.species_c: 1}

    def test_expression_rate_is_multiplied_by_substrates(self):
        """A rate expression depending on a species is still multiplied by the substrates."""
        rate = self.param_k * self.species_b.symbol
        reaction = MassActionReaction('activated', {self.species_a: 1}, {}, rate)
        expected = self.param_k.symbol * self.species_b.symbol * self.species_a.symbol
        assert sp.expand(reaction.rate_law - expected) == 0

        propensity = reaction.propensity_for(self.counts, combinatoric=False)
        assert sp.expand(propensity - self.param_k.symbol * self.counts['A'] * self.counts['B']) == 0

    def test_reaction_repr(self):
        """Test string representation of reaction."""
        reaction = MassActionReaction(
            name='test_reaction',
            reactants={self.species_a: 2, self.species_b: 1},
            products={self.species_c: 1},
            rate=self.param_k
        )

        repr_str = repr(reaction)
        assert 'test_reaction' in repr_str
        assert '2A + B -> C' in repr_str
        assert reaction.equation() == '2A + B -> C'

    def test_empty_sides_render_as_zero(self):
        reaction = MassActionReaction('decay', {self.species_a: 1}, {}, self.param_k)
        assert reaction.equation() == 'A -> 0'


class TestRateLawReaction:
    """Test cases for RateLawReaction."""

    def test_rate_used_verbatim(self):
        X = Species('X')
        v, K = sp.symbols('v K')
        reaction = RateLawReaction('saturating', {X: 1}, {}, mm(X.symbol, v, K))

        assert reaction.only_use_rate
        assert sp.simplify(reaction.rate_law - v * X.symbol / (K + X.symbol)) == 0
        # The combinatoric convention does not touch verbatim rates
        assert reaction.rate_law_for(True) == reaction.rate_law

    def test_propensity_substitutes_counts(self):
        X = Species('X')
        k = Parameter('k')
        reaction = RateLawReaction('custom', {X: 2}, {}, k * X.symbol**2)
        x = sp.Symbol('X', real=True)
        assert sp.expand(reaction.propensity_for({'X': x}, False) - k.symbol * x**2) == 0


class TestLogisticGrowthReaction:
    """Test cases for LogisticGrowthReaction."""

    def setup_method(self):
        """Set up test fixtures."""
        self.population = Species('x', initial_condition=10.0)
        self.growth_rate = Parameter('r', default_value=0.5)
        self.carrying_capacity = Parameter('K', default_value=1000.0)

    def test_logistic_reaction_creation(self):
        """Test creation of logistic growth reaction."""
        reaction = LogisticGrowthReaction('growth', self.population, self.growth_rate, self.carrying_capacity)

        assert reaction.name == 'growth'
        assert reaction.reactants == {self.population: 1}
        assert reaction.products == {self.population: 2}
        assert reaction.only_use_rate
        assert reaction.declared_parameters() == [self.growth_rate, self.carrying_capacity]

    def test_logistic_rate_law(self):
        """Test the logistic growth rate law r*x*(1 - x/K)."""
        reaction = LogisticGrowthReaction('growth', self.population, self.growth_rate, self.carrying_capacity)

        x = self.population.symbol
        r = self.growth_rate.symbol
        K = self.carrying_capacity.symbol
        expected = r * x * (1 - x / K)
        assert sp.simplify(reaction.rate_law - expected) == 0

    def test_logistic_numeric_parameters(self):
        """Numbers may be given instead of parameters."""
        reaction = LogisticGrowthReaction('growth', self.population, 0.5, 100)
        x = self.population.symbol
        assert sp.simplify(reaction.rate_law - sp.Rational(1, 2) * x * (1 - x / 100)) == 0
        assert reaction.declared_parameters() == []


class TestRateFunctions:
    """Hill and Michaelis-Menten helpers."""

    def setup_method(self):
        self.X = sp.Symbol('X', positive=True)
        self.v, self.K = sp.symbols('v K', positive=True)

    def test_michaelis_menten(self):
        assert sp.simplify(mm(self.X, self.v, self.K) - self.v * self.X / (self.K + self.X)) == 0
        assert sp.simplify(mmr(self.X, self.v, self.K) - self.v * self.K / (self.K + self.X)) == 0

    def test_hill(self):
        n = 3
        expected = self.v * self.X**n / (self.K**n + self.X**n)
        assert sp.simplify(hill(self.X, self.v, self.K, n) - expected) == 0
        expected_r = self.v * self.K**n / (self.K**n + self.X**n)
        assert sp.simplify(hillr(self.X, self.v, self.K, n) - expected_r) == 0

    def test_half_maximum_at_K(self):
        for func in (hill, hillr):
            value = func(2.0, 4.0, 2.0, 2)
            assert float(value) == pytest.approx(2.0)
        assert float(mm(3.0, 1.0, 3.0)) == pytest.approx(0.5)

    def test_accepts_model_objects(self):
        X = Species('X')
        v, K = Parameter('v'), Parameter('K')
        expr = hill(X, v, K, 2)
        assert expr.has(X.symbol)
        assert expr.has(v.symbol)
