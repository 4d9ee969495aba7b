"""
Tests for steady-state analysis and bifurcation set-up.
"""

import pytest
import numpy as np
import sympy as sp

from pycrn.core.dsl import parse_network
from pycrn.exceptions import SolverError
from pycrn.analysis.steady_state import (
    BifurcationProblem,
    NonlinearProblem,
    bifurcation_problem,
    solve_steady_state,
    steady_state_equations,
)


def binding():
    return parse_network("""
        @species E=10 S=5 C=0
        @parameters kon=1.0 koff=1.0
        (kon, koff), E + S <--> C
    """, name="binding")


def birth_death():
    return parse_network("@parameters p=1.0 d=0.2\np, 0 --> X\nd, X --> 0", name="birth-death")


class TestSteadyStateEquations:
    """Symbolic steady-state systems."""

    def setup_method(self):
        self.network = binding()
        self.E, self.S, self.C = sp.symbols('E S C', real=True)

    def test_conservation_laws_replace_equations(self):
        eqs = steady_state_equations(self.network)
        assert len(eqs) == 3
        assert sp.simplify(eqs[0] - (self.E + self.C - 10)) == 0
        assert sp.simplify(eqs[1] - (self.S + self.C - 5)) == 0
        kon, koff = sp.symbols('kon koff')
        assert sp.simplify(eqs[2] - (kon * self.E * self.S - koff * self.C)) == 0

    def test_explicit_totals(self):
        eqs = steady_state_equations(self.network, totals=[3.0, 4.0])
        assert sp.simplify(eqs[0] - (self.E + self.C - 3)) == 0
        with pytest.raises(ValueError):
            steady_state_equations(self.network, totals=[1.0])

    def test_without_elimination(self):
        eqs = steady_state_equations(self.network, eliminate_conservation=False)
        assert eqs == self.network.to_ode_system().equations

    def test_parameter_substitution(self):
        eqs = steady_state_equations(self.network, p={'kon': 2.0})
        symbols = set().union(*(eq.free_symbols for eq in eqs))
        assert symbols == {self.E, self.S, self.C}


class TestSolveSteadyState:
    """Numerical steady states."""

    def test_birth_death(self):
        x = solve_steady_state(birth_death())
        np.testing.assert_allclose(x, [5.0])

    def test_binding_respects_conservation(self):
        problem = NonlinearProblem(binding())
        x = solve_steady_state(problem)

        c = (16 - np.sqrt(56)) / 2
        np.testing.assert_allclose(x, [10 - c, 5 - c, c], rtol=1e-6)
        np.testing.assert_allclose(problem.f(x), 0.0, atol=1e-8)

    def test_jacobian_matches_finite_differences(self):
        problem = NonlinearProblem(binding())
        u = np.array([3.0, 2.0, 1.0])
        J = problem.jac(u)
        eps = 1e-6
        numeric = np.column_stack([(problem.f(u + eps * e) - problem.f(u - eps * e)) / (2 * eps)
                                   for e in np.eye(3)])
        np.testing.assert_allclose(J, numeric, atol=1e-5)

    def test_remake_changes_parameters(self):
        problem = NonlinearProblem(birth_death())
        faster = problem.remake(p={'d': 0.5})
        np.testing.assert_allclose(solve_steady_state(faster), [2.0])
        np.testing.assert_allclose(solve_steady_state(problem), [5.0])

    def test_time_dependent_rates_rejected(self):
        network = parse_network("@parameters k=1.0\nk*exp(-t), 0 --> X\nk, X --> 0")
        with pytest.raises(ValueError, match="explicitly on time"):
            NonlinearProblem(network)

    def test_failure(self):
        network = parse_network("@parameters p=1.0\np, 0 --> X")
        with pytest.raises(SolverError, match="failed"):
            solve_steady_state(network)


class TestBifurcationProblem:
    """Continuation set-up."""

    def setup_method(self):
        self.network = birth_death()
        self.problem = bifurcation_problem(self.network, {'d': 0.2}, 'p', (1.0, 10.0), 'X')

    def test_setup(self):
        assert isinstance(self.problem, BifurcationProblem)
        np.testing.assert_array_equal(self.problem.u0, [1.0])
        assert self.problem.bif_idx == 0
        np.testing.assert_array_equal(self.problem.params, [1.0, 0.2])
        assert self.problem.record_from_solution(np.array([7.0]), self.problem.params) == 7.0

    def test_residual_and_jacobian(self):
        np.testing.assert_allclose(self.problem.F(self.problem.u0, self.problem.params), [0.8])
        np.testing.assert_allclose(self.problem.J(self.problem.u0, self.problem.params), [[-0.2]])

    def test_with_parameter(self):
        np.testing.assert_array_equal(self.problem.with_parameter(3.0), [3.0, 0.2])
        np.testing.assert_array_equal(self.problem.params, [1.0, 0.2])

    def test_sweep(self):
        df = self.problem.sweep(n_points=10)
        assert list(df.columns) == ['p', 'X', 'converged']
        assert df['converged'].all()
        np.testing.assert_allclose(df['X'], df['p'] / 0.2, rtol=1e-6)

    def test_unknown_names(self):
        with pytest.raises(KeyError):
            bifurcation_problem(self.network, {}, 'q', (0, 1), 'X')
        with pytest.raises(KeyError):
            bifurcation_problem(self.network, {}, 'p', (0, 1), 'Y')
