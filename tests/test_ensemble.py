"""
Tests for ensembles of independent simulations.
"""

import pickle

import pytest
import numpy as np

from pycrn.core.dsl import parse_network
from pycrn.exceptions import SimulationTimeout
from pycrn.simulation.ensemble import EnsembleProblem, EnsembleSolution
from pycrn.simulation.gillespie import JumpProblem
from pycrn.simulation.ode import ODEProblem
from pycrn.simulation.results import Trajectory


def birth_death(p=10.0, d=1.0):
    return parse_network(f"""
        @parameters p={p} d={d}
        p, 0 --> X
        d, X --> 0
    """, name="birth-death")


# Process pools pickle these, so they live at module level
def scale_decay(problem, i):
    return problem.remake(p={'d': float(i + 1)})


def final_count(solution, i):
    return int(solution['X'][-1])


def fail_every_run(problem, i):
    raise RuntimeError(f"run {i} failed")


class TestEnsembleProblem:
    """Running and reproducing ensembles."""

    def setup_method(self):
        self.network = birth_death()
        self.jumps = JumpProblem(self.network, tspan=(0, 5))

    def test_mean_approaches_ode(self):
        """The mean of many jump runs follows the reaction-rate equation."""
        grid = np.linspace(0, 5, 6)
        sol = EnsembleProblem(self.jumps).solve(trajectories=100, seed=1, saveat=grid)

        assert len(sol) == 100
        expected = 10.0 * (1 - np.exp(-grid))
        np.testing.assert_allclose(sol.mean()[0], expected, atol=1.5)

    def test_reproducible_across_execution_modes(self):
        grid = [0.0, 2.5, 5.0]
        ensemble = EnsembleProblem(self.jumps)
        threaded = ensemble.solve(trajectories=8, seed=99, parallel='threads', n_workers=4, saveat=grid)
        serial = ensemble.solve(trajectories=8, seed=99, parallel='serial', saveat=grid)
        np.testing.assert_array_equal(threaded.values(), serial.values())

    def test_processes_match_serial(self):
        """Worker processes draw the same per-run streams as a serial loop."""
        grid = [0.0, 2.5, 5.0]
        ensemble = EnsembleProblem(self.jumps)
        pooled = ensemble.solve(trajectories=4, seed=99, parallel='processes', n_workers=2, saveat=grid)
        serial = ensemble.solve(trajectories=4, seed=99, parallel='serial', saveat=grid)

        assert pooled.stats['parallel'] == 'processes'
        np.testing.assert_array_equal(pooled.values(), serial.values())

    def test_processes_with_module_level_functions(self):
        ode = ODEProblem(self.network, tspan=(0, 50))
        sol = EnsembleProblem(ode, prob_func=scale_decay).solve(trajectories=3, parallel='processes',
                                                                n_workers=2, saveat=[50.0])
        np.testing.assert_allclose(sol.values()[:, 0, 0], [10.0, 5.0, 10.0 / 3], rtol=1e-4)

        counts = EnsembleProblem(self.jumps, output_func=final_count).solve(
            trajectories=3, seed=5, parallel='processes', n_workers=2, saveat=[5.0])
        assert all(isinstance(c, int) for c in counts)

    def test_problems_pickle_without_generated_functions(self):
        """Lambdified functions are dropped on pickling and regenerated on use."""
        ode = ODEProblem(self.network, tspan=(0, 5))
        before = ode.solve(saveat=[5.0])
        assert ode.system._rhs is not None

        restored = pickle.loads(pickle.dumps(ode))
        assert restored.system._rhs is None
        np.testing.assert_allclose(restored.solve(saveat=[5.0]).y, before.y)

        self.jumps.solve(seed=3, saveat=[5.0])
        jumps = pickle.loads(pickle.dumps(self.jumps))
        assert jumps.system._propensity_funcs is None
        np.testing.assert_array_equal(jumps.solve(seed=3, saveat=[5.0]).y,
                                      self.jumps.solve(seed=3, saveat=[5.0]).y)

    def test_runs_differ(self):
        sol = EnsembleProblem(self.jumps).solve(trajectories=5, seed=0, saveat=[5.0])
        finals = sol.values()[:, 0, 0]
        assert len(set(finals.tolist())) > 1

    def test_prob_func(self):
        """prob_func varies the problem per trajectory."""
        ode = ODEProblem(self.network, tspan=(0, 50))

        def vary_decay(problem, i):
            return problem.remake(p={'d': float(i + 1)})

        sol = EnsembleProblem(ode, prob_func=vary_decay).solve(trajectories=3, parallel='serial', saveat=[50.0])
        np.testing.assert_allclose(sol.values()[:, 0, 0], [10.0, 5.0, 10.0 / 3], rtol=1e-4)

    def test_output_func(self):
        sol = EnsembleProblem(
            self.jumps, output_func=lambda s, i: (i, int(s['X'][-1]))
        ).solve(trajectories=4, seed=0, saveat=[5.0])

        assert [entry[0] for entry in sol] == [0, 1, 2, 3]
        with pytest.raises(TypeError):
            sol.mean()

    def test_invalid_arguments(self):
        ensemble = EnsembleProblem(self.jumps)
        with pytest.raises(ValueError):
            ensemble.solve(trajectories=0)
        with pytest.raises(ValueError, match="parallel must be one of"):
            ensemble.solve(trajectories=2, parallel='greenlets')

    def test_errors_propagate(self):
        def broken(problem, i):
            raise RuntimeError(f"run {i} failed")

        with pytest.raises(RuntimeError, match="failed"):
            EnsembleProblem(self.jumps, prob_func=broken).solve(trajectories=3, seed=0)
        with pytest.raises(RuntimeError, match="failed"):
            EnsembleProblem(self.jumps, prob_func=fail_every_run).solve(trajectories=3, seed=0,
                                                                        parallel='processes', n_workers=2)

    @pytest.mark.parametrize("parallel", ['threads', 'processes', 'serial'])
    def test_timeout(self, parallel):
        slow = JumpProblem(birth_death(p=1e4, d=1e-4), tspan=(0, 1e6))
        with pytest.raises(SimulationTimeout):
            EnsembleProblem(slow).solve(trajectories=4, seed=0, parallel=parallel, timeout=0.05,
                                        saveat=[0.0, 1e6])


class TestEnsembleSolution:
    """Aggregation over completed trajectories."""

    def setup_method(self):
        t = np.array([0.0, 1.0, 2.0])
        self.solution = EnsembleSolution([
            Trajectory(t, np.array([[0.0, 1.0, 2.0], [5.0, 5.0, 5.0]]), ['A', 'B']),
            Trajectory(t, np.array([[2.0, 3.0, 4.0], [5.0, 5.0, 5.0]]), ['A', 'B']),
        ])

    def test_mean_and_variance(self):
        np.testing.assert_allclose(self.solution.mean(), [[1.0, 2.0, 3.0], [5.0, 5.0, 5.0]])
        np.testing.assert_allclose(self.solution.var(), [[2.0, 2.0, 2.0], [0.0, 0.0, 0.0]])

    def test_quantile(self):
        np.testing.assert_allclose(self.solution.quantile(0.5)[0], [1.0, 2.0, 3.0])

    def test_resampled_times(self):
        np.testing.assert_allclose(self.solution.mean(times=[0.5, 1.5])[0], [1.5, 2.5])

    def test_mismatched_times(self):
        other = EnsembleSolution([
            Trajectory([0.0, 1.0], np.zeros((1, 2)), ['A']),
            Trajectory([0.0, 2.0], np.zeros((1, 2)), ['A']),
        ])
        with pytest.raises(ValueError, match="different output times"):
            other.mean()
        np.testing.assert_allclose(other.mean(times=[0.0, 1.0]), [[0.0, 0.0]])

    def test_mean_trajectory(self):
        mean = self.solution.mean_trajectory()
        assert isinstance(mean, Trajectory)
        np.testing.assert_allclose(mean['A'], [1.0, 2.0, 3.0])

    def test_summary(self):
        df = self.solution.summary(quantiles=(0.1, 0.9))
        assert list(df.columns) == ['time', 'species', 'mean', 'variance', 'q0.1', 'q0.9']
        assert len(df) == 6
        row = df[(df['species'] == 'A') & (df['time'] == 1.0)].iloc[0]
        assert row['mean'] == pytest.approx(2.0)

    def test_to_dataframe(self):
        df = self.solution.to_dataframe()
        assert list(df.columns) == ['trajectory', 'time', 'A', 'B']
        assert len(df) == 6
