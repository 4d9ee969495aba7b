"""
Tests for plotting utilities.

Figures are drawn on the Agg backend and never shown.
"""

import pytest
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.animation import FuncAnimation

from pycrn.core.dsl import parse_network
from pycrn.simulation.ensemble import EnsembleProblem
from pycrn.simulation.gillespie import GillespieSimulator, JumpProblem
from pycrn.simulation.ode import simulate_ode, parameter_sweep
from pycrn.spatial.lattice import LatticeReactionSystem, TransportReaction
from pycrn.visualization.plotting import (
    animate_spatial,
    plot_ensemble_summary,
    plot_gillespie_trace,
    plot_parameter_sensitivity,
    plot_phase_space,
    plot_statistical_comparison,
    plot_trajectory,
)


def lotka_volterra():
    return parse_network("""
        @species prey=10 predator=5
        @parameters a=1.0 b=0.1 c=0.075 d=1.5
        a, prey --> 2prey
        b, prey + predator --> predator
        c, prey + predator --> prey + 2predator
        d, predator --> 0
    """, name="lotka-volterra")


class TestTimeSeriesPlots:
    """Trajectory, trace and phase plots."""

    def setup_method(self):
        self.network = lotka_volterra()
        self.ode = simulate_ode(self.network, (0, 10), t_eval=np.linspace(0, 10, 50))

    def test_plot_trajectory(self, tmp_path):
        path = tmp_path / "trajectory.png"
        fig = plot_trajectory(self.ode, show=False, save_path=str(path))
        ax = fig.axes[0]
        assert len(ax.lines) == 2
        assert "Parameters: a=1" in ax.get_title()
        assert path.exists()

    def test_species_subset(self):
        fig = plot_trajectory(self.ode, species_subset=['prey'], title="Prey", show=False)
        assert len(fig.axes[0].lines) == 1
        assert fig.axes[0].get_title() == "Prey"
        with pytest.raises(ValueError, match="Species not found"):
            plot_trajectory(self.ode, species_subset=['wolf'], show=False)

    def test_jump_trajectory_labels(self):
        traj = JumpProblem(self.network, tspan=(0, 2)).solve(seed=0)
        fig = plot_trajectory(traj, show=False)
        assert fig.axes[0].get_ylabel() == "Number of Molecules"

    def test_gillespie_trace(self):
        simulator = GillespieSimulator(self.network, species_labels=['Prey', 'Predator'])
        simulator.run(2.0, seed=1)
        fig = simulator.plot_trace(show=False)
        legend = [t.get_text() for t in fig.axes[0].get_legend().get_texts()]
        assert legend == ['Prey', 'Predator']

    def test_gillespie_trace_direct(self):
        traj = JumpProblem(self.network, tspan=(0, 2)).solve(seed=0)
        fig = plot_gillespie_trace(traj, title="trace", show=False)
        assert fig.axes[0].get_title() == "trace"

    def test_phase_space(self):
        fig = plot_phase_space(self.ode, 'prey', 'predator', show=False)
        ax = fig.axes[0]
        assert ax.get_xlabel() == 'prey'
        assert len(ax.lines) == 3
        with pytest.raises(ValueError):
            plot_phase_space(self.ode, 'prey', 'wolf', show=False)


class TestComparisonPlots:
    """Statistical comparison and sensitivity plots."""

    def test_statistical_comparison(self):
        network = parse_network("@parameters p=10.0 d=1.0\np, 0 --> X\nd, X --> 0")
        ode = simulate_ode(network, (0, 50), t_eval=[0, 50])
        simulator = GillespieSimulator(network)
        simulator.run(200.0, seed=0)
        df, fig = plot_statistical_comparison(ode, simulator.get_stats(), show=False)

        assert list(df.columns) == ['Species', 'ODE_Final', 'Gillespie_Mean', 'Gillespie_Std']
        assert df['ODE_Final'][0] == pytest.approx(10.0, rel=1e-3)
        assert len(fig.axes) == 2

    def test_parameter_sensitivity(self):
        network = parse_network("@parameters p=10.0 d=1.0\np, 0 --> X\nd, X --> 0")
        results = parameter_sweep(network, 'd', [2.0, 1.0, 0.5], (0, 50), t_eval=[0, 50])
        fig = plot_parameter_sensitivity(results, 'd', 'X', show=False)
        x, y = fig.axes[0].lines[0].get_data()
        np.testing.assert_allclose(x, [0.5, 1.0, 2.0])
        np.testing.assert_allclose(y, [20.0, 10.0, 5.0], rtol=1e-3)
        with pytest.raises(ValueError):
            plot_parameter_sensitivity(results, 'd', 'X', metric='median', show=False)


class TestEnsembleAndSpatialPlots:
    """Ensemble bands and lattice animations."""

    def test_ensemble_summary(self):
        network = parse_network("@parameters p=10.0 d=1.0\np, 0 --> X\nd, X --> 0")
        sol = EnsembleProblem(JumpProblem(network, tspan=(0, 5))).solve(trajectories=10, seed=0, saveat=0.5)
        fig = plot_ensemble_summary(sol, show_trajectories=3, show=False)
        # One mean line plus three individual runs
        assert len(fig.axes[0].lines) == 4
        assert "10 trajectories" in fig.axes[0].get_title()

    def test_ensemble_summary_event_traces(self):
        network = parse_network("@parameters p=10.0 d=1.0\np, 0 --> X\nd, X --> 0")
        sol = EnsembleProblem(JumpProblem(network, tspan=(0, 5))).solve(trajectories=3, seed=0)
        with pytest.raises(ValueError):
            plot_ensemble_summary(sol, show=False)
        fig = plot_ensemble_summary(sol, times=np.linspace(0, 5, 11), show=False)
        assert len(fig.axes[0].lines) == 1

    def test_animate_spatial(self):
        network = parse_network("@species X=0\n@parameters D=1.0")
        lrs = LatticeReactionSystem(network, [TransportReaction('X', 'D')], (3, 3))
        u0 = np.zeros(9)
        u0[4] = 9.0
        sol = lrs.simulate_ode({'X': u0}, (0, 2), saveat=np.linspace(0, 2, 5))
        anim = animate_spatial(sol, 'X')
        assert isinstance(anim, FuncAnimation)
        anim._func(2)

    def test_animate_jump_trace_is_subsampled(self):
        network = parse_network("@species X=0\n@parameters D=1.0")
        lrs = LatticeReactionSystem(network, [TransportReaction('X', 'D')], (2, 2))
        sol = lrs.simulate_jumps({'X': 20}, (0, 5), seed=0)
        anim = animate_spatial(sol, 0, max_frames=10)
        assert isinstance(anim, FuncAnimation)
        plt.close(anim._fig)
