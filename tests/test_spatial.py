"""
Tests for lattice (spatial) reaction systems.

This module tests:
- Lattice construction from shapes and graphs
- TransportReaction validation
- Reaction-diffusion ODEs
- The next-subvolume jump method
"""

import pytest
import numpy as np
import networkx as nx

from pycrn.core.dsl import parse_network
from pycrn.core.models import Parameter
from pycrn.exceptions import InitialConditionError, NetworkConstructionError, SimulationError
from pycrn.spatial.lattice import LatticeReactionSystem, SpatialTrajectory, TransportReaction, make_lattice


def diffusion_only():
    return parse_network("@species X=0\n@parameters D=1.0", name="diffusion")


def decay_diffusion():
    return parse_network("""
        @species X=0
        @parameters k=0.5 D=1.0
        k, X --> 0
    """, name="decay-diffusion")


class TestLatticeConstruction:
    """Building lattices and validating transport."""

    def test_shapes(self):
        graph, shape = make_lattice((4,))
        assert graph.number_of_nodes() == 4 and shape == (4,)
        graph, shape = make_lattice((2, 3))
        assert graph.number_of_nodes() == 6 and shape == (2, 3)

    def test_graph_is_used_as_given(self):
        ring = nx.cycle_graph(5)
        graph, shape = make_lattice(ring)
        assert graph is ring and shape is None

    def test_invalid_shapes(self):
        with pytest.raises(ValueError):
            make_lattice((2, 2, 2))
        with pytest.raises(ValueError):
            make_lattice((0,))

    def test_edges_both_ways_for_undirected(self):
        lrs = LatticeReactionSystem(diffusion_only(), [TransportReaction('X', 'D')], (3,))
        assert lrs.num_compartments == 3
        assert len(lrs.sources) == 4
        np.testing.assert_array_equal(lrs.out_degree, [1, 2, 1])

    def test_directed_graph(self):
        lrs = LatticeReactionSystem(diffusion_only(), [TransportReaction('X', 'D')], nx.DiGraph([(0, 1), (1, 2)]))
        np.testing.assert_array_equal(lrs.out_degree, [1, 1, 0])

    def test_unknown_species(self):
        with pytest.raises(NetworkConstructionError, match="not a species"):
            LatticeReactionSystem(diffusion_only(), [TransportReaction('Y', 'D')], (3,))

    def test_unknown_rate_parameter(self):
        with pytest.raises(NetworkConstructionError, match="not a parameter"):
            LatticeReactionSystem(diffusion_only(), [TransportReaction('X', 'E')], (3,))

    def test_transport_rate_types(self):
        assert TransportReaction('X', Parameter('D')).rate == 'D'
        assert TransportReaction('X', 0.5).rate_value({}) == 0.5
        with pytest.raises(NetworkConstructionError):
            TransportReaction('X', -1.0)
        with pytest.raises(NetworkConstructionError):
            TransportReaction('X', [1.0])

    def test_initial_state(self):
        lrs = LatticeReactionSystem(decay_diffusion(), [TransportReaction('X', 'D')], (2, 2))
        np.testing.assert_array_equal(lrs.initial_state({'X': 3.0}), [[3.0, 3.0, 3.0, 3.0]])
        U = lrs.initial_state({'X': np.array([[1.0, 2.0], [3.0, 4.0]])})
        np.testing.assert_array_equal(U, [[1.0, 2.0, 3.0, 4.0]])
        with pytest.raises(InitialConditionError):
            lrs.initial_state({'X': [1.0, 2.0]})
        with pytest.raises(InitialConditionError):
            lrs.initial_state({'Y': 1.0})


class TestLatticeODE:
    """Reaction-diffusion equations on a lattice."""

    def test_diffusion_conserves_mass_and_spreads(self):
        lrs = LatticeReactionSystem(diffusion_only(), [TransportReaction('X', 'D')], (5,))
        sol = lrs.simulate_ode({'X': [5.0, 0.0, 0.0, 0.0, 0.0]}, (0, 50), saveat=[0, 1, 50])

        assert isinstance(sol, SpatialTrajectory)
        assert sol.u.shape == (3, 1, 5)
        np.testing.assert_allclose(sol.u.sum(axis=2), 5.0, rtol=1e-6)
        np.testing.assert_allclose(sol.species('X')[-1], 1.0, rtol=1e-3)
        # After one time unit the neighbour has received mass
        assert sol.species('X')[1, 1] > 0

    def test_decay_of_total(self):
        lrs = LatticeReactionSystem(decay_diffusion(), [TransportReaction('X', 'D')], (3, 3))
        times = np.linspace(0, 4, 5)
        sol = lrs.simulate_ode({'X': 2.0}, (0, 4), saveat=times)
        totals = sol.species_totals()
        np.testing.assert_allclose(totals['X'], 18.0 * np.exp(-0.5 * times), rtol=1e-4)

    def test_directed_transport_accumulates(self):
        lrs = LatticeReactionSystem(diffusion_only(), [TransportReaction('X', 'D')], nx.DiGraph([(0, 1), (1, 2)]))
        sol = lrs.simulate_ode({'X': [1.0, 0.0, 0.0]}, (0, 40), saveat=[0, 40])
        np.testing.assert_allclose(sol.compartment(2)['X'][-1], 1.0, rtol=1e-4)

    def test_grid_view(self):
        lrs = LatticeReactionSystem(decay_diffusion(), [TransportReaction('X', 'D')], (2, 3))
        sol = lrs.simulate_ode({'X': 1.0}, (0, 1), saveat=[0, 1])
        assert sol.grid('X', 0).shape == (2, 3)
        np.testing.assert_allclose(sol.grid('X', 0), 1.0)

    def test_grid_view_needs_shape(self):
        lrs = LatticeReactionSystem(diffusion_only(), [TransportReaction('X', 'D')], nx.cycle_graph(4))
        sol = lrs.simulate_ode({'X': 1.0}, (0, 1), saveat=[0, 1])
        with pytest.raises(ValueError):
            sol.grid('X')


class TestLatticeJumps:
    """Next-subvolume simulation."""

    def setup_method(self):
        self.lrs = LatticeReactionSystem(diffusion_only(), [TransportReaction('X', 'D')], (4,))

    def test_molecules_are_conserved(self):
        sol = self.lrs.simulate_jumps({'X': [40, 0, 0, 0]}, (0, 20), seed=0)

        assert sol.kind == 'jump'
        assert sol.u.dtype == np.int64
        np.testing.assert_array_equal(sol.u.sum(axis=2), 40)
        assert np.all(sol.u >= 0)
        assert sol.stats['events'] > 0
        # Molecules have left the first compartment
        assert sol.species('X')[-1, 0] < 40

    def test_reproducible_with_seed(self):
        a = self.lrs.simulate_jumps({'X': [10, 0, 0, 0]}, (0, 5), saveat=1.0, seed=3)
        b = self.lrs.simulate_jumps({'X': [10, 0, 0, 0]}, (0, 5), saveat=1.0, seed=3)
        np.testing.assert_array_equal(a.u, b.u)
        np.testing.assert_allclose(a.t, [0, 1, 2, 3, 4, 5])

    def test_reactions_and_transport(self):
        lrs = LatticeReactionSystem(decay_diffusion(), [TransportReaction('X', 'D')], (2, 2))
        sol = lrs.simulate_jumps({'X': 25}, (0, 100), saveat=[0.0, 100.0], seed=1)
        np.testing.assert_array_equal(sol.species_totals()['X'], [100, 0])

    def test_fractional_counts(self):
        with pytest.raises(InitialConditionError):
            self.lrs.simulate_jumps({'X': 0.5}, (0, 1))
        sol = self.lrs.simulate_jumps({'X': 0.5}, (0, 1), rounding='ceil', saveat=[0.0], seed=0)
        np.testing.assert_array_equal(sol.u[0], [[1, 1, 1, 1]])

    def test_max_events(self):
        with pytest.raises(SimulationError, match="max_events"):
            self.lrs.simulate_jumps({'X': 100}, (0, 100), max_events=10, seed=0)
