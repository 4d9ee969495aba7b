"""
Reaction networks on a lattice of compartments.

Every compartment (a node of a networkx graph) runs its own copy of the
local reactions; transport reactions move single molecules of a species
along the graph edges. Undirected graphs transport both ways, directed
graphs only along their edges. A shape tuple builds a Cartesian grid.
"""

import logging
import time
from numbers import Number
from typing import Dict, List, Optional, Sequence, Tuple, Union

import networkx as nx
import numpy as np
from scipy.integrate import solve_ivp

from ..config import get_settings
from ..core.models import Parameter, ReactionNetwork, Species
from ..exceptions import (
    InitialConditionError,
    NegativeRateError,
    NetworkConstructionError,
    SimulationError,
    SolverError,
)
from ..simulation.gillespie import _IndexedPriorityQueue
from ..simulation.ode import _check_deadline, _deadline, save_grid
from ..simulation.problem import resolve_parameters, resolve_tspan, validate_counts
from ..simulation.results import Trajectory

logger = logging.getLogger(__name__)


class TransportReaction:
    """
    Hopping of one species between adjacent compartments.

    Args:
        species (Species or str): The moving species.
        rate (Parameter, str or float): Per-molecule hopping rate along each edge.
    """

    def __init__(self, species: Union[Species, str], rate: Union[Parameter, str, float]):
        self.species_name = species.name if isinstance(species, Species) else str(species)
        if isinstance(rate, Parameter):
            rate = rate.name
        if isinstance(rate, bool) or not isinstance(rate, (str, Number)):
            raise NetworkConstructionError(f"Transport rate must be a parameter, name or number, got {rate!r}")
        if isinstance(rate, Number) and rate < 0:
            raise NetworkConstructionError(f"Transport rate must be non-negative, got {rate}")
        self.rate = rate

    def rate_value(self, parameters: Dict[str, float]) -> float:
        if isinstance(self.rate, str):
            return parameters[self.rate]
        return float(self.rate)

    def __repr__(self) -> str:
        return f"TransportReaction({self.species_name}, rate={self.rate})"


def make_lattice(lattice) -> Tuple[nx.Graph, Optional[Tuple[int, ...]]]:
    """Graph and grid shape for a networkx graph or a 1-D/2-D shape tuple."""
    if isinstance(lattice, nx.Graph):
        return lattice, None
    shape = tuple(int(n) for n in np.atleast_1d(lattice))
    if any(n < 1 for n in shape):
        raise ValueError(f"Grid dimensions must be positive, got {shape}")
    if len(shape) == 1:
        return nx.path_graph(shape[0]), shape
    if len(shape) == 2:
        return nx.grid_2d_graph(*shape), shape
    raise ValueError(f"Only 1-D and 2-D grids can be built from a shape, got {shape}")


class LatticeReactionSystem:
    """
    A reaction network replicated over the compartments of a graph.

    Args:
        network (ReactionNetwork): Local reactions.
        transport_reactions (List[TransportReaction]): Species movement between neighbours.
        lattice (nx.Graph, nx.DiGraph or tuple): Compartment graph, or a grid shape.

    Example:
        >>> lrs = LatticeReactionSystem(network, [TransportReaction("X", "D")], (10, 10))
        >>> sol = lrs.simulate_ode({"X": 1.0}, (0.0, 5.0), p={"D": 0.1})
    """

    def __init__(self, network: ReactionNetwork, transport_reactions: Sequence[TransportReaction], lattice):
        self.network = network
        self.transport_reactions = list(transport_reactions)
        self.graph, self.shape = make_lattice(lattice)
        self.compartments = list(self.graph.nodes)
        if not self.compartments:
            raise NetworkConstructionError("The lattice has no compartments")
        index = {node: i for i, node in enumerate(self.compartments)}

        for tr in self.transport_reactions:
            if tr.species_name not in network.species:
                raise NetworkConstructionError(
                    f"Transported species '{tr.species_name}' is not a species of '{network.name}'"
                )
            if isinstance(tr.rate, str) and tr.rate not in network.parameters:
                raise NetworkConstructionError(
                    f"Transport rate '{tr.rate}' is not a parameter of '{network.name}'"
                )

        # Directed edge list; undirected graphs transport both ways
        edges = [(index[a], index[b]) for a, b in self.graph.edges]
        if not self.graph.is_directed():
            edges += [(b, a) for a, b in edges]
        self.sources = np.array([a for a, _ in edges], dtype=np.int64)
        self.destinations = np.array([b for _, b in edges], dtype=np.int64)
        self.neighbours = [[] for _ in self.compartments]
        for a, b in edges:
            self.neighbours[a].append(b)
        self.neighbours = [np.array(n, dtype=np.int64) for n in self.neighbours]
        self.out_degree = np.array([n.shape[0] for n in self.neighbours], dtype=float)
        logger.debug("Lattice for '%s': %d compartments, %d directed edges",
                     network.name, len(self.compartments), len(edges))

    @property
    def num_compartments(self) -> int:
        return len(self.compartments)

    @property
    def species_names(self) -> List[str]:
        return self.network.species_names()

    def _transport_terms(self, p_vec: np.ndarray):
        """(species index, rate) of each transport reaction for a parameter vector."""
        params = dict(zip(self.network.parameter_names(), p_vec.tolist()))
        terms = []
        for tr in self.transport_reactions:
            rate = tr.rate_value(params)
            if rate < 0:
                raise NegativeRateError(f"Transport rate of '{tr.species_name}' is negative ({rate})")
            terms.append((self.network.species_index(tr.species_name), rate))
        return terms

    def initial_state(self, u0=None) -> np.ndarray:
        """
        Initial values, shape (n_species, n_compartments).

        Each species takes a scalar (same value everywhere) or one value per
        compartment (flat, or shaped like the grid).
        """
        n_comp = self.num_compartments
        given = {(k.name if isinstance(k, Species) else k): v for k, v in (u0 or {}).items()}
        unknown = set(given) - set(self.network.species)
        if unknown:
            raise InitialConditionError(f"Unknown species in initial conditions: {', '.join(sorted(unknown))}")
        U = np.zeros((len(self.network.species), n_comp))
        for i, (name, s) in enumerate(self.network.species.items()):
            value = np.asarray(given.get(name, s.initial_condition), dtype=float)
            if value.ndim == 0:
                U[i] = float(value)
            elif value.size == n_comp:
                U[i] = value.reshape(n_comp)
            else:
                raise InitialConditionError(
                    f"Initial value of '{name}' has {value.size} entries for {n_comp} compartments"
                )
            if not np.all(np.isfinite(U[i])):
                raise InitialConditionError(f"Initial value of '{name}' is not finite")
        return U

    def simulate_ode(self, u0=None, tspan=(0.0, 10.0), p=None, saveat=None, method: Optional[str] = None,
                     rtol: Optional[float] = None, atol: Optional[float] = None, **solver_kwargs) -> "SpatialTrajectory":
        """Integrate the reaction-diffusion ODEs on the lattice."""
        settings = get_settings()
        method = method or settings.ode_method
        tspan = resolve_tspan(tspan)
        grid = save_grid(tspan, saveat)
        U0 = self.initial_state(u0)
        p_vec = resolve_parameters(self.network, p)
        local = self.network.to_ode_system().vectorized_rhs()
        transport = self._transport_terms(p_vec)
        src, dst = self.sources, self.destinations
        shape = U0.shape

        def fun(t, y):
            Y = y.reshape(shape)
            dY = local(t, Y, p_vec)
            for s, rate in transport:
                flux = rate * Y[s, src]
                np.add.at(dY[s], src, -flux)
                np.add.at(dY[s], dst, flux)
            return dY.ravel()

        start = time.perf_counter()
        sol = solve_ivp(fun, tspan, U0.ravel(), method=method, t_eval=grid,
                        rtol=settings.rtol if rtol is None else rtol,
                        atol=settings.atol if atol is None else atol, **solver_kwargs)
        if not sol.success:
            raise SolverError(f"Lattice ODE solver failed: {sol.message}")
        logger.info("Lattice ODE of '%s' on %d compartments finished in %.2f ms",
                    self.network.name, self.num_compartments, (time.perf_counter() - start) * 1000)
        u = sol.y.T.reshape(sol.t.shape[0], *shape)
        return SpatialTrajectory(sol.t, u, self.species_names, self.compartments, self.shape,
                                 kind='ode', parameters=dict(zip(self.network.parameter_names(), p_vec.tolist())))

    def simulate_jumps(self, u0=None, tspan=(0.0, 10.0), p=None, saveat=None, seed=None,
                       rounding: Optional[str] = None, max_events: Optional[int] = None,
                       timeout: Optional[float] = None) -> "SpatialTrajectory":
        """
        Simulate the lattice with the next-subvolume method.

        Each compartment holds the total propensity of its reactions and
        outgoing hops. A priority queue orders the compartments by their next
        event time; after an event only the compartments it touched are
        rescheduled.

        Args:
            saveat: None records every event; otherwise output times.
        """
        settings = get_settings()
        max_events = settings.max_events if max_events is None else max_events
        t0, t_end = resolve_tspan(tspan)
        grid = None if saveat is None else save_grid((t0, t_end), saveat)
        U0 = self.initial_state(u0)
        X = validate_counts(U0.ravel(), np.repeat(self.species_names, self.num_compartments),
                            rounding).reshape(U0.shape)
        p_vec = resolve_parameters(self.network, p)
        system = self.network.to_jump_system()
        if any(system.time_dependent()):
            raise SimulationError("Exact lattice jump simulation needs time-homogeneous propensities")
        funcs = system.propensity_functions()
        S = np.asarray(system.stoichiometry, dtype=np.int64)
        transport = self._transport_terms(p_vec)
        n_rxn, n_comp = len(funcs), self.num_compartments
        rng = np.random.default_rng(seed)
        deadline = _deadline(timeout)

        local = np.zeros((n_comp, n_rxn))
        hops = np.zeros((n_comp, len(transport)))

        def refresh(c):
            x = X[:, c]
            for j in range(n_rxn):
                a = funcs[j](t, x, p_vec)
                if not a >= 0:
                    raise NegativeRateError(
                        f"Propensity of reaction '{system.reaction_names[j]}' is {a} in compartment "
                        f"{self.compartments[c]} at t={t}"
                    )
                local[c, j] = a
            for k, (s, rate) in enumerate(transport):
                hops[c, k] = rate * x[s] * self.out_degree[c]
            return local[c].sum() + hops[c].sum()

        def draw(total):
            return t + rng.exponential(1.0 / total) if total > 0 else np.inf

        t = t0
        totals = np.array([refresh(c) for c in range(n_comp)])
        queue = _IndexedPriorityQueue([draw(a) for a in totals])
        times, states = [], []
        save_i = 0

        def record_until(upto, inclusive):
            nonlocal save_i
            while save_i < grid.shape[0] and (grid[save_i] < upto or (inclusive and grid[save_i] == upto)):
                times.append(grid[save_i])
                states.append(X.copy())
                save_i += 1

        if grid is None:
            times.append(t0)
            states.append(X.copy())
        start = time.perf_counter()
        n_events = 0
        while True:
            c, t_next = queue.top()
            if not t_next < t_end:
                break
            if grid is not None:
                record_until(t_next, inclusive=False)
            t = t_next
            r = rng.random() * totals[c]
            a_local = local[c]
            if not transport or r < a_local.sum():
                j = min(int(np.searchsorted(np.cumsum(a_local), r, side='right')), n_rxn - 1)
                X[:, c] += S[:, j]
                touched = [c]
            else:
                k = min(int(np.searchsorted(np.cumsum(hops[c]), r - a_local.sum(), side='right')),
                        len(transport) - 1)
                s = transport[k][0]
                dest = int(self.neighbours[c][rng.integers(self.neighbours[c].shape[0])])
                X[s, c] -= 1
                X[s, dest] += 1
                touched = [c, dest] if dest != c else [c]
            for comp in touched:
                totals[comp] = refresh(comp)
                queue.update(comp, draw(totals[comp]))
            n_events += 1
            if max_events is not None and n_events > max_events:
                raise SimulationError(f"Lattice jump simulation exceeded max_events={max_events}")
            if n_events % 256 == 0:
                _check_deadline(deadline)
            if grid is None:
                times.append(t)
                states.append(X.copy())

        if grid is None:
            times.append(t_end)
            states.append(X.copy())
        else:
            record_until(t_end, inclusive=True)
        logger.info("Next-subvolume run of '%s' on %d compartments finished in %.2f ms with %d events",
                    self.network.name, n_comp, (time.perf_counter() - start) * 1000, n_events)
        return SpatialTrajectory(np.array(times), np.array(states), self.species_names, self.compartments,
                                 self.shape, kind='jump',
                                 parameters=dict(zip(self.network.parameter_names(), p_vec.tolist())),
                                 stats={'events': n_events})

    def __repr__(self) -> str:
        return (f"LatticeReactionSystem('{self.network.name}', compartments={self.num_compartments}, "
                f"transport={[tr.species_name for tr in self.transport_reactions]})")


class SpatialTrajectory:
    """
    Lattice simulation output.

    Attributes:
        t (np.ndarray): Times, shape (n_times,).
        u (np.ndarray): Values, shape (n_times, n_species, n_compartments).
        compartments (list): Graph nodes in column order.
        shape (tuple, optional): Grid shape when the lattice was built from one.
    """

    def __init__(self, t, u, species_names: List[str], compartments: list, shape=None,
                 kind: str = 'ode', parameters=None, stats=None):
        self.t = np.asarray(t, dtype=float)
        self.u = np.asarray(u)
        self.species_names = list(species_names)
        self.compartments = list(compartments)
        self.shape = shape
        self.kind = kind
        self.parameters = dict(parameters or {})
        self.stats = dict(stats or {})

    def __len__(self) -> int:
        return self.t.shape[0]

    def _species_index(self, species) -> int:
        if isinstance(species, (int, np.integer)):
            return int(species)
        try:
            return self.species_names.index(species)
        except ValueError:
            raise KeyError(f"Species '{species}' not in trajectory") from None

    def species(self, species) -> np.ndarray:
        """Values of one species, shape (n_times, n_compartments)."""
        return self.u[:, self._species_index(species), :]

    def grid(self, species, index: int = -1) -> np.ndarray:
        """Values of one species at one saved time, arranged like the grid."""
        if self.shape is None:
            raise ValueError("The lattice was not built from a grid shape")
        return self.u[index, self._species_index(species), :].reshape(self.shape)

    def species_totals(self) -> Trajectory:
        """Sum over compartments as an ordinary trajectory."""
        return Trajectory(self.t, self.u.sum(axis=2).T, self.species_names, self.parameters, kind=self.kind,
                          interpolation='step' if self.kind == 'jump' else 'linear', stats=self.stats)

    def compartment(self, node) -> Trajectory:
        """Trajectory of a single compartment."""
        c = self.compartments.index(node)
        return Trajectory(self.t, self.u[:, :, c].T, self.species_names, self.parameters, kind=self.kind,
                          interpolation='step' if self.kind == 'jump' else 'linear')

    def __repr__(self) -> str:
        return (f"SpatialTrajectory(kind='{self.kind}', species={self.species_names}, "
                f"compartments={len(self.compartments)}, points={len(self)})")
