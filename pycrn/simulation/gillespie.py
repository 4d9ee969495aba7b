"""
Gillespie simulation algorithm.

This module implements the Gillespie Stochastic Simulation Algorithm (SSA)
for modeling chemical reaction networks with discrete molecule counts.

Three exact aggregators are available:

- ``'direct'``: recompute every propensity after each firing.
- ``'direct_dg'``: direct method that only recomputes the propensities of
  reactions depending on the one that fired; the total is kept incrementally
  and re-summed periodically.
- ``'nrm'``: Gibson-Bruck next reaction method on an indexed priority queue.

Pure mass-action networks sampled on a fixed grid can also run on a
Numba-compiled direct method.
"""

import logging
import time
import warnings
from typing import List, Optional

import numpy as np
import pandas as pd
from numba import njit
from tabulate import tabulate

from ..config import get_settings
from ..exceptions import NegativeRateError, SimulationError
from .callbacks import (
    DiscreteCallback,
    Integrator,
    PresetTimeCallback,
    apply_callbacks,
    preset_schedule,
    split_callbacks,
)
from .ode import _check_deadline, _deadline, save_grid
from .problem import Problem, validate_counts
from .results import Trajectory, _Recorder

logger = logging.getLogger(__name__)

AGGREGATORS = ('direct', 'direct_dg', 'nrm')
_RESUM_INTERVAL = 1000


class _IndexedPriorityQueue:
    """
    Binary min-heap over a fixed set of keys ``0..n-1`` with in-place updates.

    ``pos[key]`` is the heap slot of ``key``, so changing the value of any key
    costs O(log n).
    """

    def __init__(self, values):
        self.values = np.array(values, dtype=float)
        n = self.values.shape[0]
        self.heap = list(range(n))
        self.pos = list(range(n))
        for i in reversed(range(n // 2)):
            self._sift_down(i)

    def __len__(self):
        return len(self.heap)

    def top(self):
        """(key, value) of the smallest entry."""
        if not self.heap:
            return -1, np.inf
        key = self.heap[0]
        return key, self.values[key]

    def update(self, key: int, value: float):
        old = self.values[key]
        self.values[key] = value
        if value < old:
            self._sift_up(self.pos[key])
        elif value > old:
            self._sift_down(self.pos[key])

    def _swap(self, i, j):
        heap = self.heap
        heap[i], heap[j] = heap[j], heap[i]
        self.pos[heap[i]] = i
        self.pos[heap[j]] = j

    def _sift_up(self, i):
        values, heap = self.values, self.heap
        while i > 0:
            parent = (i - 1) // 2
            if values[heap[i]] >= values[heap[parent]]:
                break
            self._swap(i, parent)
            i = parent

    def _sift_down(self, i):
        values, heap = self.values, self.heap
        n = len(heap)
        while True:
            left = 2 * i + 1
            smallest = i
            if left < n and values[heap[left]] < values[heap[smallest]]:
                smallest = left
            if left + 1 < n and values[heap[left + 1]] < values[heap[smallest]]:
                smallest = left + 1
            if smallest == i:
                return
            self._swap(i, smallest)
            i = smallest


class _Aggregator:
    """Propensity bookkeeping shared by the aggregators."""

    def __init__(self, propensity_funcs, dependents, reaction_names):
        self.funcs = propensity_funcs
        self.dependents = dependents
        self.reaction_names = reaction_names
        self.a = np.zeros(len(propensity_funcs))

    def _propensity(self, j, t, x, p) -> float:
        a = self.funcs[j](t, x, p)
        if not a >= 0:
            raise NegativeRateError(
                f"Propensity of reaction '{self.reaction_names[j]}' evaluated to {a} at t={t}"
            )
        return a

    def initialize(self, t, x, p, rng):
        self.a = np.array([self._propensity(j, t, x, p) for j in range(len(self.funcs))], dtype=float)

    def next_event(self, t, rng):
        """Absolute time and index of the next firing, ``(inf, -1)`` when nothing can fire."""
        raise NotImplementedError

    def update(self, j, t, x, p, rng):
        raise NotImplementedError

    @staticmethod
    def _select(a, r) -> int:
        j = int(np.searchsorted(np.cumsum(a), r, side='right'))
        if j >= a.shape[0]:
            # r landed past the last partial sum through round-off
            nonzero = np.flatnonzero(a)
            j = int(nonzero[-1]) if nonzero.size else a.shape[0] - 1
        return j


class _DirectAggregator(_Aggregator):

    def next_event(self, t, rng):
        a0 = self.a.sum()
        if a0 <= 0:
            return np.inf, -1
        tau = rng.exponential(1.0 / a0)
        return t + tau, self._select(self.a, rng.random() * a0)

    def update(self, j, t, x, p, rng):
        self.initialize(t, x, p, rng)


class _DependencyGraphAggregator(_Aggregator):

    def initialize(self, t, x, p, rng):
        super().initialize(t, x, p, rng)
        self.a0 = self.a.sum()
        self._since_resum = 0

    def next_event(self, t, rng):
        # The running total keeps a round-off residue once every propensity is zero
        if self.a0 <= 0 or not self.a.any():
            self.a0 = self.a.sum()
            if self.a0 <= 0:
                return np.inf, -1
        tau = rng.exponential(1.0 / self.a0)
        return t + tau, self._select(self.a, rng.random() * self.a0)

    def update(self, j, t, x, p, rng):
        for k in self.dependents[j]:
            new = self._propensity(k, t, x, p)
            self.a0 += new - self.a[k]
            self.a[k] = new
        self._since_resum += 1
        if self._since_resum >= _RESUM_INTERVAL:
            self.a0 = self.a.sum()
            self._since_resum = 0


class _NextReactionAggregator(_Aggregator):
    """Gibson-Bruck: one putative absolute firing time per reaction."""

    def initialize(self, t, x, p, rng):
        super().initialize(t, x, p, rng)
        times = [self._draw(t, a, rng) for a in self.a]
        self.queue = _IndexedPriorityQueue(times)

    @staticmethod
    def _draw(t, a, rng):
        return t + rng.exponential(1.0 / a) if a > 0 else np.inf

    def next_event(self, t, rng):
        j, t_next = self.queue.top()
        if not np.isfinite(t_next):
            return np.inf, -1
        return t_next, j

    def update(self, j, t, x, p, rng):
        times = self.queue.values
        for k in self.dependents[j]:
            if k == j:
                continue
            old, new = self.a[k], self._propensity(k, t, x, p)
            if old > 0 and new > 0:
                # Rescale the remaining waiting time
                self.queue.update(k, t + (old / new) * (times[k] - t))
            else:
                self.queue.update(k, self._draw(t, new, rng))
            self.a[k] = new
        self.a[j] = self._propensity(j, t, x, p)
        self.queue.update(j, self._draw(t, self.a[j], rng))


_AGGREGATOR_CLASSES = {
    'direct': _DirectAggregator,
    'direct_dg': _DependencyGraphAggregator,
    'nrm': _NextReactionAggregator,
}


@njit(cache=True)
def _direct_method_numba(x0, S, R, c, save_times, t0, max_events, seed):
    """
    Direct method for mass-action networks, compiled with Numba.

    Args:
        x0 (np.ndarray): Initial counts (int64).
        S (np.ndarray): Net stoichiometric matrix (n_species, n_reactions).
        R (np.ndarray): Substrate stoichiometries (n_species, n_reactions).
        c (np.ndarray): Rate constants; propensity j is c[j] times the falling
            factorials of its substrate counts.
        save_times (np.ndarray): Sorted output times.
        t0 (float): Start time.
        max_events (int): Firing limit; negative for none.
        seed (int): RNG seed.

    Returns:
        tuple: (states at save_times, number of firings, limit exceeded).
    """
    np.random.seed(seed)
    n_species, n_rxn = S.shape
    n_save = save_times.shape[0]
    out = np.zeros((n_species, n_save), dtype=np.int64)
    x = x0.copy()
    a = np.zeros(n_rxn)
    t = t0
    k = 0
    n_events = 0
    while k < n_save:
        a0 = 0.0
        for j in range(n_rxn):
            aj = c[j]
            for i in range(n_species):
                for m in range(R[i, j]):
                    aj *= x[i] - m
            a[j] = aj
            a0 += aj
        if a0 > 0.0:
            t_next = t - np.log(1.0 - np.random.random()) / a0
        else:
            t_next = np.inf
        while k < n_save and save_times[k] < t_next:
            out[:, k] = x
            k += 1
        if k >= n_save:
            break
        if max_events >= 0 and n_events >= max_events:
            return out, n_events, True
        r = np.random.random() * a0
        j = 0
        acc = a[0]
        while acc <= r and j < n_rxn - 1:
            j += 1
            acc += a[j]
        for i in range(n_species):
            x[i] += S[i, j]
        t = t_next
        n_events += 1
    return out, n_events, False


class JumpProblem(Problem):
    """
    Discrete stochastic problem on integer molecule counts.

    Args:
        network (ReactionNetwork): The model.
        u0, tspan, p: As for :class:`~pycrn.simulation.problem.Problem`.
        aggregator (str, optional): 'direct', 'direct_dg' or 'nrm'; defaults to the configured one.
        rounding (str, optional): Policy for fractional initial counts ('round', 'floor', 'ceil').
            Without it fractional counts raise :class:`InitialConditionError`.

    Raises:
        SimulationError: Some propensity depends explicitly on time.
    """

    kind = 'jump'

    def __init__(self, network, u0=None, tspan=(0.0, 10.0), p=None,
                 aggregator: Optional[str] = None, rounding: Optional[str] = None):
        super().__init__(network, u0, tspan, p)
        self.aggregator = aggregator or get_settings().jump_aggregator
        if self.aggregator not in AGGREGATORS:
            raise ValueError(f"Unknown aggregator '{self.aggregator}', expected one of {AGGREGATORS}")
        self.rounding = rounding
        self.counts = validate_counts(self.u0, self.species_names, rounding)
        self.system = network.to_jump_system()
        timed = [name for name, dep in zip(self.system.reaction_names, self.system.time_dependent()) if dep]
        if timed:
            raise SimulationError(
                f"Propensities of {', '.join(timed)} depend explicitly on time; "
                "exact jump aggregators need time-homogeneous propensities"
            )

    def remake(self, u0=None, tspan=None, p=None, **kwargs) -> "JumpProblem":
        new = super().remake(u0=u0, tspan=tspan, p=p, **kwargs)
        if new.aggregator not in AGGREGATORS:
            raise ValueError(f"Unknown aggregator '{new.aggregator}', expected one of {AGGREGATORS}")
        new.counts = validate_counts(new.u0, new.species_names, new.rounding)
        return new

    def numba_compatible(self, saveat, callbacks, timeout) -> bool:
        return saveat is not None and not callbacks and timeout is None and self.system.is_mass_action()

    def solve(self, saveat=None, seed=None, callbacks: Optional[List] = None,
              timeout: Optional[float] = None, max_events: Optional[int] = None,
              use_numba: Optional[bool] = None) -> Trajectory:
        """
        Simulate one realisation.

        Args:
            saveat: None records every firing (event trace); otherwise output
                times as for :func:`pycrn.simulation.ode.save_grid`.
            seed: Anything ``numpy.random.default_rng`` accepts.
            callbacks (List, optional): Preset-time and discrete callbacks.
            timeout (float, optional): Wall-clock budget in seconds.
            max_events (int, optional): Firing limit; defaults to the configured one.
            use_numba (bool, optional): Use the compiled direct method when the
                network and options allow it. Defaults to the configured value.

        Returns:
            Trajectory: Piecewise-constant counts ('step' interpolation).

        Raises:
            NegativeRateError: A propensity became negative.
            SimulationError: ``max_events`` was exceeded or a callback broke integrality.
            SimulationTimeout: ``timeout`` was exceeded.
        """
        settings = get_settings()
        use_numba = settings.use_numba if use_numba is None else use_numba
        max_events = settings.max_events if max_events is None else max_events
        rng = np.random.default_rng(seed)
        start = time.perf_counter()

        if use_numba and not self.numba_compatible(saveat, callbacks, timeout):
            warnings.warn(
                "The compiled direct method needs a mass-action network, a save grid, "
                "no callbacks and no timeout; falling back to the Python engine",
                RuntimeWarning,
            )
            use_numba = False

        if use_numba:
            t_out, y_out, n_events = self._solve_numba(saveat, rng, max_events)
            engine, aggregator, terminated = 'numba', 'direct', False
        else:
            t_out, y_out, n_events, terminated = self._solve_python(saveat, rng, callbacks, timeout, max_events)
            engine, aggregator = 'python', self.aggregator

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("Jump simulation of '%s' (%s, %s) finished in %.2f ms with %d firings",
                    self.network.name, engine, aggregator, elapsed_ms, n_events)
        return Trajectory(t_out, y_out, self.species_names, self.parameter_dict(), kind='jump',
                          interpolation='step',
                          stats={'events': n_events, 'aggregator': aggregator, 'engine': engine,
                                 'elapsed_ms': elapsed_ms, 'terminated': terminated})

    def _solve_numba(self, saveat, rng, max_events):
        grid = save_grid(self.tspan, saveat)
        c = self.system.rate_constants(self.p)
        if np.any(c < 0):
            raise NegativeRateError(f"Negative rate constants: {c[c < 0]}")
        out, n_events, exceeded = _direct_method_numba(
            self.counts.copy(),
            np.ascontiguousarray(self.system.stoichiometry, dtype=np.int64),
            np.ascontiguousarray(self.system.substrates, dtype=np.int64),
            c, grid, self.tspan[0],
            -1 if max_events is None else int(max_events),
            int(rng.integers(0, 2 ** 31 - 1)),
        )
        if exceeded:
            raise SimulationError(f"Jump simulation exceeded max_events={max_events}")
        return grid, out, n_events

    def _solve_python(self, saveat, rng, callbacks, timeout, max_events):
        t0, t_end = self.tspan
        grid = None if saveat is None else save_grid(self.tspan, saveat)
        preset, _, discrete = split_callbacks(callbacks, (PresetTimeCallback, DiscreteCallback), 'jump')
        schedule = preset_schedule(preset, t0, t_end)

        system = self.system
        S = np.asarray(system.stoichiometry, dtype=np.int64)
        aggregator = _AGGREGATOR_CLASSES[self.aggregator](
            system.propensity_functions(), system.dependents, system.reaction_names
        )
        x = self.counts.copy()
        p = self.p.copy()
        integrator = Integrator(t0, x.astype(float), p, self.species_names, self.parameter_names)
        recorder = _Recorder()
        deadline = _deadline(timeout)
        save_i = 0

        def flush(upto, inclusive):
            nonlocal save_i
            if grid is None:
                return
            while save_i < grid.shape[0] and (grid[save_i] < upto or (inclusive and grid[save_i] == upto)):
                recorder.record(grid[save_i], x)
                save_i += 1

        def intervene(cbs, t):
            nonlocal x
            integrator.t = t
            integrator.u = x.astype(float)
            apply_callbacks(cbs, integrator, recorder, integer_state=True)
            x = integrator.u.astype(np.int64)
            if np.any(x < 0):
                raise SimulationError(f"A callback at t={t} left a negative count")
            aggregator.initialize(t, x, integrator.p, rng)

        t = t0
        sched_i = 0
        if grid is None:
            recorder.record(t0, x)
        aggregator.initialize(t, x, integrator.p, rng)
        if schedule and schedule[0][0] == t0:
            flush(t0, inclusive=True)
            intervene(schedule[0][1], t0)
            sched_i = 1

        n_events = 0
        while not integrator.terminated:
            t_next, j = aggregator.next_event(t, rng)
            t_stop = schedule[sched_i][0] if sched_i < len(schedule) else t_end
            if t_next < t_stop:
                flush(t_next, inclusive=False)
                x += S[:, j]
                t = t_next
                n_events += 1
                if max_events is not None and n_events > max_events:
                    raise SimulationError(f"Jump simulation exceeded max_events={max_events}")
                if n_events % 256 == 0:
                    _check_deadline(deadline)
                if grid is None:
                    recorder.record(t, x)
                aggregator.update(j, t, x, integrator.p, rng)
                if discrete:
                    integrator.t, integrator.u = t, x.astype(float)
                    fired = [cb for cb in discrete if cb.condition(integrator.u, t, integrator)]
                    if fired:
                        intervene(fired, t)
                continue

            t = t_stop
            flush(t, inclusive=True)
            if sched_i < len(schedule) and schedule[sched_i][0] == t:
                intervene(schedule[sched_i][1], t)
                sched_i += 1
                continue
            # Nothing fires before the horizon; hold the last state
            if grid is None and not recorder.holds(t_end, x):
                recorder.record(t_end, x)
            break

        t_out, y_out = recorder.as_arrays(len(self.species_names), dtype=np.int64)
        return t_out, y_out, n_events, integrator.terminated


def simulate_jumps(network, t_span, saveat=None, u0=None, p=None, aggregator: Optional[str] = None,
                   rounding: Optional[str] = None, **kwargs) -> Trajectory:
    """Simulate a ReactionNetwork with an exact stochastic simulation algorithm."""
    problem = JumpProblem(network, u0, t_span, p, aggregator=aggregator, rounding=rounding)
    return problem.solve(saveat=saveat, **kwargs)


class GillespieSimulator:
    """
    A generic Gillespie simulator for stochastic chemical kinetics.

    Args:
        network (ReactionNetwork): The model to simulate.
        u0 (Mapping, optional): Initial counts overriding the species defaults.
        p (Mapping, optional): Parameter values overriding the defaults.
        aggregator (str, optional): 'direct', 'direct_dg' or 'nrm'.
        rounding (str, optional): Policy for fractional initial counts.
        species_labels (list[str], optional): Labels for each species for plotting and stats.
            Defaults to the species names.

    Attributes:
        X (np.ndarray): Trace of component counts for each recorded point.
        T (np.ndarray): Trace of the simulation time at each recorded point.
        tsteps (np.ndarray): Duration spent in each recorded state.
        trajectory (Trajectory): The most recent run.
    """

    def __init__(self, network, u0=None, p=None, aggregator=None, rounding=None, species_labels=None):
        self.problem = JumpProblem(network, u0, (0.0, 1.0), p, aggregator=aggregator, rounding=rounding)
        self.labels = species_labels if species_labels is not None else self.problem.species_names

        # Results attributes, initialized to None
        self.X = None
        self.T = None
        self.tsteps = None
        self.trajectory = None

    def run(self, t_end: float, saveat=None, seed=None, use_numba: Optional[bool] = None, **kwargs) -> Trajectory:
        """
        Run the Gillespie simulation from time 0 to ``t_end``.

        The results (X, T, tsteps) are stored as attributes of the instance.

        Args:
            t_end (float): Simulation horizon.
            saveat: None for the full event trace, otherwise output times.
            seed: RNG seed; pass an integer for reproducibility.
            use_numba (bool, optional): Whether to use the Numba-compiled engine.
            **kwargs: Passed to :meth:`JumpProblem.solve` (callbacks, timeout, max_events).
        """
        problem = self.problem.remake(tspan=(0.0, t_end))
        self.trajectory = problem.solve(saveat=saveat, seed=seed, use_numba=use_numba, **kwargs)
        self.X = self.trajectory.y
        self.T = self.trajectory.t
        self.tsteps = np.append(np.diff(self.T), 0.0)
        return self.trajectory

    def get_stats(self):
        """
        Calculate statistics for the most recent Gillespie simulation.

        Returns:
            pd.DataFrame: A DataFrame containing the time-weighted mean and
            variance for each species.
        """
        if self.X is None:
            raise RuntimeError("Simulation has not been run yet. Call .run() first.")

        total_time = self.tsteps.sum()
        if total_time <= 0:
            raise RuntimeError("Simulation covers no time; time-weighted statistics are undefined.")
        # Calculate time-weighted means
        tw_means = (self.X * self.tsteps).sum(axis=1) / total_time

        # Calculate time-weighted variances
        residuals = self.X - tw_means[:, np.newaxis]
        tw_vars = (self.tsteps * residuals**2).sum(axis=1) / total_time

        stats_df = pd.DataFrame(
            {
                "Component": self.labels,
                "Gillespie Mean": tw_means,
                "Gillespie Variance": tw_vars,
            }
        )
        return stats_df

    def plot_trace(self, title="Gillespie Simulation Trace", show=True):
        """Plot the time series trace for each species."""
        if self.T is None:
            raise RuntimeError("Simulation has not been run yet. Call .run() first.")
        from ..visualization.plotting import plot_gillespie_trace

        return plot_gillespie_trace(self.trajectory, title=title, labels=self.labels, show=show)


def run_gillespie_simulation(network, t_end: float, u0=None, p=None, saveat=None, seed=None,
                             aggregator: Optional[str] = None, use_numba: Optional[bool] = None,
                             plot: bool = False, **kwargs):
    """
    Run a Gillespie simulation of a ReactionNetwork.

    Args:
        network: The ReactionNetwork to simulate
        t_end (float): Simulation horizon
        u0, p (Mapping, optional): Initial counts and parameter values
        saveat: Output times, or None for the full event trace
        seed: Random seed for reproducibility
        aggregator (str, optional): Aggregator name
        use_numba (bool, optional): Whether to use Numba optimization
        plot (bool): Whether to plot the results

    Returns:
        dict: Results containing the simulator, trajectory and statistics
    """
    simulator = GillespieSimulator(network, u0=u0, p=p, aggregator=aggregator)

    logger.info("Running Gillespie simulation of '%s' up to t=%g...", network.name, t_end)
    start_time = time.perf_counter()
    trajectory = simulator.run(t_end, saveat=saveat, seed=seed, use_numba=use_numba, **kwargs)
    elapsed_ms = (time.perf_counter() - start_time) * 1000
    logger.info("Simulation completed in %.2f ms (%d firings)", elapsed_ms, trajectory.stats['events'])

    stats_df = simulator.get_stats()
    logger.info("Simulation statistics:\n%s", tabulate(stats_df, headers="keys", showindex=False, tablefmt="psql"))

    if plot:
        simulator.plot_trace(title=f"Gillespie Simulation: {network.name}")

    return {
        'simulator': simulator,
        'trajectory': trajectory,
        'stats_df': stats_df,
        'elapsed_ms': elapsed_ms,
    }
