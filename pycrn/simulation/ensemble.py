"""
Ensembles of independent simulations.

Every trajectory gets its own random stream spawned from one
``numpy.random.SeedSequence``, so an ensemble is reproducible from a single
seed whatever the execution order. Trajectories run on a thread pool, a
process pool or serially, and are only aggregated once all of them have
completed. Problems sent to worker processes are pickled without their
lambdified functions, which each worker regenerates on first use.
"""

import concurrent.futures
import dataclasses
import logging
import time
from typing import Callable, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..config import configure, get_settings
from ..exceptions import SimulationTimeout
from .results import Trajectory

logger = logging.getLogger(__name__)

PARALLEL_MODES = ('threads', 'processes', 'serial')


# Module-level so that process pools can pickle them
def _solve_member(problem, prob_func, output_func, i, seed, timeout, solve_kwargs):
    problem = prob_func(problem, i) if prob_func else problem
    sol = problem.solve(seed=seed, timeout=timeout, **solve_kwargs)
    return output_func(sol, i) if output_func else sol


def _install_settings(settings):
    """Process pool initializer: workers start from the parent's settings."""
    configure(**dataclasses.asdict(settings))


class EnsembleProblem:
    """
    Many runs of one problem.

    Args:
        problem: An ODE, SDE or jump problem.
        prob_func (Callable, optional): ``prob_func(problem, i) -> problem`` to
            vary the problem per trajectory (e.g. via ``problem.remake``).
        output_func (Callable, optional): ``output_func(solution, i)`` reduces
            each solution before it is stored.

    With ``parallel='processes'`` the problem, ``prob_func`` and
    ``output_func`` are pickled, so the functions must be defined at module
    level.

    Example:
        >>> ensemble = EnsembleProblem(JumpProblem(network, {"X": 0}, (0.0, 50.0)))
        >>> sol = ensemble.solve(trajectories=100, seed=1, saveat=1.0)
        >>> sol.mean()
    """

    def __init__(self, problem, prob_func: Optional[Callable] = None, output_func: Optional[Callable] = None):
        self.problem = problem
        self.prob_func = prob_func
        self.output_func = output_func

    def _run_one(self, i: int, seed, timeout: Optional[float], solve_kwargs):
        return _solve_member(self.problem, self.prob_func, self.output_func, i, seed, timeout, solve_kwargs)

    def solve(self, trajectories: int, seed=None, parallel: Optional[str] = None,
              n_workers: Optional[int] = None, timeout: Optional[float] = None,
              **solve_kwargs) -> "EnsembleSolution":
        """
        Run ``trajectories`` independent simulations.

        Args:
            trajectories (int): Number of runs.
            seed: Root seed for the per-run streams.
            parallel (str, optional): 'threads', 'processes' or 'serial'; defaults to
                the configured mode.
            n_workers (int, optional): Pool size.
            timeout (float, optional): Wall-clock budget for the whole ensemble in seconds.
            **solve_kwargs: Passed to each ``problem.solve`` call.

        Raises:
            SimulationTimeout: The budget ran out; unfinished runs are cancelled.
        """
        if trajectories < 1:
            raise ValueError("trajectories must be at least 1")
        settings = get_settings()
        parallel = parallel or settings.ensemble_parallel
        n_workers = n_workers or settings.ensemble_workers
        seeds = np.random.SeedSequence(seed).spawn(trajectories)
        start = time.perf_counter()
        deadline = None if timeout is None else start + timeout
        logger.info("Running ensemble of %d trajectories (%s)", trajectories, parallel)

        if parallel == 'serial':
            results = []
            for i in range(trajectories):
                remaining = None if deadline is None else deadline - time.perf_counter()
                if remaining is not None and remaining <= 0:
                    raise SimulationTimeout(f"Ensemble timed out after {i} of {trajectories} trajectories")
                results.append(self._run_one(i, seeds[i], remaining, solve_kwargs))
        elif parallel == 'threads':
            executor = concurrent.futures.ThreadPoolExecutor(max_workers=n_workers)
            results = self._solve_pooled(executor, trajectories, seeds, deadline, solve_kwargs)
        elif parallel == 'processes':
            executor = concurrent.futures.ProcessPoolExecutor(
                max_workers=n_workers, initializer=_install_settings, initargs=(settings,)
            )
            results = self._solve_pooled(executor, trajectories, seeds, deadline, solve_kwargs)
        else:
            raise ValueError(f"parallel must be one of {PARALLEL_MODES}, got {parallel!r}")

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("Ensemble finished in %.2f ms", elapsed_ms)
        return EnsembleSolution(results, stats={'trajectories': trajectories, 'parallel': parallel,
                                                'elapsed_ms': elapsed_ms})

    def _solve_pooled(self, executor, trajectories, seeds, deadline, solve_kwargs):
        timeout = None if deadline is None else max(deadline - time.perf_counter(), 0.0)
        try:
            futures = [
                executor.submit(_solve_member, self.problem, self.prob_func, self.output_func,
                                i, seeds[i], timeout, solve_kwargs)
                for i in range(trajectories)
            ]
            done, pending = concurrent.futures.wait(
                futures, timeout=timeout, return_when=concurrent.futures.FIRST_EXCEPTION
            )
            for future in done:
                if future.exception() is not None:
                    raise future.exception()
            if pending:
                raise SimulationTimeout(
                    f"Ensemble timed out with {len(pending)} of {trajectories} trajectories unfinished"
                )
            return [future.result() for future in futures]
        finally:
            executor.shutdown(wait=False, cancel_futures=True)


class EnsembleSolution:
    """
    Completed ensemble.

    Aggregates (mean, variance, quantiles) are computed over trajectories at
    common times. When all trajectories share their output times those are
    used; otherwise pass ``times`` and each trajectory is resampled with its
    own interpolation (piecewise constant for jump processes).
    """

    def __init__(self, trajectories: List, stats=None):
        self.trajectories = list(trajectories)
        self.stats = dict(stats or {})

    def __len__(self):
        return len(self.trajectories)

    def __getitem__(self, i):
        return self.trajectories[i]

    def __iter__(self):
        return iter(self.trajectories)

    @property
    def u(self):
        return self.trajectories

    @property
    def species_names(self) -> List[str]:
        return self._trajectories()[0].species_names

    def _trajectories(self) -> List[Trajectory]:
        if not all(isinstance(tr, Trajectory) for tr in self.trajectories):
            raise TypeError("Aggregation needs Trajectory outputs; the output_func returned something else")
        return self.trajectories

    def common_times(self) -> np.ndarray:
        trajs = self._trajectories()
        first = trajs[0].t
        if all(tr.t.shape == first.shape and np.array_equal(tr.t, first) for tr in trajs[1:]):
            return first
        raise ValueError("Trajectories have different output times; pass `times` explicitly")

    def values(self, times: Optional[Sequence[float]] = None) -> np.ndarray:
        """Stacked states, shape (n_trajectories, n_species, n_times)."""
        trajs = self._trajectories()
        if times is None:
            times = self.common_times()
            return np.stack([tr.y for tr in trajs]).astype(float)
        return np.stack([tr.sample(times).y for tr in trajs]).astype(float)

    def _times(self, times):
        return self.common_times() if times is None else np.asarray(times, dtype=float)

    def mean(self, times=None) -> np.ndarray:
        """Ensemble mean, shape (n_species, n_times)."""
        return self.values(times).mean(axis=0)

    def var(self, times=None) -> np.ndarray:
        """Ensemble sample variance, shape (n_species, n_times)."""
        values = self.values(times)
        return values.var(axis=0, ddof=1 if values.shape[0] > 1 else 0)

    def quantile(self, q, times=None) -> np.ndarray:
        return np.quantile(self.values(times), q, axis=0)

    def mean_trajectory(self, times=None) -> Trajectory:
        first = self._trajectories()[0]
        return Trajectory(self._times(times), self.mean(times), first.species_names, first.parameters,
                          kind=first.kind, interpolation='linear', stats={'ensemble_mean': True})

    def summary(self, times=None, quantiles=(0.05, 0.5, 0.95)) -> pd.DataFrame:
        """Long table with one row per (time, species) and columns mean, variance and the quantiles."""
        t = self._times(times)
        values = self.values(times)
        mean = values.mean(axis=0)
        var = values.var(axis=0, ddof=1 if values.shape[0] > 1 else 0)
        qs = np.quantile(values, quantiles, axis=0)
        frames = []
        for i, name in enumerate(self.species_names):
            frame = pd.DataFrame({'time': t, 'species': name, 'mean': mean[i], 'variance': var[i]})
            for k, q in enumerate(quantiles):
                frame[f"q{q:g}"] = qs[k, i]
            frames.append(frame)
        return pd.concat(frames, ignore_index=True)

    def to_dataframe(self) -> pd.DataFrame:
        """All trajectories pooled, with a ``trajectory`` index column."""
        frames = []
        for i, tr in enumerate(self._trajectories()):
            df = tr.to_dataframe()
            df.insert(0, 'trajectory', i)
            frames.append(df)
        return pd.concat(frames, ignore_index=True)

    def __repr__(self) -> str:
        return f"EnsembleSolution(trajectories={len(self)})"
