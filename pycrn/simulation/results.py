"""
Simulation results.

Every engine returns a :class:`Trajectory`: an ordered sequence of
(time, state) pairs with the species names attached. When a callback fires,
the state right before and right after it are both stored at the trigger
time, so times may repeat.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd


class Trajectory:
    """
    Time series of species values.

    Args:
        t (np.ndarray): Times, non-decreasing, shape (n_times,).
        y (np.ndarray): Values, shape (n_species, n_times).
        species_names (List[str]): Row labels of ``y``.
        parameters (Dict[str, float], optional): Parameter values at the start of the run.
        kind (str): 'ode', 'sde' or 'jump'.
        interpolation (str): 'linear' or 'step' (piecewise constant, for jump processes).
        stats (Dict, optional): Engine statistics (steps, events, timings).
    """

    def __init__(self, t, y, species_names: List[str], parameters: Optional[Dict[str, float]] = None,
                 kind: str = 'ode', interpolation: str = 'linear', stats: Optional[Dict] = None):
        self.t = np.asarray(t, dtype=float)
        self.y = np.asarray(y)
        if self.y.ndim == 1:
            self.y = self.y.reshape(len(species_names), -1)
        if self.y.shape != (len(species_names), self.t.shape[0]):
            raise ValueError(
                f"State array has shape {self.y.shape}, expected {(len(species_names), self.t.shape[0])}"
            )
        if interpolation not in ('linear', 'step'):
            raise ValueError("interpolation must be 'linear' or 'step'")
        self.species_names = list(species_names)
        self.parameters = dict(parameters or {})
        self.kind = kind
        self.interpolation = interpolation
        self.stats = dict(stats or {})

    def __len__(self) -> int:
        return self.t.shape[0]

    def __getitem__(self, name: str) -> np.ndarray:
        """Time series of one species."""
        try:
            return self.y[self.species_names.index(name)]
        except ValueError:
            raise KeyError(f"Species '{name}' not in trajectory") from None

    @property
    def u(self) -> List[np.ndarray]:
        """States as a list of vectors, one per saved time."""
        return [self.y[:, i] for i in range(len(self))]

    def final(self) -> np.ndarray:
        return self.y[:, -1].copy()

    def at(self, time: float) -> np.ndarray:
        """
        State at ``time``.

        At a time that is stored more than once (a callback fired there) the
        last stored state, i.e. the one after the callback, is returned.
        """
        if time < self.t[0] or time > self.t[-1]:
            raise ValueError(f"Time {time} is outside the trajectory span [{self.t[0]}, {self.t[-1]}]")
        idx = np.searchsorted(self.t, time, side='right') - 1
        if self.interpolation == 'step' or self.t[idx] == time or idx == len(self) - 1:
            return self.y[:, idx].copy()
        t0, t1 = self.t[idx], self.t[idx + 1]
        w = (time - t0) / (t1 - t0)
        return (1 - w) * self.y[:, idx] + w * self.y[:, idx + 1]

    def before(self, time: float) -> np.ndarray:
        """State stored first at ``time`` (before any callback fired there)."""
        matches = np.flatnonzero(self.t == time)
        if matches.size == 0:
            raise KeyError(f"Time {time} is not a saved time")
        return self.y[:, matches[0]].copy()

    def sample(self, times: Sequence[float]) -> "Trajectory":
        """Resample onto new times using the trajectory's interpolation."""
        times = np.asarray(times, dtype=float)
        y = np.column_stack([self.at(s) for s in times]) if times.size else np.zeros((len(self.species_names), 0))
        return Trajectory(times, y, self.species_names, self.parameters, self.kind, self.interpolation, self.stats)

    def to_dataframe(self) -> pd.DataFrame:
        """Long-form table with a ``time`` column and one column per species."""
        df = pd.DataFrame(self.y.T, columns=self.species_names)
        df.insert(0, 'time', self.t)
        return df

    def __repr__(self) -> str:
        return (f"Trajectory(kind='{self.kind}', species={self.species_names}, "
                f"points={len(self)}, t=[{self.t[0] if len(self) else None}, "
                f"{self.t[-1] if len(self) else None}])")


class _Recorder:
    """Collects (time, state) pairs during a run."""

    def __init__(self):
        self.times: List[float] = []
        self.states: List[np.ndarray] = []

    def record(self, time: float, state):
        self.times.append(float(time))
        self.states.append(np.array(state, copy=True))

    def holds(self, time: float, state) -> bool:
        """True when the last record is exactly (time, state)."""
        return bool(self.times) and self.times[-1] == time and np.array_equal(self.states[-1], state)

    def extend(self, times, states_by_column):
        for i, time in enumerate(times):
            self.record(time, states_by_column[:, i])

    def as_arrays(self, n_species: int, dtype=float):
        if not self.times:
            return np.zeros(0), np.zeros((n_species, 0), dtype=dtype)
        return np.asarray(self.times), np.column_stack(self.states).astype(dtype)
