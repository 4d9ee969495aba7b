"""
Scheduled interventions.

A callback pairs a trigger with an ``affect(integrator)`` function that may
change species values or parameters in place::

    def add_ten(integrator):
        integrator["X"] += 10

    cb = PresetTimeCallback([5.0, 10.0], add_ten)

Every trigger fires exactly once. Engines store the state right before and
right after the intervention at the trigger time and then continue from the
modified state.
"""

from collections import defaultdict
from typing import Callable, Iterable, List, Sequence, Tuple

import numpy as np

from ..exceptions import SimulationError


class _ParameterView:
    def __init__(self, integrator):
        self._integrator = integrator

    def __getitem__(self, name: str) -> float:
        return float(self._integrator.p[self._integrator._param_index(name)])

    def __setitem__(self, name: str, value: float):
        self._integrator.p[self._integrator._param_index(name)] = value

    def __contains__(self, name: str) -> bool:
        return name in self._integrator.parameter_names


class Integrator:
    """
    Mutable view of a running simulation handed to callbacks.

    Attributes:
        t (float): Current time.
        u (np.ndarray): Current state, ordered like ``species_names``.
        p (np.ndarray): Current parameter values, ordered like ``parameter_names``.
        ps: Name-based access to parameters, ``integrator.ps["k"] = 2.0``.
    """

    def __init__(self, t: float, u: np.ndarray, p: np.ndarray,
                 species_names: List[str], parameter_names: List[str]):
        self.t = t
        self.u = u
        self.p = p
        self.species_names = species_names
        self.parameter_names = parameter_names
        self.ps = _ParameterView(self)
        self.terminated = False

    def _species_index(self, name: str) -> int:
        try:
            return self.species_names.index(name)
        except ValueError:
            raise KeyError(f"Species '{name}' not in the simulated network") from None

    def _param_index(self, name: str) -> int:
        try:
            return self.parameter_names.index(name)
        except ValueError:
            raise KeyError(f"Parameter '{name}' not in the simulated network") from None

    def __getitem__(self, name: str):
        return self.u[self._species_index(name)]

    def __setitem__(self, name: str, value):
        self.u[self._species_index(name)] = value

    def terminate(self):
        """Stop the run after this callback; the trajectory ends at the current time."""
        self.terminated = True


class PresetTimeCallback:
    """
    Fire ``affect`` at each of the given times.

    Args:
        times (Sequence[float]): Trigger times.
        affect (Callable): ``affect(integrator)``.
        save_positions (Tuple[bool, bool]): Store the state before / after the intervention.
    """

    def __init__(self, times: Sequence[float], affect: Callable, save_positions: Tuple[bool, bool] = (True, True)):
        self.times = sorted(float(x) for x in np.atleast_1d(times))
        self.affect = affect
        self.save_positions = tuple(save_positions)

    def __repr__(self) -> str:
        return f"PresetTimeCallback(times={self.times})"


class ContinuousCallback:
    """
    Fire ``affect`` when ``condition(u, t, integrator)`` crosses zero.

    Args:
        condition (Callable): Continuous function of the state whose roots are the triggers.
        affect (Callable): ``affect(integrator)``.
        direction (int): +1 for upward crossings only, -1 for downward, 0 for both.
        save_positions (Tuple[bool, bool]): Store the state before / after the intervention.
    """

    def __init__(self, condition: Callable, affect: Callable, direction: int = 0,
                 save_positions: Tuple[bool, bool] = (True, True)):
        if direction not in (-1, 0, 1):
            raise ValueError("direction must be -1, 0 or 1")
        self.condition = condition
        self.affect = affect
        self.direction = direction
        self.save_positions = tuple(save_positions)


class DiscreteCallback:
    """
    Check ``condition(u, t, integrator) -> bool`` after every step or firing
    and apply ``affect`` when it holds.
    """

    def __init__(self, condition: Callable, affect: Callable, save_positions: Tuple[bool, bool] = (True, True)):
        self.condition = condition
        self.affect = affect
        self.save_positions = tuple(save_positions)


def split_callbacks(callbacks: Iterable, supported: Tuple[type, ...], engine: str):
    """
    Sort callbacks by kind.

    Returns:
        tuple: (preset, continuous, discrete) lists.
    """
    preset, continuous, discrete = [], [], []
    for cb in callbacks or ():
        if not isinstance(cb, supported):
            raise TypeError(f"{type(cb).__name__} is not supported by the {engine} engine")
        if isinstance(cb, PresetTimeCallback):
            preset.append(cb)
        elif isinstance(cb, ContinuousCallback):
            continuous.append(cb)
        else:
            discrete.append(cb)
    return preset, continuous, discrete


def preset_schedule(preset: List[PresetTimeCallback], t0: float, t_end: float):
    """Sorted ``[(time, [callbacks...]), ...]`` of preset triggers inside [t0, t_end]."""
    schedule = defaultdict(list)
    for cb in preset:
        for time in cb.times:
            if t0 <= time <= t_end:
                schedule[time].append(cb)
    return sorted(schedule.items())


def apply_callbacks(callbacks, integrator: Integrator, recorder, integer_state: bool = False):
    """
    Apply several callbacks that trigger at the same instant.

    The pre-intervention state is recorded once if any callback asks for it,
    likewise the post-intervention state.
    """
    if any(cb.save_positions[0] for cb in callbacks) and not recorder.holds(integrator.t, integrator.u):
        recorder.record(integrator.t, integrator.u)
    for cb in callbacks:
        cb.affect(integrator)
    if integer_state and not np.all(np.equal(np.mod(integrator.u, 1), 0)):
        raise SimulationError(f"A callback at t={integrator.t} left a non-integer count in a jump simulation")
    if any(cb.save_positions[1] for cb in callbacks):
        recorder.record(integrator.t, integrator.u)
