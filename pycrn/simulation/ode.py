"""
ODE simulation utilities.

This module provides deterministic simulation of reaction networks using the
ordinary differential equation (ODE) solvers from SciPy. Integration runs in
segments between scheduled interventions; state-dependent interventions are
located with ``solve_ivp`` terminal events.
"""

import logging
import time
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.integrate import solve_ivp

from ..config import get_settings
from ..exceptions import SolverError, SimulationError, SimulationTimeout
from .callbacks import (
    ContinuousCallback,
    Integrator,
    PresetTimeCallback,
    apply_callbacks,
    preset_schedule,
    split_callbacks,
)
from .problem import Problem
from .results import Trajectory, _Recorder

logger = logging.getLogger(__name__)

# Methods that benefit from an analytic Jacobian
_IMPLICIT_METHODS = {'BDF', 'Radau', 'LSODA'}
_MAX_STALLED_EVENTS = 100


def save_grid(tspan: Tuple[float, float], saveat=None, n_points: Optional[int] = None) -> np.ndarray:
    """
    Output times for a run.

    Args:
        tspan: (t0, t_end).
        saveat: None for ``n_points`` evenly spaced times, a number for a fixed
            spacing, or an explicit sequence of times.
    """
    t0, t_end = tspan
    if saveat is None:
        n_points = n_points or get_settings().n_eval_points
        return np.linspace(t0, t_end, n_points)
    if np.isscalar(saveat):
        if saveat <= 0:
            raise ValueError("saveat spacing must be positive")
        grid = np.arange(t0, t_end, float(saveat))
        return np.append(grid, t_end) if grid[-1] < t_end else grid
    grid = np.unique(np.asarray(saveat, dtype=float))
    if grid.size and (grid[0] < t0 or grid[-1] > t_end):
        raise ValueError(f"saveat times must lie inside the time span {tspan}")
    return grid


def _deadline(timeout: Optional[float]) -> Optional[float]:
    return None if timeout is None else time.perf_counter() + timeout


def _check_deadline(deadline: Optional[float], what: str = "Simulation"):
    if deadline is not None and time.perf_counter() > deadline:
        raise SimulationTimeout(f"{what} exceeded its time budget")


class ODEProblem(Problem):
    """
    Deterministic reaction-rate problem.

    Example:
        >>> prob = ODEProblem(network, {"X": 0.0}, (0.0, 50.0), {"p": 1.0, "d": 0.2})
        >>> sol = prob.solve()
        >>> sol["X"][-1]
    """

    kind = 'ode'

    def __init__(self, network, u0=None, tspan=(0.0, 10.0), p=None):
        super().__init__(network, u0, tspan, p)
        self._system = None

    @property
    def system(self):
        if self._system is None:
            self._system = self.network.to_ode_system()
        return self._system

    def solve(self, saveat=None, method: Optional[str] = None, callbacks: Optional[List] = None,
              rtol: Optional[float] = None, atol: Optional[float] = None,
              timeout: Optional[float] = None, seed=None, **solver_kwargs) -> Trajectory:
        """
        Integrate the problem.

        Args:
            saveat: Output times (see :func:`save_grid`).
            method (str or OdeSolver): Any ``solve_ivp`` method. Defaults to the configured one.
            callbacks (List, optional): Preset-time and continuous callbacks.
            rtol, atol (float, optional): Tolerances; default to the configured ones.
            timeout (float, optional): Wall-clock budget in seconds.
            seed: Ignored; accepted so deterministic and stochastic problems share one interface.
            **solver_kwargs: Passed to ``solve_ivp`` (e.g. ``max_step``, ``first_step``).

        Returns:
            Trajectory: The solution at the output times, plus pre/post states at interventions.

        Raises:
            SolverError: The solver reported failure.
            SimulationTimeout: ``timeout`` was exceeded.
        """
        settings = get_settings()
        method = method or settings.ode_method
        rtol = settings.rtol if rtol is None else rtol
        atol = settings.atol if atol is None else atol
        t0, t_end = self.tspan
        grid = save_grid(self.tspan, saveat)
        preset, continuous, _ = split_callbacks(callbacks, (PresetTimeCallback, ContinuousCallback), 'ODE')
        schedule = preset_schedule(preset, t0, t_end)

        f = self.system.rhs()
        integrator = Integrator(t0, self.u0.copy(), self.p.copy(), self.species_names, self.parameter_names)
        deadline = _deadline(timeout)
        n_calls = [0]

        def fun(t, y):
            n_calls[0] += 1
            if n_calls[0] % 256 == 0:
                _check_deadline(deadline)
            return f(t, y, integrator.p)

        if getattr(method, '__name__', method) in _IMPLICIT_METHODS:
            J = self.system.jacobian()
            solver_kwargs.setdefault('jac', lambda t, y: J(t, y, integrator.p))

        recorder = _Recorder()
        save_i = 0
        sched_i = 0
        if grid.size and grid[0] == t0:
            recorder.record(t0, integrator.u)
            save_i = 1
        if schedule and schedule[0][0] == t0:
            apply_callbacks(schedule[0][1], integrator, recorder)
            sched_i = 1

        # Sign each continuous condition had on the far side of its last crossing
        post_signs: Dict[int, float] = {}
        stalled = 0
        n_segments = 0
        start = time.perf_counter()
        logger.info("Integrating '%s' with %s on [%g, %g]", self.network.name, method, t0, t_end)

        while integrator.t < t_end and not integrator.terminated:
            _check_deadline(deadline)
            t_cur = integrator.t
            next_stop = schedule[sched_i][0] if sched_i < len(schedule) else t_end
            upper = np.searchsorted(grid, next_stop, side='right')
            eval_points = grid[save_i:upper]
            eval_points = eval_points[eval_points > t_cur]
            saved_mask = np.ones(eval_points.size, dtype=bool)
            if eval_points.size == 0 or eval_points[-1] != next_stop:
                eval_points = np.append(eval_points, next_stop)
                saved_mask = np.append(saved_mask, False)

            events = [self._event(k, cb, integrator, t_cur, post_signs) for k, cb in enumerate(continuous)]
            start_signs = {
                k: np.sign(cb.condition(integrator.u, t_cur, integrator)) for k, cb in enumerate(continuous)
            }
            sol = solve_ivp(fun, (t_cur, next_stop), integrator.u, method=method, t_eval=eval_points,
                            events=events or None, rtol=rtol, atol=atol, **solver_kwargs)
            n_segments += 1
            if sol.status == -1:
                raise SolverError(f"ODE solver failed at t={sol.t[-1] if sol.t.size else t_cur}: {sol.message}")

            n_done = sol.t.size
            for i in range(n_done):
                if saved_mask[i]:
                    recorder.record(sol.t[i], sol.y[:, i])
            save_i += int(saved_mask[:n_done].sum())

            if sol.status == 1:
                fired = [k for k, te in enumerate(sol.t_events) if te.size]
                t_event = float(sol.t_events[fired[0]][-1])
                stalled = stalled + 1 if t_event <= t_cur else 0
                if stalled > _MAX_STALLED_EVENTS:
                    raise SimulationError(f"Continuous callbacks keep firing at t={t_event} without progress")
                integrator.t = t_event
                integrator.u = np.array(sol.y_events[fired[0]][-1], dtype=float)
                for k in fired:
                    post_signs[k] = -start_signs[k] if start_signs[k] != 0 else post_signs.get(k, 1.0)
                    if continuous[k].direction:
                        post_signs[k] = float(continuous[k].direction)
                apply_callbacks([continuous[k] for k in fired], integrator, recorder)
                continue

            integrator.t = next_stop
            integrator.u = np.array(sol.y[:, -1], dtype=float)
            post_signs.clear()
            if sched_i < len(schedule) and schedule[sched_i][0] == next_stop:
                apply_callbacks(schedule[sched_i][1], integrator, recorder)
                sched_i += 1

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("Integration of '%s' finished in %.2f ms (%d segments, %d RHS calls)",
                    self.network.name, elapsed_ms, n_segments, n_calls[0])
        t_out, y_out = recorder.as_arrays(len(self.species_names))
        return Trajectory(t_out, y_out, self.species_names, self.parameter_dict(), kind='ode',
                          interpolation='linear',
                          stats={'method': getattr(method, '__name__', method), 'segments': n_segments,
                                 'nfev': n_calls[0], 'elapsed_ms': elapsed_ms,
                                 'terminated': integrator.terminated})

    @staticmethod
    def _event(k, cb, integrator, t_start, post_signs):
        """Wrap a continuous condition as a terminal ``solve_ivp`` event."""
        carried = post_signs.get(k)

        def event(t, y):
            value = cb.condition(y, t, integrator)
            # A root sitting exactly on the segment start was already handled
            if carried is not None and t == t_start and value == 0:
                return carried * np.finfo(float).tiny
            return value

        event.terminal = True
        event.direction = cb.direction
        return event


def simulate_ode(network, t_span: Tuple[float, float], t_eval: Optional[np.ndarray] = None,
                 method: Optional[str] = None, u0=None, p=None, callbacks=None, **kwargs) -> Trajectory:
    """
    Simulate a ReactionNetwork using ODE integration.

    Args:
        network: The ReactionNetwork to simulate
        t_span (Tuple[float, float]): Time span as (t_start, t_end)
        t_eval (np.ndarray, optional): Specific time points to evaluate.
            If None, uses the configured number of evenly spaced points.
        method (str, optional): Integration method for solve_ivp. Default is 'LSODA'.
        u0, p (Mapping, optional): Initial values and parameter values overriding the defaults.
        callbacks (List, optional): Interventions (see :mod:`pycrn.simulation.callbacks`).
        **kwargs: Additional keyword arguments passed to :meth:`ODEProblem.solve`

    Returns:
        Trajectory: The solution.
    """
    problem = ODEProblem(network, u0, t_span, p)
    return problem.solve(saveat=t_eval, method=method, callbacks=callbacks, **kwargs)


def parameter_sweep(network, parameter_name: str, parameter_values: List[float],
                    t_span: Tuple[float, float], t_eval: Optional[np.ndarray] = None,
                    u0=None, p=None, **kwargs) -> Dict[float, Trajectory]:
    """
    Perform a parameter sweep for ODE simulations.

    Args:
        network: The ReactionNetwork to simulate
        parameter_name (str): Name of the parameter to sweep
        parameter_values (List[float]): Values to test for the parameter
        t_span (Tuple[float, float]): Time span for simulations
        t_eval (np.ndarray, optional): Time points for evaluation
        u0, p (Mapping, optional): Other values held fixed during the sweep.

    Returns:
        Dict[float, Trajectory]: Solution for each parameter value
    """
    if parameter_name not in network.parameters:
        raise ValueError(f"Parameter '{parameter_name}' not found in model")

    base = ODEProblem(network, u0, t_span, p)
    results = {}
    for value in parameter_values:
        results[value] = base.remake(p={parameter_name: value}).solve(saveat=t_eval, **kwargs)
    logger.info("Swept '%s' over %d values", parameter_name, len(results))
    return results
