"""
Chemical Langevin simulation.

Integrates dx = S v(x) dt + S diag(sqrt(v(x))) dW with the Euler-Maruyama
scheme on a fixed step. Steps are shortened to land exactly on output times
and preset callback times.
"""

import logging
import time
from typing import List, Optional

import numpy as np

from ..config import get_settings
from ..exceptions import NegativeRateError
from .callbacks import (
    DiscreteCallback,
    Integrator,
    PresetTimeCallback,
    apply_callbacks,
    preset_schedule,
    split_callbacks,
)
from .ode import _check_deadline, _deadline, save_grid
from .problem import Problem
from .results import Trajectory, _Recorder

logger = logging.getLogger(__name__)


class SDEProblem(Problem):
    """
    Chemical Langevin problem.

    Each reaction contributes an independent Wiener process scaled by the
    square root of its rate, so the rates must stay non-negative along the
    path; a negative rate aborts the run with :class:`NegativeRateError`.
    """

    kind = 'sde'

    def __init__(self, network, u0=None, tspan=(0.0, 10.0), p=None):
        super().__init__(network, u0, tspan, p)
        self._system = None

    @property
    def system(self):
        if self._system is None:
            self._system = self.network.to_sde_system()
        return self._system

    def solve(self, saveat=None, dt: Optional[float] = None, callbacks: Optional[List] = None,
              seed=None, timeout: Optional[float] = None) -> Trajectory:
        """
        Simulate one sample path.

        Args:
            saveat: Output times (see :func:`pycrn.simulation.ode.save_grid`).
            dt (float, optional): Step size; defaults to the configured ``sde_dt``.
            callbacks (List, optional): Preset-time and discrete callbacks.
            seed: Anything ``numpy.random.default_rng`` accepts.
            timeout (float, optional): Wall-clock budget in seconds.

        Returns:
            Trajectory: The sample path at the output times.
        """
        dt = get_settings().sde_dt if dt is None else float(dt)
        if dt <= 0:
            raise ValueError("dt must be positive")
        t0, t_end = self.tspan
        grid = save_grid(self.tspan, saveat)
        preset, _, discrete = split_callbacks(callbacks, (PresetTimeCallback, DiscreteCallback), 'SDE')
        schedule = dict(preset_schedule(preset, t0, t_end))
        stops = sorted(set(grid.tolist()) | set(schedule) | {t_end})
        save_times = set(grid.tolist())

        S = np.asarray(self.system.stoichiometry, dtype=float)
        rates = self.system.rate_function()
        rng = np.random.default_rng(seed)
        integrator = Integrator(t0, self.u0.copy(), self.p.copy(), self.species_names, self.parameter_names)
        recorder = _Recorder()
        deadline = _deadline(timeout)
        n_steps = 0
        start = time.perf_counter()
        logger.info("Euler-Maruyama run of '%s' on [%g, %g] with dt=%g", self.network.name, t0, t_end, dt)

        for stop in stops:
            while integrator.t < stop and not integrator.terminated:
                remaining = stop - integrator.t
                # Absorb round-off so steps land on the stop instead of leaving a sliver
                h = remaining if remaining <= dt * (1 + 1e-9) else dt
                v = rates(integrator.t, integrator.u, integrator.p)
                bad = ~(v >= 0) | ~np.isfinite(v)
                if bad.any():
                    j = int(np.flatnonzero(bad)[0])
                    raise NegativeRateError(
                        f"Rate of reaction {j + 1} is {v[j]} at t={integrator.t}; "
                        "the Langevin noise term needs non-negative rates"
                    )
                dW = rng.standard_normal(v.shape[0]) * np.sqrt(h)
                integrator.u = integrator.u + S @ (v * h) + S @ (np.sqrt(v) * dW)
                integrator.t = stop if h == remaining else integrator.t + h
                n_steps += 1
                if n_steps % 256 == 0:
                    _check_deadline(deadline)
                fired = [cb for cb in discrete if cb.condition(integrator.u, integrator.t, integrator)]
                if fired:
                    apply_callbacks(fired, integrator, recorder)
            if integrator.terminated:
                break
            if stop in save_times:
                recorder.record(stop, integrator.u)
            if stop in schedule:
                apply_callbacks(schedule[stop], integrator, recorder)
                if integrator.terminated:
                    break

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("Euler-Maruyama run of '%s' finished in %.2f ms (%d steps)",
                    self.network.name, elapsed_ms, n_steps)
        t_out, y_out = recorder.as_arrays(len(self.species_names))
        return Trajectory(t_out, y_out, self.species_names, self.parameter_dict(), kind='sde',
                          interpolation='linear',
                          stats={'steps': n_steps, 'dt': dt, 'elapsed_ms': elapsed_ms,
                                 'terminated': integrator.terminated})


def simulate_sde(network, t_span, t_eval=None, dt: Optional[float] = None, u0=None, p=None,
                 callbacks=None, seed=None, **kwargs) -> Trajectory:
    """Simulate a ReactionNetwork as a chemical Langevin equation."""
    problem = SDEProblem(network, u0, t_span, p)
    return problem.solve(saveat=t_eval, dt=dt, callbacks=callbacks, seed=seed, **kwargs)
