"""
Library-wide defaults.

The values here are only used when a caller does not pass the corresponding
option explicitly. They can be set from the environment (``PYCRN_ODE_METHOD``,
``PYCRN_USE_NUMBA`` and so on) or at runtime with :func:`configure`.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Optional

logger = logging.getLogger(__name__)

_ENV_PREFIX = "PYCRN_"
_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class SimulationSettings:
    """
    Default options for the simulation engines.

    Attributes:
        ode_method (str): Integration method passed to ``solve_ivp``.
        rtol (float): Relative tolerance for ODE integration.
        atol (float): Absolute tolerance for ODE integration.
        n_eval_points (int): Number of output points when no save grid is given.
        sde_dt (float): Fixed Euler-Maruyama step size.
        jump_aggregator (str): Default jump engine ('direct', 'direct_dg' or 'nrm').
        use_numba (bool): Use the compiled direct method where it applies.
        ensemble_parallel (str): 'threads', 'processes' or 'serial'.
        ensemble_workers (int, optional): Pool size; None lets the executor decide.
        max_events (int, optional): Hard cap on jump firings per run.
    """

    ode_method: str = "LSODA"
    rtol: float = 1e-6
    atol: float = 1e-9
    n_eval_points: int = 1000
    sde_dt: float = 1e-2
    jump_aggregator: str = "direct_dg"
    use_numba: bool = False
    ensemble_parallel: str = "threads"
    ensemble_workers: Optional[int] = None
    max_events: Optional[int] = None

    @classmethod
    def from_env(cls, environ=None) -> "SimulationSettings":
        """Build settings from ``PYCRN_*`` environment variables."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(_ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            overrides[f.name] = _coerce(f.name, raw, f.default)
        return cls(**overrides)


def _coerce(name: str, raw: str, default):
    raw = raw.strip()
    if isinstance(default, bool):
        lowered = raw.lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValueError(f"Cannot interpret {_ENV_PREFIX}{name.upper()}={raw!r} as a boolean")
    if default is None:
        # Optional integer settings
        return None if raw.lower() in ("", "none") else int(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


_settings = SimulationSettings.from_env()


def get_settings() -> SimulationSettings:
    """Return the active settings."""
    return _settings


def configure(**overrides) -> SimulationSettings:
    """
    Replace selected defaults.

    Args:
        **overrides: Field names of :class:`SimulationSettings` and their new values.

    Returns:
        SimulationSettings: The settings now in effect.
    """
    global _settings
    valid = {f.name for f in fields(SimulationSettings)}
    unknown = set(overrides) - valid
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
    _settings = replace(_settings, **overrides)
    logger.debug("Settings updated: %s", overrides)
    return _settings


def reset_settings() -> SimulationSettings:
    """Restore the defaults read from the environment."""
    global _settings
    _settings = SimulationSettings.from_env()
    return _settings


def configure_logging(level=logging.INFO, fmt: str = "%(asctime)s %(name)s %(levelname)s: %(message)s"):
    """
    Attach a stream handler to the package logger.

    Libraries should not configure logging on import; applications and
    notebooks call this once to see simulation progress.
    """
    package_logger = logging.getLogger("pycrn")
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt))
    package_logger.handlers = [h for h in package_logger.handlers if not isinstance(h, logging.StreamHandler)]
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    return package_logger
