"""
Binding a network to numbers.

A problem couples a reaction network with initial values, parameter values
and a time span. Values are given as mappings from names (or the species and
parameter objects themselves) to numbers; anything not given falls back to
the defaults stored on the network.
"""

import copy
import logging
from numbers import Number
from typing import Dict, Mapping, Optional, Tuple, Union

import numpy as np

from ..core.models import ReactionNetwork, Species, Parameter
from ..exceptions import InitialConditionError

logger = logging.getLogger(__name__)

ValueMap = Optional[Mapping[Union[str, Species, Parameter], float]]

ROUNDING_POLICIES = {
    'round': np.rint,
    'floor': np.floor,
    'ceil': np.ceil,
}


def _key_name(key) -> str:
    if isinstance(key, (Species, Parameter)):
        return key.name
    if isinstance(key, str):
        return key
    raise TypeError(f"Keys must be names, Species or Parameters, got {key!r}")


def resolve_initial_state(network: ReactionNetwork, u0: ValueMap = None) -> np.ndarray:
    """
    Initial state vector ordered like ``network.species``.

    Raises:
        InitialConditionError: Unknown species names or non-finite values.
    """
    given = {_key_name(k): v for k, v in (u0 or {}).items()}
    unknown = set(given) - set(network.species)
    if unknown:
        raise InitialConditionError(
            f"Unknown species in initial conditions: {', '.join(sorted(unknown))}"
        )
    values = []
    for name, s in network.species.items():
        value = given.get(name, s.initial_condition)
        if value is None or not isinstance(value, (Number, np.number)) or not np.isfinite(value):
            raise InitialConditionError(f"Initial value of species '{name}' is invalid: {value!r}")
        values.append(float(value))
    return np.array(values, dtype=float)


def resolve_parameters(network: ReactionNetwork, p: ValueMap = None) -> np.ndarray:
    """
    Parameter vector ordered like ``network.parameters``.

    Raises:
        InitialConditionError: Unknown names or a parameter without value and default.
    """
    given = {_key_name(k): v for k, v in (p or {}).items()}
    unknown = set(given) - set(network.parameters)
    if unknown:
        raise InitialConditionError(f"Unknown parameters: {', '.join(sorted(unknown))}")
    values = []
    missing = []
    for name, param in network.parameters.items():
        value = given.get(name, param.default_value)
        if value is None:
            missing.append(name)
            continue
        if not isinstance(value, (Number, np.number)) or not np.isfinite(value):
            raise InitialConditionError(f"Value of parameter '{name}' is invalid: {value!r}")
        values.append(float(value))
    if missing:
        raise InitialConditionError(f"No value given for parameter(s): {', '.join(missing)}")
    return np.array(values, dtype=float)


def validate_counts(u0: np.ndarray, species_names, rounding: Optional[str] = None) -> np.ndarray:
    """
    Convert an initial state to integer molecule counts.

    Fractional counts are rejected unless a rounding policy ('round',
    'floor' or 'ceil') is requested explicitly.

    Raises:
        InitialConditionError: Negative or (without a policy) fractional counts.
    """
    u0 = np.asarray(u0, dtype=float)
    if rounding is not None:
        if rounding not in ROUNDING_POLICIES:
            raise ValueError(f"rounding must be one of {sorted(ROUNDING_POLICIES)}, got {rounding!r}")
        rounded = ROUNDING_POLICIES[rounding](u0)
        if not np.array_equal(rounded, u0):
            logger.info("Initial counts rounded with policy '%s'", rounding)
        u0 = rounded
    fractional = [n for n, v in zip(species_names, u0) if v != np.floor(v)]
    if fractional:
        raise InitialConditionError(
            "Discrete simulation needs integer initial counts; fractional values for "
            f"{', '.join(fractional)} (pass rounding='round', 'floor' or 'ceil' to convert them)"
        )
    negative = [n for n, v in zip(species_names, u0) if v < 0]
    if negative:
        raise InitialConditionError(f"Negative initial counts for {', '.join(negative)}")
    return u0.astype(np.int64)


def resolve_tspan(tspan) -> Tuple[float, float]:
    if isinstance(tspan, (Number, np.number)):
        tspan = (0.0, tspan)
    t0, t_end = (float(x) for x in tspan)
    if not t_end > t0:
        raise ValueError(f"Time span must be increasing, got ({t0}, {t_end})")
    return t0, t_end


class Problem:
    """
    A network with bound initial state, parameters and time span.

    Args:
        network (ReactionNetwork): The model.
        u0 (Mapping, optional): Initial values by species; defaults come from the species.
        tspan (tuple or float): (t0, t_end), or just t_end starting from 0.
        p (Mapping, optional): Parameter values; defaults come from the parameters.
    """

    kind = None

    def __init__(self, network: ReactionNetwork, u0: ValueMap = None, tspan=(0.0, 10.0), p: ValueMap = None):
        self.network = network
        self.u0_map = dict(u0 or {})
        self.p_map = dict(p or {})
        self.u0 = resolve_initial_state(network, self.u0_map)
        self.p = resolve_parameters(network, self.p_map)
        self.tspan = resolve_tspan(tspan)

    @property
    def species_names(self):
        return self.network.species_names()

    @property
    def parameter_names(self):
        return self.network.parameter_names()

    def parameter_dict(self) -> Dict[str, float]:
        return dict(zip(self.parameter_names, self.p.tolist()))

    def remake(self, u0: ValueMap = None, tspan=None, p: ValueMap = None, **kwargs) -> "Problem":
        """
        Copy of the problem with some values replaced.

        New ``u0``/``p`` entries are merged over the existing ones.
        """
        new = copy.copy(self)
        new.u0_map = {**self.u0_map, **dict(u0 or {})}
        new.p_map = {**self.p_map, **dict(p or {})}
        new.u0 = resolve_initial_state(self.network, new.u0_map)
        new.p = resolve_parameters(self.network, new.p_map)
        if tspan is not None:
            new.tspan = resolve_tspan(tspan)
        for key, value in kwargs.items():
            if not hasattr(new, key):
                raise AttributeError(f"{type(self).__name__} has no option '{key}'")
            setattr(new, key, value)
        return new

    def solve(self, **kwargs):
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}('{self.network.name}', tspan={self.tspan})"
