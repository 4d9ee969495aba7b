"""
Exception hierarchy.

Construction errors subclass ValueError and simulation errors subclass
RuntimeError, so callers that only care about the broad category can keep
catching the builtin types.
"""


class CRNError(Exception):
    """Base class for all pycrn errors."""


class NetworkConstructionError(CRNError, ValueError):
    """A reaction network could not be assembled."""


class NameCollisionError(NetworkConstructionError):
    """Two entities claim the same name."""


class UnresolvedSymbolError(NetworkConstructionError):
    """A rate expression references a symbol that is neither a species, a parameter nor time."""


class DSLSyntaxError(NetworkConstructionError):
    """A line of network text could not be parsed."""

    def __init__(self, message: str, lineno: int = None, line: str = None):
        self.lineno = lineno
        self.line = line
        if lineno is not None:
            message = f"line {lineno}: {message}"
            if line:
                message += f"\n    {line.strip()}"
        super().__init__(message)


class InitialConditionError(CRNError, ValueError):
    """Initial values or parameter values are missing or invalid."""


class SimulationError(CRNError, RuntimeError):
    """A simulation aborted before reaching its time horizon."""


class NegativeRateError(SimulationError):
    """A propensity or diffusion argument evaluated to a negative number."""


class SolverError(SimulationError):
    """A numerical solver reported failure."""


class SimulationTimeout(SimulationError):
    """A run or an ensemble exceeded its wall-clock budget."""
