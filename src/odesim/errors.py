"""Exception hierarchy for the simulation engine.

All fatal conditions raised by odesim derive from SimulationError so
callers can catch every engine failure with a single except clause.
Each concrete class also derives from the closest builtin exception,
so code written against ValueError/KeyError/RuntimeError keeps working.
"""


class SimulationError(Exception):
    """Base class for all errors raised by odesim."""


class ConfigurationError(SimulationError, ValueError):
    """Malformed timespan, domain name, step count, solver or bounds.

    Raised before any numerical work begins.
    """


class ConsistencyError(SimulationError, ValueError):
    """Diff, Input and State symbol sets do not match."""


class SymbolError(SimulationError, KeyError):
    """A symbol was looked up in a namespace that does not hold it."""

    def __str__(self):
        # KeyError quotes its argument; keep the message readable
        return str(self.args[0]) if self.args else ""


class SolverError(SimulationError, RuntimeError):
    """Unrecoverable numerical failure during a run."""


class EventError(SimulationError, RuntimeError):
    """An event could not be applied to the running simulation."""


class SimulationStateError(SimulationError, RuntimeError):
    """Operation not allowed in the simulation's current run status."""
