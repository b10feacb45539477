"""Discretized simulation domain."""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from odesim.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Machine epsilon for IEEE doubles (2**-53) times the radix
EPS_RADIX = 2 * 2.0**-53

# Guards ceil() against step counts like 20.000000000000004
_STEP_ROUNDING = 1e-12


@dataclass(frozen=True)
class Timespan:
    """Domain ``[start, end]`` divided into ``steps`` intervals.

    Parameters
    ----------
    start : float
        Lower domain limit
    end : float
        Upper domain limit, must be greater than start
    steps : int
        Number of intervals, at least 1
    step_length : float, optional
        Length of every interval but the last one. Defaults to
        ``(end - start) / steps``. When given, ``steps`` intervals of
        this length must cover the domain; the last interval is
        shortened to end exactly at ``end``.

    Examples
    --------
    >>> ts = Timespan(0.0, 1.0, 10)
    >>> ts.step_length
    0.1
    >>> ts.with_step_length(0.5, 0.025).steps
    20
    """

    start: float
    end: float
    steps: int
    step_length: Optional[float] = None

    def __post_init__(self):
        if self.start >= self.end:
            raise ConfigurationError(
                f"Timespan: start cannot be greater or equal to end. "
                f"got {self.start} >= {self.end}"
            )
        if self.steps < 1:
            raise ConfigurationError(
                f"Timespan: steps must be greater or equal to 1. "
                f"got {self.steps}"
            )
        span = self.end - self.start
        if self.step_length is None:
            dt = span / self.steps
            if dt == 0.0:
                raise ConfigurationError(
                    f"Timespan: step length underflows to zero for "
                    f"[{self.start}, {self.end}] in {self.steps} steps"
                )
            object.__setattr__(self, "step_length", dt)
        else:
            dt = self.step_length
            if dt <= 0:
                raise ConfigurationError(
                    f"Timespan: step length must be positive. got {dt}"
                )
            if self.steps * dt < span * (1 - _STEP_ROUNDING):
                raise ConfigurationError(
                    f"Timespan: {self.steps} steps of {dt} do not cover "
                    f"[{self.start}, {self.end}]"
                )
        if dt <= 2 * EPS_RADIX:
            logger.warning(
                "time step %e is smaller than eps*2, simulation may stagnate",
                dt,
            )

    @property
    def dt(self) -> float:
        """Alias of step_length."""
        return self.step_length

    @property
    def last_step_length(self) -> float:
        """Length of the final interval, at most ``step_length``."""
        return min(
            self.step_length,
            (self.end - self.start) - (self.steps - 1) * self.step_length,
        )

    def __len__(self):
        return self.steps

    def with_step_length(self, time: float, step_length: float) -> "Timespan":
        """Timespan from ``time`` to the same end with a new step length.

        Every interval has length ``step_length`` except the last one,
        which is shortened so the end is never overshot.
        """
        if step_length <= 0:
            raise ConfigurationError(
                f"Timespan: step length must be positive. got {step_length}"
            )
        n = (self.end - time) / step_length
        steps = max(math.ceil(n * (1 - _STEP_ROUNDING)), 1)
        return Timespan(time, self.end, steps, step_length)
