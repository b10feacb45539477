"""Ready-made Input functions driven by the domain coordinate.

Input functions are called by the Simulation after every domain step
with the new state and their result is stored in the state's U
vector. The classes here ignore the state values and only read
``state.time``, which makes them convenient for time-varying or
table look-up coefficients of non-autonomous systems.

Every signal can also be evaluated at an arbitrary time with ``at``.

Examples
--------
>>> sim.set_input_from_map({
...     "torque": StepInput([2.0], [0.0, 1.0]),
...     "wind": SinusoidalInput(amplitude=0.5, frequency=0.2),
... })
"""

from typing import Callable, Optional, Sequence, Union

import numpy as np
from scipy.interpolate import interp1d


class TimeSignal:
    """Base class for signals that depend only on the domain value."""

    def __call__(self, s) -> float:
        """Evaluate the signal at ``s.time``."""
        return self.at(s.time)

    def at(self, t: float) -> float:
        raise NotImplementedError


class ConstantInput(TimeSignal):
    """Constant input signal.

    Parameters
    ----------
    value : float
        Constant value to return

    Examples
    --------
    >>> u = ConstantInput(5.0)
    >>> u.at(0.0)
    5.0
    >>> u.at(10.0)
    5.0
    """

    def __init__(self, value: float):
        self.value = float(value)

    def at(self, t: float) -> float:
        return self.value

    def __repr__(self):
        return f"ConstantInput(value={self.value})"


class StepInput(TimeSignal):
    """Step input signal with piecewise constant values.

    Parameters
    ----------
    times : array-like
        Times at which the input changes value
    values : array-like
        Values corresponding to each time interval.
        Length should be len(times) + 1 or len(times).

    Examples
    --------
    >>> # Step from 0 to 1 at t=5
    >>> u = StepInput([5.0], [0.0, 1.0])
    >>> u.at(4.9)
    0.0
    >>> u.at(5.1)
    1.0
    """

    def __init__(
        self,
        times: Union[list, np.ndarray],
        values: Union[list, np.ndarray],
    ):
        self.times = np.asarray(times, dtype=float)
        self.values = np.asarray(values, dtype=float)

        if len(self.values) not in (len(self.times), len(self.times) + 1):
            raise ValueError(
                f"values must have length {len(self.times)} or "
                f"{len(self.times) + 1}, got {len(self.values)}"
            )

    def at(self, t: float) -> float:
        idx = np.searchsorted(self.times, t, side="right")
        if len(self.values) == len(self.times):
            # no value before the first breakpoint
            idx = max(idx - 1, 0)
        return float(self.values[min(idx, len(self.values) - 1)])

    def __repr__(self):
        return (
            f"StepInput(times={self.times.tolist()}, "
            f"values={self.values.tolist()})"
        )


class RampInput(TimeSignal):
    """Ramp input that changes linearly with time.

    Examples
    --------
    >>> u = RampInput(rate=2.0, offset=1.0)
    >>> u.at(2.0)
    5.0
    """

    def __init__(self, rate: float, offset: float = 0.0):
        self.rate = rate
        self.offset = offset

    def at(self, t: float) -> float:
        return self.offset + self.rate * t

    def __repr__(self):
        return f"RampInput(rate={self.rate}, offset={self.offset})"


class InterpolatedInput(TimeSignal):
    """Interpolated input from tabulated data.

    Parameters
    ----------
    times : array-like
        Time points for interpolation
    values : array-like
        Values at each time point
    kind : str, optional
        Interpolation kind ('linear', 'cubic', etc.), by default 'linear'
    fill_value : str or float, optional
        How to handle extrapolation, by default 'extrapolate'

    Examples
    --------
    >>> u = InterpolatedInput([0.0, 1.0, 2.0], [0.0, 1.0, 0.5])
    >>> u.at(1.5)
    0.75
    """

    def __init__(
        self,
        times: Union[list, np.ndarray],
        values: Union[list, np.ndarray],
        kind: str = "linear",
        fill_value: Union[str, float] = "extrapolate",
    ):
        self.times = np.asarray(times, dtype=float)
        self.values = np.asarray(values, dtype=float)
        self.kind = kind

        self.interp = interp1d(
            self.times, self.values, kind=kind, fill_value=fill_value
        )

    def at(self, t: float) -> float:
        return float(self.interp(t))

    def __repr__(self):
        return (
            f"InterpolatedInput(kind='{self.kind}', "
            f"n_points={len(self.times)})"
        )


class SinusoidalInput(TimeSignal):
    """Sinusoidal input signal.

    u(t) = amplitude * sin(2*pi*frequency*t + phase) + offset
    """

    def __init__(
        self,
        amplitude: float,
        frequency: float,
        phase: float = 0.0,
        offset: float = 0.0,
    ):
        self.amplitude = amplitude
        self.frequency = frequency
        self.phase = phase
        self.offset = offset

    def at(self, t: float) -> float:
        return float(
            self.amplitude
            * np.sin(2 * np.pi * self.frequency * t + self.phase)
            + self.offset
        )

    def __repr__(self):
        return (
            f"SinusoidalInput(amplitude={self.amplitude}, "
            f"frequency={self.frequency}, phase={self.phase}, "
            f"offset={self.offset})"
        )


class FunctionInput(TimeSignal):
    """Wraps a function of time ``f(t) -> float`` as an input signal.

    Examples
    --------
    >>> u = FunctionInput(lambda t: np.exp(-t))
    >>> u.at(0.0)
    1.0
    """

    def __init__(self, func: Callable[[float], float]):
        self.func = func

    def at(self, t: float) -> float:
        return float(self.func(t))

    def __repr__(self):
        func_name = getattr(self.func, "__name__", repr(self.func))
        return f"FunctionInput(func={func_name})"


class CompositeInput(TimeSignal):
    """Combination of several signals.

    Parameters
    ----------
    signals : list of TimeSignal
        Signals to combine
    operation : callable, optional
        Takes the list of signal values and returns the combined value.
        Default is sum.

    Examples
    --------
    >>> u = CompositeInput([ConstantInput(1.0), RampInput(rate=1.0)])
    >>> u.at(2.0)
    3.0
    """

    def __init__(
        self,
        signals: Sequence[TimeSignal],
        operation: Optional[Callable[[list], float]] = None,
    ):
        self.signals = list(signals)
        self.operation = operation or sum

    def at(self, t: float) -> float:
        return float(self.operation([sig.at(t) for sig in self.signals]))

    def __repr__(self):
        return f"CompositeInput(n_signals={len(self.signals)})"
