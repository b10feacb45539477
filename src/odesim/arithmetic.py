"""Element-wise arithmetic on the X vector of States.

These functions let solvers compose Runge-Kutta stages without knowing
anything about symbol names. They operate by position on X only; U
values and time are left untouched. Callers must combine states that
share a common ancestor (see :meth:`State.clone`), which guarantees an
identical symbol layout.

Functions without a suffix modify their first argument in place.
Functions ending in ``_to`` write the result into ``dst`` and return
it; ``dst`` may alias one of the operands.

All functions raise ValueError when vector lengths differ. Length-1
vectors are not broadcast.
"""

import numpy as np

from odesim.state import State


def _check(*states: State):
    n = len(states[0]._x)
    for s in states[1:]:
        if len(s._x) != n:
            raise ValueError(
                f"state X lengths do not match ({n} vs. {len(s._x)})"
            )


def abs_(dst: State):
    """Absolute value of every X element of ``dst``, in place."""
    np.abs(dst._x, out=dst._x)


def add(dst: State, s: State):
    """dst += s"""
    _check(dst, s)
    np.add(dst._x, s._x, out=dst._x)


def add_to(dst: State, s: State, t: State) -> State:
    """dst = s + t"""
    _check(dst, s, t)
    np.add(s._x, t._x, out=dst._x)
    return dst


def add_const(c: float, dst: State):
    """dst += c"""
    dst._x += c


def add_scaled(dst: State, alpha: float, s: State):
    """dst += alpha * s"""
    _check(dst, s)
    dst._x += alpha * s._x


def add_scaled_to(dst: State, y: State, alpha: float, s: State) -> State:
    """dst = y + alpha * s"""
    _check(dst, y, s)
    dst._x[:] = y._x + alpha * s._x
    return dst


def sub(dst: State, s: State):
    """dst -= s"""
    _check(dst, s)
    np.subtract(dst._x, s._x, out=dst._x)


def sub_to(dst: State, s: State, t: State) -> State:
    """dst = s - t"""
    _check(dst, s, t)
    np.subtract(s._x, t._x, out=dst._x)
    return dst


def mul(dst: State, s: State):
    """dst *= s"""
    _check(dst, s)
    np.multiply(dst._x, s._x, out=dst._x)


def mul_to(dst: State, s: State, t: State) -> State:
    """dst = s * t"""
    _check(dst, s, t)
    np.multiply(s._x, t._x, out=dst._x)
    return dst


def div(dst: State, s: State):
    """dst /= s"""
    _check(dst, s)
    np.divide(dst._x, s._x, out=dst._x)


def div_to(dst: State, s: State, t: State) -> State:
    """dst = s / t"""
    _check(dst, s, t)
    np.divide(s._x, t._x, out=dst._x)
    return dst


def scale(c: float, dst: State):
    """dst *= c"""
    dst._x *= c


def scale_to(dst: State, c: float, s: State) -> State:
    """dst = c * s"""
    _check(dst, s)
    np.multiply(s._x, c, out=dst._x)
    return dst


def max_(s: State) -> float:
    """Largest X element. Raises ValueError on an empty state."""
    if len(s._x) == 0:
        raise ValueError("max of a state with no X variables")
    return float(np.max(s._x))


def min_(s: State) -> float:
    """Smallest X element. Raises ValueError on an empty state."""
    if len(s._x) == 0:
        raise ValueError("min of a state with no X variables")
    return float(np.min(s._x))


def norm(s: State, L: float) -> float:
    """L-norm of the X vector (``np.inf`` for the max norm)."""
    return float(np.linalg.norm(s._x, ord=L))
