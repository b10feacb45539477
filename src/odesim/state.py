"""Symbol-indexed state vectors.

A State holds two dense vectors addressed by symbol name:

- X: the integrated state variables, advanced by the solvers
- U: inputs, recomputed from the state after every step

plus the domain coordinate (time) at which the values are valid.

Symbols are assigned a stable ordinal index when they are first
created, so every state cloned from a common ancestor shares the same
layout and can be combined position-wise by :mod:`odesim.arithmetic`.
"""

from typing import Callable, Dict, Iterable, List, Mapping, Sequence, Union

import numpy as np
from scipy.optimize import approx_fprime

from odesim.errors import ConsistencyError, SymbolError

Symbol = str

# A Diff or Input function: any callable f(state) -> float
Function = Callable[["State"], float]
Diffs = Union[Mapping[Symbol, Function], Sequence[Function]]


class State:
    """Values of a simulation at one point of its domain.

    Parameters
    ----------
    time : float, optional
        Domain coordinate of the state, by default 0.0

    Examples
    --------
    >>> s = State()
    >>> s.x_equal("theta", 0.5)
    >>> s.u_equal("torque", 1.0)
    >>> s.x("theta")
    0.5
    >>> s.x_symbols()
    ['theta']
    """

    def __init__(self, time: float = 0.0):
        self._xmap: Dict[Symbol, int] = {}
        self._x = np.zeros(0)
        self._umap: Dict[Symbol, int] = {}
        self._u = np.zeros(0)
        self.time = float(time)

    @classmethod
    def from_x_map(cls, xm: Mapping[Symbol, float], time: float = 0.0):
        """Create a state from a symbol to initial value mapping.

        X symbols are indexed in the mapping's iteration order.
        """
        s = cls(time)
        for sym, val in xm.items():
            s.x_equal(sym, val)
        return s

    # X variables

    def x(self, sym: Symbol) -> float:
        """Value of X symbol ``sym``. Raises SymbolError if absent."""
        try:
            idx = self._xmap[sym]
        except KeyError:
            raise SymbolError(
                f"{sym!r} symbol does not exist in State variables"
            ) from None
        return float(self._x[idx])

    def x_equal(self, sym: Symbol, val: float):
        """Set X symbol ``sym`` to ``val``, creating it if needed."""
        if sym not in self._xmap:
            self._xmap[sym] = len(self._x)
            self._x = np.append(self._x, 0.0)
        self._x[self._xmap[sym]] = val

    def x_set(self, sym: Symbol, val: float):
        """Set an existing X symbol. Raises SymbolError if absent."""
        if sym not in self._xmap:
            raise SymbolError(
                f"{sym!r} symbol does not exist in State variables"
            )
        self._x[self._xmap[sym]] = val

    def x_symbols(self) -> List[Symbol]:
        """X symbols in index order."""
        syms = [""] * len(self._xmap)
        for sym, idx in self._xmap.items():
            syms[idx] = sym
        return syms

    def x_vector(self) -> np.ndarray:
        """Copy of the X vector."""
        return self._x.copy()

    def set_all_x(self, values: Iterable[float]):
        """Overwrite the whole X vector. Length must not change."""
        values = np.asarray(values, dtype=float)
        if values.shape != self._x.shape:
            raise ValueError(
                f"expected {len(self._x)} X values, got {values.size}"
            )
        self._x[:] = values

    # U variables

    def u(self, sym: Symbol) -> float:
        """Value of input ``sym``. Raises SymbolError if absent."""
        try:
            idx = self._umap[sym]
        except KeyError:
            raise SymbolError(
                f"{sym!r} symbol does not exist in State inputs"
            ) from None
        return float(self._u[idx])

    def u_equal(self, sym: Symbol, val: float):
        """Set input ``sym`` to ``val``, creating it if needed."""
        if sym not in self._umap:
            self._umap[sym] = len(self._u)
            self._u = np.append(self._u, 0.0)
        self._u[self._umap[sym]] = val

    def u_set(self, sym: Symbol, val: float):
        """Set an existing input. Raises SymbolError if absent."""
        if sym not in self._umap:
            raise SymbolError(
                f"{sym!r} symbol does not exist in State inputs"
            )
        self._u[self._umap[sym]] = val

    def u_symbols(self) -> List[Symbol]:
        """U symbols in index order."""
        syms = [""] * len(self._umap)
        for sym, idx in self._umap.items():
            syms[idx] = sym
        return syms

    def u_vector(self) -> np.ndarray:
        """Copy of the U vector."""
        return self._u.copy()

    # Copies

    def clone(self) -> "State":
        """Independent copy with identical layout, values and time."""
        s = State.__new__(State)
        s._xmap = dict(self._xmap)
        s._x = self._x.copy()
        s._umap = dict(self._umap)
        s._u = self._u.copy()
        s.time = self.time
        return s

    def clone_blank(self, time: float) -> "State":
        """Copy with identical layout and U values, zeroed X, at ``time``.

        Used to build Runge-Kutta stage states without carrying X values
        forward from the parent. Inputs are kept so Diff functions see
        them at every stage.
        """
        s = State.__new__(State)
        s._xmap = dict(self._xmap)
        s._x = np.zeros_like(self._x)
        s._umap = dict(self._umap)
        s._u = self._u.copy()
        s.time = float(time)
        return s

    def ordered(self) -> "State":
        """New state with X symbols sorted lexicographically."""
        s = State(self.time)
        for sym in sorted(self._xmap):
            s.x_equal(sym, self.x(sym))
        for sym in self.u_symbols():
            s.u_equal(sym, self.u(sym))
        return s

    # Consistency probes

    def consistency_x(self, syms: Sequence[Symbol]) -> np.ndarray:
        """Values of ``syms`` in X, with NaN where a symbol is missing."""
        return _probe(self._xmap, self._x, syms)

    def consistency_u(self, syms: Sequence[Symbol]) -> np.ndarray:
        """Values of ``syms`` in U, with NaN where a symbol is missing."""
        return _probe(self._umap, self._u, syms)

    def __len__(self):
        return len(self._x)

    def __repr__(self):
        xs = ", ".join(
            f"{sym}={v:.6g}" for sym, v in zip(self.x_symbols(), self._x)
        )
        us = ", ".join(
            f"{sym}={v:.6g}" for sym, v in zip(self.u_symbols(), self._u)
        )
        return f"State(time={self.time:.6g}, X=[{xs}], U=[{us}])"


def _probe(symmap, values, syms):
    probe = np.full(len(syms), np.nan)
    for i, sym in enumerate(syms):
        idx = symmap.get(sym)
        if idx is not None:
            probe[i] = values[idx]
    return probe


def _ordered_functions(diffs: Diffs, s: State) -> Sequence[Function]:
    syms = s.x_symbols()
    if len(diffs) != len(syms):
        raise ConsistencyError(
            f"length of function set not equal to number of X symbols "
            f"({len(diffs)} vs. {len(syms)})"
        )
    if isinstance(diffs, Mapping):
        try:
            return [diffs[sym] for sym in syms]
        except KeyError as err:
            raise ConsistencyError(
                f"no function defined for X symbol {err.args[0]!r}"
            ) from None
    return diffs


def evaluate(diffs: Diffs, s: State) -> np.ndarray:
    """Evaluate every Diff function on ``s`` in X symbol order."""
    funcs = _ordered_functions(diffs, s)
    return np.array([f(s) for f in funcs], dtype=float)


def state_diff(diffs: Diffs, s: State) -> State:
    """Apply Diff functions to ``s`` without modifying it.

    Parameters
    ----------
    diffs : mapping or sequence of callables
        Either a symbol to function mapping, or functions ordered like
        ``s.x_symbols()``.
    s : State
        State the functions are evaluated on.

    Returns
    -------
    State
        Clone of ``s`` (same time and layout) whose X values are the
        function results.

    Raises
    ------
    ConsistencyError
        If the number of functions differs from the number of X
        symbols.
    """
    diff = s.clone()
    diff._x[:] = evaluate(diffs, s)
    return diff


def jacobian(diffs: Diffs, s: State) -> np.ndarray:
    """Forward-difference Jacobian of the Diff system at ``s``.

    Returns an (n, n) array where entry (i, j) approximates
    d diffs[i] / d X[j]. Time and U values of ``s`` are held fixed.
    """
    funcs = _ordered_functions(diffs, s)
    n = len(funcs)
    probe = s.clone()

    def f(x):
        probe._x[:] = x
        return np.array([fn(probe) for fn in funcs], dtype=float)

    jac = approx_fprime(s.x_vector(), f)
    return np.asarray(jac, dtype=float).reshape(n, n)
