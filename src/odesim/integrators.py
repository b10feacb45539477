"""Integration algorithms for the simulation driver.

Every solver is a callable object that takes the running Simulation and
advances its current state by one domain step of length ``sim.dt``,
split into ``sim.steps`` sub-steps. It returns a SolverOutput holding
the sub-step states, starting with a clone of the current state.

Solvers keep no state between calls. Adaptive solvers report the
sub-step count they would like to use for the next domain step in
``SolverOutput.steps``; the driver applies it.

Available solvers
-----------------
RungeKutta4 : classic fixed-step 4th order
RKF45 : Runge-Kutta-Fehlberg 4(5), adaptive
DormandPrince : Dormand-Prince 5(4), adaptive
RKF78 : Runge-Kutta-Fehlberg 7(8), adaptive
GraggBulirschStoer : extrapolated midpoint rule 10(12), adaptive
NewtonRaphson : implicit backward Euler solved by Newton iteration
DirectIntegration : naive trapezoidal integration, for comparison
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from scipy.sparse.linalg import gmres

from odesim.arithmetic import (
    abs_,
    add,
    add_scaled,
    add_scaled_to,
    add_to,
    max_,
    scale,
    sub_to,
)
from odesim.errors import SolverError
from odesim.state import State, evaluate, jacobian, state_diff

logger = logging.getLogger(__name__)


@dataclass
class SolverOutput:
    """Result of advancing a simulation by one domain step.

    Parameters
    ----------
    states : list of State
        Sub-step states. ``states[0]`` is the starting state.
    steps : int, optional
        Recommended sub-step count for the next domain step. None keeps
        the current count.
    tolerance_exceeded : bool, default=False
        True if a sub-step was accepted with an error above the
        tolerance because the step length was already at its minimum.
    """

    states: List[State]
    steps: Optional[int] = None
    tolerance_exceeded: bool = False


# ============================================================================
# Classic fixed-step Runge-Kutta
# ============================================================================


class RungeKutta4:
    """Classic 4th-order Runge-Kutta solver.

    Each stage state is stamped with its time (t, t+h/2, t+h/2, t+h)
    before the Diff functions are evaluated on it, so explicitly
    time-dependent systems are integrated correctly.

    Examples
    --------
    >>> sim.solver = RungeKutta4()
    """

    def __call__(self, sim) -> SolverOutput:
        h = sim.dt / sim.steps
        states = [sim.state.clone()]
        for _ in range(sim.steps):
            s = states[-1]
            t = s.time
            b, c, d = s.clone_blank(t + 0.5 * h), s.clone_blank(t + 0.5 * h), s.clone_blank(t + h)

            a = state_diff(sim.diffs, s)

            add_scaled_to(b, s, 0.5 * h, a)
            b = state_diff(sim.diffs, b)

            add_scaled_to(c, s, 0.5 * h, b)
            c = state_diff(sim.diffs, c)

            add_scaled_to(d, s, h, c)
            d = state_diff(sim.diffs, d)

            # a + 2b + 2c + d
            add(a, d)
            add(b, c)
            add_scaled(a, 2, b)

            nxt = s.clone()
            add_scaled(nxt, h / 6, a)
            nxt.time = t + h
            states.append(nxt)
        return SolverOutput(states)

    def __repr__(self):
        return "RungeKutta4()"


# ============================================================================
# Embedded (adaptive) Runge-Kutta
# ============================================================================


class EmbeddedRungeKutta:
    """Base class for explicit embedded Runge-Kutta pairs.

    Subclasses define the Butcher tableau as class attributes:

    - ``c``: stage nodes
    - ``a``: lower-triangular stage coefficients, one row per stage
    - ``b``: weights of the propagated solution
    - ``b_alt``: weights of the companion estimate used for the error

    The local error is the largest absolute component of the difference
    between the two estimates. Adaptive stepping is active only when
    ``error_max``, ``step_min`` and ``step_max`` are configured with
    ``step_max > step_min``; otherwise the solver runs fixed-step.

    In adaptive mode every sub-step length, the first one included, lies
    in ``[step_min, step_max]`` unless it is cut short by the end of the
    domain, which the solver then reaches exactly.

    A sub-step whose error exceeds the tolerance is retried with the
    shorter step length unless the new length is clamped to
    ``step_min``. In that case the sub-step is accepted anyway and the
    output is flagged with ``tolerance_exceeded``.
    """

    c: Tuple[float, ...] = ()
    a: Tuple[Tuple[float, ...], ...] = ()
    b: Tuple[float, ...] = ()
    b_alt: Tuple[float, ...] = ()

    def _stages(self, diffs, s: State, h: float) -> List[State]:
        """Stage slopes k_j, already multiplied by h."""
        t = s.time
        k = [state_diff(diffs, s)]
        scale(h, k[0])
        for j in range(1, len(self.c)):
            kj = s.clone_blank(t + self.c[j] * h)
            add_scaled_to(kj, s, self.a[j][0], k[0])
            for m in range(1, j):
                if self.a[j][m] != 0:
                    add_scaled(kj, self.a[j][m], k[m])
            kj = state_diff(diffs, kj)
            scale(h, kj)
            k.append(kj)
        return k

    def _combine(self, s: State, k: List[State], weights, h: float) -> State:
        y = s.clone_blank(s.time + h)
        add_scaled_to(y, s, weights[0], k[0])
        for w, kj in zip(weights[1:], k[1:]):
            if w != 0:
                add_scaled(y, w, kj)
        return y

    def _estimates(self, diffs, s: State, h: float) -> Tuple[State, State]:
        """Propagated solution and companion estimate after step h."""
        k = self._stages(diffs, s, h)
        return self._combine(s, k, self.b, h), self._combine(s, k, self.b_alt, h)

    def _next_step_length(self, h: float, ratio: float, alg) -> float:
        """Step length after a step of length h with error ratio."""
        return min(max(0.9 * h * ratio**0.2, alg.step_min), alg.step_max)

    def __call__(self, sim) -> SolverOutput:
        alg = sim.config.algorithm
        adaptive = alg.adaptive
        steps = sim.steps
        next_steps = steps
        h = sim.dt / steps
        if adaptive:
            h = min(max(h, alg.step_min), alg.step_max)
        end = sim.timespan.end
        exceeded = False

        states = [sim.state.clone()]
        while len(states) <= steps:
            s = states[-1]
            h_step = h
            if adaptive:
                remaining = end - s.time
                if remaining <= 0:
                    break
                h_step = min(h, remaining)

            y, y_alt = self._estimates(sim.diffs, s, h_step)
            if not adaptive:
                states.append(y)
                continue
            if h_step == remaining:
                # land on the end exactly, not one ulp before it
                y.time = y_alt.time = end

            err = s.clone_blank(y.time)
            abs_(sub_to(err, y_alt, y))
            max_err = max_(err)
            ratio = math.inf if max_err == 0 else alg.error_max / max_err
            h_new = self._next_step_length(h_step, ratio, alg)
            next_steps = int(max(next_steps * (h_step / h_new), 1.0))
            h = h_new
            if ratio < 1:
                if h_new != alg.step_min:
                    continue
                exceeded = True
            states.append(y)

        return SolverOutput(
            states,
            steps=next_steps if adaptive else None,
            tolerance_exceeded=exceeded,
        )

    def __repr__(self):
        return f"{type(self).__name__}()"


class RKF45(EmbeddedRungeKutta):
    """Runge-Kutta-Fehlberg method of orders 4 and 5.

    Propagates the 5th order solution. To enable adaptive stepping set
    ``algorithm.error_max``, ``algorithm.step_min`` and
    ``algorithm.step_max`` in the simulation configuration.
    """

    c = (0.0, 1 / 4, 3 / 8, 12 / 13, 1.0, 1 / 2)
    a = (
        (),
        (1 / 4,),
        (3 / 32, 9 / 32),
        (1932 / 2197, -7200 / 2197, 7296 / 2197),
        (439 / 216, -8.0, 3680 / 513, -845 / 4104),
        (-8 / 27, 2.0, -3544 / 2565, 1859 / 4104, -11 / 40),
    )
    # fifth order
    b = (16 / 135, 0.0, 6656 / 12825, 28561 / 56430, -9 / 50, 2 / 55)
    # fourth order
    b_alt = (25 / 216, 0.0, 1408 / 2565, 2197 / 4104, -1 / 5, 0.0)


class DormandPrince(EmbeddedRungeKutta):
    """Dormand-Prince 5(4) method.

    The method behind MATLAB's ode45. Seven stages, the last one
    evaluated at the new solution point.
    """

    c = (0.0, 1 / 5, 3 / 10, 4 / 5, 8 / 9, 1.0, 1.0)
    a = (
        (),
        (1 / 5,),
        (3 / 40, 9 / 40),
        (44 / 45, -56 / 15, 32 / 9),
        (19372 / 6561, -25360 / 2187, 64448 / 6561, -212 / 729),
        (9017 / 3168, -355 / 33, 46732 / 5247, 49 / 176, -5103 / 18656),
        (35 / 384, 0.0, 500 / 1113, 125 / 192, -2187 / 6784, 11 / 84),
    )
    b = (35 / 384, 0.0, 500 / 1113, 125 / 192, -2187 / 6784, 11 / 84, 0.0)
    b_alt = (
        5179 / 57600,
        0.0,
        7571 / 16695,
        393 / 640,
        -92097 / 339200,
        187 / 2100,
        1 / 40,
    )


class RKF78(EmbeddedRungeKutta):
    """Runge-Kutta-Fehlberg method of orders 7 and 8.

    Coefficients from Table X of E. Fehlberg, "Classical fifth-, sixth-,
    seventh-, and eighth-order Runge-Kutta formulas with stepsize
    control", NASA TR R-287 (1968). Propagates the 7th order solution.
    """

    c = (0.0, 2 / 27, 1 / 9, 1 / 6, 5 / 12, 1 / 2, 5 / 6, 1 / 6, 2 / 3, 1 / 3, 1.0, 0.0, 1.0)
    a = (
        (),
        (2 / 27,),
        (1 / 36, 1 / 12),
        (1 / 24, 0.0, 1 / 8),
        (5 / 12, 0.0, -25 / 16, 25 / 16),
        (1 / 20, 0.0, 0.0, 1 / 4, 1 / 5),
        (-25 / 108, 0.0, 0.0, 125 / 108, -65 / 27, 125 / 54),
        (31 / 300, 0.0, 0.0, 0.0, 61 / 225, -2 / 9, 13 / 900),
        (2.0, 0.0, 0.0, -53 / 6, 704 / 45, -107 / 9, 67 / 90, 3.0),
        (-91 / 108, 0.0, 0.0, 23 / 108, -976 / 135, 311 / 54, -19 / 60, 17 / 6, -1 / 12),
        (2383 / 4100, 0.0, 0.0, -341 / 164, 4496 / 1025, -301 / 82, 2133 / 4100, 45 / 82, 45 / 164, 18 / 41),
        (3 / 205, 0.0, 0.0, 0.0, 0.0, -6 / 41, -3 / 205, -3 / 41, 3 / 41, 6 / 41, 0.0),
        (-1777 / 4100, 0.0, 0.0, -341 / 164, 4496 / 1025, -289 / 82, 2193 / 4100, 51 / 82, 33 / 164, 12 / 41, 0.0, 1.0),
    )
    # seventh order
    b = (41 / 840, 0.0, 0.0, 0.0, 0.0, 34 / 105, 9 / 35, 9 / 35, 9 / 280, 9 / 280, 41 / 840, 0.0, 0.0)
    # eighth order
    b_alt = (0.0, 0.0, 0.0, 0.0, 0.0, 34 / 105, 9 / 35, 9 / 35, 9 / 280, 9 / 280, 0.0, 41 / 840, 41 / 840)

    def _next_step_length(self, h, ratio, alg):
        factor = min(max(0.8 * ratio ** (1 / 7), 0.125), 4.0)
        return min(max(h * factor, alg.step_min), alg.step_max)


class GraggBulirschStoer(EmbeddedRungeKutta):
    """Extrapolated explicit midpoint rule of orders 10 and 12.

    One step of length H integrates the system with the explicit
    midpoint rule using n = 2, 4, ..., 12 sub-intervals and extrapolates
    the results to zero sub-interval length (Aitken-Neville). The fully
    extrapolated value is of order 12 and is propagated; the order 10
    value of the same tableau row gives the error estimate.

    Extrapolation methods are explicit Runge-Kutta methods in disguise,
    so the step control follows the same embedded-pair structure as the
    Fehlberg solvers.
    """

    sequence = (2, 4, 6, 8, 10, 12)

    def _midpoint(self, diffs, s: State, big_h: float, n: int) -> State:
        """Explicit midpoint rule from s over big_h in n sub-intervals."""
        t = s.time
        sub = big_h / n
        prev = s.clone()
        cur = s.clone()
        add_scaled(cur, sub, state_diff(diffs, prev))
        cur.time = t + sub
        for m in range(1, n):
            nxt = prev
            add_scaled(nxt, 2 * sub, state_diff(diffs, cur))
            nxt.time = t + (m + 1) * sub
            prev, cur = cur, nxt
        return cur

    def _estimates(self, diffs, s, h):
        # rows[j][k] holds the extrapolation tableau entry T(j, k)
        rows = []
        for j, n in enumerate(self.sequence):
            row = [self._midpoint(diffs, s, h, n)]
            for k in range(1, j + 1):
                ratio = (n / self.sequence[j - k]) ** 2 - 1
                tjk = row[k - 1].clone()
                diff = s.clone_blank(s.time + h)
                sub_to(diff, row[k - 1], rows[j - 1][k - 1])
                add_scaled(tjk, 1 / ratio, diff)
                row.append(tjk)
            rows.append(row)
        last = rows[-1]
        high, low = last[-1], last[-2]
        high.time = low.time = s.time + h
        return high, low

    def _next_step_length(self, h, ratio, alg):
        factor = min(max(0.8 * ratio ** (1 / 11), 0.125), 4.0)
        return min(max(h * factor, alg.step_min), alg.step_max)


# ============================================================================
# Implicit solver
# ============================================================================

# Used when the corresponding configuration value is unset (zero)
NEWTON_DEFAULT_TOLERANCE = 1e-5
NEWTON_DEFAULT_ITERATIONS = 10


class NewtonRaphson:
    """Implicit backward Euler solver using Newton-Raphson iteration.

    For each sub-step of length h the next state X' is the root of the
    residual

        R(X') = X' - X - h * f(X')

    where f is the vector of Diff functions. Every iteration evaluates
    the residual, approximates its Jacobian by finite differences,
    solves ``J * delta = R`` with GMRES and updates the guess by
    ``-(1 - relaxation_factor) * delta``. Iteration stops when the
    largest change of a component drops below ``algorithm.error_max``
    or after ``algorithm.iteration_max`` iterations.

    The Jacobian is recomputed at every iteration of every sub-step.

    If ``error_max`` or ``iteration_max`` is unset the solver uses
    NEWTON_DEFAULT_TOLERANCE and NEWTON_DEFAULT_ITERATIONS and logs a
    warning on the first domain step.

    Raises
    ------
    SolverError
        If the linear solve fails.
    """

    def __call__(self, sim) -> SolverOutput:
        alg = sim.config.algorithm
        tol = alg.error_max if alg.error_max > 0 else NEWTON_DEFAULT_TOLERANCE
        iter_max = (
            alg.iteration_max if alg.iteration_max > 0 else NEWTON_DEFAULT_ITERATIONS
        )
        if sim.current_step <= 1 and (alg.error_max <= 0 or alg.iteration_max <= 0):
            logger.warning(
                "NewtonRaphson: using tolerance %g and iteration cap %d "
                "(set algorithm.error_max and algorithm.iteration_max to override)",
                tol,
                iter_max,
            )
        jac_mult = 1 - alg.relaxation_factor
        diffs = sim.diffs
        h = sim.dt / sim.steps

        states = [sim.state.clone()]
        guess = states[0].clone()
        for i in range(sim.steps):
            old = guess.clone()
            guess.time = states[i].time + h

            def residual(s, old=old):
                return s.x_vector() - old.x_vector() - h * evaluate(diffs, s)

            residuals = [_component(residual, j) for j in range(len(guess))]

            iteration, change = 0, 0.0
            while iteration == 0 or (iteration < iter_max and change > tol):
                b = residual(guess)
                jac = jacobian(residuals, guess)
                delta, info = gmres(jac, b, rtol=1e-10, atol=0.0)
                if info != 0 or not np.all(np.isfinite(delta)):
                    raise SolverError(
                        f"error in newton iterative solver at time "
                        f"{guess.time:g}: linear solve failed (info={info})"
                    )
                new = guess.x_vector() - jac_mult * delta
                change = float(np.max(np.abs(guess.x_vector() - new)))
                guess.set_all_x(new)
                iteration += 1
            logger.debug(
                "NewtonRaphson: t=%g converged to %g in %d iteration(s)",
                guess.time,
                change,
                iteration,
            )
            states.append(guess.clone())
        return SolverOutput(states)

    def __repr__(self):
        return "NewtonRaphson()"


def _component(residual, j):
    return lambda s: residual(s)[j]


# ============================================================================
# Baseline
# ============================================================================


class DirectIntegration:
    """Naive trapezoidal integration, for comparison with other solvers.

        y_{n+1} = y_n + (f(y_n) + f(y_{n-1})) * h / 2

    Only one Diff evaluation per sub-step. The first sub-step of every
    domain step has no previous slope and reduces to forward Euler.
    """

    def __call__(self, sim) -> SolverOutput:
        h = sim.dt / sim.steps
        states = [sim.state.clone()]
        dydx_prev = None
        for _ in range(sim.steps):
            y = states[-1]
            dydx = state_diff(sim.diffs, y)
            if dydx_prev is None:
                dydx_prev = dydx
            slope = y.clone_blank(y.time)
            add_to(slope, dydx, dydx_prev)
            nxt = y.clone()
            add_scaled(nxt, h / 2, slope)
            nxt.time = y.time + h
            states.append(nxt)
            dydx_prev = dydx
        return SolverOutput(states)

    def __repr__(self):
        return "DirectIntegration()"
