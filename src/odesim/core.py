"""Simulation driver and event loop.

A Simulation owns the live state, the Diff and Input functions, the
event handlers and the result history. ``begin`` verifies that the
pieces are consistent and then advances the state one domain step at a
time:

1. the solver produces the sub-step states of the domain step
2. the last sub-state becomes the current state
3. Input functions are evaluated on the new state
4. sub-states are appended to the result history
5. event handlers inspect the state and may change the simulation

until the domain end is reached or an event ends the run.
"""

import enum
import logging
import sys
import time
from typing import Callable, Dict, List, Mapping, Optional, TextIO

import numpy as np

from odesim.config import SimulationConfig
from odesim.errors import (
    ConfigurationError,
    ConsistencyError,
    EventError,
    SimulationStateError,
    SolverError,
    SymbolError,
)
from odesim.events import (
    Event,
    EventHandler,
    EventKind,
    EventRecord,
    HandlerSlot,
    HandlerStatus,
)
from odesim.integrators import RungeKutta4, SolverOutput
from odesim.logger import ResultsLogger
from odesim.results import SimulationResult
from odesim.state import Function, State, Symbol
from odesim.timespan import Timespan

logger = logging.getLogger(__name__)

# Relative distance to the domain end below which the end counts as reached
END_TOLERANCE = 1e-9


class SimulationStatus(enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAULTED = "faulted"


class Simulation:
    """Solver for a system of first-order non-autonomous ODEs.

    Parameters
    ----------
    config : SimulationConfig, optional
        Defaults to ``SimulationConfig()``: domain "time", one solver
        sub-step per domain step, no results log.
    solver : callable, optional
        ``solver(sim) -> SolverOutput``. Defaults to RungeKutta4().

    Attributes
    ----------
    state : State
        Live state. Holds the initial conditions before ``begin``.
    steps : int
        Solver sub-steps per domain step. Starts at
        ``config.algorithm.steps``; adaptive solvers update it.
    current_step : int
        Number of domain steps taken.
    tolerance_violations : int
        Sub-steps accepted by an adaptive solver with an error above
        ``algorithm.error_max`` because the step was already at
        ``step_min``.
    sleep : callable
        Called with ``config.step_delay`` after every domain step.
    log_output : file-like
        Stream the results log is written to when the run completes.

    Examples
    --------
    >>> sim = Simulation()
    >>> sim.set_diff_from_map({
    ...     "theta": lambda s: s.x("Dtheta"),
    ...     "Dtheta": lambda s: 1.0,
    ... })
    >>> sim.set_x0_from_map({"theta": 0.0, "Dtheta": 0.0})
    >>> sim.set_timespan(0.0, 1.0, 10)
    >>> sim.begin()
    >>> sim.results("theta")[-1]
    0.5
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        solver: Optional[Callable[["Simulation"], SolverOutput]] = None,
    ):
        self.config = config if config is not None else SimulationConfig()
        self.solver = solver if solver is not None else RungeKutta4()
        self.timespan: Optional[Timespan] = None
        self.state = State()
        self.diffs: List[Function] = []
        self.steps = self.config.algorithm.steps
        self.current_step = 0
        self.status = SimulationStatus.NOT_STARTED
        self.tolerance_violations = 0
        self.sleep: Callable[[float], None] = time.sleep
        self.log_output: TextIO = sys.stdout

        self._diff_map: Dict[Symbol, Function] = {}
        self._inputs: Dict[Symbol, Function] = {}
        self._handlers: List[HandlerSlot] = []
        self._events: List[EventRecord] = []
        self._results: List[State] = []
        self._log: Optional[ResultsLogger] = None

    def __repr__(self):
        return (
            f"Simulation(status={self.status.value}, "
            f"x={self.state.x_symbols()}, u={list(self._inputs)}, "
            f"solver={self.solver!r}, timespan={self.timespan})"
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def set_timespan(self, start: float, end: float, steps: int):
        """Set the domain ``[start, end]`` divided into ``steps``."""
        self.timespan = Timespan(start, end, steps)

    def set_x0_from_map(self, x0: Mapping[Symbol, float]):
        """Replace the state with one holding the initial X values."""
        self.state = State.from_x_map(x0)

    def set_diff_from_map(self, diffs: Mapping[Symbol, Function]):
        """Set the Diff (right-hand side) function of every X symbol."""
        self._diff_map = dict(diffs)

    def set_input_from_map(self, inputs: Mapping[Symbol, Function]):
        """Set the Input functions, evaluated on the state every step."""
        self._inputs = dict(inputs)

    def add_event_handlers(self, *handlers):
        """Register event handlers.

        Each handler is an EventHandler or a callable
        ``handler(state) -> Event or None``, labelled by its name.
        """
        if not handlers:
            raise EventError("add_event_handlers: can't add 0 event handlers")
        for h in handlers:
            self._handlers.append(HandlerSlot(EventHandler.wrap(h)))

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    @property
    def dt(self) -> float:
        """Length of the next domain step.

        The timespan step length, shortened to the rest of the domain
        when less than a full step remains.
        """
        remaining = self.timespan.end - self.state.time
        if self._end_tolerance() < remaining < self.timespan.step_length:
            return remaining
        return self.timespan.step_length

    @property
    def current_time(self) -> float:
        return self.state.time

    def is_running(self) -> bool:
        """True while the domain end has not been reached."""
        if self.status is not SimulationStatus.RUNNING:
            return False
        return self.timespan.end - self.state.time > self._end_tolerance()

    def _end_tolerance(self) -> float:
        # absorbs round-off accumulated by summing step lengths
        ts = self.timespan
        return END_TOLERANCE * max(abs(ts.end), ts.step_length)

    def begin(self):
        """Run the simulation to the end of the domain.

        Raises
        ------
        SimulationStateError
            If the simulation has already been run.
        ConfigurationError, ConsistencyError
            If the simulation is not set up correctly. Raised before any
            step is taken.
        SolverError, EventError
            If a step or event fails. The simulation is left FAULTED
            with the results computed so far.
        """
        if self.status is not SimulationStatus.NOT_STARTED or self._results:
            raise SimulationStateError(
                f"Simulation.begin: simulation already run "
                f"(status {self.status.value})"
            )
        self.config.validate()
        self._verify()
        self.state.time = self.timespan.start
        self._set_inputs()
        self._verify_inputs()
        if not self.config.no_ordering:
            self.state = self.state.ordered()
        self.diffs = [self._diff_map[sym] for sym in self.state.x_symbols()]
        self.steps = self.config.algorithm.steps

        self._results = [self.state.clone()]
        if self.config.log.results:
            self._log = ResultsLogger(self.config.log, self.log_output)
            self._log.log_header(
                self.config.domain,
                self.state.x_symbols(),
                self.state.u_symbols(),
            )
            self._log.log_states(self._results)

        logger.info(
            "Simulation starting: %d X, %d U, %s over [%g, %g] in %d steps",
            len(self.state),
            len(self._inputs),
            self.solver,
            self.timespan.start,
            self.timespan.end,
            self.timespan.steps,
        )
        self.status = SimulationStatus.RUNNING
        try:
            while self.is_running():
                self._step()
        except Exception:
            self.status = SimulationStatus.FAULTED
            logger.error(
                "Simulation faulted at %s=%g (step %d)",
                self.config.domain,
                self.state.time,
                self.current_step,
            )
            raise

        self.status = SimulationStatus.COMPLETED
        if self._log is not None:
            self._log.flush()
        if self.tolerance_violations:
            logger.warning(
                "%d sub-step(s) accepted above error tolerance %g at "
                "minimum step length %g",
                self.tolerance_violations,
                self.config.algorithm.error_max,
                self.config.algorithm.step_min,
            )
        logger.info(
            "Simulation completed: %d steps, %d states, %d events",
            self.current_step,
            len(self._results),
            len(self._events),
        )

    def _step(self):
        self.current_step += 1
        out = self.solver(self)
        states = out.states
        last = states[-1]
        if not np.all(np.isfinite(last.x_vector())):
            bad = [
                sym
                for sym, v in zip(last.x_symbols(), last.x_vector())
                if not np.isfinite(v)
            ]
            raise SolverError(
                f"non-finite value for {bad} at {self.config.domain}="
                f"{last.time:g}"
            )
        if out.steps is not None:
            self.steps = out.steps
        if out.tolerance_exceeded:
            self.tolerance_violations += 1

        self.state = last.clone()
        self._set_inputs()
        new_states = states[1:-1] + [self.state.clone()]
        self._results.extend(new_states)

        if self._log is not None:
            if self.config.log.all_states:
                self._log.log_states(new_states)
            else:
                self._log.log_states(new_states[-1:])
        if self.config.step_delay > 0:
            self.sleep(self.config.step_delay)
        self._handle_events()

    def _set_inputs(self):
        for sym, f in self._inputs.items():
            self.state.u_equal(sym, f(self.state))

    def _verify(self):
        if len(self.state) == 0:
            raise ConfigurationError("Simulation: no X symbols defined")
        if self.timespan is None:
            raise ConfigurationError("Simulation: no domain (timespan) defined")
        if self.solver is None:
            raise ConfigurationError("Simulation: expected a solver, got None")
        syms = list(self._diff_map)
        missing = [sym for sym, v in zip(syms, self.state.consistency_x(syms)) if np.isnan(v)]
        if missing:
            if len(missing) == 1:
                raise ConsistencyError(
                    f"Simulation: X state is inconsistent for {missing[0]!r}. "
                    f"Match X Diff with State symbols"
                )
            raise ConsistencyError(
                f"Simulation: X state is inconsistent for {missing[0]!r} and "
                f"{len(missing) - 1} other case(s). Match X Diff with State "
                f"symbols"
            )
        if len(syms) != len(self.state):
            undefined = sorted(set(self.state.x_symbols()) - set(syms))
            raise ConsistencyError(
                f"Simulation: {len(syms)} Diff functions for "
                f"{len(self.state)} X symbols, no Diff for {undefined}"
            )

    def _verify_inputs(self):
        syms = list(self._inputs)
        missing = [sym for sym, v in zip(syms, self.state.consistency_u(syms)) if np.isnan(v)]
        if missing:
            raise ConsistencyError(
                f"Simulation: U state is inconsistent for {missing[0]!r}, "
                f"check the value returned by its Input function"
            )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _handle_events(self):
        for slot in self._handlers:
            if slot.status is HandlerStatus.RETIRED:
                continue
            event = slot.handler(self.state)
            if event is None or (isinstance(event, Event) and event.is_trivial):
                continue
            if not isinstance(event, Event):
                raise EventError(
                    f"handler {slot.handler.label!r} returned {event!r}, "
                    f"expected an Event or None"
                )
            slot.status = HandlerStatus.RETIRED
            if event.kind is EventKind.REMOVE:
                continue
            self._apply_event(event)
            self._events.append(EventRecord(slot.handler.label, self.state.clone()))
            logger.debug(
                "event %r (%s) at %s=%g",
                slot.handler.label,
                event.kind.value,
                self.config.domain,
                self.state.time,
            )
        self._handlers = [
            slot for slot in self._handlers if slot.status is HandlerStatus.ACTIVE
        ]

    def _apply_event(self, event: Event):
        if event.kind is EventKind.END_SIMULATION:
            self.status = SimulationStatus.COMPLETED
        elif event.kind is EventKind.STEP_LENGTH:
            if self.is_running():
                self.timespan = self.timespan.with_step_length(
                    self.state.time, event.step_length
                )
        elif event.kind is EventKind.BEHAVIOUR:
            unknown = [
                sym
                for sym in event.functions
                if sym not in self._diff_map and sym not in self._inputs
            ]
            if unknown:
                raise EventError(
                    f"{len(unknown)} symbol(s) not found during behaviour "
                    f"change event: {unknown}"
                )
            x_index = {sym: i for i, sym in enumerate(self.state.x_symbols())}
            for sym, f in event.functions.items():
                if sym in self._diff_map:
                    self._diff_map[sym] = f
                    self.diffs[x_index[sym]] = f
                else:
                    self._inputs[sym] = f

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _check_completed(self, caller: str):
        if self.status is not SimulationStatus.COMPLETED:
            raise SimulationStateError(
                f"Simulation.{caller}: results are only available after "
                f"the simulation completes (status {self.status.value})"
            )

    def results(self, sym: Symbol) -> np.ndarray:
        """Values of ``sym`` over the run.

        ``sym`` may be the domain name (``config.domain``), an X symbol
        or an input symbol.
        """
        self._check_completed("results")
        if sym == self.config.domain:
            return np.array([s.time for s in self._results])
        probe = [sym]
        if not np.isnan(self.state.consistency_x(probe)[0]):
            return np.array([s.x(sym) for s in self._results])
        if not np.isnan(self.state.consistency_u(probe)[0]):
            return np.array([s.u(sym) for s in self._results])
        raise SymbolError(
            f"Simulation.results: {sym!r} not found in domain, X or U symbols"
        )

    def states(self) -> List[State]:
        """All result states, the initial state first."""
        self._check_completed("states")
        return list(self._results)

    def for_each_state(self, fn: Callable[[int, State], None]):
        """Call ``fn(index, state)`` for every result state in order."""
        self._check_completed("for_each_state")
        for i, s in enumerate(self._results):
            fn(i, s)

    def events(self) -> List[EventRecord]:
        """Events applied during the run, in firing order."""
        return list(self._events)

    def to_result(self) -> SimulationResult:
        """Results as a SimulationResult of pandas DataFrames."""
        self._check_completed("to_result")
        return SimulationResult.from_states(
            self._results,
            domain=self.config.domain,
            events=self.events(),
            metadata={
                "solver": repr(self.solver),
                "steps": self.current_step,
                "tolerance_violations": self.tolerance_violations,
            },
        )
