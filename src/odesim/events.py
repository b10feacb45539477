"""Events applied to a running Simulation between domain steps.

An event handler inspects the state at the end of every domain step and
returns either None (nothing happened) or an Event describing a change
to the simulation. Handlers are single-shot: once a handler returns an
event it is retired and never called again.

Event kinds
-----------
NONE : no effect, the handler stays active
REMOVE : retire the handler without recording an event
END_SIMULATION : stop the run after the current step
MARKER : record the state under the handler's label, nothing else
BEHAVIOUR : replace Diff or Input functions by symbol
STEP_LENGTH : re-divide the rest of the domain with a new step length

Examples
--------
>>> def separation(s):
...     if s.x("height") > 1000:
...         return change_behaviour({"mass": lambda s: 0.0})
...     return None
>>> sim.add_event_handlers(separation)
"""

import enum
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

from odesim.errors import EventError
from odesim.state import Function, State, Symbol


class EventKind(enum.Enum):
    NONE = "none"
    REMOVE = "remove"
    END_SIMULATION = "end_simulation"
    MARKER = "marker"
    BEHAVIOUR = "behaviour"
    STEP_LENGTH = "step_length"


@dataclass(frozen=True)
class Event:
    """A change requested by an event handler.

    Use the factory functions (``change_behaviour``, ``new_step_length``,
    ``end_simulation``, ``marker``, ``remove_handler``) rather than
    building events directly.

    Parameters
    ----------
    kind : EventKind
    functions : mapping of symbol to callable
        New Diff (X symbol) or Input (U symbol) functions. BEHAVIOUR only.
    step_length : float, optional
        New domain step length. STEP_LENGTH only.
    """

    kind: EventKind
    functions: Mapping[Symbol, Function] = field(default_factory=dict)
    step_length: Optional[float] = None

    def __post_init__(self):
        if self.kind is EventKind.BEHAVIOUR and not self.functions:
            raise EventError("behaviour event has no functions to apply")
        if self.kind is EventKind.STEP_LENGTH:
            if self.step_length is None or not self.step_length > 0:
                raise EventError(
                    f"step length event needs a positive step length, "
                    f"got {self.step_length}"
                )

    @property
    def is_trivial(self) -> bool:
        """True if the event neither changes nor gets recorded."""
        return self.kind is EventKind.NONE


def change_behaviour(functions: Mapping[Symbol, Function]) -> Event:
    """Event replacing Diff or Input functions by symbol.

    Every symbol must name an existing X variable or input of the
    simulation, otherwise applying the event raises EventError.
    """
    return Event(EventKind.BEHAVIOUR, functions=dict(functions))


def new_step_length(step_length: float) -> Event:
    """Event setting a new domain step length from the current time on.

    The domain end is kept. Has no effect once the simulation has
    stopped running.
    """
    return Event(EventKind.STEP_LENGTH, step_length=float(step_length))


def end_simulation() -> Event:
    """Event stopping the simulation after the current step."""
    return Event(EventKind.END_SIMULATION)


def marker() -> Event:
    """Event that only records the current state."""
    return Event(EventKind.MARKER)


def remove_handler() -> Event:
    """Event retiring its handler without being recorded."""
    return Event(EventKind.REMOVE)


class EventHandler:
    """Labelled event handler.

    Parameters
    ----------
    label : str
        Name under which fired events are recorded
    action : callable
        ``action(state) -> Event or None``

    Examples
    --------
    >>> handler = EventHandler(
    ...     "refine", lambda s: new_step_length(0.01) if s.time >= 1 else None
    ... )
    """

    def __init__(self, label: str, action: Callable[[State], Optional[Event]]):
        self.label = label
        self.action = action

    def __call__(self, s: State) -> Optional[Event]:
        return self.action(s)

    @classmethod
    def wrap(cls, handler) -> "EventHandler":
        """Return ``handler`` as an EventHandler.

        Plain callables are labelled with their ``__name__``.
        """
        if isinstance(handler, cls):
            return handler
        if not callable(handler):
            raise EventError(f"event handler {handler!r} is not callable")
        label = getattr(handler, "__name__", type(handler).__name__)
        return cls(label, handler)

    def __repr__(self):
        return f"EventHandler(label={self.label!r})"


@dataclass
class EventRecord:
    """An applied event: the handler label and the state it fired on."""

    label: str
    state: State

    @property
    def time(self) -> float:
        return self.state.time


class HandlerStatus(enum.Enum):
    ACTIVE = "active"
    RETIRED = "retired"


@dataclass
class HandlerSlot:
    handler: EventHandler
    status: HandlerStatus = HandlerStatus.ACTIVE
