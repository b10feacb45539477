"""Simulation of systems of first-order non-autonomous ODEs.

Systems are defined through named state variables. Each X variable has
a Diff function giving its derivative as a function of the current
State; U variables (inputs) are computed directly from the State after
every step. A Simulation advances the State across a discretized domain
with a pluggable solver and can react to events that change equations,
step length or end the run early.

Main Components
---------------
Simulation : Driver and event loop
State : Symbol-indexed X and U vectors at one domain value
Timespan : Discretized domain
SimulationConfig : Configuration dataclass, loadable from YAML
SimulationResult : Results container with plotting and file export

Solvers
-------
RungeKutta4 : Classic fixed-step 4th order
RKF45, DormandPrince, RKF78 : Embedded pairs with adaptive stepping
GraggBulirschStoer : Extrapolated midpoint rule, orders 10 and 12
NewtonRaphson : Implicit backward Euler for stiff systems
DirectIntegration : Naive trapezoid, for comparison

Events
------
change_behaviour, new_step_length, end_simulation, marker,
remove_handler : Event factories returned from event handlers
EventHandler : Labelled handler wrapper

Input Signals
-------------
ConstantInput, StepInput, RampInput, InterpolatedInput,
SinusoidalInput, FunctionInput, CompositeInput

Examples
--------
>>> from odesim import Simulation, RKF45
>>> sim = Simulation(solver=RKF45())
>>> sim.set_diff_from_map({
...     "theta": lambda s: s.x("omega"),
...     "omega": lambda s: -9.81 * np.sin(s.x("theta")),
... })
>>> sim.set_x0_from_map({"theta": np.pi / 4, "omega": 0.0})
>>> sim.set_timespan(0.0, 10.0, 1000)
>>> sim.begin()
>>> result = sim.to_result()
>>> result.plot()
"""

# Core simulation components
from odesim.core import Simulation, SimulationStatus
from odesim.state import State, state_diff
from odesim.timespan import Timespan

# Configuration
from odesim.config import (
    AlgorithmConfig,
    LogConfig,
    SimulationConfig,
    load_config,
    load_inputs,
    parse_input_spec,
)

# Results
from odesim.results import SimulationResult
from odesim.logger import ResultsLogger

# Solvers
from odesim.integrators import (
    DirectIntegration,
    DormandPrince,
    GraggBulirschStoer,
    NewtonRaphson,
    RKF45,
    RKF78,
    RungeKutta4,
    SolverOutput,
)

# Events
from odesim.events import (
    Event,
    EventHandler,
    EventKind,
    EventRecord,
    change_behaviour,
    end_simulation,
    marker,
    new_step_length,
    remove_handler,
)

# Input signals
from odesim.inputs import (
    CompositeInput,
    ConstantInput,
    FunctionInput,
    InterpolatedInput,
    RampInput,
    SinusoidalInput,
    StepInput,
)

# Errors
from odesim.errors import (
    ConfigurationError,
    ConsistencyError,
    EventError,
    SimulationError,
    SimulationStateError,
    SolverError,
    SymbolError,
)

from odesim.log_config import setup_logging

__all__ = [
    # Core
    "Simulation",
    "SimulationStatus",
    "State",
    "state_diff",
    "Timespan",
    # Configuration
    "SimulationConfig",
    "AlgorithmConfig",
    "LogConfig",
    "load_config",
    "load_inputs",
    "parse_input_spec",
    # Results
    "SimulationResult",
    "ResultsLogger",
    # Solvers
    "SolverOutput",
    "RungeKutta4",
    "RKF45",
    "DormandPrince",
    "RKF78",
    "GraggBulirschStoer",
    "NewtonRaphson",
    "DirectIntegration",
    # Events
    "Event",
    "EventKind",
    "EventHandler",
    "EventRecord",
    "change_behaviour",
    "new_step_length",
    "end_simulation",
    "marker",
    "remove_handler",
    # Inputs
    "ConstantInput",
    "StepInput",
    "RampInput",
    "InterpolatedInput",
    "SinusoidalInput",
    "FunctionInput",
    "CompositeInput",
    # Errors
    "SimulationError",
    "ConfigurationError",
    "ConsistencyError",
    "SymbolError",
    "SolverError",
    "EventError",
    "SimulationStateError",
    # Logging
    "setup_logging",
]
