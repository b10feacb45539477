"""Simulation configuration and YAML loading.

Configuration is a tree of dataclasses that can be built in code or
read from a YAML file:

.. code-block:: yaml

    domain: time
    step_delay: 0.0
    no_ordering: false
    algorithm:
      steps: 4
      error_max: 1.0e-6
      step_min: 1.0e-4
      step_max: 0.1
    log:
      results: true
      separator: ","
      format_len: 12
      precision: 6
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, Union

import yaml

from odesim.errors import ConfigurationError
from odesim.inputs import (
    ConstantInput,
    InterpolatedInput,
    RampInput,
    SinusoidalInput,
    StepInput,
)

logger = logging.getLogger(__name__)


@dataclass
class AlgorithmConfig:
    """Solver settings.

    Parameters
    ----------
    steps : int, default=1
        Solver sub-steps per domain step. Adaptive solvers rescale the
        running count, this is only the initial value.
    error_max : float, default=0.0
        Error tolerance. Used by the adaptive solvers and as the
        convergence tolerance of the Newton-Raphson solver.
    step_min, step_max : float, default=0.0
        Bounds on the adaptive sub-step length. Adaptive stepping is
        enabled only when error_max > 0, step_min > 0 and
        step_max > step_min.
    relaxation_factor : float, default=0.0
        Newton-Raphson update is scaled by (1 - relaxation_factor).
    iteration_max : int, default=0
        Newton-Raphson iteration cap. 0 selects the solver default.
    """

    steps: int = 1
    error_max: float = 0.0
    step_min: float = 0.0
    step_max: float = 0.0
    relaxation_factor: float = 0.0
    iteration_max: int = 0

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.steps < 1:
            raise ConfigurationError(
                f"config: algorithm steps must be at least 1. got {self.steps}"
            )
        for name in ("error_max", "step_min", "step_max"):
            if getattr(self, name) < 0:
                raise ConfigurationError(
                    f"config: algorithm {name} cannot be negative"
                )
        if not 0 <= self.relaxation_factor < 1:
            raise ConfigurationError(
                "config: relaxation_factor must be in [0, 1). "
                f"got {self.relaxation_factor}"
            )
        if self.iteration_max < 0:
            raise ConfigurationError(
                "config: algorithm iteration_max cannot be negative"
            )
        if self.step_min > 0 and 0 < self.step_max <= self.step_min:
            logger.warning(
                "step_max (%g) <= step_min (%g), adaptive stepping disabled",
                self.step_max,
                self.step_min,
            )

    @property
    def adaptive(self) -> bool:
        """True if error and step bounds enable adaptive stepping."""
        return (
            self.error_max > 0
            and self.step_min > 0
            and self.step_max > self.step_min
        )


@dataclass
class LogConfig:
    """Text results log settings.

    Parameters
    ----------
    results : bool, default=False
        Write the results table when the run completes
    all_states : bool, default=True
        Log every solver sub-step. If False only the state at the end
        of each domain step is logged.
    separator : str, default=","
        Column separator
    format_len : int, default=12
        Field width of every column
    precision : int, default=-1
        Significant digits. -1 uses the shortest ``g`` representation.
    """

    results: bool = False
    all_states: bool = True
    separator: str = ","
    format_len: int = 12
    precision: int = -1

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.format_len < 1:
            raise ConfigurationError("config: log format_len must be positive")
        if self.precision < -1:
            raise ConfigurationError(
                "config: log precision must be -1 or non-negative"
            )


@dataclass
class SimulationConfig:
    """Configuration for a Simulation.

    Parameters
    ----------
    domain : str, default="time"
        Name of the integration variable, used to extract the domain
        column from results
    algorithm : AlgorithmConfig
        Solver settings
    log : LogConfig
        Results log settings
    step_delay : float, default=0.0
        Seconds to sleep after each domain step. For watching a run
        live; has no effect on results.
    no_ordering : bool, default=False
        Keep X symbols in creation order instead of sorting them

    Examples
    --------
    >>> config = SimulationConfig(algorithm=AlgorithmConfig(steps=4))
    >>> config.domain
    'time'
    """

    domain: str = "time"
    algorithm: AlgorithmConfig = field(default_factory=AlgorithmConfig)
    log: LogConfig = field(default_factory=LogConfig)
    step_delay: float = 0.0
    no_ordering: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self):
        """Check all settings. Raises ConfigurationError."""
        if not self.domain:
            raise ConfigurationError("config: empty domain name")
        if self.step_delay < 0:
            raise ConfigurationError("config: step_delay cannot be negative")
        self.algorithm.validate()
        self.log.validate()

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SimulationConfig":
        """Build a configuration from nested dictionaries."""
        d = dict(d)
        _check_keys(cls, d, "config")
        algorithm = d.pop("algorithm", None) or {}
        log = d.pop("log", None) or {}
        _check_keys(AlgorithmConfig, algorithm, "algorithm")
        _check_keys(LogConfig, log, "log")
        return cls(
            algorithm=AlgorithmConfig(**algorithm),
            log=LogConfig(**log),
            **d,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _check_keys(cls, d, section):
    known = {f.name for f in fields(cls)}
    unknown = set(d) - known
    if unknown:
        raise ConfigurationError(
            f"{section}: unknown key(s) {sorted(unknown)}"
        )


def load_config(yaml_path: Union[str, Path]) -> SimulationConfig:
    """Load a SimulationConfig from a YAML file.

    An empty file gives the default configuration.
    """
    with open(yaml_path, "r") as f:
        spec = yaml.safe_load(f)
    if spec is None:
        return SimulationConfig()
    if not isinstance(spec, dict):
        raise ConfigurationError(
            f"{yaml_path}: expected a mapping at top level"
        )
    return SimulationConfig.from_dict(spec)


# Registry of input classes available to YAML specifications
INPUT_CLASSES = {
    "ConstantInput": ConstantInput,
    "StepInput": StepInput,
    "RampInput": RampInput,
    "InterpolatedInput": InterpolatedInput,
    "SinusoidalInput": SinusoidalInput,
}


def parse_input_spec(input_spec: dict) -> Callable:
    """
    Parse an input specification and return an Input function.

    Parameters
    ----------
    input_spec : dict
        Single-key mapping from class name to its arguments, e.g.
        ``{'ConstantInput': {'value': 0.5}}`` or
        ``{'StepInput': {'initial_value': 0, 'steps': [...]}}``

    Returns
    -------
    callable
        Input signal evaluated on a State.
    """
    if not isinstance(input_spec, dict) or len(input_spec) != 1:
        raise ConfigurationError(
            f"input specification must have exactly one key, got {input_spec!r}"
        )
    class_name, params = next(iter(input_spec.items()))

    if class_name not in INPUT_CLASSES:
        raise ConfigurationError(f"Unknown input class: {class_name}")

    params = params or {}
    if class_name == "StepInput" and "steps" in params:
        # steps format: list of {time, value} plus optional initial value
        steps = params["steps"]
        times = [step["time"] for step in steps]
        values = [step["value"] for step in steps]
        values = [params.get("initial_value", 0.0)] + values
        return StepInput(times=times, values=values)

    return INPUT_CLASSES[class_name](**params)


def load_inputs(input_specs: Dict[str, dict]) -> Dict[str, Callable]:
    """Build an Input map from ``{symbol: input_spec}``."""
    return {sym: parse_input_spec(spec) for sym, spec in input_specs.items()}
