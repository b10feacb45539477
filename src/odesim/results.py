"""Tabular simulation results.

SimulationResult holds the result history of a completed Simulation as
pandas DataFrames indexed by the domain values, with helpers for
plotting and saving.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from scipy.io import loadmat, savemat

from odesim.events import EventRecord
from odesim.state import State


@dataclass
class SimulationResult:
    """Container for simulation results.

    Parameters
    ----------
    time : ndarray
        Domain values, shape (n_steps,)
    states : DataFrame
        X trajectories indexed by the domain, one column per X symbol
    inputs : DataFrame, optional
        U trajectories indexed by the domain, one column per input
    domain : str, default="time"
        Name of the domain, used as index name
    events : list of EventRecord
        Events applied during the run
    metadata : dict
        Free-form run information (solver, step counts)

    Examples
    --------
    >>> result = sim.to_result()
    >>> result.states["theta"].iloc[-1]
    0.5
    >>> result.save("pendulum.csv")
    """

    time: np.ndarray
    states: pd.DataFrame
    inputs: Optional[pd.DataFrame] = None
    domain: str = "time"
    events: List[EventRecord] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.time = np.asarray(self.time, dtype=float)
        n_steps = len(self.time)
        for name in ("states", "inputs"):
            df = getattr(self, name)
            if df is None:
                continue
            if len(df) != n_steps:
                raise ValueError(
                    f"{name} length {len(df)} != {self.domain} length {n_steps}"
                )
            df.index = pd.Index(self.time, name=self.domain)

    @classmethod
    def from_states(
        cls,
        states: Sequence[State],
        domain: str = "time",
        events: Optional[List[EventRecord]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "SimulationResult":
        """Build a result from a sequence of States sharing one layout."""
        if not states:
            raise ValueError("no states to build a result from")
        first = states[0]
        time = np.array([s.time for s in states])
        x = pd.DataFrame(
            np.array([s.x_vector() for s in states]),
            columns=first.x_symbols(),
        )
        u = None
        if first.u_symbols():
            u = pd.DataFrame(
                np.array([s.u_vector() for s in states]),
                columns=first.u_symbols(),
            )
        return cls(
            time=time,
            states=x,
            inputs=u,
            domain=domain,
            events=list(events or []),
            metadata=dict(metadata or {}),
        )

    @property
    def n_steps(self) -> int:
        """Number of stored samples."""
        return len(self.time)

    @property
    def n_states(self) -> int:
        return len(self.states.columns)

    @property
    def n_inputs(self) -> int:
        return 0 if self.inputs is None else len(self.inputs.columns)

    @property
    def dt(self) -> float:
        """Average domain step between samples."""
        return float(np.mean(np.diff(self.time)))

    def plot(self, figsize=(10, 8), **kwargs):
        """Plot X trajectories, and inputs if present, against the domain.

        Events are marked with vertical dashed lines.

        Parameters
        ----------
        figsize : tuple, optional
            Figure size (width, height), by default (10, 8)
        **kwargs
            Additional arguments passed to plt.plot()

        Returns
        -------
        fig : matplotlib.figure.Figure
        axes : ndarray of Axes
        """
        frames = [("States", self.states)]
        if self.inputs is not None:
            frames.append(("Inputs", self.inputs))

        fig, axes = plt.subplots(len(frames), 1, figsize=figsize, squeeze=False)
        axes = axes.flatten()
        for ax, (title, df) in zip(axes, frames):
            for col in df.columns:
                ax.plot(self.time, df[col], label=col, **kwargs)
            for ev in self.events:
                ax.axvline(ev.time, color="k", linestyle="--", alpha=0.4)
            ax.set_ylabel(title)
            ax.set_title(title)
            if len(df.columns) > 1:
                ax.legend()
            ax.grid(True, alpha=0.3)
        axes[-1].set_xlabel(self.domain)

        plt.tight_layout()
        return fig, axes

    def to_dataframe(self) -> pd.DataFrame:
        """Single DataFrame with columns: domain, X symbols, inputs.

        Same column order as the text results log.
        """
        dfs = [self.states]
        if self.inputs is not None:
            dfs.append(self.inputs)
        return pd.concat(dfs, axis=1).reset_index()

    def save(self, filename: str):
        """Save results to file.

        Supports .npz (NumPy), .csv (via pandas), and .mat (MATLAB).
        Events are not saved.
        """
        ext = os.path.splitext(filename)[1].lower()

        if ext == ".npz":
            save_dict = {
                "time": self.time,
                "domain": self.domain,
                "states": self.states.to_numpy(),
                "state_columns": np.array(self.states.columns.tolist()),
            }
            if self.inputs is not None:
                save_dict["inputs"] = self.inputs.to_numpy()
                save_dict["input_columns"] = np.array(self.inputs.columns.tolist())
            np.savez_compressed(filename, **save_dict)

        elif ext == ".csv":
            self.to_dataframe().to_csv(filename, index=False)

        elif ext == ".mat":
            save_dict = {
                "time": self.time,
                "domain": self.domain,
                "states": self.states.to_numpy(),
                "state_columns": ",".join(self.states.columns),
            }
            if self.inputs is not None:
                save_dict["inputs"] = self.inputs.to_numpy()
                save_dict["input_columns"] = ",".join(self.inputs.columns)
            savemat(filename, save_dict)

        else:
            raise ValueError(
                f"Unsupported file extension '{ext}'. Use .npz, .csv, or .mat"
            )

    @classmethod
    def load(cls, filename: str) -> "SimulationResult":
        """Load results saved with ``save`` (.npz or .mat)."""
        ext = os.path.splitext(filename)[1].lower()

        if ext == ".npz":
            with np.load(filename) as data:
                time = data["time"]
                domain = str(data["domain"])
                states = pd.DataFrame(
                    data["states"], columns=data["state_columns"].tolist()
                )
                inputs = None
                if "inputs" in data:
                    inputs = pd.DataFrame(
                        data["inputs"], columns=data["input_columns"].tolist()
                    )

        elif ext == ".mat":
            data = loadmat(filename)
            time = data["time"].flatten()
            domain = str(data["domain"][0])
            states = pd.DataFrame(
                data["states"], columns=str(data["state_columns"][0]).split(",")
            )
            inputs = None
            if "inputs" in data:
                inputs = pd.DataFrame(
                    data["inputs"],
                    columns=str(data["input_columns"][0]).split(","),
                )

        else:
            raise ValueError(
                f"Unsupported file extension '{ext}'. Use .npz or .mat"
            )

        return cls(time=time, states=states, inputs=inputs, domain=domain)

    def __repr__(self):
        parts = [
            f"SimulationResult(domain={self.domain!r}",
            f"n_steps={self.n_steps}",
            f"n_states={self.n_states}",
        ]
        if self.inputs is not None:
            parts.append(f"n_inputs={self.n_inputs}")
        if self.events:
            parts.append(f"n_events={len(self.events)}")
        return ", ".join(parts) + ")"
