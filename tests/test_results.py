"""Tests for SimulationResult."""

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from odesim import Simulation, SimulationResult, State, marker


@pytest.fixture
def result():
    sim = Simulation()
    sim.set_diff_from_map(
        {
            "theta": lambda s: s.x("omega"),
            "omega": lambda s: s.u("torque"),
        }
    )
    sim.set_input_from_map({"torque": lambda s: 1.0})
    sim.set_x0_from_map({"theta": 0.0, "omega": 0.0})
    sim.set_timespan(0.0, 1.0, 10)
    sim.add_event_handlers(lambda s: marker() if s.time >= 0.45 else None)
    sim.begin()
    return sim.to_result()


def test_from_states(result):
    assert result.n_steps == 11
    assert result.n_states == 2
    assert result.n_inputs == 1
    assert list(result.states.columns) == ["omega", "theta"]
    assert result.dt == pytest.approx(0.1)
    assert result.states["theta"].iloc[-1] == pytest.approx(0.5)
    assert len(result.events) == 1
    assert "n_events=1" in repr(result)


def test_from_states_requires_states():
    with pytest.raises(ValueError, match="no states"):
        SimulationResult.from_states([])


def test_length_mismatch():
    with pytest.raises(ValueError, match="length"):
        SimulationResult(
            time=np.array([0.0, 1.0]), states=pd.DataFrame({"x": [1.0, 2.0, 3.0]})
        )


def test_no_inputs():
    states = [State.from_x_map({"x": float(i)}, time=i) for i in range(3)]
    res = SimulationResult.from_states(states, domain="distance")
    assert res.inputs is None
    assert res.n_inputs == 0
    df = res.to_dataframe()
    assert list(df.columns) == ["distance", "x"]


def test_to_dataframe(result):
    """Columns follow the results log layout: domain, X, inputs."""
    df = result.to_dataframe()
    assert list(df.columns) == ["time", "omega", "theta", "torque"]
    assert len(df) == len(result.time)


def test_save_csv(result, tmp_path):
    path = tmp_path / "results.csv"
    result.save(str(path))
    df = pd.read_csv(path)
    assert list(df.columns) == ["time", "omega", "theta", "torque"]
    np.testing.assert_allclose(df["theta"], result.states["theta"])


@pytest.mark.parametrize("ext", [".npz", ".mat"])
def test_save_and_load(result, tmp_path, ext):
    path = str(tmp_path / f"results{ext}")
    result.save(path)
    loaded = SimulationResult.load(path)
    assert loaded.domain == "time"
    np.testing.assert_allclose(loaded.time, result.time)
    assert list(loaded.states.columns) == ["omega", "theta"]
    assert list(loaded.inputs.columns) == ["torque"]
    np.testing.assert_allclose(loaded.states.to_numpy(), result.states.to_numpy())


def test_unsupported_extension(result, tmp_path):
    with pytest.raises(ValueError, match="Unsupported file extension"):
        result.save(str(tmp_path / "results.txt"))
    with pytest.raises(ValueError, match="Unsupported file extension"):
        SimulationResult.load(str(tmp_path / "results.csv"))


def test_plot(result):
    fig, axes = result.plot()
    assert len(axes) == 2
    assert axes[-1].get_xlabel() == "time"
    plt.close(fig)
