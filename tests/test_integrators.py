"""Tests for the solver suite."""

import numpy as np
import pytest

from odesim import (
    AlgorithmConfig,
    ConstantInput,
    DirectIntegration,
    DormandPrince,
    GraggBulirschStoer,
    NewtonRaphson,
    RKF45,
    RKF78,
    RungeKutta4,
    Simulation,
    SimulationConfig,
)

EXPLICIT_SOLVERS = [
    RungeKutta4(),
    RKF45(),
    DormandPrince(),
    RKF78(),
    GraggBulirschStoer(),
]


def quadratic_sim(solver, steps=10):
    """theta'' = 1 with zero initial conditions, theta(t) = t**2 / 2."""
    sim = Simulation(solver=solver)
    sim.set_diff_from_map(
        {
            "theta": lambda s: s.x("Dtheta"),
            "Dtheta": lambda s: 1.0,
        }
    )
    sim.set_x0_from_map({"theta": 0.0, "Dtheta": 0.0})
    sim.set_timespan(0.0, 1.0, steps)
    return sim


def decay_sim(solver, algorithm=None, steps=10):
    """y' = -y, y(0) = 1."""
    config = SimulationConfig(algorithm=algorithm or AlgorithmConfig())
    sim = Simulation(config, solver=solver)
    sim.set_diff_from_map({"y": lambda s: -s.x("y")})
    sim.set_x0_from_map({"y": 1.0})
    sim.set_timespan(0.0, 1.0, steps)
    return sim


@pytest.mark.parametrize("solver", EXPLICIT_SOLVERS, ids=repr)
def test_quadratic_explicit(solver):
    sim = quadratic_sim(solver)
    sim.begin()
    t, theta = sim.results("time"), sim.results("theta")
    assert len(t) == 11
    h = sim.dt
    np.testing.assert_allclose(theta, 0.5 * t**2, atol=h**4)
    assert t[-1] == pytest.approx(1.0, abs=1e-12)


@pytest.mark.parametrize("solver", [NewtonRaphson(), DirectIntegration()], ids=repr)
def test_quadratic_first_order(solver):
    """Backward Euler and the naive trapezoid are O(h)."""
    sim = quadratic_sim(solver)
    sim.begin()
    t, theta = sim.results("time"), sim.results("theta")
    np.testing.assert_allclose(theta, 0.5 * t**2, atol=sim.dt)


@pytest.mark.parametrize("solver", EXPLICIT_SOLVERS, ids=repr)
def test_explicit_time_dependence(solver):
    """Stage states carry their own time: theta' = t."""
    sim = Simulation(solver=solver)
    sim.set_diff_from_map({"theta": lambda s: s.time})
    sim.set_x0_from_map({"theta": 0.0})
    sim.set_timespan(0.0, 1.0, 10)
    sim.begin()
    t = sim.results("time")
    np.testing.assert_allclose(sim.results("theta"), 0.5 * t**2, atol=1e-12)


@pytest.mark.parametrize("solver", EXPLICIT_SOLVERS, ids=repr)
def test_input_driven(solver):
    """theta' = u with u = 1 gives theta = t to machine precision."""
    sim = Simulation(solver=solver)
    sim.set_diff_from_map({"theta": lambda s: s.u("u")})
    sim.set_input_from_map({"u": ConstantInput(1.0)})
    sim.set_x0_from_map({"theta": 0.0})
    sim.set_timespan(0.0, 1.0, 10)
    sim.begin()
    t = sim.results("time")
    np.testing.assert_allclose(sim.results("theta"), t, atol=1e-12)
    np.testing.assert_array_equal(sim.results("u"), np.ones(11))


@pytest.mark.parametrize(
    "solver, tol",
    [
        (RungeKutta4(), 1e-5),
        (RKF45(), 1e-6),
        (DormandPrince(), 1e-6),
        (RKF78(), 1e-9),
        (GraggBulirschStoer(), 1e-10),
    ],
    ids=lambda v: repr(v) if not isinstance(v, float) else str(v),
)
def test_exponential_decay_accuracy(solver, tol):
    sim = decay_sim(solver)
    sim.begin()
    t = sim.results("time")
    np.testing.assert_allclose(sim.results("y"), np.exp(-t), atol=tol)


def test_substeps_are_stored():
    config = SimulationConfig(algorithm=AlgorithmConfig(steps=4))
    sim = Simulation(config)
    sim.set_diff_from_map({"y": lambda s: -s.x("y")})
    sim.set_x0_from_map({"y": 1.0})
    sim.set_timespan(0.0, 1.0, 10)
    sim.begin()
    t = sim.results("time")
    assert len(t) == 41
    np.testing.assert_allclose(np.diff(t), 0.025, atol=1e-12)
    np.testing.assert_allclose(sim.results("y"), np.exp(-t), atol=1e-8)


@pytest.mark.parametrize("solver", [RKF45(), DormandPrince(), RKF78()], ids=repr)
def test_adaptive_stepping(solver):
    algorithm = AlgorithmConfig(error_max=1e-8, step_min=1e-4, step_max=0.1)
    sim = decay_sim(solver, algorithm)
    sim.begin()
    t = sim.results("time")
    assert np.all(np.diff(t) > 0)
    assert t[-1] == pytest.approx(1.0, abs=1e-12)
    np.testing.assert_allclose(sim.results("y"), np.exp(-t), atol=1e-6)
    assert sim.tolerance_violations == 0


def test_adaptive_extrapolation():
    algorithm = AlgorithmConfig(error_max=1e-10, step_min=1e-3, step_max=0.5)
    sim = decay_sim(GraggBulirschStoer(), algorithm)
    sim.begin()
    t = sim.results("time")
    assert t[-1] == pytest.approx(1.0, abs=1e-12)
    np.testing.assert_allclose(sim.results("y"), np.exp(-t), atol=1e-8)


def test_adaptive_first_step_respects_step_max():
    """Domain steps longer than step_max are still split into short sub-steps."""
    algorithm = AlgorithmConfig(error_max=1e-8, step_min=1e-4, step_max=0.1)
    sim = decay_sim(RKF45(), algorithm, steps=2)
    sim.begin()
    t = sim.results("time")
    assert np.diff(t).max() <= 0.1 + 1e-12
    assert t[-1] == pytest.approx(1.0, abs=1e-12)
    np.testing.assert_allclose(sim.results("y"), np.exp(-t), atol=1e-6)


def test_adaptive_refines_steep_problem():
    """Sub-step count grows when the error is too large."""
    algorithm = AlgorithmConfig(error_max=1e-9, step_min=1e-5, step_max=0.1)
    sim = Simulation(SimulationConfig(algorithm=algorithm), solver=RKF45())
    sim.set_diff_from_map({"y": lambda s: -20.0 * s.x("y")})
    sim.set_x0_from_map({"y": 1.0})
    sim.set_timespan(0.0, 1.0, 10)
    sim.begin()
    t = sim.results("time")
    assert len(t) > 11
    np.testing.assert_allclose(sim.results("y"), np.exp(-20.0 * t), atol=1e-6)


def test_tolerance_exceeded_is_reported():
    """Sub-steps at step_min are accepted despite the error."""
    algorithm = AlgorithmConfig(error_max=1e-20, step_min=0.05, step_max=0.1)
    sim = decay_sim(RKF45(), algorithm)
    sim.begin()
    assert sim.tolerance_violations > 0
    # the run still completes with sensible values
    t = sim.results("time")
    np.testing.assert_allclose(sim.results("y"), np.exp(-t), atol=1e-5)


def test_fixed_step_when_bounds_unset():
    """Embedded pairs run fixed-step without error bounds."""
    sim = decay_sim(RKF45())
    sim.begin()
    np.testing.assert_allclose(np.diff(sim.results("time")), 0.1, atol=1e-12)
    assert sim.steps == 1


def test_newton_stiff():
    """y' = -15 y is stable with the implicit solver at h = 0.02."""
    tau = -15.0
    algorithm = AlgorithmConfig(error_max=1e-6)
    sim = Simulation(SimulationConfig(algorithm=algorithm), solver=NewtonRaphson())
    sim.set_diff_from_map({"y": lambda s: tau * s.x("y")})
    sim.set_x0_from_map({"y": 1.0})
    sim.set_timespan(0.0, 1.0, 50)
    sim.begin()
    t, y = sim.results("time"), sim.results("y")
    assert len(t) == 51
    np.testing.assert_allclose(y, np.exp(tau * t), atol=4 * sim.dt)
    # backward Euler for linear decay has a closed form
    np.testing.assert_allclose(y, (1 / (1 - tau * sim.dt)) ** np.arange(51), rtol=1e-5)


def test_newton_relaxation_converges():
    algorithm = AlgorithmConfig(error_max=1e-9, relaxation_factor=0.3, iteration_max=100)
    sim = decay_sim(NewtonRaphson(), algorithm)
    sim.begin()
    t, y = sim.results("time"), sim.results("y")
    np.testing.assert_allclose(y, (1 / 1.1) ** np.arange(11), rtol=1e-6)
    assert t[-1] == pytest.approx(1.0)


def test_newton_warns_about_defaults(caplog):
    sim = decay_sim(NewtonRaphson())
    with caplog.at_level("WARNING", logger="odesim.integrators"):
        sim.begin()
    messages = [r.getMessage() for r in caplog.records if "NewtonRaphson" in r.getMessage()]
    assert len(messages) == 1
    assert "1e-05" in messages[0]


def test_direct_integration_substeps():
    """With several sub-steps the trapezoid uses the previous slope."""
    config = SimulationConfig(algorithm=AlgorithmConfig(steps=10))
    sim = Simulation(config, solver=DirectIntegration())
    sim.set_diff_from_map({"y": lambda s: -s.x("y")})
    sim.set_x0_from_map({"y": 1.0})
    sim.set_timespan(0.0, 1.0, 10)
    sim.begin()
    t = sim.results("time")
    assert len(t) == 101
    np.testing.assert_allclose(sim.results("y"), np.exp(-t), atol=0.01)


def test_solver_repr():
    assert repr(RungeKutta4()) == "RungeKutta4()"
    assert repr(RKF78()) == "RKF78()"
    assert repr(NewtonRaphson()) == "NewtonRaphson()"
