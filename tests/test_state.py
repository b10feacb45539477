"""Tests for State, state_diff and the X vector arithmetic."""

import numpy as np
import pytest

from odesim import arithmetic as ar
from odesim.errors import ConsistencyError, SymbolError
from odesim.state import State, evaluate, jacobian, state_diff


def make_state():
    s = State.from_x_map({"x": 1.0, "y": 2.0, "z": 3.0}, time=0.5)
    s.u_equal("u", 10.0)
    return s


def test_symbols_keep_creation_order():
    s = State()
    s.x_equal("b", 1.0)
    s.x_equal("a", 2.0)
    s.x_equal("b", 3.0)
    assert s.x_symbols() == ["b", "a"]
    assert s.x("b") == 3.0
    assert len(s) == 2


def test_unknown_symbols_raise():
    s = make_state()
    with pytest.raises(SymbolError, match="'w' symbol does not exist"):
        s.x("w")
    with pytest.raises(SymbolError):
        s.x_set("w", 1.0)
    with pytest.raises(SymbolError):
        s.u("x")
    # SymbolError is also a KeyError
    with pytest.raises(KeyError):
        s.u_set("w", 1.0)


def test_clone_is_independent():
    s = make_state()
    c = s.clone()
    c.x_set("x", 100.0)
    c.u_set("u", -1.0)
    c.time = 9.0
    assert s.x("x") == 1.0
    assert s.u("u") == 10.0
    assert s.time == 0.5
    # adding a symbol to the clone leaves the parent layout alone
    c.x_equal("new", 1.0)
    assert s.x_symbols() == ["x", "y", "z"]


def test_clone_blank():
    s = make_state()
    b = s.clone_blank(0.75)
    assert b.time == 0.75
    assert b.x_symbols() == s.x_symbols()
    np.testing.assert_array_equal(b.x_vector(), [0.0, 0.0, 0.0])
    assert b.u("u") == 10.0


def test_ordered():
    s = State.from_x_map({"c": 3.0, "a": 1.0, "b": 2.0}, time=2.0)
    s.u_equal("u", 5.0)
    o = s.ordered()
    assert o.x_symbols() == ["a", "b", "c"]
    np.testing.assert_array_equal(o.x_vector(), [1.0, 2.0, 3.0])
    assert o.u("u") == 5.0
    assert o.time == 2.0


def test_consistency_probe():
    s = make_state()
    probe = s.consistency_x(["z", "missing", "x"])
    assert probe[0] == 3.0
    assert np.isnan(probe[1])
    assert probe[2] == 1.0
    assert np.isnan(s.consistency_u(["x"])[0])


def test_set_all_x_length_checked():
    s = make_state()
    s.set_all_x([4.0, 5.0, 6.0])
    assert s.x("z") == 6.0
    with pytest.raises(ValueError):
        s.set_all_x([1.0, 2.0])


def test_state_diff_mapping_and_sequence():
    """state_diff returns a clone with X replaced by the Diff values."""
    s = make_state()
    diffs = {
        "z": lambda st: st.x("x") * 10,
        "x": lambda st: st.u("u"),
        "y": lambda st: st.time,
    }
    d = state_diff(diffs, s)
    assert d.time == s.time
    assert d.x_symbols() == s.x_symbols()
    np.testing.assert_allclose(d.x_vector(), [10.0, 0.5, 10.0])
    # input state untouched
    np.testing.assert_allclose(s.x_vector(), [1.0, 2.0, 3.0])

    ordered = [diffs["x"], diffs["y"], diffs["z"]]
    np.testing.assert_allclose(evaluate(ordered, s), [10.0, 0.5, 10.0])


def test_state_diff_arity_mismatch():
    s = make_state()
    with pytest.raises(ConsistencyError, match="not equal to number of X"):
        state_diff([lambda st: 1.0], s)
    with pytest.raises(ConsistencyError, match="no function defined"):
        state_diff({"x": None, "y": None, "w": None}, s)


def test_jacobian():
    s = State.from_x_map({"x": 2.0, "y": 3.0})
    diffs = [lambda st: st.x("x") * st.x("y"), lambda st: st.x("x") + st.x("y")]
    jac = jacobian(diffs, s)
    assert jac.shape == (2, 2)
    np.testing.assert_allclose(jac, [[3.0, 2.0], [1.0, 1.0]], atol=1e-6)
    # probe does not leak into the state
    np.testing.assert_array_equal(s.x_vector(), [2.0, 3.0])


def test_arithmetic_in_place_and_to():
    a = State.from_x_map({"x": 1.0, "y": -2.0})
    b = a.clone()
    b.set_all_x([3.0, 4.0])

    ar.add(a, b)
    np.testing.assert_array_equal(a.x_vector(), [4.0, 2.0])
    ar.sub(a, b)
    np.testing.assert_array_equal(a.x_vector(), [1.0, -2.0])
    ar.mul(a, b)
    np.testing.assert_array_equal(a.x_vector(), [3.0, -8.0])
    ar.div(a, b)
    np.testing.assert_array_equal(a.x_vector(), [1.0, -2.0])
    ar.add_scaled(a, 2.0, b)
    np.testing.assert_array_equal(a.x_vector(), [7.0, 6.0])
    ar.scale(0.5, a)
    np.testing.assert_array_equal(a.x_vector(), [3.5, 3.0])
    ar.add_const(-1.0, a)
    np.testing.assert_array_equal(a.x_vector(), [2.5, 2.0])

    dst = a.clone_blank(0.0)
    assert ar.add_to(dst, a, b) is dst
    np.testing.assert_array_equal(dst.x_vector(), [5.5, 6.0])
    ar.sub_to(dst, a, b)
    np.testing.assert_array_equal(dst.x_vector(), [-0.5, -2.0])
    ar.mul_to(dst, a, b)
    np.testing.assert_array_equal(dst.x_vector(), [7.5, 8.0])
    ar.div_to(dst, b, b)
    np.testing.assert_array_equal(dst.x_vector(), [1.0, 1.0])
    ar.scale_to(dst, 3.0, b)
    np.testing.assert_array_equal(dst.x_vector(), [9.0, 12.0])
    ar.add_scaled_to(dst, a, -1.0, b)
    np.testing.assert_array_equal(dst.x_vector(), [-0.5, -2.0])
    ar.abs_(dst)
    np.testing.assert_array_equal(dst.x_vector(), [0.5, 2.0])

    assert ar.max_(b) == 4.0
    assert ar.min_(b) == 3.0
    assert ar.norm(b, 2) == pytest.approx(5.0)
    assert ar.norm(b, np.inf) == pytest.approx(4.0)


def test_add_scaled_to_aliasing():
    """dst may be the same state as an operand."""
    a = State.from_x_map({"x": 1.0, "y": 2.0})
    b = a.clone()
    ar.add_scaled_to(a, a, 2.0, b)
    np.testing.assert_array_equal(a.x_vector(), [3.0, 6.0])


def test_arithmetic_length_mismatch():
    a = State.from_x_map({"x": 1.0, "y": 2.0})
    b = State.from_x_map({"x": 1.0})
    with pytest.raises(ValueError, match="lengths do not match"):
        ar.add(a, b)
    with pytest.raises(ValueError):
        ar.sub_to(a.clone_blank(0.0), a, b)
    with pytest.raises(ValueError):
        ar.max_(State())
