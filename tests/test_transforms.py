"""
Tests for variable transforms
"""

import numpy as np
import pytest

from fieldgen import (
    InvertibilityError,
    VariableSeries,
    available_transforms,
    get_transform,
    register_transform,
)
from fieldgen.config import PR_FLOOR


def test_builtin_transforms_registered():
    assert {"identity", "log"} <= set(available_transforms())


def test_log_round_trip():
    pr = np.array([[1e-5, 3e-5], [2e-4, 5e-6]])
    log = get_transform("log")
    np.testing.assert_allclose(log.inverse(log.forward(pr)), pr, rtol=1e-12)


def test_zero_precipitation_is_floored_with_warning():
    with pytest.warns(UserWarning):
        out = get_transform("log").forward(np.array([0.0, 1e-5]))
    assert out[0] == pytest.approx(np.log(PR_FLOOR))


def test_negative_precipitation_rejected():
    with pytest.raises(InvertibilityError):
        get_transform("log").forward(np.array([-1e-6, 1e-5]))


def test_unknown_transform():
    with pytest.raises(InvertibilityError):
        get_transform("boxcox")
    with pytest.raises(InvertibilityError):
        VariableSeries(name="tas", data=np.zeros((3, 2)), transform="boxcox")


def test_register_requires_inverse():
    with pytest.raises(InvertibilityError):
        register_transform("sqrt_no_inverse", np.sqrt)


def test_register_duplicate_name():
    with pytest.raises(ValueError):
        register_transform("identity", np.asarray, np.asarray)


def test_custom_transform_used_by_series():
    register_transform("sqrt", np.sqrt, np.square, overwrite=True)
    raw = np.array([[4.0, 9.0], [16.0, 25.0]])
    series = VariableSeries.from_native("pr", raw, transform="sqrt")

    np.testing.assert_allclose(series.data, [[2.0, 3.0], [4.0, 5.0]])
    np.testing.assert_allclose(series.native(), raw)


def test_default_transform_by_variable_name():
    series = VariableSeries.from_native("pr", np.full((4, 1), 2e-5))
    assert series.transform == "log"
    assert VariableSeries.from_native("tas", np.zeros((4, 1))).transform == "identity"
