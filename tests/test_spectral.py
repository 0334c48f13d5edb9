"""
Tests for the spectral model and constrained phase synthesis
"""

import numpy as np
import pytest
from scipy import fft as sp_fft

from fieldgen import (
    InputShapeError,
    InvertibilityError,
    SpectralLengthError,
    analyze,
    derive_phase_constraints,
    magnitude_spectrum,
    synthesize,
)
from fieldgen.spectral import frequency_count, wrap_phase


def _ar1(n_time, n_eof, phi=0.7, seed=0):
    rng = np.random.default_rng(seed)
    shocks = rng.standard_normal((n_time, n_eof))
    out = np.zeros_like(shocks)
    out[0] = shocks[0]
    for t in range(1, n_time):
        out[t] = phi * out[t - 1] + shocks[t]
    # couple channel 1 to a lagged channel 0
    out[1:, 1] += 0.8 * out[:-1, 0]
    return out


@pytest.fixture(params=[64, 63], ids=["even", "odd"])
def coefficients(request):
    return _ar1(request.param, 3)


def test_frequency_count():
    assert frequency_count(64) == 33
    assert frequency_count(63) == 32


def test_reuse_reconstructs_training_series(coefficients):
    model = analyze(coefficients)
    np.testing.assert_allclose(synthesize(model, mode="reuse"), coefficients, atol=1e-10)


def test_random_phases_keep_magnitudes(coefficients):
    model = analyze(coefficients)
    new = synthesize(model, mode="random", rng=np.random.default_rng(1))

    assert new.shape == coefficients.shape
    assert np.all(np.isreal(new))
    np.testing.assert_allclose(magnitude_spectrum(new), model.magnitude, atol=1e-9)
    # different realization, same time mean
    assert not np.allclose(new, coefficients)
    np.testing.assert_allclose(new.mean(axis=0), coefficients.mean(axis=0), atol=1e-10)


def test_random_phases_keep_cross_spectra(coefficients):
    model = analyze(coefficients)
    new = synthesize(model, mode="random", rng=np.random.default_rng(2))

    old_f = sp_fft.rfft(coefficients, axis=0)
    new_f = sp_fft.rfft(new, axis=0)
    old_cross = old_f[:, 0] * np.conj(old_f[:, 1])
    new_cross = new_f[:, 0] * np.conj(new_f[:, 1])
    np.testing.assert_allclose(new_cross, old_cross, atol=1e-8)

    # hence identical lag-0 covariance between channels
    np.testing.assert_allclose(new.T @ new, coefficients.T @ coefficients, atol=1e-8)


def test_constraints_recover_training_phases(coefficients):
    model = analyze(coefficients)
    fourier = sp_fft.rfft(coefficients, axis=0)
    constraints = derive_phase_constraints(fourier, coefficients.shape[0])

    expected = np.exp(1j * model.phase)
    np.testing.assert_allclose(np.exp(1j * constraints.training_phases()), expected, atol=1e-10)
    # the reference EOF has zero offset to itself
    idx = np.arange(constraints.n_freq)
    np.testing.assert_allclose(constraints.offsets[idx, constraints.reference], 0.0, atol=1e-12)
    np.testing.assert_allclose(
        wrap_phase(constraints.pair(1, 0)),
        wrap_phase(model.phase[:, 1] - model.phase[:, 0]),
        atol=1e-10,
    )


def test_same_generator_state_is_reproducible(coefficients):
    model = analyze(coefficients)
    a = synthesize(model, mode="random", rng=np.random.default_rng(5))
    b = synthesize(model, mode="random", rng=np.random.default_rng(5))
    np.testing.assert_array_equal(a, b)


def test_length_mismatch(coefficients):
    model = analyze(coefficients)
    with pytest.raises(SpectralLengthError):
        synthesize(model, mode="reuse", n_time=coefficients.shape[0] + 2)


def test_explicit_phase_shape_mismatch(coefficients):
    model = analyze(coefficients)
    with pytest.raises(SpectralLengthError):
        synthesize(model, phases=np.zeros((model.n_freq - 1, model.n_eof)))


def test_complex_phase_at_dc_rejected(coefficients):
    model = analyze(coefficients)
    phases = model.phase.copy()
    phases[0, :] = 0.5
    with pytest.raises(InvertibilityError):
        synthesize(model, phases=phases)


def test_unknown_mode(coefficients):
    with pytest.raises(ValueError):
        synthesize(analyze(coefficients), mode="shuffle")


def test_single_step_is_degenerate():
    with pytest.raises(ValueError):
        analyze(np.ones((1, 2)))


# ============================================================================
# 多次运行 (Concatenated runs)
# ============================================================================

def test_runs_are_analyzed_separately():
    first, second = _ar1(32, 3, seed=1), _ar1(32, 3, seed=2)
    model = analyze(np.vstack([first, second]), run_lengths=[32, 32])

    assert model.n_time == 32
    assert model.n_freq == 17
    power = (np.abs(sp_fft.rfft(first, axis=0)) ** 2 + np.abs(sp_fft.rfft(second, axis=0)) ** 2) / 2
    np.testing.assert_allclose(model.magnitude, np.sqrt(power), rtol=1e-12)
    np.testing.assert_allclose(
        np.exp(1j * model.phase), np.exp(1j * np.angle(sp_fft.rfft(first, axis=0))), atol=1e-10
    )
    assert synthesize(model, mode="random", rng=np.random.default_rng(0)).shape == (32, 3)


def test_single_run_length_matches_plain_analysis(coefficients):
    plain = analyze(coefficients)
    tagged = analyze(coefficients, run_lengths=[coefficients.shape[0]])
    np.testing.assert_array_equal(tagged.magnitude, plain.magnitude)


@pytest.mark.parametrize("run_lengths", [[30, 34], [32, 30], [64, 0]])
def test_bad_run_lengths_rejected(run_lengths):
    with pytest.raises(InputShapeError):
        analyze(_ar1(64, 2), run_lengths=run_lengths)
