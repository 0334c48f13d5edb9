"""
仿真器集成测试 (Emulator Integration Tests)

End-to-end tests of training and generation:
1. 训练数据重建 / Reconstruction of the training data
2. 可重复性 / Reproducibility of seeded generation
3. 统计特征保持 / Preservation of marginal and cross-variable statistics
4. 输入校验 / Input validation
"""

import dataclasses

import numpy as np
import pytest

from fieldgen import (
    Emulator,
    Grid,
    InputShapeError,
    VariableSeries,
    analyze,
    assemble_emulator,
    emulator_reconstruction,
    generate_fields,
    generate_residuals,
    generate_synthetic_esm_data,
    spearman_matrix,
    train,
)
from fieldgen.spectral import synthesize


# ============================================================================
# 测试夹具 (Test Fixtures)
# ============================================================================

@pytest.fixture
def two_cell_scenario():
    """
    两个格点、50 个时间步的温度场
    Two cells, 50 time steps, correlated noise around a linear trend.
    """
    rng = np.random.default_rng(11)
    n_time = 50
    driver = np.linspace(0.0, 1.5, n_time)
    common = rng.standard_normal(n_time)
    noise = np.column_stack([
        common + 0.5 * rng.standard_normal(n_time),
        0.7 * common + 0.7 * rng.standard_normal(n_time),
    ])
    # remove any component the regression could absorb, so slopes are exact
    design = np.column_stack([np.ones(n_time), driver])
    noise -= design @ np.linalg.lstsq(design, noise, rcond=None)[0]
    tas = 287.0 + np.outer(driver, [1.2, 0.8]) + noise
    grid = Grid.uniform(2, time=np.arange(n_time), grid_id="two_cell")
    return {"tas": tas, "driver": driver, "grid": grid, "slopes": np.array([1.2, 0.8])}


@pytest.fixture
def esm_data():
    return generate_synthetic_esm_data(n_time=60, n_lat=3, n_lon=4, seed=5)


@pytest.fixture
def joint_emulator(esm_data):
    tas = VariableSeries.from_native("tas", esm_data["tas"])
    pr = VariableSeries.from_native("pr", esm_data["pr"])
    return train([tas, pr], esm_data["grid"], source_ids=["synthetic"])


# ============================================================================
# 训练与重建 (Training & Reconstruction)
# ============================================================================

def test_single_variable_reconstruction(two_cell_scenario):
    tas = VariableSeries.from_native("tas", two_cell_scenario["tas"])
    emu = train(tas, two_cell_scenario["grid"], driver=two_cell_scenario["driver"])

    assert emu.variables == ("tas",)
    assert not emu.joint
    assert emu.n_time == 50 and emu.n_cells == 2

    ps = emu.pattern_scale["tas"]
    np.testing.assert_allclose(ps.slopes, two_cell_scenario["slopes"], rtol=1e-6)
    np.testing.assert_allclose(ps.intercepts, 287.0, rtol=1e-6)

    rebuilt = emulator_reconstruction(emu)
    np.testing.assert_allclose(rebuilt["tas"], two_cell_scenario["tas"], atol=1e-6)


def test_joint_reconstruction(esm_data, joint_emulator):
    assert joint_emulator.joint
    assert joint_emulator.variables == ("tas", "pr")
    assert joint_emulator.eof.n_space == 2 * esm_data["grid"].n_cells
    assert joint_emulator.metadata.transforms["pr"] == "log"

    rebuilt = emulator_reconstruction(joint_emulator)
    np.testing.assert_allclose(rebuilt["tas"], esm_data["tas"], atol=1e-6)
    np.testing.assert_allclose(rebuilt["pr"], esm_data["pr"], rtol=1e-6)


def test_area_weighted_training(esm_data):
    tas = VariableSeries.from_native("tas", esm_data["tas"])
    emu = train(tas, esm_data["grid"], area_weighted_eof=True)

    assert emu.metadata.area_weighted_eof
    assert emu.eof.weights is not None
    np.testing.assert_allclose(emulator_reconstruction(emu)["tas"], esm_data["tas"], atol=1e-6)


def test_default_driver_is_global_mean(esm_data):
    tas = VariableSeries.from_native("tas", esm_data["tas"])
    emu = train(tas, esm_data["grid"])
    np.testing.assert_allclose(emu.driver, esm_data["driver"])


# ============================================================================
# 生成 (Generation)
# ============================================================================

def test_first_realization_can_reuse_training_phases(joint_emulator):
    residuals = generate_residuals(
        joint_emulator, 3, seed=1, reuse_training_phases_for_first=True
    )
    training = np.hstack([
        joint_emulator.pattern_scale[name].residuals for name in joint_emulator.variables
    ])
    np.testing.assert_allclose(residuals[0], training, atol=1e-6)
    assert not np.allclose(residuals[1], training)


def test_seeded_generation_is_reproducible(joint_emulator):
    a = generate_residuals(joint_emulator, 4, seed=123)
    b = generate_residuals(joint_emulator, 4, seed=123)
    for x, y in zip(a, b):
        np.testing.assert_array_equal(x, y)

    # realization k does not depend on how many are requested
    c = generate_residuals(joint_emulator, 2, seed=123)
    np.testing.assert_array_equal(c[1], a[1])

    d = generate_residuals(joint_emulator, 1, seed=124)
    assert not np.allclose(d[0], a[0])


def test_reuse_flag_does_not_shift_later_realizations(joint_emulator):
    a = generate_residuals(joint_emulator, 3, seed=9)
    b = generate_residuals(joint_emulator, 3, seed=9, reuse_training_phases_for_first=True)
    np.testing.assert_array_equal(a[2], b[2])


def test_zero_count(joint_emulator):
    assert generate_residuals(joint_emulator, 0, seed=0) == []


def test_concatenated_runs_generate_single_run_length(esm_data):
    tas = VariableSeries.from_native("tas", esm_data["tas"])
    pr = VariableSeries.from_native("pr", esm_data["pr"])
    emu = train([tas, pr], esm_data["grid"], run_lengths=[30, 30])

    assert emu.n_time == 60
    assert emu.run_length == 30
    np.testing.assert_array_equal(emu.run_driver, emu.driver[:30])
    np.testing.assert_array_equal(emu.run_time, esm_data["grid"].time[:30])

    halves = emu.eof.coefficients.reshape(2, 30, -1)
    power = np.mean(np.abs(np.fft.rfft(halves, axis=1)) ** 2, axis=0)
    np.testing.assert_allclose(emu.spectral.magnitude, np.sqrt(power), rtol=1e-8, atol=1e-10)

    residuals = generate_residuals(emu, 2, seed=3)
    assert residuals[0].shape == (30, 2 * esm_data["grid"].n_cells)
    fields = generate_fields(emu, residuals)
    assert fields[0]["tas"].shape == (30, esm_data["grid"].n_cells)
    assert np.all(fields[0]["pr"] > 0)
    with pytest.raises(InputShapeError):
        generate_fields(emu, residuals, driver=emu.driver)


def test_unequal_runs_rejected(esm_data):
    tas = VariableSeries.from_native("tas", esm_data["tas"])
    with pytest.raises(InputShapeError):
        train(tas, esm_data["grid"], run_lengths=[25, 35])
    with pytest.raises(InputShapeError):
        train(tas, esm_data["grid"], run_lengths=[30, 20])


def test_fields_have_native_units(esm_data, joint_emulator):
    fields = generate_fields(joint_emulator, generate_residuals(joint_emulator, 5, seed=0))

    assert len(fields) == 5
    for f in fields:
        assert set(f) == {"tas", "pr"}
        assert f["tas"].shape == esm_data["tas"].shape
        assert np.all(f["pr"] > 0)
        assert np.all(np.isfinite(f["tas"]))


def test_fields_follow_new_driver(joint_emulator):
    residuals = generate_residuals(joint_emulator, 1, seed=0)
    warmer = joint_emulator.driver + 2.0

    base = generate_fields(joint_emulator, residuals)[0]
    shifted = generate_fields(joint_emulator, residuals, driver=warmer)[0]

    slopes = joint_emulator.pattern_scale["tas"].slopes
    np.testing.assert_allclose(shifted["tas"] - base["tas"], np.tile(2.0 * slopes, (60, 1)), atol=1e-8)


def test_driver_length_mismatch(joint_emulator):
    residuals = generate_residuals(joint_emulator, 1, seed=0)
    with pytest.raises(InputShapeError):
        generate_fields(joint_emulator, residuals, driver=np.zeros(10))


def test_lag0_covariance_preserved_per_realization(joint_emulator):
    coeffs = joint_emulator.eof.coefficients
    new = synthesize(joint_emulator.spectral, mode="random", rng=np.random.default_rng(3))
    np.testing.assert_allclose(new.T @ new, coeffs.T @ coeffs, atol=1e-6)


def test_statistics_over_many_realizations(two_cell_scenario):
    """1000 realizations of the two-cell scenario keep mean, spread, median and rank correlation."""
    tas = VariableSeries.from_native("tas", two_cell_scenario["tas"])
    emu = train(tas, two_cell_scenario["grid"], driver=two_cell_scenario["driver"])
    training = emu.pattern_scale["tas"].residuals

    residuals = generate_residuals(emu, 1000, seed=2024)
    stacked = np.stack(residuals)

    assert stacked.shape == (1000, 50, 2)
    np.testing.assert_allclose(
        stacked.std(axis=(0, 1)), training.std(axis=0), rtol=0.15
    )
    np.testing.assert_allclose(
        stacked.mean(axis=(0, 1)), training.mean(axis=0),
        atol=0.25 * training.std(axis=0).max(),
    )
    np.testing.assert_allclose(
        np.median(stacked, axis=(0, 1)), np.median(training, axis=0),
        atol=0.25 * training.std(axis=0).max(),
    )
    cov_gen = np.mean([np.cov(r, rowvar=False) for r in residuals], axis=0)
    np.testing.assert_allclose(cov_gen, np.cov(training, rowvar=False), rtol=0.2, atol=0.05)
    rho_train = spearman_matrix(training)[0, 1]
    rho_gen = np.mean([spearman_matrix(r)[0, 1] for r in residuals])
    assert abs(rho_gen - rho_train) < 0.15


def test_joint_cross_variable_correlation(joint_emulator):
    ps = joint_emulator.pattern_scale
    training = np.hstack([ps["tas"].residuals, ps["pr"].residuals])
    n = joint_emulator.n_cells

    rho_train = spearman_matrix(training, cells=[0, n])[0, 1]
    rho_gen = np.mean([
        spearman_matrix(r, cells=[0, n])[0, 1]
        for r in generate_residuals(joint_emulator, 200, seed=8)
    ])
    assert abs(rho_gen - rho_train) < 0.15


# ============================================================================
# 校验 (Validation)
# ============================================================================

def test_emulator_is_immutable(joint_emulator):
    with pytest.raises(dataclasses.FrozenInstanceError):
        joint_emulator.driver = np.zeros(60)
    with pytest.raises(TypeError):
        joint_emulator.pattern_scale["tas"] = None


def test_emulator_requires_metadata(joint_emulator):
    with pytest.raises(TypeError):
        Emulator(
            grid=joint_emulator.grid,
            driver=joint_emulator.driver,
            pattern_scale=joint_emulator.pattern_scale,
            empirical=joint_emulator.empirical,
            eof=joint_emulator.eof,
            spectral=joint_emulator.spectral,
            metadata=None,
        )
    with pytest.raises(TypeError):
        Emulator(
            grid=joint_emulator.grid,
            driver=joint_emulator.driver,
            pattern_scale=joint_emulator.pattern_scale,
            empirical=joint_emulator.empirical,
            eof=joint_emulator.eof,
            spectral=joint_emulator.spectral,
        )


def test_train_rejects_shape_mismatch(esm_data):
    tas = VariableSeries.from_native("tas", esm_data["tas"][:, :5])
    with pytest.raises(InputShapeError):
        train(tas, esm_data["grid"])


def test_train_rejects_duplicate_variables(esm_data):
    tas = VariableSeries.from_native("tas", esm_data["tas"])
    with pytest.raises(InputShapeError):
        train([tas, tas], esm_data["grid"])


def test_assemble_rejects_inconsistent_spectrum(joint_emulator):
    shorter = analyze(joint_emulator.eof.coefficients[:-2])
    with pytest.raises(ValueError):
        assemble_emulator(
            grid=joint_emulator.grid,
            driver=joint_emulator.driver,
            pattern_scale=joint_emulator.pattern_scale,
            empirical=joint_emulator.empirical,
            eof=joint_emulator.eof,
            spectral=shorter,
        )


def test_assemble_from_components(joint_emulator):
    rebuilt = assemble_emulator(
        grid=joint_emulator.grid,
        driver=joint_emulator.driver,
        pattern_scale=joint_emulator.pattern_scale,
        empirical=joint_emulator.empirical,
        eof=joint_emulator.eof,
        spectral=joint_emulator.spectral,
        transforms={"tas": "identity", "pr": "log"},
    )
    a = generate_residuals(rebuilt, 1, seed=4)[0]
    b = generate_residuals(joint_emulator, 1, seed=4)[0]
    np.testing.assert_array_equal(a, b)
