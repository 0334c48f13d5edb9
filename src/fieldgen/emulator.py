"""
场生成仿真器 (Field Emulator)
Emulator aggregate, training workflow and generation entry points.

本模块把各个组件串联为完整的训练与生成流程。
This module chains the components into the full training and generation
workflow:

训练 (Training):
    raw grid --pattern scaling--> residuals --empirical CDF--> normalized
    residuals --EOF--> basis + coefficients --FFT--> spectral model

生成 (Generation):
    spectral model --phases--> coefficients --FieldReconstructor--> residuals
    --+ mean field, inverse transform--> native-unit fields

The ``Emulator`` is an immutable value object. It is passed explicitly into
every generation call and never mutated, so any number of generation sessions
can share one trained emulator.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from . import __version__
from .config import DEFAULT_AREA_WEIGHTED_EOF, FFT_WORKERS
from .empirical_dist import EmpiricalDist, characterize, normalize
from .eof import EOFBasis, decompose, stack_variables
from .errors import InputShapeError
from .grid import Grid, VariableSeries, as_driver, global_mean
from .pattern_scaling import PatternScale, fit_pattern_scaling
from .reconstruct import FieldReconstructor
from .spectral import SpectralModel, analyze, common_run_length, synthesize
from .transforms import get_transform

logger = logging.getLogger(__name__)


# ============================================================================
# 数据结构 (Data Structures)
# ============================================================================


@dataclass(frozen=True)
class EmulatorMetadata:
    """
    Provenance of a trained emulator.

    Attributes
    ----------
    variables : tuple of str
        Variable names in stacking order (temperature first in joint mode).
    transforms : dict
        Variable name -> registered transform name.
    source_ids : tuple of str
        Identifiers of the training inputs (e.g. file names).
    run_lengths : tuple of int
        Time steps contributed by each source, when runs were concatenated.
        The runs must have equal lengths; the spectral model is trained on
        the frequency grid of one run.
    grid_id : str
        Grid identity.
    area_weighted_eof : bool
        Whether area weights were applied before the EOF decomposition.
    version : str
        Package version used for training.
    """

    variables: Tuple[str, ...]
    transforms: Mapping[str, str]
    source_ids: Tuple[str, ...] = ()
    run_lengths: Tuple[int, ...] = ()
    grid_id: str = ""
    area_weighted_eof: bool = False
    version: str = __version__

    def __post_init__(self):
        object.__setattr__(self, "variables", tuple(self.variables))
        object.__setattr__(self, "transforms", MappingProxyType(dict(self.transforms)))
        object.__setattr__(self, "source_ids", tuple(str(s) for s in self.source_ids))
        object.__setattr__(self, "run_lengths", tuple(int(n) for n in self.run_lengths))
        missing = [v for v in self.variables if v not in self.transforms]
        if missing:
            raise InputShapeError(f"No transform recorded for variables {missing}")
        for name in self.transforms.values():
            get_transform(name)


@dataclass(frozen=True, eq=False)
class Emulator:
    """
    Trained emulator: every fitted component plus provenance.

    Build with :func:`train` or :func:`assemble_emulator`; do not construct
    directly unless the components are known to be consistent.

    When several runs were concatenated for training, ``n_time`` is the total
    training length and ``run_length`` the length of each generated field.
    """

    grid: Grid
    driver: np.ndarray
    pattern_scale: Mapping[str, PatternScale]
    empirical: Mapping[str, EmpiricalDist]
    eof: EOFBasis
    spectral: SpectralModel
    metadata: EmulatorMetadata = field(repr=False)

    def __post_init__(self):
        if not isinstance(self.metadata, EmulatorMetadata):
            raise TypeError(
                f"metadata must be an EmulatorMetadata, got {type(self.metadata).__name__}"
            )

    @property
    def variables(self) -> Tuple[str, ...]:
        return self.metadata.variables

    @property
    def joint(self) -> bool:
        return len(self.variables) > 1

    @property
    def n_time(self) -> int:
        return self.driver.size

    @property
    def n_cells(self) -> int:
        return self.grid.n_cells

    @property
    def run_length(self) -> int:
        """Length of one training run, and of every generated field."""
        return self.spectral.n_time

    @property
    def run_driver(self) -> np.ndarray:
        """Training driver of the first run; the default for generated fields."""
        return self.driver[: self.run_length]

    @property
    def run_time(self) -> np.ndarray:
        """Time axis of the first run."""
        return self.grid.time[: self.run_length]

    def reconstructor(self) -> FieldReconstructor:
        return FieldReconstructor(self)


# ============================================================================
# 组装与校验 (Assembly & Validation)
# ============================================================================


def assemble_emulator(
    grid: Grid,
    driver,
    pattern_scale: Mapping[str, PatternScale],
    empirical: Mapping[str, EmpiricalDist],
    eof: EOFBasis,
    spectral: SpectralModel,
    transforms: Optional[Mapping[str, str]] = None,
    source_ids: Sequence[str] = (),
    run_lengths: Sequence[int] = (),
    metadata: Optional[EmulatorMetadata] = None,
) -> Emulator:
    """
    Build an emulator from already-computed components.

    Supports staged or manual training: every component can come from a
    separate step (or from disk) as long as the dimensions agree.

    Parameters
    ----------
    grid : Grid
        Grid the components were trained on.
    driver : array-like
        Training driver series (length T).
    pattern_scale, empirical : dict
        Variable name -> fitted component, for every variable in ``eof.blocks``.
    eof : EOFBasis
        Joint EOF basis; its blocks give the variable order.
    spectral : SpectralModel
        Spectral model of ``eof.coefficients``.
    transforms : dict, optional
        Variable name -> transform name; identity for unnamed variables.
    metadata : EmulatorMetadata, optional
        Full provenance record; overrides ``transforms``, ``source_ids`` and
        ``run_lengths``.

    Raises
    ------
    InputShapeError
        If any two components disagree on T, N, K or the variable set, or
        the run lengths are unequal or do not add up to T.
    """
    variables = tuple(name for name, _, _ in eof.blocks)
    n_time = grid.n_time
    n_cells = grid.n_cells
    driver = as_driver(driver, n_time=n_time, name="training driver")

    for name, start, stop in eof.blocks:
        if stop - start != n_cells:
            raise InputShapeError(
                f"EOF block '{name}' spans {stop - start} columns, grid has {n_cells} cells"
            )
        if name not in pattern_scale or name not in empirical:
            raise InputShapeError(f"Missing pattern scaling or distribution for '{name}'")
        ps = pattern_scale[name]
        if ps.n_cells != n_cells or ps.n_time != n_time:
            raise InputShapeError(
                f"Pattern scaling for '{name}' is {ps.n_time}x{ps.n_cells}, "
                f"expected {n_time}x{n_cells}"
            )
        if empirical[name].n_cells != n_cells:
            raise InputShapeError(
                f"Distribution for '{name}' has {empirical[name].n_cells} cells, "
                f"expected {n_cells}"
            )
    extra = set(pattern_scale) - set(variables)
    if extra:
        raise InputShapeError(f"Components for variables {sorted(extra)} are not in the EOF basis")

    if eof.n_time != n_time:
        raise InputShapeError(f"EOF coefficients have {eof.n_time} time steps, expected {n_time}")

    if metadata is None:
        transforms = dict(transforms or {})
        metadata = EmulatorMetadata(
            variables=variables,
            transforms={v: transforms.get(v, "identity") for v in variables},
            source_ids=tuple(source_ids),
            run_lengths=tuple(run_lengths),
            grid_id=grid.grid_id,
            area_weighted_eof=eof.weights is not None,
        )
    elif tuple(metadata.variables) != variables:
        raise InputShapeError(
            f"Metadata variables {metadata.variables} differ from EOF blocks {variables}"
        )

    run_length = common_run_length(metadata.run_lengths, n_time)
    if spectral.n_time != run_length or spectral.n_eof != eof.n_eof:
        raise InputShapeError(
            f"Spectral model is {spectral.n_time} steps x {spectral.n_eof} EOFs, "
            f"expected {run_length} x {eof.n_eof}"
        )

    return Emulator(
        grid=grid,
        driver=driver,
        pattern_scale=MappingProxyType({v: pattern_scale[v] for v in variables}),
        empirical=MappingProxyType({v: empirical[v] for v in variables}),
        eof=eof,
        spectral=spectral,
        metadata=metadata,
    )


# ============================================================================
# 训练 (Training)
# ============================================================================


def train(
    variables: Union[VariableSeries, Sequence[VariableSeries]],
    grid: Grid,
    driver=None,
    area_weighted_eof: bool = DEFAULT_AREA_WEIGHTED_EOF,
    source_ids: Sequence[str] = (),
    run_lengths: Sequence[int] = (),
    workers: Optional[int] = FFT_WORKERS,
) -> Emulator:
    """
    Train an emulator on one variable, or jointly on several.

    Parameters
    ----------
    variables : VariableSeries or sequence of VariableSeries
        Temperature alone, or temperature followed by precipitation (joint
        mode). All must share the grid's T and N.
    grid : Grid
        Grid and time axis of the inputs.
    driver : array-like, optional
        Length-T regressor for pattern scaling. Defaults to the area-weighted
        global mean of the first variable in native units.
    area_weighted_eof : bool
        Weight cells by area before the EOF decomposition.
    source_ids : sequence of str
        Provenance recorded in the metadata.
    run_lengths : sequence of int
        Lengths of equal-length runs concatenated along time. Pattern
        scaling, the empirical CDFs and the EOFs use all of them; the
        spectrum is averaged over runs and fields are generated at the
        length of one run.
    workers : int, optional
        Parallel FFT workers.

    Returns
    -------
    Emulator

    Examples
    --------
    >>> data = generate_synthetic_esm_data(n_time=120, n_lat=4, n_lon=6, seed=1)
    >>> tas = VariableSeries.from_native("tas", data["tas"])
    >>> pr = VariableSeries.from_native("pr", data["pr"])
    >>> emu = train([tas, pr], data["grid"])
    >>> fields = generate_fields(emu, generate_residuals(emu, 5, seed=42))
    """
    if isinstance(variables, VariableSeries):
        variables = [variables]
    variables = list(variables)
    if not variables:
        raise InputShapeError("At least one variable is required")
    names = [v.name for v in variables]
    if len(set(names)) != len(names):
        raise InputShapeError(f"Variable names must be unique, got {names}")
    for v in variables:
        if v.data.shape != (grid.n_time, grid.n_cells):
            raise InputShapeError(
                f"'{v.name}' is {v.data.shape[0]}x{v.data.shape[1]}, grid is "
                f"{grid.n_time}x{grid.n_cells}"
            )

    # 步骤 1: 驱动序列 (Step 1: driver series)
    if driver is None:
        driver = global_mean(variables[0].native(), grid)
    driver = as_driver(driver, n_time=grid.n_time)
    run_length = common_run_length(run_lengths, grid.n_time)
    logger.info(
        "Training %s emulator on %d steps x %d cells",
        "+".join(names), grid.n_time, grid.n_cells,
    )
    if run_length != grid.n_time:
        logger.info(
            "Spectrum averaged over %d runs of %d steps",
            grid.n_time // run_length, run_length,
        )

    # 步骤 2: 格点线性响应与经验分布 (Step 2: pattern scaling & empirical CDFs)
    pattern_scale: Dict[str, PatternScale] = {}
    empirical: Dict[str, EmpiricalDist] = {}
    normalized = []
    for v in variables:
        ps = fit_pattern_scaling(v.data, driver)
        dist = characterize(ps.residuals, name=v.name)
        pattern_scale[v.name] = ps
        empirical[v.name] = dist
        normalized.append((v.name, normalize(ps.residuals, dist)))
        logger.debug("%s: residual std %.4g", v.name, float(np.std(ps.residuals)))

    # 步骤 3: 联合 EOF 分解 (Step 3: joint EOF decomposition)
    stacked, blocks = stack_variables(normalized)
    eof = decompose(stacked, weights=grid if area_weighted_eof else None, blocks=blocks)
    logger.info(
        "EOF decomposition: %d EOFs, leading EOF explains %.1f%% of variance",
        eof.n_eof, 100.0 * eof.power[0],
    )

    # 步骤 4: 频谱模型 (Step 4: spectral model)
    spectral = analyze(eof.coefficients, run_lengths=run_lengths, workers=workers)

    return assemble_emulator(
        grid=grid,
        driver=driver,
        pattern_scale=pattern_scale,
        empirical=empirical,
        eof=eof,
        spectral=spectral,
        metadata=EmulatorMetadata(
            variables=tuple(names),
            transforms={v.name: v.transform for v in variables},
            source_ids=tuple(source_ids),
            run_lengths=tuple(run_lengths),
            grid_id=grid.grid_id,
            area_weighted_eof=area_weighted_eof,
        ),
    )


# ============================================================================
# 生成 (Generation)
# ============================================================================


def generate_residuals(
    emulator: Emulator,
    count: int,
    seed: Optional[int] = None,
    reuse_training_phases_for_first: bool = False,
    workers: Optional[int] = FFT_WORKERS,
) -> List[np.ndarray]:
    """
    Generate residual fields (analysis space, stacked T×N').

    T here is ``emulator.run_length``, the length of one training run.

    Realization ``k`` draws its phases from the ``k``-th child of
    ``np.random.SeedSequence(seed)``, so each realization depends only on
    (seed, k): the same seed gives bit-identical results whether realizations
    are produced in one call, several calls, or in parallel.

    Parameters
    ----------
    emulator : Emulator
        Trained emulator (read only).
    count : int
        Number of realizations.
    seed : int, optional
        Seed for the phase draws; fresh entropy if None.
    reuse_training_phases_for_first : bool
        Make realization 0 the reconstruction of the training residuals
        (exact for an emulator trained on a single run).

    Returns
    -------
    list of np.ndarray
        ``count`` matrices of shape T×N'.
    """
    count = int(count)
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")
    children = np.random.SeedSequence(seed).spawn(count)
    reconstructor = emulator.reconstructor()

    out = []
    for k in range(count):
        if k == 0 and reuse_training_phases_for_first:
            coefficients = synthesize(emulator.spectral, mode="reuse", workers=workers)
        else:
            rng = np.random.default_rng(children[k])
            coefficients = synthesize(emulator.spectral, mode="random", rng=rng, workers=workers)
        out.append(reconstructor.to_residuals(coefficients))
    logger.info("Generated %d residual fields", count)
    return out


def generate_fields(
    emulator: Emulator,
    residual_matrices: Sequence[np.ndarray],
    driver=None,
    add_mean: bool = True,
) -> List[Dict[str, np.ndarray]]:
    """
    Convert residual fields to native-unit fields.

    Parameters
    ----------
    emulator : Emulator
        Trained emulator.
    residual_matrices : sequence of np.ndarray
        Output of :func:`generate_residuals`.
    driver : array-like, optional
        Driver series for the mean field (e.g. a scenario's global mean
        temperature); defaults to the driver of the first training run.
    add_mean : bool
        Add the pattern-scaling mean field (default: True).

    Returns
    -------
    list of dict
        One ``{variable: T×N field}`` per residual matrix; in joint mode the
        temperature and precipitation blocks are split.
    """
    reconstructor = emulator.reconstructor()
    return [
        reconstructor.to_native(resid, driver=driver, add_mean=add_mean)
        for resid in residual_matrices
    ]


def emulator_reconstruction(emulator: Emulator, driver=None) -> Dict[str, np.ndarray]:
    """
    Rebuild the training fields from the emulator with the training phases.

    For a single training run the result matches the training data in native
    units up to floating-point error; useful as a sanity check after training
    or loading. With several runs the phases of the first run are combined
    with the run-averaged magnitudes.
    """
    coefficients = synthesize(emulator.spectral, mode="reuse")
    return emulator.reconstructor().reconstruct(coefficients, driver=driver)
