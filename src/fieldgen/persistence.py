"""
Saving and loading trained emulators.

An emulator is written as a single compressed ``.npz`` archive: one entry per
array plus a JSON metadata string. Transforms are stored by registered name,
so nothing is pickled and ``allow_pickle`` stays off on load. Loading rebuilds
every component and re-validates the whole through ``assemble_emulator``.
"""

import json
from pathlib import Path
from typing import Union

import numpy as np

from .empirical_dist import EmpiricalCDF, EmpiricalDist
from .emulator import Emulator, EmulatorMetadata, assemble_emulator
from .eof import EOFBasis
from .errors import InputShapeError
from .grid import Grid
from .pattern_scaling import PatternScale
from .spectral import PhaseConstraints, SpectralModel

FORMAT_VERSION = 2


def _storable_time(time) -> np.ndarray:
    """Time axis as a non-object array (calendar objects become ISO strings)."""
    time = np.asarray(time)
    if time.dtype == object:
        return time.astype(str)
    return time


def save_emulator(emulator: Emulator, path: Union[str, Path]) -> Path:
    """
    Write ``emulator`` to ``path`` (``.npz`` is appended if missing).

    Returns
    -------
    Path
        The file actually written.
    """
    path = Path(path)
    if path.suffix != ".npz":
        path = path.with_suffix(path.suffix + ".npz")

    meta = emulator.metadata
    arrays = {
        "grid_weights": emulator.grid.weights,
        "grid_time": _storable_time(emulator.grid.time),
        "driver": emulator.driver,
        "eof_basis": emulator.eof.basis,
        "eof_power": emulator.eof.power,
        "eof_coefficients": emulator.eof.coefficients,
        "spec_magnitude": emulator.spectral.magnitude,
        "spec_phase": emulator.spectral.phase,
        "spec_reference": emulator.spectral.constraints.reference,
        "spec_reference_phase": emulator.spectral.constraints.reference_phase,
        "spec_offsets": emulator.spectral.constraints.offsets,
    }
    if emulator.grid.lat is not None:
        arrays["grid_lat"] = emulator.grid.lat
    if emulator.grid.lon is not None:
        arrays["grid_lon"] = emulator.grid.lon
    if emulator.eof.weights is not None:
        arrays["eof_weights"] = emulator.eof.weights

    for name in meta.variables:
        ps = emulator.pattern_scale[name]
        arrays[f"{name}/slopes"] = ps.slopes
        arrays[f"{name}/intercepts"] = ps.intercepts
        arrays[f"{name}/residuals"] = ps.residuals
        # Control points are ragged across cells: store them flat with offsets
        dist = emulator.empirical[name]
        sizes = np.array([cdf.values.size for cdf in dist.cells])
        arrays[f"{name}/cdf_offsets"] = np.concatenate([[0], np.cumsum(sizes)])
        arrays[f"{name}/cdf_values"] = np.concatenate([cdf.values for cdf in dist.cells])
        arrays[f"{name}/cdf_probs"] = np.concatenate([cdf.probs for cdf in dist.cells])

    header = {
        "format_version": FORMAT_VERSION,
        "variables": list(meta.variables),
        "transforms": dict(meta.transforms),
        "source_ids": list(meta.source_ids),
        "run_lengths": list(meta.run_lengths),
        "grid_id": meta.grid_id,
        "area_weighted_eof": meta.area_weighted_eof,
        "version": meta.version,
        "blocks": [list(b) for b in emulator.eof.blocks],
        "spectral_n_time": emulator.spectral.n_time,
    }
    arrays["metadata"] = np.array(json.dumps(header))

    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(path, **arrays)
    return path


def load_emulator(path: Union[str, Path]) -> Emulator:
    """
    Read an emulator written by :func:`save_emulator`.

    Raises
    ------
    InputShapeError
        If the archive was written by an incompatible format version or its
        components are inconsistent.
    """
    with np.load(Path(path), allow_pickle=False) as archive:
        header = json.loads(str(archive["metadata"]))
        if header.get("format_version") != FORMAT_VERSION:
            raise InputShapeError(
                f"Unsupported emulator format version {header.get('format_version')}"
            )

        grid = Grid(
            weights=archive["grid_weights"],
            time=archive["grid_time"],
            lat=archive["grid_lat"] if "grid_lat" in archive.files else None,
            lon=archive["grid_lon"] if "grid_lon" in archive.files else None,
            grid_id=header["grid_id"],
        )
        driver = archive["driver"]

        pattern_scale = {}
        empirical = {}
        for name in header["variables"]:
            pattern_scale[name] = PatternScale(
                slopes=archive[f"{name}/slopes"],
                intercepts=archive[f"{name}/intercepts"],
                residuals=archive[f"{name}/residuals"],
                driver=driver,
            )
            offsets = archive[f"{name}/cdf_offsets"]
            values = archive[f"{name}/cdf_values"]
            probs = archive[f"{name}/cdf_probs"]
            empirical[name] = EmpiricalDist(
                cells=tuple(
                    EmpiricalCDF(i, values[a:b], probs[a:b])
                    for i, (a, b) in enumerate(zip(offsets[:-1], offsets[1:]))
                ),
                name=name,
            )

        eof = EOFBasis(
            basis=archive["eof_basis"],
            power=archive["eof_power"],
            coefficients=archive["eof_coefficients"],
            weights=archive["eof_weights"] if "eof_weights" in archive.files else None,
            blocks=tuple(tuple(b) for b in header["blocks"]),
        )
        # one run length when several runs were concatenated
        n_time = int(header["spectral_n_time"])
        spectral = SpectralModel(
            magnitude=archive["spec_magnitude"],
            phase=archive["spec_phase"],
            constraints=PhaseConstraints(
                reference=archive["spec_reference"],
                reference_phase=archive["spec_reference_phase"],
                offsets=archive["spec_offsets"],
                n_time=n_time,
            ),
            n_time=n_time,
        )

    metadata = EmulatorMetadata(
        variables=tuple(header["variables"]),
        transforms=header["transforms"],
        source_ids=tuple(header["source_ids"]),
        run_lengths=tuple(header["run_lengths"]),
        grid_id=header["grid_id"],
        area_weighted_eof=header["area_weighted_eof"],
        version=header["version"],
    )
    return assemble_emulator(
        grid=grid,
        driver=driver,
        pattern_scale=pattern_scale,
        empirical=empirical,
        eof=eof,
        spectral=spectral,
        metadata=metadata,
    )
