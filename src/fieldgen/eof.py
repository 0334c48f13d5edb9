"""
Joint EOF Decomposition

Variance-ranked orthogonal decomposition of normalized residuals. In joint
mode the temperature and precipitation matrices (T×N each) are stacked side by
side into one T×2N matrix, so a single EOF can mix structure from both
variables: its first N loadings are temperature, the next N precipitation.

With optional area weights w, the decomposition runs on ``X * sqrt(w)``
(weights rescaled to unit mean), so cells count by physical area rather than
by grid density. Without weights:

    coefficients = X @ basis        X = coefficients @ basis.T
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .config import ORTHONORMAL_TOL
from .errors import DegenerateFitError, InputShapeError
from .grid import Grid, as_time_by_cell

Blocks = Tuple[Tuple[str, int, int], ...]


@dataclass(frozen=True, eq=False)
class EOFBasis:
    """
    Orthonormal EOF basis with its training coefficients.

    Attributes
    ----------
    basis : np.ndarray
        N'×K matrix, columns are EOFs ranked by explained variance.
    power : np.ndarray
        Length-K fraction of total variance carried by each EOF.
    coefficients : np.ndarray
        T×K projection of the training data onto the basis.
    weights : np.ndarray or None
        Length-N' area weights applied before decomposition.
    blocks : tuple of (name, start, stop)
        Column ranges of each variable in the stacked matrix.
    """

    basis: np.ndarray
    power: np.ndarray
    coefficients: np.ndarray
    weights: Optional[np.ndarray] = None
    blocks: Blocks = ()

    def __post_init__(self):
        basis = np.asarray(self.basis, dtype=float)
        if basis.ndim != 2:
            raise InputShapeError(f"EOF basis must be 2D, got ndim={basis.ndim}")
        n_space, n_eof = basis.shape
        power = np.asarray(self.power, dtype=float).ravel()
        if power.size != n_eof:
            raise InputShapeError(f"{power.size} power values for {n_eof} EOFs")
        coefficients = as_time_by_cell(self.coefficients, "EOF coefficients", n_cells=n_eof)

        gram = basis.T @ basis
        if not np.allclose(gram, np.eye(n_eof), atol=ORTHONORMAL_TOL * max(1, n_space)):
            raise InputShapeError("EOF basis vectors are not orthonormal")

        weights = self.weights
        if weights is not None:
            weights = _check_weights(weights, n_space)

        blocks = tuple((str(n), int(a), int(b)) for n, a, b in self.blocks)
        if blocks:
            if blocks[0][1] != 0 or blocks[-1][2] != n_space or any(
                blocks[k][2] != blocks[k + 1][1] for k in range(len(blocks) - 1)
            ):
                raise InputShapeError(
                    f"Variable blocks {blocks} do not tile {n_space} columns"
                )

        object.__setattr__(self, "basis", basis)
        object.__setattr__(self, "power", power)
        object.__setattr__(self, "coefficients", coefficients)
        object.__setattr__(self, "weights", weights)
        object.__setattr__(self, "blocks", blocks)

    @property
    def n_space(self) -> int:
        return self.basis.shape[0]

    @property
    def n_eof(self) -> int:
        return self.basis.shape[1]

    @property
    def n_time(self) -> int:
        return self.coefficients.shape[0]

    def block(self, name: str) -> slice:
        for n, start, stop in self.blocks:
            if n == name:
                return slice(start, stop)
        raise KeyError(f"No variable block named '{name}'")

    def _sqrt_weights(self) -> np.ndarray:
        if self.weights is None:
            return np.ones(self.n_space)
        return np.sqrt(self.weights)


def _check_weights(weights, n_space: int) -> np.ndarray:
    w = np.asarray(weights, dtype=float).ravel()
    if w.size != n_space:
        raise InputShapeError(f"{w.size} EOF weights for {n_space} columns")
    if not np.all(np.isfinite(w)) or np.any(w <= 0):
        raise InputShapeError("EOF weights must be finite and strictly positive")
    return w / w.mean()


def expand_weights(weights: Union[Grid, np.ndarray], n_space: int) -> np.ndarray:
    """Tile per-cell weights (or a Grid's) across the stacked variable blocks."""
    w = weights.weights if isinstance(weights, Grid) else np.asarray(weights, dtype=float).ravel()
    if w.size == n_space:
        return w
    if w.size == 0 or n_space % w.size != 0:
        raise InputShapeError(
            f"Cannot tile {w.size} cell weights over {n_space} columns"
        )
    return np.tile(w, n_space // w.size)


def decompose(
    normalized,
    weights: Union[Grid, np.ndarray, None] = None,
    blocks: Blocks = (),
) -> EOFBasis:
    """
    Decompose normalized residuals into EOFs.

    Parameters
    ----------
    normalized : array-like
        T×N' normalized residual matrix (stacked variables in joint mode).
    weights : Grid or np.ndarray, optional
        Area weights per column, or per cell (tiled over variable blocks).
    blocks : tuple
        Variable column ranges, e.g. from :func:`stack_variables`.

    Returns
    -------
    EOFBasis
        K = min(T, N') EOFs ranked by descending variance.

    Raises
    ------
    DegenerateFitError
        If the input is identically zero.
    """
    data = as_time_by_cell(normalized, "normalized residuals")
    n_time, n_space = data.shape

    w = None
    sqrt_w = np.ones(n_space)
    if weights is not None:
        w = _check_weights(expand_weights(weights, n_space), n_space)
        sqrt_w = np.sqrt(w)

    weighted = data * sqrt_w
    _, s, vt = np.linalg.svd(weighted, full_matrices=False)
    total = np.sum(s ** 2)
    if total <= 0:
        raise DegenerateFitError("Normalized residuals are identically zero")

    basis = vt.T
    # Sign convention: largest-magnitude loading of each EOF is positive
    lead = np.argmax(np.abs(basis), axis=0)
    signs = np.sign(basis[lead, np.arange(basis.shape[1])])
    signs[signs == 0] = 1.0
    basis = basis * signs

    return EOFBasis(
        basis=basis,
        power=s ** 2 / total,
        coefficients=weighted @ basis,
        weights=w,
        blocks=blocks or (("", 0, n_space),),
    )


def project(field, eof: EOFBasis) -> np.ndarray:
    """Project a T×N' normalized field onto the EOFs, giving T×K coefficients."""
    field = as_time_by_cell(field, "field", n_cells=eof.n_space)
    return (field * eof._sqrt_weights()) @ eof.basis


def reconstruct(coefficients, eof: EOFBasis) -> np.ndarray:
    """Inverse of :func:`project`: T×K coefficients back to a T×N' field."""
    coefficients = as_time_by_cell(coefficients, "EOF coefficients", n_cells=eof.n_eof)
    return (coefficients @ eof.basis.T) / eof._sqrt_weights()


def stack_variables(
    fields: Union[Mapping[str, np.ndarray], Sequence[Tuple[str, np.ndarray]]]
) -> Tuple[np.ndarray, Blocks]:
    """
    Concatenate per-variable T×N matrices along the cell axis.

    Returns
    -------
    tuple
        - stacked T×N' matrix
        - blocks ((name, start, stop), ...) in input order
    """
    items = list(fields.items()) if isinstance(fields, Mapping) else list(fields)
    if not items:
        raise InputShapeError("No variables to stack")
    mats = []
    blocks = []
    start = 0
    n_time = None
    for name, mat in items:
        mat = as_time_by_cell(mat, name, n_time=n_time)
        n_time = mat.shape[0]
        blocks.append((name, start, start + mat.shape[1]))
        start += mat.shape[1]
        mats.append(mat)
    return np.hstack(mats), tuple(blocks)


def split_variables(stacked, blocks: Blocks) -> Dict[str, np.ndarray]:
    """Split a stacked T×N' matrix back into per-variable blocks."""
    stacked = np.asarray(stacked, dtype=float)
    if stacked.ndim != 2 or stacked.shape[1] != blocks[-1][2]:
        raise InputShapeError(
            f"Stacked matrix of shape {stacked.shape} does not match blocks {blocks}"
        )
    return {name: stacked[:, start:stop] for name, start, stop in blocks}
