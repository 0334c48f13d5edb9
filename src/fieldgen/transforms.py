"""
Monotonic variable transforms.

Each variable is analyzed in a transformed space (identity for temperature,
natural log for precipitation) and returned to native units with the matching
inverse. Transforms are registered by name so that a trained emulator records
only the name and stays serializable.
"""

import warnings
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import numpy as np

from .config import PR_FLOOR
from .errors import InvertibilityError


@dataclass(frozen=True)
class VariableTransform:
    """A named forward/inverse pair of monotonic element-wise functions."""

    name: str
    forward: Callable[[np.ndarray], np.ndarray]
    inverse: Callable[[np.ndarray], np.ndarray]


_REGISTRY: Dict[str, VariableTransform] = {}


def register_transform(
    name: str,
    forward: Callable[[np.ndarray], np.ndarray],
    inverse: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    overwrite: bool = False,
) -> VariableTransform:
    """
    Register a monotonic transform under ``name``.

    Parameters
    ----------
    name : str
        Registry key stored in emulator metadata.
    forward, inverse : callable
        Element-wise functions, ``inverse(forward(x)) == x``.
    overwrite : bool
        Allow replacing an existing entry (default: False).

    Raises
    ------
    InvertibilityError
        If ``inverse`` is missing.
    ValueError
        If ``name`` is already registered and ``overwrite`` is False.
    """
    if inverse is None:
        raise InvertibilityError(
            f"Transform '{name}' was supplied without an inverse; "
            "generated fields could not be returned to native units"
        )
    if name in _REGISTRY and not overwrite:
        raise ValueError(f"Transform '{name}' is already registered")
    transform = VariableTransform(name=name, forward=forward, inverse=inverse)
    _REGISTRY[name] = transform
    return transform


def get_transform(name: str) -> VariableTransform:
    """Look up a registered transform by name."""
    try:
        return _REGISTRY[name]
    except KeyError:
        raise InvertibilityError(
            f"Unknown transform '{name}'. Registered: {sorted(_REGISTRY)}"
        ) from None


def available_transforms():
    return sorted(_REGISTRY)


def log_from_precip(pr: np.ndarray, floor: float = PR_FLOOR) -> np.ndarray:
    """
    Convert precipitation flux to log space.

    Values below ``floor`` (typically exact zeros in dry cells) are raised to
    ``floor`` first, with a warning. Negative values are rejected.
    """
    pr = np.asarray(pr, dtype=float)
    if np.any(pr < 0):
        raise InvertibilityError(
            f"Log transform requires non-negative values; found {int(np.sum(pr < 0))} "
            "negative precipitation values"
        )
    n_floored = int(np.sum(pr < floor))
    if n_floored > 0:
        warnings.warn(
            f"{n_floored} precipitation values below {floor:g} were floored "
            "before the log transform"
        )
    return np.log(np.maximum(pr, floor))


def precip_from_log(logpr: np.ndarray) -> np.ndarray:
    return np.exp(np.asarray(logpr, dtype=float))


def _identity(x: np.ndarray) -> np.ndarray:
    return np.asarray(x, dtype=float)


register_transform("identity", _identity, _identity)
register_transform("log", log_from_precip, precip_from_log)
