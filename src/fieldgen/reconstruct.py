"""
Field Reconstruction

Inverts the training transforms for synthesized EOF coefficients:

    coefficients --EOF basis--> normalized residuals (T×N')
                 --empirical quantiles--> residuals in analysis space
                 --+ mean field from pattern scaling--> analysis-space field
                 --inverse variable transform--> native units, one block per variable
"""

from typing import TYPE_CHECKING, Dict, Mapping, Union

import numpy as np

from . import eof as eof_mod
from .empirical_dist import unnormalize
from .errors import InputShapeError
from .grid import as_driver, as_time_by_cell
from .pattern_scaling import apply_pattern_scaling
from .transforms import get_transform

if TYPE_CHECKING:
    from .emulator import Emulator


class FieldReconstructor:
    """
    Read-only view of an emulator that maps coefficients back to fields.

    Parameters
    ----------
    emulator : Emulator
        Trained emulator; never modified.
    """

    def __init__(self, emulator: "Emulator"):
        self.emulator = emulator

    @property
    def blocks(self):
        return self.emulator.eof.blocks

    def to_normalized(self, coefficients) -> np.ndarray:
        """T×K EOF coefficients to the T×N' normalized residual matrix."""
        return eof_mod.reconstruct(coefficients, self.emulator.eof)

    def to_residuals(self, coefficients) -> np.ndarray:
        """
        T×K coefficients to stacked T×N' residuals in analysis space.

        Each variable block is mapped through its own empirical quantiles.
        """
        normalized = self.to_normalized(coefficients)
        parts = eof_mod.split_variables(normalized, self.blocks)
        return np.hstack([
            unnormalize(parts[name], self.emulator.empirical[name])
            for name, _, _ in self.blocks
        ])

    def to_native(
        self,
        residuals: Union[np.ndarray, Mapping[str, np.ndarray]],
        driver=None,
        add_mean: bool = True,
    ) -> Dict[str, np.ndarray]:
        """
        Residuals (analysis space) to native-unit fields per variable.

        Parameters
        ----------
        residuals : np.ndarray or dict
            Stacked T×N' matrix, or per-variable T×N matrices.
        driver : array-like, optional
            Driver for the mean field, one value per residual time step;
            defaults to the driver of the first training run.
        add_mean : bool
            Add the pattern-scaling mean field (default: True). With False
            the residuals alone are back-transformed.

        Returns
        -------
        dict
            variable name -> T×N field in native units.
        """
        emulator = self.emulator
        if isinstance(residuals, Mapping):
            parts = {name: residuals[name] for name, _, _ in self.blocks}
        else:
            stacked = as_time_by_cell(residuals, "residuals", n_cells=emulator.eof.n_space)
            parts = eof_mod.split_variables(stacked, self.blocks)

        fields = {}
        for name, start, stop in self.blocks:
            resid = as_time_by_cell(parts[name], name, n_cells=stop - start)
            analysis = resid
            if add_mean:
                drv = emulator.run_driver if driver is None else as_driver(driver)
                if drv.size != resid.shape[0]:
                    raise InputShapeError(
                        f"Driver has length {drv.size} but {name} residuals have "
                        f"{resid.shape[0]} time steps"
                    )
                analysis = resid + apply_pattern_scaling(emulator.pattern_scale[name], drv)
            transform = get_transform(emulator.metadata.transforms[name])
            fields[name] = transform.inverse(analysis)
        return fields

    def reconstruct(self, coefficients, driver=None, add_mean: bool = True) -> Dict[str, np.ndarray]:
        """Full chain from T×K coefficients to native-unit fields."""
        return self.to_native(self.to_residuals(coefficients), driver=driver, add_mean=add_mean)
