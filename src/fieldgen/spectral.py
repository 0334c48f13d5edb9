"""
Spectral Model of EOF Coefficients

The temporal structure of the T×K EOF coefficient matrix is kept in the
frequency domain. For a real series of length T only F = T // 2 + 1
frequencies are independent (``scipy.fft.rfft``); each EOF channel has a
magnitude spectrum and a phase at every frequency.

New realizations keep the training magnitudes and draw new phases. The phases
of different EOFs at the same frequency are not drawn independently: the
training phase of every EOF relative to a reference EOF (the strongest one at
that frequency) is kept, and one common random rotation is applied per
frequency. This preserves every cross-spectrum between EOFs, so the lagged
covariance structure linking the channels survives in each new field.

Real-valuedness constrains two bins. The zero-frequency (DC) bin keeps its
training phase, so each channel keeps its time mean. For even T the Nyquist
bin is real as well; its common rotation is drawn from {0, pi}.

Several equal-length runs concatenated along time are analyzed one run at a
time. Their power spectra are averaged and the model lives on the frequency
grid of a single run.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import fft as sp_fft

from .config import FFT_WORKERS
from .errors import DegenerateFitError, InputShapeError, InvertibilityError, SpectralLengthError
from .grid import as_time_by_cell


def frequency_count(n_time: int) -> int:
    """Number of non-redundant frequencies for a real series of length T."""
    return int(n_time) // 2 + 1


def wrap_phase(phase) -> np.ndarray:
    """Wrap angles to (-pi, pi]."""
    return np.angle(np.exp(1j * np.asarray(phase, dtype=float)))


def real_frequency_bins(n_time: int) -> np.ndarray:
    """Boolean mask of bins whose Fourier coefficients are real (DC, Nyquist)."""
    mask = np.zeros(frequency_count(n_time), dtype=bool)
    mask[0] = True
    if n_time % 2 == 0:
        mask[-1] = True
    return mask


@dataclass(frozen=True, eq=False)
class PhaseConstraints:
    """
    Phase relationships between EOF channels, per frequency.

    Attributes
    ----------
    reference : np.ndarray
        Length-F index of the reference EOF at each frequency.
    reference_phase : np.ndarray
        Length-F training phase of the reference EOF.
    offsets : np.ndarray
        F×K phase of each EOF relative to the reference EOF.
    n_time : int
        Series length the frequency grid was derived from.
    """

    reference: np.ndarray
    reference_phase: np.ndarray
    offsets: np.ndarray
    n_time: int

    def __post_init__(self):
        offsets = np.asarray(self.offsets, dtype=float)
        n_freq = frequency_count(self.n_time)
        if offsets.ndim != 2 or offsets.shape[0] != n_freq:
            raise SpectralLengthError(
                f"Phase offsets of shape {offsets.shape} do not match the "
                f"{n_freq}-bin frequency grid of T={self.n_time}"
            )
        reference = np.asarray(self.reference, dtype=int).ravel()
        reference_phase = np.asarray(self.reference_phase, dtype=float).ravel()
        if reference.size != n_freq or reference_phase.size != n_freq:
            raise SpectralLengthError(
                f"Reference arrays must have {n_freq} entries"
            )
        if np.any(reference < 0) or np.any(reference >= offsets.shape[1]):
            raise InputShapeError("Reference EOF index out of range")
        object.__setattr__(self, "offsets", offsets)
        object.__setattr__(self, "reference", reference)
        object.__setattr__(self, "reference_phase", reference_phase)
        object.__setattr__(self, "n_time", int(self.n_time))

    @property
    def n_freq(self) -> int:
        return self.offsets.shape[0]

    @property
    def n_eof(self) -> int:
        return self.offsets.shape[1]

    @property
    def real_bins(self) -> np.ndarray:
        return real_frequency_bins(self.n_time)

    def pair(self, i: int, j: int) -> np.ndarray:
        """Phase of EOF ``i`` minus phase of EOF ``j`` at every frequency."""
        return wrap_phase(self.offsets[:, i] - self.offsets[:, j])

    def training_phases(self) -> np.ndarray:
        """F×K training phases recovered from the constraint table."""
        return wrap_phase(self.reference_phase[:, None] + self.offsets)


@dataclass(frozen=True, eq=False)
class SpectralModel:
    """Magnitude and phase spectra of the training EOF coefficients."""

    magnitude: np.ndarray
    phase: np.ndarray
    constraints: PhaseConstraints
    n_time: int

    def __post_init__(self):
        magnitude = np.asarray(self.magnitude, dtype=float)
        phase = np.asarray(self.phase, dtype=float)
        n_freq = frequency_count(self.n_time)
        if magnitude.ndim != 2 or magnitude.shape[0] != n_freq:
            raise SpectralLengthError(
                f"Magnitude spectrum of shape {magnitude.shape} does not match "
                f"the {n_freq}-bin frequency grid of T={self.n_time}"
            )
        if phase.shape != magnitude.shape:
            raise InputShapeError(
                f"Phase shape {phase.shape} differs from magnitude shape {magnitude.shape}"
            )
        if np.any(magnitude < 0):
            raise InputShapeError("Magnitude spectrum must be non-negative")
        if (self.constraints.n_time != self.n_time
                or self.constraints.n_eof != magnitude.shape[1]):
            raise SpectralLengthError("Phase constraints were derived for a different spectrum")
        object.__setattr__(self, "magnitude", magnitude)
        object.__setattr__(self, "phase", phase)
        object.__setattr__(self, "n_time", int(self.n_time))

    @property
    def n_freq(self) -> int:
        return self.magnitude.shape[0]

    @property
    def n_eof(self) -> int:
        return self.magnitude.shape[1]

    def fourier(self) -> np.ndarray:
        """Complex F×K training Fourier coefficients."""
        return self.magnitude * np.exp(1j * self.phase)


def derive_phase_constraints(fourier, n_time: int) -> PhaseConstraints:
    """
    Derive the cross-EOF phase table from complex Fourier coefficients.

    Parameters
    ----------
    fourier : np.ndarray
        F×K complex coefficients from ``rfft`` along time.
    n_time : int
        Length T of the transformed series.

    Returns
    -------
    PhaseConstraints
        ``offsets[f, k] = angle(X[f, k] * conj(X[f, ref[f]]))`` with
        ``ref[f]`` the EOF of largest magnitude at frequency f.
    """
    fourier = np.asarray(fourier, dtype=complex)
    if fourier.ndim != 2 or fourier.shape[0] != frequency_count(n_time):
        raise SpectralLengthError(
            f"Fourier matrix of shape {fourier.shape} is inconsistent with T={n_time}"
        )
    n_freq = fourier.shape[0]
    reference = np.argmax(np.abs(fourier), axis=1)
    ref_coef = fourier[np.arange(n_freq), reference]
    offsets = np.angle(fourier * np.conj(ref_coef)[:, None])
    return PhaseConstraints(
        reference=reference,
        reference_phase=np.angle(ref_coef),
        offsets=offsets,
        n_time=n_time,
    )


def draw_constrained_phases(
    constraints: PhaseConstraints,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Draw a new F×K phase set that satisfies the constraint table.

    One rotation per frequency is shared by all EOFs. DC keeps the training
    phase; an even-length Nyquist bin rotates by 0 or pi.
    """
    n_freq = constraints.n_freq
    theta = rng.uniform(0.0, 2.0 * np.pi, size=n_freq)
    if constraints.n_time % 2 == 0 and n_freq > 1:
        theta[-1] = np.pi * rng.integers(0, 2)
    theta[0] = constraints.reference_phase[0]
    return wrap_phase(theta[:, None] + constraints.offsets)


def common_run_length(run_lengths, n_time: int) -> int:
    """
    Length of each run in a concatenation of equal-length runs.

    Parameters
    ----------
    run_lengths : sequence of int or None
        Lengths of the concatenated runs; empty or None means one run.
    n_time : int
        Total number of time steps.

    Raises
    ------
    InputShapeError
        If the lengths are not positive, differ from each other, or do not
        add up to ``n_time``.
    """
    if run_lengths is None or len(run_lengths) == 0:
        return int(n_time)
    lengths = np.asarray(run_lengths, dtype=int).ravel()
    if np.any(lengths <= 0):
        raise InputShapeError(f"Run lengths must be positive, got {lengths.tolist()}")
    if lengths.sum() != n_time:
        raise InputShapeError(
            f"Run lengths {lengths.tolist()} add up to {lengths.sum()}, not T={n_time}"
        )
    if np.any(lengths != lengths[0]):
        raise InputShapeError(
            f"Runs must have equal lengths for a shared frequency grid, got {lengths.tolist()}"
        )
    return int(lengths[0])


def analyze(
    coefficients,
    run_lengths=None,
    workers: Optional[int] = FFT_WORKERS,
) -> SpectralModel:
    """
    Fourier-analyze every EOF coefficient series.

    Concatenated runs are transformed one segment at a time so that no
    transform spans the seam between two runs. The magnitude spectrum is the
    root-mean-square of the segment magnitudes; phases and the constraint
    table come from the first run.

    Parameters
    ----------
    coefficients : array-like
        T×K EOF coefficients.
    run_lengths : sequence of int, optional
        Lengths of equal-length runs concatenated along time. The model is
        built on the frequency grid of one run.
    workers : int, optional
        Parallel FFT workers; results do not depend on it.

    Returns
    -------
    SpectralModel
    """
    coefficients = as_time_by_cell(coefficients, "EOF coefficients")
    run_length = common_run_length(run_lengths, coefficients.shape[0])
    if run_length < 2:
        raise DegenerateFitError(
            f"Spectral analysis needs at least 2 time steps, got {run_length}"
        )
    n_runs = coefficients.shape[0] // run_length
    segments = coefficients.reshape(n_runs, run_length, coefficients.shape[1])
    fourier = sp_fft.rfft(segments, axis=1, workers=workers)
    first = fourier[0]
    if n_runs == 1:
        magnitude = np.abs(first)
    else:
        magnitude = np.sqrt(np.mean(np.abs(fourier) ** 2, axis=0))
    return SpectralModel(
        magnitude=magnitude,
        phase=np.angle(first),
        constraints=derive_phase_constraints(first, run_length),
        n_time=run_length,
    )


def _check_real_bins(model: SpectralModel, phases: np.ndarray):
    mask = real_frequency_bins(model.n_time)
    active = model.magnitude[mask] > 0
    off_axis = np.abs(np.sin(phases[mask])) > 1e-8
    if np.any(active & off_axis):
        raise InvertibilityError(
            "Phases at the DC/Nyquist bins must be 0 or pi for a real-valued series"
        )


def synthesize(
    model: SpectralModel,
    mode: str = "reuse",
    rng: Optional[np.random.Generator] = None,
    phases: Optional[np.ndarray] = None,
    n_time: Optional[int] = None,
    workers: Optional[int] = FFT_WORKERS,
) -> np.ndarray:
    """
    Build a real T×K coefficient matrix from the magnitude spectrum.

    Parameters
    ----------
    model : SpectralModel
        Trained spectral model.
    mode : {'reuse', 'random'}
        'reuse' keeps the training phases (reconstructs the training series);
        'random' draws constrained phases from ``rng``.
    rng : np.random.Generator, optional
        Random source for 'random' mode; a fresh unseeded generator if None.
    phases : np.ndarray, optional
        Explicit F×K phases, overriding ``mode``.
    n_time : int, optional
        Requested length; must equal the training length.

    Raises
    ------
    SpectralLengthError
        If ``n_time`` or the shape of ``phases`` disagrees with the trained
        frequency grid.
    """
    if n_time is not None and int(n_time) != model.n_time:
        raise SpectralLengthError(
            f"Requested length {n_time} is inconsistent with the {model.n_freq}-bin "
            f"frequency grid trained on T={model.n_time}"
        )

    if phases is not None:
        phases = np.asarray(phases, dtype=float)
        if phases.shape != model.magnitude.shape:
            raise SpectralLengthError(
                f"Phases of shape {phases.shape} do not match the spectrum "
                f"shape {model.magnitude.shape}"
            )
        _check_real_bins(model, phases)
    elif mode == "reuse":
        phases = model.phase
    elif mode == "random":
        if rng is None:
            rng = np.random.default_rng()
        phases = draw_constrained_phases(model.constraints, rng)
    else:
        raise ValueError("mode must be 'reuse' or 'random'")

    fourier = model.magnitude * np.exp(1j * phases)
    return sp_fft.irfft(fourier, n=model.n_time, axis=0, workers=workers)


def magnitude_spectrum(series, workers: Optional[int] = FFT_WORKERS) -> np.ndarray:
    """|rfft| of each column of a T×K matrix."""
    series = as_time_by_cell(series, "series")
    return np.abs(sp_fft.rfft(series, axis=0, workers=workers))
