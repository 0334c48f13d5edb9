"""Exceptions raised by fieldgen.

All errors derive from ``ValueError`` so that callers written against plain
``ValueError`` keep working, while the subclasses allow targeted handling.
"""


class FieldGenError(ValueError):
    """Base class for all fieldgen errors."""


class InputShapeError(FieldGenError):
    """Mismatched time lengths, grid sizes, or missing values in an input."""


class DegenerateFitError(FieldGenError):
    """Too few samples, too few distinct values, or a zero-variance driver."""


class InvertibilityError(FieldGenError):
    """A transform or quantile lookup cannot be inverted."""


class SpectralLengthError(FieldGenError):
    """Requested series length does not match the trained frequency grid."""
