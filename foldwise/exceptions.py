"""
Error and warning taxonomy for cross-validation runs.

Fatal conditions are raised before any fold work begins (fail fast).
Non-fatal conditions are emitted through ``warnings.warn`` and logged, and the
run continues.

Every error also subclasses the builtin it most resembles, so callers that
already catch ``ValueError`` / ``TypeError`` keep working.
"""

from __future__ import annotations


class CVError(Exception):
    """Base class for all foldwise errors."""


class InvalidFoldSpec(CVError, ValueError):
    """``k`` is not an integer in ``[2, n]`` or a leave-one-out sentinel."""


class InvalidRequest(CVError, ValueError):
    """A combination of options that has no meaning (e.g. ``reps > 1`` for LOO)."""


class NonVectorResponse(CVError, TypeError):
    """The model adapter produced a response that is not one-dimensional."""


class NonNumericResponse(CVError, TypeError):
    """The model adapter produced a response that is not numeric."""


class MissingResponse(CVError, ValueError):
    """A selection-procedure run has neither a model nor a response expression."""


class FormulaMismatchWarning(UserWarning):
    """Variables in the model formula are absent from the data."""


class SeedIgnoredWarning(UserWarning):
    """A seed was supplied for leave-one-out CV, where no randomness is used."""
