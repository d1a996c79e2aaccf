"""Exception taxonomy for the matrixlm package.

Every error raised for malformed inputs derives from
:class:`MatrixLMError` and from the built-in exception a caller would
naturally catch for the same condition (``ValueError``, ``KeyError``,
``numpy.linalg.LinAlgError``).  None of these errors is recovered from
internally: no columns are silently dropped and no inputs are
coerced.  The caller corrects the inputs and retries.

Hierarchy::

    MatrixLMError
    ├── SchemeConflictError      (ValueError)
    ├── UnknownVariableError     (KeyError)
    │   └── UnknownLevelError
    ├── RankDeficiencyError      (ValueError)
    │   └── SingularMatrixError  (numpy.linalg.LinAlgError)
    └── DimensionMismatchError   (ValueError)
"""

from __future__ import annotations

import numpy as np


class MatrixLMError(Exception):
    """Base class for all matrixlm errors."""


class SchemeConflictError(MatrixLMError, ValueError):
    """Requested contrast codings would make the design rank-deficient."""


class UnknownVariableError(MatrixLMError, KeyError):
    """A term references a column that is absent from the table."""

    def __init__(self, message: str, variable: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.variable = variable

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message.
        return self.message


class UnknownLevelError(UnknownVariableError):
    """A scheme names a level the variable does not take."""


class RankDeficiencyError(MatrixLMError, ValueError):
    """An assembled matrix has linearly dependent columns.

    Attributes:
        column: Label (or positional index) of the first column found
            to be a linear combination of the columns before it, when
            it could be identified.
    """

    def __init__(self, message: str, column: str | int | None = None) -> None:
        super().__init__(message)
        self.column = column


class SingularMatrixError(RankDeficiencyError, np.linalg.LinAlgError):
    """``XᵗX`` or ``ZᵗWZ`` is not invertible.

    Attributes:
        side: ``"X"`` or ``"Z"`` — which normal-equations matrix failed.
        column: The offending collinear predictor, when identified.
    """

    def __init__(
        self,
        message: str,
        side: str | None = None,
        column: str | int | None = None,
    ) -> None:
        super().__init__(message, column=column)
        self.side = side


class DimensionMismatchError(MatrixLMError, ValueError):
    """Row/column counts of X, Z, Y (or a FitResult) are inconsistent."""


__all__ = [
    "DimensionMismatchError",
    "MatrixLMError",
    "RankDeficiencyError",
    "SchemeConflictError",
    "SingularMatrixError",
    "UnknownLevelError",
    "UnknownVariableError",
]
