"""Immutable containers for the response and the two predictor matrices.

A matrix linear model relates an ``(n, m)`` response ``Y`` to a
row-side predictor matrix ``X`` ``(n, p)`` and a column-side predictor
matrix ``Z`` ``(m, q)``::

    Y = X · B · Zᵗ + E

Rows of ``Y`` are observations described by ``X``; columns of ``Y``
are responses described by ``Z``.

Every array is copied to ``float64`` at construction and flagged
read-only, so a :class:`RawData` can be shared by any number of
concurrent permutation trials without copying and without risk of one
trial mutating another's input.  Shapes are validated here, before any
factorisation is attempted.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from ._compat import _to_pandas_if_polars
from ._typing import ArrayLike
from .design import DesignMatrix
from .exceptions import DimensionMismatchError


def _as_readonly_matrix(value: ArrayLike | DesignMatrix, name: str) -> np.ndarray:
    if isinstance(value, DesignMatrix):
        value = value.matrix
    arr = np.array(value, dtype=float, copy=True)
    if arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    if arr.ndim != 2:
        raise DimensionMismatchError(
            f"{name} must be a 2-D matrix, got an array with {arr.ndim} dimensions."
        )
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} contains non-finite values.")
    arr.setflags(write=False)
    return arr


def _column_names(
    value: ArrayLike | DesignMatrix, names: Sequence[str] | None
) -> tuple[str, ...] | None:
    if names is not None:
        return tuple(str(n) for n in names)
    if isinstance(value, DesignMatrix):
        return value.names
    if isinstance(value, pd.DataFrame):
        return tuple(str(c) for c in value.columns)
    return None


@dataclass(frozen=True, init=False)
class Response:
    """The ``(n, m)`` response matrix ``Y``."""

    Y: np.ndarray
    names: tuple[str, ...] | None

    def __init__(self, Y: ArrayLike, names: Sequence[str] | None = None) -> None:
        Y = _to_pandas_if_polars(Y)
        arr = _as_readonly_matrix(Y, "Y")
        col_names = _column_names(Y, names)
        if col_names is not None and len(col_names) != arr.shape[1]:
            raise DimensionMismatchError(
                f"Y has {arr.shape[1]} columns but {len(col_names)} names."
            )
        object.__setattr__(self, "Y", arr)
        object.__setattr__(self, "names", col_names)

    @property
    def shape(self) -> tuple[int, int]:
        return self.Y.shape  # type: ignore[return-value]


@dataclass(frozen=True, init=False)
class Predictors:
    """Row-side ``X`` ``(n, p)`` and column-side ``Z`` ``(m, q)`` predictors.

    Attributes:
        X: Row predictors.
        Z: Column predictors.
        has_x_intercept: ``X`` already carries an intercept column
            (column 0).  Automatic injection is then skipped.
        has_z_intercept: Same for ``Z``.
        x_names: Optional labels for the columns of ``X``.
        z_names: Optional labels for the columns of ``Z``.

    ``X`` and ``Z`` may be NumPy arrays, pandas DataFrames (column
    names are kept), Polars DataFrames (converted to pandas, names kept)
    or :class:`~matrixlm.design.DesignMatrix` objects
    (labels and intercept presence are kept).
    """

    X: np.ndarray
    Z: np.ndarray
    has_x_intercept: bool
    has_z_intercept: bool
    x_names: tuple[str, ...] | None
    z_names: tuple[str, ...] | None

    def __init__(
        self,
        X: ArrayLike | DesignMatrix,
        Z: ArrayLike | DesignMatrix,
        has_x_intercept: bool | None = None,
        has_z_intercept: bool | None = None,
        x_names: Sequence[str] | None = None,
        z_names: Sequence[str] | None = None,
    ) -> None:
        X = _to_pandas_if_polars(X)
        Z = _to_pandas_if_polars(Z)
        X_arr = _as_readonly_matrix(X, "X")
        Z_arr = _as_readonly_matrix(Z, "Z")
        x_cols = _column_names(X, x_names)
        z_cols = _column_names(Z, z_names)
        for label, arr, cols in (("X", X_arr, x_cols), ("Z", Z_arr, z_cols)):
            if cols is not None and len(cols) != arr.shape[1]:
                raise DimensionMismatchError(
                    f"{label} has {arr.shape[1]} columns but {len(cols)} names."
                )
        if has_x_intercept is None:
            has_x_intercept = isinstance(X, DesignMatrix) and X.intercept
        if has_z_intercept is None:
            has_z_intercept = isinstance(Z, DesignMatrix) and Z.intercept
        object.__setattr__(self, "X", X_arr)
        object.__setattr__(self, "Z", Z_arr)
        object.__setattr__(self, "has_x_intercept", bool(has_x_intercept))
        object.__setattr__(self, "has_z_intercept", bool(has_z_intercept))
        object.__setattr__(self, "x_names", x_cols)
        object.__setattr__(self, "z_names", z_cols)


@dataclass(frozen=True)
class RawData:
    """Immutable bundle of a :class:`Response` and its :class:`Predictors`.

    Raises:
        DimensionMismatchError: If ``X`` does not have one row per row
            of ``Y`` or ``Z`` does not have one row per column of ``Y``.
    """

    response: Response
    predictors: Predictors

    def __post_init__(self) -> None:
        n, m = self.response.shape
        if self.predictors.X.shape[0] != n:
            raise DimensionMismatchError(
                f"X has {self.predictors.X.shape[0]} rows but Y has {n} rows."
            )
        if self.predictors.Z.shape[0] != m:
            raise DimensionMismatchError(
                f"Z has {self.predictors.Z.shape[0]} rows but Y has {m} columns."
            )

    @classmethod
    def from_arrays(
        cls,
        Y: ArrayLike,
        X: ArrayLike | DesignMatrix,
        Z: ArrayLike | DesignMatrix,
        **predictor_kwargs: object,
    ) -> RawData:
        return cls(Response(Y), Predictors(X, Z, **predictor_kwargs))  # type: ignore[arg-type]

    @property
    def Y(self) -> np.ndarray:
        return self.response.Y

    @property
    def X(self) -> np.ndarray:
        return self.predictors.X

    @property
    def Z(self) -> np.ndarray:
        return self.predictors.Z

    @property
    def n(self) -> int:
        return self.response.shape[0]

    @property
    def m(self) -> int:
        return self.response.shape[1]

    @property
    def p(self) -> int:
        return self.predictors.X.shape[1]

    @property
    def q(self) -> int:
        return self.predictors.Z.shape[1]

    def with_response(self, Y: ArrayLike) -> RawData:
        """New bundle with *Y* replaced and the same predictors."""
        return RawData(Response(Y, names=self.response.names), self.predictors)
