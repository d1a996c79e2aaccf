"""Polars inputs, converted to pandas where they enter the package.

Two kinds of input can arrive as Polars objects:

* **Tables** for the design-matrix builder.  :func:`_ensure_pandas_df`
  turns a ``polars.DataFrame`` or ``polars.LazyFrame`` into a
  ``pandas.DataFrame``, since the builder reads dtypes and declared
  categories from pandas only.
* **Matrices** for :class:`~matrixlm.data.Response` and
  :class:`~matrixlm.data.Predictors`.  :func:`_to_pandas_if_polars`
  converts Polars frames (and series) so their column names are kept
  as labels, and leaves every other array-like untouched for NumPy to
  coerce.

Polars is an optional extra.  Without it both helpers only ever see
pandas and NumPy inputs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeAlias

import pandas as pd

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame

try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _is_polars(obj: Any, *, series: bool = False) -> bool:
    if not _HAS_POLARS:
        return False
    kinds: tuple[type, ...] = (pl.DataFrame, pl.LazyFrame)
    if series:
        kinds += (pl.Series,)
    return isinstance(obj, kinds)


def _polars_to_pandas(obj: Any) -> pd.DataFrame | pd.Series:
    # to_pandas goes through pyarrow, which ships with the polars extra.
    if isinstance(obj, pl.LazyFrame):
        obj = obj.collect()
    return obj.to_pandas()


def _ensure_pandas_df(obj: DataFrameLike, *, name: str = "table") -> pd.DataFrame:
    """Return *obj* as a :class:`pandas.DataFrame`.

    A pandas frame is returned as-is; a Polars ``DataFrame`` is
    converted and a ``LazyFrame`` collected first.

    Raises:
        TypeError: If *obj* is neither.
    """
    if isinstance(obj, pd.DataFrame):
        return obj
    if _is_polars(obj):
        return _polars_to_pandas(obj)

    accepted = "a pandas DataFrame"
    if _HAS_POLARS:
        accepted += " or Polars DataFrame/LazyFrame"
    raise TypeError(f"'{name}' must be {accepted}, got {type(obj).__name__}.")


def _to_pandas_if_polars(value: Any) -> Any:
    """Convert a Polars frame or series to pandas; pass anything else through."""
    if _is_polars(value, series=True):
        return _polars_to_pandas(value)
    return value
