"""Typed result object for matrix-model permutation tests.

A frozen dataclass that provides:

* **Attribute access** — ``result.p_values``, ``result.n_completed``.
* **Dict-like access** — ``result["p_values"]``, ``result.get("key")``,
  ``"key" in result`` for consumers that prefer bracket syntax.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy types converted to native Python.
* **Labelled views** — ``.to_frame("p_values")`` returns a pandas
  DataFrame indexed by the X labels with Z labels as columns.

The result is frozen to communicate that it is a snapshot of a
completed test and should not be mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from .estimator import FitResult

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy scalars/arrays to Python-native types.

    Handles nested dicts, lists, np.ndarray, np.integer, and
    np.floating so that :meth:`to_dict` returns a fully
    JSON-serialisable structure.
    """
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports three access patterns:

    1. ``result["key"]``     — raises ``KeyError`` on miss
    2. ``result.get(key, d)`` — returns *d* on miss (default ``None``)
    3. ``"key" in result``   — membership test
    """

    # Fields to exclude from to_dict() serialisation.
    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset({"observed_fit"})

    def __getitem__(self, key: str) -> Any:
        """Attribute lookup via bracket syntax."""
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        """Attribute lookup with a fallback default."""
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        """Membership test: ``"key" in result``."""
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain, JSON-serialisable dictionary."""
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._EXCLUDE_FROM_DICT:
                continue
            result[f.name] = _numpy_to_python(getattr(self, f.name))
        return result


# ------------------------------------------------------------------ #
# PermutationTestResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class PermutationTestResult(_DictAccessMixin):
    """Result of a permutation test on a matrix linear model.

    All fields are accessible both as attributes (``result.p_values``)
    and via dict syntax (``result["p_values"]``).
    """

    # ---- Statistics -------------------------------------------------
    observed_t: np.ndarray
    """Observed t-statistics, intercept rows/columns dropped by default."""

    p_values: np.ndarray
    """Empirical p-values ``(counts + 1) / (n_completed + 1)``."""

    counts: np.ndarray
    """Per-cell number of completed trials with ``|T*| >= |T|``."""

    # ---- Trial bookkeeping -----------------------------------------
    n_trials: int
    """Number of trials requested."""

    n_completed: int
    """Trials that contributed to the counts."""

    n_excluded: int
    """Degenerate trials dropped under ``on_singular="exclude"``."""

    timed_out: bool
    """Whether the timeout stopped trials from starting."""

    # ---- Labels & configuration ------------------------------------
    row_names: tuple[str, ...] | None = None
    """Labels of the X columns kept in the statistic, if known."""

    col_names: tuple[str, ...] | None = None
    """Labels of the Z columns kept in the statistic, if known."""

    permute_fn: str = "shuffle_rows"
    """Name of the permutation function used."""

    on_singular: str = "raise"
    """Degenerate-trial policy that was applied."""

    observed_fit: FitResult | None = field(default=None, repr=False)
    """Fit on the unpermuted data (excluded from :meth:`to_dict`)."""

    def to_frame(self, attribute: str = "p_values") -> pd.DataFrame:
        """Labelled DataFrame view of a matrix-valued attribute."""
        if attribute not in ("observed_t", "p_values", "counts"):
            raise ValueError(
                f"to_frame() supports 'observed_t', 'p_values' and 'counts', "
                f"got {attribute!r}."
            )
        values = getattr(self, attribute)
        return pd.DataFrame(
            values,
            index=list(self.row_names) if self.row_names is not None else None,
            columns=list(self.col_names) if self.col_names is not None else None,
        )
