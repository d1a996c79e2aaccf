"""Contrast coding — categorical levels to numeric design columns.

A categorical variable with *k* levels cannot enter a linear model as a
single column of labels.  It is expanded into a small block of numeric
columns whose pattern across levels determines what the fitted
coefficients mean.  Four schemes are supported; they form a closed
set dispatched by :func:`contrast_matrix`:

1. **Dummy** (treatment) — one indicator column per non-base level.
   The base level is the all-zero row, so with an intercept each
   coefficient is the difference between its level and the base.

   Example, levels ``A, B, C`` with base ``A``::

       A  →  0  0
       B  →  1  0
       C  →  0  1

2. **Effects** (deviation / sum-to-zero) — the same non-base columns,
   but the base level is coded ``-1`` in every column.  With an
   intercept, the intercept becomes the unweighted grand mean of the
   level means and each coefficient is a level's deviation from it::

       A  → -1 -1
       B  →  1  0
       C  →  0  1

3. **SeqDiff** (sequential difference, ordinal) — *k − 1* step
   columns.  Column *j* is 1 for every level ordered after level *j*,
   so with an intercept coefficient *j* is exactly the step between
   adjacent levels *j* and *j + 1*::

       low   →  0  0
       mid   →  1  0
       high  →  1  1

   The columns are not centred, so the intercept is the mean of the
   first level.  Centred sequential-difference coding (as in
   statsmodels' ``Diff``) gives the same step coefficients but makes
   the intercept the grand mean of the level means.

4. **FullDummy** — one indicator per level with no suppressed base.
   Only identifiable without an intercept (e.g. a column-side
   annotation matrix Z that describes group membership).

The coder itself never looks at the formula; the design-matrix builder
decides which scheme applies to which variable (see
:func:`resolve_scheme`) and detects combinations that would be
rank-deficient.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

import numpy as np
import pandas as pd

from .exceptions import SchemeConflictError, UnknownLevelError

# ------------------------------------------------------------------ #
# Scheme variants
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class DummyCoding:
    """Treatment coding against *base* (default: the first level)."""

    base: Any = None


@dataclass(frozen=True)
class EffectsCoding:
    """Sum-to-zero coding; *base* is the level coded ``-1`` throughout."""

    base: Any = None


@dataclass(frozen=True)
class SeqDiffCoding:
    """Sequential-difference coding for ordinal variables.

    Attributes:
        levels: Optional explicit level order.  Must be a permutation
            of the variable's levels.  ``None`` uses the variable's own
            order.
    """

    levels: tuple[Any, ...] | None = None

    def __post_init__(self) -> None:
        if self.levels is not None and not isinstance(self.levels, tuple):
            object.__setattr__(self, "levels", tuple(self.levels))


@dataclass(frozen=True)
class FullDummyCoding:
    """One indicator column per level, no base level suppressed."""


ContrastScheme: TypeAlias = DummyCoding | EffectsCoding | SeqDiffCoding | FullDummyCoding

_SCHEME_TYPES = (DummyCoding, EffectsCoding, SeqDiffCoding, FullDummyCoding)

DEFAULT_SCHEME: ContrastScheme = DummyCoding()
"""Library default: dummy coding with the first level as base."""

# Scheme-map keys are variable names or, for interaction overrides,
# the frozenset of the interacting variable names.
SchemeKey: TypeAlias = str | frozenset[str]


# ------------------------------------------------------------------ #
# CategoricalVariable
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class CategoricalVariable:
    """A categorical column: its observed values and ordered level set.

    Attributes:
        name: Column name in the source table.
        levels: Ordered, duplicate-free tuple of levels.
        base: Optional designated base level, used by Dummy and
            Effects coding when the scheme does not name one.
        values: Observed values, one per row.
    """

    name: str
    levels: tuple[Any, ...]
    base: Any = None
    values: np.ndarray = field(
        default_factory=lambda: np.empty(0, dtype=object), compare=False, repr=False
    )

    def __post_init__(self) -> None:
        levels = tuple(self.levels)
        if len(set(levels)) != len(levels):
            raise ValueError(f"Variable '{self.name}' has duplicate levels: {levels}.")
        object.__setattr__(self, "levels", levels)
        if self.base is not None:
            _level_index(self, self.base)

    @classmethod
    def from_series(cls, series: pd.Series, name: str | None = None) -> CategoricalVariable:
        """Build a variable from a pandas column.

        Levels are the declared categories of a ``Categorical`` column
        (its own order, ordered or not).  Otherwise they are the sorted
        unique observed values, which makes the default base level
        independent of row order.
        """
        name = str(series.name) if name is None else name
        if isinstance(series.dtype, pd.CategoricalDtype):
            levels = tuple(series.cat.categories.tolist())
            values = np.asarray(series.astype(object))
        else:
            values = np.asarray(series.astype(object))
            try:
                levels = tuple(sorted(pd.unique(values)))
            except TypeError:
                # Mixed, unorderable types keep first-appearance order.
                levels = tuple(pd.unique(values))
        return cls(name=name, levels=levels, values=values)

    @property
    def n_levels(self) -> int:
        return len(self.levels)

    def codes(self) -> np.ndarray:
        """Integer level index for every observed value.

        Raises:
            UnknownLevelError: If a value is not one of the levels.
        """
        lookup = {level: i for i, level in enumerate(self.levels)}
        try:
            return np.fromiter(
                (lookup[v] for v in self.values), dtype=np.intp, count=len(self.values)
            )
        except KeyError as exc:
            raise UnknownLevelError(
                f"Variable '{self.name}' has value {exc.args[0]!r} that is not "
                f"one of its levels {list(self.levels)}.",
                variable=self.name,
            ) from None


def _level_index(variable: CategoricalVariable, level: Any) -> int:
    try:
        return variable.levels.index(level)
    except ValueError:
        raise UnknownLevelError(
            f"Level {level!r} is not a level of variable '{variable.name}' "
            f"(levels: {list(variable.levels)}).",
            variable=variable.name,
        ) from None


# ------------------------------------------------------------------ #
# Contrast matrices
# ------------------------------------------------------------------ #
#
# Each scheme is a (k, c) matrix C whose row i holds the numeric code
# of level i.  Encoding a column of observations is then a row gather,
# C[codes], which keeps every scheme on the same code path.


def _base_index(variable: CategoricalVariable, scheme_base: Any) -> int:
    if scheme_base is not None:
        return _level_index(variable, scheme_base)
    if variable.base is not None:
        return _level_index(variable, variable.base)
    return 0


def contrast_matrix(
    variable: CategoricalVariable, scheme: ContrastScheme
) -> tuple[np.ndarray, list[Any]]:
    """Return the ``(k, c)`` contrast matrix and the level naming each column.

    Args:
        variable: The categorical variable (only its levels are used).
        scheme: One of the four scheme variants.

    Returns:
        ``(C, column_levels)`` where ``C[i]`` is the code of
        ``variable.levels[i]`` and ``column_levels[j]`` is the level
        used to label column *j*.

    Raises:
        UnknownLevelError: If the scheme names a level the variable
            does not have.
        TypeError: If *scheme* is not a contrast scheme.
    """
    k = variable.n_levels
    identity = np.eye(k)

    if isinstance(scheme, DummyCoding):
        b = _base_index(variable, scheme.base)
        keep = [i for i in range(k) if i != b]
        return identity[:, keep], [variable.levels[i] for i in keep]

    if isinstance(scheme, EffectsCoding):
        b = _base_index(variable, scheme.base)
        keep = [i for i in range(k) if i != b]
        C = identity[:, keep]
        C[b, :] = -1.0
        return C, [variable.levels[i] for i in keep]

    if isinstance(scheme, SeqDiffCoding):
        order = variable.levels if scheme.levels is None else scheme.levels
        if len(order) != k or set(order) != set(variable.levels):
            raise UnknownLevelError(
                f"SeqDiffCoding level order {list(order)} is not a permutation "
                f"of the levels of '{variable.name}' ({list(variable.levels)}).",
                variable=variable.name,
            )
        # rank[i] = position of variable.levels[i] in the ordinal order.
        rank = np.array([order.index(level) for level in variable.levels])
        C = (rank[:, np.newaxis] > np.arange(k - 1)[np.newaxis, :]).astype(float)
        return C, list(order[1:])

    if isinstance(scheme, FullDummyCoding):
        return identity, list(variable.levels)

    raise TypeError(
        f"Unknown contrast scheme {scheme!r}; expected one of "
        f"{[t.__name__ for t in _SCHEME_TYPES]}."
    )


def encode(
    variable: CategoricalVariable, scheme: ContrastScheme = DEFAULT_SCHEME
) -> tuple[np.ndarray, list[str]]:
    """Encode *variable* into numeric columns under *scheme*.

    Returns:
        ``(submatrix, names)`` — an ``(n, c)`` float array and *c*
        labels of the form ``"variable: level"``.
    """
    C, column_levels = contrast_matrix(variable, scheme)
    submatrix = C[variable.codes()]
    names = [f"{variable.name}: {level}" for level in column_levels]
    return submatrix, names


def n_columns(n_levels: int, scheme: ContrastScheme) -> int:
    """Number of columns *scheme* produces for a variable with *n_levels*."""
    if isinstance(scheme, FullDummyCoding):
        return n_levels
    return max(n_levels - 1, 0)


# ------------------------------------------------------------------ #
# Scheme maps
# ------------------------------------------------------------------ #


def _check_scheme(scheme: Any, key: Any) -> ContrastScheme:
    if not isinstance(scheme, _SCHEME_TYPES):
        raise TypeError(
            f"Scheme for {key!r} must be a contrast scheme instance, "
            f"got {type(scheme).__name__}."
        )
    return scheme


def _normalize_key(key: Hashable) -> SchemeKey:
    if isinstance(key, str):
        return key
    if isinstance(key, (tuple, list, frozenset, set)):
        names = frozenset(str(k) for k in key)
        if len(names) == 1:
            return next(iter(names))
        return names
    return str(key)


def normalize_scheme_map(
    scheme_map: Mapping[Hashable, ContrastScheme]
    | Sequence[tuple[Any, ...]]
    | None,
) -> dict[SchemeKey, ContrastScheme]:
    """Normalise the accepted scheme-map forms to ``{key: scheme}``.

    Two forms are accepted:

    * A mapping from variable name to scheme.  A key that is a tuple
      (or set) of several names is an *interaction key*: it overrides
      the coding of each constituent variable inside that interaction
      term only.
    * A sequence of tuples ``(name, ..., scheme)``, each assigning one
      scheme to every listed variable.

    Raises:
        SchemeConflictError: If the sequence form assigns two different
            schemes to the same variable.
        TypeError: If a value is not a contrast scheme.
    """
    if scheme_map is None:
        return {}

    if isinstance(scheme_map, Mapping):
        return {
            _normalize_key(key): _check_scheme(scheme, key)
            for key, scheme in scheme_map.items()
        }

    result: dict[SchemeKey, ContrastScheme] = {}
    for entry in scheme_map:
        if not isinstance(entry, tuple) or len(entry) < 2:
            raise TypeError(
                "Scheme-map entries must be tuples of (name, ..., scheme), "
                f"got {entry!r}."
            )
        *names, scheme = entry
        _check_scheme(scheme, tuple(names))
        for name in names:
            key = str(name)
            if key in result and result[key] != scheme:
                raise SchemeConflictError(
                    f"Variable '{key}' is assigned both {result[key]!r} and "
                    f"{scheme!r} in the scheme map."
                )
            result[key] = scheme
    return result


def resolve_scheme(
    term_variables: Iterable[str],
    name: str,
    schemes: Mapping[SchemeKey, ContrastScheme],
) -> ContrastScheme:
    """Pick the scheme for *name* inside a term over *term_variables*.

    Precedence: interaction-key override → per-variable entry →
    :data:`DEFAULT_SCHEME`.
    """
    key = frozenset(term_variables)
    if len(key) > 1 and key in schemes:
        return schemes[key]
    return schemes.get(name, DEFAULT_SCHEME)


__all__ = [
    "DEFAULT_SCHEME",
    "CategoricalVariable",
    "ContrastScheme",
    "DummyCoding",
    "EffectsCoding",
    "FullDummyCoding",
    "SeqDiffCoding",
    "contrast_matrix",
    "encode",
    "n_columns",
    "normalize_scheme_map",
    "resolve_scheme",
]
