"""Design-matrix construction from a parsed formula and a table.

The builder turns ``(formula, table, scheme_map)`` into a numeric
matrix whose columns are, in order:

1. ``"(Intercept)"`` when the formula requests one and no numeric
   main-effect term is already a column of ones;
2. one block per formula term, in formula order.

Each block is produced as follows:

* **Numeric variable** — the column itself, labelled by name.
* **Categorical variable** — the contrast-coded block from
  :func:`~matrixlm.contrasts.encode`, labelled ``"var: level"``.
* **Interaction** — the row-wise outer product of the constituent
  blocks, first variable varying slowest, labelled
  ``"var1:var2: levelA:levelB"``.  Numeric constituents contribute no
  level part.

Column order and labels depend only on the formula order and the
chosen schemes.  The scheme map is normalised into a plain lookup and
is never iterated while columns are being assembled, so two scheme
maps with the same entries in a different order give byte-identical
output.

Validation is front-loaded: unknown variables, unknown levels and
scheme conflicts are all detected before any column is materialised.
The assembled matrix is then rank-checked, and a dependent column is
reported by label.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd

from ._compat import DataFrameLike, _ensure_pandas_df
from .contrasts import (
    CategoricalVariable,
    ContrastScheme,
    FullDummyCoding,
    SchemeKey,
    contrast_matrix,
    normalize_scheme_map,
    resolve_scheme,
)
from .exceptions import (
    RankDeficiencyError,
    SchemeConflictError,
    UnknownVariableError,
)

logger = logging.getLogger(__name__)

INTERCEPT_NAME = "(Intercept)"

SchemeMapLike = Mapping[Hashable, ContrastScheme] | Sequence[tuple[Any, ...]] | None


# ------------------------------------------------------------------ #
# Formula objects (already parsed; string parsing is out of scope)
# ------------------------------------------------------------------ #


@dataclass(frozen=True, eq=False)
class Term:
    """A main effect (one variable) or an interaction (several).

    Two terms over the same set of variables are equal regardless of
    the order they were written in; the written order only fixes the
    column order of the interaction block.
    """

    variables: tuple[str, ...]

    def __post_init__(self) -> None:
        variables = tuple(str(v) for v in self.variables)
        if not variables:
            raise ValueError("A term must reference at least one variable.")
        if len(set(variables)) != len(variables):
            raise ValueError(f"Term {variables} repeats a variable.")
        object.__setattr__(self, "variables", variables)

    @classmethod
    def coerce(cls, spec: Term | str | Sequence[str]) -> Term:
        if isinstance(spec, Term):
            return spec
        if isinstance(spec, str):
            return cls((spec,))
        return cls(tuple(spec))

    @property
    def key(self) -> frozenset[str]:
        return frozenset(self.variables)

    @property
    def is_interaction(self) -> bool:
        return len(self.variables) > 1

    @property
    def label(self) -> str:
        return ":".join(self.variables)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Term):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)


@dataclass(frozen=True)
class FormulaSpec:
    """Ordered model terms plus an intercept flag.

    Example:
        ``1 + a + b + a:b`` is::

            FormulaSpec.of("a", "b", ("a", "b"), intercept=True)
    """

    terms: tuple[Term, ...]
    intercept: bool = True

    def __post_init__(self) -> None:
        terms = tuple(Term.coerce(t) for t in self.terms)
        seen: set[frozenset[str]] = set()
        for term in terms:
            if term.key in seen:
                raise ValueError(f"Term '{term.label}' appears more than once.")
            seen.add(term.key)
        object.__setattr__(self, "terms", terms)

    @classmethod
    def of(cls, *terms: Term | str | Sequence[str], intercept: bool = True) -> FormulaSpec:
        return cls(tuple(Term.coerce(t) for t in terms), intercept=intercept)

    @property
    def variables(self) -> list[str]:
        """Distinct variable names in first-reference order."""
        out: list[str] = []
        for term in self.terms:
            for name in term.variables:
                if name not in out:
                    out.append(name)
        return out


@dataclass(frozen=True)
class DesignMatrix:
    """Numeric design matrix with one traceable label per column.

    Attributes:
        matrix: ``(n, p)`` float array (read-only).
        names: ``p`` unique column labels.
        terms: Term each column came from (``None`` for the intercept).
        levels: Level combination of each column; empty for numeric
            columns and the intercept.
        intercept: Whether column 0 is the injected intercept.
    """

    matrix: np.ndarray
    names: tuple[str, ...]
    terms: tuple[Term | None, ...]
    levels: tuple[tuple[Any, ...], ...]
    intercept: bool

    @property
    def shape(self) -> tuple[int, int]:
        return self.matrix.shape  # type: ignore[return-value]

    def to_frame(self, index: pd.Index | None = None) -> pd.DataFrame:
        return pd.DataFrame(self.matrix, columns=list(self.names), index=index)


# ------------------------------------------------------------------ #
# Variable resolution
# ------------------------------------------------------------------ #


def _is_categorical_dtype(series: pd.Series) -> bool:
    dtype = series.dtype
    return (
        isinstance(dtype, pd.CategoricalDtype)
        or pd.api.types.is_bool_dtype(dtype)
        or pd.api.types.is_object_dtype(dtype)
        or pd.api.types.is_string_dtype(dtype)
    )


def _scheme_names(schemes: Mapping[SchemeKey, ContrastScheme]) -> set[str]:
    names: set[str] = set()
    for key in schemes:
        if isinstance(key, frozenset):
            names.update(key)
        else:
            names.add(key)
    return names


def _resolve_variables(
    formula: FormulaSpec,
    table: pd.DataFrame,
    schemes: Mapping[SchemeKey, ContrastScheme],
) -> dict[str, CategoricalVariable | np.ndarray]:
    """Map each formula variable to a categorical variable or a float column."""
    columns = {str(c): c for c in table.columns}

    for name in sorted(_scheme_names(schemes)):
        if name not in columns:
            raise UnknownVariableError(
                f"Scheme map references '{name}', which is not a column of "
                f"the table (columns: {list(columns)}).",
                variable=name,
            )

    # Interaction keys only recode variables that are already categorical.
    coded = {key for key in schemes if isinstance(key, str)}
    resolved: dict[str, CategoricalVariable | np.ndarray] = {}
    for name in formula.variables:
        if name not in columns:
            raise UnknownVariableError(
                f"Formula references '{name}', which is not a column of the "
                f"table (columns: {list(columns)}).",
                variable=name,
            )
        series = table[columns[name]]
        if name in coded or _is_categorical_dtype(series):
            variable = CategoricalVariable.from_series(series, name=name)
            # Surface unknown values now rather than mid-assembly.
            variable.codes()
            resolved[name] = variable
        else:
            try:
                resolved[name] = series.to_numpy(dtype=float)
            except (TypeError, ValueError):
                raise TypeError(
                    f"Column '{name}' is neither numeric nor categorical "
                    f"(dtype {series.dtype})."
                ) from None
    return resolved


def _check_scheme_conflicts(
    formula: FormulaSpec,
    resolved: Mapping[str, CategoricalVariable | np.ndarray],
    schemes: Mapping[SchemeKey, ContrastScheme],
) -> None:
    """Reject scheme combinations that are rank-deficient by construction.

    The indicator columns of a FullDummy variable *v* sum to one, so a
    term *T* coding *v* that way spans the term ``T - {v}`` (its
    margin).  The margin of a main effect is the intercept.

    * A FullDummy main effect conflicts with an intercept and with a
      second FullDummy main effect.
    * A FullDummy constituent of an interaction conflicts with its
      margin term when that term is also in the formula.
    """
    term_keys = {t.key for t in formula.terms}
    full_dummy_mains: list[str] = []

    for term in formula.terms:
        for name in term.variables:
            if not isinstance(resolved[name], CategoricalVariable):
                continue
            scheme = resolve_scheme(term.variables, name, schemes)
            if not isinstance(scheme, FullDummyCoding):
                continue
            margin = term.key - {name}
            if not margin:
                full_dummy_mains.append(name)
            elif margin in term_keys:
                raise SchemeConflictError(
                    f"Interaction '{term.label}' codes '{name}' with "
                    f"FullDummyCoding, so its block spans the term "
                    f"'{':'.join(v for v in term.variables if v != name)}' "
                    f"that is also in the formula."
                )

    if full_dummy_mains and formula.intercept:
        raise SchemeConflictError(
            f"FullDummyCoding for '{full_dummy_mains[0]}' spans the intercept; "
            f"drop the intercept or use DummyCoding/EffectsCoding."
        )
    if len(full_dummy_mains) > 1:
        raise SchemeConflictError(
            f"FullDummyCoding is requested for both '{full_dummy_mains[0]}' and "
            f"'{full_dummy_mains[1]}'; their indicator blocks are collinear."
        )


# ------------------------------------------------------------------ #
# Assembly
# ------------------------------------------------------------------ #


def _term_block(
    term: Term,
    resolved: Mapping[str, CategoricalVariable | np.ndarray],
    schemes: Mapping[SchemeKey, ContrastScheme],
    n: int,
) -> tuple[np.ndarray, list[str], list[tuple[Any, ...]]]:
    block = np.ones((n, 1))
    level_parts: list[tuple[Any, ...]] = [()]

    for name in term.variables:
        source = resolved[name]
        if isinstance(source, CategoricalVariable):
            scheme = resolve_scheme(term.variables, name, schemes)
            C, column_levels = contrast_matrix(source, scheme)
            sub = C[source.codes()]
            sub_levels = [(level,) for level in column_levels]
        else:
            sub = source.reshape(-1, 1)
            sub_levels = [()]
        # Row-wise outer product; the left block varies slowest.
        block = (block[:, :, np.newaxis] * sub[:, np.newaxis, :]).reshape(n, -1)
        level_parts = [left + right for left in level_parts for right in sub_levels]

    names = []
    for parts in level_parts:
        if parts:
            names.append(f"{term.label}: {':'.join(str(p) for p in parts)}")
        else:
            names.append(term.label)
    return block, names, level_parts


def _first_dependent_column(matrix: np.ndarray) -> int | None:
    """Index of the first column in the span of the columns before it."""
    rank = 0
    for j in range(matrix.shape[1]):
        new_rank = np.linalg.matrix_rank(matrix[:, : j + 1])
        if new_rank == rank:
            return j
        rank = new_rank
    return None


def build_design_matrix(
    formula: FormulaSpec,
    table: DataFrameLike,
    scheme_map: SchemeMapLike = None,
) -> DesignMatrix:
    """Build the design matrix and its labels in one pass.

    Args:
        formula: Parsed formula (ordered terms plus intercept flag).
        table: pandas or Polars DataFrame holding every referenced
            column.
        scheme_map: Contrast scheme per variable name, per interaction
            key, or as ``(name, ..., scheme)`` tuples.  Unspecified
            categorical variables use dummy coding against their first
            level.

    Returns:
        A :class:`DesignMatrix`.

    Raises:
        UnknownVariableError: A term or scheme references an absent
            column.
        UnknownLevelError: A scheme names a level the variable lacks.
        SchemeConflictError: The requested codings are collinear by
            construction.
        RankDeficiencyError: The assembled columns are linearly
            dependent (or labels collide).
    """
    table = _ensure_pandas_df(table, name="table")
    schemes = normalize_scheme_map(scheme_map)
    resolved = _resolve_variables(formula, table, schemes)
    _check_scheme_conflicts(formula, resolved, schemes)

    n = len(table)
    blocks: list[np.ndarray] = []
    names: list[str] = []
    terms: list[Term | None] = []
    levels: list[tuple[Any, ...]] = []
    # Only a numeric main effect can stand in for the intercept; coded
    # blocks are constant when a declared level is never observed.
    explicit_constant = False
    for term in formula.terms:
        block, block_names, block_levels = _term_block(term, resolved, schemes, n)
        if (
            not term.is_interaction
            and not isinstance(resolved[term.variables[0]], CategoricalVariable)
            and bool(np.all(block == 1.0))
        ):
            explicit_constant = True
        blocks.append(block)
        names.extend(block_names)
        terms.extend([term] * block.shape[1])
        levels.extend(block_levels)

    matrix = np.hstack(blocks) if blocks else np.empty((n, 0))

    add_intercept = formula.intercept and not explicit_constant
    if add_intercept:
        matrix = np.hstack([np.ones((n, 1)), matrix])
        names.insert(0, INTERCEPT_NAME)
        terms.insert(0, None)
        levels.insert(0, ())

    if len(set(names)) != len(names):
        duplicate = next(name for name in names if names.count(name) > 1)
        raise RankDeficiencyError(
            f"Column label '{duplicate}' occurs more than once.", column=duplicate
        )

    p = matrix.shape[1]
    if p and np.linalg.matrix_rank(matrix) < p:
        j = _first_dependent_column(matrix)
        column = names[j] if j is not None else None
        raise RankDeficiencyError(
            f"Design matrix is rank-deficient: column '{column}' is a linear "
            f"combination of the columns before it.",
            column=column,
        )

    logger.debug("Built design matrix of shape %s for %d terms", matrix.shape, len(formula.terms))
    matrix.setflags(write=False)
    return DesignMatrix(
        matrix=matrix,
        names=tuple(names),
        terms=tuple(terms),
        levels=tuple(levels),
        intercept=add_intercept,
    )


def design_matrix(
    formula: FormulaSpec,
    table: DataFrameLike,
    scheme_map: SchemeMapLike = None,
) -> np.ndarray:
    """Numeric ``(n, p)`` design matrix; see :func:`build_design_matrix`."""
    return build_design_matrix(formula, table, scheme_map).matrix


def design_matrix_names(
    formula: FormulaSpec,
    table: DataFrameLike,
    scheme_map: SchemeMapLike = None,
) -> list[str]:
    """Column labels of :func:`design_matrix`, same order and length."""
    return list(build_design_matrix(formula, table, scheme_map).names)


__all__ = [
    "INTERCEPT_NAME",
    "DesignMatrix",
    "FormulaSpec",
    "Term",
    "build_design_matrix",
    "design_matrix",
    "design_matrix_names",
]
