"""Coefficient t-statistics for a fitted matrix linear model."""

from __future__ import annotations

import numpy as np

from .estimator import FitResult


def _t_from(
    B: np.ndarray,
    varB: np.ndarray,
    drop_row: bool,
    drop_col: bool,
) -> np.ndarray:
    # Zero variance (e.g. noiseless data) gives ±inf or nan; the
    # permutation engine decides what to do with them.
    with np.errstate(divide="ignore", invalid="ignore"):
        t = B / np.sqrt(varB)
    return t[int(drop_row):, int(drop_col):]


def t_stat(fit: FitResult, include_main_effects: bool = False) -> np.ndarray:
    """Elementwise ``t[i, j] = B̂[i, j] / sqrt(var(B̂[i, j]))``.

    Args:
        fit: A fitted model.
        include_main_effects: Keep the row/column belonging to an
            ``X``/``Z`` intercept, whether it was injected by the fit or
            supplied with the predictors.  By default they are dropped;
            the remaining block is identical either way.

    Returns:
        t-statistic matrix of shape ``(p, q)`` minus any dropped
        intercept row/column.
    """
    return _t_from(
        fit.coefficients,
        fit.variance,
        drop_row=fit.x_has_intercept and not include_main_effects,
        drop_col=fit.z_has_intercept and not include_main_effects,
    )


__all__ = ["t_stat"]
