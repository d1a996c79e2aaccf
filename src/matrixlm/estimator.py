"""Least-squares estimation for the matrix linear model ``Y = X·B·Zᵗ + E``.

Closed-form solution
--------------------
Vectorising the model gives an ordinary linear model with design
``Z ⊗ X``.  Because ``(Z ⊗ X)ᵗ(Z ⊗ X) = ZᵗZ ⊗ XᵗX``, the normal
equations never have to be formed at Kronecker size; the estimate
separates into a row-side and a column-side solve::

    B̂ = (XᵗX)⁻¹ Xᵗ · Y · W Z (ZᵗWZ)⁻¹

where ``W = diag(w)`` holds optional per-response-column weights
(``W = I`` when unweighted).  Only a ``(p, p)`` and a ``(q, q)`` system
are factorised, however large ``n·m`` is.

Variance
--------
Residuals ``Ê = Y − X B̂ Zᵗ`` give the residual variance::

    σ² = Σ_ij w_j Ê_ij² / (n·m − p·q)

and the Kronecker covariance ``σ² · (ZᵗWZ)⁻¹ ⊗ (XᵗX)⁻¹`` gives the
coefficient-wise variance::

    var(B̂[i, j]) = σ² · [(XᵗX)⁻¹]_ii · [(ZᵗWZ)⁻¹]_jj

When a shrinkage target is configured, the ``(m, m)`` covariance of the
(weight-scaled) residuals is shrunk toward that target (see
:mod:`matrixlm.shrinkage`) and the column factor becomes the sandwich
``diag(Rᵗ Σ* R)`` with ``R = W^½ Z (ZᵗWZ)⁻¹``.  For ``Σ* = σ²I`` this
reduces to the formula above.

Permutation support
-------------------
Everything that depends only on ``X``, ``Z`` and the weights (the two
inverses and the left/right projection factors) lives on a frozen
:class:`PreparedDesign`.  A permutation trial reuses it and only
recomputes the parts that depend on ``Y``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
import scipy.linalg

from .data import Predictors, RawData
from .design import INTERCEPT_NAME, _first_dependent_column
from .exceptions import DimensionMismatchError, SingularMatrixError
from .shrinkage import shrink_covariance, validate_target

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------ #
# Intercepts
# ------------------------------------------------------------------ #


def _has_constant_column(M: np.ndarray) -> bool:
    return M.shape[0] > 0 and bool(np.any(np.all(M == 1.0, axis=0)))


def _maybe_add_intercept(
    M: np.ndarray,
    names: tuple[str, ...] | None,
    add: bool,
    has: bool,
) -> tuple[np.ndarray, tuple[str, ...] | None, bool]:
    """Prepend a ones column when requested and none is present."""
    if not add or has or _has_constant_column(M):
        return M, names, False
    out = np.hstack([np.ones((M.shape[0], 1)), M])
    out.setflags(write=False)
    if names is not None:
        names = (INTERCEPT_NAME, *names)
    return out, names, True


# ------------------------------------------------------------------ #
# Normal equations
# ------------------------------------------------------------------ #


def _inverse_normal_matrix(
    M: np.ndarray,
    gram: np.ndarray,
    side: str,
    names: tuple[str, ...] | None,
) -> np.ndarray:
    """Invert the Gram matrix *gram* of *M* via a Cholesky factorisation.

    Raises:
        SingularMatrixError: Naming the first collinear column of *M*.
    """

    def _singular() -> SingularMatrixError:
        j = _first_dependent_column(M)
        if j is None:
            column: str | int | None = None
            detail = "it is numerically singular"
        else:
            column = names[j] if names is not None else j
            detail = f"column {column!r} is collinear with the columns before it"
        return SingularMatrixError(
            f"{side}ᵗ{'W' if side == 'Z' else ''}{side} is not invertible: {detail}.",
            side=side,
            column=column,
        )

    k = M.shape[1]
    if np.linalg.matrix_rank(M) < k:
        raise _singular()
    try:
        factor = scipy.linalg.cho_factor(gram, lower=True, check_finite=False)
    except np.linalg.LinAlgError:
        raise _singular() from None
    return scipy.linalg.cho_solve(factor, np.eye(k), check_finite=False)


@dataclass(frozen=True)
class PreparedDesign:
    """Y-independent factors of a fit, shared by every permutation trial.

    Attributes:
        X: Row predictors after optional intercept injection ``(n, p)``.
        Z: Column predictors after optional intercept injection ``(m, q)``.
        XtX_inv: ``(XᵗX)⁻¹``.
        ZtWZ_inv: ``(ZᵗWZ)⁻¹``.
        left: ``(XᵗX)⁻¹Xᵗ`` ``(p, n)``.
        right: ``WZ(ZᵗWZ)⁻¹`` ``(m, q)``.
        sqrt_right: ``W^½Z(ZᵗWZ)⁻¹`` ``(m, q)``, used by the shrunk
            variance sandwich.
        weights: Per-column weights ``(m,)`` (ones when unweighted).
        x_has_intercept: Column 0 of ``X`` is an intercept, injected here
            or already carried by the predictors.
        z_has_intercept: Same for ``Z``.
    """

    X: np.ndarray
    Z: np.ndarray
    XtX_inv: np.ndarray
    ZtWZ_inv: np.ndarray
    left: np.ndarray = field(repr=False)
    right: np.ndarray = field(repr=False)
    sqrt_right: np.ndarray = field(repr=False)
    weights: np.ndarray = field(repr=False)
    weighted: bool
    shrinkage_target: str | None
    x_intercept_added: bool
    z_intercept_added: bool
    x_has_intercept: bool
    z_has_intercept: bool
    x_names: tuple[str, ...] | None
    z_names: tuple[str, ...] | None

    @property
    def p(self) -> int:
        return self.X.shape[1]

    @property
    def q(self) -> int:
        return self.Z.shape[1]

    def solve(
        self, Y: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, float, np.ndarray | None, float | None]:
        """Estimate ``(B, varB, sigma², sigma_matrix, lambda)`` for *Y*."""
        n, m = Y.shape
        B = self.left @ Y @ self.right
        E = Y - _predict(self.X, B, self.Z)
        df = n * m - self.p * self.q
        sigma2 = float(np.sum(E**2 * self.weights[np.newaxis, :]) / df)

        row_factor = np.diag(self.XtX_inv)
        if self.shrinkage_target is None:
            col_factor = sigma2 * np.diag(self.ZtWZ_inv)
            sigma_matrix = None
            lam = None
        else:
            scaled = E * np.sqrt(self.weights)[np.newaxis, :]
            sigma_matrix, lam = shrink_covariance(scaled, self.shrinkage_target)
            col_factor = np.einsum(
                "ij,ik,kj->j", self.sqrt_right, sigma_matrix, self.sqrt_right
            )
        varB = np.outer(row_factor, col_factor)
        return B, varB, sigma2, sigma_matrix, lam


def _predict(X: np.ndarray, B: np.ndarray, Z: np.ndarray) -> np.ndarray:
    return (X @ B) @ Z.T


def _validate_weights(weights: Sequence[float] | np.ndarray | None, m: int) -> np.ndarray | None:
    if weights is None:
        return None
    w = np.asarray(weights, dtype=float).ravel()
    if w.shape[0] != m:
        raise DimensionMismatchError(
            f"weights has length {w.shape[0]} but Y has {m} columns."
        )
    if not np.all(np.isfinite(w)) or np.any(w <= 0):
        raise ValueError("weights must be finite and strictly positive.")
    return w


def prepare_design(
    predictors: Predictors,
    n: int,
    m: int,
    *,
    add_x_intercept: bool = True,
    add_z_intercept: bool = True,
    weights: Sequence[float] | np.ndarray | None = None,
    shrinkage_target: str | None = None,
) -> PreparedDesign:
    """Validate shapes, inject intercepts and factorise the normal equations.

    All shape checks run before any factorisation.

    Raises:
        DimensionMismatchError: Inconsistent shapes, or fewer
            observations ``n·m`` than coefficients ``p·q``.
        SingularMatrixError: ``XᵗX`` or ``ZᵗWZ`` is not invertible.
        ValueError: Invalid weights or shrinkage target.
    """
    if predictors.X.shape[0] != n or predictors.Z.shape[0] != m:
        raise DimensionMismatchError(
            f"Predictors of shape X{predictors.X.shape}, Z{predictors.Z.shape} "
            f"do not match a ({n}, {m}) response."
        )
    target = validate_target(shrinkage_target)
    w = _validate_weights(weights, m)

    X, x_names, x_added = _maybe_add_intercept(
        predictors.X, predictors.x_names, add_x_intercept, predictors.has_x_intercept
    )
    Z, z_names, z_added = _maybe_add_intercept(
        predictors.Z, predictors.z_names, add_z_intercept, predictors.has_z_intercept
    )
    p, q = X.shape[1], Z.shape[1]
    if n * m <= p * q:
        raise DimensionMismatchError(
            f"{n}×{m} observations cannot estimate {p}×{q} coefficients "
            f"(no residual degrees of freedom)."
        )
    if target is not None and n < 2:
        raise DimensionMismatchError("Covariance shrinkage needs at least two rows in Y.")

    weights_arr = np.ones(m) if w is None else w
    WZ = Z * weights_arr[:, np.newaxis]

    XtX_inv = _inverse_normal_matrix(X, X.T @ X, "X", x_names)
    ZtWZ_inv = _inverse_normal_matrix(Z, Z.T @ WZ, "Z", z_names)

    logger.debug(
        "Prepared design: X %s, Z %s, weighted=%s, shrinkage=%s",
        X.shape,
        Z.shape,
        w is not None,
        target,
    )
    return PreparedDesign(
        X=X,
        Z=Z,
        XtX_inv=XtX_inv,
        ZtWZ_inv=ZtWZ_inv,
        left=XtX_inv @ X.T,
        right=WZ @ ZtWZ_inv,
        sqrt_right=(Z * np.sqrt(weights_arr)[:, np.newaxis]) @ ZtWZ_inv,
        weights=weights_arr,
        weighted=w is not None,
        shrinkage_target=target,
        x_intercept_added=x_added,
        z_intercept_added=z_added,
        x_has_intercept=x_added or predictors.has_x_intercept,
        z_has_intercept=z_added or predictors.has_z_intercept,
        x_names=x_names,
        z_names=z_names,
    )


# ------------------------------------------------------------------ #
# FitResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class FitResult:
    """A fitted matrix linear model.

    Attributes:
        coefficients: ``B̂`` ``(p, q)``, including rows/columns of any
            injected intercepts.
        variance: Coefficient-wise variance estimate ``(p, q)``.
        sigma: Residual variance ``σ²``.
        data: The :class:`~matrixlm.data.RawData` the model was fit on.
        design: Prepared (intercept-augmented, factorised) predictors.
        sigma_matrix: Shrunk ``(m, m)`` covariance of the weight-scaled
            residuals when a shrinkage target was used, else ``None``.
        shrinkage_lambda: Shrinkage intensity applied, or ``None``.
    """

    coefficients: np.ndarray
    variance: np.ndarray
    sigma: float
    data: RawData = field(repr=False)
    design: PreparedDesign = field(repr=False)
    sigma_matrix: np.ndarray | None = field(default=None, repr=False)
    shrinkage_lambda: float | None = None

    @property
    def x_intercept_added(self) -> bool:
        return self.design.x_intercept_added

    @property
    def z_intercept_added(self) -> bool:
        return self.design.z_intercept_added

    @property
    def x_has_intercept(self) -> bool:
        return self.design.x_has_intercept

    @property
    def z_has_intercept(self) -> bool:
        return self.design.z_has_intercept

    @property
    def x_names(self) -> tuple[str, ...] | None:
        return self.design.x_names

    @property
    def z_names(self) -> tuple[str, ...] | None:
        return self.design.z_names

    @property
    def weights(self) -> np.ndarray | None:
        return self.design.weights if self.design.weighted else None

    @property
    def shrinkage_target(self) -> str | None:
        return self.design.shrinkage_target

    @property
    def df_resid(self) -> int:
        n, m = self.data.response.shape
        return n * m - self.coefficients.size


def fit(
    data: RawData,
    *,
    add_x_intercept: bool = True,
    add_z_intercept: bool = True,
    weights: Sequence[float] | np.ndarray | None = None,
    shrinkage_target: str | None = None,
) -> FitResult:
    """Fit ``Y = X·B·Zᵗ + E`` by least squares.

    Args:
        data: Response and predictors.
        add_x_intercept: Prepend a ones column to ``X`` unless it
            already has an intercept.
        add_z_intercept: Same for ``Z``.
        weights: Optional positive weight per response column.
        shrinkage_target: ``None`` (no shrinkage) or one of
            ``"A"``, ``"B"``, ``"C"``, ``"D"``; see
            :mod:`matrixlm.shrinkage`.

    Returns:
        A :class:`FitResult`.  Inputs are never modified.

    Raises:
        DimensionMismatchError: Inconsistent shapes or no residual
            degrees of freedom.
        SingularMatrixError: ``XᵗX`` or ``ZᵗWZ`` is singular; the
            error names the first collinear predictor.
    """
    n, m = data.response.shape
    design = prepare_design(
        data.predictors,
        n,
        m,
        add_x_intercept=add_x_intercept,
        add_z_intercept=add_z_intercept,
        weights=weights,
        shrinkage_target=shrinkage_target,
    )
    return _fit_prepared(data, design)


def _fit_prepared(data: RawData, design: PreparedDesign) -> FitResult:
    B, varB, sigma2, sigma_matrix, lam = design.solve(data.Y)
    for arr in (B, varB):
        arr.setflags(write=False)
    return FitResult(
        coefficients=B,
        variance=varB,
        sigma=sigma2,
        data=data,
        design=design,
        sigma_matrix=sigma_matrix,
        shrinkage_lambda=lam,
    )


# ------------------------------------------------------------------ #
# Predictions and residuals
# ------------------------------------------------------------------ #


def predict(fit: FitResult, predictors: Predictors | None = None) -> np.ndarray:
    """Predicted response ``X·B̂·Zᵗ``.

    Args:
        fit: A fitted model.
        predictors: New predictors of any row counts.  Intercepts are
            injected exactly as they were for the fit (unless the new
            matrices declare one).  Defaults to the training
            predictors.

    Raises:
        DimensionMismatchError: If the column counts do not match the
            fitted coefficients.
    """
    if predictors is None:
        return fitted(fit)

    X = predictors.X
    Z = predictors.Z
    if fit.x_intercept_added and not predictors.has_x_intercept:
        X = np.hstack([np.ones((X.shape[0], 1)), X])
    if fit.z_intercept_added and not predictors.has_z_intercept:
        Z = np.hstack([np.ones((Z.shape[0], 1)), Z])

    p, q = fit.coefficients.shape
    if X.shape[1] != p or Z.shape[1] != q:
        raise DimensionMismatchError(
            f"Predictors give X with {X.shape[1]} and Z with {Z.shape[1]} columns "
            f"(after intercepts) but the fit has {p}×{q} coefficients."
        )
    return _predict(X, fit.coefficients, Z)


def fitted(fit: FitResult) -> np.ndarray:
    """Fitted values on the training predictors."""
    return _predict(fit.design.X, fit.coefficients, fit.design.Z)


def resid(fit: FitResult, data: RawData | None = None) -> np.ndarray:
    """Residuals ``Y − predict(fit, data.predictors)``.

    Defaults to the training data, in which case the result equals
    ``fit.data.Y - fitted(fit)`` exactly.

    Raises:
        DimensionMismatchError: If *data* is incompatible with *fit*.
    """
    if data is None:
        return fit.data.Y - fitted(fit)
    return data.Y - predict(fit, data.predictors)


__all__ = [
    "FitResult",
    "PreparedDesign",
    "fit",
    "fitted",
    "predict",
    "prepare_design",
    "resid",
]
