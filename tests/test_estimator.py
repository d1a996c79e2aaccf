"""Tests for matrix linear model estimation.

Covers:
- Exact recovery of B on noiseless data
- Cross-checks against statsmodels OLS/WLS on the vectorised model
- Weights and covariance shrinkage
- Singular and mismatched inputs
- predict / fitted / resid
"""

import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm

from matrixlm.data import Predictors, RawData, Response
from matrixlm.estimator import fit, fitted, predict, resid
from matrixlm.exceptions import DimensionMismatchError, SingularMatrixError


# ------------------------------------------------------------------ #
# Shared fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def rng():
    return np.random.default_rng(2024)


@pytest.fixture()
def noisy_data(rng):
    """n=40 rows, m=6 columns, two X and two Z predictors."""
    n, m = 40, 6
    X = rng.standard_normal((n, 2))
    Z = rng.standard_normal((m, 2))
    B = rng.standard_normal((3, 3))
    Xa = np.hstack([np.ones((n, 1)), X])
    Za = np.hstack([np.ones((m, 1)), Z])
    Y = Xa @ B @ Za.T + rng.standard_normal((n, m))
    return RawData.from_arrays(Y, X, Z)


# ------------------------------------------------------------------ #
# Estimation
# ------------------------------------------------------------------ #


class TestFit:
    def test_noiseless_recovery(self, rng):
        n, m = 20, 6
        X = rng.standard_normal((n, 2))
        Z = rng.standard_normal((m, 2))
        B = rng.standard_normal((3, 3))
        Y = np.hstack([np.ones((n, 1)), X]) @ B @ np.hstack([np.ones((m, 1)), Z]).T
        result = fit(RawData.from_arrays(Y, X, Z))
        np.testing.assert_allclose(result.coefficients, B, atol=1e-10)
        assert result.sigma == pytest.approx(0.0, abs=1e-20)

    def test_shapes_and_intercept_flags(self, noisy_data):
        result = fit(noisy_data)
        assert result.coefficients.shape == (3, 3)
        assert result.variance.shape == (3, 3)
        assert result.x_intercept_added and result.z_intercept_added
        assert result.df_resid == 40 * 6 - 9

    def test_no_intercepts(self, noisy_data):
        result = fit(noisy_data, add_x_intercept=False, add_z_intercept=False)
        assert result.coefficients.shape == (2, 2)
        assert not result.x_intercept_added

    def test_existing_ones_column_not_duplicated(self, rng):
        X = np.hstack([np.ones((10, 1)), rng.standard_normal((10, 1))])
        result = fit(RawData.from_arrays(rng.standard_normal((10, 2)), X, np.eye(2)),
                     add_z_intercept=False)
        assert not result.x_intercept_added
        assert result.coefficients.shape == (2, 2)

    def test_results_are_read_only(self, noisy_data):
        result = fit(noisy_data)
        assert not result.coefficients.flags.writeable
        assert not result.variance.flags.writeable

    def test_inputs_unchanged(self, noisy_data):
        before = noisy_data.Y.copy()
        fit(noisy_data)
        np.testing.assert_array_equal(noisy_data.Y, before)

    def test_names_carry_injected_intercept(self, rng):
        X = pd.DataFrame({"age": rng.random(12), "dose": rng.random(12)})
        data = RawData(
            response=Response(rng.standard_normal((12, 3))),
            predictors=Predictors(X, np.eye(3), z_names=["g1", "g2", "g3"]),
        )
        result = fit(data, add_z_intercept=False)
        assert result.x_names == ("(Intercept)", "age", "dose")
        assert result.z_names == ("g1", "g2", "g3")


class TestAgainstStatsmodels:
    def test_identity_z_matches_columnwise_ols(self, rng):
        n, m = 50, 4
        X = rng.standard_normal((n, 3))
        Y = rng.standard_normal((n, m))
        result = fit(RawData.from_arrays(Y, X, np.eye(m)), add_z_intercept=False)

        Xa = sm.add_constant(X)
        scales = []
        for j in range(m):
            ols = sm.OLS(Y[:, j], Xa).fit()
            np.testing.assert_allclose(result.coefficients[:, j], ols.params, rtol=1e-10)
            scales.append(ols.scale)
        # Equal residual df per column: the pooled variance is their mean.
        assert result.sigma == pytest.approx(np.mean(scales), rel=1e-10)

    def test_single_column_variance_matches_ols(self, rng):
        X = rng.standard_normal((30, 2))
        y = rng.standard_normal((30, 1))
        result = fit(RawData.from_arrays(y, X, np.ones((1, 1))))
        ols = sm.OLS(y[:, 0], sm.add_constant(X)).fit()
        np.testing.assert_allclose(np.sqrt(result.variance[:, 0]), ols.bse, rtol=1e-10)

    def test_kronecker_wls(self, noisy_data):
        w = np.array([1.0, 2.0, 0.5, 3.0, 1.5, 0.25])
        result = fit(noisy_data, weights=w)
        X, Z = result.design.X, result.design.Z
        n, m = noisy_data.Y.shape
        p, q = result.coefficients.shape

        wls = sm.WLS(
            noisy_data.Y.ravel(order="F"), np.kron(Z, X), weights=np.repeat(w, n)
        ).fit()
        np.testing.assert_allclose(
            result.coefficients, wls.params.reshape((p, q), order="F"), rtol=1e-8
        )
        assert result.sigma == pytest.approx(wls.scale, rel=1e-8)
        np.testing.assert_allclose(
            np.sqrt(result.variance), wls.bse.reshape((p, q), order="F"), rtol=1e-8
        )


# ------------------------------------------------------------------ #
# Weights
# ------------------------------------------------------------------ #


class TestWeights:
    def test_unit_weights_match_unweighted(self, noisy_data):
        a = fit(noisy_data)
        b = fit(noisy_data, weights=np.ones(6))
        np.testing.assert_allclose(a.coefficients, b.coefficients, rtol=1e-12)
        np.testing.assert_allclose(a.variance, b.variance, rtol=1e-12)
        assert a.weights is None
        np.testing.assert_array_equal(b.weights, np.ones(6))

    def test_wrong_length(self, noisy_data):
        with pytest.raises(DimensionMismatchError, match="weights"):
            fit(noisy_data, weights=np.ones(5))

    @pytest.mark.parametrize("bad", [0.0, -1.0, np.inf])
    def test_non_positive(self, noisy_data, bad):
        w = np.ones(6)
        w[2] = bad
        with pytest.raises(ValueError, match="strictly positive"):
            fit(noisy_data, weights=w)


# ------------------------------------------------------------------ #
# Shrinkage
# ------------------------------------------------------------------ #


class TestShrinkageFit:
    def test_fields_populated(self, noisy_data):
        result = fit(noisy_data, shrinkage_target="d")
        assert result.shrinkage_target == "D"
        assert result.sigma_matrix.shape == (6, 6)
        assert 0.0 <= result.shrinkage_lambda <= 1.0

    def test_without_shrinkage_fields_empty(self, noisy_data):
        result = fit(noisy_data)
        assert result.sigma_matrix is None
        assert result.shrinkage_lambda is None

    def test_identity_z_variance_is_shrunk_diagonal(self, rng):
        X = rng.standard_normal((25, 2))
        Y = rng.standard_normal((25, 5))
        result = fit(
            RawData.from_arrays(Y, X, np.eye(5)),
            add_z_intercept=False,
            shrinkage_target="B",
        )
        expected = np.outer(np.diag(result.design.XtX_inv), np.diag(result.sigma_matrix))
        np.testing.assert_allclose(result.variance, expected, rtol=1e-12)

    def test_coefficients_unchanged_by_shrinkage(self, noisy_data):
        a = fit(noisy_data)
        b = fit(noisy_data, shrinkage_target="A")
        np.testing.assert_array_equal(a.coefficients, b.coefficients)

    def test_unknown_target(self, noisy_data):
        with pytest.raises(ValueError, match="Unknown shrinkage target"):
            fit(noisy_data, shrinkage_target="E")


# ------------------------------------------------------------------ #
# Errors
# ------------------------------------------------------------------ #


class TestErrors:
    def test_singular_x_names_column(self, rng):
        a = rng.standard_normal(15)
        X = pd.DataFrame({"a": a, "b": rng.standard_normal(15), "c": 2.0 * a})
        data = RawData.from_arrays(rng.standard_normal((15, 3)), X, np.eye(3))
        with pytest.raises(SingularMatrixError, match="'c'") as excinfo:
            fit(data, add_z_intercept=False)
        assert excinfo.value.side == "X"
        assert excinfo.value.column == "c"

    def test_singular_z_reports_index(self, rng):
        z = rng.standard_normal(5)
        Z = np.column_stack([z, 3.0 * z])
        data = RawData.from_arrays(rng.standard_normal((12, 5)), rng.standard_normal((12, 1)), Z)
        with pytest.raises(SingularMatrixError) as excinfo:
            fit(data)
        assert excinfo.value.side == "Z"
        # Column 0 is the injected intercept.
        assert excinfo.value.column == 2

    def test_singular_is_linalg_error(self, rng):
        X = np.column_stack([np.ones(8), np.ones(8)])
        data = RawData.from_arrays(rng.standard_normal((8, 2)), X, np.eye(2))
        with pytest.raises(np.linalg.LinAlgError):
            fit(data, add_z_intercept=False)

    def test_no_residual_degrees_of_freedom(self, rng):
        data = RawData.from_arrays(
            rng.standard_normal((3, 2)), rng.standard_normal((3, 2)), rng.standard_normal((2, 1))
        )
        with pytest.raises(DimensionMismatchError, match="degrees of freedom"):
            fit(data)


# ------------------------------------------------------------------ #
# Predictions and residuals
# ------------------------------------------------------------------ #


class TestPredictResid:
    def test_resid_is_y_minus_fitted(self, noisy_data):
        result = fit(noisy_data)
        np.testing.assert_array_equal(resid(result), noisy_data.Y - fitted(result))

    def test_predict_defaults_to_fitted(self, noisy_data):
        result = fit(noisy_data)
        np.testing.assert_array_equal(predict(result), fitted(result))

    def test_predict_new_rows(self, noisy_data, rng):
        result = fit(noisy_data)
        X_new = rng.standard_normal((5, 2))
        out = predict(result, Predictors(X_new, noisy_data.Z))
        Xa = np.hstack([np.ones((5, 1)), X_new])
        expected = Xa @ result.coefficients @ result.design.Z.T
        np.testing.assert_allclose(out, expected)
        assert out.shape == (5, 6)

    def test_predict_column_mismatch(self, noisy_data, rng):
        result = fit(noisy_data)
        with pytest.raises(DimensionMismatchError):
            predict(result, Predictors(rng.standard_normal((5, 3)), noisy_data.Z))

    def test_resid_on_new_data(self, noisy_data, rng):
        result = fit(noisy_data)
        new = RawData.from_arrays(rng.standard_normal((4, 6)), rng.standard_normal((4, 2)), noisy_data.Z)
        np.testing.assert_allclose(resid(result, new), new.Y - predict(result, new.predictors))

    def test_residuals_orthogonal_to_both_sides(self, noisy_data):
        result = fit(noisy_data)
        X, Z = result.design.X, result.design.Z
        np.testing.assert_allclose(X.T @ resid(result) @ Z, 0.0, atol=1e-9)
