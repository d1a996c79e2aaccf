"""Tests for residual-covariance shrinkage."""

import numpy as np
import pytest

from matrixlm.shrinkage import SHRINKAGE_TARGETS, shrink_covariance, validate_target


def _correlated(n, m=5, rho=0.8, seed=11):
    cov = np.full((m, m), rho)
    np.fill_diagonal(cov, 1.0)
    rng = np.random.default_rng(seed)
    return rng.multivariate_normal(np.zeros(m), cov, size=n)


class TestValidateTarget:
    def test_none_passes_through(self):
        assert validate_target(None) is None

    @pytest.mark.parametrize("code", ["a", "B", " c ", "D"])
    def test_case_insensitive(self, code):
        assert validate_target(code) in SHRINKAGE_TARGETS

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown shrinkage target"):
            validate_target("F")


class TestShrinkCovariance:
    @pytest.mark.parametrize("target", SHRINKAGE_TARGETS)
    def test_lambda_in_unit_interval(self, target):
        sigma, lam = shrink_covariance(_correlated(12), target)
        assert 0.0 <= lam <= 1.0
        np.testing.assert_allclose(sigma, sigma.T)

    def test_target_a_blends_with_identity(self):
        resid = _correlated(15)
        sigma, lam = shrink_covariance(resid, "A")
        S = np.cov(resid, rowvar=False)
        np.testing.assert_allclose(sigma, lam * np.eye(5) + (1.0 - lam) * S)

    def test_target_b_preserves_trace(self):
        resid = _correlated(15)
        sigma, _ = shrink_covariance(resid, "B")
        S = np.cov(resid, rowvar=False)
        assert np.trace(sigma) == pytest.approx(np.trace(S))

    def test_target_c_preserves_mean_covariance(self):
        resid = _correlated(15)
        sigma, _ = shrink_covariance(resid, "C")
        S = np.cov(resid, rowvar=False)
        off = ~np.eye(5, dtype=bool)
        assert sigma[off].mean() == pytest.approx(S[off].mean())
        assert np.trace(sigma) == pytest.approx(np.trace(S))

    def test_target_d_keeps_variances_and_shrinks_covariances(self):
        resid = _correlated(15)
        sigma, lam = shrink_covariance(resid, "D")
        S = np.cov(resid, rowvar=False)
        np.testing.assert_allclose(np.diag(sigma), np.diag(S))
        off = ~np.eye(5, dtype=bool)
        np.testing.assert_allclose(sigma[off], (1.0 - lam) * S[off])

    def test_more_data_means_less_shrinkage(self):
        _, lam_small = shrink_covariance(_correlated(8), "A")
        _, lam_large = shrink_covariance(_correlated(5000), "A")
        assert lam_large < lam_small
        assert lam_large < 0.05

    def test_single_column_target_d_is_unshrunk(self):
        resid = np.random.default_rng(3).standard_normal((10, 1))
        sigma, lam = shrink_covariance(resid, "D")
        assert lam == 0.0
        assert sigma[0, 0] == pytest.approx(np.var(resid, ddof=1))

    def test_needs_two_observations(self):
        with pytest.raises(ValueError, match="two observations"):
            shrink_covariance(np.ones((1, 3)), "A")

    def test_input_not_modified(self):
        resid = _correlated(10)
        before = resid.copy()
        shrink_covariance(resid, "C")
        np.testing.assert_array_equal(resid, before)


def _direct_lambda(resid, target):
    """Schäfer-Strimmer λ with the (n, m, m) products written out."""
    n, m = resid.shape
    e = resid - resid.mean(axis=0)
    w = e[:, :, np.newaxis] * e[:, np.newaxis, :]
    S = n / (n - 1) * w.mean(axis=0)
    var_S = n / (n - 1) ** 3 * ((w - w.mean(axis=0)) ** 2).sum(axis=0)
    off = ~np.eye(m, dtype=bool)
    v = np.mean(np.diag(S))
    if target == "A":
        T = np.eye(m)
    elif target == "B":
        T = v * np.eye(m)
    elif target == "C":
        T = np.full((m, m), S[off].mean())
        np.fill_diagonal(T, v)
    else:
        return min(1.0, max(0.0, var_S[off].sum() / np.sum(S[off] ** 2)))
    return min(1.0, max(0.0, var_S.sum() / np.sum((S - T) ** 2)))


class TestShrinkageIntensity:
    @pytest.mark.parametrize("target", SHRINKAGE_TARGETS)
    @pytest.mark.parametrize("n", [6, 40])
    def test_matches_schafer_strimmer_formula(self, target, n):
        resid = _correlated(n, m=4, seed=n)
        _, lam = shrink_covariance(resid, target)
        assert lam == pytest.approx(_direct_lambda(resid, target), rel=1e-10, abs=1e-12)
