"""End-to-end smoke tests: table -> design matrices -> fit -> permutation test.

The large-n case is marked ``slow`` and excluded from the default run;
select it with ``pytest -m slow``.
"""

import numpy as np
import pandas as pd
import pytest

from matrixlm import (
    DummyCoding,
    EffectsCoding,
    FormulaSpec,
    FullDummyCoding,
    PermutationEngine,
    Predictors,
    RawData,
    Response,
    build_design_matrix,
    fit,
    resid,
    t_stat,
)


def _tables(n, m, seed):
    rng = np.random.default_rng(seed)
    idx = rng.permutation(n)
    samples = pd.DataFrame(
        {
            "treatment": np.array(["ctrl", "drugA", "drugB"], dtype=object)[idx % 3],
            "batch": np.array(["b1", "b2"], dtype=object)[idx % 2],
            "dose": rng.random(n),
        }
    )
    responses = pd.DataFrame(
        {"pathway": np.array(["p1", "p2", "p3", "p4"], dtype=object)[np.arange(m) % 4]}
    )
    return samples, responses, rng


def _pipeline(n, m, seed):
    samples, responses, rng = _tables(n, m, seed)
    X = build_design_matrix(
        FormulaSpec.of("treatment", "batch", "dose"),
        samples,
        {"treatment": EffectsCoding(base="ctrl"), "batch": DummyCoding()},
    )
    Z = build_design_matrix(
        FormulaSpec.of("pathway", intercept=False),
        responses,
        {"pathway": FullDummyCoding()},
    )
    B = rng.standard_normal((X.shape[1], Z.shape[1]))
    Y = X.matrix @ B @ Z.matrix.T + rng.standard_normal((n, m))
    return RawData(Response(Y), Predictors(X, Z)), B


class TestSmoke:
    def test_pipeline(self):
        data, B = _pipeline(60, 12, seed=0)
        result = fit(data, add_z_intercept=False)
        assert result.coefficients.shape == B.shape
        assert np.all(np.isfinite(t_stat(result)))
        assert resid(result).shape == (60, 12)

        test = PermutationEngine(data, add_z_intercept=False).run(
            49, random_state=0, n_jobs=2
        )
        assert test.row_names == (
            "treatment: drugA",
            "treatment: drugB",
            "batch: b2",
            "dose",
        )
        assert test.p_values.shape == (4, 4)
        assert test.col_names == ("pathway: p1", "pathway: p2", "pathway: p3", "pathway: p4")
        assert np.all((test.p_values > 0) & (test.p_values <= 1))


@pytest.mark.slow
class TestLargeSmoke:
    def test_large_parallel_run(self):
        data, _ = _pipeline(2000, 400, seed=1)
        engine = PermutationEngine(data, add_z_intercept=False, shrinkage_target="B")
        serial = engine.run(200, random_state=5, n_jobs=1)
        parallel = engine.run(200, random_state=5, n_jobs=-1)
        np.testing.assert_array_equal(serial.counts, parallel.counts)
