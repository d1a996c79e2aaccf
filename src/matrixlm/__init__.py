"""matrixlm — Matrix linear models with permutation tests.

Fits bilinear models ``Y = X·B·Zᵗ + E`` relating a response matrix to
row-side (X) and column-side (Z) predictors, builds those predictor
matrices from tables with dummy, effects, sequential-difference and
full-dummy contrast coding (including interactions), and assesses every
coefficient with permutation-based empirical p-values computed in
parallel with a deterministic, order-free reduction.

Public API:
    .. autosummary::
        design_matrix
        design_matrix_names
        build_design_matrix
        encode
        fit
        predict
        fitted
        resid
        t_stat
        permutation_test
        shuffle_rows
        shuffle_cols
        get_n_jobs
        set_n_jobs
        FormulaSpec
        Term
        DesignMatrix
        CategoricalVariable
        DummyCoding
        EffectsCoding
        SeqDiffCoding
        FullDummyCoding
        Response
        Predictors
        RawData
        FitResult
        PermutationEngine
        PermutationTestResult
"""

from ._config import get_n_jobs, set_n_jobs
from ._results import PermutationTestResult
from .contrasts import (
    CategoricalVariable,
    DummyCoding,
    EffectsCoding,
    FullDummyCoding,
    SeqDiffCoding,
    encode,
)
from .data import Predictors, RawData, Response
from .design import (
    DesignMatrix,
    FormulaSpec,
    Term,
    build_design_matrix,
    design_matrix,
    design_matrix_names,
)
from .engine import PermutationEngine, permutation_test
from .estimator import FitResult, fit, fitted, predict, resid
from .exceptions import (
    DimensionMismatchError,
    MatrixLMError,
    RankDeficiencyError,
    SchemeConflictError,
    SingularMatrixError,
    UnknownLevelError,
    UnknownVariableError,
)
from .permutations import shuffle_cols, shuffle_rows
from .tstat import t_stat

__all__ = [
    "CategoricalVariable",
    "DesignMatrix",
    "DimensionMismatchError",
    "DummyCoding",
    "EffectsCoding",
    "FitResult",
    "FormulaSpec",
    "FullDummyCoding",
    "MatrixLMError",
    "PermutationEngine",
    "PermutationTestResult",
    "Predictors",
    "RankDeficiencyError",
    "RawData",
    "Response",
    "SchemeConflictError",
    "SeqDiffCoding",
    "SingularMatrixError",
    "Term",
    "UnknownLevelError",
    "UnknownVariableError",
    "build_design_matrix",
    "design_matrix",
    "design_matrix_names",
    "encode",
    "fit",
    "fitted",
    "get_n_jobs",
    "permutation_test",
    "predict",
    "resid",
    "set_n_jobs",
    "shuffle_cols",
    "shuffle_rows",
    "t_stat",
]

__version__ = "0.1.0"
