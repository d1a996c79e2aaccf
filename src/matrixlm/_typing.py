"""Shared type aliases for the matrixlm package."""

from collections.abc import Callable

import numpy as np
import pandas as pd

# Array-like inputs accepted for X, Z and Y.
ArrayLike = np.ndarray | pd.DataFrame | pd.Series

# ``permute_fn(Y, rng) -> Y_permuted`` with Y's shape preserved.
PermuteFn = Callable[[np.ndarray, np.random.Generator], np.ndarray]
