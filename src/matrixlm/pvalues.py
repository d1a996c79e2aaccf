"""Empirical p-values for permutation tests.

Phipson & Smyth (2010) correction
---------------------------------
A naïve empirical p-value counts the proportion of permuted statistics
at least as extreme as the observed one::

    p_naïve = #{|T*| >= |T|} / N

When the observed statistic is the most extreme in the reference set
this is exactly zero, which is impossible: the observed arrangement is
itself one of the ``N + 1`` equally likely outcomes.  Treating it as a
member of the reference set gives::

    p = (b + 1) / (N + 1)

which is never zero (minimum ``1 / (N + 1)``) and has correct size
under H₀.

The counting is split from the division so that counts from disjoint
batches of trials can be summed first.  Integer addition is exact and
commutative, so the final p-values cannot depend on how trials were
batched or in which order batches finished.

Reference:
    Phipson, B. & Smyth, G. K. (2010). Permutation p-values should
    never be zero: calculating exact p-values when permutations are
    randomly drawn. *Statistical Applications in Genetics and Molecular
    Biology*, 9(1), Article 39.
"""

from __future__ import annotations

import numpy as np


def exceedance_counts(permuted_t: np.ndarray, observed_t: np.ndarray) -> np.ndarray:
    """Count, per cell, the permuted statistics at least as extreme.

    Args:
        permuted_t: Either one permuted statistic matrix shaped like
            *observed_t* or a stack ``(N, *observed_t.shape)``.
        observed_t: Observed statistic matrix.

    Returns:
        Integer array shaped like *observed_t*.  ``nan`` on either side
        never counts as an exceedance.
    """
    permuted_t = np.asarray(permuted_t)
    abs_obs = np.abs(observed_t)
    if permuted_t.shape == abs_obs.shape:
        return (np.abs(permuted_t) >= abs_obs).astype(np.int64)
    return np.sum(np.abs(permuted_t) >= abs_obs[np.newaxis, ...], axis=0, dtype=np.int64)


def empirical_p_values(counts: np.ndarray, n_completed: int) -> np.ndarray:
    """Phipson–Smyth p-values ``(counts + 1) / (n_completed + 1)``.

    Args:
        counts: Summed exceedance counts.
        n_completed: Number of trials that contributed to *counts*.

    Returns:
        Float array in ``(0, 1]``.

    Raises:
        ValueError: If a count exceeds *n_completed* or either is
            negative.
    """
    counts = np.asarray(counts)
    if n_completed < 0 or np.any(counts < 0) or np.any(counts > n_completed):
        raise ValueError(
            f"Exceedance counts must lie in [0, {n_completed}] for "
            f"{n_completed} completed trials."
        )
    return (counts + 1) / (n_completed + 1)


__all__ = ["empirical_p_values", "exceedance_counts"]
