"""Permutation engine — observed fit, parallel trials, order-free reduction.

The :class:`PermutationEngine` centralises everything a permutation
test of a matrix linear model needs:

1. **Observed fit** — fit once on the unpermuted data, keeping the
   prepared (intercept-augmented, factorised) design.
2. **Observed statistic** — t-statistics of the observed fit.
3. **Trials** — each trial permutes Y with its own seeded generator,
   re-solves against the *same* prepared design, recomputes T and
   reduces it to an integer exceedance buffer ``|T*| >= |T|``.
4. **Reduction** — chunk buffers are summed elementwise and turned into
   Phipson–Smyth p-values.

Determinism
-----------
Trial *b* always uses child *b* of the root
:class:`~numpy.random.SeedSequence`, and the reduction is an integer
sum.  Neither the number of workers, the chunking, nor the completion
order can change the result.

Parallelism
-----------
When ``n_jobs != 1``, chunks of trials run through
``joblib.Parallel(prefer="threads")``.  Thread-based parallelism avoids
serialising the response and design for every worker, and the BLAS
products in each trial release the GIL.  The prepared design and the
read-only RawData are shared by all threads without copying.

Degenerate trials
-----------------
A trial whose refit cannot produce finite t-statistics never feeds a
non-numeric value into the counts.  One policy, chosen per run, is
applied to every trial:

* ``on_singular="raise"`` (default) — abort the run with
  :class:`~matrixlm.exceptions.SingularMatrixError`.
* ``on_singular="exclude"`` — drop the trial from both numerator and
  denominator.

Timeout
-------
With ``timeout`` set, no trial starts after the deadline.  The p-values
are computed over whatever trials completed, with the same ``+1``
correction, and a :class:`UserWarning` reports the shortfall.
"""

from __future__ import annotations

import logging
import time
import warnings
from collections.abc import Sequence

import numpy as np
from joblib import Parallel, delayed, effective_n_jobs

from ._config import get_n_jobs
from ._results import PermutationTestResult
from ._typing import PermuteFn
from .data import RawData
from .estimator import FitResult, fit
from .exceptions import DimensionMismatchError, SingularMatrixError
from .permutations import shuffle_rows, trial_seeds
from .pvalues import empirical_p_values, exceedance_counts
from .tstat import _t_from, t_stat

logger = logging.getLogger(__name__)

_VALID_POLICIES = ("raise", "exclude")

# Chunks per worker; more chunks balance load when trial costs vary.
_CHUNKS_PER_WORKER = 4


def _validate_run_args(n_trials: int, on_singular: str, timeout: float | None) -> None:
    if isinstance(n_trials, bool) or not isinstance(n_trials, (int, np.integer)):
        raise TypeError(f"n_trials must be an int, got {type(n_trials).__name__}.")
    if n_trials < 1:
        raise ValueError(f"n_trials must be at least 1, got {n_trials}.")
    if on_singular not in _VALID_POLICIES:
        raise ValueError(
            f"Unknown on_singular policy {on_singular!r}. "
            f"Choose from: {list(_VALID_POLICIES)}."
        )
    if timeout is not None and timeout < 0:
        raise ValueError(f"timeout must be non-negative, got {timeout}.")


class PermutationEngine:
    """Builder holding the observed fit and the options every trial reuses.

    Construct an engine, then call :meth:`run`.  The engine is not
    modified by :meth:`run`, so one engine can serve several runs
    (different trial counts, seeds or permutation functions).

    Attributes:
        data: The unpermuted data.
        observed_fit: Fit on the unpermuted data.
        observed_t: Observed t-statistics.
        include_main_effects: Whether intercept rows/columns are kept.
    """

    def __init__(
        self,
        data: RawData,
        *,
        add_x_intercept: bool = True,
        add_z_intercept: bool = True,
        weights: Sequence[float] | np.ndarray | None = None,
        shrinkage_target: str | None = None,
        include_main_effects: bool = False,
    ) -> None:
        self.data = data
        self.include_main_effects = include_main_effects
        self.observed_fit: FitResult = fit(
            data,
            add_x_intercept=add_x_intercept,
            add_z_intercept=add_z_intercept,
            weights=weights,
            shrinkage_target=shrinkage_target,
        )
        self.observed_t: np.ndarray = t_stat(
            self.observed_fit, include_main_effects=include_main_effects
        )
        self.observed_t.setflags(write=False)

        self._drop_row = self.observed_fit.x_has_intercept and not include_main_effects
        self._drop_col = self.observed_fit.z_has_intercept and not include_main_effects

    # ---- Labels ---------------------------------------------------

    @property
    def row_names(self) -> tuple[str, ...] | None:
        names = self.observed_fit.x_names
        return None if names is None else names[int(self._drop_row):]

    @property
    def col_names(self) -> tuple[str, ...] | None:
        names = self.observed_fit.z_names
        return None if names is None else names[int(self._drop_col):]

    # ---- Single trial ---------------------------------------------

    def trial_t(
        self,
        seed: np.random.SeedSequence,
        permute_fn: PermuteFn = shuffle_rows,
    ) -> np.ndarray:
        """t-statistics for one permuted response.

        A pure function of ``(data, options, seed)``.

        Raises:
            DimensionMismatchError: If *permute_fn* changes Y's shape.
        """
        rng = np.random.default_rng(seed)
        Y_perm = np.asarray(permute_fn(self.data.Y, rng), dtype=float)
        if Y_perm.shape != self.data.Y.shape:
            raise DimensionMismatchError(
                f"Permutation function returned shape {Y_perm.shape}, "
                f"expected {self.data.Y.shape}."
            )
        B, varB, *_ = self.observed_fit.design.solve(Y_perm)
        return _t_from(B, varB, self._drop_row, self._drop_col)

    def _run_chunk(
        self,
        indices: np.ndarray,
        seeds: Sequence[np.random.SeedSequence],
        permute_fn: PermuteFn,
        on_singular: str,
        deadline: float | None,
    ) -> tuple[np.ndarray, int, int, bool]:
        """Run trials *indices*; return ``(counts, completed, excluded, timed_out)``."""
        counts = np.zeros(self.observed_t.shape, dtype=np.int64)
        completed = 0
        excluded = 0
        for b in indices:
            if deadline is not None and time.monotonic() >= deadline:
                return counts, completed, excluded, True
            t_perm = self.trial_t(seeds[b], permute_fn)
            if not np.all(np.isfinite(t_perm)):
                if on_singular == "raise":
                    raise SingularMatrixError(
                        f"Permutation trial {b} produced non-finite t-statistics "
                        f"(singular refit).  Use on_singular='exclude' to drop "
                        f"such trials."
                    )
                excluded += 1
                continue
            counts += exceedance_counts(t_perm, self.observed_t)
            completed += 1
        return counts, completed, excluded, False

    # ---- Full run -------------------------------------------------

    def run(
        self,
        n_trials: int,
        *,
        permute_fn: PermuteFn = shuffle_rows,
        random_state: int | np.random.SeedSequence | None = None,
        n_jobs: int | None = None,
        timeout: float | None = None,
        on_singular: str = "raise",
    ) -> PermutationTestResult:
        """Run *n_trials* permutation trials and aggregate p-values.

        Args:
            n_trials: Number of permutation trials (``>= 1``).
            permute_fn: ``(Y, rng) -> Y*``; defaults to
                :func:`~matrixlm.permutations.shuffle_rows`.
            random_state: Root seed for the per-trial seeds.
            n_jobs: Worker threads; ``None`` uses
                :func:`~matrixlm.get_n_jobs`, ``-1`` all cores.
            timeout: Seconds after which no new trial starts.
            on_singular: ``"raise"`` or ``"exclude"``.

        Returns:
            A :class:`~matrixlm._results.PermutationTestResult`.

        Raises:
            ValueError: Invalid *n_trials*, *timeout* or *on_singular*.
            SingularMatrixError: A degenerate trial under
                ``on_singular="raise"``.
        """
        _validate_run_args(n_trials, on_singular, timeout)

        n_jobs = get_n_jobs() if n_jobs is None else n_jobs
        seeds = trial_seeds(int(n_trials), random_state)
        deadline = None if timeout is None else time.monotonic() + timeout

        n_workers = effective_n_jobs(n_jobs)
        n_chunks = min(int(n_trials), max(1, n_workers * _CHUNKS_PER_WORKER))
        chunks = np.array_split(np.arange(n_trials), n_chunks)
        logger.debug(
            "Running %d trials in %d chunks on %d worker(s)", n_trials, n_chunks, n_workers
        )

        if n_workers == 1:
            outputs = [
                self._run_chunk(chunk, seeds, permute_fn, on_singular, deadline)
                for chunk in chunks
            ]
        else:
            outputs = Parallel(n_jobs=n_jobs, prefer="threads")(
                delayed(self._run_chunk)(chunk, seeds, permute_fn, on_singular, deadline)
                for chunk in chunks
            )

        # Elementwise integer sum: exact and independent of chunk order.
        counts = np.zeros(self.observed_t.shape, dtype=np.int64)
        n_completed = 0
        n_excluded = 0
        timed_out = False
        for chunk_counts, completed, excluded, chunk_timed_out in outputs:
            counts += chunk_counts
            n_completed += completed
            n_excluded += excluded
            timed_out = timed_out or chunk_timed_out

        if timed_out:
            warnings.warn(
                f"Timeout reached after {n_completed + n_excluded} of {n_trials} "
                f"permutation trials; p-values use the {n_completed} completed "
                f"trials and have higher Monte Carlo variance.",
                UserWarning,
                stacklevel=2,
            )
        if n_excluded:
            warnings.warn(
                f"{n_excluded} of {n_trials} permutation trials produced "
                f"non-finite t-statistics and were excluded.",
                UserWarning,
                stacklevel=2,
            )

        p_values = empirical_p_values(counts, n_completed)
        return PermutationTestResult(
            observed_t=np.array(self.observed_t),
            p_values=p_values,
            counts=counts,
            n_trials=int(n_trials),
            n_completed=n_completed,
            n_excluded=n_excluded,
            timed_out=timed_out,
            row_names=self.row_names,
            col_names=self.col_names,
            permute_fn=getattr(permute_fn, "__name__", type(permute_fn).__name__),
            on_singular=on_singular,
            observed_fit=self.observed_fit,
        )


def permutation_test(
    data: RawData,
    n_trials: int,
    *,
    permute_fn: PermuteFn = shuffle_rows,
    random_state: int | np.random.SeedSequence | None = None,
    n_jobs: int | None = None,
    timeout: float | None = None,
    on_singular: str = "raise",
    add_x_intercept: bool = True,
    add_z_intercept: bool = True,
    weights: Sequence[float] | np.ndarray | None = None,
    shrinkage_target: str | None = None,
    include_main_effects: bool = False,
) -> tuple[np.ndarray, np.ndarray]:
    """Permutation test of every coefficient t-statistic.

    Fits the model once, then runs *n_trials* trials, each refitting
    the model with identical X, Z and options on a permuted response.

    Args:
        data: Response and predictors.
        n_trials: Number of permutation trials.
        permute_fn: ``(Y, rng) -> Y*``; rows are shuffled by default.
        random_state: Root seed.  Identical inputs and seed give
            bit-identical p-values for any *n_jobs*.
        n_jobs: Worker threads (``None`` → configured default).
        timeout: Optional wall-clock budget in seconds.
        on_singular: Degenerate-trial policy, ``"raise"`` or
            ``"exclude"``.
        add_x_intercept: See :func:`~matrixlm.estimator.fit`.
        add_z_intercept: See :func:`~matrixlm.estimator.fit`.
        weights: See :func:`~matrixlm.estimator.fit`.
        shrinkage_target: See :func:`~matrixlm.estimator.fit`.
        include_main_effects: Keep intercept rows/columns in the
            statistic (see :func:`~matrixlm.tstat.t_stat`).

    Returns:
        ``(observed_t, p_values)``, both shaped like the t-statistic
        matrix.

    Raises:
        TypeError: *n_trials* is not an integer.
        ValueError: Invalid *n_trials*, *timeout* or *on_singular*,
            checked before the observed model is fitted.
    """
    _validate_run_args(n_trials, on_singular, timeout)
    engine = PermutationEngine(
        data,
        add_x_intercept=add_x_intercept,
        add_z_intercept=add_z_intercept,
        weights=weights,
        shrinkage_target=shrinkage_target,
        include_main_effects=include_main_effects,
    )
    result = engine.run(
        n_trials,
        permute_fn=permute_fn,
        random_state=random_state,
        n_jobs=n_jobs,
        timeout=timeout,
        on_singular=on_singular,
    )
    return result.observed_t, result.p_values


__all__ = ["PermutationEngine", "permutation_test"]
