"""Permutation functions and per-trial random sources.

Per-trial seeds
---------------
A permutation test is only reproducible if every trial draws the same
rearrangement no matter which worker runs it or in what order trials
complete.  A single generator shared across workers cannot promise
that: the sequence of draws a trial sees depends on how many draws
other trials made before it.

Instead the root seed is expanded with
:meth:`numpy.random.SeedSequence.spawn` into one child sequence per
trial.  Child *b* is a pure function of ``(root seed, b)``, the
children are statistically independent streams, and trial *b* always
builds its generator from child *b*.  Scheduling therefore cannot
change any trial's permutation.

Permutation functions
---------------------
A permutation function has the signature ``permute_fn(Y, rng) -> Y*``
and must return a new array of the same shape without modifying *Y*
(which is read-only).  Two are provided:

* :func:`shuffle_rows` (default) — permutes the rows of Y, breaking
  the link between X and the observations while keeping each row's
  profile across responses intact.
* :func:`shuffle_cols` — permutes the columns of Y, breaking the link
  between Z and the responses.
"""

from __future__ import annotations

import numpy as np


def shuffle_rows(Y: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Return *Y* with its rows in a uniformly random order."""
    return Y[rng.permutation(Y.shape[0]), :]


def shuffle_cols(Y: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Return *Y* with its columns in a uniformly random order."""
    return Y[:, rng.permutation(Y.shape[1])]


def trial_seeds(
    n_trials: int,
    random_state: int | np.random.SeedSequence | None = None,
) -> list[np.random.SeedSequence]:
    """Spawn one independent :class:`~numpy.random.SeedSequence` per trial.

    Args:
        n_trials: Number of trials.
        random_state: Root seed.  ``None`` draws fresh OS entropy, so
            the run is random but still internally consistent across
            workers.

    Returns:
        List of *n_trials* child sequences; element *b* depends only
        on the root seed and *b*.
    """
    if isinstance(random_state, np.random.SeedSequence):
        # spawn() advances the parent's counter; work on a copy so the
        # caller's sequence gives the same children every time.
        root = np.random.SeedSequence(
            random_state.entropy,
            spawn_key=random_state.spawn_key,
            pool_size=random_state.pool_size,
        )
    else:
        root = np.random.SeedSequence(random_state)
    return root.spawn(n_trials)


__all__ = ["shuffle_rows", "shuffle_cols", "trial_seeds"]
