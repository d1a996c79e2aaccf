"""Worker-count configuration for the matrixlm package.

Controls how many parallel workers the permutation engine uses when a
caller does not pass ``n_jobs`` explicitly.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_n_jobs`.
    2. The ``MATRIXLM_N_JOBS`` environment variable.
    3. ``1`` (serial execution).

Values follow joblib conventions: a positive integer is an exact
worker count and ``-1`` means "all available cores".

Examples:
    Use every core from the shell::

        export MATRIXLM_N_JOBS=-1

    Programmatically::

        import matrixlm
        matrixlm.set_n_jobs(4)

    Restore the default resolution order::

        matrixlm.set_n_jobs(None)
"""

from __future__ import annotations

import os

_ENV_VAR = "MATRIXLM_N_JOBS"

# Sentinel indicating "no programmatic override has been set".
_n_jobs_override: int | None = None


def _validate_n_jobs(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"n_jobs must be an int, got {type(value).__name__}.")
    if value == 0 or value < -1:
        raise ValueError(
            f"n_jobs must be a positive integer or -1 (all cores), got {value}."
        )
    return value


def get_n_jobs() -> int:
    """Return the active default worker count.

    Resolution order:
        1. Value set by :func:`set_n_jobs`.
        2. ``MATRIXLM_N_JOBS`` environment variable.
        3. ``1``.

    Returns:
        A positive worker count or ``-1``.

    Raises:
        ValueError: If the environment variable is set to something
            that is not a valid worker count.
    """
    # 1. Programmatic override
    if _n_jobs_override is not None:
        return _n_jobs_override

    # 2. Environment variable
    env = os.environ.get(_ENV_VAR, "").strip()
    if env:
        try:
            value = int(env)
        except ValueError:
            raise ValueError(
                f"{_ENV_VAR}={env!r} is not an integer worker count."
            ) from None
        return _validate_n_jobs(value)

    # 3. Serial default
    return 1


def set_n_jobs(n_jobs: int | None) -> None:
    """Override the default worker count.

    Args:
        n_jobs: A positive integer, ``-1`` for all cores, or ``None``
            to restore the default resolution order.

    Raises:
        TypeError: If *n_jobs* is not an integer or ``None``.
        ValueError: If *n_jobs* is zero or below ``-1``.
    """
    global _n_jobs_override
    _n_jobs_override = None if n_jobs is None else _validate_n_jobs(n_jobs)
