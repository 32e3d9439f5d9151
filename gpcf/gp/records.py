"""
Sample History Records

Containers used by an external MCMC sampler to accumulate hyperparameter
samples. Rows are indexed by sample number. Appending never touches the
record it was given: every append returns a new record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np
from numpy.typing import NDArray


def set_row(history: Optional[NDArray], index: int, value) -> NDArray:
    """
    Return a copy of ``history`` with row ``index`` set to ``value``.

    Args:
        history: (K, P) array of previous samples, or None for an empty history
        index: Sample number. ``index == K`` appends, ``index < K`` replaces.
        value: Scalar or (P,) sample

    Returns:
        New (max(K, index + 1), P) array
    """
    row = np.atleast_1d(np.asarray(value, dtype=float)).ravel()
    if history is None or history.size == 0:
        history = np.empty((0, row.size))

    n_rows = history.shape[0]
    if index < 0 or index > n_rows:
        raise IndexError(f"Sample index {index} out of range for a history of {n_rows} rows")
    if history.shape[1] != row.size:
        raise ValueError(f"Sample has {row.size} values, history rows have {history.shape[1]}")

    if index == n_rows:
        return np.vstack([history, row[None, :]])

    updated = history.copy()
    updated[index] = row
    return updated


@dataclass(frozen=True)
class PriorRecord:
    """Sample history of a prior's free parameters (and of their hyperpriors)."""

    prior_type: str
    params: Dict[str, NDArray] = field(default_factory=dict)
    hyperpriors: Dict[str, "PriorRecord"] = field(default_factory=dict)

    @property
    def n_samples(self) -> int:
        if not self.params:
            return 0
        return min(h.shape[0] for h in self.params.values())


@dataclass(frozen=True)
class SexpRecord:
    """
    Sample history of a squared exponential covariance function.

    Attributes:
        magn_sigma2: (K, 1) samples of the magnitude, None if not sampled
        length_scale: (K, L) samples of the length-scale, None if not sampled
                      or owned by a metric
        priors: Histories of the priors of sampled parameters, keyed by
                parameter name
    """

    magn_sigma2: Optional[NDArray] = None
    length_scale: Optional[NDArray] = None
    priors: Dict[str, PriorRecord] = field(default_factory=dict)
    record_type: str = "sexp"

    @property
    def n_samples(self) -> int:
        counts = [h.shape[0] for h in (self.magn_sigma2, self.length_scale) if h is not None]
        return min(counts) if counts else 0
