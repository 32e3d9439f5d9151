"""
Distance Metrics for Covariance Functions

A metric replaces the built-in scaled Euclidean distance of a stationary
covariance function and, while attached, owns the length-scale parameters and
their prior. The covariance function only asks the metric for distances,
distance gradients and the bookkeeping of its parameters.

EuclideanMetric groups input columns into components; each component has its
own length-scale:

    r(x, x') = √( Σ_c Σ_{d ∈ c} (x_d - x'_d)² / l_c² )
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from .blocks import pairwise_difference
from .exceptions import DimensionError, DimensionMismatch, InvalidParameterError
from .priors import Prior, Uniform, is_free

logger = logging.getLogger(__name__)

_UNSET = object()


# =============================================================================
# Base Metric Class
# =============================================================================


class Metric(ABC):
    """
    Abstract base class for distance metrics.

    Metrics are immutable; ``unpack`` and ``reconfigure`` return new instances.
    """

    metric_type: str = "metric"

    @abstractmethod
    def distance(self, x: NDArray, x2: Optional[NDArray] = None) -> NDArray:
        """Distance matrix (N1, N2) between rows of x and x2 (x2 = x if None)."""
        pass

    @abstractmethod
    def distance_gradient_wrt_input(self, x: NDArray, x2: Optional[NDArray] = None) -> List[NDArray]:
        """Derivatives of the distance matrix w.r.t. each scalar coordinate of x."""
        pass

    @abstractmethod
    def distance_gradient_wrt_own_params(
        self,
        x: NDArray,
        x2: Optional[NDArray] = None,
        mask=None,
    ) -> List[NDArray]:
        """Derivatives of the distance matrix w.r.t. each free (packed) parameter."""
        pass

    @abstractmethod
    def log_prior(self) -> float:
        """Log prior of the metric parameters in packed space (Jacobian included)."""
        pass

    @abstractmethod
    def log_prior_gradient(self) -> NDArray:
        """Gradient of ``log_prior`` w.r.t. the packed vector."""
        pass

    @abstractmethod
    def pack(self) -> Tuple[NDArray, List[str]]:
        pass

    @abstractmethod
    def unpack(self, w) -> Tuple["Metric", NDArray]:
        pass

    @abstractmethod
    def reconfigure(self, **changes) -> "Metric":
        pass

    @property
    @abstractmethod
    def length_scale(self) -> NDArray:
        pass

    @property
    @abstractmethod
    def length_scale_prior(self) -> Optional[Prior]:
        pass

    @property
    def n_params(self) -> int:
        """Length of the packed vector."""
        return len(self.pack()[0])


# =============================================================================
# Euclidean Metric
# =============================================================================


class EuclideanMetric(Metric):
    """
    Scaled Euclidean distance over groups of input columns.

    Example:
        >>> metric = EuclideanMetric(components=[[0, 1], [2]], length_scale=[1.0, 0.5])
        >>> r = metric.distance(X)  # (N, N)
    """

    metric_type = "euclidean"

    def __init__(
        self,
        components: Optional[Sequence[Sequence[int]]] = None,
        length_scale=1.0,
        length_scale_prior: Optional[Prior] = _UNSET,  # type: ignore[assignment]
    ):
        """
        Initialize Euclidean metric.

        Args:
            components: Groups of input column indices. If None, all columns
                        form one group (scalar length-scale) or each column is
                        its own group (vector length-scale).
            length_scale: One length-scale shared by all components, or one
                          per component
            length_scale_prior: Prior of the length-scale [Uniform]
        """
        self._components = None if components is None else tuple(tuple(int(d) for d in c) for c in components)
        self._length_scale = np.atleast_1d(np.asarray(length_scale, dtype=float)).ravel()
        self._prior = Uniform() if length_scale_prior is _UNSET else length_scale_prior
        self._validate()

    def _validate(self) -> None:
        if self._length_scale.size == 0:
            raise InvalidParameterError("Length-scale must have at least one entry")
        if not np.all(np.isfinite(self._length_scale)) or np.any(self._length_scale <= 0):
            raise InvalidParameterError(f"Length-scales must be positive and finite, got {self._length_scale}")
        if self._components is not None:
            if len(self._components) == 0 or any(len(c) == 0 for c in self._components):
                raise InvalidParameterError("Metric components must be non-empty groups of input columns")
            if any(d < 0 for c in self._components for d in c):
                raise InvalidParameterError(f"Metric components must be column indices, got {self._components}")
            if self._length_scale.size not in (1, len(self._components)):
                raise InvalidParameterError(
                    f"Got {self._length_scale.size} length-scales for {len(self._components)} components"
                )

    @property
    def components(self) -> Optional[Tuple[Tuple[int, ...], ...]]:
        return self._components

    @property
    def length_scale(self) -> NDArray:
        return self._length_scale.copy()

    @property
    def length_scale_prior(self) -> Optional[Prior]:
        return self._prior

    def _groups(self, m: int) -> List[Tuple[int, ...]]:
        """Column groups for inputs of dimension m."""
        if self._components is None:
            if self._length_scale.size == 1:
                return [tuple(range(m))]
            if self._length_scale.size != m:
                raise DimensionMismatch(f"Metric has {self._length_scale.size} length-scales but inputs have {m} columns")
            return [(d,) for d in range(m)]

        if max(d for c in self._components for d in c) >= m:
            raise DimensionMismatch(f"Metric components {self._components} exceed input dimension {m}")
        return list(self._components)

    def _scale_index(self, group: int) -> int:
        return 0 if self._length_scale.size == 1 else group

    def _scaled_sq_per_scale(self, x: NDArray, x2: NDArray) -> List[NDArray]:
        """Σ (x_d - x'_d)² / l² collected per length-scale entry."""
        parts = [np.zeros((x.shape[0], x2.shape[0])) for _ in range(self._length_scale.size)]
        for g, group in enumerate(self._groups(x.shape[1])):
            k = self._scale_index(g)
            for d in group:
                parts[k] += pairwise_difference(x, x2, d) ** 2 / self._length_scale[k] ** 2
        return parts

    @staticmethod
    def _prepare(x: NDArray, x2: Optional[NDArray]) -> Tuple[NDArray, NDArray]:
        x = np.atleast_2d(np.asarray(x, dtype=float))
        x2 = x if x2 is None else np.atleast_2d(np.asarray(x2, dtype=float))
        if x.shape[1] != x2.shape[1]:
            raise DimensionMismatch(f"x has {x.shape[1]} columns but x2 has {x2.shape[1]}")
        return x, x2

    def distance(self, x: NDArray, x2: Optional[NDArray] = None) -> NDArray:
        x, x2 = self._prepare(x, x2)
        return np.sqrt(sum(self._scaled_sq_per_scale(x, x2)))

    def distance_gradient_wrt_own_params(
        self,
        x: NDArray,
        x2: Optional[NDArray] = None,
        mask=None,
    ) -> List[NDArray]:
        """
        Derivatives of r w.r.t. log length-scales.

        ∂r/∂(log l_c) = -Σ_{d ∈ c} (x_d - x'_d)² / (l_c² r), taken as 0 where r = 0.
        With ``mask`` only the diagonal is returned, which is identically zero.

        Returns:
            One matrix per length-scale entry; empty if the length-scale is
            not learned
        """
        if not is_free(self._prior):
            return []

        if mask is not None:
            n = np.atleast_2d(x).shape[0]
            return [np.zeros(n) for _ in range(self._length_scale.size)]

        x, x2 = self._prepare(x, x2)
        parts = self._scaled_sq_per_scale(x, x2)
        dist = np.sqrt(sum(parts))
        safe = np.where(dist > 0, dist, 1.0)
        return [np.where(dist > 0, -part / safe, 0.0) for part in parts]

    def distance_gradient_wrt_input(self, x: NDArray, x2: Optional[NDArray] = None) -> List[NDArray]:
        """
        Derivatives of r w.r.t. each coordinate x[j, d].

        Ordered by dimension first, then by row: index d·N + j. Without x2 the
        perturbed point appears in both row j and column j.
        """
        symmetric = x2 is None
        x, x2 = self._prepare(x, x2)
        n, m = x.shape

        dist = self.distance(x, x2)
        safe = np.where(dist > 0, dist, 1.0)

        inv_sq = np.zeros(m)
        for g, group in enumerate(self._groups(m)):
            for d in group:
                inv_sq[d] = 1.0 / self._length_scale[self._scale_index(g)] ** 2

        grads = []
        for d in range(m):
            for j in range(n):
                row = inv_sq[d] * (x[j, d] - x2[:, d]) / safe[j, :]
                row = np.where(dist[j, :] > 0, row, 0.0)
                dk = np.zeros_like(dist)
                dk[j, :] = row
                if symmetric:
                    dk = dk + dk.T
                grads.append(dk)
        return grads

    def log_prior(self) -> float:
        if not is_free(self._prior):
            return 0.0
        return self._prior.log_density(self._length_scale) + float(np.sum(np.log(self._length_scale)))

    def log_prior_gradient(self) -> NDArray:
        if not is_free(self._prior):
            return np.zeros(0)
        k = self._length_scale.size
        g = self._prior.log_density_gradient(self._length_scale).copy()
        g[:k] = g[:k] * self._length_scale + 1.0
        return g

    def pack(self) -> Tuple[NDArray, List[str]]:
        if not is_free(self._prior):
            return np.zeros(0), []

        w = list(np.log(self._length_scale))
        if self._length_scale.size > 1:
            labels = [f"log(metric.length_scale[{i}])" for i in range(self._length_scale.size)]
        else:
            labels = ["log(metric.length_scale)"]
        wh, lh = self._prior.pack()
        return np.concatenate([w, wh]), labels + lh

    def unpack(self, w) -> Tuple["EuclideanMetric", NDArray]:
        w = np.asarray(w, dtype=float).ravel()
        if not is_free(self._prior):
            return self, w

        k = self._length_scale.size
        if w.size < k:
            raise DimensionError(f"Parameter vector of length {w.size} too short for {k} metric length-scales")
        length_scale = np.exp(w[:k])
        if not np.all(np.isfinite(length_scale)) or np.any(length_scale <= 0):
            raise DimensionError(f"Unpacked metric length-scale {length_scale} is not positive and finite")
        prior, w = self._prior.unpack(w[k:])

        new = copy.copy(self)
        new._length_scale = length_scale
        new._prior = prior
        return new, w

    def reconfigure(self, **changes) -> "EuclideanMetric":
        """
        Return a copy with the given fields replaced.

        Accepted keys: components, length_scale, length_scale_prior.
        """
        unknown = set(changes) - {"components", "length_scale", "length_scale_prior"}
        if unknown:
            raise TypeError(f"Unknown metric fields: {sorted(unknown)}")
        logger.debug("Reconfiguring %s metric: %s", self.metric_type, sorted(changes))
        return EuclideanMetric(
            components=changes.get("components", self._components),
            length_scale=changes.get("length_scale", self._length_scale),
            length_scale_prior=changes.get("length_scale_prior", self._prior),
        )

    def __repr__(self) -> str:
        return f"EuclideanMetric(components={self._components}, length_scale={self._length_scale})"
