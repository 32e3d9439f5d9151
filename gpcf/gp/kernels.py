"""
Covariance Functions for Gaussian Processes

Implements the squared exponential covariance function together with the
exact derivatives an inference engine needs:
- Covariance matrices: cross (cov), training (trcov), variance (trvar)
- Gradients w.r.t. log-transformed hyperparameters (ghyper)
- Gradients of input-differentiated covariances w.r.t. hyperparameters for
  models with derivative observations (ghypergrad, ghypergrad2)
- Gradients w.r.t. the inputs themselves (ginput, ginput2, ginput3, ginput4)
- Parameter packing for optimizers/samplers and sample history recording

The squared exponential kernel:
    k(x, x') = σ² exp(-0.5 Σᵢ (xᵢ - x'ᵢ)² / lᵢ²)

with a single shared length-scale (isotropic) or one per input dimension
(ARD). A metric delegate may replace the scaled Euclidean distance, in which
case the metric owns the length-scale and its prior.

Hyperparameters are stored untransformed. The log transform is applied only
when packing; all hyperparameter gradients are w.r.t. the logarithm:
    ∂K/∂(log θ) = θ ∂K/∂θ

Reference:
    Rasmussen, C. E., & Williams, C. K. I. (2006). Gaussian Processes
    for Machine Learning. MIT Press. Chapter 5 and Section 9.4.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from .blocks import assemble_block_matrix, dimension_pairs, pairwise_difference, squared_distance
from .exceptions import DimensionError, DimensionMismatch, InvalidParameterError, UnsupportedCombinationError
from .metrics import EuclideanMetric, Metric
from .priors import Prior, SqrtUniform, Uniform, is_free
from .records import SexpRecord, set_row

logger = logging.getLogger(__name__)

_EPS = np.finfo(float).eps
_UNSET = object()


# =============================================================================
# Base Covariance Function Class
# =============================================================================


class CovarianceFunction(ABC):
    """
    Abstract base class for covariance functions.

    A generic GP engine depends only on this interface, so any covariance
    function family can be substituted. Gradient collections are lists of
    matrices ordered like the packed parameter vector.
    """

    @abstractmethod
    def pack(self) -> Tuple[NDArray, List[str]]:
        """Flatten free hyperparameters (log space) and their priors' parameters."""
        pass

    @abstractmethod
    def unpack(self, w) -> Tuple["CovarianceFunction", NDArray]:
        """Inverse of pack: return a new instance and the unconsumed remainder."""
        pass

    @abstractmethod
    def energy(self) -> float:
        """Negative log prior of the hyperparameters in packed space."""
        pass

    @abstractmethod
    def cov(self, x1: NDArray, x2: Optional[NDArray] = None) -> NDArray:
        pass

    @abstractmethod
    def trcov(self, x: NDArray) -> NDArray:
        pass

    @abstractmethod
    def trvar(self, x: NDArray) -> NDArray:
        pass

    @abstractmethod
    def ghyper(self, x: NDArray, x2: Optional[NDArray] = None, mask=None) -> Tuple[List[NDArray], NDArray]:
        pass

    @abstractmethod
    def ghypergrad(self, x: NDArray) -> List[NDArray]:
        pass

    @abstractmethod
    def ghypergrad2(self, x: NDArray) -> List[NDArray]:
        pass

    @abstractmethod
    def ginput(self, x: NDArray, x2: Optional[NDArray] = None) -> List[NDArray]:
        pass

    @abstractmethod
    def ginput2(self, x: NDArray, x2: NDArray) -> Tuple[List[NDArray], List[NDArray], List[NDArray]]:
        pass

    @abstractmethod
    def ginput3(self, x: NDArray, x2: NDArray) -> List[NDArray]:
        pass

    @abstractmethod
    def ginput4(self, x: NDArray, x2: Optional[NDArray] = None) -> List[NDArray]:
        pass

    @abstractmethod
    def recappend(self, record=None, index: Optional[int] = None):
        pass

    def __call__(
        self,
        X1: NDArray,
        X2: Optional[NDArray] = None,
    ) -> NDArray:
        """
        Compute kernel matrix.

        Args:
            X1: First set of points (N1, D)
            X2: Second set of points (N2, D). If None, compute K(X1, X1).

        Returns:
            Kernel matrix (N1, N2)
        """
        if X2 is None:
            return self.trcov(X1)
        return self.cov(X1, X2)

    def diagonal(self, X: NDArray) -> NDArray:
        """Diagonal k(xᵢ, xᵢ) of the training covariance (N,)."""
        return self.trvar(X)

    @property
    def n_params(self) -> int:
        """Number of packed parameters."""
        return len(self.pack()[0])

    @property
    def param_names(self) -> List[str]:
        """Labels of the packed parameters."""
        return self.pack()[1]


# =============================================================================
# Length-scale Ownership
# =============================================================================


@dataclass(frozen=True)
class LocalLengthScale:
    """Length-scale held by the covariance function itself."""

    values: NDArray
    prior: Optional[Prior]

    @property
    def isotropic(self) -> bool:
        return self.values.size == 1


@dataclass(frozen=True)
class DelegatedLengthScale:
    """Length-scale owned by a metric delegate."""

    metric: Metric


LengthScaleOwner = Union[LocalLengthScale, DelegatedLengthScale]


def _positive_scalar(value, name: str) -> float:
    arr = np.asarray(value, dtype=float)
    if arr.size != 1:
        raise InvalidParameterError(f"{name} must be a scalar, got shape {arr.shape}")
    value = float(arr.ravel()[0])
    if not np.isfinite(value) or value <= 0:
        raise InvalidParameterError(f"{name} must be positive and finite, got {value}")
    return value


def _positive_vector(value, name: str) -> NDArray:
    arr = np.atleast_1d(np.asarray(value, dtype=float)).ravel()
    if arr.size == 0:
        raise InvalidParameterError(f"{name} must have at least one entry")
    if not np.all(np.isfinite(arr)) or np.any(arr <= 0):
        raise InvalidParameterError(f"{name} must be positive and finite, got {arr}")
    return arr


# =============================================================================
# Squared Exponential Covariance Function
# =============================================================================


class SquaredExponential(CovarianceFunction):
    """
    Squared exponential covariance function.

    k(x, x') = σ² exp(-0.5 r²(x, x')),  r² = Σᵢ (xᵢ - x'ᵢ)² / lᵢ²

    Hyperparameters:
        - magn_sigma2 (σ²): magnitude, variance at zero distance
        - length_scale (l): scalar (isotropic) or one per input dimension (ARD),
          unless a metric owns it

    A parameter takes part in packing, energy, gradients and sample recording
    only if it has a prior that is not FIXED. Instances are immutable: unpack
    and reconfigure return new objects.

    Example:
        >>> kernel = SquaredExponential(magn_sigma2=0.5, length_scale=[1.0, 2.0])
        >>> K = kernel.trcov(X)                  # (N, N)
        >>> dK, dprior = kernel.ghyper(X)        # [K, ∂K/∂log l₁, ∂K/∂log l₂]
        >>> w, labels = kernel.pack()
        >>> kernel, _ = kernel.unpack(w + step)
    """

    cf_type = "sexp"

    _FIELDS = frozenset(
        {
            "magn_sigma2",
            "length_scale",
            "magn_sigma2_prior",
            "length_scale_prior",
            "metric",
            "selected_variables",
        }
    )

    def __init__(
        self,
        magn_sigma2: float = 0.1,
        length_scale: Union[float, Sequence[float], NDArray] = 1.0,
        magn_sigma2_prior: Optional[Prior] = _UNSET,  # type: ignore[assignment]
        length_scale_prior: Optional[Prior] = _UNSET,  # type: ignore[assignment]
        metric: Optional[Metric] = None,
        selected_variables: Optional[Sequence[int]] = None,
    ):
        """
        Initialize squared exponential covariance function.

        Args:
            magn_sigma2: Magnitude σ² [0.1]
            length_scale: Scalar for an isotropic kernel or one value per
                          input dimension for ARD [1.0]
            magn_sigma2_prior: Prior of σ² [SqrtUniform]. None or FIXED keeps
                               σ² out of learning.
            length_scale_prior: Prior of the length-scale [Uniform]
            metric: Metric replacing the scaled Euclidean distance. Takes
                    over the length-scale and its prior.
            selected_variables: Input columns to use. Shorthand for a
                                EuclideanMetric with one component per column.
        """
        self._magn_sigma2 = _positive_scalar(magn_sigma2, "magn_sigma2")
        self._magn_sigma2_prior = SqrtUniform() if magn_sigma2_prior is _UNSET else magn_sigma2_prior
        owner: LengthScaleOwner = LocalLengthScale(
            _positive_vector(length_scale, "length_scale"),
            Uniform() if length_scale_prior is _UNSET else length_scale_prior,
        )

        changes = {}
        if metric is not None:
            changes["metric"] = metric
        if selected_variables is not None:
            changes["selected_variables"] = selected_variables
        self._owner = self._move_ownership(owner, changes)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @staticmethod
    def _move_ownership(owner: LengthScaleOwner, changes: dict) -> LengthScaleOwner:
        """Apply metric / selected_variables changes to the length-scale owner."""
        if "metric" in changes:
            metric = changes["metric"]
            if metric is not None:
                logger.debug("Length-scale ownership moves to %r", metric)
                owner = DelegatedLengthScale(metric)
            elif isinstance(owner, DelegatedLengthScale):
                logger.debug("Length-scale ownership returns from %r", owner.metric)
                owner = LocalLengthScale(owner.metric.length_scale, owner.metric.length_scale_prior)

        if "selected_variables" in changes:
            selected = changes["selected_variables"]
            if selected is not None:
                components = [[int(i)] for i in selected]
                if isinstance(owner, LocalLengthScale):
                    metric = EuclideanMetric(components, owner.values, owner.prior)
                else:
                    metric = owner.metric.reconfigure(components=components)
                logger.debug("Selected input columns %s", [c[0] for c in components])
                owner = DelegatedLengthScale(metric)
            elif isinstance(owner, DelegatedLengthScale):
                owner = LocalLengthScale(owner.metric.length_scale, owner.metric.length_scale_prior)

        return owner

    def reconfigure(self, **changes) -> "SquaredExponential":
        """
        Return a copy with the named fields changed.

        Accepts the constructor's keyword arguments. Passing ``metric=None``
        (or ``selected_variables=None``) while a metric is attached returns
        the length-scale and its prior to the covariance function.
        """
        unknown = set(changes) - self._FIELDS
        if unknown:
            raise TypeError(f"Unknown covariance function fields: {sorted(unknown)}")

        new = copy.copy(self)
        if "magn_sigma2" in changes:
            new._magn_sigma2 = _positive_scalar(changes["magn_sigma2"], "magn_sigma2")
        if "magn_sigma2_prior" in changes:
            new._magn_sigma2_prior = changes["magn_sigma2_prior"]

        owner = self._owner
        if isinstance(owner, LocalLengthScale):
            owner = LocalLengthScale(
                _positive_vector(changes["length_scale"], "length_scale") if "length_scale" in changes else owner.values,
                changes.get("length_scale_prior", owner.prior),
            )
        else:
            metric_changes = {k: changes[k] for k in ("length_scale", "length_scale_prior") if k in changes}
            if metric_changes and changes.get("selected_variables") is not None and "metric" not in changes:
                metric_changes["components"] = [[int(i)] for i in changes["selected_variables"]]
            if metric_changes:
                owner = DelegatedLengthScale(owner.metric.reconfigure(**metric_changes))

        new._owner = self._move_ownership(owner, changes)
        return new

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def magn_sigma2(self) -> float:
        """Magnitude σ²."""
        return self._magn_sigma2

    @property
    def magn_sigma2_prior(self) -> Optional[Prior]:
        return self._magn_sigma2_prior

    @property
    def owner(self) -> LengthScaleOwner:
        """Who holds the length-scale: the covariance function or a metric."""
        return self._owner

    @property
    def length_scale(self) -> Optional[NDArray]:
        """Length-scale(s), None while a metric owns them."""
        if isinstance(self._owner, LocalLengthScale):
            return self._owner.values.copy()
        return None

    @property
    def length_scale_prior(self) -> Optional[Prior]:
        if isinstance(self._owner, LocalLengthScale):
            return self._owner.prior
        return None

    @property
    def metric(self) -> Optional[Metric]:
        if isinstance(self._owner, DelegatedLengthScale):
            return self._owner.metric
        return None

    @property
    def priors(self) -> dict:
        """Priors keyed by parameter name; no length-scale entry while a metric owns it."""
        priors = {"magn_sigma2": self._magn_sigma2_prior}
        if isinstance(self._owner, LocalLengthScale):
            priors["length_scale"] = self._owner.prior
        return priors

    def _learn_magn_sigma2(self) -> bool:
        return is_free(self._magn_sigma2_prior)

    def _learn_local_length_scale(self) -> bool:
        return isinstance(self._owner, LocalLengthScale) and is_free(self._owner.prior)

    # -------------------------------------------------------------------------
    # Input handling
    # -------------------------------------------------------------------------

    @staticmethod
    def _inputs(x1: NDArray, x2: Optional[NDArray] = None) -> Tuple[NDArray, NDArray]:
        x1 = np.atleast_2d(np.asarray(x1, dtype=float))
        if x2 is None:
            return x1, x1
        x2 = np.atleast_2d(np.asarray(x2, dtype=float))
        if x1.shape[1] != x2.shape[1]:
            raise DimensionMismatch(f"The number of columns in x ({x1.shape[1]}) and x2 ({x2.shape[1]}) must match")
        return x1, x2

    def _require_local(self, operation: str) -> LocalLengthScale:
        if isinstance(self._owner, DelegatedLengthScale):
            raise UnsupportedCombinationError(
                f"{operation} is defined only for the scaled Euclidean distance, not with a metric"
            )
        return self._owner

    def _inv_sq_scales(self, m: int) -> NDArray:
        """1 / lᵢ² for each of the m input dimensions."""
        owner = self._require_local("Scaled Euclidean distance")
        if owner.isotropic:
            return np.full(m, 1.0 / owner.values[0] ** 2)
        if owner.values.size != m:
            raise DimensionMismatch(f"Got {owner.values.size} length-scales for {m} input dimensions")
        return 1.0 / owner.values**2

    def _scaled_sq_dist(self, x1: NDArray, x2: NDArray) -> NDArray:
        """Σᵢ (x1ᵢ - x2ᵢ)² / lᵢ² (N1, N2), clamped to zero below eps."""
        s2 = self._inv_sq_scales(x1.shape[1])
        dist = np.zeros((x1.shape[0], x2.shape[0]))
        for i in range(x1.shape[1]):
            dist += pairwise_difference(x1, x2, i) ** 2 * s2[i]
        dist[dist < _EPS] = 0.0
        return dist

    # -------------------------------------------------------------------------
    # Covariance evaluation
    # -------------------------------------------------------------------------

    def cov(self, x1: NDArray, x2: Optional[NDArray] = None) -> NDArray:
        """
        Covariance matrix between two sets of inputs.

        K[i,j] = σ² exp(-0.5 r²(x1ᵢ, x2ⱼ))

        Args:
            x1: (N1, D)
            x2: (N2, D). If None, uses x2 = x1.

        Returns:
            Covariance matrix (N1, N2)
        """
        x1, x2 = self._inputs(x1, x2)

        if isinstance(self._owner, DelegatedLengthScale):
            dist = self._owner.metric.distance(x1, x2) ** 2
            dist[dist < _EPS] = 0.0
        else:
            dist = self._scaled_sq_dist(x1, x2)

        return self._magn_sigma2 * np.exp(-dist / 2.0)

    def trcov(self, x: NDArray) -> NDArray:
        """
        Training covariance matrix K(x, x).

        Only the strictly lower triangle is evaluated; the diagonal is σ².

        Args:
            x: (N, D)

        Returns:
            Symmetric covariance matrix (N, N)
        """
        x = np.atleast_2d(np.asarray(x, dtype=float))
        n = x.shape[0]
        half = np.zeros((n, n))

        if isinstance(self._owner, DelegatedLengthScale):
            metric = self._owner.metric
            for j in range(n - 1):
                d = metric.distance(x[j + 1 :], x[j : j + 1])[:, 0] ** 2
                d[d < _EPS] = 0.0
                half[j + 1 :, j] = d / 2.0
        else:
            s2 = self._inv_sq_scales(x.shape[1])
            rows, cols = np.tril_indices(n, -1)
            d = ((x[rows] - x[cols]) ** 2) @ s2
            d[d < _EPS] = 0.0
            half[rows, cols] = d / 2.0

        half = half + half.T
        return self._magn_sigma2 * np.exp(-half)

    def trvar(self, x: NDArray) -> NDArray:
        """
        Training variances k(xᵢ, xᵢ) = σ².

        Args:
            x: (N, D)

        Returns:
            (N,) vector
        """
        n = np.atleast_2d(x).shape[0]
        C = np.full(n, self._magn_sigma2)
        C[C < _EPS] = 0.0
        return C

    # -------------------------------------------------------------------------
    # Parameter packing and prior energy
    # -------------------------------------------------------------------------

    def pack(self) -> Tuple[NDArray, List[str]]:
        """
        Flatten free hyperparameters.

        w = [log σ², (σ² prior parameters), log l, (l prior parameters)]

        With a metric, the length-scale part is the metric's own packing.

        Returns:
            w: Packed vector
            labels: Name of each entry
        """
        parts: List[NDArray] = []
        labels: List[str] = []

        if self._learn_magn_sigma2():
            parts.append(np.array([np.log(self._magn_sigma2)]))
            labels.append(f"log({self.cf_type}.magn_sigma2)")
            wh, lh = self._magn_sigma2_prior.pack()
            parts.append(wh)
            labels.extend(lh)

        if isinstance(self._owner, DelegatedLengthScale):
            wh, lh = self._owner.metric.pack()
            parts.append(wh)
            labels.extend(lh)
        elif self._learn_local_length_scale():
            values = self._owner.values
            parts.append(np.log(values))
            if values.size > 1:
                labels.extend(f"log({self.cf_type}.length_scale[{i}])" for i in range(values.size))
            else:
                labels.append(f"log({self.cf_type}.length_scale)")
            wh, lh = self._owner.prior.pack()
            parts.append(wh)
            labels.extend(lh)

        w = np.concatenate(parts) if parts else np.zeros(0)
        return w, labels

    def unpack(self, w) -> Tuple["SquaredExponential", NDArray]:
        """
        Restore free hyperparameters from the head of ``w``.

        Args:
            w: Packed vector, possibly followed by other components' parameters

        Returns:
            New covariance function and the unconsumed remainder of ``w``

        Raises:
            DimensionError: w is too short, or a restored value is not
                            positive and finite
        """
        w = np.asarray(w, dtype=float).ravel()
        n_in = w.size
        new = copy.copy(self)

        if self._learn_magn_sigma2():
            if w.size < 1:
                raise DimensionError("Parameter vector too short to unpack magn_sigma2")
            magn_sigma2 = float(np.exp(w[0]))
            if not np.isfinite(magn_sigma2) or magn_sigma2 <= 0:
                raise DimensionError(f"Unpacked magn_sigma2={magn_sigma2} is not positive and finite")
            new._magn_sigma2 = magn_sigma2
            new._magn_sigma2_prior, w = self._magn_sigma2_prior.unpack(w[1:])

        if isinstance(self._owner, DelegatedLengthScale):
            metric, w = self._owner.metric.unpack(w)
            new._owner = DelegatedLengthScale(metric)
        elif self._learn_local_length_scale():
            k = self._owner.values.size
            if w.size < k:
                raise DimensionError(f"Parameter vector of length {w.size} too short for {k} length-scales")
            length_scale = np.exp(w[:k])
            if not np.all(np.isfinite(length_scale)) or np.any(length_scale <= 0):
                raise DimensionError(f"Unpacked length-scale {length_scale} is not positive and finite")
            prior, w = self._owner.prior.unpack(w[k:])
            new._owner = LocalLengthScale(length_scale, prior)

        logger.debug("Unpacked %d of %d parameters", n_in - w.size, n_in)
        return new, w

    def energy(self) -> float:
        """
        Energy of the hyperparameter prior in packed (log) space.

        E = -Σ [log p(θᵢ) + log θᵢ]

        The log θᵢ term is the Jacobian of θ = exp(w). A metric accounts for
        its own parameters, Jacobian included.
        """
        e = 0.0

        if self._learn_magn_sigma2():
            e -= self._magn_sigma2_prior.log_density(self._magn_sigma2) + np.log(self._magn_sigma2)

        if isinstance(self._owner, DelegatedLengthScale):
            e -= self._owner.metric.log_prior()
        elif self._learn_local_length_scale():
            values = self._owner.values
            e -= self._owner.prior.log_density(values) + np.sum(np.log(values))

        return float(e)

    def _prior_gradients(self) -> NDArray:
        """Gradient of the energy w.r.t. the packed vector."""
        parts: List[NDArray] = []

        if self._learn_magn_sigma2():
            g = -self._magn_sigma2_prior.log_density_gradient(self._magn_sigma2)
            parts.append(np.array([g[0] * self._magn_sigma2 - 1.0]))
            parts.append(g[1:])

        if isinstance(self._owner, DelegatedLengthScale):
            parts.append(-self._owner.metric.log_prior_gradient())
        elif self._learn_local_length_scale():
            values = self._owner.values
            k = values.size
            g = -self._owner.prior.log_density_gradient(values)
            parts.append(g[:k] * values - 1.0)
            parts.append(g[k:])

        return np.concatenate(parts) if parts else np.zeros(0)

    # -------------------------------------------------------------------------
    # Hyperparameter gradients
    # -------------------------------------------------------------------------

    def ghyper(
        self,
        x: NDArray,
        x2: Optional[NDArray] = None,
        mask=None,
    ) -> Tuple[List[NDArray], NDArray]:
        """
        Gradients of the covariance w.r.t. the log hyperparameters.

        - ∂K/∂(log σ²) = K
        - ∂K/∂(log l) = K ⊙ r² (isotropic)
        - ∂K/∂(log lᵢ) = K ⊙ (xᵢ - x'ᵢ)² / lᵢ² (ARD)
        - with a metric: ∂K/∂(log θ) = -K ⊙ r ⊙ ∂r/∂(log θ)

        Args:
            x: (N, D)
            x2: (N2, D). If given, gradients of K(x, x2) instead of K(x, x).
            mask: If given (and x2 is not), gradients of the diagonal only.
                  The σ² entry is the variance vector and every length-scale
                  entry is a zero vector, as a point's distance to itself is 0.

        Returns:
            gradients: One matrix (or diagonal vector) per covariance
                       hyperparameter, in packed order
            prior_gradients: Gradient of the energy w.r.t. the packed vector
        """
        if mask is not None:
            if x2 is not None:
                raise UnsupportedCombinationError("Masked gradients are defined only for the training covariance")
            return self._ghyper_diagonal(x), self._prior_gradients()

        x1, x2_ = self._inputs(x, x2)
        K = self.trcov(x1) if x2 is None else self.cov(x1, x2_)

        grads: List[NDArray] = []
        if self._learn_magn_sigma2():
            grads.append(K.copy())

        if isinstance(self._owner, DelegatedLengthScale):
            metric = self._owner.metric
            dist = metric.distance(x1, x2)
            for distg in metric.distance_gradient_wrt_own_params(x1, x2):
                grads.append(-K * dist * distg)
        elif self._learn_local_length_scale():
            s2 = self._inv_sq_scales(x1.shape[1])
            if self._owner.isotropic:
                grads.append(K * s2[0] * squared_distance(x1, x2_))
            else:
                for i in range(x1.shape[1]):
                    grads.append(K * s2[i] * pairwise_difference(x1, x2_, i) ** 2)

        return grads, self._prior_gradients()

    def _ghyper_diagonal(self, x: NDArray) -> List[NDArray]:
        n = np.atleast_2d(x).shape[0]
        grads: List[NDArray] = []

        if self._learn_magn_sigma2():
            grads.append(self.trvar(x))

        if isinstance(self._owner, DelegatedLengthScale):
            for _ in self._owner.metric.distance_gradient_wrt_own_params(x, mask=True):
                grads.append(np.zeros(n))
        elif self._learn_local_length_scale():
            for _ in range(self._owner.values.size):
                grads.append(np.zeros(n))

        return grads

    def ghypergrad(self, x: NDArray) -> List[NDArray]:
        """
        Hyperparameter gradients of the observation-derivative covariance.

        The covariance between derivatives ∂f/∂xᵢ and values f is the stack
        of ginput4 blocks [∂K/∂x₁; ...; ∂K/∂x_D], shape (D·N, N). Returned
        are its derivatives w.r.t. log σ² and the log length-scale(s):
        - σ²: the stacked matrix itself
        - isotropic l: block i scaled by (r² - 2)
        - ARD lₖ: block k scaled by ((xₖ - x'ₖ)²/lₖ² - 2), others by (xₖ - x'ₖ)²/lₖ²

        Args:
            x: (N, D)

        Returns:
            One (D·N, N) matrix per covariance hyperparameter
        """
        owner = self._require_local("ghypergrad")
        x = np.atleast_2d(np.asarray(x, dtype=float))
        m = x.shape[1]
        cdm = self.ginput4(x)

        grads: List[NDArray] = []
        if self._learn_magn_sigma2():
            grads.append(np.vstack(cdm))

        if is_free(owner.prior):
            s2 = self._inv_sq_scales(m)
            if owner.isotropic:
                dist = squared_distance(x, x) * s2[0]
                grads.append(np.vstack([block * (dist - 2.0) for block in cdm]))
            else:
                scaled = [pairwise_difference(x, x, i) ** 2 * s2[i] for i in range(m)]
                for k in range(m):
                    blocks = [cdm[j] * (scaled[k] - 2.0) if j == k else cdm[j] * scaled[k] for j in range(m)]
                    grads.append(np.vstack(blocks))

        return grads

    def ghypergrad2(self, x: NDArray) -> List[NDArray]:
        """
        Hyperparameter gradients of the derivative-derivative covariance.

        The covariance between ∂f/∂xᵢ and ∂f/∂xⱼ is a (D·N, D·N) block matrix
        with same-dimension blocks from ginput2 on the diagonal and
        cross-dimension blocks from ginput3 off it. With t = r² (isotropic)
        or t = (xₖ - x'ₖ)²/lₖ² (ARD lₖ), the length-scale derivative scales
        the two ginput2 constituents by (t - 2) and (t - 4) and cross blocks
        by (t - 4) when both differentiated dimensions share the scale, by
        (t - 2) when one does, and by t when neither does.

        Args:
            x: (N, D)

        Returns:
            One (D·N, D·N) matrix per covariance hyperparameter

        Raises:
            UnsupportedCombinationError: a metric is attached, or σ² has no prior
        """
        owner = self._require_local("ghypergrad2")
        if not self._learn_magn_sigma2():
            raise UnsupportedCombinationError("ghypergrad2 requires a prior on magn_sigma2")

        x = np.atleast_2d(np.asarray(x, dtype=float))
        m = x.shape[1]
        dkdd, dkdd1, dkdd2 = self.ginput2(x, x)
        cross = self.ginput3(x, x) if m > 1 else []

        grads = [assemble_block_matrix(dkdd, cross)]

        if is_free(owner.prior):
            s2 = self._inv_sq_scales(m)
            if owner.isotropic:
                t = squared_distance(x, x) * s2[0]
                diagonal = [dkdd1[i] * (t - 2.0) - dkdd2[i] * (t - 4.0) for i in range(m)]
                off_diagonal = [block * (t - 4.0) for block in cross]
                grads.append(assemble_block_matrix(diagonal, off_diagonal))
            else:
                scaled = [pairwise_difference(x, x, i) ** 2 * s2[i] for i in range(m)]
                for k in range(m):
                    t = scaled[k]
                    diagonal = [
                        dkdd1[i] * (t - 2.0) - dkdd2[i] * (t - 4.0) if i == k else (dkdd1[i] - dkdd2[i]) * t
                        for i in range(m)
                    ]
                    off_diagonal = [
                        block * (t - 2.0) if k in pair else block * t
                        for block, pair in zip(cross, dimension_pairs(m))
                    ]
                    grads.append(assemble_block_matrix(diagonal, off_diagonal))

        return grads

    # -------------------------------------------------------------------------
    # Input gradients
    # -------------------------------------------------------------------------

    def ginput(self, x: NDArray, x2: Optional[NDArray] = None) -> List[NDArray]:
        """
        Gradients of the covariance w.r.t. each scalar input coordinate.

        Entry d·N + j is ∂K/∂x[j, d]. For K(x, x) the perturbed point appears
        in both row j and column j; for K(x, x2) only row j changes.

        Args:
            x: (N, D)
            x2: (N2, D), optional

        Returns:
            N·D matrices of shape (N, N) or (N, N2)
        """
        self._require_local("ginput")
        symmetric = x2 is None
        x1, x2_ = self._inputs(x, x2)
        n, m = x1.shape
        K = self.trcov(x1) if symmetric else self.cov(x1, x2_)
        s2 = self._inv_sq_scales(m)

        grads = []
        for i in range(m):
            for j in range(n):
                dk = np.zeros_like(K)
                dk[j, :] = -s2[i] * (x1[j, i] - x2_[:, i])
                if symmetric:
                    dk = dk + dk.T
                grads.append(dk * K)
        return grads

    def ginput2(self, x: NDArray, x2: NDArray) -> Tuple[List[NDArray], List[NDArray], List[NDArray]]:
        """
        Second derivatives ∂²K/∂xᵢ∂x'ᵢ in the same dimension.

        ∂²k/∂xᵢ∂x'ᵢ = K/lᵢ² - (xᵢ - x'ᵢ)² K/lᵢ⁴

        Args:
            x: (N, D)
            x2: (N2, D)

        Returns:
            DKff: per dimension, the second derivative (= DKff1 - DKff2)
            DKff1: per dimension, K/lᵢ²
            DKff2: per dimension, (xᵢ - x'ᵢ)² K/lᵢ⁴
        """
        self._require_local("ginput2")
        x1, x2 = self._inputs(x, x2)
        K = self.trcov(x1) if np.array_equal(x1, x2) else self.cov(x1, x2)
        s2 = self._inv_sq_scales(x1.shape[1])

        dkff, dkff1, dkff2 = [], [], []
        for i in range(x1.shape[1]):
            dk1 = s2[i] * K
            dk2 = s2[i] ** 2 * pairwise_difference(x1, x2, i) ** 2 * K
            dkff1.append(dk1)
            dkff2.append(dk2)
            dkff.append(dk1 - dk2)
        return dkff, dkff1, dkff2

    def ginput3(self, x: NDArray, x2: NDArray) -> List[NDArray]:
        """
        Second derivatives ∂²K/∂xᵢ∂x'ⱼ across different dimensions.

        ∂²k/∂xᵢ∂x'ⱼ = -(xᵢ - x'ᵢ)(xⱼ - x'ⱼ) K/(lᵢ² lⱼ²)

        Args:
            x: (N, D)
            x2: (N2, D)

        Returns:
            One matrix per dimension pair (i, j), i < j, in the order
            (0,1), (0,2), ..., (1,2), ...
        """
        self._require_local("ginput3")
        x1, x2 = self._inputs(x, x2)
        K = self.trcov(x1) if np.array_equal(x1, x2) else self.cov(x1, x2)
        s2 = self._inv_sq_scales(x1.shape[1])

        return [
            s2[j] * pairwise_difference(x1, x2, j) * (-s2[i] * pairwise_difference(x1, x2, i) * K)
            for i, j in dimension_pairs(x1.shape[1])
        ]

    def ginput4(self, x: NDArray, x2: Optional[NDArray] = None) -> List[NDArray]:
        """
        Derivative of the covariance w.r.t. its first argument, per dimension.

        Block i is ∂k(xₐ, x'_b)/∂xₐ,ᵢ = -(xₐ,ᵢ - x'_b,ᵢ) K/lᵢ² for all a, b.

        Args:
            x: (N, D)
            x2: (N2, D). Must differ from x; use x2=None for K(x, x).

        Returns:
            D matrices of shape (N, N) or (N, N2)
        """
        self._require_local("ginput4")
        if x2 is None:
            x1, x2_ = self._inputs(x)
            K = self.trcov(x1)
        else:
            x1, x2_ = self._inputs(x, x2)
            if np.array_equal(x1, x2_):
                raise UnsupportedCombinationError("ginput4 with x2 equal to x: call it without x2")
            K = self.cov(x1, x2_)

        s2 = self._inv_sq_scales(x1.shape[1])
        return [-s2[i] * pairwise_difference(x1, x2_, i) * K for i in range(x1.shape[1])]

    # -------------------------------------------------------------------------
    # Sample history
    # -------------------------------------------------------------------------

    def recappend(self, record: Optional[SexpRecord] = None, index: Optional[int] = None) -> SexpRecord:
        """
        Initialize or extend the sample history of the hyperparameters.

        Called without a record, returns an empty history with this instance
        as the template: only parameters with a (non-fixed) prior are
        recorded, and the length-scale is left out while a metric owns it.
        Called with a record and an index, returns a new record with the
        current values stored at row ``index``.

        Args:
            record: History to extend
            index: Sample number (0-based)

        Returns:
            New record
        """
        local = self._learn_local_length_scale()

        if record is None:
            priors = {}
            magn_history = None
            length_history = None
            if self._learn_magn_sigma2():
                magn_history = np.empty((0, 1))
                priors["magn_sigma2"] = self._magn_sigma2_prior.recappend()
            if local:
                length_history = np.empty((0, self._owner.values.size))
                priors["length_scale"] = self._owner.prior.recappend()
            return SexpRecord(magn_sigma2=magn_history, length_scale=length_history, priors=priors)

        if index is None:
            raise TypeError("recappend needs a sample index when extending a record")

        priors = dict(record.priors)
        magn_history = record.magn_sigma2
        length_history = record.length_scale

        if local:
            prior = self._owner.prior
            length_history = set_row(length_history, index, self._owner.values)
            priors["length_scale"] = prior.recappend(priors.get("length_scale") or prior.recappend(), index)

        if self._learn_magn_sigma2():
            prior = self._magn_sigma2_prior
            magn_history = set_row(magn_history, index, self._magn_sigma2)
            priors["magn_sigma2"] = prior.recappend(priors.get("magn_sigma2") or prior.recappend(), index)

        return SexpRecord(
            magn_sigma2=magn_history,
            length_scale=length_history,
            priors=priors,
            record_type=record.record_type,
        )

    def __repr__(self) -> str:
        if isinstance(self._owner, DelegatedLengthScale):
            scale = f"metric={self._owner.metric!r}"
        else:
            scale = f"length_scale={self._owner.values}"
        return f"SquaredExponential(magn_sigma2={self._magn_sigma2:.4f}, {scale})"


def create_sexp_kernel(
    input_dim: Optional[int] = None,
    magn_sigma2: float = 0.1,
    length_scale: Optional[Union[float, Sequence[float], NDArray]] = None,
    ard: bool = False,
) -> SquaredExponential:
    """
    Create a squared exponential covariance function with default priors.

    Args:
        input_dim: Number of input dimensions (needed for ARD defaults)
        magn_sigma2: Initial magnitude
        length_scale: Initial length-scale(s). Defaults to ones.
        ard: One length-scale per input dimension

    Returns:
        SquaredExponential covariance function
    """
    if length_scale is None:
        if ard:
            if input_dim is None:
                raise InvalidParameterError("input_dim is required for ARD default length-scales")
            length_scale = np.ones(input_dim)
        else:
            length_scale = 1.0
    return SquaredExponential(magn_sigma2=magn_sigma2, length_scale=length_scale)
