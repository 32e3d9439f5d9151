"""
Hyperparameter Priors

Prior distributions attached to covariance function hyperparameters:
- Uniform, SqrtUniform, LogUniform: improper priors without parameters
- Gaussian, LogGaussian, Gamma, StudentT: proper priors whose own parameters
  may carry hyperpriors
- FixedPrior (the FIXED sentinel): parameter is held constant

Every prior parameter that has a hyperprior is free: it is packed into the
optimizer's parameter vector (variances, scales and degrees of freedom in log
space, locations as-is) and contributes to the energy and its gradient. Prior
instances are immutable; ``unpack`` returns a new instance.

Densities are evaluated with scipy.stats. Gradients are analytic.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy import stats
from scipy.special import digamma

from .exceptions import DimensionError, InvalidParameterError
from .records import PriorRecord, set_row

logger = logging.getLogger(__name__)


# =============================================================================
# Base Prior Class
# =============================================================================


class Prior(ABC):
    """
    Abstract base class for hyperparameter priors.

    Subclasses declare their parameters in ``param_specs`` as
    ``(name, log_transformed)`` pairs and implement:
    - _lp(x): Σ log p(xᵢ)
    - _lpg(x): ∂/∂xᵢ of the above, elementwise
    - _lpg_params(x): ∂/∂param of the above for each untransformed parameter
    """

    prior_type: str = "prior"
    param_specs: Tuple[Tuple[str, bool], ...] = ()

    def __init__(
        self,
        params: Optional[Dict[str, float]] = None,
        hyperpriors: Optional[Dict[str, Optional["Prior"]]] = None,
    ):
        self._params: Dict[str, float] = {k: float(v) for k, v in (params or {}).items()}
        self._hyperpriors: Dict[str, Optional[Prior]] = dict(hyperpriors or {})
        self._validate()

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def _lp(self, x: NDArray) -> float:
        pass

    @abstractmethod
    def _lpg(self, x: NDArray) -> NDArray:
        pass

    def _lpg_params(self, x: NDArray) -> Dict[str, float]:
        return {}

    def _validate(self) -> None:
        for name, log_transformed in self.param_specs:
            value = self._params[name]
            if not np.isfinite(value):
                raise InvalidParameterError(f"{self.prior_type}: {name} must be finite, got {value}")
            if log_transformed and value <= 0:
                raise InvalidParameterError(f"{self.prior_type}: {name} must be positive, got {value}")

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def fixed(self) -> bool:
        """True for the sentinel that excludes a parameter from learning."""
        return False

    @property
    def params(self) -> Dict[str, float]:
        """Current parameter values (untransformed)."""
        return dict(self._params)

    def hyperprior(self, name: str) -> Optional["Prior"]:
        """Hyperprior attached to parameter ``name``, if any."""
        return self._hyperpriors.get(name)

    def _free_params(self) -> List[Tuple[str, bool, "Prior"]]:
        free = []
        for name, log_transformed in self.param_specs:
            hp = self._hyperpriors.get(name)
            if hp is not None and not hp.fixed:
                free.append((name, log_transformed, hp))
        return free

    @property
    def n_params(self) -> int:
        """Length of the packed vector, including nested hyperpriors."""
        return sum(1 + hp.n_params for _, _, hp in self._free_params())

    # -------------------------------------------------------------------------
    # Density
    # -------------------------------------------------------------------------

    def log_density(self, x) -> float:
        """
        Log density of ``x`` plus the contribution of free prior parameters.

        Args:
            x: Scalar or vector of parameter values (untransformed)

        Returns:
            Σ log p(xᵢ) + Σ_free [log hyperprior(θ) + log-Jacobian]
        """
        x = np.atleast_1d(np.asarray(x, dtype=float))
        lp = self._lp(x)
        for name, log_transformed, hp in self._free_params():
            value = self._params[name]
            lp += hp.log_density(value)
            if log_transformed:
                lp += np.log(value)
        return float(lp)

    def log_density_gradient(self, x) -> NDArray:
        """
        Gradient of ``log_density``.

        Returns:
            [∂/∂x₁, ..., ∂/∂x_L, then for each free parameter its gradient in
            packed space followed by its hyperprior's own free parameters]
        """
        x = np.atleast_1d(np.asarray(x, dtype=float))
        grads = [np.asarray(self._lpg(x), dtype=float).ravel()]
        dparams = self._lpg_params(x)
        for name, log_transformed, hp in self._free_params():
            value = self._params[name]
            hg = hp.log_density_gradient(value)
            g = dparams.get(name, 0.0) + hg[0]
            if log_transformed:
                g = g * value + 1.0
            grads.append(np.array([g]))
            grads.append(hg[1:])
        return np.concatenate(grads)

    # -------------------------------------------------------------------------
    # Packing
    # -------------------------------------------------------------------------

    def pack(self) -> Tuple[NDArray, List[str]]:
        """
        Flatten free prior parameters.

        Returns:
            w: Packed values
            labels: Human-readable name per entry
        """
        w: List[float] = []
        labels: List[str] = []
        for name, log_transformed, hp in self._free_params():
            value = self._params[name]
            if log_transformed:
                w.append(np.log(value))
                labels.append(f"log({self.prior_type}.{name})")
            else:
                w.append(value)
                labels.append(f"{self.prior_type}.{name}")
            wh, lh = hp.pack()
            w.extend(wh)
            labels.extend(lh)
        return np.asarray(w, dtype=float), labels

    def unpack(self, w) -> Tuple["Prior", NDArray]:
        """
        Restore free prior parameters from the head of ``w``.

        Returns:
            New prior and the unconsumed remainder of ``w``
        """
        w = np.asarray(w, dtype=float).ravel()
        params = dict(self._params)
        hyperpriors = dict(self._hyperpriors)
        for name, log_transformed, hp in self._free_params():
            if w.size < 1:
                raise DimensionError(f"{self.prior_type}: parameter vector too short to unpack {name}")
            value = float(np.exp(w[0])) if log_transformed else float(w[0])
            if not np.isfinite(value) or (log_transformed and value <= 0):
                raise DimensionError(f"{self.prior_type}: unpacked {name}={value} is not valid")
            params[name] = value
            hyperpriors[name], w = hp.unpack(w[1:])
            logger.debug("%s: unpacked %s=%.6g", self.prior_type, name, value)
        return self._replace(params, hyperpriors), w

    def _replace(self, params: Dict[str, float], hyperpriors: Dict[str, Optional["Prior"]]) -> "Prior":
        new = copy.copy(self)
        new._params = params
        new._hyperpriors = hyperpriors
        new._validate()
        return new

    # -------------------------------------------------------------------------
    # Sample history
    # -------------------------------------------------------------------------

    def recappend(self, record: Optional[PriorRecord] = None, index: Optional[int] = None) -> PriorRecord:
        """
        Initialize or extend a sample history of the free prior parameters.

        Called without a record, returns an empty history shaped after this
        prior. Called with a record and an index, returns a new record with
        the current values stored at row ``index``.
        """
        if record is None:
            return PriorRecord(
                prior_type=self.prior_type,
                params={name: np.empty((0, 1)) for name, _, _ in self._free_params()},
                hyperpriors={name: hp.recappend() for name, _, hp in self._free_params()},
            )

        if index is None:
            raise TypeError("recappend needs a sample index when extending a record")

        params = dict(record.params)
        hyperpriors = dict(record.hyperpriors)
        for name, _, hp in self._free_params():
            params[name] = set_row(params.get(name), index, self._params[name])
            hyperpriors[name] = hp.recappend(hyperpriors.get(name) or hp.recappend(), index)
        return PriorRecord(prior_type=record.prior_type, params=params, hyperpriors=hyperpriors)

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v:.4g}" for k, v in self._params.items())
        return f"{type(self).__name__}({args})"


# =============================================================================
# Fixed Sentinel
# =============================================================================


class FixedPrior(Prior):
    """Marks a parameter as fixed: it is not packed, sampled or recorded."""

    prior_type = "fixed"

    @property
    def fixed(self) -> bool:
        return True

    def _lp(self, x: NDArray) -> float:
        return 0.0

    def _lpg(self, x: NDArray) -> NDArray:
        return np.zeros_like(x)


FIXED = FixedPrior()


def is_free(prior: Optional[Prior]) -> bool:
    """True if a parameter with this prior takes part in learning."""
    return prior is not None and not prior.fixed


# =============================================================================
# Improper Priors
# =============================================================================


class Uniform(Prior):
    """Improper flat prior, p(θ) ∝ 1."""

    prior_type = "unif"

    def _lp(self, x: NDArray) -> float:
        return 0.0

    def _lpg(self, x: NDArray) -> NDArray:
        return np.zeros_like(x)


class SqrtUniform(Prior):
    """Flat prior on √θ, p(θ) ∝ 1 / (2√θ)."""

    prior_type = "sqrtunif"

    def _lp(self, x: NDArray) -> float:
        return float(-np.sum(np.log(2.0 * np.sqrt(x))))

    def _lpg(self, x: NDArray) -> NDArray:
        return -1.0 / (2.0 * x)


class LogUniform(Prior):
    """Flat prior on log θ, p(θ) ∝ 1/θ."""

    prior_type = "logunif"

    def _lp(self, x: NDArray) -> float:
        return float(-np.sum(np.log(x)))

    def _lpg(self, x: NDArray) -> NDArray:
        return -1.0 / x


# =============================================================================
# Proper Priors
# =============================================================================


class Gaussian(Prior):
    """
    Gaussian prior N(θ | μ, s²).

    Args:
        mu: Location μ
        s2: Variance s²
        mu_prior: Hyperprior on μ (makes μ free)
        s2_prior: Hyperprior on s² (makes s² free, packed as log s²)
    """

    prior_type = "gaussian"
    param_specs = (("mu", False), ("s2", True))

    def __init__(
        self,
        mu: float = 0.0,
        s2: float = 1.0,
        mu_prior: Optional[Prior] = None,
        s2_prior: Optional[Prior] = None,
    ):
        super().__init__({"mu": mu, "s2": s2}, {"mu": mu_prior, "s2": s2_prior})

    @property
    def mu(self) -> float:
        return self._params["mu"]

    @property
    def s2(self) -> float:
        return self._params["s2"]

    def _lp(self, x: NDArray) -> float:
        return float(np.sum(stats.norm.logpdf(x, loc=self.mu, scale=np.sqrt(self.s2))))

    def _lpg(self, x: NDArray) -> NDArray:
        return -(x - self.mu) / self.s2

    def _lpg_params(self, x: NDArray) -> Dict[str, float]:
        r = x - self.mu
        return {
            "mu": float(np.sum(r) / self.s2),
            "s2": float(np.sum(-0.5 / self.s2 + 0.5 * r**2 / self.s2**2)),
        }


class LogGaussian(Prior):
    """
    Log-Gaussian prior: log θ ~ N(μ, s²).

    Args:
        mu: Location of log θ
        s2: Variance of log θ
        mu_prior: Hyperprior on μ
        s2_prior: Hyperprior on s²
    """

    prior_type = "loggaussian"
    param_specs = (("mu", False), ("s2", True))

    def __init__(
        self,
        mu: float = 0.0,
        s2: float = 1.0,
        mu_prior: Optional[Prior] = None,
        s2_prior: Optional[Prior] = None,
    ):
        super().__init__({"mu": mu, "s2": s2}, {"mu": mu_prior, "s2": s2_prior})

    @property
    def mu(self) -> float:
        return self._params["mu"]

    @property
    def s2(self) -> float:
        return self._params["s2"]

    def _lp(self, x: NDArray) -> float:
        return float(np.sum(stats.lognorm.logpdf(x, s=np.sqrt(self.s2), scale=np.exp(self.mu))))

    def _lpg(self, x: NDArray) -> NDArray:
        return -1.0 / x - (np.log(x) - self.mu) / (self.s2 * x)

    def _lpg_params(self, x: NDArray) -> Dict[str, float]:
        r = np.log(x) - self.mu
        return {
            "mu": float(np.sum(r) / self.s2),
            "s2": float(np.sum(-0.5 / self.s2 + 0.5 * r**2 / self.s2**2)),
        }


class Gamma(Prior):
    """
    Gamma prior with shape a and inverse scale (rate) b.

    p(θ) = bᵃ θ^(a-1) exp(-bθ) / Γ(a)
    """

    prior_type = "gamma"
    param_specs = (("shape", True), ("inv_scale", True))

    def __init__(
        self,
        shape: float = 4.0,
        inv_scale: float = 1.0,
        shape_prior: Optional[Prior] = None,
        inv_scale_prior: Optional[Prior] = None,
    ):
        super().__init__(
            {"shape": shape, "inv_scale": inv_scale},
            {"shape": shape_prior, "inv_scale": inv_scale_prior},
        )

    @property
    def shape(self) -> float:
        return self._params["shape"]

    @property
    def inv_scale(self) -> float:
        return self._params["inv_scale"]

    def _lp(self, x: NDArray) -> float:
        return float(np.sum(stats.gamma.logpdf(x, a=self.shape, scale=1.0 / self.inv_scale)))

    def _lpg(self, x: NDArray) -> NDArray:
        return (self.shape - 1.0) / x - self.inv_scale

    def _lpg_params(self, x: NDArray) -> Dict[str, float]:
        a, b = self.shape, self.inv_scale
        return {
            "shape": float(np.sum(np.log(b) - digamma(a) + np.log(x))),
            "inv_scale": float(np.sum(a / b - x)),
        }


class StudentT(Prior):
    """
    Student-t prior with location μ, scale² s² and ν degrees of freedom.

    Heavier tails than the Gaussian; ν → ∞ recovers N(μ, s²).
    """

    prior_type = "t"
    param_specs = (("mu", False), ("s2", True), ("nu", True))

    def __init__(
        self,
        mu: float = 0.0,
        s2: float = 1.0,
        nu: float = 4.0,
        mu_prior: Optional[Prior] = None,
        s2_prior: Optional[Prior] = None,
        nu_prior: Optional[Prior] = None,
    ):
        super().__init__(
            {"mu": mu, "s2": s2, "nu": nu},
            {"mu": mu_prior, "s2": s2_prior, "nu": nu_prior},
        )

    @property
    def mu(self) -> float:
        return self._params["mu"]

    @property
    def s2(self) -> float:
        return self._params["s2"]

    @property
    def nu(self) -> float:
        return self._params["nu"]

    def _lp(self, x: NDArray) -> float:
        return float(np.sum(stats.t.logpdf(x, df=self.nu, loc=self.mu, scale=np.sqrt(self.s2))))

    def _lpg(self, x: NDArray) -> NDArray:
        r = x - self.mu
        return -(self.nu + 1.0) * r / (self.nu * self.s2 + r**2)

    def _lpg_params(self, x: NDArray) -> Dict[str, float]:
        mu, s2, nu = self.mu, self.s2, self.nu
        r = x - mu
        denom = nu * s2 + r**2
        d_nu = (
            0.5 * (digamma((nu + 1.0) / 2.0) - digamma(nu / 2.0))
            - 0.5 / nu
            - 0.5 * np.log1p(r**2 / (nu * s2))
            + (nu + 1.0) * r**2 / (2.0 * nu * denom)
        )
        return {
            "mu": float(np.sum((nu + 1.0) * r / denom)),
            "s2": float(np.sum(-0.5 / s2 + (nu + 1.0) * r**2 / (2.0 * s2 * denom))),
            "nu": float(np.sum(d_nu)),
        }


PRIOR_TYPES: Dict[str, type] = {
    "unif": Uniform,
    "uniform": Uniform,
    "sqrtunif": SqrtUniform,
    "sqrt_uniform": SqrtUniform,
    "logunif": LogUniform,
    "log_uniform": LogUniform,
    "gaussian": Gaussian,
    "loggaussian": LogGaussian,
    "log_gaussian": LogGaussian,
    "gamma": Gamma,
    "t": StudentT,
    "student_t": StudentT,
}
