"""
Finite-Difference Gradient Checks

Central-difference references for every analytic derivative a covariance
function provides. Hyperparameters are perturbed in log space through
``reconfigure``, inputs by shifting coordinates, and second input
derivatives by differentiating the analytic first derivative (ginput4)
w.r.t. its second argument, which keeps the step error first-order.

Example:
    >>> results = check_kernel_gradients(kernel, X)
    >>> failed = [r for r in results if not r.passed]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from ..gp.blocks import assemble_block_matrix, dimension_pairs
from ..gp.kernels import SquaredExponential
from ..gp.priors import is_free

logger = logging.getLogger(__name__)


@dataclass
class GradientCheckConfig:
    """Finite-difference settings."""

    step: float = 1e-6
    rtol: float = 1e-5
    atol: float = 1e-6

    def __post_init__(self):
        if self.step <= 0:
            raise ValueError(f"step must be positive, got {self.step}")
        if self.rtol < 0 or self.atol < 0:
            raise ValueError("Tolerances must be non-negative")


@dataclass
class GradientCheckResult:
    """Outcome of comparing one analytic gradient family to finite differences."""

    name: str
    n_matrices: int
    max_abs_error: float
    passed: bool

    def __str__(self) -> str:
        status = "ok" if self.passed else "FAILED"
        return f"{self.name:24s}: {status:6s} max|Δ|={self.max_abs_error:.2e} ({self.n_matrices} matrices)"


def central_difference(f: Callable[[float], NDArray], step: float) -> NDArray:
    """(f(h) - f(-h)) / 2h"""
    return (np.asarray(f(step)) - np.asarray(f(-step))) / (2.0 * step)


# =============================================================================
# Perturbations
# =============================================================================


def log_parameter_shifts(kernel: SquaredExponential) -> List[Tuple[str, Callable[[float], SquaredExponential]]]:
    """
    One perturbation per covariance hyperparameter, in ``ghyper`` order.

    Each callable maps a log-space step h to a kernel whose parameter is
    multiplied by exp(h).
    """
    shifts = []

    if is_free(kernel.magn_sigma2_prior):
        magn_sigma2 = kernel.magn_sigma2
        shifts.append(("magn_sigma2", lambda h: kernel.reconfigure(magn_sigma2=magn_sigma2 * np.exp(h))))

    if kernel.metric is not None:
        length_scale = kernel.metric.length_scale
        learn = is_free(kernel.metric.length_scale_prior)
    else:
        length_scale = kernel.length_scale
        learn = is_free(kernel.length_scale_prior)

    if learn:
        for k in range(length_scale.size):
            unit = np.zeros(length_scale.size)
            unit[k] = 1.0
            shifts.append(
                (
                    f"length_scale[{k}]",
                    lambda h, unit=unit: kernel.reconfigure(length_scale=length_scale * np.exp(h * unit)),
                )
            )

    return shifts


def _shift_column(x: NDArray, dim: int, h: float, row: Optional[int] = None) -> NDArray:
    shifted = np.array(x, dtype=float, copy=True)
    if row is None:
        shifted[:, dim] += h
    else:
        shifted[row, dim] += h
    return shifted


# =============================================================================
# Derivative-observation covariances
# =============================================================================


def derivative_value_covariance(kernel: SquaredExponential, x: NDArray) -> NDArray:
    """Covariance between ∂f/∂xᵢ (stacked over i) and f, shape (D·N, N)."""
    return np.vstack(kernel.ginput4(x))


def derivative_derivative_covariance(kernel: SquaredExponential, x: NDArray) -> NDArray:
    """Covariance between ∂f/∂xᵢ and ∂f/∂xⱼ for all i, j, shape (D·N, D·N)."""
    x = np.atleast_2d(x)
    dkdd = kernel.ginput2(x, x)[0]
    cross = kernel.ginput3(x, x) if x.shape[1] > 1 else []
    return assemble_block_matrix(dkdd, cross)


# =============================================================================
# Numerical references
# =============================================================================


def numerical_ghyper(kernel: SquaredExponential, x: NDArray, x2: Optional[NDArray] = None, step: float = 1e-6):
    """Finite-difference counterpart of ``ghyper`` (non-masked)."""
    if x2 is None:
        return [central_difference(lambda h, s=shift: s(h).trcov(x), step) for _, shift in log_parameter_shifts(kernel)]
    return [central_difference(lambda h, s=shift: s(h).cov(x, x2), step) for _, shift in log_parameter_shifts(kernel)]


def numerical_ghypergrad(kernel: SquaredExponential, x: NDArray, step: float = 1e-6) -> List[NDArray]:
    return [
        central_difference(lambda h, s=shift: derivative_value_covariance(s(h), x), step)
        for _, shift in log_parameter_shifts(kernel)
    ]


def numerical_ghypergrad2(kernel: SquaredExponential, x: NDArray, step: float = 1e-6) -> List[NDArray]:
    return [
        central_difference(lambda h, s=shift: derivative_derivative_covariance(s(h), x), step)
        for _, shift in log_parameter_shifts(kernel)
    ]


def numerical_energy_gradient(kernel: SquaredExponential, step: float = 1e-6) -> NDArray:
    """Finite-difference gradient of ``energy`` w.r.t. the packed vector."""
    w, _ = kernel.pack()
    grad = np.zeros(w.size)
    for k in range(w.size):
        unit = np.zeros(w.size)
        unit[k] = 1.0
        grad[k] = central_difference(lambda h: kernel.unpack(w + h * unit)[0].energy(), step)
    return grad


def numerical_ginput(kernel: SquaredExponential, x: NDArray, x2: Optional[NDArray] = None, step: float = 1e-6):
    """Finite-difference counterpart of ``ginput``, ordered dimension-major."""
    x = np.atleast_2d(np.asarray(x, dtype=float))
    n, m = x.shape
    grads = []
    for i in range(m):
        for j in range(n):
            if x2 is None:
                grads.append(central_difference(lambda h: kernel.trcov(_shift_column(x, i, h, j)), step))
            else:
                grads.append(central_difference(lambda h: kernel.cov(_shift_column(x, i, h, j), x2), step))
    return grads


def numerical_ginput4(kernel: SquaredExponential, x: NDArray, x2: Optional[NDArray] = None, step: float = 1e-6):
    """Derivatives of K(x, x2) w.r.t. the first argument, one block per dimension."""
    x = np.atleast_2d(np.asarray(x, dtype=float))
    x2 = x if x2 is None else np.atleast_2d(np.asarray(x2, dtype=float))
    return [
        central_difference(lambda h: kernel.cov(_shift_column(x, i, h), x2), step) for i in range(x.shape[1])
    ]


def numerical_ginput2(
    kernel: SquaredExponential, x: NDArray, x2: Optional[NDArray] = None, step: float = 1e-6
) -> List[NDArray]:
    """∂/∂x'ᵢ of the analytic ∂K/∂xᵢ, per dimension."""
    x = np.atleast_2d(np.asarray(x, dtype=float))
    x2 = x if x2 is None else np.atleast_2d(np.asarray(x2, dtype=float))
    return [
        central_difference(lambda h: kernel.ginput4(x, _shift_column(x2, i, h))[i], step) for i in range(x.shape[1])
    ]


def numerical_ginput3(
    kernel: SquaredExponential, x: NDArray, x2: Optional[NDArray] = None, step: float = 1e-6
) -> List[NDArray]:
    """∂/∂x'ⱼ of the analytic ∂K/∂xᵢ, per dimension pair (i, j)."""
    x = np.atleast_2d(np.asarray(x, dtype=float))
    x2 = x if x2 is None else np.atleast_2d(np.asarray(x2, dtype=float))
    return [
        central_difference(lambda h: kernel.ginput4(x, _shift_column(x2, j, h))[i], step)
        for i, j in dimension_pairs(x.shape[1])
    ]


# =============================================================================
# Driver
# =============================================================================


def compare(name: str, analytic, numeric, config: GradientCheckConfig) -> GradientCheckResult:
    """Compare matrix lists elementwise."""
    analytic = [np.asarray(a) for a in analytic]
    numeric = [np.asarray(b) for b in numeric]
    if len(analytic) != len(numeric):
        logger.warning("%s: %d analytic vs %d numerical matrices", name, len(analytic), len(numeric))
        return GradientCheckResult(name, len(analytic), float("inf"), False)

    max_err = 0.0
    passed = True
    for a, b in zip(analytic, numeric):
        if a.shape != b.shape:
            logger.warning("%s: shape %s vs %s", name, a.shape, b.shape)
            return GradientCheckResult(name, len(analytic), float("inf"), False)
        if a.size:
            max_err = max(max_err, float(np.max(np.abs(a - b))))
        passed = passed and bool(np.allclose(a, b, rtol=config.rtol, atol=config.atol))

    result = GradientCheckResult(name, len(analytic), max_err, passed)
    logger.debug("%s", result)
    return result


def check_kernel_gradients(
    kernel: SquaredExponential,
    x: NDArray,
    x2: Optional[NDArray] = None,
    config: Optional[GradientCheckConfig] = None,
) -> List[GradientCheckResult]:
    """
    Check every analytic gradient family of ``kernel`` at ``x``.

    Input-derivative families are skipped while a metric is attached, and
    ghypergrad2 while magn_sigma2 has no prior, as the kernel does not
    define them there.

    Args:
        kernel: Covariance function to check
        x: (N, D) inputs
        x2: Optional (N2, D) inputs for the cross-covariance checks
        config: Finite-difference settings

    Returns:
        One result per checked family
    """
    config = config or GradientCheckConfig()
    step = config.step
    x = np.atleast_2d(np.asarray(x, dtype=float))
    results = []

    grads, _ = kernel.ghyper(x)
    results.append(compare("ghyper", grads, numerical_ghyper(kernel, x, step=step), config))
    results.append(
        compare("energy", [kernel.ghyper(x)[1]], [numerical_energy_gradient(kernel, step=step)], config)
    )
    if x2 is not None:
        grads, _ = kernel.ghyper(x, x2)
        results.append(compare("ghyper(x, x2)", grads, numerical_ghyper(kernel, x, x2, step=step), config))

    if kernel.metric is not None:
        logger.info("Metric attached: skipping input-derivative checks")
        return results

    results.append(compare("ginput", kernel.ginput(x), numerical_ginput(kernel, x, step=step), config))
    results.append(compare("ginput4", kernel.ginput4(x), numerical_ginput4(kernel, x, step=step), config))
    if x2 is not None:
        results.append(
            compare("ginput(x, x2)", kernel.ginput(x, x2), numerical_ginput(kernel, x, x2, step=step), config)
        )
        results.append(
            compare("ginput4(x, x2)", kernel.ginput4(x, x2), numerical_ginput4(kernel, x, x2, step=step), config)
        )
    results.append(compare("ginput2", kernel.ginput2(x, x)[0], numerical_ginput2(kernel, x, step=step), config))
    if x.shape[1] > 1:
        results.append(compare("ginput3", kernel.ginput3(x, x), numerical_ginput3(kernel, x, step=step), config))

    results.append(compare("ghypergrad", kernel.ghypergrad(x), numerical_ghypergrad(kernel, x, step=step), config))
    if is_free(kernel.magn_sigma2_prior):
        results.append(
            compare("ghypergrad2", kernel.ghypergrad2(x), numerical_ghypergrad2(kernel, x, step=step), config)
        )
    else:
        logger.info("magn_sigma2 has no prior: skipping ghypergrad2")

    return results
