"""
Covariance Function Module

Squared exponential covariance function with exact analytic derivatives:

- kernels: CovarianceFunction interface and the SquaredExponential kernel
- priors: Hyperparameter priors (improper, Gaussian, Gamma, Student-t, ...)
- metrics: Distance metrics that can own the length-scale
- records: Sample history containers for MCMC
- blocks: Pairwise differences and derivative block matrices
- exceptions: Error hierarchy

Usage:
    >>> from gpcf.gp import SquaredExponential, Gamma
    >>>
    >>> kernel = SquaredExponential(magn_sigma2=1.0, length_scale=[0.5, 2.0],
    ...                             length_scale_prior=Gamma(2.0, 1.0))
    >>> K = kernel.trcov(X)
    >>> dK, dprior = kernel.ghyper(X)
    >>> w, labels = kernel.pack()
"""

from .blocks import (
    assemble_block_matrix,
    dimension_pairs,
    n_dimension_pairs,
    pairwise_difference,
    squared_distance,
)
from .exceptions import (
    DimensionError,
    DimensionMismatch,
    InvalidParameterError,
    KernelError,
    UnsupportedCombinationError,
)
from .kernels import (
    CovarianceFunction,
    DelegatedLengthScale,
    LocalLengthScale,
    SquaredExponential,
    create_sexp_kernel,
)
from .metrics import EuclideanMetric, Metric
from .priors import (
    FIXED,
    PRIOR_TYPES,
    FixedPrior,
    Gamma,
    Gaussian,
    LogGaussian,
    LogUniform,
    Prior,
    SqrtUniform,
    StudentT,
    Uniform,
    is_free,
)
from .records import PriorRecord, SexpRecord, set_row

__all__ = [
    "FIXED",
    "PRIOR_TYPES",
    # Kernels
    "CovarianceFunction",
    "DelegatedLengthScale",
    "LocalLengthScale",
    "SquaredExponential",
    "create_sexp_kernel",
    # Priors
    "FixedPrior",
    "Gamma",
    "Gaussian",
    "LogGaussian",
    "LogUniform",
    "Prior",
    "SqrtUniform",
    "StudentT",
    "Uniform",
    "is_free",
    # Metrics
    "EuclideanMetric",
    "Metric",
    # Records
    "PriorRecord",
    "SexpRecord",
    "set_row",
    # Blocks
    "assemble_block_matrix",
    "dimension_pairs",
    "n_dimension_pairs",
    "pairwise_difference",
    "squared_distance",
    # Exceptions
    "DimensionError",
    "DimensionMismatch",
    "InvalidParameterError",
    "KernelError",
    "UnsupportedCombinationError",
]
