"""
gpcf: Squared Exponential Covariance Function

Kernel component for Gaussian process models with exact derivatives w.r.t.
hyperparameters and inputs, including the second-order input derivatives
needed for derivative observations.

Modules:
    gp: Covariance function, priors, metrics and sample records
    utils: Configuration loading, logging, gradient checks and profiling
"""

__version__ = "0.1.0"
__author__ = "gpcf developers"

from . import gp, utils

__all__ = [
    "gp",
    "utils",
]
