"""
Utilities Module

Tools around the covariance function:
- config_loader: Build kernels and check settings from YAML
- gradcheck: Finite-difference checks of every analytic gradient
- logging_utils: Logging setup for scripts
- profiler: Timing of kernel capabilities
"""

from .config_loader import (
    build_gradient_check_config,
    build_kernel,
    build_metric,
    build_prior,
    kernel_from_yaml,
    load_config,
)
from .gradcheck import (
    GradientCheckConfig,
    GradientCheckResult,
    check_kernel_gradients,
    derivative_derivative_covariance,
    derivative_value_covariance,
)
from .logging_utils import setup_logging
from .profiler import (
    Profiler,
    Timer,
    TimingResult,
    profile_function,
    profile_kernel,
)

__all__ = [
    # Configuration
    "build_gradient_check_config",
    "build_kernel",
    "build_metric",
    "build_prior",
    "kernel_from_yaml",
    "load_config",
    # Gradient checks
    "GradientCheckConfig",
    "GradientCheckResult",
    "check_kernel_gradients",
    "derivative_derivative_covariance",
    "derivative_value_covariance",
    # Logging
    "setup_logging",
    # Profiler
    "Profiler",
    "Timer",
    "TimingResult",
    "profile_function",
    "profile_kernel",
]
