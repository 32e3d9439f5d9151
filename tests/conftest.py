"""Shared fixtures for gpcf tests."""

import numpy as np
import pytest

from gpcf.gp import EuclideanMetric, SquaredExponential


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def x3(rng):
    """Five points in three dimensions."""
    return rng.standard_normal((5, 3))


@pytest.fixture
def iso_kernel():
    return SquaredExponential(magn_sigma2=1.3, length_scale=0.8)


@pytest.fixture
def ard_kernel():
    return SquaredExponential(magn_sigma2=0.7, length_scale=[0.6, 1.1, 1.7])


@pytest.fixture
def metric_kernel():
    """Kernel whose length-scales are owned by a per-column Euclidean metric."""
    return SquaredExponential(magn_sigma2=0.7, metric=EuclideanMetric(length_scale=[0.6, 1.1, 1.7]))


def make_kernel(m, ard, **kwargs):
    """Isotropic or ARD kernel with distinct length-scales for m dimensions."""
    length_scale = np.linspace(0.7, 1.6, m) if ard else 0.9
    return SquaredExponential(magn_sigma2=kwargs.pop("magn_sigma2", 1.2), length_scale=length_scale, **kwargs)
