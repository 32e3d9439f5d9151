import numpy as np
import pytest
from numpy.testing import assert_allclose
from scipy import stats

from gpcf.gp import (
    FIXED,
    PRIOR_TYPES,
    DimensionError,
    Gamma,
    Gaussian,
    InvalidParameterError,
    LogGaussian,
    LogUniform,
    SqrtUniform,
    StudentT,
    Uniform,
    is_free,
)
from gpcf.utils.gradcheck import central_difference

PRIORS = [
    Uniform(),
    SqrtUniform(),
    LogUniform(),
    Gaussian(0.3, 1.5),
    LogGaussian(-0.2, 0.8),
    Gamma(3.0, 2.0),
    StudentT(0.1, 0.7, 5.0),
    Gaussian(0.3, 1.5, mu_prior=Gaussian(0.0, 2.0), s2_prior=LogUniform()),
    LogGaussian(-0.2, 0.8, s2_prior=Gamma()),
    Gamma(3.0, 2.0, shape_prior=LogUniform(), inv_scale_prior=Gamma(2.0, 1.0, inv_scale_prior=LogUniform())),
    StudentT(0.1, 0.7, 5.0, mu_prior=Gaussian(), s2_prior=SqrtUniform(), nu_prior=LogUniform()),
]


def test_densities_match_scipy():
    x = np.array([0.4, 1.3])
    assert_allclose(Gaussian(0.3, 1.5).log_density(x), np.sum(stats.norm.logpdf(x, 0.3, np.sqrt(1.5))))
    assert_allclose(Gamma(3.0, 2.0).log_density(x), np.sum(stats.gamma.logpdf(x, 3.0, scale=0.5)))
    assert_allclose(
        StudentT(0.1, 0.7, 5.0).log_density(x), np.sum(stats.t.logpdf(x, 5.0, loc=0.1, scale=np.sqrt(0.7)))
    )
    assert_allclose(
        LogGaussian(-0.2, 0.8).log_density(x),
        np.sum(stats.norm.logpdf(np.log(x), -0.2, np.sqrt(0.8)) - np.log(x)),
    )
    assert_allclose(SqrtUniform().log_density(4.0), -np.log(4.0))
    assert_allclose(LogUniform().log_density(x), -np.sum(np.log(x)))
    assert Uniform().log_density(x) == 0.0


@pytest.mark.parametrize("prior", PRIORS, ids=repr)
def test_gradient_wrt_value(prior):
    x = np.array([0.8, 1.7])
    grad = prior.log_density_gradient(x)

    for k in range(2):
        unit = np.zeros(2)
        unit[k] = 1.0
        expected = central_difference(lambda h: prior.log_density(x + h * unit), 1e-6)
        assert_allclose(grad[k], expected, rtol=1e-5, atol=1e-7)


@pytest.mark.parametrize("prior", PRIORS, ids=repr)
def test_gradient_wrt_packed_parameters(prior):
    x = np.array([0.8, 1.7])
    w, labels = prior.pack()
    grad = prior.log_density_gradient(x)

    assert grad.shape == (2 + w.size,)
    assert len(labels) == w.size == prior.n_params
    for k in range(w.size):
        unit = np.zeros(w.size)
        unit[k] = 1.0
        expected = central_difference(lambda h: prior.unpack(w + h * unit)[0].log_density(x), 1e-6)
        assert_allclose(grad[2 + k], expected, rtol=1e-5, atol=1e-7)


def test_pack_labels_and_transforms():
    prior = Gaussian(0.3, 1.5, mu_prior=Gaussian(), s2_prior=LogUniform())
    w, labels = prior.pack()
    assert_allclose(w, [0.3, np.log(1.5)])
    assert labels == ["gaussian.mu", "log(gaussian.s2)"]


def test_unpack_returns_new_prior_and_remainder():
    prior = Gamma(3.0, 2.0, inv_scale_prior=LogUniform())
    updated, rest = prior.unpack([np.log(5.0), 1.0, 2.0])

    assert_allclose(updated.inv_scale, 5.0)
    assert_allclose(updated.shape, 3.0)
    assert_allclose(rest, [1.0, 2.0])
    assert prior.inv_scale == 2.0


def test_unpack_too_short():
    with pytest.raises(DimensionError):
        Gaussian(s2_prior=LogUniform()).unpack([])


def test_priors_without_hyperpriors_pack_nothing():
    for prior in (Uniform(), Gaussian(), Gamma(), Gamma(shape_prior=FIXED)):
        w, labels = prior.pack()
        assert w.size == 0 and labels == []


@pytest.mark.parametrize(
    "factory",
    [
        lambda: Gaussian(0.0, -1.0),
        lambda: Gamma(0.0, 1.0),
        lambda: Gamma(1.0, -2.0),
        lambda: StudentT(0.0, 1.0, 0.0),
        lambda: Gaussian(np.nan, 1.0),
    ],
)
def test_invalid_prior_parameters(factory):
    with pytest.raises(InvalidParameterError):
        factory()


def test_fixed_sentinel():
    assert FIXED.fixed
    assert not is_free(FIXED)
    assert not is_free(None)
    assert is_free(Uniform())


def test_prior_types_registry():
    assert PRIOR_TYPES["gaussian"] is Gaussian
    assert PRIOR_TYPES["sqrtunif"] is SqrtUniform
    assert PRIOR_TYPES["t"] is StudentT
    assert PRIOR_TYPES["log_uniform"] is LogUniform


def test_recappend_records_free_parameters():
    prior = Gaussian(0.3, 1.5, s2_prior=Gamma(2.0, 1.0, inv_scale_prior=LogUniform()))
    empty = prior.recappend()

    assert set(empty.params) == {"s2"}
    assert empty.n_samples == 0

    first = prior.recappend(empty, 0)
    second = prior.unpack([np.log(2.5), 0.0])[0].recappend(first, 1)

    assert_allclose(second.params["s2"], [[1.5], [2.5]])
    assert_allclose(second.hyperpriors["s2"].params["inv_scale"], [[1.0], [1.0]])
    assert empty.n_samples == 0
    assert first.n_samples == 1


def test_recappend_needs_index():
    prior = Gamma(2.0, 1.0, inv_scale_prior=LogUniform())
    with pytest.raises(TypeError, match="sample index"):
        prior.recappend(prior.recappend())
