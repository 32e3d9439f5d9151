import logging
import runpy
import textwrap
from pathlib import Path

import numpy as np
import pytest
from numpy.testing import assert_allclose

from gpcf.gp import FIXED, EuclideanMetric, Gamma, InvalidParameterError, LogUniform, SquaredExponential
from gpcf.utils import (
    GradientCheckConfig,
    Profiler,
    Timer,
    build_gradient_check_config,
    build_kernel,
    build_metric,
    build_prior,
    check_kernel_gradients,
    kernel_from_yaml,
    load_config,
    profile_function,
    profile_kernel,
    setup_logging,
)
from gpcf.utils.gradcheck import compare

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "check_kernel.py"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
def write_yaml(tmp_path, text):
    path = tmp_path / "kernel.yaml"
    path.write_text(textwrap.dedent(text))
    return path


def test_kernel_from_yaml(tmp_path):
    path = write_yaml(
        tmp_path,
        """
        kernel:
          magn_sigma2: 0.5
          length_scale: [1.0, 2.0]
          magn_sigma2_prior: fixed
          length_scale_prior:
            type: gamma
            shape: 2.0
            inv_scale: 3.0
            inv_scale_prior: {type: logunif}
        """,
    )

    kernel = kernel_from_yaml(path)

    assert kernel.magn_sigma2 == 0.5
    assert_allclose(kernel.length_scale, [1.0, 2.0])
    assert kernel.magn_sigma2_prior is FIXED
    assert isinstance(kernel.length_scale_prior, Gamma)
    assert kernel.length_scale_prior.inv_scale == 3.0
    assert isinstance(kernel.length_scale_prior.hyperprior("inv_scale"), LogUniform)
    assert kernel.param_names == [
        "log(sexp.length_scale[0])",
        "log(sexp.length_scale[1])",
        "log(gamma.inv_scale)",
    ]


def test_kernel_with_metric_from_yaml(tmp_path):
    path = write_yaml(
        tmp_path,
        """
        kernel:
          metric:
            type: euclidean
            components: [[0, 1], [2]]
            length_scale: [1.0, 0.5]
            length_scale_prior: null
        gradient_check:
          step: 1.0e-5
          rtol: 1.0e-4
        """,
    )

    cfg = load_config(path)
    kernel = build_kernel(cfg["kernel"])
    check = build_gradient_check_config(cfg["gradient_check"])

    assert kernel.metric.components == ((0, 1), (2,))
    assert kernel.metric.length_scale_prior is None
    assert kernel.param_names == ["log(sexp.magn_sigma2)"]
    assert check.step == 1e-5
    assert check.rtol == 1e-4
    assert check.atol == GradientCheckConfig().atol


def test_build_kernel_defaults_and_selected_variables():
    kernel = build_kernel({"selected_variables": [1, 2], "length_scale_prior": None})
    assert kernel.metric.components == ((1,), (2,))
    assert kernel.metric.length_scale_prior is None

    default = build_kernel(None)
    assert default.magn_sigma2 == SquaredExponential().magn_sigma2
    assert default.magn_sigma2_prior.prior_type == "sqrtunif"


def test_build_prior_forms():
    assert build_prior(None) is None
    assert build_prior("fixed") is FIXED
    assert build_prior("uniform").prior_type == "unif"
    prior = build_prior({"type": "t", "mu": 1, "s2": 2, "nu": 3, "nu_prior": "logunif"})
    assert (prior.mu, prior.s2, prior.nu) == (1.0, 2.0, 3.0)
    assert prior.n_params == 1


@pytest.mark.parametrize(
    "spec",
    [
        {"type": "cauchy"},
        {"type": "gaussian", "scale": 1.0},
        {"mu": 1.0},
        3.0,
    ],
)
def test_build_prior_errors(spec):
    with pytest.raises(InvalidParameterError):
        build_prior(spec)


def test_build_metric_errors():
    assert build_metric(None) is None
    assert isinstance(build_metric({"length_scale": 2.0}), EuclideanMetric)
    with pytest.raises(InvalidParameterError):
        build_metric({"type": "manhattan"})
    with pytest.raises(InvalidParameterError):
        build_metric({"scales": [1.0]})
    with pytest.raises(InvalidParameterError):
        build_metric("euclidean")


def test_build_kernel_unknown_key():
    with pytest.raises(InvalidParameterError):
        build_kernel({"noise": 0.1})


def test_load_config_empty_and_invalid(tmp_path):
    assert load_config(write_yaml(tmp_path, "")) == {}
    with pytest.raises(InvalidParameterError):
        load_config(write_yaml(tmp_path, "- 1\n- 2\n"))


# ---------------------------------------------------------------------------
# Gradient checks
# ---------------------------------------------------------------------------
def test_check_kernel_gradients_pass(rng, ard_kernel):
    x = rng.standard_normal((4, 3))
    x2 = rng.standard_normal((3, 3))

    results = check_kernel_gradients(ard_kernel, x, x2)

    names = [r.name for r in results]
    assert names == [
        "ghyper",
        "energy",
        "ghyper(x, x2)",
        "ginput",
        "ginput4",
        "ginput(x, x2)",
        "ginput4(x, x2)",
        "ginput2",
        "ginput3",
        "ghypergrad",
        "ghypergrad2",
    ]
    assert all(r.passed for r in results), [str(r) for r in results]


def test_check_kernel_gradients_with_metric(rng, metric_kernel):
    results = check_kernel_gradients(metric_kernel, rng.standard_normal((4, 3)))
    assert [r.name for r in results] == ["ghyper", "energy"]
    assert all(r.passed for r in results)


def test_check_kernel_gradients_without_magnitude_prior(rng):
    kernel = SquaredExponential(magn_sigma2_prior=None)
    results = check_kernel_gradients(kernel, rng.standard_normal((3, 1)))
    names = [r.name for r in results]
    assert "ghypergrad2" not in names
    assert "ginput3" not in names
    assert all(r.passed for r in results)


def test_compare_detects_mismatch():
    config = GradientCheckConfig()
    assert not compare("x", [np.zeros(2)], [np.ones(2)], config).passed
    assert not compare("x", [np.zeros(2)], [], config).passed
    assert not compare("x", [np.zeros(2)], [np.zeros(3)], config).passed
    assert compare("x", [np.zeros(2)], [np.zeros(2)], config).passed


def test_gradient_check_config_validation():
    with pytest.raises(ValueError):
        GradientCheckConfig(step=0.0)
    with pytest.raises(ValueError):
        GradientCheckConfig(atol=-1.0)


# ---------------------------------------------------------------------------
# Profiler
# ---------------------------------------------------------------------------
def test_timer():
    with Timer("sleep") as timer:
        sum(range(1000))
    assert timer.elapsed_ms >= 0.0


def test_profiler_statistics():
    profiler = Profiler()
    for value in (1.0, 2.0, 3.0):
        profiler.record("op", value)

    stats = profiler.get_stats("op")
    assert stats.n_calls == 3
    assert stats.mean_ms == 2.0
    assert stats.min_ms == 1.0
    assert stats.max_ms == 3.0
    assert stats.total_ms == 6.0
    assert profiler.get_stats("missing") is None
    assert "op" in profiler.report()

    profiler.reset()
    assert profiler.get_all_stats() == {}
    assert "No timing data" in profiler.report()


def test_profile_function():
    profiler = Profiler()

    @profile_function(profiler)
    def work(a, b):
        return a + b

    assert work(1, 2) == 3
    assert profiler.get_stats("work").n_calls == 1


def test_profile_kernel(rng, metric_kernel, iso_kernel):
    x = rng.standard_normal((4, 3))

    stats = profile_kernel(iso_kernel, x, n_trials=2).get_all_stats()
    assert stats["ghypergrad2"].n_calls == 2

    stats = profile_kernel(metric_kernel, x, n_trials=2).get_all_stats()
    assert "trcov" in stats
    assert "ginput" not in stats

    with pytest.raises(ValueError):
        profile_kernel(iso_kernel, x, operations=["predict"])


# ---------------------------------------------------------------------------
# Logging and script
# ---------------------------------------------------------------------------
def test_setup_logging():
    logger = setup_logging("DEBUG")
    logger = setup_logging(logging.WARNING)

    assert logger.name == "gpcf"
    assert logger.level == logging.WARNING
    assert sum(getattr(h, "_gpcf_handler", False) for h in logger.handlers) == 1

    with pytest.raises(ValueError):
        setup_logging("LOUD")


def test_check_kernel_script(tmp_path, capsys):
    main = runpy.run_path(str(SCRIPT))["main"]
    assert main(["--n", "3", "--m", "2", "--trials", "1"]) == 0
    assert "All gradient checks passed" in capsys.readouterr().out

    path = write_yaml(
        tmp_path,
        """
        kernel:
          magn_sigma2: 0.8
          length_scale: 1.5
        """,
    )
    assert main(["--config", str(path), "--n", "2", "--m", "1", "--trials", "1"]) == 0
