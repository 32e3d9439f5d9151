import numpy as np
import pytest
from numpy.testing import assert_allclose

from gpcf.gp import (
    FIXED,
    EuclideanMetric,
    Gamma,
    LogUniform,
    SexpRecord,
    SquaredExponential,
    set_row,
)


# ---------------------------------------------------------------------------
# set_row
# ---------------------------------------------------------------------------
def test_set_row_appends_and_replaces():
    history = set_row(None, 0, [1.0, 2.0])
    history = set_row(history, 1, [3.0, 4.0])
    assert_allclose(history, [[1.0, 2.0], [3.0, 4.0]])

    replaced = set_row(history, 0, [5.0, 6.0])
    assert_allclose(replaced, [[5.0, 6.0], [3.0, 4.0]])
    assert_allclose(history[0], [1.0, 2.0])


def test_set_row_gap():
    with pytest.raises(IndexError):
        set_row(np.ones((2, 1)), 3, 1.0)
    with pytest.raises(IndexError):
        set_row(np.ones((2, 1)), -1, 1.0)


def test_set_row_width_mismatch():
    with pytest.raises(ValueError):
        set_row(np.ones((2, 2)), 2, [1.0, 2.0, 3.0])


# ---------------------------------------------------------------------------
# Kernel sample history
# ---------------------------------------------------------------------------
def test_recappend_initializes_empty_history(ard_kernel):
    record = ard_kernel.recappend()

    assert isinstance(record, SexpRecord)
    assert record.record_type == "sexp"
    assert record.magn_sigma2.shape == (0, 1)
    assert record.length_scale.shape == (0, 3)
    assert set(record.priors) == {"magn_sigma2", "length_scale"}
    assert record.n_samples == 0


def test_recappend_appends_samples_without_touching_input(ard_kernel):
    empty = ard_kernel.recappend()
    first = ard_kernel.recappend(empty, 0)
    moved = ard_kernel.reconfigure(magn_sigma2=2.0, length_scale=[1.0, 2.0, 3.0])
    second = moved.recappend(first, 1)

    assert_allclose(second.magn_sigma2, [[0.7], [2.0]])
    assert_allclose(second.length_scale, [[0.6, 1.1, 1.7], [1.0, 2.0, 3.0]])
    assert second.n_samples == 2
    assert first.n_samples == 1
    assert empty.n_samples == 0


def test_recappend_replaces_existing_row(iso_kernel):
    record = iso_kernel.recappend(iso_kernel.recappend(), 0)
    record = iso_kernel.reconfigure(magn_sigma2=5.0).recappend(record, 0)
    assert_allclose(record.magn_sigma2, [[5.0]])


def test_recappend_gap(iso_kernel):
    with pytest.raises(IndexError):
        iso_kernel.recappend(iso_kernel.recappend(), 2)


def test_recappend_needs_index(iso_kernel):
    with pytest.raises(TypeError):
        iso_kernel.recappend(iso_kernel.recappend())


def test_recappend_omits_metric_length_scale(metric_kernel):
    record = metric_kernel.recappend(metric_kernel.recappend(), 0)

    assert record.length_scale is None
    assert "length_scale" not in record.priors
    assert_allclose(record.magn_sigma2, [[0.7]])


def test_recappend_omits_fixed_parameters():
    kernel = SquaredExponential(magn_sigma2_prior=FIXED, length_scale=[1.0, 2.0])
    record = kernel.recappend(kernel.recappend(), 0)

    assert record.magn_sigma2 is None
    assert "magn_sigma2" not in record.priors
    assert_allclose(record.length_scale, [[1.0, 2.0]])


def test_recappend_records_prior_parameters():
    kernel = SquaredExponential(length_scale=0.5, length_scale_prior=Gamma(2.0, 3.0, inv_scale_prior=LogUniform()))
    record = kernel.recappend(kernel.recappend(), 0)
    updated, _ = kernel.unpack([0.0, 0.0, np.log(4.0)])
    record = updated.recappend(record, 1)

    assert_allclose(record.length_scale, [[0.5], [1.0]])
    assert_allclose(record.priors["length_scale"].params["inv_scale"], [[3.0], [4.0]])
    assert record.priors["magn_sigma2"].params == {}


def test_recappend_with_empty_metric_record():
    kernel = SquaredExponential(metric=EuclideanMetric(length_scale=[1.0, 2.0]), magn_sigma2_prior=None)
    record = kernel.recappend(kernel.recappend(), 0)
    assert record.n_samples == 0
    assert record.priors == {}
