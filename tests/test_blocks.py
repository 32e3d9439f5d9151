import numpy as np
import pytest
from numpy.testing import assert_allclose

from gpcf.gp import (
    assemble_block_matrix,
    dimension_pairs,
    n_dimension_pairs,
    pairwise_difference,
    squared_distance,
)


@pytest.mark.parametrize(
    "m, expected",
    [
        (1, []),
        (2, [(0, 1)]),
        (3, [(0, 1), (0, 2), (1, 2)]),
        (4, [(0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3)]),
    ],
)
def test_dimension_pairs(m, expected):
    assert list(dimension_pairs(m)) == expected
    assert n_dimension_pairs(m) == len(expected)


def test_pairwise_difference(rng):
    x1 = rng.standard_normal((3, 2))
    x2 = rng.standard_normal((4, 2))
    D = pairwise_difference(x1, x2, 1)
    assert D.shape == (3, 4)
    assert_allclose(D[2, 3], x1[2, 1] - x2[3, 1])


def test_squared_distance(rng):
    x1 = rng.standard_normal((3, 2))
    x2 = rng.standard_normal((4, 2))
    expected = np.sum((x1[:, None, :] - x2[None, :, :]) ** 2, axis=-1)
    assert_allclose(squared_distance(x1, x2), expected)


@pytest.mark.parametrize("m", [1, 2, 3, 4])
def test_assemble_block_matrix(rng, m):
    n = 2
    diagonal = [rng.standard_normal((n, n)) for _ in range(m)]
    off_diagonal = [rng.standard_normal((n, n)) for _ in range(n_dimension_pairs(m))]

    full = assemble_block_matrix(diagonal, off_diagonal)

    assert full.shape == (m * n, m * n)
    for i in range(m):
        assert_allclose(full[i * n : (i + 1) * n, i * n : (i + 1) * n], diagonal[i])
    for block, (i, j) in zip(off_diagonal, dimension_pairs(m)):
        assert_allclose(full[i * n : (i + 1) * n, j * n : (j + 1) * n], block)
        assert_allclose(full[j * n : (j + 1) * n, i * n : (i + 1) * n], block.T)


def test_assemble_block_matrix_wrong_count():
    with pytest.raises(ValueError):
        assemble_block_matrix([np.eye(2)] * 3, [np.eye(2)] * 2)
