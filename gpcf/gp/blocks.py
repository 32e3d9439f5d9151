"""
Helpers for pairwise differences and derivative block matrices.

Derivative-observation covariances are (m·n × m·n) block matrices whose
block (i, j) holds the covariance between derivatives along input dimensions
i and j. Diagonal blocks come from same-dimension second derivatives, the
off-diagonal ones from the cross-dimension derivatives enumerated by
``dimension_pairs``.
"""

from __future__ import annotations

from typing import Iterator, List, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray


def dimension_pairs(m: int) -> Iterator[Tuple[int, int]]:
    """
    Enumerate unordered dimension pairs (i, j), i < j.

    Order is (0,1), (0,2), ..., (0,m-1), (1,2), ..., (m-2,m-1), which is the
    order in which cross-dimension derivative matrices are returned.

    Args:
        m: Input dimension

    Yields:
        Index pairs
    """
    for i in range(m - 1):
        for j in range(i + 1, m):
            yield i, j


def n_dimension_pairs(m: int) -> int:
    """Number of unordered dimension pairs, m(m-1)/2."""
    return m * (m - 1) // 2


def pairwise_difference(x1: NDArray, x2: NDArray, dim: int) -> NDArray:
    """
    Differences x1[a, dim] - x2[b, dim] for all row pairs.

    Args:
        x1: (N1, D)
        x2: (N2, D)
        dim: Column index

    Returns:
        (N1, N2) matrix of coordinate differences
    """
    return x1[:, dim : dim + 1] - x2[:, dim : dim + 1].T


def squared_distance(x1: NDArray, x2: NDArray) -> NDArray:
    """Unscaled squared Euclidean distances summed over all columns (N1, N2)."""
    dist = np.zeros((x1.shape[0], x2.shape[0]))
    for i in range(x1.shape[1]):
        dist += pairwise_difference(x1, x2, i) ** 2
    return dist


def assemble_block_matrix(diagonal: Sequence[NDArray], off_diagonal: Sequence[NDArray]) -> NDArray:
    """
    Assemble a symmetric block matrix from per-dimension blocks.

    Args:
        diagonal: m blocks (n, n) placed on the block diagonal
        off_diagonal: m(m-1)/2 blocks (n, n) in ``dimension_pairs`` order.
                      Block (i, j) is placed at (i, j) and at (j, i).

    Returns:
        (m·n, m·n) matrix
    """
    m = len(diagonal)
    if len(off_diagonal) != n_dimension_pairs(m):
        raise ValueError(f"Expected {n_dimension_pairs(m)} off-diagonal blocks for m={m}, got {len(off_diagonal)}")

    rows: List[List[NDArray]] = [[None] * m for _ in range(m)]  # type: ignore[list-item]
    for i, block in enumerate(diagonal):
        rows[i][i] = block
    for block, (i, j) in zip(off_diagonal, dimension_pairs(m)):
        rows[i][j] = block
        rows[j][i] = block.T

    return np.block(rows)
