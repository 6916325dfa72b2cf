"""
Cross-product assembly and the sweep operator.

Algorithm (Dempster's symmetric sweep, as in AS 178): sweeping pivot k of
a symmetric matrix C with d = C[k, k] replaces

    C[i, j] -> C[i, j] - C[i, k] * C[k, j] / d     (i, j != k)
    C[k, j] -> C[k, j] / d
    C[i, k] -> C[i, k] / d
    C[k, k] -> -1 / d

Sweeping the first p pivots of Z'WZ with Z = [X y] leaves -G in the
top-left block (G a generalized inverse of X'WX), the estimates in the
top-right column and the residual sum of squares in the corner.

A pivot whose current value has fallen to SWEEP_TOLERANCE times its
original diagonal is linearly dependent on the pivots before it: the
parameter is aliased, its row and column are zeroed and it is skipped.
"""

import warnings
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from pyglm.core.compute.tolerances import SWEEP_TOLERANCE
from pyglm.core.exceptions import CollinearityNotice, DimensionError

# Rows per block when accumulating Z'WZ. The summation order is fixed so
# repeated runs round identically.
CROSS_PRODUCT_BLOCK_ROWS = 4096


@dataclass(frozen=True)
class SweptMatrixInfo:
    """
    Solved normal equations.

    Attributes:
        g_inv: (p, p) symmetric generalized inverse of X'WX; rows and
            columns of aliased parameters are zero
        beta_hat: (p,) parameter estimates; aliased entries are 0
        s_rss: Weighted residual sum of squares
        aliased: (p,) True where the parameter was found collinear
        rank: Number of non-aliased parameters
    """
    g_inv: NDArray[np.floating[Any]]
    beta_hat: NDArray[np.floating[Any]]
    s_rss: float
    aliased: NDArray[np.bool_]
    rank: int


def cross_product_matrix(
    x: NDArray,
    y: NDArray,
    w: NDArray,
    *,
    block_rows: int = CROSS_PRODUCT_BLOCK_ROWS,
) -> NDArray[np.floating[Any]]:
    """
    Augmented weighted cross-product matrix Z'WZ with Z = [X y].

    Args:
        x: (n, p) design matrix
        y: (n,) response
        w: (n,) case weights (all ones for an unweighted fit)
        block_rows: Rows accumulated per partial sum

    Returns:
        (p+1, p+1) symmetric matrix; X'WX top-left, y'Wy bottom-right
    """
    n = x.shape[0]
    if y.shape[0] != n or w.shape[0] != n:
        raise DimensionError(
            f"Inconsistent lengths: x={n}, y={y.shape[0]}, w={w.shape[0]}"
        )
    z = np.column_stack([x, y])
    out = np.zeros((z.shape[1], z.shape[1]), dtype=np.float64)
    for start in range(0, n, block_rows):
        zb = z[start:start + block_rows]
        wb = w[start:start + block_rows]
        out += (zb * wb[:, None]).T @ zb
    return (out + out.T) / 2.0


def sweep_columns(
    matrix: NDArray,
    pivots: Iterable[int],
    *,
    tol: float = SWEEP_TOLERANCE,
) -> tuple[NDArray[np.floating[Any]], NDArray[np.bool_]]:
    """
    Sweep a symmetric matrix on the given pivots, in order.

    Args:
        matrix: Square symmetric matrix (not modified)
        pivots: Pivot indices to sweep
        tol: Relative aliasing threshold

    Returns:
        (swept matrix, aliased mask over all rows)
    """
    c = np.array(matrix, dtype=np.float64, copy=True)
    original_diag = np.abs(np.diag(c)).copy()
    aliased = np.zeros(c.shape[0], dtype=bool)

    for k in pivots:
        d = c[k, k]
        if d <= tol * original_diag[k]:
            aliased[k] = True
            c[k, :] = 0.0
            c[:, k] = 0.0
            continue
        row = c[k, :].copy()
        col = c[:, k].copy()
        c -= np.outer(col, row) / d
        c[k, :] = row / d
        c[:, k] = col / d
        c[k, k] = -1.0 / d

    return c, aliased


def sweep(zwz: NDArray, *, tol: float = SWEEP_TOLERANCE) -> SweptMatrixInfo:
    """
    Solve the normal equations held in an augmented cross-product matrix.

    Collinear parameters are not an error: they are reported through a
    CollinearityNotice warning and the ``aliased`` mask.

    Args:
        zwz: (p+1, p+1) output of cross_product_matrix
        tol: Relative aliasing threshold

    Returns:
        SweptMatrixInfo
    """
    p = zwz.shape[0] - 1
    c, aliased_all = sweep_columns(zwz, range(p), tol=tol)
    aliased = aliased_all[:p]

    g_inv = -c[:p, :p]
    g_inv[aliased, :] = 0.0
    g_inv[:, aliased] = 0.0
    g_inv = (g_inv + g_inv.T) / 2.0

    beta_hat = c[:p, p].copy()
    beta_hat[aliased] = 0.0

    n_aliased = int(aliased.sum())
    if n_aliased:
        warnings.warn(
            f"{n_aliased} parameter(s) aliased (linearly dependent on earlier "
            f"columns): {np.flatnonzero(aliased).tolist()}; fixed at zero",
            CollinearityNotice,
            stacklevel=2,
        )

    return SweptMatrixInfo(
        g_inv=g_inv,
        beta_hat=beta_hat,
        s_rss=max(float(c[p, p]), 0.0),
        aliased=aliased,
        rank=p - n_aliased,
    )
