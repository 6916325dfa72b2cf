"""
Contrast coefficients and level-weighted parameter rows.

Two layers:

1. contrast_coefficients(method, k, reference) gives the (rows x k) matrix
   of level weights for one factor. Every row sums to zero.

2. level_weighted_row(columns, ...) maps per-factor level weights onto the
   parameters of a design. A column's coefficient is the product of the
   weights of the levels it indicates (factors not being tested are
   averaged with 1/levels) times, for each covariate it carries, 1 if the
   covariate belongs to the tested effect and the supplied covariate value
   otherwise. Columns that do not involve every variable of the tested
   effect get 0.

The second layer is shared by Type III/IV hypotheses, user contrasts and
estimated-marginal-mean vectors, which differ only in the weights they
pass.
"""

from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np
from numpy.typing import NDArray

from pyglm.core.exceptions import ValidationError
from pyglm.univariate.request import ContrastMethod, ReferenceCategory


def contrast_coefficients(
    method: ContrastMethod,
    k: int,
    reference: ReferenceCategory = ReferenceCategory.LAST,
) -> NDArray[np.floating[Any]]:
    """
    Level weights for a factor contrast.

    Args:
        method: Contrast family
        k: Number of factor levels
        reference: Omitted/compared-to level for DEVIATION and SIMPLE

    Returns:
        (k-1, k) array, or (1, k) for POLYNOMIAL; (0, k) when k < 2
    """
    if k < 1:
        raise ValidationError(f"contrast: factor needs at least 1 level, got {k}")
    if k < 2:
        return np.zeros((0, k), dtype=np.float64)

    ref = k - 1 if reference == ReferenceCategory.LAST else 0
    targets = [i for i in range(k) if i != ref]

    if method == ContrastMethod.DEVIATION:
        rows = np.full((k - 1, k), -1.0 / k)
        for r, t in enumerate(targets):
            rows[r, t] = 1.0 - 1.0 / k
        return rows

    if method == ContrastMethod.SIMPLE:
        rows = np.zeros((k - 1, k))
        for r, t in enumerate(targets):
            rows[r, t] = 1.0
            rows[r, ref] = -1.0
        return rows

    if method == ContrastMethod.DIFFERENCE:
        rows = np.zeros((k - 1, k))
        for i in range(1, k):
            rows[i - 1, :i] = -1.0 / i
            rows[i - 1, i] = 1.0
        return rows

    if method == ContrastMethod.HELMERT:
        rows = np.zeros((k - 1, k))
        for i in range(k - 1):
            rows[i, i] = 1.0
            rows[i, i + 1:] = -1.0 / (k - i - 1)
        return rows

    if method == ContrastMethod.REPEATED:
        rows = np.zeros((k - 1, k))
        for i in range(k - 1):
            rows[i, i] = 1.0
            rows[i, i + 1] = -1.0
        return rows

    if method == ContrastMethod.POLYNOMIAL:
        linear = np.arange(k, dtype=np.float64) - (k - 1) / 2.0
        return (linear / np.linalg.norm(linear)).reshape(1, k)

    raise ValidationError(f"contrast: unknown method {method!r}")


def contrast_labels(
    method: ContrastMethod,
    levels: Sequence[str],
    reference: ReferenceCategory = ReferenceCategory.LAST,
) -> tuple[str, ...]:
    """Readable names for the rows of contrast_coefficients."""
    k = len(levels)
    if k < 2:
        return ()
    ref = k - 1 if reference == ReferenceCategory.LAST else 0
    targets = [i for i in range(k) if i != ref]

    if method == ContrastMethod.DEVIATION:
        return tuple(f"Level {levels[t]} vs. Mean" for t in targets)
    if method == ContrastMethod.SIMPLE:
        return tuple(f"Level {levels[t]} vs. Level {levels[ref]}" for t in targets)
    if method == ContrastMethod.DIFFERENCE:
        return tuple(f"Level {levels[i]} vs. Previous" for i in range(1, k))
    if method == ContrastMethod.HELMERT:
        return tuple(f"Level {levels[i]} vs. Later" for i in range(k - 1))
    if method == ContrastMethod.REPEATED:
        return tuple(f"Level {levels[i]} vs. Level {levels[i + 1]}" for i in range(k - 1))
    return ("Linear",)


def level_weighted_row(
    columns: Sequence,
    n_levels: Mapping[str, int],
    factor_weights: Mapping[str, NDArray] | None = None,
    *,
    required: frozenset[str] = frozenset(),
    covariate_values: Mapping[str, float] | None = None,
) -> NDArray[np.floating[Any]]:
    """
    Map level weights onto design parameters.

    Args:
        columns: ColumnSpec per design column
        n_levels: Number of levels per factor (for averaging)
        factor_weights: Level-weight vector per weighted factor
        required: Variables every contributing column must involve
        covariate_values: Value substituted for covariates outside
            ``required`` (missing covariates count as 0)

    Returns:
        (p,) coefficient row
    """
    factor_weights = factor_weights or {}
    covariate_values = covariate_values or {}
    row = np.zeros(len(columns), dtype=np.float64)
    for j, column in enumerate(columns):
        if not required <= column.variables:
            continue
        coef = 1.0
        for factor, level in column.factor_levels:
            weights = factor_weights.get(factor)
            coef *= weights[level] if weights is not None else 1.0 / n_levels[factor]
        for covariate in column.covariates:
            coef *= 1.0 if covariate in required else covariate_values.get(covariate, 0.0)
        row[j] = coef
    return row


def contrast_l_matrix(
    columns: Sequence,
    n_levels: Mapping[str, int],
    factor: str,
    coefficients: NDArray,
) -> NDArray[np.floating[Any]]:
    """
    Parameter-space L matrix for a factor contrast.

    Each row compares weighted level means of ``factor`` averaged over the
    other factors, with covariates held at zero.
    """
    rows = [
        level_weighted_row(
            columns, n_levels, {factor: weights}, required=frozenset({factor}),
        )
        for weights in coefficients
    ]
    if not rows:
        return np.zeros((0, len(columns)), dtype=np.float64)
    return np.vstack(rows)
