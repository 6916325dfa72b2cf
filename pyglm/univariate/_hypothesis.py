"""
Hypothesis (L) matrices for the univariate GLM.

Type I-IV sums of squares, user contrasts and estimated marginal means
are all tests of the form H0: L beta = 0 against the one solved system.
This module only builds L; evaluating it is _ss.evaluate_hypothesis.

    Type I    sequential: the term adjusted for the terms before it
    Type II   the term adjusted for every term that does not contain it
    Type III  unweighted cell-mean contrasts, other factors averaged
    Type IV   level comparisons restricted to observed cells of the
              containing terms (Type III when no cell is empty)
"""

from dataclasses import dataclass
from functools import reduce
from itertools import combinations, product
from typing import Any

import numpy as np
from numpy.typing import NDArray

from pyglm.core.compute.tolerances import ESTIMABILITY_TOLERANCE, SWEEP_TOLERANCE
from pyglm.core.exceptions import DegenerateHypothesisError
from pyglm.univariate._common import EstimableFunctions, TermEstimableFunction
from pyglm.univariate._contrasts import level_weighted_row
from pyglm.univariate._sweep import SweptMatrixInfo, sweep_columns
from pyglm.univariate.design import DesignMatrixInfo
from pyglm.univariate.request import SSType
from pyglm.univariate.terms import (
    Covariate,
    Intercept,
    Term,
    contains,
    term_covariate_names,
    term_factor_names,
    term_nesting,
)


@dataclass(frozen=True)
class HypothesisSpec:
    """One hypothesis L beta = 0 with its provenance."""
    l_matrix: NDArray[np.floating[Any]]
    kind: str          # 'type1'..'type4', 'contrast', 'emmean', 'custom'
    label: str

    @property
    def n_rows(self) -> int:
        return self.l_matrix.shape[0]


def row_basis(l_matrix: NDArray, *, tol: float = SWEEP_TOLERANCE) -> NDArray[np.floating[Any]]:
    """
    Independent rows spanning the same space as ``l_matrix``.

    Uses the SVD; singular values below ``tol`` times the largest are
    dropped. Returns a (0, p) array for a null matrix.
    """
    l_matrix = np.atleast_2d(np.asarray(l_matrix, dtype=np.float64))
    p = l_matrix.shape[1]
    if l_matrix.shape[0] == 0 or not np.any(l_matrix):
        return np.zeros((0, p), dtype=np.float64)
    _, s, vt = np.linalg.svd(l_matrix, full_matrices=False)
    r = int(np.sum(s > tol * s[0]))
    return s[:r, None] * vt[:r]


# =====================================================================
# Sum-of-squares hypotheses
# =====================================================================


def term_l_matrix(
    design: DesignMatrixInfo,
    xtwx: NDArray,
    term_name: str,
    ss_type: SSType,
) -> NDArray:
    """Unreduced L rows testing one model term under the chosen SS type."""
    if ss_type == SSType.I:
        return type_i_matrix(design, xtwx, term_name)
    if ss_type == SSType.II:
        return type_ii_matrix(design, xtwx, term_name)
    if ss_type == SSType.III:
        return type_iii_matrix(design, term_name)
    return type_iv_matrix(design, term_name)


def hypothesis_matrix(
    design: DesignMatrixInfo,
    xtwx: NDArray,
    term_name: str,
    ss_type: SSType,
) -> HypothesisSpec:
    """
    L matrix testing one model term under the chosen SS type.

    Raises:
        DegenerateHypothesisError: When the row-reduced L has rank 0
    """
    l_matrix = row_basis(term_l_matrix(design, xtwx, term_name, ss_type))
    if l_matrix.shape[0] == 0:
        raise DegenerateHypothesisError(
            f"Type {ss_type.name} hypothesis for {term_name!r} has rank 0 "
            f"(effect not estimable from these data)",
            term=term_name,
        )
    return HypothesisSpec(l_matrix=l_matrix, kind=f"type{int(ss_type)}", label=term_name)


def type_i_matrix(design: DesignMatrixInfo, xtwx: NDArray, term_name: str) -> NDArray:
    """
    Sequential hypothesis: sweep X'WX on the columns of the preceding
    terms, keep the rows of this term and drop the swept columns.
    """
    position = design.term_names.index(term_name)
    before = np.array([
        j for name in design.term_names[:position] for j in design.term_columns(name)
    ], dtype=np.intp)
    cols = design.term_columns(term_name)

    swept, _ = sweep_columns(xtwx, before)
    l_matrix = swept[cols, :].copy()
    l_matrix[:, before] = 0.0
    return l_matrix


def type_ii_matrix(design: DesignMatrixInfo, xtwx: NDArray, term_name: str) -> NDArray:
    """
    Hypothesis for a term adjusted for every term that does not contain it.

    With X1 = terms not containing F, X2 = F, X3 = terms containing F and
    A_2k = X2'WXk - X2'WX1 (X1'WX1)^+ X1'WXk, the rows are
    [0 | C A_22 | C A_23] with C = A_22^+.
    """
    position = design.term_names.index(term_name)
    target = design.terms[position]
    x1: list[int] = []
    x3: list[int] = []
    for name, term in zip(design.term_names, design.terms):
        if name == term_name:
            continue
        idx = design.term_columns(name).tolist()
        (x3 if contains(term, target) else x1).extend(idx)
    x2 = design.term_columns(term_name)
    x1_idx = np.array(x1, dtype=np.intp)
    x3_idx = np.array(x3, dtype=np.intp)

    def adjusted(rows: NDArray, cols: NDArray) -> NDArray:
        block = xtwx[np.ix_(rows, cols)]
        if x1_idx.size == 0:
            return block
        a11_pinv = np.linalg.pinv(xtwx[np.ix_(x1_idx, x1_idx)], rcond=SWEEP_TOLERANCE, hermitian=True)
        return block - xtwx[np.ix_(rows, x1_idx)] @ a11_pinv @ xtwx[np.ix_(x1_idx, cols)]

    a22 = adjusted(x2, x2)
    c = np.linalg.pinv(a22, rcond=SWEEP_TOLERANCE, hermitian=True)
    l_matrix = np.zeros((x2.size, design.p_parameters), dtype=np.float64)
    l_matrix[:, x2] = c @ a22
    if x3_idx.size:
        l_matrix[:, x3_idx] = c @ adjusted(x2, x3_idx)
    return l_matrix


def type_iii_matrix(design: DesignMatrixInfo, term_name: str) -> NDArray:
    """
    Unweighted hypothesis for a term.

    Intercept: 1 on the intercept, 1/levels products on pure factor
    parameters. Covariate: unit vector. Factor effects: (level - reference
    level) for every crossed factor, one indicator per level for nesting
    containers, other factors averaged, covariates held at zero.
    """
    term = design.terms[design.term_names.index(term_name)]
    n_levels = {name: len(levels) for name, levels in design.factor_levels.items()}

    if isinstance(term, Intercept):
        return level_weighted_row(design.columns, n_levels).reshape(1, -1)

    if isinstance(term, Covariate):
        l_matrix = np.zeros((1, design.p_parameters), dtype=np.float64)
        l_matrix[0, design.term_columns(term_name)] = 1.0
        return l_matrix

    nesting = set(term_nesting(term))
    factors = term_factor_names(term)
    required = frozenset(factors) | frozenset(term_covariate_names(term))

    choices: list[list[NDArray]] = []
    for name in factors:
        k = n_levels[name]
        if name in nesting:
            choices.append([np.eye(k)[i] for i in range(k)])
        else:
            # level i minus the reference (last) level
            choices.append([np.eye(k)[i] - np.eye(k)[k - 1] for i in range(k - 1)])

    rows = [
        level_weighted_row(design.columns, n_levels, dict(zip(factors, combo)), required=required)
        for combo in product(*choices)
    ]
    if not rows:
        return np.zeros((0, design.p_parameters), dtype=np.float64)
    return np.vstack(rows)


def type_iv_matrix(design: DesignMatrixInfo, term_name: str) -> NDArray:
    """
    Level comparisons over observed cells only.

    Each row compares two levels of every crossed factor (an indicator for
    nesting containers), averaged over the level combinations of the other
    factors of containing terms for which every compared cell holds data.
    At most levels - 1 independent comparisons are kept per crossed factor.
    Without empty cells the rows span the Type III hypothesis.
    The intercept is the unweighted mean of the observed cells.
    """
    term = design.terms[design.term_names.index(term_name)]
    n_levels = {name: len(levels) for name, levels in design.factor_levels.items()}
    present = design.w > 0.0

    if isinstance(term, Intercept):
        # unweighted mean of the observed cells of the model factors
        model_factors = [
            name for name in design.factor_names
            if any(name in term_factor_names(t) for t in design.terms)
        ]
        if not model_factors:
            return type_iii_matrix(design, term_name)
        codes = np.column_stack([design.factor_codes[name][present] for name in model_factors])
        cells = sorted({tuple(int(v) for v in row) for row in codes})
        return np.mean([
            level_weighted_row(
                design.columns,
                n_levels,
                {name: np.eye(n_levels[name])[level] for name, level in zip(model_factors, cell)},
            )
            for cell in cells
        ], axis=0).reshape(1, -1)

    nesting = set(term_nesting(term))
    factors = term_factor_names(term)
    if not factors:
        return type_iii_matrix(design, term_name)
    required = frozenset(factors) | frozenset(term_covariate_names(term))

    others: list[str] = []
    for other in design.terms:
        if not contains(other, term):
            continue
        for name in term_factor_names(other):
            if name not in factors and name not in others:
                others.append(name)

    variables = list(factors) + others
    codes = np.column_stack([design.factor_codes[name][present] for name in variables])
    observed = {tuple(int(v) for v in row) for row in codes}

    choices: list[list[NDArray]] = []
    for name in factors:
        k = n_levels[name]
        if name in nesting:
            choices.append([np.eye(k)[i] for i in range(k)])
        else:
            choices.append([np.eye(k)[i] - np.eye(k)[j] for i, j in combinations(range(k), 2)])

    candidates = []
    for combo in product(*choices):
        support = [
            tuple(int(v) for v in cell)
            for cell in product(*(np.flatnonzero(weights) for weights in combo))
        ]
        valid = [
            outer for outer in product(*(range(n_levels[name]) for name in others))
            if all(cell + outer in observed for cell in support)
        ]
        if valid:
            candidates.append((combo, valid))

    # Comparisons observed over the most cells first; a comparison is kept
    # only when it is independent of the kept ones in level space.
    candidates.sort(key=lambda item: -len(item[1]))
    kept: list[NDArray] = []
    rows = []
    for combo, valid in candidates:
        direction = reduce(np.kron, combo, np.ones(1))
        if np.linalg.matrix_rank(np.vstack(kept + [direction]), tol=SWEEP_TOLERANCE) == len(kept):
            continue
        kept.append(direction)
        tested = dict(zip(factors, combo))
        outer_rows = []
        for outer in valid:
            weights = dict(tested)
            for name, level in zip(others, outer):
                weights[name] = np.eye(n_levels[name])[level]
            outer_rows.append(level_weighted_row(design.columns, n_levels, weights, required=required))
        rows.append(np.mean(outer_rows, axis=0))
    if not rows:
        return np.zeros((0, design.p_parameters), dtype=np.float64)
    return np.vstack(rows)


# =====================================================================
# Estimated marginal means
# =====================================================================


def em_vector(design: DesignMatrixInfo, selection: dict[str, int]) -> NDArray:
    """
    L vector for the marginal mean at the selected factor levels.

    Intercept 1, covariates at their means, selected factors indicate their
    level, every other factor is averaged with 1/levels, interactions take
    the product.
    """
    n_levels = {name: len(levels) for name, levels in design.factor_levels.items()}
    weights = {
        name: np.eye(n_levels[name])[level] for name, level in selection.items()
    }
    return level_weighted_row(
        design.columns, n_levels, weights, covariate_values=design.covariate_means,
    )


def is_estimable(
    l_row: NDArray,
    g_inv: NDArray,
    xtwx: NDArray,
    *,
    tol: float = ESTIMABILITY_TOLERANCE,
) -> bool:
    """
    True when l beta is estimable: l is non-zero and l H = l with
    H = G X'WX.
    """
    l_row = np.asarray(l_row, dtype=np.float64)
    if not np.any(l_row):
        return False
    scale = max(1.0, float(np.max(np.abs(l_row))))
    residual = l_row @ (g_inv @ xtwx) - l_row
    return float(np.max(np.abs(residual))) <= tol * scale


# =====================================================================
# Estimable functions
# =====================================================================


def _clean_rows(l_matrix: NDArray) -> NDArray:
    """Zero entries at rounding level and drop all-zero rows."""
    l_matrix = np.atleast_2d(np.array(l_matrix, dtype=np.float64))
    if l_matrix.size == 0:
        return l_matrix
    scale = max(1.0, float(np.max(np.abs(l_matrix))))
    l_matrix[np.abs(l_matrix) <= ESTIMABILITY_TOLERANCE * scale] = 0.0
    return l_matrix[np.any(l_matrix != 0.0, axis=1)]


def build_estimable_functions(
    design: DesignMatrixInfo,
    swept: SweptMatrixInfo,
    xtwx: NDArray,
) -> EstimableFunctions:
    """
    General estimable function and per-term Type I-IV hypothesis rows.

    The general form is H = G X'WX: its rows for the non-aliased
    parameters are a basis of every estimable l beta (aliased rows of H
    are zero). Term rows are the unreduced L of each SS type with entries
    at rounding level set to zero.
    """
    h = swept.g_inv @ xtwx
    general = h[~swept.aliased].copy()
    scale = max(1.0, float(np.max(np.abs(general)))) if general.size else 1.0
    general[np.abs(general) <= ESTIMABILITY_TOLERANCE * scale] = 0.0

    terms = tuple(
        TermEstimableFunction(
            term=name,
            ss_type=int(ss_type),
            l_matrix=_clean_rows(term_l_matrix(design, xtwx, name, ss_type)),
        )
        for ss_type in SSType
        for name in design.term_names
    )
    return EstimableFunctions(
        parameters=tuple(column.label for column in design.columns),
        l_labels=tuple(f"L{i + 1}" for i in range(general.shape[0])),
        general=general,
        terms=terms,
    )
