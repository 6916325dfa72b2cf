"""
Sum-of-squares computation for general linear hypotheses.

For H0: L beta = 0 with G the generalized inverse from the sweep:

    SS(H) = (L b)' (L G L')^+ (L b)        clipped at 0
    df(H) = rank(L G L')
    F     = (SS / df) / MSE

The pseudo-inverse and the rank come from one eigendecomposition of
L G L', thresholded at SWEEP_TOLERANCE times the largest eigenvalue, so
dependent rows in L never inflate the degrees of freedom.

Also assembles the Tests of Between-Subjects Effects table and the
per-factor contrast results.
"""

import numpy as np
from numpy.typing import NDArray
from scipy import stats as sp_stats

from pyglm.core.compute.tolerances import SWEEP_TOLERANCE
from pyglm.core.exceptions import DegenerateHypothesisError
from pyglm.univariate._common import (
    ContrastEstimate,
    ContrastResult,
    EffectTestRow,
    STATUS_INVALID,
    STATUS_NOT_ESTIMABLE,
    STATUS_OK,
)
from pyglm.univariate._contrasts import (
    contrast_coefficients,
    contrast_l_matrix,
    contrast_labels,
)
from pyglm.univariate._hypothesis import hypothesis_matrix, is_estimable, row_basis
from pyglm.univariate._sweep import SweptMatrixInfo
from pyglm.univariate.design import DesignMatrixInfo
from pyglm.univariate.request import ContrastSpec, SSType


def hypothesis_sum_of_squares(
    l_matrix: NDArray,
    beta_hat: NDArray,
    g_inv: NDArray,
    *,
    tol: float = SWEEP_TOLERANCE,
) -> tuple[float, int]:
    """
    SS(H) and df(H) for H0: L beta = 0.

    Returns:
        (sum of squares, degrees of freedom); df is 0 for a degenerate L
    """
    l_matrix = np.atleast_2d(l_matrix)
    if l_matrix.shape[0] == 0:
        return 0.0, 0
    lb = l_matrix @ beta_hat
    v = l_matrix @ g_inv @ l_matrix.T
    v = (v + v.T) / 2.0
    eigvals, eigvecs = np.linalg.eigh(v)
    top = float(np.max(eigvals)) if eigvals.size else 0.0
    if top <= 0.0:
        return 0.0, 0
    keep = eigvals > tol * top
    projected = eigvecs[:, keep].T @ lb
    ss = float(np.sum(projected ** 2 / eigvals[keep]))
    return max(ss, 0.0), int(np.sum(keep))


def f_test_row(
    source: str,
    ss: float,
    df: int,
    sse: float,
    df_error: int,
    sig_level: float,
) -> EffectTestRow:
    """
    Complete an effect row from SS and df.

    F, p-value and observed power are NaN with status 'invalid' when the
    error term cannot support a test (df_error <= 0 or MSE = 0).
    """
    if df <= 0:
        return not_estimable_row(source)

    ms = ss / df
    denom = ss + sse
    partial_eta = ss / denom if denom > 0 else float('nan')

    mse = sse / df_error if df_error > 0 else float('nan')
    if not (df_error > 0 and mse > 0):
        return EffectTestRow(
            source=source,
            sum_sq=ss,
            df=df,
            mean_sq=ms,
            f_value=float('nan'),
            p_value=float('nan'),
            partial_eta_squared=partial_eta,
            noncentrality=float('nan'),
            observed_power=float('nan'),
            status=STATUS_INVALID,
        )

    f_val = ms / mse
    noncentrality = df * f_val
    return EffectTestRow(
        source=source,
        sum_sq=ss,
        df=df,
        mean_sq=ms,
        f_value=f_val,
        p_value=float(sp_stats.f.sf(f_val, df, df_error)),
        partial_eta_squared=partial_eta,
        noncentrality=noncentrality,
        observed_power=observed_power_f(noncentrality, df, df_error, sig_level),
        status=STATUS_OK,
    )


def observed_power_f(noncentrality: float, df: float, df_error: float, sig_level: float) -> float:
    """P(F' > F_crit) under the noncentral F with the observed noncentrality."""
    if not np.isfinite(noncentrality) or df <= 0 or df_error <= 0:
        return float('nan')
    f_crit = sp_stats.f.isf(sig_level, df, df_error)
    return float(sp_stats.ncf.sf(f_crit, df, df_error, max(noncentrality, 0.0)))


def not_estimable_row(source: str) -> EffectTestRow:
    nan = float('nan')
    return EffectTestRow(
        source=source,
        sum_sq=nan,
        df=0,
        mean_sq=nan,
        f_value=nan,
        p_value=nan,
        partial_eta_squared=nan,
        noncentrality=nan,
        observed_power=nan,
        status=STATUS_NOT_ESTIMABLE,
    )


def evaluate_hypothesis(
    l_matrix: NDArray,
    swept: SweptMatrixInfo,
    df_error: int,
    sig_level: float,
    *,
    label: str = 'Hypothesis',
) -> EffectTestRow:
    """
    Test H0: L beta = 0 against the residual error.

    Raises:
        DegenerateHypothesisError: When rank(L G L') is 0
    """
    ss, df = hypothesis_sum_of_squares(l_matrix, swept.beta_hat, swept.g_inv)
    if df == 0:
        raise DegenerateHypothesisError(
            f"Hypothesis {label!r} has rank 0 (not estimable)", term=label,
        )
    return f_test_row(label, ss, df, swept.s_rss, df_error, sig_level)


# =====================================================================
# Tests of Between-Subjects Effects
# =====================================================================


def between_subjects_table(
    design: DesignMatrixInfo,
    swept: SweptMatrixInfo,
    zwz: NDArray,
    ss_type: SSType,
    sig_level: float,
) -> tuple[tuple[EffectTestRow, ...], float, float]:
    """
    Full effects table for the fitted model.

    Rows: Corrected Model (or Model without an intercept), one row per
    term, Error, Total, Corrected Total. Terms whose hypothesis is
    degenerate stay in the table with status 'not_estimable'.

    Returns:
        (rows, R squared, adjusted R squared)
    """
    p = design.p_parameters
    xtwx = zwz[:p, :p]
    sse = swept.s_rss
    df_error = design.n_samples - swept.rank

    sum_w = float(np.sum(design.w))
    ywy = float(zwz[p, p])
    wy = float(np.sum(design.w * design.y))
    ss_corrected_total = max(ywy - wy ** 2 / sum_w, 0.0)

    rows: list[EffectTestRow] = []
    if design.has_intercept:
        model_ss = max(ss_corrected_total - sse, 0.0)
        rows.append(f_test_row('Corrected Model', model_ss, swept.rank - 1, sse, df_error, sig_level))
    else:
        model_ss = max(ywy - sse, 0.0)
        rows.append(f_test_row('Model', model_ss, swept.rank, sse, df_error, sig_level))

    for name in design.term_names:
        try:
            spec = hypothesis_matrix(design, xtwx, name, ss_type)
            rows.append(evaluate_hypothesis(spec.l_matrix, swept, df_error, sig_level, label=name))
        except DegenerateHypothesisError:
            rows.append(not_estimable_row(name))

    rows.append(EffectTestRow(
        source='Error',
        sum_sq=sse,
        df=df_error,
        mean_sq=sse / df_error if df_error > 0 else float('nan'),
        f_value=None,
        p_value=None,
        partial_eta_squared=None,
        noncentrality=None,
        observed_power=None,
    ))
    rows.append(_total_row('Total', ywy, design.n_samples))
    rows.append(_total_row('Corrected Total', ss_corrected_total, design.n_samples - 1))

    if ss_corrected_total > 0:
        r_squared = 1.0 - sse / ss_corrected_total
        adjusted = (
            1.0 - (1.0 - r_squared) * (design.n_samples - 1) / df_error
            if df_error > 0 else float('nan')
        )
    else:
        r_squared = adjusted = float('nan')

    return tuple(rows), r_squared, adjusted


def _total_row(source: str, ss: float, df: int) -> EffectTestRow:
    return EffectTestRow(
        source=source,
        sum_sq=ss,
        df=df,
        mean_sq=None,
        f_value=None,
        p_value=None,
        partial_eta_squared=None,
        noncentrality=None,
        observed_power=None,
    )


# =====================================================================
# Contrast results
# =====================================================================


def contrast_results(
    design: DesignMatrixInfo,
    swept: SweptMatrixInfo,
    zwz: NDArray,
    spec: ContrastSpec,
    sig_level: float,
) -> ContrastResult:
    """
    Per-row estimates and the joint F test of one factor contrast.

    Rows that are not estimable are reported with NaN and status
    'not_estimable'; a joint hypothesis of rank 0 gives a not-estimable
    test row.
    """
    p = design.p_parameters
    xtwx = zwz[:p, :p]
    df_error = design.n_samples - swept.rank
    mse = swept.s_rss / df_error if df_error > 0 else float('nan')
    t_crit = sp_stats.t.isf(sig_level / 2.0, df_error) if df_error > 0 else float('nan')

    levels = design.factor_levels[spec.factor]
    n_levels = {name: len(lv) for name, lv in design.factor_levels.items()}
    coefficients = contrast_coefficients(spec.method, len(levels), spec.reference)
    labels = contrast_labels(spec.method, levels, spec.reference)
    l_matrix = contrast_l_matrix(design.columns, n_levels, spec.factor, coefficients)

    nan = float('nan')
    estimates: list[ContrastEstimate] = []
    for label, weights, l_row in zip(labels, coefficients, l_matrix):
        if not is_estimable(l_row, swept.g_inv, xtwx):
            estimates.append(ContrastEstimate(
                label=label, coefficients=tuple(float(c) for c in weights),
                estimate=nan, hypothesized_value=0.0, std_error=nan,
                p_value=nan, ci_lower=nan, ci_upper=nan, status=STATUS_NOT_ESTIMABLE,
            ))
            continue
        estimate = float(l_row @ swept.beta_hat)
        se = float(np.sqrt(max(float(l_row @ swept.g_inv @ l_row), 0.0) * mse))
        if df_error > 0 and se > 0:
            p_val = float(2.0 * sp_stats.t.sf(abs(estimate / se), df_error))
        else:
            p_val = nan
        estimates.append(ContrastEstimate(
            label=label,
            coefficients=tuple(float(c) for c in weights),
            estimate=estimate,
            hypothesized_value=0.0,
            std_error=se,
            p_value=p_val,
            ci_lower=estimate - t_crit * se,
            ci_upper=estimate + t_crit * se,
        ))

    source = f"Contrast {spec.factor}"
    try:
        test = evaluate_hypothesis(row_basis(l_matrix), swept, df_error, sig_level, label=source)
    except DegenerateHypothesisError:
        test = not_estimable_row(source)

    return ContrastResult(
        factor=spec.factor,
        method=spec.method.value,
        reference=spec.reference.value,
        estimates=tuple(estimates),
        test=test,
    )
