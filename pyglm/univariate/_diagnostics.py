"""
Model diagnostics: heteroscedasticity tests and the lack-of-fit test.

Heteroscedasticity tests regress the squared residuals e^2 on an auxiliary
design by least squares:

    White              aux = [1, predictors, squared covariates,
                              products of columns from different terms];
                       LM = n R^2 ~ chi2(rank(aux) - 1)
    Breusch-Pagan      aux = [1, y_hat]; BP = ESS / (2 sigma^4),
                       sigma^2 = SSE / n; chi2(1)
    Modified BP        aux = [1, y_hat]; n R^2 ~ chi2(1) (Koenker)
    F test             aux = [1, y_hat]; F = (R^2 / 1) / ((1 - R^2) / (n - 2))

A test whose auxiliary regression has no usable predictor (constant
fitted values) is reported with status 'invalid' and NaN statistics.

Lack of fit groups cases with identical design rows; with c groups,
SS_PE is the within-group sum of squares, SS_LOF = SSE - SS_PE on
c - rank(X) degrees of freedom, tested against MS_PE on n - c.
"""

from itertools import combinations

import numpy as np
from numpy.typing import NDArray
from scipy import stats as sp_stats

from pyglm.core.compute.tolerances import SWEEP_TOLERANCE, ZERO_FLOOR
from pyglm.univariate._common import (
    HeteroscedasticityTest,
    LackOfFitResult,
    STATUS_INVALID,
)
from pyglm.univariate._ss import observed_power_f
from pyglm.univariate._sweep import SweptMatrixInfo
from pyglm.univariate.design import DesignMatrixInfo
from pyglm.univariate.request import HeteroscedasticityOptions


# =====================================================================
# Heteroscedasticity
# =====================================================================


def heteroscedasticity_tests(
    design: DesignMatrixInfo,
    swept: SweptMatrixInfo,
    options: HeteroscedasticityOptions,
) -> tuple[HeteroscedasticityTest, ...]:
    """Run the requested heteroscedasticity tests, in a fixed order."""
    sqrt_w = np.sqrt(design.w)
    fitted = design.x @ swept.beta_hat
    residuals = sqrt_w * (design.y - fitted)
    e2 = residuals ** 2
    n = design.n_samples
    ones = np.ones((n, 1), dtype=np.float64)

    out: list[HeteroscedasticityTest] = []
    if options.white:
        out.append(_white_test(design, e2))

    if options.breusch_pagan or options.modified_breusch_pagan or options.f_test:
        y_hat = sqrt_w * fitted
        if np.ptp(y_hat) <= SWEEP_TOLERANCE * max(1.0, float(np.max(np.abs(y_hat)))):
            reason = 'predicted values are constant'
            for flag, name in (
                (options.breusch_pagan, 'breusch_pagan'),
                (options.modified_breusch_pagan, 'modified_breusch_pagan'),
                (options.f_test, 'f_test'),
            ):
                if flag:
                    out.append(_invalid_test(name, 'f' if name == 'f_test' else 'chi2', reason))
            return tuple(out)

        aux = np.hstack([ones, y_hat[:, None]])
        r2, ess, _ = _auxiliary_fit(aux, e2)

        if options.breusch_pagan:
            sigma2 = swept.s_rss / n
            if sigma2 <= ZERO_FLOOR or not np.isfinite(r2):
                out.append(_invalid_test('breusch_pagan', 'chi2', 'residual variance is zero'))
            else:
                bp = ess / (2.0 * sigma2 ** 2)
                out.append(_chi2_test('breusch_pagan', bp, 1))

        if options.modified_breusch_pagan:
            if not np.isfinite(r2):
                out.append(_invalid_test('modified_breusch_pagan', 'chi2', 'squared residuals are constant'))
            else:
                out.append(_chi2_test('modified_breusch_pagan', n * r2, 1))

        if options.f_test:
            df2 = n - 2
            if not np.isfinite(r2) or df2 <= 0 or r2 >= 1.0:
                out.append(_invalid_test('f_test', 'f', 'auxiliary regression leaves no residual variance'))
            else:
                f_val = (r2 / 1.0) / ((1.0 - r2) / df2)
                out.append(HeteroscedasticityTest(
                    test='f_test',
                    statistic=f_val,
                    df=1.0,
                    df_denominator=float(df2),
                    p_value=float(sp_stats.f.sf(f_val, 1, df2)),
                    distribution='f',
                ))
    return tuple(out)


def white_auxiliary_design(design: DesignMatrixInfo) -> NDArray:
    """
    Auxiliary design of White's test.

    Intercept, every non-intercept design column, squares of pure covariate
    columns, and products of column pairs belonging to different terms.
    """
    n = design.n_samples
    parts: list[NDArray] = [np.ones(n, dtype=np.float64)]
    predictors = [
        j for j in range(design.p_parameters) if j != design.intercept_column
    ]
    for j in predictors:
        parts.append(design.x[:, j])
    for j in predictors:
        column = design.columns[j]
        if column.covariates and not column.factor_levels:
            parts.append(design.x[:, j] ** 2)
    for a, b in combinations(predictors, 2):
        if design.columns[a].term_index != design.columns[b].term_index:
            parts.append(design.x[:, a] * design.x[:, b])
    return np.column_stack(parts)


def _white_test(design: DesignMatrixInfo, e2: NDArray) -> HeteroscedasticityTest:
    aux = white_auxiliary_design(design)
    r2, _, rank = _auxiliary_fit(aux, e2)
    df = rank - 1
    if df <= 0:
        return _invalid_test('white', 'chi2', 'auxiliary design has no predictors')
    if not np.isfinite(r2):
        return _invalid_test('white', 'chi2', 'squared residuals are constant')
    return _chi2_test('white', design.n_samples * r2, df)


def _auxiliary_fit(aux: NDArray, target: NDArray) -> tuple[float, float, int]:
    """(R^2, explained SS, rank) of a least-squares fit with intercept in aux."""
    coef, _, rank, _ = np.linalg.lstsq(aux, target, rcond=None)
    fitted = aux @ coef
    centered = target - np.mean(target)
    tss = float(centered @ centered)
    rss = float(np.sum((target - fitted) ** 2))
    ess = float(np.sum((fitted - np.mean(target)) ** 2))
    r2 = 1.0 - rss / tss if tss > ZERO_FLOOR else float('nan')
    return r2, ess, int(rank)


def _chi2_test(name: str, statistic: float, df: int) -> HeteroscedasticityTest:
    return HeteroscedasticityTest(
        test=name,
        statistic=float(statistic),
        df=float(df),
        df_denominator=None,
        p_value=float(sp_stats.chi2.sf(statistic, df)),
        distribution='chi2',
    )


def _invalid_test(name: str, distribution: str, reason: str) -> HeteroscedasticityTest:
    nan = float('nan')
    return HeteroscedasticityTest(
        test=name,
        statistic=nan,
        df=nan,
        df_denominator=None,
        p_value=nan,
        distribution=distribution,
        status=STATUS_INVALID,
        reason=reason,
    )


# =====================================================================
# Lack of fit
# =====================================================================


def lack_of_fit_test(
    design: DesignMatrixInfo,
    swept: SweptMatrixInfo,
    sig_level: float,
) -> LackOfFitResult:
    """
    Lack-of-fit F test.

    Requires at least two groups of replicated design rows; otherwise, or
    when df_LOF <= 0 or MS_PE = 0, the result carries status 'invalid'.
    """
    n = design.n_samples
    if design.p_parameters == 0:
        inverse = np.zeros(n, dtype=np.intp)
        counts = np.array([n])
    else:
        _, inverse, counts = np.unique(
            design.x, axis=0, return_inverse=True, return_counts=True,
        )
        inverse = inverse.reshape(-1)
    n_groups = counts.shape[0]
    n_replicated = int(np.sum(counts > 1))

    ss_pe = 0.0
    for g in range(n_groups):
        mask = inverse == g
        w, y = design.w[mask], design.y[mask]
        mean = np.sum(w * y) / np.sum(w)
        ss_pe += float(np.sum(w * (y - mean) ** 2))

    df_pe = n - n_groups
    df_lof = n_groups - swept.rank
    ss_lof = max(swept.s_rss - ss_pe, 0.0)
    ms_pe = ss_pe / df_pe if df_pe > 0 else float('nan')
    ms_lof = ss_lof / df_lof if df_lof > 0 else float('nan')

    reason = None
    if n_replicated < 2:
        reason = 'fewer than two groups of replicated design points'
    elif df_lof <= 0:
        reason = 'no degrees of freedom for lack of fit'
    elif df_pe <= 0 or not ms_pe > ZERO_FLOOR:
        reason = 'pure error variance is zero'

    nan = float('nan')
    if reason is not None:
        return LackOfFitResult(
            ss_lack_of_fit=ss_lof,
            df_lack_of_fit=df_lof,
            ms_lack_of_fit=ms_lof,
            ss_pure_error=ss_pe,
            df_pure_error=df_pe,
            ms_pure_error=ms_pe,
            f_value=nan,
            p_value=nan,
            partial_eta_squared=nan,
            noncentrality=nan,
            observed_power=nan,
            n_groups=n_groups,
            status=STATUS_INVALID,
            reason=reason,
        )

    f_val = ms_lof / ms_pe
    noncentrality = df_lof * f_val
    return LackOfFitResult(
        ss_lack_of_fit=ss_lof,
        df_lack_of_fit=df_lof,
        ms_lack_of_fit=ms_lof,
        ss_pure_error=ss_pe,
        df_pure_error=df_pe,
        ms_pure_error=ms_pe,
        f_value=f_val,
        p_value=float(sp_stats.f.sf(f_val, df_lof, df_pe)),
        partial_eta_squared=ss_lof / (ss_lof + ss_pe),
        noncentrality=noncentrality,
        observed_power=observed_power_f(noncentrality, df_lof, df_pe, sig_level),
        n_groups=n_groups,
    )
