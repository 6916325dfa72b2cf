"""
Estimated marginal means.

EM = L b, SE = sqrt(L G L' * MSE), intervals use t(df_error). L comes from
_hypothesis.em_vector; a vector that is all zero or fails the
estimability check yields NaN with status 'not_estimable'.

Pairwise comparisons (single-factor effects) use L_i - L_j for every
ordered pair i != j. With C = k(k-1)/2 comparisons:

    LSD          p,                    alpha
    Bonferroni   min(p * C, 1),        alpha / C
    Sidak        1 - (1 - p)^C,        1 - (1 - alpha)^(1/C)
"""

from itertools import product

import numpy as np
from numpy.typing import NDArray
from scipy import stats as sp_stats

from pyglm.core.exceptions import DegenerateHypothesisError
from pyglm.univariate._common import (
    EMMean,
    EMMeansResult,
    EffectTestRow,
    PairwiseComparison,
    STATUS_NOT_ESTIMABLE,
)
from pyglm.univariate._hypothesis import em_vector, is_estimable
from pyglm.univariate._ss import evaluate_hypothesis, not_estimable_row
from pyglm.univariate._sweep import SweptMatrixInfo
from pyglm.univariate.design import DesignMatrixInfo
from pyglm.univariate.request import Adjustment


def estimated_marginal_means(
    design: DesignMatrixInfo,
    swept: SweptMatrixInfo,
    xtwx: NDArray,
    effect: tuple[str, ...],
    sig_level: float,
    *,
    compare: bool = False,
    adjustment: Adjustment = Adjustment.LSD,
) -> EMMeansResult:
    """
    Marginal means for every level combination of ``effect``.

    Args:
        effect: Factor names; () for the overall mean
        compare: Add pairwise comparisons and the univariate F test
            (single-factor effects only)
        adjustment: Multiplicity adjustment for the comparisons
    """
    df_error = design.n_samples - swept.rank
    mse = swept.s_rss / df_error if df_error > 0 else float('nan')
    t_crit = sp_stats.t.isf(sig_level / 2.0, df_error) if df_error > 0 else float('nan')

    means: list[EMMean] = []
    for combo in product(*(range(design.n_levels(f)) for f in effect)):
        selection = dict(zip(effect, combo))
        l_row = em_vector(design, selection)
        labels = {f: design.factor_levels[f][i] for f, i in selection.items()}
        if not is_estimable(l_row, swept.g_inv, xtwx):
            means.append(_nan_mean(labels))
            continue
        estimate, se = _estimate(l_row, swept, mse)
        means.append(EMMean(
            levels=labels,
            mean=estimate,
            std_error=se,
            ci_lower=estimate - t_crit * se,
            ci_upper=estimate + t_crit * se,
        ))

    comparisons: tuple[PairwiseComparison, ...] = ()
    test: EffectTestRow | None = None
    if compare and len(effect) == 1:
        factor = effect[0]
        comparisons = pairwise_comparisons(
            design, swept, xtwx, factor, sig_level, adjustment=adjustment,
        )
        test = univariate_test(design, swept, xtwx, factor, sig_level)

    return EMMeansResult(
        effect=effect,
        means=tuple(means),
        comparisons=comparisons,
        univariate_test=test,
        adjustment=adjustment.value,
    )


def pairwise_comparisons(
    design: DesignMatrixInfo,
    swept: SweptMatrixInfo,
    xtwx: NDArray,
    factor: str,
    sig_level: float,
    *,
    adjustment: Adjustment = Adjustment.LSD,
) -> tuple[PairwiseComparison, ...]:
    """All ordered pairwise differences of one factor's marginal means."""
    levels = design.factor_levels[factor]
    k = len(levels)
    n_comparisons = k * (k - 1) // 2
    df_error = design.n_samples - swept.rank
    mse = swept.s_rss / df_error if df_error > 0 else float('nan')

    alpha = adjusted_alpha(sig_level, n_comparisons, adjustment)
    t_crit = sp_stats.t.isf(alpha / 2.0, df_error) if df_error > 0 else float('nan')

    vectors = [em_vector(design, {factor: i}) for i in range(k)]
    estimable = [is_estimable(v, swept.g_inv, xtwx) for v in vectors]

    out: list[PairwiseComparison] = []
    nan = float('nan')
    for i in range(k):
        for j in range(k):
            if i == j:
                continue
            if not (estimable[i] and estimable[j]):
                out.append(PairwiseComparison(
                    factor=factor, level_i=levels[i], level_j=levels[j],
                    difference=nan, std_error=nan, p_value=nan,
                    ci_lower=nan, ci_upper=nan, status=STATUS_NOT_ESTIMABLE,
                ))
                continue
            diff, se = _estimate(vectors[i] - vectors[j], swept, mse)
            if df_error > 0 and se > 0:
                p_raw = float(2.0 * sp_stats.t.sf(abs(diff / se), df_error))
            else:
                p_raw = nan
            out.append(PairwiseComparison(
                factor=factor,
                level_i=levels[i],
                level_j=levels[j],
                difference=diff,
                std_error=se,
                p_value=adjust_p_value(p_raw, n_comparisons, adjustment),
                ci_lower=diff - t_crit * se,
                ci_upper=diff + t_crit * se,
            ))
    return tuple(out)


def univariate_test(
    design: DesignMatrixInfo,
    swept: SweptMatrixInfo,
    xtwx: NDArray,
    factor: str,
    sig_level: float,
) -> EffectTestRow:
    """F test of equal marginal means for one factor (successive differences)."""
    vectors = [
        v for v in (em_vector(design, {factor: i}) for i in range(design.n_levels(factor)))
        if is_estimable(v, swept.g_inv, xtwx)
    ]
    df_error = design.n_samples - swept.rank
    if len(vectors) < 2:
        return not_estimable_row(factor)
    l_matrix = np.vstack([vectors[i] - vectors[i + 1] for i in range(len(vectors) - 1)])
    try:
        return evaluate_hypothesis(l_matrix, swept, df_error, sig_level, label=factor)
    except DegenerateHypothesisError:
        return not_estimable_row(factor)


def adjusted_alpha(alpha: float, n_comparisons: int, adjustment: Adjustment) -> float:
    """Per-comparison significance level for confidence intervals."""
    if n_comparisons <= 1 or adjustment == Adjustment.LSD:
        return alpha
    if adjustment == Adjustment.BONFERRONI:
        return alpha / n_comparisons
    return 1.0 - (1.0 - alpha) ** (1.0 / n_comparisons)


def adjust_p_value(p: float, n_comparisons: int, adjustment: Adjustment) -> float:
    """Family-wise adjusted p-value."""
    if not np.isfinite(p) or n_comparisons <= 1 or adjustment == Adjustment.LSD:
        return p
    if adjustment == Adjustment.BONFERRONI:
        return min(p * n_comparisons, 1.0)
    return min(1.0 - (1.0 - p) ** n_comparisons, 1.0)


# =====================================================================
# Internal helpers
# =====================================================================


def _estimate(l_row: NDArray, swept: SweptMatrixInfo, mse: float) -> tuple[float, float]:
    estimate = float(l_row @ swept.beta_hat)
    variance = float(l_row @ swept.g_inv @ l_row)
    return estimate, float(np.sqrt(max(variance, 0.0) * mse))


def _nan_mean(labels: dict[str, str]) -> EMMean:
    nan = float('nan')
    return EMMean(
        levels=labels, mean=nan, std_error=nan, ci_lower=nan, ci_upper=nan,
        status=STATUS_NOT_ESTIMABLE,
    )
