"""
Post-hoc multiple comparisons of observed factor-level means.

Every pair of observed levels i < j is compared as mean_i - mean_j, with
means and counts taken from the (weighted) cases of the fitted model.

Pooled error (model MSE, df_error), se = sqrt(MSE (1/n_i + 1/n_j)):
    lsd         t = diff / se, unadjusted
    bonferroni  p * m, m = k (k - 1) / 2 comparisons
    sidak       1 - (1 - p)^m
    scheffe     F = t^2 / (k - 1) ~ F(k - 1, df_error)
    tukey       q = sqrt(2) |t| ~ studentized range(k, df_error)

Unequal variances, se = sqrt(s_i^2 / n_i + s_j^2 / n_j) with Welch df:
    games_howell  q = sqrt(2) |t| ~ studentized range(k, df_welch)
    tamhane       Welch t with the Sidak adjustment
"""

import numpy as np
from numpy.typing import NDArray
from scipy import stats as sp_stats

from pyglm.univariate._common import (
    PostHocComparison,
    PostHocResult,
    STATUS_INVALID,
    STATUS_OK,
)
from pyglm.univariate.design import DesignMatrixInfo
from pyglm.univariate.request import PostHocMethod

UNEQUAL_VARIANCE_METHODS = (PostHocMethod.GAMES_HOWELL, PostHocMethod.TAMHANE)


def level_statistics(
    y: NDArray,
    w: NDArray,
    codes: NDArray,
    n_levels: int,
) -> tuple[list[int], NDArray, NDArray, NDArray]:
    """
    Observed levels with their weighted mean, count and variance.

    Levels without cases are left out. The variance uses n - 1 in the
    denominator and is NaN for a level with n <= 1.
    """
    observed: list[int] = []
    means, counts, variances = [], [], []
    for level in range(n_levels):
        mask = codes == level
        n = float(np.sum(w[mask]))
        if n <= 0.0:
            continue
        mean = float(np.sum(w[mask] * y[mask]) / n)
        ss = float(np.sum(w[mask] * (y[mask] - mean) ** 2))
        observed.append(level)
        means.append(mean)
        counts.append(n)
        variances.append(ss / (n - 1.0) if n > 1.0 else float('nan'))
    return observed, np.array(means), np.array(counts), np.array(variances)


def posthoc_comparisons(
    design: DesignMatrixInfo,
    factor: str,
    method: PostHocMethod,
    mse: float,
    df_error: int,
    *,
    sig_level: float = 0.05,
) -> PostHocResult:
    """
    All pairwise comparisons of the observed means of one factor.

    Args:
        design: Fitted design (supplies y, weights and level codes)
        factor: Fixed factor whose levels are compared
        method: Comparison method
        mse: Model mean square error
        df_error: Model error degrees of freedom
        sig_level: 1 - confidence level of the intervals

    Returns:
        PostHocResult; comparisons that cannot be computed carry status
        'invalid' and NaN statistics
    """
    labels = design.factor_levels[factor]
    observed, means, counts, variances = level_statistics(
        design.y, design.w, design.factor_codes[factor], len(labels),
    )
    k = len(observed)
    m = k * (k - 1) // 2

    comparisons: list[PostHocComparison] = []
    for a in range(k):
        for b in range(a + 1, k):
            diff = float(means[a] - means[b])
            if method in UNEQUAL_VARIANCE_METHODS:
                se, df = _welch(variances[a], counts[a], variances[b], counts[b])
            else:
                se = float(np.sqrt(mse * (1.0 / counts[a] + 1.0 / counts[b])))
                df = float(df_error)
            comparisons.append(_compare(
                labels[observed[a]], labels[observed[b]], diff, se, df, method, k, m, sig_level,
            ))

    return PostHocResult(
        factor=factor,
        method=method.value,
        levels=tuple(labels[i] for i in observed),
        means=tuple(float(v) for v in means),
        counts=tuple(float(v) for v in counts),
        comparisons=tuple(comparisons),
        conf_level=1.0 - sig_level,
        mse=mse,
        df_error=df_error,
    )


def _welch(var_a: float, n_a: float, var_b: float, n_b: float) -> tuple[float, float]:
    if n_a < 2.0 or n_b < 2.0:
        return float('nan'), float('nan')
    u_a = var_a / n_a
    u_b = var_b / n_b
    se = float(np.sqrt(u_a + u_b))
    if se == 0.0:
        return float('nan'), float('nan')
    df = (u_a + u_b) ** 2 / (u_a ** 2 / (n_a - 1.0) + u_b ** 2 / (n_b - 1.0))
    return se, float(df)


def _compare(
    level_i: str,
    level_j: str,
    diff: float,
    se: float,
    df: float,
    method: PostHocMethod,
    k: int,
    m: int,
    sig_level: float,
) -> PostHocComparison:
    if not (np.isfinite(se) and se > 0.0 and np.isfinite(df) and df > 0.0):
        nan = float('nan')
        return PostHocComparison(
            level_i=level_i, level_j=level_j, diff=diff, se=se if np.isfinite(se) else nan,
            df=df if np.isfinite(df) else nan, p_value=nan, ci_lower=nan, ci_upper=nan,
            status=STATUS_INVALID,
        )

    t_stat = diff / se
    p_raw = 2.0 * float(sp_stats.t.sf(abs(t_stat), df))

    if method == PostHocMethod.LSD:
        p_value = p_raw
        margin = float(sp_stats.t.isf(sig_level / 2.0, df)) * se
    elif method == PostHocMethod.BONFERRONI:
        p_value = min(p_raw * m, 1.0)
        margin = float(sp_stats.t.isf(sig_level / (2.0 * m), df)) * se
    elif method in (PostHocMethod.SIDAK, PostHocMethod.TAMHANE):
        p_value = min(1.0 - (1.0 - p_raw) ** m, 1.0)
        alpha_each = 1.0 - (1.0 - sig_level) ** (1.0 / m)
        margin = float(sp_stats.t.isf(alpha_each / 2.0, df)) * se
    elif method == PostHocMethod.SCHEFFE:
        p_value = float(sp_stats.f.sf(t_stat ** 2 / (k - 1), k - 1, df))
        margin = float(np.sqrt((k - 1) * sp_stats.f.isf(sig_level, k - 1, df))) * se
    else:
        # Tukey and Games-Howell: studentized range on q = |diff| / (se / sqrt(2))
        q_stat = np.sqrt(2.0) * abs(t_stat)
        p_value = min(float(sp_stats.studentized_range.sf(q_stat, k, df)), 1.0)
        margin = float(sp_stats.studentized_range.isf(sig_level, k, df)) * se / np.sqrt(2.0)

    return PostHocComparison(
        level_i=level_i,
        level_j=level_j,
        diff=diff,
        se=se,
        df=df,
        p_value=p_value,
        ci_lower=diff - margin,
        ci_upper=diff + margin,
        status=STATUS_OK,
    )
