"""
Levene's test for homogeneity of variances.

Algorithm: Transform y to |y_ij - center(group_i)|, then run one-way ANOVA
on the transformed values. Centers:

    mean              original Levene test
    median            Brown-Forsythe
    median_adjusted   Brown-Forsythe with df2 = (sum u_i)^2 / sum(u_i^2 / (m_i - 1)),
                      u_i the within-group sum of squares of the transformed values
    trimmed           5% trimmed mean with interpolation at the cut points

In a fitted model the groups are the observed factor cells. Without
covariates the raw response is used, groups of one case are dropped and
all four variants are reported; with covariates the test runs on the
model residuals with the mean center only.
"""

import numpy as np
from numpy.typing import NDArray
from scipy import stats as sp_stats

from pyglm.core.exceptions import ValidationError
from pyglm.core.compute.tolerances import ZERO_FLOOR
from pyglm.univariate._common import LeveneParams, STATUS_INVALID
from pyglm.univariate.design import DesignMatrixInfo

CENTERS = ('mean', 'median', 'median_adjusted', 'trimmed')
TRIM_PROPORTION = 0.05


def levene_test_impl(
    y: NDArray,
    group: NDArray,
    *,
    center: str = 'median',
) -> LeveneParams:
    """
    Compute Levene's test (or a Brown-Forsythe variant).

    Args:
        y: 1D response array
        group: 1D group labels (same length as y)
        center: One of 'mean', 'median', 'median_adjusted', 'trimmed'

    Returns:
        LeveneParams with F statistic, p-value, and degrees of freedom
    """
    if center not in CENTERS:
        raise ValidationError(f"center must be one of {CENTERS}, got {center!r}")

    group_str = np.array([str(v) for v in group])
    levels = sorted(set(group_str))
    groups = [y[group_str == level] for level in levels]
    return _levene_from_groups(groups, levels, center)


def levene_tests(
    design: DesignMatrixInfo,
    residuals: NDArray,
) -> tuple[LeveneParams, ...]:
    """
    Levene rows for a fitted model.

    Returns one invalid row when fewer than two usable groups exist.
    """
    has_covariates = bool(design.covariate_means)
    values = residuals if has_covariates else design.y

    if design.factor_codes:
        codes = np.column_stack([design.factor_codes[f] for f in design.factor_names])
        cells, inverse = np.unique(codes, axis=0, return_inverse=True)
        inverse = inverse.reshape(-1)
        labels = [
            ", ".join(
                f"{f}={design.factor_levels[f][int(i)]}"
                for f, i in zip(design.factor_names, cell)
            )
            for cell in cells
        ]
        groups = [values[inverse == g] for g in range(len(cells))]
    else:
        labels, groups = ['all'], [values]

    if not has_covariates:
        kept = [(lab, g) for lab, g in zip(labels, groups) if g.shape[0] > 1]
        labels = [lab for lab, _ in kept]
        groups = [g for _, g in kept]

    centers = ('mean',) if has_covariates else CENTERS
    return tuple(_levene_from_groups(groups, labels, center) for center in centers)


# =====================================================================
# Internal helpers
# =====================================================================


def _levene_from_groups(
    groups: list[NDArray],
    labels: list[str],
    center: str,
) -> LeveneParams:
    k = len(groups)
    n = sum(g.shape[0] for g in groups)
    group_vars = {
        lab: float(np.var(g, ddof=1)) if g.shape[0] > 1 else float('nan')
        for lab, g in zip(labels, groups)
    }

    if k < 2 or n - k <= 0:
        nan = float('nan')
        return LeveneParams(
            f_value=nan,
            p_value=nan,
            df_between=max(k - 1, 0),
            df_within=float(max(n - k, 0)),
            center=center,
            group_vars=group_vars,
            status=STATUS_INVALID,
            reason='at least two groups and more cases than groups are required',
        )

    center_fn = {
        'mean': np.mean,
        'median': np.median,
        'median_adjusted': np.median,
        'trimmed': _interpolated_trimmed_mean,
    }[center]
    z_groups = [np.abs(g - center_fn(g)) for g in groups]

    # One-way ANOVA on the transformed values
    z_all = np.concatenate(z_groups)
    z_grand_mean = np.mean(z_all)
    ss_between = 0.0
    ss_within = 0.0
    within_parts: list[float] = []
    for z in z_groups:
        z_mean = np.mean(z)
        ss_between += z.shape[0] * (z_mean - z_grand_mean) ** 2
        part = float(np.sum((z - z_mean) ** 2))
        within_parts.append(part)
        ss_within += part

    df_between = k - 1
    df_within: float = float(n - k)

    if ss_within < ZERO_FLOOR:
        f_val = 0.0 if ss_between < ZERO_FLOOR else float('inf')
    else:
        f_val = (ss_between / df_between) / (ss_within / df_within)

    if center == 'median_adjusted':
        df_within = _adjusted_df(within_parts, [z.shape[0] for z in z_groups], df_within)

    if np.isinf(f_val):
        p_val = 0.0
    elif np.isinf(df_within):
        p_val = float(sp_stats.chi2.sf(f_val * df_between, df_between))
    else:
        p_val = float(sp_stats.f.sf(f_val, df_between, df_within))

    return LeveneParams(
        f_value=float(f_val),
        p_value=p_val,
        df_between=df_between,
        df_within=df_within,
        center=center,
        group_vars=group_vars,
    )


def _adjusted_df(within_parts: list[float], sizes: list[int], unadjusted: float) -> float:
    total = float(sum(within_parts))
    if total < ZERO_FLOOR:
        return unadjusted
    denom = sum(u ** 2 / (m - 1) for u, m in zip(within_parts, sizes) if m > 1)
    if denom < ZERO_FLOOR:
        return float('inf')
    return total ** 2 / denom


def _interpolated_trimmed_mean(values: NDArray, proportion: float = TRIM_PROPORTION) -> float:
    """
    Trimmed mean removing ``proportion`` of the cases from each end; when
    that is a fractional count the boundary cases are partly weighted.
    """
    x = np.sort(values)
    n = x.shape[0]
    if n < 3:
        return float(np.mean(x))
    trim = proportion * n
    g = int(np.floor(trim))
    fraction = trim - g
    if n <= 2 * g + 1:
        return float(np.median(x))
    inner = float(np.sum(x[g + 1:n - g - 1]))
    edges = (1.0 - fraction) * (x[g] + x[n - 1 - g])
    return (inner + edges) / (n * (1.0 - 2.0 * proportion))
