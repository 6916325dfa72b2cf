"""
Parameter estimates table.

Per column: B, SE = sqrt(G_jj * MSE), t with df_error, two-sided p, the
(1 - alpha) interval, partial eta^2 = t^2 / (t^2 + df_error), noncentrality
|t| and observed power from the noncentral F(1, df_error) with noncentrality
t^2. Aliased parameters are kept in the table, flagged, with NaN statistics.

Optional heteroscedasticity-consistent standard errors use the sandwich
G (X' W Omega W X) G with the sweep's G:

    HC0  e^2
    HC1  e^2 * n / (n - r)
    HC2  e^2 / (1 - h)
    HC3  e^2 / (1 - h)^2
    HC4  e^2 / (1 - h)^delta,  delta = min(4, n h / r)

where h are the leverages w_i x_i G x_i'.
"""

import numpy as np
from numpy.typing import NDArray
from scipy import stats as sp_stats

from pyglm.univariate._common import ParameterEstimate
from pyglm.univariate._sweep import SweptMatrixInfo
from pyglm.univariate.design import DesignMatrixInfo
from pyglm.univariate.request import HCType


def parameter_estimates(
    design: DesignMatrixInfo,
    swept: SweptMatrixInfo,
    sig_level: float,
    *,
    robust: HCType | None = None,
) -> tuple[ParameterEstimate, ...]:
    """Build the parameter estimates table."""
    df_error = design.n_samples - swept.rank
    mse = swept.s_rss / df_error if df_error > 0 else float('nan')
    t_crit = sp_stats.t.isf(sig_level / 2.0, df_error) if df_error > 0 else float('nan')

    robust_se = None
    if robust is not None:
        robust_se = robust_standard_errors(design, swept, robust)

    nan = float('nan')
    rows: list[ParameterEstimate] = []
    for j, column in enumerate(design.columns):
        if swept.aliased[j]:
            rows.append(ParameterEstimate(
                label=column.label,
                estimate=nan,
                std_error=nan,
                t_value=nan,
                p_value=nan,
                ci_lower=nan,
                ci_upper=nan,
                partial_eta_squared=nan,
                noncentrality=nan,
                observed_power=nan,
                aliased=True,
                robust_std_error=None if robust_se is None else nan,
                robust_t_value=None if robust_se is None else nan,
                robust_p_value=None if robust_se is None else nan,
            ))
            continue

        b = float(swept.beta_hat[j])
        se = float(np.sqrt(max(swept.g_inv[j, j], 0.0) * mse))
        t_val, p_val = _t_test(b, se, df_error)
        noncentrality = abs(t_val)

        robust_fields: dict[str, float | None] = {}
        if robust_se is not None:
            r_t, r_p = _t_test(b, float(robust_se[j]), df_error)
            robust_fields = {
                'robust_std_error': float(robust_se[j]),
                'robust_t_value': r_t,
                'robust_p_value': r_p,
            }

        rows.append(ParameterEstimate(
            label=column.label,
            estimate=b,
            std_error=se,
            t_value=t_val,
            p_value=p_val,
            ci_lower=b - t_crit * se,
            ci_upper=b + t_crit * se,
            partial_eta_squared=(
                t_val ** 2 / (t_val ** 2 + df_error) if np.isfinite(t_val) else nan
            ),
            noncentrality=noncentrality,
            observed_power=_observed_power_t(noncentrality, df_error, sig_level),
            aliased=False,
            **robust_fields,
        ))
    return tuple(rows)


def robust_standard_errors(
    design: DesignMatrixInfo,
    swept: SweptMatrixInfo,
    hc_type: HCType,
) -> NDArray:
    """Heteroscedasticity-consistent standard errors (aliased entries NaN)."""
    x, w = design.x, design.w
    n = design.n_samples
    rank = swept.rank
    g = swept.g_inv

    residuals = design.y - x @ swept.beta_hat
    e2 = residuals ** 2
    leverage = w * np.einsum('ij,jk,ik->i', x, g, x)
    one_minus_h = 1.0 - leverage

    if hc_type == HCType.HC0:
        omega = e2
    elif hc_type == HCType.HC1:
        omega = e2 * n / (n - rank) if n > rank else np.full(n, np.nan)
    elif hc_type == HCType.HC2:
        omega = _safe_divide(e2, one_minus_h)
    elif hc_type == HCType.HC3:
        omega = _safe_divide(e2, one_minus_h ** 2)
    else:
        delta = np.minimum(4.0, n * leverage / rank) if rank > 0 else np.zeros(n)
        omega = _safe_divide(e2, one_minus_h ** delta)

    meat = (x * (w ** 2 * omega)[:, None]).T @ x
    cov = g @ meat @ g
    se = np.sqrt(np.clip(np.diag(cov), 0.0, None))
    se[swept.aliased] = np.nan
    return se


def _safe_divide(num: NDArray, den: NDArray) -> NDArray:
    """num / den, with 0 where den vanishes (cases with leverage 1 fit exactly)."""
    out = np.zeros_like(num)
    np.divide(num, den, out=out, where=den > 1e-12)
    return out


def _t_test(estimate: float, se: float, df: int) -> tuple[float, float]:
    if df <= 0 or not np.isfinite(se) or se <= 0:
        return float('nan'), float('nan')
    t_val = estimate / se
    return t_val, float(2.0 * sp_stats.t.sf(abs(t_val), df))


def _observed_power_t(noncentrality: float, df: int, sig_level: float) -> float:
    if df <= 0 or not np.isfinite(noncentrality):
        return float('nan')
    t_crit = sp_stats.t.isf(sig_level / 2.0, df)
    # Two-sided t test as F(1, df) with noncentrality t^2; the noncentral t
    # tail returns NaN once |t| is large.
    return float(sp_stats.ncf.sf(t_crit ** 2, 1, df, noncentrality ** 2))
