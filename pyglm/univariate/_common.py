"""
Common data types for the univariate GLM.

Contains the frozen parameter payloads that go inside Result[P] envelopes.
Each payload is a pure data container: lookups at most, no computation.

Undefined statistics are NaN, and each table row carries a ``status``
('ok', 'not_estimable' or 'invalid') so a consumer never has to guess
whether a number is missing. None marks cells that do not apply to a row
at all (no F test on the Error row).
"""

from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray


STATUS_OK = 'ok'
STATUS_NOT_ESTIMABLE = 'not_estimable'
STATUS_INVALID = 'invalid'


@dataclass(frozen=True)
class EffectTestRow:
    """One row of an effects table (a model term, Error, Total)."""
    source: str
    sum_sq: float
    df: int
    mean_sq: float | None
    f_value: float | None              # None for Error / Total rows
    p_value: float | None
    partial_eta_squared: float | None
    noncentrality: float | None
    observed_power: float | None
    status: str = STATUS_OK


@dataclass(frozen=True)
class ParameterEstimate:
    """One row of the parameter estimates table."""
    label: str
    estimate: float
    std_error: float
    t_value: float
    p_value: float
    ci_lower: float
    ci_upper: float
    partial_eta_squared: float
    noncentrality: float
    observed_power: float
    aliased: bool
    robust_std_error: float | None = None
    robust_t_value: float | None = None
    robust_p_value: float | None = None


@dataclass(frozen=True)
class EMMean:
    """Estimated marginal mean for one cell of an effect."""
    levels: dict[str, str]             # factor -> level label
    mean: float
    std_error: float
    ci_lower: float
    ci_upper: float
    status: str = STATUS_OK


@dataclass(frozen=True)
class PairwiseComparison:
    """Difference between two marginal means of one factor."""
    factor: str
    level_i: str
    level_j: str
    difference: float
    std_error: float
    p_value: float
    ci_lower: float
    ci_upper: float
    status: str = STATUS_OK


@dataclass(frozen=True)
class EMMeansResult:
    """Estimated marginal means of one effect, with optional comparisons."""
    effect: tuple[str, ...]            # () for the overall mean
    means: tuple[EMMean, ...]
    comparisons: tuple[PairwiseComparison, ...]
    univariate_test: EffectTestRow | None
    adjustment: str


@dataclass(frozen=True)
class ContrastEstimate:
    """One contrast row: estimate, SE, test and interval."""
    label: str
    coefficients: tuple[float, ...]    # level weights
    estimate: float
    hypothesized_value: float
    std_error: float
    p_value: float
    ci_lower: float
    ci_upper: float
    status: str = STATUS_OK


@dataclass(frozen=True)
class ContrastResult:
    """Contrast results (K matrix) and joint test for one factor."""
    factor: str
    method: str
    reference: str
    estimates: tuple[ContrastEstimate, ...]
    test: EffectTestRow


@dataclass(frozen=True)
class LeveneParams:
    """Parameter payload for Levene / Brown-Forsythe test."""
    f_value: float
    p_value: float
    df_between: int
    df_within: float                   # fractional for the adjusted-df variant
    center: str                        # 'mean', 'median', 'median_adjusted', 'trimmed'
    group_vars: dict[str, float]       # group -> variance
    status: str = STATUS_OK
    reason: str | None = None


@dataclass(frozen=True)
class HeteroscedasticityTest:
    """Result of one auxiliary-regression heteroscedasticity test."""
    test: str                          # 'white', 'breusch_pagan', ...
    statistic: float
    df: float
    df_denominator: float | None       # F test only
    p_value: float
    distribution: str                  # 'chi2' or 'f'
    status: str = STATUS_OK
    reason: str | None = None


@dataclass(frozen=True)
class LackOfFitResult:
    """Lack-of-fit F test against pure error."""
    ss_lack_of_fit: float
    df_lack_of_fit: int
    ms_lack_of_fit: float
    ss_pure_error: float
    df_pure_error: int
    ms_pure_error: float
    f_value: float
    p_value: float
    partial_eta_squared: float
    noncentrality: float
    observed_power: float
    n_groups: int
    status: str = STATUS_OK
    reason: str | None = None


@dataclass(frozen=True)
class PostHocComparison:
    """One row of a post-hoc comparison table: mean(level_i) - mean(level_j)."""
    level_i: str
    level_j: str
    diff: float
    se: float
    df: float
    p_value: float
    ci_lower: float
    ci_upper: float
    status: str = STATUS_OK


@dataclass(frozen=True)
class PostHocResult:
    """Pairwise comparisons of observed level means for one factor and method."""
    factor: str
    method: str                        # 'lsd', 'bonferroni', 'tukey', ...
    levels: tuple[str, ...]
    means: tuple[float, ...]
    counts: tuple[float, ...]
    comparisons: tuple[PostHocComparison, ...]
    conf_level: float
    mse: float
    df_error: int


@dataclass(frozen=True)
class TermEstimableFunction:
    """L rows one SS type tests for a term, over the design parameters."""
    term: str
    ss_type: int
    l_matrix: NDArray[np.floating[Any]]


@dataclass(frozen=True)
class EstimableFunctions:
    """
    General estimable function and the per-term hypothesis rows.

    ``general`` rows (labelled L1, L2, ...) span every estimable l beta;
    one row per non-aliased parameter.
    """
    parameters: tuple[str, ...]
    l_labels: tuple[str, ...]
    general: NDArray[np.floating[Any]]
    terms: tuple[TermEstimableFunction, ...]

    def term(self, name: str, ss_type: int) -> TermEstimableFunction:
        for entry in self.terms:
            if entry.term == name and entry.ss_type == ss_type:
                return entry
        raise KeyError((name, ss_type))


@dataclass(frozen=True)
class DesignSummary:
    """What the engine actually fitted."""
    response: str
    n_total: int
    n_samples: int
    p_parameters: int
    rank: int
    df_error: int
    term_names: tuple[str, ...]
    column_labels: tuple[str, ...]
    aliased: tuple[str, ...]           # labels of aliased parameters
    factor_levels: dict[str, tuple[str, ...]]
    covariate_means: dict[str, float]
    weighted: bool


@dataclass(frozen=True)
class UnivariateParams:
    """
    Parameter payload for a univariate GLM fit.

    Produced by fit_univariate() / univariate().
    """
    design: DesignSummary
    ss_type: int
    sig_level: float
    beta_hat: NDArray[np.floating[Any]]
    g_inv: NDArray[np.floating[Any]]
    xtwx: NDArray[np.floating[Any]]
    aliased: NDArray[np.bool_]
    sse: float
    df_error: int
    mse: float
    between_subjects: tuple[EffectTestRow, ...]
    r_squared: float
    adjusted_r_squared: float
    parameter_estimates: tuple[ParameterEstimate, ...]
    contrasts: tuple[ContrastResult, ...]
    em_means: tuple[EMMeansResult, ...]
    levene: tuple[LeveneParams, ...]
    heteroscedasticity: tuple[HeteroscedasticityTest, ...]
    lack_of_fit: LackOfFitResult | None
    robust_se: str | None
    posthoc: tuple[PostHocResult, ...] = ()
    estimable_functions: EstimableFunctions | None = None
