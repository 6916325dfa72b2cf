"""
Univariate GLM solver dispatch.

Public API:
    fit_univariate(data, request) -> UnivariateSolution
    univariate(data, response, ...) -> UnivariateSolution
    levene_test(y, group, ...) -> LeveneSolution
"""

import dataclasses
from typing import Any

import numpy as np

from pyglm.core.compute.timing import Timer, timed
from pyglm.core.datasource import DataSource
from pyglm.core.result import Result
from pyglm.core.validation import check_1d, check_array, check_consistent_length, check_finite
from pyglm.univariate._common import DesignSummary, UnivariateParams
from pyglm.univariate._diagnostics import heteroscedasticity_tests, lack_of_fit_test
from pyglm.univariate._emmeans import estimated_marginal_means
from pyglm.univariate._hypothesis import build_estimable_functions
from pyglm.univariate._levene import levene_test_impl, levene_tests
from pyglm.univariate._parameters import parameter_estimates
from pyglm.univariate._posthoc import posthoc_comparisons
from pyglm.univariate._ss import between_subjects_table, contrast_results
from pyglm.univariate._sweep import cross_product_matrix, sweep
from pyglm.univariate.design import DesignMatrixInfo
from pyglm.univariate.request import AnalysisRequest
from pyglm.univariate.solution import LeveneSolution, UnivariateSolution


def fit_univariate(data: Any, request: AnalysisRequest) -> UnivariateSolution:
    """
    Fit a univariate general linear model.

    Args:
        data: A DataSource, DataFrame, CSV path, mapping of columns, or
            sequence of records
        request: Immutable analysis configuration

    Returns:
        UnivariateSolution with the between-subjects table and every
        requested auxiliary table

    Raises:
        ValidationError: Unknown variables or malformed request
        InvalidDataError: No usable cases

    Examples:
        >>> request = AnalysisRequest(
        ...     response='y', factors=(FactorSpec('A'), FactorSpec('B')),
        ... )
        >>> result = fit_univariate(df, request)
        >>> print(result.summary())
        >>> result.effect('A*B').p_value
    """
    source = DataSource.build(data)
    timer = Timer()
    timer.start()

    with timer.section('design'):
        design = DesignMatrixInfo.from_request(source, request)

    with timer.section('cross_product'):
        zwz = cross_product_matrix(design.x, design.y, design.w)

    with timer.section('sweep'):
        swept = sweep(zwz)
    design = dataclasses.replace(design, r_x_rank=swept.rank)

    p = design.p_parameters
    xtwx = zwz[:p, :p]
    df_error = design.n_samples - swept.rank
    mse = swept.s_rss / df_error if df_error > 0 else float('nan')

    notes = list(design.warnings)
    aliased_labels = tuple(
        column.label for column, flag in zip(design.columns, swept.aliased) if flag
    )
    if aliased_labels:
        notes.append(
            f"{len(aliased_labels)} parameter(s) aliased and fixed at zero: "
            f"{', '.join(aliased_labels)}"
        )
    if df_error <= 0:
        notes.append("No residual degrees of freedom; F tests are not available")

    with timer.section('hypotheses'):
        table, r_squared, adjusted = between_subjects_table(
            design, swept, zwz, request.ss_type, request.sig_level,
        )
        estimates = ()
        if request.parameter_estimates or request.robust_se is not None:
            estimates = parameter_estimates(
                design, swept, request.sig_level, robust=request.robust_se,
            )
        contrasts = tuple(
            contrast_results(design, swept, zwz, spec, request.sig_level)
            for spec in request.contrasts
        )
        functions = None
        if request.estimable_functions:
            functions = build_estimable_functions(design, swept, xtwx)

    with timer.section('em_means'):
        em_means = tuple(
            estimated_marginal_means(
                design, swept, xtwx, effect, request.sig_level,
                compare=request.em_means.compare_main_effects,
                adjustment=request.em_means.adjustment,
            )
            for effect in request.em_means.effects
        )

    with timer.section('posthoc'):
        posthoc = tuple(
            posthoc_comparisons(design, factor, method, mse, df_error, sig_level=request.sig_level)
            for factor in request.posthoc.factors
            for method in request.posthoc.methods
        )

    with timer.section('diagnostics'):
        levene = ()
        if request.levene:
            residuals = design.y - design.x @ swept.beta_hat
            levene = levene_tests(design, residuals)
        heteroscedasticity = ()
        if request.heteroscedasticity.any:
            heteroscedasticity = heteroscedasticity_tests(
                design, swept, request.heteroscedasticity,
            )
        lack_of_fit = None
        if request.lack_of_fit:
            lack_of_fit = lack_of_fit_test(design, swept, request.sig_level)

    timer.stop()

    summary = DesignSummary(
        response=design.response,
        n_total=design.n_total,
        n_samples=design.n_samples,
        p_parameters=p,
        rank=swept.rank,
        df_error=df_error,
        term_names=design.term_names,
        column_labels=tuple(c.label for c in design.columns),
        aliased=aliased_labels,
        factor_levels=dict(design.factor_levels),
        covariate_means=dict(design.covariate_means),
        weighted=design.weighted,
    )

    params = UnivariateParams(
        design=summary,
        ss_type=int(request.ss_type),
        sig_level=request.sig_level,
        beta_hat=swept.beta_hat,
        g_inv=swept.g_inv,
        xtwx=xtwx,
        aliased=swept.aliased,
        sse=swept.s_rss,
        df_error=df_error,
        mse=mse,
        between_subjects=table,
        r_squared=r_squared,
        adjusted_r_squared=adjusted,
        parameter_estimates=estimates if request.parameter_estimates else (),
        contrasts=contrasts,
        em_means=em_means,
        levene=levene,
        heteroscedasticity=heteroscedasticity,
        lack_of_fit=lack_of_fit,
        robust_se=None if request.robust_se is None else request.robust_se.value,
        posthoc=posthoc,
        estimable_functions=functions,
    )

    result = Result(
        params=params,
        info={
            'ss_type': int(request.ss_type),
            'rank': swept.rank,
            'aliased': np.flatnonzero(swept.aliased).tolist(),
            'case_indices_to_keep': design.case_indices_to_keep,
            'random_factors': tuple(design.random_factor_indices),
        },
        timing=timer.result(),
        backend_name='cpu_sweep',
        warnings=tuple(notes),
    )
    return UnivariateSolution(_result=result)


def univariate(
    data: Any,
    response: str,
    *,
    factors: Any = (),
    random_factors: Any = (),
    covariates: Any = (),
    model: Any = None,
    intercept: bool = True,
    weight: str | None = None,
    ss_type: Any = 3,
    contrasts: dict[str, Any] | None = None,
    em_means: dict[str, Any] | None = None,
    levene: bool = False,
    heteroscedasticity: dict[str, bool] | None = None,
    lack_of_fit: bool = False,
    parameter_estimates: bool = True,
    robust_se: str | None = None,
    posthoc: dict[str, Any] | None = None,
    estimable_functions: bool = False,
    sig_level: float = 0.05,
) -> UnivariateSolution:
    """
    Univariate GLM from keyword options.

    Args:
        data: Case data (see fit_univariate)
        response: Dependent variable column
        factors: Factor column names, or {name: [levels] | None}
        random_factors: Factor names treated as random
        covariates: Covariate column names
        model: Term strings such as ["A", "B", "A*B", "C(A)"]; None for the
            full factorial of the factors plus covariate main effects
        intercept: Include the intercept
        weight: Case weight column (cases with weight <= 0 are excluded)
        ss_type: 1-4 or "I".."IV". Default 3.
        contrasts: {factor: method | {"method": ..., "reference": ...}}
        em_means: {"effects": [...], "compare": bool, "adjustment": ...}
        levene: Run Levene's test on the observed cells
        heteroscedasticity: {"white": bool, "breusch_pagan": bool,
            "modified_breusch_pagan": bool, "f_test": bool}
        lack_of_fit: Run the lack-of-fit test
        parameter_estimates: Include the parameter estimates table
        robust_se: "hc0".."hc4" for robust standard errors
        posthoc: {"factors": [...], "methods": ["tukey", ...]} for pairwise
            comparisons of observed means of fixed factors
        estimable_functions: Include the general estimable function and
            the per-term Type I-IV L matrices
        sig_level: Significance level for intervals and observed power

    Examples:
        >>> result = univariate(df, 'y', factors=['A', 'B'], ss_type=3)
        >>> result = univariate(df, 'y', factors=['g'], covariates=['x'],
        ...                     model=['g', 'x'], em_means={'effects': ['g']})
    """
    config: dict[str, Any] = {
        'response': response,
        'factors': factors,
        'random_factors': random_factors,
        'covariates': covariates,
        'model': model,
        'intercept': intercept,
        'weight': weight,
        'ss_type': ss_type,
        'contrasts': contrasts,
        'em_means': em_means,
        'levene': levene,
        'heteroscedasticity': heteroscedasticity,
        'lack_of_fit': lack_of_fit,
        'parameter_estimates': parameter_estimates,
        'robust_se': robust_se,
        'posthoc': posthoc,
        'estimable_functions': estimable_functions,
        'sig_level': sig_level,
    }
    return fit_univariate(data, AnalysisRequest.from_config(config))


def levene_test(
    y: Any,
    group: Any,
    *,
    center: str = 'median',
) -> LeveneSolution:
    """
    Levene's test for homogeneity of variances.

    Args:
        y: Response variable (1D numeric array-like)
        group: Group labels (1D array-like, same length as y)
        center: 'median' (Brown-Forsythe, default), 'mean' (original
            Levene), 'median_adjusted' or 'trimmed'

    Returns:
        LeveneSolution with F statistic, p-value, and group variances

    Examples:
        >>> result = levene_test(y, group)
        >>> result.p_value > 0.05
        >>> print(result.summary())
    """
    y_arr = check_array(y, 'y')
    check_1d(y_arr, 'y')
    check_finite(y_arr, 'y')
    group_arr = np.asarray(group)
    check_consistent_length(y_arr, group_arr, names=('y', 'group'))

    with timed() as timer:
        levene_params = levene_test_impl(y_arr, group_arr, center=center)

    result = Result(
        params=levene_params,
        info={'center': center},
        timing=timer.result(),
        backend_name='cpu',
    )
    return LeveneSolution(_result=result)
