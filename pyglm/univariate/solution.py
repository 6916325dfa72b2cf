"""
User-facing univariate GLM solution types.

Each solution wraps a Result[Params] and provides convenient accessors,
formatted summary output, and serialization. Numbers are kept at full
precision everywhere; rounding happens only in to_dict(decimals=...).
"""

import dataclasses
import math
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from pyglm.core.result import Result
from pyglm.univariate._common import (
    ContrastResult,
    DesignSummary,
    EMMeansResult,
    EffectTestRow,
    EstimableFunctions,
    HeteroscedasticityTest,
    LackOfFitResult,
    LeveneParams,
    ParameterEstimate,
    PostHocResult,
    STATUS_OK,
    UnivariateParams,
)
from pyglm.univariate._ss import evaluate_hypothesis, not_estimable_row
from pyglm.univariate._hypothesis import is_estimable, row_basis
from pyglm.univariate._sweep import SweptMatrixInfo
from pyglm.core.exceptions import (
    DegenerateHypothesisError,
    DimensionError,
    InvalidTestConditions,
)


# =====================================================================
# UnivariateSolution
# =====================================================================


@dataclass
class UnivariateSolution:
    """
    User-facing result for a univariate GLM fit.

    Produced by fit_univariate() and univariate().
    """
    _result: Result[UnivariateParams]

    # === Model ===

    @property
    def design(self) -> DesignSummary:
        return self._result.params.design

    @property
    def ss_type(self) -> int:
        return self._result.params.ss_type

    @property
    def sig_level(self) -> float:
        return self._result.params.sig_level

    @property
    def beta_hat(self) -> NDArray:
        """Parameter estimates; aliased parameters are 0."""
        return self._result.params.beta_hat

    @property
    def g_inv(self) -> NDArray:
        """Generalized inverse of X'WX from the sweep."""
        return self._result.params.g_inv

    @property
    def rank(self) -> int:
        return self._result.params.design.rank

    @property
    def sse(self) -> float:
        return self._result.params.sse

    @property
    def df_error(self) -> int:
        return self._result.params.df_error

    @property
    def mse(self) -> float:
        return self._result.params.mse

    @property
    def r_squared(self) -> float:
        return self._result.params.r_squared

    @property
    def adjusted_r_squared(self) -> float:
        return self._result.params.adjusted_r_squared

    # === Tables ===

    @property
    def between_subjects(self) -> tuple[EffectTestRow, ...]:
        """Tests of Between-Subjects Effects (model, terms, error, totals)."""
        return self._result.params.between_subjects

    @property
    def parameter_estimates(self) -> tuple[ParameterEstimate, ...]:
        return self._result.params.parameter_estimates

    @property
    def contrasts(self) -> tuple[ContrastResult, ...]:
        return self._result.params.contrasts

    @property
    def em_means(self) -> tuple[EMMeansResult, ...]:
        return self._result.params.em_means

    @property
    def levene(self) -> tuple[LeveneParams, ...]:
        return self._result.params.levene

    @property
    def heteroscedasticity(self) -> tuple[HeteroscedasticityTest, ...]:
        return self._result.params.heteroscedasticity

    @property
    def lack_of_fit(self) -> LackOfFitResult | None:
        return self._result.params.lack_of_fit

    @property
    def posthoc(self) -> tuple[PostHocResult, ...]:
        return self._result.params.posthoc

    @property
    def estimable_functions(self) -> EstimableFunctions | None:
        """General estimable function and per-term L rows, when requested."""
        return self._result.params.estimable_functions

    def effect(self, source: str) -> EffectTestRow:
        """Row of the between-subjects table by source name."""
        for row in self.between_subjects:
            if row.source == source:
                return row
        available = [row.source for row in self.between_subjects]
        raise KeyError(f"No effect {source!r}. Available: {available}")

    # === Envelope ===

    @property
    def info(self) -> dict[str, Any]:
        return self._result.info

    @property
    def timing(self) -> dict[str, float] | None:
        return self._result.timing

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    @property
    def provenance(self) -> dict[str, str]:
        return self._result.provenance

    # === Further hypotheses ===

    def test_hypothesis(self, l_matrix: Any, *, label: str = 'Custom Hypothesis') -> EffectTestRow:
        """
        Test H0: L beta = 0 for a user-supplied L against the model error.

        Args:
            l_matrix: (k, p) or (p,) coefficient matrix over the parameters

        Returns:
            EffectTestRow; status 'not_estimable' with NaN statistics when
            some row of L is not an estimable function of the parameters

        Raises:
            DimensionError: If L does not have p columns
            DegenerateHypothesisError: If L has rank 0 after row reduction
        """
        params = self._result.params
        l_arr = np.atleast_2d(np.asarray(l_matrix, dtype=np.float64))
        p = self.design.p_parameters
        if l_arr.shape[1] != p:
            raise DimensionError(f"l_matrix: expected {p} columns, got {l_arr.shape[1]}")
        reduced = row_basis(l_arr)
        if reduced.shape[0] == 0:
            raise DegenerateHypothesisError(
                f"Hypothesis {label!r} has rank 0 after row reduction", term=label,
            )
        if not all(is_estimable(row, params.g_inv, params.xtwx) for row in reduced):
            return not_estimable_row(label)
        swept = SweptMatrixInfo(
            g_inv=params.g_inv,
            beta_hat=params.beta_hat,
            s_rss=params.sse,
            aliased=params.aliased,
            rank=self.rank,
        )
        return evaluate_hypothesis(reduced, swept, self.df_error, self.sig_level, label=label)

    def require_valid_diagnostics(self) -> None:
        """
        Raise if any requested diagnostic test could not be performed.

        Raises:
            InvalidTestConditions: For the first Levene, heteroscedasticity
                or lack-of-fit result whose status is not 'ok'
        """
        checks = [(f"levene ({lev.center})", lev.status, lev.reason) for lev in self.levene]
        checks += [(t.test, t.status, t.reason) for t in self.heteroscedasticity]
        if self.lack_of_fit is not None:
            checks.append(('lack_of_fit', self.lack_of_fit.status, self.lack_of_fit.reason))
        for name, status, reason in checks:
            if status != STATUS_OK:
                raise InvalidTestConditions(
                    f"{name}: test not performed ({reason})", test=name, reason=reason or status,
                )

    # === Output ===

    def to_dict(self, decimals: int | None = None) -> dict[str, Any]:
        """
        Plain-Python representation of every table.

        Args:
            decimals: Round floats to this many decimals; None keeps full
                precision. NaN and infinities become None; the row's
                ``status`` says why.
        """
        params = self._result.params
        body = {
            'design': dataclasses.asdict(params.design),
            'ss_type': params.ss_type,
            'sig_level': params.sig_level,
            'sse': params.sse,
            'df_error': params.df_error,
            'mse': params.mse,
            'r_squared': params.r_squared,
            'adjusted_r_squared': params.adjusted_r_squared,
            'between_subjects': [dataclasses.asdict(r) for r in params.between_subjects],
            'parameter_estimates': [dataclasses.asdict(r) for r in params.parameter_estimates],
            'contrasts': [dataclasses.asdict(r) for r in params.contrasts],
            'em_means': [dataclasses.asdict(r) for r in params.em_means],
            'levene': [dataclasses.asdict(r) for r in params.levene],
            'heteroscedasticity': [dataclasses.asdict(r) for r in params.heteroscedasticity],
            'lack_of_fit': (
                None if params.lack_of_fit is None else dataclasses.asdict(params.lack_of_fit)
            ),
            'robust_se': params.robust_se,
            'posthoc': [dataclasses.asdict(r) for r in params.posthoc],
            'estimable_functions': (
                None if params.estimable_functions is None
                else dataclasses.asdict(params.estimable_functions)
            ),
            'warnings': list(self.warnings),
        }
        return _serialize(body, decimals)

    def summary(self) -> str:
        """Generate a Tests of Between-Subjects Effects summary."""
        d = self.design
        lines = [
            f"Univariate General Linear Model (Type {_roman(self.ss_type)} SS)",
            "=" * 78,
            f"Dependent variable: {d.response}",
            f"Cases: {d.n_samples} used of {d.n_total}"
            + (" (weighted)" if d.weighted else ""),
            f"Parameters: {d.p_parameters}, rank {d.rank}",
            "",
            f"{'Source':<22} {'Type SS':>14} {'df':>5} {'Mean Sq':>14} {'F':>10} {'Sig.':>10}",
            "-" * 78,
        ]
        for row in self.between_subjects:
            lines.append(_effect_line(row))
        lines.append("-" * 78)
        lines.append(
            f"R Squared = {_fmt(self.r_squared, '.3f')} "
            f"(Adjusted R Squared = {_fmt(self.adjusted_r_squared, '.3f')})"
        )
        if d.aliased:
            lines.append(f"Aliased parameters (set to zero): {', '.join(d.aliased)}")

        if self.levene:
            lines.append("")
            lines.append("Levene's Test of Equality of Error Variances:")
            for lev in self.levene:
                lines.append(
                    f"  {lev.center:<16} F = {_fmt(lev.f_value, '.4f'):>10}  "
                    f"df1 = {lev.df_between:<3} df2 = {_fmt(lev.df_within, '.3f'):>8}  "
                    f"p = {_fmt(lev.p_value, '.4f')}"
                )

        if self.heteroscedasticity:
            lines.append("")
            lines.append("Heteroscedasticity tests:")
            for test in self.heteroscedasticity:
                lines.append(
                    f"  {test.test:<24} stat = {_fmt(test.statistic, '.4f'):>10}  "
                    f"df = {_fmt(test.df, '.0f'):>3}  p = {_fmt(test.p_value, '.4f')}"
                    + ("" if test.status == STATUS_OK else f"  [{test.reason}]")
                )

        if self.lack_of_fit is not None:
            lof = self.lack_of_fit
            lines.append("")
            lines.append("Lack of Fit:")
            if lof.status == STATUS_OK:
                lines.append(
                    f"  F({lof.df_lack_of_fit}, {lof.df_pure_error}) = {lof.f_value:.4f}, "
                    f"p = {lof.p_value:.4f}"
                )
            else:
                lines.append(f"  not performed: {lof.reason}")

        for block in self.posthoc:
            lines.append("")
            lines.append(f"Post Hoc Tests: {block.factor} ({_POSTHOC_NAMES[block.method]})")
            lines.append(
                f"  {'(I)':<10} {'(J)':<10} {'Diff (I-J)':>12} {'Std. Error':>12} "
                f"{'Sig.':>8}  {int(round(block.conf_level * 100))}% CI"
            )
            for c in block.comparisons:
                lines.append(
                    f"  {c.level_i:<10} {c.level_j:<10} {_fmt(c.diff, '.4f'):>12} "
                    f"{_fmt(c.se, '.4f'):>12} {_fmt(c.p_value, '.4f'):>8}  "
                    f"[{_fmt(c.ci_lower, '.4f')}, {_fmt(c.ci_upper, '.4f')}]"
                )

        return "\n".join(lines)

    def __repr__(self) -> str:
        terms = [
            row.source for row in self.between_subjects
            if row.source not in ('Corrected Model', 'Model', 'Error', 'Total', 'Corrected Total')
        ]
        return (
            f"UnivariateSolution(type={self.ss_type}, n={self.design.n_samples}, "
            f"rank={self.rank}, terms={terms})"
        )


# =====================================================================
# LeveneSolution
# =====================================================================


@dataclass
class LeveneSolution:
    """
    User-facing result for Levene's test.

    Produced by levene_test().
    """
    _result: Result[LeveneParams]

    @property
    def f_value(self) -> float:
        return self._result.params.f_value

    @property
    def p_value(self) -> float:
        return self._result.params.p_value

    @property
    def df_between(self) -> int:
        return self._result.params.df_between

    @property
    def df_within(self) -> float:
        return self._result.params.df_within

    @property
    def center(self) -> str:
        return self._result.params.center

    @property
    def group_vars(self) -> dict[str, float]:
        return self._result.params.group_vars

    @property
    def status(self) -> str:
        return self._result.params.status

    def summary(self) -> str:
        variant = "Levene" if self.center == 'mean' else "Brown-Forsythe"
        lines = [
            f"{variant} Test for Homogeneity of Variances",
            "=" * 50,
            f"F({self.df_between}, {_fmt(self.df_within, '.3f')}) = "
            f"{_fmt(self.f_value, '.4f')}, p = {_fmt(self.p_value, '.4e')}",
            "",
            f"Center: {self.center}",
        ]
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"LeveneSolution(F={self.f_value:.4f}, "
            f"p={self.p_value:.4e}, center={self.center!r})"
        )


# =====================================================================
# Helpers
# =====================================================================


def _serialize(value: Any, decimals: int | None) -> Any:
    if isinstance(value, dict):
        return {k: _serialize(v, decimals) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(v, decimals) for v in value]
    if isinstance(value, np.ndarray):
        return _serialize(value.tolist(), decimals)
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        value = float(value)
        if not math.isfinite(value):
            return None
        return round(value, decimals) if decimals is not None else value
    return value


def _fmt(value: float | None, spec: str) -> str:
    if value is None or not np.isfinite(value):
        return "."
    return format(value, spec)


def _roman(ss_type: int) -> str:
    return {1: 'I', 2: 'II', 3: 'III', 4: 'IV'}[ss_type]


_POSTHOC_NAMES = {
    'lsd': 'LSD',
    'bonferroni': 'Bonferroni',
    'sidak': 'Sidak',
    'scheffe': 'Scheffe',
    'tukey': 'Tukey HSD',
    'games_howell': 'Games-Howell',
    'tamhane': "Tamhane's T2",
}


def _significance_stars(p: float | None) -> str:
    """Return significance stars for a p-value."""
    if p is None or np.isnan(p):
        return ""
    if p < 0.001:
        return "***"
    if p < 0.01:
        return "**"
    if p < 0.05:
        return "*"
    if p < 0.1:
        return "."
    return ""


def _effect_line(row: EffectTestRow) -> str:
    line = (
        f"{row.source:<22} {_fmt(row.sum_sq, '.4f'):>14} {row.df:>5} "
        f"{_fmt(row.mean_sq, '.4f'):>14}"
    )
    if row.f_value is None:
        return line
    line += f" {_fmt(row.f_value, '.4f'):>10} {_fmt(row.p_value, '.4f'):>10}"
    if row.status == STATUS_OK:
        return line + f" {_significance_stars(row.p_value)}"
    return line + f"  ({row.status.replace('_', ' ')})"
