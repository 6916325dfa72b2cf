"""
Tests for the Tests of Between-Subjects Effects table.

Validates:
    - One-way balanced: every SS type agrees; F recomputable from group means
    - Balanced factorial: Type I = II = III = IV
    - Unbalanced factorial: each type against explicit model comparisons
    - ANCOVA: Type II = Type III without interactions
    - Aliased and empty-cell terms are reported, not raised
"""

import numpy as np
import pytest
from scipy import stats as sp_stats

from pyglm.univariate import univariate
from pyglm.univariate._common import STATUS_NOT_ESTIMABLE, STATUS_OK

SS_TYPES = [1, 2, 3, 4]


def sse(x, y):
    resid = y - x @ np.linalg.lstsq(x, y, rcond=None)[0]
    return float(resid @ resid)


def twoway_columns(frame):
    """Effect-coded (sum-to-zero) columns for the 2 x 3 design."""
    a = frame['A'].to_numpy()
    b = frame['B'].to_numpy()
    ea = np.where(a == 'a1', 1.0, -1.0)
    eb = np.column_stack([
        np.select([b == 'b1', b == 'b3'], [1.0, -1.0], 0.0),
        np.select([b == 'b2', b == 'b3'], [1.0, -1.0], 0.0),
    ])
    ab = ea[:, None] * eb
    ones = np.ones((len(frame), 1))
    return ones, ea[:, None], eb, ab


class TestOneWay:

    @pytest.mark.parametrize("ss_type", SS_TYPES)
    def test_group_ss_identical_across_types(self, oneway_frame, ss_type):
        result = univariate(oneway_frame, 'y', factors=['g'], ss_type=ss_type)
        row = result.effect('g')
        assert row.sum_sq == pytest.approx(54.0)
        assert row.df == 2
        assert row.f_value == pytest.approx(27.0)
        assert row.status == STATUS_OK

    def test_f_from_group_means(self, oneway_frame):
        result = univariate(oneway_frame, 'y', factors=['g'])
        groups = [g['y'].to_numpy() for _, g in oneway_frame.groupby('g')]
        f_ref, p_ref = sp_stats.f_oneway(*groups)
        row = result.effect('g')
        assert row.f_value == pytest.approx(f_ref)
        assert row.p_value == pytest.approx(p_ref)

    def test_table_layout(self, oneway_frame):
        result = univariate(oneway_frame, 'y', factors=['g'])
        sources = [row.source for row in result.between_subjects]
        assert sources == ['Corrected Model', 'Intercept', 'g', 'Error', 'Total', 'Corrected Total']
        model = result.effect('Corrected Model')
        assert model.sum_sq == pytest.approx(54.0)
        assert model.df == 2
        error = result.effect('Error')
        assert error.sum_sq == pytest.approx(6.0)
        assert error.df == 6
        assert error.f_value is None
        assert result.effect('Total').sum_sq == pytest.approx(285.0)
        assert result.effect('Total').df == 9
        assert result.effect('Corrected Total').sum_sq == pytest.approx(60.0)
        assert result.effect('Corrected Total').df == 8

    def test_intercept_row(self, oneway_frame):
        row = univariate(oneway_frame, 'y', factors=['g']).effect('Intercept')
        assert row.sum_sq == pytest.approx(225.0)
        assert row.df == 1

    def test_effect_sizes_and_power(self, oneway_frame):
        row = univariate(oneway_frame, 'y', factors=['g']).effect('g')
        assert row.partial_eta_squared == pytest.approx(54.0 / 60.0)
        assert row.noncentrality == pytest.approx(54.0)
        assert 0.0 < row.observed_power <= 1.0
        f_crit = sp_stats.f.isf(0.05, 2, 6)
        assert row.observed_power == pytest.approx(sp_stats.ncf.sf(f_crit, 2, 6, 54.0))

    def test_r_squared(self, oneway_frame):
        result = univariate(oneway_frame, 'y', factors=['g'])
        assert result.r_squared == pytest.approx(0.9)
        assert result.adjusted_r_squared == pytest.approx(1.0 - 0.1 * 8 / 6)

    def test_no_intercept_model_row(self, oneway_frame):
        result = univariate(oneway_frame, 'y', factors=['g'], intercept=False)
        model = result.effect('Model')
        assert model.df == 3
        assert model.sum_sq == pytest.approx(285.0 - 6.0)

    def test_unknown_effect(self, oneway_frame):
        with pytest.raises(KeyError, match="Available"):
            univariate(oneway_frame, 'y', factors=['g']).effect('h')


class TestBalancedFactorial:

    def test_all_types_agree(self, twoway_balanced):
        tables = {
            t: univariate(twoway_balanced, 'y', factors=['A', 'B'], ss_type=t)
            for t in SS_TYPES
        }
        for term in ('A', 'B', 'A*B'):
            ss = [tables[t].effect(term).sum_sq for t in SS_TYPES]
            np.testing.assert_allclose(ss, ss[0], rtol=1e-9)
            assert {tables[t].effect(term).df for t in SS_TYPES} == {(1 if term == 'A' else 2)}

    def test_terms_and_error_sum_to_corrected_total(self, twoway_balanced):
        result = univariate(twoway_balanced, 'y', factors=['A', 'B'], ss_type=1)
        parts = sum(result.effect(t).sum_sq for t in ('A', 'B', 'A*B', 'Error'))
        assert parts == pytest.approx(result.effect('Corrected Total').sum_sq)


class TestUnbalancedFactorial:

    def test_type_i_sequential(self, twoway_unbalanced):
        ones, ea, eb, ab = twoway_columns(twoway_unbalanced)
        y = twoway_unbalanced['y'].to_numpy()
        result = univariate(twoway_unbalanced, 'y', factors=['A', 'B'], ss_type=1)
        assert result.effect('A').sum_sq == pytest.approx(sse(ones, y) - sse(np.hstack([ones, ea]), y))
        assert result.effect('B').sum_sq == pytest.approx(
            sse(np.hstack([ones, ea]), y) - sse(np.hstack([ones, ea, eb]), y)
        )

    def test_type_i_depends_on_order(self, twoway_unbalanced):
        ab_first = univariate(twoway_unbalanced, 'y', factors=['A', 'B'], model=['A', 'B'], ss_type=1)
        ba_first = univariate(twoway_unbalanced, 'y', factors=['A', 'B'], model=['B', 'A'], ss_type=1)
        assert ab_first.effect('A').sum_sq != pytest.approx(ba_first.effect('A').sum_sq)

    def test_type_ii_marginal(self, twoway_unbalanced):
        ones, ea, eb, ab = twoway_columns(twoway_unbalanced)
        y = twoway_unbalanced['y'].to_numpy()
        result = univariate(twoway_unbalanced, 'y', factors=['A', 'B'], ss_type=2)
        main = sse(np.hstack([ones, ea, eb]), y)
        assert result.effect('A').sum_sq == pytest.approx(sse(np.hstack([ones, eb]), y) - main)
        assert result.effect('B').sum_sq == pytest.approx(sse(np.hstack([ones, ea]), y) - main)
        full = sse(np.hstack([ones, ea, eb, ab]), y)
        assert result.effect('A*B').sum_sq == pytest.approx(main - full)

    def test_type_iii_against_effect_coding(self, twoway_unbalanced):
        ones, ea, eb, ab = twoway_columns(twoway_unbalanced)
        y = twoway_unbalanced['y'].to_numpy()
        full = sse(np.hstack([ones, ea, eb, ab]), y)
        result = univariate(twoway_unbalanced, 'y', factors=['A', 'B'], ss_type=3)
        assert result.effect('A').sum_sq == pytest.approx(sse(np.hstack([ones, eb, ab]), y) - full)
        assert result.effect('B').sum_sq == pytest.approx(sse(np.hstack([ones, ea, ab]), y) - full)
        assert result.effect('A*B').sum_sq == pytest.approx(sse(np.hstack([ones, ea, eb]), y) - full)

    def test_type_iv_equals_iii_without_empty_cells(self, twoway_unbalanced):
        t3 = univariate(twoway_unbalanced, 'y', factors=['A', 'B'], ss_type=3)
        t4 = univariate(twoway_unbalanced, 'y', factors=['A', 'B'], ss_type=4)
        for term in ('A', 'B', 'A*B'):
            assert t4.effect(term).sum_sq == pytest.approx(t3.effect(term).sum_sq)

    @pytest.mark.parametrize("ss_type", SS_TYPES)
    def test_non_negative_ss(self, twoway_unbalanced, ss_type):
        result = univariate(twoway_unbalanced, 'y', factors=['A', 'B'], ss_type=ss_type)
        for row in result.between_subjects:
            if row.status == STATUS_OK:
                assert row.sum_sq >= 0.0


class TestEmptyCell:

    @pytest.fixture
    def empty_cell_frame(self, twoway_unbalanced):
        keep = ~((twoway_unbalanced['A'] == 'a2') & (twoway_unbalanced['B'] == 'b3'))
        return twoway_unbalanced[keep].reset_index(drop=True)

    @pytest.mark.filterwarnings("ignore::UserWarning")
    @pytest.mark.parametrize("ss_type", SS_TYPES)
    def test_interaction_loses_a_df(self, empty_cell_frame, ss_type):
        result = univariate(empty_cell_frame, 'y', factors=['A', 'B'], ss_type=ss_type)
        assert result.rank == 5
        assert len(result.design.aliased) == 1
        row = result.effect('A*B')
        assert row.df == 1
        assert row.sum_sq >= 0.0
        assert any('aliased' in w for w in result.warnings)

    @pytest.mark.filterwarnings("ignore::UserWarning")
    def test_type_iv_main_effect_reported(self, empty_cell_frame):
        row = univariate(empty_cell_frame, 'y', factors=['A', 'B'], ss_type=4).effect('A')
        assert row.status == STATUS_OK
        assert row.df == 1
        assert row.sum_sq >= 0.0

    @pytest.mark.filterwarnings("ignore::UserWarning")
    def test_type_iv_main_effect_keeps_full_df(self, empty_cell_frame):
        result = univariate(empty_cell_frame, 'y', factors=['A', 'B'], ss_type=4)
        assert result.effect('B').df == 2
        assert result.effect('B').status == STATUS_OK


class TestTypeIVCellMeans:
    """Type IV main effect against the cell-means contrast over shared levels."""

    @pytest.fixture
    def missing_a1b1(self, twoway_unbalanced):
        keep = ~((twoway_unbalanced['A'] == 'a1') & (twoway_unbalanced['B'] == 'b1'))
        return twoway_unbalanced[keep].reset_index(drop=True)

    @staticmethod
    def contrast_ss(frame, plus, minus):
        cells = frame.groupby(['A', 'B'])['y'].agg(['mean', 'count'])
        estimate = 0.0
        variance = 0.0
        for cell, sign in [(c, 0.5) for c in plus] + [(c, -0.5) for c in minus]:
            estimate += sign * cells.loc[cell, 'mean']
            variance += sign ** 2 / cells.loc[cell, 'count']
        return estimate ** 2 / variance

    @pytest.mark.filterwarnings("ignore::UserWarning")
    def test_a_compares_levels_observed_with_both(self, missing_a1b1):
        result = univariate(missing_a1b1, 'y', factors=['A', 'B'], ss_type=4)
        expected = self.contrast_ss(
            missing_a1b1,
            plus=[('a1', 'b2'), ('a1', 'b3')],
            minus=[('a2', 'b2'), ('a2', 'b3')],
        )
        row = result.effect('A')
        assert row.df == 1
        assert row.sum_sq == pytest.approx(expected)

    @pytest.mark.filterwarnings("ignore::UserWarning")
    def test_independent_of_level_labels(self, missing_a1b1):
        relabelled = missing_a1b1.assign(
            A=missing_a1b1['A'].map({'a1': 'a2', 'a2': 'a1'}),
            B=missing_a1b1['B'].map({'b1': 'b3', 'b2': 'b2', 'b3': 'b1'}),
        )
        original = univariate(missing_a1b1, 'y', factors=['A', 'B'], ss_type=4)
        swapped = univariate(relabelled, 'y', factors=['A', 'B'], ss_type=4)
        assert swapped.effect('A').sum_sq == pytest.approx(original.effect('A').sum_sq)


class TestAncova:

    def test_type_ii_equals_type_iii(self, ancova_frame):
        t2 = univariate(ancova_frame, 'y', factors=['g'], covariates=['x'], ss_type=2)
        t3 = univariate(ancova_frame, 'y', factors=['g'], covariates=['x'], ss_type=3)
        for term in ('g', 'x'):
            assert t2.effect(term).sum_sq == pytest.approx(t3.effect(term).sum_sq)

    def test_covariate_ss(self, ancova_frame):
        y = ancova_frame['y'].to_numpy()
        x = ancova_frame['x'].to_numpy()[:, None]
        g = ancova_frame['g'].to_numpy()
        dummies = np.column_stack([np.ones(len(y)), g == 'g1', g == 'g2']).astype(float)
        result = univariate(ancova_frame, 'y', factors=['g'], covariates=['x'])
        expected = sse(dummies, y) - sse(np.hstack([dummies, x]), y)
        assert result.effect('x').sum_sq == pytest.approx(expected)
        assert result.effect('x').df == 1


class TestAliasedTerm:

    @pytest.mark.filterwarnings("ignore::UserWarning")
    def test_duplicated_covariate_not_estimable(self, rng):
        x = rng.standard_normal(20)
        data = {'y': 1.0 + 2.0 * x + rng.standard_normal(20), 'x': x, 'x2': x.copy()}
        result = univariate(data, 'y', covariates=['x', 'x2'], ss_type=3)
        assert result.rank == 2
        assert result.design.aliased == ('x2',)
        row = result.effect('x2')
        assert row.status == STATUS_NOT_ESTIMABLE
        assert row.df == 0
        assert np.isnan(row.sum_sq)
        assert result.effect('Corrected Model').df == 1
