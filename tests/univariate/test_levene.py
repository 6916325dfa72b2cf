"""
Tests for Levene's test / Brown-Forsythe test.

Validates:
    - Equal variances → high p-value
    - Unequal variances → low p-value
    - All four center options
    - Degrees of freedom, including the adjusted variant
    - Levene rows attached to a fitted model
"""

import numpy as np
import pandas as pd
import pytest
from scipy import stats as sp_stats

from pyglm.core.exceptions import ValidationError
from pyglm.univariate import levene_test, univariate
from pyglm.univariate._common import STATUS_INVALID, STATUS_OK


class TestLeveneEqualVariances:
    """Groups with equal variance → non-significant."""

    def test_high_p_value(self):
        rng = np.random.default_rng(42)
        y = np.concatenate([
            rng.normal(10, 2, 30),
            rng.normal(15, 2, 30),
            rng.normal(20, 2, 30),
        ])
        group = np.array(['A'] * 30 + ['B'] * 30 + ['C'] * 30)
        result = levene_test(y, group)
        assert result.p_value > 0.05

    def test_identical_spread_gives_zero_f(self):
        y = np.array([1.0, 2.0, 3.0, 10.0, 11.0, 12.0])
        group = np.array(['A', 'A', 'A', 'B', 'B', 'B'])
        result = levene_test(y, group)
        assert result.f_value == pytest.approx(0.0)
        assert result.p_value == pytest.approx(1.0)
        assert result.p_value > 0.05

    def test_degrees_of_freedom(self):
        rng = np.random.default_rng(42)
        y = np.concatenate([rng.normal(0, 1, 20), rng.normal(0, 1, 20)])
        group = np.array(['A'] * 20 + ['B'] * 20)
        result = levene_test(y, group)
        assert result.df_between == 1   # k - 1 = 2 - 1
        assert result.df_within == 38   # n - k = 40 - 2


class TestLeveneUnequalVariances:
    """Groups with very different variances → significant."""

    def test_low_p_value(self):
        rng = np.random.default_rng(42)
        y = np.concatenate([
            rng.normal(10, 1, 30),    # sd = 1
            rng.normal(10, 5, 30),    # sd = 5
            rng.normal(10, 10, 30),   # sd = 10
        ])
        group = np.array(['A'] * 30 + ['B'] * 30 + ['C'] * 30)
        result = levene_test(y, group)
        assert result.p_value < 0.01


class TestLeveneCenterOptions:
    """mean, median, median_adjusted and trimmed centers."""

    @pytest.fixture
    def samples(self):
        rng = np.random.default_rng(42)
        y = np.concatenate([rng.normal(0, 1, 12), rng.normal(0, 3, 15), rng.normal(0, 2, 9)])
        group = np.array(['A'] * 12 + ['B'] * 15 + ['C'] * 9)
        return y, group

    def test_median_default(self):
        y = np.array([1.0, 2.0, 3.0, 4.0])
        group = np.array(['A', 'A', 'B', 'B'])
        result = levene_test(y, group)
        assert result.center == 'median'

    @pytest.mark.parametrize("center", ['mean', 'median'])
    def test_matches_scipy(self, samples, center):
        y, group = samples
        result = levene_test(y, group, center=center)
        expected = sp_stats.levene(
            *(y[group == g] for g in ['A', 'B', 'C']), center=center,
        )
        assert result.f_value == pytest.approx(expected.statistic)
        assert result.p_value == pytest.approx(expected.pvalue)

    def test_median_adjusted_df(self, samples):
        y, group = samples
        plain = levene_test(y, group, center='median')
        adjusted = levene_test(y, group, center='median_adjusted')
        assert adjusted.f_value == pytest.approx(plain.f_value)

        parts, sizes = [], []
        for g in ['A', 'B', 'C']:
            values = y[group == g]
            z = np.abs(values - np.median(values))
            parts.append(np.sum((z - z.mean()) ** 2))
            sizes.append(values.shape[0])
        expected_df = sum(parts) ** 2 / sum(u ** 2 / (m - 1) for u, m in zip(parts, sizes))
        assert adjusted.df_within == pytest.approx(expected_df)
        assert adjusted.df_within != int(adjusted.df_within)
        assert adjusted.p_value == pytest.approx(
            sp_stats.f.sf(adjusted.f_value, 2, expected_df)
        )

    def test_trimmed_center(self, samples):
        y, group = samples
        result = levene_test(y, group, center='trimmed')
        assert result.center == 'trimmed'
        assert result.df_within == 33
        assert 0.0 <= result.p_value <= 1.0

    def test_invalid_center_raises(self):
        y = np.array([1.0, 2.0, 3.0])
        group = np.array(['A', 'B', 'C'])
        with pytest.raises(ValidationError, match="center"):
            levene_test(y, group, center='mode')


class TestLeveneOutput:
    """Result structure and output."""

    def test_group_vars_present(self):
        rng = np.random.default_rng(42)
        y = np.concatenate([rng.normal(0, 1, 20), rng.normal(0, 3, 20)])
        group = np.array(['A'] * 20 + ['B'] * 20)
        result = levene_test(y, group)
        assert result.group_vars['A'] == pytest.approx(np.var(y[:20], ddof=1))
        assert 'B' in result.group_vars

    def test_summary_output(self):
        rng = np.random.default_rng(42)
        y = np.concatenate([rng.normal(0, 1, 20), rng.normal(0, 1, 20)])
        group = np.array(['A'] * 20 + ['B'] * 20)
        assert 'Brown-Forsythe' in levene_test(y, group).summary()
        assert 'Levene' in levene_test(y, group, center='mean').summary()

    def test_repr(self):
        y = np.array([1.0, 2.0, 3.0, 5.0, 8.0, 13.0])
        group = np.array(['A'] * 3 + ['B'] * 3)
        assert 'LeveneSolution' in repr(levene_test(y, group))

    def test_single_group_is_invalid(self):
        result = levene_test(np.array([1.0, 2.0, 3.0]), np.array(['A', 'A', 'A']))
        assert result.status == STATUS_INVALID
        assert np.isnan(result.f_value)


class TestLeveneInModel:
    """Levene rows computed from a fitted model's cells."""

    def test_four_variants_without_covariates(self, twoway_balanced):
        result = univariate(twoway_balanced, 'y', factors=['A', 'B'], levene=True)
        assert [row.center for row in result.levene] == ['mean', 'median', 'median_adjusted', 'trimmed']
        assert all(row.status == STATUS_OK for row in result.levene)
        assert result.levene[0].df_between == 5
        assert result.levene[0].df_within == 18
        assert 'A=a1, B=b1' in result.levene[0].group_vars

    def test_cells_match_standalone(self, twoway_balanced):
        result = univariate(twoway_balanced, 'y', factors=['A', 'B'], levene=True)
        cells = (twoway_balanced['A'] + twoway_balanced['B']).to_numpy()
        standalone = levene_test(twoway_balanced['y'].to_numpy(), cells, center='median')
        assert result.levene[1].f_value == pytest.approx(standalone.f_value)

    def test_covariates_use_residuals_and_mean(self, ancova_frame):
        result = univariate(ancova_frame, 'y', factors=['g'], covariates=['x'], levene=True)
        assert len(result.levene) == 1
        assert result.levene[0].center == 'mean'

        y = ancova_frame['y'].to_numpy()
        g = ancova_frame['g'].to_numpy()
        x = ancova_frame['x'].to_numpy()
        design = np.column_stack([g == 'g1', g == 'g2', g == 'g3', x]).astype(float)
        residuals = y - design @ np.linalg.lstsq(design, y, rcond=None)[0]
        expected = sp_stats.levene(*(residuals[g == k] for k in ['g1', 'g2', 'g3']), center='mean')
        assert result.levene[0].f_value == pytest.approx(expected.statistic)

    def test_singleton_groups_dropped(self, oneway_frame):
        frame = pd.concat(
            [oneway_frame, pd.DataFrame({'y': [4.0], 'g': ['d']})], ignore_index=True,
        )
        result = univariate(frame, 'y', factors=['g'], levene=True)
        row = result.levene[0]
        assert set(row.group_vars) == {'g=a', 'g=b', 'g=c'}
        assert row.df_between == 2
        assert row.df_within == 6

    def test_intercept_only_model_is_invalid(self, oneway_frame):
        result = univariate(oneway_frame, 'y', levene=True)
        assert all(row.status == STATUS_INVALID for row in result.levene)
