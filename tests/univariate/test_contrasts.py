"""
Tests for contrast coefficients and level-weighted parameter rows.
"""

import numpy as np
import pytest

from pyglm.univariate._contrasts import (
    contrast_coefficients,
    contrast_l_matrix,
    contrast_labels,
    level_weighted_row,
)
from pyglm.univariate.design import ColumnSpec
from pyglm.univariate.request import ContrastMethod, ReferenceCategory


class TestContrastCoefficients:

    @pytest.mark.parametrize("method", list(ContrastMethod))
    @pytest.mark.parametrize("k", [2, 3, 5])
    def test_rows_sum_to_zero(self, method, k):
        rows = contrast_coefficients(method, k)
        np.testing.assert_allclose(rows.sum(axis=1), 0.0, atol=1e-12)

    @pytest.mark.parametrize("method", [m for m in ContrastMethod if m != ContrastMethod.POLYNOMIAL])
    def test_k_minus_one_rows(self, method):
        assert contrast_coefficients(method, 4).shape == (3, 4)

    def test_simple_last_reference(self):
        np.testing.assert_array_equal(
            contrast_coefficients(ContrastMethod.SIMPLE, 3),
            [[1.0, 0.0, -1.0], [0.0, 1.0, -1.0]],
        )

    def test_simple_first_reference(self):
        np.testing.assert_array_equal(
            contrast_coefficients(ContrastMethod.SIMPLE, 3, ReferenceCategory.FIRST),
            [[-1.0, 1.0, 0.0], [-1.0, 0.0, 1.0]],
        )

    def test_deviation(self):
        rows = contrast_coefficients(ContrastMethod.DEVIATION, 3)
        np.testing.assert_allclose(rows, [[2 / 3, -1 / 3, -1 / 3], [-1 / 3, 2 / 3, -1 / 3]])

    def test_helmert(self):
        rows = contrast_coefficients(ContrastMethod.HELMERT, 3)
        np.testing.assert_allclose(rows, [[1.0, -0.5, -0.5], [0.0, 1.0, -1.0]])

    def test_difference(self):
        rows = contrast_coefficients(ContrastMethod.DIFFERENCE, 3)
        np.testing.assert_allclose(rows, [[-1.0, 1.0, 0.0], [-0.5, -0.5, 1.0]])

    def test_repeated(self):
        rows = contrast_coefficients(ContrastMethod.REPEATED, 3)
        np.testing.assert_allclose(rows, [[1.0, -1.0, 0.0], [0.0, 1.0, -1.0]])

    def test_polynomial_linear_unit_norm(self):
        rows = contrast_coefficients(ContrastMethod.POLYNOMIAL, 4)
        assert rows.shape == (1, 4)
        assert np.linalg.norm(rows) == pytest.approx(1.0)
        assert np.all(np.diff(rows[0]) > 0)

    def test_single_level_empty(self):
        assert contrast_coefficients(ContrastMethod.SIMPLE, 1).shape == (0, 1)

    def test_labels(self):
        labels = contrast_labels(ContrastMethod.SIMPLE, ('a', 'b', 'c'))
        assert labels == ("Level a vs. Level c", "Level b vs. Level c")
        assert contrast_labels(ContrastMethod.REPEATED, ('a',)) == ()


# Columns of Intercept + A (3 levels, reference coded) + X + A*X
COLUMNS = (
    ColumnSpec(0, (), (), 'Intercept'),
    ColumnSpec(1, (('A', 0),), (), '[A=a]'),
    ColumnSpec(1, (('A', 1),), (), '[A=b]'),
    ColumnSpec(2, (), ('X',), 'X'),
    ColumnSpec(3, (('A', 0),), ('X',), '[A=a]*X'),
    ColumnSpec(3, (('A', 1),), ('X',), '[A=b]*X'),
)
N_LEVELS = {'A': 3}


class TestLevelWeightedRow:

    def test_grand_mean_row(self):
        row = level_weighted_row(COLUMNS, N_LEVELS, covariate_values={'X': 2.0})
        np.testing.assert_allclose(row, [1.0, 1 / 3, 1 / 3, 2.0, 2 / 3, 2 / 3])

    def test_selected_level(self):
        row = level_weighted_row(
            COLUMNS, N_LEVELS, {'A': np.array([0.0, 1.0, 0.0])}, covariate_values={'X': 0.0},
        )
        np.testing.assert_allclose(row, [1.0, 0.0, 1.0, 0.0, 0.0, 0.0])

    def test_required_variables(self):
        row = level_weighted_row(
            COLUMNS, N_LEVELS, {'A': np.array([1.0, 0.0, -1.0])}, required=frozenset({'A', 'X'}),
        )
        np.testing.assert_allclose(row, [0.0, 0.0, 0.0, 0.0, 1.0, 0.0])

    def test_contrast_l_matrix_holds_covariates_at_zero(self):
        coefficients = contrast_coefficients(ContrastMethod.SIMPLE, 3)
        l_matrix = contrast_l_matrix(COLUMNS, N_LEVELS, 'A', coefficients)
        np.testing.assert_allclose(l_matrix, [
            [0.0, 1.0, 0.0, 0.0, 0.0, 0.0],
            [0.0, 0.0, 1.0, 0.0, 0.0, 0.0],
        ])

    def test_contrast_l_matrix_empty(self):
        l_matrix = contrast_l_matrix(COLUMNS, N_LEVELS, 'A', np.zeros((0, 3)))
        assert l_matrix.shape == (0, 6)
