"""
Tests for cross-product assembly and the sweep operator.

Validates:
    - Exact fit (y = 2x) recovers beta = [0, 2] with zero SSE
    - Generalized-inverse properties of G
    - Agreement with numpy least squares
    - Aliasing of a duplicated column
    - Block accumulation and case weights
"""

import numpy as np
import pytest

from pyglm.core.exceptions import CollinearityNotice, DimensionError
from pyglm.univariate._sweep import cross_product_matrix, sweep, sweep_columns


def solve(x, y, w=None):
    w = np.ones(x.shape[0]) if w is None else w
    zwz = cross_product_matrix(x, y, w)
    return zwz, sweep(zwz)


class TestExactFit:

    def test_simple_regression(self):
        x = np.column_stack([np.ones(4), [1.0, 2.0, 3.0, 4.0]])
        y = np.array([2.0, 4.0, 6.0, 8.0])
        _, swept = solve(x, y)
        np.testing.assert_allclose(swept.beta_hat, [0.0, 2.0], atol=1e-10)
        assert swept.s_rss == pytest.approx(0.0, abs=1e-10)
        assert swept.rank == 2
        assert not swept.aliased.any()


class TestFullRank:

    def test_matches_lstsq(self, rng):
        x = np.column_stack([np.ones(50), rng.standard_normal((50, 3))])
        y = x @ np.array([1.0, -2.0, 0.5, 3.0]) + rng.standard_normal(50)
        _, swept = solve(x, y)
        beta_ref, rss_ref, _, _ = np.linalg.lstsq(x, y, rcond=None)
        np.testing.assert_allclose(swept.beta_hat, beta_ref, rtol=1e-10, atol=1e-12)
        assert swept.s_rss == pytest.approx(float(rss_ref[0]), rel=1e-10)

    def test_inverse_property(self, rng):
        x = np.column_stack([np.ones(30), rng.standard_normal((30, 2))])
        y = rng.standard_normal(30)
        zwz, swept = solve(x, y)
        xtwx = zwz[:3, :3]
        np.testing.assert_allclose(xtwx @ swept.g_inv, np.eye(3), atol=1e-10)
        np.testing.assert_allclose(swept.g_inv, swept.g_inv.T)


class TestAliasing:

    def test_duplicated_covariate(self, rng):
        x1 = rng.standard_normal(20)
        x = np.column_stack([np.ones(20), x1, x1])
        y = 1.0 + 2.0 * x1 + rng.standard_normal(20)
        with pytest.warns(CollinearityNotice, match="aliased"):
            zwz, swept = solve(x, y)
        np.testing.assert_array_equal(swept.aliased, [False, False, True])
        assert swept.beta_hat[2] == 0.0
        assert swept.rank == 2
        np.testing.assert_array_equal(swept.g_inv[2], np.zeros(3))
        np.testing.assert_array_equal(swept.g_inv[:, 2], np.zeros(3))

        xtwx = zwz[:3, :3]
        np.testing.assert_allclose(xtwx @ swept.g_inv @ xtwx, xtwx, atol=1e-8)
        beta_ref = np.linalg.lstsq(x[:, :2], y, rcond=None)[0]
        np.testing.assert_allclose(swept.beta_hat[:2], beta_ref, atol=1e-10)

    def test_zero_column_aliased(self, rng):
        x = np.column_stack([np.ones(10), rng.standard_normal(10), np.zeros(10)])
        with pytest.warns(CollinearityNotice):
            _, swept = solve(x, rng.standard_normal(10))
        assert swept.aliased[2]

    def test_sweep_columns_subset(self, rng):
        x = np.column_stack([np.ones(12), rng.standard_normal((12, 2))])
        xtx = x.T @ x
        swept, aliased = sweep_columns(xtx, [0])
        assert not aliased.any()
        # Remaining block is the cross product of the centered columns
        centered = x[:, 1:] - x[:, 1:].mean(axis=0)
        np.testing.assert_allclose(swept[1:, 1:], centered.T @ centered, atol=1e-10)
        assert swept[0, 0] == pytest.approx(-1.0 / 12)


class TestCrossProduct:

    def test_block_accumulation(self, rng):
        x = rng.standard_normal((17, 3))
        y = rng.standard_normal(17)
        w = np.ones(17)
        full = cross_product_matrix(x, y, w)
        blocked = cross_product_matrix(x, y, w, block_rows=4)
        np.testing.assert_allclose(blocked, full, rtol=1e-12)
        z = np.column_stack([x, y])
        np.testing.assert_allclose(full, z.T @ z, rtol=1e-12)

    def test_weights(self, rng):
        x = np.column_stack([np.ones(8), rng.standard_normal(8)])
        y = rng.standard_normal(8)
        w = rng.uniform(0.5, 2.0, 8)
        zwz = cross_product_matrix(x, y, w)
        z = np.column_stack([x, y]) * np.sqrt(w)[:, None]
        np.testing.assert_allclose(zwz, z.T @ z, rtol=1e-12)

    def test_weighted_fit_matches_scaled_lstsq(self, rng):
        x = np.column_stack([np.ones(25), rng.standard_normal(25)])
        y = rng.standard_normal(25)
        w = rng.uniform(0.5, 2.0, 25)
        _, swept = solve(x, y, w)
        sw = np.sqrt(w)
        beta_ref = np.linalg.lstsq(x * sw[:, None], y * sw, rcond=None)[0]
        np.testing.assert_allclose(swept.beta_hat, beta_ref, atol=1e-10)

    def test_length_mismatch(self):
        with pytest.raises(DimensionError):
            cross_product_matrix(np.ones((3, 2)), np.ones(4), np.ones(3))
