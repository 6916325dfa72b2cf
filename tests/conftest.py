"""
pytest configuration and shared fixtures.
"""

import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture
def oneway_frame():
    """Scenario: three balanced groups {1,2,3}, {4,5,6}, {7,8,9}."""
    return pd.DataFrame({
        'y': [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0],
        'g': ['a', 'a', 'a', 'b', 'b', 'b', 'c', 'c', 'c'],
    })


@pytest.fixture
def twoway_balanced(rng):
    """2 x 3 balanced factorial, 4 replicates per cell, with an A*B effect."""
    a = np.repeat(['a1', 'a2'], 12)
    b = np.tile(np.repeat(['b1', 'b2', 'b3'], 4), 2)
    effect = {'a1': 0.0, 'a2': 2.0}
    shift = {'b1': 0.0, 'b2': 1.0, 'b3': -1.0}
    y = np.array([10.0 + effect[i] + shift[j] for i, j in zip(a, b)])
    y = y + np.where((a == 'a2') & (b == 'b3'), 3.0, 0.0)
    y = y + rng.normal(0.0, 1.0, y.shape[0])
    return pd.DataFrame({'y': y, 'A': a, 'B': b})


@pytest.fixture
def twoway_unbalanced(rng):
    """2 x 3 factorial with unequal cell sizes (2 to 6 cases per cell)."""
    sizes = {('a1', 'b1'): 2, ('a1', 'b2'): 5, ('a1', 'b3'): 3,
             ('a2', 'b1'): 6, ('a2', 'b2'): 2, ('a2', 'b3'): 4}
    rows = []
    for (a, b), n in sizes.items():
        mean = 5.0 + (1.5 if a == 'a2' else 0.0) + {'b1': 0.0, 'b2': 2.0, 'b3': -1.0}[b]
        for value in rng.normal(mean, 1.0, n):
            rows.append({'y': value, 'A': a, 'B': b})
    return pd.DataFrame(rows)


@pytest.fixture
def ancova_frame(rng):
    """Three groups with a common slope on covariate x."""
    n_per = 15
    g = np.repeat(['g1', 'g2', 'g3'], n_per)
    x = rng.uniform(0.0, 10.0, 3 * n_per)
    offset = np.select([g == 'g1', g == 'g2'], [0.0, 2.0], 4.0)
    y = 1.0 + offset + 0.8 * x + rng.normal(0.0, 1.0, 3 * n_per)
    return pd.DataFrame({'y': y, 'g': g, 'x': x})
