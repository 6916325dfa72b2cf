"""
Numerical tolerances shared by the GLM engine and its test suite.

SWEEP_TOLERANCE is the relative threshold used for every rank decision:
sweep pivots, hypothesis-matrix row reduction and the rank of L G L'.
Keeping one constant makes the aliasing pattern and the effect degrees
of freedom agree with each other.
"""

# Pivot |c_kk| <= SWEEP_TOLERANCE * |original diagonal| marks a parameter
# as aliased. Singular values / eigenvalues below SWEEP_TOLERANCE times the
# largest one are treated as zero.
SWEEP_TOLERANCE = 1e-10

# Estimability check |l G X'WX - l| relative to max|l|. Looser than the
# pivot threshold because G X'WX accumulates the rounding of the sweep.
ESTIMABILITY_TOLERANCE = 1e-7

# Absolute floor below which a quantity that should be non-negative
# (variance, sum of squares) is reported as exactly zero.
ZERO_FLOOR = 1e-12


