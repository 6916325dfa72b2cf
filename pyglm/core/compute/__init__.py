"""
Shared compute infrastructure for pyglm.

This module provides timing utilities and numerical tolerance constants
shared by the domain code.

IMPORTANT: This is NOT where GLM algorithms live. Those go in
pyglm/univariate/. This module contains shared NUMERIC infrastructure.

Submodules:
    timing: Execution timing utilities
    tolerances: Rank and zero thresholds
"""

from pyglm.core.compute.timing import Timer, timed
from pyglm.core.compute.tolerances import (
    ESTIMABILITY_TOLERANCE,
    SWEEP_TOLERANCE,
    ZERO_FLOOR,
)

__all__ = [
    # Timing
    "Timer",
    "timed",
    # Tolerances
    "ESTIMABILITY_TOLERANCE",
    "SWEEP_TOLERANCE",
    "ZERO_FLOOR",
]
