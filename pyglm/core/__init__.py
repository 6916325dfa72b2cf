"""
Core infrastructure for pyglm.

This module provides shared abstractions and utilities used by the
domain-specific submodules (univariate GLM).

Key components:
    datasource: DataSource case-data container
    result: Generic Result[P] envelope
    exceptions: Exception hierarchy
    validation: Input validators
    compute: Timing and numerical tolerances
"""

from pyglm.core.datasource import DataSource
from pyglm.core.result import Result
from pyglm.core.exceptions import (
    PyGLMError,
    ValidationError,
    DimensionError,
    InvalidDataError,
    NumericalError,
    DegenerateHypothesisError,
    InvalidTestConditions,
    CollinearityNotice,
)

__all__ = [
    # Data
    "DataSource",
    # Result
    "Result",
    # Exceptions
    "PyGLMError",
    "ValidationError",
    "DimensionError",
    "InvalidDataError",
    "NumericalError",
    "DegenerateHypothesisError",
    "InvalidTestConditions",
    "CollinearityNotice",
]
