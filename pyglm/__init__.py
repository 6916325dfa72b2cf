"""
pyglm: univariate general linear models for Python.

Builds the design matrix from case data and a model description, solves
the normal equations with the sweep operator, and reports Type I-IV sums
of squares, estimated marginal means, contrasts and model diagnostics.

Submodules:
    univariate: Univariate GLM engine
    core: Data sources, result envelope, exceptions, validation
"""

__version__ = "0.1.0"

from pyglm import core
from pyglm import univariate

__all__ = [
    "__version__",
    "core",
    "univariate",
]
