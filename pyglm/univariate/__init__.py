"""
Univariate General Linear Model.

Public API:
    fit_univariate(data, request) -> UnivariateSolution
    univariate(data, response, ...) -> UnivariateSolution   # keyword form
    levene_test(y, group, ...) -> LeveneSolution              # homogeneity of variances

Building blocks:
    AnalysisRequest and its option types
    Term trees: Intercept, Covariate, Factor, Interaction
"""

from pyglm.univariate.request import (
    Adjustment,
    AnalysisRequest,
    ContrastMethod,
    ContrastSpec,
    EMMeansRequest,
    FactorSpec,
    HCType,
    HeteroscedasticityOptions,
    PostHocMethod,
    PostHocRequest,
    ReferenceCategory,
    SSType,
)
from pyglm.univariate.terms import (
    Covariate,
    Factor,
    Intercept,
    Interaction,
    Term,
    full_factorial,
    parse_term,
)
from pyglm.univariate.design import DesignMatrixInfo
from pyglm.univariate.solvers import fit_univariate, levene_test, univariate
from pyglm.univariate.solution import LeveneSolution, UnivariateSolution

__all__ = [
    "fit_univariate",
    "univariate",
    "levene_test",
    "UnivariateSolution",
    "LeveneSolution",
    "AnalysisRequest",
    "FactorSpec",
    "ContrastSpec",
    "EMMeansRequest",
    "HeteroscedasticityOptions",
    "PostHocRequest",
    "PostHocMethod",
    "SSType",
    "ContrastMethod",
    "ReferenceCategory",
    "Adjustment",
    "HCType",
    "DesignMatrixInfo",
    "Intercept",
    "Covariate",
    "Factor",
    "Interaction",
    "Term",
    "full_factorial",
    "parse_term",
]
