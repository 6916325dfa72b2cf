"""
Exception hierarchy for pyglm.

All exceptions inherit from PyGLMError to allow catching any
library-specific error. Domain-specific exceptions should inherit from
the appropriate base class here.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Never catch and re-raise with less information
    - Numerical degeneracies that have a well-defined fallback are
      recorded (warnings, sentinel values), not raised
"""


class PyGLMError(Exception):
    """Base exception for all pyglm errors."""
    pass


class ValidationError(PyGLMError):
    """
    Input validation failed.

    Raised when user-provided inputs fail validation checks: unknown
    variables, malformed model terms, out-of-range options.
    """
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.

    Raised when array shapes don't match expected dimensions or
    when multiple arrays have inconsistent shapes.
    """
    pass


class InvalidDataError(ValidationError):
    """
    The case data cannot support the requested model.

    Raised when no valid rows remain after listwise exclusion, or when the
    response is degenerate (constant under an intercept-only model).

    Attributes:
        n_valid: Number of rows that survived exclusion
        n_total: Number of rows supplied
    """

    def __init__(
        self,
        message: str,
        n_valid: int | None = None,
        n_total: int | None = None,
    ):
        super().__init__(message)
        self.n_valid = n_valid
        self.n_total = n_total


class NumericalError(PyGLMError):
    """
    Numerical computation failed.

    Base class for errors arising from numerical issues during computation.
    """
    pass


class DegenerateHypothesisError(NumericalError):
    """
    A hypothesis matrix has rank zero after row reduction.

    The tested effect is not estimable from the data (for example, every
    contrast row lies in the null space of the design).

    Attributes:
        term: Label of the effect whose hypothesis is degenerate
        rank: Numerical rank that was found (0)
    """

    def __init__(
        self,
        message: str,
        term: str | None = None,
        rank: int = 0,
    ):
        super().__init__(message)
        self.term = term
        self.rank = rank


class InvalidTestConditions(PyGLMError):
    """
    The preconditions of a diagnostic test are not met.

    The engine reports such tests with an explicit invalid status rather
    than raising; UnivariateSolution.require_valid_diagnostics raises it
    for callers that want a hard failure.

    Attributes:
        test: Name of the diagnostic test
        reason: Why the test cannot be performed
    """

    def __init__(self, message: str, test: str, reason: str):
        super().__init__(message)
        self.test = test
        self.reason = reason


class CollinearityNotice(UserWarning):
    """
    One or more parameters are aliased (linearly dependent on earlier ones).

    Emitted through ``warnings.warn``; the affected parameters are fixed at
    zero and flagged in the swept-matrix output. Never raised as an error.
    """
    pass
