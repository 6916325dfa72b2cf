"""
Tests for model terms.

Validates:
    - Interaction construction rules and names
    - Containment between terms
    - Full factorial default model
    - Term string parsing (crossed and nested)
"""

from collections import Counter

import pytest

from pyglm.core.exceptions import ValidationError
from pyglm.univariate.terms import (
    Covariate,
    Factor,
    Intercept,
    Interaction,
    contains,
    full_factorial,
    parse_term,
    term_covariate_names,
    term_factor_names,
    term_nesting,
    term_variables,
)

A, B, C, D = Factor('A'), Factor('B'), Factor('C'), Factor('D')
X = Covariate('X')
FACTORS = {'A': A, 'B': B, 'C': C, 'D': D}
COVARIATES = {'X': X}


class TestInteraction:

    def test_crossed_name(self):
        assert Interaction((A, B)).name == "A*B"

    def test_nested_name(self):
        assert Interaction((A, B), nesting=('B',)).name == "A(B)"

    def test_factor_by_covariate(self):
        term = Interaction((A, X))
        assert term.name == "A*X"
        assert term_factor_names(term) == ('A',)
        assert term_covariate_names(term) == ('X',)

    def test_too_few_components(self):
        with pytest.raises(ValidationError, match="at least 2"):
            Interaction((A,))

    def test_repeated_factor(self):
        with pytest.raises(ValidationError, match="repeated"):
            Interaction((A, A))

    def test_covariate_power_allowed(self):
        term = Interaction((X, X))
        assert term_variables(term) == Counter({'X': 2})

    def test_nesting_must_be_component_factor(self):
        with pytest.raises(ValidationError, match="nesting variable"):
            Interaction((A, B), nesting=('C',))

    def test_all_containers_rejected(self):
        with pytest.raises(ValidationError, match="container"):
            Interaction((A, B), nesting=('A', 'B'))

    def test_intercept_name(self):
        assert Intercept().name == "Intercept"


class TestContains:

    def test_interaction_contains_main_effects(self):
        ab = Interaction((A, B))
        assert contains(ab, A)
        assert contains(ab, B)
        assert not contains(A, ab)

    def test_not_reflexive(self):
        assert not contains(A, A)
        assert not contains(Intercept(), Intercept())

    def test_nested_contains_container(self):
        assert contains(Interaction((A, B), nesting=('B',)), B)

    def test_everything_contains_intercept(self):
        assert contains(A, Intercept())
        assert contains(X, Intercept())

    def test_covariate_power(self):
        assert contains(Interaction((X, X)), X)

    def test_unrelated(self):
        assert not contains(Interaction((A, B)), C)


class TestFullFactorial:

    def test_order_by_degree_then_covariates(self):
        terms = full_factorial((A, B, C), (X,))
        assert [t.name for t in terms] == [
            'A', 'B', 'C', 'A*B', 'A*C', 'B*C', 'A*B*C', 'X',
        ]

    def test_no_factors(self):
        assert full_factorial((), (X,)) == (X,)


class TestParseTerm:

    def test_main_effects(self):
        assert parse_term("A", FACTORS, COVARIATES) == A
        assert parse_term(" X ", FACTORS, COVARIATES) == X

    def test_intercept(self):
        assert isinstance(parse_term("Intercept", FACTORS, COVARIATES), Intercept)

    def test_crossed(self):
        term = parse_term("A*B*X", FACTORS, COVARIATES)
        assert term == Interaction((A, B, X))

    def test_nested(self):
        term = parse_term("A(B)", FACTORS, COVARIATES)
        assert term_nesting(term) == ('B',)
        assert term.name == "A(B)"

    def test_nested_crossed(self):
        term = parse_term("A*C(B*D)", FACTORS, COVARIATES)
        assert term.name == "A*C(B*D)"
        assert term_nesting(term) == ('B', 'D')

    def test_covariate_within_factor(self):
        assert parse_term("X(A)", FACTORS, COVARIATES).name == "X(A)"

    def test_unknown_variable(self):
        with pytest.raises(ValidationError, match="unknown variable 'Z'"):
            parse_term("A*Z", FACTORS, COVARIATES)

    def test_covariate_as_container(self):
        with pytest.raises(ValidationError, match="only factors"):
            parse_term("A(X)", FACTORS, COVARIATES)

    def test_self_nesting(self):
        with pytest.raises(ValidationError, match="within itself"):
            parse_term("A(A)", FACTORS, COVARIATES)

    @pytest.mark.parametrize("text", ["", "A*", "A(B", "A)B(", "A(B)(C)"])
    def test_malformed(self, text):
        with pytest.raises(ValidationError):
            parse_term(text, FACTORS, COVARIATES)
