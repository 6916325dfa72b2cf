"""
Model terms for the univariate GLM.

A model is an ordered sequence of terms. Each term is one of four frozen
variants:

    Intercept                    constant column
    Covariate(name)              one numeric column
    Factor(name, levels)         indicator columns (reference = last level)
    Interaction(components,      product of component columns; components
                nesting)         named in ``nesting`` act as containers, so
                                 Interaction((A, B), nesting=('B',)) is A(B)

Term strings ("A", "A*B*X", "A(B)", "A*C(B)") are resolved into these
objects once, at the request boundary; the engine never parses strings.
"""

from collections import Counter
from dataclasses import dataclass
from itertools import combinations
from typing import Union

from pyglm.core.exceptions import ValidationError


INTERCEPT_NAME = 'Intercept'


@dataclass(frozen=True)
class Intercept:
    """Constant term."""

    @property
    def name(self) -> str:
        return INTERCEPT_NAME


@dataclass(frozen=True)
class Covariate:
    """Continuous predictor entering the model linearly."""
    name: str


@dataclass(frozen=True)
class Factor:
    """
    Categorical predictor.

    ``levels`` is the level catalog in index order. An empty tuple means the
    catalog is derived from the data by the design builder, which returns a
    resolved copy.
    """
    name: str
    levels: tuple[str, ...] = ()


@dataclass(frozen=True)
class Interaction:
    """Product of two or more factor/covariate components."""
    components: tuple[Union[Factor, Covariate], ...]
    nesting: tuple[str, ...] = ()

    def __post_init__(self):
        if len(self.components) < 2:
            raise ValidationError(
                f"Interaction needs at least 2 components, got {len(self.components)}"
            )
        factor_list = [c.name for c in self.components if isinstance(c, Factor)]
        factor_names = set(factor_list)
        if len(factor_names) != len(factor_list):
            raise ValidationError(
                f"Interaction: factor repeated among components {factor_list}"
            )
        for name in self.nesting:
            if name not in factor_names:
                raise ValidationError(
                    f"Interaction: nesting variable {name!r} must be one of its "
                    f"factor components {sorted(factor_names)}"
                )
        if len(set(self.nesting)) == len(self.components):
            raise ValidationError("Interaction: every component is a container")

    @property
    def name(self) -> str:
        crossed = "*".join(c.name for c in self.components if c.name not in self.nesting)
        if not self.nesting:
            return crossed
        return f"{crossed}({'*'.join(self.nesting)})"


Term = Union[Intercept, Covariate, Factor, Interaction]


# =====================================================================
# Term queries
# =====================================================================


def term_components(term: Term) -> tuple[Union[Factor, Covariate], ...]:
    """Factor/covariate components of a term (empty for the intercept)."""
    if isinstance(term, Intercept):
        return ()
    if isinstance(term, Interaction):
        return term.components
    return (term,)


def term_factor_names(term: Term) -> tuple[str, ...]:
    return tuple(c.name for c in term_components(term) if isinstance(c, Factor))


def term_covariate_names(term: Term) -> tuple[str, ...]:
    """Covariate names with multiplicity (X*X gives ('X', 'X'))."""
    return tuple(c.name for c in term_components(term) if isinstance(c, Covariate))


def term_nesting(term: Term) -> tuple[str, ...]:
    return term.nesting if isinstance(term, Interaction) else ()


def term_variables(term: Term) -> Counter:
    """Multiset of variable names a term involves."""
    return Counter(c.name for c in term_components(term))


def contains(outer: Term, inner: Term) -> bool:
    """
    True when ``outer`` strictly contains ``inner``.

    Containment is multiset inclusion of the variables: A*B contains A and
    B, A(B) contains B, X*X contains X, and every term contains the
    intercept.
    """
    big = term_variables(outer)
    small = term_variables(inner)
    if big == small:
        return False
    return all(big[name] >= count for name, count in small.items())


# =====================================================================
# Term construction
# =====================================================================


def full_factorial(
    factors: tuple[Factor, ...],
    covariates: tuple[Covariate, ...] = (),
) -> tuple[Term, ...]:
    """
    Default model: all factor main effects and interactions, ordered by
    degree, followed by covariate main effects.
    """
    terms: list[Term] = []
    for degree in range(1, len(factors) + 1):
        for combo in combinations(factors, degree):
            terms.append(combo[0] if degree == 1 else Interaction(tuple(combo)))
    terms.extend(covariates)
    return tuple(terms)


def parse_term(
    text: str,
    factors: dict[str, Factor],
    covariates: dict[str, Covariate],
) -> Term:
    """
    Resolve one term string into a Term.

    Grammar:
        term     := crossed [ "(" crossed ")" ]
        crossed  := name { "*" name }

    Args:
        text: e.g. "A", "A*B", "A*X", "A(B)", "A*C(B*D)", "Intercept"
        factors: declared factors by name
        covariates: declared covariates by name

    Raises:
        ValidationError: On unknown names or malformed syntax
    """
    source = text.strip()
    if not source:
        raise ValidationError("term: empty term string")
    if source == INTERCEPT_NAME:
        return Intercept()

    nesting_names: list[str] = []
    if '(' in source or ')' in source:
        if source.count('(') != 1 or source.count(')') != 1 or not source.endswith(')'):
            raise ValidationError(f"term {text!r}: malformed nesting, expected 'A(B)'")
        crossed_part, inner = source[:-1].split('(')
        nesting_names = _split_crossed(inner, text)
    else:
        crossed_part = source

    crossed_names = _split_crossed(crossed_part, text)

    components: list[Union[Factor, Covariate]] = []
    for name in crossed_names + nesting_names:
        if name in factors:
            components.append(factors[name])
        elif name in covariates:
            components.append(covariates[name])
        else:
            raise ValidationError(
                f"term {text!r}: unknown variable {name!r}. "
                f"Declared: {sorted(set(factors) | set(covariates))}"
            )

    for name in nesting_names:
        if name not in factors:
            raise ValidationError(
                f"term {text!r}: only factors can contain other effects, {name!r} is not a factor"
            )
    if set(crossed_names) & set(nesting_names):
        raise ValidationError(f"term {text!r}: a variable cannot be nested within itself")

    if len(components) == 1:
        return components[0]
    return Interaction(tuple(components), nesting=tuple(nesting_names))


def _split_crossed(part: str, text: str) -> list[str]:
    names = [name.strip() for name in part.split('*')]
    if any(not name for name in names):
        raise ValidationError(f"term {text!r}: empty variable name")
    return names
