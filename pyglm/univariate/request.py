"""
Analysis request for the univariate GLM.

AnalysisRequest is the single immutable configuration object the engine
consumes. Every option is an enumerated value or a resolved Term tree;
``AnalysisRequest.from_config`` translates a loose, form-style mapping
(term strings, option names) into this shape once, at the boundary.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from pyglm.core.exceptions import ValidationError
from pyglm.core.validation import (
    check_known_names,
    check_open_unit_interval,
    check_unique_names,
)
from pyglm.univariate.terms import (
    Covariate,
    Factor,
    Intercept,
    Term,
    full_factorial,
    parse_term,
    term_components,
)


class SSType(IntEnum):
    """Sum-of-squares decomposition."""
    I = 1
    II = 2
    III = 3
    IV = 4


class ContrastMethod(str, Enum):
    DEVIATION = 'deviation'
    SIMPLE = 'simple'
    DIFFERENCE = 'difference'
    HELMERT = 'helmert'
    REPEATED = 'repeated'
    POLYNOMIAL = 'polynomial'


class ReferenceCategory(str, Enum):
    FIRST = 'first'
    LAST = 'last'


class Adjustment(str, Enum):
    """Multiplicity adjustment for pairwise EM-mean comparisons."""
    LSD = 'lsd'
    BONFERRONI = 'bonferroni'
    SIDAK = 'sidak'


class HCType(str, Enum):
    """Heteroscedasticity-consistent covariance estimator."""
    HC0 = 'hc0'
    HC1 = 'hc1'
    HC2 = 'hc2'
    HC3 = 'hc3'
    HC4 = 'hc4'


class PostHocMethod(str, Enum):
    """Pairwise comparison of observed factor-level means."""
    LSD = 'lsd'
    BONFERRONI = 'bonferroni'
    SIDAK = 'sidak'
    SCHEFFE = 'scheffe'
    TUKEY = 'tukey'
    GAMES_HOWELL = 'games_howell'
    TAMHANE = 'tamhane'


@dataclass(frozen=True)
class FactorSpec:
    """
    A categorical variable taking part in the model.

    Attributes:
        name: Column name in the data
        levels: Level catalog in index order, or None to derive it from data
        random: Declared as a random factor (bookkeeping only; tests use
            the residual error term)
    """
    name: str
    levels: tuple[str, ...] | None = None
    random: bool = False


@dataclass(frozen=True)
class ContrastSpec:
    factor: str
    method: ContrastMethod
    reference: ReferenceCategory = ReferenceCategory.LAST


@dataclass(frozen=True)
class EMMeansRequest:
    """
    Estimated marginal means to compute.

    ``effects`` holds factor-name tuples; the empty tuple requests the
    overall (grand) mean. Pairwise comparisons are produced for
    single-factor effects when ``compare_main_effects`` is set.
    """
    effects: tuple[tuple[str, ...], ...] = ()
    compare_main_effects: bool = False
    adjustment: Adjustment = Adjustment.LSD


@dataclass(frozen=True)
class PostHocRequest:
    """
    Post-hoc comparisons of observed means for fixed factors.

    Every method in ``methods`` is run for every factor in ``factors``.
    """
    factors: tuple[str, ...] = ()
    methods: tuple[PostHocMethod, ...] = (PostHocMethod.TUKEY,)


@dataclass(frozen=True)
class HeteroscedasticityOptions:
    white: bool = False
    breusch_pagan: bool = False
    modified_breusch_pagan: bool = False
    f_test: bool = False

    @property
    def any(self) -> bool:
        return self.white or self.breusch_pagan or self.modified_breusch_pagan or self.f_test


@dataclass(frozen=True)
class AnalysisRequest:
    """
    Immutable description of one univariate GLM analysis.

    ``terms`` excludes the intercept (controlled by ``intercept``); None
    selects the full-factorial model of the factors plus covariate main
    effects.
    """
    response: str
    factors: tuple[FactorSpec, ...] = ()
    covariates: tuple[str, ...] = ()
    terms: tuple[Term, ...] | None = None
    intercept: bool = True
    weight: str | None = None
    ss_type: SSType = SSType.III
    contrasts: tuple[ContrastSpec, ...] = ()
    em_means: EMMeansRequest = field(default_factory=EMMeansRequest)
    levene: bool = False
    heteroscedasticity: HeteroscedasticityOptions = field(
        default_factory=HeteroscedasticityOptions
    )
    lack_of_fit: bool = False
    parameter_estimates: bool = True
    robust_se: HCType | None = None
    posthoc: PostHocRequest = field(default_factory=PostHocRequest)
    estimable_functions: bool = False
    sig_level: float = 0.05

    def __post_init__(self):
        if not isinstance(self.response, str) or not self.response:
            raise ValidationError("response: expected a non-empty column name")
        check_open_unit_interval(self.sig_level, "sig_level")
        if not isinstance(self.ss_type, SSType):
            raise ValidationError(
                f"ss_type: expected SSType, got {self.ss_type!r}"
            )
        if self.robust_se is not None and not isinstance(self.robust_se, HCType):
            raise ValidationError(f"robust_se: expected HCType, got {self.robust_se!r}")

        factor_names = [f.name for f in self.factors]
        check_unique_names(factor_names, "factors")
        check_unique_names(self.covariates, "covariates")
        check_unique_names(self.variable_names, "variables")
        if self.weight is not None and self.weight in self.variable_names:
            raise ValidationError(
                f"weight: {self.weight!r} is already used as a model variable"
            )

        declared_factors = set(factor_names)
        for term in self.model_terms:
            if isinstance(term, Intercept):
                raise ValidationError(
                    "terms: the intercept is controlled by intercept=, not listed as a term"
                )
            for component in term_components(term):
                if isinstance(component, Factor):
                    check_known_names([component.name], declared_factors, f"term {term.name!r}")
                else:
                    check_known_names([component.name], self.covariates, f"term {term.name!r}")
        check_unique_names([t.name for t in self.model_terms], "terms")

        for contrast in self.contrasts:
            check_known_names([contrast.factor], declared_factors, "contrasts")
            if not isinstance(contrast.method, ContrastMethod):
                raise ValidationError(
                    f"contrasts: expected ContrastMethod, got {contrast.method!r}"
                )
        for effect in self.em_means.effects:
            check_known_names(effect, declared_factors, "em_means")
            check_unique_names(effect, "em_means effect")

        check_known_names(self.posthoc.factors, declared_factors, "posthoc")
        check_unique_names(self.posthoc.factors, "posthoc factors")
        for name in self.posthoc.factors:
            if self.factor_spec(name).random:
                raise ValidationError(
                    f"posthoc: {name!r} is a random factor; post-hoc tests need a fixed factor"
                )
        for method in self.posthoc.methods:
            if not isinstance(method, PostHocMethod):
                raise ValidationError(f"posthoc: expected PostHocMethod, got {method!r}")

    # === Derived views ===

    @property
    def variable_names(self) -> tuple[str, ...]:
        """Response, factor and covariate names (weight excluded)."""
        return (self.response,) + tuple(f.name for f in self.factors) + self.covariates

    @property
    def model_terms(self) -> tuple[Term, ...]:
        """Terms after the intercept, defaulting to the full factorial."""
        if self.terms is not None:
            return self.terms
        return full_factorial(
            tuple(Factor(f.name) for f in self.factors),
            tuple(Covariate(c) for c in self.covariates),
        )

    def factor_spec(self, name: str) -> FactorSpec:
        for spec in self.factors:
            if spec.name == name:
                return spec
        raise KeyError(name)

    # === Construction from loose configuration ===

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'AnalysisRequest':
        """
        Build a request from a form-style mapping.

        Recognised keys:
            response (or dependent): str
            factors: list of names, or {name: [levels] | None}
            random_factors: list of names
            covariates: list of names
            weight: str
            model: list of term strings ("A", "A*B", "A(B)"); omitted for
                the full factorial
            intercept: bool
            ss_type: 1-4 or "I".."IV"
            contrasts: {factor: method | {"method": ..., "reference": ...}}
            em_means: {"effects": ["OVERALL", "A", "A*B"], "compare": bool,
                       "adjustment": "lsd" | "bonferroni" | "sidak"}
            levene, lack_of_fit, parameter_estimates: bool
            heteroscedasticity: {"white": bool, "breusch_pagan": bool,
                                 "modified_breusch_pagan": bool, "f_test": bool}
            robust_se: "hc0".."hc4" | None
            posthoc: {"factors": [names], "methods": ["tukey", "bonferroni", ...]}
            estimable_functions: bool
            sig_level: float
        """
        response = config.get('response', config.get('dependent'))
        if response is None:
            raise ValidationError("config: 'response' is required")

        factor_specs = _factor_specs(config.get('factors', ()), config.get('random_factors', ()))
        covariates = tuple(config.get('covariates', ()))

        factor_terms = {spec.name: Factor(spec.name) for spec in factor_specs}
        covariate_terms = {name: Covariate(name) for name in covariates}
        model = config.get('model')
        terms = None
        if model is not None:
            parsed = [parse_term(text, factor_terms, covariate_terms) for text in model]
            terms = tuple(t for t in parsed if not isinstance(t, Intercept))

        em_config = config.get('em_means') or {}
        em_means = EMMeansRequest(
            effects=tuple(_em_effect(text) for text in em_config.get('effects', ())),
            compare_main_effects=bool(em_config.get('compare', False)),
            adjustment=_enum(Adjustment, em_config.get('adjustment', 'lsd'), 'em_means.adjustment'),
        )

        het_config = config.get('heteroscedasticity') or {}
        unknown = set(het_config) - {'white', 'breusch_pagan', 'modified_breusch_pagan', 'f_test'}
        if unknown:
            raise ValidationError(f"heteroscedasticity: unknown test(s) {sorted(unknown)}")

        posthoc_config = config.get('posthoc') or {}
        posthoc = PostHocRequest(
            factors=tuple(posthoc_config.get('factors', ())),
            methods=tuple(
                _enum(PostHocMethod, method, 'posthoc.methods')
                for method in posthoc_config.get('methods', ('tukey',))
            ),
        )

        robust = config.get('robust_se')
        return cls(
            response=response,
            factors=factor_specs,
            covariates=covariates,
            terms=terms,
            intercept=bool(config.get('intercept', True)),
            weight=config.get('weight'),
            ss_type=_ss_type(config.get('ss_type', 3)),
            contrasts=_contrast_specs(config.get('contrasts') or {}),
            em_means=em_means,
            levene=bool(config.get('levene', False)),
            heteroscedasticity=HeteroscedasticityOptions(**{k: bool(v) for k, v in het_config.items()}),
            lack_of_fit=bool(config.get('lack_of_fit', False)),
            parameter_estimates=bool(config.get('parameter_estimates', True)),
            robust_se=None if robust is None else _enum(HCType, robust, 'robust_se'),
            posthoc=posthoc,
            estimable_functions=bool(config.get('estimable_functions', False)),
            sig_level=config.get('sig_level', 0.05),
        )


# =====================================================================
# Config helpers
# =====================================================================


def _enum(enum_cls, value: Any, name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        choices = [m.value for m in enum_cls]
        raise ValidationError(f"{name}: expected one of {choices}, got {value!r}") from None


def _ss_type(value: Any) -> SSType:
    if isinstance(value, SSType):
        return value
    if isinstance(value, str):
        try:
            return SSType[value.strip().upper()]
        except KeyError:
            pass
        if value.strip().isdigit():
            value = int(value)
    try:
        return SSType(value)
    except (ValueError, TypeError):
        raise ValidationError(f"ss_type: expected 1-4 or 'I'-'IV', got {value!r}") from None


def _factor_specs(factors: Any, random_factors: Sequence[str]) -> tuple[FactorSpec, ...]:
    random_set = set(random_factors)
    specs: list[FactorSpec] = []
    if isinstance(factors, Mapping):
        for name, levels in factors.items():
            specs.append(FactorSpec(
                name=name,
                levels=None if levels is None else tuple(levels),
                random=name in random_set,
            ))
    else:
        specs = [FactorSpec(name=name, random=name in random_set) for name in factors]
    declared = {s.name for s in specs}
    for name in random_factors:
        if name not in declared:
            specs.append(FactorSpec(name=name, random=True))
    return tuple(specs)


def _contrast_specs(contrasts: Mapping[str, Any]) -> tuple[ContrastSpec, ...]:
    specs = []
    for factor, option in contrasts.items():
        if isinstance(option, Mapping):
            method = option.get('method')
            reference = option.get('reference', 'last')
        else:
            method, reference = option, 'last'
        specs.append(ContrastSpec(
            factor=factor,
            method=_enum(ContrastMethod, method, f"contrasts[{factor!r}]"),
            reference=_enum(ReferenceCategory, reference, f"contrasts[{factor!r}].reference"),
        ))
    return tuple(specs)


def _em_effect(text: str) -> tuple[str, ...]:
    text = text.strip()
    if text.upper() in ('OVERALL', '(OVERALL)', ''):
        return ()
    names = tuple(part.strip() for part in text.split('*'))
    if any(not name for name in names):
        raise ValidationError(f"em_means: malformed effect {text!r}")
    return names
