"""
Design matrix construction for the univariate GLM.

DesignMatrixInfo wraps the validated (X, y, w) triple together with the
term/column bookkeeping every later stage relies on. It is built once per
request via DesignMatrixInfo.from_request and is read-only afterwards.

Coding rules:
    - Intercept: one constant column
    - Covariate: its raw values
    - Factor: one indicator per level except the reference (last) level.
      Without an intercept the first factor main effect gets all levels.
    - Interaction: elementwise products across the component columns; a
      nesting container contributes indicators for ALL its levels
"""

import warnings
from dataclasses import dataclass, field
from itertools import product
from typing import Any

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from pyglm.core.datasource import DataSource
from pyglm.core.exceptions import InvalidDataError
from pyglm.core.validation import check_known_names
from pyglm.univariate.request import AnalysisRequest
from pyglm.univariate.terms import (
    Covariate,
    Factor,
    Intercept,
    Interaction,
    Term,
    term_components,
    term_nesting,
)


@dataclass(frozen=True)
class ColumnSpec:
    """
    Description of one design column.

    Attributes:
        term_index: Position of the owning term in DesignMatrixInfo.terms
        factor_levels: (factor name, level index) pairs the column indicates
        covariates: Covariate names multiplied in (with multiplicity)
        label: Human-readable label, e.g. "[A=1]*[B=2]*X"
    """
    term_index: int
    factor_levels: tuple[tuple[str, int], ...]
    covariates: tuple[str, ...]
    label: str

    @property
    def variables(self) -> frozenset[str]:
        return frozenset(name for name, _ in self.factor_levels) | frozenset(self.covariates)


@dataclass(frozen=True)
class DesignMatrixInfo:
    """
    Validated design for one GLM request.

    Created via DesignMatrixInfo.from_request, not directly.

    Invariants:
        x.shape == (n_samples, p_parameters); y, w and case_indices_to_keep
        have n_samples entries, row i of each describing the same case.
        The term slices partition range(p_parameters).
    """
    x: NDArray[np.floating[Any]]
    y: NDArray[np.floating[Any]]
    w: NDArray[np.floating[Any]]
    n_samples: int
    p_parameters: int
    terms: tuple[Term, ...]
    term_names: tuple[str, ...]
    term_column_indices: dict[str, slice]
    columns: tuple[ColumnSpec, ...]
    intercept_column: int | None
    case_indices_to_keep: NDArray[np.intp]
    factor_levels: dict[str, tuple[str, ...]]
    factor_codes: dict[str, NDArray[np.intp]]
    covariate_means: dict[str, float]
    fixed_factor_indices: dict[str, tuple[int, ...]]
    random_factor_indices: dict[str, tuple[int, ...]]
    covariate_indices: dict[str, tuple[int, ...]]
    response: str
    weighted: bool
    n_total: int
    r_x_rank: int | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def has_intercept(self) -> bool:
        return self.intercept_column is not None

    @property
    def factor_names(self) -> tuple[str, ...]:
        return tuple(self.factor_levels)

    @property
    def covariate_names(self) -> tuple[str, ...]:
        return tuple(self.covariate_means)

    def term_columns(self, term_name: str) -> NDArray[np.intp]:
        """Column indices of one term."""
        span = self.term_column_indices[term_name]
        return np.arange(span.start, span.stop)

    def n_levels(self, factor: str) -> int:
        return len(self.factor_levels[factor])

    @staticmethod
    def from_request(source: DataSource, request: AnalysisRequest) -> 'DesignMatrixInfo':
        """
        Build X, y, w from case data for the request's model.

        Rows with a missing or non-numeric value in any participating
        column, a factor value outside a declared level catalog, or a
        non-positive weight are excluded listwise.

        Raises:
            ValidationError: Unknown variables
            InvalidDataError: No valid rows, or a constant response under an
                intercept-only model
        """
        required = list(request.variable_names)
        if request.weight is not None:
            required.append(request.weight)
        check_known_names(required, source.keys(), "data")

        n_total = source.n_observations
        valid = np.ones(n_total, dtype=bool)

        y_all = source.numeric(request.response)
        valid &= np.isfinite(y_all)

        if request.weight is not None:
            w_all = source.numeric(request.weight)
            valid &= np.isfinite(w_all)
            valid &= np.where(np.isfinite(w_all), w_all, 0.0) > 0.0
        else:
            w_all = np.ones(n_total, dtype=np.float64)

        covariate_all: dict[str, NDArray] = {}
        for name in request.covariates:
            values = source.numeric(name)
            valid &= np.isfinite(values)
            covariate_all[name] = values

        label_all: dict[str, list[str | None]] = {}
        declared: dict[str, tuple[str, ...] | None] = {}
        for spec in request.factors:
            labels = [_level_label(v) for v in source[spec.name]]
            valid &= np.array([lab is not None for lab in labels], dtype=bool)
            catalog = None
            if spec.levels is not None:
                catalog = tuple(_level_label(v) for v in spec.levels)
                allowed = set(catalog)
                valid &= np.array([lab in allowed for lab in labels], dtype=bool)
            label_all[spec.name] = labels
            declared[spec.name] = catalog

        keep = np.flatnonzero(valid)
        n = keep.shape[0]
        if n == 0:
            raise InvalidDataError(
                f"No valid cases: all {n_total} rows have a missing or invalid "
                f"value in {required}",
                n_valid=0,
                n_total=n_total,
            )

        notes: list[str] = []
        n_dropped = n_total - n
        if n_dropped:
            notes.append(f"{n_dropped} case(s) excluded for missing or invalid values")

        y = y_all[keep]
        w = w_all[keep]
        covariates = {name: values[keep] for name, values in covariate_all.items()}

        factor_levels: dict[str, tuple[str, ...]] = {}
        factor_codes: dict[str, NDArray[np.intp]] = {}
        for spec in request.factors:
            labels = [label_all[spec.name][i] for i in keep]
            catalog = declared[spec.name] or _sorted_levels(labels)
            index = {level: i for i, level in enumerate(catalog)}
            factor_levels[spec.name] = catalog
            factor_codes[spec.name] = np.array([index[lab] for lab in labels], dtype=np.intp)

        terms: list[Term] = [Intercept()] if request.intercept else []
        terms.extend(_resolve_levels(t, factor_levels) for t in request.model_terms)

        blocks: list[NDArray] = []
        columns: list[ColumnSpec] = []
        slices: dict[str, slice] = {}
        full_rank_factor = None if request.intercept else _first_factor_term(terms)
        start = 0
        for term_index, term in enumerate(terms):
            block, specs = _term_columns(
                term, term_index, n, factor_codes, covariates, factor_levels,
                all_levels=term_index == full_rank_factor,
            )
            blocks.append(block)
            columns.extend(specs)
            slices[term.name] = slice(start, start + block.shape[1])
            start += block.shape[1]

        x = np.hstack(blocks) if blocks else np.zeros((n, 0), dtype=np.float64)

        if (
            request.intercept
            and len(terms) == 1
            and n > 1
            and np.all(y == y[0])
        ):
            raise InvalidDataError(
                f"Response {request.response!r} is constant ({y[0]!r}) in an "
                f"intercept-only model; there is no variance to decompose",
                n_valid=n,
                n_total=n_total,
            )

        random_names = {spec.name for spec in request.factors if spec.random}
        fixed_idx: dict[str, tuple[int, ...]] = {}
        random_idx: dict[str, tuple[int, ...]] = {}
        covariate_idx: dict[str, tuple[int, ...]] = {}
        for name in factor_levels:
            involved = tuple(j for j, c in enumerate(columns) if name in c.variables)
            (random_idx if name in random_names else fixed_idx)[name] = involved
        for name in request.covariates:
            covariate_idx[name] = tuple(j for j, c in enumerate(columns) if name in c.variables)

        for note in notes:
            warnings.warn(note, RuntimeWarning, stacklevel=2)

        return DesignMatrixInfo(
            x=x,
            y=y,
            w=w,
            n_samples=n,
            p_parameters=x.shape[1],
            terms=tuple(terms),
            term_names=tuple(t.name for t in terms),
            term_column_indices=slices,
            columns=tuple(columns),
            intercept_column=0 if request.intercept else None,
            case_indices_to_keep=keep,
            factor_levels=factor_levels,
            factor_codes=factor_codes,
            covariate_means={name: float(np.mean(v)) for name, v in covariates.items()},
            fixed_factor_indices=fixed_idx,
            random_factor_indices=random_idx,
            covariate_indices=covariate_idx,
            response=request.response,
            weighted=request.weight is not None,
            n_total=n_total,
            warnings=tuple(notes),
        )


# =====================================================================
# Internal helpers
# =====================================================================


def _level_label(value: Any) -> str | None:
    """Canonical level label; None marks a missing value."""
    if value is None or (pd.api.types.is_scalar(value) and pd.isna(value)):
        return None
    if isinstance(value, (bool, np.bool_)):
        return str(bool(value))
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    if isinstance(value, (float, np.floating)):
        if not np.isfinite(value):
            return None
        return str(int(value)) if float(value).is_integer() else repr(float(value))
    text = str(value).strip()
    return text or None


def _sorted_levels(labels: list[str]) -> tuple[str, ...]:
    """Distinct labels, numerically ordered when every label is a number."""
    distinct = set(labels)
    try:
        return tuple(sorted(distinct, key=float))
    except ValueError:
        return tuple(sorted(distinct))


def _resolve_levels(term: Term, factor_levels: dict[str, tuple[str, ...]]) -> Term:
    if isinstance(term, Factor):
        return Factor(term.name, factor_levels[term.name])
    if isinstance(term, Interaction):
        components = tuple(
            Factor(c.name, factor_levels[c.name]) if isinstance(c, Factor) else c
            for c in term.components
        )
        return Interaction(components, nesting=term.nesting)
    return term


def _first_factor_term(terms: list[Term]) -> int | None:
    for i, term in enumerate(terms):
        if isinstance(term, Factor):
            return i
    return None


def _term_columns(
    term: Term,
    term_index: int,
    n: int,
    factor_codes: dict[str, NDArray[np.intp]],
    covariates: dict[str, NDArray],
    factor_levels: dict[str, tuple[str, ...]],
    *,
    all_levels: bool = False,
) -> tuple[NDArray, list[ColumnSpec]]:
    """Columns contributed by one term, with their specs."""
    if isinstance(term, Intercept):
        spec = ColumnSpec(term_index, (), (), term.name)
        return np.ones((n, 1), dtype=np.float64), [spec]

    nesting = set(term_nesting(term))
    # Per component: list of (factor level or None, label, vector)
    options: list[list[tuple[tuple[str, int] | None, str, NDArray]]] = []
    for component in term_components(term):
        if isinstance(component, Covariate):
            options.append([(None, component.name, covariates[component.name])])
            continue
        levels = factor_levels[component.name]
        codes = factor_codes[component.name]
        coded = range(len(levels)) if (all_levels or component.name in nesting) else range(len(levels) - 1)
        options.append([
            ((component.name, i), f"[{component.name}={levels[i]}]", (codes == i).astype(np.float64))
            for i in coded
        ])

    vectors: list[NDArray] = []
    specs: list[ColumnSpec] = []
    for combo in product(*options):
        vec = np.ones(n, dtype=np.float64)
        factor_part: list[tuple[str, int]] = []
        covariate_part: list[str] = []
        for level, label, values in combo:
            vec = vec * values
            if level is None:
                covariate_part.append(label)
            else:
                factor_part.append(level)
        vectors.append(vec)
        specs.append(ColumnSpec(
            term_index=term_index,
            factor_levels=tuple(factor_part),
            covariates=tuple(covariate_part),
            label="*".join(label for _, label, _ in combo),
        ))

    if not vectors:
        return np.zeros((n, 0), dtype=np.float64), []
    return np.column_stack(vectors), specs
