"""
Universal DataSource for pyglm.

DataSource is the "I have case data" abstraction. It holds named columns
exactly as supplied (numbers, labels, blanks) and doesn't know which of
them will become the response, a factor or a covariate. Deciding what a
valid value is belongs to the design builder.

Usage:
    from pyglm import DataSource

    ds = DataSource.from_dataframe(df)
    ds = DataSource.from_records([{'y': 1.0, 'group': 'a'}, ...])
    ds = DataSource.from_arrays(y=y, group=group)
    ds = DataSource.from_file("cases.csv")

    ds.keys()            # frozenset({'y', 'group'})
    raw = ds['group']    # object array, as supplied
    y = ds.numeric('y')  # float64, non-numeric entries -> NaN
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from pyglm.core.exceptions import ValidationError, DimensionError


@dataclass
class DataSource:
    """
    Universal case-data container. Domain-agnostic.

    Construct via factory classmethods, not directly. Columns are stored as
    1D numpy arrays of equal length, in their original dtype.
    """
    _data: dict[str, NDArray]
    _metadata: dict[str, Any] = field(default_factory=dict)

    # === Column Access ===

    def keys(self) -> frozenset[str]:
        """
        Return the names of all available columns.

        Example:
            >>> ds = DataSource.from_arrays(y=y, group=group)
            >>> ds.keys()
            frozenset({'y', 'group'})
        """
        return frozenset(self._data.keys())

    def __getitem__(self, key: str) -> NDArray:
        """
        Access a named column as supplied.

        Raises:
            KeyError: If key not found, with helpful message listing available keys
        """
        if key not in self._data:
            available = sorted(self.keys())
            raise KeyError(
                f"DataSource has no column '{key}'. Available: {available}"
            )
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        """Check if a column exists."""
        return key in self._data

    def numeric(self, key: str) -> NDArray[np.floating[Any]]:
        """
        Column coerced to float64.

        Entries that are missing or cannot be parsed as numbers become NaN,
        so the caller can exclude them listwise.
        """
        values = pd.to_numeric(pd.Series(self[key], copy=False), errors='coerce')
        return values.to_numpy(dtype=np.float64, na_value=np.nan)

    # === Properties ===

    @property
    def n_observations(self) -> int:
        """Number of cases (rows)."""
        return self._metadata.get('n_observations', 0)

    @property
    def metadata(self) -> dict[str, Any]:
        """Domain-agnostic metadata."""
        return self._metadata.copy()

    def to_frame(self) -> pd.DataFrame:
        """Columns as a pandas DataFrame (copy)."""
        return pd.DataFrame({k: v.copy() for k, v in self._data.items()})

    # === Factory Methods ===

    @classmethod
    def from_arrays(cls, **columns: Any) -> DataSource:
        """Construct from named 1D array-likes of equal length."""
        if not columns:
            raise ValidationError("DataSource.from_arrays: no columns given")

        storage: dict[str, NDArray] = {}
        n_obs: int | None = None
        for name, values in columns.items():
            arr = np.asarray(values)
            if arr.ndim != 1:
                raise DimensionError(
                    f"{name}: expected 1D column, got {arr.ndim}D with shape {arr.shape}"
                )
            if n_obs is None:
                n_obs = arr.shape[0]
            elif arr.shape[0] != n_obs:
                raise DimensionError(
                    f"{name}: length {arr.shape[0]} doesn't match {n_obs}"
                )
            storage[name] = arr

        return cls(
            _data=storage,
            _metadata={'n_observations': n_obs, 'source': 'arrays'},
        )

    @classmethod
    def from_records(cls, records: Sequence[Mapping[str, Any]]) -> DataSource:
        """
        Construct from case rows (one mapping per case).

        Keys missing from a row are treated as missing values.
        """
        df = pd.DataFrame.from_records(list(records))
        source = cls.from_dataframe(df)
        source._metadata['source'] = 'records'
        return source

    @classmethod
    def from_file(cls, path: str | Path, *, columns: list[str] | None = None) -> DataSource:
        """Construct from a delimited text file (CSV, TSV)."""
        path = Path(path)
        suffix = path.suffix.lower()

        if suffix == '.csv':
            df = pd.read_csv(path, usecols=columns)
        elif suffix == '.tsv':
            df = pd.read_csv(path, sep='\t', usecols=columns)
        else:
            raise ValidationError(f"Unknown file format: {suffix}")
        return cls.from_dataframe(df, source_path=str(path))

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, *, source_path: str | None = None) -> DataSource:
        """Construct from pandas DataFrame."""
        storage: dict[str, NDArray] = {}

        for col in df.columns:
            storage[str(col)] = df[col].to_numpy()

        metadata = {
            'n_observations': len(df),
            'source': 'dataframe',
            'columns': [str(c) for c in df.columns],
        }
        if source_path:
            metadata['source_path'] = source_path

        return cls(
            _data=storage,
            _metadata=metadata,
        )

    @classmethod
    def build(cls, *args, **kwargs) -> DataSource:
        """
        Convenience factory that dispatches to appropriate from_* method.

        Examples:
            DataSource.build(df)           # from_dataframe
            DataSource.build("cases.csv")  # from_file
            DataSource.build(records)      # from_records
            DataSource.build(y=y, g=g)     # from_arrays
        """
        if args:
            first = args[0]
            if isinstance(first, DataSource):
                return first
            if isinstance(first, (str, Path)):
                return cls.from_file(first, **kwargs)
            if isinstance(first, pd.DataFrame):
                return cls.from_dataframe(first, **kwargs)
            if isinstance(first, Mapping):
                return cls.from_arrays(**first)
            return cls.from_records(first)
        return cls.from_arrays(**kwargs)
