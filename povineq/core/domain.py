"""Resolve (values, weights) for an indicator call.

Indicator functions never touch the design's storage directly: they ask this
module for the analysis variables as float arrays aligned with the design's
rows, and for designs with rows removed (missing values, non-positive
incomes) in a way that respects each design kind.
"""

from typing import Iterable, List, Sequence, Tuple, Union

import numpy as np
import polars as pl

from .database import DatabaseDesign
from .design import ReplicateDesign, SurveyDesign, require_full_design

Formula = Union[str, Sequence[str]]


def parse_formula(formula: Formula) -> List[str]:
    """Turn ``"~income + assets"``, ``"income"`` or a list into column names."""
    if isinstance(formula, str):
        text = formula.strip()
        if text.startswith("~"):
            text = text[1:]
        terms = [t.strip() for t in text.split("+")]
    else:
        terms = [str(t).strip() for t in formula]

    terms = [t for t in terms if t]
    if not terms:
        raise ValueError(f"No variables found in formula {formula!r}")
    return terms


def single_variable(formula: Formula) -> str:
    terms = parse_formula(formula)
    if len(terms) > 1:
        raise ValueError("This indicator supports exactly one income variable in the formula")
    return terms[0]


def resolve_design(design, columns: Iterable[str]):
    """Materialize database-backed designs and check the full-design reference."""
    columns = list(columns)

    if isinstance(design, DatabaseDesign):
        design = design.materialize(columns)

    if not isinstance(design, (SurveyDesign, ReplicateDesign)):
        raise TypeError(
            f"Expected SurveyDesign, ReplicateDesign or DatabaseDesign, got {type(design).__name__}"
        )

    require_full_design(design)

    missing = [c for c in columns if c not in design.variables.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    return design


def extract_values(design, column: str) -> np.ndarray:
    """Numeric column as float64; nulls become NaN."""
    series = design.variables[column]
    if not (series.dtype.is_numeric() or series.dtype == pl.Boolean):
        raise TypeError(
            f"Column '{column}' has type {series.dtype}; cast it to a numeric type first, "
            f"e.g. pl.col('{column}').cast(pl.Float64)"
        )
    return series.cast(pl.Float64).fill_null(float("nan")).to_numpy()


def missing_rows(values: np.ndarray) -> np.ndarray:
    values = np.asarray(values, dtype=float)
    if values.ndim == 1:
        return np.isnan(values)
    return np.isnan(values).any(axis=1)


def drop_rows(design, values: np.ndarray, drop: np.ndarray) -> Tuple[object, np.ndarray]:
    """Exclude flagged rows from the design and keep ``values`` aligned with it.

    Linearized designs keep the rows as zero-weight placeholders; replicate
    designs remove them.
    """
    keep = ~np.asarray(drop, dtype=bool)
    if isinstance(design, SurveyDesign):
        return design.subset(keep), values
    return design.subset(keep), values[keep]


def drop_missing(design, values: np.ndarray) -> Tuple[object, np.ndarray]:
    """``na_rm=True``: remove rows with any missing analysis value."""
    return drop_rows(design, values, missing_rows(values))


def check_nonnegative(values: np.ndarray, weights: np.ndarray, name: str) -> None:
    sampled = weights != 0
    if np.any(values[sampled] < 0):
        raise ValueError(f"{name} is defined for non-negative incomes only")
