"""Domain estimation: one indicator per level of one or more grouping columns."""

from typing import Callable

import polars as pl

from .database import DatabaseDesign
from .design import SurveyDesign
from .domain import Formula, parse_formula


def svyby(formula: Formula, by: Formula, design, fun: Callable, **kwargs) -> pl.DataFrame:
    """Evaluate ``fun(formula, subset, **kwargs)`` for every observed group.

    Each group is a subset of ``design``, so the domain variance accounts
    for the random group size exactly as a direct call on the subset does.

    Args:
        formula: Analysis variable(s), passed through to ``fun``
        by: Grouping column(s), e.g. ``"~region"`` or ``["region", "sex"]``
        design: Prepared survey design
        fun: Indicator function such as ``svyrenyi``
        **kwargs: Indicator parameters

    Returns:
        DataFrame with the grouping columns, variable, statistic, estimate, se
    """
    by_cols = parse_formula(by)

    source = design.materialize(by_cols) if isinstance(design, DatabaseDesign) else design
    missing = [c for c in by_cols if c not in source.variables.columns]
    if missing:
        raise ValueError(f"Missing grouping columns: {missing}")

    # only groups observed in the domain
    groups = source.variables.select(by_cols)
    if isinstance(source, SurveyDesign):
        groups = groups.filter(pl.Series(source.weights > 0))
    groups = groups.unique().drop_nulls().sort(by_cols)

    rows = []
    for level in groups.iter_rows(named=True):
        expr = pl.all_horizontal([pl.col(c) == v for c, v in level.items()])
        res = fun(formula, design.subset(expr), **kwargs)
        # one row per estimated variable
        for name, est, se in zip(res.names, res.estimate, res.se()):
            rows.append(
                {
                    **level,
                    "variable": name,
                    "statistic": res.statistic,
                    "estimate": float(est),
                    "se": float(se),
                }
            )

    return pl.DataFrame(rows)
