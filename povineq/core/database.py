"""Database-backed survey designs.

A ``DatabaseDesign`` keeps only a DB-API 2 connection and a table name.
Indicator functions call ``materialize`` with the columns they need; that
pulls those columns (plus the design columns) into memory and returns an
ordinary prepared ``SurveyDesign`` or ``ReplicateDesign`` with any recorded
subsets replayed on top of it.
"""

import copy
from typing import Any, Dict, List, Optional, Sequence

import polars as pl

from .design import ReplicateDesign, SurveyDesign, prepare


def quote_identifier(name: str) -> str:
    """Quote a table or column name for SQL, doubling embedded quotes."""
    return '"' + str(name).replace('"', '""') + '"'


class DatabaseDesign:
    """Survey design whose variables live in a database table.

    Args:
        connection: DB-API 2 connection (``sqlite3``, ``duckdb``, ...)
        table: Table holding one row per sampled unit
        weight_col: Sampling weight column
        strata_col, psu_col, fpc_col, post_strata_col: As in ``SurveyDesign``
        repweight_cols: Replicate weight columns; when given, materializes
            to a ``ReplicateDesign``
        scale, rscales, mse, combined_weights: As in ``ReplicateDesign``
        casts: Column dtypes to apply after loading, e.g.
            ``{"education": pl.Enum(["primary", "secondary", "tertiary"])}``
        verbose: Print a line each time data is pulled from the database
    """

    kind = "database"

    def __init__(
        self,
        connection: Any,
        table: str,
        weight_col: str,
        strata_col: Optional[str] = None,
        psu_col: Optional[str] = None,
        fpc_col: Optional[str] = None,
        post_strata_col: Optional[str] = None,
        repweight_cols: Optional[List[str]] = None,
        scale: float = 1.0,
        rscales: Optional[Sequence[float]] = None,
        mse: Optional[bool] = None,
        combined_weights: bool = True,
        casts: Optional[Dict[str, pl.DataType]] = None,
        verbose: bool = False,
    ):
        if repweight_cols is not None and isinstance(repweight_cols, str):
            raise TypeError("Database-backed designs need repweight_cols as a list of column names")

        self.connection = connection
        self.table = table
        self.weight_col = weight_col
        self.strata_col = strata_col
        self.psu_col = psu_col
        self.fpc_col = fpc_col
        self.post_strata_col = post_strata_col
        self.repweight_cols = list(repweight_cols) if repweight_cols is not None else None
        self.scale = scale
        self.rscales = rscales
        self.mse = mse
        self.combined_weights = combined_weights
        self.casts = dict(casts or {})
        self.verbose = verbose
        self.filters: List[pl.Expr] = []
        self.full_design: Optional["DatabaseDesign"] = None

    def subset(self, expr: pl.Expr) -> "DatabaseDesign":
        """Record a row filter, applied after materialization."""
        if not isinstance(expr, pl.Expr):
            raise TypeError("Database-backed designs are subset with polars expressions")
        new = copy.copy(self)
        new.filters = [*self.filters, expr]
        return new

    def _design_columns(self) -> List[str]:
        cols = [self.weight_col, self.strata_col, self.psu_col, self.fpc_col, self.post_strata_col]
        cols = [c for c in cols if c is not None]
        if self.repweight_cols:
            cols.extend(self.repweight_cols)
        return cols

    def _load(self, columns: List[str]) -> pl.DataFrame:
        quoted = ", ".join(quote_identifier(c) for c in columns)
        cursor = self.connection.cursor()
        try:
            cursor.execute(f"SELECT {quoted} FROM {quote_identifier(self.table)}")
            names = [d[0] for d in cursor.description]
            rows = cursor.fetchall()
        finally:
            cursor.close()

        df = pl.DataFrame(rows, schema=names, orient="row", infer_schema_length=None)

        if self.casts:
            df = df.with_columns(
                [pl.col(c).cast(dtype) for c, dtype in self.casts.items() if c in df.columns]
            )

        if self.verbose:
            print(f"Loaded {df.height:,} rows x {df.width} columns from {self.table}")

        return df

    def _build(self, data: pl.DataFrame):
        if self.repweight_cols:
            return ReplicateDesign(
                data,
                weight_col=self.weight_col,
                repweight_cols=self.repweight_cols,
                scale=self.scale,
                rscales=self.rscales,
                mse=self.mse,
                combined_weights=self.combined_weights,
            )
        return SurveyDesign(
            data,
            weight_col=self.weight_col,
            strata_col=self.strata_col,
            psu_col=self.psu_col,
            fpc_col=self.fpc_col,
            post_strata_col=self.post_strata_col,
        )

    def materialize(self, columns: Sequence[str]):
        """Load ``columns`` and return the equivalent in-memory design.

        The full population is rebuilt from the same table, so the returned
        design keeps a back-reference to it exactly as an in-memory subset
        would.
        """
        full = self.full_design
        base_filters = full.filters if full is not None else []
        own_filters = self.filters[len(base_filters):]

        # requested columns first, no duplicates
        needed: List[str] = []
        filter_cols = [name for expr in self.filters for name in expr.meta.root_names()]
        for col in [*columns, *self._design_columns(), *filter_cols]:
            if col not in needed:
                needed.append(col)

        design = self._build(self._load(needed))
        # the full design's filters are replayed before preparing
        for expr in base_filters:
            design = design.subset(expr)
        if full is not None:
            design = prepare(design)
        for expr in own_filters:
            design = design.subset(expr)

        return design

    def __repr__(self) -> str:
        return f"DatabaseDesign(table={self.table!r}, filters={len(self.filters)})"
