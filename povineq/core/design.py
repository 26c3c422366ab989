"""Survey design objects.

Two in-memory variants share one interface (``variables``, ``weights``,
``subset``, ``variance``, ``summary``, ``full_design``):

- ``SurveyDesign``: stratified, clustered design for Taylor linearization.
  Subsetting zeroes weights and keeps every row, so residual vectors stay
  aligned with the full sample.
- ``ReplicateDesign``: sampling weights plus a matrix of replicate weights.
  Subsetting drops rows; ``row_ids`` maps the remaining rows back to the
  full sample.

Indicator functions need the un-subsetted population as well as the domain
being analysed, so every design must pass through ``prepare`` right after it
is created. Subsets taken afterwards keep a read-only reference to it.
"""

import copy
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import polars as pl

from ..utils.config_utils import get_setting
from .variance import psu_index, svrvar, svyrecvar

MaskLike = Union[pl.Expr, pl.Series, np.ndarray, Sequence[bool]]

REPLICATE_METHODS = ("bootstrap", "jk1", "jkn")


class DesignSetupError(RuntimeError):
    """Raised when an indicator runs on a design that was never prepared."""


def _column(data: pl.DataFrame, name: str) -> np.ndarray:
    if name not in data.columns:
        raise ValueError(f"Column '{name}' not found in design variables")
    return data[name].to_numpy()


def _float_column(data: pl.DataFrame, name: str) -> np.ndarray:
    if name not in data.columns:
        raise ValueError(f"Column '{name}' not found in design variables")
    return data[name].cast(pl.Float64).fill_null(float("nan")).to_numpy()


def _as_mask(data: pl.DataFrame, mask: MaskLike) -> np.ndarray:
    """Evaluate a row selector; missing values count as not selected."""
    if isinstance(mask, pl.Expr):
        series = data.select(mask.alias("_mask")).to_series()
    elif isinstance(mask, pl.Series):
        series = mask
    elif isinstance(mask, np.ndarray):
        series = pl.Series("_mask", mask)
    else:
        series = pl.Series("_mask", list(mask))

    if series.len() != data.height:
        raise ValueError(f"Subset mask has {series.len()} rows, design has {data.height}")

    return series.cast(pl.Boolean).fill_null(False).to_numpy().astype(bool)


class SurveyDesign:
    """Linearized survey design over a polars DataFrame.

    Args:
        data: One row per sampled unit
        weight_col: Sampling weight column (inverse inclusion probability)
        strata_col: Stratum identifier column
        psu_col: Primary sampling unit (cluster) identifier column
        fpc_col: Finite population correction, either the sampling fraction
            or the population number of PSUs in the stratum
        post_strata_col: Post-stratum identifier column
        prob_col: Inclusion probability column, alternative to ``weight_col``
    """

    kind = "linearized"

    def __init__(
        self,
        data: pl.DataFrame,
        weight_col: Optional[str] = None,
        strata_col: Optional[str] = None,
        psu_col: Optional[str] = None,
        fpc_col: Optional[str] = None,
        post_strata_col: Optional[str] = None,
        prob_col: Optional[str] = None,
    ):
        if weight_col is None and prob_col is None:
            raise ValueError("Provide either weight_col or prob_col")

        self.variables = data
        self.weight_col = weight_col
        self.strata_col = strata_col
        self.psu_col = psu_col
        self.fpc_col = fpc_col
        self.post_strata_col = post_strata_col

        if weight_col is not None:
            weights = _float_column(data, weight_col)
        else:
            prob = _float_column(data, prob_col)
            if (prob <= 0).any():
                raise ValueError("Inclusion probabilities must be positive")
            weights = 1.0 / prob

        if np.isnan(weights).any():
            raise ValueError("Sampling weights contain missing values")
        if (weights < 0).any():
            raise ValueError("Sampling weights must be non-negative")

        self.weights = weights
        # post-stratum means always run over the whole sample, never a domain
        self.ps_weights = weights
        self.cluster = _column(data, psu_col) if psu_col else np.arange(data.height)
        self.strata = _column(data, strata_col) if strata_col else np.zeros(data.height, dtype=np.int64)
        self.fpc = _float_column(data, fpc_col) if fpc_col else None
        self.post_strata = _column(data, post_strata_col) if post_strata_col else None
        self.full_design: Optional["SurveyDesign"] = None

    @property
    def n_rows(self) -> int:
        return self.variables.height

    @property
    def prob(self) -> np.ndarray:
        """Inclusion probabilities; infinite for rows outside the sample."""
        return np.divide(
            1.0, self.weights, out=np.full(self.n_rows, np.inf), where=self.weights > 0
        )

    def subset(self, mask: MaskLike) -> "SurveyDesign":
        """Restrict to a domain by zeroing the weight of excluded rows."""
        keep = _as_mask(self.variables, mask)
        new = copy.copy(self)
        new.weights = np.where(keep, self.weights, 0.0)
        return new

    def variance(self, x: np.ndarray, lonely_psu: Optional[str] = None) -> np.ndarray:
        """Variance of the total of ``x`` (weighted residuals) under this design."""
        return svyrecvar(
            x,
            cluster=self.cluster,
            strata=self.strata,
            fpc=self.fpc,
            post_strata=self.post_strata,
            weights=self.ps_weights,
            lonely_psu=lonely_psu,
        )

    def summary(self) -> Dict[str, Any]:
        sampled = self.weights > 0
        return {
            "design_type": self.kind,
            "sample_size": int(sampled.sum()),
            "population_size": float(self.weights.sum()),
            "n_strata": int(np.unique(np.asarray(self.strata).astype(str)).shape[0]),
            "n_psu": int(psu_index(self.cluster, self.strata)[1].shape[0]),
            "has_fpc": self.fpc is not None,
            "prepared": self.full_design is not None,
        }

    def __repr__(self) -> str:
        return (
            f"SurveyDesign(rows={self.n_rows}, sampled={int((self.weights > 0).sum())}, "
            f"strata={self.strata_col!r}, psu={self.psu_col!r})"
        )


class ReplicateDesign:
    """Replicate-weight survey design.

    Args:
        data: One row per sampled unit
        weight_col: Full-sample (sampling) weight column
        repweight_cols: Replicate weight columns, as a list of names or a
            polars regex such as ``"^rep_\\d+$"``
        scale: Overall variance multiplier
        rscales: Per-replicate multipliers (default all ones)
        mse: Centre replicate deviations on the full-sample estimate instead
            of the replicate mean (config ``replicates.mse``)
        method: Label of the replication scheme
        combined_weights: Whether replicate columns already include the
            sampling weight; if False they are multiplied by it
    """

    kind = "replicate"

    def __init__(
        self,
        data: pl.DataFrame,
        weight_col: str,
        repweight_cols: Union[str, List[str]],
        scale: float = 1.0,
        rscales: Optional[Sequence[float]] = None,
        mse: Optional[bool] = None,
        method: str = "other",
        combined_weights: bool = True,
    ):
        weights = _float_column(data, weight_col)
        if np.isnan(weights).any():
            raise ValueError("Sampling weights contain missing values")
        if (weights < 0).any():
            raise ValueError("Sampling weights must be non-negative")

        if isinstance(repweight_cols, str):
            rep_frame = data.select(pl.col(repweight_cols))
        else:
            missing = [c for c in repweight_cols if c not in data.columns]
            if missing:
                raise ValueError(f"Missing replicate weight columns: {missing}")
            rep_frame = data.select(repweight_cols)

        if rep_frame.width == 0:
            raise ValueError("No replicate weight columns selected")

        repweights = rep_frame.cast(pl.Float64).to_numpy()
        if not combined_weights:
            repweights = repweights * weights[:, np.newaxis]

        self._init_arrays(data, weight_col, weights, repweights, scale, rscales, mse, method)
        self.repweight_cols = list(rep_frame.columns)

    def _init_arrays(self, data, weight_col, weights, repweights, scale, rscales, mse, method):
        n_rep = repweights.shape[1]
        rscales = np.ones(n_rep) if rscales is None else np.asarray(rscales, dtype=float)
        if rscales.shape[0] != n_rep:
            raise ValueError(f"rscales has {rscales.shape[0]} entries for {n_rep} replicates")

        self.variables = data
        self.weight_col = weight_col
        self.weights = weights
        self.repweights = repweights
        self.scale = float(scale)
        self.rscales = rscales
        self.mse = bool(get_setting("replicates.mse", False)) if mse is None else bool(mse)
        self.method = method
        self.row_ids = np.arange(data.height)
        self.repweight_cols: List[str] = []
        self.full_design: Optional["ReplicateDesign"] = None

    @classmethod
    def from_arrays(
        cls,
        data: pl.DataFrame,
        weights: np.ndarray,
        repweights: np.ndarray,
        scale: float,
        rscales: Optional[Sequence[float]] = None,
        mse: Optional[bool] = None,
        method: str = "other",
        weight_col: Optional[str] = None,
    ) -> "ReplicateDesign":
        """Build a design from weight arrays that are not columns of ``data``."""
        design = cls.__new__(cls)
        design._init_arrays(
            data,
            weight_col,
            np.asarray(weights, dtype=float),
            np.asarray(repweights, dtype=float),
            scale,
            rscales,
            mse,
            method,
        )
        return design

    @property
    def n_rows(self) -> int:
        return self.variables.height

    @property
    def n_replicates(self) -> int:
        return self.repweights.shape[1]

    def subset(self, mask: MaskLike) -> "ReplicateDesign":
        """Restrict to a domain by dropping excluded rows."""
        keep = _as_mask(self.variables, mask)
        new = copy.copy(self)
        new.variables = self.variables.filter(pl.Series(keep))
        new.weights = self.weights[keep]
        new.repweights = self.repweights[keep]
        new.row_ids = self.row_ids[keep]
        return new

    def variance(self, thetas: np.ndarray, coef=None) -> np.ndarray:
        """Replication variance of per-replicate estimates ``thetas``."""
        return svrvar(thetas, self.scale, self.rscales, mse=self.mse, coef=coef)

    def summary(self) -> Dict[str, Any]:
        return {
            "design_type": self.kind,
            "sample_size": int((self.weights > 0).sum()),
            "population_size": float(self.weights.sum()),
            "n_replicates": self.n_replicates,
            "method": self.method,
            "scale": self.scale,
            "mse": self.mse,
            "prepared": self.full_design is not None,
        }

    def __repr__(self) -> str:
        return (
            f"ReplicateDesign(rows={self.n_rows}, replicates={self.n_replicates}, "
            f"method={self.method!r})"
        )


def prepare(design):
    """Mark ``design`` as the full population for later subsets.

    Run this immediately after creating a design. Indicators evaluated on a
    subset need the un-subsetted population (e.g. for a poverty threshold),
    and they find it through the ``full_design`` reference set here.
    """
    prepared = copy.copy(design)
    prepared.full_design = prepared
    return prepared


def require_full_design(design):
    """Return the full design behind ``design`` or fail with a setup error."""
    full = getattr(design, "full_design", None)
    if full is None:
        raise DesignSetupError(
            "This design has no full-design reference. Run povineq.prepare() on the survey "
            "design immediately after creating it, before taking any subsets."
        )
    return full


def _replicate_multipliers(
    psu_strata: np.ndarray,
    method: str,
    replicates: int,
    seed: Optional[int],
):
    n_psu = psu_strata.shape[0]

    if method == "bootstrap":
        rng = np.random.default_rng(seed)
        mult = np.ones((n_psu, replicates))
        for h in np.unique(psu_strata):
            psus = np.flatnonzero(psu_strata == h)
            n_h = psus.shape[0]
            # single-PSU strata keep multiplier 1
            if n_h < 2:
                continue
            for r in range(replicates):
                draws = rng.choice(n_h, size=n_h - 1, replace=True)
                mult[psus, r] = np.bincount(draws, minlength=n_h) * n_h / (n_h - 1)
        return mult, 1.0 / (replicates - 1), np.ones(replicates)

    if method == "jk1":
        if n_psu < 2:
            raise ValueError("Jackknife needs at least two PSUs")
        # column r drops PSU r
        mult = np.full((n_psu, n_psu), n_psu / (n_psu - 1))
        np.fill_diagonal(mult, 0.0)
        return mult, (n_psu - 1) / n_psu, np.ones(n_psu)

    # jkn: delete one PSU at a time within its stratum
    columns = []
    rscales = []
    for h in np.unique(psu_strata):
        psus = np.flatnonzero(psu_strata == h)
        n_h = psus.shape[0]
        if n_h < 2:
            continue
        for j in psus:
            col = np.ones(n_psu)
            col[psus] = n_h / (n_h - 1)
            col[j] = 0.0
            columns.append(col)
            rscales.append((n_h - 1) / n_h)
    if not columns:
        raise ValueError("Stratified jackknife needs a stratum with at least two PSUs")
    return np.column_stack(columns), 1.0, np.asarray(rscales)


def as_replicate_design(
    design: SurveyDesign,
    method: Optional[str] = None,
    replicates: Optional[int] = None,
    seed: Optional[int] = None,
    mse: Optional[bool] = None,
) -> ReplicateDesign:
    """Convert a linearized design into a prepared replicate-weight design.

    Args:
        design: Linearized design to convert
        method: "bootstrap" (rescaled bootstrap, n_h - 1 PSUs drawn per
            stratum), "jk1" (delete-one-PSU jackknife) or "jkn" (stratified
            jackknife). Config ``replicates.method``.
        replicates: Number of bootstrap replicates (config ``replicates.replicates``)
        seed: Random seed for the bootstrap
        mse: See ``ReplicateDesign``

    Returns:
        Prepared ``ReplicateDesign`` carrying the same variables
    """
    if not isinstance(design, SurveyDesign):
        raise TypeError("as_replicate_design() expects a linearized SurveyDesign")

    method = method or get_setting("replicates.method", "bootstrap")
    if method not in REPLICATE_METHODS:
        raise ValueError(f"method must be one of {REPLICATE_METHODS}, got '{method}'")

    replicates = int(replicates or get_setting("replicates.replicates", 50))
    if method == "bootstrap" and replicates < 2:
        raise ValueError("Bootstrap needs at least two replicates")

    row_psu, psu_strata = psu_index(design.cluster, design.strata)
    mult, scale, rscales = _replicate_multipliers(psu_strata, method, replicates, seed)
    # PSU multipliers spread to their rows
    repweights = mult[row_psu] * design.weights[:, np.newaxis]

    rep = ReplicateDesign.from_arrays(
        design.variables,
        design.weights,
        repweights,
        scale=scale,
        rscales=rscales,
        mse=mse,
        method=method,
        weight_col=design.weight_col,
    )
    return prepare(rep)
