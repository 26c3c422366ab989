"""Alkire-Foster multidimensional poverty class.

Steps, per sampled unit:
1. deprivation in each dimension: achievement below its cutoff
2. weighted deprivation score across dimensions (equal weights by default)
3. identification: poor if the score reaches k
4. censoring: numeric dimensions contribute ((z - a) / z)^g, ordered
   categorical ones contribute 1; non-poor units contribute nothing
5. estimate: weighted mean of the censored weighted sum

With g = 0 the estimate is the adjusted headcount M0 = H x A, and both
factors are reported with their standard errors.

References:
- Alkire & Foster (2011). Counting and multidimensional poverty measurement.
  Journal of Public Economics 95(7-8), 476-487.
- Alkire et al. (2015). Multidimensional Poverty Measurement and Analysis.
"""

import warnings
from typing import List, Optional, Sequence, Tuple

import numpy as np
import polars as pl

from ..core.domain import drop_missing, parse_formula, resolve_design
from ..core.result import SurveyStat, build_result, na_result
from ._common import mean_estimate, ratio_estimate

STATISTIC = "alkire-foster"


def _check_parameters(dims: List[str], k, g, cutoffs, dimw) -> Optional[np.ndarray]:
    if k is None or not 0 < k <= 1:
        raise ValueError("This function is only defined for k in (0,1].")
    if g is None or g < 0:
        raise ValueError("This function is undefined for g < 0.")
    if cutoffs is None:
        raise ValueError("No dimensional cutoffs defined.")
    if not isinstance(cutoffs, (list, tuple)):
        raise ValueError("The parameter 'cutoffs' has to be a list.")
    if len(cutoffs) != len(dims):
        raise ValueError(f"Got {len(cutoffs)} cutoffs for {len(dims)} dimensions")

    if dimw is None:
        return None
    dimw = np.asarray(dimw, dtype=float)
    if dimw.shape != (len(dims),):
        raise ValueError(f"dimw needs one weight per dimension ({len(dims)})")
    if (dimw < 0).any():
        raise ValueError("Dimension weights must be non-negative")
    return dimw


def _achievements(design, dims: Sequence[str], cutoffs) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Achievement matrix, cutoff vector and numeric-dimension mask.

    Ordered categorical (``pl.Enum``) dimensions are compared on their level
    positions.
    """
    columns = []
    cuts = []
    numeric = []

    for dim, cut in zip(dims, cutoffs):
        s = design.variables[dim]

        if isinstance(s.dtype, pl.Enum):
            levels = s.cat.get_categories().to_list()
            if cut not in levels:
                raise ValueError(f"Cutoff {cut!r} is not a level of '{dim}' ({levels})")
            columns.append(s.to_physical().cast(pl.Float64).fill_null(float("nan")).to_numpy())
            cuts.append(float(levels.index(cut)))
            numeric.append(False)
        elif s.dtype == pl.Categorical:
            raise TypeError(
                f"Column '{dim}' is an unordered categorical. Cast it to an ordered type with "
                f"pl.col('{dim}').cast(pl.Enum([...levels from worst to best...]))"
            )
        elif s.dtype.is_numeric():
            if isinstance(cut, (str, bytes)) or cut is None:
                raise ValueError(f"Numeric dimension '{dim}' needs a numeric cutoff, got {cut!r}")
            if cut <= 0:
                raise ValueError(f"Cutoff for '{dim}' must be positive")
            columns.append(s.cast(pl.Float64).fill_null(float("nan")).to_numpy())
            cuts.append(float(cut))
            numeric.append(True)
        else:
            raise TypeError(
                f"This function is only applicable to numeric or ordered categorical (pl.Enum) "
                f"variables; '{dim}' has type {s.dtype}"
            )

    return np.column_stack(columns), np.asarray(cuts), np.asarray(numeric)


def svyafc(
    formula,
    design,
    k: float,
    g: float,
    cutoffs: Sequence,
    dimw: Optional[Sequence[float]] = None,
    na_rm: bool = False,
) -> SurveyStat:
    """Alkire-Foster class of multidimensional poverty measures.

    Args:
        formula: Achievement variables, e.g. ``"~eqincome + hy050n"``; numeric
            or ``pl.Enum`` columns
        design: Prepared survey design
        k: Multidimensional cutoff, in (0, 1]
        g: Exponent applied to normalized gaps of numeric dimensions, >= 0
        cutoffs: One deprivation cutoff per dimension (a level name for
            ordered categorical dimensions)
        dimw: Dimension weights (default 1 / number of dimensions each)
        na_rm: Drop rows with any missing achievement instead of returning NA

    Returns:
        SurveyStat with statistic "alkire-foster"; for g == 0 ``extra``
        holds the headcount ratio H and the average intensity A.
    """
    dims = parse_formula(formula)
    dimw = _check_parameters(dims, k, g, cutoffs, dimw)
    if dimw is None:
        dimw = np.full(len(dims), 1 / len(dims))

    parameters = {"k": k, "g": g, "cutoffs": list(cutoffs), "dimw": dimw.tolist()}

    # achievement matrix on the domain rows
    design = resolve_design(design, dims)
    ach, cuts, numeric = _achievements(design, dims, cutoffs)

    sampled = design.weights != 0
    if np.any(ach[sampled][:, numeric] < 0):
        raise ValueError(
            "The Alkire-Foster multidimensional poverty class is defined for non-negative "
            "numeric variables only."
        )

    if na_rm:
        design, ach = drop_missing(design, ach)
        sampled = design.weights != 0

    A = ach[sampled]
    if np.isnan(A).any():
        return na_result([STATISTIC], STATISTIC, design, parameters, dimensions=dims)

    # identification
    deprived = (cuts > A).astype(float)
    depr_sums = deprived @ dimw
    poor = depr_sums >= k
    multi_cut = depr_sums * poor

    # ordered dimensions may have a zero level position as cutoff; their gaps are unused
    with np.errstate(divide="ignore", invalid="ignore"):
        gaps = np.clip((cuts - A) / cuts, 0, None)
        censored = np.where(numeric, deprived * gaps**g, deprived)
    censored[~poor] = 0.0

    # back onto every design row, zero outside the domain
    n = design.weights.shape[0]
    cen_sums = np.zeros(n)
    cen_sums[sampled] = censored @ dimw

    estimate, variance = mean_estimate(cen_sums, design)

    extra = None
    if g == 0:
        # headcount and intensity
        h_i = np.zeros(n)
        h_i[sampled] = poor
        mc = np.zeros(n)
        mc[sampled] = multi_cut

        h_est, h_var = mean_estimate(h_i, design)
        if not poor.any():
            warnings.warn("No unit is multidimensionally poor; the intensity A is undefined")
        a_est, a_var = ratio_estimate(mc, h_i, design)

        extra = pl.DataFrame(
            {
                "term": ["H", "A"],
                "coef": [h_est, a_est],
                "se": [float(np.sqrt(h_var[0, 0])), float(np.sqrt(a_var[0, 0]))],
            }
        )

    return build_result(
        estimate,
        variance,
        [STATISTIC],
        STATISTIC,
        design,
        parameters,
        dimensions=dims,
        extra=extra,
    )
