"""Poverty indicators for complex survey samples.

Key points:
- CHU and Watts are means of a poverty function h(y, z) over the analysis
  domain; they differ only in h and its derivative with respect to z
- The poverty threshold z is always computed on the full population
  (not the domain, not per replicate)
- When z is estimated (relative thresholds) its own linearization enters
  the residuals through the chain rule
- Non-positive incomes are dropped with a warning
"""

import warnings
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from ..core.design import SurveyDesign
from ..core.domain import (
    drop_missing,
    drop_rows,
    extract_values,
    resolve_design,
    single_variable,
)
from ..core.result import SurveyStat, build_result, na_result
from ..core.variance import replicate_estimates
from ..utils.config_utils import get_setting
from ._common import quantile_lin, weighted_mean, weighted_quantile

THRESHOLD_TYPES = ("abs", "relq", "relm")

PovertyFn = Callable[[np.ndarray, float], np.ndarray]


def _chu_h(g: float) -> PovertyFn:
    def h(y, thresh):
        with np.errstate(invalid="ignore"):
            return np.where(y <= thresh, 1 - (y / thresh) ** g, 0.0)

    return h


def _chu_ht(g: float) -> PovertyFn:
    def ht(y, thresh):
        with np.errstate(invalid="ignore"):
            return np.where(y <= thresh, g * y**g / thresh ** (g + 1), 0.0)

    return ht


def _watts_h(y, thresh):
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(y <= thresh, np.log(thresh / y), 0.0)


def _watts_ht(y, thresh):
    return np.where(y <= thresh, 1.0 / thresh, 0.0)


def _poverty_mean(y: np.ndarray, w: np.ndarray, thresh: float, h: PovertyFn) -> float:
    keep = w != 0
    y, w = y[keep], w[keep]
    if np.isnan(y).any() or np.isnan(thresh) or w.sum() == 0:
        return float("nan")
    return float(np.sum(w * h(y, thresh)) / w.sum())


def _arpt_lin(
    y: np.ndarray, w: np.ndarray, percent: float, quantiles: float
) -> Tuple[float, np.ndarray]:
    """Threshold percent * quantile and its linearized residuals."""
    q, lin = quantile_lin(y, w, quantiles)
    return percent * q, percent * lin


def _threshold(
    y: np.ndarray,
    w: np.ndarray,
    type_thresh: str,
    abs_thresh: Optional[float],
    percent: float,
    quantiles: float,
    linearize: bool = True,
) -> Tuple[float, Optional[np.ndarray]]:
    """Poverty threshold on the full population and, if asked, its residuals.

    Replicate designs keep the threshold fixed and pass ``linearize=False``;
    the residuals are then None.
    """
    if type_thresh == "abs":
        return float(abs_thresh), np.zeros_like(w) if linearize else None

    if type_thresh == "relq":
        if not linearize:
            return percent * weighted_quantile(y, w, quantiles), None
        return _arpt_lin(y, w, percent, quantiles)

    mean = weighted_mean(y, w)
    if not linearize:
        return percent * mean, None
    sampled = w != 0
    lin = np.zeros_like(w)
    lin[sampled] = percent * (y[sampled] - mean) / w[sampled].sum()
    return percent * mean, lin


def _check_threshold_args(type_thresh, abs_thresh, percent, quantiles) -> None:
    if type_thresh not in THRESHOLD_TYPES:
        raise ValueError(f'type_thresh must be "relq", "relm" or "abs", got {type_thresh!r}')
    if type_thresh == "abs":
        if abs_thresh is None:
            raise ValueError("abs_thresh must be specified when type_thresh='abs'")
        if abs_thresh <= 0:
            raise ValueError("abs_thresh must be positive")
    if percent <= 0:
        raise ValueError("percent must be positive")
    if not 0 < quantiles < 1:
        raise ValueError("quantiles must be in (0, 1)")


def _positive_incomes(design, y: np.ndarray, warn: bool):
    nonpositive = y <= 0
    if np.any(nonpositive[design.weights != 0]):
        if warn:
            warnings.warn("keeping strictly positive incomes only.")
        return drop_rows(design, y, nonpositive)
    return design, y


def _poverty_class(
    formula,
    design,
    statistic: str,
    h: PovertyFn,
    ht: PovertyFn,
    type_thresh: str,
    abs_thresh: Optional[float],
    percent: float,
    quantiles: float,
    na_rm: bool,
    thresh: bool,
    parameters: Dict[str, object],
) -> SurveyStat:
    var = single_variable(formula)
    design = resolve_design(design, [var])
    full = design.full_design

    y = extract_values(design, var)
    y_full = extract_values(full, var)

    if na_rm:
        design, y = drop_missing(design, y)
        full, y_full = drop_missing(full, y_full)

    # non-positive incomes leave both the domain and the population
    design, y = _positive_incomes(design, y, warn=False)
    full, y_full = _positive_incomes(full, y_full, warn=True)

    # threshold always comes from the whole population
    linearized = isinstance(design, SurveyDesign)
    th, thresh_lin = _threshold(
        y_full, full.weights, type_thresh, abs_thresh, percent, quantiles, linearize=linearized
    )
    thresh_value = th if thresh else None

    rval = _poverty_mean(y, design.weights, th, h)
    if np.isnan(rval):
        return na_result([var], statistic, design, parameters, thresh=thresh_value)

    if linearized:
        w = design.weights
        sampled = w != 0
        N = w[sampled].sum()
        # derivative of the measure with respect to the threshold
        ahat = np.sum(w[sampled] * ht(y[sampled], th)) / N

        lin = np.zeros_like(w)
        lin[sampled] = (h(y[sampled], th) - rval) / N
        lin = lin + ahat * thresh_lin

        # residuals live on the full population rows
        variance = full.variance(lin * full.weights)
        return build_result(
            rval, variance, [var], statistic, design, parameters, thresh=thresh_value, lin=lin
        )

    # threshold stays fixed across replicates
    qq = replicate_estimates(lambda wr: _poverty_mean(y, wr, th, h), design.repweights)
    if np.isnan(qq).any():
        return na_result([var], statistic, design, parameters, estimate=rval, thresh=thresh_value)

    return build_result(
        rval, design.variance(qq, coef=rval), [var], statistic, design, parameters, thresh=thresh_value
    )


def _threshold_defaults(indicator: str, type_thresh, percent, quantiles):
    if type_thresh is None:
        type_thresh = get_setting(f"indicators.{indicator}.type_thresh", "abs")
    if percent is None:
        percent = float(get_setting(f"indicators.{indicator}.percent", 0.6))
    if quantiles is None:
        quantiles = float(get_setting(f"indicators.{indicator}.quantiles", 0.5))
    return type_thresh, percent, quantiles


def svywatts(
    formula,
    design,
    type_thresh: Optional[str] = None,
    abs_thresh: Optional[float] = None,
    percent: Optional[float] = None,
    quantiles: Optional[float] = None,
    na_rm: bool = False,
    thresh: bool = False,
) -> SurveyStat:
    """Watts poverty measure, mean of log(z / y) over the poor.

    Args:
        formula: Income variable, e.g. ``"~eqincome"``
        design: Prepared survey design
        type_thresh: "abs" (fixed ``abs_thresh``), "relq" (percent times a
            quantile) or "relm" (percent times the mean)
        abs_thresh: Threshold value when ``type_thresh="abs"``
        percent: Multiple of the quantile or mean (default 0.6)
        quantiles: Quantile for "relq" (default 0.5, the median)
        na_rm: Drop rows with a missing income instead of returning NA
        thresh: Attach the threshold value to the result

    Returns:
        SurveyStat with statistic "watts"
    """
    type_thresh, percent, quantiles = _threshold_defaults("watts", type_thresh, percent, quantiles)
    _check_threshold_args(type_thresh, abs_thresh, percent, quantiles)

    parameters = {"type_thresh": type_thresh, "percent": percent, "quantiles": quantiles}
    if type_thresh == "abs":
        parameters["abs_thresh"] = abs_thresh

    return _poverty_class(
        formula,
        design,
        "watts",
        _watts_h,
        _watts_ht,
        type_thresh,
        abs_thresh,
        percent,
        quantiles,
        na_rm,
        thresh,
        parameters,
    )


def svychu(
    formula,
    design,
    g: float,
    type_thresh: Optional[str] = None,
    abs_thresh: Optional[float] = None,
    percent: Optional[float] = None,
    quantiles: Optional[float] = None,
    na_rm: bool = False,
    thresh: bool = False,
) -> SurveyStat:
    """Clark, Hemming and Ulph (1981) class of poverty measures.

    ``1 - g`` is the inequality aversion among the poor; g must lie in
    [0, 1] and ``g == 0`` returns the Watts measure. The remaining
    arguments are as in ``svywatts``.

    Returns:
        SurveyStat with statistic "chu<g>"
    """
    if g is None or np.isnan(g):
        raise ValueError("g= parameter must be specified")
    if g < 0 or g > 1:
        raise ValueError("g= must be in the [0, 1] interval.")

    if g == 0:
        return svywatts(
            formula,
            design,
            type_thresh=type_thresh,
            abs_thresh=abs_thresh,
            percent=percent,
            quantiles=quantiles,
            na_rm=na_rm,
            thresh=thresh,
        )

    type_thresh, percent, quantiles = _threshold_defaults("chu", type_thresh, percent, quantiles)
    _check_threshold_args(type_thresh, abs_thresh, percent, quantiles)

    parameters = {"g": g, "type_thresh": type_thresh, "percent": percent, "quantiles": quantiles}
    if type_thresh == "abs":
        parameters["abs_thresh"] = abs_thresh

    return _poverty_class(
        formula,
        design,
        f"chu{g:g}",
        _chu_h(g),
        _chu_ht(g),
        type_thresh,
        abs_thresh,
        percent,
        quantiles,
        na_rm,
        thresh,
        parameters,
    )


def svyarpt(
    formula,
    design,
    percent: Optional[float] = None,
    quantiles: Optional[float] = None,
    na_rm: bool = False,
) -> SurveyStat:
    """At-risk-of-poverty threshold: percent times a quantile of income.

    On linearized designs the quantile is linearized with a Gaussian kernel
    density estimate at the quantile; the residuals are kept in ``lin``.
    """
    if percent is None:
        percent = float(get_setting("indicators.arpt.percent", 0.6))
    if quantiles is None:
        quantiles = float(get_setting("indicators.arpt.quantiles", 0.5))
    if percent <= 0:
        raise ValueError("percent must be positive")
    if not 0 < quantiles < 1:
        raise ValueError("quantiles must be in (0, 1)")

    var = single_variable(formula)
    design = resolve_design(design, [var])
    y = extract_values(design, var)

    if na_rm:
        design, y = drop_missing(design, y)

    parameters = {"percent": percent, "quantiles": quantiles}
    w = design.weights

    if isinstance(design, SurveyDesign):
        th, lin = _arpt_lin(y, w, percent, quantiles)
        if np.isnan(th):
            return na_result([var], "arpt", design, parameters)
        return build_result(th, design.variance(lin * w), [var], "arpt", design, parameters, lin=lin)

    th = percent * weighted_quantile(y, w, quantiles)
    if np.isnan(th):
        return na_result([var], "arpt", design, parameters)

    # quantile recomputed on each replicate
    qq = replicate_estimates(
        lambda wr: percent * weighted_quantile(y, wr, quantiles), design.repweights
    )
    if np.isnan(qq).any():
        return na_result([var], "arpt", design, parameters, estimate=th)

    return build_result(th, design.variance(qq, coef=th), [var], "arpt", design, parameters)
