"""
Inequality indicators for complex survey samples.

Includes the Rényi divergence measure and the generalized entropy index,
both written in terms of Jenkins & Biewen's U and T functions:

    U(x, w, g) = sum(w * x^g)
    T(x, w, g) = sum(w * x^g * log(x))

The relative median income ratio (svyrmir) compares the median income of
the elderly with that of everyone younger.

Reference: Matti Langel (2012). Measuring inequality in finite population
sampling. PhD thesis, Université de Neuchâtel.
"""

from typing import Callable, Dict, Optional, Tuple

import numpy as np
import polars as pl

from ..core.design import SurveyDesign
from ..core.domain import (
    check_nonnegative,
    drop_missing,
    extract_values,
    resolve_design,
    single_variable,
)
from ..core.result import SurveyStat, build_result, na_result
from ..core.variance import replicate_estimates
from ..utils.config_utils import get_setting
from ._common import T_fn, U_fn, quantile_lin, weighted_quantile


def _renyi(x: np.ndarray, w: np.ndarray, epsilon: float) -> float:
    with np.errstate(divide="ignore", invalid="ignore"):
        U0 = U_fn(x, w, 0)
        U1 = U_fn(x, w, 1)
        if epsilon == 1:
            return T_fn(x, w, 1) / U1 - np.log(U1 / U0)
        return (
            (epsilon - 1) * np.log(U0) - epsilon * np.log(U1) + np.log(U_fn(x, w, epsilon))
        ) / (epsilon - 1)


def _renyi_lin(x: np.ndarray, w: np.ndarray, epsilon: float) -> np.ndarray:
    U0 = U_fn(x, w, 0)
    U1 = U_fn(x, w, 1)
    with np.errstate(divide="ignore", invalid="ignore"):
        if epsilon == 1:
            s = (x / U1) * (np.log(x) - T_fn(x, w, 1) / U1 - 1) + 1 / U0
        else:
            s = ((epsilon - 1) / U0 - epsilon * x / U1 + x**epsilon / U_fn(x, w, epsilon)) / (
                epsilon - 1
            )
    return np.where(w != 0, s, 0.0)


def _gei(x: np.ndarray, w: np.ndarray, epsilon: float) -> float:
    with np.errstate(divide="ignore", invalid="ignore"):
        U0 = U_fn(x, w, 0)
        U1 = U_fn(x, w, 1)
        if epsilon == 0:
            return -T_fn(x, w, 0) / U0 + np.log(U1 / U0)
        if epsilon == 1:
            return T_fn(x, w, 1) / U1 - np.log(U1 / U0)
        return (U0 ** (epsilon - 1) * U1 ** (-epsilon) * U_fn(x, w, epsilon) - 1) / (
            epsilon * (epsilon - 1)
        )


def _gei_lin(x: np.ndarray, w: np.ndarray, epsilon: float) -> np.ndarray:
    if epsilon == 1:
        return _renyi_lin(x, w, 1)

    U0 = U_fn(x, w, 0)
    U1 = U_fn(x, w, 1)
    with np.errstate(divide="ignore", invalid="ignore"):
        if epsilon == 0:
            s = -np.log(x) / U0 + T_fn(x, w, 0) / U0**2 + x / U1 - 1 / U0
        else:
            Ue = U_fn(x, w, epsilon)
            K = U0 ** (epsilon - 1) * U1 ** (-epsilon) * Ue
            s = K / (epsilon * (epsilon - 1)) * ((epsilon - 1) / U0 - epsilon * x / U1 + x**epsilon / Ue)
    return np.where(w != 0, s, 0.0)


def _income_index(
    formula,
    design,
    statistic: str,
    evaluate: Callable[[np.ndarray, np.ndarray], float],
    linearize: Callable[[np.ndarray, np.ndarray], np.ndarray],
    check: Callable[[np.ndarray, np.ndarray], None],
    parameters: Dict[str, float],
    na_rm: bool,
) -> SurveyStat:
    """Shared pipeline for single-income inequality indices."""
    var = single_variable(formula)
    design = resolve_design(design, [var])
    x = extract_values(design, var)

    if na_rm:
        design, x = drop_missing(design, x)

    w = design.weights
    check(x, w)

    # point estimate on the domain weights
    rval = evaluate(x, w)
    if np.isnan(rval):
        return na_result([var], statistic, design, parameters)

    if isinstance(design, SurveyDesign):
        z = linearize(x, w)
        return build_result(
            rval, design.variance(z * w), [var], statistic, design, parameters, lin=z
        )

    qq = replicate_estimates(lambda wr: evaluate(x, wr), design.repweights)
    # one undefined replicate leaves the variance undefined
    if np.isnan(qq).any():
        return na_result([var], statistic, design, parameters, estimate=rval)

    return build_result(rval, design.variance(qq, coef=rval), [var], statistic, design, parameters)


def svyrenyi(formula, design, epsilon: Optional[float] = None, na_rm: bool = False) -> SurveyStat:
    """Rényi divergence measure of inequality.

    Args:
        formula: Income variable, e.g. ``"~eqincome"``
        design: Prepared ``SurveyDesign``, ``ReplicateDesign`` or ``DatabaseDesign``
        epsilon: Sensitivity to inequality at the top of the distribution,
            in [0, inf). Config ``indicators.renyi.epsilon`` (default 1).
        na_rm: Drop rows with a missing income instead of returning NA

    Returns:
        SurveyStat with statistic "renyi"

    Note:
        With ``epsilon == 1`` the measure equals the generalized entropy
        index GE(1) and needs strictly positive incomes.
    """
    if epsilon is None:
        epsilon = float(get_setting("indicators.renyi.epsilon", 1.0))
    if epsilon < 0:
        raise ValueError("epsilon has to be in [0, +Inf)")

    def check(x, w):
        check_nonnegative(x, w, "The Rényi divergence")
        if epsilon == 1 and np.any(x[w != 0] == 0):
            raise ValueError(f"The Rényi divergence is undefined for zero incomes if epsilon == {epsilon}")

    return _income_index(
        formula,
        design,
        "renyi",
        lambda x, w: _renyi(x, w, epsilon),
        lambda x, w: _renyi_lin(x, w, epsilon),
        check,
        {"epsilon": epsilon},
        na_rm,
    )


def svygei(formula, design, epsilon: Optional[float] = None, na_rm: bool = False) -> SurveyStat:
    """Generalized entropy index GE(epsilon).

    epsilon = 0 is the mean log deviation, epsilon = 1 the Theil index.
    Zero incomes are only allowed for epsilon > 0 and epsilon != 1.
    """
    if epsilon is None:
        epsilon = float(get_setting("indicators.gei.epsilon", 1.0))

    def check(x, w):
        check_nonnegative(x, w, "The generalized entropy index")
        if (epsilon <= 0 or epsilon == 1) and np.any(x[w != 0] == 0):
            raise ValueError(
                f"The generalized entropy index is undefined for zero incomes if epsilon == {epsilon}"
            )

    return _income_index(
        formula,
        design,
        "gei",
        lambda x, w: _gei(x, w, epsilon),
        lambda x, w: _gei_lin(x, w, epsilon),
        check,
        {"epsilon": epsilon},
        na_rm,
    )


def _age_groups(age: np.ndarray, w: np.ndarray, agelim: float) -> Tuple[np.ndarray, np.ndarray]:
    """Domain weights for the younger (age < agelim) and older groups."""
    young = np.where(age < agelim, w, 0.0)
    old = np.where(age >= agelim, w, 0.0)
    return young, old


def _rmir(x: np.ndarray, age: np.ndarray, w: np.ndarray, agelim: float, p: float) -> float:
    young, old = _age_groups(age, w, agelim)
    q1 = weighted_quantile(x, young, p)
    q2 = weighted_quantile(x, old, p)
    if np.isnan(q1) or np.isnan(q2) or q1 == 0:
        return float("nan")
    return q2 / q1


def svyrmir(
    formula,
    design,
    age,
    agelim: Optional[float] = None,
    quantiles: Optional[float] = None,
    med_old: bool = False,
    na_rm: bool = False,
) -> SurveyStat:
    """Relative median income ratio.

    Median income of units aged ``agelim`` or more divided by the median
    income of units younger than ``agelim``. Both medians are domain
    quantiles; on linearized designs the ratio is linearized from their
    kernel-density residuals:

        lin = (q_young * lin_old - q_old * lin_young) / q_young^2

    Args:
        formula: Income variable, e.g. ``"~eqincome"``
        design: Prepared survey design
        age: Age variable, e.g. ``"~age"``
        agelim: Age limit (config ``indicators.rmir.agelim``, default 65)
        quantiles: Quantile compared in both groups (default 0.5, the median)
        med_old: Attach both group medians in ``extra``
        na_rm: Drop rows with a missing income or age instead of returning NA

    Returns:
        SurveyStat with statistic "rmir"
    """
    if agelim is None:
        agelim = float(get_setting("indicators.rmir.agelim", 65))
    if quantiles is None:
        quantiles = float(get_setting("indicators.rmir.quantiles", 0.5))
    if not 0 < quantiles < 1:
        raise ValueError("quantiles must be in (0, 1)")

    var = single_variable(formula)
    age_var = single_variable(age)
    design = resolve_design(design, [var, age_var])

    values = np.column_stack([extract_values(design, var), extract_values(design, age_var)])
    if na_rm:
        design, values = drop_missing(design, values)
    x, ages = values[:, 0], values[:, 1]

    parameters = {"agelim": agelim, "quantiles": quantiles}
    w = design.weights
    if np.isnan(values[w != 0]).any():
        return na_result([var], "rmir", design, parameters)

    rval = _rmir(x, ages, w, agelim, quantiles)
    if np.isnan(rval):
        return na_result([var], "rmir", design, parameters)

    young, old = _age_groups(ages, w, agelim)

    if isinstance(design, SurveyDesign):
        q1, lin1 = quantile_lin(x, young, quantiles)
        q2, lin2 = quantile_lin(x, old, quantiles)
        # ratio of two domain quantiles
        lin = (q1 * lin2 - q2 * lin1) / q1**2
        variance = design.variance(lin * w)

        extra = None
        if med_old:
            v1 = design.variance(lin1 * w)[0, 0]
            v2 = design.variance(lin2 * w)[0, 0]
            extra = pl.DataFrame(
                {"term": ["median_young", "median_old"], "coef": [q1, q2], "se": [np.sqrt(v1), np.sqrt(v2)]}
            )
        return build_result(rval, variance, [var], "rmir", design, parameters, extra=extra, lin=lin)

    qq = replicate_estimates(lambda wr: _rmir(x, ages, wr, agelim, quantiles), design.repweights)
    if np.isnan(qq).any():
        return na_result([var], "rmir", design, parameters, estimate=rval)

    extra = None
    if med_old:
        # group medians per replicate, for their standard errors
        medians = replicate_estimates(
            lambda wr: weighted_quantile(x, _age_groups(ages, wr, agelim)[0], quantiles),
            design.repweights,
        )
        medians_old = replicate_estimates(
            lambda wr: weighted_quantile(x, _age_groups(ages, wr, agelim)[1], quantiles),
            design.repweights,
        )
        q1 = weighted_quantile(x, young, quantiles)
        q2 = weighted_quantile(x, old, quantiles)
        v1 = design.variance(medians, coef=q1)[0, 0]
        v2 = design.variance(medians_old, coef=q2)[0, 0]
        extra = pl.DataFrame(
            {"term": ["median_young", "median_old"], "coef": [q1, q2], "se": [np.sqrt(v1), np.sqrt(v2)]}
        )

    return build_result(
        rval, design.variance(qq, coef=rval), [var], "rmir", design, parameters, extra=extra
    )
