"""Building blocks shared by the indicator modules."""

from typing import Tuple

import numpy as np

from ..core.design import SurveyDesign
from ..core.variance import replicate_estimates


def _sampled(x: np.ndarray, w: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    keep = w != 0
    return x[keep], w[keep]


# Jenkins & Biewen's U and T functions
def U_fn(x: np.ndarray, w: np.ndarray, gamma: float) -> np.float64:
    x, w = _sampled(x, w)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.sum(w * x**gamma)


def T_fn(x: np.ndarray, w: np.ndarray, gamma: float) -> np.float64:
    x, w = _sampled(x, w)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.sum(w * x**gamma * np.log(x))


def weighted_quantile(x: np.ndarray, w: np.ndarray, p: float) -> float:
    """Smallest value whose cumulative weight share reaches ``p``."""
    x, w = _sampled(x, w)
    if x.shape[0] == 0 or np.isnan(x).any() or w.sum() == 0:
        return float("nan")

    # first value whose cumulative share reaches p
    order = np.argsort(x, kind="mergesort")
    xs = x[order]
    cum_w = np.cumsum(w[order]) / w.sum()
    idx = np.searchsorted(cum_w, p, side="left")
    return float(xs[min(idx, xs.shape[0] - 1)])


def weighted_mean(x: np.ndarray, w: np.ndarray) -> float:
    x, w = _sampled(x, w)
    total = w.sum()
    if total == 0:
        return float("nan")
    return float(np.sum(w * x) / total)


def bandwidth(x: np.ndarray, w: np.ndarray) -> float:
    """Kernel bandwidth 0.79 * min(sd, IQR / 1.349) * N^(-1/5)."""
    x, w = _sampled(x, w)
    N = w.sum()
    mean = np.sum(w * x) / N
    sd = np.sqrt(np.sum(w * (x - mean) ** 2) / N)
    # fall back to sd when the IQR collapses
    iqr = weighted_quantile(x, w, 0.75) - weighted_quantile(x, w, 0.25)
    spread = min(sd, iqr / 1.349) if iqr > 0 else sd
    return float(0.79 * spread * N ** (-1 / 5))


def density_at(x: np.ndarray, w: np.ndarray, point: float) -> float:
    """Gaussian kernel estimate of the income density at ``point``."""
    h = bandwidth(x, w)
    x, w = _sampled(x, w)
    u = (point - x) / h
    return float(np.sum(w * np.exp(-0.5 * u**2) / np.sqrt(2 * np.pi)) / (w.sum() * h))


def quantile_lin(x: np.ndarray, w: np.ndarray, p: float) -> Tuple[float, np.ndarray]:
    """Weighted quantile and its linearized residuals over the rows of ``w``.

    Rows with zero weight (outside the domain) get a zero residual:

        -(1(x <= q) - p) / (N * f(q))
    """
    q = weighted_quantile(x, w, p)
    lin = np.zeros_like(w, dtype=float)
    if np.isnan(q):
        return q, lin

    sampled = w != 0
    N = w[sampled].sum()
    f = density_at(x, w, q)
    lin[sampled] = -((x[sampled] <= q) - p) / (N * f)
    return q, lin


def mean_estimate(z: np.ndarray, design) -> Tuple[float, np.ndarray]:
    """Weighted mean of ``z`` and its variance under ``design``."""
    w = design.weights
    est = weighted_mean(z, w)

    if isinstance(design, SurveyDesign):
        N = w.sum()
        lin = np.where(w > 0, (np.where(w > 0, z, 0.0) - est) / N, 0.0)
        return est, design.variance(lin * w)

    qq = replicate_estimates(lambda wr: weighted_mean(z, wr), design.repweights)
    return est, design.variance(qq, coef=est)


def ratio_estimate(num: np.ndarray, den: np.ndarray, design) -> Tuple[float, np.ndarray]:
    """Ratio of weighted totals ``sum(w*num) / sum(w*den)`` and its variance."""

    def ratio(w: np.ndarray) -> float:
        keep = w != 0
        total = np.sum(w[keep] * den[keep])
        if total == 0:
            return float("nan")
        return float(np.sum(w[keep] * num[keep]) / total)

    w = design.weights
    est = ratio(w)
    if np.isnan(est):
        return est, np.full((1, 1), np.nan)

    if isinstance(design, SurveyDesign):
        sampled = w > 0
        den_total = np.sum(w[sampled] * den[sampled])
        lin = np.zeros_like(w)
        lin[sampled] = (num[sampled] - est * den[sampled]) / den_total
        return est, design.variance(lin * w)

    qq = replicate_estimates(ratio, design.repweights)
    return est, design.variance(qq, coef=est)
