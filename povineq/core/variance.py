"""Design-based variance reduction.

Two reducers turn per-unit quantities into a variance matrix:

- ``svyrecvar``: Taylor linearization. Takes weighted residuals
  (``residual * weight``, one row per sampled unit), aggregates them to
  primary sampling unit (PSU) totals and applies the with-replacement
  between-PSU variance within each stratum:

      V = sum_h (1 - f_h) * n_h / (n_h - 1) * sum_i (t_hi - t_h)(t_hi - t_h)'

  where t_hi is the total of PSU i in stratum h, t_h the stratum mean of
  the PSU totals, n_h the PSU count and f_h the first-stage sampling
  fraction (0 without a finite population correction).

- ``svrvar``: replication. Takes one estimate per replicate weight column:

      V = scale * sum_r rscale_r * (theta_r - c)(theta_r - c)'

  with c the full-sample estimate when ``mse`` is set, otherwise the mean of
  the replicate estimates.

Only the first sampling stage is used. Rows with zero weight contribute a
zero residual but still count towards their stratum's PSUs, which gives
correct domain (subpopulation) variances.
"""

from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from ..utils.config_utils import get_setting

LONELY_PSU_OPTIONS = ("fail", "remove", "certainty", "adjust")


def factorize(values) -> np.ndarray:
    """Map arbitrary labels (ints, strings, None) to integer codes."""
    labels = np.asarray(values).astype(str)
    return np.unique(labels, return_inverse=True)[1].reshape(-1)


def psu_index(cluster, strata) -> Tuple[np.ndarray, np.ndarray]:
    """Return (row -> PSU code, PSU -> stratum code); PSU ids nest within strata."""
    strata_codes = factorize(strata)
    cluster_codes = factorize(cluster)
    base = int(cluster_codes.max()) + 1
    key = strata_codes.astype(np.int64) * base + cluster_codes
    unique_keys, row_psu = np.unique(key, return_inverse=True)
    psu_strata = unique_keys // base
    return row_psu.reshape(-1), psu_strata


def _post_stratify(x: np.ndarray, post_strata, weights: np.ndarray) -> np.ndarray:
    """Remove post-stratum means of the unweighted residuals.

    ``weights`` are the full-sample weights: rows outside an analysis domain
    carry a zero residual but still count towards their post-stratum mean,
    and receive ``-mean * weight`` as residual.
    """
    sampled = weights > 0
    z = np.zeros_like(x)
    z[sampled] = x[sampled] / weights[sampled, np.newaxis]

    codes = factorize(post_strata)
    n_groups = codes.max() + 1
    sums = np.zeros((n_groups, x.shape[1]))
    np.add.at(sums, codes[sampled], z[sampled])
    counts = np.bincount(codes[sampled], minlength=n_groups).astype(float)
    means = np.divide(sums, counts[:, np.newaxis], out=np.zeros_like(sums), where=counts[:, np.newaxis] > 0)

    return x - means[codes] * weights[:, np.newaxis]


def _sampling_fraction(fpc: Optional[np.ndarray], rows: np.ndarray, n_h: int) -> float:
    if fpc is None:
        return 0.0
    value = float(fpc[rows][0])
    if value <= 1:
        return value
    return n_h / value


def svyrecvar(
    x,
    cluster=None,
    strata=None,
    fpc=None,
    post_strata=None,
    weights=None,
    lonely_psu: Optional[str] = None,
) -> np.ndarray:
    """Variance of the Horvitz-Thompson total of ``x``.

    Args:
        x: Weighted residuals, shape (n,) or (n, p); zero for unsampled rows
        cluster: PSU label per row (each row is its own PSU when omitted)
        strata: Stratum label per row (single stratum when omitted)
        fpc: Per-row sampling fraction (<= 1) or population PSU count (> 1)
        post_strata: Post-stratum label per row; requires ``weights``
        weights: Full-sample weights (not domain weights), used only for
            post-stratification
        lonely_psu: Strategy for strata with one PSU: "fail", "remove",
            "certainty" or "adjust" (config ``variance.lonely_psu``)

    Returns:
        (p, p) covariance matrix
    """
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        x = x[:, np.newaxis]
    n, p = x.shape

    lonely_psu = lonely_psu or get_setting("variance.lonely_psu", "fail")
    if lonely_psu not in LONELY_PSU_OPTIONS:
        raise ValueError(f"lonely_psu must be one of {LONELY_PSU_OPTIONS}, got '{lonely_psu}'")

    if np.isnan(x).any():
        return np.full((p, p), np.nan)

    if cluster is None:
        cluster = np.arange(n)
    if strata is None:
        strata = np.zeros(n, dtype=np.int64)

    if post_strata is not None:
        if weights is None:
            raise ValueError("post_strata requires the sampling weights")
        x = _post_stratify(x, post_strata, np.asarray(weights, dtype=float))

    # aggregate to PSU totals
    row_psu, psu_strata = psu_index(cluster, strata)
    totals = np.zeros((psu_strata.shape[0], p))
    np.add.at(totals, row_psu, x)
    fpc = None if fpc is None else np.asarray(fpc, dtype=float)

    grand_mean = totals.mean(axis=0)
    variance = np.zeros((p, p))

    # between-PSU variance within each stratum
    for h in np.unique(psu_strata):
        in_stratum = psu_strata == h
        t = totals[in_stratum]
        n_h = t.shape[0]
        rows = in_stratum[row_psu]
        f = _sampling_fraction(fpc, rows, n_h)

        if n_h == 1:
            if lonely_psu == "fail":
                raise ValueError(
                    "Stratum has only one PSU. Set lonely_psu to 'remove', 'certainty' or "
                    "'adjust' (config key variance.lonely_psu) to estimate a variance anyway."
                )
            if lonely_psu == "adjust":
                d = t - grand_mean
                variance += (1 - f) * d.T @ d
            continue

        # with-replacement estimator, scaled by the fpc
        d = t - t.mean(axis=0)
        variance += (1 - f) * n_h / (n_h - 1) * d.T @ d

    return variance


def svrvar(
    thetas,
    scale: float,
    rscales: Optional[Sequence[float]] = None,
    mse: Optional[bool] = None,
    coef=None,
) -> np.ndarray:
    """Replication variance from a vector (or matrix) of replicate estimates.

    Any missing replicate estimate makes the whole variance missing.
    """
    thetas = np.asarray(thetas, dtype=float)
    if thetas.ndim == 1:
        thetas = thetas[:, np.newaxis]
    n_rep, p = thetas.shape

    if np.isnan(thetas).any():
        return np.full((p, p), np.nan)

    mse = get_setting("replicates.mse", False) if mse is None else mse
    rscales = np.ones(n_rep) if rscales is None else np.asarray(rscales, dtype=float)

    if mse:
        if coef is None:
            raise ValueError("mse=True requires the full-sample estimate (coef)")
        center = np.atleast_1d(np.asarray(coef, dtype=float))
    else:
        center = thetas.mean(axis=0)

    # weighted squared deviations around the centre
    dev = (thetas - center) * np.sqrt(rscales)[:, np.newaxis]
    return scale * dev.T @ dev


def replicate_estimates(evaluate: Callable[[np.ndarray], float], repweights: np.ndarray) -> np.ndarray:
    """Evaluate a statistic once per replicate weight column."""
    repweights = np.asarray(repweights, dtype=float)
    return np.array(
        [evaluate(repweights[:, r]) for r in range(repweights.shape[1])],
        dtype=float,
    )
