"""Result envelope shared by every indicator."""

from dataclasses import dataclass, field
from statistics import NormalDist
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
import polars as pl

from ..utils.config_utils import get_setting

METHODS = {"linearized": "linearization", "replicate": "replication"}


@dataclass(frozen=True)
class SurveyStat:
    """Point estimate with its design-based variance.

    ``variance`` is always a square matrix aligned with ``estimate``, even for
    a single statistic. ``lin`` holds the linearized residuals when the
    indicator exposes them (linearized designs only).
    """

    estimate: np.ndarray
    names: Tuple[str, ...]
    variance: np.ndarray
    statistic: str
    method: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    dimensions: Optional[Tuple[str, ...]] = None
    thresh: Optional[float] = None
    extra: Optional[pl.DataFrame] = None
    lin: Optional[np.ndarray] = None

    def coef(self) -> np.ndarray:
        return self.estimate

    def vcov(self) -> np.ndarray:
        return self.variance

    def se(self) -> np.ndarray:
        return np.sqrt(np.diag(self.variance))

    @property
    def is_na(self) -> bool:
        return bool(np.isnan(self.estimate).any())

    def confint(self, level: Optional[float] = None) -> np.ndarray:
        """Normal-theory confidence interval, one (lower, upper) row per estimate."""
        level = level if level is not None else get_setting("reporting.confidence", 0.95)
        if not 0 < level < 1:
            raise ValueError("level must be in (0, 1)")
        z = NormalDist().inv_cdf(0.5 + level / 2)
        half = z * self.se()
        return np.column_stack([self.estimate - half, self.estimate + half])

    def to_frame(self) -> pl.DataFrame:
        ci = self.confint()
        return pl.DataFrame(
            {
                "variable": list(self.names),
                "statistic": [self.statistic] * len(self.names),
                "estimate": self.estimate.tolist(),
                "se": self.se().tolist(),
                "ci_lower": ci[:, 0].tolist(),
                "ci_upper": ci[:, 1].tolist(),
            }
        )

    def __float__(self) -> float:
        if self.estimate.shape[0] != 1:
            raise TypeError("float() needs a single estimate")
        return float(self.estimate[0])

    def __repr__(self) -> str:
        parts = ", ".join(
            f"{name}={est:.6g} (SE {se:.6g})"
            for name, est, se in zip(self.names, self.estimate, self.se())
        )
        return f"SurveyStat[{self.statistic}, {self.method}]({parts})"


def build_result(
    estimate,
    variance,
    names: Sequence[str],
    statistic: str,
    design,
    parameters: Optional[Dict[str, Any]] = None,
    dimensions: Optional[Sequence[str]] = None,
    thresh: Optional[float] = None,
    extra: Optional[pl.DataFrame] = None,
    lin: Optional[np.ndarray] = None,
) -> SurveyStat:
    """Package an estimate and its variance into a ``SurveyStat``."""
    estimate = np.atleast_1d(np.asarray(estimate, dtype=float))
    variance = np.asarray(variance, dtype=float)
    if variance.ndim < 2:
        variance = np.diag(np.atleast_1d(variance))

    return SurveyStat(
        estimate=estimate,
        names=tuple(names),
        variance=variance,
        statistic=statistic,
        method=METHODS.get(design.kind, design.kind),
        parameters=dict(parameters or {}),
        dimensions=tuple(dimensions) if dimensions is not None else None,
        thresh=None if thresh is None else float(thresh),
        extra=extra,
        lin=lin,
    )


def na_result(
    names: Sequence[str],
    statistic: str,
    design,
    parameters: Optional[Dict[str, Any]] = None,
    dimensions: Optional[Sequence[str]] = None,
    estimate=None,
    thresh: Optional[float] = None,
) -> SurveyStat:
    """Result for an undefined estimate (or an undefined variance if ``estimate`` is given)."""
    k = len(names)
    if estimate is None:
        estimate = np.full(k, np.nan)
    return build_result(
        estimate,
        np.full((k, k), np.nan),
        names,
        statistic,
        design,
        parameters=parameters,
        dimensions=dimensions,
        thresh=thresh,
    )
