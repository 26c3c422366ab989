"""povineq: poverty and inequality indicators with design-based variances.

Example:
    >>> import polars as pl
    >>> import povineq as pv
    >>> design = pv.prepare(pv.SurveyDesign(df, weight_col="weight", strata_col="strata", psu_col="psu"))
    >>> pv.svyrenyi("~income", design, epsilon=0.5)
"""

__version__ = "0.1.0"

from .core import (
    DatabaseDesign,
    DesignSetupError,
    ReplicateDesign,
    SurveyDesign,
    SurveyStat,
    as_replicate_design,
    prepare,
    svrvar,
    svyby,
    svyrecvar,
)
from .indicators import (
    svyafc,
    svyarpt,
    svychu,
    svygei,
    svyrenyi,
    svyrmir,
    svywatts,
)

__all__ = [
    "__version__",
    # designs
    "SurveyDesign",
    "ReplicateDesign",
    "DatabaseDesign",
    "DesignSetupError",
    "prepare",
    "as_replicate_design",
    # variance and results
    "svyrecvar",
    "svrvar",
    "SurveyStat",
    "svyby",
    # indicators
    "svyrenyi",
    "svygei",
    "svyrmir",
    "svyafc",
    "svychu",
    "svywatts",
    "svyarpt",
]
