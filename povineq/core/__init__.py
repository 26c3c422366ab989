"""Survey designs, domain resolution, variance reduction and results."""

from .database import DatabaseDesign
from .design import (
    DesignSetupError,
    ReplicateDesign,
    SurveyDesign,
    as_replicate_design,
    prepare,
)
from .groups import svyby
from .result import SurveyStat
from .variance import svrvar, svyrecvar

__all__ = [
    "DatabaseDesign",
    "DesignSetupError",
    "ReplicateDesign",
    "SurveyDesign",
    "SurveyStat",
    "as_replicate_design",
    "prepare",
    "svrvar",
    "svyby",
    "svyrecvar",
]
