"""Indicator calculation modules."""

from .inequality import (
    svygei,
    svyrenyi,
    svyrmir,
)
from .multidimensional import svyafc
from .poverty import (
    svyarpt,
    svychu,
    svywatts,
)

__all__ = [
    # inequality indicators
    "svyrenyi",
    "svygei",
    "svyrmir",
    # poverty indicators
    "svychu",
    "svywatts",
    "svyarpt",
    # multidimensional poverty
    "svyafc",
]
