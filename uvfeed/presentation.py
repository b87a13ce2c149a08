"""
UV index presentation helpers shared by the location list and the widget.

Category bands follow the WHO UV index scale.
"""

import math
from enum import Enum
from typing import List, Optional


class UVCategory(Enum):
    """UV index severity band with its display label and color."""
    LOW = ("Low", "green", 0.0, 3.0)
    MODERATE = ("Moderate", "yellow", 3.0, 6.0)
    HIGH = ("High", "orange", 6.0, 8.0)
    VERY_HIGH = ("Very High", "red", 8.0, 11.0)
    EXTREME = ("Extreme", "purple", 11.0, None)

    def __init__(self, label: str, color: str, lower: float, upper: Optional[float]):
        self.label = label
        self.color = color
        self.lower = lower
        self.upper = upper


def category_for(index: float) -> UVCategory:
    """Map a UV index to its category. Negative and NaN values count as LOW."""
    if math.isnan(index) or index < 3:
        return UVCategory.LOW
    if index < 6:
        return UVCategory.MODERATE
    if index < 8:
        return UVCategory.HIGH
    if index < 11:
        return UVCategory.VERY_HIGH
    return UVCategory.EXTREME


def color_for_index(index: float) -> str:
    return category_for(index).color


def description_for_index(index: float) -> str:
    return category_for(index).label


def format_index(index: float) -> str:
    """Format an index the way both front ends display it."""
    return f"{index:.1f}"


def legend() -> List[dict]:
    """Color legend rows, lowest band first."""
    return [
        {
            "category": category.name,
            "label": category.label,
            "color": category.color,
            "min_index": category.lower,
            "max_index": category.upper,
        }
        for category in UVCategory
    ]
