"""Growth and valuation collaborators."""

from .base import GrowthModel, ValuationModel
from .reference import ReferenceGrowthModel
from .valuation import TimberValuation, merchantable_volume_m3

__all__ = [
    "GrowthModel",
    "ReferenceGrowthModel",
    "TimberValuation",
    "ValuationModel",
    "merchantable_volume_m3",
]
