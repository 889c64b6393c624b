"""
Carbon model.

Components:
    coefficients  grid intensities, penalties and thresholds shared with the analyzer
    calculator    energy / CO2 footprint, eco score and impact prediction
"""

from greenci.carbon.calculator import (
    CarbonCalculator, CarbonFootprint, EcoScore, Deduction, EnergyEstimate, grade_for_score,
)

__all__ = [
    "CarbonCalculator", "CarbonFootprint", "EcoScore", "Deduction", "EnergyEstimate",
    "grade_for_score",
]
