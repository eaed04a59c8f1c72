# src/testopk/config.py
"""Engine configuration models."""

from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, model_validator


class EngineConfig(BaseModel):
    """Concentration engine settings.

    Defaults describe a one-compartment model without endogenous production;
    both are explicit switches so callers decide.
    """

    model_config = ConfigDict(frozen=True)

    two_compartment: bool = Field(False, description="Use the central/peripheral closed form")
    k12: float = Field(0.3, ge=0, description="Central -> peripheral transfer rate (1/day)")
    k21: float = Field(0.15, gt=0, description="Peripheral -> central transfer rate (1/day)")

    include_endogenous: bool = Field(False, description="Add steady endogenous production to totals")
    endogenous_production_mg_per_day: float = Field(7.0, ge=0)
    endogenous_clearance_l_per_day: float = Field(2.4, gt=0, description="Clearance at the reference weight")

    reference_weight_kg: float = Field(70.0, gt=0)
    volume_exponent: float = 1.0
    clearance_exponent: float = 0.75

    default_vd_l: float = Field(15.0, gt=0, description="Vd at the reference weight when a compound gives none")
    default_ka_per_day: float = Field(0.7, gt=0)
    default_bioavailability: float = Field(1.0, gt=0, le=1)

    output_scale: float = Field(100.0, gt=0, description="mg/L -> ng/dL")

    max_time_points: int = Field(5000, gt=1)
    max_dose_events: int = Field(10000, gt=0)

    min_calibration_factor: float = Field(0.1, gt=0)
    max_calibration_factor: float = Field(10.0, gt=0)

    strict_numerics: bool = Field(False, description="Raise NumericalInstability instead of sanitising")

    @model_validator(mode="after")
    def validate_factor_bounds(self) -> "EngineConfig":
        if self.min_calibration_factor > self.max_calibration_factor:
            raise ValueError("min_calibration_factor must not exceed max_calibration_factor")
        return self

    def clamp_factor(self, factor: float) -> float:
        return max(self.min_calibration_factor, min(self.max_calibration_factor, float(factor)))


class CalibrationConfig(BaseModel):
    """Iterative calibration settings."""

    model_config = ConfigDict(frozen=True)

    max_iterations: int = Field(100, gt=0, description="Maximum function evaluations of the refinement")
    tolerance: float = Field(1e-4, gt=0, description="Relative improvement below which refinement stops")
    rate_lower: float = Field(0.5, gt=0, lt=1, description="Lower bound as a multiple of the reference rate")
    rate_upper: float = Field(2.0, gt=1, description="Upper bound as a multiple of the reference rate")
    min_prediction: float = Field(0.01, ge=0, description="Predictions at or below this cannot be rescaled")


DEFAULT_CONFIG = EngineConfig()
DEFAULT_CALIBRATION = CalibrationConfig()
