# src/testopk/errors.py
"""Error definitions for the testopk engine."""

from __future__ import annotations
from typing import Dict, Optional


class PKEngineError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidParameter(PKEngineError, ValueError):
    """Non-positive half-life/weight/rate, malformed route or time grid."""
    pass


class InvalidBlend(InvalidParameter):
    """Blend whose total concentration is zero or negative."""
    pass


class InsufficientCalibrationData(PKEngineError):
    """Calibration requested with too few (or no usable) samples."""
    pass


class NumericalInstability(PKEngineError):
    """Non-finite intermediate results.

    Only raised when ``EngineConfig.strict_numerics`` is set; by default the
    engine recovers locally and logs the occurrence instead.
    """
    pass
