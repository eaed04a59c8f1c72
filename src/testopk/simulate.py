# src/testopk/simulate.py
from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from . import calibration as _calibration
from . import dosing, peaks, solvers
from .config import DEFAULT_CALIBRATION, DEFAULT_CONFIG, CalibrationConfig, EngineConfig
from .helpers import RouteOverride
from .types import (
    DEFAULT_ROUTE, BlendDefinition, CalibrationResult, CalibrationSample, CompoundPKParameters,
    ConcentrationSeries, Dosable, DoseEvent, DosingSchedule, PeakResult, SimulationRequest,
)


def resolve_dose_events(schedule: DosingSchedule, from_days: Optional[float], upto_days: float,
                        config: Optional[EngineConfig] = None) -> List[DoseEvent]:
    """
    Dose events of a schedule inside [from_days, upto_days].
    Depends only on the schedule and the window, never on calibration state.
    """
    return dosing.resolve_dose_events(schedule, from_days, upto_days, config or DEFAULT_CONFIG)


def simulate_concentrations(time_points: Sequence[float], dose_events: Sequence[DoseEvent],
                            compounds: Optional[Mapping[str, CompoundPKParameters]] = None,
                            route: RouteOverride = None, weight_kg: Optional[float] = 70.0,
                            calibration_factor: float = 1.0,
                            config: Optional[EngineConfig] = None) -> ConcentrationSeries:
    """
    Predicted concentration (ng/dL) at each time point.

    compounds : optional name -> parameters map overriding the events' own
    route     : None keeps each event's route; a string applies to all
                events; a mapping sets it per compound name
    """
    return solvers.simulate_total(time_points, dose_events, compounds, route, weight_kg,
                                  calibration_factor, config or DEFAULT_CONFIG)


def simulate_compound_curves(time_points: Sequence[float], dose_events: Sequence[DoseEvent],
                             compounds: Optional[Mapping[str, CompoundPKParameters]] = None,
                             route: RouteOverride = None, weight_kg: Optional[float] = 70.0,
                             calibration_factor: float = 1.0,
                             config: Optional[EngineConfig] = None) -> Dict[str, ConcentrationSeries]:
    """One series per compound, e.g. the four esters of a Sustanon schedule."""
    return solvers.simulate_by_compound(time_points, dose_events, compounds, route, weight_kg,
                                        calibration_factor, config or DEFAULT_CONFIG)


def run_request(request: SimulationRequest, config: Optional[EngineConfig] = None) -> ConcentrationSeries:
    return simulate_concentrations(request.time_points, request.dose_events, route=request.route,
                                   weight_kg=request.weight_kg,
                                   calibration_factor=request.calibration_factor, config=config)


def compute_single_dose_peak(compound: CompoundPKParameters, dose_mg: float, route: str = DEFAULT_ROUTE,
                             weight_kg: Optional[float] = 70.0, calibration_factor: float = 1.0,
                             config: Optional[EngineConfig] = None) -> PeakResult:
    """(time to max in days, max concentration in ng/dL) of one isolated dose."""
    return peaks.single_dose_peak(compound, dose_mg, route, weight_kg, calibration_factor,
                                  config or DEFAULT_CONFIG)


def compute_blend_peak(blend: BlendDefinition, dose_mg: float, route: str = DEFAULT_ROUTE,
                       weight_kg: Optional[float] = 70.0, calibration_factor: float = 1.0,
                       config: Optional[EngineConfig] = None) -> PeakResult:
    return peaks.blend_peak(blend, dose_mg, route, weight_kg, calibration_factor, config or DEFAULT_CONFIG)


def compute_timeline_peak(dose_events: Sequence[DoseEvent],
                          compounds: Optional[Mapping[str, CompoundPKParameters]] = None,
                          route: RouteOverride = None, window: Tuple[float, float] = (0.0, 90.0),
                          weight_kg: Optional[float] = 70.0, calibration_factor: float = 1.0,
                          config: Optional[EngineConfig] = None) -> PeakResult:
    """
    Peak of the superposed curve inside window (days). Sampled, so only as
    precise as PeakResult.resolution_days.
    """
    return peaks.timeline_peak(dose_events, window, compounds, route, weight_kg, calibration_factor,
                               config or DEFAULT_CONFIG)


def calibrate_simple(samples: Sequence[CalibrationSample], schedule: _calibration.ScheduleLike,
                     compound: Optional[Dosable], dose_mg: float, route: str = DEFAULT_ROUTE,
                     weight_kg: Optional[float] = 70.0, current_factor: float = 1.0,
                     config: Optional[EngineConfig] = None,
                     calibration: Optional[CalibrationConfig] = None) -> float:
    """Updated global calibration factor; the caller persists it."""
    return _calibration.calibrate_simple(samples, schedule, compound, dose_mg, route, weight_kg,
                                         current_factor, config or DEFAULT_CONFIG,
                                         calibration or DEFAULT_CALIBRATION)


def calibrate_iterative(samples: Sequence[CalibrationSample], schedule: _calibration.ScheduleLike,
                        compound: Optional[Dosable], dose_mg: float, route: str = DEFAULT_ROUTE,
                        weight_kg: Optional[float] = 70.0, config: Optional[EngineConfig] = None,
                        calibration: Optional[CalibrationConfig] = None, *,
                        calibration_factor: float = 1.0) -> CalibrationResult:
    return _calibration.calibrate_iterative(samples, schedule, compound, dose_mg, route, weight_kg,
                                            config or DEFAULT_CONFIG, calibration or DEFAULT_CALIBRATION,
                                            calibration_factor=calibration_factor)
