# src/testopk/calibration.py
"""
Fitting the model to bloodwork.

Two methods:
  - simple: rescale the global calibration factor so the model matches the
    most recent sample. The caller stores the returned factor and passes it
    back on the next call.
  - iterative: refine the elimination and absorption rates within
    [0.5x, 2x] of their reference values by bounded least squares over all
    samples, and report the fit quality (Pearson r).

When the iterative method has no usable context (a single sample, a route
the compound has no data for, a blend that cannot be resolved) it runs the
simple method instead and says so in the result.
"""
from __future__ import annotations

import math
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np
import structlog
from scipy.optimize import least_squares

from .config import DEFAULT_CALIBRATION, DEFAULT_CONFIG, CalibrationConfig, EngineConfig
from .dosing import dose_contents, resolve_dose_events
from .errors import InsufficientCalibrationData, InvalidBlend
from .helpers import compound_kinetics, route_parameters, split_events_by_compound, validate_weight
from .metrics import pearson_r
from .solvers import checked_factor, endogenous_baseline, sanitize, superpose
from .types import (
    DEFAULT_ROUTE, BlendDefinition, CalibrationMethod, CalibrationResult, CalibrationSample,
    CompoundPKParameters, Dosable, DoseEvent, DosingSchedule,
)

logger = structlog.get_logger(__name__)

ScheduleLike = Union[DosingSchedule, Sequence[float]]
Predictor = Callable[[float, float], np.ndarray]

INSUFFICIENT_SAMPLES = "insufficient_samples"
UNSUPPORTED_ROUTE = "unsupported_route"
UNRESOLVABLE_BLEND = "unresolvable_blend"
MISSING_COMPOUND = "missing_compound"


def calibrate_simple(samples: Sequence[CalibrationSample], schedule: ScheduleLike,
                     compound: Optional[Dosable], dose_mg: float, route: str = DEFAULT_ROUTE,
                     weight_kg: Optional[float] = 70.0, current_factor: float = 1.0,
                     config: EngineConfig = DEFAULT_CONFIG,
                     calibration: CalibrationConfig = DEFAULT_CALIBRATION) -> float:
    """
    New calibration factor = current * observed / predicted at the latest
    sample, clamped to the configured bounds.

    The prediction uses the current factor. When it is not finite or is at or
    below calibration.min_prediction the current factor is returned unchanged.
    """
    checked = _check_samples(samples)
    events = _context_events(schedule, compound, dose_mg, route, checked[-1].time_days, config)
    return _simple_update(checked, events, weight_kg, current_factor, config, calibration)


def calibrate_iterative(samples: Sequence[CalibrationSample], schedule: ScheduleLike,
                        compound: Optional[Dosable], dose_mg: float, route: str = DEFAULT_ROUTE,
                        weight_kg: Optional[float] = 70.0, config: EngineConfig = DEFAULT_CONFIG,
                        calibration: CalibrationConfig = DEFAULT_CALIBRATION, *,
                        calibration_factor: float = 1.0) -> CalibrationResult:
    """
    Refine ke and ka against all samples.

    The search runs over log-multipliers of the reference rates, bounded to
    [rate_lower, rate_upper], with scipy's trust-region reflective least
    squares. Residuals are scaled by the largest observation. For a blend
    the same multipliers apply to every component and the rates reported are
    those of the component with the largest share of the dose.
    """
    checked = _check_samples(samples)
    weight = validate_weight(weight_kg, config)
    factor = checked_factor(calibration_factor, config)
    upto = checked[-1].time_days

    primary = _primary_compound(compound)
    try:
        events = _context_events(schedule, compound, dose_mg, route, upto, config)
    except InvalidBlend as exc:
        return _fallback(UNRESOLVABLE_BLEND, checked, None, primary, route, weight, factor,
                         config, calibration, error=exc.message)

    if primary is None:
        primary = _primary_from_events(events)
    if primary is None:
        return _fallback(MISSING_COMPOUND, checked, events, None, route, weight, factor, config, calibration)
    if len(checked) < 2:
        return _fallback(INSUFFICIENT_SAMPLES, checked, events, primary, route, weight, factor,
                         config, calibration)
    if any(not e.compound.supports(e.route) for e in events):
        return _fallback(UNSUPPORTED_ROUTE, checked, events, primary, route, weight, factor,
                         config, calibration)

    times = np.array([s.time_days for s in checked], dtype=float)
    observed = np.array([s.value for s in checked], dtype=float)
    predict = _predictor(times, events, weight, factor, config)
    norm = float(np.max(observed)) if np.max(observed) > 0 else 1.0

    def residuals(x: np.ndarray) -> np.ndarray:
        return (predict(math.exp(x[0]), math.exp(x[1])) - observed) / norm

    lower = math.log(calibration.rate_lower)
    upper = math.log(calibration.rate_upper)
    fit = least_squares(residuals, x0=np.zeros(2), bounds=([lower, lower], [upper, upper]),
                        method="trf", max_nfev=calibration.max_iterations, ftol=calibration.tolerance)

    ke_scale, ka_scale = (float(v) for v in np.exp(fit.x))
    predicted = predict(ke_scale, ka_scale)
    original_ke, original_ka = _reference_rates(primary, route, config)
    result = CalibrationResult(
        method=CalibrationMethod.ITERATIVE,
        original_ke=original_ke,
        original_ka=original_ka,
        adjusted_ke=original_ke * ke_scale,
        adjusted_ka=original_ka * ka_scale,
        correlation=pearson_r(observed, predicted),
        samples_used=len(checked),
        calibration_factor=factor,
        iterations=int(fit.nfev),
        converged=bool(fit.success),
    )
    logger.info("calibration_converged" if result.converged else "calibration_stopped",
                compound=primary.name, ke_scale=ke_scale, ka_scale=ka_scale,
                correlation=result.correlation, iterations=result.iterations, status=int(fit.status))
    return result


# --------------------------
# Context
# --------------------------
def _check_samples(samples: Sequence[CalibrationSample]) -> List[CalibrationSample]:
    """Samples sorted by time; rejects an empty list and non-finite or negative values."""
    if not samples:
        raise InsufficientCalibrationData("Calibration needs at least one sample.", {"samples": 0})
    for s in samples:
        if not (math.isfinite(s.time_days) and math.isfinite(s.value) and s.value >= 0):
            raise InsufficientCalibrationData(
                f"Invalid calibration sample ({s.time_days}, {s.value}).",
                {"time_days": s.time_days, "value": s.value},
            )
    return sorted(samples, key=lambda s: s.time_days)


def _context_events(schedule: ScheduleLike, compound: Optional[Dosable], dose_mg: float, route: str,
                    upto_days: float, config: EngineConfig) -> List[DoseEvent]:
    """
    Dose events up to the last sample.

    A DosingSchedule supplies the timing; when compound is given every dose
    time carries dose_mg of that compound (or blend) on route, otherwise the
    schedule's own contents are used. A plain sequence of times needs a compound.
    """
    if isinstance(schedule, DosingSchedule):
        resolved = resolve_dose_events(schedule, None, upto_days, config)
        if compound is None:
            return resolved
        times = sorted({e.time_days for e in resolved})
    else:
        times = sorted(float(t) for t in schedule if t <= upto_days)
        if compound is None:
            return []

    contents = dose_contents(compound, dose_mg)
    return [DoseEvent(time_days=t, compound=c, amount_mg=mg, route=route)
            for t in times for c, mg in contents]


def _primary_compound(compound: Optional[Dosable]) -> Optional[CompoundPKParameters]:
    if isinstance(compound, BlendDefinition):
        if not compound.components:
            return None
        return max(compound.components, key=lambda c: c.mg_per_ml).compound
    return compound


def _primary_from_events(events: Sequence[DoseEvent]) -> Optional[CompoundPKParameters]:
    totals = {}
    for name, evs in split_events_by_compound(events).items():
        totals[name] = (sum(e.amount_mg for e in evs), evs[0].compound)
    if not totals:
        return None
    return max(totals.values(), key=lambda pair: pair[0])[1]


def _reference_rates(compound: Optional[CompoundPKParameters], route: str,
                     config: EngineConfig) -> Tuple[float, float]:
    """Literature ke (from the half-life) and ka on route, before weight scaling."""
    if compound is None:
        return float("nan"), float("nan")
    return compound.elimination_rate, route_parameters(compound, route, config).ka_per_day


# --------------------------
# Prediction
# --------------------------
def _predictor(times: np.ndarray, events: Sequence[DoseEvent], weight: float, factor: float,
               config: EngineConfig) -> Predictor:
    """
    f(ke_scale, ka_scale) -> predicted ng/dL at times, with the event groups
    prepared once.
    """
    groups = []
    for name, evs in split_events_by_compound(events).items():
        by_route = {}
        for e in evs:
            by_route.setdefault(e.route, []).append(e)
        for r, group in by_route.items():
            groups.append((group[0].compound, r,
                           np.array([e.time_days for e in group], dtype=float),
                           np.array([e.amount_mg for e in group], dtype=float)))
    baseline = endogenous_baseline(weight, config)

    def predict(ke_scale: float, ka_scale: float) -> np.ndarray:
        total = np.zeros(times.shape[0], dtype=float)
        for compound, r, event_times, amounts in groups:
            kin = compound_kinetics(compound, r, weight, config, ke_scale=ke_scale, ka_scale=ka_scale)
            curve, _ = superpose(times, event_times, amounts, kin, config)
            total += curve
        values, _ = sanitize(total * factor * config.output_scale + baseline, config)
        return values

    return predict


def _simple_update(samples: Sequence[CalibrationSample], events: Optional[Sequence[DoseEvent]],
                   weight_kg: Optional[float], current_factor: float, config: EngineConfig,
                   calibration: CalibrationConfig) -> float:
    latest = samples[-1]
    weight = validate_weight(weight_kg, config)
    factor = checked_factor(current_factor, config)
    if events:
        predicted = float(_predictor(np.array([latest.time_days]), events, weight, factor, config)(1.0, 1.0)[0])
    else:
        predicted = float("nan")

    if not (math.isfinite(predicted) and predicted > calibration.min_prediction):
        logger.warning("calibration_skipped", time_days=latest.time_days, observed=latest.value,
                       predicted=predicted, factor=current_factor)
        return current_factor

    new_factor = config.clamp_factor(factor * latest.value / predicted)
    logger.info("calibration_updated", time_days=latest.time_days, observed=latest.value,
                predicted=predicted, old_factor=current_factor, new_factor=new_factor)
    return new_factor


def _fallback(reason: str, samples: Sequence[CalibrationSample], events: Optional[Sequence[DoseEvent]],
              primary: Optional[CompoundPKParameters], route: str, weight: float, factor: float,
              config: EngineConfig, calibration: CalibrationConfig, **context) -> CalibrationResult:
    """Simple-method result with the reference rates reported unchanged."""
    logger.warning("calibration_fallback", reason=reason, samples=len(samples), **context)
    new_factor = _simple_update(samples, events, weight, factor, config, calibration)

    correlation = 0.0
    if events and len(samples) >= 2:
        times = np.array([s.time_days for s in samples], dtype=float)
        observed = np.array([s.value for s in samples], dtype=float)
        correlation = pearson_r(observed, _predictor(times, events, weight, new_factor, config)(1.0, 1.0))

    ke, ka = _reference_rates(primary, route, config)
    return CalibrationResult(
        method=CalibrationMethod.SIMPLE_FALLBACK,
        original_ke=ke,
        original_ka=ka,
        adjusted_ke=ke,
        adjusted_ka=ka,
        correlation=correlation,
        samples_used=len(samples),
        calibration_factor=new_factor,
        fallback_reason=reason,
    )
