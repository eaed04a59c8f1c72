# src/testopk/peaks.py
from __future__ import annotations

import math
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np
import structlog
from scipy.optimize import minimize_scalar

from .config import DEFAULT_CONFIG, EngineConfig
from .dosing import resolve_blend
from .errors import InvalidParameter
from .helpers import RouteOverride, compound_kinetics, validate_weight
from .models.one_compartment import time_to_peak
from .solvers import (
    checked_factor, compound_curves_mg_per_l, endogenous_baseline, evaluate_kinetics, sanitize,
    simulate_total,
)
from .types import DEFAULT_ROUTE, BlendDefinition, CompoundPKParameters, DoseEvent, PeakResult

logger = structlog.get_logger(__name__)

BLEND_HORIZON_DAYS = 90.0
BLEND_STEP_DAYS = 0.01
# Timeline grid: half-life / 16, never finer than 6 hours
TIMELINE_DIVISIONS = 16
TIMELINE_MIN_SPACING_DAYS = 0.25
# Samples for the coarse Tmax search of the two-compartment curve
_SEARCH_POINTS = 2001


def single_dose_peak(compound: CompoundPKParameters, dose_mg: float, route: str = DEFAULT_ROUTE,
                     weight_kg: Optional[float] = 70.0, calibration_factor: float = 1.0,
                     config: EngineConfig = DEFAULT_CONFIG) -> PeakResult:
    """
    Tmax (days) and Cmax (ng/dL) of one isolated dose.

    One-compartment: Tmax = ln(ka/ke) / (ka - ke), Cmax = C(Tmax).
    Two-compartment has no closed-form Tmax; a dense search is refined with
    a bounded scalar minimiser and the result is flagged approximate.
    """
    if not dose_mg > 0:
        raise InvalidParameter(f"dose_mg must be > 0 (got {dose_mg}).", {"dose_mg": dose_mg})
    weight = validate_weight(weight_kg, config)
    factor = checked_factor(calibration_factor, config)
    kin = compound_kinetics(compound, route, weight, config)
    scale = factor * config.output_scale

    def conc(t: float) -> float:
        c, _ = evaluate_kinetics(t, dose_mg, kin, config)
        return float(c) * scale

    t_guess = time_to_peak(kin.ka, kin.ke)
    if not config.two_compartment:
        t_peak, approximate, resolution = t_guess, False, 0.0
    else:
        horizon = max(4.0 * t_guess, 1.0)
        grid = np.linspace(0.0, horizon, _SEARCH_POINTS)
        curve, _ = evaluate_kinetics(grid, dose_mg, kin, config)
        i = int(np.argmax(curve))
        lo, hi = grid[max(i - 1, 0)], grid[min(i + 1, grid.shape[0] - 1)]
        res = minimize_scalar(lambda t: -conc(t), bounds=(lo, hi), method="bounded")
        t_peak = float(res.x) if res.success else float(grid[i])
        approximate, resolution = True, float(grid[1] - grid[0])

    value = conc(t_peak) + endogenous_baseline(weight, config)
    clean, _ = sanitize(np.asarray(value), config, compounds=[compound.name])
    return PeakResult(time_days=float(t_peak), concentration=float(clean),
                      approximate=approximate, resolution_days=resolution)


def blend_peak(blend: BlendDefinition, dose_mg: float, route: str = DEFAULT_ROUTE,
               weight_kg: Optional[float] = 70.0, calibration_factor: float = 1.0,
               config: EngineConfig = DEFAULT_CONFIG, *,
               horizon_days: float = BLEND_HORIZON_DAYS, step_days: float = BLEND_STEP_DAYS) -> PeakResult:
    """
    Composite peak of one blend injection.

    Each component contributes its own share of dose_mg; the summed curve is
    sampled every step_days over [0, horizon_days] and the largest sample is
    returned. Accurate to step_days.
    """
    if not (horizon_days > 0 and step_days > 0):
        raise InvalidParameter("horizon_days and step_days must be > 0.",
                               {"horizon_days": horizon_days, "step_days": step_days})
    weight = validate_weight(weight_kg, config)
    factor = checked_factor(calibration_factor, config)
    events = [DoseEvent(time_days=0.0, compound=c, amount_mg=mg, route=route)
              for c, mg in resolve_blend(blend, dose_mg)]

    n = int(math.floor(horizon_days / step_days + 1e-9)) + 1
    times = np.arange(n, dtype=float) * step_days
    curves, _ = compound_curves_mg_per_l(times, events, route=route, weight_kg=weight, config=config)
    total = np.zeros_like(times)
    for curve in curves.values():
        total += curve

    values, _ = sanitize(total * factor * config.output_scale + endogenous_baseline(weight, config),
                         config, compounds=sorted(curves))
    i = int(np.argmax(values))
    return PeakResult(time_days=float(times[i]), concentration=float(values[i]),
                      approximate=True, resolution_days=float(step_days))


def timeline_grid(window: Tuple[float, float], min_half_life_days: float,
                  config: EngineConfig = DEFAULT_CONFIG) -> Tuple[np.ndarray, float]:
    """
    Sample times over window with spacing max(half-life/16, 6 h), widened
    when the point count would exceed config.max_time_points.
    Returns (times, actual spacing).
    """
    start, end = _validate_window(window)
    span = end - start
    if span == 0:
        return np.array([start]), 0.0
    spacing = max(min_half_life_days / TIMELINE_DIVISIONS, TIMELINE_MIN_SPACING_DAYS)
    n = int(math.ceil(span / spacing - 1e-9)) + 1
    if n > config.max_time_points:
        logger.debug("timeline_grid_widened", requested=n, limit=config.max_time_points)
        n = config.max_time_points
    times = np.linspace(start, end, n)
    return times, span / (n - 1)


def timeline_peak(events: Sequence[DoseEvent], window: Tuple[float, float],
                  compounds: Optional[Mapping[str, CompoundPKParameters]] = None,
                  route: RouteOverride = None, weight_kg: Optional[float] = 70.0,
                  calibration_factor: float = 1.0, config: EngineConfig = DEFAULT_CONFIG) -> PeakResult:
    """
    Largest sample of the superposed curve over window = (start, end) days.

    Search-based: the true peak may fall between samples, so the result is
    flagged approximate and the grid spacing is reported in resolution_days.
    """
    overrides = compounds or {}
    half_lives = [overrides.get(e.compound.name, e.compound).half_life_days for e in events]
    shortest = min(half_lives) if half_lives else TIMELINE_MIN_SPACING_DAYS * TIMELINE_DIVISIONS
    times, resolution = timeline_grid(window, shortest, config)

    series = simulate_total(times, events, compounds, route, weight_kg, calibration_factor, config)
    i = int(np.argmax(series.values))
    return PeakResult(time_days=float(times[i]), concentration=float(series.values[i]),
                      approximate=True, resolution_days=resolution)


def _validate_window(window: Tuple[float, float]) -> Tuple[float, float]:
    try:
        start, end = (float(x) for x in window)
    except (TypeError, ValueError) as exc:
        raise InvalidParameter(f"window must be a (start, end) pair (got {window!r}).") from exc
    if not (math.isfinite(start) and math.isfinite(end)) or end < start:
        raise InvalidParameter(f"window must be finite with end >= start (got {window!r}).",
                               {"start": start, "end": end})
    return start, end
