# src/testopk/solvers.py
from __future__ import annotations

import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import structlog

from .config import DEFAULT_CONFIG, EngineConfig
from .errors import InvalidParameter, NumericalInstability
from .helpers import (
    Kinetics, RouteOverride, allometric_factor, compound_kinetics, route_for, split_events_by_compound,
    validate_weight,
)
from .models.one_compartment import one_compartment_first_order, rates_coincide
from .models.two_compartment import two_compartment_first_order
from .types import CompoundPKParameters, ConcentrationSeries, DoseEvent

logger = structlog.get_logger(__name__)

# Events evaluated per matrix block; bounds memory at len(times) * _EVENT_BLOCK floats
_EVENT_BLOCK = 256


def evaluate_kinetics(elapsed, amounts, kin: Kinetics,
                      config: EngineConfig = DEFAULT_CONFIG) -> Tuple[np.ndarray, bool]:
    """
    Concentration (mg/L) of doses with the given elapsed times, before
    calibration and unit scaling. Returns (values, limit_substituted).
    """
    if config.two_compartment:
        return two_compartment_first_order(elapsed, amounts, kin.bioavailability, kin.ka,
                                           kin.ke, config.k12, config.k21, kin.vd_l)
    conc = one_compartment_first_order(elapsed, amounts, kin.bioavailability, kin.ka, kin.ke, kin.vd_l)
    return conc, rates_coincide(kin.ka, kin.ke)


def superpose(times: np.ndarray, event_times: np.ndarray, amounts: np.ndarray, kin: Kinetics,
              config: EngineConfig = DEFAULT_CONFIG) -> Tuple[np.ndarray, bool]:
    """
    Sum of single-dose curves of one compound at each query time (mg/L).

    Each event only contributes once its time has passed (elapsed < 0 gives 0).
    """
    total = np.zeros(times.shape[0], dtype=float)
    nudged = False
    for start in range(0, event_times.shape[0], _EVENT_BLOCK):
        block_t = event_times[start:start + _EVENT_BLOCK]
        block_a = amounts[start:start + _EVENT_BLOCK]
        elapsed = times[:, None] - block_t[None, :]
        conc, unstable = evaluate_kinetics(elapsed, block_a[None, :], kin, config)
        total += conc.sum(axis=1)
        nudged = nudged or unstable
    return total, nudged


def endogenous_baseline(weight_kg: Optional[float], config: EngineConfig = DEFAULT_CONFIG) -> float:
    """
    Steady endogenous level (ng/dL): production / clearance, clearance scaled
    with (w/70)^clearance_exponent. Zero unless config.include_endogenous.
    """
    if not config.include_endogenous:
        return 0.0
    weight = validate_weight(weight_kg, config)
    clearance = config.endogenous_clearance_l_per_day * allometric_factor(weight, config.clearance_exponent, config)
    return config.endogenous_production_mg_per_day / clearance * config.output_scale


def validate_time_points(time_points: Sequence[float], config: EngineConfig = DEFAULT_CONFIG) -> np.ndarray:
    times = np.asarray(time_points, dtype=float)
    if times.ndim != 1:
        raise InvalidParameter("time_points must be one-dimensional.")
    if times.shape[0] > config.max_time_points:
        raise InvalidParameter(
            f"{times.shape[0]} time points requested; the limit is {config.max_time_points}.",
            {"requested": int(times.shape[0]), "limit": config.max_time_points},
        )
    if not np.all(np.isfinite(times)):
        raise InvalidParameter("time_points must be finite.")
    if times.shape[0] > 1 and not np.all(np.diff(times) > 0):
        raise InvalidParameter("time_points must be strictly ascending.")
    return times


def sanitize(values: np.ndarray, config: EngineConfig = DEFAULT_CONFIG, **context) -> Tuple[np.ndarray, int]:
    """
    Replace non-finite values by 0 and clamp round-off negatives.

    Returns (clean values, number of non-finite entries). Occurrences are
    logged, or raised when config.strict_numerics is set.
    """
    bad = ~np.isfinite(values)
    count = int(bad.sum())
    if count:
        logger.warning("numerical_instability", non_finite=count, **context)
        if config.strict_numerics:
            raise NumericalInstability(f"{count} non-finite concentration values.", dict(context, non_finite=count))
        values = np.where(bad, 0.0, values)
    return np.maximum(values, 0.0), count


def _kinetics_for_groups(events: Sequence[DoseEvent], compounds: Optional[Mapping[str, CompoundPKParameters]],
                         route: RouteOverride, weight_kg: Optional[float],
                         config: EngineConfig) -> List[Tuple[str, Kinetics, List[DoseEvent]]]:
    groups: Dict[Tuple[str, str], List[DoseEvent]] = {}
    for name, evs in split_events_by_compound(events).items():
        for e in evs:
            groups.setdefault((name, route_for(e, route)), []).append(e)

    out: List[Tuple[str, Kinetics, List[DoseEvent]]] = []
    for (name, r), evs in groups.items():
        compound = (compounds or {}).get(name, evs[0].compound)
        out.append((name, compound_kinetics(compound, r, weight_kg, config), evs))
    return out


def compound_curves_mg_per_l(times: np.ndarray, events: Sequence[DoseEvent],
                             compounds: Optional[Mapping[str, CompoundPKParameters]] = None,
                             route: RouteOverride = None, weight_kg: Optional[float] = None,
                             config: EngineConfig = DEFAULT_CONFIG) -> Tuple[Dict[str, np.ndarray], int]:
    """
    Uncalibrated per-compound curves (mg/L). Events of one compound given on
    different routes are evaluated separately and summed into the same curve.
    Returns (curves by compound name, number of limit substitutions).
    """
    curves: Dict[str, np.ndarray] = {}
    substitutions = 0
    for name, kin, evs in _kinetics_for_groups(events, compounds, route, weight_kg, config):
        event_times = np.array([e.time_days for e in evs], dtype=float)
        amounts = np.array([e.amount_mg for e in evs], dtype=float)
        curve, nudged = superpose(times, event_times, amounts, kin, config)
        if nudged:
            substitutions += 1
            logger.info("limit_substituted", compound=name, ka=kin.ka, ke=kin.ke)
        curves[name] = curves.get(name, 0.0) + curve
    return curves, substitutions


def simulate_total(time_points: Sequence[float], events: Sequence[DoseEvent],
                   compounds: Optional[Mapping[str, CompoundPKParameters]] = None,
                   route: RouteOverride = None, weight_kg: Optional[float] = 70.0,
                   calibration_factor: float = 1.0,
                   config: EngineConfig = DEFAULT_CONFIG) -> ConcentrationSeries:
    """
    Superposed concentration (ng/dL) of all events at each time point.

    The calibration factor multiplies the summed exogenous curve once; the
    endogenous baseline (if enabled) is added afterwards, uncalibrated.
    """
    times = validate_time_points(time_points, config)
    weight = validate_weight(weight_kg, config)
    factor = checked_factor(calibration_factor, config)

    curves, substituted = compound_curves_mg_per_l(times, events, compounds, route, weight, config)
    exogenous = np.zeros(times.shape[0], dtype=float)
    for curve in curves.values():
        exogenous += curve

    values = exogenous * factor * config.output_scale + endogenous_baseline(weight, config)
    values, bad = sanitize(values, config, compounds=sorted(curves), weight_kg=weight)
    return ConcentrationSeries(times=times, values=values, instability_count=bad + substituted)


def simulate_by_compound(time_points: Sequence[float], events: Sequence[DoseEvent],
                         compounds: Optional[Mapping[str, CompoundPKParameters]] = None,
                         route: RouteOverride = None, weight_kg: Optional[float] = 70.0,
                         calibration_factor: float = 1.0,
                         config: EngineConfig = DEFAULT_CONFIG) -> Dict[str, ConcentrationSeries]:
    """
    One calibrated series per compound (no endogenous baseline), e.g. the
    four ester curves of a Sustanon schedule.
    """
    times = validate_time_points(time_points, config)
    weight = validate_weight(weight_kg, config)
    factor = checked_factor(calibration_factor, config)

    curves, _ = compound_curves_mg_per_l(times, events, compounds, route, weight, config)
    results: Dict[str, ConcentrationSeries] = {}
    for name, curve in curves.items():
        values, bad = sanitize(curve * factor * config.output_scale, config, compounds=[name], weight_kg=weight)
        results[name] = ConcentrationSeries(times=times, values=values, instability_count=bad)
    return results


def event_concentration(t, event: DoseEvent, compound: Optional[CompoundPKParameters] = None,
                        route: Optional[str] = None, weight_kg: Optional[float] = 70.0,
                        calibration_factor: float = 1.0, config: EngineConfig = DEFAULT_CONFIG):
    """
    Contribution of a single dose event at absolute time(s) t (ng/dL).
    Scalar in, float out; array in, array out. Always >= 0, 0 before the event.
    """
    kin = compound_kinetics(compound or event.compound, route or event.route, weight_kg, config)
    factor = checked_factor(calibration_factor, config)
    elapsed = np.asarray(t, dtype=float) - event.time_days
    conc, _ = evaluate_kinetics(elapsed, event.amount_mg, kin, config)
    values, _ = sanitize(np.asarray(conc * factor * config.output_scale, dtype=float), config,
                         compounds=[kin.compound])
    if values.ndim == 0:
        return float(values)
    return values


def checked_factor(calibration_factor: float, config: EngineConfig) -> float:
    if not math.isfinite(calibration_factor):
        raise InvalidParameter(f"calibration_factor must be finite (got {calibration_factor}).")
    factor = config.clamp_factor(calibration_factor)
    if factor != calibration_factor:
        logger.debug("calibration_factor_clamped", requested=calibration_factor, used=factor)
    return factor
