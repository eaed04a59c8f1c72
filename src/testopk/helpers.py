# src/testopk/helpers.py
from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Union

import structlog

from .config import DEFAULT_CONFIG, EngineConfig
from .errors import InvalidParameter
from .types import DEFAULT_ROUTE, ROUTES, CompoundPKParameters, DoseEvent, RouteParameters

logger = structlog.get_logger(__name__)

RouteOverride = Optional[Union[str, Mapping[str, str]]]


@dataclass(frozen=True)
class Kinetics:
    """
    Weight-scaled rates for one compound on one route.

    ke and clearance carry the clearance exponent, vd_l the volume exponent.
    """
    compound: str
    route: str
    bioavailability: float
    ka: float
    ke: float
    vd_l: float
    clearance_l_per_day: float
    supported_route: bool = True


def split_events_by_compound(events: Sequence[DoseEvent]) -> Dict[str, List[DoseEvent]]:
    """
    Group dose events by compound name, each group sorted by time.
    """
    buckets: Dict[str, List[DoseEvent]] = defaultdict(list)
    for e in events:
        buckets[e.compound.name].append(e)
    return {name: sorted(es, key=lambda x: x.time_days) for name, es in buckets.items()}


def validate_route(route: str) -> str:
    if route not in ROUTES:
        raise InvalidParameter(f"Unknown route '{route}'.", {"route": route, "allowed": list(ROUTES)})
    return route


def validate_weight(weight_kg: Optional[float], config: EngineConfig = DEFAULT_CONFIG) -> float:
    """None means unknown and maps to the reference weight."""
    if weight_kg is None:
        return config.reference_weight_kg
    if not (math.isfinite(weight_kg) and weight_kg > 0):
        raise InvalidParameter(f"weight_kg must be > 0 (got {weight_kg}).", {"weight_kg": weight_kg})
    return float(weight_kg)


def validate_compound(compound: CompoundPKParameters) -> None:
    if not (math.isfinite(compound.half_life_days) and compound.half_life_days > 0):
        raise InvalidParameter(
            f"{compound.name}: half_life_days must be > 0 (got {compound.half_life_days}).",
            {"compound": compound.name},
        )
    if compound.vd_ref_l is not None and not compound.vd_ref_l > 0:
        raise InvalidParameter(f"{compound.name}: vd_ref_l must be > 0.", {"compound": compound.name})
    for route, ka in compound.absorption_rate.items():
        if not (math.isfinite(ka) and ka > 0):
            raise InvalidParameter(f"{compound.name}: ka for {route} must be > 0 (got {ka}).",
                                   {"compound": compound.name, "route": route})
    for route, f in compound.bioavailability.items():
        if not 0 < f <= 1:
            raise InvalidParameter(f"{compound.name}: bioavailability for {route} must be in (0, 1].",
                                   {"compound": compound.name, "route": route})


def route_for(event: DoseEvent, override: RouteOverride) -> str:
    """Route an event is evaluated on: explicit override first, then the event's own."""
    if override is None:
        return event.route
    if isinstance(override, str):
        return override
    return override.get(event.compound.name, event.route)


def route_parameters(compound: CompoundPKParameters, route: str,
                     config: EngineConfig = DEFAULT_CONFIG) -> RouteParameters:
    """
    F and ka for a compound on a route.

    A route missing from the compound tables falls back to intramuscular when
    the compound has it, else to its first listed route, else to the engine
    defaults. Such results are marked supported=False.
    """
    validate_route(route)
    if compound.supports(route):
        return RouteParameters(
            route=route,
            bioavailability=float(compound.bioavailability.get(route, config.default_bioavailability)),
            ka_per_day=float(compound.absorption_rate[route]),
        )

    if compound.supports(DEFAULT_ROUTE):
        fallback = DEFAULT_ROUTE
    elif compound.absorption_rate:
        fallback = next(iter(compound.absorption_rate))
    else:
        fallback = None

    logger.warning("unsupported_route", compound=compound.name, route=route, fallback=fallback or "defaults")
    if fallback is None:
        return RouteParameters(route=route, bioavailability=config.default_bioavailability,
                               ka_per_day=config.default_ka_per_day, supported=False)
    return RouteParameters(
        route=fallback,
        bioavailability=float(compound.bioavailability.get(fallback, config.default_bioavailability)),
        ka_per_day=float(compound.absorption_rate[fallback]),
        supported=False,
    )


def allometric_factor(weight_kg: float, exponent: float, config: EngineConfig = DEFAULT_CONFIG) -> float:
    return (weight_kg / config.reference_weight_kg) ** exponent


def compound_kinetics(compound: CompoundPKParameters, route: str, weight_kg: Optional[float] = None,
                      config: EngineConfig = DEFAULT_CONFIG, *,
                      ke_scale: float = 1.0, ka_scale: float = 1.0) -> Kinetics:
    """
    Scale reference parameters to a body weight.

    Vd grows with (w/70)^volume_exponent, clearance (= ke_ref * Vd_ref) with
    (w/70)^clearance_exponent, and ke is recomputed as CL / Vd.
    ke_scale/ka_scale multiply the reference rates (used by calibration).
    """
    validate_compound(compound)
    weight = validate_weight(weight_kg, config)
    params = route_parameters(compound, route, config)

    vd_ref = compound.vd_ref_l if compound.vd_ref_l is not None else config.default_vd_l
    ke_ref = compound.elimination_rate * ke_scale
    clearance = ke_ref * vd_ref * allometric_factor(weight, config.clearance_exponent, config)
    vd = vd_ref * allometric_factor(weight, config.volume_exponent, config)

    return Kinetics(
        compound=compound.name,
        route=params.route,
        bioavailability=params.bioavailability,
        ka=params.ka_per_day * ka_scale,
        ke=clearance / vd,
        vd_l=vd,
        clearance_l_per_day=clearance,
        supported_route=params.supported,
    )
