# src/testopk/dosing.py
from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
import structlog

from .config import DEFAULT_CONFIG, EngineConfig
from .errors import InvalidBlend, InvalidParameter
from .helpers import validate_route
from .types import (
    DEFAULT_ROUTE, BlendDefinition, CompoundPKParameters, Dosable, DoseEvent, DosingSchedule,
    ScheduleItem,
)

logger = structlog.get_logger(__name__)

# Slack, in units of one interval, for events landing exactly on a window edge
_EDGE_SLACK = 1e-9


def dose_times(start_days: float, interval_days: float, upto_days: float,
               from_days: Optional[float] = None, *,
               max_events: int = DEFAULT_CONFIG.max_dose_events) -> np.ndarray:
    """
    Dose timestamps start + n*interval (n >= 0) inside [max(from, start), upto].

    upto is inclusive when an event lands on it. Times are computed from the
    index n, never by repeated addition, so asking for a wide window and
    filtering gives the same values as asking for the narrow window.
    interval <= 0 means a single dose at start. The event count is known
    before anything is allocated and capped at max_events.
    """
    _validate_finite("start_days", start_days)
    _validate_finite("upto_days", upto_days)
    lower = start_days if from_days is None else max(float(from_days), start_days)
    if upto_days < lower:
        return np.empty(0, dtype=float)

    if not interval_days > 0:
        if lower <= start_days <= upto_days:
            return np.array([float(start_days)])
        return np.empty(0, dtype=float)

    first_ratio = (lower - start_days) / interval_days - _EDGE_SLACK
    last_ratio = (upto_days - start_days) / interval_days + _EDGE_SLACK

    if not math.isfinite(first_ratio):
        # interval too small to index from the window start: take the first max_events from there
        logger.warning("dose_events_truncated", requested=math.inf, cap=max_events,
                       interval_days=interval_days)
        times = lower + np.arange(max_events, dtype=float) * interval_days
        return times[times <= upto_days]

    first = max(0, math.ceil(first_ratio))
    if not math.isfinite(last_ratio) or last_ratio >= first + max_events:
        requested = math.floor(last_ratio) - first + 1 if math.isfinite(last_ratio) else math.inf
        logger.warning("dose_events_truncated", requested=requested, cap=max_events,
                       interval_days=interval_days)
        count = max_events
    else:
        count = math.floor(last_ratio) - first + 1
        if count <= 0:
            return np.empty(0, dtype=float)

    n = first + np.arange(count, dtype=float)
    return start_days + n * interval_days


def resolve_blend(blend: BlendDefinition, total_dose_mg: float) -> List[Tuple[CompoundPKParameters, float]]:
    """
    Split one blend dose into per-component amounts proportional to mg/mL.
    e.g. 250 mg of Sustanon 250 -> 30/60/60/100 mg of the four esters.
    """
    total = blend.total_concentration
    if not total > 0:
        raise InvalidBlend(
            f"Blend '{blend.name}' has total concentration {total} mg/mL; cannot resolve doses.",
            {"blend": blend.name, "total_concentration": total},
        )
    negative = [c.compound.name for c in blend.components if not c.mg_per_ml >= 0]
    if negative:
        raise InvalidBlend(
            f"Blend '{blend.name}' lists a negative concentration for {', '.join(negative)}.",
            {"blend": blend.name, "components": negative},
        )
    _validate_positive("total_dose_mg", total_dose_mg)
    return [(c.compound, float(total_dose_mg) * c.mg_per_ml / total) for c in blend.components]


def dose_contents(content: Optional[Dosable], dose_mg: float) -> List[Tuple[CompoundPKParameters, float]]:
    """(compound, mg) pairs for one dose of a compound or a blend."""
    if content is None:
        raise InvalidParameter("A dose needs a compound or a blend.")
    if isinstance(content, BlendDefinition):
        return resolve_blend(content, dose_mg)
    _validate_positive("dose_mg", dose_mg)
    return [(content, float(dose_mg))]


def resolve_dose_events(schedule: DosingSchedule, from_days: Optional[float], upto_days: float,
                        config: EngineConfig = DEFAULT_CONFIG) -> List[DoseEvent]:
    """
    Expand a schedule into DoseEvents inside [from, upto], sorted by time.

    Blend doses become one event per component at the same timestamp.
    Staged schedules resolve each item within its stage window
    [stage start, stage end) and merge. No event precedes schedule.start_days.
    """
    _validate_schedule(schedule)
    events: List[DoseEvent] = []

    if schedule.is_staged:
        for stage in schedule.stages:
            stage_start = stage.start_days(schedule.start_days)
            stage_end = stage.end_days(schedule.start_days)
            for item in stage.items:
                times = dose_times(stage_start, item.interval_days, min(upto_days, stage_end), from_days,
                                   max_events=config.max_dose_events)
                times = times[times < stage_end]
                events.extend(_events_at(times, item.content, item.dose_mg, item.route))
    else:
        upto = upto_days if schedule.end_days is None else min(upto_days, schedule.end_days)
        times = dose_times(schedule.start_days, schedule.interval_days, upto, from_days,
                           max_events=config.max_dose_events)
        events.extend(_events_at(times, schedule.content, schedule.dose_mg, schedule.route))

    events.sort(key=lambda e: (e.time_days, e.compound.name))
    if len(events) > config.max_dose_events:
        logger.warning("dose_events_truncated", requested=len(events), cap=config.max_dose_events)
        events = events[: config.max_dose_events]
    return events


def single_dose(content: Dosable, dose_mg: float, start_days: float = 0.0,
                route: str = DEFAULT_ROUTE) -> DosingSchedule:
    """
    Schedule with exactly one dose.
    Example: 250 mg Testosterone Enanthate IM at day 0.
    """
    return _simple(content, dose_mg, start_days, 0.0, route, None)


def fixed_every_n_days(content: Dosable, dose_mg: float, every_days: float, weeks: int,
                       route: str = DEFAULT_ROUTE, start_days: float = 0.0) -> DosingSchedule:
    """
    Make a repeated schedule like: 250 mg IM every 3.5 days for 8 weeks.

    dose_mg    : size of each dose, mg (for a blend, the total across components)
    every_days : spacing between doses in days; fractional values are fine
    weeks      : total regimen length; a dose landing on the last day is included
    start_days : time of the first dose
    """
    _validate_positive("every_days", every_days)
    _validate_positive_int("weeks", weeks)
    return _simple(content, dose_mg, start_days, float(every_days), route, start_days + weeks * 7.0)


def from_explicit_schedule(entries: Sequence[Tuple[float, float]], compound: CompoundPKParameters,
                           route: str = DEFAULT_ROUTE) -> List[DoseEvent]:
    """
    Build events from manual (time_days, amount_mg) entries.
    Example: entries=[(0.0, 250), (3.5, 250), (7.0, 250)]
    """
    validate_route(route)
    events: List[DoseEvent] = []
    for time_days, amount_mg in entries:
        _validate_positive("amount_mg", amount_mg)
        _validate_finite("time_days", time_days)
        events.append(DoseEvent(time_days=float(time_days), compound=compound,
                                amount_mg=float(amount_mg), route=route))
    events.sort(key=lambda e: e.time_days)
    return events


def combine_events(*event_lists: Sequence[DoseEvent]) -> List[DoseEvent]:
    """
    Merge event lists (e.g. a base compound plus a second compound) into one
    time-sorted list. Multi-compound input is fine; nothing is deduplicated.
    """
    merged: List[DoseEvent] = []
    for events in event_lists:
        merged.extend(events)
    return sorted(merged, key=lambda e: (e.time_days, e.compound.name))


def _simple(content: Dosable, dose_mg: float, start_days: float, interval_days: float,
            route: str, end_days: Optional[float]) -> DosingSchedule:
    if isinstance(content, BlendDefinition):
        return DosingSchedule(start_days=float(start_days), interval_days=interval_days, dose_mg=float(dose_mg),
                              route=route, blend=content, end_days=end_days)
    return DosingSchedule(start_days=float(start_days), interval_days=interval_days, dose_mg=float(dose_mg),
                          route=route, compound=content, end_days=end_days)


def _events_at(times: np.ndarray, content: Optional[Dosable], dose_mg: float, route: str) -> List[DoseEvent]:
    if times.size == 0:
        return []
    contents = dose_contents(content, dose_mg)
    return [
        DoseEvent(time_days=float(t), compound=compound, amount_mg=amount, route=route)
        for t in times
        for compound, amount in contents
    ]


def _validate_schedule(schedule: DosingSchedule) -> None:
    _validate_finite("start_days", schedule.start_days)
    if schedule.is_staged:
        if schedule.content is not None:
            raise InvalidParameter("A staged schedule carries its compounds in its stages.")
        for stage in schedule.stages:
            _validate_non_negative("start_week", stage.start_week)
            _validate_positive_int("duration_weeks", stage.duration_weeks)
            for item in stage.items:
                _validate_item(item)
        return
    if (schedule.compound is None) == (schedule.blend is None):
        raise InvalidParameter("A simple schedule needs exactly one of compound or blend.")
    validate_route(schedule.route)
    _validate_positive("dose_mg", schedule.dose_mg)


def _validate_item(item: ScheduleItem) -> None:
    if (item.compound is None) == (item.blend is None):
        raise InvalidParameter("A stage item needs exactly one of compound or blend.")
    validate_route(item.route)
    _validate_positive("dose_mg", item.dose_mg)


# --------------------------
# Small input validators
# --------------------------
def _validate_positive(name: str, x: float) -> None:
    if not (x > 0):
        raise InvalidParameter(f"{name} must be > 0 (got {x}).", {name: x})

def _validate_non_negative(name: str, x: float) -> None:
    if not (x >= 0):
        raise InvalidParameter(f"{name} must be >= 0 (got {x}).", {name: x})

def _validate_finite(name: str, x: float) -> None:
    if not math.isfinite(x):
        raise InvalidParameter(f"{name} must be finite (got {x}).", {name: x})

def _validate_positive_int(name: str, x: int) -> None:
    if not (isinstance(x, int) and x > 0):
        raise InvalidParameter(f"{name} must be a positive integer (got {x}).", {name: x})
