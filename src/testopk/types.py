# src/testopk/types.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Literal, Mapping, Optional, Sequence, Tuple, Union, get_args

import numpy as np

# We keep *all* time in DAYS internally. Rate constants are per day.
Route = Literal["intramuscular", "subcutaneous", "oral", "transdermal"]
ROUTES: Tuple[str, ...] = get_args(Route)
DEFAULT_ROUTE: Route = "intramuscular"

LN2 = math.log(2.0)


@dataclass(frozen=True)
class CompoundPKParameters:
    """
    Reference PK data for one compound (one row of the parameter table).

    name            : unique display name, e.g. "Testosterone Cypionate"
    class_type      : compound class tag, e.g. "testosterone"
    half_life_days  : elimination half-life at the reference weight (days, > 0)
    bioavailability : route -> fraction reaching circulation (0..1)
    absorption_rate : route -> first-order absorption constant ka (1/day)
    ester           : ester label, None for suspensions
    vd_ref_l        : volume of distribution at 70 kg; None uses the engine default
    """
    name: str
    class_type: str
    half_life_days: float
    bioavailability: Mapping[str, float] = field(default_factory=dict)
    absorption_rate: Mapping[str, float] = field(default_factory=dict)
    ester: Optional[str] = None
    vd_ref_l: Optional[float] = None

    @property
    def elimination_rate(self) -> float:
        """Reference ke = ln2 / t1/2 (1/day)."""
        return LN2 / self.half_life_days

    @property
    def display_name(self) -> str:
        if self.ester:
            return f"{self.class_type.capitalize()} {self.ester}"
        return f"{self.class_type.capitalize()} Suspension"

    def supports(self, route: str) -> bool:
        return route in self.absorption_rate


@dataclass(frozen=True)
class RouteParameters:
    """Route-specific F and ka actually used for a compound.

    supported is False when the requested route is missing from the compound's
    tables and the values come from the fallback route or engine defaults.
    """
    route: str
    bioavailability: float
    ka_per_day: float
    supported: bool = True


@dataclass(frozen=True)
class BlendComponent:
    compound: CompoundPKParameters
    mg_per_ml: float


@dataclass(frozen=True)
class BlendDefinition:
    """
    A multi-compound vial, e.g. Sustanon 250.

    components : ordered (compound, mg/mL) entries
    """
    name: str
    components: Tuple[BlendComponent, ...]
    manufacturer: Optional[str] = None
    description: Optional[str] = None

    @property
    def total_concentration(self) -> float:
        """Total mg/mL across components."""
        return float(sum(c.mg_per_ml for c in self.components))

    def composition(self) -> str:
        if not self.components:
            return "Unknown composition"
        return ", ".join(f"{c.compound.display_name} {c.mg_per_ml:.0f}mg/mL" for c in self.components)


Dosable = Union[CompoundPKParameters, BlendDefinition]


@dataclass(frozen=True)
class DoseEvent:
    """
    A single administration of one compound.

    time_days : when the dose is given (days from the caller's origin)
    compound  : reference parameters of the administered compound
    amount_mg : amount of this compound in the dose (mg)
    route     : administration route
    """
    time_days: float
    compound: CompoundPKParameters
    amount_mg: float
    route: str = DEFAULT_ROUTE


@dataclass(frozen=True)
class ScheduleItem:
    """One compound or blend dosed at a fixed interval inside a stage."""
    dose_mg: float
    interval_days: float
    route: str = DEFAULT_ROUTE
    compound: Optional[CompoundPKParameters] = None
    blend: Optional[BlendDefinition] = None

    @property
    def content(self) -> Optional[Dosable]:
        return self.compound if self.compound is not None else self.blend


@dataclass(frozen=True)
class ScheduleStage:
    """
    A block of weeks inside a staged schedule.

    start_week     : 0-based week offset from the schedule start
    duration_weeks : stage length; doses on the stage end boundary belong to the next stage
    """
    name: str
    start_week: int
    duration_weeks: int
    items: Tuple[ScheduleItem, ...] = ()

    def start_days(self, schedule_start: float) -> float:
        return schedule_start + 7.0 * self.start_week

    def end_days(self, schedule_start: float) -> float:
        return self.start_days(schedule_start) + 7.0 * self.duration_weeks


@dataclass(frozen=True)
class DosingSchedule:
    """
    A dosing definition the resolver turns into DoseEvents.

    Simple schedules give exactly one of compound/blend plus dose_mg and
    interval_days (<= 0 means a single dose). Staged schedules leave those
    empty and list stages instead.

    end_days : optional last day of dosing (inclusive)
    """
    start_days: float
    interval_days: float = 0.0
    dose_mg: float = 0.0
    route: str = DEFAULT_ROUTE
    compound: Optional[CompoundPKParameters] = None
    blend: Optional[BlendDefinition] = None
    end_days: Optional[float] = None
    stages: Tuple[ScheduleStage, ...] = ()

    @property
    def is_staged(self) -> bool:
        return len(self.stages) > 0

    @property
    def content(self) -> Optional[Dosable]:
        return self.compound if self.compound is not None else self.blend


@dataclass(frozen=True)
class SimulationRequest:
    """
    Everything one simulation call needs.

    time_points        : strictly ascending query times (days)
    dose_events        : events to superpose
    route              : optional route override (single route or compound name -> route)
    weight_kg          : body weight; None means unknown (70 kg is used)
    calibration_factor : global multiplier, clamped to [0.1, 10.0] by the engine
    """
    time_points: Sequence[float]
    dose_events: Sequence[DoseEvent]
    route: Optional[Union[str, Mapping[str, str]]] = None
    weight_kg: Optional[float] = 70.0
    calibration_factor: float = 1.0


@dataclass(frozen=True)
class ConcentrationSeries:
    """
    Predicted concentration (ng/dL) at each query time.

    instability_count : how many samples were non-finite and sanitised to 0
    """
    times: np.ndarray
    values: np.ndarray
    instability_count: int = 0

    def __len__(self) -> int:
        return int(self.times.shape[0])

    def __iter__(self) -> Iterator[Tuple[float, float]]:
        return iter(self.as_pairs())

    def as_pairs(self) -> list[Tuple[float, float]]:
        return [(float(t), float(c)) for t, c in zip(self.times, self.values)]


@dataclass(frozen=True)
class CalibrationSample:
    """A lab measurement: (time in days, observed concentration in ng/dL)."""
    time_days: float
    value: float


class CalibrationMethod(str, Enum):
    ITERATIVE = "iterative"
    SIMPLE_FALLBACK = "simple_fallback"


@dataclass(frozen=True)
class CalibrationResult:
    """
    Outcome of a calibration run.

    original_ke/original_ka : literature reference rates (1/day)
    adjusted_ke/adjusted_ka : refined rates (equal to the originals on fallback)
    correlation             : Pearson r of predicted vs observed at sample times
    calibration_factor      : factor in effect after the run (updated only on fallback)
    fallback_reason         : why the simple method was used, None otherwise
    """
    method: CalibrationMethod
    original_ke: float
    original_ka: float
    adjusted_ke: float
    adjusted_ka: float
    correlation: float
    samples_used: int
    calibration_factor: float = 1.0
    iterations: int = 0
    converged: bool = False
    fallback_reason: Optional[str] = None

    @property
    def half_life_days(self) -> float:
        return LN2 / self.adjusted_ke

    @property
    def half_life_change_percent(self) -> float:
        original_half_life = LN2 / self.original_ke
        return ((self.half_life_days / original_half_life) - 1.0) * 100.0


@dataclass(frozen=True)
class PeakResult:
    """
    Peak time (days) and concentration (ng/dL).

    approximate     : True when found by sampling rather than in closed form
    resolution_days : sampling step of the search (0 for closed form)
    """
    time_days: float
    concentration: float
    approximate: bool = False
    resolution_days: float = 0.0

    def __iter__(self) -> Iterator[float]:
        return iter((self.time_days, self.concentration))
