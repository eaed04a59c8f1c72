# src/testopk/library.py
"""
Built-in reference parameter table.

Half-lives in days, ka per day. Injectables share the IM/SC bioavailability
table; absorption constants are per compound.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from .types import BlendComponent, BlendDefinition, CompoundPKParameters

_INJECTABLE_F = {"intramuscular": 1.0, "subcutaneous": 0.85}
_ORAL_F = {"oral": 0.07}


def _injectable(name: str, class_type: str, ester: Optional[str], half_life_days: float,
                ka_im: float, ka_sc: float) -> CompoundPKParameters:
    return CompoundPKParameters(
        name=name,
        class_type=class_type,
        ester=ester,
        half_life_days=half_life_days,
        bioavailability=dict(_INJECTABLE_F),
        absorption_rate={"intramuscular": ka_im, "subcutaneous": ka_sc},
    )


COMPOUNDS: Tuple[CompoundPKParameters, ...] = (
    _injectable("Testosterone Propionate", "testosterone", "Propionate", 0.8, 0.70, 0.50),
    _injectable("Testosterone Phenylpropionate", "testosterone", "Phenylpropionate", 2.5, 0.50, 0.35),
    _injectable("Testosterone Isocaproate", "testosterone", "Isocaproate", 3.1, 0.35, 0.25),
    _injectable("Testosterone Enanthate", "testosterone", "Enanthate", 4.5, 0.30, 0.22),
    _injectable("Testosterone Cypionate", "testosterone", "Cypionate", 7.0, 0.25, 0.18),
    _injectable("Testosterone Decanoate", "testosterone", "Decanoate", 10.0, 0.18, 0.14),
    _injectable("Testosterone Undecanoate (Injectable)", "testosterone", "Undecanoate", 21.0, 0.15, 0.10),
    CompoundPKParameters(
        name="Testosterone Undecanoate (Oral)",
        class_type="testosterone",
        ester="Undecanoate",
        half_life_days=0.067,  # 1.6 h
        bioavailability=dict(_ORAL_F),
        absorption_rate={"oral": 6.0},
    ),
    _injectable("Nandrolone Decanoate", "nandrolone", "Decanoate", 9.0, 0.20, 0.15),
    _injectable("Boldenone Undecylenate", "boldenone", "Undecylenate", 5.125, 0.25, 0.18),
    _injectable("Trenbolone Acetate", "trenbolone", "Acetate", 1.5, 1.00, 0.70),
    _injectable("Trenbolone Enanthate", "trenbolone", "Enanthate", 11.0, 0.18, 0.14),
    _injectable("Trenbolone Hexahydrobenzylcarbonate", "trenbolone", "Hexahydrobenzylcarbonate", 8.0, 0.20, 0.15),
    _injectable("Stanozolol Suspension", "stanozolol", None, 1.0, 1.50, 1.00),
    _injectable("Drostanolone Propionate", "drostanolone", "Propionate", 2.0, 0.70, 0.50),
    _injectable("Drostanolone Enanthate", "drostanolone", "Enanthate", 5.0, 0.30, 0.22),
    _injectable("Metenolone Enanthate", "metenolone", "Enanthate", 10.5, 0.18, 0.15),
    _injectable("Trestolone Acetate", "trestolone", "Acetate", 0.083, 2.00, 1.50),
    _injectable("1-Testosterone Cypionate", "dhb", "Cypionate", 8.0, 0.22, 0.16),
)

_BY_NAME: Dict[str, CompoundPKParameters] = {c.name: c for c in COMPOUNDS}


def _sustanon(name: str, manufacturer: str, description: str,
              prop: float, phenylprop: float, isocap: float, dec: float) -> BlendDefinition:
    return BlendDefinition(
        name=name,
        manufacturer=manufacturer,
        description=description,
        components=(
            BlendComponent(_BY_NAME["Testosterone Propionate"], prop),
            BlendComponent(_BY_NAME["Testosterone Phenylpropionate"], phenylprop),
            BlendComponent(_BY_NAME["Testosterone Isocaproate"], isocap),
            BlendComponent(_BY_NAME["Testosterone Decanoate"], dec),
        ),
    )


BLENDS: Tuple[BlendDefinition, ...] = (
    _sustanon("Sustanon 250", "Organon", "Mixed testosterone esters for TRT", 30, 60, 60, 100),
    _sustanon("Sustanon 350", "Generic", "Higher concentration mixed testosterone esters", 40, 80, 80, 150),
    _sustanon("Sustanon 400", "Generic", "Highest concentration mixed testosterone esters", 50, 100, 100, 150),
)

_BLENDS_BY_NAME: Dict[str, BlendDefinition] = {b.name: b for b in BLENDS}


def get_compound(name: str) -> CompoundPKParameters:
    try:
        return _BY_NAME[name]
    except KeyError:
        raise KeyError(f"Unknown compound '{name}'.") from None


def get_blend(name: str) -> BlendDefinition:
    try:
        return _BLENDS_BY_NAME[name]
    except KeyError:
        raise KeyError(f"Unknown blend '{name}'.") from None


def compounds_of_class(class_type: str) -> List[CompoundPKParameters]:
    return [c for c in COMPOUNDS if c.class_type == class_type]


def compounds_for_route(route: str) -> List[CompoundPKParameters]:
    return [c for c in COMPOUNDS if route in c.bioavailability]


def compounds_with_ester(ester: str) -> List[CompoundPKParameters]:
    return [c for c in COMPOUNDS if c.ester == ester]


def compounds_with_half_life_between(low: float, high: float) -> List[CompoundPKParameters]:
    return [c for c in COMPOUNDS if low <= c.half_life_days <= high]


def blends_containing(compound_name: str) -> List[BlendDefinition]:
    return [b for b in BLENDS if any(c.compound.name == compound_name for c in b.components)]
