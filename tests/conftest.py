"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

import pytest

from testopk.config import EngineConfig
from testopk.types import BlendComponent, BlendDefinition, CompoundPKParameters


@pytest.fixture
def medium_ester() -> CompoundPKParameters:
    """Enanthate-like ester: t1/2 4.5 d, ka 0.616 1/d, Vd 10.2 L (peak ~72 h)."""
    return CompoundPKParameters(
        name="Medium Ester",
        class_type="testosterone",
        ester="Enanthate",
        half_life_days=4.5,
        bioavailability={"intramuscular": 1.0},
        absorption_rate={"intramuscular": 0.616},
        vd_ref_l=10.2,
    )


@pytest.fixture
def cypionate_like() -> CompoundPKParameters:
    """ke_ref ~0.099 1/d, ka 0.25 1/d, default Vd."""
    return CompoundPKParameters(
        name="Cypionate-like",
        class_type="testosterone",
        ester="Cypionate",
        half_life_days=7.0,
        bioavailability={"intramuscular": 1.0, "subcutaneous": 0.85},
        absorption_rate={"intramuscular": 0.25, "subcutaneous": 0.18},
    )


@pytest.fixture
def empty_blend(medium_ester) -> BlendDefinition:
    return BlendDefinition(
        name="Empty Vial",
        components=(BlendComponent(medium_ester, 0.0),),
    )


@pytest.fixture
def two_compartment_config() -> EngineConfig:
    return EngineConfig(two_compartment=True)
