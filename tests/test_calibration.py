import math

import numpy as np
import pytest
from structlog.testing import capture_logs

from testopk.dosing import fixed_every_n_days, resolve_dose_events, single_dose
from testopk.errors import InsufficientCalibrationData, InvalidBlend
from testopk.library import get_blend
from testopk.simulate import calibrate_iterative, calibrate_simple, simulate_concentrations
from testopk.types import CalibrationMethod, CalibrationSample, CompoundPKParameters

SAMPLE_DAYS = [1.5, 3.0, 5.0, 8.5, 12.0, 16.0, 20.0, 26.0]


def _observe(content, days, factor=1.0, dose_mg=100.0):
    """Noise-free 'lab results' from a weekly 100 mg IM schedule."""
    schedule = fixed_every_n_days(content, dose_mg, every_days=7.0, weeks=4)
    events = resolve_dose_events(schedule, None, max(days))
    values = simulate_concentrations(days, events, calibration_factor=factor).values
    return schedule, [CalibrationSample(t, float(v)) for t, v in zip(days, values)]


# --------------------------
# Simple method
# --------------------------
def test_simple_is_idempotent_on_matching_sample(cypionate_like):
    """A sample equal to the current prediction leaves the factor unchanged."""
    schedule, samples = _observe(cypionate_like, [10.0], factor=1.3)
    new = calibrate_simple(samples, schedule, cypionate_like, 100.0, current_factor=1.3)
    assert new == pytest.approx(1.3, rel=1e-12)


def test_simple_scales_with_ratio_and_uses_latest_sample(cypionate_like):
    schedule, samples = _observe(cypionate_like, [4.0, 10.0])
    samples = [CalibrationSample(4.0, 99_999.0), CalibrationSample(10.0, 2.0 * samples[1].value)]

    with capture_logs() as logs:
        new = calibrate_simple(list(reversed(samples)), schedule, cypionate_like, 100.0, current_factor=1.0)
    assert new == pytest.approx(2.0)
    assert any(entry["event"] == "calibration_updated" for entry in logs)


def test_simple_is_clamped(cypionate_like):
    schedule, samples = _observe(cypionate_like, [10.0])
    high = [CalibrationSample(10.0, 100.0 * samples[0].value)]
    low = [CalibrationSample(10.0, 0.0)]
    assert calibrate_simple(high, schedule, cypionate_like, 100.0, current_factor=1.0) == 10.0
    assert calibrate_simple(low, schedule, cypionate_like, 100.0, current_factor=1.0) == 0.1


def test_simple_skips_when_prediction_is_zero(cypionate_like):
    """A sample taken before the first dose has nothing to rescale."""
    schedule = single_dose(cypionate_like, 100.0, start_days=5.0)
    with capture_logs() as logs:
        new = calibrate_simple([CalibrationSample(2.0, 500.0)], schedule, cypionate_like, 100.0,
                               current_factor=1.7)
    assert new == 1.7
    assert [entry["event"] for entry in logs] == ["calibration_skipped"]


def test_simple_accepts_plain_dose_times(cypionate_like):
    schedule, samples = _observe(cypionate_like, [10.0])
    from_schedule = calibrate_simple(samples, schedule, cypionate_like, 150.0)
    from_times = calibrate_simple(samples, [0.0, 7.0, 14.0, 21.0, 28.0], cypionate_like, 150.0)
    assert from_times == pytest.approx(from_schedule, rel=1e-12)
    # samples came from 100 mg doses; the model now assumes 150 mg
    assert from_times == pytest.approx(100.0 / 150.0, rel=1e-9)


def test_simple_rejects_missing_or_invalid_samples(cypionate_like, empty_blend):
    schedule = single_dose(cypionate_like, 100.0)
    with pytest.raises(InsufficientCalibrationData):
        calibrate_simple([], schedule, cypionate_like, 100.0)
    with pytest.raises(InsufficientCalibrationData):
        calibrate_simple([CalibrationSample(1.0, -5.0)], schedule, cypionate_like, 100.0)
    with pytest.raises(InsufficientCalibrationData):
        calibrate_simple([CalibrationSample(float("nan"), 5.0)], schedule, cypionate_like, 100.0)
    with pytest.raises(InvalidBlend):
        calibrate_simple([CalibrationSample(1.0, 5.0)], schedule, empty_blend, 100.0)


# --------------------------
# Iterative method
# --------------------------
def test_iterative_recovers_known_rates(cypionate_like):
    """Samples from ke x1.25 and ka x0.8 are recovered within 10% with r ~ 1."""
    true_ke = cypionate_like.elimination_rate * 1.25
    true_ka = 0.25 * 0.8
    truth = CompoundPKParameters(
        name="Truth", class_type="testosterone", half_life_days=math.log(2) / true_ke,
        bioavailability={"intramuscular": 1.0}, absorption_rate={"intramuscular": true_ka},
    )
    schedule, samples = _observe(truth, SAMPLE_DAYS)

    with capture_logs() as logs:
        result = calibrate_iterative(samples, schedule, cypionate_like, 100.0)

    assert result.method is CalibrationMethod.ITERATIVE
    assert result.fallback_reason is None
    assert result.converged
    assert result.samples_used == len(SAMPLE_DAYS)
    assert result.original_ke == pytest.approx(cypionate_like.elimination_rate)
    assert result.original_ka == pytest.approx(0.25)
    assert result.adjusted_ke == pytest.approx(true_ke, rel=0.10)
    assert result.adjusted_ka == pytest.approx(true_ka, rel=0.10)
    assert result.correlation > 0.99
    assert result.half_life_change_percent == pytest.approx(-20.0, abs=3.0)
    assert 0 < result.iterations <= 100
    assert any(entry["event"] == "calibration_converged" for entry in logs)


def test_iterative_keeps_rates_on_exact_reference_data(cypionate_like):
    schedule, samples = _observe(cypionate_like, SAMPLE_DAYS, factor=1.5)
    result = calibrate_iterative(samples, schedule, cypionate_like, 100.0, calibration_factor=1.5)

    assert result.adjusted_ke == pytest.approx(result.original_ke, rel=1e-3)
    assert result.adjusted_ka == pytest.approx(result.original_ka, rel=1e-3)
    assert result.calibration_factor == 1.5
    assert result.correlation == pytest.approx(1.0, abs=1e-6)


def test_iterative_stays_within_bounds(cypionate_like):
    """Observations far outside the model's reach end on the [0.5x, 2x] box."""
    schedule, samples = _observe(cypionate_like, SAMPLE_DAYS)
    flat = [CalibrationSample(s.time_days, 50.0 * s.value) for s in samples]
    result = calibrate_iterative(flat, schedule, cypionate_like, 100.0)

    assert 0.5 - 1e-9 <= result.adjusted_ke / result.original_ke <= 2.0 + 1e-9
    assert 0.5 - 1e-9 <= result.adjusted_ka / result.original_ka <= 2.0 + 1e-9
    assert -1.0 <= result.correlation <= 1.0


def test_iterative_blend_reports_primary_component():
    blend = get_blend("Sustanon 250")
    schedule, samples = _observe(blend, SAMPLE_DAYS, dose_mg=250.0)
    result = calibrate_iterative(samples, schedule, blend, 250.0)

    assert result.method is CalibrationMethod.ITERATIVE
    assert result.original_ke == pytest.approx(math.log(2) / 10.0)  # decanoate carries 100 of 250 mg/mL
    assert result.adjusted_ke == pytest.approx(result.original_ke, rel=1e-3)
    assert result.correlation == pytest.approx(1.0, abs=1e-6)


def test_single_sample_falls_back_to_simple(cypionate_like):
    schedule, samples = _observe(cypionate_like, [10.0])
    doubled = [CalibrationSample(10.0, 2.0 * samples[0].value)]

    with capture_logs() as logs:
        result = calibrate_iterative(doubled, schedule, cypionate_like, 100.0)

    assert result.method is CalibrationMethod.SIMPLE_FALLBACK
    assert result.fallback_reason == "insufficient_samples"
    assert result.calibration_factor == pytest.approx(2.0)
    assert result.adjusted_ke == result.original_ke
    assert result.adjusted_ka == result.original_ka
    assert result.half_life_change_percent == 0.0
    assert result.samples_used == 1
    assert result.correlation == 0.0
    assert any(entry["event"] == "calibration_fallback" and entry["reason"] == "insufficient_samples"
               for entry in logs)


def test_unsupported_route_falls_back(cypionate_like):
    schedule, samples = _observe(cypionate_like, SAMPLE_DAYS)
    result = calibrate_iterative(samples, schedule, cypionate_like, 100.0, route="oral")

    assert result.method is CalibrationMethod.SIMPLE_FALLBACK
    assert result.fallback_reason == "unsupported_route"
    # oral falls back to the intramuscular parameters, which produced the samples
    assert result.original_ka == pytest.approx(0.25)
    assert result.calibration_factor == pytest.approx(1.0)
    assert result.correlation == pytest.approx(1.0, abs=1e-9)


def test_unresolvable_blend_falls_back(cypionate_like, empty_blend):
    schedule, samples = _observe(cypionate_like, SAMPLE_DAYS)

    with capture_logs() as logs:
        result = calibrate_iterative(samples, [0.0, 7.0, 14.0], empty_blend, 100.0, calibration_factor=1.4)

    assert result.method is CalibrationMethod.SIMPLE_FALLBACK
    assert result.fallback_reason == "unresolvable_blend"
    assert result.calibration_factor == 1.4
    events = [entry["event"] for entry in logs]
    assert "calibration_fallback" in events and "calibration_skipped" in events


def test_missing_compound_falls_back(cypionate_like):
    _, samples = _observe(cypionate_like, SAMPLE_DAYS)
    result = calibrate_iterative(samples, [0.0, 7.0], None, 100.0)
    assert result.fallback_reason == "missing_compound"
    assert result.calibration_factor == 1.0
    assert np.isnan(result.original_ke)


def test_iterative_without_samples_raises(cypionate_like):
    with pytest.raises(InsufficientCalibrationData):
        calibrate_iterative([], single_dose(cypionate_like, 100.0), cypionate_like, 100.0)


def test_schedule_contents_used_without_compound(cypionate_like):
    """With compound=None the schedule's own compound and dose define the context."""
    schedule, samples = _observe(cypionate_like, SAMPLE_DAYS)
    result = calibrate_iterative(samples, schedule, None, 0.0)
    assert result.method is CalibrationMethod.ITERATIVE
    assert result.original_ke == pytest.approx(cypionate_like.elimination_rate)
    assert result.adjusted_ke == pytest.approx(result.original_ke, rel=1e-3)
