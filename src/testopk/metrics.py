# src/testopk/metrics.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy import stats

from .types import ConcentrationSeries


# --------------------------
# Point metrics (times in days, concentrations in ng/dL)
# --------------------------
def cmax(C: np.ndarray) -> float:
    return float(np.max(C))

def cmin(C: np.ndarray) -> float:
    return float(np.min(C))

def tmax(t: np.ndarray, C: np.ndarray) -> float:
    """Sample time of the highest concentration (first one on ties)."""
    return float(t[np.argmax(C)])

def tmin(t: np.ndarray, C: np.ndarray) -> float:
    return float(t[np.argmin(C)])

def cmax_tmax(t: np.ndarray, C: np.ndarray) -> Tuple[float, float]:
    i = int(np.argmax(C))
    return float(C[i]), float(t[i])

def auc_trapz(t: np.ndarray, C: np.ndarray) -> float:
    """Trapezoidal AUC (ng*day/dL)."""
    return float(np.trapezoid(C, t))

def cavg(t: np.ndarray, C: np.ndarray) -> float:
    """AUC / horizon; the plain mean for a single sample."""
    horizon = float(t[-1] - t[0])
    return auc_trapz(t, C) / horizon if horizon > 0 else float(np.mean(C))

def ctrough(t: np.ndarray, C: np.ndarray, interval_days: float) -> float:
    """
    Level at the end of the last complete dosing interval counted from t[0]
    (nearest sample). NaN when not even one interval fits.
    """
    full = np.floor((t[-1] - t[0]) / interval_days)
    if full < 1:
        return float("nan")
    return float(np.interp(t[0] + full * interval_days, t, C))


# --------------------------
# Interval metrics
# --------------------------
def _interval_bounds(t: np.ndarray, interval_days: float, back: int = 0) -> Optional[Tuple[float, float]]:
    """[start, end] of the complete interval `back` steps before the last one, None if it precedes t[0]."""
    end = np.floor(t[-1] / interval_days) * interval_days - back * interval_days
    start = end - interval_days
    if start < t[0]:
        return None
    return float(start), float(end)

def _last_interval(t: np.ndarray, interval_days: Optional[float]) -> np.ndarray:
    """Mask of the last complete dosing interval; every sample when none fits."""
    bounds = _interval_bounds(t, interval_days) if interval_days and interval_days > 0 else None
    if bounds is None:
        return np.full(t.shape, True)
    return (t >= bounds[0]) & (t <= bounds[1])

def _peak_trough(window: np.ndarray) -> float:
    low = float(window.min())
    return float(window.max()) / low if low > 0 else float("inf")

def _swing(window: np.ndarray) -> float:
    mean = float(window.mean())
    return float(np.ptp(window)) / mean if mean != 0.0 else float("inf")

def peak_to_trough_ratio(t: np.ndarray, C: np.ndarray, interval_days: Optional[float] = None) -> float:
    """PTR = Cmax / Cmin over the last complete interval (whole series without one)."""
    return _peak_trough(C[_last_interval(t, interval_days)])

def fluctuation_index(t: np.ndarray, C: np.ndarray, interval_days: Optional[float] = None) -> float:
    """FI = (Cmax - Cmin) / Cavg over the last complete interval (whole series without one)."""
    return _swing(C[_last_interval(t, interval_days)])


def steady_state_window_mask(t: np.ndarray, C: np.ndarray, interval_days: float,
                             tol: float = 0.05, max_lookback: int = 10) -> np.ndarray:
    """
    Latest complete dosing interval in which the curve repeats itself.

    An interval counts as steady when every sample is within `tol` (relative)
    of the value one interval earlier. Up to `max_lookback` intervals are tried
    from the end; the last complete interval is returned when none qualifies.
    """
    if interval_days <= 0:
        return np.full(t.shape, True)

    previous = np.interp(t - interval_days, t, C)
    drift = np.abs(C - previous) / np.maximum(np.abs(C), 1e-12)

    for back in range(max_lookback):
        bounds = _interval_bounds(t, interval_days, back)
        # the interval before it must be on the grid too
        if bounds is None or bounds[0] - interval_days < t[0]:
            break
        mask = (t >= bounds[0]) & (t <= bounds[1])
        if np.all(drift[mask] <= tol):
            return mask

    return _last_interval(t, interval_days)

def peak_to_trough_ratio_ss(t: np.ndarray, C: np.ndarray, interval_days: float, tol: float = 0.05) -> float:
    return _peak_trough(C[steady_state_window_mask(t, C, interval_days, tol=tol)])

def fluctuation_index_ss(t: np.ndarray, C: np.ndarray, interval_days: float, tol: float = 0.05) -> float:
    return _swing(C[steady_state_window_mask(t, C, interval_days, tol=tol)])


# --------------------------
# Fit quality
# --------------------------
def pearson_r(observed: np.ndarray, predicted: np.ndarray) -> float:
    """
    Pearson correlation, clipped to [-1, 1]. 0.0 for fewer than two pairs or
    when either side is constant (r is undefined there).
    """
    x = np.asarray(observed, dtype=float)
    y = np.asarray(predicted, dtype=float)
    if x.shape[0] < 2 or np.ptp(x) == 0 or np.ptp(y) == 0:
        return 0.0
    r = float(stats.pearsonr(x, y).statistic)
    return float(np.clip(r, -1.0, 1.0)) if np.isfinite(r) else 0.0


# --------------------------
# Summary of one simulated series
# --------------------------
@dataclass(frozen=True)
class ExposureSummary:
    cmax: float
    tmax_days: float
    cmin: float
    auc: float
    cavg: float
    trough: Optional[float] = None
    peak_to_trough: Optional[float] = None
    fluctuation: Optional[float] = None


def summarize(series: ConcentrationSeries, interval_days: Optional[float] = None,
              steady_state_tol: Optional[float] = None) -> ExposureSummary:
    """
    Exposure metrics of a simulated series. With interval_days the trough,
    PTR and FI are added, taken over the steady-state interval when
    steady_state_tol is given, else over the last complete interval.
    """
    t, C = series.times, series.values
    peak, t_peak = cmax_tmax(t, C)
    summary = dict(cmax=peak, tmax_days=t_peak, cmin=cmin(C), auc=auc_trapz(t, C), cavg=cavg(t, C))
    if interval_days:
        if steady_state_tol is not None:
            ptr = peak_to_trough_ratio_ss(t, C, interval_days, tol=steady_state_tol)
            fi = fluctuation_index_ss(t, C, interval_days, tol=steady_state_tol)
        else:
            ptr = peak_to_trough_ratio(t, C, interval_days)
            fi = fluctuation_index(t, C, interval_days)
        summary.update(trough=ctrough(t, C, interval_days), peak_to_trough=ptr, fluctuation=fi)
    return ExposureSummary(**summary)
