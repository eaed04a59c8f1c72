# src/testopk/models/one_compartment.py
import math

import numpy as np

# Relative gap under which two rate constants are treated as equal
RATE_TOLERANCE = 1e-6


def rates_coincide(a: float, b: float, rel_tol: float = RATE_TOLERANCE) -> bool:
    return math.isclose(a, b, rel_tol=rel_tol, abs_tol=0.0)


def one_compartment_first_order(t, dose_mg, bioavailability, ka, ke, vd):
    """
    One-compartment model with first-order absorption and elimination
    (Bateman function), closed form.

      C(t) = F*D*ka / (Vd*(ka - ke)) * (exp(-ke*t) - exp(-ka*t))

    When ka == ke (within RATE_TOLERANCE) the limit F*D*k*t*exp(-k*t)/Vd is used.

    Parameters:
      t               : elapsed time since the dose (days), scalar or array;
                        negative values give 0
      dose_mg         : dose (mg), scalar or array broadcastable against t
      bioavailability : F (0..1)
      ka              : absorption rate constant (1/day)
      ke              : elimination rate constant (1/day)
      vd              : volume of distribution (L)

    Returns concentration in mg/L with the shape of the broadcast inputs.
    """
    t = np.asarray(t, dtype=float)
    elapsed = np.maximum(t, 0.0)
    amount = bioavailability * np.asarray(dose_mg, dtype=float)

    if rates_coincide(ka, ke):
        k = 0.5 * (ka + ke)
        C = amount * k * elapsed * np.exp(-k * elapsed) / vd
    else:
        C = amount * ka / (vd * (ka - ke)) * (np.exp(-ke * elapsed) - np.exp(-ka * elapsed))

    return np.where(t >= 0.0, C, 0.0)


def time_to_peak(ka: float, ke: float) -> float:
    """Tmax = ln(ka/ke) / (ka - ke); 1/k in the equal-rate limit."""
    if rates_coincide(ka, ke):
        return 2.0 / (ka + ke)
    return math.log(ka / ke) / (ka - ke)
