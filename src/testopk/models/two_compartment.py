# src/testopk/models/two_compartment.py
import math
from typing import Tuple

import numpy as np

from .one_compartment import rates_coincide

# Relative shift applied to ka when it collides with a hybrid rate
KA_NUDGE = 1e-4


def hybrid_rates(k10: float, k12: float, k21: float) -> Tuple[float, float]:
    """
    Eigenvalues of the central/peripheral system.

      alpha, beta = (ks +/- sqrt(ks^2 - 4*k10*k21)) / 2,  ks = k10 + k12 + k21

    A non-positive discriminant collapses both to ks/2.
    """
    ks = k10 + k12 + k21
    disc = ks * ks - 4.0 * k10 * k21
    root = math.sqrt(disc) if disc > 0.0 else 0.0
    return 0.5 * (ks + root), 0.5 * (ks - root)


def two_compartment_first_order(t, dose_mg, bioavailability, ka, k10, k12, k21, vc) -> Tuple[np.ndarray, bool]:
    """
    Central-compartment concentration after a first-order absorbed dose.

    States (amounts): depot -> central <-> peripheral, elimination from central.
      dA_depot = -ka*A_depot
      dA_c     = ka*A_depot - (k10 + k12)*A_c + k21*A_p
      dA_p     = k12*A_c - k21*A_p

    Closed form (residues at -alpha, -beta, -ka):
      C(t) = F*D*ka/Vc * [ (k21-alpha)/((ka-alpha)(beta-alpha)) e^(-alpha t)
                         + (k21-beta)/((ka-beta)(alpha-beta))   e^(-beta t)
                         + (k21-ka)/((alpha-ka)(beta-ka))       e^(-ka t) ]

    alpha == beta uses the repeated-root limit. ka colliding with alpha or beta
    is moved away by KA_NUDGE (relative); the second return value reports it.

    Returns (concentration in mg/L, nudged).
    """
    t = np.asarray(t, dtype=float)
    elapsed = np.maximum(t, 0.0)
    amount = bioavailability * np.asarray(dose_mg, dtype=float)
    alpha, beta = hybrid_rates(k10, k12, k21)
    nudged = False

    if rates_coincide(alpha, beta):
        lam = 0.5 * (alpha + beta)
        if rates_coincide(ka, lam):
            ka = ka * (1.0 + KA_NUDGE)
            nudged = True
        d = ka - lam
        terms = ((k21 - ka) / (d * d) * np.exp(-ka * elapsed)
                 + np.exp(-lam * elapsed) * (elapsed * (k21 - lam) / d + (ka - k21) / (d * d)))
    else:
        if rates_coincide(ka, alpha):
            ka = ka * (1.0 + KA_NUDGE)  # alpha is the larger root; move away from beta
            nudged = True
        elif rates_coincide(ka, beta):
            ka = ka * (1.0 - KA_NUDGE)
            nudged = True
        terms = ((k21 - alpha) / ((ka - alpha) * (beta - alpha)) * np.exp(-alpha * elapsed)
                 + (k21 - beta) / ((ka - beta) * (alpha - beta)) * np.exp(-beta * elapsed)
                 + (k21 - ka) / ((alpha - ka) * (beta - ka)) * np.exp(-ka * elapsed))

    C = amount * ka / vc * terms
    return np.where(t >= 0.0, C, 0.0), nudged
