"""Physical quantities derived from temperature/humidity pairs.

Inputs are not clamped: humidity is a percentage (``50.0`` means 50%) and
out-of-range values produce a defined, possibly non-physical, result.
"""

from __future__ import annotations

import math

MAGNUS_A = 17.625
MAGNUS_B = 243.04  # C

_HEAT_INDEX_COEFFICIENTS = (
    -8.78469475556,
    1.61139411,
    2.33854883889,
    -0.14611605,
    -0.012308094,
    -0.0164248277778,
    0.002211732,
    0.00072546,
    -0.000003582,
)


def _divide(numerator: float, denominator: float) -> float:
    """IEEE 754 division: a zero denominator yields a signed infinity or ``nan``."""
    if denominator != 0:
        return numerator / denominator
    if numerator == 0 or math.isnan(numerator):
        return math.nan
    return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)


def dew_point(temp_c: float, rel_humidity_percent: float) -> float:
    """Dew point in C using the Magnus-Tetens approximation.

    Zero humidity yields ``-inf`` and negative humidity yields ``nan``. A
    temperature at the pole of the approximation (``-MAGNUS_B``) yields an
    infinity or ``nan`` instead of raising.
    """
    fraction = rel_humidity_percent / 100.0
    if fraction > 0:
        log_rh = math.log(fraction)
    elif fraction == 0:
        log_rh = -math.inf
    else:
        log_rh = math.nan

    gamma = log_rh + _divide(MAGNUS_A * temp_c, MAGNUS_B + temp_c)
    if math.isinf(gamma):
        return -math.inf
    return _divide(MAGNUS_B * gamma, MAGNUS_A - gamma)


def heat_index(temp_c: float, rel_humidity_percent: float) -> float:
    """Heat index in C from the nine-term regression."""
    c1, c2, c3, c4, c5, c6, c7, c8, c9 = _HEAT_INDEX_COEFFICIENTS
    t = temp_c
    rh = rel_humidity_percent
    return (
        c1
        + c2 * t
        + c3 * rh
        + c4 * t * rh
        + c5 * t * t
        + c6 * rh * rh
        + c7 * t * t * rh
        + c8 * t * rh * rh
        + c9 * t * t * rh * rh
    )
