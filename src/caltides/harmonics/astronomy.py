"""
Fundamental astronomical arguments for tidal prediction.

Evaluates the mean longitudes of the moon (s), sun (h), lunar perigee (p),
solar perigee (p1) and the lunar ascending node (N) as polynomials in Julian
centuries since the 1900.0 epoch, using the coefficients of Schureman (1958)
SP 98, Table 1, plus the hour angle of the mean sun (tau).

All angles are in degrees.  The polynomial angles are not reduced modulo
360; only tau is.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

import pandas as pd

# SP 98 Table 1 constants, fixed for the 1900 epoch of the harmonic data.
OBLIQUITY = 23.0 + 27.0 / 60.0 + 8.26 / 3600.0
"""Obliquity of the ecliptic, omega (degrees)."""

LUNAR_INCLINATION = 5.0 + 8.0 / 60.0 + 43.3546 / 3600.0
"""Inclination of the lunar orbit to the ecliptic, i (degrees)."""

DAYS_PER_JULIAN_CENTURY = 36525.0
SECONDS_PER_JULIAN_CENTURY = DAYS_PER_JULIAN_CENTURY * 86400.0

TABLE_1_EPOCH = pd.Timestamp('1899-12-31 12:00:00', tz='UTC')
"""Epoch 1900.0 (JD 2415020.0)."""


def to_utc(instant: datetime | pd.Timestamp | str) -> pd.Timestamp:
    """
    Coerce *instant* to a tz-aware UTC :class:`pandas.Timestamp`.

    Naive values are taken to be UTC already.
    """
    ts = pd.Timestamp(instant)
    if ts.tzinfo is None:
        return ts.tz_localize('UTC')
    return ts.tz_convert('UTC')


@dataclass(frozen=True)
class AstronomicalArguments:
    """Fundamental angles (degrees) at one instant."""

    s: float
    h: float
    p: float
    p1: float
    N: float
    tau: float


def julian_centuries(instant: datetime | pd.Timestamp) -> float:
    """Julian centuries elapsed since :data:`TABLE_1_EPOCH`."""
    elapsed = (to_utc(instant) - TABLE_1_EPOCH).total_seconds()
    return elapsed / SECONDS_PER_JULIAN_CENTURY


def astronomical_arguments(instant: datetime | pd.Timestamp) -> AstronomicalArguments:
    """
    Evaluate the fundamental angles at *instant*.

    Parameters
    ----------
    instant : datetime or pd.Timestamp
        Evaluation time (naive values are UTC).

    Returns
    -------
    AstronomicalArguments
        ``s``, ``h``, ``p``, ``p1``, ``N`` and ``tau`` in degrees.
    """
    ts = to_utc(instant)
    T = julian_centuries(ts)
    T2 = T * T
    T3 = T2 * T

    s = ((270.0 + 26.0 / 60.0 + 14.72 / 3600.0)
         + (1336.0 * 360.0 + 1108411.2 / 3600.0) * T
         + (9.09 / 3600.0) * T2
         + (0.0068 / 3600.0) * T3)

    h = ((279.0 + 41.0 / 60.0 + 48.04 / 3600.0)
         + (129602768.13 / 3600.0) * T
         + (1.089 / 3600.0) * T2)

    p = ((334.0 + 19.0 / 60.0 + 40.87 / 3600.0)
         + (11.0 * 360.0 + 392515.94 / 3600.0) * T
         - (37.24 / 3600.0) * T2
         - (0.045 / 3600.0) * T3)

    p1 = ((281.0 + 13.0 / 60.0 + 15.0 / 3600.0)
          + (6189.03 / 3600.0) * T
          + (1.63 / 3600.0) * T2
          + (0.012 / 3600.0) * T3)

    N = ((259.0 + 10.0 / 60.0 + 57.12 / 3600.0)
         - (5.0 * 360.0 + 482912.63 / 3600.0) * T
         + (7.58 / 3600.0) * T2
         + (0.008 / 3600.0) * T3)

    days = (ts - TABLE_1_EPOCH).total_seconds() / 86400.0
    tau = (days * 360.0) % 360.0

    return AstronomicalArguments(s=s, h=h, p=p, p1=p1, N=N, tau=tau)


# Trigonometry in degrees.

def sind(deg: float) -> float:
    return math.sin(math.radians(deg))


def cosd(deg: float) -> float:
    return math.cos(math.radians(deg))


def tand(deg: float) -> float:
    return math.tan(math.radians(deg))


def asind(x: float) -> float:
    return math.degrees(math.asin(x))


def acosd(x: float) -> float:
    return math.degrees(math.acos(x))


def atan2d(y: float, x: float) -> float:
    return math.degrees(math.atan2(y, x))


def signed_angle(deg: float) -> float:
    """Reduce an angle to (-180, 180]."""
    reduced = (deg + 180.0) % 360.0 - 180.0
    return 180.0 if reduced == -180.0 else reduced
