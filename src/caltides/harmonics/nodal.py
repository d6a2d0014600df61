"""
Nodal corrections: node factor f, nodal phase u and equilibrium argument V0.

For a representative instant (local noon of one calendar day) the lunar
node angle fixes the inclination I of the lunar orbit to the equator, from
which the derived angles xi, nu, nu', 2nu'', Q, Qu, R and the amplitude
ratios Qa, Ra follow in closed form (Schureman 1958, SP 98).  Basic
constituents combine these through their coefficient vectors; compound
constituents combine the factors of the base constituents.

Tables are computed once per (year, month, day, meridian, hour) key and
kept for the life of the process, and persisted when a cache store is
supplied.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable

import pandas as pd

from .astronomy import (
    LUNAR_INCLINATION,
    OBLIQUITY,
    AstronomicalArguments,
    acosd,
    asind,
    astronomical_arguments,
    atan2d,
    cosd,
    signed_angle,
    sind,
    tand,
)
from .cache import CacheStore
from .constituents import (
    BASES_ORDER,
    BasicConstituent,
    CompoundConstituent,
    ConstituentCatalog,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodalFactor:
    """Amplitude factor ``f``, phase correction ``u`` and ``V0`` (degrees)."""

    f: float
    u: float
    V0: float


IDENTITY = NodalFactor(f=1.0, u=0.0, V0=0.0)


@dataclass(frozen=True)
class OrbitalAngles:
    """Node-dependent angles (degrees) and amplitude ratios."""

    I: float
    nu: float
    xi: float
    nu_prime: float
    two_nu_double_prime: float
    Q: float
    Qu: float
    R: float
    Qa: float
    Ra: float

    def u_terms(self) -> tuple[float, ...]:
        """Terms weighted by a basic constituent's ``u`` vector."""
        return (self.xi, self.nu, self.nu_prime, self.two_nu_double_prime,
                self.Q, self.R, self.Qu)


def orbital_angles(args: AstronomicalArguments) -> OrbitalAngles:
    """
    Derive I, nu, xi, nu', 2nu'', Q, Qu, R, Qa and Ra from N and p.

    Parameters
    ----------
    args : AstronomicalArguments
        Fundamental angles at the representative instant.

    Returns
    -------
    OrbitalAngles
    """
    n = signed_angle(args.N)
    p = args.p % 360.0

    # Spherical law of cosines on the obliquity/lunar-inclination triangle.
    cos_i = (cosd(OBLIQUITY) * cosd(LUNAR_INCLINATION)
             - sind(OBLIQUITY) * sind(LUNAR_INCLINATION) * cosd(n))
    cap_i = acosd(cos_i)
    sin_i = sind(cap_i)

    nu = asind(sind(LUNAR_INCLINATION) * sind(n) / sin_i)

    sin_omega = sind(OBLIQUITY) * sind(n) / sin_i
    cos_omega = cosd(n) * cosd(nu) + sind(n) * sind(nu) * cosd(OBLIQUITY)
    xi = signed_angle(n - atan2d(sin_omega, cos_omega))

    nu_prime = atan2d(
        sind(2.0 * cap_i) * sind(nu),
        sind(2.0 * cap_i) * cosd(nu) + 0.3347,
    )
    two_nu_double_prime = atan2d(
        sin_i * sin_i * sind(2.0 * nu),
        sin_i * sin_i * cosd(2.0 * nu) + 0.0727,
    )

    big_p = p - xi
    q = atan2d(0.483 * sind(big_p), cosd(big_p))
    qu = big_p - q
    qa = 1.0 / math.sqrt(2.31 + 1.435 * cosd(2.0 * big_p))

    tan_half_i = tand(cap_i / 2.0)
    cot_half_i = 1.0 / tan_half_i
    r = atan2d(
        sind(2.0 * big_p),
        (cot_half_i * cot_half_i / 6.0) - cosd(2.0 * big_p),
    )
    ra = 1.0 / math.sqrt(
        1.0 - 12.0 * tan_half_i * tan_half_i * cosd(2.0 * big_p)
        + 36.0 * tan_half_i ** 4
    )

    return OrbitalAngles(
        I=cap_i, nu=nu, xi=xi, nu_prime=nu_prime,
        two_nu_double_prime=two_nu_double_prime,
        Q=q, Qu=qu, R=r, Qa=qa, Ra=ra,
    )


# Node factor formulas, keyed by the XTide/SP 98 formula number.
NODE_FACTOR_FORMULAS: dict[int, Callable[[OrbitalAngles], float]] = {
    1: lambda a: 1.0,
    73: lambda a: (2.0 / 3.0 - sind(a.I) ** 2) / 0.5021,
    74: lambda a: sind(a.I) ** 2 / 0.1578,
    75: lambda a: sind(a.I) * cosd(a.I / 2.0) ** 2 / 0.38,
    76: lambda a: sind(2.0 * a.I) / 0.7214,
    77: lambda a: sind(a.I) * sind(a.I / 2.0) ** 2 / 0.0164,
    78: lambda a: cosd(a.I / 2.0) ** 4 / 0.9154,
    79: lambda a: sind(a.I) ** 2 / 0.1565,
    144: lambda a: (
        (1.0 - 10.0 * sind(a.I / 2.0) ** 2 + 15.0 * sind(a.I / 2.0) ** 4)
        * cosd(a.I / 2.0) ** 2 / 0.5873
    ),
    149: lambda a: cosd(a.I / 2.0) ** 6 / 0.8758,
    206: lambda a: (sind(a.I) * cosd(a.I / 2.0) ** 2 / 0.38) / a.Qa,
    215: lambda a: (cosd(a.I / 2.0) ** 4 / 0.9154) / a.Ra,
    227: lambda a: math.sqrt(
        0.8965 * sind(2.0 * a.I) ** 2
        + 0.6001 * sind(2.0 * a.I) * cosd(a.nu)
        + 0.1006
    ),
    235: lambda a: math.sqrt(
        19.0444 * sind(a.I) ** 4
        + 2.7702 * sind(a.I) ** 2 * cosd(2.0 * a.nu)
        + 0.0981
    ),
}


def node_factor(formula: int, angles: OrbitalAngles) -> float:
    """Evaluate node factor *formula*; unknown formulas yield 1.0."""
    fn = NODE_FACTOR_FORMULAS.get(formula)
    return fn(angles) if fn is not None else 1.0


def basic_factors(
    constituent: BasicConstituent,
    arg_start: AstronomicalArguments,
    angles: OrbitalAngles,
) -> NodalFactor:
    """
    Nodal factors of a basic constituent.

    ``V0`` is evaluated at the start of the year and reduced to [0, 360);
    ``u`` and ``f`` at the representative day, with ``u`` in (-180, 180].
    """
    v = constituent.v
    v0 = (v[0] * arg_start.tau
          + v[1] * arg_start.s
          + v[2] * arg_start.h
          + v[3] * arg_start.p
          + v[4] * arg_start.p1
          + v[5])

    u = sum(c * term for c, term in zip(constituent.u, angles.u_terms()))
    f = node_factor(constituent.f_formula, angles)
    return NodalFactor(f=f, u=signed_angle(u), V0=v0 % 360.0)


def compound_factors(
    constituent: CompoundConstituent,
    factors: dict[str, NodalFactor],
) -> NodalFactor:
    """
    Combine base-constituent factors for a compound constituent.

    ``f`` is the product of base ``f`` values raised to ``|weight|``;
    ``u`` and ``V0`` are the weight-scaled sums.
    """
    f = 1.0
    u = 0.0
    v0 = 0.0
    for weight, base_name in zip(constituent.coefficients, BASES_ORDER):
        if weight == 0.0:
            continue
        base = factors.get(base_name)
        if base is None:
            continue
        f *= base.f ** abs(weight)
        u += weight * base.u
        v0 += weight * base.V0
    return NodalFactor(f=f, u=u, V0=v0)


def calculate_nodal_factors(
    catalog: ConstituentCatalog,
    year: int,
    month: int = 7,
    day: int = 2,
    meridian_offset: float = 0.0,
    nodal_hour: int = 12,
    logger: logging.Logger | None = None,
) -> dict[str, NodalFactor]:
    """
    Compute the nodal-factor table for every constituent in *catalog*.

    Parameters
    ----------
    catalog : ConstituentCatalog
        Constituent definitions.
    year, month, day : int
        Representative calendar day.
    meridian_offset : float, optional
        Hours from UTC of the time basis the phases refer to.
    nodal_hour : int, optional
        Local hour of the representative instant (default noon).
    logger : logging.Logger, optional
        Logger instance for diagnostic messages.

    Returns
    -------
    dict
        Constituent name to :class:`NodalFactor`.
    """
    _log = logger or logging.getLogger(__name__)
    _log.info(
        'Calculating nodal factors for %04d-%02d-%02d (meridian %s h, hour %d).',
        year, month, day, meridian_offset, nodal_hour,
    )

    shift = pd.Timedelta(hours=meridian_offset)
    t_mid = pd.Timestamp(year=year, month=month, day=day, hour=nodal_hour, tz='UTC') + shift
    t_start = pd.Timestamp(year=year, month=1, day=1, tz='UTC') + shift

    arg_start = astronomical_arguments(t_start)
    angles = orbital_angles(astronomical_arguments(t_mid))

    factors: dict[str, NodalFactor] = {}
    for constituent in catalog.basic():
        factors[constituent.name] = basic_factors(constituent, arg_start, angles)
    for constituent in catalog.compound():
        factors[constituent.name] = compound_factors(constituent, factors)
    return factors


def _table_to_json(table: dict[str, NodalFactor]) -> dict[str, list[float]]:
    return {name: [nf.f, nf.u, nf.V0] for name, nf in table.items()}


def _table_from_json(data: dict[str, list[float]]) -> dict[str, NodalFactor]:
    return {name: NodalFactor(*map(float, values)) for name, values in data.items()}


class NodalFactorCalculator:
    """
    Memoizing front end to :func:`calculate_nodal_factors`.

    Tables are looked up in memory, then in the on-disk store, and only
    then computed.  Concurrent misses on the same key may both compute;
    each stores a complete table, so readers never see a partial one.

    Parameters
    ----------
    catalog : ConstituentCatalog
        Constituent definitions.
    store : CacheStore, optional
        Persistent cache.  Tables are memory-only when omitted.
    logger : logging.Logger, optional
        Logger instance for diagnostic messages.
    """

    def __init__(
        self,
        catalog: ConstituentCatalog,
        store: CacheStore | None = None,
        logger: logging.Logger | None = None,
    ):
        self.catalog = catalog
        self.store = store
        self._log = logger or logging.getLogger(__name__)
        self._tables: dict[tuple, dict[str, NodalFactor]] = {}

    @staticmethod
    def cache_name(year, month, day, meridian_offset, nodal_hour) -> str:
        meridian = str(float(meridian_offset)).replace('-', 'm')
        return f"nodal/nodal_factors_{year}_{month}_{day}_{meridian}_h{nodal_hour}.json"

    def factors_for(
        self,
        year: int,
        month: int,
        day: int,
        meridian_offset: float = 0.0,
        nodal_hour: int = 12,
    ) -> dict[str, NodalFactor]:
        """Nodal-factor table for one representative day."""
        key = (year, month, day, float(meridian_offset), nodal_hour)
        table = self._tables.get(key)
        if table is not None:
            return table

        name = self.cache_name(*key)
        table = None
        if self.store is not None:
            data = self.store.load(name)
            if data is not None:
                try:
                    table = _table_from_json(data)
                except (TypeError, ValueError, AttributeError) as ex:
                    self._log.warning('Discarding malformed nodal cache %s: %s', name, ex)

        if table is None:
            table = calculate_nodal_factors(
                self.catalog, year, month, day, meridian_offset, nodal_hour,
                logger=self._log,
            )
            if self.store is not None:
                self.store.save(name, _table_to_json(table))

        self._tables[key] = table
        return table

    def __len__(self) -> int:
        return len(self._tables)
