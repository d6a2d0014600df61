"""
Harmonic synthesis of water level and current series.

Implements the standard prediction formula::

    h(t) = Z0 + sum{ f * H * cos[a*t + (V0 + u) - kappa] }

where *t* is hours since the start of the year in the station's local
standard time (UTC hours minus the meridian offset), *a* the constituent
speed and *kappa* the published phase lag.  Nodal factors are looked up
once per UTC calendar day covered by the series.

Subordinate stations have no constituents of their own; their events are
the reference station's events shifted and scaled by
:func:`apply_subordinate_offsets`.
"""
from __future__ import annotations

import logging
from datetime import datetime

import numpy as np
import pandas as pd

from .astronomy import to_utc
from .constituents import ConstituentCatalog
from .nodal import IDENTITY, NodalFactorCalculator
from .stations import ReferenceStation, SubordinateOffsets

logger = logging.getLogger(__name__)

SERIES_COLUMNS = ['time', 'value', 'units']
EVENT_COLUMNS = ['time', 'type', 'value', 'units']

HIGH_TYPES = ('High', 'Flood')
LOW_TYPES = ('Low', 'Ebb')


def empty_series() -> pd.DataFrame:
    return pd.DataFrame({
        'time': pd.DatetimeIndex([], tz='UTC'),
        'value': pd.Series([], dtype=float),
        'units': pd.Series([], dtype=object),
    })


def empty_events() -> pd.DataFrame:
    return pd.DataFrame({
        'time': pd.DatetimeIndex([], tz='UTC'),
        'type': pd.Series([], dtype=object),
        'value': pd.Series([], dtype=float),
        'units': pd.Series([], dtype=object),
    })


def time_grid(
    start: datetime | pd.Timestamp | str,
    end: datetime | pd.Timestamp | str,
    step_seconds: float,
) -> pd.DatetimeIndex:
    """
    Uniform UTC time grid from *start* to *end* inclusive.

    Raises
    ------
    ValueError
        If *end* precedes *start* or *step_seconds* is not positive.
    """
    start = to_utc(start)
    end = to_utc(end)
    if end < start:
        raise ValueError(f"end ({end}) must not be before start ({start}).")
    if step_seconds <= 0:
        raise ValueError(f"step_seconds must be positive, got {step_seconds}.")
    return pd.date_range(start, end, freq=pd.Timedelta(seconds=step_seconds))


def synthesize(
    station: ReferenceStation,
    catalog: ConstituentCatalog,
    nodal: NodalFactorCalculator,
    start: datetime | pd.Timestamp | str,
    end: datetime | pd.Timestamp | str,
    step_seconds: float = 60,
    nodal_hour: int = 12,
    meridian_override: float | None = None,
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """
    Predict a uniformly stepped series for a reference station.

    Parameters
    ----------
    station : ReferenceStation
        Harmonic constants, datum offset and meridian of the station.
    catalog : ConstituentCatalog
        Constituent definitions used for speeds.
    nodal : NodalFactorCalculator
        Source of per-day nodal-factor tables.
    start, end : datetime-like
        Inclusive window; naive values are UTC.
    step_seconds : float, optional
        Sampling interval (default 60 s).
    nodal_hour : int, optional
        Local hour of the representative instant for each day's nodal
        factors (default 12).
    meridian_override : float, optional
        Meridian offset in hours replacing the station's own.
    logger : logging.Logger, optional
        Logger instance for diagnostic messages.

    Returns
    -------
    pd.DataFrame
        Columns ``time`` (UTC), ``value`` and ``units``.  Empty when the
        station has no usable constituents.

    Raises
    ------
    ValueError
        If *end* precedes *start* or *step_seconds* is not positive.
    """
    _log = logger or logging.getLogger(__name__)
    times = time_grid(start, end, step_seconds)

    names, speeds, amplitudes, phases = [], [], [], []
    for term in station.constituents:
        canonical = catalog.resolve(term.name)
        speed = catalog.speed(term.name)
        if canonical is None or speed is None:
            _log.debug('Skipping constituent %s at %s: unknown speed.', term.name, station.name)
            continue
        names.append(canonical)
        speeds.append(speed)
        amplitudes.append(term.amplitude)
        phases.append(term.phase)

    if not names:
        _log.warning('Station %s has no usable constituents; no prediction.', station.name)
        return empty_series()

    speeds = np.asarray(speeds)
    amplitudes = np.asarray(amplitudes)
    phases = np.asarray(phases)
    meridian = station.meridian_offset if meridian_override is None else meridian_override

    values = np.empty(len(times))
    days = times.normalize()
    for day in days.unique():
        mask = np.asarray(days == day)
        table = nodal.factors_for(day.year, day.month, day.day, meridian, nodal_hour)
        factors = [table.get(name, IDENTITY) for name in names]
        f = np.array([nf.f for nf in factors])
        phase_shift = np.array([nf.V0 + nf.u for nf in factors]) - phases

        year_start = pd.Timestamp(year=day.year, month=1, day=1, tz='UTC')
        hours = np.asarray((times[mask] - year_start) / pd.Timedelta(hours=1)) - meridian

        args = np.radians(np.outer(hours, speeds) + phase_shift)
        values[mask] = station.datum_offset + np.cos(args) @ (f * amplitudes)

    _log.debug(
        'Synthesized %d samples for %s (%d constituents, %d days).',
        len(times), station.name, len(names), len(days.unique()),
    )
    return pd.DataFrame({'time': times, 'value': values, 'units': station.units})


def apply_subordinate_offsets(
    reference_events: pd.DataFrame,
    offsets: SubordinateOffsets,
    start: datetime | pd.Timestamp | str,
    end: datetime | pd.Timestamp | str,
    units: str | None = None,
) -> pd.DataFrame:
    """
    Map reference-station events onto a subordinate station.

    High/Flood events take the high offsets and Low/Ebb events the low
    offsets: ``time + time_offset`` and ``value * multiplier + level_add``.
    Event types are kept even when a negative multiplier flips the sign.
    Other event types (slack water) are dropped.

    Parameters
    ----------
    reference_events : pd.DataFrame
        Events with columns ``time``, ``type``, ``value`` and ``units``.
    offsets : SubordinateOffsets
        Offsets of the subordinate station.
    start, end : datetime-like
        Window the mapped events are filtered to.
    units : str, optional
        Units reported for the subordinate station.

    Returns
    -------
    pd.DataFrame
        Mapped events sorted by time.
    """
    start = to_utc(start)
    end = to_utc(end)
    events = reference_events[reference_events['type'].isin(HIGH_TYPES + LOW_TYPES)]
    if events.empty:
        return empty_events()

    is_high = events['type'].isin(HIGH_TYPES).to_numpy()
    time_offset = np.where(is_high, offsets.high_time_offset, offsets.low_time_offset)
    multiplier = np.where(is_high, offsets.high_multiplier, offsets.low_multiplier)
    level_add = np.where(is_high, offsets.high_level_add, offsets.low_level_add)

    times = pd.DatetimeIndex(events['time']) + pd.to_timedelta(time_offset, unit='s')
    mapped = pd.DataFrame({
        'time': times,
        'type': events['type'].to_numpy(),
        'value': np.round(events['value'].to_numpy(dtype=float) * multiplier + level_add, 3),
        'units': units if units is not None else events['units'].to_numpy(),
    })

    in_window = (mapped['time'] >= start) & (mapped['time'] <= end)
    return mapped[in_window].sort_values('time', kind='stable').reset_index(drop=True)
