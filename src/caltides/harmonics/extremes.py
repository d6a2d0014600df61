"""
Event extraction: high/low water, max flood/ebb, and slack water.

Local extrema are found with :func:`scipy.signal.argrelextrema` and refined
by fitting a parabola through each extremum and its two neighbours.  Slack
water is the linearly interpolated zero crossing of a current series.
"""
from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from scipy.signal import argrelextrema

from .prediction import EVENT_COLUMNS, empty_events

logger = logging.getLogger(__name__)

TIDE_LABELS = ('High', 'Low')
CURRENT_LABELS = ('Flood', 'Ebb')
SLACK = 'Slack'


def labels_for(kind: str) -> tuple[str, str]:
    """(maximum, minimum) event labels for a station kind."""
    return CURRENT_LABELS if kind == 'current' else TIDE_LABELS


def detect_peaks(
    series: pd.DataFrame,
    step_seconds: float | None = None,
    labels: tuple[str, str] = TIDE_LABELS,
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """
    Find refined local maxima and minima of a series.

    A sample is a maximum when strictly greater than both neighbours and a
    minimum when strictly less.  For samples ``y1, y2, y3`` around the
    extremum the vertex of the fitted parabola is at::

        offset = (y1 - y3) / (2 * (y1 - 2*y2 + y3)) * step
        value  = y2 - (y1 - y3)**2 / (8 * (y1 - 2*y2 + y3))

    A flat triple keeps the raw sample.

    Parameters
    ----------
    series : pd.DataFrame
        Columns ``time``, ``value`` and ``units``.  A frame that already
        carries a ``type`` column holds events and is returned unchanged.
    step_seconds : float, optional
        Sampling interval.  Defaults to the median spacing of *series*.
    labels : tuple of str, optional
        Labels for (maxima, minima); ``('Flood', 'Ebb')`` for currents.
    logger : logging.Logger, optional
        Logger instance for diagnostic messages.

    Returns
    -------
    pd.DataFrame
        Columns ``time``, ``type``, ``value`` (rounded to 3 decimals) and
        ``units``, sorted by time.  Empty for fewer than 3 points or
        monotonic input.
    """
    _log = logger or logging.getLogger(__name__)

    if 'type' in series.columns:
        return series
    if len(series) < 3:
        return empty_events()

    values = series['value'].to_numpy(dtype=float)
    times = pd.DatetimeIndex(series['time'])
    units = series['units'].to_numpy()
    if step_seconds is None:
        step_seconds = _median_dt_seconds(times)

    hi_idx = argrelextrema(values, np.greater)[0]
    lo_idx = argrelextrema(values, np.less)[0]
    if len(hi_idx) == 0 and len(lo_idx) == 0:
        return empty_events()

    idx = np.concatenate((hi_idx, lo_idx))
    types = np.array([labels[0]] * len(hi_idx) + [labels[1]] * len(lo_idx), dtype=object)

    y1 = values[idx - 1]
    y2 = values[idx]
    y3 = values[idx + 1]
    denom = y1 - 2.0 * y2 + y3
    flat = denom == 0
    safe = np.where(flat, 1.0, denom)
    offset = np.where(flat, 0.0, (y1 - y3) / (2.0 * safe) * step_seconds)
    refined = np.where(flat, y2, y2 - (y1 - y3) ** 2 / (8.0 * safe))

    peaks = pd.DataFrame({
        'time': times[idx] + pd.to_timedelta(offset, unit='s'),
        'type': types,
        'value': np.round(refined, 3),
        'units': units[idx],
    })
    peaks = peaks.sort_values('time', kind='stable').reset_index(drop=True)

    _log.debug(
        'Peak detection: %d %s, %d %s (dt=%.1f s).',
        len(hi_idx), labels[0], len(lo_idx), labels[1], step_seconds,
    )
    return peaks[EVENT_COLUMNS]


def sign_change_pairs(values: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Index pairs of consecutive non-zero samples with opposite signs.

    Zero samples are skipped, so ``[1, 0, -1]`` yields the pair ``(0, 2)``
    and ``[1, 0, 1]`` yields nothing.
    """
    nonzero = np.flatnonzero(values != 0)
    left = nonzero[:-1]
    right = nonzero[1:]
    flips = np.sign(values[left]) * np.sign(values[right]) < 0
    return left[flips], right[flips]


def detect_zero_crossings(
    series: pd.DataFrame,
    label: str = SLACK,
) -> pd.DataFrame:
    """
    Interpolate the instants where a series changes sign.

    For adjacent non-zero samples ``a`` at ``t0`` and ``b`` at ``t1``
    of opposite sign the crossing is at::

        t0 + (t1 - t0) * |a| / (|a| + |b|)

    using the actual spacing of the two samples, so irregular series
    (such as subordinate-station events) are handled.  When exact zeros
    separate the two signs the crossing is the first zero sample.

    Parameters
    ----------
    series : pd.DataFrame
        Columns ``time``, ``value`` and ``units``.
    label : str, optional
        Event type of the crossings (default ``'Slack'``).

    Returns
    -------
    pd.DataFrame
        Event frame with value 0.0 at each crossing.
    """
    if len(series) < 2:
        return empty_events()

    values = series['value'].to_numpy(dtype=float)
    times = pd.DatetimeIndex(series['time'])
    units = series['units'].to_numpy()

    left, right = sign_change_pairs(values)
    if len(left) == 0:
        return empty_events()

    adjacent = right == left + 1
    a = np.abs(values[left])
    b = np.abs(values[right])
    ratio = np.where(adjacent, a / (a + b), 1.0)
    span = np.asarray((times[left + 1] - times[left]) / pd.Timedelta(seconds=1))

    return pd.DataFrame({
        'time': times[left] + pd.to_timedelta(span * ratio, unit='s'),
        'type': label,
        'value': 0.0,
        'units': units[left],
    })


def _median_dt_seconds(times: pd.DatetimeIndex) -> float:
    """Estimate the median sampling interval in seconds."""
    diffs = np.asarray((times[1:] - times[:-1]) / pd.Timedelta(seconds=1))
    return float(np.median(diffs))
