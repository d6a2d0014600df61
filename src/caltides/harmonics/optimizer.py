"""
Coarse-to-fine event search.

Minute-resolution synthesis over a multi-month window is expensive.  The
search here samples the window at a coarse step, then resamples only a
short window around each approximate extremum (or sign change) at the fine
step.  The number of synthesized samples drops from ``window / fine`` to
roughly ``window / coarse + events * 2 * half_window / fine``.

:class:`ReferencePeakCache` keeps reference-station peaks for month-aligned
windows so every subordinate sharing a reference reuses one search.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

import numpy as np
import pandas as pd
from scipy.signal import argrelextrema

from .astronomy import to_utc
from .extremes import SLACK, TIDE_LABELS, detect_peaks, detect_zero_crossings, sign_change_pairs
from .prediction import EVENT_COLUMNS, empty_events

logger = logging.getLogger(__name__)

Sampler = Callable[[pd.Timestamp, pd.Timestamp, float], pd.DataFrame]
"""``sampler(start, end, step_seconds)`` returning a series frame."""


def _finish(frames: list[pd.DataFrame], start: pd.Timestamp, end: pd.Timestamp) -> pd.DataFrame:
    if not frames:
        return empty_events()
    events = pd.concat(frames, ignore_index=True)
    events = events[(events['time'] >= start) & (events['time'] <= end)]
    events = events.drop_duplicates(subset=['time', 'type'])
    return events.sort_values('time', kind='stable').reset_index(drop=True)[EVENT_COLUMNS]


def find_peaks_coarse_to_fine(
    sampler: Sampler,
    start: datetime | pd.Timestamp | str,
    end: datetime | pd.Timestamp | str,
    coarse_step_seconds: float = 900,
    fine_step_seconds: float = 60,
    fine_half_window_seconds: float = 1800,
    labels: tuple[str, str] = TIDE_LABELS,
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """
    Refined peaks of a sampled signal between *start* and *end*.

    Parameters
    ----------
    sampler : callable
        ``sampler(start, end, step_seconds)`` returning a series frame.
    start, end : datetime-like
        Inclusive window.
    coarse_step_seconds : float, optional
        Step of the approximate scan (default 15 minutes).
    fine_step_seconds : float, optional
        Step of the refinement scans (default 1 minute).
    fine_half_window_seconds : float, optional
        Half width of each refinement scan (default 30 minutes).  Must
        exceed the coarse step.
    labels : tuple of str, optional
        Labels for (maxima, minima).
    logger : logging.Logger, optional
        Logger instance for diagnostic messages.

    Returns
    -------
    pd.DataFrame
        Event frame sorted by time.
    """
    _log = logger or logging.getLogger(__name__)
    start = to_utc(start)
    end = to_utc(end)
    if fine_half_window_seconds < coarse_step_seconds:
        raise ValueError(
            f"fine_half_window_seconds ({fine_half_window_seconds}) must be at "
            f"least coarse_step_seconds ({coarse_step_seconds})."
        )

    coarse_pad = pd.Timedelta(seconds=coarse_step_seconds)
    coarse = sampler(start - coarse_pad, end + coarse_pad, coarse_step_seconds)
    if len(coarse) < 3:
        return empty_events()

    values = coarse['value'].to_numpy(dtype=float)
    times = pd.DatetimeIndex(coarse['time'])
    candidates = [(times[i], labels[0]) for i in argrelextrema(values, np.greater)[0]]
    candidates += [(times[i], labels[1]) for i in argrelextrema(values, np.less)[0]]

    half = pd.Timedelta(seconds=fine_half_window_seconds)
    frames = []
    fine_samples = 0
    for estimate, kind in candidates:
        fine = sampler(estimate - half, estimate + half, fine_step_seconds)
        fine_samples += len(fine)
        peaks = detect_peaks(fine, step_seconds=fine_step_seconds, labels=labels, logger=_log)
        peaks = peaks[peaks['type'] == kind]
        if peaks.empty:
            _log.debug('No %s found near coarse estimate %s.', kind, estimate)
            continue
        distance = np.abs(np.asarray((pd.DatetimeIndex(peaks['time']) - estimate) / pd.Timedelta(seconds=1)))
        frames.append(peaks.iloc[[int(np.argmin(distance))]])

    _log.debug(
        'Coarse-to-fine peak search: %d coarse samples, %d candidates, %d fine samples.',
        len(coarse), len(candidates), fine_samples,
    )
    return _finish(frames, start, end)


def find_slack_coarse_to_fine(
    sampler: Sampler,
    start: datetime | pd.Timestamp | str,
    end: datetime | pd.Timestamp | str,
    coarse_step_seconds: float = 900,
    fine_step_seconds: float = 60,
    label: str = SLACK,
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """
    Zero crossings of a sampled signal found by bracketing then refining.

    Each coarse sign change is resampled at the fine step between the two
    bracketing non-zero coarse samples and interpolated with
    :func:`~caltides.harmonics.extremes.detect_zero_crossings`.  The fine
    scan always ends on the closing coarse sample, also when the coarse
    step is not a multiple of the fine step.
    """
    _log = logger or logging.getLogger(__name__)
    start = to_utc(start)
    end = to_utc(end)

    coarse_pad = pd.Timedelta(seconds=coarse_step_seconds)
    coarse = sampler(start - coarse_pad, end + coarse_pad, coarse_step_seconds)
    if len(coarse) < 2:
        return empty_events()

    values = coarse['value'].to_numpy(dtype=float)
    times = pd.DatetimeIndex(coarse['time'])
    left, right = sign_change_pairs(values)

    frames = []
    for i, j in zip(left, right):
        fine = sampler(times[i], times[j], fine_step_seconds)
        if fine.empty or fine['time'].iloc[-1] < times[j]:
            fine = pd.concat([fine, sampler(times[j], times[j], fine_step_seconds)], ignore_index=True)
        crossings = detect_zero_crossings(fine, label=label)
        if not crossings.empty:
            frames.append(crossings)

    _log.debug('Coarse-to-fine slack search: %d brackets.', len(left))
    return _finish(frames, start, end)


def month_window(
    start: pd.Timestamp,
    end: pd.Timestamp,
) -> tuple[pd.Timestamp, pd.Timestamp]:
    """Widen [start, end] to whole UTC calendar months."""
    start = to_utc(start)
    end = to_utc(end)
    window_start = pd.Timestamp(year=start.year, month=start.month, day=1, tz='UTC')
    window_end = pd.Timestamp(year=end.year, month=end.month, day=1, tz='UTC') + pd.offsets.MonthBegin(1)
    return window_start, window_end


class ReferencePeakCache:
    """
    Reference-station peaks keyed by reference key and month window.

    Entries whose window ends before the start of the current query are
    dropped on each lookup, so a query window moving forward through time
    keeps only the months it still needs.

    Parameters
    ----------
    logger : logging.Logger, optional
        Logger instance for diagnostic messages.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._entries: dict[tuple, pd.DataFrame] = {}

    def get_or_compute(
        self,
        reference_key: str,
        start: pd.Timestamp,
        end: pd.Timestamp,
        compute: Callable[[pd.Timestamp, pd.Timestamp], pd.DataFrame],
        variant: tuple = (),
    ) -> pd.DataFrame:
        """
        Peaks of *reference_key* covering [start, end].

        Parameters
        ----------
        reference_key : str
            Lookup key of the reference station.
        start, end : pd.Timestamp
            Buffered query window.
        compute : callable
            ``compute(window_start, window_end)`` returning the peaks of the
            whole month window.
        variant : tuple, optional
            Extra key components (prediction options) that change the peaks.
        """
        window_start, window_end = month_window(start, end)
        key = (reference_key, window_start, window_end) + tuple(variant)

        with self._lock:
            self._prune(to_utc(start))
            peaks = self._entries.get(key)
        if peaks is not None:
            self._log.debug('Reference peaks for %s %s..%s from cache.', reference_key, window_start, window_end)
            return peaks

        peaks = compute(window_start, window_end)
        with self._lock:
            self._entries.setdefault(key, peaks)
            return self._entries[key]

    def _prune(self, query_start: pd.Timestamp) -> None:
        stale = [key for key in self._entries if key[2] < query_start]
        for key in stale:
            del self._entries[key]
        if stale:
            self._log.debug('Pruned %d reference peak windows.', len(stale))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
