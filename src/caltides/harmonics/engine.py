"""
Harmonic prediction engine.

:class:`HarmonicsEngine` is the long-lived context object shared by request
threads.  It owns the merged station catalog, the nodal-factor calculator
and the reference-peak cache.  The catalog is built on first access under a
lock (check, lock, re-check, build, publish) and is read-only afterwards.
When a cache directory is configured the catalog and nodal tables are
persisted under a fingerprint of both source files.

:class:`LazyEngine` is a once-cell holding a process-wide engine; tests
construct isolated :class:`HarmonicsEngine` instances directly.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable

import pandas as pd

from . import extremes, optimizer
from .astronomy import to_utc
from .cache import CacheStore, source_fingerprint
from .config import HarmonicsSettings, load_settings
from .constituents import ConstituentCatalog
from .dedup import deduplicate_stations
from .exceptions import MissingSourceDataError, UnknownStationError
from .ingest import parse_ticon_file, parse_xtide_file
from .nodal import NodalFactorCalculator
from .prediction import (
    EVENT_COLUMNS,
    apply_subordinate_offsets,
    empty_events,
    empty_series,
    synthesize,
)
from .stations import (
    Harmonics,
    ReferenceStation,
    StationCatalog,
    StationMetadata,
    SubordinateStation,
)

logger = logging.getLogger(__name__)

CATALOG_CACHE_NAME = 'stations.json'

SUBORDINATE_BUFFER = pd.Timedelta(hours=2)
"""Extra reference window around a subordinate query, beyond its time offsets."""


def build_station_catalog(
    xtide_file: str | Path,
    ticon_file: str | Path,
    logger: logging.Logger | None = None,
) -> StationCatalog:
    """Parse both sources and merge them into one deduplicated catalog."""
    _log = logger or logging.getLogger(__name__)
    constituents = ConstituentCatalog()
    records = parse_xtide_file(xtide_file, constituents, logger=_log)
    records += parse_ticon_file(ticon_file, logger=_log)
    return deduplicate_stations(records, constituents, logger=_log)


class HarmonicsEngine:
    """
    Offline tide and current predictions from harmonic constants.

    Parameters
    ----------
    settings : HarmonicsSettings
        Source files, cache directory and prediction defaults.
    logger : logging.Logger, optional
        Logger instance for diagnostic messages.

    Raises
    ------
    MissingSourceDataError
        If either source file does not exist.
    """

    def __init__(self, settings: HarmonicsSettings, logger: logging.Logger | None = None):
        self.settings = settings
        self._log = logger or logging.getLogger(__name__)

        missing = [
            str(path) for path in (settings.xtide_file, settings.ticon_file)
            if not Path(path).is_file()
        ]
        if missing:
            raise MissingSourceDataError(missing)

        self._lock = threading.Lock()
        self._catalog: StationCatalog | None = None
        self._nodal: NodalFactorCalculator | None = None
        self.reference_peaks = optimizer.ReferencePeakCache(logger=self._log)

    # -- construction ----------------------------------------------------

    @property
    def catalog(self) -> StationCatalog:
        """Merged station catalog, built on first access."""
        catalog = self._catalog
        if catalog is None:
            with self._lock:
                if self._catalog is None:
                    self._initialize()
                catalog = self._catalog
        return catalog

    @property
    def nodal(self) -> NodalFactorCalculator:
        self.catalog
        return self._nodal

    def _initialize(self) -> None:
        sources = [self.settings.xtide_file, self.settings.ticon_file]
        store = None
        if self.settings.cache_dir is not None:
            store = CacheStore(
                self.settings.cache_dir, source_fingerprint(sources), logger=self._log,
            )

        catalog = None
        if store is not None:
            data = store.load(CATALOG_CACHE_NAME)
            if data is not None:
                try:
                    catalog = StationCatalog.from_dict(data)
                    self._log.info('Loaded %d stations from cache %s.', len(catalog), store.root)
                except (KeyError, TypeError, ValueError) as ex:
                    self._log.warning('Discarding malformed station cache: %s', ex)

        if catalog is None:
            catalog = build_station_catalog(*sources, logger=self._log)
            if store is not None:
                store.save(CATALOG_CACHE_NAME, catalog.to_dict())

        self._nodal = NodalFactorCalculator(catalog.constituents, store, logger=self._log)
        self._catalog = catalog

    # -- lookups ---------------------------------------------------------

    def stations(self, kind: str | None = None) -> list[StationMetadata]:
        """All stations, optionally only ``'tide'`` or ``'current'`` ones."""
        stations = self.catalog.stations
        if kind is None:
            return list(stations)
        return [s for s in stations if s.kind == kind]

    def find_station(self, station_id: str) -> StationMetadata | None:
        """Metadata for any station id, bin id or alias; ``None`` if unknown."""
        return self.catalog.find(station_id)

    def station_harmonics(self, station_id: str) -> Harmonics:
        """
        Prediction record for *station_id*.

        Raises
        ------
        UnknownStationError
            If no station is known by that id.
        """
        record = self.catalog.harmonics_for(station_id)
        if record is None:
            raise UnknownStationError(station_id)
        return record

    def _lookup(self, station_id: str) -> Harmonics | None:
        record = self.catalog.harmonics_for(station_id)
        if record is None:
            self._log.warning('Unknown station %s; no prediction.', station_id)
        return record

    def _reference_for(self, record: SubordinateStation) -> ReferenceStation | None:
        reference = self.catalog.harmonics_for(record.reference_key)
        if not isinstance(reference, ReferenceStation):
            self._log.warning(
                'Subordinate station %s has no usable reference %s.',
                record.name, record.reference_key,
            )
            return None
        return reference

    # -- predictions -----------------------------------------------------

    def _sampler(self, station, nodal_hour, meridian_override) -> optimizer.Sampler:
        def sample(start, end, step_seconds):
            return synthesize(
                station, self.catalog.constituents, self.nodal, start, end,
                step_seconds=step_seconds, nodal_hour=nodal_hour,
                meridian_override=meridian_override, logger=self._log,
            )
        return sample

    def _step(self, step_seconds: float | None) -> float:
        if step_seconds is None:
            return self.settings.step_seconds
        if step_seconds <= 0:
            raise ValueError(f"step_seconds must be positive, got {step_seconds}.")
        return step_seconds

    def _meridian(self, record, start, meridian_override, meridian_from_timezone) -> float | None:
        if meridian_override is not None or not meridian_from_timezone:
            return meridian_override
        offset = to_utc(start).tz_convert(record.timezone).utcoffset()
        meridian = -offset.total_seconds() / 3600.0
        self._log.debug('Meridian %+.2f h from %s at %s.', meridian, record.timezone, start)
        return meridian

    def generate_predictions(
        self,
        station_id: str,
        start: datetime | pd.Timestamp | str,
        end: datetime | pd.Timestamp | str,
        step_seconds: float | None = None,
        nodal_hour: int | None = None,
        meridian_override: float | None = None,
        meridian_from_timezone: bool = False,
    ) -> pd.DataFrame:
        """
        Raw predicted series between *start* and *end*.

        Reference stations yield a uniformly stepped ``time, value, units``
        frame.  Subordinate stations have no series of their own; they
        yield their events (with a ``type`` column) derived from the
        reference station's peaks.  Unknown stations yield an empty frame.

        The meridian is *meridian_override* when given.  Otherwise, with
        *meridian_from_timezone*, it is the station timezone's offset at
        *start* in the west-positive hours of stored meridians (5.0 for EST,
        4.0 for EDT), and without either the stored meridian is used.

        Raises
        ------
        ValueError
            If *end* precedes *start* or *step_seconds* is not positive.
        """
        step_seconds = self._step(step_seconds)
        nodal_hour = self.settings.nodal_hour if nodal_hour is None else nodal_hour

        record = self._lookup(station_id)
        if record is None:
            return empty_series()
        meridian_override = self._meridian(record, start, meridian_override, meridian_from_timezone)
        if isinstance(record, SubordinateStation):
            self._log.debug('Station %s is subordinate to %s.', station_id, record.reference_key)
            return self._subordinate_events(
                record, start, end, False, step_seconds, nodal_hour, meridian_override,
            )
        return synthesize(
            record, self.catalog.constituents, self.nodal, start, end,
            step_seconds=step_seconds, nodal_hour=nodal_hour,
            meridian_override=meridian_override, logger=self._log,
        )

    def detect_peaks(
        self,
        series: pd.DataFrame,
        kind: str = 'tide',
        step_seconds: float | None = None,
    ) -> pd.DataFrame:
        """Refined peaks of *series*, labelled for a tide or current station."""
        return extremes.detect_peaks(
            series, step_seconds=step_seconds, labels=extremes.labels_for(kind), logger=self._log,
        )

    def detect_zero_crossings(self, series: pd.DataFrame) -> pd.DataFrame:
        """Interpolated slack-water events of a current series."""
        return extremes.detect_zero_crossings(series)

    def _reference_peaks(
        self,
        station: ReferenceStation,
        start: pd.Timestamp,
        end: pd.Timestamp,
        optimized: bool,
        step_seconds: float,
        nodal_hour: int,
        meridian_override: float | None,
    ) -> pd.DataFrame:
        labels = extremes.labels_for(station.kind)
        sampler = self._sampler(station, nodal_hour, meridian_override)
        if optimized:
            return optimizer.find_peaks_coarse_to_fine(
                sampler, start, end,
                coarse_step_seconds=self.settings.coarse_step_seconds,
                fine_step_seconds=self.settings.fine_step_seconds,
                fine_half_window_seconds=self.settings.fine_half_window_seconds,
                labels=labels, logger=self._log,
            )

        # One extra sample on each side so extrema at the window edges have neighbours
        pad = pd.Timedelta(seconds=step_seconds)
        series = sampler(start - pad, end + pad, step_seconds)
        peaks = extremes.detect_peaks(series, step_seconds=step_seconds, labels=labels, logger=self._log)
        return peaks[(peaks['time'] >= start) & (peaks['time'] <= end)].reset_index(drop=True)

    def _reference_slack(
        self,
        station: ReferenceStation,
        start: pd.Timestamp,
        end: pd.Timestamp,
        optimized: bool,
        step_seconds: float,
        nodal_hour: int,
        meridian_override: float | None,
    ) -> pd.DataFrame:
        sampler = self._sampler(station, nodal_hour, meridian_override)
        if optimized:
            return optimizer.find_slack_coarse_to_fine(
                sampler, start, end,
                coarse_step_seconds=self.settings.coarse_step_seconds,
                fine_step_seconds=self.settings.fine_step_seconds,
                logger=self._log,
            )
        slack = extremes.detect_zero_crossings(sampler(start, end, step_seconds))
        return slack[(slack['time'] >= start) & (slack['time'] <= end)].reset_index(drop=True)

    def _subordinate_events(
        self,
        record: SubordinateStation,
        start: datetime | pd.Timestamp | str,
        end: datetime | pd.Timestamp | str,
        optimized: bool,
        step_seconds: float,
        nodal_hour: int,
        meridian_override: float | None,
        with_slack: bool = False,
    ) -> pd.DataFrame:
        start = to_utc(start)
        end = to_utc(end)
        if end < start:
            raise ValueError(f"end ({end}) must not be before start ({start}).")
        reference = self._reference_for(record)
        if reference is None:
            return empty_events()

        buffer = SUBORDINATE_BUFFER + pd.Timedelta(seconds=record.offsets.max_abs_time_offset)
        ref_start, ref_end = start - buffer, end + buffer

        if optimized:
            peaks = self.reference_peaks.get_or_compute(
                record.reference_key, ref_start, ref_end,
                lambda ws, we: self._reference_peaks(
                    reference, ws, we, True, step_seconds, nodal_hour, meridian_override,
                ),
                variant=(nodal_hour, meridian_override),
            )
        else:
            peaks = self._reference_peaks(
                reference, ref_start, ref_end, False, step_seconds, nodal_hour, meridian_override,
            )

        mapped = apply_subordinate_offsets(peaks, record.offsets, ref_start, ref_end, units=record.units)
        frames = [mapped]
        if with_slack:
            frames.append(extremes.detect_zero_crossings(mapped))
        return _window(frames, start, end)

    def generate_peaks(
        self,
        station_id: str,
        start: datetime | pd.Timestamp | str,
        end: datetime | pd.Timestamp | str,
        optimized: bool = False,
        step_seconds: float | None = None,
        nodal_hour: int | None = None,
        meridian_override: float | None = None,
        meridian_from_timezone: bool = False,
    ) -> pd.DataFrame:
        """
        High/Low (or Flood/Ebb) events between *start* and *end*.

        With ``optimized=False`` the full window is synthesized at
        *step_seconds*; with ``optimized=True`` the coarse-to-fine search
        is used and subordinate stations share cached reference peaks.
        """
        return self._events(
            station_id, start, end, optimized, step_seconds, nodal_hour,
            meridian_override, meridian_from_timezone, with_slack=False,
        )

    def generate_peaks_optimized(
        self,
        station_id: str,
        start: datetime | pd.Timestamp | str,
        end: datetime | pd.Timestamp | str,
        nodal_hour: int | None = None,
        meridian_override: float | None = None,
        meridian_from_timezone: bool = False,
    ) -> pd.DataFrame:
        """Peaks via the coarse-to-fine search."""
        return self.generate_peaks(
            station_id, start, end, optimized=True,
            nodal_hour=nodal_hour, meridian_override=meridian_override,
            meridian_from_timezone=meridian_from_timezone,
        )

    def generate_events(
        self,
        station_id: str,
        start: datetime | pd.Timestamp | str,
        end: datetime | pd.Timestamp | str,
        optimized: bool = True,
        step_seconds: float | None = None,
        nodal_hour: int | None = None,
        meridian_override: float | None = None,
        meridian_from_timezone: bool = False,
    ) -> pd.DataFrame:
        """Peaks plus, for current stations, slack water, sorted by time."""
        return self._events(
            station_id, start, end, optimized, step_seconds, nodal_hour,
            meridian_override, meridian_from_timezone, with_slack=True,
        )

    def _events(
        self, station_id, start, end, optimized, step_seconds, nodal_hour,
        meridian_override, meridian_from_timezone, with_slack,
    ) -> pd.DataFrame:
        step_seconds = self._step(step_seconds)
        nodal_hour = self.settings.nodal_hour if nodal_hour is None else nodal_hour
        start = to_utc(start)
        end = to_utc(end)
        if end < start:
            raise ValueError(f"end ({end}) must not be before start ({start}).")

        record = self._lookup(station_id)
        if record is None:
            return empty_events()
        meridian_override = self._meridian(record, start, meridian_override, meridian_from_timezone)
        with_slack = with_slack and record.kind == 'current'

        if isinstance(record, SubordinateStation):
            return self._subordinate_events(
                record, start, end, optimized, step_seconds, nodal_hour,
                meridian_override, with_slack=with_slack,
            )

        frames = [self._reference_peaks(
            record, start, end, optimized, step_seconds, nodal_hour, meridian_override,
        )]
        if with_slack:
            frames.append(self._reference_slack(
                record, start, end, optimized, step_seconds, nodal_hour, meridian_override,
            ))
        return _window(frames, start, end)


def _window(frames: list[pd.DataFrame], start: pd.Timestamp, end: pd.Timestamp) -> pd.DataFrame:
    frames = [f for f in frames if not f.empty]
    if not frames:
        return empty_events()
    events = pd.concat(frames, ignore_index=True)
    events = events[(events['time'] >= start) & (events['time'] <= end)]
    return events.sort_values('time', kind='stable').reset_index(drop=True)[EVENT_COLUMNS]


class LazyEngine:
    """
    Thread-safe once-cell for a shared :class:`HarmonicsEngine`.

    Parameters
    ----------
    factory : callable, optional
        Builds the engine on first :meth:`get`.  Defaults to an engine
        configured by :func:`~caltides.harmonics.config.load_settings`.
    """

    def __init__(self, factory: Callable[[], HarmonicsEngine] | None = None):
        self._factory = factory or (lambda: HarmonicsEngine(load_settings()))
        self._lock = threading.Lock()
        self._engine: HarmonicsEngine | None = None

    def get(self) -> HarmonicsEngine:
        engine = self._engine
        if engine is None:
            with self._lock:
                if self._engine is None:
                    self._engine = self._factory()
                engine = self._engine
        return engine

    def reset(self) -> None:
        with self._lock:
            self._engine = None
