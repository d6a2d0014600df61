"""
Harmonic source ingestion.

Two parsers, one per source format, each producing the same
:class:`SourceRecord` shape:

* :func:`parse_xtide_file` reads the XTide harmonics database exported as a
  PostgreSQL dump (``COPY ... FROM stdin`` blocks of tab-separated rows for
  the ``constituents``, ``data_sets`` and ``constants`` tables).
* :func:`parse_ticon_file` reads the TICON-derived JSON dataset of global
  tide-gauge stations.

A row that cannot be parsed is logged and skipped; the rest of the file is
still read.  Station ids are derived from coordinates so they stay stable
across re-ingestion; multi-depth current stations get a bin id with the
depth appended.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from .constituents import ConstituentCatalog, normalize_constituent_name, parse_definition
from .exceptions import MalformedSourceRowError, StationChainError
from .stations import (
    Harmonics,
    HarmonicTerm,
    ReferenceStation,
    StationMetadata,
    SubordinateOffsets,
    SubordinateStation,
    coordinate_id,
    depth_from_name,
    is_current_units,
    parse_meridian,
    parse_time_offset,
)

logger = logging.getLogger(__name__)

XTIDE_PROVIDER = 'xtide'
TICON_PROVIDER = 'ticon'

_NULL = '\\N'
_END_OF_COPY = '\\.'
_TABLES = {
    'COPY public.constituents ': 'constituents',
    'COPY public.data_sets ': 'data_sets',
    'COPY public.constants ': 'constants',
}
_DATA_SET_COLUMNS = 30


@dataclass
class SourceRecord:
    """One normalized station as read from a source file."""

    metadata: StationMetadata
    harmonics: Harmonics
    source_ids: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return self.metadata.key


@dataclass
class _DataSetRow:
    index: int
    name: str
    station_id: str | None
    lat: float
    lon: float
    timezone: str
    country: str | None
    units: str
    meridian: float
    datum: float
    ref_index: int | None
    low_time_offset: float
    low_level_add: float
    low_multiplier: float
    high_time_offset: float
    high_level_add: float
    high_multiplier: float
    constants: list[HarmonicTerm] = field(default_factory=list)

    @property
    def kind(self) -> str:
        return 'current' if is_current_units(self.units) else 'tide'


def _nullable(value: str) -> str | None:
    value = value.strip()
    return None if value in ('', _NULL) else value


def _float_or(value: str, default: float) -> float:
    value = _nullable(value)
    return default if value is None else float(value)


def _parse_data_set(parts: list[str]) -> _DataSetRow:
    if len(parts) < _DATA_SET_COLUMNS:
        raise MalformedSourceRowError(
            f"data_sets row has {len(parts)} columns; expected at least "
            f"{_DATA_SET_COLUMNS}."
        )
    try:
        ref_index = _nullable(parts[23])
        return _DataSetRow(
            index=int(parts[0]),
            name=parts[1].strip(),
            station_id=_nullable(parts[3]),
            lat=float(parts[4]),
            lon=float(parts[5]),
            timezone=(_nullable(parts[6]) or 'UTC').lstrip(':'),
            country=_nullable(parts[7]),
            units=_nullable(parts[8]) or 'ft',
            meridian=parse_meridian(parts[18]),
            datum=_float_or(parts[20], 0.0),
            ref_index=int(ref_index) if ref_index is not None else None,
            low_time_offset=parse_time_offset(parts[24]),
            low_level_add=_float_or(parts[25], 0.0),
            low_multiplier=_float_or(parts[26], 1.0),
            high_time_offset=parse_time_offset(parts[27]),
            high_level_add=_float_or(parts[28], 0.0),
            high_multiplier=_float_or(parts[29], 1.0),
        )
    except ValueError as ex:
        raise MalformedSourceRowError(f"Bad data_sets value: {ex}") from ex


def _parse_constant(parts: list[str]) -> tuple[int, HarmonicTerm]:
    if len(parts) < 4:
        raise MalformedSourceRowError(
            f"constants row has {len(parts)} columns; expected 4."
        )
    try:
        return int(parts[0]), HarmonicTerm(parts[1].strip(), float(parts[3]), float(parts[2]))
    except ValueError as ex:
        raise MalformedSourceRowError(f"Bad constants value: {ex}") from ex


def _row_key(row: _DataSetRow) -> tuple[str, str | None, float | None]:
    """(base id, bin id, depth) for a data set."""
    base_id = coordinate_id('X', row.lat, row.lon)
    if row.kind != 'current':
        return base_id, None, None
    suffix = depth_from_name(row.name)
    if suffix is None:
        return base_id, base_id, None
    return base_id, f"{base_id}_{suffix}", float(suffix)


def parse_xtide_file(
    path: str | Path,
    catalog: ConstituentCatalog,
    logger: logging.Logger | None = None,
) -> list[SourceRecord]:
    """
    Parse an XTide SQL dump.

    Constituent definitions found in the dump are registered in *catalog*.

    Parameters
    ----------
    path : str or Path
        XTide SQL file (ISO-8859-1).
    catalog : ConstituentCatalog
        Catalog extended with the file's constituent definitions.
    logger : logging.Logger, optional
        Logger instance for diagnostic messages.

    Returns
    -------
    list of SourceRecord
        Stations in file order.  Subordinate stations whose reference is
        missing or itself subordinate are dropped with a warning.
    """
    _log = logger or logging.getLogger(__name__)
    _log.info('Parsing XTide harmonics file: %s', path)

    rows: dict[int, _DataSetRow] = {}
    constants: dict[int, list[HarmonicTerm]] = {}
    table = None
    skipped = 0

    with open(path, encoding='iso-8859-1') as f:
        for line_no, line in enumerate(f, start=1):
            line = line.rstrip('\r\n')
            stripped = line.strip()

            if stripped == _END_OF_COPY:
                table = None
                continue
            header = next((t for prefix, t in _TABLES.items() if stripped.startswith(prefix)), None)
            if header is not None:
                table = header
                continue
            if table is None or not stripped:
                continue

            parts = line.split('\t')
            try:
                if table == 'constituents':
                    if len(parts) < 3:
                        raise MalformedSourceRowError(
                            f"constituents row has {len(parts)} columns; expected 3."
                        )
                    try:
                        speed = float(parts[2])
                    except ValueError as ex:
                        raise MalformedSourceRowError(f"Bad speed: {ex}") from ex
                    catalog.register(parse_definition(parts[0].strip(), parts[1], speed))
                elif table == 'data_sets':
                    row = _parse_data_set(parts)
                    rows[row.index] = row
                else:
                    index, term = _parse_constant(parts)
                    constants.setdefault(index, []).append(term)
            except MalformedSourceRowError as ex:
                skipped += 1
                _log.warning('Skipping malformed %s row at %s:%d: %s', table, path, line_no, ex)

    keys = {index: _row_key(row) for index, row in rows.items()}
    records = []
    for index, row in rows.items():
        base_id, bid, depth = keys[index]

        try:
            harmonics = _xtide_harmonics(row, rows, keys, constants)
        except StationChainError as ex:
            _log.warning('Dropping station %s (%d): %s', row.name, index, ex)
            continue

        if isinstance(harmonics, ReferenceStation) and not harmonics.constituents:
            _log.warning('Station %s (%d) has no constituents.', row.name, index)

        metadata = StationMetadata(
            name=row.name,
            id=base_id,
            bid=bid,
            lat=row.lat,
            lon=row.lon,
            provider=XTIDE_PROVIDER,
            region=row.country,
            timezone=row.timezone,
            units=row.units,
            depth=depth,
            kind=row.kind,
        )
        source_ids = (row.station_id,) if row.station_id else ()
        records.append(SourceRecord(metadata, harmonics, source_ids))

    _log.info(
        'Parsed %d XTide stations (%d constituents defined, %d rows skipped).',
        len(records), len(catalog), skipped,
    )
    return records


def _xtide_harmonics(
    row: _DataSetRow,
    rows: dict[int, _DataSetRow],
    keys: dict[int, tuple],
    constants: dict[int, list[HarmonicTerm]],
) -> Harmonics:
    common = dict(
        name=row.name,
        datum_offset=row.datum,
        meridian_offset=row.meridian,
        timezone=row.timezone,
        units=row.units,
        region=row.country,
        kind=row.kind,
    )
    if row.ref_index is None:
        return ReferenceStation(constituents=tuple(constants.get(row.index, ())), **common)

    reference = rows.get(row.ref_index)
    if reference is None:
        raise StationChainError(f"reference data set {row.ref_index} does not exist")
    if reference.ref_index is not None:
        raise StationChainError(
            f"reference data set {row.ref_index} is itself subordinate"
        )

    base_id, bid, _ = keys[row.ref_index]
    offsets = SubordinateOffsets(
        reference_key=bid or base_id,
        high_time_offset=row.high_time_offset,
        high_multiplier=row.high_multiplier,
        low_time_offset=row.low_time_offset,
        low_multiplier=row.low_multiplier,
        high_level_add=row.high_level_add,
        low_level_add=row.low_level_add,
    )
    return SubordinateStation(offsets=offsets, **common)


def parse_ticon_file(
    path: str | Path,
    logger: logging.Logger | None = None,
) -> list[SourceRecord]:
    """
    Parse the TICON JSON station dataset.

    The file holds either a list of station objects or an object with a
    ``stations`` list.  Each station has ``name``, ``lat``, ``lon``,
    ``timezone``, ``units``, ``datum_offset`` and ``constituents`` (a list
    of ``{name, phase, amp}``).  Phases are referenced to UTC.

    Parameters
    ----------
    path : str or Path
        JSON dataset.
    logger : logging.Logger, optional
        Logger instance for diagnostic messages.

    Returns
    -------
    list of SourceRecord
        Stations in file order; an unreadable file yields an empty list.
    """
    _log = logger or logging.getLogger(__name__)
    _log.info('Loading TICON data from: %s', path)

    try:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError) as ex:
        _log.error('Failed to parse TICON JSON %s: %s', path, ex)
        return []

    entries = data.get('stations', []) if isinstance(data, dict) else data
    records = []
    for position, entry in enumerate(entries):
        try:
            records.append(_ticon_record(entry))
        except (KeyError, TypeError, ValueError) as ex:
            _log.warning('Skipping malformed TICON station #%d in %s: %s', position, path, ex)

    _log.info('Loaded %d TICON stations from JSON.', len(records))
    return records


def _ticon_record(entry: dict) -> SourceRecord:
    name = str(entry['name'])
    lat = float(entry['lat'])
    lon = float(entry['lon'])
    units = entry.get('units') or 'm'
    kind = 'current' if is_current_units(units) else 'tide'
    timezone = entry.get('timezone') or 'UTC'
    region = entry.get('region')

    base_id = coordinate_id('T', lat, lon)
    suffix = depth_from_name(name)
    depth = float(suffix) if suffix else None
    bid = None
    if kind == 'current':
        bid = f"{base_id}_{suffix}" if suffix else base_id

    terms = tuple(
        HarmonicTerm(
            normalize_constituent_name(c['name']),
            float(c['amp']),
            float(c['phase']),
        )
        for c in entry['constituents']
    )

    metadata = StationMetadata(
        name=name, id=base_id, bid=bid, lat=lat, lon=lon,
        provider=TICON_PROVIDER, region=region, timezone=timezone,
        units=units, depth=depth, kind=kind,
    )
    harmonics = ReferenceStation(
        name=name,
        datum_offset=float(entry.get('datum_offset') or 0.0),
        meridian_offset=0.0,
        timezone=timezone,
        units=units,
        region=region,
        kind=kind,
        constituents=terms,
    )
    source_ids = (str(entry['id']),) if entry.get('id') else ()
    return SourceRecord(metadata, harmonics, source_ids)
