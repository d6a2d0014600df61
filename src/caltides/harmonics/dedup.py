"""
Cross-source station deduplication.

The XTide and TICON datasets overlap: the same gauge often appears in both,
sometimes with identical constants converted between feet and metres.
Stations are grouped by normalized name, clustered by proximity, and
collapsed when their constituents agree within tolerance.  Every key of a
collapsed station then resolves to the one surviving prediction record.
Nearby stations with the same name but different constants are all kept.
"""
from __future__ import annotations

import logging
import re

from .constituents import ConstituentCatalog
from .ingest import TICON_PROVIDER, SourceRecord
from .stations import (
    Harmonics,
    StationCatalog,
    StationMetadata,
    SubordinateStation,
    unit_factor,
)

logger = logging.getLogger(__name__)

PROXIMITY_DEGREES = 0.05
"""Maximum latitude and longitude separation (~5 km) for one cluster."""

AMPLITUDE_TOLERANCE = 0.005
"""Amplitude agreement in SI units (metres or m/s)."""

PHASE_TOLERANCE = 0.1
"""Phase agreement in degrees."""

_NON_ALNUM = re.compile(r'[^a-z0-9]')


def normalized_name_key(name: str) -> str:
    """Lower-case name with every non-alphanumeric character removed."""
    return _NON_ALNUM.sub('', (name or '').lower())


def is_proximate(a: StationMetadata, b: StationMetadata) -> bool:
    return (abs(a.lat - b.lat) <= PROXIMITY_DEGREES
            and abs(a.lon - b.lon) <= PROXIMITY_DEGREES)


def constituents_equal(a: Harmonics, b: Harmonics) -> bool:
    """
    True when two prediction records describe the same tide.

    Reference stations must have the same constituent names, amplitudes
    within :data:`AMPLITUDE_TOLERANCE` after unit conversion and phases
    within :data:`PHASE_TOLERANCE`.  Subordinate stations are equal only
    to subordinate stations with identical offsets.
    """
    if isinstance(a, SubordinateStation) or isinstance(b, SubordinateStation):
        return (isinstance(a, SubordinateStation)
                and isinstance(b, SubordinateStation)
                and a.offsets == b.offsets)

    c1 = sorted(a.constituents, key=lambda c: c.name)
    c2 = sorted(b.constituents, key=lambda c: c.name)
    if len(c1) != len(c2):
        return False

    f1 = unit_factor(a.units)
    f2 = unit_factor(b.units)
    for con1, con2 in zip(c1, c2):
        if con1.name != con2.name:
            return False
        if abs(con1.amplitude * f1 - con2.amplitude * f2) > AMPLITUDE_TOLERANCE:
            return False
        # Phase difference wrapped to [-180, 180]
        if abs((con1.phase - con2.phase + 180.0) % 360.0 - 180.0) > PHASE_TOLERANCE:
            return False
    return True


def _preference(record: SourceRecord) -> tuple:
    meta = record.metadata
    provider_rank = 0 if meta.provider == TICON_PROVIDER else 1
    return (provider_rank, len(meta.name), meta.id, record.key)


def deduplicate_stations(
    records: list[SourceRecord],
    constituents: ConstituentCatalog,
    logger: logging.Logger | None = None,
) -> StationCatalog:
    """
    Collapse duplicate stations into a :class:`StationCatalog`.

    Parameters
    ----------
    records : list of SourceRecord
        Stations from every source, in a deterministic order.
    constituents : ConstituentCatalog
        Constituent definitions stored with the catalog.
    logger : logging.Logger, optional
        Logger instance for diagnostic messages.

    Returns
    -------
    StationCatalog
        One metadata entry per surviving station.  Within a cluster of
        identical stations the survivor is the TICON record if any, then
        the shortest name, then the lowest id.
    """
    _log = logger or logging.getLogger(__name__)

    groups: dict[str, list[SourceRecord]] = {}
    for record in records:
        groups.setdefault(normalized_name_key(record.metadata.name), []).append(record)

    stations: list[StationMetadata] = []
    harmonics: dict[str, Harmonics] = {}
    aliases: dict[str, str] = {}

    def link(key: str, record: Harmonics, canonical: str) -> None:
        existing = harmonics.get(key)
        if existing is not None and existing is not record:
            _log.warning(
                'Station key %s already assigned; keeping the first record.', key
            )
            return
        harmonics[key] = record
        if key != canonical:
            aliases[key] = canonical

    for name_key, pool in groups.items():
        pool = list(pool)
        while pool:
            primary = pool.pop(0)
            near = [o for o in pool if is_proximate(primary.metadata, o.metadata)]
            identical = [o for o in near if constituents_equal(primary.harmonics, o.harmonics)]
            identical_ids = {id(o) for o in identical}

            for other in near:
                if id(other) not in identical_ids:
                    _log.info(
                        'Station cluster [%s] at %.4f,%.4f has different '
                        'constituents: %s vs %s',
                        name_key, primary.metadata.lat, primary.metadata.lon,
                        primary.key, other.key,
                    )

            cluster = [primary] + identical
            best = min(cluster, key=_preference)
            canonical = best.key
            link(canonical, best.harmonics, canonical)
            for member in cluster:
                link(member.key, best.harmonics, canonical)
                for source_id in member.source_ids:
                    if source_id not in harmonics:
                        aliases.setdefault(source_id, canonical)

            pool = [o for o in pool if id(o) not in identical_ids]
            stations.append(best.metadata)

    _validate_references(harmonics, _log)
    _log.info('Deduplicated stations: %d -> %d', len(records), len(stations))
    return StationCatalog(constituents, stations, harmonics, aliases)


def _validate_references(harmonics: dict[str, Harmonics], log: logging.Logger) -> None:
    """Warn about subordinates whose reference does not resolve to a reference station."""
    for key, record in harmonics.items():
        if not isinstance(record, SubordinateStation):
            continue
        reference = harmonics.get(record.reference_key)
        if reference is None or isinstance(reference, SubordinateStation):
            log.warning(
                'Subordinate station %s references %s, which is not a '
                'reference station.', key, record.reference_key,
            )
