"""
Station data model.

A station's public identity (:class:`StationMetadata`) is kept apart from
the data needed to predict it.  Prediction data is one of two variants:
:class:`ReferenceStation`, which carries its own harmonic constants, or
:class:`SubordinateStation`, which carries time and level offsets applied
to the events of a reference station.  Several metadata records may share
one prediction record through its lookup key.
"""
from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import Union

UNIT_FACTORS: dict[str, float] = {
    'm': 1.0,
    'meter': 1.0,
    'meters': 1.0,
    'ft': 0.3048,
    'feet': 0.3048,
    'knots': 0.514444,
    'knot': 0.514444,
    'kt': 0.514444,
    'm/s': 1.0,
    'cm/s': 0.01,
}
"""Conversion to SI (metres or metres/second)."""

_DEPTH_PATTERN = re.compile(r'\(depth (\d+)\s*(ft|m)\)', re.IGNORECASE)
_NULL = '\\N'


def unit_factor(units: str | None) -> float:
    """Factor converting *units* to metres (lengths) or m/s (speeds)."""
    if not units:
        return 1.0
    key = units.strip().lower()
    if key in UNIT_FACTORS:
        return UNIT_FACTORS[key]
    if key.startswith('knot'):
        return UNIT_FACTORS['knots']
    return 1.0 if key.startswith('m') else UNIT_FACTORS['ft']


def is_current_units(units: str | None) -> bool:
    """True for speed units (a current station)."""
    return bool(units) and ('knot' in units.lower() or '/s' in units.lower())


def coordinate_id(prefix: str, lat: float, lon: float) -> str:
    """Stable station id derived from coordinates rounded to 1e-8 degrees."""
    digest = hashlib.sha256(f"{lat:.8f}_{lon:.8f}".encode()).hexdigest()
    return f"{prefix}{digest[:7]}"


def depth_from_name(name: str) -> str | None:
    """Depth suffix from a name such as ``'Golden Gate (depth 30 ft)'``."""
    match = _DEPTH_PATTERN.search(name or '')
    return match.group(1) if match else None


def parse_hms(value: str | None) -> float:
    """
    Parse ``[+-]HH:MM[:SS]`` into signed hours.

    Blank values and the SQL null marker yield 0.0.
    """
    if value is None:
        return 0.0
    value = value.strip()
    if not value or value == _NULL:
        return 0.0
    sign = -1.0 if value.startswith('-') else 1.0
    parts = [float(p) for p in value.lstrip('+-').split(':')]
    hours = parts[0]
    if len(parts) > 1:
        hours += parts[1] / 60.0
    if len(parts) > 2:
        hours += parts[2] / 3600.0
    return sign * hours


def parse_meridian(value: str | None) -> float:
    """Meridian offset ``'05:00:00'`` as hours from UTC."""
    return parse_hms(value)


def parse_time_offset(value: str | None) -> float:
    """Subordinate time offset as signed seconds."""
    return parse_hms(value) * 3600.0


@dataclass(frozen=True)
class HarmonicTerm:
    """One published constituent: amplitude and phase lag (degrees)."""

    name: str
    amplitude: float
    phase: float

    def __post_init__(self):
        if self.amplitude < 0:
            raise ValueError(
                f"Constituent {self.name} has negative amplitude {self.amplitude}."
            )
        object.__setattr__(self, 'phase', self.phase % 360.0)


@dataclass(frozen=True)
class SubordinateOffsets:
    """
    Event offsets of a subordinate station relative to its reference.

    Time offsets are in seconds; levels become ``value * multiplier + add``.
    High offsets apply to High/Flood events, low offsets to Low/Ebb.
    """

    reference_key: str
    high_time_offset: float = 0.0
    high_multiplier: float = 1.0
    low_time_offset: float = 0.0
    low_multiplier: float = 1.0
    high_level_add: float = 0.0
    low_level_add: float = 0.0

    @property
    def max_abs_time_offset(self) -> float:
        return max(abs(self.high_time_offset), abs(self.low_time_offset))


@dataclass(kw_only=True)
class StationHarmonics:
    """Fields shared by both prediction variants."""

    name: str
    datum_offset: float = 0.0
    meridian_offset: float = 0.0
    timezone: str = 'UTC'
    units: str = 'ft'
    region: str | None = None
    kind: str = 'tide'

    @property
    def is_subordinate(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {
            'variant': type(self).__name__,
            'name': self.name,
            'datum_offset': self.datum_offset,
            'meridian_offset': self.meridian_offset,
            'timezone': self.timezone,
            'units': self.units,
            'region': self.region,
            'kind': self.kind,
        }


@dataclass(kw_only=True)
class ReferenceStation(StationHarmonics):
    """Station predicted from its own harmonic constants."""

    constituents: tuple[HarmonicTerm, ...] = ()

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['constituents'] = [
            [c.name, c.amplitude, c.phase] for c in self.constituents
        ]
        return data


@dataclass(kw_only=True)
class SubordinateStation(StationHarmonics):
    """Station predicted by offsetting a reference station's events."""

    offsets: SubordinateOffsets

    @property
    def is_subordinate(self) -> bool:
        return True

    @property
    def reference_key(self) -> str:
        return self.offsets.reference_key

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['offsets'] = {
            'reference_key': self.offsets.reference_key,
            'high_time_offset': self.offsets.high_time_offset,
            'high_multiplier': self.offsets.high_multiplier,
            'low_time_offset': self.offsets.low_time_offset,
            'low_multiplier': self.offsets.low_multiplier,
            'high_level_add': self.offsets.high_level_add,
            'low_level_add': self.offsets.low_level_add,
        }
        return data


Harmonics = Union[ReferenceStation, SubordinateStation]


def harmonics_from_dict(data: dict) -> Harmonics:
    """Rebuild a prediction record from :meth:`StationHarmonics.to_dict`."""
    common = dict(
        name=data['name'],
        datum_offset=float(data['datum_offset']),
        meridian_offset=float(data['meridian_offset']),
        timezone=data['timezone'],
        units=data['units'],
        region=data.get('region'),
        kind=data['kind'],
    )
    if data['variant'] == 'SubordinateStation':
        return SubordinateStation(offsets=SubordinateOffsets(**data['offsets']), **common)
    terms = tuple(HarmonicTerm(n, float(a), float(p)) for n, a, p in data['constituents'])
    return ReferenceStation(constituents=terms, **common)


@dataclass
class StationMetadata:
    """Public identity of a station."""

    name: str
    id: str
    lat: float
    lon: float
    provider: str
    bid: str | None = None
    region: str | None = None
    timezone: str = 'UTC'
    units: str = 'ft'
    depth: float | None = None
    kind: str = 'tide'
    alternate_names: list[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        """Lookup key of the prediction record (bin id when present)."""
        return self.bid or self.id

    def to_dict(self) -> dict:
        return {
            'name': self.name, 'id': self.id, 'bid': self.bid,
            'lat': self.lat, 'lon': self.lon, 'provider': self.provider,
            'region': self.region, 'timezone': self.timezone,
            'units': self.units, 'depth': self.depth, 'kind': self.kind,
            'alternate_names': list(self.alternate_names),
        }

    @classmethod
    def from_dict(cls, data: dict) -> StationMetadata:
        return cls(**data)


class StationCatalog:
    """
    Merged station catalog.

    ``harmonics`` maps every known lookup key, including the keys of
    stations merged away during deduplication, to the shared prediction
    record of the surviving station.  ``aliases`` maps merged keys and
    source-specific ids to the surviving station's key.
    """

    def __init__(
        self,
        constituents,
        stations: list[StationMetadata],
        harmonics: dict[str, Harmonics],
        aliases: dict[str, str] | None = None,
    ):
        self.constituents = constituents
        self.stations = stations
        self.harmonics = harmonics
        self.aliases = dict(aliases or {})
        self._by_id: dict[str, StationMetadata] = {}
        for station in stations:
            if station.bid:
                self._by_id.setdefault(station.bid, station)
            self._by_id.setdefault(station.id, station)

    def find(self, station_id: str) -> StationMetadata | None:
        """Metadata for a station id, bin id or alias."""
        station = self._by_id.get(station_id)
        if station is None and station_id in self.aliases:
            station = self._by_id.get(self.aliases[station_id])
        return station

    def harmonics_for(self, station_id: str) -> Harmonics | None:
        """Prediction record for a lookup key, bin id, id or alias."""
        record = self.harmonics.get(station_id)
        if record is None and station_id in self.aliases:
            record = self.harmonics.get(self.aliases[station_id])
        if record is None:
            station = self._by_id.get(station_id)
            if station is not None:
                record = self.harmonics.get(station.key)
        return record

    def __len__(self) -> int:
        return len(self.stations)

    def to_dict(self) -> dict:
        """
        Serialize with each shared prediction record written once.

        ``links`` maps every lookup key to the key its record is stored
        under so shared records are shared again after loading.
        """
        records: dict[str, dict] = {}
        links: dict[str, str] = {}
        owner: dict[int, str] = {}
        for key, record in self.harmonics.items():
            stored_under = owner.setdefault(id(record), key)
            if stored_under == key:
                records[key] = record.to_dict()
            links[key] = stored_under
        return {
            'constituents': self.constituents.to_dict(),
            'stations': [s.to_dict() for s in self.stations],
            'records': records,
            'links': links,
            'aliases': self.aliases,
        }

    @classmethod
    def from_dict(cls, data: dict) -> StationCatalog:
        from .constituents import ConstituentCatalog

        records = {key: harmonics_from_dict(d) for key, d in data['records'].items()}
        harmonics = {key: records[target] for key, target in data['links'].items()}
        return cls(
            ConstituentCatalog.from_dict(data['constituents']),
            [StationMetadata.from_dict(s) for s in data['stations']],
            harmonics,
            data.get('aliases', {}),
        )
