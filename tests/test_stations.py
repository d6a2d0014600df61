"""
Unit tests for station handling: the data model, the XTide and TICON
parsers, cross-source deduplication and catalog serialization.
"""
import json

import pytest

from conftest import TICON_FIXTURE, XTIDE_FIXTURE


def _reference(name, terms, units='ft', **kwargs):
    from caltides.harmonics.stations import HarmonicTerm, ReferenceStation
    return ReferenceStation(
        name=name, units=units,
        constituents=tuple(HarmonicTerm(*t) for t in terms), **kwargs,
    )


def _record(name, lat, lon, provider, harmonics, prefix='X', units='ft', source_ids=()):
    from caltides.harmonics.ingest import SourceRecord
    from caltides.harmonics.stations import StationMetadata, coordinate_id
    meta = StationMetadata(
        name=name, id=coordinate_id(prefix, lat, lon), lat=lat, lon=lon,
        provider=provider, units=units,
    )
    return SourceRecord(meta, harmonics, tuple(source_ids))


# -----------------------------------------------------------------------
# Data model tests
# -----------------------------------------------------------------------

class TestStationModel:
    """Tests for stations.py."""

    def test_coordinate_id_is_stable(self):
        """Ids depend only on the prefix and coordinates to 1e-8 degrees."""
        from caltides.harmonics.stations import coordinate_id
        a = coordinate_id('X', 42.3584, -71.0511)
        assert a == coordinate_id('X', 42.358400001, -71.0511)
        assert a != coordinate_id('T', 42.3584, -71.0511)
        assert a.startswith('X') and len(a) == 8

    def test_depth_from_name(self):
        """The depth suffix is read from '(depth N ft)' names."""
        from caltides.harmonics.stations import depth_from_name
        assert depth_from_name('Golden Gate (depth 30 ft), California Current') == '30'
        assert depth_from_name('Channel (depth 12m)') == '12'
        assert depth_from_name('Boston, Massachusetts') is None

    @pytest.mark.parametrize('text, hours', [
        ('05:00:00', 5.0),
        ('-03:30', -3.5),
        ('+00:10', 10 / 60),
        ('\\N', 0.0),
        ('', 0.0),
        (None, 0.0),
    ])
    def test_parse_hms(self, text, hours):
        """Signed HH:MM[:SS] strings parse to hours; nulls to zero."""
        from caltides.harmonics.stations import parse_hms
        assert parse_hms(text) == pytest.approx(hours)

    def test_unit_factors(self):
        """Feet and knots convert to metres and m/s."""
        from caltides.harmonics.stations import is_current_units, unit_factor
        assert unit_factor('ft') == pytest.approx(0.3048)
        assert unit_factor('Knots') == pytest.approx(0.514444)
        assert unit_factor('m') == 1.0
        assert is_current_units('knots')
        assert not is_current_units('ft')

    def test_term_validation(self):
        """Negative amplitudes are rejected and phases wrap into [0, 360)."""
        from caltides.harmonics.stations import HarmonicTerm
        assert HarmonicTerm('M2', 1.0, 370.5).phase == pytest.approx(10.5)
        assert HarmonicTerm('M2', 1.0, -30.0).phase == pytest.approx(330.0)
        with pytest.raises(ValueError, match='negative amplitude'):
            HarmonicTerm('M2', -0.1, 10.0)

    def test_variants(self):
        """Reference and subordinate variants serialize and restore."""
        from caltides.harmonics.stations import (
            SubordinateOffsets,
            SubordinateStation,
            harmonics_from_dict,
        )
        ref = _reference('Ref', [('M2', 1.0, 10.0)], meridian_offset=5.0)
        sub = SubordinateStation(
            name='Sub', offsets=SubordinateOffsets('Xabc', high_time_offset=600.0, low_multiplier=0.9),
        )
        assert not ref.is_subordinate
        assert sub.is_subordinate and sub.reference_key == 'Xabc'
        for record in (ref, sub):
            assert harmonics_from_dict(json.loads(json.dumps(record.to_dict()))) == record
        assert sub.offsets.max_abs_time_offset == 600.0


# -----------------------------------------------------------------------
# XTide parser tests
# -----------------------------------------------------------------------

class TestXTideParser:
    """Tests for ingest.parse_xtide_file."""

    def _parse(self):
        from caltides.harmonics.constituents import ConstituentCatalog
        from caltides.harmonics.ingest import parse_xtide_file
        catalog = ConstituentCatalog()
        return catalog, parse_xtide_file(XTIDE_FIXTURE, catalog)

    def test_station_count(self):
        """Malformed rows and broken subordinate chains are dropped."""
        _, records = self._parse()
        names = [r.metadata.name for r in records]
        assert len(records) == 10
        assert 'Hingham, Massachusetts' not in names
        assert 'Orphan Cove, Maine' not in names
        assert 'Truncated Row' not in names
        assert 'Bad Latitude, Nowhere' not in names

    def test_malformed_rows_are_logged(self, caplog):
        """Each malformed row produces one warning and parsing continues."""
        with caplog.at_level('WARNING', logger='caltides.harmonics'):
            self._parse()
        skipped = [r for r in caplog.records if 'Skipping malformed' in r.getMessage()]
        assert len(skipped) == 5
        dropped = [r for r in caplog.records if 'Dropping station' in r.getMessage()]
        assert len(dropped) == 2

    def test_constituent_definitions_registered(self):
        """File definitions extend the catalog; bad definitions are skipped."""
        catalog, _ = self._parse()
        assert catalog.get('M4').kind == 'Compound'
        assert catalog.get('K2').u[6] == 0.0
        assert catalog.get('BROKEN') is None
        assert catalog.get('BADSPEED') is None

    def test_reference_station_fields(self, station_ids):
        """Boston keeps its meridian, timezone, units and constants."""
        _, records = self._parse()
        boston = next(r for r in records if r.metadata.name == 'Boston, Massachusetts')
        assert boston.key == station_ids['boston']
        assert boston.metadata.provider == 'xtide'
        assert boston.metadata.timezone == 'America/New_York'
        assert boston.source_ids == ('8443970',)
        assert boston.harmonics.meridian_offset == 5.0
        assert boston.harmonics.units == 'ft'
        assert [(c.name, c.amplitude, c.phase) for c in boston.harmonics.constituents] == [
            ('M2', 4.25, 112.3), ('S2', 0.72, 145.6),
        ]

    def test_subordinate_offsets(self, station_ids):
        """max_* columns are the high offsets and min_* the low offsets."""
        _, records = self._parse()
        sub = next(r for r in records if r.metadata.name.startswith('Nantasket'))
        offsets = sub.harmonics.offsets
        assert offsets.reference_key == station_ids['boston']
        assert offsets.high_time_offset == pytest.approx(600.0)
        assert offsets.high_multiplier == pytest.approx(0.98)
        assert offsets.high_level_add == pytest.approx(0.2)
        assert offsets.low_time_offset == pytest.approx(-900.0)
        assert offsets.low_multiplier == pytest.approx(0.95)
        assert offsets.low_level_add == pytest.approx(-0.1)

    def test_current_bins(self, station_ids):
        """Depth-qualified currents get bin ids; others reuse the base id."""
        _, records = self._parse()
        by_name = {r.metadata.name.split(',')[0]: r for r in records}
        gg30 = by_name['Golden Gate (depth 30 ft)']
        assert gg30.metadata.kind == 'current'
        assert gg30.metadata.bid == station_ids['golden_gate_30']
        assert gg30.metadata.depth == 30.0
        puget = by_name['Puget Sound']
        assert puget.metadata.bid == puget.metadata.id

    def test_subordinate_current_references_bin(self, station_ids):
        """A subordinate of a binned current references the bin id."""
        _, records = self._parse()
        raccoon = next(r for r in records if r.metadata.name.startswith('Raccoon'))
        assert raccoon.harmonics.reference_key == station_ids['golden_gate_30']
        assert raccoon.harmonics.offsets.high_multiplier == pytest.approx(0.6)
        assert raccoon.harmonics.offsets.low_time_offset == pytest.approx(-1200.0)

    def test_empty_station_warns(self, caplog):
        """A reference station with no constants is kept and logged."""
        with caplog.at_level('WARNING', logger='caltides.harmonics'):
            _, records = self._parse()
        assert any(r.metadata.name.startswith('Empty Harbor') for r in records)
        assert 'has no constituents' in caplog.text


# -----------------------------------------------------------------------
# TICON parser tests
# -----------------------------------------------------------------------

class TestTiconParser:
    """Tests for ingest.parse_ticon_file."""

    def test_fixture(self, caplog):
        """Valid stations load; the broken entry is skipped with a warning."""
        from caltides.harmonics.ingest import parse_ticon_file
        with caplog.at_level('WARNING', logger='caltides.harmonics'):
            records = parse_ticon_file(TICON_FIXTURE)
        assert [r.metadata.name for r in records] == [
            'Portland, Casco Bay, Maine', 'San Francisco, California', 'Brest, France',
        ]
        assert 'Skipping malformed TICON station #3' in caplog.text

    def test_names_normalized_and_utc_meridian(self):
        """Constituent aliases are normalized; phases are UTC referenced."""
        from caltides.harmonics.ingest import parse_ticon_file
        records = {r.metadata.name: r for r in parse_ticon_file(TICON_FIXTURE)}
        portland = records['Portland, Casco Bay, Maine']
        assert portland.metadata.provider == 'ticon'
        assert portland.metadata.id.startswith('T')
        assert portland.source_ids == ('portland-me-8418150',)
        assert portland.harmonics.meridian_offset == 0.0
        assert portland.harmonics.datum_offset == pytest.approx(1.585)
        assert 'N2' in [c.name for c in portland.harmonics.constituents]
        brest = records['Brest, France']
        assert 'LDA2' in [c.name for c in brest.harmonics.constituents]

    def test_object_form(self, tmp_path):
        """A {'stations': [...]} document is accepted."""
        from caltides.harmonics.ingest import parse_ticon_file
        path = tmp_path / 'ticon.json'
        path.write_text(json.dumps({'stations': [{
            'name': 'Dover', 'lat': 51.1144, 'lon': 1.3225, 'units': 'm',
            'constituents': [{'name': 'M2', 'phase': 330.0, 'amp': 2.2}],
        }]}))
        records = parse_ticon_file(path)
        assert len(records) == 1
        assert records[0].metadata.timezone == 'UTC'
        assert records[0].source_ids == ()

    def test_invalid_json_yields_empty(self, tmp_path, caplog):
        """An unparseable file is logged and yields no stations."""
        from caltides.harmonics.ingest import parse_ticon_file
        path = tmp_path / 'broken.json'
        path.write_text('[{"name": ')
        with caplog.at_level('ERROR'):
            assert parse_ticon_file(path) == []
        assert 'Failed to parse TICON JSON' in caplog.text


# -----------------------------------------------------------------------
# Deduplication tests
# -----------------------------------------------------------------------

class TestDeduplication:
    """Tests for dedup.py."""

    def test_normalized_name_key(self):
        """Case and punctuation are ignored."""
        from caltides.harmonics.dedup import normalized_name_key
        assert normalized_name_key('Portland, Casco Bay, Maine') == 'portlandcascobaymaine'
        assert normalized_name_key('PORTLAND (Casco Bay) Maine') == 'portlandcascobaymaine'

    def test_constituents_equal_across_units(self):
        """Feet and metre records compare equal after conversion."""
        from caltides.harmonics.dedup import constituents_equal
        feet = _reference('A', [('M2', 4.45, 115.8), ('S2', 0.68, 148.2)], units='ft')
        metres = _reference('A', [('S2', 0.2073, 148.25), ('M2', 1.3564, 115.8)], units='m')
        assert constituents_equal(feet, metres)

    def test_constituents_differ(self):
        """Amplitude, phase, name and count differences are all detected."""
        from caltides.harmonics.dedup import constituents_equal
        base = _reference('A', [('M2', 1.0, 100.0), ('S2', 0.2, 120.0)], units='m')
        assert not constituents_equal(base, _reference('A', [('M2', 1.01, 100.0), ('S2', 0.2, 120.0)], units='m'))
        assert not constituents_equal(base, _reference('A', [('M2', 1.0, 100.2), ('S2', 0.2, 120.0)], units='m'))
        assert not constituents_equal(base, _reference('A', [('M2', 1.0, 100.0), ('N2', 0.2, 120.0)], units='m'))
        assert not constituents_equal(base, _reference('A', [('M2', 1.0, 100.0)], units='m'))

    def test_phase_comparison_wraps(self):
        """Phases either side of 0/360 compare by their angular distance."""
        from caltides.harmonics.dedup import constituents_equal
        a = _reference('A', [('M2', 1.0, 359.97)], units='m')
        b = _reference('A', [('M2', 1.0, 0.02)], units='m')
        assert constituents_equal(a, b)

    def test_subordinates_compare_offsets(self):
        """Subordinates equal only subordinates with identical offsets."""
        from caltides.harmonics.dedup import constituents_equal
        from caltides.harmonics.stations import SubordinateOffsets, SubordinateStation
        s1 = SubordinateStation(name='S', offsets=SubordinateOffsets('Xref', high_multiplier=0.9))
        s2 = SubordinateStation(name='S', offsets=SubordinateOffsets('Xref', high_multiplier=0.9))
        s3 = SubordinateStation(name='S', offsets=SubordinateOffsets('Xref', high_multiplier=0.8))
        assert constituents_equal(s1, s2)
        assert not constituents_equal(s1, s3)
        assert not constituents_equal(s1, _reference('S', []))

    def test_proximate_identical_stations_collapse(self):
        """Two nearby, same-named, equal stations become one canonical record."""
        from caltides.harmonics.constituents import ConstituentCatalog
        from caltides.harmonics.dedup import deduplicate_stations
        xtide = _record('Bar Harbor, Maine', 44.3917, -68.2043, 'xtide',
                        _reference('Bar Harbor, Maine', [('M2', 5.0, 100.0)], units='ft'),
                        source_ids=['8413320'])
        ticon = _record('Bar Harbor Maine', 44.3920, -68.2050, 'ticon',
                        _reference('Bar Harbor Maine', [('M2', 1.524, 100.0)], units='m'),
                        prefix='T', units='m')

        catalog = deduplicate_stations([xtide, ticon], ConstituentCatalog())
        assert len(catalog) == 1
        assert catalog.stations[0].provider == 'ticon'
        assert catalog.harmonics_for(xtide.key) is catalog.harmonics_for(ticon.key)
        assert catalog.harmonics_for('8413320') is ticon.harmonics
        assert catalog.aliases[xtide.key] == ticon.key
        assert catalog.find(xtide.key) is catalog.find(ticon.key)

    def test_distant_or_different_stations_kept(self, caplog):
        """Far-apart or constituent-different stations are not merged."""
        from caltides.harmonics.constituents import ConstituentCatalog
        from caltides.harmonics.dedup import deduplicate_stations
        a = _record('Harbor', 40.0, -70.0, 'xtide', _reference('Harbor', [('M2', 1.0, 10.0)]))
        b = _record('Harbor', 40.01, -70.01, 'xtide', _reference('Harbor', [('M2', 2.0, 10.0)]))
        c = _record('Harbor', 41.0, -70.0, 'xtide', _reference('Harbor', [('M2', 1.0, 10.0)]))
        with caplog.at_level('INFO', logger='caltides.harmonics'):
            catalog = deduplicate_stations([a, b, c], ConstituentCatalog())
        assert len(catalog) == 3
        assert 'has different constituents' in caplog.text
        assert 'Deduplicated stations: 3 -> 3' in caplog.text

    def test_canonical_tie_breaks(self):
        """Without a TICON record the shorter name, then the lower id, wins."""
        from caltides.harmonics.constituents import ConstituentCatalog
        from caltides.harmonics.dedup import deduplicate_stations
        terms = [('M2', 1.0, 10.0)]
        long_name = _record('Rock-Harbor', 40.0, -70.0, 'xtide', _reference('Rock-Harbor', terms))
        short_name = _record('RockHarbor', 40.001, -70.0, 'xtide', _reference('RockHarbor', terms))
        catalog = deduplicate_stations([long_name, short_name], ConstituentCatalog())
        assert [s.name for s in catalog.stations] == ['RockHarbor']

    def test_fixture_catalog(self, station_ids, caplog):
        """Portland merges across sources; San Francisco stays ambiguous."""
        from caltides.harmonics.engine import build_station_catalog
        with caplog.at_level('INFO', logger='caltides.harmonics'):
            catalog = build_station_catalog(XTIDE_FIXTURE, TICON_FIXTURE)

        assert len(catalog) == 12
        portland = catalog.harmonics_for(station_ids['portland_ticon'])
        assert catalog.harmonics_for(station_ids['portland_xtide']) is portland
        assert catalog.harmonics_for('8418150') is portland
        assert catalog.harmonics_for('portland-me-8418150') is portland
        assert catalog.find('8418150').provider == 'ticon'

        sf_x = catalog.harmonics_for(station_ids['san_francisco_xtide'])
        sf_t = catalog.harmonics_for(station_ids['san_francisco_ticon'])
        assert sf_x is not None and sf_t is not None and sf_x is not sf_t
        assert 'has different constituents' in caplog.text

    def test_catalog_round_trip_shares_records(self, station_ids):
        """Serialized catalogs restore shared records as shared objects."""
        from caltides.harmonics.engine import build_station_catalog
        from caltides.harmonics.stations import StationCatalog
        catalog = build_station_catalog(XTIDE_FIXTURE, TICON_FIXTURE)
        restored = StationCatalog.from_dict(json.loads(json.dumps(catalog.to_dict())))

        assert len(restored) == len(catalog)
        assert restored.harmonics_for(station_ids['portland_xtide']) is \
            restored.harmonics_for(station_ids['portland_ticon'])
        assert restored.harmonics_for(station_ids['boston']) == catalog.harmonics_for(station_ids['boston'])
        assert restored.find(station_ids['golden_gate_30']).depth == 30.0
        assert restored.constituents.get('M4') == catalog.constituents.get('M4')
