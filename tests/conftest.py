"""Shared fixtures for the harmonics test suite."""
from pathlib import Path

import pytest

FIXTURES = Path(__file__).parent / 'fixtures'
XTIDE_FIXTURE = FIXTURES / 'test-xtide.sql'
TICON_FIXTURE = FIXTURES / 'test-ticon.json'


@pytest.fixture
def settings(tmp_path):
    from caltides.harmonics.config import HarmonicsSettings
    return HarmonicsSettings(
        xtide_file=XTIDE_FIXTURE,
        ticon_file=TICON_FIXTURE,
        cache_dir=tmp_path / 'cache',
    )


@pytest.fixture
def engine(settings):
    from caltides.harmonics.engine import HarmonicsEngine
    return HarmonicsEngine(settings)


@pytest.fixture
def station_ids():
    """Coordinate-derived ids of the fixture stations."""
    from caltides.harmonics.stations import coordinate_id
    return {
        'boston': coordinate_id('X', 42.3584, -71.0511),
        'portland_xtide': coordinate_id('X', 43.6567, -70.2483),
        'portland_ticon': coordinate_id('T', 43.6570, -70.2480),
        'san_francisco_xtide': coordinate_id('X', 37.8067, -122.4650),
        'san_francisco_ticon': coordinate_id('T', 37.8070, -122.4650),
        'hull': coordinate_id('X', 42.3033, -70.9200),
        'nantasket': coordinate_id('X', 42.2717, -70.8617),
        'hingham': coordinate_id('X', 42.2500, -70.8867),
        'golden_gate_30': coordinate_id('X', 37.8199, -122.4783) + '_30',
        'golden_gate_60': coordinate_id('X', 37.8199, -122.4785) + '_60',
        'puget_sound': coordinate_id('X', 47.5500, -122.3500),
        'raccoon_strait': coordinate_id('X', 37.8750, -122.4500),
        'empty_harbor': coordinate_id('X', 58.0000, -135.0000),
        'brest': coordinate_id('T', 48.3829, -4.4950),
    }
