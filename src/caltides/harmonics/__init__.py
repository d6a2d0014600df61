"""
Harmonic Prediction Subpackage

Provides functionality for:
- Constituent definitions (XTide argument and node-factor coefficients)
- Astronomical arguments and nodal corrections (f, u, V0)
- Ingestion of the XTide SQL database and the TICON JSON dataset
- Cross-source station deduplication
- Harmonic synthesis of water level and current series
- Event extraction (high/low water, max flood/ebb, slack water)
- Coarse-to-fine event search for long windows
- Fingerprinted on-disk caching
"""

from caltides.harmonics.astronomy import AstronomicalArguments, astronomical_arguments
from caltides.harmonics.cache import CacheStore, source_fingerprint
from caltides.harmonics.config import HarmonicsSettings, load_settings, read_config_section
from caltides.harmonics.constituents import (
    FALLBACK_SPEEDS,
    BasicConstituent,
    CompoundConstituent,
    ConstituentCatalog,
    normalize_constituent_name,
)
from caltides.harmonics.dedup import constituents_equal, deduplicate_stations
from caltides.harmonics.engine import HarmonicsEngine, LazyEngine, build_station_catalog
from caltides.harmonics.exceptions import (
    HarmonicsError,
    MalformedSourceRowError,
    MissingSourceDataError,
    StationChainError,
    UnknownStationError,
)
from caltides.harmonics.extremes import detect_peaks, detect_zero_crossings
from caltides.harmonics.ingest import SourceRecord, parse_ticon_file, parse_xtide_file
from caltides.harmonics.nodal import NodalFactor, NodalFactorCalculator, calculate_nodal_factors
from caltides.harmonics.optimizer import (
    ReferencePeakCache,
    find_peaks_coarse_to_fine,
    find_slack_coarse_to_fine,
)
from caltides.harmonics.prediction import apply_subordinate_offsets, synthesize
from caltides.harmonics.stations import (
    HarmonicTerm,
    ReferenceStation,
    StationCatalog,
    StationMetadata,
    SubordinateOffsets,
    SubordinateStation,
)

__all__ = [
    # Constituent definitions
    'FALLBACK_SPEEDS',
    'BasicConstituent',
    'CompoundConstituent',
    'ConstituentCatalog',
    'normalize_constituent_name',
    # Astronomy and nodal corrections
    'AstronomicalArguments',
    'astronomical_arguments',
    'NodalFactor',
    'NodalFactorCalculator',
    'calculate_nodal_factors',
    # Station model
    'HarmonicTerm',
    'ReferenceStation',
    'SubordinateOffsets',
    'SubordinateStation',
    'StationMetadata',
    'StationCatalog',
    # Ingestion and deduplication
    'SourceRecord',
    'parse_xtide_file',
    'parse_ticon_file',
    'constituents_equal',
    'deduplicate_stations',
    # Prediction and events
    'synthesize',
    'apply_subordinate_offsets',
    'detect_peaks',
    'detect_zero_crossings',
    'find_peaks_coarse_to_fine',
    'find_slack_coarse_to_fine',
    'ReferencePeakCache',
    # Caching and configuration
    'CacheStore',
    'source_fingerprint',
    'HarmonicsSettings',
    'load_settings',
    'read_config_section',
    # Engine
    'HarmonicsEngine',
    'LazyEngine',
    'build_station_catalog',
    # Errors
    'HarmonicsError',
    'MissingSourceDataError',
    'UnknownStationError',
    'MalformedSourceRowError',
    'StationChainError',
]
