"""
Exception hierarchy for the harmonic prediction engine.
"""
from __future__ import annotations


class HarmonicsError(Exception):
    """Base class for all harmonic engine errors."""


class MissingSourceDataError(HarmonicsError):
    """
    One or both harmonic source files are absent.

    Raised eagerly when the engine is constructed; the
    engine never degrades to an empty catalog.
    """

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(
            'Harmonic engine requires the XTide and TICON data files. '
            f"Missing: {', '.join(self.missing)}. Set XTIDE_FILE/TICON_FILE "
            'or restore the data files.'
        )


class UnknownStationError(HarmonicsError, KeyError):
    """No station or alias is known under the requested id."""

    def __init__(self, station_id: str):
        self.station_id = station_id
        super().__init__(f"Unknown station id '{station_id}'.")

    def __str__(self) -> str:
        return self.args[0]


class MalformedSourceRowError(HarmonicsError, ValueError):
    """A single source row could not be parsed."""


class StationChainError(HarmonicsError):
    """A subordinate station references another subordinate (or itself)."""
