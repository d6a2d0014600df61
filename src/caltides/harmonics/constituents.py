"""
Harmonic constituent definitions: the constituent catalog.

Each constituent is either *Basic* (an astronomical argument built from the
six fundamental angles, a seven-term nodal phase correction and a node
factor formula) or *Compound* (a signed combination of the thirteen base
constituents).  Definitions come from the XTide harmonics database; the base
set is built in so compound constituents always resolve.

Constituent speeds are from Schureman (1958) Special Publication No. 98.
Argument and node-factor coefficients follow the XTide ``libcongen`` tables.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Union

from .exceptions import MalformedSourceRowError

FALLBACK_SPEEDS: dict[str, float] = {
    # Long period
    'SA': 0.0410686, 'SSA': 0.0821373, 'MSM': 0.4715211, 'MM': 0.5443747,
    'MSF': 1.0158958, 'MF': 1.0980331,
    # Diurnal, beyond the bases
    '2Q1': 12.8542862, 'RHO1': 13.4715145, 'J1': 15.5854433, 'OO1': 16.1391017,
    # Semidiurnal, beyond the bases
    '2N2': 27.8953548, 'MU2': 27.9682084, 'T2': 29.9589333, 'R2': 30.0410667,
    '2SM2': 31.0158958,
    # Overtides and compounds
    '2MK3': 42.9271398, 'MO3': 42.9271398, 'MK3': 44.0251729,
    'MN4': 57.4238337, 'M4': 57.9682084, 'MS4': 58.9841042, 'S4': 60.0,
    'M6': 86.9523127, 'S6': 90.0, 'M8': 115.9364169,
}
"""
Speeds (degrees/hour, SP 98) for constituents the source files may name
without defining.  Base constituents carry their own speeds in :data:`BASES`.
"""

# Names seen in the TICON / CO-OPS datasets that differ from the XTide names.
CONSTITUENT_ALIASES: dict[str, str] = {
    'LAM2': 'LDA2',
    'LAMBDA2': 'LDA2',
    'RHO': 'RHO1',
    'M1-DUTCH': 'M1',
}


def normalize_constituent_name(name: str) -> str:
    """
    Normalize a constituent name to the upper-case XTide convention.

    Parameters
    ----------
    name : str
        Constituent name as it appears in a source file.

    Returns
    -------
    str
        Normalized name.  Unrecognized names are returned upper-cased.
    """
    cleaned = name.strip().upper()
    return CONSTITUENT_ALIASES.get(cleaned, cleaned)


@dataclass(frozen=True)
class BasicConstituent:
    """
    Constituent with its own astronomical argument.

    ``v`` weights (tau, s, h, p, p1, constant); ``u`` weights
    (xi, nu, nu', 2nu'', Q, R, Qu).
    """

    name: str
    speed: float
    v: tuple[float, ...]
    u: tuple[float, ...]
    f_formula: int

    kind = 'Basic'

    def to_dict(self) -> dict:
        return {
            'type': self.kind, 'name': self.name, 'speed': self.speed,
            'v': list(self.v), 'u': list(self.u), 'f_formula': self.f_formula,
        }


@dataclass(frozen=True)
class CompoundConstituent:
    """Constituent expressed as signed weights over :data:`BASES_ORDER`."""

    name: str
    speed: float
    coefficients: tuple[float, ...]

    kind = 'Compound'

    def to_dict(self) -> dict:
        return {
            'type': self.kind, 'name': self.name, 'speed': self.speed,
            'coefficients': list(self.coefficients),
        }


Constituent = Union[BasicConstituent, CompoundConstituent]

# Order of the base constituents addressed by compound coefficient vectors.
BASES_ORDER: list[str] = [
    'O1', 'K1', 'P1', 'M2', 'S2', 'N2', 'L2', 'K2', 'Q1', 'NU2', 'S1', 'M1',
    'LDA2',
]

BASES: dict[str, BasicConstituent] = {
    c.name: c for c in (
        BasicConstituent('O1', 13.9430356, (1, -2, 1, 0, 0, 90), (2, -1, 0, 0, 0, 0, 0), 75),
        BasicConstituent('K1', 15.0410686, (1, 0, 1, 0, 0, -90), (0, 0, -1, 0, 0, 0, 0), 227),
        BasicConstituent('P1', 14.9589314, (1, 0, -1, 0, 0, 90), (0, 0, 0, 0, 0, 0, 0), 1),
        BasicConstituent('M2', 28.9841042, (2, -2, 2, 0, 0, 0), (2, -2, 0, 0, 0, 0, 0), 78),
        BasicConstituent('S2', 30.0, (2, 0, 0, 0, 0, 0), (0, 0, 0, 0, 0, 0, 0), 1),
        BasicConstituent('N2', 28.4397295, (2, -3, 2, 1, 0, 0), (2, -2, 0, 0, 0, 0, 0), 78),
        BasicConstituent('L2', 29.5284789, (2, -1, 2, -1, 0, 180), (2, -2, 0, 0, 0, -1, 0), 215),
        BasicConstituent('K2', 30.0821373, (2, 0, 2, 0, 0, 0), (0, 0, 0, -1, 0, 0, 0), 235),
        BasicConstituent('Q1', 13.3986609, (1, -3, 1, 1, 0, 90), (2, -1, 0, 0, 0, 0, 0), 75),
        BasicConstituent('NU2', 28.5125831, (2, -3, 4, -1, 0, 0), (2, -2, 0, 0, 0, 0, 0), 78),
        BasicConstituent('S1', 15.0, (1, 0, 0, 0, 0, 0), (0, 0, 0, 0, 0, 0, 0), 1),
        BasicConstituent('M1', 14.4966939, (1, -1, 1, 1, 0, -90), (0, -1, 0, 0, 0, 0, -1), 206),
        BasicConstituent('LDA2', 29.4556253, (2, -1, 0, 1, 0, 180), (2, -2, 0, 0, 0, 0, 0), 78),
    )
}
"""Base constituents used by compound definitions."""


def parse_definition(name: str, definition: str, speed: float) -> Constituent:
    """
    Parse an XTide constituent definition string.

    ``Basic v1..v6 u1..u6 [u7] f`` or ``Compound c1..c13``.  The seventh
    ``u`` term (Qu) is absent in older databases and defaults to zero.

    Raises
    ------
    MalformedSourceRowError
        If the definition is neither Basic nor Compound or has the wrong
        number of terms.
    """
    parts = definition.split()
    if not parts:
        raise MalformedSourceRowError(f"Empty definition for constituent {name}.")

    kind = parts[0]
    try:
        if kind == 'Basic':
            if len(parts) not in (14, 15):
                raise MalformedSourceRowError(
                    f"Basic constituent {name} has {len(parts) - 1} terms; "
                    'expected 13 or 14.'
                )
            v = tuple(float(x) for x in parts[1:7])
            u = [float(x) for x in parts[7:13]]
            if len(parts) == 15:
                u.append(float(parts[13]))
                f_formula = int(parts[14])
            else:
                u.append(0.0)
                f_formula = int(parts[13])
            return BasicConstituent(name, speed, v, tuple(u), f_formula)
        if kind == 'Compound':
            coefficients = tuple(float(x) for x in parts[1:])
            if not coefficients or len(coefficients) > len(BASES_ORDER):
                raise MalformedSourceRowError(
                    f"Compound constituent {name} has {len(coefficients)} "
                    f"coefficients; expected 1-{len(BASES_ORDER)}."
                )
            return CompoundConstituent(name, speed, coefficients)
    except ValueError as ex:
        if isinstance(ex, MalformedSourceRowError):
            raise
        raise MalformedSourceRowError(
            f"Non-numeric term in definition of {name}: {ex}"
        ) from ex
    raise MalformedSourceRowError(
        f"Unknown constituent type '{kind}' for {name}."
    )


def constituent_from_dict(data: dict) -> Constituent:
    """Rebuild a constituent from :meth:`to_dict` output."""
    if data['type'] == 'Basic':
        return BasicConstituent(
            data['name'], float(data['speed']), tuple(data['v']),
            tuple(data['u']), int(data['f_formula']),
        )
    return CompoundConstituent(
        data['name'], float(data['speed']), tuple(data['coefficients']),
    )


class ConstituentCatalog:
    """
    Named constituent definitions plus speed lookup.

    Starts with :data:`BASES`; definitions read from a source file are
    added with :meth:`register` while that file is ingested and the catalog
    is treated as read-only afterwards.
    """

    def __init__(self, definitions: list[Constituent] | None = None):
        self._definitions: dict[str, Constituent] = {}
        self._aliases: dict[str, str] = {}
        for constituent in BASES.values():
            self.register(constituent)
        for constituent in definitions or ():
            self.register(constituent)

    def register(self, constituent: Constituent) -> None:
        self._definitions[constituent.name] = constituent
        self._aliases[normalize_constituent_name(constituent.name)] = constituent.name

    def resolve(self, name: str) -> str | None:
        """Return the canonical name used for *name*, or ``None``."""
        if name in self._definitions:
            return name
        normalized = normalize_constituent_name(name)
        if normalized in self._aliases:
            return self._aliases[normalized]
        if normalized in FALLBACK_SPEEDS:
            return normalized
        return None

    def get(self, name: str) -> Constituent | None:
        canonical = self.resolve(name)
        return self._definitions.get(canonical) if canonical else None

    def speed(self, name: str) -> float | None:
        """Angular speed in degrees/hour, or ``None`` if unknown."""
        canonical = self.resolve(name)
        if canonical is None:
            return None
        if canonical in self._definitions:
            return self._definitions[canonical].speed
        return FALLBACK_SPEEDS.get(canonical)

    def basic(self) -> list[BasicConstituent]:
        return [c for c in self._definitions.values() if isinstance(c, BasicConstituent)]

    def compound(self) -> list[CompoundConstituent]:
        return [c for c in self._definitions.values() if isinstance(c, CompoundConstituent)]

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __iter__(self) -> Iterator[Constituent]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def to_dict(self) -> list[dict]:
        return [c.to_dict() for c in self._definitions.values()]

    @classmethod
    def from_dict(cls, data: list[dict]) -> ConstituentCatalog:
        return cls([constituent_from_dict(d) for d in data])
