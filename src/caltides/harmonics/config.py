"""
Configuration for the harmonic prediction engine.

Settings come from ``conf/harmonics.conf`` (INI) with environment variables
``XTIDE_FILE``, ``TICON_FILE`` and ``HARMONICS_CACHE_DIR`` taking precedence
over the ``[paths]`` section.  Relative paths resolve against the
repository root.
"""
from __future__ import annotations

import configparser
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[3]
DEFAULT_CONFIG_FILE = ROOT_DIR / 'conf' / 'harmonics.conf'

ENV_OVERRIDES = {
    'xtide_file': 'XTIDE_FILE',
    'ticon_file': 'TICON_FILE',
    'cache_dir': 'HARMONICS_CACHE_DIR',
}


def get_config_file() -> Path:
    """Path of the INI file, ``HARMONICS_CONFIG`` overriding the default."""
    return Path(os.environ.get('HARMONICS_CONFIG', DEFAULT_CONFIG_FILE))


def read_config_section(
    section: str,
    logger: logging.Logger | None = None,
    config_file: str | os.PathLike | None = None,
) -> dict[str, str]:
    """
    Read one section of the configuration file.

    Parameters
    ----------
    section : str
        Section name, e.g. ``'paths'``.
    logger : logging.Logger, optional
        Logger instance for diagnostic messages.
    config_file : path-like, optional
        INI file to read instead of :func:`get_config_file`.

    Returns
    -------
    dict
        Key/value pairs of the section; empty when the file or section is
        absent.
    """
    _log = logger or logging.getLogger(__name__)
    path = Path(config_file) if config_file is not None else get_config_file()

    parser = configparser.ConfigParser()
    if not parser.read(path):
        _log.warning('Config file %s not found; using defaults.', path)
        return {}
    if not parser.has_section(section):
        _log.warning('Config file %s has no [%s] section.', path, section)
        return {}
    return dict(parser.items(section))


@dataclass(frozen=True)
class HarmonicsSettings:
    """Source files, cache location and prediction defaults."""

    xtide_file: Path
    ticon_file: Path
    cache_dir: Path | None = None
    step_seconds: float = 60
    nodal_hour: int = 12
    coarse_step_seconds: float = 900
    fine_step_seconds: float = 60
    fine_half_window_seconds: float = 1800


def _resolve(value: str, root: Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else root / path


def load_settings(
    config_file: str | os.PathLike | None = None,
    logger: logging.Logger | None = None,
) -> HarmonicsSettings:
    """
    Build :class:`HarmonicsSettings` from the INI file and environment.

    Raises
    ------
    ValueError
        If a numeric prediction option cannot be parsed.
    """
    _log = logger or logging.getLogger(__name__)
    paths = read_config_section('paths', _log, config_file)
    prediction = read_config_section('prediction', _log, config_file)

    for key, env_var in ENV_OVERRIDES.items():
        if os.environ.get(env_var):
            paths[key] = os.environ[env_var]

    cache_dir = paths.get('cache_dir')
    try:
        settings = HarmonicsSettings(
            xtide_file=_resolve(paths.get('xtide_file', 'data/harmonics-dwf.sql'), ROOT_DIR),
            ticon_file=_resolve(paths.get('ticon_file', 'data/ticon.json'), ROOT_DIR),
            cache_dir=_resolve(cache_dir, ROOT_DIR) if cache_dir else None,
            step_seconds=float(prediction.get('step_seconds', 60)),
            nodal_hour=int(prediction.get('nodal_hour', 12)),
            coarse_step_seconds=float(prediction.get('coarse_step_seconds', 900)),
            fine_step_seconds=float(prediction.get('fine_step_seconds', 60)),
            fine_half_window_seconds=float(prediction.get('fine_half_window_seconds', 1800)),
        )
    except ValueError as ex:
        raise ValueError(f"Invalid [prediction] option in configuration: {ex}") from ex

    _log.debug('Harmonics settings: %s', settings)
    return settings
