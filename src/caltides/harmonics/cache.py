"""
On-disk cache for the merged station catalog and nodal-factor tables.

Every cache file lives under a directory named for the schema version and
a content fingerprint of both harmonic source files, so any change to the
sources (or to the cache layout) starts a fresh cache.  Files are written
to a temporary path and renamed into place because sibling processes may
share the cache directory.  A cache file that cannot be read for any reason
is treated as a miss.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
"""Bump when the serialized catalog or nodal-table layout changes."""

_CHUNK_SIZE = 1 << 20


def source_fingerprint(
    paths: Iterable[str | os.PathLike],
    schema_version: int = SCHEMA_VERSION,
) -> str:
    """
    SHA-256 over the schema version and the bytes of each source file.

    Parameters
    ----------
    paths : iterable of path-like
        Source files, in a fixed order.
    schema_version : int, optional
        Cache schema version mixed into the digest.

    Returns
    -------
    str
        Hex digest.
    """
    digest = hashlib.sha256(f"schema:{schema_version}".encode())
    for path in paths:
        size = os.path.getsize(path)
        digest.update(f"\0file:{size}\0".encode())
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b''):
                digest.update(chunk)
    return digest.hexdigest()


def atomic_write_json(path: str | os.PathLike, payload: Any) -> None:
    """Write *payload* as JSON to *path* via a temporary file and rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix='.tmp'
    )
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(payload, f)
        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, path)
    except Exception:
        os.unlink(tmp_path)
        raise


class CacheStore:
    """
    Fingerprint-scoped JSON cache rooted at *cache_dir*.

    Parameters
    ----------
    cache_dir : path-like
        Shared cache directory.
    fingerprint : str
        Content fingerprint from :func:`source_fingerprint`.
    schema_version : int, optional
        Cache layout version.
    logger : logging.Logger, optional
        Logger instance for diagnostic messages.
    """

    def __init__(
        self,
        cache_dir: str | os.PathLike,
        fingerprint: str,
        schema_version: int = SCHEMA_VERSION,
        logger: logging.Logger | None = None,
    ):
        self.cache_dir = Path(cache_dir)
        self.fingerprint = fingerprint
        self.schema_version = schema_version
        self.root = self.cache_dir / f"harmonics_v{schema_version}_{fingerprint[:16]}"
        self._log = logger or logging.getLogger(__name__)

    def path_for(self, name: str) -> Path:
        return self.root / name

    def load(self, name: str) -> Any | None:
        """
        Return the cached payload stored under *name*, or ``None``.

        Missing, unreadable, truncated or foreign files are all misses.
        """
        path = self.path_for(name)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                stored = json.load(f)
        except (OSError, ValueError) as ex:
            self._log.warning('Ignoring unreadable cache file %s: %s', path, ex)
            return None

        if (
            not isinstance(stored, dict)
            or stored.get('schema_version') != self.schema_version
            or stored.get('fingerprint') != self.fingerprint
            or 'data' not in stored
        ):
            self._log.warning('Ignoring stale or foreign cache file %s.', path)
            return None

        self._log.debug('Loaded %s from cache.', path)
        return stored['data']

    def save(self, name: str, data: Any) -> bool:
        """Persist *data* under *name*; failures are logged, not raised."""
        path = self.path_for(name)
        payload = {
            'schema_version': self.schema_version,
            'fingerprint': self.fingerprint,
            'data': data,
        }
        try:
            atomic_write_json(path, payload)
        except (OSError, TypeError, ValueError) as ex:
            self._log.warning('Failed to write cache file %s: %s', path, ex)
            return False
        self._log.debug('Cached %s.', path)
        return True
