"""CompiledCache - process-wide store of compiled artifacts.

Artifacts live in memory and, when a cache directory is configured, on disk:

    <cache_path>/
      <sha256(source path)[:40]>.json   # msgspec-encoded CompiledArtifact

The cache is a pure memo: freshness (source mtime) is decided by the compiler.
A stored artifact that cannot be read or decoded is treated as a miss.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Union

import msgspec

from bladekit.artifact import CompiledArtifact

log = logging.getLogger(__name__)

_decoder = msgspec.json.Decoder(CompiledArtifact)
_encoder = msgspec.json.Encoder()


def _cache_key(path: str) -> str:
    return hashlib.sha256(path.encode()).hexdigest()[:40]


class CompiledCache:
    """Compiled artifacts keyed by absolute source path."""

    SUFFIX = ".json"

    def __init__(self, cache_path: Optional[Union[str, Path]] = None):
        self.cache_path = Path(cache_path).expanduser() if cache_path else None
        if self.cache_path is not None:
            self.cache_path.mkdir(parents=True, exist_ok=True)

        self._entries: Dict[str, CompiledArtifact] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock(self, path: str) -> threading.Lock:
        """Get the lock serialising compile-and-store for one source path."""
        with self._guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = self._locks[path] = threading.Lock()
            return lock

    def compiled_path(self, path: str) -> Optional[Path]:
        """Get the on-disk location of a source path's artifact."""
        if self.cache_path is None:
            return None
        return self.cache_path / f"{_cache_key(path)}{self.SUFFIX}"

    def get(self, path: str, fingerprint: Optional[str] = None) -> Optional[CompiledArtifact]:
        """Get the stored artifact for a path, or None.

        Artifacts hydrated from disk are discarded when their fingerprint
        differs from ``fingerprint``.
        """
        artifact = self._entries.get(path)
        if artifact is not None:
            return artifact

        artifact = self._load(path)
        if artifact is None:
            return None
        if fingerprint is not None and artifact.fingerprint != fingerprint:
            log.debug("Discarding stored artifact for %s: directive set changed", path)
            return None

        self._entries[path] = artifact
        return artifact

    def put(self, artifact: CompiledArtifact) -> None:
        self._entries[artifact.path] = artifact
        self._store(artifact)

    def forget(self, path: str) -> None:
        self._entries.pop(path, None)
        stored = self.compiled_path(path)
        if stored is not None and stored.exists():
            stored.unlink()

    def clear(self) -> int:
        """Drop every artifact from memory and disk. Returns files removed."""
        self._entries.clear()
        removed = 0
        if self.cache_path is not None and self.cache_path.is_dir():
            for stored in self.cache_path.glob(f"*{self.SUFFIX}"):
                stored.unlink()
                removed += 1
        return removed

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _load(self, path: str) -> Optional[CompiledArtifact]:
        stored = self.compiled_path(path)
        if stored is None or not stored.exists():
            return None

        try:
            artifact = _decoder.decode(stored.read_bytes())
        except (OSError, msgspec.DecodeError) as exc:
            log.debug("Ignoring unreadable artifact %s: %s", stored, exc)
            return None

        if artifact.path != path:
            log.debug("Ignoring artifact %s: stored for %s", stored, artifact.path)
            return None
        return artifact

    def _store(self, artifact: CompiledArtifact) -> None:
        stored = self.compiled_path(artifact.path)
        if stored is None:
            return

        fd, tmp = tempfile.mkstemp(dir=stored.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(_encoder.encode(artifact))
            os.replace(tmp, stored)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
