"""Content-fingerprint cache for incremental compilation.

Each translation unit's fingerprint is a SHA-256 over its own content, the
(path, content) pairs of every project header it reaches, and the compile
signature. A unit is stale when it has no cache entry, when the fingerprint
differs, or when the recorded object file is gone.

The cache loads a single snapshot when constructed. record() only stages
entries; flush() persists them in one atomic write. Storage is injected, so
tests can run against MemoryStorage instead of the JSON file.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

from ..errors import CacheCorruptionError
from .models import CacheStats, CompileSignature, SourceFile

logger = logging.getLogger(__name__)

CACHE_FORMAT = "zora-cache"
CACHE_VERSION = 1

ARTIFACT_OBJECT = "object"
ARTIFACT_ARCHIVE_MEMBER = "archive-member"
_ARTIFACT_KINDS = (ARTIFACT_OBJECT, ARTIFACT_ARCHIVE_MEMBER)


class CacheStorage(Protocol):
    """Where the cache document lives."""

    def load(self) -> dict[str, Any]:
        """Return the stored document, or {} if nothing is stored.

        Raises:
            CacheCorruptionError: If stored data exists but cannot be decoded
        """
        ...

    def save(self, document: dict[str, Any]) -> None: ...

    def clear(self) -> None: ...

    def size_bytes(self) -> int: ...


class JsonFileStorage:
    """Cache document stored as a JSON file, written atomically."""

    def __init__(self, cache_file: Path):
        self.cache_file = cache_file

    def load(self) -> dict[str, Any]:
        if not self.cache_file.exists():
            logger.debug(f"Cache file not found: {self.cache_file}")
            return {}
        try:
            with open(self.cache_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            raise CacheCorruptionError(f"Failed to load cache from {self.cache_file}: {e}") from e
        if not isinstance(data, dict):
            raise CacheCorruptionError(f"Cache file {self.cache_file} does not contain an object")
        return data

    def save(self, document: dict[str, Any]) -> None:
        """Save the document atomically (temp file + rename)."""
        self.cache_file.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.cache_file.with_suffix(".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, sort_keys=True)
        temp_file.replace(self.cache_file)
        logger.debug(f"Saved cache with {len(document.get('entries', {}))} entries to {self.cache_file}")

    def clear(self) -> None:
        for path in (self.cache_file, self.cache_file.with_suffix(".tmp")):
            if path.exists():
                path.unlink()

    def size_bytes(self) -> int:
        try:
            return self.cache_file.stat().st_size
        except OSError:
            return 0


class MemoryStorage:
    """In-memory cache document, for tests and dry runs."""

    def __init__(self, document: Optional[dict[str, Any]] = None):
        self.document: dict[str, Any] = json.loads(json.dumps(document)) if document else {}
        self.save_count = 0

    def load(self) -> dict[str, Any]:
        return json.loads(json.dumps(self.document))

    def save(self, document: dict[str, Any]) -> None:
        self.document = json.loads(json.dumps(document))
        self.save_count += 1

    def clear(self) -> None:
        self.document = {}

    def size_bytes(self) -> int:
        return len(json.dumps(self.document).encode("utf-8")) if self.document else 0


@dataclass(frozen=True)
class CacheEntry:
    """What the cache remembers about one translation unit."""

    unit: str
    fingerprint: str
    artifact: str
    kind: str = ARTIFACT_OBJECT
    built_at: float = 0.0

    def checksum(self) -> str:
        payload = json.dumps(
            {
                "unit": self.unit,
                "fingerprint": self.fingerprint,
                "artifact": self.artifact,
                "kind": self.kind,
                "built_at": self.built_at,
            },
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def to_record(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "artifact": self.artifact,
            "kind": self.kind,
            "built_at": self.built_at,
            "checksum": self.checksum(),
        }

    @classmethod
    def from_record(cls, unit: str, record: Any) -> "CacheEntry":
        """Decode and verify one persisted record.

        Raises:
            CacheCorruptionError: If a field is missing, mistyped or the checksum does not match
        """
        if not isinstance(record, dict):
            raise CacheCorruptionError(f"Cache record for {unit} is not an object")
        try:
            entry = cls(
                unit=unit,
                fingerprint=str(record["fingerprint"]),
                artifact=str(record["artifact"]),
                kind=str(record["kind"]),
                built_at=float(record["built_at"]),
            )
            expected = record["checksum"]
        except (KeyError, TypeError, ValueError) as e:
            raise CacheCorruptionError(f"Cache record for {unit} is incomplete: {e}") from e
        if entry.kind not in _ARTIFACT_KINDS:
            raise CacheCorruptionError(f"Cache record for {unit} has unknown artifact kind {entry.kind!r}")
        if entry.checksum() != expected:
            raise CacheCorruptionError(f"Cache record for {unit} failed checksum verification")
        return entry


def hash_file(file_path: Path) -> str:
    """SHA-256 of a file's contents, read in chunks.

    Raises:
        OSError: If the file cannot be read
    """
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def signature_digest(signature: CompileSignature) -> str:
    payload = json.dumps(signature.to_dict(), sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def format_size(size: int) -> str:
    """Human-readable byte count (bytes, KB, MB, GB)."""
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024
    if size >= gb:
        return f"{size / gb:.2f} GB"
    if size >= mb:
        return f"{size / mb:.2f} MB"
    if size >= kb:
        return f"{size / kb:.2f} KB"
    return f"{size} bytes"


class HeaderResolver(Protocol):
    def resolve_transitive_headers(self, unit: SourceFile, visited: Optional[set[str]] = None) -> set[SourceFile]: ...


class FingerprintCache:
    """Decides which translation units must be recompiled.

    Thread-safe: fingerprint() and is_stale() may be called from worker
    threads; content hashes are memoized per instance.

    Usage:
        cache = FingerprintCache(project_dir, JsonFileStorage(cache_file), graph)
        if cache.is_stale(unit, signature):
            ...compile...
            cache.record(unit, fp, object_path)
        cache.flush()
    """

    def __init__(self, project_dir: Path, storage: CacheStorage, graph: Optional[HeaderResolver] = None):
        self.project_dir = Path(project_dir)
        self.storage = storage
        self.graph = graph
        self._lock = threading.Lock()
        self._content_hashes: dict[str, str] = {}
        self._entries: dict[str, CacheEntry] = {}
        self._staged: dict[str, CacheEntry] = {}
        self.corruption: list[CacheCorruptionError] = []
        self._load_snapshot()

    def _load_snapshot(self) -> None:
        try:
            document = self.storage.load()
        except CacheCorruptionError as e:
            self._report_corruption(e)
            return
        if not document:
            return

        if document.get("format") != CACHE_FORMAT or document.get("version") != CACHE_VERSION:
            self._report_corruption(
                CacheCorruptionError(
                    f"Unrecognized cache format {document.get('format')!r} v{document.get('version')!r}"
                )
            )
            return

        entries = document.get("entries", {})
        if not isinstance(entries, dict):
            self._report_corruption(CacheCorruptionError("Cache 'entries' is not an object"))
            return

        for unit, record in entries.items():
            try:
                self._entries[unit] = CacheEntry.from_record(unit, record)
            except CacheCorruptionError as e:
                self._report_corruption(e)
        logger.debug(f"Loaded cache snapshot with {len(self._entries)} entries")

    def _report_corruption(self, error: CacheCorruptionError) -> None:
        self.corruption.append(error)
        logger.warning(f"Ignoring corrupt cache data: {error}")

    def entry(self, unit: SourceFile | str) -> Optional[CacheEntry]:
        key = unit.path if isinstance(unit, SourceFile) else unit
        with self._lock:
            return self._entries.get(key)

    @property
    def entries(self) -> dict[str, CacheEntry]:
        with self._lock:
            return dict(self._entries)

    def content_hash(self, rel_path: str) -> str:
        """SHA-256 of a project file, memoized for the life of this cache."""
        with self._lock:
            cached = self._content_hashes.get(rel_path)
        if cached is not None:
            return cached
        try:
            digest = hash_file(self.project_dir / rel_path)
        except OSError as e:
            logger.debug(f"Cannot hash {rel_path}: {e}")
            digest = "missing"
        with self._lock:
            self._content_hashes[rel_path] = digest
        return digest

    def fingerprint(
        self,
        unit: SourceFile,
        signature: CompileSignature,
        headers: Optional[Iterable[SourceFile]] = None,
    ) -> str:
        """Compute the unit's fingerprint.

        Args:
            unit: Translation unit
            signature: Effective compile signature
            headers: Transitive headers; resolved through the graph when omitted
        """
        if headers is None:
            headers = self.graph.resolve_transitive_headers(unit) if self.graph is not None else ()

        sha256 = hashlib.sha256()
        sha256.update(b"unit\0")
        sha256.update(unit.path.encode("utf-8"))
        sha256.update(b"\0")
        sha256.update(self.content_hash(unit.path).encode("ascii"))
        for header in sorted(h.path for h in headers if h.path != unit.path):
            sha256.update(b"\0header\0")
            sha256.update(header.encode("utf-8"))
            sha256.update(b"\0")
            sha256.update(self.content_hash(header).encode("ascii"))
        sha256.update(b"\0signature\0")
        sha256.update(signature_digest(signature).encode("ascii"))
        return sha256.hexdigest()

    def is_stale(
        self,
        unit: SourceFile,
        signature: CompileSignature,
        fingerprint: Optional[str] = None,
        expected_artifact: Optional[Path] = None,
    ) -> bool:
        """True if the unit must be recompiled.

        Args:
            unit: Translation unit
            signature: Effective compile signature
            fingerprint: Precomputed fingerprint, computed when omitted
            expected_artifact: Object path this build would use; a recorded
                artifact elsewhere (e.g. a moved build dir) counts as stale
        """
        entry = self.entry(unit)
        if entry is None:
            logger.debug(f"Stale (no entry): {unit.path}")
            return True
        if fingerprint is None:
            fingerprint = self.fingerprint(unit, signature)
        if entry.fingerprint != fingerprint:
            logger.debug(f"Stale (fingerprint changed): {unit.path}")
            return True
        if not self.artifact_path(entry).exists():
            logger.debug(f"Stale (artifact missing): {unit.path}")
            return True
        if expected_artifact is not None and self.artifact_path(entry).resolve() != Path(expected_artifact).resolve():
            logger.debug(f"Stale (artifact moved): {unit.path}")
            return True
        return False

    def artifact_path(self, entry: CacheEntry) -> Path:
        path = Path(entry.artifact)
        return path if path.is_absolute() else self.project_dir / path

    def record(self, unit: SourceFile, fingerprint: str, artifact_path: Path, kind: str = ARTIFACT_OBJECT) -> None:
        """Stage an entry; nothing is persisted until flush()."""
        if kind not in _ARTIFACT_KINDS:
            raise ValueError(f"Unknown artifact kind: {kind!r}")
        artifact = Path(artifact_path)
        try:
            stored = artifact.resolve().relative_to(self.project_dir.resolve()).as_posix()
        except ValueError:
            stored = str(artifact.resolve())
        entry = CacheEntry(unit=unit.path, fingerprint=fingerprint, artifact=stored, kind=kind, built_at=time.time())
        with self._lock:
            self._staged[unit.path] = entry

    @property
    def staged_count(self) -> int:
        with self._lock:
            return len(self._staged)

    def discard_staged(self) -> None:
        with self._lock:
            self._staged.clear()

    def flush(self, live_units: Optional[Iterable[str]] = None) -> int:
        """Persist all staged entries in one write.

        Args:
            live_units: Current translation units; entries for any other unit are dropped

        Returns:
            Number of entries written this flush
        """
        with self._lock:
            removed = [] if live_units is None else sorted(set(self._entries) - set(live_units) - set(self._staged))
            if not self._staged and not removed:
                return 0
            for unit in removed:
                del self._entries[unit]
            self._entries.update(self._staged)
            written = len(self._staged)
            self._staged.clear()
            document = {
                "format": CACHE_FORMAT,
                "version": CACHE_VERSION,
                "entries": {unit: entry.to_record() for unit, entry in sorted(self._entries.items())},
            }
        self.storage.save(document)
        if removed:
            logger.info(f"Dropped {len(removed)} cache entries for removed units")
        logger.info(f"Recorded {written} cache entries ({len(document['entries'])} total)")
        return written

    def clear(self) -> None:
        """Remove every entry, persisted and staged."""
        with self._lock:
            self._entries.clear()
            self._staged.clear()
            self._content_hashes.clear()
        self.storage.clear()
        logger.info("Cleared fingerprint cache")

    def stats(self) -> CacheStats:
        """Entry count and bytes used by the cache file and recorded objects."""
        entries = self.entries
        size = self.storage.size_bytes()
        for entry in entries.values():
            try:
                size += os.path.getsize(self.artifact_path(entry))
            except OSError:
                continue
        return CacheStats(entry_count=len(entries), size_bytes=size)
