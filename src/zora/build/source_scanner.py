"""Source tree scanning.

Discovers translation units and headers in a project and extracts the
one-level include map used to build the dependency graph. Includes are found
with a regular expression, not a preprocessor, so conditionally included
headers are always treated as dependencies.

Exclude patterns only keep files from being compiled. A header matching one
is still scanned and tracked whenever something includes it.
"""

import fnmatch
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

from ..config.paths import BUILD_DIR_NAME, TARGET_DIR_NAME
from ..config.project_config import Project
from ..errors import ResolutionError
from .models import SourceFile, SourceKind

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = frozenset({".c", ".cc", ".cpp", ".cxx", ".c++"})
HEADER_EXTENSIONS = frozenset({".h", ".hh", ".hpp", ".hxx", ".inl"})
CPP_EXTENSIONS = frozenset({".cc", ".cpp", ".cxx", ".c++"})

_INCLUDE_RE = re.compile(r'^[ \t]*#[ \t]*include[ \t]*([<"])([^">\r\n]+)[">]', re.MULTILINE)

_SKIP_DIRS = frozenset({BUILD_DIR_NAME, TARGET_DIR_NAME, "build", "__pycache__"})


def extract_includes(text: str) -> list[tuple[str, bool]]:
    """Return (target, is_quoted) for every #include directive in text."""
    return [(m.group(2).strip(), m.group(1) == '"') for m in _INCLUDE_RE.finditer(text)]


def classify(path: str) -> Optional[SourceKind]:
    """Return the SourceKind for a file name, or None if it is neither."""
    suffix = PurePosixPath(path).suffix.lower()
    if suffix in SOURCE_EXTENSIONS:
        return SourceKind.TRANSLATION_UNIT
    if suffix in HEADER_EXTENSIONS:
        return SourceKind.HEADER
    return None


def is_cpp_source(path: str) -> bool:
    return PurePosixPath(path).suffix.lower() in CPP_EXTENSIONS


@dataclass
class ScanResult:
    """Everything the scanner found.

    Attributes:
        translation_units: Sorted translation units under the source dirs
        headers: Sorted project headers (found in source/include dirs or reached by an include)
        includes: One-level include map: project path -> resolved project paths, in directive order
        unresolved: Includes that did not map to a project file (treated as external)
    """

    translation_units: list[SourceFile] = field(default_factory=list)
    headers: list[SourceFile] = field(default_factory=list)
    includes: dict[str, list[str]] = field(default_factory=dict)
    unresolved: list[ResolutionError] = field(default_factory=list)

    @property
    def has_cpp(self) -> bool:
        return any(is_cpp_source(u.path) for u in self.translation_units)


class SourceScanner:
    """Scans a project tree for sources, headers and include edges.

    Usage:
        scanner = SourceScanner(project_dir, project)
        result = scanner.scan()
    """

    def __init__(self, project_dir: Path, project: Project):
        self.project_dir = Path(project_dir)
        self.project = project
        self._root = os.path.normpath(str(self.project_dir.resolve()))

    def scan(self) -> ScanResult:
        """Walk the source and include dirs and follow includes to closure."""
        result = ScanResult()

        units = sorted(set(self._walk(self.project.source_dirs, SourceKind.TRANSLATION_UNIT)))
        headers = set(self._walk(tuple(self.project.source_dirs) + tuple(self.project.include_dirs), SourceKind.HEADER))

        visited: set[str] = set()
        pending: list[str] = [u for u in reversed(units)]
        while pending:
            rel = pending.pop()
            if rel in visited:
                continue
            visited.add(rel)

            resolved = self._scan_file(rel, result)
            result.includes[rel] = resolved
            for target in resolved:
                if classify(target) != SourceKind.TRANSLATION_UNIT:
                    headers.add(target)
                if target not in visited:
                    pending.append(target)

        result.translation_units = [SourceFile(p, SourceKind.TRANSLATION_UNIT) for p in units]
        result.headers = [SourceFile(p, SourceKind.HEADER) for p in sorted(headers)]
        for header in result.headers:
            result.includes.setdefault(header.path, [])

        logger.debug(
            f"Scanned {self.project_dir}: {len(result.translation_units)} units, "
            f"{len(result.headers)} headers, {len(result.unresolved)} external includes"
        )
        return result

    def _scan_file(self, rel: str, result: ScanResult) -> list[str]:
        path = self.project_dir / rel
        try:
            text = path.read_bytes().decode("utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Cannot read {rel}: {e}")
            return []

        resolved: list[str] = []
        for target, _quoted in extract_includes(text):
            found = self.resolve_include(rel, target)
            if found is None:
                error = ResolutionError(rel, target)
                result.unresolved.append(error)
                logger.debug(str(error))
                continue
            if found == rel:
                continue
            if found not in resolved:
                resolved.append(found)
        return resolved

    def resolve_include(self, includer: str, target: str) -> Optional[str]:
        """Map an include target to a project-relative path.

        Search order: the includer's directory, then each include dir in order.

        Returns:
            Normalized POSIX project-relative path, or None for external headers
        """
        includer_dir = str(PurePosixPath(includer).parent)
        candidates = [includer_dir] + list(self.project.include_dirs)
        for base in candidates:
            rel = self._normalize(os.path.join(base, target))
            if rel is None:
                continue
            if (self.project_dir / rel).is_file():
                return rel
        return None

    def _normalize(self, joined: str) -> Optional[str]:
        """Normalize a project-relative path, or None if it escapes the project."""
        absolute = os.path.normpath(os.path.join(self._root, joined))
        if absolute != self._root and not absolute.startswith(self._root + os.sep):
            return None
        return Path(os.path.relpath(absolute, self._root)).as_posix()

    def _is_excluded(self, rel: str) -> bool:
        return any(fnmatch.fnmatch(rel, pattern) for pattern in self.project.exclude)

    def _walk(self, dirs: Iterable[str], kind: SourceKind) -> Iterable[str]:
        for base in dirs:
            base_dir = self.project_dir / base
            if not base_dir.is_dir():
                logger.debug(f"Skipping missing directory {base_dir}")
                continue
            for dirpath, dirnames, filenames in os.walk(base_dir):
                dirnames[:] = sorted(d for d in dirnames if not d.startswith(".") and d not in _SKIP_DIRS)
                for name in sorted(filenames):
                    if classify(name) != kind:
                        continue
                    rel = self._normalize(os.path.relpath(os.path.join(dirpath, name), self.project_dir))
                    if rel is None:
                        continue
                    if kind == SourceKind.TRANSLATION_UNIT and self._is_excluded(rel):
                        continue
                    yield rel
