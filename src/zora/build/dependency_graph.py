"""Include dependency graph.

Nodes are project files; an edge A -> B means A includes B. Header cycles
(mutual includes guarded by include guards) are legal, so every traversal
carries an explicit visited set and runs iteratively.
"""

import logging
from typing import Any, Iterable, Optional

from .models import SourceFile, SourceKind
from .source_scanner import ScanResult

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Transitive include graph over a scanned project."""

    def __init__(
        self,
        translation_units: Iterable[SourceFile],
        headers: Iterable[SourceFile],
        includes: dict[str, list[str]],
    ):
        self._units: dict[str, SourceFile] = {u.path: u for u in translation_units}
        self._headers: dict[str, SourceFile] = {h.path: h for h in headers}
        self._edges: dict[str, list[str]] = {}
        self._reverse: dict[str, set[str]] = {}

        for source, targets in includes.items():
            edges = self._edges.setdefault(source, [])
            for target in targets:
                if target not in edges:
                    edges.append(target)
                self._reverse.setdefault(target, set()).add(source)

    @classmethod
    def from_scan(cls, result: ScanResult) -> "DependencyGraph":
        return cls(result.translation_units, result.headers, result.includes)

    @property
    def translation_units(self) -> list[SourceFile]:
        return sorted(self._units.values())

    @property
    def headers(self) -> list[SourceFile]:
        return sorted(self._headers.values())

    def node(self, path: str) -> SourceFile:
        """Look up a node by path.

        Raises:
            KeyError: If the path is not part of the graph
        """
        if path in self._units:
            return self._units[path]
        if path in self._headers:
            return self._headers[path]
        raise KeyError(path)

    def direct_includes(self, path: str) -> list[str]:
        """Project files included directly by path, in directive order."""
        return list(self._edges.get(path, []))

    def resolve_transitive_headers(self, unit: SourceFile, visited: Optional[set[str]] = None) -> set[SourceFile]:
        """Every project file reachable from unit through include edges.

        The unit itself is never part of its own input set, even when a
        header cycle leads back to it.

        Args:
            unit: Translation unit to start from
            visited: Optional visited set, shared across calls by the caller

        Returns:
            Set of reachable SourceFiles
        """
        if visited is None:
            visited = set()
        visited.add(unit.path)

        reached: set[SourceFile] = set()
        stack = list(reversed(self._edges.get(unit.path, [])))
        while stack:
            path = stack.pop()
            if path in visited:
                continue
            visited.add(path)
            reached.add(self._lookup(path))
            stack.extend(reversed(self._edges.get(path, [])))

        reached.discard(unit)
        return reached

    def affected_by(self, header: str | SourceFile) -> set[SourceFile]:
        """Translation units whose transitive input set contains header."""
        start = header.path if isinstance(header, SourceFile) else header
        affected: set[SourceFile] = set()
        visited: set[str] = {start}
        stack = list(self._reverse.get(start, ()))
        while stack:
            path = stack.pop()
            if path in visited:
                continue
            visited.add(path)
            if path in self._units:
                affected.add(self._units[path])
            stack.extend(self._reverse.get(path, ()))
        return affected

    def _lookup(self, path: str) -> SourceFile:
        try:
            return self.node(path)
        except KeyError:
            # Reached through an include but never classified (e.g. an included .def file)
            return SourceFile(path, SourceKind.HEADER)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the graph for info/debug output."""
        return {
            "translation_units": [u.path for u in self.translation_units],
            "headers": [h.path for h in self.headers],
            "includes": {k: list(v) for k, v in sorted(self._edges.items()) if v},
        }
