"""Data models for the incremental build engine.

Defines the core dataclasses used throughout a build:
- SourceFile: A project file identified by its normalized relative path
- UnitState: Enum tracking where a translation unit is in one invocation
- Diagnostic: A compiler/linker message with optional source location
- CompileTask: One translation unit's work item and outcome
- BuildReport: Aggregated result of one build invocation
- CompileSignature / LinkSignature: Non-file inputs to compile and link
- CacheStats: Fingerprint cache summary
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..errors import CompileError, LinkError


class SourceKind(Enum):
    """Whether a file is compiled on its own or only included."""

    TRANSLATION_UNIT = "translation-unit"
    HEADER = "header"


@dataclass(frozen=True, order=True)
class SourceFile:
    """A project file.

    Identity (equality, hashing, ordering) is the normalized POSIX-style path
    relative to the project root, e.g. "src/main.c".
    """

    path: str
    kind: SourceKind = field(default=SourceKind.TRANSLATION_UNIT, compare=False)

    def absolute(self, project_dir: Path) -> Path:
        return project_dir / self.path

    def __str__(self) -> str:
        return self.path


class UnitState(Enum):
    """State of a translation unit within one build invocation.

    UNSEEN -> FRESH | STALE (decided once)
    STALE -> COMPILING -> COMPILED | FAILED
    FRESH -> COMPILED (no toolchain call)
    """

    UNSEEN = "unseen"
    FRESH = "fresh"
    STALE = "stale"
    COMPILING = "compiling"
    COMPILED = "compiled"
    FAILED = "failed"


class Severity(Enum):
    """Severity of a diagnostic."""

    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    """A single compiler or linker message."""

    severity: Severity
    message: str
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def format(self) -> str:
        """Format as the familiar file:line:col: severity: message."""
        location = ""
        if self.file:
            location = self.file
            if self.line is not None:
                location += f":{self.line}"
                if self.column is not None:
                    location += f":{self.column}"
            location += ": "
        return f"{location}{self.severity.value}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "message": self.message,
            "file": self.file,
            "line": self.line,
            "column": self.column,
        }


@dataclass
class CompileTask:
    """A translation unit's work item for one invocation.

    Attributes:
        unit: The translation unit
        object_path: Where the unit's object file lives
        fingerprint: Fingerprint computed before scheduling
        state: Current UnitState
        cached: True if the unit was FRESH and reused its cached object
        diagnostics: Messages produced by the compile (warnings included)
        command: The literal compiler invocation (empty for cached units)
        start_time: Monotonic timestamp when compilation started
        elapsed: Seconds spent compiling
    """

    unit: SourceFile
    object_path: Path
    fingerprint: str
    state: UnitState = UnitState.UNSEEN
    cached: bool = False
    diagnostics: list[Diagnostic] = field(default_factory=list)
    command: list[str] = field(default_factory=list)
    start_time: Optional[float] = None
    elapsed: float = 0.0

    def mark_started(self) -> None:
        """Record the start time and move to COMPILING."""
        self.state = UnitState.COMPILING
        self.start_time = time.monotonic()

    def update_elapsed(self) -> None:
        if self.start_time is not None:
            self.elapsed = time.monotonic() - self.start_time

    def fail(self, diagnostics: list[Diagnostic]) -> None:
        """Mark this task as failed with the given diagnostics."""
        self.state = UnitState.FAILED
        self.diagnostics = list(diagnostics)
        self.update_elapsed()

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit": self.unit.path,
            "object_path": str(self.object_path),
            "fingerprint": self.fingerprint,
            "state": self.state.value,
            "cached": self.cached,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "command": list(self.command),
            "elapsed": self.elapsed,
        }


@dataclass
class BuildReport:
    """Aggregated result of one build invocation.

    Attributes:
        project: Project name
        profile: Profile name ("debug" / "release")
        tasks: One CompileTask per translation unit (fresh and stale)
        artifact: Path of the linked artifact (None if the link did not run or failed)
        link_attempted: Whether the link/archive step ran
        link_diagnostics: Messages from the link/archive step
        link_command: The literal link/archive invocation
        total_elapsed: Wall-clock time in seconds
    """

    project: str
    profile: str
    tasks: list[CompileTask] = field(default_factory=list)
    artifact: Optional[Path] = None
    link_attempted: bool = False
    link_diagnostics: list[Diagnostic] = field(default_factory=list)
    link_command: list[str] = field(default_factory=list)
    total_elapsed: float = 0.0

    @property
    def failed_tasks(self) -> list[CompileTask]:
        return [t for t in self.tasks if t.state == UnitState.FAILED]

    @property
    def compiled_units(self) -> list[str]:
        """Units that were actually (re)compiled in this invocation."""
        return [t.unit.path for t in self.tasks if t.state == UnitState.COMPILED and not t.cached]

    @property
    def fresh_units(self) -> list[str]:
        """Units reused from the cache without invoking the compiler."""
        return [t.unit.path for t in self.tasks if t.cached]

    @property
    def failed_units(self) -> list[str]:
        return [t.unit.path for t in self.failed_tasks]

    @property
    def link_failed(self) -> bool:
        return self.link_attempted and self.artifact is None

    @property
    def success(self) -> bool:
        return not self.failed_tasks and self.link_attempted and self.artifact is not None

    @property
    def diagnostics(self) -> list[Diagnostic]:
        """Every diagnostic from every task, then the link step."""
        collected: list[Diagnostic] = []
        for task in self.tasks:
            collected.extend(task.diagnostics)
        collected.extend(self.link_diagnostics)
        return collected

    @property
    def warning_count(self) -> int:
        return sum(1 for d in self.diagnostics if not d.is_error)

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def raise_for_status(self) -> None:
        """Raise CompileError or LinkError if this build failed.

        Raises:
            CompileError: If any translation unit failed to compile
            LinkError: If the link/archive step failed
        """
        if self.failed_tasks:
            raise CompileError({t.unit.path: t.errors or t.diagnostics for t in self.failed_tasks})
        if self.link_failed:
            text = "\n".join(d.format() for d in self.link_diagnostics)
            raise LinkError(f"Linking {self.project} failed", tool_output=text, diagnostics=self.link_diagnostics)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "project": self.project,
            "profile": self.profile,
            "tasks": [t.to_dict() for t in self.tasks],
            "artifact": str(self.artifact) if self.artifact else None,
            "link_attempted": self.link_attempted,
            "link_diagnostics": [d.to_dict() for d in self.link_diagnostics],
            "link_command": list(self.link_command),
            "total_elapsed": self.total_elapsed,
            "success": self.success,
        }


@dataclass(frozen=True)
class CompileSignature:
    """Every non-file input that affects how a unit compiles.

    Part of each unit's fingerprint, so changing any field (a flag, a
    define, the compiler) invalidates every unit.

    Attributes:
        c_compiler: C compiler driver (e.g. "cc")
        cxx_compiler: C++ compiler driver (e.g. "c++")
        flags: Ordered compile flags (profile defaults, then project flags)
        defines: Sorted (NAME, VALUE) pairs
        include_dirs: Project include directories, in search order
        profile: Profile name
        kind: Target kind value ("executable", "static-library", ...)
        language: Project language ("c" or "cpp")
        std: Language standard for units of the project language ("" for default)
    """

    c_compiler: str
    cxx_compiler: str
    flags: tuple[str, ...]
    defines: tuple[tuple[str, str], ...]
    include_dirs: tuple[str, ...]
    profile: str
    kind: str
    language: str = "c"
    std: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "c_compiler": self.c_compiler,
            "cxx_compiler": self.cxx_compiler,
            "flags": list(self.flags),
            "defines": [list(d) for d in self.defines],
            "include_dirs": list(self.include_dirs),
            "profile": self.profile,
            "kind": self.kind,
            "language": self.language,
            "std": self.std,
        }

    def define_flags(self) -> list[str]:
        """Defines as -DNAME or -DNAME=VALUE, in sorted name order."""
        return [f"-D{name}={value}" if value != "" else f"-D{name}" for name, value in self.defines]


@dataclass(frozen=True)
class LinkSignature:
    """Inputs to the link/archive step besides the object files."""

    flags: tuple[str, ...] = ()
    libs: tuple[str, ...] = ()
    lib_dirs: tuple[str, ...] = ()
    use_cxx: bool = False


@dataclass(frozen=True)
class CacheStats:
    """Summary of the persisted fingerprint cache."""

    entry_count: int
    size_bytes: int

    def __add__(self, other: "CacheStats") -> "CacheStats":
        return CacheStats(self.entry_count + other.entry_count, self.size_bytes + other.size_bytes)
