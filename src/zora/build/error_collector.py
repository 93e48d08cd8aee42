"""
Error Collector - Structured error collection for a build invocation.

Gathers compiler, linker and syntax-check diagnostics from every unit into
one severity-aware collection, so a failed build can report all failing
units together instead of stopping at the first.
"""

import logging
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from .models import BuildReport, Diagnostic

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity level of a build error."""

    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


@dataclass
class BuildError:
    """One diagnostic, tagged with the phase and unit that produced it."""

    severity: ErrorSeverity
    phase: str  # "compile", "link", "check"
    message: str
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    unit: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_diagnostic(cls, phase: str, diagnostic: Diagnostic, unit: Optional[str] = None) -> "BuildError":
        """Wrap a compiler diagnostic. Link errors are fatal to the invocation."""
        if not diagnostic.is_error:
            severity = ErrorSeverity.WARNING
        elif phase == "link":
            severity = ErrorSeverity.FATAL
        else:
            severity = ErrorSeverity.ERROR
        return cls(severity, phase, diagnostic.message, diagnostic.file, diagnostic.line, diagnostic.column, unit)

    @property
    def location(self) -> Optional[str]:
        """``file[:line[:column]]``, or None for errors without a file."""
        if not self.file:
            return None
        parts = [self.file]
        if self.line is not None:
            parts.append(str(self.line))
            if self.column is not None:
                parts.append(str(self.column))
        return ":".join(parts)

    def format(self) -> str:
        text = f"[{self.severity.value.upper()}] {self.phase}: {self.message}"
        if self.location:
            text += f"\n  File: {self.location}"
        if self.unit and self.unit != self.file:
            text += f"\n  Unit: {self.unit}"
        return text


class ErrorCollector:
    """
    Thread-safe collection of BuildErrors.

    Unbounded by default. With max_errors set, the oldest entry is dropped
    for each new one once full.
    """

    def __init__(self, max_errors: Optional[int] = None):
        self.max_errors = max_errors
        self._errors: deque[BuildError] = deque(maxlen=max_errors)
        self._lock = threading.Lock()

    @classmethod
    def from_report(cls, report: BuildReport) -> "ErrorCollector":
        """Collect every diagnostic of a finished build, in unit order, link last.

        Nothing is dropped, so every failing unit appears in the result.
        """
        collector = cls()
        for task in sorted(report.tasks, key=lambda t: t.unit):
            collector.add_diagnostics("compile", task.diagnostics, unit=task.unit.path)
        collector.add_diagnostics("link", report.link_diagnostics)
        return collector

    def add_error(self, error: BuildError) -> None:
        with self._lock:
            if len(self._errors) == self.max_errors:
                logger.warning(f"ErrorCollector full ({self.max_errors} errors), dropping oldest")
            self._errors.append(error)
        logger.debug(f"Collected {error.severity.value} from {error.phase}: {error.message}")

    def add_diagnostics(self, phase: str, diagnostics: Iterable[Diagnostic], unit: Optional[str] = None) -> None:
        for diagnostic in diagnostics:
            self.add_error(BuildError.from_diagnostic(phase, diagnostic, unit=unit))

    def get_errors(self, severity: Optional[ErrorSeverity] = None) -> list[BuildError]:
        """Snapshot of collected errors, optionally only one severity."""
        with self._lock:
            return [e for e in self._errors if severity is None or e.severity == severity]

    def get_error_count(self) -> dict[str, int]:
        """Counts keyed by "warnings", "errors", "fatal" and "total"."""
        with self._lock:
            return self._tally()

    def _tally(self) -> dict[str, int]:
        by_severity = Counter(e.severity for e in self._errors)
        return {
            "warnings": by_severity[ErrorSeverity.WARNING],
            "errors": by_severity[ErrorSeverity.ERROR],
            "fatal": by_severity[ErrorSeverity.FATAL],
            "total": len(self._errors),
        }

    def has_errors(self) -> bool:
        """True if anything worse than a warning was collected."""
        counts = self.get_error_count()
        return counts["errors"] + counts["fatal"] > 0

    def has_fatal_errors(self) -> bool:
        return self.get_error_count()["fatal"] > 0

    def has_warnings(self) -> bool:
        return self.get_error_count()["warnings"] > 0

    def failing_units(self) -> list[str]:
        """Units with at least one compile error, sorted."""
        with self._lock:
            units = {e.unit for e in self._errors if e.unit and e.phase == "compile" and e.severity != ErrorSeverity.WARNING}
        return sorted(units)

    def format_errors(self, max_errors: Optional[int] = None) -> str:
        """
        Render collected errors for the terminal.

        Args:
            max_errors: Show only the first N entries (None shows all)

        Returns:
            Blank-line separated entries followed by a summary line
        """
        with self._lock:
            if not self._errors:
                return "No errors"
            errors = list(self._errors)
            counts = self._tally()

        shown = errors if max_errors is None else errors[:max_errors]
        blocks = [error.format() for error in shown]
        hidden = len(errors) - len(shown)
        if hidden > 0:
            blocks.append(f"... and {hidden} more errors")
        blocks.append(f"Summary: {counts['fatal']} fatal, {counts['errors']} errors, {counts['warnings']} warnings")
        return "\n\n".join(blocks)

    def format_summary(self) -> str:
        """One line such as ``1 fatal, 2 warnings``."""
        counts = self.get_error_count()
        if counts["total"] == 0:
            return "No errors"
        return ", ".join(f"{counts[key]} {key}" for key in ("fatal", "errors", "warnings") if counts[key])

    def clear(self) -> None:
        with self._lock:
            self._errors.clear()
