"""Incremental build engine.

Scanner -> DependencyGraph -> ParallelScheduler (consults FingerprintCache)
-> Toolchain (per unit) -> cache update + BuildReport.

BuildOrchestrator in zora.build.orchestrator wires these together for a
project directory.
"""

from .build_profiles import BuildProfile
from .models import BuildReport, CacheStats, Diagnostic, Severity, SourceFile, SourceKind, UnitState

__all__ = [
    "BuildProfile",
    "BuildReport",
    "CacheStats",
    "Diagnostic",
    "Severity",
    "SourceFile",
    "SourceKind",
    "UnitState",
]
