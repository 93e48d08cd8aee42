"""Exception hierarchy for the zora build engine.

Invocation-level errors (ConfigurationError, ToolchainInvocationError) abort
before any compile is scheduled. Per-unit failures are collected into the
BuildReport and only turned into CompileError/LinkError on request through
BuildReport.raise_for_status(). ResolutionError and CacheCorruptionError are
recovered where they occur and are never raised to the caller.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .build.models import Diagnostic


class ZoraError(Exception):
    """Base class for all zora errors."""

    pass


class ConfigurationError(ZoraError):
    """Raised when project.toml is missing or describes an invalid project."""

    pass


class ResolutionError(ZoraError):
    """An #include directive that could not be mapped to a project file.

    Recorded by the scanner and treated as an external (system) header.
    """

    def __init__(self, includer: str, target: str):
        super().__init__(f"{includer}: cannot resolve include '{target}' (treated as external)")
        self.includer = includer
        self.target = target


class CompileError(ZoraError):
    """One or more translation units failed to compile."""

    def __init__(self, failures: dict[str, list["Diagnostic"]]):
        units = ", ".join(sorted(failures))
        super().__init__(f"Compilation failed for {len(failures)} unit(s): {units}")
        self.failures = failures


class LinkError(ZoraError):
    """The link/archive step failed (missing symbols, incompatible objects)."""

    def __init__(self, message: str, tool_output: str = "", diagnostics: Optional[list["Diagnostic"]] = None):
        super().__init__(message)
        self.tool_output = tool_output
        self.diagnostics = diagnostics or []


class CacheCorruptionError(ZoraError):
    """A persisted cache record (or the whole cache file) could not be read."""

    pass


class ToolchainInvocationError(ZoraError):
    """The compiler, archiver or linker executable is missing or failed to start."""

    def __init__(self, tool: str, reason: str):
        super().__init__(f"Failed to invoke '{tool}': {reason}")
        self.tool = tool
        self.reason = reason
