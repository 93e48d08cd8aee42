"""Compiler, archiver and linker invocation.

The build engine talks to the toolchain only through the narrow Toolchain
protocol below, so tests can substitute a fake that records calls and
returns scripted outcomes. GccToolchain drives gcc/clang-compatible
drivers (cc, c++) and ar.

Commands run with the project directory as the working directory, so
sources are passed project-relative and diagnostics come back with
project-relative file names.
"""

import logging
import os
import re
import shlex
import shutil
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, Sequence

from ..config.project_config import TargetKind
from ..errors import ToolchainInvocationError
from ..output import log_command
from ..subprocess_utils import safe_popen, terminate_process_tree
from .models import CompileSignature, Diagnostic, LinkSignature, Severity, SourceFile
from .source_scanner import is_cpp_source

logger = logging.getLogger(__name__)

CANCELLED_RETURNCODE = -1

# main.c:3:5: error: expected ';' before 'return'
# C:\proj\main.c:3:5: warning: unused variable 'x'
_LOCATED_RE = re.compile(
    r"^(?P<file>(?:[A-Za-z]:)?[^:\n]+):(?P<line>\d+):(?:(?P<column>\d+):)?\s*"
    r"(?P<severity>fatal error|error|warning):\s*(?P<message>.*)$"
)
# cc1: fatal error: missing.c: No such file or directory
# ld: warning: object file was built for newer version
_UNLOCATED_RE = re.compile(r"^(?P<tool>[^:\n]+):\s*(?P<severity>fatal error|error|warning):\s*(?P<message>.*)$")


def parse_diagnostics(output: str) -> list[Diagnostic]:
    """Extract gcc/clang style diagnostics from tool output."""
    diagnostics: list[Diagnostic] = []
    for raw in output.splitlines():
        line = raw.rstrip()
        match = _LOCATED_RE.match(line)
        if match:
            column = match.group("column")
            diagnostics.append(
                Diagnostic(
                    severity=_severity(match.group("severity")),
                    message=match.group("message"),
                    file=match.group("file").replace("\\", "/"),
                    line=int(match.group("line")),
                    column=int(column) if column else None,
                )
            )
            continue
        match = _UNLOCATED_RE.match(line)
        if match:
            diagnostics.append(
                Diagnostic(
                    severity=_severity(match.group("severity")),
                    message=f"{match.group('tool')}: {match.group('message')}",
                )
            )
    return diagnostics


def _severity(text: str) -> Severity:
    return Severity.WARNING if text == "warning" else Severity.ERROR


@dataclass
class CompileOutcome:
    """Result of compiling one translation unit."""

    success: bool
    artifact: Optional[Path]
    diagnostics: list[Diagnostic] = field(default_factory=list)
    command: list[str] = field(default_factory=list)
    output: str = ""


@dataclass
class LinkOutcome:
    """Result of the link/archive step."""

    success: bool
    artifact: Optional[Path]
    diagnostics: list[Diagnostic] = field(default_factory=list)
    command: list[str] = field(default_factory=list)
    output: str = ""


class Toolchain(Protocol):
    """Everything the build engine needs from a compiler toolchain."""

    def compile(self, unit: SourceFile, signature: CompileSignature, output: Path) -> CompileOutcome: ...

    def link(self, objects: Sequence[Path], kind: TargetKind, output: Path, signature: LinkSignature) -> LinkOutcome: ...

    def syntax_check(self, unit: SourceFile, signature: CompileSignature) -> list[Diagnostic]: ...

    def verify(self, kind: TargetKind, use_cxx: bool) -> None: ...

    def terminate_running(self) -> None: ...

    def clear_cancellation(self) -> None: ...

    @property
    def c_compiler(self) -> str: ...

    @property
    def cxx_compiler(self) -> str: ...


def _tool_from_env(var: str, default: str) -> list[str]:
    value = os.environ.get(var, "").strip()
    return shlex.split(value) if value else [default]


def _tmp_path(output: Path) -> Path:
    return output.with_name(output.name + ".tmp")


def _remove(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class GccToolchain:
    """Toolchain for gcc/clang-compatible drivers.

    Tools come from CC, CXX and AR when set, else cc, c++ and ar.
    """

    def __init__(
        self,
        project_dir: Path,
        c_compiler: Optional[Sequence[str]] = None,
        cxx_compiler: Optional[Sequence[str]] = None,
        archiver: Optional[Sequence[str]] = None,
        platform: Optional[str] = None,
    ):
        self.project_dir = Path(project_dir).absolute()
        self._cc = list(c_compiler) if c_compiler else _tool_from_env("CC", "cc")
        self._cxx = list(cxx_compiler) if cxx_compiler else _tool_from_env("CXX", "c++")
        self._ar = list(archiver) if archiver else _tool_from_env("AR", "ar")
        self.platform = platform or sys.platform
        self._running: set[subprocess.Popen] = set()
        self._cancelled = False
        self._lock = threading.Lock()

    @property
    def c_compiler(self) -> str:
        return " ".join(self._cc)

    @property
    def cxx_compiler(self) -> str:
        return " ".join(self._cxx)

    @property
    def archiver(self) -> str:
        return " ".join(self._ar)

    def verify(self, kind: TargetKind, use_cxx: bool) -> None:
        """Check that every tool this build needs can be found.

        Raises:
            ToolchainInvocationError: If a required executable is missing
        """
        tools = [self._cc]
        if use_cxx:
            tools.append(self._cxx)
        if kind == TargetKind.STATIC_LIBRARY:
            tools.append(self._ar)
        for tool in tools:
            if shutil.which(tool[0]) is None:
                raise ToolchainInvocationError(tool[0], "not found on PATH")

    def _driver_for(self, unit: SourceFile) -> list[str]:
        return self._cxx if is_cpp_source(unit.path) else self._cc

    def _unit_flags(self, unit: SourceFile, signature: CompileSignature) -> list[str]:
        flags: list[str] = []
        if signature.std and (signature.language == "cpp") == is_cpp_source(unit.path):
            flags.append(f"-std={signature.std}")
        flags.extend(signature.flags)
        if signature.kind == TargetKind.SHARED_LIBRARY.value and self.platform != "win32":
            flags.append("-fPIC")
        flags.extend(signature.define_flags())
        for include_dir in signature.include_dirs:
            flags.append(f"-I{include_dir}")
        return flags

    def compile_command(self, unit: SourceFile, signature: CompileSignature, output: Path) -> list[str]:
        return [*self._driver_for(unit), *self._unit_flags(unit, signature), "-c", unit.path, "-o", str(output)]

    def compile(self, unit: SourceFile, signature: CompileSignature, output: Path) -> CompileOutcome:
        """Compile one unit to output via <output>.tmp and an atomic rename.

        Raises:
            ToolchainInvocationError: If the compiler cannot be started
        """
        output = Path(output).absolute()
        output.parent.mkdir(parents=True, exist_ok=True)
        tmp = _tmp_path(output)
        _remove(tmp)
        cmd = self.compile_command(unit, signature, tmp)

        returncode, text = self._execute(cmd)
        diagnostics = parse_diagnostics(text)

        if returncode == 0 and tmp.exists():
            tmp.replace(output)
            return CompileOutcome(True, output, diagnostics, cmd, text)

        _remove(tmp)
        if not any(d.is_error for d in diagnostics):
            message = text.strip() or f"{cmd[0]} exited with code {returncode}"
            diagnostics.append(Diagnostic(Severity.ERROR, message, file=unit.path))
        return CompileOutcome(False, None, diagnostics, cmd, text)

    def link_command(
        self, objects: Sequence[Path], kind: TargetKind, output: Path, signature: LinkSignature
    ) -> list[str]:
        object_args = [str(o) for o in objects]
        if kind == TargetKind.STATIC_LIBRARY:
            # D = deterministic (zeroed timestamps/uids); BSD ar on macOS lacks it
            mode = "rcs" if self.platform == "darwin" else "rcsD"
            return [*self._ar, mode, str(output), *object_args]

        driver = self._cxx if signature.use_cxx else self._cc
        cmd = list(driver)
        if kind == TargetKind.SHARED_LIBRARY:
            cmd.append("-dynamiclib" if self.platform == "darwin" else "-shared")
        cmd.extend(signature.flags)
        cmd.extend(["-o", str(output), *object_args])
        cmd.extend(f"-L{d}" for d in signature.lib_dirs)
        cmd.extend(f"-l{lib}" for lib in signature.libs)
        return cmd

    def link(self, objects: Sequence[Path], kind: TargetKind, output: Path, signature: LinkSignature) -> LinkOutcome:
        """Produce the final artifact from all objects.

        Raises:
            ToolchainInvocationError: If the linker or archiver cannot be started
        """
        output = Path(output).absolute()
        objects = [Path(o).absolute() for o in objects]
        output.parent.mkdir(parents=True, exist_ok=True)
        tmp = _tmp_path(output)
        _remove(tmp)
        cmd = self.link_command(objects, kind, tmp, signature)

        returncode, text = self._execute(cmd)
        diagnostics = [d for d in parse_diagnostics(text) if not d.is_error]

        if returncode == 0 and tmp.exists():
            tmp.replace(output)
            return LinkOutcome(True, output, diagnostics, cmd, text)

        _remove(tmp)
        message = text.strip() or f"{cmd[0]} exited with code {returncode}"
        diagnostics.append(Diagnostic(Severity.ERROR, message))
        return LinkOutcome(False, None, diagnostics, cmd, text)

    def syntax_check(self, unit: SourceFile, signature: CompileSignature) -> list[Diagnostic]:
        """Run -fsyntax-only over one unit. Writes nothing."""
        cmd = [*self._driver_for(unit), *self._unit_flags(unit, signature), "-fsyntax-only", unit.path]
        returncode, text = self._execute(cmd)
        diagnostics = parse_diagnostics(text)
        if returncode != 0 and not any(d.is_error for d in diagnostics):
            message = text.strip() or f"{cmd[0]} exited with code {returncode}"
            diagnostics.append(Diagnostic(Severity.ERROR, message, file=unit.path))
        return diagnostics

    def _execute(self, cmd: list[str]) -> tuple[int, str]:
        log_command(cmd)
        logger.debug(f"Running: {' '.join(cmd)}")
        # Spawn and register under the lock so terminate_running() cannot miss a process
        with self._lock:
            if self._cancelled:
                logger.debug(f"Not starting {cmd[0]}: build cancelled")
                return CANCELLED_RETURNCODE, "build cancelled"
            try:
                proc = safe_popen(
                    cmd,
                    cwd=str(self.project_dir),
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                )
            except OSError as e:
                raise ToolchainInvocationError(cmd[0], str(e)) from e
            self._running.add(proc)
        try:
            stdout, _ = proc.communicate()
        finally:
            with self._lock:
                self._running.discard(proc)
        return proc.returncode, stdout or ""

    def terminate_running(self) -> None:
        """Kill every in-flight tool process (and its children).

        Also refuses to start new processes until clear_cancellation().
        """
        with self._lock:
            self._cancelled = True
            running = list(self._running)
        for proc in running:
            logger.debug(f"Terminating {proc.args!r} (pid {proc.pid})")
            terminate_process_tree(proc.pid)

    def clear_cancellation(self) -> None:
        with self._lock:
            self._cancelled = False

