"""Shared fixtures for unit tests: on-disk project trees and a scripted toolchain."""

import threading
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

import pytest

from zora.build.models import CompileSignature, Diagnostic, LinkSignature, Severity, SourceFile, UnitState
from zora.build.toolchain import CompileOutcome, LinkOutcome
from zora.config.project_config import TargetKind

HELLO_MANIFEST = """\
name = "hello"
version = "0.1.0"
type = "exec"
language = "c"
"""


class FakeToolchain:
    """Records every call and returns scripted outcomes.

    compile() writes "<unit>:<unit content>" to the object path so object
    contents follow source contents; link() concatenates the objects in the
    order it received them.
    """

    c_compiler = "fake-cc"
    cxx_compiler = "fake-c++"

    def __init__(
        self,
        project_dir: Path,
        fail_units: Sequence[str] = (),
        link_fails: bool = False,
        write_objects: bool = True,
        delay: float = 0.0,
        check_diagnostics: Optional[dict[str, list[Diagnostic]]] = None,
    ):
        self.project_dir = project_dir
        self.fail_units = set(fail_units)
        self.link_fails = link_fails
        self.write_objects = write_objects
        self.delay = delay
        self.check_diagnostics = check_diagnostics or {}
        self.compiled: list[str] = []
        self.signatures: list[CompileSignature] = []
        self.links: list[tuple[list[Path], TargetKind, Path, LinkSignature]] = []
        self.checked: list[str] = []
        self.verified: list[tuple[TargetKind, bool]] = []
        self.terminated = 0
        self.cancellations_cleared = 0
        self.max_active = 0
        self._active = 0
        self._lock = threading.Lock()

    def compile(self, unit: SourceFile, signature: CompileSignature, output: Path) -> CompileOutcome:
        with self._lock:
            self.compiled.append(unit.path)
            self.signatures.append(signature)
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            if self.delay:
                time.sleep(self.delay)
            cmd = [self.c_compiler, "-c", unit.path, "-o", str(output)]
            if unit.path in self.fail_units:
                diagnostic = Diagnostic(Severity.ERROR, "expected ';' before '}' token", file=unit.path, line=3, column=5)
                return CompileOutcome(False, None, [diagnostic], cmd)
            if self.write_objects:
                output.parent.mkdir(parents=True, exist_ok=True)
                source = (self.project_dir / unit.path).read_text()
                output.write_text(f"{unit.path}:{source}")
            return CompileOutcome(True, output, [], cmd)
        finally:
            with self._lock:
                self._active -= 1

    def link(self, objects: Sequence[Path], kind: TargetKind, output: Path, signature: LinkSignature) -> LinkOutcome:
        with self._lock:
            self.links.append((list(objects), kind, output, signature))
        cmd = ["fake-ld", "-o", str(output), *(str(o) for o in objects)]
        if self.link_fails:
            return LinkOutcome(False, None, [Diagnostic(Severity.ERROR, "undefined reference to `helper'")], cmd)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text("\n".join(Path(o).read_text() for o in objects))
        return LinkOutcome(True, output, [], cmd)

    def syntax_check(self, unit: SourceFile, signature: CompileSignature) -> list[Diagnostic]:
        with self._lock:
            self.checked.append(unit.path)
        return list(self.check_diagnostics.get(unit.path, []))

    def verify(self, kind: TargetKind, use_cxx: bool) -> None:
        self.verified.append((kind, use_cxx))

    def terminate_running(self) -> None:
        self.terminated += 1

    def clear_cancellation(self) -> None:
        self.cancellations_cleared += 1


class RecordingCallback:
    """Records every progress event, in order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[tuple[str, UnitState, str]] = []

    def on_unit(self, unit: str, state: UnitState, detail: str) -> None:
        with self._lock:
            self.events.append((unit, state, detail))

    def on_link(self, state: UnitState, detail: str) -> None:
        with self._lock:
            self.events.append(("<link>", state, detail))

    def states_for(self, unit: str) -> list[UnitState]:
        with self._lock:
            return [state for name, state, _ in self.events if name == unit]


@pytest.fixture
def make_project(tmp_path) -> Callable[..., Path]:
    """Write a project tree: make_project({"src/main.c": "..."}, manifest=...)."""

    def _make(files: dict[str, str], manifest: str = HELLO_MANIFEST, name: str = "proj") -> Path:
        root = tmp_path / name
        root.mkdir(parents=True, exist_ok=True)
        (root / "project.toml").write_text(manifest)
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return root

    return _make


@pytest.fixture
def fake_toolchain() -> Callable[..., FakeToolchain]:
    """Factory for FakeToolchain(project_dir, **options)."""
    return FakeToolchain


@pytest.fixture
def recording_callback() -> Callable[[], RecordingCallback]:
    return RecordingCallback
