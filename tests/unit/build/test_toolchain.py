"""Tests for the gcc/clang toolchain driver."""

from pathlib import Path
from unittest.mock import patch

import pytest

from zora.build.models import CompileSignature, LinkSignature, Severity, SourceFile
from zora.build.toolchain import GccToolchain, parse_diagnostics
from zora.config.project_config import TargetKind
from zora.errors import ToolchainInvocationError


def _signature(**overrides):
    fields = dict(
        c_compiler="cc",
        cxx_compiler="c++",
        flags=("-O0", "-g"),
        defines=(("DEBUG", ""), ("LEVEL", "2")),
        include_dirs=("include", "third_party"),
        profile="debug",
        kind="executable",
        language="c",
        std="c11",
    )
    fields.update(overrides)
    return CompileSignature(**fields)


class FakePopen:
    """Stands in for subprocess.Popen; writes the -o target on success."""

    def __init__(self, cmd, returncode=0, output="", write_output=True, **kwargs):
        self.args = cmd
        self.kwargs = kwargs
        self.pid = 4242
        self.returncode = None
        self._returncode = returncode
        self._output = output
        self._write_output = write_output

    def communicate(self):
        if self._write_output and self._returncode == 0:
            target = self._target()
            if target is not None:
                Path(self.kwargs["cwd"], target).write_bytes(b"obj")
        self.returncode = self._returncode
        return self._output, None

    def _target(self):
        if "-o" in self.args:
            return self.args[self.args.index("-o") + 1]
        if self.args[1] in ("rcs", "rcsD"):
            return self.args[2]
        return None


def _popen_factory(calls, **behavior):
    def factory(cmd, **kwargs):
        proc = FakePopen(cmd, **behavior, **kwargs)
        calls.append(proc)
        return proc

    return factory


class TestParseDiagnostics:
    def test_located_error_and_warning(self):
        text = (
            "src/main.c: In function 'main':\n"
            "src/main.c:3:5: error: expected ';' before 'return'\n"
            "include/util.h:10: warning: unused macro\n"
        )
        diags = parse_diagnostics(text)

        assert len(diags) == 2
        assert diags[0].severity == Severity.ERROR
        assert (diags[0].file, diags[0].line, diags[0].column) == ("src/main.c", 3, 5)
        assert diags[0].message == "expected ';' before 'return'"
        assert diags[1].severity == Severity.WARNING
        assert (diags[1].line, diags[1].column) == (10, None)

    def test_fatal_error_is_error(self):
        diags = parse_diagnostics("src/a.c:1:10: fatal error: missing.h: No such file or directory")
        assert diags[0].severity == Severity.ERROR
        assert diags[0].message == "missing.h: No such file or directory"

    def test_windows_drive_path(self):
        diags = parse_diagnostics("C:\\proj\\main.c:3:5: warning: unused variable 'x'")
        assert diags[0].file == "C:/proj/main.c"
        assert diags[0].line == 3

    def test_unlocated_tool_message(self):
        diags = parse_diagnostics("ld: error: undefined symbol: helper")
        assert diags[0].file is None
        assert diags[0].message == "ld: undefined symbol: helper"

    def test_noise_ignored(self):
        assert parse_diagnostics("    3 |     return 0\n      |     ^\n1 error generated.\n") == []


class TestCommands:
    @pytest.fixture
    def toolchain(self, tmp_path):
        return GccToolchain(tmp_path, c_compiler=["gcc"], cxx_compiler=["g++"], archiver=["ar"], platform="linux")

    def test_compile_command_c(self, toolchain):
        cmd = toolchain.compile_command(SourceFile("src/main.c"), _signature(), Path("obj/main.c.o"))
        assert cmd == [
            "gcc",
            "-std=c11",
            "-O0",
            "-g",
            "-DDEBUG",
            "-DLEVEL=2",
            "-Iinclude",
            "-Ithird_party",
            "-c",
            "src/main.c",
            "-o",
            str(Path("obj/main.c.o")),
        ]

    def test_cpp_unit_uses_cxx_without_c_std(self, toolchain):
        cmd = toolchain.compile_command(SourceFile("src/lib.cpp"), _signature(), Path("lib.o"))
        assert cmd[0] == "g++"
        assert "-std=c11" not in cmd

    def test_shared_library_gets_pic(self, toolchain):
        cmd = toolchain.compile_command(SourceFile("a.c"), _signature(kind="shared-library"), Path("a.o"))
        assert "-fPIC" in cmd

    def test_executable_link_command(self, toolchain):
        sig = LinkSignature(flags=("-s",), libs=("m",), lib_dirs=("vendor/lib",))
        cmd = toolchain.link_command([Path("a.o"), Path("b.o")], TargetKind.EXECUTABLE, Path("out/app"), sig)
        assert cmd == ["gcc", "-s", "-o", str(Path("out/app")), "a.o", "b.o", "-Lvendor/lib", "-lm"]

    def test_cxx_link_uses_cxx_driver(self, toolchain):
        cmd = toolchain.link_command([Path("a.o")], TargetKind.EXECUTABLE, Path("app"), LinkSignature(use_cxx=True))
        assert cmd[0] == "g++"

    def test_static_library_uses_archiver(self, toolchain, tmp_path):
        cmd = toolchain.link_command([Path("a.o")], TargetKind.STATIC_LIBRARY, Path("libx.a"), LinkSignature())
        assert cmd == ["ar", "rcsD", "libx.a", "a.o"]

        darwin = GccToolchain(tmp_path, archiver=["ar"], platform="darwin")
        assert darwin.link_command([Path("a.o")], TargetKind.STATIC_LIBRARY, Path("libx.a"), LinkSignature())[1] == "rcs"

    def test_shared_library_flag_per_platform(self, toolchain, tmp_path):
        linux = toolchain.link_command([Path("a.o")], TargetKind.SHARED_LIBRARY, Path("libx.so"), LinkSignature())
        darwin = GccToolchain(tmp_path, c_compiler=["cc"], platform="darwin").link_command(
            [Path("a.o")], TargetKind.SHARED_LIBRARY, Path("libx.dylib"), LinkSignature()
        )
        assert "-shared" in linux
        assert "-dynamiclib" in darwin

    def test_tools_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CC", "ccache clang")
        monkeypatch.setenv("CXX", "clang++")
        toolchain = GccToolchain(tmp_path)

        assert toolchain.c_compiler == "ccache clang"
        assert toolchain.cxx_compiler == "clang++"
        assert toolchain.archiver == "ar"


class TestExecution:
    @pytest.fixture
    def toolchain(self, tmp_path):
        (tmp_path / "src").mkdir()
        return GccToolchain(tmp_path, c_compiler=["cc"], cxx_compiler=["c++"], archiver=["ar"], platform="linux")

    def test_compile_success_renames_temp_output(self, toolchain, tmp_path):
        calls = []
        output = tmp_path / ".build" / "debug" / "obj" / "src" / "main.c.o"
        with patch("zora.build.toolchain.safe_popen", side_effect=_popen_factory(calls)):
            outcome = toolchain.compile(SourceFile("src/main.c"), _signature(), output)

        assert outcome.success
        assert outcome.artifact == output
        assert output.read_bytes() == b"obj"
        assert not output.with_name("main.c.o.tmp").exists()
        assert calls[0].args[-1].endswith("main.c.o.tmp")
        assert calls[0].kwargs["cwd"] == str(tmp_path)

    def test_compile_failure_keeps_no_object(self, toolchain, tmp_path):
        calls = []
        output = tmp_path / "obj" / "main.c.o"
        text = "src/main.c:3:5: error: expected ';' before 'return'\n"
        with patch("zora.build.toolchain.safe_popen", side_effect=_popen_factory(calls, returncode=1, output=text)):
            outcome = toolchain.compile(SourceFile("src/main.c"), _signature(), output)

        assert not outcome.success
        assert outcome.artifact is None
        assert not output.exists()
        assert [d.format() for d in outcome.diagnostics] == ["src/main.c:3:5: error: expected ';' before 'return'"]

    def test_compile_failure_without_parsable_output(self, toolchain, tmp_path):
        with patch("zora.build.toolchain.safe_popen", side_effect=_popen_factory([], returncode=4)):
            outcome = toolchain.compile(SourceFile("src/main.c"), _signature(), tmp_path / "o" / "main.c.o")

        assert outcome.diagnostics[0].message == "cc exited with code 4"
        assert outcome.diagnostics[0].file == "src/main.c"

    def test_warnings_kept_on_success(self, toolchain, tmp_path):
        text = "src/main.c:1:5: warning: unused variable 'x'\n"
        with patch("zora.build.toolchain.safe_popen", side_effect=_popen_factory([], output=text)):
            outcome = toolchain.compile(SourceFile("src/main.c"), _signature(), tmp_path / "o" / "main.c.o")

        assert outcome.success
        assert outcome.diagnostics[0].severity == Severity.WARNING

    def test_missing_compiler_raises(self, toolchain, tmp_path):
        with patch("zora.build.toolchain.safe_popen", side_effect=FileNotFoundError("No such file: 'cc'")):
            with pytest.raises(ToolchainInvocationError, match="cc"):
                toolchain.compile(SourceFile("src/main.c"), _signature(), tmp_path / "o" / "main.c.o")

    def test_link_success(self, toolchain, tmp_path):
        output = tmp_path / "target" / "debug" / "app"
        with patch("zora.build.toolchain.safe_popen", side_effect=_popen_factory([])):
            outcome = toolchain.link([tmp_path / "a.o"], TargetKind.EXECUTABLE, output, LinkSignature())

        assert outcome.success
        assert output.exists()

    def test_link_failure_single_error_with_full_text(self, toolchain, tmp_path):
        text = "/usr/bin/ld: main.o: in function `main':\nmain.c:(.text+0x5): undefined reference to `helper'\ncollect2: error: ld returned 1 exit status\n"
        output = tmp_path / "target" / "debug" / "app"
        with patch("zora.build.toolchain.safe_popen", side_effect=_popen_factory([], returncode=1, output=text)):
            outcome = toolchain.link([tmp_path / "a.o"], TargetKind.EXECUTABLE, output, LinkSignature())

        assert not outcome.success
        assert not output.exists()
        errors = [d for d in outcome.diagnostics if d.is_error]
        assert len(errors) == 1
        assert "undefined reference to `helper'" in errors[0].message

    def test_archive_success(self, toolchain, tmp_path):
        calls = []
        output = tmp_path / "target" / "release" / "libx.a"
        with patch("zora.build.toolchain.safe_popen", side_effect=_popen_factory(calls)):
            outcome = toolchain.link([tmp_path / "a.o"], TargetKind.STATIC_LIBRARY, output, LinkSignature())

        assert outcome.success
        assert calls[0].args[:2] == ["ar", "rcsD"]
        assert output.exists()

    def test_syntax_check_writes_nothing(self, toolchain, tmp_path):
        calls = []
        text = "src/main.c:2:1: warning: empty file\n"
        with patch("zora.build.toolchain.safe_popen", side_effect=_popen_factory(calls, output=text)):
            diags = toolchain.syntax_check(SourceFile("src/main.c"), _signature())

        assert "-fsyntax-only" in calls[0].args
        assert "-o" not in calls[0].args
        assert [d.severity for d in diags] == [Severity.WARNING]

    def test_verify_reports_missing_tool(self, toolchain):
        with patch("zora.build.toolchain.shutil.which", return_value=None):
            with pytest.raises(ToolchainInvocationError, match="not found on PATH"):
                toolchain.verify(TargetKind.EXECUTABLE, use_cxx=False)

    def test_verify_checks_archiver_for_static_library(self, toolchain):
        seen = []

        def which(name):
            seen.append(name)
            return f"/usr/bin/{name}"

        with patch("zora.build.toolchain.shutil.which", side_effect=which):
            toolchain.verify(TargetKind.STATIC_LIBRARY, use_cxx=True)

        assert seen == ["cc", "c++", "ar"]

    def test_terminate_running_kills_tracked_processes(self, toolchain):
        class Blocking(FakePopen):
            def communicate(self):
                toolchain.terminate_running()
                self.returncode = -15
                return "", None

        with patch("zora.build.toolchain.safe_popen", side_effect=lambda cmd, **kw: Blocking(cmd, **kw)):
            with patch("zora.build.toolchain.terminate_process_tree") as terminate:
                toolchain.syntax_check(SourceFile("src/main.c"), _signature())

        terminate.assert_called_once_with(4242)

    def test_terminated_toolchain_starts_no_new_processes(self, toolchain, tmp_path):
        calls = []
        output = tmp_path / "o" / "main.c.o"
        toolchain.terminate_running()
        with patch("zora.build.toolchain.safe_popen", side_effect=_popen_factory(calls)):
            outcome = toolchain.compile(SourceFile("src/main.c"), _signature(), output)

            assert not outcome.success
            assert calls == []
            assert not output.exists()

            toolchain.clear_cancellation()
            assert toolchain.compile(SourceFile("src/main.c"), _signature(), output).success
        assert len(calls) == 1


class TestRelativePaths:
    def test_outputs_are_absolute_when_project_dir_is_relative(self, tmp_path, monkeypatch):
        (tmp_path / "proj" / "src").mkdir(parents=True)
        monkeypatch.chdir(tmp_path)
        toolchain = GccToolchain(Path("proj"), c_compiler=["cc"], cxx_compiler=["c++"], archiver=["ar"], platform="linux")
        root = Path.cwd() / "proj"
        calls = []
        with patch("zora.build.toolchain.safe_popen", side_effect=_popen_factory(calls)):
            compiled = toolchain.compile(SourceFile("src/main.c"), _signature(), Path("proj/.build/obj/main.c.o"))
            linked = toolchain.link([Path("proj/.build/obj/main.c.o")], TargetKind.EXECUTABLE, Path("proj/target/app"), LinkSignature())

        assert compiled.success and linked.success
        assert calls[0].kwargs["cwd"] == str(root)
        assert calls[0].args[-1] == str(root / ".build" / "obj" / "main.c.o.tmp")
        assert str(root / ".build" / "obj" / "main.c.o") in calls[1].args
        assert compiled.artifact == root / ".build" / "obj" / "main.c.o"
        assert (root / "target" / "app").exists()
