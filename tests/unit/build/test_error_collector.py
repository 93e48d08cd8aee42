"""Tests for structured build error collection."""

from pathlib import Path

from zora.build.error_collector import BuildError, ErrorCollector, ErrorSeverity
from zora.build.models import BuildReport, CompileTask, Diagnostic, Severity, SourceFile, UnitState


def _error(file="src/main.c", line=3, column=5, message="expected ';'"):
    return Diagnostic(Severity.ERROR, message, file=file, line=line, column=column)


def _warning(file="src/main.c", message="unused variable 'x'"):
    return Diagnostic(Severity.WARNING, message, file=file, line=1, column=1)


def _task(path, state, diagnostics=()):
    return CompileTask(unit=SourceFile(path), object_path=Path(path + ".o"), fingerprint="fp", state=state, diagnostics=list(diagnostics))


class TestBuildError:
    def test_from_diagnostic_severity_mapping(self):
        assert BuildError.from_diagnostic("compile", _error()).severity == ErrorSeverity.ERROR
        assert BuildError.from_diagnostic("compile", _warning()).severity == ErrorSeverity.WARNING
        assert BuildError.from_diagnostic("link", Diagnostic(Severity.ERROR, "ld failed")).severity == ErrorSeverity.FATAL

    def test_format_with_location(self):
        error = BuildError.from_diagnostic("compile", _error(file="include/util.h"), unit="src/main.c")
        assert error.format() == "[ERROR] compile: expected ';'\n  File: include/util.h:3:5\n  Unit: src/main.c"

    def test_format_without_location(self):
        error = BuildError.from_diagnostic("link", Diagnostic(Severity.ERROR, "undefined reference to `helper'"))
        assert error.format() == "[FATAL] link: undefined reference to `helper'"


class TestErrorCollector:
    def test_from_report_orders_by_unit_then_link(self):
        report = BuildReport(
            project="hello",
            profile="debug",
            tasks=[
                _task("src/z.c", UnitState.FAILED, [_error(file="src/z.c")]),
                _task("src/a.c", UnitState.COMPILED, [_warning(file="src/a.c")]),
            ],
            link_diagnostics=[Diagnostic(Severity.WARNING, "ld: warning: text relocations")],
        )

        collector = ErrorCollector.from_report(report)
        errors = collector.get_errors()

        assert [e.unit for e in errors] == ["src/a.c", "src/z.c", None]
        assert [e.phase for e in errors] == ["compile", "compile", "link"]
        assert collector.failing_units() == ["src/z.c"]

    def test_counts_and_summary(self):
        collector = ErrorCollector()
        collector.add_diagnostics("compile", [_error(), _warning(), _warning()], unit="src/main.c")
        collector.add_diagnostics("link", [Diagnostic(Severity.ERROR, "ld failed")])

        assert collector.get_error_count() == {"warnings": 2, "errors": 1, "fatal": 1, "total": 4}
        assert collector.format_summary() == "1 fatal, 1 errors, 2 warnings"
        assert collector.has_errors()
        assert collector.has_fatal_errors()
        assert collector.has_warnings()

    def test_warnings_only(self):
        collector = ErrorCollector()
        collector.add_diagnostics("check", [_warning()])

        assert not collector.has_errors()
        assert collector.failing_units() == []
        assert collector.get_errors(ErrorSeverity.WARNING)[0].phase == "check"

    def test_format_errors(self):
        collector = ErrorCollector()
        assert collector.format_errors() == "No errors"

        collector.add_diagnostics("compile", [_error(), _error(line=9)], unit="src/main.c")
        text = collector.format_errors(max_errors=1)

        assert "src/main.c:3:5" in text
        assert "src/main.c:9:5" not in text
        assert "... and 1 more errors" in text
        assert text.endswith("Summary: 0 fatal, 2 errors, 0 warnings")

    def test_from_report_keeps_every_failing_unit(self):
        # Many diagnostics from early units must not push later failures out
        tasks = [_task("src/a.c", UnitState.FAILED, [_error(file="src/a.c", line=n) for n in range(1, 1501)])]
        tasks += [_task(f"src/u{i:02d}.c", UnitState.FAILED, [_error(file=f"src/u{i:02d}.c")]) for i in range(20)]
        report = BuildReport(project="hello", profile="debug", tasks=tasks)

        collector = ErrorCollector.from_report(report)

        assert collector.get_error_count()["errors"] == 1520
        assert collector.failing_units() == ["src/a.c"] + [f"src/u{i:02d}.c" for i in range(20)]
        assert collector.get_errors()[0].line == 1

    def test_unbounded_by_default(self):
        collector = ErrorCollector()
        for line in range(1, 2001):
            collector.add_error(BuildError.from_diagnostic("compile", _error(line=line)))

        assert collector.get_error_count()["total"] == 2000

    def test_max_errors_drops_oldest(self):
        collector = ErrorCollector(max_errors=2)
        for line in (1, 2, 3):
            collector.add_error(BuildError.from_diagnostic("compile", _error(line=line)))

        assert [e.line for e in collector.get_errors()] == [2, 3]

    def test_clear(self):
        collector = ErrorCollector()
        collector.add_diagnostics("compile", [_error()])
        collector.clear()
        assert collector.format_summary() == "No errors"
