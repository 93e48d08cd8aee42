"""Tests for source tree scanning and include resolution."""

import pytest

from zora.build.models import SourceKind
from zora.build.source_scanner import ScanResult, SourceScanner, extract_includes
from zora.config.project_config import parse_project


def _scan(root, **manifest) -> ScanResult:
    project = parse_project({"name": "t", **manifest})
    return SourceScanner(root, project).scan()


def _paths(files):
    return [f.path for f in files]


class TestExtractIncludes:
    def test_quoted_and_angled(self):
        text = '#include "a.h"\n#include <stdio.h>\n  #  include   "sub/b.h"\n'
        assert extract_includes(text) == [("a.h", True), ("stdio.h", False), ("sub/b.h", True)]

    def test_ignores_non_directives(self):
        text = 'const char *s = "#include \\"x.h\\"";\n// mention of include\n'
        assert extract_includes(text) == []


class TestSourceScanner:
    """Test scanning project trees."""

    @pytest.fixture
    def project_root(self, tmp_path):
        root = tmp_path / "proj"
        (root / "src").mkdir(parents=True)
        (root / "include").mkdir()
        return root

    def test_scan_empty_directory(self, project_root):
        result = _scan(project_root)

        assert result.translation_units == []
        assert result.headers == []
        assert result.unresolved == []

    def test_units_sorted_and_classified(self, project_root):
        for name in ("b.c", "a.cpp", "z.cc"):
            (project_root / "src" / name).write_text("int x;\n")
        (project_root / "src" / "notes.txt").write_text("skip me")

        result = _scan(project_root)

        assert _paths(result.translation_units) == ["src/a.cpp", "src/b.c", "src/z.cc"]
        assert all(u.kind == SourceKind.TRANSLATION_UNIT for u in result.translation_units)
        assert result.has_cpp

    def test_includer_directory_searched_first(self, project_root):
        (project_root / "src" / "main.c").write_text('#include "util.h"\n')
        (project_root / "src" / "util.h").write_text("")
        (project_root / "include" / "util.h").write_text("")

        result = _scan(project_root)

        assert result.includes["src/main.c"] == ["src/util.h"]

    def test_include_dirs_searched_in_order(self, tmp_path):
        root = tmp_path / "p"
        for d in ("src", "first", "second"):
            (root / d).mkdir(parents=True)
        (root / "src" / "main.c").write_text("#include <cfg.h>\n")
        (root / "first" / "cfg.h").write_text("")
        (root / "second" / "cfg.h").write_text("")

        result = _scan(root, includes={"dirs": ["first", "second"]})

        assert result.includes["src/main.c"] == ["first/cfg.h"]

    def test_unresolved_include_recorded_not_fatal(self, project_root):
        (project_root / "src" / "main.c").write_text("#include <stdio.h>\n#include \"missing.h\"\n")

        result = _scan(project_root)

        assert result.includes["src/main.c"] == []
        targets = sorted(e.target for e in result.unresolved)
        assert targets == ["missing.h", "stdio.h"]
        assert all(e.includer == "src/main.c" for e in result.unresolved)

    def test_follows_header_includes_outside_source_dirs(self, tmp_path):
        root = tmp_path / "p"
        (root / "src").mkdir(parents=True)
        (root / "vendor" / "lib").mkdir(parents=True)
        (root / "src" / "main.c").write_text('#include "../vendor/lib/api.h"\n')
        (root / "vendor" / "lib" / "api.h").write_text('#include "detail.h"\n')
        (root / "vendor" / "lib" / "detail.h").write_text("")

        result = _scan(root)

        assert result.includes["src/main.c"] == ["vendor/lib/api.h"]
        assert result.includes["vendor/lib/api.h"] == ["vendor/lib/detail.h"]
        assert "vendor/lib/detail.h" in _paths(result.headers)

    def test_header_cycle_terminates(self, project_root):
        (project_root / "src" / "main.c").write_text('#include "a.h"\n')
        (project_root / "include" / "a.h").write_text('#include "b.h"\n')
        (project_root / "include" / "b.h").write_text('#include "a.h"\n')

        result = _scan(project_root)

        assert result.includes["include/a.h"] == ["include/b.h"]
        assert result.includes["include/b.h"] == ["include/a.h"]

    def test_include_escaping_project_is_external(self, tmp_path):
        outside = tmp_path / "outside.h"
        outside.write_text("")
        root = tmp_path / "p"
        (root / "src").mkdir(parents=True)
        (root / "src" / "main.c").write_text('#include "../../outside.h"\n')

        result = _scan(root)

        assert result.includes["src/main.c"] == []
        assert [e.target for e in result.unresolved] == ["../../outside.h"]

    def test_exclude_patterns(self, project_root):
        (project_root / "src" / "experimental").mkdir()
        (project_root / "src" / "main.c").write_text("")
        (project_root / "src" / "experimental" / "try.c").write_text("")

        result = _scan(project_root, sources={"exclude": ["src/experimental/*"]})

        assert _paths(result.translation_units) == ["src/main.c"]

    def test_excluded_header_still_tracked_when_included(self, project_root):
        (project_root / "src" / "generated").mkdir()
        (project_root / "src" / "main.c").write_text('#include "generated/config.h"\n')
        (project_root / "src" / "generated" / "config.h").write_text('#include "limits.h"\n')
        (project_root / "src" / "generated" / "limits.h").write_text("")
        (project_root / "src" / "generated" / "tool.c").write_text("")

        result = _scan(project_root, sources={"exclude": ["src/generated/*"]})

        assert _paths(result.translation_units) == ["src/main.c"]
        assert result.includes["src/main.c"] == ["src/generated/config.h"]
        assert result.includes["src/generated/config.h"] == ["src/generated/limits.h"]
        assert "src/generated/config.h" in _paths(result.headers)
        assert result.unresolved == []

    def test_skips_hidden_and_build_dirs(self, tmp_path):
        root = tmp_path / "p"
        (root / ".build").mkdir(parents=True)
        (root / "target").mkdir()
        (root / "main.c").write_text("")
        (root / ".build" / "gen.c").write_text("")
        (root / "target" / "old.c").write_text("")

        result = _scan(root, sources={"dirs": ["."]})

        assert _paths(result.translation_units) == ["main.c"]

    def test_headers_from_include_dirs_listed(self, project_root):
        (project_root / "include" / "api.h").write_text("")
        (project_root / "src" / "impl.hpp").write_text("")

        result = _scan(project_root)

        assert _paths(result.headers) == ["include/api.h", "src/impl.hpp"]
        assert all(h.kind == SourceKind.HEADER for h in result.headers)
