"""
Unit tests for build context scanning.

Tests what the builder would receive for a context directory, heavy and
sensitive path detection, ignore-file suggestions and context findings.
"""

import os

import pytest

from layerwise.context import (
    IgnoreMatcher,
    context_findings,
    render_ignore_file,
    scan_context,
    suggest_ignore_patterns,
)
from layerwise.utils.error_handler import BuildContextError
from shared.models import Severity


@pytest.fixture
def frontend_context(make_context):
    """A front-end project without an ignore file"""
    return make_context({
        "Dockerfile": "FROM node:20\n",
        "package.json": "{}\n",
        "src/index.js": "console.log('hi')\n",
        "node_modules/react/index.js": "x" * 4000,
        "node_modules/react/package.json": "{}",
        ".git/HEAD": "ref: refs/heads/main\n",
        "dist/app.js": "y" * 1000,
        ".env": "API_KEY=secret\n",
        ".env.example": "API_KEY=\n",
        "npm-debug.log": "z" * 10,
    })


class TestScanning:
    """Test walking the context"""

    def test_everything_sent_without_ignore_file(self, frontend_context):
        """Test all files are entries when nothing is ignored"""
        report = scan_context(frontend_context)

        assert report.ignore_file is None
        assert not report.has_ignore_file
        assert report.excluded_files == 0
        assert "node_modules/react/index.js" in report.paths()
        assert report.file_count == 10

    def test_entries_are_sorted_relative_paths(self, frontend_context):
        """Test entry paths use / and are sorted"""
        report = scan_context(frontend_context)

        assert report.paths() == sorted(report.paths())
        assert all(not p.startswith("/") for p in report.paths())

    def test_ignored_directories_are_pruned_and_measured(self, make_context):
        """Test excluded directories count toward excluded totals"""
        root = make_context({
            "Dockerfile": "FROM node:20\n",
            ".dockerignore": "node_modules\n",
            "node_modules/a.js": "a" * 100,
            "node_modules/b/c.js": "c" * 50,
        })

        report = scan_context(root)

        assert report.paths() == [".dockerignore", "Dockerfile"]
        assert report.excluded_files == 2
        assert report.excluded_bytes == 150
        assert report.ignore_file == str(root / ".dockerignore")

    def test_measure_excluded_disabled(self, make_context):
        """Test pruned trees are not walked when measuring is off"""
        root = make_context({
            ".dockerignore": "node_modules\n",
            "node_modules/a.js": "a" * 100,
        })

        report = scan_context(root, measure_excluded=False)

        assert report.excluded_files == 0
        assert report.excluded_bytes == 0

    def test_exception_pattern_keeps_file(self, make_context):
        """Test ! patterns re-include files inside ignored directories"""
        root = make_context({
            ".dockerignore": "dist\n!dist/keep.txt\n",
            "dist/keep.txt": "k",
            "dist/drop.txt": "d",
        })

        report = scan_context(root)

        assert "dist/keep.txt" in report.paths()
        assert "dist/drop.txt" not in report.paths()
        assert report.excluded_files == 1

    def test_wildcard_exception_keeps_nested_file(self, make_context):
        """Test a wildcard exception re-includes files two directories down"""
        root = make_context({
            ".dockerignore": "src\n!src/*/keep.txt\n",
            "src/a/keep.txt": "k",
            "src/a/drop.txt": "d",
        })

        report = scan_context(root)

        assert "src/a/keep.txt" in report.paths()
        assert "src/a/drop.txt" not in report.paths()
        assert report.excluded_files == 1

    def test_dockerfile_and_ignore_file_always_sent(self, make_context):
        """Test the Dockerfile and ignore file survive their own patterns"""
        root = make_context({
            ".dockerignore": "Dockerfile\n.dockerignore\n*.md\n",
            "Dockerfile": "FROM alpine:3.20\n",
            "README.md": "docs",
        })

        report = scan_context(root)

        assert report.paths() == [".dockerignore", "Dockerfile"]

    def test_explicit_matcher(self, make_context):
        """Test a supplied matcher replaces the on-disk ignore file"""
        root = make_context({".dockerignore": "src\n", "src/a.js": "a"})

        report = scan_context(root, matcher=IgnoreMatcher.from_text("other\n"))

        assert "src/a.js" in report.paths()

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_symlinked_directory_not_followed(self, make_context, tmp_path):
        """Test symlinked directories are recorded as links"""
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "big.bin").write_bytes(b"0" * 1000)
        root = make_context({"Dockerfile": "FROM alpine:3.20\n"})
        os.symlink(outside, root / "linked")

        report = scan_context(root)
        linked = [e for e in report.entries if e.path == "linked"]

        assert len(linked) == 1
        assert linked[0].is_symlink
        assert "linked/big.bin" not in report.paths()

    def test_missing_root(self, tmp_path):
        """Test a missing context directory is an error"""
        with pytest.raises(BuildContextError):
            scan_context(tmp_path / "missing")

    def test_largest(self, frontend_context):
        """Test the largest entries come first"""
        report = scan_context(frontend_context)

        largest = report.largest(2)

        assert [e.path for e in largest] == ["node_modules/react/index.js", "dist/app.js"]

    def test_to_dict(self, frontend_context):
        """Test the serialized report"""
        data = scan_context(frontend_context).to_dict(top=1)

        assert data["files"] == 10
        assert len(data["largest"]) == 1
        assert data["ignore_file"] is None
        assert {h["pattern"] for h in data["heavy_paths"]} >= {"node_modules", ".git", "dist", ".env"}


class TestHeavyPaths:
    """Test heavy and sensitive content detection"""

    def test_root_level_heavy_directories(self, frontend_context):
        """Test root-level directories get literal patterns"""
        report = scan_context(frontend_context)
        by_path = {h.path: h for h in report.heavy_paths}

        assert by_path["node_modules"].category == "dependencies"
        assert by_path["node_modules"].pattern == "node_modules"
        assert by_path["node_modules"].file_count == 2
        assert by_path["node_modules"].total_bytes == 4002
        assert by_path[".git"].category == "vcs"
        assert by_path["dist"].category == "build-output"

    def test_nested_heavy_directory(self, make_context):
        """Test nested directories get ** patterns"""
        root = make_context({"packages/web/node_modules/x.js": "x"})

        report = scan_context(root)

        assert report.heavy_paths[0].path == "packages/web/node_modules"
        assert report.heavy_paths[0].pattern == "**/node_modules"

    def test_sensitive_files(self, frontend_context):
        """Test .env is sensitive and .env.example is not"""
        report = scan_context(frontend_context)
        sensitive = [h for h in report.heavy_paths if h.is_sensitive]

        assert [h.path for h in sensitive] == [".env"]

    def test_sensitive_directory(self, make_context):
        """Test key directories are flagged as secrets"""
        root = make_context({".ssh/id_rsa": "key"})

        report = scan_context(root)

        assert report.heavy_paths[0].path == ".ssh"
        assert report.heavy_paths[0].is_sensitive

    def test_log_files_aggregate_by_pattern(self, make_context):
        """Test log files in subdirectories group under one pattern"""
        root = make_context({"logs/a.log": "aa", "logs/b.log": "bbb", "app.log": "c"})

        report = scan_context(root)
        by_path = {h.path: h for h in report.heavy_paths}

        assert by_path["**/*.log"].file_count == 2
        assert by_path["**/*.log"].total_bytes == 5
        assert by_path["*.log"].file_count == 1

    def test_heavy_paths_sorted_by_size(self, frontend_context):
        """Test the biggest savings are listed first"""
        report = scan_context(frontend_context)

        assert report.heavy_paths[0].path == "node_modules"


class TestIgnoreSuggestions:
    """Test ignore-file suggestions"""

    def test_suggested_patterns(self, frontend_context):
        """Test patterns are unique and ordered by size"""
        patterns = suggest_ignore_patterns(scan_context(frontend_context))

        assert patterns[0] == "node_modules"
        assert set(patterns) == {"node_modules", "dist", ".git", ".env", "*.log"}
        assert len(patterns) == len(set(patterns))

    def test_render_new_file(self):
        """Test rendering without an existing file"""
        text = render_ignore_file(None, ["node_modules", ".git"])

        assert text == "# Added by layerwise\nnode_modules\n.git\n"

    def test_render_appends_missing_only(self):
        """Test existing patterns are not repeated"""
        text = render_ignore_file("node_modules", ["node_modules", "dist"])

        assert text == "node_modules\n\n# Added by layerwise\ndist\n"

    def test_render_unchanged(self):
        """Test nothing is appended when every pattern exists"""
        assert render_ignore_file("dist\n", ["dist"]) == "dist\n"

    def test_suggestions_clear_heavy_paths(self, frontend_context):
        """Test writing the suggestions removes heavy content from the next scan"""
        report = scan_context(frontend_context)
        ignore = frontend_context / ".dockerignore"
        ignore.write_text(render_ignore_file(None, suggest_ignore_patterns(report)), encoding="utf-8")

        rescanned = scan_context(frontend_context)

        assert rescanned.heavy_paths == []
        assert "src/index.js" in rescanned.paths()
        assert ".env.example" in rescanned.paths()


class TestContextFindings:
    """Test findings LW101 to LW104"""

    def test_findings_without_ignore_file(self, frontend_context):
        """Test heavy, sensitive and missing ignore file findings"""
        findings = context_findings(scan_context(frontend_context), max_context_bytes=50 * 1024 * 1024)
        rule_ids = [f.rule_id for f in findings]

        assert "LW102" in rule_ids
        assert "LW101" in rule_ids
        assert rule_ids.count("LW103") == 1
        assert "LW104" not in rule_ids

        secret = next(f for f in findings if f.rule_id == "LW102")
        assert secret.severity == Severity.ERROR
        assert secret.message == "sensitive file .env is sent to the builder"
        assert secret.suggestion == "add '.env' to .dockerignore"

    def test_over_budget(self, make_context):
        """Test the context size budget"""
        root = make_context({"data.bin": b"0" * 2048})

        findings = context_findings(scan_context(root), max_context_bytes=1024)

        assert [f.rule_id for f in findings] == ["LW104"]
        assert "over the 1.0 KB budget" in findings[0].message

    def test_small_heavy_paths_skipped(self, make_context):
        """Test the minimum heavy path size"""
        root = make_context({".dockerignore": "*.md\n", "dist/a.js": "a"})

        findings = context_findings(scan_context(root), max_context_bytes=10**9, heavy_path_min_bytes=100)

        assert findings == []

    def test_no_missing_ignore_finding_when_clean(self, make_context):
        """Test a clean context without an ignore file has no findings"""
        root = make_context({"Dockerfile": "FROM alpine:3.20\n", "src/a.js": "a"})

        assert context_findings(scan_context(root), max_context_bytes=10**9) == []
