"""Tests for CLI commands — no network needed (universes are local or mocked)."""

from __future__ import annotations

import json
import logging
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from conftest import GEMFILE, UNIVERSE

from depsentinel.cli import main
from depsentinel.engines.resolver import StaticVersionUniverse

QUIET = {"DEPSENTINEL_LOG_LEVEL": "ERROR"}


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    # handlers installed during invoke point at CliRunner's closed streams
    logging.getLogger().handlers.clear()


def _scan(project, *extra, universe_file=None, advisory_file=None):
    args = ["scan", str(project)]
    if universe_file is not None:
        args += ["--universe", str(universe_file)]
    if advisory_file is not None:
        args += ["--advisory-db", str(advisory_file)]
    return CliRunner().invoke(main, args + list(extra), env=QUIET)


# ── scan ──


class TestScanCommand:
    def test_summary(self, ruby_project, universe_file, advisory_file):
        result = _scan(ruby_project, universe_file=universe_file, advisory_file=advisory_file)
        assert result.exit_code == 0, result.output
        assert "Dependencies resolved: 6" in result.output
        assert "Security vulnerabilities: 2" in result.output
        assert "Advisory database: available" in result.output

    def test_json(self, ruby_project, universe_file, advisory_file):
        result = _scan(
            ruby_project,
            "--format",
            "json",
            universe_file=universe_file,
            advisory_file=advisory_file,
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)["scan_results"]
        assert data["status"] == "complete"
        assert [m["advisory"]["id"] for m in data["matches"]] == [
            "GHSA-noko-0001",
            "CVE-2023-27530",
        ]

    def test_text_detailed_all_updates(self, ruby_project, universe_file, advisory_file):
        result = _scan(
            ruby_project,
            "--format",
            "text",
            "--detail",
            "detailed",
            "--all-updates",
            universe_file=universe_file,
            advisory_file=advisory_file,
        )
        assert result.exit_code == 0, result.output
        assert "Dependency Scan Report" in result.output
        assert "rails: 7.0.4 -> 7.1.0" in result.output
        assert "(security)" in result.output
        assert "Scan Phases:" in result.output

    def test_offline(self, ruby_project, advisory_file):
        result = _scan(ruby_project, "--offline", "--format", "json", advisory_file=advisory_file)
        assert result.exit_code == 0, result.output
        deps = json.loads(result.output)["scan_results"]["dependencies"]
        assert {d["name"]: d["version"] for d in deps}["rack"] == "2.2.6"

    def test_missing_advisory_db_still_exit_zero(self, ruby_project, universe_file, tmp_path):
        result = _scan(
            ruby_project,
            "--format",
            "json",
            universe_file=universe_file,
            advisory_file=tmp_path / "nope",
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)["scan_results"]
        assert data["advisory_database_unavailable"] is True
        assert data["matches"] == []

    def test_fail_on_triggered(self, ruby_project, universe_file, advisory_file):
        result = _scan(
            ruby_project,
            "--fail-on",
            "high",
            universe_file=universe_file,
            advisory_file=advisory_file,
        )
        assert result.exit_code == 3

    def test_fail_on_not_triggered(self, tmp_path, universe_file, advisory_file):
        project = tmp_path / "clean"
        project.mkdir()
        (project / "Gemfile").write_text('gem "rspec"\n')
        result = _scan(
            project,
            "--fail-on",
            "low",
            universe_file=universe_file,
            advisory_file=advisory_file,
        )
        assert result.exit_code == 0, result.output

    def test_conflict_is_partial_exit_zero(self, tmp_path, universe_file, advisory_file):
        project = tmp_path / "dup"
        project.mkdir()
        (project / "Gemfile").write_text('gem "rack", "= 2.2.6"\ngem "rack", "= 3.0.0"\n')
        result = _scan(
            project, "--format", "json", universe_file=universe_file, advisory_file=advisory_file
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)["scan_results"]
        assert data["status"] == "partial"
        assert data["conflict"]["package"] == "rack"

    def test_malformed_manifest_exit_one(self, tmp_path, universe_file, advisory_file):
        project = tmp_path / "bad"
        project.mkdir()
        (project / "Gemfile").write_text('gem "rack\n')
        result = _scan(project, universe_file=universe_file, advisory_file=advisory_file)
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "unterminated" in result.output

    def test_missing_project_exit_one(self, tmp_path):
        result = _scan(tmp_path / "missing", "--offline")
        assert result.exit_code == 1
        assert "does not exist" in result.output

    def test_no_manifest_exit_one(self, tmp_path):
        result = _scan(tmp_path, "--offline")
        assert result.exit_code == 1
        assert "Gemfile" in result.output

    def test_bad_universe_file(self, ruby_project, tmp_path):
        bad = tmp_path / "universe.json"
        bad.write_text("not json")
        result = _scan(ruby_project, universe_file=bad)
        assert result.exit_code == 1
        assert "version index" in result.output

    def test_usage_error(self, ruby_project):
        result = _scan(ruby_project, "--format", "xml")
        assert result.exit_code == 2

    def test_registry_universe_for_gemfile(self, ruby_project, advisory_file):
        with patch("depsentinel.cli.RubyGemsUniverse") as mock_cls:
            mock_cls.return_value.__enter__.return_value = StaticVersionUniverse(UNIVERSE)
            result = _scan(ruby_project, advisory_file=advisory_file)
        assert result.exit_code == 0, result.output
        url = mock_cls.call_args.args[0]
        assert url == "https://index.rubygems.org"
        mock_cls.return_value.__exit__.assert_called_once()

    def test_registry_universe_for_requirements(self, tmp_path, advisory_file):
        (tmp_path / "requirements.txt").write_text("flask>=2\n")
        with patch("depsentinel.cli.PyPIUniverse") as mock_cls:
            mock_cls.return_value.__enter__.return_value = StaticVersionUniverse(
                {"flask": ["2.3.3"]}
            )
            result = _scan(tmp_path, "--format", "json", advisory_file=advisory_file)
        assert result.exit_code == 0, result.output
        deps = json.loads(result.output)["scan_results"]["dependencies"]
        assert deps[0]["version"] == "2.3.3"


# ── validate ──


class TestValidateCommand:
    def test_valid(self, ruby_project):
        result = CliRunner().invoke(main, ["validate", str(ruby_project)], env=QUIET)
        assert result.exit_code == 0, result.output
        assert "Dependencies declared: 3" in result.output
        assert "Locked specs: 6" in result.output
        assert "Project validation passed" in result.output

    def test_without_lock(self, tmp_path):
        (tmp_path / "Gemfile").write_text(GEMFILE)
        result = CliRunner().invoke(main, ["-v", "validate", str(tmp_path)], env=QUIET)
        assert result.exit_code == 0, result.output
        assert "Lock file" not in result.output

    def test_invalid(self, tmp_path):
        (tmp_path / "Gemfile").write_text('group :test do\n  gem "rspec"\n')
        result = CliRunner().invoke(main, ["validate", str(tmp_path)], env=QUIET)
        assert result.exit_code == 1
        assert "not closed" in result.output
