"""Tests for advisory sources and the advisory matcher."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from packaging.version import Version

from depsentinel.engines.advisory import (
    Advisory,
    AdvisoryDatabase,
    AdvisorySource,
    Severity,
    UnavailableAdvisorySource,
    match,
    open_advisory_source,
)
from depsentinel.engines.resolver import ResolvedDependency, ResolvedSet
from depsentinel.engines.versioning import VersionRange
from depsentinel.exceptions import AdvisoryDatabaseUnavailable

RACK_ADVISORY_YML = """\
---
gem: rack
cve: "2023-27530"
ghsa: "3h57-hmj3-gj3p"
url: https://github.com/rack/rack/releases/tag/v3.0.4.2
title: Possible DoS Vulnerability in Multipart MIME parsing
date: 2023-03-03
cvss_v3: 7.5
patched_versions:
  - "~> 2.0.9, >= 2.0.9.3"
  - "~> 2.1.4, >= 2.1.4.3"
  - "~> 2.2.6, >= 2.2.6.3"
  - ">= 3.0.4.2"
"""

NOKOGIRI_ADVISORY_YML = """\
---
gem: nokogiri
ghsa: "pxvg-2qj5-37jq"
title: Update packaged libxml2
criticality: critical
unaffected_versions:
  - "< 1.4.0"
patched_versions:
  - ">= 1.14.3"
"""


def _resolved(*pins: tuple[str, str]) -> ResolvedSet:
    return ResolvedSet(
        tuple(
            ResolvedDependency(
                name=name,
                version=Version(version),
                requirement=VersionRange.any(),
                source="https://rubygems.org",
                direct=True,
            )
            for name, version in pins
        )
    )


def _advisory(
    advisory_id: str, package: str, affected: str, severity: Severity, patched=None
) -> Advisory:
    return Advisory(
        id=advisory_id,
        package=package,
        affected=VersionRange.parse(affected),
        severity=severity,
        patched_version=Version(patched) if patched else None,
    )


@pytest.fixture
def ruby_advisory_db(tmp_path):
    root = tmp_path / "ruby-advisory-db"
    (root / "gems" / "rack").mkdir(parents=True)
    (root / "gems" / "nokogiri").mkdir(parents=True)
    (root / "gems" / "rack" / "CVE-2023-27530.yml").write_text(RACK_ADVISORY_YML)
    (root / "gems" / "nokogiri" / "GHSA-pxvg-2qj5-37jq.yml").write_text(NOKOGIRI_ADVISORY_YML)
    return root


class TestSeverity:
    def test_parse(self):
        assert Severity.parse("High") is Severity.HIGH
        assert Severity.parse("moderate") is Severity.MEDIUM
        assert Severity.parse("bogus") is Severity.UNKNOWN
        assert Severity.parse(None) is Severity.UNKNOWN

    def test_from_cvss(self):
        assert Severity.from_cvss(9.8) is Severity.CRITICAL
        assert Severity.from_cvss(7.5) is Severity.HIGH
        assert Severity.from_cvss(5.0) is Severity.MEDIUM
        assert Severity.from_cvss(2.1) is Severity.LOW
        assert Severity.from_cvss(0.0) is Severity.UNKNOWN

    def test_rank_order(self):
        ranks = [s.rank for s in Severity]
        assert ranks == sorted(ranks, reverse=True)


class TestAdvisory:
    def test_affects_range(self):
        advisory = _advisory("A-1", "rack", "< 2.2.6.3", Severity.HIGH)
        assert advisory.affects(Version("2.2.6"))
        assert not advisory.affects(Version("2.2.6.3"))

    def test_patched_version_excludes(self):
        advisory = _advisory("A-1", "rack", ">= 1.0", Severity.HIGH, patched="2.0")
        assert advisory.affects(Version("1.5"))
        assert not advisory.affects(Version("2.0"))
        assert not advisory.affects(Version("3.0"))


class TestRubyAdvisoryDb:
    def test_load(self, ruby_advisory_db):
        db = AdvisoryDatabase.from_ruby_advisory_db(ruby_advisory_db)
        assert len(db) == 2
        assert db.packages == ["nokogiri", "rack"]

        rack = db.advisories_for("rack")[0]
        assert rack.id == "CVE-2023-27530"
        assert rack.severity is Severity.HIGH
        assert rack.patched_version == Version("3.0.4.2")
        assert rack.affects(Version("2.2.6"))
        assert not rack.affects(Version("2.2.8"))
        assert rack.affects(Version("3.0.0"))
        assert not rack.affects(Version("3.0.4.2"))

    def test_unaffected_and_criticality(self, ruby_advisory_db):
        db = AdvisoryDatabase.from_ruby_advisory_db(ruby_advisory_db)
        noko = db.advisories_for("nokogiri")[0]
        assert noko.id == "GHSA-pxvg-2qj5-37jq"
        assert noko.severity is Severity.CRITICAL
        assert not noko.affects(Version("1.3.0"))
        assert noko.affects(Version("1.13.10"))
        assert not noko.affects(Version("1.15.4"))

    def test_lookup_case_insensitive(self, ruby_advisory_db):
        db = AdvisoryDatabase.from_ruby_advisory_db(ruby_advisory_db)
        assert db.advisories_for("Rack")
        assert db.advisories_for("unknown") == ()

    def test_broken_files_skipped(self, ruby_advisory_db):
        (ruby_advisory_db / "gems" / "rack" / "broken.yml").write_text("key: [unclosed\n")
        (ruby_advisory_db / "gems" / "rack" / "nogem.yml").write_text("title: missing gem\n")
        db = AdvisoryDatabase.from_ruby_advisory_db(ruby_advisory_db)
        assert len(db) == 2

    def test_missing_gems_dir(self, tmp_path):
        with pytest.raises(AdvisoryDatabaseUnavailable):
            AdvisoryDatabase.from_ruby_advisory_db(tmp_path)


class TestJsonDatabase:
    def test_load(self, advisory_db):
        assert len(advisory_db) == 3
        rack = advisory_db.advisories_for("rack")[0]
        assert rack.severity is Severity.HIGH
        assert rack.patched_version == Version("2.2.6.3")

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "db.json"
        path.write_text("{not json")
        with pytest.raises(AdvisoryDatabaseUnavailable):
            AdvisoryDatabase.from_json(path)

    def test_bad_entry_skipped(self, tmp_path):
        path = tmp_path / "db.json"
        path.write_text('{"advisories": [{"package": "rack"}, {"id": "X", "package": "a"}]}')
        db = AdvisoryDatabase.from_json(path)
        assert len(db) == 1
        assert db.advisories_for("a")[0].affected.is_any()


class TestOpenAdvisorySource:
    def test_none(self):
        source = open_advisory_source(None)
        assert isinstance(source, UnavailableAdvisorySource)
        assert not source.available

    def test_missing_path(self, tmp_path):
        source = open_advisory_source(tmp_path / "missing")
        assert not source.available
        assert "not found" in source.reason

    def test_directory(self, ruby_advisory_db):
        source = open_advisory_source(ruby_advisory_db)
        assert isinstance(source, AdvisoryDatabase)

    def test_json_file(self, advisory_file):
        assert open_advisory_source(advisory_file).available

    def test_unreadable_json(self, tmp_path):
        path = tmp_path / "db.json"
        path.write_text("garbage")
        assert not open_advisory_source(path).available

    def test_unavailable_source_raises_on_lookup(self):
        with pytest.raises(AdvisoryDatabaseUnavailable):
            UnavailableAdvisorySource("offline").advisories_for("rack")


class TestMatcher:
    def test_matches_ordered_by_severity_then_id(self):
        db = AdvisoryDatabase(
            [
                _advisory("CVE-B", "rack", "< 3", Severity.HIGH),
                _advisory("CVE-A", "rack", "< 3", Severity.HIGH),
                _advisory("CVE-C", "nokogiri", "< 2", Severity.CRITICAL),
                _advisory("CVE-D", "rails", "< 8", Severity.LOW),
                _advisory("CVE-E", "rails", "< 7", Severity.MEDIUM),
            ]
        )
        outcome = match(_resolved(("rails", "7.0.4"), ("rack", "2.2.6"), ("nokogiri", "1.13")), db)
        assert [m.advisory.id for m in outcome.matches] == ["CVE-C", "CVE-A", "CVE-B", "CVE-D"]
        assert not outcome.database_unavailable

    def test_match_carries_dependency(self, advisory_db):
        outcome = match(_resolved(("rack", "2.2.6")), advisory_db)
        (m,) = outcome.matches
        assert m.dependency.name == "rack"
        assert m.dependency.resolved_version == Version("2.2.6")
        assert m.to_dict()["advisory"]["id"] == "CVE-2023-27530"

    def test_no_matches(self, advisory_db):
        outcome = match(_resolved(("rack", "3.0.0"), ("rspec", "3.12.0")), advisory_db)
        assert outcome.matches == ()

    def test_unavailable_source(self):
        outcome = match(_resolved(("rack", "2.2.6")), UnavailableAdvisorySource("offline"))
        assert outcome.database_unavailable
        assert outcome.matches == ()
        assert outcome.reason == "offline"

    def test_unavailable_source_empty_set(self):
        outcome = match(ResolvedSet(), UnavailableAdvisorySource("offline"))
        assert outcome.database_unavailable

    def test_source_failing_mid_lookup(self):
        source = MagicMock()
        source.advisories_for.side_effect = AdvisoryDatabaseUnavailable("connection lost")
        outcome = match(_resolved(("rack", "2.2.6")), source)
        assert outcome.database_unavailable
        assert outcome.reason == "connection lost"

    def test_deterministic(self, advisory_db):
        resolved = _resolved(("rack", "2.2.6"), ("nokogiri", "1.13.10"))
        assert match(resolved, advisory_db) == match(resolved, advisory_db)

    def test_source_flagged_unavailable_is_not_queried(self):
        class MaintenanceSource:
            available = False
            reason = "mirror under maintenance"

            def advisories_for(self, name):
                raise AssertionError("lookup on an unavailable source")

        source = MaintenanceSource()
        assert isinstance(source, AdvisorySource)
        outcome = match(_resolved(("rack", "2.2.6")), source)
        assert outcome.database_unavailable
        assert outcome.reason == "mirror under maintenance"

    def test_database_declares_availability(self, advisory_db):
        assert advisory_db.available
        assert advisory_db.reason is None
