"""Shared pytest fixtures for depsentinel tests."""

from __future__ import annotations

import json

import pytest

from depsentinel.core.config import ScannerSettings
from depsentinel.engines.advisory import AdvisoryDatabase
from depsentinel.engines.resolver import StaticVersionUniverse

GEMFILE = """\
source "https://rubygems.org"

ruby "3.2.2"

gem "rails", "~> 7.0"
gem "nokogiri", ">= 1.13"

group :development, :test do
  gem "rspec", "~> 3.12"
end
"""

GEMFILE_LOCK = """\
GEM
  remote: https://rubygems.org/
  specs:
    actionpack (7.0.4)
      rack (~> 2.0)
    nokogiri (1.13.10)
      racc (~> 1.4)
    racc (1.6.2)
    rack (2.2.6)
    rails (7.0.4)
      actionpack (= 7.0.4)
    rspec (3.12.0)

PLATFORMS
  ruby

DEPENDENCIES
  nokogiri (>= 1.13)
  rails (~> 7.0)
  rspec (~> 3.12)

BUNDLED WITH
   2.4.10
"""

GEMSPEC_GEMFILE = """\
source "https://rubygems.org"

gemspec

gem "rake", "~> 13.0"
"""

GEMSPEC_LOCK = """\
PATH
  remote: .
  specs:
    mygem (0.1.0)
      rack (>= 2.0)

GEM
  remote: https://rubygems.org/
  specs:
    rack (2.2.6)
    rake (13.0.6)

PLATFORMS
  ruby

DEPENDENCIES
  mygem!
  rake (~> 13.0)
"""

UNIVERSE = {
    "rails": {
        "7.0.4": {"actionpack": "= 7.0.4"},
        "7.0.8": {"actionpack": "= 7.0.8"},
        "7.1.0": {"actionpack": "= 7.1.0"},
    },
    "actionpack": {
        "7.0.4": {"rack": "~> 2.0"},
        "7.0.8": {"rack": "~> 2.0"},
        "7.1.0": {"rack": ">= 2.2.4"},
    },
    "rack": ["2.2.6", "2.2.8", "3.0.0"],
    "nokogiri": {
        "1.13.10": {"racc": "~> 1.4"},
        "1.15.4": {"racc": "~> 1.4"},
    },
    "racc": ["1.6.2", "1.7.1"],
    "rspec": ["3.12.0", "3.13.0"],
}

ADVISORIES = {
    "advisories": [
        {
            "id": "CVE-2023-27530",
            "package": "rack",
            "affected": "< 2.2.6.3",
            "patched_version": "2.2.6.3",
            "severity": "high",
            "title": "Possible DoS Vulnerability in Multipart MIME parsing",
            "url": "https://example.test/advisories/CVE-2023-27530",
        },
        {
            "id": "GHSA-noko-0001",
            "package": "nokogiri",
            "affected": "< 1.14.3",
            "patched_version": "1.14.3",
            "severity": "critical",
            "title": "Vulnerable libxml2 bundled",
        },
        {
            "id": "CVE-2010-0001",
            "package": "rspec",
            "affected": "< 3.0",
            "severity": "low",
        },
    ]
}


@pytest.fixture
def universe():
    return StaticVersionUniverse(UNIVERSE)


@pytest.fixture
def advisory_db(tmp_path):
    path = tmp_path / "advisories.json"
    path.write_text(json.dumps(ADVISORIES))
    return AdvisoryDatabase.from_json(path)


@pytest.fixture
def settings():
    return ScannerSettings(max_iterations=1_000, max_backtracks=100, resolution_timeout=30.0)


@pytest.fixture
def ruby_project(tmp_path):
    project = tmp_path / "app"
    project.mkdir()
    (project / "Gemfile").write_text(GEMFILE)
    (project / "Gemfile.lock").write_text(GEMFILE_LOCK)
    return project


@pytest.fixture
def universe_file(tmp_path):
    path = tmp_path / "universe.json"
    path.write_text(json.dumps({"packages": UNIVERSE}))
    return path


@pytest.fixture
def advisory_file(tmp_path):
    path = tmp_path / "advisory-db.json"
    path.write_text(json.dumps(ADVISORIES))
    return path
