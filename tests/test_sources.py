"""Tests for threat source configuration."""

import json

import pytest

from threatsync.errors import ConfigurationError
from threatsync.feeds.sources import (
    ThreatSource,
    default_sources,
    load_sources,
    validate_sources,
)


class TestValidateSources:
    """Tests for boundary validation of source configuration."""

    def test_valid_payload(self):
        sources = validate_sources(
            [
                {"name": "Feed A", "url": "https://a.example.com/list.txt", "weight": 5},
                {"name": "Feed B", "url": "http://b.example.com", "format": "CSV"},
            ]
        )

        assert [s.name for s in sources] == ["Feed A", "Feed B"]
        assert sources[0].format == "plain"
        assert sources[0].timeout == 30.0
        assert sources[1].format == "csv"
        assert sources[1].enabled

    def test_collects_every_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_sources(
                [
                    {"name": "", "url": "https://a.example.com"},
                    {"name": "Bad URL", "url": "ftp://b.example.com"},
                    {"name": "Bad weight", "url": "https://c.example.com", "weight": -1},
                    {"name": "Bad format", "url": "https://d.example.com", "format": "xml"},
                ]
            )

        errors = exc_info.value.errors
        assert len(errors) == 4
        assert errors[0].startswith("sources[0].name")
        assert errors[1].startswith("sources[1].url")
        assert errors[2].startswith("sources[2].weight")
        assert errors[3].startswith("sources[3].format")

    def test_duplicate_names_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_sources(
                [
                    {"name": "Feed", "url": "https://a.example.com"},
                    {"name": "Feed", "url": "https://b.example.com"},
                ]
            )

        assert "duplicate" in exc_info.value.errors[0]

    def test_non_list_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_sources({"name": "Feed", "url": "https://a.example.com"})

    def test_sources_are_immutable(self):
        source = ThreatSource(name="Feed", url="https://a.example.com")

        with pytest.raises(ValueError):
            source.weight = 10


class TestLoadSources:
    """Tests for loading sources from JSON, YAML or defaults."""

    def test_json_takes_precedence(self, tmp_path):
        config = tmp_path / "sources.yaml"
        config.write_text("sources:\n  - name: From YAML\n    url: https://y.example.com\n")
        raw = json.dumps([{"name": "From JSON", "url": "https://j.example.com"}])

        sources = load_sources(raw, str(config))

        assert [s.name for s in sources] == ["From JSON"]

    def test_yaml_file(self, tmp_path):
        config = tmp_path / "sources.yaml"
        config.write_text(
            "sources:\n"
            "  - name: From YAML\n"
            "    url: https://y.example.com\n"
            "    weight: 3\n"
            "    extract_domains: false\n"
        )

        sources = load_sources("", str(config))

        assert sources[0].name == "From YAML"
        assert sources[0].weight == 3
        assert not sources[0].extract_domains

    def test_invalid_json_raises(self):
        with pytest.raises(ConfigurationError):
            load_sources("[not json", "")

    def test_defaults_when_unconfigured(self, tmp_path):
        sources = load_sources("", str(tmp_path / "missing.yaml"))

        assert [s.name for s in sources] == [s.name for s in default_sources()]
        assert all(s.format == "plain" for s in sources)
