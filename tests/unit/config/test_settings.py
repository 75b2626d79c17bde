"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from unisearch.config.settings import OpenSearchSettings, Settings


class TestDefaults:
    def test_defaults(self, settings: Settings) -> None:
        assert settings.search.default_adapter == "opensearch"
        assert settings.search.default_per_page == 20
        assert settings.search.default_timeout_ms is None
        assert settings.opensearch.hosts == ["http://localhost:9200"]
        assert settings.meilisearch.base_url == "http://localhost:7700"
        assert settings.observability.log_format == "json"

    def test_per_page_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, search={"default_per_page": 0})  # type: ignore[call-arg]


class TestEnvironment:
    def test_nested_env_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("UNISEARCH_SEARCH__DEFAULT_ADAPTER", "meilisearch")
        monkeypatch.setenv("UNISEARCH_SEARCH__DEFAULT_TIMEOUT_MS", "1500")
        monkeypatch.setenv("UNISEARCH_MEILISEARCH__API_KEY", "masterKey")
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.search.default_adapter == "meilisearch"
        assert settings.search.default_timeout_ms == 1500
        assert settings.meilisearch.api_key == "masterKey"

    def test_hosts_json_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("UNISEARCH_OPENSEARCH__HOSTS", '["https://node1:9200", "https://node2:9200"]')
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.opensearch.hosts == ["https://node1:9200", "https://node2:9200"]


class TestHostsParsing:
    def test_comma_separated(self) -> None:
        assert OpenSearchSettings(hosts="https://a:9200, https://b:9200").hosts == [  # type: ignore[arg-type]
            "https://a:9200",
            "https://b:9200",
        ]

    def test_single_host(self) -> None:
        assert OpenSearchSettings(hosts="https://a:9200").hosts == ["https://a:9200"]  # type: ignore[arg-type]


class TestYaml:
    def test_from_yaml(self, tmp_path: Path) -> None:
        config = tmp_path / "unisearch.yaml"
        config.write_text(
            "search:\n"
            "  default_adapter: meilisearch\n"
            "  default_per_page: 50\n"
            "  check_facets: true\n"
            "meilisearch:\n"
            "  base_url: http://meili:7700\n"
            "  task_timeout: 5\n"
        )
        settings = Settings.from_yaml(config)
        assert settings.search.default_adapter == "meilisearch"
        assert settings.search.default_per_page == 50
        assert settings.search.check_facets is True
        assert settings.meilisearch.base_url == "http://meili:7700"
        assert settings.meilisearch.task_timeout == 5.0

    def test_empty_yaml(self, tmp_path: Path) -> None:
        config = tmp_path / "empty.yaml"
        config.write_text("")
        assert Settings.from_yaml(config).search.default_adapter == "opensearch"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            Settings.from_yaml(tmp_path / "missing.yaml")
