"""Tests for the adapter registry."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from unisearch.adapters.base.exceptions import InternalError
from unisearch.adapters.base.registry import AdapterNotFoundError, AdapterRegistry
from unisearch.adapters.meilisearch.adapter import MeiliSearchAdapter
from unisearch.adapters.opensearch.adapter import OpenSearchAdapter
from unisearch.config.settings import Settings


class TestRegistration:
    def test_builtins(self) -> None:
        registry = AdapterRegistry.with_builtins()
        assert registry.registered_adapters == ["opensearch", "meilisearch"]
        assert registry.active_adapters == []

    async def test_unknown_adapter(self) -> None:
        with pytest.raises(AdapterNotFoundError, match="solr"):
            await AdapterRegistry.with_builtins().initialize_adapter("solr")

    def test_get_uninitialized(self) -> None:
        with pytest.raises(AdapterNotFoundError, match="not initialized"):
            AdapterRegistry.with_builtins().get("opensearch")


class TestInitializeFromSettings:
    async def test_uses_backend_and_search_settings(self, settings: Settings) -> None:
        settings.search.default_adapter = "meilisearch"
        settings.search.default_per_page = 7
        settings.search.default_timeout_ms = 500
        settings.meilisearch.api_key = "masterKey"

        registry = AdapterRegistry.with_builtins()
        with patch.object(MeiliSearchAdapter, "initialize", AsyncMock()) as initialize:
            adapter = await registry.initialize_from_settings(None, settings)

        initialize.assert_awaited_once()
        assert isinstance(adapter, MeiliSearchAdapter)
        assert adapter._api_key == "masterKey"
        assert adapter.default_per_page == 7
        assert adapter.default_timeout_ms == 500
        assert registry.get("meilisearch") is adapter

    async def test_explicit_name_overrides_default(self, settings: Settings) -> None:
        settings.opensearch.hosts = ["https://node1:9200"]
        registry = AdapterRegistry.with_builtins()
        with patch.object(OpenSearchAdapter, "initialize", AsyncMock()):
            adapter = await registry.initialize_from_settings("opensearch", settings)
        assert isinstance(adapter, OpenSearchAdapter)
        assert adapter._hosts == ["https://node1:9200"]


class TestShutdown:
    async def test_failed_initialize_releases_client(self, settings: Settings) -> None:
        registry = AdapterRegistry.with_builtins()
        failing = AsyncMock(side_effect=InternalError("Failed to connect to Meilisearch"))
        with (
            patch.object(MeiliSearchAdapter, "initialize", failing),
            patch.object(MeiliSearchAdapter, "shutdown", AsyncMock()) as shutdown,
            pytest.raises(InternalError),
        ):
            await registry.initialize_from_settings("meilisearch", settings)

        shutdown.assert_awaited_once()
        assert registry.active_adapters == []

    async def test_shutdown_all_continues_after_failure(self, settings: Settings) -> None:
        registry = AdapterRegistry.with_builtins()
        with (
            patch.object(OpenSearchAdapter, "initialize", AsyncMock()),
            patch.object(MeiliSearchAdapter, "initialize", AsyncMock()),
        ):
            await registry.initialize_from_settings("opensearch", settings)
            await registry.initialize_from_settings("meilisearch", settings)

        with (
            patch.object(OpenSearchAdapter, "shutdown", AsyncMock(side_effect=RuntimeError("boom"))),
            patch.object(MeiliSearchAdapter, "shutdown", AsyncMock()) as meili_shutdown,
        ):
            await registry.shutdown_all()

        meili_shutdown.assert_awaited_once()
        assert registry.active_adapters == []

    async def test_health_check_all(self, settings: Settings) -> None:
        registry = AdapterRegistry.with_builtins()
        with patch.object(OpenSearchAdapter, "initialize", AsyncMock()):
            await registry.initialize_from_settings("opensearch", settings)
        health = await registry.health_check_all()
        assert health["opensearch"].status == "unhealthy"
