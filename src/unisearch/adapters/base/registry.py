"""Adapter Registry — Registration and construction of search adapters.

The registry maps adapter names to classes and builds initialized
instances, either from explicit keyword arguments or from ``Settings``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from unisearch.adapters.base.adapter import AdapterHealth, SearchAdapter
from unisearch.adapters.base.exceptions import ConfigurationError

if TYPE_CHECKING:
    from unisearch.config.settings import Settings

logger = logging.getLogger(__name__)


class AdapterNotFoundError(ConfigurationError):
    """Raised when a requested adapter is not registered or not initialized."""


class AdapterRegistry:
    """Registry for search adapter classes and their live instances.

    Example:
        >>> registry = AdapterRegistry.with_builtins()
        >>> adapter = await registry.initialize_from_settings("meilisearch", settings)
        >>> await registry.shutdown_all()
    """

    def __init__(self) -> None:
        self._classes: dict[str, type[SearchAdapter]] = {}
        self._instances: dict[str, SearchAdapter] = {}

    @classmethod
    def with_builtins(cls) -> AdapterRegistry:
        """Return a registry with the ``opensearch`` and ``meilisearch`` adapters registered."""
        from unisearch.adapters.meilisearch.adapter import MeiliSearchAdapter
        from unisearch.adapters.opensearch.adapter import OpenSearchAdapter

        registry = cls()
        registry.register("opensearch", OpenSearchAdapter)
        registry.register("meilisearch", MeiliSearchAdapter)
        return registry

    def register(self, name: str, adapter_class: type[SearchAdapter]) -> None:
        if name in self._classes:
            logger.warning("Overwriting existing adapter registration: %s", name)
        self._classes[name] = adapter_class
        logger.debug("Registered adapter: %s", name)

    async def initialize_adapter(self, name: str, **kwargs: Any) -> SearchAdapter:
        """Create and initialize an adapter instance.

        Args:
            name: The registered adapter name.
            **kwargs: Passed to the adapter constructor.

        Raises:
            AdapterNotFoundError: If no adapter is registered under this name.
        """
        if name not in self._classes:
            raise AdapterNotFoundError(
                f"No adapter registered with name '{name}'. Available adapters: {sorted(self._classes)}"
            )

        adapter = self._classes[name](**kwargs)
        try:
            await adapter.initialize()
        except Exception:
            # Release whatever client initialize() managed to open before failing.
            await adapter.shutdown()
            raise
        self._instances[name] = adapter
        logger.info("Initialized adapter: %s", name)
        return adapter

    async def initialize_from_settings(self, name: str | None, settings: Settings) -> SearchAdapter:
        """Initialize adapter *name* (default: ``search.default_adapter``) from *settings*."""
        name = name or settings.search.default_adapter
        backend = getattr(settings, name, None)
        kwargs: dict[str, Any] = backend.model_dump() if backend is not None else {}
        kwargs.update(
            default_per_page=settings.search.default_per_page,
            default_timeout_ms=settings.search.default_timeout_ms,
            check_facets=settings.search.check_facets,
        )
        return await self.initialize_adapter(name, **kwargs)

    def get(self, name: str) -> SearchAdapter:
        if name not in self._instances:
            raise AdapterNotFoundError(f"Adapter '{name}' is not initialized. Call initialize_adapter() first.")
        return self._instances[name]

    async def health_check_all(self) -> dict[str, AdapterHealth]:
        """Run health checks on all initialized adapters."""
        return {name: await adapter.health_check() for name, adapter in self._instances.items()}

    async def shutdown_all(self) -> None:
        """Shut down all initialized adapters."""
        for name, adapter in self._instances.items():
            try:
                await adapter.shutdown()
                logger.info("Shut down adapter: %s", name)
            except Exception:
                logger.warning("Error shutting down adapter: %s", name, exc_info=True)
        self._instances.clear()

    @property
    def registered_adapters(self) -> list[str]:
        return list(self._classes)

    @property
    def active_adapters(self) -> list[str]:
        return list(self._instances)
