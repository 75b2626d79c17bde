"""Settings — Pydantic-based configuration with YAML and env var support.

Configuration is loaded from (in order of precedence):
  1. Constructor / YAML values
  2. Environment variables (UNISEARCH_ prefix) and ``.env``
  3. Default values
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class OpenSearchSettings(BaseModel):
    """Connection settings for the ``opensearch`` adapter."""

    hosts: list[str] = Field(default=["http://localhost:9200"], description="Cluster node URLs")
    username: str | None = Field(default=None, description="Basic-auth username")
    password: str | None = Field(default=None, description="Basic-auth password")
    api_key: str | None = Field(default=None, description="API key (sent as 'ApiKey' authorization)")
    verify_certs: bool = Field(default=True, description="Verify TLS certificates")
    timeout: float = Field(default=30.0, description="Transport timeout in seconds")

    @field_validator("hosts", mode="before")
    @classmethod
    def _parse_hosts(cls, v: Any) -> list[str]:
        """Parse hosts from a JSON list string (env var), a plain string or a list."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except (json.JSONDecodeError, TypeError):
                parsed = None
            if isinstance(parsed, list):
                return [str(h) for h in parsed]
            return [h.strip() for h in v.split(",") if h.strip()]
        return list(v)


class MeilisearchSettings(BaseModel):
    """Connection settings for the ``meilisearch`` adapter."""

    base_url: str = Field(default="http://localhost:7700", description="Meilisearch server URL")
    api_key: str | None = Field(default=None, description="Master or API key")
    timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    task_timeout: float = Field(default=30.0, description="Max seconds to wait for an indexing task")


class SearchSettings(BaseModel):
    """Search behavior shared by all adapters."""

    default_adapter: str = Field(default="opensearch", description="Adapter used when none is named")
    default_per_page: int = Field(default=20, ge=1, description="Page size when a query sets none")
    default_timeout_ms: int | None = Field(
        default=None,
        ge=1,
        description="Per-operation time budget when the query sets none (None = no limit)",
    )
    check_facets: bool = Field(
        default=False,
        description="Fetch the index schema before faceted or sorted searches",
    )


class ObservabilitySettings(BaseModel):
    """Observability configuration."""

    log_level: str = Field(default="info", description="Log level: debug, info, warning, error")
    log_format: str = Field(default="json", description="Log format: json, console")


class Settings(BaseSettings):
    """Root settings.

    Nested settings use double underscores::

        UNISEARCH_SEARCH__DEFAULT_ADAPTER=meilisearch
        UNISEARCH_MEILISEARCH__API_KEY=masterKey
        UNISEARCH_OPENSEARCH__HOSTS='["https://node1:9200","https://node2:9200"]'
    """

    model_config = {
        "env_prefix": "UNISEARCH_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    opensearch: OpenSearchSettings = Field(default_factory=OpenSearchSettings)
    meilisearch: MeilisearchSettings = Field(default_factory=MeilisearchSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Settings:
        """Load settings from a YAML file.

        Raises:
            FileNotFoundError: If *path* does not exist.
        """
        import yaml  # type: ignore[import-untyped]

        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)
