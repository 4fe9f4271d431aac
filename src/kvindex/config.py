"""Centralized configuration for kvindex using Pydantic Settings."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine-wide settings loaded from ``KVINDEX_*`` environment variables.

    Per-field indexing options live on :class:`kvindex.search.schema.IndexConfig`;
    these settings only cover choices shared by every field of an engine.
    """

    model_config = SettingsConfigDict(
        env_prefix="KVINDEX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    # Store routing
    default_store: str = Field(default="default", min_length=1, description="Store used by fields without one")
    summary_store: str | None = Field(
        default=None, description="Store holding document summaries (defaults to default_store)"
    )
    dictionary_store: str | None = Field(
        default=None, description="Store holding the term dictionary and its counter (defaults to default_store)"
    )

    # Index layout
    use_term_ids: bool = Field(default=True, description="Key postings by compact term ids instead of raw terms")
    frequency_basis: Literal["field", "document"] = Field(
        default="field",
        description="Normalize posting frequency by the field's token count or by the document's total token count",
    )

    # Logging
    log_level: str = Field(default="info", description="Logging level")
    json_logs: bool = Field(default=True, description="Emit structured JSON logs")
    service_name: str = Field(default="kvindex", description="Service name reported to OpenTelemetry")

    def resolved_summary_store(self) -> str:
        """Return the store name that holds document summaries."""
        return self.summary_store or self.default_store

    def resolved_dictionary_store(self) -> str:
        """Return the store name that holds the term dictionary."""
        return self.dictionary_store or self.default_store
