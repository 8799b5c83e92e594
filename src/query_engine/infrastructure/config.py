"""Configuration management for the query engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExecutionConfig(BaseModel):
    """Execution configuration."""

    nulls_sort_high: bool = Field(
        default=True,
        description="NULLs compare above all values: NULLS LAST ascending, FIRST descending",
    )
    parallel_aggregate_workers: int = Field(
        default=0, ge=0, le=64, description="Aggregate worker threads (0 or 1 is serial)"
    )
    parallel_aggregate_min_rows: int = Field(
        default=10000, ge=0, description="Minimum input rows before aggregating in parallel"
    )
    query_timeout_seconds: float | None = Field(
        default=None, gt=0, description="Cancel executions running longer than this"
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="json", description="Log format")
    metrics_enabled: bool = Field(default=True, description="Record Prometheus metrics")
    tracing_enabled: bool = Field(default=False, description="Export OpenTelemetry spans")
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="query_engine", description="Service name for tracing")


class Config(BaseSettings):
    """Main configuration for the query engine."""

    model_config = SettingsConfigDict(
        env_prefix="QUERY_ENGINE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
