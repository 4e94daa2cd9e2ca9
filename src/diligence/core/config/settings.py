"""Top-level diligence configuration."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, model_validator

from diligence.core.config.execution import (
    CircuitBreakerConfig,
    EndpointConfig,
    RetryConfig,
    default_endpoints,
)
from diligence.core.config.research import (
    ConsolidationConfig,
    JobDefaultsConfig,
    QualityConfig,
)


class DiligenceConfig(BaseModel):
    """Complete configuration for the research core.

    Loaded from YAML; every section is optional and falls back to defaults.

    Example:
        retry:
          max_retries: 3
          base_delay_seconds: 30
        circuit_breaker:
          failure_threshold: 5
        endpoints:
          SEARCH_API:
            url: https://search.example.com/health
            timeout_seconds: 45
    """

    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    endpoints: dict[str, EndpointConfig] = Field(default_factory=default_endpoints)
    consolidation: ConsolidationConfig = Field(default_factory=ConsolidationConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    jobs: JobDefaultsConfig = Field(default_factory=JobDefaultsConfig)

    @model_validator(mode="before")
    @classmethod
    def _fill_endpoint_names(cls, data: object) -> object:
        """Allow YAML endpoint entries to omit ``name`` (the key is the name)."""
        if isinstance(data, dict) and isinstance(data.get("endpoints"), dict):
            endpoints = {}
            for key, value in data["endpoints"].items():
                if isinstance(value, dict) and "name" not in value:
                    value = {**value, "name": key}
                endpoints[key] = value
            data = {**data, "endpoints": endpoints}
        return data

    def endpoint(self, key: str) -> EndpointConfig:
        """Get the endpoint config for a key, synthesizing a default one."""
        found = self.endpoints.get(key) or self.endpoints.get(key.upper())
        if found is not None:
            return found
        return EndpointConfig(name=key)

    def retry_for(self, key: str) -> RetryConfig:
        return self.endpoint(key).retry or self.retry

    def circuit_breaker_for(self, key: str) -> CircuitBreakerConfig:
        return self.endpoint(key).circuit_breaker or self.circuit_breaker

    @classmethod
    def from_yaml(cls, path: Path) -> DiligenceConfig:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> DiligenceConfig:
        """Load configuration from a YAML string."""
        data = yaml.safe_load(yaml_str)
        return cls.model_validate(data or {})
