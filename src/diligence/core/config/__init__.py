"""Configuration models for diligence.

This package provides Pydantic models for loading and validating YAML
configuration. All models are re-exported from this ``__init__`` so
``from diligence.core.config import ...`` works for every section.
"""

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
from diligence.core.config.settings import DiligenceConfig

__all__ = [
    "CircuitBreakerConfig",
    "ConsolidationConfig",
    "DiligenceConfig",
    "EndpointConfig",
    "JobDefaultsConfig",
    "QualityConfig",
    "RetryConfig",
    "default_endpoints",
]
