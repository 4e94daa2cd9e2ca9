"""Pytest fixtures for diligence tests."""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from diligence.core.config import CircuitBreakerConfig, DiligenceConfig, EndpointConfig
from tests.helpers import FakeClock, RecordingSleep


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging state before and after each test.

    This ensures test isolation for logging configuration.
    """
    # Reset structlog to default state
    structlog.reset_defaults()

    # Clear all handlers from root logger
    root_logger = logging.getLogger()
    original_level = root_logger.level
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    structlog.reset_defaults()

    # Restore original handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def search_api_config() -> DiligenceConfig:
    """Config with a SEARCH_API endpoint whose breaker trips after three failures."""
    return DiligenceConfig(
        circuit_breaker=CircuitBreakerConfig(failure_threshold=3, cooldown_seconds=60),
        endpoints={
            "SEARCH_API": EndpointConfig(
                name="SEARCH_API",
                url="https://search.example.com/health",
                timeout_seconds=5,
            ),
        },
    )


@pytest.fixture
def good_result() -> dict:
    """Provider result that should score at the top of every dimension."""
    return {
        "content": "Acme Pvt Ltd is a registered private limited company. " * 20,
        "summary": "Acme Pvt Ltd has an active registration and two disclosed matters.",
        "findings": [
            {
                "title": "Director X has 3 active litigations",
                "description": "Three civil suits are pending before the district court.",
                "severity": "high",
                "source": "District court registrar (ecourts.gov.in)",
                "verification_level": "high",
                "citations": ["https://ecourts.gov.in/case/123"],
            },
            {
                "title": "Annual return filed for FY2024",
                "description": "The annual return was filed with the registrar on time.",
                "severity": "info",
                "source": "Registrar of Companies (mca.gov.in)",
                "verification_level": "high",
                "citations": ["https://mca.gov.in/filing/456"],
            },
        ],
    }


@pytest.fixture
def config_yaml(tmp_path: Path) -> Path:
    path = tmp_path / "diligence.yaml"
    path.write_text(
        """
retry:
  max_retries: 2
  base_delay_seconds: 10
circuit_breaker:
  failure_threshold: 4
endpoints:
  SEARCH_API:
    url: https://search.example.com/health
    timeout_seconds: 45
    circuit_breaker:
      failure_threshold: 2
quality:
  pass_threshold: 50
"""
    )
    return path
