"""Diligence - resilience and consolidation core for multi-iteration research jobs."""

__version__ = "0.1.0"
