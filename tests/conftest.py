"""Pytest configuration and fixtures for Flowline tests."""

import pytest

from flowline import ExecutionConfig, MemorySink, NodeRegistry


@pytest.fixture
def registry():
    """Create a fresh node registry."""
    return NodeRegistry()


@pytest.fixture
def sink():
    """Create an in-memory result sink."""
    return MemorySink()


@pytest.fixture
def fast_config():
    """Config with tiny timeouts and backoff so retry tests stay fast."""
    return ExecutionConfig(
        timeout_ms=1000,
        max_retries=3,
        backoff_base_ms=1,
        backoff_max_ms=5,
    )
