"""Pytest configuration and shared fixtures for the outcapture test suite."""

import logging
import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from outcapture.history.context import HistoryContext
from outcapture.interceptor.out_default import OutputInterceptor
from outcapture.session.config import CaptureConfig, HistoryConfig
from outcapture.session.variables import NamespaceVariableStore
from tests.fixtures.renderers import RecordingRenderer


# Configure logging for tests
logging.basicConfig(level=logging.WARNING)


@pytest.fixture
def context() -> HistoryContext:
    """A private history context so tests never share the process default."""
    return HistoryContext(HistoryConfig(maximum_entry_count=10, maximum_item_count_per_entry=5))


@pytest.fixture
def variables() -> NamespaceVariableStore:
    return NamespaceVariableStore()


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def capture_config() -> CaptureConfig:
    return CaptureConfig()


@pytest.fixture
def interceptor(renderer, variables, capture_config, context) -> OutputInterceptor:
    return OutputInterceptor(
        renderer=renderer,
        variables=variables,
        capture_config=capture_config,
        context=context,
        call_stack=lambda: None,
    )


# Test markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Component integration tests")


# Timeout configuration
def pytest_collection_modifyitems(config, items):
    """Modify test collection to add timeout based on markers."""
    for item in items:
        if item.get_closest_marker("unit"):
            item.add_marker(pytest.mark.timeout(5))
        else:
            item.add_marker(pytest.mark.timeout(10))
