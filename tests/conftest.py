"""Shared fixtures for the pocketcal test suite."""

from collections.abc import Generator
from types import SimpleNamespace
from typing import Any

import pytest

from pocketcal.core.timezone_utils import TEST_TIME_ENV
from pocketcal.domain.event_store import MemoryEventStore


def pytest_configure(config: Any) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Multi-component edit and storage flows")


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight settings object used across tests.

    Fields:
      - default_duration_minutes: duration assumed when a definition has no end
      - rule_window_padding_days: padding around the rule query window
      - max_occurrences_per_rule: cap on instants produced per rule
    """
    return SimpleNamespace(
        default_duration_minutes=60,
        rule_window_padding_days=1,
        max_occurrences_per_rule=5000,
    )


@pytest.fixture
def memory_store() -> MemoryEventStore:
    """Empty in-memory definition store."""
    return MemoryEventStore()


@pytest.fixture
def weekly_series() -> dict[str, Any]:
    """Weekly Monday 09:00-10:00 series starting 2025-01-06."""
    return {
        "id": "standup",
        "title": "Standup",
        "start_wall": "2025-01-06T09:00:00",
        "end_wall": "2025-01-06T10:00:00",
        "repeat_rule": "FREQ=WEEKLY",
        "alert_offset_minutes": 10,
    }


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear pocketcal environment overrides before and after each test."""
    for name in (TEST_TIME_ENV, "POCKETCAL_DEBUG", "POCKETCAL_LOG_LEVEL", "POCKETCAL_STORE_PATH", "POCKETCAL_DEFAULT_ZONE"):
        monkeypatch.delenv(name, raising=False)
    yield
    monkeypatch.delenv(TEST_TIME_ENV, raising=False)
