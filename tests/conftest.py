"""
Shared pytest fixtures and configuration for taskcore tests.

This module provides:
- A manual clock for deterministic TTL tests
- ``settle`` to let the event loop run pending callbacks
- Test settings that never touch the real environment

Usage:
    Fixtures are auto-discovered by pytest.

    async def test_something(settle, clock):
        ...
"""

import asyncio
import sys
from pathlib import Path

import pytest

# Ensure taskcore package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from taskcore.core.settings import TaskCoreSettings, clear_settings_cache


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark all tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Time & Scheduling Fixtures
# =============================================================================


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> ManualClock:
    """A manual clock starting at t=1000s."""
    return ManualClock()


@pytest.fixture
def settle():
    """Return a coroutine that yields to the event loop a few times.

    Lets freshly created tasks start and completion callbacks run without
    relying on wall-clock sleeps.
    """

    async def _settle(rounds: int = 10) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Run every test from an empty directory with no TASKCORE_* variables."""
    import os

    for name in list(os.environ):
        if name.startswith("TASKCORE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def fast_settings() -> TaskCoreSettings:
    """Settings with zero backoff so retry tests do not sleep."""
    return TaskCoreSettings(
        backoff_base_delay=0.0,
        backoff_max_delay=0.0,
        max_concurrency=4,
        default_ttl_seconds=60.0,
    )
