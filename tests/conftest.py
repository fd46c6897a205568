"""Shared fixtures for ledger_ingest tests."""

import asyncio

import pytest

from ledger_ingest.config import EngineConfig


async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.005):
    """Poll `predicate` until it is truthy or fail after `timeout` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def fast_config():
    """Engine settings with every delay shrunk for tests."""
    def build(**overrides) -> EngineConfig:
        settings = dict(
            catch_up_poll_interval_ms=0,
            fetch_retry_delay=0.001,
            fetch_timeout=1.0,
            head_retry_initial_delay=0.001,
            head_retry_max_delay=0.01,
            shutdown_grace=1.0,
        )
        settings.update(overrides)
        return EngineConfig(**settings)
    return build
