"""
Global pytest configuration and fixtures for all tests.
"""

import random
from datetime import timedelta

import pytest

from pausekeeper.config.settings import get_settings
from pausekeeper.services.decision_engine import DecisionEngine, PausePolicy
from tests.utils import InMemoryResourceClient


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached process-wide; reset them around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def policy() -> PausePolicy:
    """Default policy: 5 minute frozen window, no forced unpause."""
    return PausePolicy()


@pytest.fixture
def polling_policy() -> PausePolicy:
    """Policy with a one hour unpause poll interval."""
    return PausePolicy(unpause_poll_interval=timedelta(hours=1))


@pytest.fixture
def engine(policy) -> DecisionEngine:
    return DecisionEngine(policy, rng=random.Random(42))


@pytest.fixture
def polling_engine(polling_policy) -> DecisionEngine:
    return DecisionEngine(polling_policy, rng=random.Random(42))


@pytest.fixture
def memory_client() -> InMemoryResourceClient:
    return InMemoryResourceClient()
