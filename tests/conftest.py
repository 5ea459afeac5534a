import pytest

from fakes import FakeDataStore, FakeRateLimiter


@pytest.fixture
def healthy_store() -> FakeDataStore:
    return FakeDataStore()


@pytest.fixture
def admitting_limiter() -> FakeRateLimiter:
    return FakeRateLimiter()
