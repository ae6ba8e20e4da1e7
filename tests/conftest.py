"""Shared pytest fixtures."""

import pytest

from fetchkit import AsyncMemoryCacheStore, AsyncMemoryRemoteStore, MemoryOfflineStore


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: int = 1_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock for each test."""
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> AsyncMemoryCacheStore:
    """Create a fresh AsyncMemoryCacheStore driven by the fake clock."""
    return AsyncMemoryCacheStore(clock=clock)


@pytest.fixture
def offline() -> MemoryOfflineStore:
    """Create a fresh MemoryOfflineStore that starts online."""
    return MemoryOfflineStore()


@pytest.fixture
def remote() -> AsyncMemoryRemoteStore:
    """Create an AsyncMemoryRemoteStore seeded with a small posts collection."""
    store = AsyncMemoryRemoteStore()
    store.seed(
        "posts",
        [
            {"id": "p1", "title": "First", "likes": 5, "tags": ["news"]},
            {"id": "p2", "title": "Second", "likes": 12, "tags": ["tech"]},
            {"id": "p3", "title": "Third", "likes": 8, "tags": ["news", "tech"]},
        ],
    )
    return store
