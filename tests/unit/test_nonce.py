"""Unit tests for session nonces."""

from datetime import datetime, timedelta

import pytest

from eidolon.session.nonce import NonceManager


class SteppingClock:
    """Naive UTC clock that only moves when told to."""

    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def nonces(database, clock):
    return NonceManager(database, ttl_seconds=60, max_requests=3, clock=clock)


async def test_create_nonce_stores_row(nonces):
    """Test issuing a nonce."""
    nonce = await nonces.create_nonce("room-1", "session-1")

    row = await nonces.get_nonce("session-1")
    assert row is not None
    assert row.nonce == nonce
    assert row.room_id == "room-1"
    assert row.request_count == 0


async def test_nonces_are_unique(nonces):
    first = await nonces.create_nonce("room-1", "session-1")
    second = await nonces.create_nonce("room-1", "session-1")

    assert first != second
    assert len(first) >= 32


async def test_validate_consumes_requests_up_to_limit(nonces):
    """A nonce is good for max_requests validations, then exhausted."""
    nonce = await nonces.create_nonce("room-1", "session-1")

    assert await nonces.validate_nonce("session-1", nonce)
    assert await nonces.validate_nonce("session-1", nonce)
    assert await nonces.validate_nonce("session-1", nonce)
    assert not await nonces.validate_nonce("session-1", nonce)


async def test_max_requests_override(nonces):
    nonce = await nonces.create_nonce("room-1", "session-1")

    assert await nonces.validate_nonce("session-1", nonce, max_requests=1)
    assert not await nonces.validate_nonce("session-1", nonce, max_requests=1)


async def test_reissue_invalidates_previous_nonce(nonces):
    """Only the most recently issued nonce of a session is accepted."""
    old = await nonces.create_nonce("room-1", "session-1")
    new = await nonces.create_nonce("room-1", "session-1")

    assert not await nonces.validate_nonce("session-1", old)
    assert await nonces.validate_nonce("session-1", new)


async def test_reissue_resets_counter(nonces):
    nonce = await nonces.create_nonce("room-1", "session-1")
    for _ in range(3):
        await nonces.validate_nonce("session-1", nonce)

    fresh = await nonces.create_nonce("room-1", "session-1")
    assert await nonces.validate_nonce("session-1", fresh)


async def test_wrong_session_or_empty_nonce_rejected(nonces):
    nonce = await nonces.create_nonce("room-1", "session-1")

    assert not await nonces.validate_nonce("session-2", nonce)
    assert not await nonces.validate_nonce("session-1", "")
    assert not await nonces.validate_nonce("session-1", None)
    assert not await nonces.validate_nonce("session-1", "forged")


async def test_expired_nonce_rejected(nonces, clock):
    """Test TTL expiry."""
    nonce = await nonces.create_nonce("room-1", "session-1")

    clock.advance(61)
    assert not await nonces.validate_nonce("session-1", nonce)


async def test_custom_ttl(nonces, clock):
    nonce = await nonces.create_nonce("room-1", "session-1", ttl_seconds=5)

    clock.advance(4)
    assert await nonces.validate_nonce("session-1", nonce)
    clock.advance(2)
    assert not await nonces.validate_nonce("session-1", nonce)


async def test_cleanup_expired_nonces(nonces, clock):
    """Only expired rows are purged."""
    await nonces.create_nonce("room-1", "stale", ttl_seconds=10)
    await nonces.create_nonce("room-2", "live", ttl_seconds=600)

    clock.advance(30)
    assert await nonces.cleanup_expired_nonces() is True

    assert await nonces.get_nonce("stale") is None
    assert await nonces.get_nonce("live") is not None


async def test_cleanup_reports_failure(nonces, database):
    """A store failure is logged and reported, never raised."""
    database.breaker.config.failure_threshold = 1
    database.breaker.record_failure()

    assert await nonces.cleanup_expired_nonces() is False


async def test_revoke(nonces):
    await nonces.create_nonce("room-1", "a")
    await nonces.create_nonce("room-1", "b")

    await nonces.revoke(["a"])
    await nonces.revoke([])

    assert await nonces.get_nonce("a") is None
    assert await nonces.get_nonce("b") is not None
