"""
Tests for the in-process key-value store and the rate limit built on it.
"""

import asyncio
import uuid
from types import SimpleNamespace

import pytest

from aquabeacon.api.deps import RequestContext, enforce_payment_rate_limit
from aquabeacon.exceptions import RateLimitExceeded
from aquabeacon.redis import MemoryKeyValueStore


class TestMemoryKeyValueStore:

    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        store = MemoryKeyValueStore()

        await store.set("a", "1")
        assert await store.get("a") == "1"

        await store.delete("a")
        assert await store.get("a") is None

    @pytest.mark.asyncio
    async def test_ttl_expiry(self):
        store = MemoryKeyValueStore()

        await store.set("token", "abc", ttl=0.01)
        await asyncio.sleep(0.02)

        assert await store.get("token") is None

    @pytest.mark.asyncio
    async def test_incr_window(self):
        store = MemoryKeyValueStore()

        assert await store.incr("hits", ttl=60) == 1
        assert await store.incr("hits", ttl=60) == 2

    @pytest.mark.asyncio
    async def test_incr_restarts_after_window(self):
        store = MemoryKeyValueStore()

        await store.incr("hits", ttl=0.01)
        await asyncio.sleep(0.02)

        assert await store.incr("hits", ttl=60) == 1


class TestPaymentRateLimit:

    @pytest.mark.asyncio
    async def test_limit_is_per_user(self):
        store = MemoryKeyValueStore()
        alice = RequestContext(user=SimpleNamespace(id=uuid.uuid4()), store=store)
        bob = RequestContext(user=SimpleNamespace(id=uuid.uuid4()), store=store)

        for _ in range(5):
            await enforce_payment_rate_limit(alice)

        with pytest.raises(RateLimitExceeded):
            await enforce_payment_rate_limit(alice)

        await enforce_payment_rate_limit(bob)
