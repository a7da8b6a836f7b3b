"""Tests for API key -> issuer resolution and its positive cache."""
from __future__ import annotations

import asyncio

import pytest

from certapi.services.issuers import (
    IssuerDirectory,
    IssuerIdentity,
    IssuerLookupError,
    IssuerTier,
    hash_api_key,
)
from conftest import StaticIssuerStore, make_record

API_KEY = "ck_test_key"


@pytest.mark.anyio
async def test_cache_hit_skips_store_until_ttl_expires(clock) -> None:
    store = StaticIssuerStore(make_record(hash_api_key(API_KEY), tier=IssuerTier.PAID))
    directory = IssuerDirectory(store, ttl_seconds=300, clock=clock)

    first = await directory.resolve(API_KEY)
    clock.advance(299_999)
    second = await directory.resolve(API_KEY)

    assert first == second == IssuerIdentity(id="iss-1", tier=IssuerTier.PAID)
    assert store.calls == 1

    clock.advance(1_001)  # 5 minutes and 1 second after the first lookup
    await directory.resolve(API_KEY)
    assert store.calls == 2


@pytest.mark.anyio
async def test_entry_is_not_served_at_cache_until(clock) -> None:
    store = StaticIssuerStore(make_record(hash_api_key(API_KEY)))
    directory = IssuerDirectory(store, ttl_seconds=300, clock=clock)
    await directory.resolve(API_KEY)
    clock.advance(300_000)
    await directory.resolve(API_KEY)
    assert store.calls == 2


@pytest.mark.anyio
async def test_unknown_key_is_not_found_and_not_cached(clock) -> None:
    store = StaticIssuerStore(make_record(hash_api_key("other")))
    directory = IssuerDirectory(store, clock=clock)

    assert await directory.resolve(API_KEY) is None
    assert await directory.resolve(API_KEY) is None
    assert store.calls == 2
    assert len(directory) == 0


@pytest.mark.anyio
async def test_inactive_issuer_does_not_resolve(clock) -> None:
    store = StaticIssuerStore(make_record(hash_api_key(API_KEY), is_active=False))
    directory = IssuerDirectory(store, clock=clock)
    assert await directory.resolve(API_KEY) is None


@pytest.mark.anyio
async def test_missing_tier_defaults_to_free(clock) -> None:
    record = make_record(hash_api_key(API_KEY))
    record.tier = None  # type: ignore[assignment]
    directory = IssuerDirectory(StaticIssuerStore(record), clock=clock)
    identity = await directory.resolve(API_KEY)
    assert identity.tier is IssuerTier.FREE


@pytest.mark.anyio
async def test_store_error_is_distinct_from_not_found(clock) -> None:
    class _Down:
        async def find_active_by_key_hash(self, key_hash: str):
            raise ConnectionError("database unreachable")

    directory = IssuerDirectory(_Down(), clock=clock)
    with pytest.raises(IssuerLookupError):
        await directory.resolve(API_KEY)


@pytest.mark.anyio
async def test_slow_store_times_out(clock) -> None:
    class _Slow:
        async def find_active_by_key_hash(self, key_hash: str):
            await asyncio.sleep(5)

    directory = IssuerDirectory(_Slow(), lookup_timeout_seconds=0.05, clock=clock)
    with pytest.raises(IssuerLookupError, match="timed out"):
        await directory.resolve(API_KEY)


@pytest.mark.anyio
async def test_expired_entries_are_evicted_on_sweep(clock) -> None:
    keys = ["k1", "k2"]
    store = StaticIssuerStore(*(make_record(hash_api_key(k), issuer_id=k) for k in keys))
    directory = IssuerDirectory(store, ttl_seconds=1, sweep_interval_ms=10_000, clock=clock)
    for key in keys:
        await directory.resolve(key)
    assert len(directory) == 2

    clock.advance(10_000)
    await directory.resolve("unknown")
    assert len(directory) == 0


def test_hash_api_key_is_sha256_hex() -> None:
    assert hash_api_key("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
