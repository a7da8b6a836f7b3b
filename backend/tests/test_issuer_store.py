"""Tests for the JSONL and SQL issuer stores."""
from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from certapi.db.base import Base
from certapi.services.issuers import (
    IssuerStore,
    IssuerTier,
    SQLIssuerStore,
    build_issuer_store,
    hash_api_key,
)


@pytest.mark.anyio
async def test_jsonl_store_roundtrip(tmp_path: Path) -> None:
    store = IssuerStore(tmp_path / "issuers.jsonl")
    rec, plaintext = await store.create_issuer(name="Acme Academy", tier=IssuerTier.PAID)

    assert plaintext.startswith("ck_")
    assert rec.api_key_hash == hash_api_key(plaintext)
    assert plaintext not in (tmp_path / "issuers.jsonl").read_text(encoding="utf-8")

    found = await store.find_active_by_key_hash(hash_api_key(plaintext))
    assert found is not None and found.id == rec.id and found.tier is IssuerTier.PAID

    updated = await store.update_issuer(rec.id, is_active=False)
    assert updated is not None and not updated.is_active
    assert await store.find_active_by_key_hash(hash_api_key(plaintext)) is None
    assert await store.update_issuer("missing", tier=IssuerTier.FREE) is None


@pytest.mark.anyio
async def test_jsonl_store_skips_malformed_lines(tmp_path: Path) -> None:
    path = tmp_path / "issuers.jsonl"
    store = IssuerStore(path)
    rec, _ = await store.create_issuer(name="Good")
    with path.open("a", encoding="utf-8") as fh:
        fh.write("{not json}\n")

    issuers = await store.list_issuers()
    assert [i.id for i in issuers] == [rec.id]


@pytest.mark.anyio
async def test_sql_store_roundtrip(tmp_path: Path) -> None:
    engine = create_async_engine("sqlite+aiosqlite:///" + str(tmp_path / "issuers.db"))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    store = SQLIssuerStore(async_sessionmaker(engine, expire_on_commit=False))

    rec, plaintext = await store.create_issuer(name="Sql Issuer", contact_email="ops@example.com")
    assert rec.tier is IssuerTier.FREE

    found = await store.find_active_by_key_hash(hash_api_key(plaintext))
    assert found is not None and found.contact_email == "ops@example.com"

    upgraded = await store.update_issuer(rec.id, tier=IssuerTier.PAID)
    assert upgraded.tier is IssuerTier.PAID
    assert (await store.get_issuer(rec.id)).tier is IssuerTier.PAID

    await store.update_issuer(rec.id, is_active=False)
    assert await store.find_active_by_key_hash(hash_api_key(plaintext)) is None
    assert [i.id for i in await store.list_issuers()] == [rec.id]
    await engine.dispose()


@pytest.mark.anyio
async def test_concurrent_creates_share_one_file_store(make_settings) -> None:
    settings = make_settings()
    store = build_issuer_store(settings)
    assert build_issuer_store(settings) is store

    created = await asyncio.gather(
        *(build_issuer_store(settings).create_issuer(name=f"Issuer {i}") for i in range(40))
    )

    listed = await store.list_issuers()
    assert sorted(i.id for i in listed) == sorted(rec.id for rec, _ in created)
    assert len(listed) == 40
