"""Issuer records, API key hashing and the cached key -> issuer directory.

Two interchangeable stores back issuer lookups: a JSONL file for local
development and a SQL store when ``DATABASE_URL`` is configured. Both expose
the same async interface so the directory does not care which one it holds.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Callable, Optional, Protocol, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from certapi.core.config import Settings
from certapi.db import models
from certapi.db.session import get_session_maker

logger = logging.getLogger(__name__)


class IssuerTier(str, Enum):
    FREE = "free"
    PAID = "paid"


def _coerce_tier(value: object) -> IssuerTier:
    """Map a stored tier to the enum; unset or unknown values mean FREE."""

    try:
        return IssuerTier(value) if value else IssuerTier.FREE
    except ValueError:
        return IssuerTier.FREE


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    return f"ck_{os.urandom(24).hex()}"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class IssuerIdentity:
    id: str
    tier: IssuerTier


@dataclass(slots=True)
class IssuerRecord:
    id: str
    name: str
    public_key: str
    tier: IssuerTier = IssuerTier.FREE
    is_active: bool = True
    api_key_hash: str | None = None
    description: str | None = None
    website: str | None = None
    contact_email: str | None = None
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class IssuerLookupError(RuntimeError):
    """The durable issuer store failed or timed out (not the same as NotFound)."""


class IssuerStoreProtocol(Protocol):
    async def find_active_by_key_hash(self, key_hash: str) -> IssuerRecord | None: ...


# ---------------------
# JSONL store
# ---------------------


class IssuerStore:
    """File-backed issuer store; one JSON object per line."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _read_all(self) -> list[IssuerRecord]:
        if not self._path.exists():
            return []
        items: list[IssuerRecord] = []
        with self._path.open("r", encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                    items.append(
                        IssuerRecord(
                            id=obj["id"],
                            name=obj["name"],
                            public_key=obj["public_key"],
                            tier=_coerce_tier(obj.get("tier")),
                            is_active=bool(obj.get("is_active", True)),
                            api_key_hash=obj.get("api_key_hash"),
                            description=obj.get("description"),
                            website=obj.get("website"),
                            contact_email=obj.get("contact_email"),
                            created_at=obj.get(
                                "created_at", datetime.now(timezone.utc).isoformat()
                            ),
                        )
                    )
                except (KeyError, ValueError, TypeError):
                    logger.warning("Skipping malformed issuer record at %s:%d", self._path, lineno)
        return items

    def _write_all(self, items: list[IssuerRecord]) -> None:
        tmp = self._path.with_name(f".{self._path.name}.{uuid.uuid4().hex}.tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            for item in items:
                payload = asdict(item)
                payload["tier"] = item.tier.value
                fh.write(json.dumps(payload, ensure_ascii=False))
                fh.write("\n")
        tmp.replace(self._path)

    def _create(
        self, name: str, tier: IssuerTier, public_key: str | None, **extra: Optional[str]
    ) -> tuple[IssuerRecord, str]:
        plaintext = generate_api_key()
        rec = IssuerRecord(
            id=str(uuid.uuid4()),
            name=name,
            public_key=public_key or os.urandom(16).hex(),
            tier=tier,
            api_key_hash=hash_api_key(plaintext),
            **extra,
        )
        with self._lock:
            items = self._read_all()
            items.append(rec)
            self._write_all(items)
        return rec, plaintext

    def _update(
        self, issuer_id: str, tier: IssuerTier | None, is_active: bool | None
    ) -> IssuerRecord | None:
        with self._lock:
            items = self._read_all()
            for item in items:
                if item.id == issuer_id:
                    if tier is not None:
                        item.tier = tier
                    if is_active is not None:
                        item.is_active = is_active
                    self._write_all(items)
                    return item
        return None

    def _find_by_hash(self, key_hash: str) -> IssuerRecord | None:
        for item in self._read_all():
            if item.is_active and item.api_key_hash == key_hash:
                return item
        return None

    async def find_active_by_key_hash(self, key_hash: str) -> IssuerRecord | None:
        return await asyncio.to_thread(self._find_by_hash, key_hash)

    async def create_issuer(
        self,
        *,
        name: str,
        tier: IssuerTier = IssuerTier.FREE,
        public_key: str | None = None,
        description: str | None = None,
        website: str | None = None,
        contact_email: str | None = None,
    ) -> tuple[IssuerRecord, str]:
        return await asyncio.to_thread(
            self._create,
            name,
            tier,
            public_key,
            description=description,
            website=website,
            contact_email=contact_email,
        )

    async def list_issuers(self) -> list[IssuerRecord]:
        return await asyncio.to_thread(self._read_all)

    async def get_issuer(self, issuer_id: str) -> IssuerRecord | None:
        for item in await self.list_issuers():
            if item.id == issuer_id:
                return item
        return None

    async def update_issuer(
        self, issuer_id: str, *, tier: IssuerTier | None = None, is_active: bool | None = None
    ) -> IssuerRecord | None:
        return await asyncio.to_thread(self._update, issuer_id, tier, is_active)


# ---------------------
# SQL store
# ---------------------


def _row_to_record(row: models.Issuer) -> IssuerRecord:
    return IssuerRecord(
        id=row.id,
        name=row.name,
        public_key=row.public_key,
        tier=_coerce_tier(row.tier),
        is_active=row.is_active,
        api_key_hash=row.api_key_hash,
        description=row.description,
        website=row.website,
        contact_email=row.contact_email,
        created_at=row.created_at.isoformat()
        if row.created_at
        else datetime.now(timezone.utc).isoformat(),
    )


class SQLIssuerStore:
    """SQL-backed issuer store with the same async interface as IssuerStore."""

    def __init__(self, session_maker: async_sessionmaker) -> None:
        self._session_maker = session_maker

    async def find_active_by_key_hash(self, key_hash: str) -> IssuerRecord | None:
        async with self._session_maker() as session:
            row = (
                await session.execute(
                    select(models.Issuer).where(
                        models.Issuer.api_key_hash == key_hash,
                        models.Issuer.is_active == True,  # noqa: E712
                    )
                )
            ).scalar_one_or_none()
        return _row_to_record(row) if row else None

    async def create_issuer(
        self,
        *,
        name: str,
        tier: IssuerTier = IssuerTier.FREE,
        public_key: str | None = None,
        description: str | None = None,
        website: str | None = None,
        contact_email: str | None = None,
    ) -> tuple[IssuerRecord, str]:
        plaintext = generate_api_key()
        row = models.Issuer(
            id=str(uuid.uuid4()),
            name=name,
            public_key=public_key or os.urandom(16).hex(),
            tier=tier.value,
            is_active=True,
            api_key_hash=hash_api_key(plaintext),
            description=description,
            website=website,
            contact_email=contact_email,
        )
        async with self._session_maker() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return _row_to_record(row), plaintext

    async def list_issuers(self) -> list[IssuerRecord]:
        async with self._session_maker() as session:
            rows = (
                await session.execute(select(models.Issuer).order_by(models.Issuer.created_at))
            ).scalars().all()
        return [_row_to_record(row) for row in rows]

    async def get_issuer(self, issuer_id: str) -> IssuerRecord | None:
        async with self._session_maker() as session:
            row = await session.get(models.Issuer, issuer_id)
        return _row_to_record(row) if row else None

    async def update_issuer(
        self, issuer_id: str, *, tier: IssuerTier | None = None, is_active: bool | None = None
    ) -> IssuerRecord | None:
        async with self._session_maker() as session:
            row = await session.get(models.Issuer, issuer_id)
            if row is None:
                return None
            if tier is not None:
                row.tier = tier.value
            if is_active is not None:
                row.is_active = is_active
            await session.commit()
            await session.refresh(row)
        return _row_to_record(row)


AnyIssuerStore = Union[IssuerStore, SQLIssuerStore]


@lru_cache
def file_issuer_store(path: str) -> IssuerStore:
    """One store per file so every writer in the process shares its lock."""
    return IssuerStore(path)


def build_issuer_store(settings: Settings) -> AnyIssuerStore:
    """SQL store when DATABASE_URL is set, JSONL file store otherwise."""

    if settings.database_url:
        return SQLIssuerStore(get_session_maker(settings))
    return file_issuer_store(str(Path(settings.issuer_store_path).resolve()))


# ---------------------
# Directory cache
# ---------------------


@dataclass(slots=True)
class DirectoryCacheEntry:
    issuer_id: str
    tier: IssuerTier
    cache_until: int


class IssuerDirectory:
    """Resolve raw API keys to issuer identities with a short positive cache.

    Misses go to the durable store under a timeout. A key that matches no
    active issuer returns ``None`` and is not cached; store failures raise
    :class:`IssuerLookupError` so the caller can apply its fail-open or
    fail-closed policy.
    """

    def __init__(
        self,
        store: IssuerStoreProtocol,
        *,
        ttl_seconds: int = 300,
        lookup_timeout_seconds: float = 2.0,
        sweep_interval_ms: int = 60_000,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._ttl_ms = int(ttl_seconds * 1000)
        self._timeout = lookup_timeout_seconds
        self._sweep_interval_ms = sweep_interval_ms
        self._clock = clock
        # raw API key -> entry; the key itself never leaves this map
        self._entries: dict[str, DirectoryCacheEntry] = {}
        self._last_sweep = clock()

    async def resolve(self, api_key: str) -> IssuerIdentity | None:
        now = self._clock()
        cached = self._entries.get(api_key)
        if cached and cached.cache_until > now:
            return IssuerIdentity(id=cached.issuer_id, tier=cached.tier)

        self._maybe_sweep(now)
        try:
            record = await asyncio.wait_for(
                self._store.find_active_by_key_hash(hash_api_key(api_key)),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise IssuerLookupError(
                f"issuer lookup timed out after {self._timeout:.1f}s"
            ) from exc
        except Exception as exc:
            raise IssuerLookupError(f"issuer lookup failed: {exc}") from exc

        if record is None:
            return None

        tier = _coerce_tier(record.tier)
        self._entries[api_key] = DirectoryCacheEntry(
            issuer_id=record.id, tier=tier, cache_until=now + self._ttl_ms
        )
        return IssuerIdentity(id=record.id, tier=tier)

    def evict_expired(self, now: int | None = None) -> int:
        now = self._clock() if now is None else now
        stale = [key for key, entry in self._entries.items() if entry.cache_until <= now]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def _maybe_sweep(self, now: int) -> None:
        if now - self._last_sweep < self._sweep_interval_ms:
            return
        self._last_sweep = now
        evicted = self.evict_expired(now)
        if evicted:
            logger.debug("Evicted %d expired issuer cache entries", evicted)

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "AnyIssuerStore",
    "DirectoryCacheEntry",
    "IssuerDirectory",
    "IssuerIdentity",
    "IssuerLookupError",
    "IssuerRecord",
    "IssuerStore",
    "IssuerTier",
    "SQLIssuerStore",
    "build_issuer_store",
    "file_issuer_store",
    "generate_api_key",
    "hash_api_key",
]
