from __future__ import annotations

from typing import Iterator

import pytest

from certapi.core.config import Settings, get_settings
from certapi.main import app
from certapi.services.issuers import IssuerRecord, IssuerTier


@pytest.fixture
def anyio_backend() -> str:
    """Force anyio-based tests to run with asyncio backend only."""

    return "asyncio"


class ManualClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingDispatcher:
    def __init__(self) -> None:
        self.exceeded: list[tuple] = []
        self.upgrades: list[tuple] = []

    def enqueue_exceeded(self, issuer_id, tier, route_key, timestamp, limit, count) -> None:
        self.exceeded.append((issuer_id, tier, route_key, timestamp, limit, count))

    def enqueue_upgrade_notice(self, issuer_id, route_key, limit, count) -> None:
        self.upgrades.append((issuer_id, route_key, limit, count))

    def close(self, wait: bool = True) -> None:
        pass


class StaticIssuerStore:
    """In-memory stand-in for the durable issuer store that counts lookups."""

    def __init__(self, *records: IssuerRecord) -> None:
        self.records = {rec.api_key_hash: rec for rec in records}
        self.calls = 0

    async def find_active_by_key_hash(self, key_hash: str) -> IssuerRecord | None:
        self.calls += 1
        rec = self.records.get(key_hash)
        return rec if rec and rec.is_active else None


def make_record(api_key_hash: str, *, issuer_id: str = "iss-1", tier=IssuerTier.FREE, is_active=True) -> IssuerRecord:
    return IssuerRecord(
        id=issuer_id,
        name="Test Issuer",
        public_key=f"pk-{issuer_id}",
        tier=tier,
        is_active=is_active,
        api_key_hash=api_key_hash,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides) -> Settings:
        values = dict(
            issuer_store_path=str(tmp_path / "issuers.jsonl"),
            auth_basic_username="admin",
            auth_basic_password_plain="secret",
            database_url=None,
            redis_url=None,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def override_settings() -> Iterator:
    def _apply(settings: Settings) -> None:
        app.dependency_overrides[get_settings] = lambda: settings

    yield _apply
    app.dependency_overrides.clear()


def basic_auth(username: str = "admin", password: str = "secret") -> dict[str, str]:
    import base64

    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}
