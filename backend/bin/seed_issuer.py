#!/usr/bin/env python3
"""Create a demo issuer and print its API key.

Uses DATABASE_URL when set (creating tables if migrations were not run),
otherwise the JSONL issuer store. Pass ``--paid`` for a PAID-tier issuer.
"""
from __future__ import annotations

import asyncio
import sys


async def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    paid = "--paid" in args
    names = [a for a in args if not a.startswith("--")]
    name = names[0] if names else "Demo Issuer"

    from certapi.core.config import get_settings
    from certapi.db.base import Base
    from certapi.db.session import dispose_engine, get_async_engine
    from certapi.services.issuers import IssuerTier, build_issuer_store

    settings = get_settings()
    if settings.database_url:
        async with get_async_engine(settings).begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    store = build_issuer_store(settings)
    rec, plaintext = await store.create_issuer(
        name=name, tier=IssuerTier.PAID if paid else IssuerTier.FREE
    )
    await dispose_engine(settings)
    print(f"Created issuer {rec.id} ({rec.tier.value})")
    print(f"x-api-key: {plaintext}")
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
