"""
ledger_onboarding.db.init_db

DB initialization helpers (dev/test convenience).

Responsibilities:
- Create tables for local development and tests.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine

from ledger_onboarding.db import models  # noqa: F401  # registers tables on Base.metadata
from ledger_onboarding.db.base import Base


async def init_db(engine: AsyncEngine) -> None:
    # Use a transactional DDL block when supported by the backend.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
