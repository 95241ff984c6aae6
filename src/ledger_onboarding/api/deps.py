"""
ledger_onboarding.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide DB sessions and the onboarding service from `app.state`.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_onboarding.services.onboarding_service import OnboardingService


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


def onboarding_service(request: Request) -> OnboardingService:
    # Built once on startup in `ledger_onboarding.api.app.create_app`.
    return request.app.state.onboarding_service  # type: ignore[attr-defined]
