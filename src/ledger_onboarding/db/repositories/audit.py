"""
ledger_onboarding.db.repositories.audit

Repository for `AuditEvent` entities.

Responsibilities:
- Append audit events (stage transitions, failures, admin enrollments).
- Query the audit trail by participant.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_onboarding.db.models import AuditEvent


class AuditRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        participant_id: str,
        actor: str,
        event_type: str,
        details: dict[str, Any],
    ) -> AuditEvent:
        # Audit events are append-only; details must never carry secrets or key material.
        ev = AuditEvent(
            participant_id=participant_id,
            actor=actor,
            event_type=event_type,
            details=details,
        )
        self._session.add(ev)
        await self._session.flush()
        return ev

    async def list_for_participant(
        self, participant_id: str, *, limit: int = 200
    ) -> list[AuditEvent]:
        # Newest-first for operator consumption.
        stmt = (
            select(AuditEvent)
            .where(AuditEvent.participant_id == participant_id)
            .order_by(desc(AuditEvent.created_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())
