"""
ledger_onboarding.db.repositories.onboarding

Repository for `OnboardingRecord` entities.

Responsibilities:
- Track how far each participant has progressed through the pipeline.
- Record the ledger transaction id and the last failure for resumption.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from ledger_onboarding.db.models import OnboardingRecord, OnboardingStage


class OnboardingRecordRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, participant_id: str) -> OnboardingRecord | None:
        return await self._session.get(OnboardingRecord, participant_id)

    async def set_stage(
        self,
        *,
        participant_id: str,
        role: str,
        stage: OnboardingStage,
        acting_participant_id: str | None = None,
        transaction: str | None = None,
        tx_id: str | None = None,
        last_error: str | None = None,
    ) -> OnboardingRecord:
        # Locked read so two writers on the same participant do not clobber each other.
        rec = await self._session.get(OnboardingRecord, participant_id, with_for_update=True)
        if rec is None:
            rec = OnboardingRecord(participant_id=participant_id, role=role, stage=stage)
            self._session.add(rec)
        rec.role = role
        rec.stage = stage
        if acting_participant_id is not None:
            rec.acting_participant_id = acting_participant_id
        if transaction is not None:
            rec.transaction = transaction
        if tx_id is not None:
            rec.tx_id = tx_id
        # A successful stage transition clears the previous failure.
        rec.last_error = last_error
        rec.updated_at = datetime.utcnow()
        await self._session.flush()
        return rec

    async def delete(self, participant_id: str) -> None:
        rec = await self._session.get(OnboardingRecord, participant_id, with_for_update=True)
        if rec is not None:
            await self._session.delete(rec)
            await self._session.flush()


# --- Module Notes -----------------------------------------------------------
# A record in LEDGER_ONBOARDED is what lets a repeated onboard() call return without
# contacting the authority or the ledger.
