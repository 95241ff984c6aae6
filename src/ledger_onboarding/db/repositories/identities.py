from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_onboarding.db.models import IdentityRecord


class IdentityRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(
        self, participant_id: str, *, for_update: bool = False
    ) -> IdentityRecord | None:
        return await self._session.get(IdentityRecord, participant_id, with_for_update=for_update)

    async def exists(self, participant_id: str) -> bool:
        stmt = select(IdentityRecord.participant_id).where(
            IdentityRecord.participant_id == participant_id
        )
        return (await self._session.execute(stmt)).scalar_one_or_none() is not None

    async def insert(
        self,
        *,
        participant_id: str,
        certificate: str,
        private_key: str,
        msp_id: str,
        identity_type: str,
    ) -> IdentityRecord:
        rec = IdentityRecord(
            participant_id=participant_id,
            certificate=certificate,
            private_key=private_key,
            msp_id=msp_id,
            identity_type=identity_type,
            version=1,
        )
        self._session.add(rec)
        # Flush surfaces a primary-key conflict as IntegrityError inside the caller's transaction.
        await self._session.flush()
        return rec

    async def replace(
        self,
        rec: IdentityRecord,
        *,
        certificate: str,
        private_key: str,
        msp_id: str,
        identity_type: str,
    ) -> IdentityRecord:
        rec.certificate = certificate
        rec.private_key = private_key
        rec.msp_id = msp_id
        rec.identity_type = identity_type
        rec.version = (rec.version or 0) + 1
        rec.updated_at = datetime.utcnow()
        await self._session.flush()
        return rec

    async def delete(self, rec: IdentityRecord) -> None:
        await self._session.delete(rec)
        await self._session.flush()

    async def list_ids(self) -> list[str]:
        stmt = select(IdentityRecord.participant_id).order_by(IdentityRecord.participant_id)
        return list((await self._session.execute(stmt)).scalars().all())
