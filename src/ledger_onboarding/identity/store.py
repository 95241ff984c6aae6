"""
ledger_onboarding.identity.store

Durable keyed credential store.

Responsibilities:
- Persist one credential per participant id (exists/get/put/remove).
- Serialize writers per key and reject conflicting writes instead of overwriting.
- Surface unreadable rows as `StoreCorruptError` for the affected key only.
"""

from __future__ import annotations

import asyncio
import weakref

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_onboarding.db.models import IdentityRecord
from ledger_onboarding.db.repositories.identities import IdentityRepo
from ledger_onboarding.errors import (
    AlreadyExistsError,
    IdentityNotFoundError,
    StoreCorruptError,
    StoreWriteError,
)
from ledger_onboarding.identity.credential import (
    CertificateFormatError,
    Credential,
    load_certificate,
)
from ledger_onboarding.observability.logging import get_logger

log = get_logger(__name__)


class IdentityStore:
    """
    Opened once per process and passed into the clients and the onboarding service.

    Each write runs in its own transaction, so readers either see the previous row or
    the complete new one. Writers on the same key queue on a per-key lock; a writer in
    another process is caught by the primary key constraint.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock(self, participant_id: str) -> asyncio.Lock:
        lock = self._locks.get(participant_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[participant_id] = lock
        return lock

    async def exists(self, participant_id: str) -> bool:
        async with self._session_factory() as session:
            return await IdentityRepo(session).exists(participant_id)

    async def get(self, participant_id: str) -> Credential:
        async with self._session_factory() as session:
            rec = await IdentityRepo(session).get(participant_id)
        if rec is None:
            raise IdentityNotFoundError(
                f"no identity stored for {participant_id!r}", participant_id=participant_id
            )
        return _to_credential(rec)

    async def put(
        self, participant_id: str, credential: Credential, *, replace: bool = False
    ) -> None:
        async with self._lock(participant_id):
            try:
                async with self._session_factory() as session, session.begin():
                    repo = IdentityRepo(session)
                    rec = await repo.get(participant_id, for_update=True)
                    if rec is not None and not replace:
                        raise AlreadyExistsError(
                            f"an identity for {participant_id!r} already exists",
                            participant_id=participant_id,
                        )
                    if rec is not None:
                        await repo.replace(
                            rec,
                            certificate=credential.certificate,
                            private_key=credential.private_key,
                            msp_id=credential.membership_id,
                            identity_type=credential.identity_type,
                        )
                    else:
                        await repo.insert(
                            participant_id=participant_id,
                            certificate=credential.certificate,
                            private_key=credential.private_key,
                            msp_id=credential.membership_id,
                            identity_type=credential.identity_type,
                        )
            except IntegrityError as e:
                # Another process inserted the same key between our read and our flush.
                raise AlreadyExistsError(
                    f"an identity for {participant_id!r} already exists",
                    participant_id=participant_id,
                ) from e
            except SQLAlchemyError as e:
                raise StoreWriteError(
                    f"failed to store identity for {participant_id!r}: {e.__class__.__name__}",
                    participant_id=participant_id,
                ) from e

        log.info(
            "identity_stored",
            participant_id=participant_id,
            msp_id=credential.membership_id,
            replaced=replace,
        )

    async def remove(self, participant_id: str) -> None:
        async with self._lock(participant_id):
            async with self._session_factory() as session, session.begin():
                repo = IdentityRepo(session)
                rec = await repo.get(participant_id, for_update=True)
                if rec is None:
                    raise IdentityNotFoundError(
                        f"no identity stored for {participant_id!r}",
                        participant_id=participant_id,
                    )
                await repo.delete(rec)
        log.info("identity_removed", participant_id=participant_id)

    async def list_ids(self) -> list[str]:
        async with self._session_factory() as session:
            return await IdentityRepo(session).list_ids()


def _to_credential(rec: IdentityRecord) -> Credential:
    pid = rec.participant_id
    if not rec.certificate or not rec.private_key or not rec.msp_id:
        raise StoreCorruptError(f"stored identity for {pid!r} is incomplete", participant_id=pid)
    try:
        load_certificate(rec.certificate)
    except CertificateFormatError as e:
        raise StoreCorruptError(
            f"stored identity for {pid!r} has an unreadable certificate", participant_id=pid
        ) from e
    return Credential(
        certificate=rec.certificate,
        private_key=rec.private_key,
        membership_id=rec.msp_id,
        identity_type=rec.identity_type or "X.509",
    )


# --- Module Notes -----------------------------------------------------------
# Re-issuing a credential is an explicit remove() followed by put(), or put(replace=True)
# for admin re-enrollment; nothing in the pipeline overwrites silently.
