"""
ledger_onboarding.services.onboarding_service

Onboarding lifecycle service (transaction + persistence owner).

Responsibilities:
- Run the onboarding graph for one participant and assemble a single result.
- Persist stage transitions and audit events after each graph node.
- Provide login, bounded batch onboarding, explicit identity removal and
  explicit admin enrollment.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_onboarding.clients.authority import AuthorityClient
from ledger_onboarding.clients.ledger import LedgerClient
from ledger_onboarding.db.models import OnboardingStage
from ledger_onboarding.db.repositories.audit import AuditRepo
from ledger_onboarding.db.repositories.onboarding import OnboardingRecordRepo
from ledger_onboarding.errors import OnboardingError, classify
from ledger_onboarding.identity.store import IdentityStore
from ledger_onboarding.observability.logging import get_logger
from ledger_onboarding.orchestrator.graph import build_graph
from ledger_onboarding.orchestrator.nodes import (
    LedgerOutcome,
    OnboardingDeps,
    RegistrationOutcome,
)
from ledger_onboarding.orchestrator.state import OnboardingState
from ledger_onboarding.settings import Settings

log = get_logger(__name__)

SERVICE_ACTOR = "onboarding-service"

# Nodes whose completion changes the persisted stage.
_STAGE_NODES = frozenset({"register", "store_credential", "submit_ledger"})


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OnboardingResult(_CamelModel):
    status_code: int
    participant_id: str
    role: str
    message: str
    stage: str = OnboardingStage.not_registered.value
    registration_outcome: str = RegistrationOutcome.not_attempted.value
    onboarding_outcome: str = LedgerOutcome.not_attempted.value
    error_outcome: str | None = None
    failed_stage: str | None = None
    retryable: bool = False
    reissue_admin: bool = False
    tx_id: str | None = None


class LoginResult(_CamelModel):
    status_code: int
    participant_id: str
    message: str


class AdminEnrollmentResult(_CamelModel):
    status_code: int
    admin_id: str
    message: str
    error_outcome: str | None = None


class OnboardRequest(_CamelModel):
    participant_id: str
    role: str
    admin_context: str
    payload: dict[str, Any] = Field(default_factory=dict)


class OnboardingService:
    """
    Composition point of the pipeline. The identity store, both clients and the
    session factory are created once by the caller and injected here.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        store: IdentityStore,
        authority: AuthorityClient,
        ledger: LedgerClient,
    ) -> None:
        self._settings = settings
        self._session_factory = session_factory
        self._store = store
        self._authority = authority
        self._ledger = ledger
        self._graph = build_graph(
            deps=OnboardingDeps(
                store=store,
                authority=authority,
                ledger=ledger,
                load_stage=self._load_stage,
            )
        )

    async def onboard(
        self,
        participant_id: str,
        role: str,
        admin_context: str,
        payload: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> OnboardingResult:
        """
        Register, store and onboard `participant_id`. Safe to call repeatedly: stages
        already satisfied are skipped and reported as idempotent success.
        """

        state: OnboardingState = {
            "participant_id": participant_id,
            "role": str(role),
            "admin_id": admin_context,
            "payload": dict(payload or {}),
            "timeout": timeout,
        }

        with structlog.contextvars.bound_contextvars(
            participant_id=participant_id, role=str(role), admin_id=admin_context
        ):
            try:
                final_state = await self._execute_with_checkpoints(state)
            except Exception as e:
                # Anything that escaped the nodes is unclassified; report it verbatim.
                log.exception("onboarding_crashed")
                await self._record_failure(participant_id, str(role), str(e))
                return self._crash_result(state, e)

        result = _assemble_result(final_state)
        log.info(
            "onboarding_finished",
            status_code=result.status_code,
            stage=result.stage,
            registration_outcome=result.registration_outcome,
            onboarding_outcome=result.onboarding_outcome,
        )
        return result

    async def onboard_many(
        self, requests: Iterable[OnboardRequest], *, timeout: float | None = None
    ) -> list[OnboardingResult]:
        """
        Onboard several participants with at most `max_concurrent_onboardings`
        in flight; results keep the input order.
        """

        semaphore = asyncio.Semaphore(self._settings.max_concurrent_onboardings)

        async def _one(req: OnboardRequest) -> OnboardingResult:
            async with semaphore:
                return await self.onboard(
                    req.participant_id,
                    req.role,
                    req.admin_context,
                    req.payload,
                    timeout=timeout,
                )

        return list(await asyncio.gather(*(_one(r) for r in requests)))

    async def login(self, participant_id: str) -> LoginResult:
        if participant_id and await self._store.exists(participant_id):
            return LoginResult(
                status_code=200,
                participant_id=participant_id,
                message=f"User login successful: {participant_id}",
            )
        return LoginResult(
            status_code=400,
            participant_id=participant_id,
            message=f"An identity for the user {participant_id} does not exist",
        )

    async def remove_identity(self, participant_id: str, *, actor: str) -> None:
        """
        Delete a participant's credential and progress so that it can be issued again.
        Raises IdentityNotFoundError when nothing is stored.
        """

        await self._store.remove(participant_id)
        async with self._session_factory() as session:
            await OnboardingRecordRepo(session).delete(participant_id)
            await AuditRepo(session).add(
                participant_id=participant_id,
                actor=actor,
                event_type="IDENTITY_REMOVED",
                details={},
            )
            await session.commit()

    async def enroll_admin(
        self,
        admin_id: str,
        *,
        enrollment_id: str,
        enrollment_secret: str,
        membership_id: str | None = None,
        actor: str = SERVICE_ACTOR,
        timeout: float | None = None,
    ) -> AdminEnrollmentResult:
        """
        Enroll (or re-enroll) an administrative identity and replace its stored
        credential. Never invoked by `onboard`; a MissingAttributes result tells the
        operator to call this.
        """

        try:
            credential = await self._authority.enroll_admin(
                admin_id,
                enrollment_id=enrollment_id,
                enrollment_secret=enrollment_secret,
                membership_id=membership_id,
                timeout=timeout,
            )
            await self._store.put(admin_id, credential, replace=True)
        except OnboardingError as e:
            c = classify(e)
            log.warning("admin_enrollment_failed", admin_id=admin_id, error=c.message)
            return AdminEnrollmentResult(
                status_code=c.status_code,
                admin_id=admin_id,
                message=f"admin enrollment failed for {admin_id!r}: {c.message}",
                error_outcome=c.outcome.value,
            )

        async with self._session_factory() as session:
            await AuditRepo(session).add(
                participant_id=admin_id,
                actor=actor,
                event_type="ADMIN_ENROLLED",
                details={"msp_id": credential.membership_id},
            )
            await session.commit()
        return AdminEnrollmentResult(
            status_code=200,
            admin_id=admin_id,
            message=f"Successfully enrolled admin user {admin_id!r}",
        )

    async def _load_stage(self, participant_id: str) -> OnboardingStage | None:
        async with self._session_factory() as session:
            rec = await OnboardingRecordRepo(session).get(participant_id)
            return rec.stage if rec is not None else None

    async def _execute_with_checkpoints(self, state: OnboardingState) -> OnboardingState:
        """
        Stream node updates and persist the stage after every stage-changing node, so a
        crash or a failed later stage leaves an accurate record to resume from.
        """

        last_state: OnboardingState = dict(state)  # type: ignore[assignment]
        persisted_audit_idx = 0

        async for update in self._graph.astream(last_state, stream_mode="updates"):
            if not isinstance(update, dict) or not update:
                continue
            node_name, node_state = next(iter(update.items()))
            if isinstance(node_state, dict):
                last_state = node_state  # type: ignore[assignment]

            entries = list(last_state.get("audit_log", []))
            new_entries = entries[persisted_audit_idx:]
            persisted_audit_idx = len(entries)
            if node_name not in _STAGE_NODES and not new_entries:
                continue
            await self._checkpoint(last_state, node_name=node_name, entries=new_entries)

        return last_state

    async def _checkpoint(
        self, state: OnboardingState, *, node_name: str, entries: list[dict[str, Any]]
    ) -> None:
        participant_id = str(state.get("participant_id") or "")
        if not participant_id:
            return
        error = state.get("error") or {}

        async with self._session_factory() as session:
            if node_name in _STAGE_NODES:
                await OnboardingRecordRepo(session).set_stage(
                    participant_id=participant_id,
                    role=str(state.get("role", "")),
                    stage=OnboardingStage(state.get("stage", OnboardingStage.not_registered)),
                    acting_participant_id=state.get("admin_id"),
                    transaction=state.get("transaction"),
                    tx_id=state.get("tx_id"),
                    last_error=error.get("message"),
                )
            audit = AuditRepo(session)
            for entry in entries:
                await audit.add(
                    participant_id=participant_id,
                    actor=str(state.get("admin_id") or SERVICE_ACTOR),
                    event_type=str(entry.get("event", "UNKNOWN")),
                    details={"node": node_name, **dict(entry.get("details", {}))},
                )
            await session.commit()

    async def _record_failure(self, participant_id: str, role: str, message: str) -> None:
        if not participant_id:
            return
        async with self._session_factory() as session:
            await AuditRepo(session).add(
                participant_id=participant_id,
                actor=SERVICE_ACTOR,
                event_type="ONBOARDING_CRASHED",
                details={"role": role, "error": message},
            )
            await session.commit()

    def _crash_result(self, state: OnboardingState, exc: Exception) -> OnboardingResult:
        c = classify(exc)
        pid = str(state.get("participant_id") or "")
        return OnboardingResult(
            status_code=c.status_code,
            participant_id=pid,
            role=str(state.get("role", "")),
            message=f"onboarding failed for {pid!r}: {c.message}",
            error_outcome=c.outcome.value,
            failed_stage="unknown",
            retryable=c.retryable,
        )


def _assemble_result(state: OnboardingState) -> OnboardingResult:
    pid = str(state.get("participant_id") or "")
    role = str(state.get("role", ""))
    registration = str(state.get("registration_outcome", RegistrationOutcome.not_attempted))
    onboarding = str(state.get("onboarding_outcome", LedgerOutcome.not_attempted))
    stage = str(state.get("stage", OnboardingStage.not_registered))
    common: dict[str, Any] = {
        "participant_id": pid,
        "role": role,
        "stage": stage,
        "registration_outcome": registration,
        "onboarding_outcome": onboarding,
        "tx_id": state.get("tx_id"),
    }

    error = state.get("error")
    if error:
        return OnboardingResult(
            status_code=int(error.get("status_code", 500)),
            message=f"{error.get('stage', 'onboarding')} stage failed for {pid!r}: "
            f"{error.get('message', '')}",
            error_outcome=error.get("outcome"),
            failed_stage=error.get("stage"),
            retryable=bool(error.get("retryable")),
            reissue_admin=bool(error.get("reissue_admin")),
            **common,
        )

    return OnboardingResult(status_code=200, message=_success_message(state), **common)


def _success_message(state: OnboardingState) -> str:
    pid = state.get("participant_id")
    role = state.get("role")
    registration = state.get("registration_outcome")
    onboarding = state.get("onboarding_outcome")

    if state.get("already_onboarded"):
        return f"{pid} has already been enrolled and onboarded."
    if onboarding == LedgerOutcome.already_onboarded:
        return f"{pid} was already onboarded on the ledger; credential is stored."
    if registration == RegistrationOutcome.already_registered:
        if onboarding == LedgerOutcome.onboarded:
            return f"{pid} was already enrolled; onboarded via {state.get('transaction')}."
        return f"{pid} has already been enrolled."
    if onboarding == LedgerOutcome.onboarded:
        return (
            f"Successfully registered and enrolled {role} user {pid} "
            f"and onboarded via {state.get('transaction')}."
        )
    return f"Successfully registered and enrolled {role} user {pid}."


# --- Module Notes -----------------------------------------------------------
# The service never rolls back a completed stage: a stored credential survives a
# ledger failure so the next call resumes at submit_ledger.