from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ledger_onboarding.clients.authority import AdminContext, AuthorityClient
from ledger_onboarding.clients.ledger import LedgerClient
from ledger_onboarding.db.models import OnboardingStage
from ledger_onboarding.errors import (
    AlreadyExistsError,
    AlreadyOnboardedError,
    AlreadyRegisteredError,
    IdentityNotFoundError,
    InvalidPayloadError,
    OnboardingError,
    StoreCorruptError,
    classify,
)
from ledger_onboarding.identity.credential import CertificateFormatError
from ledger_onboarding.identity.store import IdentityStore
from ledger_onboarding.observability.logging import get_logger
from ledger_onboarding.orchestrator.state import OnboardingState
from ledger_onboarding.policy.roles import parse_role, resolve

log = get_logger(__name__)


class RegistrationOutcome(enum.StrEnum):
    not_attempted = "not_attempted"
    registered = "registered"
    already_registered = "already_registered"
    failed = "failed"


class LedgerOutcome(enum.StrEnum):
    not_attempted = "not_attempted"
    not_applicable = "not_applicable"
    onboarded = "onboarded"
    already_onboarded = "already_onboarded"
    failed = "failed"


@dataclass(frozen=True, slots=True)
class OnboardingDeps:
    store: IdentityStore
    authority: AuthorityClient
    ledger: LedgerClient
    # Returns the last persisted stage for a participant, or None.
    load_stage: Callable[[str], Awaitable[OnboardingStage | None]]


def _append_audit(state: OnboardingState, *, event: str, details: dict[str, Any]) -> None:
    audit = list(state.get("audit_log", []))
    audit.append({"event": event, "details": details})
    state["audit_log"] = audit


def _fail(state: OnboardingState, *, stage: str, exc: BaseException) -> OnboardingState:
    c = classify(exc)
    state["error"] = {
        "stage": stage,
        "kind": c.kind.value if c.kind is not None else None,
        "outcome": c.outcome.value,
        "status_code": c.status_code,
        "message": c.message,
        "retryable": c.retryable,
        "reissue_admin": c.reissue_admin,
    }
    _append_audit(
        state,
        event="STAGE_FAILED",
        details={"stage": stage, "outcome": c.outcome.value, "message": c.message},
    )
    log.warning(
        "onboarding_stage_failed",
        participant_id=state.get("participant_id"),
        stage=stage,
        outcome=c.outcome.value,
        error=c.message,
    )
    return state


async def _ensure_role_matches(state: OnboardingState, deps: OnboardingDeps) -> None:
    """
    Raise AlreadyExistsError when the stored credential was issued for another role.

    The certificate claim is authoritative; a credential is never reused for a
    different role's onboarding transaction.
    """

    pid = state["participant_id"]
    credential = await deps.store.get(pid)
    try:
        claimed = credential.attributes.get("role")
    except CertificateFormatError as e:
        raise StoreCorruptError(
            f"stored identity for {pid!r} has unreadable claims", participant_id=pid
        ) from e
    if claimed != state["role"]:
        raise AlreadyExistsError(
            f"{pid!r} already holds a credential for role {claimed!r}; "
            f"cannot onboard it as {state['role']!r}",
            participant_id=pid,
        )


async def entry_node(state: OnboardingState) -> OnboardingState:
    """
    Validate caller input before any store or network access.
    """

    state.setdefault("stage", OnboardingStage.not_registered.value)
    state.setdefault("registration_outcome", RegistrationOutcome.not_attempted.value)
    state.setdefault("onboarding_outcome", LedgerOutcome.not_attempted.value)
    state.setdefault("error", None)
    state.setdefault("audit_log", [])

    try:
        participant_id = str(state.get("participant_id") or "").strip()
        if not participant_id:
            raise ValueError("participant_id must not be empty")
        if not str(state.get("admin_id") or "").strip():
            raise ValueError(f"admin context for {participant_id!r} must not be empty")
        policy = resolve(state.get("role", ""))
        if policy.payload_shape is not None:
            policy.payload_shape.validate(state.get("payload", {}), participant_id=participant_id)
    except OnboardingError as e:
        return _fail(state, stage="validate", exc=e)
    except ValueError as e:
        return _fail(state, stage="validate", exc=InvalidPayloadError(str(e)))

    state["participant_id"] = participant_id
    state["admin_id"] = str(state["admin_id"]).strip()
    state["role"] = policy.role.value
    state["onboardable"] = policy.onboardable
    state["transaction"] = policy.onboarding_transaction
    _append_audit(state, event="ENTRY", details={"role": policy.role.value})
    return state


async def check_store_node(state: OnboardingState, *, deps: OnboardingDeps) -> OnboardingState:
    pid = state["participant_id"]
    stored = await deps.store.exists(pid)
    state["credential_stored"] = stored
    state["already_onboarded"] = False

    if stored:
        try:
            await _ensure_role_matches(state, deps)
        except OnboardingError as e:
            return _fail(state, stage="check_store", exc=e)

    last = await deps.load_stage(pid) if stored else None
    onboarded = last == OnboardingStage.ledger_onboarded
    state["already_onboarded"] = stored and (onboarded or not state.get("onboardable", False))

    if stored:
        state["stage"] = (last or OnboardingStage.credential_stored).value
        state["registration_outcome"] = RegistrationOutcome.already_registered.value
    if state["already_onboarded"]:
        state["onboarding_outcome"] = (
            LedgerOutcome.already_onboarded.value
            if state.get("onboardable")
            else LedgerOutcome.not_applicable.value
        )

    _append_audit(
        state,
        event="CHECK_STORE",
        details={"credential_stored": stored, "already_onboarded": state["already_onboarded"]},
    )
    return state


async def register_node(state: OnboardingState, *, deps: OnboardingDeps) -> OnboardingState:
    pid = state["participant_id"]
    admin_id = state["admin_id"]

    try:
        try:
            admin_credential = await deps.store.get(admin_id)
        except IdentityNotFoundError:
            admin_credential = None
        credential = await deps.authority.issue_credential(
            pid,
            parse_role(state["role"]),
            AdminContext(admin_id=admin_id, credential=admin_credential),
            timeout=state.get("timeout"),
        )
    except AlreadyRegisteredError as e:
        # Known to the authority already: only idempotent if we hold its credential.
        if await deps.store.exists(pid):
            try:
                await _ensure_role_matches(state, deps)
            except OnboardingError as mismatch:
                state["registration_outcome"] = RegistrationOutcome.failed.value
                return _fail(state, stage="register", exc=mismatch)
            state["credential_stored"] = True
            state["stage"] = OnboardingStage.credential_stored.value
            state["registration_outcome"] = RegistrationOutcome.already_registered.value
            _append_audit(state, event="ALREADY_REGISTERED", details={"admin_id": admin_id})
            return state
        state["registration_outcome"] = RegistrationOutcome.failed.value
        return _fail(state, stage="register", exc=e)
    except OnboardingError as e:
        state["registration_outcome"] = RegistrationOutcome.failed.value
        return _fail(state, stage="register", exc=e)

    state["credential"] = credential
    state["stage"] = OnboardingStage.ca_registered.value
    state["registration_outcome"] = RegistrationOutcome.registered.value
    _append_audit(
        state,
        event="CA_REGISTERED",
        details={"admin_id": admin_id, "msp_id": credential.membership_id},
    )
    return state


async def store_credential_node(
    state: OnboardingState, *, deps: OnboardingDeps
) -> OnboardingState:
    pid = state["participant_id"]
    credential = state.get("credential")
    state["credential"] = None

    try:
        if credential is None:
            raise IdentityNotFoundError(f"no issued credential to store for {pid!r}")
        try:
            await deps.store.put(pid, credential)
        except AlreadyExistsError:
            # A concurrent caller stored first; continue with its credential if it matches.
            await _ensure_role_matches(state, deps)
            _append_audit(state, event="CREDENTIAL_ALREADY_STORED", details={})
    except OnboardingError as e:
        return _fail(state, stage="store", exc=e)

    state["credential_stored"] = True
    state["stage"] = OnboardingStage.credential_stored.value
    _append_audit(state, event="CREDENTIAL_STORED", details={})
    return state


async def submit_ledger_node(state: OnboardingState, *, deps: OnboardingDeps) -> OnboardingState:
    pid = state["participant_id"]
    admin_id = state["admin_id"]

    try:
        outcome = await deps.ledger.submit_onboarding(
            admin_id,
            parse_role(state["role"]),
            state.get("payload", {}),
            participant_id=pid,
            timeout=state.get("timeout"),
        )
    except AlreadyOnboardedError as e:
        state["stage"] = OnboardingStage.ledger_onboarded.value
        state["onboarding_outcome"] = LedgerOutcome.already_onboarded.value
        _append_audit(state, event="ALREADY_ONBOARDED", details={"message": str(e)})
        return state
    except OnboardingError as e:
        state["onboarding_outcome"] = LedgerOutcome.failed.value
        return _fail(state, stage="ledger", exc=e)

    state["stage"] = OnboardingStage.ledger_onboarded.value
    state["onboarding_outcome"] = LedgerOutcome.onboarded.value
    state["tx_id"] = outcome.tx_id
    _append_audit(
        state,
        event="LEDGER_ONBOARDED",
        details={"transaction": outcome.transaction, "tx_id": outcome.tx_id},
    )
    return state


def route_after_entry(state: OnboardingState) -> str:
    return "finish" if state.get("error") else "check_store"


def route_after_check(state: OnboardingState) -> str:
    if state.get("error"):
        return "finish"
    if state.get("already_onboarded"):
        return "finish"
    if state.get("credential_stored"):
        return "submit_ledger"
    return "register"


def route_after_register(state: OnboardingState) -> str:
    if state.get("error"):
        return "finish"
    if state.get("credential") is not None:
        return "store_credential"
    return "submit_ledger" if state.get("onboardable") else "finish"


def route_after_store(state: OnboardingState) -> str:
    if state.get("error"):
        return "finish"
    return "submit_ledger" if state.get("onboardable") else "finish"


async def finish_node(state: OnboardingState) -> OnboardingState:
    if not state.get("error") and not state.get("onboardable"):
        state["onboarding_outcome"] = LedgerOutcome.not_applicable.value
    _append_audit(
        state,
        event="FINISH",
        details={
            "stage": state.get("stage"),
            "registration_outcome": state.get("registration_outcome"),
            "onboarding_outcome": state.get("onboarding_outcome"),
        },
    )
    return state
