"""
tests.test_orchestrator_nodes

Individual graph nodes, for branches that are hard to reach through a whole run.
"""

from __future__ import annotations

import pytest

from ledger_onboarding.clients.authority import AuthorityClient
from ledger_onboarding.clients.ledger import LedgerClient
from ledger_onboarding.db.models import OnboardingStage
from ledger_onboarding.identity.store import IdentityStore
from ledger_onboarding.orchestrator.nodes import OnboardingDeps, register_node

from .conftest import FakeAuthority, make_credential


async def _no_stage(participant_id: str) -> OnboardingStage | None:
    return None


def _deps(store: IdentityStore, authority: AuthorityClient, ledger: LedgerClient):
    return OnboardingDeps(store=store, authority=authority, ledger=ledger, load_stage=_no_stage)


def _state(role: str) -> dict:
    return {
        "participant_id": "Farmer01",
        "role": role,
        "admin_id": "regulatorAdmin",
        "payload": {},
        "stage": OnboardingStage.not_registered.value,
        "error": None,
        "audit_log": [],
    }


@pytest.mark.asyncio
async def test_already_registered_with_matching_credential_is_idempotent(
    store: IdentityStore,
    authority: AuthorityClient,
    ledger: LedgerClient,
    fake_authority: FakeAuthority,
    regulator_admin,
) -> None:
    fake_authority.registered["Farmer01"] = {"secret": "x", "attrs": {}, "body": {}}
    await store.put("Farmer01", make_credential("Farmer01", {"role": "farmer", "uuid": "Farmer01"}))

    state = await register_node(_state("farmer"), deps=_deps(store, authority, ledger))

    assert state["error"] is None
    assert state["registration_outcome"] == "already_registered"
    assert state["stage"] == OnboardingStage.credential_stored.value


@pytest.mark.asyncio
async def test_already_registered_with_other_role_is_conflict(
    store: IdentityStore,
    authority: AuthorityClient,
    ledger: LedgerClient,
    fake_authority: FakeAuthority,
    regulator_admin,
) -> None:
    fake_authority.registered["Farmer01"] = {"secret": "x", "attrs": {}, "body": {}}
    await store.put("Farmer01", make_credential("Farmer01", {"role": "farmer", "uuid": "Farmer01"}))

    state = await register_node(_state("manufacturer"), deps=_deps(store, authority, ledger))

    assert state["registration_outcome"] == "failed"
    assert state["error"]["stage"] == "register"
    assert state["error"]["status_code"] == 409
    assert state["error"]["outcome"] == "AlreadyExists"
