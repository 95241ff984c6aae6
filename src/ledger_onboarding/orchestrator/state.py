"""
ledger_onboarding.orchestrator.state

Typed state schema used by the onboarding graph.

Responsibilities:
- Define the contract between nodes (inputs/outputs).
- Carry both stage outcomes so a failed run still reports how far it got.
"""

from __future__ import annotations

from typing import Any, TypedDict

from ledger_onboarding.identity.credential import Credential


class OnboardingState(TypedDict, total=False):
    # Inputs
    participant_id: str
    role: str
    admin_id: str
    payload: dict[str, Any]
    timeout: float | None

    # Progress
    stage: str
    credential_stored: bool
    already_onboarded: bool
    onboardable: bool

    # Freshly issued credential, held only between the register and store nodes.
    credential: Credential | None

    # Outcomes (see nodes.RegistrationOutcome / nodes.LedgerOutcome)
    registration_outcome: str
    onboarding_outcome: str
    transaction: str | None
    tx_id: str | None

    # Failure, if any: {"stage", "kind", "outcome", "status_code", "message", "reissue_admin"}
    error: dict[str, Any] | None

    # Audit
    audit_log: list[dict[str, Any]]


# --- Module Notes -----------------------------------------------------------
# No checkpointer is attached to the graph, so the in-memory Credential never leaves
# the process; the service persists only stage names, ids and error text.
