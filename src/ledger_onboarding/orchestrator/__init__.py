"""
ledger_onboarding.orchestrator

Onboarding state machine (LangGraph).

Responsibilities:
- Typed state schema, nodes, routing, and graph compilation for
  NOT_REGISTERED -> CA_REGISTERED -> CREDENTIAL_STORED -> LEDGER_ONBOARDED.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Call sites should use `services.onboarding_service`, which owns persistence of
# stage transitions and result assembly.
