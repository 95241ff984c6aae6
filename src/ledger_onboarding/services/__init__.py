"""
ledger_onboarding.services

Service-layer package.

Responsibilities:
- Own persistence of onboarding progress and the audit trail.
- Compose the identity store, authority client and ledger client into one pipeline.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Services take their collaborators as constructor arguments; tests pass clients backed by
# `httpx.MockTransport` instead of live endpoints.
