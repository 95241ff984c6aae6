"""
ledger_onboarding.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide ORM models, engine/session setup, and repositories backing the
  identity store, onboarding progress records and the audit trail.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The identity store is the only component allowed to write `identities` rows.
