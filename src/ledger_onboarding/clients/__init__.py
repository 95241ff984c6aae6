"""
ledger_onboarding.clients

Client boundaries for the two external systems the pipeline coordinates.

Responsibilities:
- `authority`: certificate authority registration and enrollment.
- `ledger`: ledger gateway connection and onboarding transaction submission.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The onboarding service depends on these interfaces, not on HTTP details.
