"""
ledger_onboarding.auth

Authentication helpers.

Responsibilities:
- Operator JWTs and FastAPI RBAC dependencies for the HTTP surface.
- Credential-signed request tokens for the authority and the ledger gateway.
"""

# Package marker.
