"""
ledger_onboarding.api

Thin HTTP surface over the onboarding service.

Responsibilities:
- FastAPI app factory and router modules.
- Operator authentication and delegation to `services.onboarding_service`.
"""

# Package marker.
