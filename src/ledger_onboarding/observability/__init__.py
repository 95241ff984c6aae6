"""
ledger_onboarding.observability

Logging configuration and request-scoped log context.
"""

# Package marker.
