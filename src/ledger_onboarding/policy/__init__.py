"""
ledger_onboarding.policy

Role policy package.

Responsibilities:
- Hold the static role -> affiliation/attributes/transaction table.
"""

# Package marker.
