"""
ledger_onboarding.identity

Credential types and the keyed identity store.
"""

from ledger_onboarding.identity.credential import Credential
from ledger_onboarding.identity.store import IdentityStore

__all__ = ["Credential", "IdentityStore"]
