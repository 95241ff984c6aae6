"""
ledger_onboarding.auth.models

Auth domain models.
"""

from __future__ import annotations

from dataclasses import dataclass

OPERATOR_ROLE = "onboarding_operator"
SUPERUSER_ROLE = "onboarding_admin"


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated operator calling the HTTP surface. Distinct from ledger participants:
    an operator is whoever is allowed to trigger onboarding, not a credential holder.
    """

    subject: str
    roles: frozenset[str]

    @property
    def is_superuser(self) -> bool:
        return SUPERUSER_ROLE in self.roles
