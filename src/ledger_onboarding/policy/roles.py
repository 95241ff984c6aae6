"""
ledger_onboarding.policy.roles

Role policy table.

Responsibilities:
- Map each participant role to its affiliation, membership org, required
  certificate attributes and onboarding transaction.
- Validate onboarding payloads against the role's payload shape.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from ledger_onboarding.errors import InvalidPayloadError, UnsupportedRoleError


class Role(enum.StrEnum):
    regulator = "regulator"
    farmer = "farmer"
    manufacturer = "manufacturer"
    laboratory = "laboratory"
    lab_overseer = "labOverseer"
    admin = "admin"


# Capability attributes an administrative credential needs to register others.
REGISTRAR_ATTRIBUTES: tuple[str, ...] = (
    "hf.Registrar.Roles",
    "hf.Registrar.Attributes",
    "hf.Revoker",
    "hf.GenCRL",
)

IDENTITY_ATTRIBUTES: tuple[str, ...] = ("role", "uuid")


@dataclass(frozen=True, slots=True)
class PayloadShape:
    id_field: str
    required_fields: tuple[str, ...] = ()
    optional_fields: tuple[str, ...] = ()

    def validate(
        self, payload: dict[str, Any], *, participant_id: str | None = None
    ) -> dict[str, Any]:
        """
        Return the transaction arguments for `payload`.

        Unknown keys are dropped; required fields must be present and non-blank.
        """

        if not isinstance(payload, dict):
            raise InvalidPayloadError(
                f"onboarding payload for {participant_id!r} must be an object",
                participant_id=participant_id,
            )
        missing = tuple(f for f in self.required_fields if _blank(payload.get(f)))
        if missing:
            raise InvalidPayloadError(
                f"onboarding payload for {participant_id!r} is missing required fields: "
                + ", ".join(missing),
                participant_id=participant_id,
                missing_fields=missing,
            )
        args: dict[str, Any] = {}
        if participant_id is not None:
            args[self.id_field] = participant_id
        for name in (*self.required_fields, *self.optional_fields):
            if name in payload and payload[name] is not None:
                args[name] = payload[name]
        return args


@dataclass(frozen=True, slots=True)
class RolePolicy:
    role: Role
    affiliation: str
    membership_org: str
    required_attributes: tuple[str, ...]
    onboarding_transaction: str | None = None
    payload_shape: PayloadShape | None = None
    # Role the ledger expects as the author of this role's onboarding transaction.
    onboarded_by: Role | None = None

    @property
    def onboardable(self) -> bool:
        return self.onboarding_transaction is not None


_ORG1 = "Org1MSP"
_ORG2 = "Org2MSP"

_POLICIES: dict[Role, RolePolicy] = {
    Role.farmer: RolePolicy(
        role=Role.farmer,
        affiliation="org1.department1",
        membership_org=_ORG1,
        required_attributes=IDENTITY_ATTRIBUTES,
        onboarding_transaction="onboardFarmer",
        payload_shape=PayloadShape(id_field="farmerId", required_fields=("name", "farmLocation")),
        onboarded_by=Role.regulator,
    ),
    Role.manufacturer: RolePolicy(
        role=Role.manufacturer,
        affiliation="org1.department1",
        membership_org=_ORG1,
        required_attributes=IDENTITY_ATTRIBUTES,
        onboarding_transaction="onboardManufacturer",
        payload_shape=PayloadShape(
            id_field="manufacturerId",
            required_fields=("companyName", "name", "location"),
        ),
        onboarded_by=Role.regulator,
    ),
    Role.laboratory: RolePolicy(
        role=Role.laboratory,
        affiliation="org2.department1",
        membership_org=_ORG2,
        required_attributes=IDENTITY_ATTRIBUTES,
        onboarding_transaction="onboardLaboratory",
        payload_shape=PayloadShape(
            id_field="laboratoryId",
            required_fields=("labName", "location"),
            optional_fields=("accreditation", "certifications"),
        ),
        onboarded_by=Role.lab_overseer,
    ),
    Role.regulator: RolePolicy(
        role=Role.regulator,
        affiliation="org1.department1",
        membership_org=_ORG1,
        required_attributes=IDENTITY_ATTRIBUTES,
    ),
    Role.lab_overseer: RolePolicy(
        role=Role.lab_overseer,
        affiliation="org2.department1",
        membership_org=_ORG2,
        required_attributes=IDENTITY_ATTRIBUTES,
    ),
    Role.admin: RolePolicy(
        role=Role.admin,
        affiliation="org1",
        membership_org=_ORG1,
        required_attributes=(*IDENTITY_ATTRIBUTES, *REGISTRAR_ATTRIBUTES),
    ),
}


def parse_role(value: Role | str) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError as e:
        raise UnsupportedRoleError(f"unsupported role: {value!r}") from e


def resolve(role: Role | str) -> RolePolicy:
    return _POLICIES[parse_role(role)]


def onboarder_role(role: Role | str) -> Role | None:
    # Diagnostics only; the ledger enforces authorship itself.
    return resolve(role).onboarded_by


def attribute_values(policy: RolePolicy, participant_id: str) -> list[dict[str, Any]]:
    """
    Attribute registrations for a new identity: `role` and `uuid` are embedded
    in the enrollment certificate (`ecert`).
    """

    values = {"role": policy.role.value, "uuid": participant_id}
    return [
        {"name": name, "value": values[name], "ecert": True}
        for name in policy.required_attributes
        if name in values
    ]


def _blank(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()
