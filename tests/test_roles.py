"""
tests.test_roles

Role policy table and payload validation.
"""

from __future__ import annotations

import pytest

from ledger_onboarding.errors import InvalidPayloadError, UnsupportedRoleError
from ledger_onboarding.policy.roles import (
    REGISTRAR_ATTRIBUTES,
    Role,
    attribute_values,
    onboarder_role,
    parse_role,
    resolve,
)


def test_farmer_policy_targets_org1_and_onboard_farmer() -> None:
    policy = resolve("farmer")
    assert policy.affiliation == "org1.department1"
    assert policy.membership_org == "Org1MSP"
    assert policy.onboarding_transaction == "onboardFarmer"
    assert policy.onboardable


def test_laboratory_is_org2() -> None:
    policy = resolve(Role.laboratory)
    assert policy.membership_org == "Org2MSP"
    assert policy.onboarded_by is Role.lab_overseer


@pytest.mark.parametrize("role", ["regulator", "labOverseer", "admin"])
def test_roles_without_transaction_are_not_onboardable(role: str) -> None:
    assert not resolve(role).onboardable


def test_admin_requires_registrar_attributes() -> None:
    required = resolve("admin").required_attributes
    assert set(REGISTRAR_ATTRIBUTES) <= set(required)


def test_unknown_role_is_rejected() -> None:
    with pytest.raises(UnsupportedRoleError):
        resolve("auditor")
    with pytest.raises(UnsupportedRoleError):
        parse_role("Farmer")


@pytest.mark.parametrize("role", list(Role))
def test_every_role_requires_role_and_uuid_claims(role: Role) -> None:
    assert {"role", "uuid"} <= set(resolve(role).required_attributes)
    assert resolve(role.value).role is role


def test_onboarder_role_names_expected_author() -> None:
    assert onboarder_role("farmer") is Role.regulator
    assert onboarder_role("laboratory") is Role.lab_overseer
    assert onboarder_role("regulator") is None


def test_attribute_values_embed_role_and_uuid_in_ecert() -> None:
    values = attribute_values(resolve("farmer"), "Farmer01")
    assert {"name": "role", "value": "farmer", "ecert": True} in values
    assert {"name": "uuid", "value": "Farmer01", "ecert": True} in values


def test_payload_shape_injects_id_and_drops_unknown_keys() -> None:
    shape = resolve("laboratory").payload_shape
    assert shape is not None
    args = shape.validate(
        {"labName": "L", "location": "Pune", "accreditation": "NABL", "extra": 1},
        participant_id="Lab01",
    )
    assert args == {
        "laboratoryId": "Lab01",
        "labName": "L",
        "location": "Pune",
        "accreditation": "NABL",
    }


def test_payload_shape_reports_blank_required_fields() -> None:
    shape = resolve("farmer").payload_shape
    assert shape is not None
    with pytest.raises(InvalidPayloadError) as ei:
        shape.validate({"name": "  "}, participant_id="Farmer01")
    assert ei.value.missing_fields == ("name", "farmLocation")
