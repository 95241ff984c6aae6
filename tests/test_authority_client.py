"""
tests.test_authority_client

Registration and enrollment against the fake certificate authority.
"""

from __future__ import annotations

import httpx
import pytest

from ledger_onboarding.clients.authority import AdminContext, AuthorityClient
from ledger_onboarding.errors import (
    AdminIdentityMissingError,
    AlreadyRegisteredError,
    AttributeRejectedError,
    AuthorityTransportError,
)
from ledger_onboarding.identity.credential import load_certificate

from .conftest import FakeAuthority, make_credential, registrar_attrs


def _admin(attrs: dict[str, str] | None = None) -> AdminContext:
    return AdminContext(
        admin_id="regulatorAdmin",
        credential=make_credential(
            "regulatorAdmin", attrs if attrs is not None else registrar_attrs()
        ),
    )


@pytest.mark.asyncio
async def test_issue_credential_registers_and_enrolls(
    authority: AuthorityClient, fake_authority: FakeAuthority
) -> None:
    credential = await authority.issue_credential("Farmer01", "farmer", _admin())

    assert credential.membership_id == "Org1MSP"
    assert credential.attributes == {"role": "farmer", "uuid": "Farmer01"}
    assert credential.enrollment_id == "Farmer01"
    # The key pair was generated locally; the certificate binds its public half.
    load_certificate(credential.certificate)
    assert "PRIVATE KEY" in credential.private_key

    registered = fake_authority.registered["Farmer01"]["body"]
    assert registered["affiliation"] == "org1.department1"
    assert registered["type"] == "client"
    assert fake_authority.calls == [("POST", "/api/v1/register"), ("POST", "/api/v1/enroll")]


@pytest.mark.asyncio
async def test_admin_without_registrar_attributes_fails_before_network(
    authority: AuthorityClient, fake_authority: FakeAuthority
) -> None:
    with pytest.raises(AdminIdentityMissingError) as ei:
        await authority.issue_credential(
            "Farmer01", "farmer", _admin({"role": "admin", "uuid": "regulatorAdmin"})
        )
    assert "hf.Registrar.Roles" in ei.value.message
    assert fake_authority.call_count == 0


@pytest.mark.asyncio
async def test_unknown_admin_fails_before_network(
    authority: AuthorityClient, fake_authority: FakeAuthority
) -> None:
    with pytest.raises(AdminIdentityMissingError):
        await authority.issue_credential(
            "Farmer01", "farmer", AdminContext(admin_id="ghost", credential=None)
        )
    assert fake_authority.call_count == 0


@pytest.mark.asyncio
async def test_duplicate_registration_is_typed(authority: AuthorityClient) -> None:
    await authority.issue_credential("Farmer01", "farmer", _admin())
    with pytest.raises(AlreadyRegisteredError) as ei:
        await authority.issue_credential("Farmer01", "farmer", _admin())
    assert ei.value.code == 74


@pytest.mark.asyncio
async def test_authorization_code_maps_to_admin_identity_missing(
    authority: AuthorityClient, fake_authority: FakeAuthority
) -> None:
    fake_authority.register_error = (400, 71, "Authorization failure")
    with pytest.raises(AdminIdentityMissingError):
        await authority.issue_credential("Farmer01", "farmer", _admin())


@pytest.mark.asyncio
async def test_certificate_without_requested_claims_is_rejected(
    authority: AuthorityClient, fake_authority: FakeAuthority
) -> None:
    fake_authority.drop_attributes = {"uuid"}
    with pytest.raises(AttributeRejectedError):
        await authority.issue_credential("Farmer01", "farmer", _admin())


@pytest.mark.asyncio
async def test_unreachable_authority_is_transport_error(settings) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(
        base_url=settings.authority_base_url, transport=httpx.MockTransport(refuse)
    ) as http:
        client = AuthorityClient(settings=settings, http=http)
        with pytest.raises(AuthorityTransportError):
            await client.issue_credential("Farmer01", "farmer", _admin())


@pytest.mark.asyncio
async def test_server_error_is_transport_error(settings) -> None:
    async with httpx.AsyncClient(
        base_url=settings.authority_base_url,
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    ) as http:
        client = AuthorityClient(settings=settings, http=http)
        with pytest.raises(AuthorityTransportError):
            await client.issue_credential("Farmer01", "farmer", _admin())


@pytest.mark.asyncio
async def test_enroll_admin_uses_bootstrap_secret(
    authority: AuthorityClient, fake_authority: FakeAuthority
) -> None:
    fake_authority.bootstrap["admin"] = ("adminpw", registrar_attrs(uuid="admin"))

    credential = await authority.enroll_admin(
        "regulatorAdmin", enrollment_id="admin", enrollment_secret="adminpw"
    )

    assert credential.missing_attributes(("hf.Registrar.Roles", "hf.Revoker")) == ()
    assert fake_authority.calls == [("POST", "/api/v1/enroll")]
