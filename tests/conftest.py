"""
tests.conftest

Shared fixtures: a temp-file identity store, credential factories and in-process fakes
for the certificate authority and the ledger gateway (served through
`httpx.MockTransport`).
"""

from __future__ import annotations

import asyncio
import base64
import json
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from ledger_onboarding.auth.jwt import JwtValidationError, verify_credential_token
from ledger_onboarding.clients.authority import AuthorityClient
from ledger_onboarding.clients.ledger import LedgerClient, LedgerGateway
from ledger_onboarding.db.init_db import init_db
from ledger_onboarding.db.session import create_engine, create_sessionmaker
from ledger_onboarding.identity.credential import ATTRIBUTE_EXTENSION_OID, Credential
from ledger_onboarding.identity.store import IdentityStore
from ledger_onboarding.policy.roles import REGISTRAR_ATTRIBUTES
from ledger_onboarding.services.onboarding_service import OnboardingService
from ledger_onboarding.settings import Settings

CA_NAME = "ca-org1"
CHANNEL = "mychannel"

_CA_KEY = ec.generate_private_key(ec.SECP256R1())
_CA_SUBJECT = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "test-ca")])


def issue_certificate(
    common_name: str, public_key: Any, attrs: dict[str, str] | None = None
) -> str:
    now = datetime.now(tz=UTC)
    builder = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
        .issuer_name(_CA_SUBJECT)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(days=1))
    )
    if attrs is not None:
        raw = json.dumps({"attrs": attrs}).encode("utf-8")
        builder = builder.add_extension(
            x509.UnrecognizedExtension(ATTRIBUTE_EXTENSION_OID, raw), critical=False
        )
    cert = builder.sign(_CA_KEY, hashes.SHA256())
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def make_credential(
    common_name: str, attrs: dict[str, str] | None = None, *, msp_id: str = "Org1MSP"
) -> Credential:
    key = ec.generate_private_key(ec.SECP256R1())
    private_key = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    return Credential(
        certificate=issue_certificate(common_name, key.public_key(), attrs),
        private_key=private_key,
        membership_id=msp_id,
    )


def registrar_attrs(role: str = "admin", uuid: str = "regulatorAdmin") -> dict[str, str]:
    return {"role": role, "uuid": uuid, **{name: "*" for name in REGISTRAR_ATTRIBUTES}}


class FakeAuthority:
    """
    Minimal certificate authority: checks the registrar token, hands out one-time
    secrets and signs CSRs with the registered attributes.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.registered: dict[str, dict[str, Any]] = {}
        # Pre-seeded bootstrap identities: enrollment id -> (secret, attrs)
        self.bootstrap: dict[str, tuple[str, dict[str, str]]] = {}
        self.register_error: tuple[int, int, str] | None = None
        self.drop_attributes: set[str] = set()

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        body = json.loads(request.content or b"{}")
        if request.url.path == "/api/v1/register":
            return self._register(request, body)
        if request.url.path == "/api/v1/enroll":
            return self._enroll(request, body)
        return httpx.Response(404, json={"success": False, "errors": [{"code": 0}]})

    def _register(self, request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
        try:
            verify_credential_token(
                token=request.headers.get("Authorization", ""), audience=CA_NAME
            )
        except JwtValidationError:
            return _ca_error(401, 20, "Authentication failure")
        if self.register_error is not None:
            status, code, message = self.register_error
            return _ca_error(status, code, message)
        pid = body["id"]
        if pid in self.registered:
            return _ca_error(400, 74, f"Identity '{pid}' is already registered")
        secret = f"secret-{pid}"
        attrs = {a["name"]: a["value"] for a in body.get("attrs", [])}
        self.registered[pid] = {"secret": secret, "attrs": attrs, "body": body}
        return httpx.Response(200, json={"success": True, "result": {"secret": secret}})

    def _enroll(self, request: httpx.Request, body: dict[str, Any]) -> httpx.Response:
        auth = request.headers.get("Authorization", "")
        user, _, secret = base64.b64decode(auth.removeprefix("Basic ")).decode().partition(":")
        if user in self.registered and self.registered[user]["secret"] == secret:
            known = self.registered[user]["attrs"]
        elif user in self.bootstrap and self.bootstrap[user][0] == secret:
            known = self.bootstrap[user][1]
        else:
            return _ca_error(401, 20, "Authentication failure")

        requested = [r["name"] for r in body.get("attr_reqs", [])]
        missing = [n for n in requested if n not in known]
        if missing:
            return _ca_error(400, 44, f"Attribute '{missing[0]}' was not found")
        attrs = {n: known[n] for n in requested if n not in self.drop_attributes}
        csr = x509.load_pem_x509_csr(body["certificate_request"].encode("ascii"))
        pem = issue_certificate(user, csr.public_key(), attrs)
        cert_b64 = base64.b64encode(pem.encode("ascii")).decode("ascii")
        return httpx.Response(200, json={"success": True, "result": {"Cert": cert_b64}})


def _ca_error(status: int, code: int, message: str) -> httpx.Response:
    return httpx.Response(
        status,
        json={"success": False, "result": None, "errors": [{"code": code, "message": message}]},
    )


class FakeLedger:
    """
    Ledger gateway double: verifies the credential-signed token on every request and
    records committed onboarding transactions.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.submissions: list[tuple[str, dict[str, Any]]] = []
        self.onboarded: set[str] = set()
        self.next_error: tuple[int, str | None, str] | None = None
        self.delay_s: float = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        try:
            verify_credential_token(token=token, audience=CHANNEL)
        except JwtValidationError:
            return _gw_error(401, "access_denied", "invalid identity")

        if request.method == "GET":
            return httpx.Response(200, json={"channel": CHANNEL})

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
        finally:
            self.in_flight -= 1

        if self.next_error is not None:
            status, kind, message = self.next_error
            return _gw_error(status, kind, message)

        transaction = request.url.path.rsplit("/", 1)[-1]
        args = json.loads(json.loads(request.content)["args"][0])
        key = next(v for k, v in args.items() if k.endswith("Id"))
        if key in self.onboarded:
            return _gw_error(409, "already_exists", f"{key} already exists")
        self.onboarded.add(key)
        self.submissions.append((transaction, args))
        tx_id = f"tx-{len(self.submissions)}"
        return httpx.Response(200, json={"tx_id": tx_id, "result": json.dumps(args)})


def _gw_error(status: int, kind: str | None, message: str) -> httpx.Response:
    err: dict[str, Any] = {"message": message}
    if kind is not None:
        err["kind"] = kind
    return httpx.Response(status, json={"error": err})


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        env="test",
        log_level="WARNING",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'identities.db'}",
        authority_base_url="http://ca.test",
        authority_ca_name=CA_NAME,
        ledger_gateway_url="http://gateway.test",
        ledger_channel=CHANNEL,
        request_timeout_s=5.0,
        max_concurrent_onboardings=2,
    )


@pytest_asyncio.fixture
async def session_factory(settings: Settings) -> AsyncIterator[Any]:
    engine = create_engine(settings)
    await init_db(engine)
    try:
        yield create_sessionmaker(engine)
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def store(session_factory) -> IdentityStore:
    return IdentityStore(session_factory)


@pytest.fixture
def fake_authority() -> FakeAuthority:
    return FakeAuthority()


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest_asyncio.fixture
async def authority(settings: Settings, fake_authority: FakeAuthority) -> AsyncIterator[Any]:
    async with httpx.AsyncClient(
        base_url=settings.authority_base_url,
        transport=httpx.MockTransport(fake_authority.handler),
    ) as http:
        yield AuthorityClient(settings=settings, http=http)


@pytest.fixture
def ledger(settings: Settings, store: IdentityStore, fake_ledger: FakeLedger) -> LedgerClient:
    gateway = LedgerGateway(settings=settings, transport=httpx.MockTransport(fake_ledger.handler))
    return LedgerClient(settings=settings, store=store, gateway=gateway)


@pytest_asyncio.fixture
async def regulator_admin(store: IdentityStore) -> Credential:
    credential = make_credential("regulatorAdmin", registrar_attrs())
    await store.put("regulatorAdmin", credential)
    return credential


@pytest.fixture
def service(
    settings: Settings,
    session_factory,
    store: IdentityStore,
    authority: AuthorityClient,
    ledger: LedgerClient,
) -> OnboardingService:
    return OnboardingService(
        settings=settings,
        session_factory=session_factory,
        store=store,
        authority=authority,
        ledger=ledger,
    )
