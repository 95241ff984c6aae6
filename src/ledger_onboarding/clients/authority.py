"""
ledger_onboarding.clients.authority

HTTP client boundary for the certificate authority.

Responsibilities:
- Register a new enrollment id, authenticated as an already-enrolled admin credential.
- Enroll with the one-time secret and obtain a certificate carrying the role's
  required attributes as non-optional claims.
- Translate authority error codes into the structured error taxonomy.
"""

from __future__ import annotations

import asyncio
import base64
import json
from dataclasses import dataclass
from typing import Any

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from ledger_onboarding.auth.jwt import CredentialSigningError, sign_with_credential
from ledger_onboarding.errors import (
    AdminIdentityMissingError,
    AlreadyRegisteredError,
    AttributeRejectedError,
    AuthorityError,
    AuthorityTransportError,
)
from ledger_onboarding.identity.credential import (
    CertificateFormatError,
    Credential,
    certificate_attributes,
)
from ledger_onboarding.observability.logging import get_logger
from ledger_onboarding.policy.roles import (
    REGISTRAR_ATTRIBUTES,
    Role,
    RolePolicy,
    attribute_values,
    resolve,
)
from ledger_onboarding.settings import Settings

log = get_logger(__name__)

# Authority error codes, grouped by how the pipeline reacts to them.
ALREADY_REGISTERED_CODES = frozenset({74})
AUTHORIZATION_CODES = frozenset({20, 71})
ATTRIBUTE_CODES = frozenset({40, 44, 45})


@dataclass(frozen=True, slots=True)
class AdminContext:
    """
    The administrative identity a registration is performed as. `credential` is None
    when the admin id is not present in the identity store.
    """

    admin_id: str
    credential: Credential | None


class AuthorityClient:
    def __init__(self, *, settings: Settings, http: httpx.AsyncClient) -> None:
        self._settings = settings
        self._http = http

    async def issue_credential(
        self,
        participant_id: str,
        role: Role | str,
        admin: AdminContext,
        *,
        timeout: float | None = None,
    ) -> Credential:
        """
        Register and enroll `participant_id`; the returned credential is not persisted.
        """

        policy = resolve(role)
        admin_credential = _require_registrar(admin, participant_id=participant_id)
        deadline = timeout if timeout is not None else self._settings.request_timeout_s

        try:
            async with asyncio.timeout(deadline):
                secret = await self._register(
                    participant_id=participant_id,
                    policy=policy,
                    admin_id=admin.admin_id,
                    admin_credential=admin_credential,
                )
                log.info(
                    "authority_registered",
                    participant_id=participant_id,
                    role=policy.role.value,
                    affiliation=policy.affiliation,
                    admin_id=admin.admin_id,
                )
                credential = await self._enroll(
                    enrollment_id=participant_id,
                    secret=secret,
                    attribute_requests=policy.required_attributes,
                    membership_id=policy.membership_org,
                )
        except TimeoutError as e:
            raise AuthorityTransportError(
                f"authority did not answer in time while issuing {participant_id!r}",
                participant_id=participant_id,
            ) from e

        _verify_claims(
            credential,
            participant_id=participant_id,
            expected={"role": policy.role.value, "uuid": participant_id},
            required=policy.required_attributes,
        )
        log.info("authority_enrolled", participant_id=participant_id, role=policy.role.value)
        return credential

    async def enroll_admin(
        self,
        admin_id: str,
        *,
        enrollment_id: str,
        enrollment_secret: str,
        membership_id: str | None = None,
        attribute_requests: tuple[str, ...] | None = None,
        timeout: float | None = None,
    ) -> Credential:
        """
        Enroll a bootstrap administrative identity with registrar capability claims.

        Called explicitly by operators; the onboarding pipeline never re-enrolls an admin.
        """

        policy = resolve(Role.admin)
        requests = attribute_requests if attribute_requests is not None else REGISTRAR_ATTRIBUTES
        deadline = timeout if timeout is not None else self._settings.request_timeout_s
        try:
            async with asyncio.timeout(deadline):
                credential = await self._enroll(
                    enrollment_id=enrollment_id,
                    secret=enrollment_secret,
                    attribute_requests=requests,
                    membership_id=membership_id or policy.membership_org,
                )
        except TimeoutError as e:
            raise AuthorityTransportError(
                f"authority did not answer in time while enrolling admin {admin_id!r}",
                participant_id=admin_id,
            ) from e

        _verify_claims(credential, participant_id=admin_id, expected={}, required=requests)
        log.info("authority_admin_enrolled", admin_id=admin_id, msp_id=credential.membership_id)
        return credential

    async def _register(
        self,
        *,
        participant_id: str,
        policy: RolePolicy,
        admin_id: str,
        admin_credential: Credential,
    ) -> str:
        body = {
            "id": participant_id,
            "type": "client",
            "affiliation": policy.affiliation,
            "attrs": attribute_values(policy, participant_id),
            "caname": self._settings.authority_ca_name,
        }
        content = json.dumps(body, separators=(",", ":")).encode("utf-8")
        try:
            token = sign_with_credential(
                credential=admin_credential,
                subject=admin_id,
                audience=self._settings.authority_ca_name,
                body=content,
            )
        except CredentialSigningError as e:
            raise AdminIdentityMissingError(str(e), participant_id=participant_id) from e

        result = await self._post(
            "/api/v1/register",
            content=content,
            headers={"Authorization": token},
            participant_id=participant_id,
        )
        secret = result.get("secret")
        if not isinstance(secret, str) or not secret:
            raise AuthorityError(
                f"authority returned no enrollment secret for {participant_id!r}",
                participant_id=participant_id,
            )
        return secret

    async def _enroll(
        self,
        *,
        enrollment_id: str,
        secret: str,
        attribute_requests: tuple[str, ...],
        membership_id: str,
    ) -> Credential:
        key = ec.generate_private_key(ec.SECP256R1())
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, enrollment_id)]))
            .sign(key, hashes.SHA256())
        )
        body = {
            "certificate_request": csr.public_bytes(serialization.Encoding.PEM).decode("ascii"),
            "caname": self._settings.authority_ca_name,
            "attr_reqs": [{"name": name, "optional": False} for name in attribute_requests],
        }
        result = await self._post(
            "/api/v1/enroll",
            content=json.dumps(body, separators=(",", ":")).encode("utf-8"),
            auth=httpx.BasicAuth(enrollment_id, secret),
            participant_id=enrollment_id,
        )
        certificate = _decode_certificate(result.get("Cert"), participant_id=enrollment_id)
        private_key = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")
        return Credential(
            certificate=certificate,
            private_key=private_key,
            membership_id=membership_id,
        )

    async def _post(
        self,
        path: str,
        *,
        content: bytes,
        participant_id: str,
        headers: dict[str, str] | None = None,
        auth: httpx.Auth | None = None,
    ) -> dict[str, Any]:
        try:
            r = await self._http.post(
                path,
                content=content,
                headers={"Content-Type": "application/json", **(headers or {})},
                auth=auth,
            )
        except httpx.TransportError as e:
            # Covers connect/read timeouts as well as refused connections.
            raise AuthorityTransportError(
                f"authority unreachable for {participant_id!r}: {e.__class__.__name__}",
                participant_id=participant_id,
            ) from e

        try:
            doc = r.json()
        except ValueError:
            doc = {}
        if not isinstance(doc, dict):
            doc = {}

        if r.status_code >= 500:
            raise AuthorityTransportError(
                f"authority unavailable for {participant_id!r} (HTTP {r.status_code})",
                participant_id=participant_id,
            )
        if r.is_success and doc.get("success", True):
            result = doc.get("result", {})
            return result if isinstance(result, dict) else {}
        raise _authority_error(doc, status_code=r.status_code, participant_id=participant_id)


def _require_registrar(admin: AdminContext, *, participant_id: str) -> Credential:
    if admin.credential is None:
        raise AdminIdentityMissingError(
            f"admin identity {admin.admin_id!r} is not enrolled; "
            f"cannot register {participant_id!r}",
            participant_id=participant_id,
        )
    try:
        missing = admin.credential.missing_attributes(REGISTRAR_ATTRIBUTES)
    except CertificateFormatError as e:
        raise AdminIdentityMissingError(
            f"admin identity {admin.admin_id!r} has an unreadable certificate",
            participant_id=participant_id,
        ) from e
    if missing:
        raise AdminIdentityMissingError(
            f"admin identity {admin.admin_id!r} lacks registrar attributes "
            f"({', '.join(missing)}); cannot register {participant_id!r}",
            participant_id=participant_id,
        )
    return admin.credential


def _authority_error(
    doc: dict[str, Any], *, status_code: int, participant_id: str
) -> AuthorityError:
    errors = doc.get("errors") or []
    first = errors[0] if isinstance(errors, list) and errors and isinstance(errors[0], dict) else {}
    code = first.get("code")
    code = code if isinstance(code, int) else None
    detail = str(first.get("message") or f"HTTP {status_code}")
    message = f"authority rejected {participant_id!r}: {detail}"

    if code in ALREADY_REGISTERED_CODES:
        cls: type[AuthorityError] = AlreadyRegisteredError
    elif code in AUTHORIZATION_CODES or status_code in (401, 403):
        cls = AdminIdentityMissingError
    elif code in ATTRIBUTE_CODES:
        cls = AttributeRejectedError
    else:
        cls = AuthorityError
    return cls(message, participant_id=participant_id, code=code)


def _decode_certificate(raw: Any, *, participant_id: str) -> str:
    if not isinstance(raw, str) or not raw:
        raise AuthorityError(
            f"authority returned no certificate for {participant_id!r}",
            participant_id=participant_id,
        )
    if raw.lstrip().startswith("-----BEGIN"):
        return raw
    try:
        return base64.b64decode(raw, validate=True).decode("ascii")
    except ValueError as e:
        raise AuthorityError(
            f"authority returned an undecodable certificate for {participant_id!r}",
            participant_id=participant_id,
        ) from e


def _verify_claims(
    credential: Credential,
    *,
    participant_id: str,
    expected: dict[str, str],
    required: tuple[str, ...],
) -> None:
    try:
        attrs = certificate_attributes(credential.certificate)
    except CertificateFormatError as e:
        raise AuthorityError(
            f"authority issued an unreadable certificate for {participant_id!r}",
            participant_id=participant_id,
        ) from e

    missing = [name for name in required if name not in attrs]
    wrong = [name for name, value in expected.items() if name in attrs and attrs[name] != value]
    if missing or wrong:
        parts = []
        if missing:
            parts.append("missing " + ", ".join(missing))
        if wrong:
            parts.append("mismatched " + ", ".join(wrong))
        raise AttributeRejectedError(
            f"certificate issued for {participant_id!r} does not carry required attributes "
            f"({'; '.join(parts)})",
            participant_id=participant_id,
        )


# --- Module Notes -----------------------------------------------------------
# The key pair is generated locally and only a CSR is sent, so the private key never
# crosses the wire. No call here is retried; retry policy belongs to the caller.
