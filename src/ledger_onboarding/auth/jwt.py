"""
ledger_onboarding.auth.jwt

JWT issuing and validation helpers.

Responsibilities:
- Issue and validate short-lived operator tokens (HS256) for the HTTP surface.
- Sign requests to the authority and the ledger gateway with a stored credential
  (ES256, certificate carried in the `x5c` header).
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from jwt import InvalidTokenError

from ledger_onboarding.identity.credential import (
    CertificateFormatError,
    Credential,
    load_certificate,
)


@dataclass(frozen=True, slots=True)
class JwtConfig:
    alg: str
    issuer: str
    audience: str
    secret: str


class JwtValidationError(Exception):
    pass


class CredentialSigningError(Exception):
    pass


def issue_token(
    *,
    cfg: JwtConfig,
    subject: str,
    roles: list[str],
    ttl: timedelta = timedelta(hours=1),
) -> str:
    now = datetime.now(tz=UTC)
    payload: dict[str, Any] = {
        "iss": cfg.issuer,
        "aud": cfg.audience,
        "sub": subject,
        "roles": roles,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.alg)


def decode_and_validate(*, cfg: JwtConfig, token: str) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            cfg.secret,
            algorithms=[cfg.alg],
            issuer=cfg.issuer,
            audience=cfg.audience,
            options={"require": ["exp", "iat", "iss", "aud", "sub"]},
        )
    except InvalidTokenError as e:
        raise JwtValidationError(str(e)) from e


def sign_with_credential(
    *,
    credential: Credential,
    subject: str,
    audience: str,
    body: bytes = b"",
    ttl: timedelta = timedelta(minutes=5),
) -> str:
    """
    Request token proving possession of `credential`.

    The body digest binds the token to one request so it cannot be replayed against
    another registration or transaction. The private key never leaves this call.
    """

    try:
        cert = load_certificate(credential.certificate)
    except CertificateFormatError as e:
        raise CredentialSigningError(f"cannot sign as {subject!r}: {e}") from e

    der = cert.public_bytes(serialization.Encoding.DER)
    now = datetime.now(tz=UTC)
    payload: dict[str, Any] = {
        "sub": subject,
        "aud": audience,
        "msp": credential.membership_id,
        "body_sha256": hashlib.sha256(body).hexdigest(),
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    try:
        return jwt.encode(
            payload,
            credential.private_key,
            algorithm="ES256",
            headers={"x5c": [base64.b64encode(der).decode("ascii")]},
        )
    except (ValueError, TypeError, jwt.PyJWTError) as e:
        # Key parsing errors may quote key material; keep the message generic.
        raise CredentialSigningError(f"cannot sign as {subject!r}: unusable private key") from e


def verify_credential_token(*, token: str, audience: str) -> dict[str, Any]:
    """
    Verify a credential-signed token against the certificate in its own `x5c` header.

    Lets a gateway (or a test double of one) check key possession; chain of trust is
    out of scope.
    """

    try:
        header = jwt.get_unverified_header(token)
        der = base64.b64decode(header["x5c"][0])
        public_key = x509.load_der_x509_certificate(der).public_key()
        return jwt.decode(token, public_key, algorithms=["ES256"], audience=audience)
    except (InvalidTokenError, KeyError, IndexError, ValueError) as e:
        raise JwtValidationError(str(e)) from e


# --- Module Notes -----------------------------------------------------------
# Operator tokens are used by `auth.deps`; credential-signed tokens by
# `clients.authority` and `clients.ledger`.
