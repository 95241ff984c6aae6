"""
ledger_onboarding.identity.credential

Credential value type.

Responsibilities:
- Hold an issued X.509 identity (certificate + private key + membership id).
- Read the attribute claims the authority embedded in the certificate.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from cryptography import x509
from cryptography.x509.oid import NameOID, ObjectIdentifier

# Extension in which the authority embeds enrollment attributes as JSON: {"attrs": {...}}.
ATTRIBUTE_EXTENSION_OID = ObjectIdentifier("1.2.3.4.5.6.7.8.1")


class CertificateFormatError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class Credential:
    """
    Immutable once issued. `private_key` is excluded from repr so that logging a
    credential never leaks key material.
    """

    certificate: str
    private_key: str = field(repr=False)
    membership_id: str
    identity_type: str = "X.509"

    @property
    def attributes(self) -> dict[str, str]:
        return certificate_attributes(self.certificate)

    @property
    def enrollment_id(self) -> str:
        return certificate_common_name(self.certificate)

    def missing_attributes(self, names: tuple[str, ...] | list[str]) -> tuple[str, ...]:
        attrs = self.attributes
        return tuple(n for n in names if n not in attrs)


def load_certificate(pem: str) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(pem.encode("utf-8"))
    except ValueError as e:
        raise CertificateFormatError(f"unreadable certificate: {e}") from e


def certificate_attributes(pem: str) -> dict[str, str]:
    cert = load_certificate(pem)
    try:
        ext = cert.extensions.get_extension_for_oid(ATTRIBUTE_EXTENSION_OID)
    except x509.ExtensionNotFound:
        return {}

    raw: Any = getattr(ext.value, "value", b"")
    try:
        doc = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise CertificateFormatError(f"malformed attribute extension: {e}") from e
    attrs = doc.get("attrs", {}) if isinstance(doc, dict) else {}
    if not isinstance(attrs, dict):
        raise CertificateFormatError("malformed attribute extension: attrs is not an object")
    return {str(k): str(v) for k, v in attrs.items()}


def certificate_common_name(pem: str) -> str:
    cert = load_certificate(pem)
    names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(names[0].value) if names else ""


# --- Module Notes -----------------------------------------------------------
# Claims are always read from the certificate itself; the store never keeps a separate
# (and possibly diverging) copy of the attribute set.
