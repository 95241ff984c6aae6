"""
ledger_onboarding.errors

Error taxonomy and the outcome classifier.

Responsibilities:
- Define the exceptions raised by the identity store, the authority client and
  the ledger client, each carrying a structured `ErrorKind`.
- Map any raised exception onto the closed `Outcome` set plus a stable status code.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class ErrorKind(enum.StrEnum):
    # Values are logged and returned to callers; treat as a stable contract.
    unsupported_role = "unsupported_role"
    admin_identity_missing = "admin_identity_missing"
    already_registered = "already_registered"
    attribute_rejected = "attribute_rejected"
    authority_transport = "authority_transport"
    authority = "authority"
    identity_not_found = "identity_not_found"
    already_exists = "already_exists"
    store_write = "store_write"
    store_corrupt = "store_corrupt"
    invalid_payload = "invalid_payload"
    access_denied = "access_denied"
    missing_attributes = "missing_attributes"
    already_onboarded = "already_onboarded"
    ledger_transport = "ledger_transport"
    ledger = "ledger"


class Outcome(enum.StrEnum):
    access_denied = "AccessDenied"
    already_exists = "AlreadyExists"
    missing_attributes = "MissingAttributes"
    invalid_payload = "InvalidPayload"
    transport_unavailable = "TransportUnavailable"
    unknown = "Unknown"


class OnboardingError(Exception):
    """
    Base class for every failure raised inside the onboarding pipeline.

    Messages must never contain enrollment secrets or private key material.
    """

    kind: ErrorKind = ErrorKind.authority

    def __init__(self, message: str, *, participant_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.participant_id = participant_id


class UnsupportedRoleError(OnboardingError, ValueError):
    kind = ErrorKind.unsupported_role


# Authority ----------------------------------------------------------------


class AuthorityError(OnboardingError):
    kind = ErrorKind.authority

    def __init__(
        self,
        message: str,
        *,
        participant_id: str | None = None,
        code: int | None = None,
    ) -> None:
        super().__init__(message, participant_id=participant_id)
        self.code = code


class AdminIdentityMissingError(AuthorityError):
    kind = ErrorKind.admin_identity_missing


class AlreadyRegisteredError(AuthorityError):
    kind = ErrorKind.already_registered


class AttributeRejectedError(AuthorityError):
    kind = ErrorKind.attribute_rejected


class AuthorityTransportError(AuthorityError):
    kind = ErrorKind.authority_transport


# Identity store -----------------------------------------------------------


class StoreError(OnboardingError):
    kind = ErrorKind.store_write


class IdentityNotFoundError(StoreError, LookupError):
    kind = ErrorKind.identity_not_found


class AlreadyExistsError(StoreError):
    kind = ErrorKind.already_exists


class StoreWriteError(StoreError):
    kind = ErrorKind.store_write


class StoreCorruptError(StoreError):
    kind = ErrorKind.store_corrupt


# Ledger -------------------------------------------------------------------


class LedgerError(OnboardingError):
    kind = ErrorKind.ledger


class InvalidPayloadError(LedgerError, ValueError):
    kind = ErrorKind.invalid_payload

    def __init__(
        self,
        message: str,
        *,
        participant_id: str | None = None,
        missing_fields: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message, participant_id=participant_id)
        self.missing_fields = missing_fields


class AccessDeniedError(LedgerError):
    kind = ErrorKind.access_denied


class MissingAttributesError(LedgerError):
    kind = ErrorKind.missing_attributes


class AlreadyOnboardedError(LedgerError):
    kind = ErrorKind.already_onboarded


class LedgerTransportError(LedgerError):
    kind = ErrorKind.ledger_transport


# Classification -------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Classification:
    outcome: Outcome
    status_code: int
    message: str
    kind: ErrorKind | None = None
    retryable: bool = False
    # Set when the acting credential must be re-issued with the right attribute requests.
    reissue_admin: bool = False


_KIND_TABLE: dict[ErrorKind, tuple[Outcome, int]] = {
    ErrorKind.unsupported_role: (Outcome.invalid_payload, 400),
    ErrorKind.invalid_payload: (Outcome.invalid_payload, 400),
    ErrorKind.admin_identity_missing: (Outcome.access_denied, 400),
    ErrorKind.attribute_rejected: (Outcome.access_denied, 400),
    ErrorKind.identity_not_found: (Outcome.access_denied, 400),
    ErrorKind.access_denied: (Outcome.access_denied, 403),
    ErrorKind.missing_attributes: (Outcome.missing_attributes, 403),
    ErrorKind.already_registered: (Outcome.already_exists, 409),
    ErrorKind.already_exists: (Outcome.already_exists, 409),
    ErrorKind.already_onboarded: (Outcome.already_exists, 409),
    ErrorKind.authority_transport: (Outcome.transport_unavailable, 500),
    ErrorKind.ledger_transport: (Outcome.transport_unavailable, 500),
    ErrorKind.store_write: (Outcome.unknown, 500),
    ErrorKind.store_corrupt: (Outcome.unknown, 500),
    ErrorKind.authority: (Outcome.unknown, 500),
    ErrorKind.ledger: (Outcome.unknown, 500),
}


def classify(exc: BaseException) -> Classification:
    """
    Total mapping from a raised exception to an outcome.

    Only the structured `kind` drives the decision. Exceptions that carry no kind
    (third-party errors, legacy free-text failures) become `Unknown` with their
    text preserved verbatim for operator diagnosis.
    """

    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, TimeoutError):
        return Classification(
            outcome=Outcome.transport_unavailable,
            status_code=500,
            message=message if str(exc) else "deadline exceeded",
            retryable=True,
        )
    if not isinstance(exc, OnboardingError):
        return Classification(outcome=Outcome.unknown, status_code=500, message=message)

    outcome, status_code = _KIND_TABLE.get(exc.kind, (Outcome.unknown, 500))
    return Classification(
        outcome=outcome,
        status_code=status_code,
        message=message,
        kind=exc.kind,
        retryable=outcome is Outcome.transport_unavailable,
        reissue_admin=outcome is Outcome.missing_attributes,
    )


# --- Module Notes -----------------------------------------------------------
# Clients translate wire-level failures (CA error codes, gateway error kinds, HTTP
# status) into these exceptions; no caller inspects error text.
