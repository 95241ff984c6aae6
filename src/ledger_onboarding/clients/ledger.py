"""
ledger_onboarding.clients.ledger

HTTP client boundary for the ledger gateway.

Responsibilities:
- Open an authenticated, per-call connection using a stored credential.
- Validate and submit a role's onboarding transaction, awaiting the commit ack.
- Release the connection unconditionally and classify gateway failures.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from types import TracebackType
from typing import Any

import httpx

from ledger_onboarding.auth.jwt import CredentialSigningError, sign_with_credential
from ledger_onboarding.errors import (
    AccessDeniedError,
    AlreadyOnboardedError,
    InvalidPayloadError,
    LedgerError,
    LedgerTransportError,
    MissingAttributesError,
)
from ledger_onboarding.identity.credential import Credential
from ledger_onboarding.identity.store import IdentityStore
from ledger_onboarding.observability.logging import get_logger
from ledger_onboarding.policy.roles import Role, onboarder_role, resolve
from ledger_onboarding.settings import Settings

log = get_logger(__name__)

_KIND_ERRORS: dict[str, type[LedgerError]] = {
    "access_denied": AccessDeniedError,
    "missing_attributes": MissingAttributesError,
    "already_exists": AlreadyOnboardedError,
    "invalid_payload": InvalidPayloadError,
    "unavailable": LedgerTransportError,
}

_STATUS_ERRORS: dict[int, type[LedgerError]] = {
    400: InvalidPayloadError,
    401: AccessDeniedError,
    403: AccessDeniedError,
    409: AlreadyOnboardedError,
    422: InvalidPayloadError,
}


@dataclass(frozen=True, slots=True)
class SubmitAck:
    tx_id: str | None
    result: Any


@dataclass(frozen=True, slots=True)
class OnboardingOutcome:
    transaction: str
    participant_id: str
    acting_participant_id: str
    tx_id: str | None = None
    result: Any = None


class LedgerConnection:
    """
    One authenticated session against the gateway. Never shared between onboarding
    calls; `close()` is idempotent.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        http: httpx.AsyncClient,
        participant_id: str,
        credential: Credential,
    ) -> None:
        self._settings = settings
        self._http = http
        self._participant_id = participant_id
        self._credential = credential
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _channel_path(self) -> str:
        return f"/api/v1/channels/{self._settings.ledger_channel}"

    def _authz(self, body: bytes = b"") -> dict[str, str]:
        try:
            token = sign_with_credential(
                credential=self._credential,
                subject=self._participant_id,
                audience=self._settings.ledger_channel,
                body=body,
            )
        except CredentialSigningError as e:
            raise AccessDeniedError(str(e), participant_id=self._participant_id) from e
        return {"Authorization": f"Bearer {token}"}

    async def open(self) -> None:
        # Handshake: the gateway checks the credential's membership on the channel.
        r = await self._request("GET", self._channel_path(), headers=self._authz())
        _raise_for_gateway(
            r,
            participant_id=self._participant_id,
            acting_participant_id=self._participant_id,
            stage="connect",
        )

    async def submit(
        self,
        transaction: str,
        args: dict[str, Any],
        *,
        participant_id: str,
        expected_author: Role | None = None,
    ) -> SubmitAck:
        # The chaincode takes one stringified JSON argument.
        body = json.dumps({"args": [json.dumps(args, separators=(",", ":"))]}).encode("utf-8")
        r = await self._request(
            "POST",
            f"{self._channel_path()}/chaincodes/{self._settings.ledger_chaincode}"
            f"/transactions/{transaction}",
            content=body,
            headers={"Content-Type": "application/json", **self._authz(body)},
        )
        _raise_for_gateway(
            r,
            participant_id=participant_id,
            acting_participant_id=self._participant_id,
            stage=transaction,
            expected_author=expected_author,
        )
        doc = _json(r)
        return SubmitAck(tx_id=doc.get("tx_id"), result=_decode_result(doc.get("result")))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._http.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise LedgerTransportError(
                f"ledger gateway unreachable for {self._participant_id!r}: {e.__class__.__name__}",
                participant_id=self._participant_id,
            ) from e

    async def __aenter__(self) -> LedgerConnection:
        try:
            await self.open()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


class LedgerGateway:
    """
    Connection factory. Each `connect()` builds its own HTTP client so credentials and
    connection state never leak across participants.
    """

    def __init__(
        self, *, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self._settings = settings
        self._transport = transport

    def connect(self, participant_id: str, credential: Credential) -> LedgerConnection:
        http = httpx.AsyncClient(
            base_url=self._settings.ledger_gateway_url,
            transport=self._transport,
            verify=self._settings.ledger_verify_tls,
            timeout=self._settings.request_timeout_s,
        )
        return LedgerConnection(
            settings=self._settings,
            http=http,
            participant_id=participant_id,
            credential=credential,
        )


class LedgerClient:
    def __init__(
        self, *, settings: Settings, store: IdentityStore, gateway: LedgerGateway
    ) -> None:
        self._settings = settings
        self._store = store
        self._gateway = gateway

    async def submit_onboarding(
        self,
        acting_participant_id: str,
        role: Role | str,
        payload: dict[str, Any],
        *,
        participant_id: str | None = None,
        timeout: float | None = None,
    ) -> OnboardingOutcome:
        """
        Submit `role`'s onboarding transaction signed by `acting_participant_id`.

        Payload validation happens before the store or the network is touched.
        """

        policy = resolve(role)
        if policy.onboarding_transaction is None or policy.payload_shape is None:
            raise InvalidPayloadError(
                f"role {policy.role.value!r} has no onboarding transaction",
                participant_id=participant_id,
            )
        shape = policy.payload_shape
        target = participant_id
        if target is None and isinstance(payload, dict):
            target = payload.get(shape.id_field)
        if not isinstance(target, str) or not target.strip():
            raise InvalidPayloadError(
                f"onboarding payload is missing {shape.id_field!r}",
                participant_id=participant_id,
                missing_fields=(shape.id_field,),
            )
        args = shape.validate(payload, participant_id=target)

        credential = await self._store.get(acting_participant_id)
        deadline = timeout if timeout is not None else self._settings.request_timeout_s
        transaction = policy.onboarding_transaction

        try:
            async with asyncio.timeout(deadline):
                async with self._gateway.connect(acting_participant_id, credential) as conn:
                    ack = await conn.submit(
                        transaction,
                        args,
                        participant_id=target,
                        expected_author=onboarder_role(policy.role),
                    )
        except TimeoutError as e:
            raise LedgerTransportError(
                f"ledger gateway did not commit {transaction} for {target!r} in time",
                participant_id=target,
            ) from e

        log.info(
            "ledger_onboarded",
            participant_id=target,
            acting_participant_id=acting_participant_id,
            transaction=transaction,
            tx_id=ack.tx_id,
        )
        return OnboardingOutcome(
            transaction=transaction,
            participant_id=target,
            acting_participant_id=acting_participant_id,
            tx_id=ack.tx_id,
            result=ack.result,
        )


def _json(r: httpx.Response) -> dict[str, Any]:
    try:
        doc = r.json()
    except ValueError:
        return {}
    return doc if isinstance(doc, dict) else {}


def _decode_result(raw: Any) -> Any:
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


def _raise_for_gateway(
    r: httpx.Response,
    *,
    participant_id: str,
    acting_participant_id: str,
    stage: str,
    expected_author: Role | None = None,
) -> None:
    if r.is_success:
        return
    err = _json(r).get("error")
    err = err if isinstance(err, dict) else {}
    kind = err.get("kind")
    detail = str(err.get("message") or r.text or f"HTTP {r.status_code}")
    message = f"ledger rejected {stage} for {participant_id!r}"
    if acting_participant_id != participant_id:
        message += f" (submitted as {acting_participant_id!r})"
    message += f": {detail}"

    if isinstance(kind, str) and kind in _KIND_ERRORS:
        cls = _KIND_ERRORS[kind]
    elif r.status_code >= 500:
        cls = LedgerTransportError if r.status_code in (502, 503, 504) else LedgerError
    else:
        cls = _STATUS_ERRORS.get(r.status_code, LedgerError)
    if cls is AccessDeniedError and expected_author is not None:
        message += f"; {stage} must be submitted by a {expected_author.value} identity"
    raise cls(message, participant_id=participant_id)


# --- Module Notes -----------------------------------------------------------
# Gateway errors without a structured `kind` fall back to the HTTP status; a plain 500
# with free text stays a generic LedgerError and is surfaced verbatim as Unknown.
