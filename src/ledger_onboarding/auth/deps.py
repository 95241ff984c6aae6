"""
ledger_onboarding.auth.deps

FastAPI dependencies that gate the onboarding endpoints to operators.

Responsibilities:
- Turn an operator bearer token into a `Principal`.
- Bind the operator subject into the log context so every onboarding log line and
  audit actor can be traced back to who triggered it.
- Refuse callers without the onboarding operator role.
"""

from __future__ import annotations

import structlog
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from ledger_onboarding.auth.jwt import JwtConfig, JwtValidationError, decode_and_validate
from ledger_onboarding.auth.models import OPERATOR_ROLE, Principal
from ledger_onboarding.observability.logging import get_logger
from ledger_onboarding.settings import Settings, get_settings

log = get_logger(__name__)

_bearer = HTTPBearer(auto_error=False, description="Onboarding operator token")


def operator_jwt_config(settings: Settings) -> JwtConfig:
    return JwtConfig(
        alg=settings.jwt_alg,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        secret=settings.jwt_secret,
    )


def _unauthorized(reason: str) -> HTTPException:
    log.warning("operator_token_rejected", reason=reason)
    return HTTPException(
        status_code=HTTP_401_UNAUTHORIZED,
        detail=f"Operator token rejected: {reason}",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def operator_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: Settings = Depends(get_settings),
) -> Principal:
    if creds is None or not creds.credentials:
        raise _unauthorized("missing bearer token")

    try:
        claims = decode_and_validate(cfg=operator_jwt_config(settings), token=creds.credentials)
    except JwtValidationError as e:
        raise _unauthorized(str(e)) from e

    subject = str(claims.get("sub", "")).strip()
    roles = claims.get("roles", [])
    if not subject:
        raise _unauthorized("token has no subject")
    if not isinstance(roles, list):
        raise _unauthorized("token roles must be a list")

    principal = Principal(subject=subject, roles=frozenset(str(r) for r in roles))
    structlog.contextvars.bind_contextvars(operator=principal.subject)
    return principal


def require_roles(*required: str):
    """
    Dependency factory: the caller must hold every role in `required`, or be an
    onboarding superuser.
    """

    required_set = frozenset(required)

    async def _dep(principal: Principal = Depends(operator_principal)) -> Principal:
        if principal.is_superuser or required_set <= principal.roles:
            return principal
        missing = sorted(required_set - principal.roles)
        log.warning("operator_forbidden", operator=principal.subject, missing_roles=missing)
        raise HTTPException(
            status_code=HTTP_403_FORBIDDEN,
            detail=f"Operator lacks role(s): {', '.join(missing)}",
        )

    return _dep


# Shared dependency for every onboarding endpoint.
require_operator = require_roles(OPERATOR_ROLE)
