"""
ledger_onboarding.api.routers.participants

Operator endpoints for onboarding, login checks, identity removal and admin enrollment.

Responsibilities:
- Validate request bodies and delegate to `OnboardingService`.
- Return the service's status code as the HTTP status.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ledger_onboarding.api.deps import onboarding_service
from ledger_onboarding.auth.deps import require_operator
from ledger_onboarding.auth.models import Principal
from ledger_onboarding.errors import IdentityNotFoundError, classify
from ledger_onboarding.services.onboarding_service import OnboardingService, OnboardRequest

router = APIRouter(tags=["participants"])


class _CamelBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OnboardBody(OnboardRequest):
    timeout_s: float | None = Field(default=None, gt=0)


class BatchOnboardBody(_CamelBody):
    participants: list[OnboardRequest] = Field(min_length=1)
    timeout_s: float | None = Field(default=None, gt=0)


class LoginBody(_CamelBody):
    participant_id: str = Field(min_length=1, max_length=256)


class AdminEnrollBody(_CamelBody):
    admin_id: str = Field(min_length=1, max_length=256)
    enrollment_id: str = Field(min_length=1, max_length=256)
    enrollment_secret: str = Field(min_length=1, repr=False)
    membership_id: str | None = None


def _respond(status_code: int, content: dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content)


@router.post("/v1/participants/onboard")
async def onboard(
    body: OnboardBody,
    _: Principal = Depends(require_operator),
    svc: OnboardingService = Depends(onboarding_service),
) -> JSONResponse:
    result = await svc.onboard(
        body.participant_id,
        body.role,
        body.admin_context,
        body.payload,
        timeout=body.timeout_s,
    )
    return _respond(result.status_code, result.model_dump(by_alias=True))


@router.post("/v1/participants/onboard-batch")
async def onboard_batch(
    body: BatchOnboardBody,
    _: Principal = Depends(require_operator),
    svc: OnboardingService = Depends(onboarding_service),
) -> dict[str, Any]:
    # Per-participant status codes live in each result; the batch itself always succeeds.
    results = await svc.onboard_many(body.participants, timeout=body.timeout_s)
    return {"results": [r.model_dump(by_alias=True) for r in results]}


@router.delete("/v1/participants/{participant_id}")
async def remove_identity(
    participant_id: str,
    principal: Principal = Depends(require_operator),
    svc: OnboardingService = Depends(onboarding_service),
) -> JSONResponse:
    try:
        await svc.remove_identity(participant_id, actor=principal.subject)
    except IdentityNotFoundError as e:
        c = classify(e)
        return _respond(c.status_code, {"statusCode": c.status_code, "message": c.message})
    return _respond(
        200, {"statusCode": 200, "message": f"Identity for {participant_id} removed"}
    )


@router.post("/v1/login")
async def login(
    body: LoginBody,
    _: Principal = Depends(require_operator),
    svc: OnboardingService = Depends(onboarding_service),
) -> JSONResponse:
    result = await svc.login(body.participant_id)
    return _respond(result.status_code, result.model_dump(by_alias=True))


@router.post("/v1/admins/enroll")
async def enroll_admin(
    body: AdminEnrollBody,
    principal: Principal = Depends(require_operator),
    svc: OnboardingService = Depends(onboarding_service),
) -> JSONResponse:
    result = await svc.enroll_admin(
        body.admin_id,
        enrollment_id=body.enrollment_id,
        enrollment_secret=body.enrollment_secret,
        membership_id=body.membership_id,
        actor=principal.subject,
    )
    return _respond(result.status_code, result.model_dump(by_alias=True))


# --- Module Notes -----------------------------------------------------------
# Operator tokens are minted outside this service; see `auth.jwt.issue_token`.
