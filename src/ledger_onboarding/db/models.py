"""
ledger_onboarding.db.models

Persistence schema for the onboarding pipeline.

Responsibilities:
- Define ORM models:
  - IdentityRecord: one stored credential per participant (identity store)
  - OnboardingRecord: per-participant pipeline stage (idempotency gate)
  - AuditEvent: append-only audit trail of stage transitions and failures
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Enum, Index, String, Text, Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column

from ledger_onboarding.db.base import Base


def _utcnow() -> datetime:
    # Persist naive UTC timestamps for simplicity.
    return datetime.utcnow()


class OnboardingStage(enum.StrEnum):
    # Ordered: each stage implies every earlier one has completed.
    not_registered = "NOT_REGISTERED"
    ca_registered = "CA_REGISTERED"
    credential_stored = "CREDENTIAL_STORED"
    ledger_onboarded = "LEDGER_ONBOARDED"


class IdentityRecord(Base):
    __tablename__ = "identities"

    participant_id: Mapped[str] = mapped_column(String(256), primary_key=True)

    certificate: Mapped[str] = mapped_column(Text, nullable=False)
    private_key: Mapped[str] = mapped_column(Text, nullable=False)
    msp_id: Mapped[str] = mapped_column(String(128), nullable=False)
    identity_type: Mapped[str] = mapped_column(String(32), nullable=False, default="X.509")

    # Bumped on every explicit replacement (re-enrollment).
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, onupdate=_utcnow)


class OnboardingRecord(Base):
    __tablename__ = "onboarding_records"

    participant_id: Mapped[str] = mapped_column(String(256), primary_key=True)
    role: Mapped[str] = mapped_column(String(64), nullable=False)
    stage: Mapped[OnboardingStage] = mapped_column(
        Enum(OnboardingStage), nullable=False, index=True
    )

    acting_participant_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    transaction: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tx_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, onupdate=_utcnow)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    participant_id: Mapped[str] = mapped_column(String(256), nullable=False, index=True)

    actor: Mapped[str] = mapped_column(String(256), nullable=False)  # admin id / service
    event_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow, index=True)

    __table_args__ = (Index("ix_audit_participant_created", "participant_id", "created_at"),)


# --- Module Notes -----------------------------------------------------------
# Private keys are stored as PEM text, as a file-system wallet would; callers must not
# log IdentityRecord rows directly.
