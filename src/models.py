"""Shared Pydantic data models for the DingTalk channel adapter."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class AuditEventType(str, Enum):
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"
    INBOUND_ACCEPTED = "inbound_accepted"
    INBOUND_SKIPPED = "inbound_skipped"
    INBOUND_ERROR = "inbound_error"
    OUTBOUND_SENT = "outbound_sent"
    OUTBOUND_FAILED = "outbound_failed"
    MEDIA_FETCH_FAILED = "media_fetch_failed"
    ACCOUNT_STARTED = "account_started"
    ACCOUNT_STOPPED = "account_stopped"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Signing / session webhook models ---


class SignatureResult(BaseModel):
    """Signature query parameters for one outbound call."""

    model_config = ConfigDict(frozen=True)

    signature: str
    timestamp: int  # epoch millis


class SessionWebhookEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    expires_at: int  # epoch millis


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    account_id: str | None = None
    source_ip: str | None = None
    action: str
    result: str  # "success" | "failure" | "skipped"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
