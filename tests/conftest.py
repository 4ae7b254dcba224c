"""Shared test fixtures for the DingTalk channel adapter."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.audit.logger import AuditLogger
from src.dingtalk.config import ResolvedAccount
from src.dingtalk.dispatch import DeliverFn, ErrorFn
from src.dingtalk.models import CanonicalInboundContext, InboundMessage
from src.models import AuditEvent, AuditEventType, RiskLevel

SECRET = "SECtest-secret"
NOW_MS = 1_700_000_000_000


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


def fixed_clock(now: int = NOW_MS):
    return lambda: now


# --- Factory functions for test data ---


def make_audit_event(**kwargs: Any) -> AuditEvent:
    """Factory for AuditEvent with sensible defaults."""
    defaults: dict[str, Any] = {
        "event_type": AuditEventType.AUTH_FAILURE,
        "account_id": "default",
        "action": "test_action",
        "result": "failure",
        "risk_level": RiskLevel.MEDIUM,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)


def make_account(**kwargs: Any) -> ResolvedAccount:
    """Factory for ResolvedAccount with sensible defaults."""
    defaults: dict[str, Any] = {
        "account_id": "default",
        "enabled": True,
        "secret_key": SECRET,
    }
    defaults.update(kwargs)
    return ResolvedAccount(**defaults)


def make_payload_dict(**kwargs: Any) -> dict[str, Any]:
    """Robot callback body for a 1:1 text message, in wire (camelCase) form."""
    defaults: dict[str, Any] = {
        "msgtype": "text",
        "text": {"content": "hello"},
        "msgId": "m1",
        "conversationType": "1",
        "conversationId": "cid-direct",
        "senderId": "u1",
        "senderNick": "Alice",
        "chatbotUserId": "bot-1",
        "robotCode": "ding-robot",
        "createAt": NOW_MS,
        "isInAtList": False,
        "sessionWebhook": "https://oapi.dingtalk.com/robot/sendBySession?session=abc",
        "sessionWebhookExpiredTime": NOW_MS + 60_000,
    }
    defaults.update(kwargs)
    return defaults


def make_payload(**kwargs: Any) -> InboundMessage:
    return InboundMessage.model_validate(make_payload_dict(**kwargs))


def make_group_payload(**kwargs: Any) -> InboundMessage:
    defaults: dict[str, Any] = {
        "conversationType": "2",
        "conversationId": "cid-group",
        "conversationTitle": "Team",
    }
    defaults.update(kwargs)
    return make_payload(**defaults)


def make_context(**kwargs: Any) -> CanonicalInboundContext:
    defaults: dict[str, Any] = {
        "body": "Alice: hello",
        "raw_body": "hello",
        "command_body": "hello",
        "sender": "dingtalk:u1",
        "to": "user:u1",
        "account_id": "default",
        "chat_type": "direct",
        "peer_id": "u1",
        "sender_name": "Alice",
        "sender_id": "u1",
        "conversation_id": "cid-direct",
        "message_sid": "m1",
        "timestamp": NOW_MS,
        "created_at": NOW_MS,
        "was_mentioned": True,
        "originating_to": "user:u1",
    }
    defaults.update(kwargs)
    return CanonicalInboundContext(**defaults)


class RecordingDispatcher:
    """Dispatch engine stand-in that records contexts and replies with fixed text."""

    def __init__(self, reply: str | None = None) -> None:
        self.reply = reply
        self.contexts: list[CanonicalInboundContext] = []
        self.errors: list[tuple[BaseException, str]] = []

    async def dispatch(
        self, context: CanonicalInboundContext, deliver: DeliverFn, on_error: ErrorFn,
    ) -> None:
        self.contexts.append(context)
        if self.reply is None:
            return
        try:
            await deliver(self.reply)
        except Exception as exc:
            self.errors.append((exc, "final"))
            on_error(exc, "final")


def mock_async_client(responses: list[Any] | Any) -> tuple[MagicMock, AsyncMock]:
    """Build a patched ``httpx.AsyncClient`` class and the client it yields."""
    client = AsyncMock()
    if isinstance(responses, list):
        client.post.side_effect = responses
    else:
        client.post.return_value = responses
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    client_cls = MagicMock(return_value=client)
    return client_cls, client


def json_response(data: Any, status_code: int = 200, headers: dict[str, str] | None = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = data
    resp.headers = headers or {}
    resp.raise_for_status = MagicMock()
    return resp
