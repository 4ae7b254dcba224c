"""Tests for shared and wire-level Pydantic data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.dingtalk.models import InboundMessage
from src.models import AuditEvent, AuditEventType, RiskLevel, SessionWebhookEntry, SignatureResult
from tests.conftest import make_audit_event, make_context, make_payload_dict


class TestAuditEvent:
    def test_timestamp_defaults_to_now(self):
        event = make_audit_event()
        assert event.timestamp.endswith("+00:00")

    def test_json_uses_enum_values(self):
        event = make_audit_event(event_type=AuditEventType.OUTBOUND_FAILED, risk_level=RiskLevel.HIGH)
        data = event.model_dump(mode="json")
        assert data["event_type"] == "outbound_failed"
        assert data["risk_level"] == "high"

    def test_requires_action(self):
        with pytest.raises(ValidationError):
            AuditEvent(event_type=AuditEventType.AUTH_SUCCESS, result="ok", risk_level=RiskLevel.INFO)


class TestValueObjects:
    def test_signature_result_frozen(self):
        result = SignatureResult(signature="s", timestamp=1)
        with pytest.raises(ValidationError):
            result.signature = "other"

    def test_session_entry_frozen(self):
        entry = SessionWebhookEntry(url="https://x", expires_at=1)
        with pytest.raises(ValidationError):
            entry.expires_at = 2


class TestInboundMessage:
    def test_parses_wire_names(self):
        msg = InboundMessage.model_validate(make_payload_dict(
            atUsers=[{"dingtalkId": "bot-1"}], isInAtList=True,
        ))
        assert msg.msgtype == "text"
        assert msg.text is not None and msg.text.content == "hello"
        assert msg.conversation_id == "cid-direct"
        assert msg.sender_nick == "Alice"
        assert msg.is_in_at_list is True
        assert msg.at_users[0].dingtalk_id == "bot-1"
        assert msg.is_group is False

    def test_defaults_for_empty_body(self):
        msg = InboundMessage.model_validate({})
        assert msg.msgtype == ""
        assert msg.conversation_type == "1"
        assert msg.session_webhook == ""
        assert msg.session_webhook_expired_time == 0
        assert msg.at_users == []

    def test_numeric_conversation_type_coerced(self):
        msg = InboundMessage.model_validate(make_payload_dict(conversationType=2))
        assert msg.is_group is True

    def test_unknown_fields_ignored(self):
        msg = InboundMessage.model_validate(make_payload_dict(extraThing={"a": 1}))
        assert msg.msg_id == "m1"

    def test_conversation_key_falls_back_to_sender(self):
        assert InboundMessage.model_validate(make_payload_dict(conversationId="")).conversation_key == "u1"


class TestCanonicalInboundContext:
    def test_payload_aliases(self):
        payload = make_context(group_subject="Team").to_payload()
        assert payload["RawBody"] == "hello"
        assert payload["To"] == "user:u1"
        assert payload["GroupSubject"] == "Team"
        assert payload["Provider"] == "dingtalk"
        assert payload["OriginatingChannel"] == "dingtalk"
        assert payload["WasMentioned"] is True

    def test_frozen(self):
        ctx = make_context()
        with pytest.raises(ValidationError):
            ctx.body = "changed"

    def test_chat_type_restricted(self):
        with pytest.raises(ValidationError):
            make_context(chat_type="channel")
