"""Tests for webhook handler helpers."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from src.dingtalk.errors import AuthFailureError
from src.dingtalk.handler import DingTalkWebhookHandler, parse_payload, token_matches
from tests.conftest import SECRET, RecordingDispatcher, make_account, make_payload_dict


@pytest.mark.parametrize(("token", "expected"), [
    (SECRET, True),
    (SECRET[:3], True),
    ("S", True),
    ("", False),
    ("x" + SECRET, False),
    (SECRET + "x", False),
    ("SECwrong", False),
])
def test_token_matches(token: str, expected: bool) -> None:
    assert token_matches(SECRET, token) is expected


def test_token_never_matches_empty_secret() -> None:
    assert token_matches("", "anything") is False


def test_parse_payload_empty_body() -> None:
    assert parse_payload(b"   ").msgtype == ""


def test_parse_payload() -> None:
    msg = parse_payload(json.dumps(make_payload_dict()).encode())
    assert msg.sender_id == "u1"


def test_parse_payload_malformed() -> None:
    with pytest.raises(json.JSONDecodeError):
        parse_payload(b"{oops")


def test_parse_payload_wrong_shape() -> None:
    with pytest.raises(ValidationError):
        parse_payload(b'{"isInAtList": "maybe"}')


def test_authenticate_raises() -> None:
    handler = DingTalkWebhookHandler(make_account(), None, None, RecordingDispatcher())  # type: ignore[arg-type]
    handler.authenticate(SECRET)
    with pytest.raises(AuthFailureError):
        handler.authenticate("bad")


def test_parse_payload_null_mentions() -> None:
    msg = parse_payload(json.dumps(make_payload_dict(atUsers=None)).encode())
    assert msg.at_users == []
    assert msg.msgtype == "text"


def test_parse_payload_null_rich_text() -> None:
    msg = parse_payload(json.dumps(
        make_payload_dict(msgtype="richText", text=None, content={"richText": None}),
    ).encode())
    assert msg.content is not None
    assert msg.content.rich_text == []


def test_parse_payload_null_flags_use_defaults() -> None:
    msg = parse_payload(json.dumps(make_payload_dict(
        isInAtList=None, isAdmin=None, sessionWebhookExpiredTime=None, msgId=None,
    )).encode())
    assert msg.is_in_at_list is False
    assert msg.is_admin is False
    assert msg.session_webhook_expired_time == 0
    assert msg.msg_id == ""


def test_parse_payload_skips_non_object_entries() -> None:
    msg = parse_payload(json.dumps(make_payload_dict(
        atUsers=[None, "x", {"dingtalkId": "bot-1"}],
        content={"richText": [None, {"text": "a"}]},
    )).encode())
    assert [u.dingtalk_id for u in msg.at_users] == ["bot-1"]
    assert msg.content is not None
    assert [n.text for n in msg.content.rich_text] == ["a"]
