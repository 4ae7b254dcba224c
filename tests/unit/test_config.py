"""Tests for channel configuration and account resolution."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.dingtalk.config import (
    DEFAULT_ACCOUNT_ID,
    DEFAULT_TEXT_CHUNK_LIMIT,
    DEFAULT_WEBHOOK_PATH,
    config_from_env,
    load_config_file,
    require_secret,
    resolve_access_token,
    resolve_account,
    resolve_config,
    resolve_webhook_path,
)
from src.dingtalk.errors import InvalidConfigError
from tests.conftest import SECRET, make_account


def _cfg(**section: object) -> dict:
    return {"channels": {"dingtalk": section}}


class TestWebhookPath:
    def test_default_when_missing(self) -> None:
        assert resolve_webhook_path(None) == DEFAULT_WEBHOOK_PATH
        assert resolve_webhook_path({}) == DEFAULT_WEBHOOK_PATH
        assert resolve_webhook_path(_cfg(webhookPath="   ")) == DEFAULT_WEBHOOK_PATH

    def test_leading_slash_added(self) -> None:
        assert resolve_webhook_path(_cfg(webhookPath="bot/in")) == "/bot/in"

    def test_trimmed_and_kept(self) -> None:
        assert resolve_webhook_path(_cfg(webhookPath="  /hook ")) == "/hook"


class TestResolveAccount:
    def test_defaults(self) -> None:
        account = resolve_account(_cfg(secretKey=f"  {SECRET} "))
        assert account.account_id == DEFAULT_ACCOUNT_ID
        assert account.secret_key == SECRET
        assert account.enabled is True
        assert account.text_chunk_limit == DEFAULT_TEXT_CHUNK_LIMIT
        assert account.chunk_mode == "length"

    def test_explicit_account_id(self) -> None:
        assert resolve_account(_cfg(secretKey=SECRET), " team ").account_id == "team"

    def test_disabled(self) -> None:
        assert resolve_account(_cfg(secretKey=SECRET, enabled=False)).enabled is False

    def test_describe(self) -> None:
        assert resolve_account(_cfg()).describe() == {
            "accountId": "default", "enabled": True, "configured": False,
        }
        assert resolve_account(_cfg(secretKey=SECRET)).describe()["configured"] is True

    def test_invalid_chunk_mode(self) -> None:
        with pytest.raises(InvalidConfigError):
            resolve_config(_cfg(chunkMode="words"))

    def test_invalid_chunk_limit(self) -> None:
        with pytest.raises(InvalidConfigError):
            resolve_config(_cfg(textChunkLimit=0))

    def test_require_secret(self) -> None:
        require_secret(make_account())
        with pytest.raises(InvalidConfigError, match="secretKey is required"):
            require_secret(make_account(secret_key=""))


class TestEnvironment:
    def test_config_from_env(self) -> None:
        cfg = config_from_env({
            "DINGTALK_SECRET_KEY": SECRET,
            "DINGTALK_WEBHOOK_PATH": "in",
            "DINGTALK_ENABLED": "false",
            "DINGTALK_TEXT_CHUNK_LIMIT": "500",
            "DINGTALK_CHUNK_MODE": "newline",
        })
        account = resolve_account(cfg)
        assert account.secret_key == SECRET
        assert account.webhook_path == "/in"
        assert account.enabled is False
        assert account.text_chunk_limit == 500
        assert account.chunk_mode == "newline"

    def test_config_from_empty_env(self) -> None:
        account = resolve_account(config_from_env({}))
        assert account.is_configured is False
        assert account.webhook_path == DEFAULT_WEBHOOK_PATH

    def test_access_token_precedence(self) -> None:
        env = {"DINGTALK_ACCESS_TOKEN": "primary", "DINGTALK_APP_ACCESS_TOKEN": "app"}
        assert resolve_access_token(env) == "primary"

    def test_access_token_falls_through_blank(self) -> None:
        env = {"DINGTALK_ACCESS_TOKEN": "  ", "DINGTALK_APP_ACCESS_TOKEN": " app "}
        assert resolve_access_token(env) == "app"

    def test_access_token_absent(self) -> None:
        assert resolve_access_token({}) == ""


class TestConfigFile:
    def test_load(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps(_cfg(secretKey=SECRET)))
        assert resolve_account(load_config_file(str(path))).secret_key == SECRET

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidConfigError):
            load_config_file(str(tmp_path / "nope.json"))

    def test_non_object(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg.json"
        path.write_text("[1, 2]")
        with pytest.raises(InvalidConfigError):
            load_config_file(str(path))
