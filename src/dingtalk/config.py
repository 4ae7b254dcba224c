"""Channel configuration: parsing, account resolution and environment sources."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.dingtalk.errors import InvalidConfigError
from src.dingtalk.models import CHANNEL_ID

DEFAULT_ACCOUNT_ID = "default"
DEFAULT_WEBHOOK_PATH = "/dingtalk-channel/message"
DEFAULT_TEXT_CHUNK_LIMIT = 4000

ACCESS_TOKEN_ENV_VARS = ("DINGTALK_ACCESS_TOKEN", "DINGTALK_APP_ACCESS_TOKEN")

ChunkMode = Literal["length", "newline"]


class DingTalkConfig(BaseModel):
    """``channels.dingtalk`` section of the host configuration."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    enabled: bool = True
    secret_key: str = Field(default="", alias="secretKey")
    webhook_path: str = Field(default="", alias="webhookPath")
    text_chunk_limit: int = Field(default=DEFAULT_TEXT_CHUNK_LIMIT, gt=0, alias="textChunkLimit")
    chunk_mode: ChunkMode = Field(default="length", alias="chunkMode")

    @field_validator("secret_key", "webhook_path", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value


class ResolvedAccount(BaseModel):
    """Immutable per-account settings; re-derived wholesale on config change."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    enabled: bool
    secret_key: str
    webhook_path: str = DEFAULT_WEBHOOK_PATH
    text_chunk_limit: int = DEFAULT_TEXT_CHUNK_LIMIT
    chunk_mode: ChunkMode = "length"

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def describe(self) -> dict[str, Any]:
        return {
            "accountId": self.account_id,
            "enabled": self.enabled,
            "configured": self.is_configured,
        }


def resolve_config(cfg: Mapping[str, Any] | None) -> DingTalkConfig:
    channels = (cfg or {}).get("channels") or {}
    section = channels.get(CHANNEL_ID) if isinstance(channels, Mapping) else None
    if not isinstance(section, Mapping):
        section = {}
    try:
        return DingTalkConfig.model_validate(dict(section))
    except ValidationError as exc:
        raise InvalidConfigError(f"invalid channels.{CHANNEL_ID} config: {exc}") from exc


def resolve_webhook_path(cfg: Mapping[str, Any] | None) -> str:
    raw = resolve_config(cfg).webhook_path
    if not raw:
        return DEFAULT_WEBHOOK_PATH
    return raw if raw.startswith("/") else f"/{raw}"


def resolve_account(
    cfg: Mapping[str, Any] | None, account_id: str | None = None,
) -> ResolvedAccount:
    conf = resolve_config(cfg)
    return ResolvedAccount(
        account_id=(account_id or "").strip() or DEFAULT_ACCOUNT_ID,
        enabled=conf.enabled,
        secret_key=conf.secret_key,
        webhook_path=resolve_webhook_path(cfg),
        text_chunk_limit=conf.text_chunk_limit,
        chunk_mode=conf.chunk_mode,
    )


def require_secret(account: ResolvedAccount) -> None:
    if not account.secret_key:
        raise InvalidConfigError(f"channels.{CHANNEL_ID}.secretKey is required")


def load_config_file(path: str) -> dict[str, Any]:
    """Load a host config JSON file shaped ``{"channels": {"dingtalk": {...}}}``."""
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as exc:
        raise InvalidConfigError(f"cannot read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidConfigError(f"config file {path} must contain a JSON object")
    return data


def config_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Build the host config mapping from ``DINGTALK_*`` environment variables."""
    env = os.environ if environ is None else environ
    section: dict[str, Any] = {"secretKey": env.get("DINGTALK_SECRET_KEY", "")}
    if env.get("DINGTALK_WEBHOOK_PATH"):
        section["webhookPath"] = env["DINGTALK_WEBHOOK_PATH"]
    if env.get("DINGTALK_ENABLED"):
        section["enabled"] = env["DINGTALK_ENABLED"].strip().lower() not in ("0", "false", "no", "off")
    if env.get("DINGTALK_TEXT_CHUNK_LIMIT"):
        section["textChunkLimit"] = env["DINGTALK_TEXT_CHUNK_LIMIT"]
    if env.get("DINGTALK_CHUNK_MODE"):
        section["chunkMode"] = env["DINGTALK_CHUNK_MODE"]
    return {"channels": {CHANNEL_ID: section}}


def resolve_access_token(environ: Mapping[str, str] | None = None) -> str:
    """Return the first non-empty access token from the environment, or ``""``."""
    env = os.environ if environ is None else environ
    for name in ACCESS_TOKEN_ENV_VARS:
        token = (env.get(name) or "").strip()
        if token:
            return token
    return ""
