"""Data models for the DingTalk inbound/outbound pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CHANNEL_ID = "dingtalk"
GROUP_CONVERSATION_TYPE = "2"


# --- Inbound wire payload ---


def _objects(value: Any) -> Any:
    """Keep only the object entries of a node list; anything but a list is empty."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict | BaseModel)]


class _Payload(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        """Treat explicit JSON nulls as absent so field defaults apply."""
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class RichTextNode(_Payload):
    text: str | None = None
    type: str | None = None
    download_code: str | None = Field(default=None, alias="downloadCode")
    picture_download_code: str | None = Field(default=None, alias="pictureDownloadCode")
    file_name: str | None = Field(default=None, alias="fileName")
    content_type: str | None = Field(default=None, alias="contentType")
    width: int | None = None
    height: int | None = None


class TextContent(_Payload):
    content: str = ""


class RichTextContent(_Payload):
    rich_text: list[RichTextNode] = Field(default_factory=list, alias="richText")

    @field_validator("rich_text", mode="before")
    @classmethod
    def _nodes(cls, value: Any) -> Any:
        return _objects(value)


class AtUser(_Payload):
    dingtalk_id: str | None = Field(default=None, alias="dingtalkId")


class InboundMessage(_Payload):
    """Robot callback body pushed by DingTalk."""

    msgtype: str = ""
    text: TextContent | None = None
    content: RichTextContent | None = None
    msg_id: str = Field(default="", alias="msgId")
    conversation_type: str = Field(default="1", alias="conversationType")
    conversation_id: str = Field(default="", alias="conversationId")
    conversation_title: str | None = Field(default=None, alias="conversationTitle")
    sender_id: str = Field(default="", alias="senderId")
    sender_nick: str = Field(default="", alias="senderNick")
    chatbot_user_id: str = Field(default="", alias="chatbotUserId")
    robot_code: str | None = Field(default=None, alias="robotCode")
    create_at: int | None = Field(default=None, alias="createAt")
    is_admin: bool = Field(default=False, alias="isAdmin")
    is_in_at_list: bool = Field(default=False, alias="isInAtList")
    at_users: list[AtUser] = Field(default_factory=list, alias="atUsers")
    session_webhook: str = Field(default="", alias="sessionWebhook")
    session_webhook_expired_time: int = Field(default=0, alias="sessionWebhookExpiredTime")

    @field_validator("at_users", mode="before")
    @classmethod
    def _mentions(cls, value: Any) -> Any:
        return _objects(value)

    @property
    def is_group(self) -> bool:
        return self.conversation_type == GROUP_CONVERSATION_TYPE

    @property
    def conversation_key(self) -> str:
        """Cache key for the reply endpoint; 1:1 callbacks may omit the conversation id."""
        return self.conversation_id or self.sender_id


# --- Rich text / media ---


@dataclass(frozen=True)
class MediaFetchTask:
    download_code: str
    placeholder: str


@dataclass
class RichTextParseResult:
    text: str = ""
    media_tasks: list[MediaFetchTask] = field(default_factory=list)


@dataclass(frozen=True)
class SavedMedia:
    path: str
    content_type: str
    placeholder: str


# --- Inbound text classification ---


class SkipReason(str, Enum):
    UNSUPPORTED = "unsupported"
    EMPTY = "empty"
    NOT_ADDRESSED = "not_addressed"


@dataclass(frozen=True)
class ParsedText:
    text: str
    source: Literal["text", "richText"]
    media_tasks: list[MediaFetchTask] = field(default_factory=list)


@dataclass(frozen=True)
class SkippedText:
    reason: SkipReason


InboundTextParseResult = ParsedText | SkippedText


# --- Canonical context handed to the dispatch engine ---


class CanonicalInboundContext(BaseModel):
    """Normalized inbound message; ``to_payload`` yields the engine's field names."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    body: str = Field(alias="Body")
    raw_body: str = Field(alias="RawBody")
    command_body: str = Field(alias="CommandBody")
    sender: str = Field(alias="From")
    to: str = Field(alias="To")
    account_id: str = Field(alias="AccountId")
    chat_type: Literal["direct", "group"] = Field(alias="ChatType")
    peer_id: str = Field(alias="PeerId")
    group_subject: str | None = Field(default=None, alias="GroupSubject")
    sender_name: str = Field(alias="SenderName")
    sender_id: str = Field(alias="SenderId")
    conversation_id: str = Field(alias="ConversationId")
    provider: str = Field(default=CHANNEL_ID, alias="Provider")
    surface: str = Field(default=CHANNEL_ID, alias="Surface")
    message_sid: str = Field(alias="MessageSid")
    timestamp: int = Field(alias="Timestamp")
    created_at: int = Field(alias="CreatedAt")
    was_mentioned: bool = Field(alias="WasMentioned")
    command_authorized: bool = Field(default=True, alias="CommandAuthorized")
    originating_channel: str = Field(default=CHANNEL_ID, alias="OriginatingChannel")
    originating_to: str = Field(alias="OriginatingTo")
    media_path: str | None = Field(default=None, alias="MediaPath")
    media_type: str | None = Field(default=None, alias="MediaType")
    media_paths: list[str] | None = Field(default=None, alias="MediaPaths")
    media_types: list[str] | None = Field(default=None, alias="MediaTypes")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class NormalizedInbound:
    """An accepted, addressed message plus what is needed to reply to it."""

    context: CanonicalInboundContext
    reply_endpoint: str
    reply_expires_at: int
    mention_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SkippedInbound:
    reason: SkipReason
    detail: str = ""


NormalizeResult = NormalizedInbound | SkippedInbound
