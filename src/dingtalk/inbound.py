"""Inbound normalization: robot callback payload -> canonical context.

Stages, stopping at the first one that skips:
1. Classify msgtype and extract text (text / richText / unsupported)
2. Reject empty text
3. Resolve rich-text media
4. Cache the session webhook for the conversation
5. Mention gating for group conversations
6. Build the canonical context
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from src.dingtalk.config import ResolvedAccount, resolve_access_token
from src.dingtalk.media import MediaResolver
from src.dingtalk.models import (
    CHANNEL_ID,
    CanonicalInboundContext,
    InboundMessage,
    InboundTextParseResult,
    NormalizedInbound,
    NormalizeResult,
    ParsedText,
    SavedMedia,
    SkippedInbound,
    SkippedText,
    SkipReason,
)
from src.dingtalk.rich_text import flatten_rich_text
from src.dingtalk.session_cache import SessionWebhookCache
from src.dingtalk.sign import now_millis

logger = logging.getLogger(__name__)


def parse_inbound_text(payload: InboundMessage) -> InboundTextParseResult:
    if payload.msgtype == "text":
        text = (payload.text.content if payload.text else "").strip()
        return ParsedText(text=text, source="text") if text else SkippedText(SkipReason.EMPTY)

    if payload.msgtype == "richText":
        parsed = flatten_rich_text(payload.content.rich_text if payload.content else None)
        text = parsed.text.strip()
        if not text:
            return SkippedText(SkipReason.EMPTY)
        return ParsedText(text=text, source="richText", media_tasks=parsed.media_tasks)

    return SkippedText(SkipReason.UNSUPPORTED)


def collect_mention_ids(payload: InboundMessage) -> list[str]:
    """Distinct, non-blank ``atUsers`` ids in first-seen order."""
    return dedupe_ids(user.dingtalk_id or "" for user in payload.at_users)


def dedupe_ids(ids: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for item in ids:
        item = item.strip()
        if item:
            seen.setdefault(item, None)
    return list(seen)


def is_addressed(payload: InboundMessage) -> bool:
    """Direct chats always address the bot; groups need an @-mention."""
    if not payload.is_group:
        return True
    if payload.is_in_at_list:
        return True
    bot_id = payload.chatbot_user_id
    return bool(bot_id) and any(user.dingtalk_id == bot_id for user in payload.at_users)


def media_fields(saved: Sequence[SavedMedia]) -> dict[str, Any]:
    """Map saved media onto context fields.

    One path uses the scalar fields, several use the plural ones. Types are
    attached to several paths only when there is exactly one per path.
    """
    paths = [item.path for item in saved if item.path.strip()]
    types = [item.content_type for item in saved if item.content_type.strip()]
    fields: dict[str, Any] = {}
    if len(paths) == 1:
        fields["media_path"] = paths[0]
        if types:
            fields["media_type"] = types[0]
    elif len(paths) > 1:
        fields["media_paths"] = paths
        if len(types) == len(paths):
            fields["media_types"] = types
    return fields


class InboundNormalizer:
    """Turns robot callbacks into canonical contexts for one account."""

    def __init__(
        self,
        account: ResolvedAccount,
        cache: SessionWebhookCache,
        media_resolver: MediaResolver | None = None,
        access_token_source: Callable[[], str] = resolve_access_token,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self._account = account
        self._cache = cache
        self._media = media_resolver
        self._access_token_source = access_token_source
        self._clock = clock

    async def normalize(self, payload: InboundMessage) -> NormalizeResult:
        parsed = parse_inbound_text(payload)
        if isinstance(parsed, SkippedText):
            return SkippedInbound(parsed.reason, detail=f"msgtype={payload.msgtype}")

        saved: list[SavedMedia] = []
        if parsed.source == "richText" and parsed.media_tasks and self._media is not None:
            saved = await self._media.resolve(
                parsed.media_tasks, payload.robot_code, self._access_token_source(),
            )

        # Cached even for group messages that fail mention gating below.
        if payload.session_webhook:
            self._cache.put(
                payload.conversation_key,
                payload.session_webhook,
                payload.session_webhook_expired_time,
            )

        mentioned = is_addressed(payload)
        if not mentioned:
            return SkippedInbound(SkipReason.NOT_ADDRESSED, detail="non-mention group message")

        return NormalizedInbound(
            context=self._build_context(payload, parsed.text, saved, mentioned),
            reply_endpoint=payload.session_webhook,
            reply_expires_at=payload.session_webhook_expired_time,
            mention_ids=collect_mention_ids(payload),
        )

    def _build_context(
        self,
        payload: InboundMessage,
        text: str,
        saved: Sequence[SavedMedia],
        mentioned: bool,
    ) -> CanonicalInboundContext:
        is_group = payload.is_group
        to = f"chat:{payload.conversation_id}" if is_group else f"user:{payload.sender_id}"
        now = self._clock()
        return CanonicalInboundContext(
            body=f"{payload.sender_nick}: {text}",
            raw_body=text,
            command_body=text,
            sender=f"{CHANNEL_ID}:{payload.sender_id}",
            to=to,
            account_id=self._account.account_id,
            chat_type="group" if is_group else "direct",
            peer_id=payload.conversation_id if is_group else payload.sender_id,
            group_subject=(payload.conversation_title or payload.conversation_id) if is_group else None,
            sender_name=payload.sender_nick,
            sender_id=payload.sender_id,
            conversation_id=payload.conversation_key,
            message_sid=payload.msg_id,
            timestamp=now,
            created_at=payload.create_at or now,
            was_mentioned=mentioned,
            originating_to=to,
            **media_fields(saved),
        )
