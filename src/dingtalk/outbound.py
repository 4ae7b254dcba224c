"""Outbound delivery through DingTalk session webhooks.

Replies are chunked and sent strictly in order, one signed POST per chunk.
The first failing chunk stops the loop; chunks already delivered stay
delivered. There is no retry.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

import httpx

from src.dingtalk.chunking import TextChunker, chunk_text
from src.dingtalk.config import ResolvedAccount
from src.dingtalk.errors import SendFailedError, WebhookExpiredError
from src.dingtalk.inbound import dedupe_ids
from src.dingtalk.models import CHANNEL_ID
from src.dingtalk.session_cache import SessionWebhookCache
from src.dingtalk.sign import now_millis, sign, signed_url
from src.models import AuditEvent, AuditEventType, RiskLevel

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

DEFAULT_OUTBOUND_TITLE = "[新的消息]"
OUTBOUND_TITLE_PREVIEW_LENGTH = 15

_MARKDOWN_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"```[\s\S]*?```"), " "),
    (re.compile(r"`([^`]+)`"), r"\1"),
    (re.compile(r"!\[([^\]]*)\]\([^)]+\)"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"<https?://[^>]+>"), " "),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"^\s{0,3}>\s?", re.MULTILINE), ""),
    (re.compile(r"^\s*([-*+]|[0-9]+\.)\s+", re.MULTILINE), ""),
    (re.compile(r"(\*\*|__|\*|_|~~)"), ""),
    (re.compile(r"</?[^>]+>"), " "),
    (re.compile(r"\r?\n+"), " "),
    (re.compile(r"\s+"), " "),
]


def strip_markdown(text: str) -> str:
    """Reduce markdown/HTML to a single line of plain text."""
    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


def build_outbound_title(text: str) -> str:
    plain = strip_markdown(text)
    if not plain:
        return DEFAULT_OUTBOUND_TITLE
    return plain[:OUTBOUND_TITLE_PREVIEW_LENGTH]


def build_markdown_payload(text: str, mention_ids: Sequence[str] | None = None) -> dict[str, Any]:
    return {
        "msgtype": "markdown",
        "markdown": {"title": build_outbound_title(text), "text": text},
        "at": {
            "atMobiles": [],
            "atUserIds": dedupe_ids(mention_ids or ()),
            "isAtAll": False,
        },
    }


class OutboundDispatcher:
    """Sends markdown replies for one account."""

    def __init__(
        self,
        account: ResolvedAccount,
        cache: SessionWebhookCache,
        chunker: TextChunker = chunk_text,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self._account = account
        self._cache = cache
        self._chunker = chunker
        self._audit = audit_logger
        self._clock = clock

    async def send(
        self,
        reply_text: str,
        endpoint: str,
        mention_ids: Sequence[str] | None = None,
        expires_at: int | None = None,
        conversation_id: str = "",
    ) -> int:
        """Chunk ``reply_text`` and post each chunk to ``endpoint`` in order.

        Returns the number of chunks sent. Raises WebhookExpiredError when
        ``expires_at`` has already passed and SendFailedError on the first
        chunk the platform rejects.
        """
        if expires_at is not None and expires_at <= self._clock():
            raise WebhookExpiredError(conversation_id)

        chunks = self._chunker(
            reply_text, self._account.text_chunk_limit, self._account.chunk_mode,
        )
        sent = 0
        async with httpx.AsyncClient(verify=True) as client:
            for chunk in chunks:
                try:
                    await self._post_chunk(client, endpoint, chunk, mention_ids)
                except SendFailedError as exc:
                    self._audit_send("failure", sent, len(chunks), exc.reason)
                    raise
                sent += 1
        logger.info("dingtalk[%s] sent %d reply chunk(s)", self._account.account_id, sent)
        self._audit_send("success", sent, len(chunks))
        return sent

    async def send_text(self, conversation_id: str, text: str) -> dict[str, str]:
        """Proactive send through the cached endpoint of ``conversation_id``."""
        url = self._cache.take_valid(conversation_id, self._clock())
        await self.send(text, url, conversation_id=conversation_id)
        return {
            "channel": CHANNEL_ID,
            "to": conversation_id,
            "messageId": f"{CHANNEL_ID}-{self._clock()}",
        }

    async def _post_chunk(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        text: str,
        mention_ids: Sequence[str] | None,
    ) -> None:
        url = signed_url(endpoint, sign(self._account.secret_key, self._clock()))
        try:
            resp = await client.post(
                url,
                json=build_markdown_payload(text, mention_ids),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise SendFailedError(f"{type(exc).__name__}: {exc}") from exc

        if resp.status_code >= 400:
            raise SendFailedError(f"HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise SendFailedError("invalid JSON response") from exc
        if not isinstance(data, dict) or data.get("errcode") != 0:
            errmsg = data.get("errmsg") if isinstance(data, dict) else None
            raise SendFailedError(str(errmsg or "unknown error"))

    def _audit_send(self, result: str, sent: int, total: int, reason: str | None = None) -> None:
        if not self._audit:
            return
        details: dict[str, object] = {"chunks_sent": sent, "chunks_total": total}
        if reason:
            details["reason"] = reason
        self._audit.log(AuditEvent(
            event_type=(
                AuditEventType.OUTBOUND_SENT if result == "success" else AuditEventType.OUTBOUND_FAILED
            ),
            account_id=self._account.account_id,
            action="send_markdown",
            result=result,
            risk_level=RiskLevel.INFO if result == "success" else RiskLevel.MEDIUM,
            details=details,
        ))
