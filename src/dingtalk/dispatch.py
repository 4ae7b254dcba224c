"""Reply dispatch interface and the upstream relay implementation.

The dispatch engine receives a canonical inbound context and produces
replies through the ``deliver`` callback supplied by the webhook handler.
Failures while delivering are reported through ``on_error`` rather than
raised back to the HTTP layer.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx

from src.dingtalk.models import CanonicalInboundContext

DeliverFn = Callable[[str], Awaitable[None]]
ErrorFn = Callable[[BaseException, str], None]


class ReplyDispatcher(Protocol):
    async def dispatch(
        self,
        context: CanonicalInboundContext,
        deliver: DeliverFn,
        on_error: ErrorFn,
    ) -> None: ...


class UpstreamUnavailableError(Exception):
    """The upstream chat endpoint could not be reached or answered with an error."""


class UpstreamReplyDispatcher:
    """Forwards inbound text to an OpenAI-compatible upstream and delivers the answer."""

    def __init__(self, upstream_url: str, upstream_token: str, timeout: float = 30.0) -> None:
        self._upstream_url = upstream_url
        self._upstream_token = upstream_token
        self._timeout = timeout

    async def dispatch(
        self,
        context: CanonicalInboundContext,
        deliver: DeliverFn,
        on_error: ErrorFn,
    ) -> None:
        try:
            reply = await self._complete(context)
        except UpstreamUnavailableError as exc:
            on_error(exc, "final")
            return
        if not reply.strip():
            return
        try:
            await deliver(reply)
        except Exception as exc:  # routed to the error channel, not the HTTP layer
            on_error(exc, "final")

    def build_request(self, context: CanonicalInboundContext) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "source": context.provider,
            "chat_type": context.chat_type,
            "peer_id": context.peer_id,
            "sender_id": context.sender_id,
            "conversation_id": context.conversation_id,
            "message_id": context.message_sid,
        }
        media_paths = self._media_paths(context)
        if media_paths:
            metadata["media_paths"] = media_paths
        return {
            "model": "default",
            "messages": [{"role": "user", "content": context.body}],
            "metadata": metadata,
        }

    @staticmethod
    def _media_paths(context: CanonicalInboundContext) -> list[str]:
        if context.media_paths:
            return list(context.media_paths)
        return [context.media_path] if context.media_path else []

    async def _complete(self, context: CanonicalInboundContext) -> str:
        url = f"{self._upstream_url.rstrip('/')}/v1/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._upstream_token}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    url, json=self.build_request(context), headers=headers, timeout=self._timeout,
                )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            raise UpstreamUnavailableError("Upstream unavailable") from exc

        if resp.status_code != 200:
            raise UpstreamUnavailableError(f"Upstream returned HTTP {resp.status_code}")
        try:
            resp_json = resp.json()
            content = (
                resp_json.get("choices", [{}])[0]
                .get("message", {})
                .get("content", resp.text)
            )
        except (json.JSONDecodeError, IndexError, KeyError, AttributeError):
            content = resp.text
        return content if isinstance(content, str) else str(content)
