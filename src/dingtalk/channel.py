"""DingTalk channel: account lifecycle, proactive sends and the ASGI app."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from src.audit.logger import AuditLogger
from src.dingtalk.chunking import TextChunker, chunk_text
from src.dingtalk.config import (
    ResolvedAccount,
    config_from_env,
    require_secret,
    resolve_access_token,
    resolve_account,
)
from src.dingtalk.dispatch import ReplyDispatcher, UpstreamReplyDispatcher
from src.dingtalk.handler import DingTalkWebhookHandler
from src.dingtalk.inbound import InboundNormalizer
from src.dingtalk.media import LocalMediaStore, MediaResolver, MediaStore, MimeDetector, sniff_image_mime
from src.dingtalk.models import CHANNEL_ID
from src.dingtalk.outbound import OutboundDispatcher
from src.dingtalk.routes import WebhookRouteRegistry
from src.dingtalk.session_cache import SessionWebhookCache
from src.dingtalk.sign import now_millis
from src.models import AuditEvent, AuditEventType, RiskLevel

logger = logging.getLogger(__name__)

CHANNEL_META: dict[str, Any] = {
    "id": CHANNEL_ID,
    "label": "DingTalk",
    "selectionLabel": "DingTalk (钉钉)",
    "docsPath": "/channels/dingtalk",
    "blurb": "钉钉机器人 Webhook 模式，接收并回复群聊与单聊消息。",
    "aliases": ["dd", "ding"],
}

CHANNEL_CAPABILITIES: dict[str, Any] = {
    "chatTypes": ["direct", "group"],
    "media": True,
    "reactions": False,
    "threads": False,
    "polls": False,
    "blockStreaming": True,
}

_TARGET_PREFIXES = ("chat:", "user:")


class DingTalkChannel:
    """Owns the session webhook cache and webhook routes for its accounts.

    Two instances never share state, so tests (or several gateways in one
    process) stay isolated.
    """

    def __init__(
        self,
        dispatcher: ReplyDispatcher,
        media_store: MediaStore | None = None,
        mime_detectors: Sequence[MimeDetector | None] = (sniff_image_mime,),
        audit_logger: AuditLogger | None = None,
        chunker: TextChunker = chunk_text,
        access_token_source: Callable[[], str] = resolve_access_token,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self.cache = SessionWebhookCache()
        self.routes = WebhookRouteRegistry()
        self._dispatcher = dispatcher
        self._media_store = media_store
        self._mime_detectors = tuple(mime_detectors)
        self._audit = audit_logger
        self._chunker = chunker
        self._access_token_source = access_token_source
        self._clock = clock
        self._unregister_by_account: dict[str, Callable[[], None]] = {}

    @property
    def started_accounts(self) -> frozenset[str]:
        return frozenset(self._unregister_by_account)

    def outbound_for(self, account: ResolvedAccount) -> OutboundDispatcher:
        return OutboundDispatcher(
            account, self.cache, chunker=self._chunker, audit_logger=self._audit, clock=self._clock,
        )

    def build_handler(self, account: ResolvedAccount) -> DingTalkWebhookHandler:
        media = MediaResolver(
            self._media_store,
            mime_detectors=self._mime_detectors,
            account_id=account.account_id,
            audit_logger=self._audit,
        )
        normalizer = InboundNormalizer(
            account,
            self.cache,
            media_resolver=media,
            access_token_source=self._access_token_source,
            clock=self._clock,
        )
        return DingTalkWebhookHandler(
            account,
            normalizer,
            self.outbound_for(account),
            self._dispatcher,
            audit_logger=self._audit,
        )

    def start_account(
        self, cfg: Mapping[str, Any] | None, account_id: str | None = None,
    ) -> ResolvedAccount | None:
        """Register the webhook route for an account; returns None if disabled.

        Raises InvalidConfigError when the secret key is missing.
        """
        account = resolve_account(cfg, account_id)
        require_secret(account)
        return account if self._activate(account) else None

    def _activate(self, account: ResolvedAccount) -> bool:
        if not account.enabled:
            logger.info("dingtalk[%s] account disabled, not started", account.account_id)
            return False

        self._unregister(account.account_id)
        self._unregister_by_account[account.account_id] = self.routes.register(
            account.webhook_path, self.build_handler(account), account.account_id,
        )
        logger.info(
            "dingtalk[%s] webhook route registered: %s", account.account_id, account.webhook_path,
        )
        self._audit_lifecycle(AuditEventType.ACCOUNT_STARTED, account.account_id, account.webhook_path)
        return True

    def stop_account(self, account_id: str) -> None:
        self._unregister(account_id)
        logger.info("dingtalk[%s] stopped", account_id)
        self._audit_lifecycle(AuditEventType.ACCOUNT_STOPPED, account_id)

    def stop_all(self) -> None:
        for account_id in list(self._unregister_by_account):
            self.stop_account(account_id)

    def reload(self, cfg: Mapping[str, Any] | None) -> list[ResolvedAccount]:
        """Re-derive every started account from ``cfg`` and re-register its route.

        Every account is resolved and validated before any route changes, so
        an InvalidConfigError leaves the running routes untouched.
        """
        accounts = [resolve_account(cfg, account_id) for account_id in self._unregister_by_account]
        for account in accounts:
            require_secret(account)

        restarted: list[ResolvedAccount] = []
        for account in accounts:
            self.stop_account(account.account_id)
            if self._activate(account):
                restarted.append(account)
        return restarted

    async def send_text(
        self,
        cfg: Mapping[str, Any] | None,
        to: str,
        text: str,
        account_id: str | None = None,
    ) -> dict[str, str]:
        """Send ``text`` to a conversation through its cached session webhook."""
        account = resolve_account(cfg, account_id)
        conversation_id = to
        for prefix in _TARGET_PREFIXES:
            if conversation_id.startswith(prefix):
                conversation_id = conversation_id[len(prefix):]
                break
        return await self.outbound_for(account).send_text(conversation_id, text)

    def create_app(self) -> FastAPI:
        """ASGI app serving the registered webhook paths."""
        app = FastAPI(docs_url=None, redoc_url=None)

        @app.get("/health")
        async def health() -> dict[str, Any]:
            return {"status": "ok", "accounts": sorted(self.started_accounts)}

        @app.api_route(
            "/{path:path}",
            methods=["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"],
        )
        async def webhook(request: Request, path: str) -> Response:
            handler = self.routes.resolve(f"/{path}")
            if handler is None:
                return JSONResponse({"errcode": 1, "errmsg": "Not Found"}, status_code=404)
            return await handler(request)

        return app

    def _unregister(self, account_id: str) -> None:
        unregister = self._unregister_by_account.pop(account_id, None)
        if unregister:
            unregister()

    def _audit_lifecycle(
        self, event_type: AuditEventType, account_id: str, webhook_path: str | None = None,
    ) -> None:
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=event_type,
                account_id=account_id,
                action="account_lifecycle",
                result="success",
                risk_level=RiskLevel.INFO,
                details={"webhook_path": webhook_path} if webhook_path else None,
            ))


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    upstream_url = os.environ["UPSTREAM_URL"]
    upstream_token = os.environ.get("UPSTREAM_TOKEN", "")
    audit_log = os.environ.get("AUDIT_LOG_PATH")
    media_dir = os.environ.get("MEDIA_DIR", "data/media")

    audit_logger = AuditLogger.from_env(audit_log) if audit_log else None
    channel = DingTalkChannel(
        dispatcher=UpstreamReplyDispatcher(upstream_url, upstream_token),
        media_store=LocalMediaStore(media_dir),
        audit_logger=audit_logger,
    )
    channel.start_account(config_from_env(), os.environ.get("DINGTALK_ACCOUNT_ID"))
    return channel.create_app()
