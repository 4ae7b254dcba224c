"""HTTP entry point for DingTalk robot callbacks.

Request flow: method check -> token check -> body parse -> normalize ->
dispatch -> respond. Anything that fails after the token check becomes a
generic 500; details only reach the log and the audit trail.
"""

from __future__ import annotations

import hmac
import json
import logging
from typing import TYPE_CHECKING

from starlette.requests import Request
from starlette.responses import JSONResponse

from src.dingtalk.config import ResolvedAccount
from src.dingtalk.dispatch import ReplyDispatcher
from src.dingtalk.errors import AuthFailureError, WebhookUnknownError
from src.dingtalk.inbound import InboundNormalizer
from src.dingtalk.models import InboundMessage, NormalizedInbound, SkippedInbound
from src.dingtalk.outbound import OutboundDispatcher
from src.models import AuditEvent, AuditEventType, RiskLevel

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


def token_matches(secret_key: str, token: str) -> bool:
    """Accept ``token`` when it is a non-empty prefix of ``secret_key``.

    Prefix (not equality) matching is what the platform integration has
    always accepted; the comparison itself is constant-time.
    """
    if not token or not secret_key:
        return False
    provided = token.encode()
    expected = secret_key.encode()[: len(provided)]
    return hmac.compare_digest(provided, expected)


def parse_payload(raw: bytes) -> InboundMessage:
    """Decode the callback body; an empty body is treated as ``{}``."""
    text = raw.decode("utf-8").strip()
    data = json.loads(text) if text else {}
    return InboundMessage.model_validate(data)


def _respond(status_code: int, errcode: int, errmsg: str) -> JSONResponse:
    return JSONResponse(
        {"errcode": errcode, "errmsg": errmsg},
        status_code=status_code,
        media_type="application/json; charset=utf-8",
    )


class DingTalkWebhookHandler:
    """Starlette endpoint bound to one resolved account."""

    def __init__(
        self,
        account: ResolvedAccount,
        normalizer: InboundNormalizer,
        outbound: OutboundDispatcher,
        dispatcher: ReplyDispatcher,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._account = account
        self._normalizer = normalizer
        self._outbound = outbound
        self._dispatcher = dispatcher
        self._audit = audit_logger

    @property
    def account(self) -> ResolvedAccount:
        return self._account

    def authenticate(self, token: str) -> None:
        if not token_matches(self._account.secret_key, token):
            raise AuthFailureError("invalid token")

    async def __call__(self, request: Request) -> JSONResponse:
        if request.method != "POST":
            return _respond(405, 1, "Method Not Allowed")

        source_ip = request.client.host if request.client else None
        try:
            self.authenticate(request.headers.get("token", ""))
        except AuthFailureError:
            logger.info("dingtalk[%s] rejected request with invalid token", self._account.account_id)
            self._log_event(
                AuditEventType.AUTH_FAILURE, "failure", RiskLevel.MEDIUM, source_ip,
                {"reason": "invalid_token"},
            )
            return _respond(401, 1, "[dingtalk] invalid token")
        self._log_event(AuditEventType.AUTH_SUCCESS, "success", RiskLevel.INFO, source_ip)

        try:
            payload = parse_payload(await request.body())
            result = await self._normalizer.normalize(payload)
            if isinstance(result, SkippedInbound):
                logger.info(
                    "dingtalk[%s] ignore %s message (%s)",
                    self._account.account_id, result.reason.value, result.detail,
                )
                self._log_event(
                    AuditEventType.INBOUND_SKIPPED, "skipped", RiskLevel.INFO, source_ip,
                    {"reason": result.reason.value},
                )
            else:
                self._log_event(
                    AuditEventType.INBOUND_ACCEPTED, "success", RiskLevel.INFO, source_ip,
                    {"chat_type": result.context.chat_type, "message_id": result.context.message_sid},
                )
                await self._dispatch(result)
        except Exception as exc:  # details go to the log, never to the caller
            logger.error("dingtalk[%s] inbound error: %s", self._account.account_id, exc)
            self._log_event(
                AuditEventType.INBOUND_ERROR, "failure", RiskLevel.MEDIUM, source_ip,
                {"error": type(exc).__name__},
            )
            return _respond(500, 1, "internal error")

        return _respond(200, 0, "ok")

    async def _dispatch(self, inbound: NormalizedInbound) -> None:
        context = inbound.context

        async def deliver(text: str) -> None:
            text = (text or "").strip()
            if not text:
                return
            if not inbound.reply_endpoint:
                raise WebhookUnknownError(context.conversation_id)
            await self._outbound.send(
                text,
                inbound.reply_endpoint,
                mention_ids=inbound.mention_ids or None,
                expires_at=inbound.reply_expires_at or None,
                conversation_id=context.conversation_id,
            )

        def on_error(exc: BaseException, kind: str) -> None:
            logger.error("dingtalk[%s] %s reply failed: %s", self._account.account_id, kind, exc)

        await self._dispatcher.dispatch(context, deliver, on_error)
        logger.info(
            "dingtalk[%s] dispatched message conversation=%s",
            self._account.account_id, context.conversation_id,
        )

    def _log_event(
        self,
        event_type: AuditEventType,
        result: str,
        risk_level: RiskLevel,
        source_ip: str | None,
        details: dict[str, object] | None = None,
    ) -> None:
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=event_type,
                account_id=self._account.account_id,
                source_ip=source_ip,
                action="dingtalk_webhook",
                result=result,
                risk_level=risk_level,
                details=details,
            ))
