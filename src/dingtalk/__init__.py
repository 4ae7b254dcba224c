"""DingTalk robot webhook channel.

This package bridges DingTalk robot callbacks to a generic reply pipeline:
- Signed session webhook replies (HMAC-SHA256)
- Per-conversation session webhook cache with expiry-on-read
- Rich-text flattening and bounded media download
- Mention gating for group conversations
- Ordered, chunked markdown delivery
"""

from src.dingtalk.channel import DingTalkChannel, create_app_from_env
from src.dingtalk.chunking import chunk_text
from src.dingtalk.config import (
    DingTalkConfig,
    ResolvedAccount,
    resolve_access_token,
    resolve_account,
    resolve_webhook_path,
)
from src.dingtalk.dispatch import ReplyDispatcher, UpstreamReplyDispatcher
from src.dingtalk.errors import (
    AuthFailureError,
    DingTalkChannelError,
    InvalidConfigError,
    MediaFetchError,
    MediaTooLargeError,
    SendFailedError,
    WebhookExpiredError,
    WebhookUnknownError,
)
from src.dingtalk.handler import DingTalkWebhookHandler
from src.dingtalk.inbound import InboundNormalizer, is_addressed, parse_inbound_text
from src.dingtalk.media import LocalMediaStore, MediaResolver, sniff_image_mime
from src.dingtalk.models import (
    CanonicalInboundContext,
    InboundMessage,
    MediaFetchTask,
    NormalizedInbound,
    SavedMedia,
    SkippedInbound,
    SkipReason,
)
from src.dingtalk.outbound import OutboundDispatcher
from src.dingtalk.rich_text import flatten_rich_text
from src.dingtalk.session_cache import SessionWebhookCache
from src.dingtalk.sign import sign, signed_url

__all__ = [
    # Exceptions
    "AuthFailureError",
    "DingTalkChannelError",
    "InvalidConfigError",
    "MediaFetchError",
    "MediaTooLargeError",
    "SendFailedError",
    "WebhookExpiredError",
    "WebhookUnknownError",
    # Components
    "DingTalkChannel",
    "DingTalkWebhookHandler",
    "InboundNormalizer",
    "LocalMediaStore",
    "MediaResolver",
    "OutboundDispatcher",
    "ReplyDispatcher",
    "SessionWebhookCache",
    "UpstreamReplyDispatcher",
    # Functions
    "chunk_text",
    "create_app_from_env",
    "flatten_rich_text",
    "is_addressed",
    "parse_inbound_text",
    "resolve_access_token",
    "resolve_account",
    "resolve_webhook_path",
    "sign",
    "signed_url",
    "sniff_image_mime",
    # Models
    "CanonicalInboundContext",
    "DingTalkConfig",
    "InboundMessage",
    "MediaFetchTask",
    "NormalizedInbound",
    "ResolvedAccount",
    "SavedMedia",
    "SkippedInbound",
    "SkipReason",
]
