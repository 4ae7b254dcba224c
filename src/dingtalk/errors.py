"""Exception hierarchy for the DingTalk channel adapter."""

from __future__ import annotations


class DingTalkChannelError(Exception):
    """Base class for all channel adapter errors."""


class InvalidConfigError(DingTalkChannelError):
    """Missing or malformed configuration (e.g. empty secret key)."""


class AuthFailureError(DingTalkChannelError):
    """Inbound request carried a missing or wrong ``token`` header."""


class WebhookUnknownError(DingTalkChannelError):
    """No session webhook has been cached for the conversation."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"No sessionWebhook cache found for conversationId={conversation_id}")


class WebhookExpiredError(DingTalkChannelError):
    """The session webhook for the conversation is past its expiry time."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"sessionWebhook expired for conversationId={conversation_id}")


class SendFailedError(DingTalkChannelError):
    """The session webhook rejected a reply chunk."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"DingTalk send failed: {reason}")


class MediaFetchError(DingTalkChannelError):
    """A rich-text media item could not be downloaded or stored."""


class MediaTooLargeError(MediaFetchError):
    """Downloaded media exceeds the inbound size ceiling."""

    def __init__(self, size: int, max_bytes: int) -> None:
        self.size = size
        self.max_bytes = max_bytes
        super().__init__(f"media size {size} exceeds limit {max_bytes}")
