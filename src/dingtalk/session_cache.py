"""Per-conversation cache of DingTalk session webhooks.

Entries are overwritten by every inbound event for the conversation and
checked for expiry only when read for sending; there is no background
sweep, so stale entries linger until the next lookup.

The cache is not locked. It is shared by coroutines on a single event
loop, where reads and writes never interleave mid-operation.
"""

from __future__ import annotations

from src.dingtalk.errors import WebhookExpiredError, WebhookUnknownError
from src.dingtalk.sign import now_millis
from src.models import SessionWebhookEntry


class SessionWebhookCache:
    """In-memory mapping of conversation id to reply endpoint and expiry."""

    def __init__(self) -> None:
        self._entries: dict[str, SessionWebhookEntry] = {}

    def put(self, conversation_id: str, url: str, expires_at: int) -> None:
        """Record the latest endpoint for a conversation (last writer wins)."""
        self._entries[conversation_id] = SessionWebhookEntry(url=url, expires_at=expires_at)

    def get(self, conversation_id: str) -> SessionWebhookEntry | None:
        return self._entries.get(conversation_id)

    def take_valid(self, conversation_id: str, now: int | None = None) -> str:
        """Return the cached URL if it has not expired.

        Raises WebhookUnknownError when nothing is cached. An entry whose
        ``expires_at <= now`` is evicted and WebhookExpiredError raised.
        Valid entries stay cached and may be reused until they expire.
        """
        entry = self._entries.get(conversation_id)
        if entry is None:
            raise WebhookUnknownError(conversation_id)

        current = now_millis() if now is None else now
        if entry.expires_at <= current:
            del self._entries[conversation_id]
            raise WebhookExpiredError(conversation_id)
        return entry.url

    def evict(self, conversation_id: str) -> bool:
        return self._entries.pop(conversation_id, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
