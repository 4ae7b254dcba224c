"""Rich-text media download: download code -> URL -> bytes -> media store.

Downloads are best-effort. A failing item is logged (and audited) and
dropped; the rest of the batch still runs, one item at a time.
"""

from __future__ import annotations

import inspect
import logging
import mimetypes
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from src.dingtalk.errors import MediaTooLargeError
from src.dingtalk.models import MediaFetchTask, SavedMedia
from src.models import AuditEvent, AuditEventType, RiskLevel

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

DOWNLOAD_URL_ENDPOINT = "https://api.dingtalk.com/v1.0/robot/messageFiles/download"
DEFAULT_INBOUND_MEDIA_MAX_BYTES = 30 * 1024 * 1024
OCTET_STREAM = "application/octet-stream"
UNSCOPED_ROBOT_CODE = "normal"

# Returns a MIME string or None, directly or as an awaitable.
MimeDetector = Callable[[bytes], Any]


@dataclass(frozen=True)
class StoredMedia:
    path: str
    content_type: str | None = None


class MediaStore(Protocol):
    """Host media storage capability. ``save`` may be sync or async."""

    def save(
        self, buffer: bytes, content_type: str, direction: str, max_bytes: int,
    ) -> StoredMedia | None | Awaitable[StoredMedia | None]: ...


class LocalMediaStore:
    """Writes media under ``<root>/<direction>/`` with a random file name."""

    def __init__(self, root: str) -> None:
        self._root = Path(root)

    def save(
        self, buffer: bytes, content_type: str, direction: str, max_bytes: int,
    ) -> StoredMedia:
        if len(buffer) > max_bytes:
            raise MediaTooLargeError(len(buffer), max_bytes)
        target_dir = self._root / direction
        target_dir.mkdir(parents=True, exist_ok=True)
        ext = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ".bin"
        path = target_dir / f"{uuid.uuid4().hex}{ext}"
        path.write_bytes(buffer)
        return StoredMedia(path=str(path), content_type=content_type)


def sniff_image_mime(buffer: bytes) -> str | None:
    """Identify common image formats from their magic bytes."""
    header = buffer[:12]
    if header[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if header[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if header[:4] == b"GIF8":
        return "image/gif"
    if len(header) >= 12 and header[:4] == b"RIFF" and header[8:12] == b"WEBP":
        return "image/webp"
    if header[:2] == b"BM":
        return "image/bmp"
    return None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def detect_content_type(
    buffer: bytes,
    detectors: Sequence[MimeDetector | None],
    fallback: str = "",
    account_id: str = "",
) -> str:
    """Return the first usable MIME type from ``detectors``, else the fallback.

    ``None`` entries stand for absent capabilities and are skipped, as are
    detectors that raise or return a blank value.
    """
    for index, detector in enumerate(detectors):
        if detector is None:
            continue
        try:
            mime = await _maybe_await(detector(buffer))
        except Exception as exc:  # a broken detector must not fail the download
            logger.info("dingtalk[%s] detect mime by detector %d failed: %s", account_id, index, exc)
            continue
        if isinstance(mime, str) and mime.strip():
            return mime.strip()
    return fallback.strip() or OCTET_STREAM


class MediaResolver:
    """Fetches rich-text pictures and hands them to the media store."""

    def __init__(
        self,
        store: MediaStore | None,
        mime_detectors: Sequence[MimeDetector | None] = (sniff_image_mime,),
        account_id: str = "default",
        max_bytes: int = DEFAULT_INBOUND_MEDIA_MAX_BYTES,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._store = store
        self._detectors = tuple(mime_detectors)
        self._account_id = account_id
        self._max_bytes = max_bytes
        self._audit = audit_logger

    async def resolve(
        self,
        tasks: Sequence[MediaFetchTask],
        robot_code: str | None,
        access_token: str,
    ) -> list[SavedMedia]:
        if not tasks:
            return []
        if self._store is None:
            logger.info("dingtalk[%s] media store unavailable, skip media", self._account_id)
            return []

        code = (robot_code or "").strip()
        if not access_token or not code or code == UNSCOPED_ROBOT_CODE:
            return []

        saved: list[SavedMedia] = []
        async with httpx.AsyncClient(verify=True) as client:
            for task in tasks:
                try:
                    item = await self._fetch_one(client, self._store, task, code, access_token)
                except Exception as exc:  # best-effort, logged and dropped
                    self._record_failure(str(exc))
                    continue
                if item is not None:
                    saved.append(item)
        return saved

    async def _fetch_one(
        self,
        client: httpx.AsyncClient,
        store: MediaStore,
        task: MediaFetchTask,
        robot_code: str,
        access_token: str,
    ) -> SavedMedia | None:
        download_url = await self._resolve_download_url(client, task.download_code, robot_code, access_token)
        if not download_url:
            logger.info("dingtalk[%s] empty downloadUrl for richText image", self._account_id)
            return None

        resp = await client.get(download_url)
        resp.raise_for_status()
        buffer = resp.content
        content_type = await detect_content_type(
            buffer,
            self._detectors,
            fallback=resp.headers.get("content-type", ""),
            account_id=self._account_id,
        )

        stored = await _maybe_await(
            store.save(buffer, content_type, "inbound", self._max_bytes),
        )
        if stored is None or not stored.path:
            logger.info("dingtalk[%s] media store returned empty path", self._account_id)
            return None
        return SavedMedia(
            path=stored.path,
            content_type=stored.content_type if isinstance(stored.content_type, str) else content_type,
            placeholder=task.placeholder,
        )

    @staticmethod
    async def _resolve_download_url(
        client: httpx.AsyncClient, download_code: str, robot_code: str, access_token: str,
    ) -> str:
        resp = await client.post(
            DOWNLOAD_URL_ENDPOINT,
            json={"downloadCode": download_code, "robotCode": robot_code},
            headers={
                "Content-Type": "application/json",
                "x-acs-dingtalk-access-token": access_token,
            },
        )
        resp.raise_for_status()
        data = resp.json()
        url = data.get("downloadUrl") if isinstance(data, dict) else None
        return url.strip() if isinstance(url, str) else ""

    def _record_failure(self, reason: str) -> None:
        logger.warning(
            "dingtalk[%s] richText image download/save failed: %s", self._account_id, reason,
        )
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.MEDIA_FETCH_FAILED,
                account_id=self._account_id,
                action="media_fetch",
                result="failure",
                risk_level=RiskLevel.LOW,
                details={"reason": reason},
            ))
