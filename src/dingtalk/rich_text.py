"""Flatten DingTalk rich-text content into plain text plus media fetch tasks."""

from __future__ import annotations

from collections.abc import Iterable

from src.dingtalk.models import MediaFetchTask, RichTextNode, RichTextParseResult

MAX_RICHTEXT_IMAGES = 10
RICHTEXT_IMAGE_PLACEHOLDER = "<media:image>"
PICTURE_FALLBACK_MARKER = "[图片]"


def _download_code(node: RichTextNode) -> str:
    if isinstance(node.download_code, str):
        return node.download_code
    if isinstance(node.picture_download_code, str):
        return node.picture_download_code
    return ""


def flatten_rich_text(
    nodes: Iterable[RichTextNode] | None,
    max_images: int = MAX_RICHTEXT_IMAGES,
) -> RichTextParseResult:
    """Concatenate node text in order, turning pictures into placeholders.

    A picture with a download code, while fewer than ``max_images`` tasks
    exist, becomes the placeholder token and a fetch task. Any other
    picture becomes the literal fallback marker. Nodes that are neither
    text nor pictures are skipped.
    """
    parts: list[str] = []
    tasks: list[MediaFetchTask] = []

    for node in nodes or ():
        if isinstance(node.text, str):
            parts.append(node.text)
            continue
        if node.type != "picture":
            continue

        code = _download_code(node)
        if not code or len(tasks) >= max_images:
            parts.append(PICTURE_FALLBACK_MARKER)
            continue

        parts.append(RICHTEXT_IMAGE_PLACEHOLDER)
        tasks.append(MediaFetchTask(download_code=code, placeholder=RICHTEXT_IMAGE_PLACEHOLDER))

    return RichTextParseResult(text="".join(parts), media_tasks=tasks)
