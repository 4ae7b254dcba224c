"""Split outbound replies into pieces that fit one robot message."""

from __future__ import annotations

import re
from collections.abc import Callable

from src.dingtalk.config import DEFAULT_TEXT_CHUNK_LIMIT

TextChunker = Callable[[str, int, str], list[str]]

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def _split_by_length(text: str, limit: int) -> list[str]:
    chunks: list[str] = []
    remaining = text.strip()
    while len(remaining) > limit:
        window = remaining[:limit]
        cut = window.rfind("\n")
        if cut <= 0:
            cut = max(window.rfind(" "), window.rfind("\t"))
        if cut <= 0:
            cut = limit
        piece = remaining[:cut].strip()
        if piece:
            chunks.append(piece)
        remaining = remaining[cut:].strip()
    if remaining:
        chunks.append(remaining)
    return chunks


def _split_by_paragraph(text: str, limit: int) -> list[str]:
    chunks: list[str] = []
    current = ""
    for paragraph in _PARAGRAPH_BREAK.split(text.strip()):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        if len(paragraph) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_split_by_length(paragraph, limit))
            continue
        candidate = f"{current}\n\n{paragraph}" if current else paragraph
        if len(candidate) <= limit:
            current = candidate
        else:
            chunks.append(current)
            current = paragraph
    if current:
        chunks.append(current)
    return chunks


def chunk_text(text: str, limit: int = DEFAULT_TEXT_CHUNK_LIMIT, mode: str = "length") -> list[str]:
    """Split ``text`` into ordered chunks of at most ``limit`` characters.

    ``length`` mode breaks at the last newline, then the last whitespace,
    inside each window, hard-cutting only when neither exists. ``newline``
    mode keeps blank-line separated paragraphs together where they fit.
    """
    if not text or not text.strip():
        return []
    if limit <= 0 or len(text.strip()) <= limit:
        return [text.strip()]
    if mode == "newline":
        return _split_by_paragraph(text, limit)
    return _split_by_length(text, limit)
