"""Plain-text body extraction from a provider MIME tree."""

from __future__ import annotations

import base64
import binascii
import re

from bs4 import BeautifulSoup

from .models import MessagePart

NO_TEXT_PLACEHOLDER = "No text available for extraction"

_WEEKDAYS = "Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday|Mon|Tue|Wed|Thu|Fri|Sat|Sun"
_MONTHS = (
    "January|February|March|April|May|June|July|August|September|October|November|December"
    "|Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec"
)

# "On Mon, Jan 1, 2024 at 10:00 AM Jane Doe <jane@x.com> wrote:"
REPLY_HEADER = re.compile(
    rf"^On\s(?:{_WEEKDAYS}),?\s*(?:{_MONTHS})\s\d{{1,2}},?\s\d{{4}}\s"
    r"(?:at\s\d{1,2}:\d{2}(?:\s?[AP]M)?)?\s.+?\s<[^>]+>\swrote:\s*$",
    re.IGNORECASE,
)

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_INLINE_WHITESPACE = re.compile(r"[ \t\f\v]+")


def decode_body_data(data: str | None) -> str:
    """Decode a part body (base64url as sent by the provider, or plain base64)."""
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        raw = base64.b64decode(padded)
    return raw.decode("utf-8", errors="replace")


def strip_quoted_reply(text: str) -> str:
    """Drop ``>``-quoted lines, and the reply header line plus everything after it."""
    kept: list[str] = []
    for line in text.splitlines():
        if REPLY_HEADER.match(line.strip()):
            break
        if line.startswith(">"):
            continue
        kept.append(line)
    return "\n".join(kept)


def normalize_whitespace(text: str) -> str:
    """Join wrapped lines into paragraphs; paragraphs are separated by one newline."""
    paragraphs = []
    for block in _PARAGRAPH_BREAK.split(text.replace("\r\n", "\n").replace("\r", "\n")):
        joined = _INLINE_WHITESPACE.sub(" ", " ".join(line.strip() for line in block.split("\n")))
        joined = joined.strip()
        if joined:
            paragraphs.append(joined)
    return "\n".join(paragraphs)


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    return normalize_whitespace(soup.get_text("\n"))


def _matches_type(part: MessagePart, mime_type: str) -> bool:
    if part.mime_type == mime_type:
        return True
    content_type = part.header("Content-Type")
    return bool(content_type and content_type.lower().startswith(mime_type))


def content_parts(part: MessagePart, mime_type: str = "text/plain") -> list[MessagePart]:
    """Depth-first list of parts of *mime_type* that carry inline body data."""
    found = []
    if _matches_type(part, mime_type) and part.body and part.body.data:
        found.append(part)
    for child in part.parts:
        found.extend(content_parts(child, mime_type))
    return found


def _decode_and_clean(part: MessagePart) -> str:
    if not part.body or not part.body.data:
        return ""
    return normalize_whitespace(strip_quoted_reply(decode_body_data(part.body.data)))


def extract_body_text(payload: MessagePart | None) -> str:
    """Best-effort plain text for a message payload.

    Collects every ``text/plain`` part below the root.  Failing that, the
    root body itself is used (converted from HTML when it is ``text/html``).
    Never returns an empty string.
    """
    if payload is None:
        return NO_TEXT_PLACEHOLDER

    texts = []
    for child in payload.parts:
        for part in content_parts(child):
            text = _decode_and_clean(part)
            if text:
                texts.append(text)
    body = "\n".join(texts).strip()
    if body:
        return body

    if payload.body and payload.body.data:
        if payload.mime_type == "text/html":
            text = html_to_text(decode_body_data(payload.body.data))
        else:
            text = _decode_and_clean(payload)
        if text:
            return text

    # multipart/alternative with only an HTML rendition
    for part in content_parts(payload, "text/html"):
        text = html_to_text(decode_body_data(part.body.data))
        if text:
            return text

    return NO_TEXT_PLACEHOLDER
