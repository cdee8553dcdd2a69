"""Sentinel removal for fully-buffered (non-streaming) upstream bodies."""
from __future__ import annotations

import json
import logging
from typing import Any, Literal, Optional

from stream_relay.core.errors import EmptyContentAfterFilter, EmptyResponse

log = logging.getLogger("sanitizer")


def _message_of(data: Any) -> Optional[dict]:
    """Return `choices[0].message` when `data` has the chat-completion shape."""
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    return message if isinstance(message, dict) else None


def strip_trailing(content: str, sentinel: str) -> str:
    """Remove `sentinel` only when it ends `content`."""
    if content.endswith(sentinel):
        return content[: -len(sentinel)]
    return content


def scrub_raw_text(text: str, sentinel: str, policy: Literal["strip", "truncate"] = "strip") -> str:
    """Fallback for non-JSON bodies: drop every occurrence, or cut at the first."""
    if sentinel not in text:
        return text
    if policy == "truncate":
        return text[: text.index(sentinel)]
    return text.replace(sentinel, "")


def sanitize_body(text: str, sentinel: str, policy: Literal["strip", "truncate"] = "strip") -> str:
    """
    Return `text` with the completion sentinel removed.

    JSON chat completions lose a trailing sentinel from
    `choices[0].message.content` and are re-serialized; a sentinel elsewhere
    in the content is kept. Bodies that do not parse as JSON are scrubbed
    according to `policy`.

    Raises EmptyResponse for a blank body and EmptyContentAfterFilter when
    nothing but whitespace remains of the content.
    """
    if not text or not text.strip():
        raise EmptyResponse()

    try:
        data = json.loads(text)
    except ValueError as e:
        log.info("body is not JSON (%s); scanning raw text", e)
        return scrub_raw_text(text, sentinel, policy)

    message = _message_of(data)
    content = message.get("content") if message is not None else None
    if not isinstance(content, str):
        return text

    stripped = strip_trailing(content, sentinel)
    if not stripped.strip():
        raise EmptyContentAfterFilter()
    if stripped == content:
        return text
    message["content"] = stripped
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))
