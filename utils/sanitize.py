"""
Cleaning of user-supplied text before it is stored in a session context.

Captured input is later interpolated into outgoing messages, so it is
stripped of markup and its template braces are broken up to stop a
user from injecting ``{{variables}}`` of their own.
"""
from __future__ import annotations

import re

_DROP_WITH_CONTENT = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG = re.compile(r"<[^>]*>")

MAX_INPUT_LENGTH = 2000


def sanitize_message(text: str) -> str:
    """Remove all HTML tags (script/style bodies included)."""
    if not text:
        return ""
    text = _DROP_WITH_CONTENT.sub("", text)
    return _TAG.sub("", text)


def escape_for_template(text: str) -> str:
    """Turn ``{{`` into ``{ {`` and ``}}`` into ``} }``."""
    if not text:
        return ""
    return text.replace("{{", "{ {").replace("}}", "} }")


def sanitize_user_input(text: str, max_length: int = MAX_INPUT_LENGTH) -> str:
    """Full pipeline applied to captured user input."""
    if not text:
        return ""
    text = "".join(c for c in text if c in ("\n", "\t", "\r") or ord(c) >= 32)
    if len(text) > max_length:
        text = text[:max_length]
    return escape_for_template(sanitize_message(text)).strip()
