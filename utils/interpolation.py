"""
{{variable}} substitution for outgoing message text.
"""
from __future__ import annotations

import re
from typing import Any, Mapping

PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def interpolate(text: str, context: Mapping[str, Any]) -> str:
    """
    Replace each ``{{name}}`` with ``context[name]``.

    A key that is present substitutes even when its value is empty;
    an absent key leaves the placeholder untouched.
    """
    if not text:
        return text or ""

    def replacer(match: re.Match) -> str:
        key = match.group(1)
        if key in context:
            value = context[key]
            return "" if value is None else str(value)
        return match.group(0)

    return PLACEHOLDER.sub(replacer, text)
