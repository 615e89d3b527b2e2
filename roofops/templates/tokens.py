"""
``{{ token }}`` placeholders.

Tokens are ``[A-Za-z0-9_.]+`` with optional whitespace inside the braces.
"""

import json
import re
from typing import Any, Dict, List

TOKEN_RE = re.compile(r"\{\{\s*([A-Za-z0-9_\.]+)\s*\}\}")


def extract_tokens(text: str) -> List[str]:
    """Unique tokens in first-seen order."""
    seen: List[str] = []
    for match in TOKEN_RE.finditer(text or ""):
        token = match.group(1)
        if token not in seen:
            seen.append(token)
    return seen


def value_to_text(value: Any) -> str:
    """Strings verbatim, booleans lowercase, containers as JSON."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def substitute(text: str, values: Dict[str, str]) -> str:
    """Replace each ``{{ token }}`` found in ``values`` in one pass.

    Replacement text is never rescanned, and tokens missing from ``values``
    stay as written.
    """
    def _replace(match: "re.Match[str]") -> str:
        return values.get(match.group(1), match.group(0))

    return TOKEN_RE.sub(_replace, text)
