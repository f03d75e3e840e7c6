"""
Gatekeeper: Input Sanitizer
=============================

What:  Rewrites request payloads so no string leaf carries executable markup.
Why:   Handlers and storage downstream never need to think about stored XSS.
How:   One generic walk over the JSON value space
       (str | int | float | bool | None | list | dict):

       str   → script/style blocks removed with their bodies, then every
               remaining tag stripped by bleach (no tags are ever allowed)
       dict  → recurse into values; a key named exactly "email" also gets
               address normalization when it validates
       list  → strings sanitized element-wise, everything else passed through
       other → unchanged

Idempotence:
    sanitize(sanitize(x)) == sanitize(x). After one pass the output holds no
    tags; bleach leaves its own entity escapes (&amp;, &lt;) untouched on a
    second pass, and a normalized address normalizes to itself.

Operator keys:
    scrub_operator_keys() replaces "$" and "." in mapping keys with "_" so a
    payload cannot smuggle query operators ({"$gt": ""}) or dotted paths into
    a document store.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Tuple

import bleach
from email_validator import EmailNotValidError, validate_email

logger = logging.getLogger(__name__)

EMAIL_KEY = "email"

# Blocks whose body is itself executable; the body goes with the tags.
_EXECUTABLE_BLOCK = re.compile(
    r"<\s*(script|style)\b[^>]*>.*?<\s*/\s*\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
# An opening tag with no closing tag swallows the rest of the string.
_UNCLOSED_EXECUTABLE = re.compile(r"<\s*(script|style)\b.*\Z", re.IGNORECASE | re.DOTALL)

_OPERATOR_KEY_CHARS = re.compile(r"[$.]")


def _strip_executable_blocks(value: str) -> str:
    # What: Repeat until nothing changes
    # Why: "<scr<script></script>ipt>" reassembles a new block after one pass
    previous = None
    while previous != value:
        previous = value
        value = _EXECUTABLE_BLOCK.sub("", value)
    # A browser would treat everything after an unclosed <script> as script,
    # so bleach must never see it as text
    return _UNCLOSED_EXECUTABLE.sub("", value)


def sanitize_string(value: str) -> str:
    """Remove every tag and any script/style body from a string."""
    cleaned = _strip_executable_blocks(value)
    # tags=[] with strip=True drops the tags and keeps their text content
    return bleach.clean(cleaned, tags=[], attributes={}, strip=True, strip_comments=True)


def normalize_email(value: str) -> str:
    """Case-folded canonical address, or the input unchanged when invalid."""
    try:
        result = validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return value
    return result.normalized.lower()


def _sanitize_sequence(items: List[Any]) -> List[Any]:
    return [sanitize_string(item) if isinstance(item, str) else item for item in items]


def sanitize_mapping(data: Mapping[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            cleaned = sanitize_string(value)
            # Normalize after stripping, so the validator never sees markup
            if key == EMAIL_KEY:
                cleaned = normalize_email(cleaned)
            sanitized[key] = cleaned
        elif isinstance(value, Mapping):
            sanitized[key] = sanitize_mapping(value)
        elif isinstance(value, list):
            sanitized[key] = _sanitize_sequence(value)
        else:
            sanitized[key] = value
    return sanitized


def sanitize_value(value: Any) -> Any:
    """Entry point for a whole body/query/params tree of any shape."""
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, Mapping):
        return sanitize_mapping(value)
    if isinstance(value, list):
        return _sanitize_sequence(value)
    return value


def scrub_operator_keys(value: Any) -> Tuple[Any, List[str]]:
    """
    Replace "$" and "." in mapping keys, recursively.

    Returns the scrubbed tree and the original keys that were rewritten.
    """
    scrubbed_keys: List[str] = []

    def walk(node: Any) -> Any:
        if isinstance(node, Mapping):
            result: Dict[str, Any] = {}
            for key, child in node.items():
                new_key = key
                if isinstance(key, str) and _OPERATOR_KEY_CHARS.search(key):
                    new_key = _OPERATOR_KEY_CHARS.sub("_", key)
                    scrubbed_keys.append(key)
                result[new_key] = walk(child)
            return result
        if isinstance(node, list):
            return [walk(item) for item in node]
        return node

    return walk(value), scrubbed_keys
