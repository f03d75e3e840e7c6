"""
Gatekeeper: Threat Detector
=============================

What:  Pattern battery that flags injection-style payloads.
Why:   Some downstream logic (raw SQL fragments, file paths, redirect targets)
       is insensitive to markup stripping. Flagged requests never reach it.
How:   Signatures are compiled once at import and never change. Every string
       found in body, query and path parameters (recursively through mappings
       and sequences) and the User-Agent / Referer headers is tested; the first
       match wins.

Signatures:
    markup          < > ' " % ; ( ) & +
    sql_keyword     union select drop delete insert update   (whole words)
    path_traversal  ../   ..\\
    script_keyword  script javascript vbscript onload onerror

The battery is intentionally coarse: it flags "O'Brien" and any User-Agent
with parentheses. That is the policy; the detector does not try to be clever.
"""

import re
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional, Pattern, Tuple


@dataclass(frozen=True)
class ThreatSignature:
    category: str
    pattern: Pattern[str]


@dataclass(frozen=True)
class ThreatMatch:
    category: str
    field: str


SIGNATURES: Tuple[ThreatSignature, ...] = (
    ThreatSignature("markup", re.compile(r"[<>'\"%;()&+]")),
    ThreatSignature(
        "sql_keyword",
        re.compile(r"\b(union|select|drop|delete|insert|update)\b", re.IGNORECASE),
    ),
    ThreatSignature("path_traversal", re.compile(r"\.\./|\.\.\\")),
    ThreatSignature(
        "script_keyword",
        re.compile(r"script|javascript|vbscript|onload|onerror", re.IGNORECASE),
    ),
)


def scan_string(value: str) -> Optional[str]:
    """Return the category of the first matching signature, or None."""
    for signature in SIGNATURES:
        if signature.pattern.search(value):
            return signature.category
    return None


def _iter_strings(value: Any, path: str) -> Iterator[Tuple[str, str]]:
    if isinstance(value, str):
        yield path, value
    elif isinstance(value, Mapping):
        for key, child in value.items():
            yield from _iter_strings(child, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, child in enumerate(value):
            yield from _iter_strings(child, f"{path}[{index}]")


def scan_value(value: Any, field: str = "value") -> Optional[ThreatMatch]:
    for path, text in _iter_strings(value, field):
        category = scan_string(text)
        if category is not None:
            return ThreatMatch(category=category, field=path)
    return None


def inspect(
    body: Any = None,
    query: Any = None,
    params: Any = None,
    user_agent: Optional[str] = None,
    referer: Optional[str] = None,
) -> Optional[ThreatMatch]:
    """Scan every request surface in pipeline order; None means clean."""
    for field, value in (("body", body), ("query", query), ("params", params)):
        match = scan_value(value, field)
        if match is not None:
            return match
    for field, header in (("user-agent", user_agent), ("referer", referer)):
        if header:
            category = scan_string(header)
            if category is not None:
                return ThreatMatch(category=category, field=field)
    return None
