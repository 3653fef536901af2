"""Secret-shaped token detection and redaction."""

from __future__ import annotations

import re

REDACTED = "***"

# Each pattern keeps its first group (the recognizable prefix) and hides the rest.
SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(sk-)[a-zA-Z0-9_-]{10,}"),
    re.compile(r"(Bearer\s+)[a-zA-Z0-9._~+/-]{8,}=*"),
    re.compile(
        r"((?:api[_-]?key|access[_-]?token|secret[_-]?key|client[_-]?secret|password)"
        r"[\"']?\s*[=:]\s*[\"']?)(?=[^\s\"']*\d)[^\s\"']{8,}",
        re.IGNORECASE,
    ),
    re.compile(r"(AKIA)[0-9A-Z]{16}"),
    re.compile(r"(gh[pousr]_)[A-Za-z0-9]{20,}"),
    re.compile(r"(xox[abprs]-)[A-Za-z0-9-]{10,}"),
    re.compile(r"(https?://)[^\s:/@]+:[^\s@/]+@"),
    re.compile(
        r"(-----BEGIN [A-Z ]*PRIVATE KEY-----)[\s\S]*?(?:-----END [A-Z ]*PRIVATE KEY-----|\Z)"
    ),
)


def find_secrets(content: str) -> list[re.Match[str]]:
    """Return every secret-shaped match in ``content``, in text order."""
    matches = [m for pattern in SECRET_PATTERNS for m in pattern.finditer(content)]
    return sorted(matches, key=lambda m: m.start())


def redact_secrets(content: str) -> str:
    """Replace every secret-shaped token in ``content``, keeping its prefix."""
    for pattern in SECRET_PATTERNS:
        content = pattern.sub(lambda m: m.group(1) + REDACTED, content)
    return content
