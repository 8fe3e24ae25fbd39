from __future__ import annotations

import re
from typing import Any

SENSITIVE_KEY_SUBSTRINGS = (
    "token",
    "secret",
    "password",
    "authorization",
    "cookie",
    "api_key",
    "apikey",
    "private_key",
)

_REDACTED = "[Filtered]"
_BEARER_PATTERN = re.compile(r"(?i)\b(bearer|basic)\s+[A-Za-z0-9._-]+")


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(substr in lowered for substr in SENSITIVE_KEY_SUBSTRINGS)


def scrub(value: Any) -> Any:
    if isinstance(value, dict):
        scrubbed: dict[Any, Any] = {}
        for k, v in value.items():
            if isinstance(k, str) and is_sensitive_key(k):
                scrubbed[k] = _REDACTED
            else:
                scrubbed[k] = scrub(v)
        return scrubbed
    if isinstance(value, list):
        return [scrub(v) for v in value]
    return value


def redact_bearer(value: str) -> str:
    if not value:
        return value
    return _BEARER_PATTERN.sub(lambda m: f"{m.group(1)} [REDACTED]", value)


def redact_email(value: str | None) -> str:
    """
    Keep the first character of the local part and the domain: "a***@example.com".
    """
    if not value:
        return ""
    local, sep, domain = str(value).partition("@")
    if not sep:
        return "***"
    head = local[:1]
    return f"{head}***@{domain}"
