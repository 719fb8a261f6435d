"""Credential redaction for structured log events."""

from __future__ import annotations

from typing import Iterable
from urllib.parse import urlsplit, urlunsplit

REDACTED_VALUE = "[REDACTED]"

SENSITIVE_HEADERS = frozenset(
    {"authorization", "proxy-authorization", "cookie", "set-cookie"}
)


def is_sensitive_header(name: str) -> bool:
    return name.lower() in SENSITIVE_HEADERS


def redact_headers(
    headers: Iterable[tuple[str, str]],
) -> list[tuple[str, str]]:
    """Return header pairs with credential-bearing values masked."""
    return [
        (name, REDACTED_VALUE if is_sensitive_header(name) else value)
        for name, value in headers
    ]


def redact_url_credentials(url: str) -> str:
    """Mask ``user:password@`` userinfo in a URL."""
    parts = urlsplit(url)
    if parts.username is None and parts.password is None:
        return url
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    return urlunsplit(parts._replace(netloc=f"{REDACTED_VALUE}@{host}"))
