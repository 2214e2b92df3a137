from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any

REDACTED = "***REDACTED***"

# Substrings that mark a mapping key as secret wherever they appear.
SENSITIVE_KEYS = frozenset(
    {"api_key", "apikey", "secret", "authorization", "password", "private_key", "mnemonic"}
)
# Keys that are secret only as a whole; "chaos_token" is a contract name, "token" is not.
_EXACT_SENSITIVE_KEYS = frozenset(
    {"key", "auth", "token", "access_token", "auth_token", "refresh_token"}
)


def mask_secret(value: str) -> str:
    """Keep just enough of a secret to tell two of them apart."""
    if not value:
        return REDACTED
    if len(value) > 8:
        return value[:4] + "*" * (len(value) - 8) + value[-4:]
    if len(value) <= 2:
        return "*" * len(value)
    return "*" * (len(value) - 2) + value[-2:]


def _labelled(match: re.Match[str]) -> str:
    return f"{match.group('label')}{match.group('scheme') or ''}[REDACTED]"


def _query_param(match: re.Match[str]) -> str:
    return f"{match.group('sep')}{match.group('name')}={mask_secret(match.group('value'))}"


def _userinfo(match: re.Match[str]) -> str:
    return f"{match.group('scheme')}{match.group('user')}:{REDACTED}@"


def _path_key(match: re.Match[str]) -> str:
    return f"{match.group('base')}{mask_secret(match.group('value'))}"


_TEXT_RULES: tuple[tuple[re.Pattern[str], Callable[[re.Match[str]], str]], ...] = (
    (
        re.compile(
            r"(?im)(?P<label>(?:authorization|x-api-key|private[_-]key)\s*[:=]\s*)"
            r"(?P<scheme>bearer\s+)?[^\s,;]+"
        ),
        _labelled,
    ),
    (re.compile(r"(?P<scheme>https?://)(?P<user>[^\s/@:]+):[^\s/@]+@"), _userinfo),
    (
        re.compile(
            r"(?i)(?P<sep>[?&])(?P<name>api[-_]?key|key|token|access_token)"
            r"=(?P<value>[^&\s\"']+)"
        ),
        _query_param,
    ),
    # Hosted RPC providers put the project key in the last path segment.
    (
        re.compile(
            r"(?P<base>https?://[^\s/\"']+/(?:v\d+|rpc|[a-z-]+)/)"
            r"(?P<value>[A-Za-z0-9_-]{20,})(?=[/?\s\"']|$)"
        ),
        _path_key,
    ),
)


def is_sensitive_key(key: object) -> bool:
    normalized = str(key).replace("-", "_").casefold()
    if normalized in _EXACT_SENSITIVE_KEYS:
        return True
    return any(part in normalized for part in SENSITIVE_KEYS)


def sanitize_text(text: str, known_secrets: Iterable[str] = ()) -> str:
    try:
        redacted = str(text)
        for secret in known_secrets:
            if secret:
                redacted = redacted.replace(secret, mask_secret(secret))
        for pattern, replace in _TEXT_RULES:
            redacted = pattern.sub(replace, redacted)
        return redacted
    except Exception:  # noqa: BLE001
        return REDACTED


def sanitize_mapping(data: Mapping[Any, Any]) -> dict[str, Any]:
    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        name = str(key)
        if is_sensitive_key(name) and isinstance(value, str | bytes):
            text = value.decode(errors="replace") if isinstance(value, bytes) else value
            sanitized[name] = mask_secret(text)
        else:
            sanitized[name] = redact_data(value)
    return sanitized


def redact_data(value: Any) -> Any:
    try:
        if isinstance(value, Mapping):
            return sanitize_mapping(value)
        if isinstance(value, list | tuple):
            items = [redact_data(item) for item in value]
            return items if isinstance(value, list) else tuple(items)
        if isinstance(value, str):
            return sanitize_text(value)
        return value
    except Exception:  # noqa: BLE001
        return REDACTED


def redact_url(url: str) -> str:
    return sanitize_text(url)
