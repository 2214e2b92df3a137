from chaoswatch.security.redaction import (
    REDACTED,
    SENSITIVE_KEYS,
    is_sensitive_key,
    mask_secret,
    redact_data,
    redact_url,
    sanitize_mapping,
    sanitize_text,
)

__all__ = [
    "REDACTED",
    "SENSITIVE_KEYS",
    "is_sensitive_key",
    "mask_secret",
    "redact_data",
    "redact_url",
    "sanitize_mapping",
    "sanitize_text",
]
