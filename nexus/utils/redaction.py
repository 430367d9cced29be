"""Secret redaction helpers for agent logs and persisted error text.

Tool arguments, action log inputs and vendor error messages can all carry
values that must not reach logs or the conversation. Keys are matched
case-insensitively by substring; nested dicts and lists are walked.
"""

import re
from typing import Any

# Substring patterns matched case-insensitively against dict keys
_DEFAULT_SENSITIVE_PATTERNS = frozenset({
    "secret", "token", "authorization", "api_key", "apikey", "password",
    "credential", "encrypted_key", "x-api-key", "x-goog-api-key",
})

# Keys whose entire value is redacted regardless of content type
_CONTAINER_KEYS = frozenset({"credentials", "headers"})

_REDACTED = "***REDACTED***"

_MASK = "••••••••"


def _is_sensitive_key(key: str, sensitive_patterns: frozenset[str]) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in sensitive_patterns)


def _redact_value(value: Any, sensitive_patterns: frozenset[str]) -> Any:
    if isinstance(value, dict):
        return redact_for_logging(value, sensitive_patterns)
    if isinstance(value, list):
        return [_redact_value(item, sensitive_patterns) for item in value]
    return value


def redact_for_logging(
    obj: dict[str, Any],
    sensitive_patterns: frozenset[str] = _DEFAULT_SENSITIVE_PATTERNS,
) -> dict[str, Any]:
    """Redact sensitive values from a dict for safe logging.

    Args:
        obj: Dict to redact (not mutated; a copy is returned).
        sensitive_patterns: Substring patterns whose matching keys' values
            are replaced. Matching is case-insensitive.

    Returns:
        New dict with sensitive values replaced by '***REDACTED***'.
    """
    result: dict[str, Any] = {}
    for key, value in obj.items():
        key_str = str(key)
        if key_str.lower() in _CONTAINER_KEYS:
            result[key] = _REDACTED
        elif _is_sensitive_key(key_str, sensitive_patterns):
            result[key] = _REDACTED
        else:
            result[key] = _redact_value(value, sensitive_patterns)
    return result


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Mask a secret for display, keeping only its last few characters.

    Example:
        mask_secret("9f8e...c0ffee") -> "••••••••ffee"
    """
    if not value:
        return _MASK
    return _MASK + value[-visible:]


# Patterns for detecting secrets inside free-text vendor error messages.
_SENSITIVE_KEYWORDS = (
    r"secret|token|password|api_key|api-key|apikey|key|authorization|credential"
)
_SENSITIVE_VALUE_PATTERNS = re.compile(
    r"(?i)"
    r"(?:"
    # Authorization: Bearer <token>
    r"Authorization\s*:\s*Bearer\s+\S+"
    r"|"
    # Vendor key formats echoed back in error bodies
    r"\bsk-(?:ant-)?[A-Za-z0-9_\-]{8,}"
    r"|"
    r"\bAIza[0-9A-Za-z_\-]{20,}"
    r"|"
    # JSON-style "key": "value"
    r'"(?:' + _SENSITIVE_KEYWORDS + r')"\s*:\s*"[^"]*"'
    r"|"
    # key=value (unquoted, consumes until whitespace/end)
    r"\b(?:" + _SENSITIVE_KEYWORDS + r")\s*=\s*[^\s&]+"
    r")",
)


def sanitize_error_message(msg: str | None, max_length: int = 500) -> str | None:
    """Redact secret-looking fragments and truncate an error message.

    Used before vendor error text is persisted into a conversation.

    Args:
        msg: Error message to sanitize (None passes through).
        max_length: Maximum length of the sanitized message.

    Returns:
        Sanitized and truncated message, or None.
    """
    if msg is None:
        return None
    sanitized = _SENSITIVE_VALUE_PATTERNS.sub(_REDACTED, msg)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length - 3] + "..."
    return sanitized
