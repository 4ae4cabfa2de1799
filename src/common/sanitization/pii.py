"""PII redaction for model output and telemetry attributes."""

import re
from typing import Any

EMAIL_PLACEHOLDER = "[EMAIL_REDACTED]"
PHONE_PLACEHOLDER = "[PHONE_REDACTED]"

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

# North-American style numbers, then explicitly international (+CC) numbers.
PHONE_PATTERNS = (
    re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    re.compile(r"(?<![\w+])\+\d{1,3}[-.\s]?\(?\d{1,4}\)?[-.\s]?\d{1,4}[-.\s]?\d{1,9}\b"),
)


def redact_pii(text: str) -> str:
    """Replace email addresses and phone numbers with fixed placeholders."""
    if not text:
        return text
    result = EMAIL_PATTERN.sub(EMAIL_PLACEHOLDER, text)
    for pattern in PHONE_PATTERNS:
        result = pattern.sub(PHONE_PLACEHOLDER, result)
    return result


def redact_pii_recursive(value: Any) -> Any:
    """Apply ``redact_pii`` to every string inside nested dicts, lists and tuples."""
    if isinstance(value, str):
        return redact_pii(value)
    if isinstance(value, dict):
        return {key: redact_pii_recursive(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(redact_pii_recursive(item) for item in value)
    return value
