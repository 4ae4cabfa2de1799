"""Tests for deep_merge and PII redaction."""

from common.sanitization import redact_pii, redact_pii_recursive
from common.utils.merge import deep_merge


def test_deep_merge_nested_without_mutation():
    """Nested mappings merge key by key and inputs are untouched."""
    base = {"a": 1, "nested": {"x": 1, "y": 2}, "items": [1]}
    updates = {"nested": {"y": 3, "z": 4}, "items": [2]}

    merged = deep_merge(base, updates)

    assert merged == {"a": 1, "nested": {"x": 1, "y": 3, "z": 4}, "items": [2]}
    assert base == {"a": 1, "nested": {"x": 1, "y": 2}, "items": [1]}


def test_deep_merge_empty_is_value_equal_copy():
    """Merging nothing returns an equal but distinct dict."""
    base = {"a": {"b": 1}}
    merged = deep_merge(base, {})

    assert merged == base
    assert merged is not base
    assert merged["a"] is not base["a"]


def test_redact_email_and_phones():
    """Emails and phone numbers are replaced with placeholders."""
    text = "Mail jane.doe@example.com or call 555-123-4567 or +44 20 7946 0958."

    redacted = redact_pii(text)

    assert "jane.doe@example.com" not in redacted
    assert "[EMAIL_REDACTED]" in redacted
    assert "555-123-4567" not in redacted
    assert redacted.count("[PHONE_REDACTED]") == 2


def test_redact_recursive_preserves_structure():
    """Nested containers keep their shape; non-strings pass through."""
    value = {"to": ["a@b.io"], "meta": ({"n": 1},), "note": "none"}

    assert redact_pii_recursive(value) == {
        "to": ["[EMAIL_REDACTED]"],
        "meta": ({"n": 1},),
        "note": "none",
    }
