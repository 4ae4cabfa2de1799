"""Sanitization utilities."""

from .pii import redact_pii, redact_pii_recursive

__all__ = ["redact_pii", "redact_pii_recursive"]
