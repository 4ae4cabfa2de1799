"""``{{path}}`` placeholder resolution against a workflow context."""

import json
import re
from typing import Any, Mapping

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}\s]+)\s*\}\}")
_MISSING = object()


def resolve_path(context: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Look up a dotted path such as ``calendarEvent.attendees.0.email``."""
    current: Any = context
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else _MISSING
        else:
            current = _MISSING
        if current is _MISSING:
            return default
    return current


def render_template(template: str, context: Mapping[str, Any]) -> str:
    """Replace each ``{{path}}`` with its context value.

    Strings are inserted as-is, other values as JSON. Unknown paths render as "".
    """

    def _substitute(match: "re.Match[str]") -> str:
        value = resolve_path(context, match.group(1))
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        return json.dumps(value, default=str)

    return _PLACEHOLDER.sub(_substitute, template or "")


def render_value(value: Any, context: Mapping[str, Any]) -> Any:
    """Render templates inside strings, lists and dicts; other values pass through."""
    if isinstance(value, str):
        return render_template(value, context)
    if isinstance(value, list):
        return [render_value(item, context) for item in value]
    if isinstance(value, dict):
        return {key: render_value(item, context) for key, item in value.items()}
    return value
