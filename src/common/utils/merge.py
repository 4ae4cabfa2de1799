import copy
from typing import Any, Dict, Mapping


def deep_merge(base: Mapping[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a new dict with ``updates`` merged into ``base``.

    Nested mappings are merged key by key; any other value in ``updates`` replaces
    the one in ``base``. Neither input is mutated. Merging an empty mapping yields
    a value-equal copy of ``base``.
    """
    merged: Dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in updates.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged
