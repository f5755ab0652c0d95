from __future__ import annotations

from typing import Any


def create_merge_patch(original: Any, modified: Any) -> Any:
    """Build a JSON merge patch (RFC 7386) turning ``original`` into ``modified``.

    Removed keys map to ``None``; lists and scalars are replaced wholesale.
    """
    if not isinstance(original, dict) or not isinstance(modified, dict):
        return modified

    patch: dict[str, Any] = {}
    for key in original:
        if key not in modified:
            patch[key] = None

    for key, value in modified.items():
        if key not in original:
            patch[key] = value
            continue
        before = original[key]
        if isinstance(before, dict) and isinstance(value, dict):
            nested = create_merge_patch(before, value)
            if nested:
                patch[key] = nested
        elif before != value:
            patch[key] = value
    return patch
