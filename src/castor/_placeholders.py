"""Template placeholder substitution for operate inputs."""

from __future__ import annotations

import json
import re
from typing import Any

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][\w.-]*)\s*\}\}")
_MISSING = object()


def _lookup(data: Any, path: str) -> Any:
    current = data
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        elif isinstance(current, (list, tuple)) and key.isdigit() and int(key) < len(
            current
        ):
            current = current[int(key)]
        else:
            return _MISSING
    return current


def substitute(template: str, data: dict[str, Any] | None) -> str:
    """Replace ``{{key}}`` and ``{{a.b}}`` placeholders with values from *data*.

    Unknown keys are left in place so that literal braces survive. Non-string
    values are rendered as JSON.
    """
    if not data or "{{" not in template:
        return template

    def replace(match: re.Match[str]) -> str:
        value = _lookup(data, match.group(1))
        if value is _MISSING:
            return match.group(0)
        if isinstance(value, str):
            return value
        return json.dumps(value, default=str)

    return _PLACEHOLDER_RE.sub(replace, template)
