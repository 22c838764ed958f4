"""``{{variable}}`` placeholder rendering for prompts and tool parameters."""

import json
import re
from typing import Any, Mapping

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")

_MISSING = object()


def lookup(context: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path against nested mappings; ``_MISSING`` when absent."""
    value: Any = context
    for part in path.split("."):
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return _MISSING
    return value


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def render_template(template: str, context: Mapping[str, Any]) -> str:
    """Substitute placeholders in ``template``; unknown names are left as written."""
    def replace(match):
        value = lookup(context, match.group(1))
        return match.group(0) if value is _MISSING else _as_text(value)

    return _PLACEHOLDER.sub(replace, template)


def render_value(value: Any, context: Mapping[str, Any]) -> Any:
    """Render placeholders inside strings, lists and dicts.

    A string that is exactly one placeholder is replaced by the raw value
    (lists stay lists); if that variable is unknown the result is ``None``.
    """
    if isinstance(value, str):
        whole = _PLACEHOLDER.fullmatch(value.strip())
        if whole:
            resolved = lookup(context, whole.group(1))
            return None if resolved is _MISSING else resolved
        return render_template(value, context)
    if isinstance(value, list):
        return [render_value(item, context) for item in value]
    if isinstance(value, dict):
        return {key: render_value(item, context) for key, item in value.items()}
    return value
