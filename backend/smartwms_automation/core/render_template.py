"""Template Rendering — {{field}} placeholder substitution from event data.

Invariants:
    - Placeholders resolve through the same dotted/case-insensitive lookup as conditions
    - Unknown placeholders are left intact (visible in the output, never blanked)
    - render_config returns a new dict; the frozen config model is never touched
"""

import re
from collections.abc import Mapping
from typing import Any

from smartwms_automation.core.evaluate_conditions import resolve_field

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")


def render_template(template: str | None, data: Mapping[str, Any] | None) -> str:
    """Substitute {{field}} placeholders from data."""
    if not template:
        return template or ""
    snapshot = data or {}

    def _replace(match: re.Match) -> str:
        value = resolve_field(snapshot, match.group(1))
        if value is None:
            return match.group(0)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    return _PLACEHOLDER.sub(_replace, template)


def render_value(value: Any, data: Mapping[str, Any] | None) -> Any:
    """Render strings recursively through lists and dicts; other values pass through."""
    if isinstance(value, str):
        return render_template(value, data)
    if isinstance(value, list):
        return [render_value(v, data) for v in value]
    if isinstance(value, dict):
        return {k: render_value(v, data) for k, v in value.items()}
    return value


def render_config(config: Mapping[str, Any], data: Mapping[str, Any] | None) -> dict:
    return {key: render_value(value, data) for key, value in config.items()}
