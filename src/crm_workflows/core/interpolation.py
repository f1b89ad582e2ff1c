"""
Template variable interpolation
"""
import json
import re
from typing import Any, Mapping


TOKEN_PATTERN = re.compile(r"\{\{(.*?)\}\}")

_MISSING = object()


def resolve_path(context: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Dotted-path lookup, e.g. ``lead.email``"""
    current: Any = context
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return default
    return current


def render_value(value: Any) -> str:
    """String form of a resolved value"""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def interpolate(template: str, context: Mapping[str, Any]) -> str:
    """
    Replace ``{{dotted.path}}`` tokens with values from the context.

    Tokens that cannot be resolved are left in the output unchanged, so a
    partially filled context never blanks out text.
    """
    if not template:
        return template or ""

    def _replace(match: "re.Match[str]") -> str:
        value = resolve_path(context, match.group(1).strip(), _MISSING)
        if value is _MISSING or value is None:
            return match.group(0)
        return render_value(value)

    return TOKEN_PATTERN.sub(_replace, template)


def interpolate_json(payload: Any, context: Mapping[str, Any]) -> Any:
    """
    Interpolate a JSON-compatible object by round-tripping it through text.

    Raises ``json.JSONDecodeError`` when an interpolated value breaks the
    document, e.g. a value containing an unescaped double quote.
    """
    text = interpolate(json.dumps(payload if payload is not None else {}), context)
    return json.loads(text)
