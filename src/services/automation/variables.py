"""Placeholder resolution for automation node configs.

Templates reference values with ``{{dot.path}}`` tokens, looked up against a
context such as ``{"contact": {...}, "trigger": {...}}``.
"""

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")
QUOTED_PLACEHOLDER_RE = re.compile(r"\"\{\{([^}]+)\}\}\"")
MISSING = object()


def _walk(obj: Any, path: str | None) -> Any:
    if not path or obj is None:
        return MISSING
    clean_path = path.replace("{{", "").replace("}}", "").strip()
    current = obj
    for key in clean_path.split("."):
        if isinstance(current, Mapping):
            if key not in current:
                return MISSING
            current = current[key]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                current = current[int(key)]
            except (ValueError, IndexError):
                return MISSING
        else:
            return MISSING
    return current


def get_value_from_path(obj: Any, path: str | None) -> Any:
    """Walk ``path`` segment by segment; ``None`` when any segment is missing."""
    value = _walk(obj, path)
    return None if value is MISSING else value


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(_stringify(item) for item in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Mapping):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def resolve_variables(text: Any, context: Mapping[str, Any]) -> Any:
    if not isinstance(text, str):
        return text

    def replace(match: re.Match) -> str:
        value = _walk(context, match.group(1).strip())
        if value is MISSING:
            return match.group(0)
        return _stringify(value)

    return PLACEHOLDER_RE.sub(replace, text)


def resolve_json_placeholders(json_text: Any, context: Mapping[str, Any]) -> str:
    """Substitute placeholders inside JSON text with JSON-encoded values.

    ``"{{x}}"`` and bare ``{{x}}`` both become the encoded value, so numbers
    stay numbers and missing values become ``null``.
    """
    if not isinstance(json_text, str):
        return json.dumps(json_text)

    unquoted = QUOTED_PLACEHOLDER_RE.sub(r"{{\1}}", json_text)

    def replace(match: re.Match) -> str:
        value = get_value_from_path(context, match.group(1).strip())
        return json.dumps(value, ensure_ascii=False)

    return PLACEHOLDER_RE.sub(replace, unquoted)


def build_context(contact: Any, trigger: Any) -> dict[str, Any]:
    contact_data = contact.model_dump(mode="json") if hasattr(contact, "model_dump") else contact
    return {"contact": contact_data, "trigger": trigger}
