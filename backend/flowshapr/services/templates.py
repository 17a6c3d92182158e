"""
Prompt template helpers.

Templates use `{{ name }}` placeholders, optionally with a dotted path
(`{{ user.name }}`). At compile time every placeholder root must resolve to
a binding in scope; at run time `render_template` substitutes the values.
"""

from __future__ import annotations

import json
import re
from typing import Any

TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


class UnresolvedVariableError(LookupError):
    def __init__(self, names: list[str]):
        self.names = names
        super().__init__(f"Unresolved template variable(s): {', '.join(names)}")


def extract_template_variables(template: str) -> list[str]:
    """Placeholder names in order of first appearance, without duplicates."""
    seen: dict[str, None] = {}
    for match in TEMPLATE_PATTERN.finditer(template or ""):
        seen.setdefault(match.group(1).strip(), None)
    return list(seen)


def _root(name: str) -> str:
    return name.split(".", 1)[0]


def build_template_bindings(template: str, scope: dict[str, str]) -> dict[str, str]:
    """
    Map each placeholder root in `template` to the Python expression of its binding.

    Raises UnresolvedVariableError listing every root missing from `scope`.
    """
    bindings: dict[str, str] = {}
    missing: list[str] = []
    for name in extract_template_variables(template):
        root = _root(name)
        if root in bindings or root in missing:
            continue
        if root in scope:
            bindings[root] = scope[root]
        else:
            missing.append(root)
    if missing:
        raise UnresolvedVariableError(missing)
    return bindings


def _lookup(value: Any, path: list[str]) -> Any:
    for key in path:
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(key)
        elif isinstance(value, (list, tuple)) and key.isdigit():
            index = int(key)
            value = value[index] if index < len(value) else None
        else:
            value = getattr(value, key, None)
    return value


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def render_template(template: str, values: dict[str, Any]) -> str:
    """Substitute `{{ name }}` placeholders; unknown names render empty."""

    def replace(match: re.Match[str]) -> str:
        name = match.group(1).strip()
        root, *path = name.split(".")
        return _to_text(_lookup(values.get(root), path))

    return TEMPLATE_PATTERN.sub(replace, template)
