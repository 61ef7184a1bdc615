"""``{{var}}`` placeholder rendering shared by notification nodes and adapters."""

from __future__ import annotations

import re
from typing import Any, Mapping

_TOKEN = re.compile(r"{{\s*([\w.-]+)\s*}}")


def render(template: str, variables: Mapping[str, Any] | None = None) -> str:
    """Substitute ``{{ name }}`` tokens; unresolved or ``None`` values render empty."""
    variables = variables or {}

    def _replace(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    return _TOKEN.sub(_replace, template or "")


def placeholders(template: str) -> list[str]:
    """Names referenced by ``template`` in order of first appearance."""
    names: list[str] = []
    for name in _TOKEN.findall(template or ""):
        if name not in names:
            names.append(name)
    return names
