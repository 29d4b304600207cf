"""Parameter templates.

A string that is exactly ``{{path}}`` is replaced wholesale by the value at
``path`` in the execution context. Nothing else is substituted: a token inside
a larger string is left as-is. Unresolved paths become absent values (dropped
from mappings, ``None`` elsewhere) instead of raising, so optional upstream
fields do not break a workflow.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any, Final

TEMPLATE_PATTERN = re.compile(r"^\{\{\s*([^{}]+?)\s*\}\}$")


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()


def lookup_path(context: Any, path: str) -> Any:
    """Resolve a dot-separated path, returning ``MISSING`` if any segment fails.

    Integer segments index sequences; mappings are tried by key first. Plain
    objects (pydantic models, dataclasses) fall back to public attributes.
    """

    current = context
    for segment in path.split("."):
        if not segment:
            return MISSING
        if isinstance(current, Mapping):
            if segment in current:
                current = current[segment]
                continue
            if segment.lstrip("-").isdigit() and int(segment) in current:
                current = current[int(segment)]
                continue
            return MISSING
        if isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError):
                return MISSING
            continue
        if segment.startswith("_") or current is None or current is MISSING:
            return MISSING
        current = getattr(current, segment, MISSING)
        if current is MISSING or callable(current):
            return MISSING
    return current


def template_path(value: str) -> str | None:
    match = TEMPLATE_PATTERN.match(value)
    return match.group(1) if match else None


def _resolve(template: Any, context: Mapping[str, Any]) -> Any:
    if isinstance(template, str):
        path = template_path(template)
        return template if path is None else lookup_path(context, path)
    if isinstance(template, Mapping):
        out: dict[Any, Any] = {}
        for key, value in template.items():
            resolved = _resolve(value, context)
            if resolved is not MISSING:
                out[key] = resolved
        return out
    if isinstance(template, (list, tuple)):
        return [None if (v := _resolve(item, context)) is MISSING else v for item in template]
    return template


def resolve_template(template: Any, context: Mapping[str, Any]) -> Any:
    """Resolve every whole-string token in ``template`` against ``context``."""

    resolved = _resolve(template, context)
    return None if resolved is MISSING else resolved
