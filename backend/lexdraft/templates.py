from __future__ import annotations

import html
import json
import re
from datetime import date, datetime
from typing import Any, Literal, Mapping, TypedDict

from bs4 import BeautifulSoup

VARIABLE_MARK_TYPE = "variable"
VARIABLE_NAME_ATTR = "data-variable-name"
VARIABLE_DESCRIPTION_ATTR = "data-variable-description"
VARIABLE_HIGHLIGHT_CLASS = "variable-highlight"

VariableStatus = Literal["pending", "prefilled", "missing", "user-filled"]


class TemplateVariable(TypedDict):
    name: str
    description: str | None
    position: dict[str, int]


class VariableState(TemplateVariable):
    value: str
    status: VariableStatus


def node_size(node: Mapping[str, Any]) -> int:
    """ProseMirror size of a node: text length, content plus open/close tokens, or 1 for leaves."""
    if node.get("type") == "text":
        return len(node.get("text") or "")
    content = node.get("content")
    if isinstance(content, list):
        return 1 + sum(node_size(child) for child in content if isinstance(child, Mapping)) + 1
    return 1


def _collect_variables(node: Mapping[str, Any], found: dict[str, TemplateVariable], position: int) -> None:
    marks = node.get("marks")
    if node.get("type") == "text" and isinstance(marks, list):
        text = node.get("text") or ""
        for mark in marks:
            if not isinstance(mark, Mapping) or mark.get("type") != VARIABLE_MARK_TYPE:
                continue
            attrs = mark.get("attrs") or {}
            name = attrs.get(VARIABLE_NAME_ATTR)
            if not name or name in found:
                continue
            found[name] = {
                "name": name,
                "description": attrs.get(VARIABLE_DESCRIPTION_ATTR) or None,
                "position": {"from": position, "to": position + len(text)},
            }

    content = node.get("content")
    if isinstance(content, list):
        child_position = position + 1
        for child in content:
            if not isinstance(child, Mapping):
                continue
            _collect_variables(child, found, child_position)
            child_position += node_size(child)


def extract_variables_from_json(content: Mapping[str, Any] | None) -> list[TemplateVariable]:
    """Find variable marks in a Tiptap JSON document.

    Each name is reported once, at its first occurrence. Positions start at 1
    for the first top-level block, matching the editor's selection offsets.
    """
    if not content:
        return []

    found: dict[str, TemplateVariable] = {}
    children = content.get("content")
    if content.get("type") == "doc" and isinstance(children, list):
        position = 1
        for child in children:
            if not isinstance(child, Mapping):
                continue
            _collect_variables(child, found, position)
            position += node_size(child)
    else:
        _collect_variables(content, found, 1)
    return list(found.values())


_CASE_PREFIX = re.compile(r"^(case|client)\.")

# Template variable names that do not follow the snake_case-to-path convention.
_SPECIAL_VARIABLE_PATHS: dict[str, list[str]] = {
    "client_name": ["client", "name"],
    "client_email": ["client", "email"],
    "client_phone": ["client", "phone"],
    "client_address": ["client", "address"],
    "case_number": ["case_number"],
    "case_name": ["name"],
    "case_description": ["description"],
    "case_date": ["created_at"],
    "judge_name": ["judge", "name"],
    "court_name": ["court", "name"],
    "opposing_party": ["opposing_party", "name"],
    "opposing_counsel": ["opposing_counsel", "name"],
}


def map_variable_to_path(variable_name: str) -> list[str]:
    clean = _CASE_PREFIX.sub("", variable_name.strip())
    special = _SPECIAL_VARIABLE_PATHS.get(clean)
    if special is not None:
        return list(special)
    return [part for part in clean.split("_") if part]


def get_value_by_path(data: Mapping[str, Any], path: list[str]) -> Any:
    current: Any = data
    for key in path:
        if not isinstance(current, Mapping) or key not in current:
            return None
        current = current[key]
    return current


def format_variable_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def resolve_case_value(variable_name: str, case_data: Mapping[str, Any]) -> str:
    # well-known names, then an exact top-level key, then the snake_case path
    clean = _CASE_PREFIX.sub("", variable_name.strip())
    value = None if clean in _SPECIAL_VARIABLE_PATHS else case_data.get(clean)
    if value is None:
        value = get_value_by_path(case_data, map_variable_to_path(variable_name))
    return format_variable_value(value)


def prefill_variables(
    content: Mapping[str, Any] | None,
    case_data: Mapping[str, Any] | None,
) -> list[VariableState]:
    if not content or not case_data:
        return []

    states: list[VariableState] = []
    for variable in extract_variables_from_json(content):
        value = resolve_case_value(variable["name"], case_data)
        states.append(
            {
                **variable,
                "value": value,
                "status": "prefilled" if value else "missing",
            }
        )
    return states


_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
_TEMPLATE_NAME_DISALLOWED = re.compile(r"[^a-zA-Z0-9\s_\-()]")


def variable_span(name: str, description: str | None = None) -> str:
    label = description or f"Value for {name}"
    return (
        f'<span {VARIABLE_NAME_ATTR}="{html.escape(name, quote=True)}" '
        f'{VARIABLE_DESCRIPTION_ATTR}="{html.escape(label, quote=True)}" '
        f'class="{VARIABLE_HIGHLIGHT_CLASS}">{html.escape(name)}</span>'
    )


def ensure_span_format(markup: str) -> str:
    """Normalize variables in generated HTML into editor variable spans.

    ``{{ name }}`` placeholders become spans; existing spans get the default
    description and highlight class when they lack them.
    """
    converted = _PLACEHOLDER_PATTERN.sub(lambda match: variable_span(match.group(1).strip()), markup)
    soup = BeautifulSoup(converted, "html.parser")
    for span in soup.find_all("span", attrs={VARIABLE_NAME_ATTR: True}):
        name = str(span.get(VARIABLE_NAME_ATTR) or "").strip()
        if not name:
            continue
        span[VARIABLE_NAME_ATTR] = name
        if not str(span.get(VARIABLE_DESCRIPTION_ATTR) or "").strip():
            span[VARIABLE_DESCRIPTION_ATTR] = f"Value for {name}"
        classes = span.get("class") or []
        if VARIABLE_HIGHLIGHT_CLASS not in classes:
            span["class"] = [*classes, VARIABLE_HIGHLIGHT_CLASS]
        if not span.get_text(strip=True):
            span.string = name
    return str(soup)


def extract_variable_names_from_html(markup: str) -> list[str]:
    soup = BeautifulSoup(markup or "", "html.parser")
    names: list[str] = []
    for span in soup.find_all("span", attrs={VARIABLE_NAME_ATTR: True}):
        name = str(span.get(VARIABLE_NAME_ATTR) or "").strip()
        if name and name not in names:
            names.append(name)
    return names


def sanitize_template_name(name: str) -> str:
    return _TEMPLATE_NAME_DISALLOWED.sub("", name or "").strip()[:100]
