"""Namespace-free field trees built from lxml elements.

Leaf text becomes a str, a leaf carrying attributes becomes
``{"@attr": ..., "#text": ...}`` and repeated children become lists.
"""

from __future__ import annotations

from typing import Any

from lxml import etree


def local_name(element: etree._Element) -> str:
    return etree.QName(element).localname


def to_tree(element: etree._Element) -> Any:
    """Convert an element into nested dicts, lists and strings."""
    children = [c for c in element if isinstance(c.tag, str)]
    attrs = {f"@{etree.QName(k).localname}": v for k, v in element.attrib.items()}
    if not children:
        text = (element.text or "").strip()
        if attrs:
            return {**attrs, "#text": text}
        return text

    node: dict[str, Any] = dict(attrs)
    for child in children:
        key = local_name(child)
        value = to_tree(child)
        if key not in node:
            node[key] = value
        elif isinstance(node[key], list):
            node[key].append(value)
        else:
            node[key] = [node[key], value]
    return node


def as_list(value: Any) -> list:
    """Wrap a single node in a list; None becomes an empty list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def find(node: Any, *path: str) -> Any:
    """Walk ``path`` through the tree, taking the first item of any list on the way."""
    current = node
    for key in path:
        if isinstance(current, list):
            current = current[0] if current else None
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def text_of(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return text_of(value[0]) if value else ""
    if isinstance(value, dict):
        return str(value.get("#text", "")).strip()
    return str(value).strip()


def attr_of(value: Any, name: str) -> str | None:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        return value.get(f"@{name}")
    return None
