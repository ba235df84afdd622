"""Render synced notes as Markdown with YAML frontmatter.

Properties arrive as a flat mapping of key -> string or list of strings.
Links and rich-text notes share the same layout and differ only in the
category recorded in their frontmatter.
"""

import re
from typing import Dict, List, Union

PropertyValue = Union[str, List[str]]

_PLAIN_KEY = re.compile(r"^[\w\-][\w\- ]*$")


def render_link_property(properties: Dict[str, PropertyValue]) -> str:
    """Frontmatter body for a web link / article."""
    return _render_properties("link", properties)


def render_rich_text_property(properties: Dict[str, PropertyValue]) -> str:
    """Frontmatter body for an authored note, highlight or annotation."""
    return _render_properties("note", properties)


def render_text(properties_text: str, text: str, tag_list: List[str]) -> str:
    """Assemble the final document: frontmatter, then the note body."""
    fm_lines = []
    if properties_text:
        fm_lines.append(properties_text)

    tags = [t for t in (_clean_tag(tag) for tag in tag_list or []) if t]
    if tags:
        fm_lines.append(_yaml_field("tags", tags))

    body = (text or "").strip("\n")
    if not fm_lines:
        return f"{body}\n" if body else ""

    frontmatter = "\n".join(fm_lines)
    if not body:
        return f"---\n{frontmatter}\n---\n"
    return f"---\n{frontmatter}\n---\n\n{body}\n"


def _render_properties(category: str, properties: Dict[str, PropertyValue]) -> str:
    lines = [f'category: "{category}"']
    for key, value in properties.items():
        # tags are rendered from the note's tag list
        if key in ("category", "tags"):
            continue
        lines.append(_yaml_field(key, value))
    return "\n".join(lines)


def _yaml_field(key: str, value: PropertyValue) -> str:
    yaml_key = key if _PLAIN_KEY.match(key) else f'"{_escape_yaml(key)}"'
    if isinstance(value, list):
        if not value:
            return f"{yaml_key}: []"
        items = "\n".join(f'  - "{_escape_yaml(v)}"' for v in value)
        return f"{yaml_key}:\n{items}"
    return f'{yaml_key}: "{_escape_yaml(value)}"'


def _clean_tag(tag: str) -> str:
    """Obsidian tags cannot contain whitespace or start with '#'."""
    return "-".join(tag.strip().lstrip("#").split())


def _escape_yaml(s: str) -> str:
    """Escape a string for use in YAML double-quoted context."""
    return (
        s.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
