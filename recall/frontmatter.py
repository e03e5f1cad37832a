"""
YAML frontmatter for markdown documents.
"""

import re
from datetime import datetime, timezone
from typing import Any

import yaml

MAX_SLUG_LENGTH = 50

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE)


def split_frontmatter(text: str) -> tuple[str, dict[str, Any]]:
    """
    Separate optional YAML frontmatter from a markdown body.

    Frontmatter is a ``---`` line at the very start, closed by another
    ``---`` line. Anything else (such as a leading horizontal rule with
    no closing delimiter) is left in the body.

    Returns:
        (body, frontmatter) tuple. Frontmatter is empty if absent.

    Raises:
        ValueError: If the frontmatter block is not a YAML mapping
    """
    match = _FRONTMATTER_RE.match(text)
    if match is None:
        return text, {}
    try:
        frontmatter = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML frontmatter: {e}")
    body = text[match.end():].lstrip("\r\n")
    if frontmatter is None:
        return body, {}
    if not isinstance(frontmatter, dict):
        raise ValueError("Frontmatter must be a YAML mapping")
    return body, frontmatter


def format_frontmatter(frontmatter: dict[str, Any]) -> str:
    """Render frontmatter as block YAML (no line wrapping)."""
    if not frontmatter:
        return ""
    return yaml.safe_dump(
        frontmatter, sort_keys=False, allow_unicode=True, width=float("inf"),
    ).strip()


def slugify(title: str) -> str:
    """Lowercase, dash-separated ASCII slug, at most 50 characters."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-")


def note_frontmatter(
    tags: list[str],
    *,
    source_url: str | None = None,
    type: str = "learning",
    **extra: Any,
) -> dict[str, Any]:
    """Frontmatter for a note written through the vault (created_at set now)."""
    fm: dict[str, Any] = {
        "created_at": datetime.now(timezone.utc).isoformat(),
        "type": type,
        "tags": list(tags),
    }
    if source_url:
        fm["source_url"] = source_url
    fm.update({k: v for k, v in extra.items() if v is not None})
    return fm


def daily_frontmatter() -> dict[str, Any]:
    """Frontmatter for a new daily journal file."""
    return {
        "created_at": datetime.now(timezone.utc).isoformat(),
        "type": "daily",
    }


def daily_entry(content: str, at: datetime) -> str:
    """One journal entry: an ``## HH:MM`` heading, the content, a blank line."""
    return f"## {at:%H:%M}\n{content.strip()}\n\n"
