"""
MCP stdio server for recall: vault search and reading tools for AI agents.

Usage:
    recall mcp                               # stdio server (via CLI)
    claude mcp add recall -- recall mcp      # agent integration

All Vault calls are serialized through a single asyncio.Lock. The Vault
is opened on first use; opening it starts the stale-document recovery
pass in the background.
"""

import asyncio
from pathlib import Path
from typing import Annotated, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from .api import Vault
from .render import render_document, render_sample, render_search_results, render_section_search
from .types import SearchFilters

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "recall",
    instructions=(
        "Personal content vault: transcripts, articles, PDFs and notes. "
        "Search with search_notes, then read_note or sample_note to dig "
        "into a long document. Save syntheses with save_note; jot quick "
        "thoughts into the daily journal with add_note."
    ),
)

_vault: Optional[Vault] = None
_lock = asyncio.Lock()


def _get_vault() -> Vault:
    """Lazy-init Vault with default config (respects RECALL_STORE_PATH env).

    Must be called inside ``async with _lock`` so concurrent tool calls
    do not race on the global.
    """
    global _vault
    if _vault is None:
        import os
        store_path = os.environ.get("RECALL_STORE_PATH")
        _vault = Vault(store_path=Path(store_path) if store_path else None)
    return _vault


# ---------------------------------------------------------------------------
# Tool annotations
# ---------------------------------------------------------------------------

_READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False)
_ADDITIVE = ToolAnnotations(destructiveHint=False, idempotentHint=False)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool(
    description=(
        "Search the vault by keywords and meaning. Returns paths ranked by "
        "relevance with a short snippet. Leave query empty and pass filters "
        "to browse the newest matching documents."
    ),
    annotations=_READ_ONLY,
)
async def search_notes(
    query: Annotated[str, Field(
        description="What to look for. May be empty when filters are given.",
    )] = "",
    limit: Annotated[int, Field(
        description="Maximum results (1-20).",
    )] = 10,
    type: Annotated[Optional[str], Field(
        description="Content type, e.g. transcript, article, pdf, video, learning.",
    )] = None,
    tags: Annotated[Optional[list[str]], Field(
        description="Match documents having any of these tags.",
    )] = None,
    author: Annotated[Optional[str], Field(
        description="Source author or guest name.",
    )] = None,
    source: Annotated[Optional[str], Field(
        description="Source name or URL fragment (e.g. youtube.com).",
    )] = None,
    after: Annotated[Optional[str], Field(
        description="Dated on or after (ISO duration like P7D, or date like 2026-01-15).",
    )] = None,
    before: Annotated[Optional[str], Field(
        description="Dated before (ISO duration or date).",
    )] = None,
) -> str:
    """Hybrid search over the vault."""
    try:
        filters = SearchFilters(
            file_type=type, tags=tuple(tags or ()), author=author,
            source=source, after=after, before=before,
        )
    except ValueError as e:
        return f"Error: {e}"

    async with _lock:
        vault = _get_vault()
        try:
            results = vault.search(query, filters=filters, limit=limit)
        except ValueError as e:
            return f"Error: {e}"

    return render_search_results(results, query)


@mcp.tool(
    description=(
        "Read a document by exact path. With 'search', returns only the "
        "matching lines (small documents) or sections (large documents)."
    ),
    annotations=_READ_ONLY,
)
async def read_note(
    path: Annotated[str, Field(
        description="Exact document path, e.g. library/some-video.md.",
    )],
    search: Annotated[Optional[str], Field(
        description="Text to find inside the document.",
    )] = None,
) -> str:
    """Read a document or search inside it."""
    if not path or not path.strip():
        return "Error: path must be a non-empty string"

    async with _lock:
        vault = _get_vault()
        if search:
            section = vault.read_section(path, search)
            if section is None:
                return f"File not found: {path}"
            return render_section_search(section)
        doc = vault.get(path)

    if doc is None:
        return f"File not found: {path}"
    return render_document(doc)


@mcp.tool(
    description=(
        "Sample a long document: the chunks most relevant to the query plus "
        "its introduction, middle and end, in document order. The footer "
        "lists the chunk indices shown; pass 'around' to read neighbouring "
        "chunks next."
    ),
    annotations=_READ_ONLY,
)
async def sample_note(
    path: Annotated[str, Field(
        description="Exact document path.",
    )],
    query: Annotated[Optional[str], Field(
        description="What to look for. Omit to get only introduction, middle and end.",
    )] = None,
    limit: Annotated[int, Field(
        description="Maximum chunks to return (3-20).",
    )] = 10,
    around: Annotated[Optional[int], Field(
        description="Return the chunks around this index instead of sampling.",
    )] = None,
    radius: Annotated[int, Field(
        description="Chunks on each side of 'around'.",
    )] = 1,
) -> str:
    """Query-aware sampling within one document."""
    async with _lock:
        vault = _get_vault()
        try:
            if around is not None:
                result = vault.neighborhood(path, around, radius)
            else:
                result = vault.sample(path, query, limit)
        except ValueError as e:
            return f"Error: {e}"

    if result is None:
        return f"File not found: {path}"
    return render_sample(result)


@mcp.tool(
    description=(
        "Save a written note or synthesis to the vault under learnings/. "
        "Short notes are searchable semantically right away."
    ),
    annotations=_ADDITIVE,
)
async def save_note(
    title: Annotated[str, Field(
        description="Note title; determines the path (learnings/<slug>.md).",
    )],
    content: Annotated[str, Field(
        description="Markdown body.",
    )],
    tags: Annotated[Optional[list[str]], Field(
        description="Tags to categorize the note.",
    )] = None,
    source_url: Annotated[Optional[str], Field(
        description="URL the note is about.",
    )] = None,
) -> str:
    """Save a note."""
    async with _lock:
        vault = _get_vault()
        try:
            result = vault.save_note(title, content, tags=tags, source_url=source_url)
        except ValueError as e:
            return f"Error: {e}"

    doc = result.document
    if result.processing is not None and result.processing.succeeded:
        return f"Saved: {doc.path} ({result.processing.chunks_stored} chunks embedded)"
    return f"Saved: {doc.path} (status: {doc.status})"


@mcp.tool(
    description=(
        "Append a timestamped note to today's daily journal "
        "(daily/YYYY-MM-DD.md). The journal is created if it does not exist."
    ),
    annotations=_ADDITIVE,
)
async def add_note(
    content: Annotated[str, Field(
        description="Note content to append.",
    )],
) -> str:
    """Append to the daily journal."""
    async with _lock:
        vault = _get_vault()
        try:
            note = vault.add_note(content)
        except ValueError as e:
            return f"Error: {e}"

    if note.action == "created":
        return f"Daily journal created at {note.path} with note at {note.timestamp}"
    return f"Note appended to {note.path} at {note.timestamp}"


def main():
    """Run the MCP stdio server."""
    import os
    import signal
    # anyio's stdin reader shields the blocking readline from cancellation,
    # so the first Ctrl+C would not take effect; exit directly instead.
    signal.signal(signal.SIGINT, lambda *_: os._exit(130))
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
