"""
Plain-text and JSON rendering shared by the CLI and the MCP tools.
"""

import json
from dataclasses import asdict
from typing import Optional

from .frontmatter import format_frontmatter
from .types import DocumentRecord, RankedResult, SampleResult, SectionSearch

# Bodies longer than this are truncated when read in full
READ_MAX_CHARS = 50000


def render_search_results(
    results: list[RankedResult],
    query: str = "",
    *,
    as_json: bool = False,
) -> str:
    """Numbered result list: path, tags, score, snippet."""
    if as_json:
        return json.dumps([asdict(r) for r in results], indent=2)
    if not results:
        return f'No results found for "{query}"' if query else "No results found"

    lines = []
    for i, r in enumerate(results, 1):
        tags = f" [{', '.join(r.tags)}]" if r.tags else ""
        score = f" (score: {r.score:.4f})" if r.score is not None else ""
        status = "" if r.status == "complete" else f" <{r.status}>"
        snippet = " ".join(r.snippet.split())
        lines.append(f"{i}. {r.path}{tags}{score}{status}\n   {snippet}...")
    header = f'Found {len(results)} result{"s" if len(results) != 1 else ""}'
    if query:
        header += f' for "{query}"'
    return header + ":\n\n" + "\n\n".join(lines)


def render_sample(sample: SampleResult, *, as_json: bool = False) -> str:
    """Labelled chunks with the navigation footer (total and shown indices)."""
    if as_json:
        data = asdict(sample)
        data["shown_indices"] = sample.shown_indices
        return json.dumps(data, indent=2)
    if not sample.chunks:
        return f"{sample.path} has no content to sample (status: {sample.status})"

    parts = []
    for chunk in sample.chunks:
        parts.append(f"--- [{chunk.label}] chunk {chunk.chunk_index} ---\n{chunk.text}")
    shown = ", ".join(str(i) for i in sample.shown_indices)
    footer = (
        f"Showing {len(sample.chunks)} of {sample.total_chunks} chunks "
        f"(indices: {shown}) from {sample.path}"
    )
    return "\n\n".join(parts) + "\n\n" + footer


def render_section_search(section: SectionSearch, *, as_json: bool = False) -> str:
    """Grep-style line matches, or relevant chunks for large documents."""
    if as_json:
        data = asdict(section)
        for chunk in data["chunks"]:
            chunk.pop("embedding", None)
        return json.dumps(data, indent=2)

    if section.mode == "grep":
        if not section.lines:
            return f'No matches found for "{section.query}" in {section.path}'
        n = section.total_matches
        out = f'Found {n} match{"" if n == 1 else "es"} for "{section.query}" in {section.path}:\n\n'
        for i, match in enumerate(section.lines, 1):
            out += f"--- Match {i} (line {match.line_number}) ---\n"
            out += "\n".join(match.context) + "\n\n"
        if n > len(section.lines):
            out += f"... and {n - len(section.lines)} more matches\n"
        return out.rstrip("\n")

    if not section.chunks:
        return (
            f'No matches found for "{section.query}" in {section.path}\n\n'
            "Try different keywords or read the full file."
        )
    n = len(section.chunks)
    out = f'Found {n} relevant section{"" if n == 1 else "s"} for "{section.query}" in {section.path}:\n\n'
    for i, chunk in enumerate(sorted(section.chunks, key=lambda c: c.chunk_index), 1):
        out += f"--- Section {i} (chunk {chunk.chunk_index}) ---\n{chunk.text}\n\n"
    return out.rstrip("\n")


def render_document(
    doc: DocumentRecord,
    *,
    as_json: bool = False,
    max_chars: Optional[int] = READ_MAX_CHARS,
) -> str:
    """Frontmatter block, body (truncated past ``max_chars``), metadata footer."""
    if as_json:
        data = asdict(doc)
        data.pop("content_hash", None)
        return json.dumps(data, indent=2, default=str)

    out = ""
    fm = format_frontmatter(doc.frontmatter)
    if fm:
        out += f"---\n{fm}\n---\n\n"
    body = doc.body
    if max_chars is not None and len(body) > max_chars:
        out += body[:max_chars]
        out += "\n\n--- Content Truncated ---\n"
        out += f"Total: {len(body):,} chars, showing first {max_chars:,} chars\n"
        out += "Search inside the document to find specific sections."
    else:
        out += body
    out += f"\n\n---\nPath: {doc.path}\nStatus: {doc.status}\nLast updated: {doc.updated_at}"
    return out
