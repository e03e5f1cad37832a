"""
CLI interface for the recall vault.

Usage:
    recall put notes/idea.md
    recall search "attention mechanisms" --tag ml
    recall sample library/long-talk.md "scaling laws"
    recall pending
"""

import json
import os
import sys
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import Vault
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import SearchFilters

# Configure quiet mode by default (suppress verbose library output)
# Set RECALL_VERBOSE=1 to enable debug mode via environment
if os.environ.get("RECALL_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


NO_PROVIDER_WARNING = """
No embedding provider configured: search is keyword-only.
Set OPENAI_API_KEY (or RECALL_OPENAI_API_KEY) to enable semantic search.
"""


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"recall {version('recall-vault')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="recall",
    help="Personal content vault with hybrid search.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="RECALL_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Personal content vault with hybrid search."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

StoreOption = Annotated[
    Optional[Path],
    typer.Option(
        "--store", "-s",
        envvar="RECALL_STORE_PATH",
        help="Path to the store directory (default: ~/.recall/)"
    )
]

LimitOption = Annotated[
    int,
    typer.Option(
        "--limit", "-n",
        help="Maximum results to return (1-20)"
    )
]


def _get_vault(store: Optional[Path], *, recover: bool = False) -> Vault:
    """Open the vault, handling errors gracefully.

    Startup recovery only runs for commands that ask for it, so read-only
    commands return promptly.
    """
    import atexit

    actual_store = store if store is not None else _get_store_override()
    try:
        vault = Vault(actual_store, recover_on_start=recover)
        atexit.register(vault.close)
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    # Warn (don't exit) if no embedding provider; keyword search still works
    if not vault.embedding_available and not _get_json_output():
        typer.echo(NO_PROVIDER_WARNING.strip(), err=True)
    return vault


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def put(
    source: Annotated[str, typer.Argument(
        help="File to store, or '-' to read the body from stdin"
    )],
    path: Annotated[Optional[str], typer.Option(
        "--path", "-p",
        help="Document path in the vault (default: the file name)"
    )] = None,
    tag: Annotated[Optional[list[str]], typer.Option(
        "--tag", "-t",
        help="Tag to add (repeatable)"
    )] = None,
    type_: Annotated[Optional[str], typer.Option(
        "--type",
        help="Content type (transcript, article, pdf, video, learning, ...)"
    )] = None,
    author: Annotated[Optional[str], typer.Option(
        "--author",
        help="Source author"
    )] = None,
    url: Annotated[Optional[str], typer.Option(
        "--url",
        help="Source URL"
    )] = None,
    defer: Annotated[bool, typer.Option(
        "--defer",
        help="Store only; leave chunking and embedding to 'recall pending'"
    )] = False,
    store: StoreOption = None,
):
    """
    Store a document. Small documents are chunked and embedded immediately.

    \b
    Examples:
        recall put notes/idea.md
        recall put talk.txt --path library/talk.md --type transcript -t ml
        cat draft.md | recall put - --path drafts/today.md
    """
    overrides: dict = {}
    if tag:
        overrides["tags"] = list(tag)
    if type_:
        overrides["type"] = type_
    if author:
        overrides["source_author"] = author
    if url:
        overrides["source_url"] = url

    vault = _get_vault(store)
    process = False if defer else None
    try:
        if source == "-":
            if not path:
                typer.echo("Error: --path is required when reading from stdin", err=True)
                raise typer.Exit(1)
            from .frontmatter import split_frontmatter
            body, fm = split_frontmatter(sys.stdin.read())
            result = vault.put(path, body, {**fm, **overrides}, process=process)
        else:
            file_path = Path(source).expanduser()
            if not file_path.is_file():
                typer.echo(f"Error: File not found: {source}", err=True)
                raise typer.Exit(1)
            result = vault.put_file(file_path, path=path, frontmatter=overrides, process=process)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    doc = result.document
    if _get_json_output():
        typer.echo(json.dumps({
            "id": doc.id,
            "path": doc.path,
            "status": doc.status,
            "changed": result.changed,
            "processing": result.processing.outcome.value if result.processing else None,
            "chunks": result.processing.chunks_stored if result.processing else None,
        }, indent=2))
        return

    if not result.changed:
        typer.echo(f"{doc.path} unchanged ({doc.status})")
    elif result.processing is not None and result.processing.succeeded:
        typer.echo(f"Stored {doc.path}: {result.processing.chunks_stored} chunks embedded")
    else:
        note = ""
        if result.processing is not None and result.processing.error:
            note = f" ({result.processing.error})"
        typer.echo(f"Stored {doc.path} as {doc.status}{note}")


@app.command("add-note")
def add_note(
    content: Annotated[Optional[str], typer.Argument(
        help="Note text, or '-' (or nothing) to read it from stdin"
    )] = None,
    store: StoreOption = None,
):
    """
    Append a timestamped note to today's daily journal.

    \b
    Examples:
        recall add-note "Idea: sample the middle of long talks"
        echo "meeting notes" | recall add-note
    """
    if content is None or content == "-":
        content = sys.stdin.read()

    vault = _get_vault(store)
    try:
        note = vault.add_note(content)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if _get_json_output():
        typer.echo(json.dumps({
            "path": note.path,
            "action": note.action,
            "timestamp": note.timestamp,
            "status": note.put.document.status,
        }, indent=2))
        return
    verb = "Created" if note.action == "created" else "Appended to"
    typer.echo(f"{verb} {note.path} at {note.timestamp}")


@app.command()
def search(
    query: Annotated[Optional[str], typer.Argument(help="Search query text")] = None,
    tag: Annotated[Optional[list[str]], typer.Option(
        "--tag", "-t",
        help="Match any of these tags (repeatable)"
    )] = None,
    type_: Annotated[Optional[str], typer.Option(
        "--type",
        help="Only this content type"
    )] = None,
    author: Annotated[Optional[str], typer.Option(
        "--author",
        help="Source author or guest"
    )] = None,
    source: Annotated[Optional[str], typer.Option(
        "--source",
        help="Source name or URL fragment"
    )] = None,
    after: Annotated[Optional[str], typer.Option(
        "--after", "--since",
        help="On or after (ISO duration: P7D, P1W; or date: 2026-01-15)"
    )] = None,
    before: Annotated[Optional[str], typer.Option(
        "--before", "--until",
        help="Before (ISO duration or date)"
    )] = None,
    limit: LimitOption = 10,
    store: StoreOption = None,
):
    """
    Hybrid keyword + semantic search. With no query, lists documents
    matching the filters, newest first.

    \b
    Examples:
        recall search "retrieval augmented generation"
        recall search "scaling" --type transcript --after P30D
        recall search --author karpathy
    """
    try:
        filters = SearchFilters(
            file_type=type_, tags=tuple(tag or ()), author=author,
            source=source, after=after, before=before,
        )
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    vault = _get_vault(store)
    try:
        results = vault.search(query, filters=filters, limit=limit)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    from .render import render_search_results
    typer.echo(render_search_results(results, query or "", as_json=_get_json_output()))


@app.command()
def read(
    path: Annotated[str, typer.Argument(help="Document path")],
    find: Annotated[Optional[str], typer.Option(
        "--find", "-f",
        help="Show only the sections matching this text"
    )] = None,
    store: StoreOption = None,
):
    """Show a document, or the parts of it matching --find."""
    vault = _get_vault(store)
    from .render import render_document, render_section_search

    if find:
        section = vault.read_section(path, find)
        if section is None:
            typer.echo(f"Not found: {path}", err=True)
            raise typer.Exit(1)
        typer.echo(render_section_search(section, as_json=_get_json_output()))
        return

    doc = vault.get(path)
    if doc is None:
        typer.echo(f"Not found: {path}", err=True)
        raise typer.Exit(1)
    typer.echo(render_document(doc, as_json=_get_json_output()))


@app.command()
def sample(
    path: Annotated[str, typer.Argument(help="Document path")],
    query: Annotated[Optional[str], typer.Argument(help="What to look for")] = None,
    limit: LimitOption = 10,
    around: Annotated[Optional[int], typer.Option(
        "--around",
        help="Show the chunks around this index instead"
    )] = None,
    radius: Annotated[int, typer.Option(
        "--radius",
        help="Chunks on each side of --around"
    )] = 1,
    store: StoreOption = None,
):
    """
    Sample a long document: best matches plus introduction, middle and end.

    \b
    Examples:
        recall sample library/long-talk.md "scaling laws"
        recall sample library/long-talk.md --around 22 --radius 2
    """
    vault = _get_vault(store)
    if around is not None:
        result = vault.neighborhood(path, around, radius)
    else:
        result = vault.sample(path, query, limit)
    if result is None:
        typer.echo(f"Not found: {path}", err=True)
        raise typer.Exit(1)

    from .render import render_sample
    typer.echo(render_sample(result, as_json=_get_json_output()))


@app.command()
def chunks(
    path: Annotated[str, typer.Argument(help="Document path")],
    store: StoreOption = None,
):
    """List the stored chunks of a document."""
    vault = _get_vault(store)
    stored = vault.chunks(path)
    if stored is None:
        typer.echo(f"Not found: {path}", err=True)
        raise typer.Exit(1)

    if _get_json_output():
        typer.echo(json.dumps([
            {
                "chunk_index": c.chunk_index,
                "chars": len(c.text),
                "embedded": c.embedding is not None,
                "text": c.text,
            }
            for c in stored
        ], indent=2))
        return
    if not stored:
        typer.echo(f"{path} has no chunks yet")
        return
    for c in stored:
        preview = " ".join(c.text[:80].split())
        mark = "" if c.embedding is not None else " (no embedding)"
        typer.echo(f"{c.chunk_index:4d}  {len(c.text):5d} chars{mark}  {preview}")


@app.command("pending")
def pending_cmd(
    limit: LimitOption = 10,
    list_only: Annotated[bool, typer.Option(
        "--list", "-l",
        help="Only list the queue, don't process"
    )] = False,
    store: StoreOption = None,
):
    """
    Process documents waiting for chunking and embedding.

    Failed documents are retried. Use --list to inspect the queue.
    """
    vault = _get_vault(store)

    if list_only:
        docs = vault.pending(limit)
        if _get_json_output():
            typer.echo(json.dumps([
                {"path": d.path, "status": d.status, "attempts": d.attempts,
                 "chars": len(d.body), "updated_at": d.updated_at,
                 "last_error": d.last_error}
                for d in docs
            ], indent=2))
            return
        if not docs:
            typer.echo("Nothing pending.")
            return
        for d in docs:
            error = f"  [{d.last_error}]" if d.last_error else ""
            typer.echo(f"{d.status:8s} {len(d.body):8d} chars  {d.path}{error}")
        return

    result = vault.process_pending(limit=limit)
    if _get_json_output():
        typer.echo(json.dumps(result, indent=2))
        return
    if result["deferred"]:
        typer.echo(f"{result['deferred']} pending; no embedding provider configured.", err=True)
        return
    typer.echo(
        f"Processed {result['processed']}, failed {result['failed']}, "
        f"skipped {result['skipped']}"
    )
    for error in result["errors"]:
        typer.echo(f"  {error}", err=True)


@app.command()
def recover(
    store: StoreOption = None,
):
    """Reprocess documents abandoned in pending/failed past the staleness window."""
    vault = _get_vault(store)
    report = vault.recover()
    summary = report.as_dict()
    if _get_json_output():
        typer.echo(json.dumps(summary, indent=2))
        return
    typer.echo(
        f"Released {summary['released_claims']} stale claims; "
        f"recovered {summary['complete'] + summary['partial']} of "
        f"{summary['candidates']} candidates ({summary['failed']} failed)"
    )


@app.command()
def status(
    store: StoreOption = None,
):
    """Show store location, embedding provider and processing counts."""
    vault = _get_vault(store)
    stats = vault.stats()
    if _get_json_output():
        typer.echo(json.dumps(stats, indent=2))
        return
    typer.echo(f"Store:      {stats['store_path']}")
    provider = stats["embedding"] or "none (keyword-only)"
    typer.echo(f"Embedding:  {provider}")
    typer.echo(f"Documents:  {stats['documents']} "
               f"(complete {stats['complete']}, pending {stats['pending']}, "
               f"processing {stats['processing']}, failed {stats['failed']})")
    typer.echo(f"Chunks:     {stats['chunks']} ({stats['embedded_chunks']} embedded)")


@app.command()
def mcp(
    store: StoreOption = None,
):
    """Start MCP stdio server for AI agent integration."""
    if store is not None:
        os.environ["RECALL_STORE_PATH"] = str(store)
    elif _get_store_override() is not None:
        os.environ["RECALL_STORE_PATH"] = str(_get_store_override())
    from .mcp import main as mcp_main
    mcp_main()


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="recall CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
